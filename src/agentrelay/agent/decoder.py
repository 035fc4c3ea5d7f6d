"""Newline-delimited JSON decoder for agent stdout."""

from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)

#: Max characters of a discarded line to include in debug logs.
_PREVIEW_LEN = 200


class JsonLineDecoder:
    """Turns raw stdout chunks into JSON object records.

    Chunks may split lines (and multi-byte characters) anywhere, so the
    trailing incomplete fragment is carried over as bytes until the next
    newline arrives or :meth:`flush` is called at process exit.

    Lines that are not JSON objects are dropped: agents print free-form
    progress text to the same stream.
    """

    def __init__(self) -> None:
        self._carry = b""

    @property
    def pending(self) -> bytes:
        """Bytes of the incomplete trailing line, if any."""
        return self._carry

    def feed(self, chunk: bytes) -> list[dict[str, object]]:
        """Consume *chunk* and return the records of every completed line."""
        if not chunk:
            return []
        data = self._carry + chunk
        *lines, self._carry = data.split(b"\n")
        records: list[dict[str, object]] = []
        for line in lines:
            record = _decode_line(line)
            if record is not None:
                records.append(record)
        return records

    def flush(self) -> list[dict[str, object]]:
        """Decode the retained fragment once, then clear it."""
        line, self._carry = self._carry, b""
        record = _decode_line(line)
        return [record] if record is not None else []


def _decode_line(line: bytes) -> dict[str, object] | None:
    text = line.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Non-JSON line from agent (ignored): %s", text[:_PREVIEW_LEN])
        return None
    if not isinstance(value, dict):
        logger.debug("Non-object JSON line from agent (ignored): %s", text[:_PREVIEW_LEN])
        return None
    return value
