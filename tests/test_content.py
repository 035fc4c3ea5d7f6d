"""Tests for attachment content blocks and the stream-json stdin message."""

from __future__ import annotations

import base64
import json

from agentrelay.agent.content import (
    DEFAULT_ATTACHMENT_PROMPT,
    Attachment,
    build_content_blocks,
    build_stream_json_message,
    is_text_attachment,
)


def _png() -> Attachment:
    return Attachment(name="shot.png", mimetype="image/png", data=b"\x89PNG")


class TestContentBlocks:
    def test_text_then_image(self) -> None:
        blocks = build_content_blocks("  look at this  ", [_png()])
        assert blocks[0] == {"type": "text", "text": "look at this"}
        assert blocks[1]["type"] == "image"
        assert blocks[1]["source"] == {
            "type": "base64",
            "media_type": "image/png",
            "data": base64.b64encode(b"\x89PNG").decode("ascii"),
        }

    def test_pdf_becomes_document(self) -> None:
        pdf = Attachment(name="design.pdf", mimetype="application/pdf", data=b"%PDF")
        (block,) = build_content_blocks("", [pdf])
        assert block["type"] == "document"
        assert block["source"]["media_type"] == "application/pdf"

    def test_text_file_is_framed(self) -> None:
        src = Attachment(name="main.py", mimetype="application/octet-stream", data=b"print(1)")
        blocks = build_content_blocks("review", [src])
        assert blocks[1] == {
            "type": "text",
            "text": "--- File: main.py ---\nprint(1)\n--- End of main.py ---",
        }

    def test_undecodable_text_file_skipped(self) -> None:
        bad = Attachment(name="notes.txt", mimetype="text/plain", data=b"\xff\xfe\xfa")
        assert build_content_blocks("hi", [bad]) == [{"type": "text", "text": "hi"}]

    def test_unsupported_type_skipped(self) -> None:
        blob = Attachment(name="a.bin", mimetype="application/zip", data=b"PK")
        assert build_content_blocks("hi", [blob]) == [{"type": "text", "text": "hi"}]

    def test_default_prompt_when_nothing_usable(self) -> None:
        blob = Attachment(name="a.bin", mimetype="application/zip", data=b"PK")
        assert build_content_blocks("   ", [blob]) == [
            {"type": "text", "text": DEFAULT_ATTACHMENT_PROMPT}
        ]

    def test_is_text_attachment(self) -> None:
        assert is_text_attachment(Attachment(name="x", mimetype="text/x-log", data=b""))
        assert is_text_attachment(Attachment(name="A.TS", mimetype="video/mp2t", data=b""))
        assert not is_text_attachment(_png())


class TestStreamJsonMessage:
    def test_envelope(self) -> None:
        message = json.loads(build_stream_json_message("hello", [_png()]))
        assert message["type"] == "user"
        assert message["message"]["role"] == "user"
        content = message["message"]["content"]
        assert [b["type"] for b in content] == ["text", "image"]
