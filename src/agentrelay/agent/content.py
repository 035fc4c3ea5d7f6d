"""Build stream-json input messages that carry file attachments."""

from __future__ import annotations

import base64
import json
import logging
from pathlib import PurePath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})

SUPPORTED_DOCUMENT_TYPES = frozenset({"application/pdf"})

SUPPORTED_TEXT_TYPES = frozenset(
    {
        "text/plain",
        "text/markdown",
        "text/csv",
        "text/html",
        "text/css",
        "text/javascript",
        "application/json",
        "application/xml",
        "text/xml",
    }
)

#: Extensions treated as text when the mimetype is generic.
TEXT_FILE_EXTENSIONS = frozenset(
    {
        ".ts", ".tsx", ".js", ".jsx", ".py", ".rb", ".go", ".rs", ".java",
        ".kt", ".c", ".h", ".cpp", ".hpp", ".cs", ".swift", ".sh", ".sql",
        ".yaml", ".yml", ".toml", ".ini", ".md", ".txt", ".json", ".xml",
        ".html", ".css", ".csv", ".log", ".env",
    }
)

#: Prompt used when neither text nor a usable attachment is present.
DEFAULT_ATTACHMENT_PROMPT = "Please analyze the attached file(s)."


class Attachment(BaseModel):
    """A binary file sent alongside the prompt."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Original file name")
    mimetype: str = Field(description="MIME type reported by the uploader")
    data: bytes = Field(description="Raw file contents")


def is_text_attachment(attachment: Attachment) -> bool:
    if attachment.mimetype in SUPPORTED_TEXT_TYPES or attachment.mimetype.startswith("text/"):
        return True
    return PurePath(attachment.name).suffix.lower() in TEXT_FILE_EXTENSIONS


def _to_block(attachment: Attachment) -> dict[str, Any] | None:
    if attachment.mimetype in SUPPORTED_IMAGE_TYPES:
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": attachment.mimetype,
                "data": base64.b64encode(attachment.data).decode("ascii"),
            },
        }

    if attachment.mimetype in SUPPORTED_DOCUMENT_TYPES:
        return {
            "type": "document",
            "source": {
                "type": "base64",
                "media_type": attachment.mimetype,
                "data": base64.b64encode(attachment.data).decode("ascii"),
            },
        }

    if is_text_attachment(attachment):
        try:
            text = attachment.data.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Failed to decode text attachment as UTF-8: %s", attachment.name)
            return None
        return {
            "type": "text",
            "text": f"--- File: {attachment.name} ---\n{text}\n--- End of {attachment.name} ---",
        }

    logger.warning(
        "Unsupported attachment skipped: %s (%s)", attachment.name, attachment.mimetype
    )
    return None


def build_content_blocks(
    text: str | None, attachments: list[Attachment] | tuple[Attachment, ...]
) -> list[dict[str, Any]]:
    """Return prompt text followed by one content block per usable attachment."""
    blocks: list[dict[str, Any]] = []
    if text and text.strip():
        blocks.append({"type": "text", "text": text.strip()})

    for attachment in attachments:
        block = _to_block(attachment)
        if block is not None:
            blocks.append(block)

    if not blocks:
        blocks.append({"type": "text", "text": DEFAULT_ATTACHMENT_PROMPT})

    logger.debug(
        "Built %d content block(s) from %d attachment(s)", len(blocks), len(attachments)
    )
    return blocks


def build_stream_json_message(
    text: str | None, attachments: list[Attachment] | tuple[Attachment, ...]
) -> str:
    """Serialize one ``user`` message for ``--input-format stream-json``."""
    message = {
        "type": "user",
        "message": {
            "role": "user",
            "content": build_content_blocks(text, attachments),
        },
    }
    return json.dumps(message)
