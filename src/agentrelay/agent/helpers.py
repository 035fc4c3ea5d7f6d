"""Shared helper functions for agent process diagnostics."""

from __future__ import annotations


def stderr_tail(stderr_text: str, max_chars: int = 1000) -> str:
    """Return the last *max_chars* characters of stderr for failure logs."""
    if max_chars <= 0:
        return ""
    return stderr_text[-max_chars:]
