"""agentrelay — keeps one resumable coding-agent process alive per conversation."""

__version__ = "0.1.0"
