"""Session index records and the in-memory index."""

from agentrelay.session.index import InMemorySessionIndex
from agentrelay.session.models import SessionRecord

__all__ = [
    "InMemorySessionIndex",
    "SessionRecord",
]
