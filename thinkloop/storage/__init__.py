"""External collaborators: transcript storage and event publishing."""

from .events import EventPublisher, EventsConfig, HTTPEventPublisher, ListEventPublisher
from .message_store import InMemoryMessageStore, MessageStore

__all__ = [
    # Events
    "EventPublisher",
    "EventsConfig",
    "HTTPEventPublisher",
    "ListEventPublisher",
    # Messages
    "InMemoryMessageStore",
    "MessageStore",
]
