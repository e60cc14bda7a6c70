"""Message store for finalized conversation transcripts."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..llm.protocols import Message

logger = logging.getLogger(__name__)


@runtime_checkable
class MessageStore(Protocol):
    """Where controllers append transcripts once a run has finished."""

    async def append(self, conversation_id: str, messages: list[Message]) -> None:
        ...

    async def load(self, conversation_id: str) -> list[Message]:
        ...


class InMemoryMessageStore:
    """
    In-memory transcript store.

    Provides:
    - In-memory storage of transcripts per conversation
    - Optional persistence to disk (JSON)
    """

    def __init__(
        self,
        persist_path: Path | None = None,
        auto_persist: bool = False,
    ):
        """
        Initialize the message store.

        Args:
            persist_path: Optional path for disk persistence
            auto_persist: Whether to auto-save on every append
        """
        self._conversations: dict[str, list[Message]] = {}
        self._updated_at: dict[str, datetime] = {}
        self.persist_path = persist_path
        self.auto_persist = auto_persist

        # Load from disk if path exists
        if persist_path and persist_path.exists():
            self._load_from_disk()

    async def append(self, conversation_id: str, messages: list[Message]) -> None:
        """
        Append messages to a conversation.

        Args:
            conversation_id: Conversation to append to
            messages: Messages in transcript order
        """
        self._conversations.setdefault(conversation_id, []).extend(messages)
        self._updated_at[conversation_id] = datetime.now()

        if self.auto_persist and self.persist_path:
            self.persist()

        logger.debug(f"Appended {len(messages)} message(s) to conversation {conversation_id}")

    async def load(self, conversation_id: str) -> list[Message]:
        """
        Load a conversation's transcript.

        Returns:
            Messages in order; empty if the conversation is unknown
        """
        return list(self._conversations.get(conversation_id, []))

    def list_conversations(self) -> list[str]:
        return list(self._conversations.keys())

    def delete(self, conversation_id: str) -> bool:
        """
        Delete a conversation.

        Returns:
            True if deleted, False if not found
        """
        if conversation_id not in self._conversations:
            return False

        del self._conversations[conversation_id]
        self._updated_at.pop(conversation_id, None)
        if self.auto_persist and self.persist_path:
            self.persist()

        logger.info(f"Deleted conversation {conversation_id}")
        return True

    def persist(self) -> None:
        """Write all conversations to ``persist_path``."""
        if not self.persist_path:
            return

        data = {
            "conversations": {
                conversation_id: {
                    "updated_at": self._updated_at.get(conversation_id, datetime.now()).isoformat(),
                    "messages": [m.model_dump(mode="json") for m in messages],
                }
                for conversation_id, messages in self._conversations.items()
            }
        }

        self.persist_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.persist_path, "w") as f:
            json.dump(data, f, indent=2)

        logger.debug(f"Persisted {len(self._conversations)} conversation(s) to {self.persist_path}")

    def _load_from_disk(self) -> None:
        with open(self.persist_path) as f:
            data = json.load(f)

        for conversation_id, entry in data.get("conversations", {}).items():
            self._conversations[conversation_id] = [
                Message.model_validate(m) for m in entry.get("messages", [])
            ]
            if entry.get("updated_at"):
                self._updated_at[conversation_id] = datetime.fromisoformat(entry["updated_at"])

        logger.info(f"Loaded {len(self._conversations)} conversation(s) from {self.persist_path}")
