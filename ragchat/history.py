"""Conversation and message history kept in the external record store."""

from __future__ import annotations

import datetime
import json
from typing import TYPE_CHECKING, Any

from .config import config
from .record_store import where_equals

if TYPE_CHECKING:
    from .record_store import RecordStore

logger = config.get_logger(__name__)

CONVERSATIONS_TABLE = "conversations"
MESSAGES_TABLE = "messages"
CONVERSATION_LIMIT = 50
MESSAGE_LIMIT = 1000


def record_id(record: dict[str, Any]) -> Any:
    """Return a record's id, which the store spells ``Id`` or ``id``."""
    return record.get("Id", record.get("id"))


class ChatHistory:
    """Per-user conversations and their messages.

    Nothing here is consulted for turn correctness: the history exists to
    repopulate the UI.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def list_conversations(self, user_id: int) -> list[dict[str, Any]]:
        return self.store.list_records(
            CONVERSATIONS_TABLE,
            where=where_equals("user_id", user_id),
            sort="-CreatedAt",
            limit=CONVERSATION_LIMIT,
        )

    def create_conversation(
        self,
        user_id: int,
        title: str,
        model: str | None = None,
        prompt: str | None = None,
    ) -> dict[str, Any]:
        conversation = self.store.create_record(
            CONVERSATIONS_TABLE,
            {
                "user_id": user_id,
                "title": title,
                "model_used": model or "",
                "prompt_used": prompt or "",
                "message_count": 0,
                "is_archived": False,
            },
        )
        logger.info("Created conversation %s for user %s", record_id(conversation), user_id)
        return conversation

    def update_conversation(
        self, conversation_id: int, fields: dict[str, Any]
    ) -> dict[str, Any]:
        return self.store.update_record(CONVERSATIONS_TABLE, conversation_id, fields)

    def delete_conversation(self, conversation_id: int) -> None:
        """Delete a conversation after deleting all of its messages."""
        messages = self.get_messages(conversation_id)
        for message in messages:
            self.store.delete_record(MESSAGES_TABLE, record_id(message))
        self.store.delete_record(CONVERSATIONS_TABLE, conversation_id)
        logger.info(
            "Deleted conversation %s with %d messages", conversation_id, len(messages)
        )

    def get_messages(self, conversation_id: int) -> list[dict[str, Any]]:
        return self.store.list_records(
            MESSAGES_TABLE,
            where=where_equals("conversation_id", conversation_id),
            sort="timestamp",
            limit=MESSAGE_LIMIT,
        )

    def add_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        model: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Append a message and bump the conversation's message count.

        Returns:
            The created message record.
        """
        message = self.store.create_record(
            MESSAGES_TABLE,
            {
                "conversation_id": conversation_id,
                "role": role,
                "content": content,
                "model_used": model or "",
                "metadata": json.dumps(metadata) if metadata else "",
                "timestamp": datetime.datetime.now(tz=datetime.UTC).isoformat(),
            },
        )
        conversation = self.store.get_record(CONVERSATIONS_TABLE, conversation_id)
        self.store.update_record(
            CONVERSATIONS_TABLE,
            conversation_id,
            {"message_count": int(conversation.get("message_count") or 0) + 1},
        )
        return message
