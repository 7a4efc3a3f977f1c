"""Conversation and message records shared by the store, runtime and orchestrator."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Iterable

from .exceptions import MessageFinalizedError

DEFAULT_SUMMARY = "New conversation"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """A single chat message.

    Content may only change while the message is not final. Assistant messages
    are finalized once their stream completes or fails; user messages are final
    from the start.
    """

    role: Role
    content: str = ""
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=_new_id)
    final: bool = False

    def set_content(self, content: str) -> None:
        if self.final:
            raise MessageFinalizedError(f"Message {self.id} is final and cannot be modified.")
        self.content = content

    def finalize(self) -> None:
        self.final = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Conversation:
    """An ordered, append-only message history plus a rolling summary."""

    messages: list[Message] = field(default_factory=list)
    summary: str = DEFAULT_SUMMARY
    created_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=_new_id)

    @property
    def last_message_timestamp(self) -> datetime:
        if not self.messages:
            return self.created_at
        return max(message.timestamp for message in self.messages)

    @property
    def sorted_messages(self) -> list[Message]:
        return sorted(self.messages, key=lambda message: message.timestamp)

    def append(self, message: Message) -> Message:
        self.messages.append(message)
        return message


def sort_conversations(conversations: Iterable[Conversation]) -> list[Conversation]:
    """Order conversations most-recent-first by their last message timestamp."""
    return sorted(
        conversations,
        key=lambda conversation: conversation.last_message_timestamp,
        reverse=True,
    )
