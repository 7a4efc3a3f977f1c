"""
Collaborator protocols for the chat orchestrator, plus Apple FM SDK factories.

The orchestrator only talks to a :class:`ModelRuntime` and a
:class:`ConversationStore`; :mod:`foundation_chat.runtime` and
:mod:`foundation_chat.store` provide the concrete implementations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .exceptions import require_apple_fm

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from .availability import ReadinessSignal
    from .models import Conversation, Message


@runtime_checkable
class ModelRuntime(Protocol):
    """The on-device language model as seen by the orchestrator.

    Streams are finite and not restartable. Each part is a snapshot of the full
    text generated so far, never a delta. ``None`` means the model declined to
    produce a stream.
    """

    def check_availability(self) -> ReadinessSignal: ...

    async def stream_reply(self, context: Sequence[Message]) -> AsyncIterator[Any] | None: ...

    async def stream_summary(self, context: Sequence[Message]) -> AsyncIterator[Any] | None: ...

    def prewarm(self) -> None: ...


@runtime_checkable
class ConversationStore(Protocol):
    """Persistence for conversations and their messages."""

    def insert(self, conversation: Conversation) -> None: ...

    def save(self, conversation: Conversation) -> None: ...

    def delete(self, conversation: Conversation) -> None: ...

    def query(self) -> list[Conversation]: ...


def create_model() -> Any:
    """Instantiate the default ``SystemLanguageModel``."""
    fm = require_apple_fm()
    return fm.SystemLanguageModel()


def create_session(instructions: str, model: Any | None = None) -> Any:
    """Create a ``LanguageModelSession``; *model* defaults to the system model."""
    fm = require_apple_fm()
    if model is None:
        model = fm.SystemLanguageModel()
    return fm.LanguageModelSession(model=model, instructions=instructions)
