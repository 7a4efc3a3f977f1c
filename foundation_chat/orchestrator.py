"""
Chat turn orchestration over an on-device model.

A turn appends the user's message, streams the assistant reply into a
placeholder message, then streams a fresh conversation summary. Every streamed
part is a snapshot of the full text so far and replaces the previous content.
Failures never escape a turn: a failed stream leaves an ``"Error: ..."`` marker
in place of the text it was producing, a declined stream is a no-op, and
persistence is best-effort.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from .availability import AvailabilityKind, AvailabilityState, classify
from .exceptions import (
    ConversationBusyError,
    ConversationNotFoundError,
    GenerationTimeoutError,
    describe_error,
)
from .models import DEFAULT_SUMMARY, Conversation, Message, Role, sort_conversations, utc_now
from .protocols import ConversationStore, ModelRuntime

logger = logging.getLogger("foundation_chat.orchestrator")

ERROR_MARKER_PREFIX = "Error: "
CANCELLED_MARKER = "[Cancelled]"


class TurnPhase(str, Enum):
    IDLE = "idle"
    USER_MESSAGE_APPENDED = "user_message_appended"
    AWAITING_REPLY_STREAM = "awaiting_reply_stream"
    STREAMING_REPLY = "streaming_reply"
    REPLY_FINALIZED = "reply_finalized"
    AWAITING_SUMMARY_STREAM = "awaiting_summary_stream"
    STREAMING_SUMMARY = "streaming_summary"
    SUMMARY_FINALIZED = "summary_finalized"


class StreamStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    DECLINED = "declined"


@dataclass(frozen=True)
class StreamOutcome:
    """How one streamed phase ended.

    ``message`` is the assistant message a reply stream wrote into; it is
    ``None`` for summaries and for declined replies.
    """

    status: StreamStatus
    parts: int = 0
    error: str | None = None
    message: Message | None = None

    @property
    def ok(self) -> bool:
        return self.status is StreamStatus.COMPLETED


@dataclass(frozen=True)
class TurnOutcome:
    user_message: Message
    reply: StreamOutcome
    summary: StreamOutcome

    @property
    def assistant_message(self) -> Message | None:
        return self.reply.message


@dataclass(frozen=True)
class ChatEvent:
    """State-change notification emitted for every phase transition and streamed part."""

    conversation_id: str
    phase: TurnPhase
    message_id: str | None = None
    content: str = ""


ChatListener = Callable[[ChatEvent], None]
StreamOpener = Callable[[Sequence[Message]], Awaitable[AsyncIterator[Any] | None]]


def error_marker(exc: BaseException) -> str:
    return f"{ERROR_MARKER_PREFIX}{describe_error(exc)}"


def snapshot_text(part: Any) -> str:
    """Full text carried by a streamed part.

    Parts are plain strings or objects with a ``content`` attribute; absent
    content counts as empty text.
    """
    if isinstance(part, str):
        return part
    if hasattr(part, "content"):
        return part.content or ""
    return str(part)


def _with_cancel_marker(content: str) -> str:
    if not content:
        return CANCELLED_MARKER
    return f"{content}\n\n{CANCELLED_MARKER}"


class ChatOrchestrator:
    """Sequences the reply and summary streams of each chat turn.

    All conversation and message mutation goes through this class. At most one
    turn runs per conversation at a time; turns on different conversations may
    run concurrently.

    Args:
        runtime: The model runtime producing reply and summary streams.
        store: Where conversations are persisted.
        first_part_timeout: Seconds to wait for the first part of a stream (``None``: no limit).
        part_idle_timeout: Seconds to wait between parts (``None``: no limit).
        clock: Timestamp source for new conversations and messages.
    """

    def __init__(
        self,
        runtime: ModelRuntime,
        store: ConversationStore,
        *,
        first_part_timeout: float | None = None,
        part_idle_timeout: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.runtime = runtime
        self.store = store
        self.first_part_timeout = first_part_timeout
        self.part_idle_timeout = part_idle_timeout
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._deleted: set[str] = set()
        self._listeners: list[ChatListener] = []

    # -- notifications ------------------------------------------------------

    def add_listener(self, listener: ChatListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChatListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def _emit(
        self,
        conversation: Conversation,
        phase: TurnPhase,
        message: Message | None = None,
        content: str | None = None,
    ) -> None:
        if not self._listeners:
            return
        if content is None:
            content = message.content if message is not None else ""
        event = ChatEvent(
            conversation_id=conversation.id,
            phase=phase,
            message_id=message.id if message is not None else None,
            content=content,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning(
                    "[FoundationChat] Listener %r failed on %s.",
                    listener,
                    phase.value,
                    exc_info=True,
                )

    # -- model readiness ------------------------------------------------------

    def availability(self) -> AvailabilityState:
        """Classify the runtime's current readiness. Never cached."""
        try:
            signal = self.runtime.check_availability()
        except Exception as exc:
            logger.warning("[FoundationChat] Availability check failed: %s", exc)
            return AvailabilityState(AvailabilityKind.UNKNOWN, describe_error(exc))
        return classify(signal)

    def prewarm(self) -> None:
        """Hint the runtime to prepare ahead of first use. Failures are ignored."""
        try:
            self.runtime.prewarm()
        except Exception:
            logger.debug("[FoundationChat] Prewarm failed; ignoring.", exc_info=True)

    # -- conversation lifecycle -------------------------------------------------

    def new_conversation(self, summary: str = DEFAULT_SUMMARY) -> Conversation:
        conversation = Conversation(summary=summary, created_at=self._clock())
        try:
            self.store.insert(conversation)
        except Exception:
            logger.warning(
                "[FoundationChat] Failed to insert conversation %s; keeping it in memory.",
                conversation.id,
                exc_info=True,
            )
        return conversation

    def delete_conversation(self, conversation: Conversation) -> None:
        if self.is_busy(conversation):
            raise ConversationBusyError(
                f"Conversation {conversation.id} has a turn in progress and cannot be deleted."
            )
        self._deleted.add(conversation.id)
        try:
            self.store.delete(conversation)
        except Exception:
            logger.warning(
                "[FoundationChat] Failed to delete conversation %s.",
                conversation.id,
                exc_info=True,
            )

    def list_conversations(self) -> list[Conversation]:
        """All stored conversations, most recent activity first."""
        return sort_conversations(self.store.query())

    def is_busy(self, conversation: Conversation) -> bool:
        lock = self._locks.get(conversation.id)
        return lock is not None and lock.locked()

    @contextlib.asynccontextmanager
    async def _turn(self, conversation: Conversation) -> AsyncIterator[None]:
        """Hold the conversation's lock for one turn; the lock is dropped once unused."""
        key = conversation.id
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                if key in self._deleted:
                    raise ConversationNotFoundError(f"Conversation {key} has been deleted.")
                yield
        finally:
            remaining = self._lock_users.get(key, 1) - 1
            if remaining > 0:
                self._lock_users[key] = remaining
            else:
                self._lock_users.pop(key, None)
                self._locks.pop(key, None)

    def _persist(self, conversation: Conversation) -> None:
        try:
            self.store.save(conversation)
        except Exception:
            logger.warning(
                "[FoundationChat] Failed to persist conversation %s; in-memory state is kept.",
                conversation.id,
                exc_info=True,
            )

    # -- turns --------------------------------------------------------------------

    async def run_turn(self, conversation: Conversation, text: str) -> TurnOutcome:
        """Run a full turn: reply first, then summary, whatever the reply's outcome.

        Raises:
            ConversationNotFoundError: If *conversation* was deleted.
        """
        async with self._turn(conversation):
            try:
                user_message, reply = await self._reply(conversation, text)
                summary = await self._summarize(conversation)
            finally:
                self._emit(conversation, TurnPhase.IDLE)
        return TurnOutcome(user_message=user_message, reply=reply, summary=summary)

    async def send_user_message(self, conversation: Conversation, text: str) -> StreamOutcome:
        """Append *text* as a user message and stream the assistant reply."""
        async with self._turn(conversation):
            _, outcome = await self._reply(conversation, text)
        return outcome

    async def refresh_summary(self, conversation: Conversation) -> StreamOutcome:
        """Stream a new summary of *conversation* into its ``summary`` field."""
        async with self._turn(conversation):
            return await self._summarize(conversation)

    async def _open_stream(
        self, opener: StreamOpener, conversation: Conversation, label: str
    ) -> tuple[AsyncIterator[Any] | None, str | None]:
        try:
            return await opener(list(conversation.messages)), None
        except Exception as exc:
            logger.warning("[FoundationChat] Could not obtain %s stream: %s", label, exc)
            return None, describe_error(exc)

    async def _consume(
        self, stream: AsyncIterator[Any], apply: Callable[[Any], None], label: str
    ) -> None:
        iterator = aiter(stream)
        received = 0
        try:
            while True:
                timeout = self.first_part_timeout if received == 0 else self.part_idle_timeout
                deadline = asyncio.timeout(timeout)
                try:
                    async with deadline:
                        part = await anext(iterator)
                except StopAsyncIteration:
                    return
                except TimeoutError as exc:
                    # A TimeoutError raised by the stream itself is an ordinary failure.
                    if timeout is None or not deadline.expired():
                        raise
                    waited = f"first {label} part" if received == 0 else f"next {label} part"
                    raise GenerationTimeoutError(
                        f"Timed out waiting for {waited} after {timeout:g}s."
                    ) from exc
                received += 1
                apply(part)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()

    async def _reply(self, conversation: Conversation, text: str) -> tuple[Message, StreamOutcome]:
        user_message = conversation.append(
            Message(role=Role.USER, content=text, timestamp=self._clock(), final=True)
        )
        self._persist(conversation)
        self._emit(conversation, TurnPhase.USER_MESSAGE_APPENDED, user_message)

        self._emit(conversation, TurnPhase.AWAITING_REPLY_STREAM)
        stream, open_error = await self._open_stream(
            self.runtime.stream_reply, conversation, "reply"
        )
        if stream is None:
            logger.info("[FoundationChat] No reply stream for conversation %s.", conversation.id)
            self._emit(conversation, TurnPhase.REPLY_FINALIZED)
            return user_message, StreamOutcome(StreamStatus.DECLINED, error=open_error)

        assistant = conversation.append(
            Message(role=Role.ASSISTANT, content="", timestamp=self._clock())
        )
        self._emit(conversation, TurnPhase.STREAMING_REPLY, assistant)
        parts = 0

        def apply(part: Any) -> None:
            nonlocal parts
            parts += 1
            assistant.set_content(snapshot_text(part))
            self._emit(conversation, TurnPhase.STREAMING_REPLY, assistant)

        status, error = StreamStatus.COMPLETED, None
        try:
            await self._consume(stream, apply, "reply")
        except asyncio.CancelledError:
            logger.info("[FoundationChat] Reply stream cancelled after %d part(s).", parts)
            assistant.set_content(_with_cancel_marker(assistant.content))
            assistant.finalize()
            self._persist(conversation)
            self._emit(conversation, TurnPhase.REPLY_FINALIZED, assistant)
            raise
        except Exception as exc:
            logger.warning(
                "[FoundationChat] Reply stream failed after %d part(s): %s", parts, exc
            )
            assistant.set_content(error_marker(exc))
            status, error = StreamStatus.FAILED, describe_error(exc)

        assistant.finalize()
        self._persist(conversation)
        self._emit(conversation, TurnPhase.REPLY_FINALIZED, assistant)
        return user_message, StreamOutcome(status, parts, error, assistant)

    async def _summarize(self, conversation: Conversation) -> StreamOutcome:
        self._emit(conversation, TurnPhase.AWAITING_SUMMARY_STREAM, content=conversation.summary)
        stream, open_error = await self._open_stream(
            self.runtime.stream_summary, conversation, "summary"
        )
        if stream is None:
            self._emit(conversation, TurnPhase.SUMMARY_FINALIZED, content=conversation.summary)
            return StreamOutcome(StreamStatus.DECLINED, error=open_error)

        previous = conversation.summary
        parts = 0

        def apply(part: Any) -> None:
            nonlocal parts
            parts += 1
            conversation.summary = snapshot_text(part)
            self._emit(conversation, TurnPhase.STREAMING_SUMMARY, content=conversation.summary)

        status, error = StreamStatus.COMPLETED, None
        try:
            await self._consume(stream, apply, "summary")
        except asyncio.CancelledError:
            logger.info("[FoundationChat] Summary stream cancelled; restoring previous summary.")
            conversation.summary = previous
            self._emit(conversation, TurnPhase.SUMMARY_FINALIZED, content=previous)
            raise
        except Exception as exc:
            logger.warning("[FoundationChat] Summary stream failed: %s", exc)
            conversation.summary = error_marker(exc)
            status, error = StreamStatus.FAILED, describe_error(exc)

        self._persist(conversation)
        self._emit(conversation, TurnPhase.SUMMARY_FINALIZED, content=conversation.summary)
        return StreamOutcome(status, parts, error)
