"""
Apple Foundation Models backend for the chat orchestrator.

Each request runs on a fresh ``LanguageModelSession``; the conversation history
is rendered into the prompt, newest turns first to survive the character budget.
``LanguageModelSession.stream_response`` yields snapshots of the full response
so far, which is exactly what the orchestrator expects.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any

from .availability import classify
from .exceptions import ContextWindowExceededError, GenerationError, describe_error
from .models import Role
from .protocols import create_model, create_session

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from .availability import ReadinessSignal
    from .models import Message

logger = logging.getLogger("foundation_chat.runtime")

DEFAULT_CONTEXT_CHARS = 12_000

REPLY_INSTRUCTIONS = (
    "You are a helpful assistant inside an on-device chat app. "
    "Answer the user's latest message, using the earlier conversation as context. "
    "Respond in Markdown and keep answers concise."
)

SUMMARY_INSTRUCTIONS = (
    "You write short summaries of chat conversations for a conversation list. "
    "Reply with a single plain sentence of at most twelve words. "
    "No quotes, no Markdown, no preamble."
)


def _is_context_overflow(exc: BaseException) -> bool:
    error_str = f"{type(exc).__name__}: {exc}"
    return (
        "Context window size exceeded" in error_str
        or "ExceededContextWindowSizeError" in error_str
    )


def render_transcript(
    messages: Sequence[Message], budget_chars: int = DEFAULT_CONTEXT_CHARS
) -> str:
    """Render *messages* as a plain transcript, dropping the oldest turns past *budget_chars*.

    Empty assistant messages (placeholders that never received text) are skipped.
    """
    blocks: list[str] = []
    used = 0
    for message in reversed(messages):
        text = message.content.strip()
        if message.role is Role.ASSISTANT and not text:
            continue
        speaker = "USER" if message.role is Role.USER else "ASSISTANT"
        block = f"{speaker}: {text}"
        if blocks and used + len(block) > budget_chars:
            break
        blocks.append(block)
        used += len(block) + 2
    blocks.reverse()
    rendered = "\n\n".join(blocks)
    if len(rendered) > budget_chars:
        rendered = rendered[-budget_chars:]
    return rendered


def build_reply_prompt(
    context: Sequence[Message], budget_chars: int = DEFAULT_CONTEXT_CHARS
) -> str:
    """Prompt for the next assistant turn: prior history plus the latest user message."""
    history = list(context)
    latest = ""
    if history and history[-1].role is Role.USER:
        latest = history.pop().content
    transcript = render_transcript(history, budget_chars)
    return "\n\n".join(
        [
            "Conversation so far:",
            transcript or "(no prior messages)",
            "Latest user message:",
            latest,
        ]
    )


def build_summary_prompt(
    context: Sequence[Message], budget_chars: int = DEFAULT_CONTEXT_CHARS
) -> str:
    transcript = render_transcript(context, budget_chars)
    return "\n\n".join(
        [
            "Summarize this conversation:",
            transcript or "(empty conversation)",
        ]
    )


class AppleFMRuntime:
    """:class:`~foundation_chat.protocols.ModelRuntime` on ``apple_fm_sdk``."""

    def __init__(
        self,
        model: Any | None = None,
        *,
        reply_instructions: str = REPLY_INSTRUCTIONS,
        summary_instructions: str = SUMMARY_INSTRUCTIONS,
        context_chars: int = DEFAULT_CONTEXT_CHARS,
    ) -> None:
        if context_chars <= 0:
            raise ValueError("context_chars must be > 0")
        self._model = model
        self.reply_instructions = reply_instructions
        self.summary_instructions = summary_instructions
        self.context_chars = context_chars
        self._warm_session: Any | None = None
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def model(self) -> Any:
        """The ``SystemLanguageModel``, created on first use."""
        if self._model is None:
            self._model = create_model()
        return self._model

    def check_availability(self) -> ReadinessSignal:
        is_available, reason = self.model.is_available()
        return bool(is_available), reason

    def _declines(self, purpose: str) -> bool:
        state = classify(self.check_availability())
        if state.is_available:
            return False
        logger.info(
            "[FoundationChat Runtime] Model unavailable (%s); skipping %s stream.",
            state.title,
            purpose,
        )
        return True

    async def stream_reply(self, context: Sequence[Message]) -> AsyncIterator[str] | None:
        if self._declines("reply"):
            return None
        session, self._warm_session = self._warm_session, None
        if session is None:
            session = create_session(self.reply_instructions, self.model)
        prompt = build_reply_prompt(context, self.context_chars)
        return self._guarded(session.stream_response(prompt))

    async def stream_summary(self, context: Sequence[Message]) -> AsyncIterator[str] | None:
        if self._declines("summary"):
            return None
        session = create_session(self.summary_instructions, self.model)
        prompt = build_summary_prompt(context, self.context_chars)
        return self._guarded(session.stream_response(prompt))

    async def _guarded(self, stream: AsyncIterator[Any]) -> AsyncIterator[str]:
        """Re-raise SDK failures as :class:`GenerationError` subclasses."""
        try:
            async for snapshot in stream:
                yield str(snapshot)
        except GenerationError:
            raise
        except Exception as exc:
            if _is_context_overflow(exc):
                raise ContextWindowExceededError(
                    "The conversation is too long for the on-device model's context window."
                ) from exc
            raise GenerationError(describe_error(exc)) from exc

    def prewarm(self) -> None:
        """Prepare a reply session ahead of the first message; the next reply reuses it."""
        if self._warm_session is not None:
            return
        session = create_session(self.reply_instructions, self.model)
        self._warm_session = session
        prewarm = getattr(session, "prewarm", None)
        if not callable(prewarm):
            logger.debug("[FoundationChat Runtime] Session has no prewarm(); nothing to do.")
            return
        result = prewarm()
        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("[FoundationChat Runtime] No running loop; dropping async prewarm.")
                if inspect.iscoroutine(result):
                    result.close()
                return
            task = loop.create_task(self._await_prewarm(result))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    @staticmethod
    async def _await_prewarm(awaitable: Any) -> None:
        try:
            await awaitable
        except Exception:
            logger.debug("[FoundationChat Runtime] Prewarm failed.", exc_info=True)
