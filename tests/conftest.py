"""Shared fakes for the FoundationChat test suite."""

import asyncio
import sys
import types
from unittest.mock import MagicMock

import pytest

from foundation_chat.store import SQLiteConversationStore


class Pause:
    """Script step that blocks the stream until ``event`` is set."""

    def __init__(self, event: asyncio.Event | None = None):
        self.event = event or asyncio.Event()


class ScriptedRuntime:
    """In-memory ModelRuntime driven by per-stream scripts.

    A script is a list of parts; an ``Exception`` instance in the list is raised
    at that point and a :class:`Pause` waits for its event. ``None`` instead of
    a list makes the runtime decline the stream.
    """

    def __init__(self, reply=(), summary=(), available=(True, None)):
        self.reply = None if reply is None else list(reply)
        self.summary = None if summary is None else list(summary)
        self.available = available
        self.calls: list[tuple[str, list[str]]] = []
        self.prewarm_calls = 0
        self.prewarm_error: Exception | None = None
        self.active = 0
        self.max_active = 0

    def check_availability(self):
        if isinstance(self.available, Exception):
            raise self.available
        return self.available

    async def stream_reply(self, context):
        self.calls.append(("reply", [message.content for message in context]))
        if self.reply is None:
            return None
        return self._play(self.reply)

    async def stream_summary(self, context):
        self.calls.append(("summary", [message.content for message in context]))
        if self.summary is None:
            return None
        return self._play(self.summary)

    def prewarm(self):
        self.prewarm_calls += 1
        if self.prewarm_error is not None:
            raise self.prewarm_error

    async def _play(self, script):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            for step in script:
                if isinstance(step, Exception):
                    raise step
                if isinstance(step, Pause):
                    await step.event.wait()
                    continue
                yield step
        finally:
            self.active -= 1

    @property
    def call_order(self) -> list[str]:
        return [kind for kind, _ in self.calls]


class RecordingStore:
    """ConversationStore that records calls and can be told to fail."""

    def __init__(self, fail_save: bool = False):
        self.fail_save = fail_save
        self.saved: list[tuple[str, list[str], str]] = []
        self.inserted: list[str] = []
        self.deleted: list[str] = []
        self.conversations: dict = {}

    def insert(self, conversation):
        self.inserted.append(conversation.id)
        self.conversations[conversation.id] = conversation

    def save(self, conversation):
        if self.fail_save:
            raise OSError("disk full")
        self.saved.append(
            (
                conversation.id,
                [message.content for message in conversation.messages],
                conversation.summary,
            )
        )
        self.conversations[conversation.id] = conversation

    def delete(self, conversation):
        self.deleted.append(conversation.id)
        self.conversations.pop(conversation.id, None)

    def query(self):
        return list(self.conversations.values())


async def wait_until(predicate, attempts: int = 500) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def make_mock_model(available: bool = True, reason=None) -> MagicMock:
    model = MagicMock(name="SystemLanguageModel()")
    model.is_available.return_value = (available, reason)
    return model


async def _snapshots(parts, error=None):
    for part in parts:
        yield part
    if error is not None:
        raise error


def make_streaming_session(parts=("Hi",), error=None, with_prewarm=True) -> MagicMock:
    attrs = ["stream_response", "prewarm"] if with_prewarm else ["stream_response"]
    session = MagicMock(spec=attrs)
    session.stream_response = MagicMock(side_effect=lambda prompt: _snapshots(parts, error))
    return session


@pytest.fixture
def fake_fm(monkeypatch):
    """Install a stand-in ``apple_fm_sdk`` module with an available model."""
    module = types.ModuleType("apple_fm_sdk")
    module.SystemLanguageModel = MagicMock(return_value=make_mock_model(available=True))
    module.LanguageModelSession = MagicMock(return_value=make_streaming_session())
    monkeypatch.setitem(sys.modules, "apple_fm_sdk", module)
    return module


@pytest.fixture
def no_fm(monkeypatch):
    """Make ``import apple_fm_sdk`` fail."""
    monkeypatch.setitem(sys.modules, "apple_fm_sdk", None)


@pytest.fixture
def store(tmp_path):
    store = SQLiteConversationStore(tmp_path / "chat.sqlite3")
    yield store
    store.close()


@pytest.fixture
def recording_store():
    return RecordingStore()
