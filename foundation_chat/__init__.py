"""
FoundationChat: a local chat shell around the on-device Apple Foundation Model.

Each turn appends the user's message, streams the assistant's reply into the
conversation, then streams a refreshed one-line summary of the conversation.
Conversations are kept in a local sqlite database; nothing leaves the device.

The Apple Foundation Models SDK (``apple-fm-sdk``) is imported on first use, so
conversation storage and the orchestration core work without it.
"""

from .availability import AvailabilityKind, AvailabilityState, classify
from .config import ChatConfig
from .exceptions import (
    AppleFMSetupError,
    FoundationChatError,
    GenerationError,
    StorageError,
)
from .models import Conversation, Message, Role, sort_conversations
from .orchestrator import (
    ChatEvent,
    ChatOrchestrator,
    StreamOutcome,
    StreamStatus,
    TurnOutcome,
    TurnPhase,
)
from .runtime import AppleFMRuntime
from .store import SQLiteConversationStore

__all__ = [
    "AppleFMRuntime",
    "AppleFMSetupError",
    "AvailabilityKind",
    "AvailabilityState",
    "ChatConfig",
    "ChatEvent",
    "ChatOrchestrator",
    "Conversation",
    "FoundationChatError",
    "GenerationError",
    "Message",
    "Role",
    "SQLiteConversationStore",
    "StorageError",
    "StreamOutcome",
    "StreamStatus",
    "TurnOutcome",
    "TurnPhase",
    "classify",
    "sort_conversations",
]
