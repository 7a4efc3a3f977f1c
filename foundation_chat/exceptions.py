"""
Exception hierarchy and Apple FM SDK setup guards for FoundationChat.
"""

from __future__ import annotations

import importlib
from types import ModuleType

_INSTALL_GUIDE = "https://github.com/apple/python-apple-fm-sdk"


class FoundationChatError(Exception):
    """Base class for every error raised by FoundationChat."""


class AppleFMSetupError(FoundationChatError, RuntimeError):
    """The Apple Foundation Models SDK is missing or the model cannot be used."""


class StorageError(FoundationChatError):
    """A conversation store operation failed."""


class ConversationNotFoundError(FoundationChatError, LookupError):
    """No stored conversation matches the requested identifier."""


class ConversationBusyError(FoundationChatError):
    """A conversation cannot be changed while one of its turns is running."""


class MessageFinalizedError(FoundationChatError):
    """A finalized message was mutated."""


class GenerationError(FoundationChatError):
    """The model stream terminated abnormally."""


class GenerationTimeoutError(GenerationError, TimeoutError):
    """The model stream stopped producing parts within the configured timeout."""


class ContextWindowExceededError(GenerationError):
    """The conversation no longer fits the model's context window."""


def describe_error(exc: BaseException) -> str:
    """Human-readable description of *exc*, falling back to its type name."""
    text = str(exc).strip()
    return text or type(exc).__name__


def require_apple_fm() -> ModuleType:
    """Import ``apple_fm_sdk`` or raise :class:`AppleFMSetupError` with install guidance."""
    try:
        return importlib.import_module("apple_fm_sdk")
    except ImportError as exc:
        raise AppleFMSetupError(
            "[FoundationChat] 'apple-fm-sdk' is not installed.\n"
            "FoundationChat needs the Apple Foundation Models SDK, which is installed manually.\n"
            f"Please follow the installation guide: {_INSTALL_GUIDE}"
        ) from exc

