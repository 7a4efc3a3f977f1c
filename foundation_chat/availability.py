"""
Maps the on-device model's readiness signal to a user-facing availability state.

``apple_fm_sdk.SystemLanguageModel.is_available()`` reports readiness as an
``(is_available, reason)`` pair. :func:`classify` turns that pair into exactly one
:class:`AvailabilityState`, each carrying the fixed title, icon and description
shown when chat cannot run.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

ReadinessSignal = tuple[bool, Any]


class AvailabilityKind(str, Enum):
    AVAILABLE = "available"
    DEVICE_INCOMPATIBLE = "device_incompatible"
    INTELLIGENCE_DISABLED = "intelligence_disabled"
    MODEL_DOWNLOADING = "model_downloading"
    UNKNOWN = "unknown"


_TITLES = {
    AvailabilityKind.AVAILABLE: "",
    AvailabilityKind.DEVICE_INCOMPATIBLE: "Device Not Compatible",
    AvailabilityKind.INTELLIGENCE_DISABLED: "Apple Intelligence Not Enabled",
    AvailabilityKind.MODEL_DOWNLOADING: "Model Downloading",
    AvailabilityKind.UNKNOWN: "Apple Intelligence Unavailable",
}

_SYSTEM_IMAGES = {
    AvailabilityKind.AVAILABLE: "",
    AvailabilityKind.DEVICE_INCOMPATIBLE: "exclamationmark.triangle.fill",
    AvailabilityKind.INTELLIGENCE_DISABLED: "brain.head.profile.fill",
    AvailabilityKind.MODEL_DOWNLOADING: "arrow.down.circle.fill",
    AvailabilityKind.UNKNOWN: "brain.head.profile.fill",
}

_DESCRIPTIONS = {
    AvailabilityKind.AVAILABLE: "",
    AvailabilityKind.DEVICE_INCOMPATIBLE: (
        "Your device doesn't support Apple Intelligence. "
        "A compatible device is required for chat functionality."
    ),
    AvailabilityKind.INTELLIGENCE_DISABLED: (
        "Apple Intelligence is required for chat functionality. "
        "Please enable it in Settings > Apple Intelligence & Siri."
    ),
    AvailabilityKind.MODEL_DOWNLOADING: (
        "The language model is still downloading. "
        "Please wait for the download to complete before using chat functionality."
    ),
}

# Normalized reason names (lowercase, alphanumerics only) -> kind.
_KNOWN_REASONS = {
    "devicenoteligible": AvailabilityKind.DEVICE_INCOMPATIBLE,
    "appleintelligencenotenabled": AvailabilityKind.INTELLIGENCE_DISABLED,
    "modelnotready": AvailabilityKind.MODEL_DOWNLOADING,
}

UNSPECIFIED_REASON = "unspecified"


@dataclass(frozen=True)
class AvailabilityState:
    """One of the closed set of availability states.

    ``reason`` is only populated for :attr:`AvailabilityKind.UNKNOWN`.
    """

    kind: AvailabilityKind
    reason: str = ""

    @property
    def is_available(self) -> bool:
        return self.kind is AvailabilityKind.AVAILABLE

    @property
    def can_recheck(self) -> bool:
        """Whether the state may resolve by itself, so offering "Check Again" makes sense."""
        return self.kind in (
            AvailabilityKind.MODEL_DOWNLOADING,
            AvailabilityKind.INTELLIGENCE_DISABLED,
        )

    @property
    def title(self) -> str:
        return _TITLES[self.kind]

    @property
    def system_image(self) -> str:
        return _SYSTEM_IMAGES[self.kind]

    @property
    def description(self) -> str:
        if self.kind is AvailabilityKind.UNKNOWN:
            return f"Apple Intelligence is currently unavailable: {self.reason}"
        return _DESCRIPTIONS[self.kind]


AVAILABLE = AvailabilityState(AvailabilityKind.AVAILABLE)
DEVICE_INCOMPATIBLE = AvailabilityState(AvailabilityKind.DEVICE_INCOMPATIBLE)
INTELLIGENCE_DISABLED = AvailabilityState(AvailabilityKind.INTELLIGENCE_DISABLED)
MODEL_DOWNLOADING = AvailabilityState(AvailabilityKind.MODEL_DOWNLOADING)


@dataclass(frozen=True)
class ScreenMetadata:
    title: str
    system_image: str
    description: str


MODEL_REQUIRED_SCREEN = ScreenMetadata(
    title="Apple Intelligence Required",
    system_image="brain.head.profile.fill",
    description=(
        "This app requires Apple Intelligence to be available for chat functionality. "
        "Please ensure your device supports it and it's enabled in Settings."
    ),
)


def _reason_key(reason: Any) -> str:
    name = getattr(reason, "name", None)
    if not isinstance(name, str):
        name = str(reason)
    return re.sub(r"[^a-z0-9]", "", name.lower())


def classify(signal: ReadinessSignal) -> AvailabilityState:
    """Map a readiness signal to exactly one :class:`AvailabilityState`.

    Recognized reasons are matched by name so enum members, ``snake_case``,
    ``camelCase`` and qualified forms (``Reason.MODEL_NOT_READY``) all resolve.
    Any other reason is kept verbatim in an ``UNKNOWN`` state.
    """
    is_available, reason = signal
    if is_available:
        return AVAILABLE
    if reason is None:
        return AvailabilityState(AvailabilityKind.UNKNOWN, UNSPECIFIED_REASON)

    key = _reason_key(reason)
    for known, kind in _KNOWN_REASONS.items():
        if key.endswith(known):
            return AvailabilityState(kind)
    return AvailabilityState(AvailabilityKind.UNKNOWN, str(reason))
