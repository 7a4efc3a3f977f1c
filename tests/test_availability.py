"""
Tests for foundation_chat.availability (readiness classification).
"""

from enum import Enum

import pytest

from foundation_chat.availability import (
    AVAILABLE,
    MODEL_REQUIRED_SCREEN,
    AvailabilityKind,
    AvailabilityState,
    classify,
)


class Reason(Enum):
    DEVICE_NOT_ELIGIBLE = 1
    APPLE_INTELLIGENCE_NOT_ENABLED = 2
    MODEL_NOT_READY = 3


class TestClassify:
    def test_available_ignores_reason(self):
        assert classify((True, "model_not_ready")) is AVAILABLE
        assert classify((True, None)).is_available

    @pytest.mark.parametrize(
        "reason, kind",
        [
            (Reason.DEVICE_NOT_ELIGIBLE, AvailabilityKind.DEVICE_INCOMPATIBLE),
            (Reason.APPLE_INTELLIGENCE_NOT_ENABLED, AvailabilityKind.INTELLIGENCE_DISABLED),
            (Reason.MODEL_NOT_READY, AvailabilityKind.MODEL_DOWNLOADING),
            ("device_not_eligible", AvailabilityKind.DEVICE_INCOMPATIBLE),
            ("appleIntelligenceNotEnabled", AvailabilityKind.INTELLIGENCE_DISABLED),
            ("Reason.MODEL_NOT_READY", AvailabilityKind.MODEL_DOWNLOADING),
            ("model not ready", AvailabilityKind.MODEL_DOWNLOADING),
        ],
    )
    def test_known_reasons(self, reason, kind):
        state = classify((False, reason))
        assert state.kind is kind
        assert state.reason == ""
        assert not state.is_available

    def test_unknown_reason_kept_verbatim(self):
        state = classify((False, "thermal throttling"))
        assert state.kind is AvailabilityKind.UNKNOWN
        assert state.reason == "thermal throttling"
        assert state.description == (
            "Apple Intelligence is currently unavailable: thermal throttling"
        )

    def test_missing_reason_is_unspecified(self):
        state = classify((False, None))
        assert state.kind is AvailabilityKind.UNKNOWN
        assert state.reason == "unspecified"

    def test_classification_is_pure(self):
        assert classify((False, "model_not_ready")) == classify((False, "model_not_ready"))


class TestStateMetadata:
    def test_device_incompatible(self):
        state = AvailabilityState(AvailabilityKind.DEVICE_INCOMPATIBLE)
        assert state.title == "Device Not Compatible"
        assert state.system_image == "exclamationmark.triangle.fill"
        assert "doesn't support Apple Intelligence" in state.description

    def test_intelligence_disabled(self):
        state = AvailabilityState(AvailabilityKind.INTELLIGENCE_DISABLED)
        assert state.title == "Apple Intelligence Not Enabled"
        assert state.system_image == "brain.head.profile.fill"
        assert "Settings > Apple Intelligence & Siri" in state.description

    def test_model_downloading(self):
        state = AvailabilityState(AvailabilityKind.MODEL_DOWNLOADING)
        assert state.title == "Model Downloading"
        assert state.system_image == "arrow.down.circle.fill"
        assert "still downloading" in state.description

    def test_unknown(self):
        state = AvailabilityState(AvailabilityKind.UNKNOWN, "x")
        assert state.title == "Apple Intelligence Unavailable"
        assert state.system_image == "brain.head.profile.fill"

    @pytest.mark.parametrize(
        "kind, expected",
        [
            (AvailabilityKind.AVAILABLE, False),
            (AvailabilityKind.DEVICE_INCOMPATIBLE, False),
            (AvailabilityKind.INTELLIGENCE_DISABLED, True),
            (AvailabilityKind.MODEL_DOWNLOADING, True),
            (AvailabilityKind.UNKNOWN, False),
        ],
    )
    def test_can_recheck(self, kind, expected):
        assert AvailabilityState(kind).can_recheck is expected

    def test_model_required_screen(self):
        assert MODEL_REQUIRED_SCREEN.title == "Apple Intelligence Required"
        assert MODEL_REQUIRED_SCREEN.system_image == "brain.head.profile.fill"
