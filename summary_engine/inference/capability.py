"""Interface to the opaque on-device inference capability."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from summary_engine.processing.types import PartialSummary, Summary


# ── Availability ───────────────────────────────────────────────────────────────


class UnavailableReason(str, Enum):
    """Why the inference capability cannot be used right now."""

    APPLE_INTELLIGENCE_NOT_ENABLED = "apple_intelligence_not_enabled"
    DEVICE_NOT_SUPPORTED = "device_not_supported"
    MODEL_NOT_READY = "model_not_ready"
    OTHER = "other"


@dataclass(frozen=True)
class AvailabilityState:
    """Either available, or unavailable with a reason."""

    reason: UnavailableReason | None = None

    @property
    def is_available(self) -> bool:
        return self.reason is None

    @classmethod
    def available(cls) -> AvailabilityState:
        return cls()

    @classmethod
    def unavailable(cls, reason: UnavailableReason) -> AvailabilityState:
        return cls(reason=reason)

    def __str__(self) -> str:
        return "available" if self.reason is None else f"unavailable({self.reason.value})"


# ── Errors ─────────────────────────────────────────────────────────────────────


class InferenceError(Exception):
    """Raised when an inference call fails for a reason with no special handling."""


class GuardrailViolation(InferenceError):
    """The model refused to produce output for content-safety reasons."""


class ContextWindowExceeded(InferenceError):
    """The prompt did not fit in the model's context window."""


# ── Capability ─────────────────────────────────────────────────────────────────


@runtime_checkable
class InferenceCapability(Protocol):
    """Narrow interface the engine uses to reach the model.

    Implementations raise InferenceError (or a subclass) from ``respond`` and
    ``stream_response``.  They must not inspect or expose session internals.
    """

    @property
    def model_version(self) -> str:
        """Identifier that changes whenever the underlying model changes."""
        ...

    def check_availability(self) -> AvailabilityState:
        """Synchronous, side-effect-free point query."""
        ...

    async def respond(self, prompt: str, schema: dict[str, Any]) -> Summary:
        """Generate one complete summary."""
        ...

    def stream_response(self, prompt: str, schema: dict[str, Any]) -> AsyncIterator[PartialSummary]:
        """Yield progressively more complete snapshots; finite, not restartable."""
        ...

    def prewarm(self) -> None:
        """Best-effort latency hint.  Fire-and-forget; never raises."""
        ...
