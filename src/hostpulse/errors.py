"""Exception types raised by hostpulse."""

from __future__ import annotations


class HostPulseError(Exception):
    """Base class for all hostpulse errors."""


class SourceUnavailable(HostPulseError):
    """A metric source failed or timed out for one tick."""

    def __init__(self, kind: str, reason: str = "") -> None:
        self.kind = kind
        self.reason = reason
        msg = f"{kind} source unavailable"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class InvalidCapacity(HostPulseError, ValueError):
    """Ring buffer created or resized with a capacity that is not positive."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"Ring buffer capacity must be greater than 0 (got {capacity})")


class InvalidSettings(HostPulseError, ValueError):
    """Sampler settings outside their allowed bounds."""

    def __init__(self, problems: dict[str, str]) -> None:
        self.problems = dict(problems)
        detail = "; ".join(f"{k}: {v}" for k, v in sorted(self.problems.items()))
        super().__init__(f"Invalid sampler settings ({detail})")

    @property
    def fields(self) -> list[str]:
        return sorted(self.problems)


class PersistenceWriteFailure(HostPulseError):
    """A durable append did not complete; nothing from the sample was stored."""


class PersistenceQueryFailure(HostPulseError):
    """A query or export could not be answered."""
