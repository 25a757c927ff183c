"""Base interface for metric sources."""

from __future__ import annotations

import abc
import time
from dataclasses import dataclass

from ..models import DEFAULT_HOST_ID, Sample


def now_ms() -> int:
    """Wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SampleContext:
    """Per-tick information handed to every source."""

    host_id: str = DEFAULT_HOST_ID
    timestamp_ms: int = 0


class MetricSource(abc.ABC):
    """Abstract base class for per-kind metric sources.

    A source returns exactly one sample per call.  Raising any exception
    marks the source as unavailable for that tick; the sampler logs it and
    carries on with the other kinds.
    """

    @property
    @abc.abstractmethod
    def kind(self) -> str:
        """Metric kind this source produces."""

    @abc.abstractmethod
    def sample(self, ctx: SampleContext) -> Sample:
        """Collect one sample stamped with ``ctx.host_id`` and ``ctx.timestamp_ms``."""

    def close(self) -> None:
        """Release any resources held by the source."""
