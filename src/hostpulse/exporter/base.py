"""Base interface for live-stream exporters."""

from __future__ import annotations

import abc

from ..bus import EventBus, Subscription
from ..models import METRIC_KINDS, Sample


class BaseExporter(abc.ABC):
    """Abstract base for exporters that consume samples from the event bus."""

    kinds: tuple[str, ...] = METRIC_KINDS

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    @abc.abstractmethod
    def export(self, kind: str, sample: Sample) -> None:
        """Export one sample of *kind*."""

    @abc.abstractmethod
    def shutdown(self) -> None:
        """Flush and release resources."""

    def attach(self, bus: EventBus) -> None:
        """Subscribe :meth:`export` to every kind in :attr:`kinds`."""
        for kind in self.kinds:
            self._subscriptions.append(bus.subscribe(
                kind,
                lambda sample, kind=kind: self.export(kind, sample),
                name=f"{type(self).__name__}-{kind}",
            ))

    def detach(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()
