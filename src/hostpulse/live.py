"""Live per-kind history and relay to consumer channels."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from .config import SamplerSettings
from .models import METRIC_KINDS, Sample
from .ringbuffer import RingBuffer

logger = logging.getLogger(__name__)

Channel = Callable[[str, dict[str, Any]], None]

CHANNEL_TEMPLATE = "hosts/{host_id}/telemetry/{kind}"


def channel_name(host_id: str, kind: str) -> str:
    return CHANNEL_TEMPLATE.format(host_id=host_id, kind=kind)


class LiveView:
    """Bounded recent history for each metric kind.

    Every incoming sample is pushed into its kind's :class:`RingBuffer` and
    relayed as a payload dict to every registered channel.  Kinds named in
    *capacity_overrides* keep that fixed depth; the others follow
    ``settings.max_history_points`` and are resized by
    :meth:`apply_settings`.

    :meth:`on_sample` is the only writer and is expected to run on a single
    thread (one event bus subscription).  Readers receive copies.
    """

    def __init__(
        self,
        settings: SamplerSettings | None = None,
        capacity_overrides: dict[str, int] | None = None,
    ) -> None:
        settings = settings or SamplerSettings()
        self._overrides = dict(capacity_overrides or {})
        self._buffers: dict[str, RingBuffer[Sample]] = {
            kind: RingBuffer(self._overrides.get(kind, settings.max_history_points))
            for kind in METRIC_KINDS
        }
        self._channels: list[Channel] = []
        self._lock = threading.Lock()
        self.is_sampling = False

    def add_channel(self, send: Channel) -> None:
        """Register a ``send(channel_name, payload)`` callable."""
        with self._lock:
            self._channels.append(send)

    def remove_channel(self, send: Channel) -> None:
        with self._lock:
            if send in self._channels:
                self._channels.remove(send)

    def buffer(self, kind: str) -> RingBuffer[Sample]:
        return self._buffers[kind]

    def on_sample(self, kind: str, sample: Sample) -> None:
        """Record *sample* and relay it to every channel."""
        with self._lock:
            self._buffers[kind].push(sample)
            channels = list(self._channels)
        if not channels:
            return
        name = channel_name(sample.host_id, kind)
        payload = sample.to_dict()
        for send in channels:
            try:
                send(name, payload)
            except Exception:
                logger.exception("Live channel failed for %s", name)

    def handler(self, kind: str) -> Callable[[Sample], None]:
        """Bus handler bound to *kind*."""
        def _handle(sample: Sample) -> None:
            self.on_sample(kind, sample)
        return _handle

    # -- readers --------------------------------------------------------

    def all(self, kind: str) -> list[Sample]:
        with self._lock:
            return self._buffers[kind].all()

    def recent(self, kind: str, count: int) -> list[Sample]:
        with self._lock:
            return self._buffers[kind].recent(count)

    def latest(self, kind: str) -> Sample | None:
        with self._lock:
            return self._buffers[kind].latest()

    def snapshot(self) -> dict[str, list[Sample]]:
        with self._lock:
            return {kind: buf.all() for kind, buf in self._buffers.items()}

    def capacities(self) -> dict[str, int]:
        with self._lock:
            return {kind: buf.capacity for kind, buf in self._buffers.items()}

    # -- reconfiguration ------------------------------------------------

    def apply_settings(self, settings: SamplerSettings) -> None:
        """Resize the buffers that follow ``max_history_points``."""
        with self._lock:
            for kind, buf in self._buffers.items():
                if kind not in self._overrides:
                    buf.resize(settings.max_history_points)

    def resize(self, kind: str, capacity: int) -> None:
        """Give *kind* a fixed depth of *capacity*, keeping the newest samples."""
        with self._lock:
            self._buffers[kind].resize(capacity)
            self._overrides[kind] = capacity

    def clear(self, kind: str | None = None) -> None:
        """Empty one kind's history, or every kind when *kind* is None."""
        with self._lock:
            targets = self._buffers.values() if kind is None else [self._buffers[kind]]
            for buf in targets:
                buf.clear()
