"""Wires sampler, event bus, persistence and live view together."""

from __future__ import annotations

import logging
import threading
from typing import Any

from .bus import EventBus, Subscription
from .collector import MetricSource, default_sources
from .collector.sampler import Sampler
from .config import HostPulseConfig, SamplerSettings
from .errors import PersistenceWriteFailure
from .exporter.base import BaseExporter
from .live import LiveView
from .models import METRIC_KINDS, Sample
from .storage import TelemetryStore

logger = logging.getLogger(__name__)


class TelemetryService:
    """The whole pipeline behind one control surface.

    The sampler publishes on the bus; the store and the live view each
    subscribe per kind on their own dispatch threads, so a slow disk write
    never holds up live delivery (or the reverse).  Write failures are
    logged and counted; sampling carries on.
    """

    def __init__(
        self,
        config: HostPulseConfig | None = None,
        sources: dict[str, MetricSource] | None = None,
        store: TelemetryStore | None = None,
        exporters: list[BaseExporter] | None = None,
    ) -> None:
        self._config = config or HostPulseConfig()
        cfg = self._config
        self.bus = EventBus()
        self.sampler = Sampler(
            sources if sources is not None else default_sources(cfg.sampler.process_limit),
            bus=self.bus,
            settings=cfg.sampler.settings,
            host_id=cfg.host_id,
            source_timeout=cfg.sampler.source_timeout_seconds,
        )
        self.live = LiveView(cfg.sampler.settings, cfg.live.capacity_overrides)

        if store is None and cfg.storage.enabled:
            store = TelemetryStore(cfg.storage.db_path)
        self.store = store
        self.write_failures = 0
        self._failures_lock = threading.Lock()
        self._exporters = list(exporters or [])
        self._subscriptions: list[Subscription] = []

        for kind in METRIC_KINDS:
            self._subscriptions.append(
                self.bus.subscribe(kind, self.live.handler(kind), name=f"live-{kind}")
            )
            if self.store is not None:
                self._subscriptions.append(self.bus.subscribe(
                    kind, self._persist_handler(kind, self.store), name=f"store-{kind}",
                ))
        for exporter in self._exporters:
            exporter.attach(self.bus)

        if self.store is not None and cfg.storage.prune_on_start:
            try:
                self.store.prune(cfg.storage.retention_days)
            except PersistenceWriteFailure:
                logger.exception("Startup prune failed")

    def _persist_handler(self, kind: str, store: TelemetryStore):
        def _persist(sample: Sample) -> None:
            try:
                store.append(kind, sample)
            except PersistenceWriteFailure:
                with self._failures_lock:
                    self.write_failures += 1
                logger.exception("Dropping %s sample from storage", kind)
        return _persist

    # -- control surface ------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.sampler.is_running

    def start(self) -> None:
        self.sampler.start()
        self.live.is_sampling = True

    def stop(self) -> None:
        self.sampler.stop()
        self.live.is_sampling = False

    def get_settings(self) -> SamplerSettings:
        return self.sampler.get_settings()

    def update_settings(self, partial: dict[str, Any] | None = None, **changes: Any) -> SamplerSettings:
        settings = self.sampler.update_settings(partial, **changes)
        self.live.apply_settings(settings)
        return settings

    def flush(self, timeout: float | None = 5.0) -> bool:
        """Wait until every published sample has reached its consumers."""
        return self.bus.flush(timeout)

    def shutdown(self) -> None:
        """Stop sampling, deliver what is queued, then close storage."""
        self.stop()
        self.bus.flush(5.0)
        for exporter in self._exporters:
            try:
                exporter.shutdown()
            except Exception:
                logger.exception("Exporter %s shutdown failed", type(exporter).__name__)
        self.bus.close()
        self.sampler.close()
        if self.store is not None:
            self.store.close()
        logger.info("TelemetryService shut down")

    def __enter__(self) -> TelemetryService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
