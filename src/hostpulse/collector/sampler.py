"""Sampler that drives metric sources on a fixed interval."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Any

from ..bus import EventBus
from ..config import SamplerSettings, merge_settings, validate_settings
from ..errors import SourceUnavailable
from ..models import DEFAULT_HOST_ID, DISK, METRIC_KINDS, TELEMETRY, Sample, TelemetryData
from .base import MetricSource, SampleContext, now_ms

logger = logging.getLogger(__name__)


class Sampler:
    """Runs the enabled metric sources on an interval and publishes results.

    Instantiate it with a mapping of kind to :class:`MetricSource` and an
    :class:`EventBus`, then call :meth:`start` / :meth:`stop`.

    Every tick samples the enabled kinds concurrently, waits at most
    *source_timeout* seconds for them, and publishes one
    :class:`TelemetryData` on the ``telemetry`` topic followed by each
    populated sample on its own kind topic.  Disk geometry is sampled once
    per :meth:`start` rather than on every tick.

    Ticks are scheduled against a monotonic clock: the n-th tick is due at
    ``t0 + n * interval``.  A tick that overruns skips the slots it missed
    instead of firing them back to back, so ticks never overlap.
    """

    def __init__(
        self,
        sources: dict[str, MetricSource],
        bus: EventBus | None = None,
        settings: SamplerSettings | None = None,
        host_id: str = DEFAULT_HOST_ID,
        source_timeout: float = 2.0,
    ) -> None:
        self._sources = dict(sources)
        self._bus = bus or EventBus()
        self._settings = validate_settings(settings or SamplerSettings())
        self._host_id = host_id
        self._source_timeout = source_timeout

        self._control = threading.RLock()
        self._thread: threading.Thread | None = None
        self._previous: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, len(METRIC_KINDS)), thread_name_prefix="hostpulse-source",
        )
        self._in_flight: dict[str, Future[Any]] = {}
        self._last_ts = 0
        self._ts_lock = threading.Lock()
        self.tick_count = 0

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def host_id(self) -> str:
        return self._host_id

    @property
    def is_running(self) -> bool:
        return self._thread is not None

    def get_settings(self) -> SamplerSettings:
        """Return the current settings.

        The value is immutable; changing it requires :meth:`update_settings`.
        """
        return self._settings

    def update_settings(self, partial: dict[str, Any] | None = None, **changes: Any) -> SamplerSettings:
        """Merge *partial* into the settings and restart if running.

        Raises :class:`~hostpulse.errors.InvalidSettings` and keeps the old
        settings when the merged result is out of bounds.
        """
        merged_input = dict(partial or {})
        merged_input.update(changes)
        with self._control:
            new_settings = merge_settings(self._settings, merged_input)
            was_running = self.is_running
            if was_running:
                self.stop()
            self._settings = new_settings
            logger.info("Sampler settings updated: %s", new_settings)
            if was_running:
                self.start()
            return new_settings

    # -- collection -----------------------------------------------------

    def _context(self) -> SampleContext:
        with self._ts_lock:
            ts = max(now_ms(), self._last_ts)
            self._last_ts = ts
        return SampleContext(host_id=self._host_id, timestamp_ms=ts)

    def _submit(self, kind: str, ctx: SampleContext) -> Future[Any] | None:
        source = self._sources.get(kind)
        if source is None:
            logger.warning("%s", SourceUnavailable(kind, "no source registered"))
            return None
        previous = self._in_flight.get(kind)
        if previous is not None and not previous.done():
            logger.warning("%s", SourceUnavailable(kind, "previous call still running"))
            return None
        future = self._executor.submit(source.sample, ctx)
        self._in_flight[kind] = future
        return future

    def _collect(self, kinds: list[str]) -> tuple[dict[str, Sample], list[str]]:
        """Sample *kinds* concurrently; return successes and failed kinds."""
        ctx = self._context()
        futures: dict[str, Future[Any]] = {}
        failed: list[str] = []
        for kind in kinds:
            future = self._submit(kind, ctx)
            if future is None:
                failed.append(kind)
            else:
                futures[kind] = future

        if futures:
            wait_futures(list(futures.values()), timeout=self._source_timeout)

        results: dict[str, Sample] = {}
        for kind, future in futures.items():
            if not future.done():
                logger.warning(
                    "%s", SourceUnavailable(kind, f"timed out after {self._source_timeout:.1f}s"),
                )
                failed.append(kind)
                continue
            exc = future.exception()
            if exc is not None:
                logger.error(
                    "%s", SourceUnavailable(kind, repr(exc)),
                    exc_info=(type(exc), exc, exc.__traceback__),
                )
                failed.append(kind)
                continue
            results[kind] = future.result()
        return results, failed

    def collect_once(self) -> TelemetryData:
        """Run one tick's sources synchronously and return the composite."""
        settings = self._settings
        kinds = [k for k in METRIC_KINDS if k != DISK and settings.is_enabled(k)]
        results, failed = self._collect(kinds)
        data = TelemetryData(failed=failed)
        for kind, sample in results.items():
            setattr(data, kind, sample)
        return data

    def _tick(self, stop_event: threading.Event | None = None) -> None:
        data = self.collect_once()
        if stop_event is not None and stop_event.is_set():
            logger.debug("Sampler stopped during tick; results discarded")
            return
        if data.is_empty and data.failed:
            logger.warning("Every enabled source failed this tick: %s", ", ".join(data.failed))
        self._bus.publish(TELEMETRY, data)
        for kind, sample in data.populated():
            self._bus.publish(kind, sample)
        self.tick_count += 1

    def _sample_disk(self) -> None:
        results, _failed = self._collect([DISK])
        sample = results.get(DISK)
        if sample is not None:
            self._bus.publish(DISK, sample)
            logger.info("Disk metrics loaded: %d devices", len(sample.devices))

    def _run(self, stop_event: threading.Event, interval: float) -> None:
        """Background thread loop."""
        next_due = time.monotonic()
        while not stop_event.is_set():
            try:
                self._tick(stop_event)
            except Exception:
                logger.exception("Sampler tick failed")
            next_due += interval
            now = time.monotonic()
            if next_due <= now:
                skipped = int((now - next_due) // interval) + 1
                next_due += skipped * interval
                logger.debug("Tick overran; skipping %d slot(s)", skipped)
            stop_event.wait(next_due - now)

    # -- lifecycle ------------------------------------------------------

    def start(self) -> None:
        """Start sampling in the background.  No-op when already running.

        A thread left over from a previous run that outlived its stop
        timeout is joined first, so at most one loop exists at a time.
        """
        with self._control:
            if self._thread is not None:
                return
            previous = self._previous
            if previous is not None and previous is not threading.current_thread():
                # bounded: a tick waits at most source_timeout for its sources
                previous.join()
            self._previous = None
            settings = self._settings
            stop_event = threading.Event()
            self._stop_event = stop_event

            if settings.enable_disk:
                self._sample_disk()

            self._thread = threading.Thread(
                target=self._run,
                args=(stop_event, settings.interval_seconds),
                name="hostpulse-sampler",
                daemon=True,
            )
            self._thread.start()
            logger.info("Sampler started (interval=%dms)", settings.sample_interval_ms)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop sampling.  No tick publishes after this returns.

        The join budget is at least one source timeout plus one interval,
        which covers an in-flight tick.  A tick interrupted by stop discards
        its results instead of publishing them.
        """
        with self._control:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            self._thread = None
            self._previous = thread
            if thread is not threading.current_thread():
                budget = max(timeout, self._source_timeout + self._settings.interval_seconds)
                thread.join(timeout=budget)
                if thread.is_alive():
                    logger.warning("Sampler thread did not finish within %.1fs", budget)
                else:
                    self._previous = None
            logger.info("Sampler stopped")

    def close(self) -> None:
        """Stop sampling and release the source worker pool."""
        self.stop()
        self._executor.shutdown(wait=False)
        for source in self._sources.values():
            try:
                source.close()
            except Exception:
                logger.exception("Closing %s source failed", source.kind)
