"""End-to-end tests for the assembled telemetry pipeline.

Fake sources stand in for psutil so counts are deterministic; the event
bus, sampler threads, live view and SQLite store are all real.
"""

import dataclasses
import time

from fakes import FakeSource, fake_sources
from hostpulse.config import HostPulseConfig, SamplerConfig, SamplerSettings, StorageConfig
from hostpulse.errors import PersistenceWriteFailure
from hostpulse.exporter.base import BaseExporter
from hostpulse.models import DISK
from hostpulse.service import TelemetryService
from hostpulse.storage import TelemetryStore

FAST = SamplerSettings(sample_interval_ms=100, max_history_points=50)


def _config(settings=FAST):
    return HostPulseConfig(
        sampler=SamplerConfig(settings=settings, source_timeout_seconds=0.5),
        storage=StorageConfig(prune_on_start=False),
    )


class FlakyStore(TelemetryStore):
    """Fails every cpu write."""

    def append(self, kind, sample):
        if kind == "cpu":
            raise PersistenceWriteFailure("disk full")
        return super().append(kind, sample)


class CollectingExporter(BaseExporter):
    kinds = ("cpu",)

    def __init__(self):
        super().__init__()
        self.exported = []
        self.closed = False

    def export(self, kind, sample):
        self.exported.append((kind, sample.timestamp_ms))

    def shutdown(self):
        self.detach()
        self.closed = True


def test_samples_reach_live_view_and_store():
    store = TelemetryStore()
    service = TelemetryService(_config(), sources=fake_sources(), store=store)
    service.start()
    assert service.is_running
    assert service.live.is_sampling
    time.sleep(0.35)
    service.stop()
    assert service.flush(2)

    ticks = service.sampler.tick_count
    assert ticks >= 3
    live_cpu = service.live.all("cpu")
    assert len(live_cpu) == ticks
    assert store.count("cpu") == ticks
    assert store.count("network") == 2 * ticks
    # disk is sampled once at start and stored like any other kind
    assert len(service.live.all(DISK)) == 1
    assert store.count(DISK) == 3

    stored = [r["timestamp"] for r in store.query("cpu")]
    assert stored == [s.timestamp_ms for s in live_cpu]
    service.shutdown()
    assert store.closed


def test_write_failure_does_not_stop_sampling():
    store = FlakyStore()
    service = TelemetryService(_config(), sources=fake_sources(), store=store)
    service.start()
    time.sleep(0.25)
    service.stop()
    service.flush(2)
    assert service.write_failures == service.sampler.tick_count >= 2
    assert store.count("cpu") == 0
    assert store.count("memory") == service.sampler.tick_count
    assert len(service.live.all("cpu")) == service.sampler.tick_count
    service.shutdown()


def test_update_settings_resizes_live_history():
    service = TelemetryService(_config(), sources=fake_sources(), store=TelemetryStore())
    for _ in range(30):
        service.sampler._tick()
    service.flush(2)
    assert len(service.live.all("cpu")) == 30

    service.update_settings(max_history_points=10)
    assert service.get_settings().max_history_points == 10
    assert service.live.capacities()["cpu"] == 10
    assert service.live.capacities()["processes"] == 20
    assert len(service.live.all("cpu")) == 10
    service.shutdown()


def test_slow_source_does_not_stall_other_kinds():
    sources = fake_sources(memory=FakeSource("memory", delay=2.0))
    service = TelemetryService(_config(dataclasses.replace(FAST, enable_disk=False)),
                               sources=sources, store=TelemetryStore())
    service.sampler._tick()
    service.flush(2)
    assert len(service.live.all("cpu")) == 1
    assert service.live.all("memory") == []
    service.shutdown()


def test_exporters_attached_and_shut_down():
    exporter = CollectingExporter()
    with TelemetryService(_config(), sources=fake_sources(), store=TelemetryStore(),
                          exporters=[exporter]) as service:
        service.sampler._tick()
        service.flush(2)
        assert len(exporter.exported) == 1
        assert exporter.exported[0][0] == "cpu"
    assert exporter.closed


def test_startup_prune(tmp_path):
    from fakes import cpu_sample

    path = tmp_path / "t.db"
    with TelemetryStore(path) as store:
        store.append("cpu", cpu_sample(ts=1))  # 1970: far past retention
    cfg = HostPulseConfig(storage=StorageConfig(db_path=str(path), retention_days=7))
    service = TelemetryService(cfg, sources=fake_sources())
    assert service.store.count("cpu") == 0
    service.shutdown()


def test_storage_disabled():
    cfg = HostPulseConfig(storage=StorageConfig(enabled=False))
    service = TelemetryService(cfg, sources=fake_sources())
    assert service.store is None
    service.sampler._tick()
    service.flush(2)
    assert len(service.live.all("cpu")) == 1
    service.shutdown()


class BrokenStore(TelemetryStore):
    """Fails every write."""

    def append(self, kind, sample):
        raise PersistenceWriteFailure("read-only")


def test_write_failures_counted_across_kinds():
    service = TelemetryService(_config(dataclasses.replace(FAST, enable_disk=False)),
                               sources=fake_sources(), store=BrokenStore())
    for _ in range(20):
        service.sampler._tick()
    service.flush(2)
    # cpu, memory, network and processes each fail on every tick
    assert service.write_failures == 4 * 20
    service.shutdown()
