"""Tests for the sampler state machine and tick pipeline."""

import dataclasses
import threading
import time

import pytest

from fakes import FailingSource, FakeSource, Recorder, fake_sources
from hostpulse.bus import EventBus
from hostpulse.collector.cpu import CpuSource
from hostpulse.collector.sampler import Sampler
from hostpulse.config import SamplerSettings
from hostpulse.errors import InvalidSettings
from hostpulse.models import DISK, MemorySample, TelemetryData, make_memory_sample

ONLY_CPU = SamplerSettings(
    sample_interval_ms=100,
    enable_cpu=True,
    enable_memory=False,
    enable_disk=False,
    enable_network=False,
    enable_processes=False,
)


def _sampler(sources=None, settings=None, **kwargs):
    bus = EventBus()
    sampler = Sampler(sources or fake_sources(), bus=bus, settings=settings or SamplerSettings(), **kwargs)
    return sampler, bus


class TestLifecycle:
    def test_start_twice_keeps_one_timer(self):
        sampler, bus = _sampler(settings=dataclasses.replace(ONLY_CPU, sample_interval_ms=200))
        ticks = Recorder()
        bus.subscribe("telemetry", ticks)
        try:
            sampler.start()
            thread = sampler._thread
            sampler.start()
            assert sampler._thread is thread
            time.sleep(0.5)
        finally:
            sampler.stop()
            sampler.close()
        bus.flush(2)
        # ticks at 0, 200, 400 ms; a second timer would double this
        assert 2 <= len(ticks) <= 4

    def test_stop_is_idempotent_and_keeps_settings(self):
        sampler, bus = _sampler(settings=ONLY_CPU)
        sampler.stop()
        sampler.start()
        assert sampler.is_running
        sampler.stop()
        sampler.stop()
        assert not sampler.is_running
        assert sampler.get_settings() == ONLY_CPU
        sampler.close()

    def test_stop_then_start_resumes(self):
        sampler, bus = _sampler(settings=ONLY_CPU)
        cpu = Recorder()
        bus.subscribe("cpu", cpu)
        sampler.start()
        time.sleep(0.15)
        sampler.stop()
        bus.flush(2)
        after_first_run = len(cpu)
        time.sleep(0.25)
        bus.flush(2)
        assert len(cpu) == after_first_run  # nothing while stopped

        sampler.start()
        time.sleep(0.15)
        sampler.stop()
        sampler.close()
        bus.flush(2)
        assert len(cpu) > after_first_run

    def test_cpu_only_for_250ms(self):
        """Immediate first tick plus one every 100 ms gives 2-3 CPU samples."""
        sampler, bus = _sampler(sources={"cpu": CpuSource()}, settings=ONLY_CPU)
        cpu = Recorder()
        bus.subscribe("cpu", cpu)
        sampler.start()
        time.sleep(0.25)
        sampler.stop()
        sampler.close()
        bus.flush(2)
        assert 2 <= len(cpu) <= 3
        assert cpu.items[0].usage_pct == 0.0
        for sample in cpu.items:
            assert 0.0 <= sample.usage_pct <= 100.0


class TestTick:
    def test_composite_then_per_kind_events(self):
        settings = dataclasses.replace(ONLY_CPU, enable_memory=True, enable_network=True,
                                       enable_processes=True, sample_interval_ms=1000)
        sampler, bus = _sampler(settings=settings)
        composites, memory = Recorder(), Recorder()
        bus.subscribe("telemetry", composites)
        bus.subscribe("memory", memory)
        sampler.start()
        time.sleep(0.1)
        sampler.stop()
        sampler.close()
        bus.flush(2)

        assert len(composites) == 1
        data = composites.items[0]
        assert isinstance(data, TelemetryData)
        assert data.cpu is not None and data.memory is not None
        assert data.network is not None and data.processes is not None
        assert data.disk is None  # disk is sampled at start only
        assert memory.items == [data.memory]
        stamps = {s.timestamp_ms for _, s in data.populated()}
        assert len(stamps) == 1

    def test_failing_source_is_isolated(self):
        failing = FailingSource("memory")
        sources = fake_sources(memory=failing)
        settings = dataclasses.replace(ONLY_CPU, enable_memory=True)
        sampler, bus = _sampler(sources=sources, settings=settings)
        composites, cpu = Recorder(), Recorder()
        bus.subscribe("telemetry", composites)
        bus.subscribe("cpu", cpu)
        sampler.start()
        time.sleep(0.35)
        sampler.stop()
        sampler.close()
        bus.flush(2)

        assert failing.calls >= 2  # later ticks kept running
        assert len(cpu) == len(composites) >= 2
        for data in composites.items:
            assert data.memory is None
            assert data.cpu is not None
            assert data.failed == ["memory"]

    def test_all_sources_failing_still_emits_empty_composite(self):
        sources = {"cpu": FailingSource("cpu")}
        sampler, bus = _sampler(sources=sources, settings=ONLY_CPU)
        data = sampler.collect_once()
        assert data.is_empty
        assert data.failed == ["cpu"]

        composites = Recorder()
        bus.subscribe("telemetry", composites)
        sampler._tick()
        bus.flush(2)
        sampler.close()
        assert len(composites) == 1
        assert composites.items[0].is_empty

    def test_slow_source_times_out(self):
        slow = FakeSource("memory", delay=1.0)
        sources = fake_sources(memory=slow)
        settings = dataclasses.replace(ONLY_CPU, enable_memory=True)
        sampler, _bus = _sampler(sources=sources, settings=settings, source_timeout=0.1)
        started = time.monotonic()
        data = sampler.collect_once()
        elapsed = time.monotonic() - started
        assert elapsed < 0.8
        assert data.cpu is not None
        assert data.memory is None
        assert "memory" in data.failed

        # still running from the previous tick: not stacked, reported failed
        second = sampler.collect_once()
        assert "memory" in second.failed
        assert slow.calls == 1
        sampler.close()

    def test_sources_run_concurrently(self):
        sources = {
            kind: FakeSource(kind, delay=0.3)
            for kind in ("cpu", "memory", "network", "processes")
        }
        settings = dataclasses.replace(ONLY_CPU, enable_memory=True, enable_network=True,
                                       enable_processes=True)
        sampler, _bus = _sampler(sources=sources, settings=settings)
        started = time.monotonic()
        data = sampler.collect_once()
        elapsed = time.monotonic() - started
        sampler.close()
        assert not data.failed
        assert elapsed < 0.9

    def test_timestamps_never_go_backwards(self):
        source = FakeSource("cpu")
        sampler, _bus = _sampler(sources={"cpu": source}, settings=ONLY_CPU)
        sampler._last_ts = 2 ** 50  # pretend the clock stepped back
        sampler.collect_once()
        sampler.collect_once()
        sampler.close()
        stamps = [c.timestamp_ms for c in source.contexts]
        assert stamps == sorted(stamps)
        assert stamps[0] == 2 ** 50

    def test_mocked_memory_usage_ratio(self):
        def build(ctx):
            return make_memory_sample(ctx.host_id, ctx.timestamp_ms,
                                      total=8e9, used=4e9, free=4e9, available=4e9)

        settings = dataclasses.replace(ONLY_CPU, enable_cpu=False, enable_memory=True)
        sampler, bus = _sampler(sources={"memory": FakeSource("memory", build)}, settings=settings)
        memory = Recorder()
        bus.subscribe("memory", memory)
        sampler._tick()
        bus.flush(2)
        sampler.close()
        sample = memory.items[0]
        assert isinstance(sample, MemorySample)
        assert sample.usage_ratio == 0.5


class TestSettings:
    def test_get_settings_is_immutable(self):
        sampler, _bus = _sampler()
        settings = sampler.get_settings()
        with pytest.raises(dataclasses.FrozenInstanceError):
            settings.sample_interval_ms = 5
        assert sampler.get_settings().sample_interval_ms == 1000
        sampler.close()

    def test_invalid_update_keeps_previous(self):
        sampler, _bus = _sampler(settings=ONLY_CPU)
        with pytest.raises(InvalidSettings) as excinfo:
            sampler.update_settings({"sample_interval_ms": 50})
        assert excinfo.value.fields == ["sample_interval_ms"]
        with pytest.raises(InvalidSettings):
            sampler.update_settings(max_history_points=20000)
        with pytest.raises(InvalidSettings):
            sampler.update_settings(no_such_setting=True)
        assert sampler.get_settings() == ONLY_CPU
        sampler.close()

    def test_update_while_stopped_does_not_start(self):
        sampler, _bus = _sampler(settings=ONLY_CPU)
        updated = sampler.update_settings(sample_interval_ms=500)
        assert updated.sample_interval_ms == 500
        assert not sampler.is_running
        sampler.close()

    def test_update_while_running_resamples_disk_once(self):
        settings = dataclasses.replace(ONLY_CPU, enable_disk=True)
        sampler, bus = _sampler(settings=settings)
        disk = Recorder()
        bus.subscribe(DISK, disk)
        sampler.start()
        bus.flush(2)
        assert len(disk) == 1

        sampler.update_settings({"sample_interval_ms": 500})
        bus.flush(2)
        assert sampler.is_running
        assert sampler.get_settings().sample_interval_ms == 500
        assert len(disk) == 2

        time.sleep(0.3)
        sampler.stop()
        sampler.close()
        bus.flush(2)
        assert len(disk) == 2  # not on regular ticks

    def test_disabled_disk_not_sampled_on_start(self):
        disk_source = FakeSource(DISK)
        sampler, _bus = _sampler(sources=fake_sources(disk=disk_source), settings=ONLY_CPU)
        sampler.start()
        sampler.stop()
        sampler.close()
        assert disk_source.calls == 0


def _sampler_threads():
    return [t for t in threading.enumerate() if t.name == "hostpulse-sampler" and t.is_alive()]


class TestSlowTickShutdown:
    def test_restart_after_slow_tick_keeps_one_loop(self):
        slow = FakeSource("cpu", delay=0.6)
        sampler, bus = _sampler(sources={"cpu": slow}, settings=ONLY_CPU, source_timeout=2.0)
        composites = Recorder()
        bus.subscribe("telemetry", composites)
        sampler.start()
        time.sleep(0.05)
        sampler.stop(timeout=0.1)
        assert _sampler_threads() == []

        sampler.start()
        assert len(_sampler_threads()) == 1
        sampler.stop()
        sampler.close()
        assert _sampler_threads() == []

    def test_no_publish_after_stop_returns(self):
        slow = FakeSource("cpu", delay=0.4)
        sampler, bus = _sampler(sources={"cpu": slow}, settings=ONLY_CPU, source_timeout=2.0)
        composites = Recorder()
        bus.subscribe("telemetry", composites)
        sampler.start()
        time.sleep(0.05)
        sampler.stop(timeout=0.1)
        bus.flush(2)
        seen = len(composites)
        time.sleep(0.5)
        bus.flush(2)
        assert len(composites) == seen == 0  # interrupted tick discarded
        sampler.close()
