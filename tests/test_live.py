"""Tests for the live history view and channel relay."""

import pytest

from fakes import cpu_sample, disk_sample, memory_sample
from hostpulse.config import SamplerSettings
from hostpulse.errors import InvalidCapacity
from hostpulse.live import LiveView, channel_name

OVERRIDES = {"disk": 60, "network": 60, "processes": 20}


def test_default_capacities():
    view = LiveView(SamplerSettings(max_history_points=300), OVERRIDES)
    assert view.capacities() == {
        "cpu": 300, "memory": 300, "disk": 60, "network": 60, "processes": 20,
    }


def test_on_sample_keeps_bounded_history():
    view = LiveView(SamplerSettings(max_history_points=10))
    for ts in range(25):
        view.on_sample("cpu", cpu_sample(ts=ts))
    history = view.all("cpu")
    assert [s.timestamp_ms for s in history] == list(range(15, 25))
    assert view.latest("cpu").timestamp_ms == 24
    assert [s.timestamp_ms for s in view.recent("cpu", 3)] == [22, 23, 24]
    assert view.latest("memory") is None


def test_apply_settings_resizes_only_following_kinds():
    view = LiveView(SamplerSettings(max_history_points=300), OVERRIDES)
    for ts in range(50):
        view.on_sample("cpu", cpu_sample(ts=ts))
    view.apply_settings(SamplerSettings(max_history_points=20))
    caps = view.capacities()
    assert caps["cpu"] == 20
    assert caps["memory"] == 20
    assert caps["disk"] == 60
    assert [s.timestamp_ms for s in view.all("cpu")] == list(range(30, 50))


def test_resize_pins_kind():
    view = LiveView(SamplerSettings(max_history_points=300))
    view.resize("memory", 5)
    view.apply_settings(SamplerSettings(max_history_points=50))
    assert view.capacities()["memory"] == 5
    with pytest.raises(InvalidCapacity):
        view.resize("memory", 0)


def test_channels_receive_wire_payloads():
    view = LiveView()
    sent = []
    view.add_channel(lambda name, payload: sent.append((name, payload)))
    view.on_sample("memory", memory_sample(ts=77, host_id="box"))
    assert sent[0][0] == "hosts/box/telemetry/memory"
    assert sent[0][1]["timestamp"] == 77
    assert sent[0][1]["available"] == 4_000_000_000


def test_failing_channel_is_isolated():
    view = LiveView()
    sent = []

    def broken(_name, _payload):
        raise ConnectionError("window closed")

    view.add_channel(broken)
    view.add_channel(lambda name, payload: sent.append(name))
    view.on_sample("disk", disk_sample(ts=1))
    assert sent == [channel_name("local", "disk")]
    assert len(view.all("disk")) == 1

    view.remove_channel(broken)
    view.on_sample("disk", disk_sample(ts=2))
    assert len(sent) == 2


def test_snapshot_and_clear():
    view = LiveView()
    view.handler("cpu")(cpu_sample(ts=1))
    view.handler("memory")(memory_sample(ts=1))
    snap = view.snapshot()
    assert len(snap["cpu"]) == 1 and len(snap["memory"]) == 1
    view.clear("cpu")
    assert view.all("cpu") == []
    assert len(view.all("memory")) == 1
    view.clear()
    assert all(not items for items in view.snapshot().values())
    assert len(snap["cpu"]) == 1  # snapshots are copies
