"""CPU resource source."""

from __future__ import annotations

import psutil

from ..models import CPU, CpuSample, make_cpu_sample
from .base import MetricSource, SampleContext


class CpuUsageTracker:
    """Turns cumulative idle/total CPU times into a usage percentage.

    The first reading has nothing to diff against and reports 0.
    """

    def __init__(self) -> None:
        self._prev: tuple[float, float] | None = None

    def update(self, idle: float, total: float) -> float:
        prev = self._prev
        self._prev = (idle, total)
        if prev is None:
            return 0.0
        idle_diff = idle - prev[0]
        total_diff = total - prev[1]
        if total_diff <= 0:
            return 0.0
        return 100.0 - (100.0 * idle_diff) / total_diff

    def reset(self) -> None:
        self._prev = None


def cpu_total(times) -> float:
    """Sum of CPU time fields.

    Linux already counts guest and guest_nice inside user and nice, so
    they are taken out again.
    """
    total = sum(times)
    return total - getattr(times, "guest", 0.0) - getattr(times, "guest_nice", 0.0)


def _read_temperature()-> float | None:
    sensors = getattr(psutil, "sensors_temperatures", None)
    if sensors is None:
        return None
    try:
        readings = sensors()
    except (OSError, RuntimeError):
        return None
    for entries in readings.values():
        for entry in entries:
            if entry.current:
                return float(entry.current)
    return None


class CpuSource(MetricSource):
    """Samples aggregate CPU usage, core count and load averages."""

    def __init__(self, read_temperature: bool = False) -> None:
        self._tracker = CpuUsageTracker()
        self._read_temperature = read_temperature
        self._cores = psutil.cpu_count(logical=True) or 1

    @property
    def kind(self) -> str:
        return CPU

    def sample(self, ctx: SampleContext) -> CpuSample:
        times = psutil.cpu_times()
        # iowait counts as idle time where the platform reports it
        idle = times.idle + getattr(times, "iowait", 0.0)
        total = cpu_total(times)
        usage = self._tracker.update(idle, total)

        return make_cpu_sample(
            host_id=ctx.host_id,
            timestamp_ms=ctx.timestamp_ms,
            usage_pct=usage,
            core_count=self._cores,
            load_avg=psutil.getloadavg(),
            temperature_c=_read_temperature() if self._read_temperature else None,
        )
