"""Typed samples produced by metric sources.

Each sample kind is a dataclass with snake_case attributes.  ``to_dict``
gives the payload that crosses the live channel, using the field names
consumers already know (``hostId``, ``timestamp``, ``usage`` ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Union

DEFAULT_HOST_ID = "local"

CPU = "cpu"
MEMORY = "memory"
DISK = "disk"
NETWORK = "network"
PROCESSES = "processes"

METRIC_KINDS: tuple[str, ...] = (CPU, MEMORY, DISK, NETWORK, PROCESSES)

# Bus topic carrying one TelemetryData per tick.
TELEMETRY = "telemetry"


def clamp_pct(value: float) -> float:
    """Clamp a percentage into [0, 100]; NaN becomes 0."""
    value = float(value)
    if value != value:
        return 0.0
    return max(0.0, min(100.0, value))


def _non_negative(value: float | int | None) -> int:
    if value is None:
        return 0
    return max(0, int(value))


@dataclass(frozen=True)
class CpuSample:
    host_id: str
    timestamp_ms: int
    usage_pct: float
    core_count: int
    load_avg: tuple[float, float, float]
    temperature_c: float | None = None

    kind = CPU

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "hostId": self.host_id,
            "timestamp": self.timestamp_ms,
            "usage": self.usage_pct,
            "cores": self.core_count,
            "loadAverage": list(self.load_avg),
        }
        if self.temperature_c is not None:
            out["temperature"] = self.temperature_c
        return out


@dataclass(frozen=True)
class MemorySample:
    host_id: str
    timestamp_ms: int
    total_bytes: int
    used_bytes: int
    free_bytes: int
    available_bytes: int
    swap_total: int | None = None
    swap_used: int | None = None
    swap_free: int | None = None

    kind = MEMORY

    @property
    def usage_ratio(self) -> float:
        """Fraction of physical memory in use (0.0 when total is unknown)."""
        if self.total_bytes <= 0:
            return 0.0
        return self.used_bytes / self.total_bytes

    @property
    def usage_pct(self) -> float:
        return clamp_pct(self.usage_ratio * 100.0)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "hostId": self.host_id,
            "timestamp": self.timestamp_ms,
            "total": self.total_bytes,
            "used": self.used_bytes,
            "free": self.free_bytes,
            "available": self.available_bytes,
        }
        for key, value in (
            ("swapTotal", self.swap_total),
            ("swapUsed", self.swap_used),
            ("swapFree", self.swap_free),
        ):
            if value is not None:
                out[key] = value
        return out


@dataclass(frozen=True)
class DiskDevice:
    name: str
    mount_path: str
    total_bytes: int
    used_bytes: int
    free_bytes: int
    used_pct: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "mount": self.mount_path,
            "total": self.total_bytes,
            "used": self.used_bytes,
            "free": self.free_bytes,
            "percentage": self.used_pct,
        }


@dataclass(frozen=True)
class DiskSample:
    host_id: str
    timestamp_ms: int
    devices: tuple[DiskDevice, ...] = ()

    kind = DISK

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostId": self.host_id,
            "timestamp": self.timestamp_ms,
            "devices": [d.to_dict() for d in self.devices],
        }


@dataclass(frozen=True)
class NetIface:
    name: str
    bytes_rx: int
    bytes_tx: int
    packets_rx: int
    packets_tx: int
    err_in: int = 0
    err_out: int = 0
    drop_in: int = 0
    drop_out: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "bytesReceived": self.bytes_rx,
            "bytesSent": self.bytes_tx,
            "packetsReceived": self.packets_rx,
            "packetsSent": self.packets_tx,
            "errorIn": self.err_in,
            "errorOut": self.err_out,
            "dropIn": self.drop_in,
            "dropOut": self.drop_out,
        }


@dataclass(frozen=True)
class NetworkSample:
    host_id: str
    timestamp_ms: int
    interfaces: tuple[NetIface, ...] = ()

    kind = NETWORK

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostId": self.host_id,
            "timestamp": self.timestamp_ms,
            "interfaces": [i.to_dict() for i in self.interfaces],
        }


@dataclass(frozen=True)
class ProcInfo:
    pid: int
    name: str
    cpu_pct: float
    mem_pct: float
    parent_pid: int | None = None
    uid: int | None = None
    gid: int | None = None
    status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "pid": self.pid,
            "name": self.name,
            "cpu": self.cpu_pct,
            "memory": self.mem_pct,
        }
        for key, value in (
            ("ppid", self.parent_pid),
            ("uid", self.uid),
            ("gid", self.gid),
            ("status", self.status),
        ):
            if value is not None:
                out[key] = value
        return out


@dataclass(frozen=True)
class ProcessSample:
    host_id: str
    timestamp_ms: int
    processes: tuple[ProcInfo, ...] = ()
    total_count: int = 0
    running_count: int = 0
    sleeping_count: int = 0

    kind = PROCESSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostId": self.host_id,
            "timestamp": self.timestamp_ms,
            "processes": [p.to_dict() for p in self.processes],
            "total": self.total_count,
            "running": self.running_count,
            "sleeping": self.sleeping_count,
        }


Sample = Union[CpuSample, MemorySample, DiskSample, NetworkSample, ProcessSample]


@dataclass
class TelemetryData:
    """All samples gathered during one tick."""

    cpu: CpuSample | None = None
    memory: MemorySample | None = None
    disk: DiskSample | None = None
    network: NetworkSample | None = None
    processes: ProcessSample | None = None
    failed: list[str] = field(default_factory=list)

    def populated(self) -> Iterator[tuple[str, Sample]]:
        """Yield ``(kind, sample)`` for each kind present, in kind order."""
        for kind in METRIC_KINDS:
            sample = getattr(self, kind)
            if sample is not None:
                yield kind, sample

    @property
    def is_empty(self) -> bool:
        return not any(True for _ in self.populated())

    def to_dict(self) -> dict[str, Any]:
        return {kind: sample.to_dict() for kind, sample in self.populated()}


def make_cpu_sample(
    host_id: str,
    timestamp_ms: int,
    usage_pct: float,
    core_count: int,
    load_avg: tuple[float, float, float] | list[float],
    temperature_c: float | None = None,
) -> CpuSample:
    """Build a CpuSample with ranges enforced."""
    loads = tuple(max(0.0, float(v)) for v in load_avg)
    if len(loads) != 3:
        raise ValueError(f"load_avg must have 3 values, got {len(loads)}")
    return CpuSample(
        host_id=host_id,
        timestamp_ms=int(timestamp_ms),
        usage_pct=clamp_pct(usage_pct),
        core_count=max(1, int(core_count)),
        load_avg=loads,  # type: ignore[arg-type]
        temperature_c=temperature_c,
    )


def make_memory_sample(
    host_id: str,
    timestamp_ms: int,
    total: int,
    used: int,
    free: int,
    available: int,
    swap_total: int | None = None,
    swap_used: int | None = None,
    swap_free: int | None = None,
) -> MemorySample:
    """Build a MemorySample with byte counts forced non-negative."""
    return MemorySample(
        host_id=host_id,
        timestamp_ms=int(timestamp_ms),
        total_bytes=_non_negative(total),
        used_bytes=_non_negative(used),
        free_bytes=_non_negative(free),
        available_bytes=_non_negative(available),
        swap_total=None if swap_total is None else _non_negative(swap_total),
        swap_used=None if swap_used is None else _non_negative(swap_used),
        swap_free=None if swap_free is None else _non_negative(swap_free),
    )


def make_disk_device(
    name: str,
    mount_path: str,
    total: int,
    used: int,
    free: int,
    used_pct: float,
) -> DiskDevice:
    return DiskDevice(
        name=name,
        mount_path=mount_path,
        total_bytes=_non_negative(total),
        used_bytes=_non_negative(used),
        free_bytes=_non_negative(free),
        used_pct=clamp_pct(used_pct),
    )


def make_proc_info(
    pid: int,
    name: str,
    cpu_pct: float,
    mem_pct: float,
    parent_pid: int | None = None,
    uid: int | None = None,
    gid: int | None = None,
    status: str | None = None,
) -> ProcInfo:
    if pid <= 0:
        raise ValueError(f"pid must be positive, got {pid}")
    return ProcInfo(
        pid=int(pid),
        name=name,
        cpu_pct=clamp_pct(cpu_pct),
        mem_pct=clamp_pct(mem_pct),
        parent_pid=parent_pid,
        uid=uid,
        gid=gid,
        status=status,
    )
