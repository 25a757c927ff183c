"""Process table source – top processes by CPU plus state counts."""

from __future__ import annotations

import logging

import psutil

from ..models import PROCESSES, ProcInfo, ProcessSample, make_proc_info
from .base import MetricSource, SampleContext

logger = logging.getLogger(__name__)

_ATTRS = ["pid", "name", "cpu_percent", "memory_percent", "ppid", "uids", "gids", "status"]


class ProcessSource(MetricSource):
    """Collects the busiest *limit* processes and host-wide state counts.

    ``psutil.process_iter`` caches its Process objects between calls, so
    per-process CPU percentages are measured over the interval since the
    previous tick (every process reports 0 on its first appearance).  Values
    are divided by the logical core count so 100 means the whole host.
    """

    def __init__(self, limit: int = 20) -> None:
        self._limit = limit
        self._cpu_count = psutil.cpu_count(logical=True) or 1

    @property
    def kind(self) -> str:
        return PROCESSES

    def sample(self, ctx: SampleContext) -> ProcessSample:
        rows: list[ProcInfo] = []
        total = running = sleeping = 0

        for proc in psutil.process_iter(_ATTRS):
            try:
                info = proc.info
                pid = int(info["pid"])
                status = info.get("status") or None
                total += 1
                if status == psutil.STATUS_RUNNING:
                    running += 1
                elif status in (psutil.STATUS_SLEEPING, psutil.STATUS_IDLE, psutil.STATUS_DISK_SLEEP):
                    sleeping += 1
                if pid <= 0:
                    continue
                uids = info.get("uids")
                gids = info.get("gids")
                rows.append(make_proc_info(
                    pid=pid,
                    name=info.get("name") or "",
                    cpu_pct=(info.get("cpu_percent") or 0.0) / self._cpu_count,
                    mem_pct=info.get("memory_percent") or 0.0,
                    parent_pid=info.get("ppid") or None,
                    uid=uids.real if uids else None,
                    gid=gids.real if gids else None,
                    status=status,
                ))
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        rows.sort(key=lambda r: r.cpu_pct, reverse=True)
        logger.debug("Scanned %d processes (%d running)", total, running)
        return ProcessSample(
            host_id=ctx.host_id,
            timestamp_ms=ctx.timestamp_ms,
            processes=tuple(rows[: self._limit]),
            total_count=total,
            running_count=running,
            sleeping_count=sleeping,
        )
