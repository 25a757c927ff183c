"""Disk usage source."""

from __future__ import annotations

import logging

import psutil

from ..models import DISK, DiskDevice, DiskSample, make_disk_device
from .base import MetricSource, SampleContext

logger = logging.getLogger(__name__)


class DiskSource(MetricSource):
    """Samples capacity and usage of every mounted physical partition.

    Partitions that cannot be queried (removed media, permission errors)
    are skipped.  Each mount point appears once.
    """

    def __init__(self, include_all: bool = False) -> None:
        self._include_all = include_all

    @property
    def kind(self) -> str:
        return DISK

    def sample(self, ctx: SampleContext) -> DiskSample:
        devices: list[DiskDevice] = []
        seen: set[str] = set()

        for part in psutil.disk_partitions(all=self._include_all):
            if part.mountpoint in seen:
                continue
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except (PermissionError, OSError) as exc:
                logger.debug("Skipping %s: %s", part.mountpoint, exc)
                continue
            seen.add(part.mountpoint)
            devices.append(make_disk_device(
                name=part.device,
                mount_path=part.mountpoint,
                total=usage.total,
                used=usage.used,
                free=usage.free,
                used_pct=usage.percent,
            ))

        return DiskSample(
            host_id=ctx.host_id,
            timestamp_ms=ctx.timestamp_ms,
            devices=tuple(devices),
        )
