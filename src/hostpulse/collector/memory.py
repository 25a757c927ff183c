"""Memory resource source."""

from __future__ import annotations

import psutil

from ..models import MEMORY, MemorySample, make_memory_sample
from .base import MetricSource, SampleContext


class MemorySource(MetricSource):
    """Samples physical memory and swap usage."""

    @property
    def kind(self) -> str:
        return MEMORY

    def sample(self, ctx: SampleContext) -> MemorySample:
        mem = psutil.virtual_memory()
        swap = psutil.swap_memory()

        return make_memory_sample(
            host_id=ctx.host_id,
            timestamp_ms=ctx.timestamp_ms,
            total=mem.total,
            used=mem.used,
            free=mem.free,
            available=mem.available,
            swap_total=swap.total,
            swap_used=swap.used,
            swap_free=swap.free,
        )
