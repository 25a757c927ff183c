"""Metric sources and the sampler that drives them."""

from __future__ import annotations

from .base import MetricSource, SampleContext
from .cpu import CpuSource
from .disk import DiskSource
from .memory import MemorySource
from .network import NetworkSource
from .process import ProcessSource


def default_sources(process_limit: int = 20) -> dict[str, MetricSource]:
    """Build the psutil-backed source for every metric kind."""
    sources: list[MetricSource] = [
        CpuSource(),
        MemorySource(),
        DiskSource(),
        NetworkSource(),
        ProcessSource(limit=process_limit),
    ]
    return {s.kind: s for s in sources}


__all__ = [
    "CpuSource",
    "DiskSource",
    "MemorySource",
    "MetricSource",
    "NetworkSource",
    "ProcessSource",
    "SampleContext",
    "default_sources",
]
