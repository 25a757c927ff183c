"""OpenTelemetry exporter – pushes host metrics via OTLP/HTTP."""

from __future__ import annotations

import logging
from typing import Any

from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

from ..config import OtelExporterConfig
from ..models import (
    CPU,
    DISK,
    MEMORY,
    NETWORK,
    PROCESSES,
    CpuSample,
    DiskSample,
    MemorySample,
    NetworkSample,
    ProcessSample,
    Sample,
)
from .base import BaseExporter

logger = logging.getLogger(__name__)


def _otlp_reader(config: OtelExporterConfig) -> MetricReader:
    from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter

    exporter_kwargs: dict[str, Any] = {
        "endpoint": f"{config.endpoint.rstrip('/')}/v1/metrics",
    }
    if config.headers:
        exporter_kwargs["headers"] = config.headers
    return PeriodicExportingMetricReader(
        OTLPMetricExporter(**exporter_kwargs),
        export_interval_millis=config.export_interval_ms,
    )


class OtelExporter(BaseExporter):
    """Records live samples as OpenTelemetry gauges.

    Each call to :meth:`export` sets gauge values via the OTel SDK; the
    configured reader (``PeriodicExportingMetricReader`` with the OTLP/HTTP
    exporter by default) ships them to the collector.
    """

    def __init__(
        self,
        config: OtelExporterConfig,
        host_id: str = "",
        reader: MetricReader | None = None,
    ) -> None:
        super().__init__()
        self._config = config
        attrs: dict[str, Any] = {SERVICE_NAME: config.service_name}
        if host_id:
            attrs["host.id"] = host_id
        resource = Resource.create(attrs)

        self._provider = MeterProvider(
            resource=resource, metric_readers=[reader or _otlp_reader(config)],
        )
        self._meter = self._provider.get_meter("hostpulse.host")
        self._gauges: dict[str, Any] = {}

        logger.info(
            "OtelExporter initialized → %s (service=%s)",
            config.endpoint,
            config.service_name,
        )

    def _set(self, name: str, unit: str, description: str, value: float,
             attributes: dict[str, str] | None = None) -> None:
        gauge = self._gauges.get(name)
        if gauge is None:
            gauge = self._meter.create_gauge(name=name, unit=unit, description=description)
            self._gauges[name] = gauge
        gauge.set(value, attributes=attributes or {})

    def export(self, kind: str, sample: Sample) -> None:
        if kind == CPU and isinstance(sample, CpuSample):
            self._set("system.cpu.usage_percent", "%", "Overall CPU usage percentage", sample.usage_pct)
            for window, value in zip(("1m", "5m", "15m"), sample.load_avg):
                self._set(f"system.cpu.load_avg_{window}", "1", f"Load average {window}", value)
        elif kind == MEMORY and isinstance(sample, MemorySample):
            self._set("system.memory.usage_percent", "%", "Memory usage percentage", sample.usage_pct)
            self._set("system.memory.used_bytes", "By", "Memory used in bytes", sample.used_bytes)
            self._set("system.memory.available_bytes", "By", "Memory available in bytes",
                      sample.available_bytes)
            self._set("system.memory.total_bytes", "By", "Total memory in bytes", sample.total_bytes)
        elif kind == DISK and isinstance(sample, DiskSample):
            for dev in sample.devices:
                self._set("system.disk.usage_percent", "%", "Disk usage percentage", dev.used_pct,
                          {"device": dev.name, "mount": dev.mount_path})
        elif kind == NETWORK and isinstance(sample, NetworkSample):
            for iface in sample.interfaces:
                labels = {"interface": iface.name}
                self._set("system.network.bytes_sent_total", "By", "Total bytes sent",
                          iface.bytes_tx, labels)
                self._set("system.network.bytes_recv_total", "By", "Total bytes received",
                          iface.bytes_rx, labels)
        elif kind == PROCESSES and isinstance(sample, ProcessSample):
            for state, value in (
                ("total", sample.total_count),
                ("running", sample.running_count),
                ("sleeping", sample.sleeping_count),
            ):
                self._set("system.process.count", "{process}", "Process count by state",
                          value, {"state": state})

    def shutdown(self) -> None:
        self.detach()
        self._provider.shutdown()
        logger.info("OtelExporter shut down")
