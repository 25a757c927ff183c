"""Durable storage for telemetry samples."""

from .sqlite import TelemetryStore

__all__ = ["TelemetryStore"]
