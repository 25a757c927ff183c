"""Configuration loading and validation for hostpulse."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import InvalidSettings
from .models import DEFAULT_HOST_ID, DISK, NETWORK, PROCESSES

MIN_SAMPLE_INTERVAL_MS = 100
MAX_SAMPLE_INTERVAL_MS = 60000
MIN_HISTORY_POINTS = 10
MAX_HISTORY_POINTS = 10000


@dataclass(frozen=True)
class SamplerSettings:
    """Sampling cadence, enabled kinds and history depth.

    Instances are immutable; the sampler swaps in a new one on every
    :meth:`~hostpulse.collector.sampler.Sampler.update_settings`.
    """

    sample_interval_ms: int = 1000
    enable_cpu: bool = True
    enable_memory: bool = True
    enable_disk: bool = True
    enable_network: bool = True
    enable_processes: bool = True
    max_history_points: int = 300

    @property
    def interval_seconds(self) -> float:
        return self.sample_interval_ms / 1000.0

    def is_enabled(self, kind: str) -> bool:
        return bool(getattr(self, f"enable_{kind}", False))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


SETTINGS_FIELDS = frozenset(f.name for f in fields(SamplerSettings))


def _problems(settings: SamplerSettings) -> dict[str, str]:
    problems: dict[str, str] = {}
    interval = settings.sample_interval_ms
    if isinstance(interval, bool) or not isinstance(interval, int):
        problems["sample_interval_ms"] = f"must be an integer, got {interval!r}"
    elif not MIN_SAMPLE_INTERVAL_MS <= interval <= MAX_SAMPLE_INTERVAL_MS:
        problems["sample_interval_ms"] = (
            f"{interval} outside [{MIN_SAMPLE_INTERVAL_MS}, {MAX_SAMPLE_INTERVAL_MS}]"
        )
    points = settings.max_history_points
    if isinstance(points, bool) or not isinstance(points, int):
        problems["max_history_points"] = f"must be an integer, got {points!r}"
    elif not MIN_HISTORY_POINTS <= points <= MAX_HISTORY_POINTS:
        problems["max_history_points"] = (
            f"{points} outside [{MIN_HISTORY_POINTS}, {MAX_HISTORY_POINTS}]"
        )
    for name in SETTINGS_FIELDS:
        if name.startswith("enable_") and not isinstance(getattr(settings, name), bool):
            problems[name] = f"must be a boolean, got {getattr(settings, name)!r}"
    return problems


def validate_settings(settings: SamplerSettings) -> SamplerSettings:
    """Return *settings* unchanged or raise :class:`InvalidSettings`."""
    problems = _problems(settings)
    if problems:
        raise InvalidSettings(problems)
    return settings


def merge_settings(current: SamplerSettings, partial: dict[str, Any]) -> SamplerSettings:
    """Overlay *partial* on *current* and validate the result."""
    unknown = set(partial) - SETTINGS_FIELDS
    if unknown:
        raise InvalidSettings({name: "unknown setting" for name in unknown})
    return validate_settings(replace(current, **partial))


def clamp_settings(partial: dict[str, Any]) -> dict[str, Any]:
    """Clamp numeric fields of *partial* into their allowed ranges.

    Used for values typed into a UI, where the nearest valid value is more
    useful than an error.  Non-numeric values are left for
    :func:`validate_settings` to reject.
    """
    out = dict(partial)
    bounds = {
        "sample_interval_ms": (MIN_SAMPLE_INTERVAL_MS, MAX_SAMPLE_INTERVAL_MS),
        "max_history_points": (MIN_HISTORY_POINTS, MAX_HISTORY_POINTS),
    }
    for key, (low, high) in bounds.items():
        value = out.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            out[key] = int(max(low, min(high, value)))
    return out


@dataclass
class SamplerConfig:
    """Sampler settings plus source tuning."""

    settings: SamplerSettings = field(default_factory=SamplerSettings)
    source_timeout_seconds: float = 2.0
    process_limit: int = 20
    autostart: bool = True


@dataclass
class StorageConfig:
    """SQLite persistence settings."""

    enabled: bool = True
    db_path: str = "./hostpulse_data/telemetry.db"
    retention_days: float = 7.0
    prune_on_start: bool = True


def _default_capacity_overrides() -> dict[str, int]:
    return {DISK: 60, NETWORK: 60, PROCESSES: 20}


@dataclass
class LiveConfig:
    """Live view buffer sizes.

    Kinds listed in *capacity_overrides* keep a fixed history depth; the
    rest follow ``max_history_points``.
    """

    capacity_overrides: dict[str, int] = field(default_factory=_default_capacity_overrides)


@dataclass
class OtelExporterConfig:
    """OpenTelemetry exporter settings."""

    endpoint: str = "http://localhost:4318"
    service_name: str = "hostpulse"
    headers: dict[str, str] = field(default_factory=dict)
    export_interval_ms: int = 10000


@dataclass
class HostPulseConfig:
    """Top-level hostpulse configuration."""

    mode: str = "local"
    host_id: str = DEFAULT_HOST_ID
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    live: LiveConfig = field(default_factory=LiveConfig)
    otel: OtelExporterConfig = field(default_factory=OtelExporterConfig)


def _merge_dict(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *source* into *target*."""
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge_dict(target[key], value)
        else:
            target[key] = value
    return target


_ENV_MAP: dict[str, tuple[tuple[str, ...], type]] = {
    "HOSTPULSE_MODE": (("mode",), str),
    "HOSTPULSE_HOST_ID": (("host_id",), str),
    "HOSTPULSE_SAMPLE_INTERVAL_MS": (("sampler", "sample_interval_ms"), int),
    "HOSTPULSE_MAX_HISTORY_POINTS": (("sampler", "max_history_points"), int),
    "HOSTPULSE_DB_PATH": (("storage", "db_path"), str),
    "HOSTPULSE_OTEL_ENDPOINT": (("otel", "endpoint"), str),
    "HOSTPULSE_OTEL_SERVICE_NAME": (("otel", "service_name"), str),
}


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides using the HOSTPULSE_ prefix."""
    for env_key, (path, cast) in _ENV_MAP.items():
        value = os.environ.get(env_key)
        if value is None:
            continue
        obj = data
        for part in path[:-1]:
            obj = obj.setdefault(part, {})
        obj[path[-1]] = cast(value)
    return data


def _pick(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k in cls.__dataclass_fields__}


def _dict_to_config(data: dict[str, Any]) -> HostPulseConfig:
    """Convert a raw dictionary to a HostPulseConfig dataclass."""
    sampler_data = dict(data.get("sampler") or {})
    storage_data = data.get("storage") or {}
    live_data = data.get("live") or {}
    otel_data = data.get("otel") or {}

    settings = validate_settings(SamplerSettings(**_pick(SamplerSettings, sampler_data)))
    sampler_extra = {
        k: v for k, v in _pick(SamplerConfig, sampler_data).items() if k != "settings"
    }

    overrides = _default_capacity_overrides()
    overrides.update(live_data.get("capacity_overrides") or {})

    return HostPulseConfig(
        mode=data.get("mode", "local"),
        host_id=str(data.get("host_id", DEFAULT_HOST_ID)),
        sampler=SamplerConfig(settings=settings, **sampler_extra),
        storage=StorageConfig(**_pick(StorageConfig, storage_data)),
        live=LiveConfig(capacity_overrides={k: int(v) for k, v in overrides.items()}),
        otel=OtelExporterConfig(**_pick(OtelExporterConfig, otel_data)),
    )


def load_config(path: str | Path | None = None) -> HostPulseConfig:
    """Load configuration from a YAML file with environment overrides.

    Looks for ``hostpulse.yaml`` in the current directory if *path* is None.
    Sampler settings go through :func:`validate_settings`, so an
    out-of-range file value raises :class:`InvalidSettings` instead of
    being stored.
    """
    data: dict[str, Any] = {}
    if path is None:
        path = Path("hostpulse.yaml")
    else:
        path = Path(path)

    if path.exists():
        with open(path, encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh)
            if isinstance(loaded, dict):
                data = _merge_dict(data, loaded)

    data = _apply_env_overrides(data)
    return _dict_to_config(data)
