"""SQLite-backed durable store for telemetry samples."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from ..errors import PersistenceQueryFailure, PersistenceWriteFailure
from ..models import (
    CPU,
    DISK,
    MEMORY,
    METRIC_KINDS,
    NETWORK,
    PROCESSES,
    CpuSample,
    DiskSample,
    MemorySample,
    NetworkSample,
    ProcessSample,
    Sample,
    TelemetryData,
)
from .export import render

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

SCHEMA = """
CREATE TABLE IF NOT EXISTS cpu_metrics (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  host_id TEXT NOT NULL,
  timestamp INTEGER NOT NULL,
  usage REAL NOT NULL,
  cores INTEGER NOT NULL,
  load_average_1 REAL NOT NULL,
  load_average_5 REAL NOT NULL,
  load_average_15 REAL NOT NULL,
  temperature REAL
);
CREATE INDEX IF NOT EXISTS idx_cpu_timestamp ON cpu_metrics(timestamp);
CREATE INDEX IF NOT EXISTS idx_cpu_host ON cpu_metrics(host_id, timestamp);

CREATE TABLE IF NOT EXISTS memory_metrics (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  host_id TEXT NOT NULL,
  timestamp INTEGER NOT NULL,
  total INTEGER NOT NULL,
  used INTEGER NOT NULL,
  free INTEGER NOT NULL,
  available INTEGER NOT NULL,
  swap_total INTEGER,
  swap_used INTEGER,
  swap_free INTEGER
);
CREATE INDEX IF NOT EXISTS idx_memory_timestamp ON memory_metrics(timestamp);
CREATE INDEX IF NOT EXISTS idx_memory_host ON memory_metrics(host_id, timestamp);

CREATE TABLE IF NOT EXISTS disk_metrics (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  host_id TEXT NOT NULL,
  timestamp INTEGER NOT NULL,
  device_name TEXT NOT NULL,
  mount_point TEXT NOT NULL,
  total INTEGER NOT NULL,
  used INTEGER NOT NULL,
  free INTEGER NOT NULL,
  percentage REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_disk_timestamp ON disk_metrics(timestamp);
CREATE INDEX IF NOT EXISTS idx_disk_host ON disk_metrics(host_id, timestamp);

CREATE TABLE IF NOT EXISTS network_metrics (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  host_id TEXT NOT NULL,
  timestamp INTEGER NOT NULL,
  interface_name TEXT NOT NULL,
  bytes_received INTEGER NOT NULL,
  bytes_sent INTEGER NOT NULL,
  packets_received INTEGER NOT NULL,
  packets_sent INTEGER NOT NULL,
  error_in INTEGER NOT NULL,
  error_out INTEGER NOT NULL,
  drop_in INTEGER NOT NULL,
  drop_out INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_network_timestamp ON network_metrics(timestamp);
CREATE INDEX IF NOT EXISTS idx_network_host ON network_metrics(host_id, timestamp);

CREATE TABLE IF NOT EXISTS process_metrics (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  host_id TEXT NOT NULL,
  timestamp INTEGER NOT NULL,
  pid INTEGER NOT NULL,
  name TEXT NOT NULL,
  cpu REAL NOT NULL,
  memory REAL NOT NULL,
  ppid INTEGER,
  uid INTEGER,
  gid INTEGER,
  status TEXT
);
CREATE INDEX IF NOT EXISTS idx_process_timestamp ON process_metrics(timestamp);
CREATE INDEX IF NOT EXISTS idx_process_host ON process_metrics(host_id, timestamp);
"""

TABLES: dict[str, str] = {
    CPU: "cpu_metrics",
    MEMORY: "memory_metrics",
    DISK: "disk_metrics",
    NETWORK: "network_metrics",
    PROCESSES: "process_metrics",
}

_INSERT: dict[str, str] = {
    CPU: (
        "INSERT INTO cpu_metrics (host_id, timestamp, usage, cores, load_average_1,"
        " load_average_5, load_average_15, temperature) VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
    ),
    MEMORY: (
        "INSERT INTO memory_metrics (host_id, timestamp, total, used, free, available,"
        " swap_total, swap_used, swap_free) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
    ),
    DISK: (
        "INSERT INTO disk_metrics (host_id, timestamp, device_name, mount_point, total,"
        " used, free, percentage) VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
    ),
    NETWORK: (
        "INSERT INTO network_metrics (host_id, timestamp, interface_name, bytes_received,"
        " bytes_sent, packets_received, packets_sent, error_in, error_out, drop_in,"
        " drop_out) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
    ),
    PROCESSES: (
        "INSERT INTO process_metrics (host_id, timestamp, pid, name, cpu, memory, ppid,"
        " uid, gid, status) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
    ),
}


def sample_rows(kind: str, sample: Sample) -> list[tuple[Any, ...]]:
    """Flatten *sample* into parameter tuples for the kind's INSERT."""
    if kind == CPU and isinstance(sample, CpuSample):
        load1, load5, load15 = sample.load_avg
        return [(
            sample.host_id, sample.timestamp_ms, sample.usage_pct, sample.core_count,
            load1, load5, load15, sample.temperature_c,
        )]
    if kind == MEMORY and isinstance(sample, MemorySample):
        return [(
            sample.host_id, sample.timestamp_ms, sample.total_bytes, sample.used_bytes,
            sample.free_bytes, sample.available_bytes, sample.swap_total,
            sample.swap_used, sample.swap_free,
        )]
    if kind == DISK and isinstance(sample, DiskSample):
        return [
            (
                sample.host_id, sample.timestamp_ms, d.name, d.mount_path,
                d.total_bytes, d.used_bytes, d.free_bytes, d.used_pct,
            )
            for d in sample.devices
        ]
    if kind == NETWORK and isinstance(sample, NetworkSample):
        return [
            (
                sample.host_id, sample.timestamp_ms, i.name, i.bytes_rx, i.bytes_tx,
                i.packets_rx, i.packets_tx, i.err_in, i.err_out, i.drop_in, i.drop_out,
            )
            for i in sample.interfaces
        ]
    if kind == PROCESSES and isinstance(sample, ProcessSample):
        return [
            (
                sample.host_id, sample.timestamp_ms, p.pid, p.name, p.cpu_pct, p.mem_pct,
                p.parent_pid, p.uid, p.gid, p.status,
            )
            for p in sample.processes
        ]
    raise PersistenceWriteFailure(
        f"Sample of type {type(sample).__name__} does not match kind {kind!r}"
    )


class TelemetryStore:
    """Durable, time-indexed storage for every sample kind.

    One SQLite connection is shared by all threads and guarded by a lock.
    Writes for a single sample happen in one transaction, so a multi-row
    sample (several disks, interfaces or processes) is either fully
    visible or not at all.

    Usage::

        with TelemetryStore("./data/telemetry.db") as store:
            store.append("cpu", cpu_sample)
            rows = store.query("cpu", start_ms=t0)
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = sqlite3.connect(
            self._path, check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        logger.info("TelemetryStore initialized → %s", self._path)

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._conn is None

    def __enter__(self) -> TelemetryStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection for one atomic unit of work.

        Commits on success; rolls back and re-raises on any error.  The
        lock is always released.
        """
        with self._lock:
            conn = self._conn
            if conn is None:
                raise PersistenceWriteFailure("store is closed")
            try:
                yield conn
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._conn
            if conn is None:
                raise PersistenceQueryFailure("store is closed")
            yield conn

    # -- writes ---------------------------------------------------------

    def append(self, kind: str, sample: Sample) -> int:
        """Store *sample*; returns the number of rows written."""
        if kind not in TABLES:
            raise PersistenceWriteFailure(f"Unknown metric kind {kind!r}")
        rows = sample_rows(kind, sample)
        if not rows:
            return 0
        try:
            with self._transaction() as conn:
                conn.executemany(_INSERT[kind], rows)
        except sqlite3.Error as exc:
            raise PersistenceWriteFailure(f"Failed to store {kind} sample: {exc}") from exc
        return len(rows)

    def append_telemetry(self, data: TelemetryData) -> int:
        """Store every populated kind of a composite, one transaction per kind."""
        written = 0
        for kind, sample in data.populated():
            written += self.append(kind, sample)
        return written

    def prune(self, retention_days: float, now_ms: int | None = None) -> dict[str, int]:
        """Delete rows older than *retention_days*.

        Works table by table, each in its own transaction.  Returns the
        number of deleted rows per kind.
        """
        if retention_days < 0:
            raise PersistenceWriteFailure(f"retention_days must be >= 0, got {retention_days}")
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        cutoff = now_ms - int(retention_days * DAY_MS)
        deleted: dict[str, int] = {}
        for kind, table in TABLES.items():
            try:
                with self._transaction() as conn:
                    cur = conn.execute(f"DELETE FROM {table} WHERE timestamp < ?", (cutoff,))
                    deleted[kind] = cur.rowcount
            except sqlite3.Error as exc:
                raise PersistenceWriteFailure(f"Failed to prune {kind}: {exc}") from exc
        logger.info("Pruned rows older than %s ms: %s", cutoff, deleted)
        return deleted

    # -- reads ----------------------------------------------------------

    def query(
        self,
        kind: str,
        start_ms: int | None = None,
        end_ms: int | None = None,
        host_id: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows of *kind* with ``start_ms <= timestamp <= end_ms``.

        Rows are ordered by timestamp, then insertion order.  *limit* caps
        the number of samples (``(host_id, timestamp)`` groups), not rows,
        so every returned sample is complete.  Raises
        :class:`PersistenceQueryFailure` instead of returning partial data.
        """
        table = TABLES.get(kind)
        if table is None:
            raise PersistenceQueryFailure(f"Unknown metric kind {kind!r}")
        if start_ms is not None and end_ms is not None and start_ms > end_ms:
            raise PersistenceQueryFailure(f"start_ms {start_ms} is after end_ms {end_ms}")
        if limit is not None and limit < 0:
            raise PersistenceQueryFailure(f"limit must be >= 0, got {limit}")

        conditions: list[str] = []
        params: list[Any] = []
        if start_ms is not None:
            conditions.append("timestamp >= ?")
            params.append(start_ms)
        if end_ms is not None:
            conditions.append("timestamp <= ?")
            params.append(end_ms)
        if host_id is not None:
            conditions.append("host_id = ?")
            params.append(host_id)

        where = " WHERE " + " AND ".join(conditions) if conditions else ""
        sql = f"SELECT * FROM {table}{where}"
        if limit is not None:
            # limit counts samples, so a multi-row sample is never cut
            groups = (
                f"SELECT DISTINCT host_id, timestamp FROM {table}{where}"
                " ORDER BY timestamp, host_id LIMIT ?"
            )
            sql += (" AND " if where else " WHERE ") + f"(host_id, timestamp) IN ({groups})"
            params = params + params + [limit]
        sql += " ORDER BY timestamp, id"

        try:
            with self._reader() as conn:
                return [dict(row) for row in conn.execute(sql, params).fetchall()]
        except sqlite3.Error as exc:
            raise PersistenceQueryFailure(f"Query on {kind} failed: {exc}") from exc

    def query_all(
        self, start_ms: int | None = None, end_ms: int | None = None,
    ) -> dict[str, list[dict[str, Any]]]:
        """Rows of every kind in the range, keyed by kind."""
        return {kind: self.query(kind, start_ms, end_ms) for kind in METRIC_KINDS}

    def count(self, kind: str) -> int:
        table = TABLES.get(kind)
        if table is None:
            raise PersistenceQueryFailure(f"Unknown metric kind {kind!r}")
        with self._reader() as conn:
            return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])

    def export(
        self, fmt: str = "json", start_ms: int | None = None, end_ms: int | None = None,
    ) -> str:
        """Serialize stored rows in *fmt* (``json`` or ``csv``)."""
        return render(fmt, self.query_all(start_ms, end_ms))

    def close(self) -> None:
        """Commit outstanding work and close the connection."""
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.commit()
            finally:
                self._conn.close()
                self._conn = None
        logger.info("TelemetryStore closed")
