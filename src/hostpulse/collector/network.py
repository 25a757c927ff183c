"""Network interface counter source."""

from __future__ import annotations

import psutil

from ..models import NETWORK, NetIface, NetworkSample
from .base import MetricSource, SampleContext

_COUNTER_FIELDS = (
    "bytes_rx", "bytes_tx", "packets_rx", "packets_tx",
    "err_in", "err_out", "drop_in", "drop_out",
)


class NetworkSource(MetricSource):
    """Samples cumulative I/O counters per network interface.

    Counters never go backwards for an interface that stays present: a
    reading lower than the previous one (driver reset, wrap) is held at the
    previous value.  An interface that disappears is forgotten, so it starts
    fresh if it comes back.
    """

    def __init__(self, interface: str = "", include_loopback: bool = False) -> None:
        self._interface = interface
        self._include_loopback = include_loopback
        self._prev: dict[str, NetIface] = {}

    @property
    def kind(self) -> str:
        return NETWORK

    def _wanted(self, name: str) -> bool:
        if self._interface:
            return name == self._interface
        if not self._include_loopback and name.startswith("lo"):
            return False
        return True

    def sample(self, ctx: SampleContext) -> NetworkSample:
        counters = psutil.net_io_counters(pernic=True)
        current: dict[str, NetIface] = {}

        for name, nio in counters.items():
            if not self._wanted(name):
                continue
            iface = NetIface(
                name=name,
                bytes_rx=max(0, int(nio.bytes_recv)),
                bytes_tx=max(0, int(nio.bytes_sent)),
                packets_rx=max(0, int(nio.packets_recv)),
                packets_tx=max(0, int(nio.packets_sent)),
                err_in=max(0, int(nio.errin)),
                err_out=max(0, int(nio.errout)),
                drop_in=max(0, int(nio.dropin)),
                drop_out=max(0, int(nio.dropout)),
            )
            current[name] = self._hold_monotonic(iface)

        self._prev = current
        return NetworkSample(
            host_id=ctx.host_id,
            timestamp_ms=ctx.timestamp_ms,
            interfaces=tuple(current[name] for name in sorted(current)),
        )

    def _hold_monotonic(self, iface: NetIface) -> NetIface:
        prev = self._prev.get(iface.name)
        if prev is None:
            return iface
        values = {f: max(getattr(iface, f), getattr(prev, f)) for f in _COUNTER_FIELDS}
        return NetIface(name=iface.name, **values)
