"""Connectivity monitor: online/offline flag with transition callbacks.

The host owns the truth about connectivity and reports it through
:meth:`ConnectivityMonitor.set_online`. :meth:`ConnectivityMonitor.probe`
is a convenience for hosts without a native signal: a HEAD request against
the remote base URL.
"""

import logging
import time
from typing import Callable, Optional

import httpx

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
LATENCY = "latency"
OFFLINE = "offline"

SLOW_RESPONSE_MS = 1500


class ConnectivityMonitor:
    """Tracks whether the device can reach the network."""

    def __init__(self, online: bool = True, probe_url: str = "",
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._online = online
        self.probe_url = probe_url
        self._transport = transport
        self.latency_ms: Optional[float] = None
        self._on_regained: list[Callable[[], None]] = []
        self._on_lost: list[Callable[[], None]] = []

    @property
    def online(self) -> bool:
        return self._online

    @property
    def health(self) -> str:
        if not self._online:
            return OFFLINE
        if self.latency_ms is not None and self.latency_ms > SLOW_RESPONSE_MS:
            return LATENCY
        return HEALTHY

    def on_regained(self, callback: Callable[[], None]):
        """Call ``callback`` each time connectivity comes back."""
        self._on_regained.append(callback)

    def on_lost(self, callback: Callable[[], None]):
        self._on_lost.append(callback)

    def set_online(self, online: bool):
        """Update the flag, firing listeners on a transition."""
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("Connectivity regained")
            self._notify(self._on_regained)
        elif was_online and not online:
            logger.info("Connectivity lost")
            self._notify(self._on_lost)

    @staticmethod
    def _notify(callbacks):
        for callback in list(callbacks):
            try:
                callback()
            except Exception:
                logger.exception("Connectivity listener failed")

    async def probe(self, timeout: float = 5.0) -> bool:
        """Check reachability of ``probe_url`` and update the flag."""
        if not self.probe_url:
            return self._online
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=timeout, transport=self._transport
            ) as client:
                await client.head(self.probe_url)
        except httpx.HTTPError as e:
            logger.debug("Connectivity probe failed: %s", e)
            self.latency_ms = None
            self.set_online(False)
            return False
        self.latency_ms = (time.monotonic() - start) * 1000.0
        self.set_online(True)
        return True
