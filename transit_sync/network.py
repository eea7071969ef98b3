"""
Network-quality detection and online/offline signalling.

Responsibilities:
- Classify raw connection metrics into a QualityClass.
- Wrap an injected connection-info provider so that callers never probe
  for the capability themselves; a provider without the capability yields
  a fixed default sample.
- Track the online/offline state consumed by the offline write queue.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import aiohttp

from .const import (
    DEFAULT_DOWNLINK_MBPS,
    DEFAULT_EFFECTIVE_TYPE,
    DEFAULT_RTT_MS,
    PROBE_2G_RTT_MS,
    PROBE_3G_RTT_MS,
    PROBE_FAILED_RTT_MS,
    PROBE_SLOW_2G_RTT_MS,
    RTT_GOOD_MS,
    RTT_POOR_MS,
)
from .models import NetworkSample, QualityClass

_LOGGER = logging.getLogger(__name__)

DEFAULT_SAMPLE = NetworkSample(
    effective_type=DEFAULT_EFFECTIVE_TYPE,
    downlink_mbps=DEFAULT_DOWNLINK_MBPS,
    rtt_ms=DEFAULT_RTT_MS,
)


def classify(sample: NetworkSample) -> QualityClass:
    """Map raw connection metrics to a QualityClass."""
    effective_type = sample.effective_type
    if effective_type in ("slow-2g", "2g"):
        quality = QualityClass.POOR
    elif effective_type == "3g":
        quality = QualityClass.POOR if sample.downlink_mbps < 1.5 else QualityClass.GOOD
    elif effective_type == "4g":
        quality = QualityClass.GOOD if sample.downlink_mbps < 5 else QualityClass.EXCELLENT
    else:
        quality = QualityClass.GOOD

    # RTT overrides the nominal type
    if sample.rtt_ms > RTT_POOR_MS:
        quality = QualityClass.POOR
    elif sample.rtt_ms > RTT_GOOD_MS and quality is not QualityClass.POOR:
        quality = QualityClass.GOOD
    return quality


def effective_type_for_rtt(rtt_ms: float) -> str:
    """Derive an effective connection type from a measured round-trip time."""
    if rtt_ms >= PROBE_SLOW_2G_RTT_MS:
        return "slow-2g"
    if rtt_ms >= PROBE_2G_RTT_MS:
        return "2g"
    if rtt_ms >= PROBE_3G_RTT_MS:
        return "3g"
    return "4g"


# ---------------------------------------------------------------------------
# Connection-info providers
# ---------------------------------------------------------------------------

class ConnectionInfoProvider:
    """
    Source of raw connection metrics.

    Subclasses override read() and call _notify() whenever the underlying
    connection changes.
    """

    available = True

    def __init__(self) -> None:
        self._listeners: list[Callable[[], None]] = []

    def read(self) -> NetworkSample:
        raise NotImplementedError

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()


class UnavailableConnectionInfo(ConnectionInfoProvider):
    """Provider for runtimes that expose no connection information at all."""

    available = False

    def read(self) -> NetworkSample:
        return DEFAULT_SAMPLE


class ManualConnectionInfo(ConnectionInfoProvider):
    """Provider whose sample is set by the host application."""

    def __init__(self, sample: NetworkSample = DEFAULT_SAMPLE) -> None:
        super().__init__()
        self._sample = sample

    def read(self) -> NetworkSample:
        return self._sample

    def update(self, sample: NetworkSample) -> None:
        """Replace the current sample and fire a change event."""
        self._sample = sample
        self._notify()


class ProbeConnectionInfo(ConnectionInfoProvider):
    """
    Provider that measures the round-trip time with an HTTP HEAD request.

    Downlink cannot be measured this way and is reported as the default.
    When a ConnectivitySignal is given, probe outcomes also drive the
    online/offline state.
    """

    def __init__(
        self,
        url: str,
        timeout: int = 15,
        connectivity: ConnectivitySignal | None = None,
    ) -> None:
        super().__init__()
        self._url = url
        self._timeout = timeout
        self._connectivity = connectivity
        self._sample = DEFAULT_SAMPLE

    def read(self) -> NetworkSample:
        return self._sample

    async def probe(self) -> NetworkSample:
        """Send one HEAD request and update the sample from its timing."""
        timeout_config = aiohttp.ClientTimeout(total=self._timeout)
        started = time.monotonic()
        reachable = False
        try:
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.head(self._url) as response:
                    reachable = response.status < 500
                    if not reachable:
                        _LOGGER.warning("Probe URL answered with status %s", response.status)
        except (asyncio.TimeoutError, TimeoutError):
            _LOGGER.warning("Timeout while probing %s", self._url)
        except aiohttp.ClientError as exc:
            _LOGGER.warning("Error while probing %s: %s", self._url, exc)

        if reachable:
            rtt_ms = int((time.monotonic() - started) * 1000)
            sample = NetworkSample(
                effective_type=effective_type_for_rtt(rtt_ms),
                downlink_mbps=DEFAULT_DOWNLINK_MBPS,
                rtt_ms=rtt_ms,
            )
        else:
            sample = NetworkSample(
                effective_type="slow-2g",
                downlink_mbps=DEFAULT_DOWNLINK_MBPS,
                rtt_ms=PROBE_FAILED_RTT_MS,
            )

        if self._connectivity is not None:
            self._connectivity.set_online(reachable)

        changed = sample != self._sample
        self._sample = sample
        if changed:
            self._notify()
        return sample

    async def run(self, interval: float) -> None:
        """Probe every `interval` seconds until cancelled."""
        while True:
            await self.probe()
            await asyncio.sleep(interval)


# ---------------------------------------------------------------------------
# NetworkMonitor
# ---------------------------------------------------------------------------

class NetworkMonitor:
    """Samples the injected provider and reports quality changes."""

    def __init__(self, provider: ConnectionInfoProvider | None = None) -> None:
        self._provider = provider or UnavailableConnectionInfo()

    @property
    def provider(self) -> ConnectionInfoProvider:
        return self._provider

    def sample(self) -> NetworkSample:
        if not self._provider.available:
            return DEFAULT_SAMPLE
        return self._provider.read()

    @staticmethod
    def classify(sample: NetworkSample) -> QualityClass:
        return classify(sample)

    @property
    def quality(self) -> QualityClass:
        return classify(self.sample())

    def on_change(self, callback: Callable[[QualityClass], None]) -> Callable[[], None]:
        """
        Subscribe to quality changes.

        The callback fires once immediately with the current quality so
        dependents can initialise synchronously, then on every change event
        from the provider. The returned function removes the listener; calling
        it more than once is a no-op.
        """

        def _handle() -> None:
            callback(self.quality)

        registered = self._provider.available
        if registered:
            self._provider.add_listener(_handle)

        _handle()

        def _unsubscribe() -> None:
            nonlocal registered
            if not registered:
                return
            registered = False
            self._provider.remove_listener(_handle)

        return _unsubscribe


# ---------------------------------------------------------------------------
# Online / offline signal
# ---------------------------------------------------------------------------

class ConnectivitySignal:
    """Online/offline state with transition listeners."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Record the current state; listeners fire only on a transition."""
        if online == self._online:
            return
        self._online = online
        _LOGGER.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)

    def add_listener(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove
