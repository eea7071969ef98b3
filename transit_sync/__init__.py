"""Adaptive synchronization layer for live transit tracking."""
from .config import SyncConfig, load_config
from .const import VERSION
from .context import SyncContext
from .models import (
    NetworkSample,
    NetworkStatus,
    OperatingConfig,
    QualityClass,
    SessionState,
    TrackedResource,
    TrackingSnapshot,
)
from .network import ConnectivitySignal, ManualConnectionInfo, NetworkMonitor, ProbeConnectionInfo
from .policy import resolve
from .session import TrackingSession
from .store import FirebaseRestStore, MemoryStore

__version__ = VERSION

__all__ = [
    "ConnectivitySignal",
    "FirebaseRestStore",
    "ManualConnectionInfo",
    "MemoryStore",
    "NetworkMonitor",
    "NetworkSample",
    "NetworkStatus",
    "OperatingConfig",
    "ProbeConnectionInfo",
    "QualityClass",
    "SessionState",
    "SyncConfig",
    "SyncContext",
    "TrackedResource",
    "TrackingSession",
    "TrackingSnapshot",
    "load_config",
    "resolve",
]
