"""pytailnet - Live topology model of a Tailscale network."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pytailnet")
except PackageNotFoundError:
    __version__ = "0+local"
from pytailnet.broadcast import ChangeBroadcaster, OverflowPolicy, Subscription
from pytailnet.config import LayoutConfig, TailnetConfig
from pytailnet.exceptions import (
    AllSourcesExhaustedError,
    SourceTimeoutError,
    SourceUnavailableError,
    TailnetConfigError,
    TailnetConflictError,
    TailnetError,
    TailnetNotFoundError,
    TailnetTransportError,
    TailnetValidationError,
)
from pytailnet.ingestion.sources import DirectoryApiSource, ManualFileSource, SeedSource, Source
from pytailnet.layout import LayoutEngine
from pytailnet.models import (
    Connection,
    ConnectionStatus,
    Device,
    DeviceCreate,
    DevicePatch,
    DeviceStatus,
    DeviceType,
    NetworkStats,
    NetworkTopology,
)
from pytailnet.monitor import TailnetMonitor
from pytailnet.reconciler import SourceReconciler
from pytailnet.state.events import TopologyEvent, TopologyEventKind, parse_event
from pytailnet.state.policy import StaleDevicePolicy, TopologyPolicy
from pytailnet.state.store import TopologyStore

__all__ = [
    "__version__",
    "AllSourcesExhaustedError",
    "ChangeBroadcaster",
    "Connection",
    "ConnectionStatus",
    "Device",
    "DeviceCreate",
    "DevicePatch",
    "DeviceStatus",
    "DeviceType",
    "DirectoryApiSource",
    "LayoutConfig",
    "LayoutEngine",
    "ManualFileSource",
    "NetworkStats",
    "NetworkTopology",
    "OverflowPolicy",
    "SeedSource",
    "Source",
    "SourceReconciler",
    "SourceTimeoutError",
    "SourceUnavailableError",
    "StaleDevicePolicy",
    "Subscription",
    "TailnetConfig",
    "TailnetConfigError",
    "TailnetConflictError",
    "TailnetError",
    "TailnetMonitor",
    "TailnetNotFoundError",
    "TailnetTransportError",
    "TailnetValidationError",
    "TopologyEvent",
    "TopologyEventKind",
    "TopologyPolicy",
    "TopologyStore",
    "parse_event",
]
