"""Aggregate health counts and the combined topology snapshot."""

from __future__ import annotations

from pydantic import Field

from pytailnet.models._base import TailnetModel, Timestamp
from pytailnet.models.connection import Connection
from pytailnet.models.device import Device, DeviceStatus


class NetworkStats(TailnetModel):
    """Device counts by status.

    Always derived from the device set; ``total_devices`` equals the sum of
    the three status counts.
    """

    total_devices: int = 0
    online_devices: int = 0
    offline_devices: int = 0
    unstable_devices: int = 0
    last_updated: Timestamp = None

    def by_status(self) -> dict[DeviceStatus, int]:
        """Metrics projection: counts keyed by device status."""
        return {
            DeviceStatus.CONNECTED: self.online_devices,
            DeviceStatus.DISCONNECTED: self.offline_devices,
            DeviceStatus.UNSTABLE: self.unstable_devices,
        }


class NetworkTopology(TailnetModel):
    """Devices, connections and stats read together."""

    devices: list[Device] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    stats: NetworkStats = Field(default_factory=NetworkStats)
