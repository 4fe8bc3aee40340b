"""Pydantic models for devices, connections, stats and source records."""

from pytailnet.models._base import TailnetEnum, TailnetModel, parse_timestamp
from pytailnet.models.connection import Connection, ConnectionCreate, ConnectionPatch, ConnectionStatus
from pytailnet.models.device import Device, DeviceCreate, DevicePatch, DeviceStatus, DeviceType
from pytailnet.models.directory import DirectoryDevice, ManualDeviceEntry, ManualDeviceFile
from pytailnet.models.stats import NetworkStats, NetworkTopology

__all__ = [
    "Connection",
    "ConnectionCreate",
    "ConnectionPatch",
    "ConnectionStatus",
    "Device",
    "DeviceCreate",
    "DevicePatch",
    "DeviceStatus",
    "DeviceType",
    "DirectoryDevice",
    "ManualDeviceEntry",
    "ManualDeviceFile",
    "NetworkStats",
    "NetworkTopology",
    "TailnetEnum",
    "TailnetModel",
    "parse_timestamp",
]
