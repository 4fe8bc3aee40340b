"""Normalization helpers.

Centralizes how raw source records map onto device classes and statuses.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from pytailnet._constants import COORDINATOR_TAGS, DEFAULT_STALENESS_THRESHOLD_S, UNKNOWN
from pytailnet.models import DeviceCreate, DeviceStatus, DeviceType, DirectoryDevice

_MOBILE_OS = ("ios", "android")
_SERVER_OS = ("linux", "ubuntu", "debian")


def safe_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def device_type_from_os(os_name: str | None) -> DeviceType:
    """ios/android → mobile; linux-like → server; anything else → desktop."""
    lowered = (os_name or "").lower()
    if any(token in lowered for token in _MOBILE_OS):
        return DeviceType.MOBILE
    if any(token in lowered for token in _SERVER_OS):
        return DeviceType.SERVER
    return DeviceType.DESKTOP


def device_type_from_name(name: str) -> DeviceType:
    """Best guess for curated entries that do not state a device type."""
    lowered = name.lower()
    if "server" in lowered:
        return DeviceType.SERVER
    if "phone" in lowered or "mobile" in lowered:
        return DeviceType.MOBILE
    if "laptop" in lowered or "macbook" in lowered:
        return DeviceType.DESKTOP
    return DeviceType.OTHER


def classify_status(
    online: bool,
    last_seen: datetime | None,
    now: datetime,
    *,
    threshold_seconds: float = DEFAULT_STALENESS_THRESHOLD_S,
) -> DeviceStatus:
    """Map the online flag and last-seen age onto a connectivity status.

    An online device is unstable only when its age is *strictly greater*
    than the threshold; an age exactly equal to it is still connected.
    A missing last-seen timestamp, or one in the future, counts as fresh.
    """
    if not online:
        return DeviceStatus.DISCONNECTED
    if last_seen is None:
        return DeviceStatus.CONNECTED
    age = (now - last_seen).total_seconds()
    if age > threshold_seconds:
        return DeviceStatus.UNSTABLE
    return DeviceStatus.CONNECTED


def is_coordinator_tagged(tags: Iterable[str]) -> bool:
    return any(tag.lower() in COORDINATOR_TAGS for tag in tags)


def normalize_directory_device(
    device: DirectoryDevice,
    *,
    now: datetime,
    threshold_seconds: float = DEFAULT_STALENESS_THRESHOLD_S,
) -> DeviceCreate:
    """Convert a directory API record into a device record."""
    name = device.name or device.hostname or device.id
    return DeviceCreate(
        external_id=device.id,
        name=name,
        hostname=device.hostname or name,
        ip_address=device.addresses[0] if device.addresses else UNKNOWN,
        device_type=device_type_from_os(device.os),
        os=device.os or UNKNOWN,
        status=classify_status(device.online, device.last_seen, now, threshold_seconds=threshold_seconds),
        tags=device.tags,
        is_coordinator=is_coordinator_tagged(device.tags),
    )
