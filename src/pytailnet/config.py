"""Monitor configuration for pytailnet."""

from __future__ import annotations

import dataclasses
import enum
import os
from pathlib import Path
from typing import Any, TypeVar

from pytailnet._constants import (
    BASE_URL,
    DEFAULT_MANUAL_FILE,
    DEFAULT_SOURCE_TIMEOUT_S,
    DEFAULT_STALENESS_THRESHOLD_S,
    DEFAULT_SUBSCRIBER_QUEUE,
    DEFAULT_SYNC_INTERVAL_S,
)
from pytailnet.broadcast import OverflowPolicy
from pytailnet.exceptions import TailnetConfigError
from pytailnet.state.policy import StaleDevicePolicy, TopologyPolicy

TEnum = TypeVar("TEnum", bound=enum.Enum)


def _env_enum(enum_cls: type[TEnum], value: str | None, default: TEnum) -> TEnum:
    if value is None or not value.strip():
        return default
    try:
        return enum_cls(value.strip().lower())
    except ValueError as exc:
        choices = ", ".join(str(member.value) for member in enum_cls)
        raise TailnetConfigError(f"Invalid value {value!r}; expected one of: {choices}") from exc


def _env_float(env_key: str) -> float | None:
    value = os.environ.get(env_key)
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise TailnetConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class LayoutConfig:
    """Canvas and spring-embedder parameters for the layout engine."""

    width: float = 800.0
    height: float = 600.0
    iterations: int = 100
    damping: float = 0.9
    margin: float = 50.0
    step: float = 0.1
    radius_ratio: float = 0.3

    def __post_init__(self) -> None:
        if self.width <= 2 * self.margin or self.height <= 2 * self.margin:
            raise TailnetConfigError("canvas must be larger than twice the margin on both axes")
        if self.iterations < 0:
            raise TailnetConfigError("iterations must be >= 0")
        if not 0.0 <= self.damping <= 1.0:
            raise TailnetConfigError("damping must be between 0 and 1")


@dataclasses.dataclass(frozen=True)
class TailnetConfig:
    """Monitor configuration.

    Parameters
    ----------
    tailnet : str or None
        Tailnet name (e.g. ``"example.ts.net"``). The live directory source is
        only used when this and a credential are set.
    api_key : str or None
        Static API access token.
    oauth_client_id, oauth_client_secret : str or None
        OAuth client credentials, used instead of ``api_key`` when both are set.
    base_url : str
        Directory API base URL.
    manual_file : Path or None
        Curated device file consulted when the live directory fails.
        ``None`` disables the source.
    topology : TopologyPolicy
        How connection edges are generated on a full replace.
    stale_policy : StaleDevicePolicy
        What happens to devices missing from the latest snapshot.
    sync_interval : float
        Seconds between timer-driven reconciliations. ``0`` disables the timer.
    source_timeout : float
        Deadline in seconds for a single source fetch.
    staleness_threshold : float
        Seconds since last seen after which an online device is unstable.
    subscriber_queue : int
        Pending events held per subscriber before the overflow policy applies.
    overflow_policy : OverflowPolicy
        What to do with a saturated subscriber.
    layout : LayoutConfig
        Layout canvas and heuristic parameters.
    """

    tailnet: str | None = None
    api_key: str | None = None
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None
    base_url: str = BASE_URL
    manual_file: Path | None = Path(DEFAULT_MANUAL_FILE)
    topology: TopologyPolicy = TopologyPolicy.HUB
    stale_policy: StaleDevicePolicy = StaleDevicePolicy.REPLACE
    sync_interval: float = DEFAULT_SYNC_INTERVAL_S
    source_timeout: float = DEFAULT_SOURCE_TIMEOUT_S
    staleness_threshold: float = DEFAULT_STALENESS_THRESHOLD_S
    subscriber_queue: int = DEFAULT_SUBSCRIBER_QUEUE
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    layout: LayoutConfig = dataclasses.field(default_factory=LayoutConfig)

    def __post_init__(self) -> None:
        if self.source_timeout <= 0:
            raise TailnetConfigError("source_timeout must be positive")
        if self.sync_interval < 0:
            raise TailnetConfigError("sync_interval must be >= 0")
        if self.subscriber_queue < 1:
            raise TailnetConfigError("subscriber_queue must be >= 1")

    @property
    def uses_oauth(self) -> bool:
        return bool(self.oauth_client_id and self.oauth_client_secret)

    @property
    def api_configured(self) -> bool:
        """Whether the live directory source can be used."""
        return bool(self.tailnet) and (bool(self.api_key) or self.uses_oauth)

    @classmethod
    def from_env(cls, **overrides: Any) -> TailnetConfig:
        """Create configuration from environment variables.

        Reads ``TAILSCALE_API_KEY``, ``TAILSCALE_TAILNET`` and the optional
        ``TAILSCALE_OAUTH_*`` / ``TAILNET_*`` variables. Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TailnetConfig
            Populated configuration.
        """
        env = os.environ

        layout_kwargs: dict[str, Any] = {}
        _ENV_LAYOUT_MAP = {
            "TAILNET_CANVAS_WIDTH": "width",
            "TAILNET_CANVAS_HEIGHT": "height",
            "TAILNET_LAYOUT_DAMPING": "damping",
            "TAILNET_LAYOUT_MARGIN": "margin",
        }
        for env_key, field_name in _ENV_LAYOUT_MAP.items():
            val = _env_float(env_key)
            if val is not None:
                layout_kwargs[field_name] = val
        iterations = _env_float("TAILNET_LAYOUT_ITERATIONS")
        if iterations is not None:
            layout_kwargs["iterations"] = int(iterations)

        layout_overrides = overrides.pop("layout", None)
        if isinstance(layout_overrides, dict):
            layout_kwargs.update(layout_overrides)
        elif isinstance(layout_overrides, LayoutConfig):
            layout_kwargs = dataclasses.asdict(layout_overrides)

        layout = LayoutConfig(**layout_kwargs) if layout_kwargs else LayoutConfig()

        _ENV_CONFIG_MAP = {
            "TAILSCALE_TAILNET": "tailnet",
            "TAILSCALE_API_KEY": "api_key",
            "TAILSCALE_OAUTH_CLIENT_ID": "oauth_client_id",
            "TAILSCALE_OAUTH_CLIENT_SECRET": "oauth_client_secret",
            "TAILNET_BASE_URL": "base_url",
        }
        config_kwargs: dict[str, Any] = {"layout": layout}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = val

        manual_env = env.get("TAILNET_MANUAL_FILE")
        if manual_env is not None and "manual_file" not in overrides:
            config_kwargs["manual_file"] = Path(manual_env) if manual_env.strip() else None

        if "topology" not in overrides:
            config_kwargs["topology"] = _env_enum(TopologyPolicy, env.get("TAILNET_TOPOLOGY"), TopologyPolicy.HUB)
        if "stale_policy" not in overrides:
            config_kwargs["stale_policy"] = _env_enum(
                StaleDevicePolicy,
                env.get("TAILNET_STALE_POLICY"),
                StaleDevicePolicy.REPLACE,
            )
        if "overflow_policy" not in overrides:
            config_kwargs["overflow_policy"] = _env_enum(
                OverflowPolicy,
                env.get("TAILNET_OVERFLOW_POLICY"),
                OverflowPolicy.DROP_OLDEST,
            )

        # numeric settings, handled separately
        _ENV_NUMERIC_MAP = {
            "TAILNET_SYNC_INTERVAL": "sync_interval",
            "TAILNET_SOURCE_TIMEOUT": "source_timeout",
            "TAILNET_STALENESS_THRESHOLD": "staleness_threshold",
        }
        for env_key, field_name in _ENV_NUMERIC_MAP.items():
            val = _env_float(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        queue_env = _env_float("TAILNET_SUBSCRIBER_QUEUE")
        if queue_env is not None and "subscriber_queue" not in overrides:
            config_kwargs["subscriber_queue"] = int(queue_env)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
