"""Helpers for safe debug logging.

Tailscale credentials show up in two ways: under well-known keys (``apiKey``,
``client_secret``, ``Authorization``) and as bare values with a ``tskey-``
prefix. Both are masked before anything reaches a DEBUG log.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

_REDACTED = "<redacted>"
_KEY_PREFIX = "tskey-"

# Compared after lower-casing and dropping "_" / "-".
_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "accesstoken",
        "apikey",
        "authkey",
        "authorization",
        "clientsecret",
        "cookie",
        "machinekey",
        "nodekey",
        "password",
        "tailnetlockkey",
        "token",
    }
)


def _normalize_key(key: object) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def _redact_str(value: str, max_string: int) -> str:
    if value.startswith(_KEY_PREFIX) or value.lower().startswith("bearer "):
        return _REDACTED
    if len(value) > max_string:
        return f"{value[:max_string]}…<truncated>"
    return value


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* with credentials masked and long strings cut."""
    if _depth > 20:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _redact_str(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)

    if isinstance(value, Mapping):
        return {
            str(k): _REDACTED
            if _normalize_key(k) in _SENSITIVE_KEYS
            else redact_for_log(v, max_string=max_string, _depth=_depth + 1)
            for k, v in value.items()
        }
    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]
    return repr(value)


def mask_secret(secret: str, *, visible: int = 4) -> str:
    """Show only the first *visible* characters of a secret."""
    if not secret:
        return ""
    return f"{secret[:visible]}…" if len(secret) > visible else "…"
