"""Custom exception hierarchy for pytailnet."""

from __future__ import annotations

from collections.abc import Sequence


class TailnetError(Exception):
    """Base exception for all pytailnet errors."""


class TailnetConfigError(TailnetError):
    """Invalid or missing configuration."""


class TailnetTransportError(TailnetError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class TailnetValidationError(TailnetError):
    """Malformed input to a create/update operation."""


class TailnetNotFoundError(TailnetError):
    """Operation on an id the store does not know."""

    def __init__(self, kind: str, item_id: int) -> None:
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} with id {item_id} not found")


class TailnetConflictError(TailnetError):
    """A device with the same external id already exists."""

    def __init__(self, external_id: str) -> None:
        self.external_id = external_id
        super().__init__(f"Device with external id {external_id!r} already exists")


class SourceUnavailableError(TailnetError):
    """A single source failed to produce a device set.

    Always recoverable: the reconciler falls through to the next source.
    """

    def __init__(self, message: str, *, source: str = "") -> None:
        self.source = source
        super().__init__(message)


class SourceTimeoutError(SourceUnavailableError):
    """A source fetch exceeded its deadline and was cancelled."""


class AllSourcesExhaustedError(TailnetError):
    """Every source failed during an explicit refresh.

    The store is left at its last-known-good state.
    """

    def __init__(self, failures: Sequence[SourceUnavailableError]) -> None:
        self.failures = list(failures)
        detail = "; ".join(f"{f.source or '?'}: {f}" for f in self.failures) or "no sources configured"
        super().__init__(f"All sources exhausted ({detail})")
