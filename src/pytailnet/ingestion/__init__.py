"""Ingestion layer.

This package contains the sources that fetch device rosters from the
environment (directory API, curated file, built-in seed) and the helpers
that normalize their records into :class:`~pytailnet.models.DeviceCreate`.
"""

__all__: list[str] = []
