"""State/store layer.

This package is the single source of truth for the device roster, the
links between devices and the derived health counts. Reconciliation and
direct edits both go through :class:`~pytailnet.state.store.TopologyStore`.
"""
