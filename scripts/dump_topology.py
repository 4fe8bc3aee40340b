#!/usr/bin/env python3
"""Dump the tailnet topology pytailnet builds.

Boots a monitor from the configured sources (directory API, curated file,
built-in seed set), prints devices, connections and stats, and optionally
follows the change stream for a while.

Usage
-----
Set environment variables and run::

    export TAILSCALE_TAILNET="example.ts.net"
    export TAILSCALE_API_KEY="tskey-api-..."
    python scripts/dump_topology.py

Options::

    --json               Output as machine-readable JSON
    --output FILE        Write output to FILE instead of stdout
    --topology POLICY    hub, mesh or star (default: TAILNET_TOPOLOGY or hub)
    --watch SECONDS      Print change events for SECONDS after the dump
    --export FILE        Write the device roster in curated-file format
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pytailnet import NetworkTopology, Subscription, TailnetConfig, TailnetMonitor, TopologyPolicy  # noqa: E402

# ── helpers ──────────────────────────────────────────────────


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _format_topology(topology: NetworkTopology) -> list[str]:
    names = {d.id: d.name for d in topology.devices}
    out = [_section(f"DEVICES ({len(topology.devices)})")]
    for d in topology.devices:
        marker = "*" if d.is_coordinator else " "
        out.append(
            f" {marker}{d.id:>3}  {d.name:<24} {d.ip_address:<16} {d.device_type:<8} {d.status:<13}"
            f" ({d.x:6.1f}, {d.y:6.1f})  {','.join(d.tags)}"
        )

    out.append(_section(f"CONNECTIONS ({len(topology.connections)})"))
    for c in topology.connections:
        out.append(f"  {c.id:>3}  {names.get(c.from_device_id, '?')} -> {names.get(c.to_device_id, '?')}  {c.status}")

    stats = topology.stats
    out.append(_section("STATS"))
    out.append(f"  total     : {stats.total_devices}")
    out.append(f"  online    : {stats.online_devices}")
    out.append(f"  unstable  : {stats.unstable_devices}")
    out.append(f"  offline   : {stats.offline_devices}")
    return out


async def _watch(subscription: Subscription, seconds: float, *, json_mode: bool) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    with contextlib.suppress(TimeoutError):
        async with asyncio.timeout(seconds):
            async for event in subscription:
                events.append(event.to_wire())
                if not json_mode:
                    print(f"  {event.emitted_at.isoformat()}  {event.kind}")
    return events


async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Dump the tailnet topology pytailnet builds for debugging / development.",
    )
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--output", "-o", help="Write output to FILE instead of stdout")
    parser.add_argument("--topology", choices=[p.value for p in TopologyPolicy], help="Edge generation policy")
    parser.add_argument("--watch", type=float, default=0.0, metavar="SECONDS", help="Follow change events")
    parser.add_argument("--export", metavar="FILE", help="Write the roster in curated-file format")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    overrides: dict[str, Any] = {}
    if args.topology:
        overrides["topology"] = TopologyPolicy(args.topology)
    config = TailnetConfig.from_env(**overrides)

    result: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "tailnet": config.tailnet,
        "topology_policy": str(config.topology),
    }

    async with TailnetMonitor(config) as monitor:
        topology = monitor.get_topology()
        result["topology"] = topology.to_wire()

        if not args.json_mode:
            out = [_section("pytailnet dump_topology")]
            out.append(f"  time      : {result['timestamp']}")
            out.append(f"  tailnet   : {config.tailnet or '-'}")
            out.append(f"  policy    : {config.topology}")
            out.extend(_format_topology(topology))
            print("\n".join(out))

        if args.export:
            count = await monitor.export_manual_file(args.export)
            print(f"Exported {count} devices to {args.export}", file=sys.stderr)

        if args.watch > 0:
            subscription = monitor.subscribe()
            subscription.get_nowait()  # skip the snapshot already printed
            if not args.json_mode:
                print(_section(f"EVENTS ({args.watch:g}s)"))
            result["events"] = await _watch(subscription, args.watch, json_mode=args.json_mode)
            monitor.unsubscribe(subscription)

    # ── Output ──
    payload = json.dumps(result, indent=2, default=str, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
        print(f"JSON written to {args.output}", file=sys.stderr)
    elif args.json_mode:
        print(payload)


if __name__ == "__main__":
    asyncio.run(main())
