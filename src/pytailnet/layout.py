"""Spring-embedder layout for topology visualization.

The engine is a deterministic visual heuristic: the same devices and
connections always produce the same positions, and every position stays
inside the canvas margin. There is no convergence guarantee.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from pytailnet.config import LayoutConfig
from pytailnet.models import Connection, Device

Position = tuple[float, float]


@dataclass(slots=True)
class _Node:
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0


class LayoutEngine:
    """Assign and refine 2-D positions for devices."""

    def __init__(self, config: LayoutConfig | None = None) -> None:
        self._config = config or LayoutConfig()

    @property
    def config(self) -> LayoutConfig:
        return self._config

    def initial_positions(self, devices: Sequence[Device]) -> dict[int, Position]:
        """Center the coordinator; spread the rest evenly on a circle."""
        cfg = self._config
        cx, cy = cfg.width / 2, cfg.height / 2
        coordinator = next((d for d in devices if d.is_coordinator), None)

        positions: dict[int, Position] = {}
        if coordinator is not None:
            positions[coordinator.id] = (cx, cy)

        others = [d for d in devices if coordinator is None or d.id != coordinator.id]
        radius = min(cfg.width, cfg.height) * cfg.radius_ratio
        for index, device in enumerate(others):
            angle = (index / len(others)) * 2 * math.pi
            positions[device.id] = (cx + math.cos(angle) * radius, cy + math.sin(angle) * radius)
        return positions

    def refine(
        self,
        positions: Mapping[int, Position],
        edges: Sequence[tuple[int, int]],
    ) -> dict[int, Position]:
        """Run the configured number of spring-embedder iterations."""
        cfg = self._config
        if not positions:
            return {}

        ids = list(positions)
        nodes = {device_id: _Node(*positions[device_id]) for device_id in ids}
        k = math.sqrt((cfg.width * cfg.height) / len(ids))
        repulsion = k * k
        links = [(a, b) for a, b in edges if a in nodes and b in nodes and a != b]

        for _ in range(cfg.iterations):
            for i, id_a in enumerate(ids):
                a = nodes[id_a]
                for id_b in ids[i + 1 :]:
                    b = nodes[id_b]
                    dx = a.x - b.x
                    dy = a.y - b.y
                    distance = math.hypot(dx, dy) or 1.0
                    force = repulsion / distance
                    fx = dx / distance * force
                    fy = dy / distance * force
                    a.vx += fx
                    a.vy += fy
                    b.vx -= fx
                    b.vy -= fy

            for id_a, id_b in links:
                a = nodes[id_a]
                b = nodes[id_b]
                dx = b.x - a.x
                dy = b.y - a.y
                distance = math.hypot(dx, dy) or 1.0
                force = distance * distance / k
                fx = dx / distance * force
                fy = dy / distance * force
                a.vx += fx
                a.vy += fy
                b.vx -= fx
                b.vy -= fy

            for node in nodes.values():
                node.x += node.vx * cfg.step
                node.y += node.vy * cfg.step
                node.vx *= cfg.damping
                node.vy *= cfg.damping
                node.x = _clamp(node.x, cfg.margin, cfg.width - cfg.margin)
                node.y = _clamp(node.y, cfg.margin, cfg.height - cfg.margin)

        return {
            device_id: (
                _clamp(node.x, cfg.margin, cfg.width - cfg.margin),
                _clamp(node.y, cfg.margin, cfg.height - cfg.margin),
            )
            for device_id, node in nodes.items()
        }

    def compute(self, devices: Sequence[Device], connections: Sequence[Connection]) -> dict[int, Position]:
        """Initial placement followed by refinement."""
        initial = self.initial_positions(devices)
        edges = [(c.from_device_id, c.to_device_id) for c in connections]
        return self.refine(initial, edges)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
