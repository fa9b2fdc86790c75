"""Line resolution and throughput estimates for a grid layout.

Machines placed on the grid are read top-left to bottom-right and treated
as a single serial line. The slowest station caps the line, and a fixed
efficiency factor accounts for idle time between stations and startup loss.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .config import CostConfig
from .models import Machine

logger = logging.getLogger(__name__)

LINE_EFFICIENCY = 0.85
MAX_PREVIEW_ITEMS = 20
MAX_PREVIEW_SECONDS = 10.0


@dataclass
class LineNode:
    """A machine placed in world space for the 3D view."""

    id: str
    name: str
    type: str
    pos: List[float]
    grid_pos: Dict[str, int]
    cycle_time: float
    speed: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "pos": list(self.pos),
            "gridPos": dict(self.grid_pos),
            "cycleTime": self.cycle_time,
            "speed": self.speed,
        }


@dataclass
class MovingItem:
    """A synthetic product travelling along the line."""

    id: str
    spawn_time: float
    time_per_item: float
    start_pos: List[float]
    end_pos: List[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "spawnTime": round(self.spawn_time, 3),
            "timePerItem": self.time_per_item,
            "startPos": list(self.start_pos),
            "endPos": list(self.end_pos),
        }


@dataclass
class SimulationState:
    """Ordered line, preview items and throughput figures."""

    nodes: List[LineNode] = field(default_factory=list)
    items: List[MovingItem] = field(default_factory=list)
    throughput_per_sec: float = 0.0
    estimated_items_produced: int = 0
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "items": [i.to_dict() for i in self.items],
            "throughputPerSec": self.throughput_per_sec,
            "estimatedItemsProduced": self.estimated_items_produced,
            "metrics": dict(self.metrics),
        }


def resolve_line(machines: Iterable[Machine]) -> List[Machine]:
    """Order machines into a line by row, then column."""
    return sorted(machines, key=lambda m: (m.position.y, m.position.x))


def bottleneck_machine(machines: Iterable[Machine]) -> Optional[Machine]:
    """Get the slowest station of the line, first in reading order on ties."""
    line = resolve_line(machines)
    if not line:
        return None
    return min(line, key=lambda m: m.speed)


def bottleneck_speed(machines: Iterable[Machine]) -> float:
    """Line speed in items/min after line losses. Zero for an empty layout."""
    slowest = bottleneck_machine(machines)
    if slowest is None:
        return 0.0
    return slowest.speed * LINE_EFFICIENCY


def throughput_per_second(machines: Iterable[Machine]) -> float:
    return bottleneck_speed(machines) / 60


def estimated_output(machines: Iterable[Machine], duration_s: float) -> int:
    """Items the line produces over a duration in seconds."""
    return round(throughput_per_second(machines) * duration_s)


def energy_consumption(machines: Iterable[Machine]) -> float:
    """Hourly energy draw of the line."""
    return sum(m.energy_cost for m in machines) * 60


def production_cost(units: float, costs: CostConfig) -> float:
    """Approximate total cost of producing a number of units."""
    material = units * costs.raw_material_cost
    packaging = units * costs.packaging_cost
    energy = (units / 50) * costs.electricity_cost
    maintenance = (units / 1000) * costs.maintenance_cost
    labor = (units / 200) * costs.labor_cost
    return material + packaging + energy + maintenance + labor


def _world_position(machine: Machine, cell_size: float) -> List[float]:
    # Grid column maps to x, grid row to z, centred in the cell
    x = machine.position.x * cell_size + cell_size / 2
    z = machine.position.y * cell_size + cell_size / 2
    return [x, 0.0, z]


def _preview_items(nodes: List[LineNode], throughput: float, duration_s: float) -> List[MovingItem]:
    if not nodes:
        return []

    total_path_time = sum(n.cycle_time for n in nodes)
    spawn_interval = max(0.5, 1 / throughput) if throughput > 0 else 2.0
    horizon = min(duration_s, MAX_PREVIEW_SECONDS)

    items = []
    t = 0.0
    while t < horizon:
        items.append(
            MovingItem(
                id=f"item_{len(items)}",
                spawn_time=t,
                time_per_item=total_path_time * 0.8,
                start_pos=nodes[0].pos,
                end_pos=nodes[-1].pos,
            )
        )
        t += spawn_interval
        if len(items) > MAX_PREVIEW_ITEMS:
            break
    return items


def compute_simulation_state(
    layout: Iterable[Machine],
    duration_s: float = 10.0,
    cell_size: float = 20.0,
    rows: int = 6,
    cols: int = 8,
) -> SimulationState:
    """Resolve a layout into the line shown by the 3D view."""
    line = resolve_line(layout)
    if not line:
        logger.debug("Empty layout, returning zero state")
        return SimulationState(
            metrics={
                "machineCount": 0,
                "totalCycleTime": 0,
                "avgCycleTime": 0,
                "gridSize": {"rows": rows, "cols": cols},
            }
        )

    outside = [m.id for m in line if m.position.x >= cols or m.position.y >= rows]
    if outside:
        logger.warning(f"Machines outside the {cols}x{rows} grid: {outside}")

    nodes = [
        LineNode(
            id=m.id,
            name=m.display_name,
            type=m.type.value,
            pos=_world_position(m, cell_size),
            grid_pos=m.position.to_dict(),
            cycle_time=m.cycle_time,
            speed=m.speed,
        )
        for m in line
    ]

    throughput = throughput_per_second(line)
    total_cycle_time = sum(n.cycle_time for n in nodes)
    slowest = bottleneck_machine(line)

    state = SimulationState(
        nodes=nodes,
        items=_preview_items(nodes, throughput, duration_s),
        throughput_per_sec=throughput,
        estimated_items_produced=round(throughput * duration_s),
        metrics={
            "machineCount": len(nodes),
            "totalCycleTime": total_cycle_time,
            "avgCycleTime": round(total_cycle_time / len(nodes), 2),
            "efficiency": LINE_EFFICIENCY,
            "bottleneckSpeed": round(bottleneck_speed(line), 2),
            "bottleneckMachineId": slowest.id if slowest else None,
            "energyUsage": sum(n.cycle_time * 10 for n in nodes),
            "gridSize": {"rows": rows, "cols": cols},
        },
    )
    logger.debug(
        f"Resolved line of {len(nodes)} machines, throughput {throughput:.2f} items/sec"
    )
    return state
