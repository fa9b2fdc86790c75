"""Plain data records shared by the analytics engines.

Everything here is presentation-neutral: the engines take and return these
records, and ``to_dict()`` renders them with the camelCase keys the UI layer
expects.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class MachineType(Enum):
    """Station types that can be placed on the grid."""

    FEEDER = "feeder"
    FILLER = "filler"
    CAPPER = "capper"
    LABELER = "labeler"
    PACKAGER = "packager"
    BLOW_MOLDER = "blowMolder"

    @classmethod
    def parse(cls, value: Any) -> "MachineType":
        """Parse a type string, falling back to FEEDER for unknown values."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value == value:
                return member
        return cls.FEEDER


class Severity(Enum):
    """Anomaly severity."""

    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True, order=True)
class GridPosition:
    """Grid cell of a machine. Ordering is reading order: row, then column."""

    y: int
    x: int

    @classmethod
    def of(cls, x: int, y: int) -> "GridPosition":
        return cls(y=int(y), x=int(x))

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y}


# Defaults applied when the layout omits a field
DEFAULT_CYCLE_TIME = 5.0
DEFAULT_EFFICIENCY = 85.0
DEFAULT_ENERGY_COST = 5.0
DEFAULT_FAILURE_RATE = 3.0
DEFAULT_TEMPERATURE = 60.0
DEFAULT_VIBRATION = 2.0


def _field(data: Dict[str, Any], *keys: str, default: float) -> float:
    """First non-null value among ``keys`` as a float, else ``default``."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return float(value)
    return float(default)


@dataclass
class Machine:
    """A placed station and its current parameter snapshot."""

    id: str
    type: MachineType
    position: GridPosition
    name: str = ""
    cycle_time: float = DEFAULT_CYCLE_TIME  # seconds per item
    efficiency: float = DEFAULT_EFFICIENCY  # 0-100
    base_efficiency: float = DEFAULT_EFFICIENCY
    energy_cost: float = DEFAULT_ENERGY_COST  # kW
    failure_rate: float = DEFAULT_FAILURE_RATE  # %
    last_maintenance: float = 0.0  # hours since last service
    upgrades: List[str] = field(default_factory=list)

    # Last observed sensor values
    temperature: float = DEFAULT_TEMPERATURE
    vibration: float = DEFAULT_VIBRATION

    # Written by upgrade effects
    downtime_multiplier: float = 1.0
    maintenance_interval_multiplier: float = 1.0

    @property
    def speed(self) -> int:
        """Items per minute derived from the cycle time."""
        return max(1, round(60 / self.cycle_time))

    @property
    def display_name(self) -> str:
        return self.name or self.type.value.capitalize()

    def has_upgrade(self, upgrade_type: str) -> bool:
        return upgrade_type in self.upgrades

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Machine":
        """Build a machine from a loosely shaped layout entry.

        Missing or invalid fields are replaced with explicit defaults rather
        than rejected.
        """
        position = data.get("position") or {}
        if isinstance(position, GridPosition):
            grid = position
        else:
            grid = GridPosition.of(position.get("x") or 0, position.get("y") or 0)

        cycle_time = _field(data, "cycleTime", "cycle_time", default=DEFAULT_CYCLE_TIME)
        if cycle_time <= 0:
            cycle_time = DEFAULT_CYCLE_TIME

        efficiency = _field(data, "efficiency", default=DEFAULT_EFFICIENCY)

        upgrades: List[str] = []
        for upgrade in data.get("upgrades") or []:
            if upgrade not in upgrades:
                upgrades.append(upgrade)

        machine_type = MachineType.parse(data.get("type"))
        return cls(
            id=data.get("id") or f"m_{uuid.uuid4().hex[:8]}",
            type=machine_type,
            position=grid,
            name=data.get("name") or "",
            cycle_time=cycle_time,
            efficiency=efficiency,
            base_efficiency=_field(data, "baseEfficiency", "base_efficiency", default=efficiency),
            energy_cost=_field(data, "energyCost", "energy_cost", default=DEFAULT_ENERGY_COST),
            failure_rate=max(0.0, _field(data, "failureRate", "failure_rate", default=DEFAULT_FAILURE_RATE)),
            last_maintenance=_field(data, "lastMaintenance", "last_maintenance", default=0.0),
            upgrades=upgrades,
            temperature=_field(data, "temperature", default=DEFAULT_TEMPERATURE),
            vibration=_field(data, "vibration", default=DEFAULT_VIBRATION),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.display_name,
            "position": self.position.to_dict(),
            "cycleTime": self.cycle_time,
            "speed": self.speed,
            "efficiency": self.efficiency,
            "energyCost": self.energy_cost,
            "failureRate": self.failure_rate,
            "lastMaintenance": round(self.last_maintenance, 2),
            "upgrades": list(self.upgrades),
            "downtimeMultiplier": self.downtime_multiplier,
            "maintenanceIntervalMultiplier": self.maintenance_interval_multiplier,
        }


@dataclass
class Anomaly:
    """A rule violation found in a single reading cycle."""

    type: str
    severity: Severity
    value: float
    threshold: Optional[float] = None
    previous: Optional[float] = None
    change_pct: Optional[float] = None
    message: str = ""

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "severity": self.severity.value,
            "value": self.value,
            "message": self.message,
        }
        if self.threshold is not None:
            data["threshold"] = self.threshold
        if self.previous is not None:
            data["previous"] = round(self.previous, 2)
            data["change"] = self.change_pct
        return data


@dataclass
class Alert:
    """An anomaly attributed to a machine, with a suggested action."""

    machine_id: str
    machine_name: str
    anomaly: Anomaly
    suggested_action: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "machineId": self.machine_id,
            "machineName": self.machine_name,
            "timestamp": self.timestamp.isoformat(),
            "suggestedAction": self.suggested_action,
        }
        data.update(self.anomaly.to_dict())
        return data


@dataclass
class UpgradeRecord:
    """One applied upgrade. History is append-only."""

    machine_id: str
    upgrade_type: str
    upgrade_name: str
    cost: float
    effects: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "machineId": self.machine_id,
            "upgradeType": self.upgrade_type,
            "upgradeName": self.upgrade_name,
            "cost": self.cost,
            "timestamp": self.timestamp.isoformat(),
            "effects": dict(self.effects),
        }


@dataclass
class FinancialMetrics:
    """Accumulated investment and annual savings. Never decremented."""

    total_investment: float = 0.0
    total_savings: float = 0.0
    energy_savings: float = 0.0
    maintenance_savings: float = 0.0
    quality_savings: float = 0.0
    productivity_gains: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalInvestment": round(self.total_investment, 2),
            "totalSavings": round(self.total_savings, 2),
            "energySavings": round(self.energy_savings, 2),
            "maintenanceSavings": round(self.maintenance_savings, 2),
            "qualitySavings": round(self.quality_savings, 2),
            "productivityGains": round(self.productivity_gains, 2),
        }
