"""Configuration management for the simulator."""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .levels import MachineLevel
from .models import Machine, MachineType

logger = logging.getLogger(__name__)


@dataclass
class ProductionConfig:
    """Shift and production inputs for the OEE calculation."""

    shift_hours: float = 8.0
    downtime: float = 45.0  # minutes per shift
    production_rate: float = 1200.0  # units per hour
    defect_rate: float = 3.0  # %


@dataclass
class SimulationConfig:
    """Simulation parameters."""

    tick_interval_ms: int = 1000
    random_seed: Optional[int] = None
    history_size: int = 100
    alarm_history_size: int = 50
    duration_s: float = 10.0
    cell_size: float = 20.0
    grid_rows: int = 6
    grid_cols: int = 8
    max_temperature: float = 85.0
    critical_vibration: float = 4.0
    maintenance_interval_h: float = 200.0


@dataclass
class CostConfig:
    """Unit costs used by the ROI calculations."""

    electricity_cost: float = 0.12  # per kWh
    maintenance_cost: float = 500.0  # per month
    labor_cost: float = 25.0  # per hour
    raw_material_cost: float = 0.05  # per unit
    packaging_cost: float = 0.02  # per unit
    upgrade_costs: Dict[str, float] = field(default_factory=dict)

    @property
    def unit_margin(self) -> float:
        return self.raw_material_cost + self.packaging_cost


@dataclass
class MQTTConfig:
    """MQTT broker configuration."""

    broker: str = "localhost"
    port: int = 1883
    username: str = ""
    password: str = ""
    client_id: str = "bottleline-simulator"
    qos: int = 1
    topic_prefix: str = "bottleline/v1"
    line_id: str = "line_01"


@dataclass
class MachineTypeConfig:
    """Catalog entry for a placeable station type."""

    type: MachineType
    name: str
    cycle_time: float
    upgrade_slots: int = 3
    efficiency: float = 85.0
    energy_cost: float = 5.0
    failure_rate: float = 3.0
    capex: float = 0.0
    operators: int = 1


@dataclass
class UpgradeEffect:
    """Effect coefficients of an upgrade. Unset fields are not applied."""

    speed_multiplier: Optional[float] = None
    energy_multiplier: Optional[float] = None
    failure_rate_multiplier: Optional[float] = None
    failure_rate_increase: Optional[float] = None
    energy_increase: Optional[float] = None
    quality_multiplier: Optional[float] = None
    maintenance_interval_multiplier: Optional[float] = None
    downtime_multiplier: Optional[float] = None
    requires_level: Optional[int] = None
    efficiency_bonus: float = 1.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpgradeEffect":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass
class UpgradeConfig:
    """Catalog entry for an upgrade type."""

    id: str
    name: str
    cost: float
    effect: UpgradeEffect = field(default_factory=UpgradeEffect)
    description: str = ""


@dataclass
class LevelConfig:
    """Upgrades unlocked at a machine level."""

    level: MachineLevel
    name: str
    available_upgrades: List[str] = field(default_factory=list)


@dataclass
class Config:
    """Main configuration container."""

    production: ProductionConfig = field(default_factory=ProductionConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    costs: CostConfig = field(default_factory=CostConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    machine_types: Dict[MachineType, MachineTypeConfig] = field(default_factory=dict)
    upgrades: Dict[str, UpgradeConfig] = field(default_factory=dict)
    levels: Dict[MachineLevel, LevelConfig] = field(default_factory=dict)

    def upgrade_cost(self, upgrade_type: str) -> float:
        """Get the cost of an upgrade, honouring cost overrides."""
        if upgrade_type in self.costs.upgrade_costs:
            return self.costs.upgrade_costs[upgrade_type]
        upgrade = self.upgrades.get(upgrade_type)
        return upgrade.cost if upgrade else 500.0

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Config":
        """Load configuration from YAML file."""
        if not config_path.exists():
            return cls.default()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def from_env(cls, base: Optional["Config"] = None) -> "Config":
        """Apply environment variable overrides."""
        config = base or cls.default()

        config.mqtt.broker = os.getenv("MQTT_BROKER", config.mqtt.broker)
        config.mqtt.port = int(os.getenv("MQTT_PORT", config.mqtt.port))
        config.mqtt.username = os.getenv("MQTT_USERNAME", config.mqtt.username)
        config.mqtt.password = os.getenv("MQTT_PASSWORD", config.mqtt.password)

        seed = os.getenv("SIMULATION_SEED")
        if seed:
            config.simulation.random_seed = int(seed)

        shift_hours = os.getenv("SHIFT_HOURS")
        if shift_hours:
            config.production.shift_hours = float(shift_hours)

        return config

    @classmethod
    def default(cls) -> "Config":
        """Create default configuration with the bottling line catalog."""
        config = cls()

        config.machine_types = {
            MachineType.FEEDER: MachineTypeConfig(
                MachineType.FEEDER, "Feeder", cycle_time=5, upgrade_slots=3, capex=50000
            ),
            MachineType.BLOW_MOLDER: MachineTypeConfig(
                MachineType.BLOW_MOLDER,
                "Blow Molder",
                cycle_time=8,
                upgrade_slots=5,
                energy_cost=12.0,
                capex=120000,
                operators=2,
            ),
            MachineType.FILLER: MachineTypeConfig(
                MachineType.FILLER, "Filler", cycle_time=4, upgrade_slots=4, capex=80000
            ),
            MachineType.CAPPER: MachineTypeConfig(
                MachineType.CAPPER, "Capper", cycle_time=3, upgrade_slots=3, capex=60000
            ),
            MachineType.LABELER: MachineTypeConfig(
                MachineType.LABELER, "Labeler", cycle_time=6, upgrade_slots=3, capex=70000
            ),
            MachineType.PACKAGER: MachineTypeConfig(
                MachineType.PACKAGER,
                "Packager",
                cycle_time=7,
                upgrade_slots=4,
                capex=90000,
                operators=2,
            ),
        }

        config.upgrades = {
            "speed": UpgradeConfig(
                id="speed",
                name="Speed Boost",
                cost=500,
                effect=UpgradeEffect(
                    speed_multiplier=1.2,
                    energy_increase=1.1,
                    failure_rate_increase=1.05,
                    efficiency_bonus=0.98,
                ),
                description="Faster drives and tuned motion profiles",
            ),
            "efficiency": UpgradeConfig(
                id="efficiency",
                name="Efficiency Package",
                cost=600,
                effect=UpgradeEffect(energy_multiplier=0.9, efficiency_bonus=1.08),
                description="Optimised changeovers and reduced idle losses",
            ),
            "reliability": UpgradeConfig(
                id="reliability",
                name="Reliability Kit",
                cost=700,
                effect=UpgradeEffect(
                    failure_rate_multiplier=0.7,
                    maintenance_interval_multiplier=1.5,
                    efficiency_bonus=1.05,
                ),
                description="Balanced rotating parts and hardened bearings",
            ),
            "energy": UpgradeConfig(
                id="energy",
                name="Energy Saver",
                cost=400,
                effect=UpgradeEffect(energy_multiplier=0.8, efficiency_bonus=1.03),
                description="Variable frequency drives and peak load management",
            ),
            "quality": UpgradeConfig(
                id="quality",
                name="Quality Control",
                cost=800,
                effect=UpgradeEffect(quality_multiplier=1.2, requires_level=2),
                description="Inline vision inspection",
            ),
            "predictive": UpgradeConfig(
                id="predictive",
                name="Predictive Maintenance",
                cost=1200,
                effect=UpgradeEffect(
                    failure_rate_multiplier=0.8, downtime_multiplier=0.7, requires_level=2
                ),
                description="Condition monitoring with maintenance forecasts",
            ),
            "automation": UpgradeConfig(
                id="automation",
                name="Full Automation",
                cost=2500,
                effect=UpgradeEffect(
                    speed_multiplier=1.25, downtime_multiplier=0.8, requires_level=3
                ),
                description="Robotic material handling",
            ),
        }

        basic = ["speed", "efficiency", "reliability", "energy"]
        advanced = basic + ["quality", "predictive"]
        config.levels = {
            MachineLevel.BASIC: LevelConfig(MachineLevel.BASIC, "Basic", basic),
            MachineLevel.ADVANCED: LevelConfig(MachineLevel.ADVANCED, "Advanced", advanced),
            MachineLevel.PREMIUM: LevelConfig(
                MachineLevel.PREMIUM, "Premium", advanced + ["automation"]
            ),
        }

        return config

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary, merging over the defaults."""
        config = cls.default()

        if "production" in data:
            config.production = _merge(config.production, data["production"])

        if "simulation" in data:
            config.simulation = _merge(config.simulation, data["simulation"])

        if "costs" in data:
            config.costs = _merge(config.costs, data["costs"])

        if "mqtt" in data:
            config.mqtt = _merge(config.mqtt, data["mqtt"])

        known_types = {t.value for t in MachineType}
        for type_value, type_data in (data.get("machine_types") or {}).items():
            if type_value not in known_types:
                logger.warning(f"Skipping unknown machine type in config: {type_value}")
                continue
            machine_type = MachineType.parse(type_value)
            current = config.machine_types.get(machine_type)
            if current is None:
                current = MachineTypeConfig(
                    machine_type, type_data.get("name", type_value), type_data.get("cycle_time", 5)
                )
            config.machine_types[machine_type] = _merge(current, type_data)

        for upgrade_id, upgrade_data in (data.get("upgrades") or {}).items():
            config.upgrades[upgrade_id] = UpgradeConfig(
                id=upgrade_id,
                name=upgrade_data.get("name", upgrade_id),
                cost=float(upgrade_data.get("cost", 500)),
                effect=UpgradeEffect.from_dict(upgrade_data.get("effect")),
                description=upgrade_data.get("description", ""),
            )

        for level_value, level_data in (data.get("levels") or {}).items():
            level = MachineLevel(int(level_value))
            config.levels[level] = LevelConfig(
                level=level,
                name=level_data.get("name", level.display_name),
                available_upgrades=list(level_data.get("available_upgrades", [])),
            )

        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        data = {
            "production": _plain(self.production),
            "simulation": _plain(self.simulation),
            "costs": _plain(self.costs),
            "mqtt": _plain(self.mqtt),
            "machine_types": {
                t.value: {
                    "name": m.name,
                    "cycle_time": m.cycle_time,
                    "upgrade_slots": m.upgrade_slots,
                    "efficiency": m.efficiency,
                    "energy_cost": m.energy_cost,
                    "failure_rate": m.failure_rate,
                    "capex": m.capex,
                    "operators": m.operators,
                }
                for t, m in self.machine_types.items()
            },
            "upgrades": {
                u.id: {
                    "name": u.name,
                    "cost": u.cost,
                    "description": u.description,
                    "effect": u.effect.to_dict(),
                }
                for u in self.upgrades.values()
            },
            "levels": {
                int(level): {"name": l.name, "available_upgrades": list(l.available_upgrades)}
                for level, l in self.levels.items()
            },
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def _merge(current: Any, overrides: Dict[str, Any]) -> Any:
    """Return a copy of a config dataclass with known keys overridden."""
    values = {f.name: getattr(current, f.name) for f in fields(current)}
    for key, value in (overrides or {}).items():
        if key in values and key != "type":
            values[key] = value
    return type(current)(**values)


def _plain(section: Any) -> Dict[str, Any]:
    return {f.name: getattr(section, f.name) for f in fields(section)}


def load_layout(path: Path, config: Optional[Config] = None) -> List[Machine]:
    """Load a YAML layout (a list of machine entries).

    Entries without cycle time, energy cost, failure rate or efficiency take
    them from the machine type catalog.
    """
    config = config or Config.default()
    with open(path) as f:
        entries = yaml.safe_load(f) or []

    if isinstance(entries, dict):
        entries = entries.get("machines", [])

    return [machine_from_catalog(entry, config) for entry in entries]


def machine_from_catalog(entry: Dict[str, Any], config: Config) -> Machine:
    """Normalize a layout entry, filling gaps from the machine type catalog."""
    spec = config.machine_types.get(MachineType.parse(entry.get("type")))
    data = dict(entry)
    if spec is not None:
        defaults = {
            ("name", "name"): spec.name,
            ("cycleTime", "cycle_time"): spec.cycle_time,
            ("efficiency", "efficiency"): spec.efficiency,
            ("energyCost", "energy_cost"): spec.energy_cost,
            ("failureRate", "failure_rate"): spec.failure_rate,
        }
        for (camel, snake), value in defaults.items():
            if data.get(camel) is None and data.get(snake) is None:
                data[camel] = value
    return Machine.from_dict(data)


def save_layout(machines: List[Machine], path: Path) -> None:
    """Write a layout as YAML."""
    entries = [
        {
            "id": m.id,
            "type": m.type.value,
            "name": m.display_name,
            "position": m.position.to_dict(),
            "cycleTime": m.cycle_time,
        }
        for m in machines
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(entries, f, default_flow_style=False, sort_keys=False)
