"""Upgrade application, machine levels and upgrade recommendations.

The engine is generic over the upgrade catalog in the configuration: an
upgrade is a record of effect coefficients, and effects are applied by a
fixed, ordered pipeline of named transforms over a copy of the machine.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import Config, UpgradeConfig
from .levels import MachineLevel, MachineProgress, level_for, next_level_requirements
from .models import Machine, UpgradeRecord

logger = logging.getLogger(__name__)

DEFAULT_UPGRADE_SLOTS = 3

PRIORITY_WEIGHTS = {
    "efficiency": 0.30,
    "reliability": 0.25,
    "energy": 0.20,
    "speed": 0.15,
    "quality": 0.10,
}
ROI_PRIORITY_WEIGHT = 0.01


# =============================================================================
# Effect pipeline
# =============================================================================


def _scale_speed(machine: Machine, factor: float) -> None:
    # Speed is derived from cycle time
    machine.cycle_time = machine.cycle_time / factor


def _scale_energy(machine: Machine, factor: float) -> None:
    machine.energy_cost = round(machine.energy_cost * factor, 1)


def _scale_failure_rate(machine: Machine, factor: float) -> None:
    machine.failure_rate = round(machine.failure_rate * factor, 1)


def _improve_quality(machine: Machine, factor: float) -> None:
    machine.failure_rate = max(0.5, machine.failure_rate / factor)


def _scale_maintenance_interval(machine: Machine, factor: float) -> None:
    machine.maintenance_interval_multiplier *= factor


def _scale_downtime(machine: Machine, factor: float) -> None:
    machine.downtime_multiplier *= factor


EFFECT_PIPELINE: List[Tuple[str, Callable[[Machine, float], None]]] = [
    ("speed_multiplier", _scale_speed),
    ("energy_multiplier", _scale_energy),
    ("failure_rate_multiplier", _scale_failure_rate),
    ("failure_rate_increase", _scale_failure_rate),
    ("energy_increase", _scale_energy),
    ("quality_multiplier", _improve_quality),
    ("maintenance_interval_multiplier", _scale_maintenance_interval),
    ("downtime_multiplier", _scale_downtime),
]


@dataclass
class UpgradeResult:
    """Outcome of an upgrade command. Rejections carry only a message."""

    success: bool
    message: str
    machine: Optional[Machine] = None
    upgrade: Optional[UpgradeConfig] = None
    record: Optional[UpgradeRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.machine is not None:
            data["newState"] = self.machine.to_dict()
        if self.upgrade is not None:
            data["upgrade"] = {
                "type": self.upgrade.id,
                "name": self.upgrade.name,
                "cost": self.upgrade.cost,
                "effect": self.upgrade.effect.to_dict(),
            }
        return data


@dataclass
class UpgradeImpact:
    """Expected percentage change per factor."""

    speed: float = 0.0
    efficiency: float = 0.0
    reliability: float = 0.0
    energy: float = 0.0
    quality: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "speed": round(self.speed, 2),
            "efficiency": round(self.efficiency, 2),
            "reliability": round(self.reliability, 2),
            "energy": round(self.energy, 2),
            "quality": round(self.quality, 2),
        }


@dataclass
class UpgradeRecommendation:
    """A ranked upgrade suggestion for one machine."""

    upgrade: UpgradeConfig
    impact: UpgradeImpact
    priority: float
    cost: float
    expected_benefits: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "upgradeType": self.upgrade.id,
            "name": self.upgrade.name,
            "impact": self.impact.to_dict(),
            "priority": round(self.priority, 3),
            "cost": self.cost,
            "expectedBenefits": list(self.expected_benefits),
        }


class UpgradeEngine:
    """Validates and applies upgrades; tracks machine levels and history."""

    def __init__(self, config: Config):
        self.config = config
        self._history: List[UpgradeRecord] = []
        self._progress: Dict[str, MachineProgress] = {}

    @property
    def history(self) -> List[UpgradeRecord]:
        """All upgrade records, newest first."""
        return list(self._history)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def level(self, machine_id: str) -> MachineLevel:
        progress = self._progress.get(machine_id)
        return progress.level if progress else MachineLevel.BASIC

    def upgrade_slots(self, machine: Machine) -> int:
        spec = self.config.machine_types.get(machine.type)
        return spec.upgrade_slots if spec else DEFAULT_UPGRADE_SLOTS

    def _rejection(self, machine: Machine, upgrade_type: str) -> Optional[str]:
        """Reason the upgrade cannot be applied, or None when it can."""
        upgrade = self.config.upgrades.get(upgrade_type)
        if upgrade is None:
            return f"Invalid upgrade type: {upgrade_type}"

        required = upgrade.effect.requires_level
        current = self.level(machine.id)
        if required and current < required:
            return f"{upgrade.name} requires level {required} (machine is level {int(current)})"

        if machine.has_upgrade(upgrade_type):
            return f"{upgrade.name} is already applied to {machine.display_name}"

        slots = self.upgrade_slots(machine)
        if len(machine.upgrades) >= slots:
            return f"No upgrade slots left on {machine.display_name} ({len(machine.upgrades)}/{slots})"

        return None

    def can_apply_upgrade(self, machine: Machine, upgrade_type: str) -> bool:
        return self._rejection(machine, upgrade_type) is None

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    def apply_upgrade(
        self, machine: Machine, upgrade_type: str, now: Optional[datetime] = None
    ) -> UpgradeResult:
        """Apply an upgrade to a copy of the machine.

        Business-rule rejections return an unsuccessful result; the input
        machine is never modified.
        """
        reason = self._rejection(machine, upgrade_type)
        if reason is not None:
            logger.info(f"Upgrade rejected for {machine.id}: {reason}")
            return UpgradeResult(success=False, message=reason)

        upgrade = self.config.upgrades[upgrade_type]
        upgraded = self.calculate_upgraded_state(machine, upgrade)
        record = self.record_upgrade(machine.id, upgrade, now)
        self.update_machine_level(machine.id)

        logger.info(
            f"Applied {upgrade.name} to {machine.id} "
            f"(level {int(self.level(machine.id))}, invested {self.get_total_investment(machine.id):.0f})"
        )
        return UpgradeResult(
            success=True,
            message=f"Successfully applied {upgrade.name}",
            machine=upgraded,
            upgrade=upgrade,
            record=record,
        )

    def calculate_upgraded_state(self, machine: Machine, upgrade: UpgradeConfig) -> Machine:
        """Run the effect pipeline over a copy of the machine."""
        upgraded = copy.deepcopy(machine)
        effects = upgrade.effect

        for name, transform in EFFECT_PIPELINE:
            factor = getattr(effects, name)
            if factor is not None:
                transform(upgraded, factor)

        upgraded.upgrades.append(upgrade.id)
        upgraded.efficiency = self.calculate_efficiency(upgraded)
        return upgraded

    def calculate_efficiency(self, machine: Machine) -> float:
        """Efficiency from base efficiency, condition and applied upgrades."""
        efficiency = machine.base_efficiency

        if machine.temperature > 75:
            efficiency *= 0.9
        if machine.vibration > 3:
            efficiency *= 0.95
        if machine.last_maintenance > 150:
            efficiency *= 0.85

        for upgrade_type in machine.upgrades:
            upgrade = self.config.upgrades.get(upgrade_type)
            if upgrade is not None:
                efficiency *= upgrade.effect.efficiency_bonus

        return float(min(100, max(50, round(efficiency))))

    def record_upgrade(
        self, machine_id: str, upgrade: UpgradeConfig, now: Optional[datetime] = None
    ) -> UpgradeRecord:
        cost = self.config.upgrade_cost(upgrade.id)
        record = UpgradeRecord(
            machine_id=machine_id,
            upgrade_type=upgrade.id,
            upgrade_name=upgrade.name,
            cost=cost,
            effects=upgrade.effect.to_dict(),
            timestamp=now or datetime.now(),
        )
        self._history.insert(0, record)

        progress = self._progress.setdefault(machine_id, MachineProgress())
        progress.upgrades += 1
        progress.total_investment += cost
        return record

    def update_machine_level(self, machine_id: str) -> MachineLevel:
        progress = self._progress.setdefault(machine_id, MachineProgress())
        new_level = level_for(progress.upgrades, progress.total_investment)
        if new_level != progress.level:
            logger.info(f"{machine_id} reached level {new_level.display_name}")
        progress.level = new_level
        return new_level

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_available_upgrades(self, machine: Machine) -> List[UpgradeConfig]:
        """Upgrades unlocked at the machine's level and not yet applied."""
        current = self.level(machine.id)
        level_config = self.config.levels.get(current)
        if level_config is None:
            return []

        available = []
        for upgrade_type in level_config.available_upgrades:
            upgrade = self.config.upgrades.get(upgrade_type)
            if upgrade is None:
                continue
            required = upgrade.effect.requires_level
            if required and current < required:
                continue
            if machine.has_upgrade(upgrade_type):
                continue
            available.append(upgrade)
        return available

    def calculate_upgrade_impact(self, machine: Machine, upgrade: UpgradeConfig) -> UpgradeImpact:
        effects = upgrade.effect
        impact = UpgradeImpact()

        if effects.speed_multiplier:
            impact.speed = (effects.speed_multiplier - 1) * 100
        if effects.energy_multiplier:
            impact.energy = (1 - effects.energy_multiplier) * 100
        if effects.failure_rate_multiplier:
            impact.reliability = (1 - effects.failure_rate_multiplier) * 100
        if effects.quality_multiplier:
            impact.quality = (effects.quality_multiplier - 1) * 100

        upgraded = self.calculate_upgraded_state(machine, upgrade)
        impact.efficiency = upgraded.efficiency - machine.efficiency
        return impact

    @staticmethod
    def calculate_priority(impact: UpgradeImpact, roi: float = 0.0) -> float:
        priority = sum(getattr(impact, factor) * weight for factor, weight in PRIORITY_WEIGHTS.items())
        return priority + roi * ROI_PRIORITY_WEIGHT

    @staticmethod
    def describe_benefits(impact: UpgradeImpact) -> List[str]:
        benefits = []
        if impact.speed > 0:
            benefits.append(f"+{impact.speed:.1f}% production speed")
        if impact.efficiency > 0:
            benefits.append(f"+{impact.efficiency:.1f}% overall efficiency")
        if impact.reliability > 0:
            benefits.append(f"+{impact.reliability:.1f}% reliability")
        if impact.energy > 0:
            benefits.append(f"{impact.energy:.1f}% energy savings")
        if impact.quality > 0:
            benefits.append(f"+{impact.quality:.1f}% quality improvement")
        return benefits or ["Minor improvements"]

    def get_upgrade_recommendations(
        self, machine: Machine, roi_by_upgrade: Optional[Dict[str, float]] = None
    ) -> List[UpgradeRecommendation]:
        """Rank the machine's available upgrades by priority."""
        roi_by_upgrade = roi_by_upgrade or {}
        recommendations = []
        for upgrade in self.get_available_upgrades(machine):
            impact = self.calculate_upgrade_impact(machine, upgrade)
            recommendations.append(
                UpgradeRecommendation(
                    upgrade=upgrade,
                    impact=impact,
                    priority=self.calculate_priority(impact, roi_by_upgrade.get(upgrade.id, 0.0)),
                    cost=self.config.upgrade_cost(upgrade.id),
                    expected_benefits=self.describe_benefits(impact),
                )
            )
        return sorted(recommendations, key=lambda r: r.priority, reverse=True)

    def get_upgrade_history(self, machine_id: str, limit: int = 10) -> List[UpgradeRecord]:
        return [r for r in self._history if r.machine_id == machine_id][:limit]

    def get_total_investment(self, machine_id: str) -> float:
        progress = self._progress.get(machine_id)
        return progress.total_investment if progress else 0.0

    def get_machine_level(self, machine_id: str) -> Dict[str, Any]:
        """Level, progress and next-tier requirements for a machine."""
        progress = self._progress.get(machine_id, MachineProgress())
        level_config = self.config.levels.get(progress.level)

        next_unlocks: List[str] = []
        if progress.level < MachineLevel.PREMIUM:
            next_config = self.config.levels.get(MachineLevel(progress.level + 1))
            if next_config is not None:
                next_unlocks = next_config.available_upgrades
        next_level = next_level_requirements(progress, next_unlocks)

        return {
            "level": int(progress.level),
            "name": level_config.name if level_config else progress.level.display_name,
            "upgradesApplied": progress.upgrades,
            "totalInvestment": progress.total_investment,
            "nextLevel": next_level.to_dict() if next_level else None,
        }
