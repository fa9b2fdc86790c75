"""OEE, MTBF/MTTR and machine health calculations.

OEE = Availability x Performance x Quality, each derived from the shift
inputs and adjusted by the current sensor state and the active line-wide
upgrades (IoT sensors, AI vision, robotic automation).
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, List, Optional

from .models import Machine
from .sensors import TEMPERATURE_WARNING, VIBRATION_WARNING

logger = logging.getLogger(__name__)

IDEAL_SPEED = 1500.0  # units per hour

AVAILABILITY_MULTIPLIERS = {"automation": 1.10, "ai": 1.05, "iot": 1.03}
PENALTY_REDUCTIONS = {"ai": 0.5, "iot": 0.7}
DEFECT_DISCOUNTS = {"ai": 0.6, "iot": 0.8, "automation": 0.9}
MTTR_DISCOUNTS = {"iot": 0.6, "ai": 0.7, "automation": 0.8}

AVAILABILITY_RANGE = (0.60, 0.99)
PERFORMANCE_RANGE = (0.70, 1.10)
MIN_QUALITY = 0.85

# Line-level sensor thresholds
LINE_TEMPERATURE_WARNING = 50.0
LINE_TEMPERATURE_CRITICAL = 55.0
LINE_VIBRATION_WARNING = 5.0
LINE_VIBRATION_CRITICAL = 6.0
LINE_MIN_POWER = 50.0  # kW
LINE_NOMINAL_POWER = 60.0  # kW

# Offsets mapping machine readings onto the line scale
TEMPERATURE_SHIFT = LINE_TEMPERATURE_WARNING - TEMPERATURE_WARNING
VIBRATION_SHIFT = LINE_VIBRATION_WARNING - VIBRATION_WARNING

DEFAULT_MTBF_S = 300.0
BASE_MTTR_S = 120.0


def _clamp(value: float, bounds: tuple) -> float:
    low, high = bounds
    return max(low, min(high, value))


@dataclass
class UpgradeFlags:
    """Line-wide upgrade toggles."""

    iot: bool = False
    ai: bool = False
    automation: bool = False

    def active(self) -> List[str]:
        return [name for name in ("iot", "ai", "automation") if getattr(self, name)]

    def to_dict(self) -> Dict[str, bool]:
        return {"iot": self.iot, "ai": self.ai, "automation": self.automation}


@dataclass
class SensorSnapshot:
    """Line-level sensor state used by the performance and quality terms."""

    temperature: float = 40.0
    vibration: float = 3.0
    power: float = LINE_NOMINAL_POWER

    @classmethod
    def from_readings(
        cls, readings: Iterable[Any], expected_current: Optional[Dict[str, float]] = None
    ) -> "SensorSnapshot":
        """Put machine readings on the line scale.

        Temperature and vibration follow the worst machine, shifted so the
        machine warning thresholds coincide with the line thresholds. Power
        is the line's nominal draw scaled by the share of the expected drive
        current (per machine id) actually drawn.
        """
        readings = list(readings)
        if not readings:
            return cls()

        power = LINE_NOMINAL_POWER
        if expected_current:
            expected = sum(expected_current.get(r.machine_id, 0.0) for r in readings)
            if expected > 0:
                power = LINE_NOMINAL_POWER * sum(r.current for r in readings) / expected

        return cls(
            temperature=round(max(r.temperature for r in readings) + TEMPERATURE_SHIFT, 1),
            vibration=round(max(r.vibration for r in readings) + VIBRATION_SHIFT, 2),
            power=round(power, 1),
        )

    def to_dict(self) -> Dict[str, float]:
        return {"temperature": self.temperature, "vibration": self.vibration, "power": self.power}


@dataclass
class ProductionInputs:
    """Shift inputs for the OEE calculation."""

    production_rate: float = 1200.0  # units per hour
    defect_rate: float = 3.0  # %
    shift_hours: float = 8.0
    downtime: float = 45.0  # minutes


@dataclass
class OEEResult:
    """Container for OEE calculation results (fractions 0..1)."""

    availability: float
    performance: float
    quality: float
    oee: float  # percent, one decimal
    daily_output: int
    daily_defects: int

    def to_percentage_dict(self) -> Dict[str, Any]:
        """Convert to percentage values for display"""
        return {
            "availability": round(self.availability * 100, 1),
            "performance": round(self.performance * 100, 1),
            "quality": round(self.quality * 100, 1),
            "oee": self.oee,
            "dailyOutput": self.daily_output,
            "dailyDefects": self.daily_defects,
        }


def calculate_availability(shift_hours: float, downtime: float, flags: UpgradeFlags) -> float:
    shift_minutes = shift_hours * 60
    availability = (shift_minutes - downtime) / shift_minutes
    for name in flags.active():
        availability *= AVAILABILITY_MULTIPLIERS[name]
    return _clamp(availability, AVAILABILITY_RANGE)


def sensor_penalty(sensors: SensorSnapshot, flags: UpgradeFlags) -> float:
    """Performance lost to running hot, shaking or underpowered."""
    penalty = 0.0
    if sensors.temperature > LINE_TEMPERATURE_WARNING:
        penalty += 0.05
    if sensors.vibration > LINE_VIBRATION_WARNING:
        penalty += 0.03
    if sensors.power < LINE_MIN_POWER:
        penalty += 0.02
    for name in flags.active():
        penalty *= PENALTY_REDUCTIONS.get(name, 1.0)
    return penalty


def calculate_performance(production_rate: float, sensors: SensorSnapshot, flags: UpgradeFlags) -> float:
    performance = production_rate / IDEAL_SPEED - sensor_penalty(sensors, flags)
    return _clamp(performance, PERFORMANCE_RANGE)


def effective_defect_rate(
    production_rate: float, defect_rate: float, sensors: SensorSnapshot, flags: UpgradeFlags
) -> float:
    """Defect rate (%) after speed stress, sensor state and upgrade discounts."""
    rate = max(0.0, defect_rate)
    if production_rate > IDEAL_SPEED:
        rate *= production_rate / IDEAL_SPEED
    if sensors.temperature > LINE_TEMPERATURE_CRITICAL:
        rate *= 1.3
    if sensors.vibration > LINE_VIBRATION_CRITICAL:
        rate *= 1.4
    for name in flags.active():
        rate *= DEFECT_DISCOUNTS[name]
    return rate


def calculate_quality(
    production_rate: float, defect_rate: float, sensors: SensorSnapshot, flags: UpgradeFlags
) -> float:
    quality = 1 - effective_defect_rate(production_rate, defect_rate, sensors, flags) / 100
    return max(MIN_QUALITY, min(1.0, quality))


def calculate_oee(
    inputs: ProductionInputs,
    sensors: Optional[SensorSnapshot] = None,
    flags: Optional[UpgradeFlags] = None,
) -> OEEResult:
    """Calculate OEE for the line.

    A non-positive shift length yields an all-zero result instead of a
    division by zero.
    """
    sensors = sensors or SensorSnapshot()
    flags = flags or UpgradeFlags()

    if inputs.shift_hours <= 0:
        logger.warning(f"Shift length must be positive, got {inputs.shift_hours}")
        return OEEResult(0.0, 0.0, 0.0, 0.0, 0, 0)

    availability = calculate_availability(inputs.shift_hours, inputs.downtime, flags)
    performance = calculate_performance(inputs.production_rate, sensors, flags)
    quality = calculate_quality(inputs.production_rate, inputs.defect_rate, sensors, flags)

    oee = round(max(0.0, min(1.0, availability * performance * quality)) * 100, 1)
    daily_output = round(inputs.production_rate * availability * performance * inputs.shift_hours)
    daily_defects = round(daily_output * (1 - quality))

    return OEEResult(
        availability=availability,
        performance=performance,
        quality=quality,
        oee=oee,
        daily_output=daily_output,
        daily_defects=daily_defects,
    )


class AlarmLog:
    """Bounded history of alarm timestamps (seconds)."""

    def __init__(self, max_size: int = 50):
        self._timestamps: Deque[float] = deque(maxlen=max_size)

    def record(self, timestamp: float) -> None:
        self._timestamps.append(timestamp)

    def clear(self) -> None:
        self._timestamps.clear()

    def __len__(self) -> int:
        return len(self._timestamps)

    @property
    def timestamps(self) -> List[float]:
        return list(self._timestamps)

    def mtbf(self) -> float:
        """Average gap between consecutive alarms, 300s with fewer than two."""
        if len(self._timestamps) < 2:
            return DEFAULT_MTBF_S
        stamps = sorted(self._timestamps)
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        return sum(gaps) / len(gaps)


def calculate_mttr(flags: UpgradeFlags) -> float:
    mttr = BASE_MTTR_S
    for name in flags.active():
        mttr *= MTTR_DISCOUNTS[name]
    return mttr


# =============================================================================
# Machine health
# =============================================================================


def _stepped_penalty(value: float, steps: List[tuple]) -> float:
    for threshold, penalty in steps:
        if value > threshold:
            return penalty
    return 0.0


def calculate_machine_health(machine: Machine) -> float:
    """Health score 0-100 from sensor state, maintenance age and failure rate."""
    score = 100.0
    score -= _stepped_penalty(machine.temperature, [(80, 30), (70, 15), (65, 5)])
    score -= _stepped_penalty(machine.vibration, [(4, 40), (3, 20), (2.5, 10)])
    score -= _stepped_penalty(machine.last_maintenance, [(200, 30), (150, 15), (100, 5)])
    score -= machine.failure_rate * 2
    return max(0.0, min(100.0, score))


def predict_failure(
    machine: Machine,
    max_temperature: float = 85.0,
    critical_vibration: float = 4.0,
    maintenance_interval: float = 200.0,
) -> float:
    """Probability (%) of a failure in the next 24 hours, capped at 99."""
    health = calculate_machine_health(machine)
    probability = machine.failure_rate

    if machine.temperature > max_temperature * 0.9:
        probability *= 1.5
    if machine.vibration > critical_vibration * 0.8:
        probability *= 1.3
    if machine.last_maintenance > maintenance_interval * 0.8:
        probability *= 1.4

    return min(99.0, probability * (1 - health / 100) * 100)
