"""Synthetic machine telemetry with anomaly detection.

Each machine has five channels (temperature, vibration, pressure, current,
noise). A reading is computed from a target derived from the machine's
state, blended with the previous sample so values drift rather than jump,
then checked against fixed thresholds and against the recent history.
"""

import logging
import math
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from .models import Alert, Anomaly, Machine, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelSpec:
    """Smoothing, rounding and physical range of a sensor channel."""

    name: str
    unit: str
    initial: float
    inertia: float  # weight of the previous sample
    jitter: float  # half-width of the uniform noise added to the target
    decimals: int
    min_value: float
    max_value: float

    def smooth(self, previous: float, target: float, noise: float) -> float:
        value = previous * self.inertia + (target + noise) * (1 - self.inertia)
        value = round(value, self.decimals) if self.decimals else float(round(value))
        return max(self.min_value, min(self.max_value, value))


CHANNELS: Dict[str, ChannelSpec] = {
    "temperature": ChannelSpec("temperature", "°C", 60.0, 0.7, 1.0, 1, 0.0, 150.0),
    "vibration": ChannelSpec("vibration", "mm/s", 2.0, 0.7, 0.25, 1, 0.0, 25.0),
    "pressure": ChannelSpec("pressure", "kPa", 100.0, 0.9, 2.5, 0, 0.0, 250.0),
    "current": ChannelSpec("current", "A", 15.0, 0.7, 0.25, 1, 0.0, 500.0),
    "noise": ChannelSpec("noise", "dB", 70.0, 0.7, 1.5, 0, 30.0, 140.0),
}

# Reserved for tuning random fault injection
ANOMALY_PROBABILITIES = {
    "temperature": 0.05,
    "vibration": 0.03,
    "pressure": 0.02,
    "current": 0.04,
    "noise": 0.01,
}

# Upgrade tags that dampen a channel's target
VIBRATION_DAMPING = {"reliability": 0.8}
CURRENT_DAMPING = {"energy": 0.8}

TEMPERATURE_WARNING = 80.0
TEMPERATURE_CRITICAL = 85.0
VIBRATION_WARNING = 3.5
VIBRATION_CRITICAL = 4.0
SUDDEN_CHANGE_RATIO = 0.3
SUDDEN_CHANGE_WINDOW = 3
MAINTENANCE_WARNING = 0.7
MAINTENANCE_CRITICAL = 0.9
TREND_THRESHOLD = 0.05

SUGGESTED_ACTIONS = {
    "high_temperature": "Reduce machine speed or check cooling system",
    "high_vibration": "Schedule maintenance check and balance rotating parts",
    "sudden_change_temperature": "Investigate for blockages or cooling failure",
    "sudden_change_vibration": "Check for loose components or bearing failure",
    "sudden_change_current": "Check electrical connections and motor condition",
    "maintenance_required": "Schedule preventive maintenance ({hours:g} hours since last)",
}
DEFAULT_ACTION = "Investigate machine condition"


@dataclass
class SensorReading:
    """One reading cycle for a machine."""

    machine_id: str
    temperature: float
    vibration: float
    pressure: float
    current: float
    noise: float
    anomalies: List[Anomaly] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def values(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in CHANNELS}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"machineId": self.machine_id}
        data.update(self.values)
        data["anomalies"] = [a.to_dict() for a in self.anomalies]
        data["timestamp"] = self.timestamp.isoformat()
        return data


def time_of_day_factor(now: datetime) -> float:
    """0..1 over the day: 0.5 at midnight and noon, peaking at 06:00."""
    minutes = now.hour * 60 + now.minute
    return math.sin(minutes * math.pi / 720) * 0.5 + 0.5


def _damping(machine: Machine, table: Dict[str, float]) -> float:
    factor = 1.0
    for upgrade, multiplier in table.items():
        if machine.has_upgrade(upgrade):
            factor *= multiplier
    return factor


class SensorSimulator:
    """Generates smoothed, anomaly-flagged telemetry per machine.

    The jitter source is injected so a seeded ``random.Random`` makes
    sequences reproducible.
    """

    def __init__(self, rng: Optional[random.Random] = None, history_size: int = 100):
        self._rng = rng or random.Random()
        self.history_size = history_size
        self._history: Dict[str, Dict[str, Deque[float]]] = {}
        self._anomaly_probabilities: Dict[str, Dict[str, float]] = {}

    # -------------------------------------------------------------------------
    # History management
    # -------------------------------------------------------------------------

    def initialize_machine(self, machine_id: str, base_values: Optional[Dict[str, float]] = None) -> None:
        """Seed one sample per channel for a machine."""
        base_values = base_values or {}
        self._history[machine_id] = {
            name: deque([float(base_values.get(name, spec.initial))], maxlen=self.history_size)
            for name, spec in CHANNELS.items()
        }
        self._anomaly_probabilities[machine_id] = dict(ANOMALY_PROBABILITIES)
        logger.debug(f"Initialized sensors for {machine_id}")

    def forget_machine(self, machine_id: str) -> None:
        self._history.pop(machine_id, None)
        self._anomaly_probabilities.pop(machine_id, None)

    def has_machine(self, machine_id: str) -> bool:
        return machine_id in self._history

    def history(self, machine_id: str, channel: str) -> List[float]:
        """Get a copy of a channel's rolling history, oldest first."""
        channels = self._history.get(machine_id)
        if not channels or channel not in channels:
            return []
        return list(channels[channel])

    def anomaly_probabilities(self, machine_id: str) -> Dict[str, float]:
        return dict(self._anomaly_probabilities.get(machine_id, {}))

    def _last(self, machine_id: str, channel: str) -> float:
        return self._history[machine_id][channel][-1]

    def _jitter(self, channel: str) -> float:
        return (self._rng.random() - 0.5) * 2 * CHANNELS[channel].jitter

    # -------------------------------------------------------------------------
    # Targets
    # -------------------------------------------------------------------------

    def _temperature_target(self, machine: Machine, day_factor: float) -> float:
        target = 60 + (machine.speed / 30) * 10
        target -= (machine.efficiency - 80) * 0.2
        target += day_factor * 5
        return target

    def _vibration_target(self, machine: Machine) -> float:
        wear = min(1.0, max(0.0, machine.last_maintenance) / 200)
        target = 2.0 + (machine.speed / 30) * 1.5 + wear * 1.5
        return target * _damping(machine, VIBRATION_DAMPING)

    def expected_current(self, machine: Machine) -> float:
        """Drive current (A) a machine settles at in its present state."""
        target = machine.energy_cost * 3
        target *= (100 - machine.efficiency) / 100 * 0.5 + 0.5
        target *= machine.speed / 30
        return target * _damping(machine, CURRENT_DAMPING)

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate_readings(self, machine: Machine, now: Optional[datetime] = None) -> SensorReading:
        """Produce the next reading for a machine and append it to history."""
        now = now or datetime.now()
        if machine.id not in self._history:
            self.initialize_machine(machine.id)

        mid = machine.id
        temperature = CHANNELS["temperature"].smooth(
            self._last(mid, "temperature"),
            self._temperature_target(machine, time_of_day_factor(now)),
            self._jitter("temperature"),
        )
        vibration = CHANNELS["vibration"].smooth(
            self._last(mid, "vibration"), self._vibration_target(machine), self._jitter("vibration")
        )
        pressure = CHANNELS["pressure"].smooth(
            self._last(mid, "pressure"), 100.0, self._jitter("pressure")
        )
        current = CHANNELS["current"].smooth(
            self._last(mid, "current"), self.expected_current(machine), self._jitter("current")
        )
        noise = CHANNELS["noise"].smooth(
            self._last(mid, "noise"), 70 + vibration * 5, self._jitter("noise")
        )

        reading = SensorReading(
            machine_id=mid,
            temperature=temperature,
            vibration=vibration,
            pressure=pressure,
            current=current,
            noise=noise,
            timestamp=now,
        )
        reading.anomalies = self.detect_anomalies(machine, reading)

        for name, value in reading.values.items():
            self._history[mid][name].append(value)

        return reading

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def detect_anomalies(self, machine: Machine, reading: SensorReading) -> List[Anomaly]:
        """Check a reading against thresholds and the samples before it."""
        anomalies = []

        if reading.temperature > TEMPERATURE_WARNING:
            anomalies.append(
                Anomaly(
                    type="high_temperature",
                    severity=Severity.CRITICAL if reading.temperature > TEMPERATURE_CRITICAL else Severity.WARNING,
                    value=reading.temperature,
                    threshold=TEMPERATURE_WARNING,
                    message=f"High temperature detected: {reading.temperature}°C",
                )
            )

        if reading.vibration > VIBRATION_WARNING:
            anomalies.append(
                Anomaly(
                    type="high_vibration",
                    severity=Severity.CRITICAL if reading.vibration > VIBRATION_CRITICAL else Severity.WARNING,
                    value=reading.vibration,
                    threshold=VIBRATION_WARNING,
                    message=f"High vibration detected: {reading.vibration} mm/s",
                )
            )

        channels = self._history.get(machine.id, {})
        for name, value in reading.values.items():
            history = channels.get(name)
            if not history or len(history) < SUDDEN_CHANGE_WINDOW:
                continue
            recent = list(history)[-SUDDEN_CHANGE_WINDOW:]
            average = sum(recent) / SUDDEN_CHANGE_WINDOW
            if average == 0:
                continue
            change = abs(value - average) / abs(average)
            if change > SUDDEN_CHANGE_RATIO:
                anomalies.append(
                    Anomaly(
                        type=f"sudden_change_{name}",
                        severity=Severity.WARNING,
                        value=value,
                        previous=average,
                        change_pct=round(change * 100, 1),
                        message=f"Sudden {name} change: {change * 100:.1f}%",
                    )
                )

        urgency = self.predict_maintenance(machine)
        if urgency > MAINTENANCE_WARNING:
            anomalies.append(
                Anomaly(
                    type="maintenance_required",
                    severity=Severity.CRITICAL if urgency > MAINTENANCE_CRITICAL else Severity.WARNING,
                    value=round(urgency, 3),
                    threshold=MAINTENANCE_WARNING,
                    message=f"Maintenance required soon ({round(urgency * 100)}% wear)",
                )
            )

        return anomalies

    @staticmethod
    def predict_maintenance(machine: Machine) -> float:
        """Maintenance urgency in 0..1 from wear, failure rate and efficiency."""
        time_factor = min(1.0, max(0.0, machine.last_maintenance) / 200)
        reliability_factor = machine.failure_rate / 5
        efficiency_factor = (100 - machine.efficiency) / 100
        urgency = time_factor * 0.5 + reliability_factor * 0.3 + efficiency_factor * 0.2
        return min(1.0, urgency)

    def get_trends(self, machine_id: str, window: int = 48) -> Optional[Dict[str, Dict[str, Any]]]:
        """Summarize the most recent samples of each channel.

        Returns None for a machine with no history. Channels with fewer than
        two samples in the window are left out. A window below one sample is
        treated as one.
        """
        channels = self._history.get(machine_id)
        if channels is None:
            return None

        window = max(1, window)
        trends = {}
        for name, history in channels.items():
            recent = list(history)[-window:]
            if len(recent) < 2:
                continue
            first, last = recent[0], recent[-1]
            trend = (last - first) / first if first else 0.0
            if trend > TREND_THRESHOLD:
                direction = "increasing"
            elif trend < -TREND_THRESHOLD:
                direction = "decreasing"
            else:
                direction = "stable"
            trends[name] = {
                "current": last,
                "average": sum(recent) / len(recent),
                "min": min(recent),
                "max": max(recent),
                "trend": trend,
                "direction": direction,
            }
        return trends

    @staticmethod
    def suggested_action(anomaly_type: str, machine: Machine) -> str:
        action = SUGGESTED_ACTIONS.get(anomaly_type, DEFAULT_ACTION)
        return action.format(hours=round(machine.last_maintenance, 1))

    def alerts_for(self, machine: Machine, reading: SensorReading) -> List[Alert]:
        """Wrap a reading's anomalies as alerts."""
        return [
            Alert(
                machine_id=machine.id,
                machine_name=machine.display_name,
                anomaly=anomaly,
                suggested_action=self.suggested_action(anomaly.type, machine),
                timestamp=reading.timestamp,
            )
            for anomaly in reading.anomalies
        ]

    def generate_alerts(self, machine: Machine, now: Optional[datetime] = None) -> List[Alert]:
        """Generate a reading and return its anomalies as alerts."""
        return self.alerts_for(machine, self.generate_readings(machine, now))
