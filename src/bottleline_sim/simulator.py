"""Simulation session orchestrating the analytics engines.

A session owns the layout, the line-wide upgrade toggles and one instance
of each engine:

- **SensorSimulator**: smoothed telemetry and anomaly detection per machine
- **UpgradeEngine**: per-machine upgrades, levels and upgrade history
- **ROIEngine**: pricing of applied upgrades and accumulated savings
- **AlarmLog**: critical alarm timestamps for MTBF

Time only moves through ``tick(delta_time)``; ``run()`` is a thin scheduler
that calls it at the configured interval.
"""

import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional, Union

from .config import Config, machine_from_catalog
from .layout import compute_simulation_state, resolve_line
from .models import Alert, GridPosition, Machine
from .oee import (
    AlarmLog,
    ProductionInputs,
    SensorSnapshot,
    UpgradeFlags,
    calculate_machine_health,
    calculate_mttr,
    calculate_oee,
    predict_failure,
)
from .roi import ROIEngine, ROIRecommendation, ROISummary
from .sensors import CHANNELS, SensorReading, SensorSimulator
from .upgrades import UpgradeEngine, UpgradeResult

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "cycle_time", "efficiency", "energy_cost", "failure_rate", "position")


@dataclass
class LayoutResult:
    """Outcome of a layout command."""

    success: bool
    message: str
    machine: Optional[Machine] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.machine is not None:
            data["machine"] = self.machine.to_dict()
        return data


@dataclass
class TickResult:
    """Readings, alerts and line metrics produced by one tick."""

    tick: int
    elapsed_s: float
    readings: List[SensorReading] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tick": self.tick,
            "elapsedSeconds": round(self.elapsed_s, 3),
            "readings": [r.to_dict() for r in self.readings],
            "alerts": [a.to_dict() for a in self.alerts],
            "metrics": self.metrics,
        }


class Simulator:
    """One simulation session over a single production line."""

    def __init__(
        self,
        config: Config,
        rng: Optional[random.Random] = None,
        publisher: Optional[Any] = None,
        start_time: Optional[datetime] = None,
    ):
        self.config = config
        self._rng = rng or random.Random(config.simulation.random_seed)
        self._publisher = publisher

        self.sensors = SensorSimulator(self._rng, config.simulation.history_size)
        self.upgrades = UpgradeEngine(config)
        self.roi = ROIEngine()
        self.alarms = AlarmLog(config.simulation.alarm_history_size)
        self.flags = UpgradeFlags()

        self._machines: Dict[str, Machine] = {}
        self._last_readings: Dict[str, SensorReading] = {}
        self._recent_alerts: Deque[Alert] = deque(maxlen=config.simulation.alarm_history_size)

        # Timing
        self._start_time = start_time or datetime.now()
        self._clock = 0.0  # simulated seconds since start
        self._tick_count = 0
        self._running = False

    @property
    def clock(self) -> float:
        return self._clock

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def running(self) -> bool:
        return self._running

    @property
    def machines(self) -> List[Machine]:
        """Placed machines in line order."""
        return resolve_line(self._machines.values())

    @property
    def recent_alerts(self) -> List[Alert]:
        """Alerts of recent ticks, newest first."""
        return list(reversed(self._recent_alerts))

    def machine(self, machine_id: str) -> Optional[Machine]:
        return self._machines.get(machine_id)

    def _now(self) -> datetime:
        return self._start_time + timedelta(seconds=self._clock)

    # =========================================================================
    # Layout
    # =========================================================================

    def _occupant(self, position: GridPosition) -> Optional[Machine]:
        for machine in self._machines.values():
            if machine.position == position:
                return machine
        return None

    def add_machine(self, machine: Union[Machine, Dict[str, Any]]) -> LayoutResult:
        """Place a machine. Entries given as dicts are completed from the catalog."""
        if isinstance(machine, dict):
            machine = machine_from_catalog(machine, self.config)

        if machine.id in self._machines:
            return LayoutResult(False, f"Machine id already in use: {machine.id}")

        occupant = self._occupant(machine.position)
        if occupant is not None:
            return LayoutResult(
                False,
                f"Position ({machine.position.x}, {machine.position.y}) is occupied by {occupant.display_name}",
            )

        self._machines[machine.id] = machine
        self.sensors.initialize_machine(
            machine.id, {"temperature": machine.temperature, "vibration": machine.vibration}
        )
        logger.debug(f"Placed {machine.id} ({machine.type.value}) at {machine.position.to_dict()}")
        return LayoutResult(True, f"Added {machine.display_name}", machine)

    def remove_machine(self, machine_id: str) -> LayoutResult:
        machine = self._machines.pop(machine_id, None)
        if machine is None:
            return LayoutResult(False, f"Unknown machine: {machine_id}")

        self.sensors.forget_machine(machine_id)
        self._last_readings.pop(machine_id, None)
        return LayoutResult(True, f"Removed {machine.display_name}", machine)

    def update_machine(self, machine_id: str, **changes: Any) -> LayoutResult:
        """Change editable fields of a placed machine."""
        machine = self._machines.get(machine_id)
        if machine is None:
            return LayoutResult(False, f"Unknown machine: {machine_id}")

        unknown = [key for key in changes if key not in UPDATABLE_FIELDS]
        if unknown:
            return LayoutResult(False, f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        if "cycle_time" in changes and (changes["cycle_time"] is None or changes["cycle_time"] <= 0):
            return LayoutResult(False, "Cycle time must be positive")

        if "position" in changes:
            position = changes["position"]
            if isinstance(position, dict):
                position = GridPosition.of(position.get("x", 0), position.get("y", 0))
            occupant = self._occupant(position)
            if occupant is not None and occupant.id != machine_id:
                return LayoutResult(
                    False,
                    f"Position ({position.x}, {position.y}) is occupied by {occupant.display_name}",
                )
            changes["position"] = position

        for key, value in changes.items():
            setattr(machine, key, value)
        if "efficiency" in changes:
            machine.base_efficiency = machine.efficiency

        return LayoutResult(True, f"Updated {machine.display_name}", machine)

    def clear_layout(self) -> None:
        for machine_id in list(self._machines):
            self.sensors.forget_machine(machine_id)
        self._machines.clear()
        self._last_readings.clear()
        logger.info("Layout cleared")

    # =========================================================================
    # Upgrades
    # =========================================================================

    def set_upgrade_flags(
        self,
        iot: Optional[bool] = None,
        ai: Optional[bool] = None,
        automation: Optional[bool] = None,
    ) -> UpgradeFlags:
        """Toggle line-wide upgrades. Arguments left as None keep their state."""
        if iot is not None:
            self.flags.iot = iot
        if ai is not None:
            self.flags.ai = ai
        if automation is not None:
            self.flags.automation = automation
        logger.info(f"Line upgrades: {self.flags.active() or 'none'}")
        return self.flags

    def apply_upgrade(self, machine_id: str, upgrade_type: str) -> UpgradeResult:
        """Apply an upgrade to a placed machine and record its ROI."""
        machine = self._machines.get(machine_id)
        if machine is None:
            return UpgradeResult(success=False, message=f"Unknown machine: {machine_id}")

        now = self._now()
        result = self.upgrades.apply_upgrade(machine, upgrade_type, now)
        if not result.success:
            return result

        self._machines[machine_id] = result.machine
        analysis = self.roi.calculate_upgrade_roi(
            result.record.cost, machine, self.config.costs, upgrade_type, now
        )
        self.roi.record_upgrade(analysis, machine_id, now)
        return result

    def recommendations(self) -> List[ROIRecommendation]:
        return self.roi.generate_recommendations(self.machines, self.upgrades, self.config.costs)

    def roi_summary(self) -> ROISummary:
        return self.roi.get_roi_summary()

    # =========================================================================
    # Maintenance
    # =========================================================================

    def perform_maintenance(self, machine_id: str) -> LayoutResult:
        """Reset the machine's maintenance clock."""
        machine = self._machines.get(machine_id)
        if machine is None:
            return LayoutResult(False, f"Unknown machine: {machine_id}")

        machine.last_maintenance = 0.0
        machine.efficiency = self.upgrades.calculate_efficiency(machine)
        logger.info(f"Maintenance performed on {machine_id}")
        return LayoutResult(True, f"Maintenance performed on {machine.display_name}", machine)

    def machine_status(self, machine_id: str) -> Optional[Dict[str, Any]]:
        """Health, failure risk, level and maintenance urgency of a machine."""
        machine = self._machines.get(machine_id)
        if machine is None:
            return None

        sim = self.config.simulation
        return {
            "machine": machine.to_dict(),
            "health": round(calculate_machine_health(machine), 1),
            "failureProbability": round(
                predict_failure(
                    machine,
                    max_temperature=sim.max_temperature,
                    critical_vibration=sim.critical_vibration,
                    maintenance_interval=sim.maintenance_interval_h * machine.maintenance_interval_multiplier,
                ),
                1,
            ),
            "maintenanceUrgency": round(self.sensors.predict_maintenance(machine), 3),
            "level": self.upgrades.get_machine_level(machine_id),
            "trends": self.sensors.get_trends(machine_id),
        }

    # =========================================================================
    # Tick
    # =========================================================================

    def tick(self, delta_time: Optional[float] = None) -> TickResult:
        """Advance the simulation by ``delta_time`` seconds.

        Accrues wear on every machine, generates one reading per machine,
        records critical anomalies as alarms and recomputes line metrics.
        """
        if delta_time is None:
            delta_time = self.config.simulation.tick_interval_ms / 1000.0
        if delta_time < 0:
            logger.warning(f"Ignoring negative tick of {delta_time}s")
            delta_time = 0.0

        self._clock += delta_time
        self._tick_count += 1
        now = self._now()
        hours = delta_time / 3600

        readings = []
        alerts = []
        for machine in self.machines:
            machine.last_maintenance += hours / machine.maintenance_interval_multiplier

            reading = self.sensors.generate_readings(machine, now)
            machine.temperature = reading.temperature
            machine.vibration = reading.vibration
            machine.efficiency = self.upgrades.calculate_efficiency(machine)

            machine_alerts = self.sensors.alerts_for(machine, reading)
            for alert in machine_alerts:
                if alert.anomaly.is_critical:
                    self.alarms.record(self._clock)
                self._recent_alerts.append(alert)

            self._last_readings[machine.id] = reading
            readings.append(reading)
            alerts.extend(machine_alerts)

        if alerts:
            logger.debug(f"Tick {self._tick_count}: {len(alerts)} alerts")

        result = TickResult(
            tick=self._tick_count,
            elapsed_s=self._clock,
            readings=readings,
            alerts=alerts,
            metrics=self.metrics(),
        )

        if self._publisher is not None:
            self._publisher.publish_tick(result)

        return result

    def _production_inputs(self) -> ProductionInputs:
        production = self.config.production
        machines = list(self._machines.values())
        downtime_factor = (
            sum(m.downtime_multiplier for m in machines) / len(machines) if machines else 1.0
        )
        return ProductionInputs(
            production_rate=production.production_rate,
            defect_rate=production.defect_rate,
            shift_hours=production.shift_hours,
            downtime=production.downtime * downtime_factor,
        )

    def sensor_history(self) -> Dict[str, Dict[str, List[float]]]:
        return {
            machine_id: {channel: self.sensors.history(machine_id, channel) for channel in CHANNELS}
            for machine_id in self._machines
        }

    def metrics(self) -> Dict[str, Any]:
        """Dashboard metrics for the current state of the line."""
        if self._last_readings:
            expected = {
                machine_id: self.sensors.expected_current(machine)
                for machine_id, machine in self._machines.items()
            }
            snapshot = SensorSnapshot.from_readings(self._last_readings.values(), expected)
        else:
            snapshot = SensorSnapshot()

        oee = calculate_oee(self._production_inputs(), snapshot, self.flags)
        financials = self.roi.financial_metrics

        metrics = oee.to_percentage_dict()
        metrics.update(
            {
                "mtbf": round(self.alarms.mtbf(), 1),
                "mttr": round(calculate_mttr(self.flags), 1),
                "invested": round(financials.total_investment, 2),
                "annualSavings": round(financials.total_savings, 2),
                "paybackYears": self.roi.payback_years(),
                "upgrades": self.flags.to_dict(),
                "sensors": snapshot.to_dict(),
                "alarmHistory": self.alarms.timestamps,
                "sensorHistory": self.sensor_history(),
            }
        )
        return metrics

    def simulation_state(self) -> Dict[str, Any]:
        sim = self.config.simulation
        state = compute_simulation_state(
            self.machines,
            duration_s=sim.duration_s,
            cell_size=sim.cell_size,
            rows=sim.grid_rows,
            cols=sim.grid_cols,
        )
        return state.to_dict()

    # =========================================================================
    # Scheduler
    # =========================================================================

    def run(self, ticks: Optional[int] = None) -> int:
        """Tick at the configured interval until stopped or ``ticks`` are done.

        Returns the number of ticks executed.
        """
        interval = self.config.simulation.tick_interval_ms / 1000.0
        self._running = True
        executed = 0
        logger.info(f"Simulation started with {len(self._machines)} machines, tick {interval}s")

        try:
            while self._running and (ticks is None or executed < ticks):
                self.tick(interval)
                executed += 1
                if ticks is None or executed < ticks:
                    time.sleep(interval)
        except KeyboardInterrupt:
            logger.info("Simulation interrupted")
        finally:
            self._running = False

        logger.info(f"Simulation stopped after {executed} ticks")
        return executed

    def stop(self) -> None:
        self._running = False
