"""Tests for the simulation session."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from bottleline_sim.config import Config
from bottleline_sim.models import GridPosition, Machine, MachineType
from bottleline_sim.oee import (
    LINE_MIN_POWER,
    LINE_TEMPERATURE_WARNING,
    LINE_VIBRATION_WARNING,
    TEMPERATURE_SHIFT,
)
from bottleline_sim.simulator import Simulator, TickResult

START = datetime(2024, 1, 1, 12, 0)

LINE = [
    {"id": "feeder_01", "type": "feeder", "position": {"x": 0, "y": 0}},
    {"id": "filler_01", "type": "filler", "position": {"x": 1, "y": 0}},
    {"id": "capper_01", "type": "capper", "position": {"x": 2, "y": 0}},
]


@pytest.fixture
def config():
    config = Config.default()
    config.simulation.tick_interval_ms = 0
    config.simulation.random_seed = 7
    return config


@pytest.fixture
def simulator(config):
    sim = Simulator(config, start_time=START)
    for entry in LINE:
        assert sim.add_machine(dict(entry)).success
    return sim


class TestLayoutCommands:
    """Tests for placing and editing machines."""

    def test_machines_in_line_order(self, config):
        sim = Simulator(config, start_time=START)
        for entry in reversed(LINE):
            sim.add_machine(dict(entry))

        assert [m.id for m in sim.machines] == ["feeder_01", "filler_01", "capper_01"]

    def test_catalog_fills_machine_fields(self, simulator):
        filler = simulator.machine("filler_01")

        assert filler.cycle_time == 4
        assert filler.name == "Filler"

    def test_duplicate_position_rejected(self, simulator):
        result = simulator.add_machine({"id": "other", "type": "labeler", "position": {"x": 1, "y": 0}})

        assert result.success is False
        assert "occupied by Filler" in result.message
        assert len(simulator.machines) == 3

    def test_duplicate_id_rejected(self, simulator):
        result = simulator.add_machine({"id": "filler_01", "type": "filler", "position": {"x": 5, "y": 5}})

        assert result.success is False
        assert "already in use" in result.message

    def test_add_machine_object(self, config):
        sim = Simulator(config, start_time=START)
        machine = Machine(id="solo", type=MachineType.PACKAGER, position=GridPosition.of(3, 2), cycle_time=7)

        result = sim.add_machine(machine)

        assert result.success is True
        assert result.to_dict()["machine"]["id"] == "solo"
        assert sim.sensors.has_machine("solo")

    def test_remove_machine(self, simulator):
        result = simulator.remove_machine("filler_01")

        assert result.success is True
        assert [m.id for m in simulator.machines] == ["feeder_01", "capper_01"]
        assert not simulator.sensors.has_machine("filler_01")

    def test_remove_unknown_machine(self, simulator):
        assert simulator.remove_machine("ghost").success is False

    def test_update_machine(self, simulator):
        result = simulator.update_machine("filler_01", cycle_time=2, efficiency=90)

        assert result.success is True
        filler = simulator.machine("filler_01")
        assert filler.speed == 30
        assert filler.base_efficiency == 90

    def test_update_machine_rejections(self, simulator):
        assert simulator.update_machine("filler_01", cycle_time=0).success is False
        assert simulator.update_machine("filler_01", position={"x": 0, "y": 0}).success is False
        assert simulator.update_machine("filler_01", upgrades=["speed"]).success is False
        assert simulator.update_machine("ghost", name="x").success is False

    def test_move_machine(self, simulator):
        result = simulator.update_machine("feeder_01", position={"x": 4, "y": 1})

        assert result.success is True
        assert [m.id for m in simulator.machines] == ["filler_01", "capper_01", "feeder_01"]

    def test_clear_layout(self, simulator):
        simulator.clear_layout()

        assert simulator.machines == []
        assert not simulator.sensors.has_machine("feeder_01")


class TestTick:
    """Tests for advancing the simulation."""

    def test_tick_generates_readings(self, simulator):
        result = simulator.tick(1.0)

        assert isinstance(result, TickResult)
        assert result.tick == 1
        assert result.elapsed_s == 1.0
        assert [r.machine_id for r in result.readings] == ["feeder_01", "filler_01", "capper_01"]
        assert simulator.tick_count == 1
        assert len(simulator.sensors.history("feeder_01", "temperature")) == 2

    def test_tick_accrues_wear(self, simulator):
        simulator.tick(3600)

        assert simulator.machine("feeder_01").last_maintenance == pytest.approx(1.0)

    def test_maintenance_interval_slows_wear(self, simulator):
        assert simulator.apply_upgrade("feeder_01", "reliability").success

        simulator.tick(3600)

        assert simulator.machine("feeder_01").last_maintenance == pytest.approx(1 / 1.5)
        assert simulator.machine("filler_01").last_maintenance == pytest.approx(1.0)

    def test_negative_tick_is_ignored(self, simulator):
        simulator.tick(-5)
        assert simulator.clock == 0.0

    def test_tick_updates_sensor_snapshot(self, simulator):
        result = simulator.tick(1.0)
        feeder = simulator.machine("feeder_01")

        assert feeder.temperature == result.readings[0].temperature
        hottest = max(r.temperature for r in result.readings)
        assert result.metrics["sensors"]["temperature"] == round(hottest + TEMPERATURE_SHIFT, 1)

    def test_healthy_line_has_no_sensor_penalty(self, simulator):
        for _ in range(30):
            result = simulator.tick(1.0)

        sensors = result.metrics["sensors"]
        assert sensors["temperature"] <= LINE_TEMPERATURE_WARNING
        assert sensors["vibration"] <= LINE_VIBRATION_WARNING
        assert sensors["power"] >= LINE_MIN_POWER
        assert result.metrics["performance"] == 80.0
        assert result.metrics["oee"] == 70.3

    def test_critical_alarms_feed_mtbf(self, config):
        sim = Simulator(config, start_time=START)
        sim.add_machine(
            {
                "id": "worn",
                "type": "capper",
                "position": {"x": 0, "y": 0},
                "failureRate": 10,
                "lastMaintenance": 300,
            }
        )

        first = sim.tick(10)
        sim.tick(10)

        assert any(a.anomaly.type == "maintenance_required" for a in first.alerts)
        assert sim.alarms.timestamps == [10.0, 20.0]
        assert sim.metrics()["mtbf"] == 10.0
        assert sim.recent_alerts[0].machine_id == "worn"

    def test_seeded_sessions_are_reproducible(self, config):
        first = Simulator(config, start_time=START)
        second = Simulator(config, start_time=START)
        for sim in (first, second):
            for entry in LINE:
                sim.add_machine(dict(entry))

        for _ in range(5):
            a = first.tick(1.0)
            b = second.tick(1.0)
            assert [r.values for r in a.readings] == [r.values for r in b.readings]

    def test_publisher_receives_each_tick(self, config):
        publisher = MagicMock()
        sim = Simulator(config, publisher=publisher, start_time=START)
        sim.add_machine(dict(LINE[0]))

        result = sim.tick(1.0)

        publisher.publish_tick.assert_called_once_with(result)


class TestUpgrades:
    """Tests for session-level upgrades."""

    def test_apply_upgrade_updates_layout_and_roi(self, simulator):
        result = simulator.apply_upgrade("filler_01", "speed")

        assert result.success is True
        assert simulator.machine("filler_01").speed == 18
        assert simulator.roi.financial_metrics.total_investment == 500
        assert simulator.roi.history[0].machine_id == "filler_01"

        metrics = simulator.metrics()
        assert metrics["invested"] == 500
        assert metrics["annualSavings"] > 0
        assert metrics["paybackYears"] is not None

    def test_rejected_upgrade_records_nothing(self, simulator):
        simulator.apply_upgrade("filler_01", "speed")

        result = simulator.apply_upgrade("filler_01", "speed")

        assert result.success is False
        assert simulator.roi.financial_metrics.total_investment == 500
        assert len(simulator.roi.history) == 1

    def test_unknown_machine(self, simulator):
        result = simulator.apply_upgrade("ghost", "speed")

        assert result.success is False
        assert "Unknown machine" in result.message

    def test_downtime_multiplier_reduces_line_downtime(self, config):
        sim = Simulator(config, start_time=START)
        sim.add_machine(dict(LINE[1]))
        sim.apply_upgrade("filler_01", "speed")
        sim.apply_upgrade("filler_01", "efficiency")

        assert sim.apply_upgrade("filler_01", "predictive").success
        assert sim._production_inputs().downtime == pytest.approx(45 * 0.7)

    def test_line_flags_raise_oee(self, simulator):
        baseline = simulator.metrics()["oee"]

        simulator.set_upgrade_flags(iot=True, ai=True, automation=True)

        metrics = simulator.metrics()
        assert metrics["oee"] > baseline
        assert metrics["mttr"] == pytest.approx(40.3, abs=0.05)
        assert metrics["upgrades"] == {"iot": True, "ai": True, "automation": True}

    def test_flags_left_as_none_keep_state(self, simulator):
        simulator.set_upgrade_flags(ai=True)
        flags = simulator.set_upgrade_flags(iot=True)

        assert flags.ai is True
        assert flags.iot is True
        assert flags.automation is False

    def test_recommendations(self, simulator):
        recommendations = simulator.recommendations()

        assert recommendations
        assert {r.machine_id for r in recommendations} == {"feeder_01", "filler_01", "capper_01"}


class TestQueries:
    """Tests for metrics, state and machine status."""

    def test_initial_metrics(self, simulator):
        metrics = simulator.metrics()

        assert metrics["oee"] == 70.3
        assert metrics["mtbf"] == 300.0
        assert metrics["mttr"] == 120.0
        assert metrics["invested"] == 0
        assert metrics["paybackYears"] is None
        assert set(metrics["sensorHistory"]) == {"feeder_01", "filler_01", "capper_01"}

    def test_simulation_state(self, simulator):
        state = simulator.simulation_state()

        assert [n["id"] for n in state["nodes"]] == ["feeder_01", "filler_01", "capper_01"]
        assert state["throughputPerSec"] == pytest.approx(0.17)
        assert state["metrics"]["gridSize"] == {"rows": 6, "cols": 8}

    def test_perform_maintenance(self, simulator):
        simulator.tick(7200)
        assert simulator.machine("capper_01").last_maintenance > 0

        result = simulator.perform_maintenance("capper_01")

        assert result.success is True
        assert simulator.machine("capper_01").last_maintenance == 0.0
        assert simulator.perform_maintenance("ghost").success is False

    def test_machine_status(self, simulator):
        simulator.tick(1.0)
        simulator.tick(1.0)

        status = simulator.machine_status("filler_01")

        assert 0 <= status["health"] <= 100
        assert 0 <= status["failureProbability"] <= 99
        assert status["level"]["level"] == 1
        assert "temperature" in status["trends"]
        assert simulator.machine_status("ghost") is None

    def test_roi_summary_empty(self, simulator):
        assert simulator.roi_summary().payback_period == "N/A"


class TestRun:
    """Tests for the tick scheduler."""

    def test_run_fixed_ticks(self, simulator):
        executed = simulator.run(ticks=3)

        assert executed == 3
        assert simulator.tick_count == 3
        assert simulator.running is False

    def test_stop_ends_run(self, config):
        publisher = MagicMock()
        sim = Simulator(config, publisher=publisher, start_time=START)
        sim.add_machine(dict(LINE[0]))
        publisher.publish_tick.side_effect = lambda result: sim.stop()

        executed = sim.run()

        assert executed == 1
        assert sim.running is False
