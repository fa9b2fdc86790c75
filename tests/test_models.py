"""Tests for the shared data records."""

import pytest

from bottleline_sim.models import (
    Anomaly,
    GridPosition,
    Machine,
    MachineType,
    Severity,
)


class TestMachineType:
    """Tests for MachineType parsing."""

    def test_values_match_layout_strings(self):
        assert MachineType.BLOW_MOLDER.value == "blowMolder"
        assert MachineType.parse("filler") == MachineType.FILLER

    def test_unknown_type_falls_back_to_feeder(self):
        assert MachineType.parse("conveyor") == MachineType.FEEDER
        assert MachineType.parse(None) == MachineType.FEEDER


class TestGridPosition:
    """Tests for reading-order positions."""

    def test_ordering_is_row_then_column(self):
        assert GridPosition.of(5, 0) < GridPosition.of(0, 1)
        assert GridPosition.of(1, 2) < GridPosition.of(2, 2)

    def test_to_dict(self):
        assert GridPosition.of(3, 4).to_dict() == {"x": 3, "y": 4}


class TestMachine:
    """Tests for Machine."""

    @pytest.mark.parametrize(
        "cycle_time,speed",
        [(5, 12), (4, 15), (3, 20), (200, 1)],
    )
    def test_speed_from_cycle_time(self, cycle_time, speed):
        machine = Machine(id="m", type=MachineType.FEEDER, position=GridPosition.of(0, 0), cycle_time=cycle_time)
        assert machine.speed == speed

    def test_from_dict_defaults(self):
        machine = Machine.from_dict({})

        assert machine.id.startswith("m_")
        assert machine.type == MachineType.FEEDER
        assert machine.position == GridPosition.of(0, 0)
        assert machine.cycle_time == 5.0
        assert machine.efficiency == 85.0
        assert machine.energy_cost == 5.0
        assert machine.failure_rate == 3.0
        assert machine.last_maintenance == 0.0
        assert machine.upgrades == []

    def test_from_dict_normalizes_bad_fields(self):
        machine = Machine.from_dict(
            {
                "id": "x1",
                "type": "mystery",
                "cycleTime": -2,
                "failureRate": -1,
                "upgrades": ["speed", "speed", "energy"],
            }
        )

        assert machine.type == MachineType.FEEDER
        assert machine.cycle_time == 5.0
        assert machine.failure_rate == 0.0
        assert machine.upgrades == ["speed", "energy"]

    def test_from_dict_null_fields_take_defaults(self):
        machine = Machine.from_dict(
            {
                "id": "a",
                "type": "filler",
                "position": {"x": None, "y": 2},
                "cycleTime": None,
                "efficiency": None,
                "baseEfficiency": None,
                "energyCost": None,
                "failureRate": None,
                "lastMaintenance": None,
                "temperature": None,
                "vibration": None,
            }
        )

        assert machine.position == GridPosition.of(0, 2)
        assert machine.cycle_time == 5.0
        assert machine.base_efficiency == 85.0
        assert machine.energy_cost == 5.0
        assert machine.failure_rate == 3.0
        assert machine.last_maintenance == 0.0
        assert (machine.temperature, machine.vibration) == (60.0, 2.0)

    def test_from_dict_accepts_snake_case(self):
        machine = Machine.from_dict(
            {"type": "capper", "position": {"x": 2, "y": 1}, "cycle_time": 3, "energy_cost": 7.5}
        )

        assert machine.position == GridPosition.of(2, 1)
        assert machine.cycle_time == 3.0
        assert machine.energy_cost == 7.5

    def test_display_name_defaults_to_type(self):
        machine = Machine.from_dict({"type": "labeler"})
        assert machine.display_name == "Labeler"

    def test_to_dict_uses_camel_case(self):
        machine = Machine.from_dict({"id": "f1", "type": "filler", "cycleTime": 4})
        data = machine.to_dict()

        assert data["id"] == "f1"
        assert data["type"] == "filler"
        assert data["cycleTime"] == 4.0
        assert data["speed"] == 15
        assert "energyCost" in data
        assert "failureRate" in data


class TestAnomaly:
    """Tests for Anomaly."""

    def test_is_critical(self):
        assert Anomaly("high_temperature", Severity.CRITICAL, 90).is_critical
        assert not Anomaly("high_temperature", Severity.WARNING, 82).is_critical

    def test_to_dict_includes_change_when_previous_known(self):
        anomaly = Anomaly(
            type="sudden_change_current",
            severity=Severity.WARNING,
            value=20.0,
            previous=14.333,
            change_pct=39.5,
        )
        data = anomaly.to_dict()

        assert data["severity"] == "warning"
        assert data["previous"] == 14.33
        assert data["change"] == 39.5
        assert "threshold" not in data
