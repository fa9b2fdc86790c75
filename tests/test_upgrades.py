"""Tests for the upgrade engine."""

import pytest

from bottleline_sim.config import Config, UpgradeConfig, UpgradeEffect
from bottleline_sim.levels import MachineLevel
from bottleline_sim.models import GridPosition, Machine, MachineType
from bottleline_sim.upgrades import UpgradeEngine, UpgradeImpact


def make_machine(machine_type=MachineType.FILLER, **overrides):
    values = dict(
        id="m1",
        type=machine_type,
        position=GridPosition.of(0, 0),
        cycle_time=4,
        efficiency=85,
        base_efficiency=85,
        energy_cost=5,
        failure_rate=3,
    )
    values.update(overrides)
    return Machine(**values)


@pytest.fixture
def config():
    return Config.default()


@pytest.fixture
def engine(config):
    return UpgradeEngine(config)


class TestApplyUpgrade:
    """Tests for apply_upgrade."""

    def test_speed_upgrade(self, engine):
        machine = make_machine()

        result = engine.apply_upgrade(machine, "speed")

        assert result.success is True
        assert result.message == "Successfully applied Speed Boost"
        upgraded = result.machine
        assert upgraded.cycle_time == pytest.approx(4 / 1.2)
        assert upgraded.speed == 18
        assert upgraded.energy_cost == 5.5
        assert upgraded.failure_rate > 3
        assert upgraded.efficiency == 83.0
        assert upgraded.upgrades == ["speed"]

    def test_input_machine_is_not_mutated(self, engine):
        machine = make_machine()

        engine.apply_upgrade(machine, "speed")

        assert machine.cycle_time == 4
        assert machine.energy_cost == 5
        assert machine.upgrades == []

    def test_same_upgrade_twice_is_rejected(self, engine):
        first = engine.apply_upgrade(make_machine(), "speed")

        second = engine.apply_upgrade(first.machine, "speed")

        assert second.success is False
        assert "already applied" in second.message
        assert second.machine is None
        assert len(engine.history) == 1

    def test_invalid_upgrade_type(self, engine):
        result = engine.apply_upgrade(make_machine(), "turbo")

        assert result.success is False
        assert result.message == "Invalid upgrade type: turbo"
        assert result.to_dict() == {"success": False, "message": "Invalid upgrade type: turbo"}

    def test_level_prerequisite(self, engine):
        result = engine.apply_upgrade(make_machine(), "quality")

        assert result.success is False
        assert "requires level 2" in result.message

    def test_slots_exhausted(self, engine):
        machine = make_machine(MachineType.CAPPER, cycle_time=3)
        for upgrade_type in ("speed", "efficiency", "reliability"):
            result = engine.apply_upgrade(machine, upgrade_type)
            assert result.success, result.message
            machine = result.machine

        result = engine.apply_upgrade(machine, "energy")

        assert result.success is False
        assert result.message == "No upgrade slots left on Capper (3/3)"

    def test_slots_follow_machine_type(self, engine):
        blow_molder = make_machine(MachineType.BLOW_MOLDER)
        assert engine.upgrade_slots(blow_molder) == 5
        assert engine.upgrade_slots(make_machine(MachineType.CAPPER)) == 3

    def test_can_apply_upgrade(self, engine):
        machine = make_machine()
        assert engine.can_apply_upgrade(machine, "speed")
        assert not engine.can_apply_upgrade(machine, "automation")

    def test_result_to_dict(self, engine):
        data = engine.apply_upgrade(make_machine(), "energy").to_dict()

        assert data["success"] is True
        assert data["newState"]["upgrades"] == ["energy"]
        assert data["upgrade"]["type"] == "energy"
        assert data["upgrade"]["effect"]["energy_multiplier"] == 0.8

    def test_generic_over_catalog(self, config):
        config.upgrades["turbo"] = UpgradeConfig(
            id="turbo", name="Turbo", cost=300, effect=UpgradeEffect(speed_multiplier=2.0)
        )
        config.levels[MachineLevel.BASIC].available_upgrades.append("turbo")
        engine = UpgradeEngine(config)

        result = engine.apply_upgrade(make_machine(), "turbo")

        assert result.success is True
        assert result.machine.cycle_time == 2.0
        assert "turbo" in [u.id for u in engine.get_available_upgrades(make_machine(id="m2"))]


class TestEffectPipeline:
    """Tests for individual effect transforms."""

    def test_reliability(self, engine, config):
        upgraded = engine.calculate_upgraded_state(make_machine(), config.upgrades["reliability"])

        assert upgraded.failure_rate == 2.1
        assert upgraded.maintenance_interval_multiplier == 1.5
        assert upgraded.downtime_multiplier == 1.0

    def test_predictive_sets_downtime_multiplier(self, engine, config):
        upgraded = engine.calculate_upgraded_state(make_machine(), config.upgrades["predictive"])

        assert upgraded.downtime_multiplier == pytest.approx(0.7)
        assert upgraded.failure_rate == 2.4

    def test_quality_has_failure_floor(self, engine, config):
        quality = config.upgrades["quality"]

        assert engine.calculate_upgraded_state(make_machine(), quality).failure_rate == pytest.approx(2.5)
        assert engine.calculate_upgraded_state(make_machine(failure_rate=0.5), quality).failure_rate == 0.5

    def test_untouched_fields_are_left_alone(self, engine, config):
        upgraded = engine.calculate_upgraded_state(make_machine(), config.upgrades["energy"])

        assert upgraded.energy_cost == 4.0
        assert upgraded.cycle_time == 4
        assert upgraded.failure_rate == 3

    def test_automation_speed(self, engine, config):
        upgraded = engine.calculate_upgraded_state(make_machine(cycle_time=5), config.upgrades["automation"])
        assert upgraded.cycle_time == pytest.approx(4.0)


class TestEfficiency:
    """Tests for efficiency recomputation."""

    def test_condition_penalties(self, engine):
        machine = make_machine(temperature=80, vibration=3.5, last_maintenance=160)
        # 85 * 0.9 * 0.95 * 0.85
        assert engine.calculate_efficiency(machine) == 62.0

    def test_lower_clamp(self, engine):
        machine = make_machine(base_efficiency=50, temperature=80, vibration=3.5, last_maintenance=160)
        assert engine.calculate_efficiency(machine) == 50.0

    def test_upper_clamp(self, engine):
        machine = make_machine(base_efficiency=99, upgrades=["efficiency", "reliability"])
        assert engine.calculate_efficiency(machine) == 100.0

    def test_bonuses_do_not_compound(self, engine):
        first = engine.apply_upgrade(make_machine(), "efficiency").machine
        assert first.efficiency == 92.0

        second = engine.apply_upgrade(first, "energy").machine
        # 85 * 1.08 * 1.03
        assert second.efficiency == 95.0


class TestLevels:
    """Tests for machine levels and history."""

    def test_level_up_by_investment(self, engine):
        machine = make_machine()
        machine = engine.apply_upgrade(machine, "efficiency").machine
        assert engine.level("m1") == MachineLevel.BASIC

        engine.apply_upgrade(machine, "reliability")

        assert engine.level("m1") == MachineLevel.ADVANCED

    def test_available_upgrades_follow_level(self, engine):
        machine = make_machine()
        assert [u.id for u in engine.get_available_upgrades(machine)] == [
            "speed",
            "efficiency",
            "reliability",
            "energy",
        ]

        machine = engine.apply_upgrade(machine, "speed").machine
        machine = engine.apply_upgrade(machine, "efficiency").machine
        available = [u.id for u in engine.get_available_upgrades(machine)]

        assert "speed" not in available
        assert "quality" in available
        assert "predictive" in available
        assert "automation" not in available

    def test_get_machine_level(self, engine):
        machine = engine.apply_upgrade(make_machine(), "efficiency").machine
        engine.apply_upgrade(machine, "reliability")

        level = engine.get_machine_level("m1")

        assert level["level"] == 2
        assert level["name"] == "Advanced"
        assert level["upgradesApplied"] == 2
        assert level["totalInvestment"] == 1300
        assert level["nextLevel"]["requiredUpgrades"] == 2
        assert level["nextLevel"]["requiredInvestment"] == 700
        assert "automation" in level["nextLevel"]["unlocks"]

    def test_unknown_machine_level(self, engine):
        level = engine.get_machine_level("ghost")
        assert level["level"] == 1
        assert level["upgradesApplied"] == 0

    def test_history_newest_first(self, engine):
        machine = engine.apply_upgrade(make_machine(), "speed").machine
        engine.apply_upgrade(machine, "efficiency")
        engine.apply_upgrade(make_machine(id="m2"), "energy")

        assert [r.upgrade_type for r in engine.history] == ["energy", "efficiency", "speed"]
        assert [r.upgrade_type for r in engine.get_upgrade_history("m1")] == ["efficiency", "speed"]
        assert len(engine.get_upgrade_history("m1", limit=1)) == 1
        assert engine.get_total_investment("m1") == 1100

    def test_cost_override_recorded(self, config):
        config.costs.upgrade_costs["speed"] = 750
        engine = UpgradeEngine(config)

        result = engine.apply_upgrade(make_machine(), "speed")

        assert result.record.cost == 750
        assert engine.get_total_investment("m1") == 750


class TestRecommendations:
    """Tests for impact and priority scoring."""

    def test_upgrade_impact(self, engine, config):
        impact = engine.calculate_upgrade_impact(make_machine(), config.upgrades["efficiency"])

        assert impact.energy == pytest.approx(10.0)
        assert impact.efficiency == pytest.approx(7.0)
        assert impact.speed == 0.0

    def test_priority(self):
        impact = UpgradeImpact(efficiency=10)
        assert UpgradeEngine.calculate_priority(impact, roi=100) == pytest.approx(4.0)

    def test_describe_benefits(self):
        assert UpgradeEngine.describe_benefits(UpgradeImpact()) == ["Minor improvements"]
        assert UpgradeEngine.describe_benefits(UpgradeImpact(speed=20)) == ["+20.0% production speed"]

    def test_recommendations_sorted_by_priority(self, engine):
        recommendations = engine.get_upgrade_recommendations(make_machine())

        priorities = [r.priority for r in recommendations]
        assert priorities == sorted(priorities, reverse=True)
        assert len(recommendations) == 4
        assert recommendations[0].to_dict()["expectedBenefits"]
