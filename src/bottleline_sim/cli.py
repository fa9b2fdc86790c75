"""Command-line interface for the Bottleline Simulator."""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from .config import Config, load_layout, save_layout
from .levels import MachineLevel
from .models import GridPosition, Machine, MachineType
from .publisher import MQTTPublisher
from .simulator import Simulator

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

SAMPLE_LINE = [
    MachineType.BLOW_MOLDER,
    MachineType.FILLER,
    MachineType.CAPPER,
    MachineType.LABELER,
    MachineType.PACKAGER,
]

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to config.yaml (defaults are used when omitted)",
)
layout_option = click.option(
    "--layout",
    "-L",
    "layout_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Layout YAML file",
)


def _load_config(config_path: Optional[Path]) -> Config:
    base = Config.from_yaml(config_path) if config_path else Config.default()
    return Config.from_env(base)


def _build_simulator(config: Config, layout_path: Path, publisher=None) -> Simulator:
    sim = Simulator(config, publisher=publisher)
    for machine in load_layout(layout_path, config):
        result = sim.add_machine(machine)
        if not result.success:
            logger.warning(f"Skipped {machine.id}: {result.message}")
    return sim


def _apply_upgrades(sim: Simulator, upgrades) -> None:
    for spec in upgrades:
        machine_id, _, upgrade_type = spec.partition(":")
        result = sim.apply_upgrade(machine_id, upgrade_type)
        if not result.success:
            click.echo(f"Upgrade {spec} rejected: {result.message}", err=True)


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
def main(verbose):
    """Bottleline Simulator - bottling line analytics and what-if engine.

    Turns a grid layout of machines into a production line and reports
    throughput, simulated sensor telemetry, OEE and upgrade ROI.
    """
    load_dotenv()
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("config"),
    help="Output directory for config files",
)
def init(output):
    """Generate sample configuration and layout files.

    Creates config.yaml with the default machine and upgrade catalog and
    layout.yaml with a five-station bottling line.
    """
    output.mkdir(parents=True, exist_ok=True)

    cfg = Config.default()
    config_path = output / "config.yaml"
    cfg.to_yaml(config_path)

    machines = []
    for x, machine_type in enumerate(SAMPLE_LINE):
        spec = cfg.machine_types[machine_type]
        machines.append(
            Machine(
                id=f"{machine_type.value.lower()}_01",
                type=machine_type,
                position=GridPosition.of(x, 0),
                name=spec.name,
                cycle_time=spec.cycle_time,
            )
        )
    layout_path = output / "layout.yaml"
    save_layout(machines, layout_path)

    click.echo(f"Created: {config_path}")
    click.echo(f"Created: {layout_path}")
    click.echo()
    click.echo("Edit the config file to customize:")
    click.echo("  - Shift and production inputs")
    click.echo("  - Unit costs and upgrade prices")
    click.echo("  - Machine types and upgrade catalog")
    click.echo()
    click.echo(f"Run with: bottleline-sim simulate --config {config_path} --layout {layout_path}")


@main.command()
@config_option
@layout_option
@click.option("--ticks", "-n", type=click.IntRange(min=0), default=10, help="Number of ticks")
@click.option("--delta", type=float, default=None, help="Seconds per tick (default: tick interval)")
@click.option("--seed", type=int, default=None, help="Random seed for sensor jitter")
@click.option("--iot", is_flag=True, default=False, help="Enable IoT sensors")
@click.option("--ai", is_flag=True, default=False, help="Enable AI vision")
@click.option("--automation", is_flag=True, default=False, help="Enable robotic automation")
@click.option(
    "--upgrade",
    "-u",
    "upgrades",
    multiple=True,
    help="Apply a machine upgrade before simulating, as MACHINE_ID:TYPE",
)
@click.option("--state", "with_state", is_flag=True, default=False, help="Include the 3D simulation state")
@click.option("--history", "with_history", is_flag=True, default=False, help="Include sensor history")
def simulate(config_path, layout_path, ticks, delta, seed, iot, ai, automation, upgrades, with_state, with_history):
    """Simulate the line for a number of ticks and print metrics as JSON."""
    try:
        cfg = _load_config(config_path)
        if seed is not None:
            cfg.simulation.random_seed = seed

        sim = _build_simulator(cfg, layout_path)
        sim.set_upgrade_flags(iot=iot, ai=ai, automation=automation)
        _apply_upgrades(sim, upgrades)

        alerts = []
        for _ in range(ticks):
            alerts.extend(sim.tick(delta).alerts)

        metrics = sim.metrics()
        if not with_history:
            metrics.pop("sensorHistory", None)

        output = {
            "ticks": sim.tick_count,
            "elapsedSeconds": round(sim.clock, 3),
            "metrics": metrics,
            "alerts": [a.to_dict() for a in alerts],
            "roi": sim.roi_summary().to_dict(),
        }
        if with_state:
            output["simulationState"] = sim.simulation_state()

        click.echo(json.dumps(output, indent=2, default=str))

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command()
@config_option
@layout_option
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON instead of a table")
def roi(config_path, layout_path, as_json):
    """Rank upgrade opportunities across the line by expected ROI."""
    try:
        cfg = _load_config(config_path)
        sim = _build_simulator(cfg, layout_path)
        recommendations = sim.recommendations()

        if as_json:
            click.echo(json.dumps([r.to_dict() for r in recommendations], indent=2))
            return

        if not recommendations:
            click.echo("No upgrades above 50% ROI")
            return

        click.echo(f"{'Machine':<16} {'Upgrade':<14} {'Cost':>8} {'ROI %':>9} {'Payback':>14}")
        click.echo("-" * 65)
        for r in recommendations:
            payback = f"{r.payback_months:.1f} months" if r.payback_months is not None else "N/A"
            click.echo(
                f"{r.machine_name:<16} {r.upgrade_type:<14} {r.cost:>8.0f} {r.expected_roi:>9.1f} {payback:>14}"
            )

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command()
@config_option
def catalog(config_path):
    """List machine types, upgrades and the upgrades each level unlocks."""
    cfg = _load_config(config_path)

    click.echo("Machine Types:")
    for machine_type, spec in cfg.machine_types.items():
        click.echo(
            f"  {machine_type.value:<12} {spec.name:<14} cycle {spec.cycle_time:g}s, "
            f"{spec.upgrade_slots} upgrade slots"
        )
    click.echo()

    click.echo("Upgrades:")
    for upgrade in cfg.upgrades.values():
        requires = upgrade.effect.requires_level
        suffix = f" (requires level {requires})" if requires else ""
        click.echo(f"  {upgrade.id:<12} {upgrade.name:<24} {cfg.upgrade_cost(upgrade.id):>7.0f}{suffix}")
        if upgrade.description:
            click.echo(f"      {upgrade.description}")
    click.echo()

    click.echo("Levels:")
    for level in MachineLevel:
        level_config = cfg.levels.get(level)
        if level_config is None:
            continue
        click.echo(f"  {int(level)}: {level_config.name:<10} {', '.join(level_config.available_upgrades)}")


@main.command()
@config_option
@layout_option
@click.option("--ticks", "-n", type=click.IntRange(min=1), default=None, help="Stop after N ticks")
@click.option("--broker", "-b", default=None, help="MQTT broker address")
@click.option("--port", "-p", type=int, default=None, help="MQTT broker port")
@click.option("--dry-run", is_flag=True, default=False, help="Log messages instead of publishing")
@click.option("--iot", is_flag=True, default=False, help="Enable IoT sensors")
@click.option("--ai", is_flag=True, default=False, help="Enable AI vision")
@click.option("--automation", is_flag=True, default=False, help="Enable robotic automation")
def run(config_path, layout_path, ticks, broker, port, dry_run, iot, ai, automation):
    """Run the tick loop in real time and publish each tick over MQTT.

    Press Ctrl+C to stop.
    """
    cfg = _load_config(config_path)
    if broker:
        cfg.mqtt.broker = broker
    if port:
        cfg.mqtt.port = port

    publisher = MQTTPublisher(cfg.mqtt)
    if not publisher.connect(dry_run=dry_run):
        click.echo(f"Error: could not connect to {cfg.mqtt.broker}:{cfg.mqtt.port}", err=True)
        sys.exit(1)

    try:
        sim = _build_simulator(cfg, layout_path, publisher=publisher)
        sim.set_upgrade_flags(iot=iot, ai=ai, automation=automation)
        executed = sim.run(ticks)
        click.echo(f"Ran {executed} ticks, published to {publisher.base_topic}")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        publisher.disconnect()
        stats = publisher.stats
        click.echo(f"Messages published: {stats['published']}, dropped: {stats['dropped']}")


if __name__ == "__main__":
    main()
