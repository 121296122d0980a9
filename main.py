"""
Population Migration Simulation
Main entry point: generates a synthetic world and runs the pull-push migration
model with a live dashboard, then writes history, metrics, plots and a report.
"""

import argparse
import json
from pathlib import Path

from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.layout import Layout
from rich.panel import Panel

from config import SimulationConfig
from errors import ConfigurationError
from events import EffectApplication, FactorChangeEffect, SimulationEvent, StepTrigger
from generator import WorldGenerator
from logger import setup_logger
from metrics import MetricsCollector, MetricsObserver
from reporting import ReportGenerator
from simulation import SimulationLoop, StepResult
from snapshot import NumpyEncoder, save_checkpoint
from viz import Visualizer

logger = None
console = Console()


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments for simulation configuration."""
    parser = argparse.ArgumentParser(
        description="Pull-push population migration simulation"
    )
    parser.add_argument(
        "--cities", type=int, default=8,
        help="Number of generated cities (default: 8)"
    )
    parser.add_argument(
        "--groups-per-city", type=int, default=4,
        help="Population groups seeded in each city (default: 4)"
    )
    parser.add_argument(
        "--steps", type=int, default=200,
        help="Maximum number of steps to simulate (default: 200)"
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Random seed for reproducibility"
    )
    parser.add_argument(
        "--shock-step", type=int, default=None,
        help="Step at which housing costs jump in the largest city (default: none)"
    )
    parser.add_argument(
        "--output-dir", type=str, default="output",
        help="Directory for output files (default: output)"
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO",
        help="Logging verbosity level (default: INFO)"
    )
    parser.add_argument(
        "--no-viz", action="store_true",
        help="Skip visualization generation for performance"
    )
    parser.add_argument(
        "--parallel", action="store_true",
        help="Score attractions on a thread pool"
    )
    parser.add_argument(
        "--workers", type=int, default=None,
        help="Maximum worker threads when --parallel is set"
    )
    return parser.parse_args(argv)


def create_dashboard(step, total_steps, stats, events):
    """Create a rich layout dashboard."""
    layout = Layout()
    layout.split_column(
        Layout(name="header", size=3),
        Layout(name="main", ratio=1),
        Layout(name="footer", size=3)
    )

    layout["header"].update(Panel(f"MigraSim - Step {step}/{total_steps}", style="bold blue"))

    table = Table(title="Migration Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    if stats:
        table.add_row("Population", f"{stats.get('total_population', 0):,}")
        table.add_row("Migrants (step)", f"{stats.get('migration_count', 0):,}")
        table.add_row("Migration Rate", f"{stats.get('migration_rate', 0):.3%}")
        table.add_row("Gini", f"{stats.get('gini', 0):.3f}")
        table.add_row("Entropy", f"{stats.get('entropy', 0):.3f} bits")

    cities = Table(title="Largest Cities")
    cities.add_column("City", style="cyan")
    cities.add_column("Population", style="green", justify="right")
    populations = stats.get("city_populations", {}) if stats else {}
    for name, population in sorted(populations.items(), key=lambda item: item[1], reverse=True)[:8]:
        cities.add_row(name, f"{population:,}")

    event_text = "\n".join([f"• {e}" for e in events[-8:]]) if events else "No events yet."

    layout["main"].split_row(
        Layout(Panel(table, title="Stats"), ratio=1),
        Layout(Panel(cities, title="Cities"), ratio=1),
        Layout(Panel(event_text, title="Recent Events", style="yellow"), ratio=1)
    )
    layout["footer"].update(Panel("Running simulation...", style="italic"))

    return layout


def build_events(world, shock_step):
    if shock_step is None:
        return []
    largest = max(world.cities, key=lambda c: c.population)
    housing = world.factor("housing_cost")
    effect = FactorChangeEffect(housing, 0.95, EffectApplication.LINEAR_TRANSITION, duration=10,
                                city_filter=lambda c: c.name == largest.name)
    return [SimulationEvent(f"Housing crisis in {largest.name}", StepTrigger(shock_step), effect)]


def main(argv=None):
    """Main simulation loop with progress tracking and periodic reporting."""
    global logger
    args = parse_args(argv)

    logger = setup_logger(level_name=args.log_level)

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    config = SimulationConfig(
        max_steps=args.steps,
        min_steps_before_stability_check=min(10, max(0, args.steps - 1)),
        use_parallel_processing=args.parallel,
        max_degree_of_parallelism=args.workers,
        seed=args.seed
    )
    try:
        config.validate()
    except ConfigurationError as e:
        console.print(f"[bold red]Invalid configuration: {e}[/bold red]")
        return 2

    console.print(f"[bold green]Generating world with {args.cities} cities...[/bold green]")
    world, rules = WorldGenerator(args.seed).generate(args.cities, args.groups_per_city)
    events = build_events(world, args.shock_step)

    collector = MetricsCollector()
    metrics_observer = MetricsObserver(collector, {c.name: c.capacity for c in world.cities})

    with SimulationLoop(world, config, observers=[metrics_observer],
                        feedback_rules=rules, events=events) as loop:
        event_stage = next((s for s in loop.pipeline if s.stage_id == "events"), None)
        recent_events = []

        try:
            with Live(console=console, refresh_per_second=4) as live:
                result = StepResult.CONTINUE
                while result == StepResult.CONTINUE:
                    result = loop.step()
                    stats = collector.current.to_dict() if collector.current else {}

                    if event_stage is not None:
                        recent_events = [f"Step {e['step']}: {e['event']}" for e in event_stage.event_log][-20:]

                    live.update(create_dashboard(loop.steps_completed, config.max_steps, stats, recent_events))
        except KeyboardInterrupt:
            console.print("[bold yellow]Interrupted, stopping simulation...[/bold yellow]")
            if not loop.is_finished:
                loop.cancel()

        outcome = loop.result
        if loop.steps_completed > 0:
            save_checkpoint(loop.checkpoint(), world, output_dir / "checkpoint.json")

    console.print(f"[bold blue]{outcome.reason.value} after {outcome.steps_completed} steps; "
                  f"{outcome.cumulative_population_change:,} people moved[/bold blue]")
    console.print(outcome.performance)

    # Save full simulation history
    history = [m.to_dict() for m in collector.history]
    history_file = output_dir / "simulation.json"
    with open(history_file, 'w') as f:
        json.dump(history, f, indent=2, cls=NumpyEncoder)
    console.print(f"[bold green]Simulation history saved to {history_file}[/bold green]")

    collector.export_csv(output_dir / "metrics.csv")

    console.print("[bold yellow]Generating final report...[/bold yellow]")
    if not args.no_viz and history:
        visualizer = Visualizer(config)
        visualizer.plot_timeline_analysis(history, output_dir / "timeline_analysis.png")
        visualizer.plot_city_populations(history, output_dir / "city_populations.png")

    reporter = ReportGenerator(config)
    report_path = reporter.generate_report(
        history, output_dir,
        events=event_stage.event_log if event_stage is not None else [],
        result=outcome
    )

    console.print(f"[bold green]Report generated at: {report_path}[/bold green]")
    console.print("[bold blue]Simulation complete![/bold blue]")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
