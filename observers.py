"""
Simulation observers. Observers receive immutable context snapshots; an
observer that raises is logged and skipped by the loop.
"""

from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from context import ContextSnapshot
from logger import get_logger


class SimulationObserver:
    """No-op base; override the hooks you need."""

    def on_simulation_start(self, snapshot: ContextSnapshot):
        pass

    def on_step_start(self, snapshot: ContextSnapshot):
        pass

    def on_stage_complete(self, stage_name: str, snapshot: ContextSnapshot):
        pass

    def on_step_complete(self, snapshot: ContextSnapshot):
        pass

    def on_simulation_end(self, snapshot: ContextSnapshot, reason: str):
        pass

    def on_error(self, snapshot: ContextSnapshot, error: BaseException):
        pass


class LoggingObserver(SimulationObserver):
    """Writes run progress to the simulation logger."""

    def __init__(self, every: int = 1):
        self.every = max(1, every)
        self.logger = get_logger()

    def on_simulation_start(self, snapshot: ContextSnapshot):
        self.logger.info(f"Simulation started: {len(snapshot.city_populations)} cities, "
                         f"population {snapshot.population:,}")

    def on_step_complete(self, snapshot: ContextSnapshot):
        if snapshot.step % self.every == 0:
            self.logger.info(f"Step {snapshot.step}: {snapshot.total_population_change:,} migrants "
                             f"in {len(snapshot.flows)} flow(s)")

    def on_simulation_end(self, snapshot: ContextSnapshot, reason: str):
        self.logger.info(f"Simulation ended ({reason}) after step {snapshot.step}; "
                         f"{snapshot.cumulative_population_change:,} total migrants")

    def on_error(self, snapshot: ContextSnapshot, error: BaseException):
        self.logger.error(f"Simulation error at step {snapshot.step}: {error}")


class ConsoleObserver(SimulationObserver):
    """Prints step summaries and the final city table with rich."""

    def __init__(self, console: Optional[Console] = None, every: int = 1, top_flows: int = 5):
        self.console = console or Console()
        self.every = max(1, every)
        self.top_flows = top_flows
        self.lines: List[str] = []

    def on_simulation_start(self, snapshot: ContextSnapshot):
        self.console.print(Panel(
            f"{len(snapshot.city_populations)} cities, population {snapshot.population:,}",
            title="Migration simulation", style="bold blue"
        ))

    def on_step_complete(self, snapshot: ContextSnapshot):
        if snapshot.step % self.every != 0:
            return
        line = (f"Step {snapshot.step:>4} | moved {snapshot.total_population_change:>8,} | "
                f"max city change {snapshot.max_city_population_change:>8,}")
        self.lines.append(line)
        self.console.print(line)

        moved = sorted((f for f in snapshot.flows if f.migrants > 0),
                       key=lambda f: f.migrants, reverse=True)
        for flow in moved[:self.top_flows]:
            self.console.print(f"    [dim]{flow.origin} -> {flow.destination}: {flow.migrants:,} "
                               f"(p={flow.probability:.3f})[/dim]")

    def on_simulation_end(self, snapshot: ContextSnapshot, reason: str):
        self.console.print(f"Simulation finished: {reason} at step {snapshot.step}", style="bold blue")
        table = Table(title="Final state")
        table.add_column("City", style="cyan")
        table.add_column("Population", style="green", justify="right")
        for name, population in sorted(snapshot.city_populations.items(),
                                       key=lambda item: item[1], reverse=True):
            table.add_row(name, f"{population:,}")
        self.console.print(table)

    def on_error(self, snapshot: ContextSnapshot, error: BaseException):
        self.console.print(f"[bold red]Error at step {snapshot.step}: {error}[/bold red]")

    def flush(self):
        self.console.file.flush()
