"""
Per-step population metrics: city inflow/outflow, Gini coefficient,
Shannon entropy and coefficient of variation of the city size distribution.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from context import ContextSnapshot
from migration import MigrationFlow
from observers import SimulationObserver


def gini_coefficient(values: Iterable[float]) -> float:
    x = np.sort(np.asarray(list(values), dtype=float))
    n = x.size
    if n == 0 or x.sum() == 0:
        return 0.0
    ranks = np.arange(1, n + 1)
    return float(np.sum((2 * ranks - n - 1) * x) / (n * x.sum()))


def entropy(values: Iterable[float]) -> float:
    """Shannon entropy in bits."""
    x = np.asarray(list(values), dtype=float)
    total = x.sum()
    if x.size == 0 or total == 0:
        return 0.0
    p = x[x > 0] / total
    return float(-np.sum(p * np.log2(p)))


def coefficient_of_variation(values: Iterable[float]) -> float:
    x = np.asarray(list(values), dtype=float)
    if x.size == 0:
        return 0.0
    mean = x.mean()
    if mean == 0:
        return 0.0
    return float(x.std() / mean)


@dataclass(frozen=True)
class CityMetrics:
    city: str
    population: int
    capacity: Optional[int]
    incoming: int
    outgoing: int
    population_change: int

    @property
    def net_migration(self) -> int:
        return self.incoming - self.outgoing

    @property
    def utilization(self) -> Optional[float]:
        if not self.capacity:
            return None
        return self.population / self.capacity


@dataclass(frozen=True)
class StepMetrics:
    step: int
    timestamp: datetime
    total_population: int
    migration_count: int
    cities: List[CityMetrics]
    tag_populations: Mapping[str, int] = field(default_factory=dict)

    @property
    def migration_rate(self) -> float:
        return self.migration_count / self.total_population if self.total_population > 0 else 0.0

    @property
    def gini(self) -> float:
        return gini_coefficient(c.population for c in self.cities)

    @property
    def entropy(self) -> float:
        return entropy(c.population for c in self.cities)

    @property
    def coefficient_of_variation(self) -> float:
        return coefficient_of_variation(c.population for c in self.cities)

    def to_dict(self) -> Dict:
        return {
            "step": self.step,
            "timestamp": self.timestamp.isoformat(),
            "total_population": self.total_population,
            "migration_count": self.migration_count,
            "migration_rate": self.migration_rate,
            "gini": self.gini,
            "entropy": self.entropy,
            "cv": self.coefficient_of_variation,
            "city_populations": {c.city: c.population for c in self.cities},
            "city_net_migration": {c.city: c.net_migration for c in self.cities},
        }


class MetricsCollector:
    """Accumulates StepMetrics over a run."""

    COLUMNS = ["step", "timestamp", "total_population", "migration_count",
               "migration_rate", "gini", "entropy", "cv"]

    def __init__(self):
        self.history: List[StepMetrics] = []
        self._previous: Dict[str, int] = {}

    @property
    def current(self) -> Optional[StepMetrics]:
        return self.history[-1] if self.history else None

    def collect(self, step: int, city_populations: Mapping[str, int], flows: Iterable[MigrationFlow],
                capacities: Optional[Mapping[str, Optional[int]]] = None,
                tag_populations: Optional[Mapping[str, int]] = None) -> StepMetrics:
        capacities = capacities or {}
        incoming: Dict[str, int] = defaultdict(int)
        outgoing: Dict[str, int] = defaultdict(int)
        for flow in flows:
            incoming[flow.destination] += flow.migrants
            outgoing[flow.origin] += flow.migrants

        cities = []
        for name, population in city_populations.items():
            previous = self._previous.get(name, population)
            cities.append(CityMetrics(
                city=name,
                population=population,
                capacity=capacities.get(name),
                incoming=incoming[name],
                outgoing=outgoing[name],
                population_change=population - previous,
            ))
        self._previous = dict(city_populations)

        metrics = StepMetrics(
            step=step,
            timestamp=datetime.now(timezone.utc),
            total_population=sum(city_populations.values()),
            migration_count=sum(incoming.values()),
            cities=cities,
            tag_populations=dict(tag_populations or {}),
        )
        self.history.append(metrics)
        return metrics

    def collect_snapshot(self, snapshot: ContextSnapshot,
                         capacities: Optional[Mapping[str, Optional[int]]] = None) -> StepMetrics:
        return self.collect(snapshot.step, snapshot.city_populations, snapshot.flows, capacities)

    def clear(self):
        self.history.clear()
        self._previous.clear()

    @property
    def total_migrations(self) -> int:
        return sum(m.migration_count for m in self.history)

    @property
    def average_migration_rate(self) -> float:
        if not self.history:
            return 0.0
        return float(np.mean([m.migration_rate for m in self.history]))

    def to_frame(self) -> pd.DataFrame:
        rows = [{k: v for k, v in m.to_dict().items() if k in self.COLUMNS} for m in self.history]
        return pd.DataFrame(rows, columns=self.COLUMNS)

    def city_frame(self) -> pd.DataFrame:
        """One row per (step, city)."""
        rows = []
        for m in self.history:
            for c in m.cities:
                rows.append({
                    "step": m.step,
                    "city": c.city,
                    "population": c.population,
                    "incoming": c.incoming,
                    "outgoing": c.outgoing,
                    "net_migration": c.net_migration,
                    "population_change": c.population_change,
                    "utilization": c.utilization,
                })
        return pd.DataFrame(rows, columns=["step", "city", "population", "incoming", "outgoing",
                                           "net_migration", "population_change", "utilization"])

    def export_csv(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().to_csv(path, index=False, float_format="%.6f")
        return path


class MetricsObserver(SimulationObserver):
    """Feeds a MetricsCollector from step-complete notifications."""

    def __init__(self, collector: Optional[MetricsCollector] = None,
                 capacities: Optional[Mapping[str, Optional[int]]] = None):
        self.collector = collector or MetricsCollector()
        self.capacities = dict(capacities or {})

    def on_step_complete(self, snapshot: ContextSnapshot):
        self.collector.collect_snapshot(snapshot, self.capacities)
