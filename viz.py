"""
Visualization module for migration runs.
Generates matplotlib charts from the per-step metrics history.
"""

from typing import Dict, List
import matplotlib.pyplot as plt
import numpy as np
from pathlib import Path

from config import SimulationConfig


class Visualizer:
    """Handles all visualization and plotting."""

    def __init__(self, config: SimulationConfig, max_cities: int = 10):
        self.config = config
        self.max_cities = max_cities
        self.color_map: Dict[str, tuple] = {}

    def _color(self, city: str):
        """Stable color per city."""
        if city not in self.color_map:
            self.color_map[city] = plt.cm.tab10(len(self.color_map) % 10)
        return self.color_map[city]

    def plot_timeline_analysis(self, history: List[dict], output_path: Path):
        """Generate timeline analysis plots."""
        steps = [h['step'] for h in history]

        fig, axes = plt.subplots(2, 2, figsize=(16, 12))
        fig.suptitle('Migration Timeline Analysis', fontsize=16, fontweight='bold')

        # Migrants per step
        migrants = [h['migration_count'] for h in history]
        axes[0, 0].plot(steps, migrants, linewidth=2, color='green')
        axes[0, 0].set_title('Migrants per Step')
        axes[0, 0].set_xlabel('Step')
        axes[0, 0].set_ylabel('People')
        axes[0, 0].grid(True, alpha=0.3)

        # Migration rate
        rates = [h['migration_rate'] * 100 for h in history]
        axes[0, 1].plot(steps, rates, linewidth=2, color='blue')
        axes[0, 1].set_title('Migration Rate')
        axes[0, 1].set_xlabel('Step')
        axes[0, 1].set_ylabel('% of Population')
        axes[0, 1].grid(True, alpha=0.3)

        # Concentration
        gini = [h['gini'] for h in history]
        axes[1, 0].plot(steps, gini, linewidth=2, color='red')
        axes[1, 0].set_title('Population Gini Coefficient')
        axes[1, 0].set_xlabel('Step')
        axes[1, 0].set_ylabel('Gini')
        axes[1, 0].set_ylim(0, 1)
        axes[1, 0].grid(True, alpha=0.3)

        # Dispersion
        entropy = [h['entropy'] for h in history]
        cv = [h['cv'] for h in history]
        axes[1, 1].plot(steps, entropy, linewidth=2, color='orange', label='Entropy (bits)')
        axes[1, 1].plot(steps, cv, linewidth=2, color='purple', linestyle='--', label='Coefficient of Variation')
        if history:
            n_cities = len(history[-1].get('city_populations', {}))
            if n_cities > 1:
                axes[1, 1].axhline(y=np.log2(n_cities), color='r', linestyle=':', alpha=0.5,
                                   label='Uniform Entropy')
        axes[1, 1].set_title('Distribution of City Sizes')
        axes[1, 1].set_xlabel('Step')
        axes[1, 1].grid(True, alpha=0.3)
        axes[1, 1].legend()

        plt.tight_layout()
        plt.savefig(output_path, dpi=150, bbox_inches='tight')
        plt.close(fig)

    def plot_city_populations(self, history: List[dict], output_path: Path):
        """Population of the largest cities over time, with final net migration."""
        fig, axes = plt.subplots(1, 2, figsize=(18, 7))
        fig.suptitle('City Populations', fontsize=16, fontweight='bold')

        if not history:
            for ax in axes:
                ax.text(0.5, 0.5, 'No steps recorded', ha='center', va='center')
            plt.savefig(output_path, dpi=100, bbox_inches='tight')
            plt.close(fig)
            return

        steps = [h['step'] for h in history]
        final = history[-1]['city_populations']
        largest = sorted(final, key=final.get, reverse=True)[:self.max_cities]

        for city in largest:
            series = [h['city_populations'].get(city, 0) for h in history]
            axes[0].plot(steps, series, linewidth=2, color=self._color(city), label=city)
        axes[0].set_xlabel('Step')
        axes[0].set_ylabel('Population')
        axes[0].grid(True, alpha=0.3)
        axes[0].legend(loc='upper right', fontsize=8)

        # Net migration summed over the run
        totals = {city: sum(h['city_net_migration'].get(city, 0) for h in history) for city in largest}
        names = list(totals)
        values = [totals[c] for c in names]
        colors = ['#2ca02c' if v >= 0 else '#d62728' for v in values]
        axes[1].barh(names, values, color=colors)
        axes[1].axvline(x=0, color='black', linewidth=0.8)
        axes[1].set_xlabel('Net Migration')
        axes[1].set_title('Cumulative Net Migration', fontweight='bold')
        axes[1].invert_yaxis()

        plt.tight_layout()
        plt.savefig(output_path, dpi=150, bbox_inches='tight')
        plt.close(fig)
