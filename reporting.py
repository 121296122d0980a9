from pathlib import Path
from typing import List, Dict, Any, Optional
from jinja2 import Template
from datetime import datetime


class ReportGenerator:
    """Generates HTML reports for simulation results."""

    def __init__(self, config):
        self.config = config
        self.template = self._get_template()

    def generate_report(self, history: List[Dict[str, Any]], output_dir: Path,
                        events: Optional[List[Dict[str, Any]]] = None,
                        result=None) -> Path:
        """Generate the HTML run report from the metrics history."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        final = history[-1] if history else {}
        initial = history[0] if history else {}

        # Per-city table: first recorded vs final population
        cities = []
        for name, population in sorted(final.get('city_populations', {}).items(),
                                       key=lambda item: item[1], reverse=True):
            start = initial.get('city_populations', {}).get(name, population)
            net = sum(h.get('city_net_migration', {}).get(name, 0) for h in history)
            cities.append({
                "name": name,
                "population": population,
                "change": population - start,
                "net_migration": net,
            })

        event_rows = [
            {"step": e["step"], "message": f"{e['event']} ({len(e.get('cities', []))} cities)"}
            for e in (events or [])
        ]

        images = [name for name in ("timeline_analysis.png", "city_populations.png")
                  if (output_dir / name).exists()]

        html_content = self.template.render(
            simulation_name="MigraSim Run",
            timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            steps=len(history),
            reason=result.reason.value if result is not None else "n/a",
            total_migrants=sum(h.get('migration_count', 0) for h in history),
            final_stats=final,
            cities=cities,
            events=event_rows,
            images=images,
            config=self.config
        )

        report_path = output_dir / "index.html"
        with open(report_path, "w") as f:
            f.write(html_content)

        return report_path

    def _get_template(self) -> Template:
        """Return Jinja2 template for the report."""
        return Template("""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{{ simulation_name }} - Report</title>
    <link href="https://cdn.jsdelivr.net/npm/bootstrap@5.3.0/dist/css/bootstrap.min.css" rel="stylesheet">
    <style>
        body { background-color: #f8f9fa; }
        .card { margin-bottom: 20px; box-shadow: 0 4px 6px rgba(0,0,0,0.1); }
        .event-log { max-height: 500px; overflow-y: auto; font-family: monospace; font-size: 0.9em; }
        .stat-card { text-align: center; padding: 20px; }
        .stat-value { font-size: 2em; font-weight: bold; color: #0d6efd; }
        .stat-label { color: #6c757d; text-transform: uppercase; font-size: 0.8em; }
        img { max-width: 100%; height: auto; border-radius: 5px; }
    </style>
</head>
<body>
    <nav class="navbar navbar-dark bg-dark">
        <div class="container-fluid">
            <span class="navbar-brand mb-0 h1">{{ simulation_name }}</span>
            <span class="navbar-text">{{ timestamp }}</span>
        </div>
    </nav>

    <div class="container mt-4">
        <div class="row mb-4">
            <div class="col-md-3">
                <div class="card stat-card">
                    <div class="stat-value">{{ steps }}</div>
                    <div class="stat-label">Steps ({{ reason }})</div>
                </div>
            </div>
            <div class="col-md-3">
                <div class="card stat-card">
                    <div class="stat-value">{{ "{:,}".format(final_stats.get('total_population', 0)) }}</div>
                    <div class="stat-label">Population</div>
                </div>
            </div>
            <div class="col-md-3">
                <div class="card stat-card">
                    <div class="stat-value">{{ "{:,}".format(total_migrants) }}</div>
                    <div class="stat-label">Total Migrants</div>
                </div>
            </div>
            <div class="col-md-3">
                <div class="card stat-card">
                    <div class="stat-value">{{ "%.3f"|format(final_stats.get('gini', 0)) }}</div>
                    <div class="stat-label">Final Gini</div>
                </div>
            </div>
        </div>

        <div class="row">
            <div class="col-md-8">
                {% for image in images %}
                <div class="card">
                    <div class="card-body text-center">
                        <img src="{{ image }}" alt="{{ image }}">
                    </div>
                </div>
                {% endfor %}

                <div class="card">
                    <div class="card-header fw-bold">Cities</div>
                    <div class="card-body">
                        <table class="table table-sm table-striped">
                            <thead>
                                <tr><th>City</th><th class="text-end">Population</th><th class="text-end">Change</th><th class="text-end">Net Migration</th></tr>
                            </thead>
                            <tbody>
                            {% for city in cities %}
                                <tr>
                                    <td>{{ city.name }}</td>
                                    <td class="text-end">{{ "{:,}".format(city.population) }}</td>
                                    <td class="text-end">{{ "{:+,}".format(city.change) }}</td>
                                    <td class="text-end">{{ "{:+,}".format(city.net_migration) }}</td>
                                </tr>
                            {% endfor %}
                            </tbody>
                        </table>
                    </div>
                </div>
            </div>

            <div class="col-md-4">
                <div class="card">
                    <div class="card-header fw-bold">Event Log</div>
                    <div class="card-body event-log">
                        {% for event in events|reverse %}
                        <div class="event-item border-bottom py-1">
                            <span class="badge bg-secondary">Step {{ event.step }}</span>
                            {{ event.message }}
                        </div>
                        {% else %}
                        <div class="text-muted">No events fired.</div>
                        {% endfor %}
                    </div>
                </div>

                <div class="card">
                    <div class="card-header fw-bold">Configuration</div>
                    <div class="card-body small">
                        <ul class="list-unstyled mb-0">
                            <li>Max steps: {{ config.max_steps }}</li>
                            <li>Sigmoid steepness (k): {{ config.sigmoid_steepness }}</li>
                            <li>Cost sensitivity (&lambda;): {{ config.cost_sensitivity }}</li>
                            <li>Smoothing (&alpha;): {{ config.factor_smoothing_alpha }}</li>
                            <li>Seed: {{ config.seed }}</li>
                        </ul>
                    </div>
                </div>
            </div>
        </div>
    </div>
</body>
</html>
        """)
