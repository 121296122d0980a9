"""
Versioned JSON persistence for worlds and simulation checkpoints.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

from city import City, FactorDefinition, PopulationUnit, UnitKind
from config import SimulationConfig
from errors import SnapshotVersionMismatch, StructuralValidationError
from geography import Coordinate
from world import World
from logger import get_logger

logger = get_logger()

SNAPSHOT_VERSION = "v1"


class NumpyEncoder(json.JSONEncoder):
    """Custom encoder for NumPy data types."""
    def default(self, obj):
        if isinstance(obj, (np.integer, np.floating, np.bool_)):
            return obj.item()
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, datetime):
            return obj.isoformat()
        return super(NumpyEncoder, self).default(obj)


def world_to_dict(world: World) -> Dict[str, Any]:
    return {
        "factors": [
            {
                "name": f.name,
                "direction": f.direction.name.lower(),
                "min_value": f.min_value,
                "max_value": f.max_value,
                "transform": f.transform.name.lower(),
            }
            for f in world.factors
        ],
        "cities": [
            {
                "name": c.name,
                "latitude": c.location.latitude,
                "longitude": c.location.longitude,
                "area": c.area,
                "capacity": c.capacity,
                "factors": {f.name: v for f, v in c.factors.items()},
                "units": [_unit_to_dict(u) for u in c.iter_units()],
            }
            for c in world.cities
        ],
    }


def _unit_to_dict(unit: PopulationUnit) -> Dict[str, Any]:
    return {
        "unit_id": unit.unit_id,
        "kind": unit.kind.name.lower(),
        "count": unit.count,
        "sensitivities": {f.name: v for f, v in unit.sensitivities.items()},
        "moving_willingness": unit.moving_willingness,
        "retention_rate": unit.retention_rate,
        "sensitivity_scaling": unit.sensitivity_scaling,
        "attraction_threshold": unit.attraction_threshold,
        "min_acceptable_attraction": unit.min_acceptable_attraction,
        "tags": sorted(unit.tags),
        "lineage": unit.lineage,
    }


def world_from_dict(data: Dict[str, Any]) -> World:
    """Rebuild a world; structural problems raise StructuralValidationError."""
    factors = [
        FactorDefinition(f["name"], f["direction"], f["min_value"], f["max_value"], f.get("transform", "linear"))
        for f in data.get("factors", [])
    ]
    by_name = {f.name: f for f in factors}

    def lookup(name: str, city_name: str) -> FactorDefinition:
        if name not in by_name:
            raise StructuralValidationError(f"Unknown factor '{name}' in city '{city_name}'", city_name=city_name)
        return by_name[name]

    cities = []
    for c in data.get("cities", []):
        city = City(c["name"], Coordinate(c["latitude"], c["longitude"]), c.get("area", 1.0), c.get("capacity"))
        for factor_name, intensity in c.get("factors", {}).items():
            city.set_factor_intensity(lookup(factor_name, city.name), intensity)
        for u in c.get("units", []):
            unit = PopulationUnit(
                u["unit_id"],
                UnitKind[u["kind"].upper()],
                {lookup(name, city.name): v for name, v in u["sensitivities"].items()},
                count=u["count"],
                moving_willingness=u["moving_willingness"],
                retention_rate=u["retention_rate"],
                sensitivity_scaling=u["sensitivity_scaling"],
                attraction_threshold=u["attraction_threshold"],
                min_acceptable_attraction=u["min_acceptable_attraction"],
                tags=u.get("tags"),
                lineage=u.get("lineage"),
            )
            city.add_population_unit(unit)
        cities.append(city)

    return World(factors, cities)


@dataclass
class LoadedSnapshot:
    version: str
    world: World
    step: Optional[int] = None
    created_at: Optional[datetime] = None
    config: Optional[SimulationConfig] = None
    context: Optional[Dict[str, Any]] = None


def save_world(world: World, path: Path) -> Path:
    return _write({"version": SNAPSHOT_VERSION, "world": world_to_dict(world)}, path)


def save_checkpoint(checkpoint, world: World, path: Path) -> Path:
    """Persist a SimulationCheckpoint together with the world it was taken from."""
    payload = {
        "version": SNAPSHOT_VERSION,
        "step": checkpoint.step,
        "created_at": checkpoint.created_at.isoformat(),
        "is_stabilized": checkpoint.is_stabilized,
        "performance": checkpoint.performance,
        "config": checkpoint.config.to_dict(),
        "context": checkpoint.context.to_dict(),
        "world": world_to_dict(world),
    }
    return _write(payload, path)


def _write(payload: Dict[str, Any], path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(payload, f, indent=2, cls=NumpyEncoder)
    logger.info(f"Snapshot written to {path}")
    return path


def load_snapshot(path: Path) -> LoadedSnapshot:
    with open(path) as f:
        data = json.load(f)

    version = data.get("version")
    if version != SNAPSHOT_VERSION:
        raise SnapshotVersionMismatch(SNAPSHOT_VERSION, version)

    created_at = data.get("created_at")
    config = data.get("config")
    return LoadedSnapshot(
        version=version,
        world=world_from_dict(data["world"]),
        step=data.get("step"),
        created_at=datetime.fromisoformat(created_at) if created_at else None,
        config=SimulationConfig(**config) if config else None,
        context=data.get("context"),
    )
