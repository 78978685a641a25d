"""Aggregate listings into a price heatmap grid."""
from typing import Iterable, Mapping, Optional

from pricemap.parse.models import HeatmapPoint, PropertyRecord

DEFAULT_GRID_SIZE = 0.01  # ~1km


def round_to_grid(value: float, grid_size: float) -> float:
    """Truncate a coordinate towards zero onto the grid."""
    return int(value / grid_size) * grid_size


def grid_key(lat: float, lng: float) -> str:
    return f"{lat:.6f},{lng:.6f}"


def aggregate_to_heatmap(
    records: Iterable[PropertyRecord],
    grid_size: float = DEFAULT_GRID_SIZE,
    scores: Optional[Mapping[int, float]] = None,
) -> list[HeatmapPoint]:
    """
    Group records by rounded coordinates.
    Each point carries the mean price and the record count of its cell;
    `scores` maps property ids to overall scores (non-positive scores are ignored).
    """
    scores = scores or {}
    cells: dict[str, HeatmapPoint] = {}
    price_sums: dict[str, float] = {}
    scored: dict[str, int] = {}

    for record in records:
        lat = round_to_grid(record.latitude, grid_size)
        lng = round_to_grid(record.longitude, grid_size)
        key = grid_key(lat, lng)

        point = cells.get(key)
        if point is None:
            point = HeatmapPoint(lat=lat, lng=lng, price=0.0)
            cells[key] = point
            price_sums[key] = 0.0
            scored[key] = 0

        point.count += 1
        price_sums[key] += record.price

        score = scores.get(record.id, 0.0) if record.id is not None else 0.0
        if score > 0:
            scored[key] += 1
            point.score = (point.score * (scored[key] - 1) + score) / scored[key]

    for key, point in cells.items():
        point.price = price_sums[key] / point.count
    return list(cells.values())
