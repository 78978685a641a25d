"""Tests for heatmap aggregation."""
import pytest

from pricemap.parse.heatmap import aggregate_to_heatmap, round_to_grid
from tests.helpers import make_record


def test_round_to_grid_truncates():
    """Coordinates are truncated onto the grid."""
    assert round_to_grid(51.5074, 0.01) == pytest.approx(51.50)
    assert round_to_grid(-0.1278, 0.01) == pytest.approx(-0.12)


def test_two_cells():
    """Three prices at two cells give two points with per-cell means."""
    records = [
        make_record("1", price=100000, latitude=51.501, longitude=-0.121),
        make_record("2", price=150000, latitude=51.502, longitude=-0.122),
        make_record("3", price=120000, latitude=51.601, longitude=-0.221),
    ]
    points = aggregate_to_heatmap(records)

    assert len(points) == 2
    assert sum(p.count for p in points) == 3
    by_count = {p.count: p for p in points}
    assert by_count[2].price == pytest.approx(125000)
    assert by_count[1].price == pytest.approx(120000)


def test_scores_ignore_non_positive():
    """Only positive overall scores contribute to a cell's score."""
    records = [
        make_record("1", id=1, price=100000),
        make_record("2", id=2, price=100000),
        make_record("3", id=3, price=100000),
    ]
    points = aggregate_to_heatmap(records, scores={1: 80.0, 2: 60.0, 3: 0.0})

    assert len(points) == 1
    assert points[0].score == pytest.approx(70.0)
    assert points[0].count == 3


def test_empty():
    """No records, no points."""
    assert aggregate_to_heatmap([]) == []
