"""Tests for the HTTP API."""
import asyncio

import pytest
from fastapi.testclient import TestClient

from pricemap.api import main as api_main
from pricemap.config import config
from pricemap.jobs.metrics import MetricsRecorder
from pricemap.jobs.metrics_exporter import MetricsExporter
from pricemap.parse.models import FactorSet
from pricemap.store.sqlite_store import SQLitePropertyStore
from tests.helpers import make_record


@pytest.fixture
def store(db_path):
    store = SQLitePropertyStore(db_path)
    asyncio.run(store.initialize())
    return store


@pytest.fixture
def client(store, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "API_KEY", None)
    monkeypatch.setattr(api_main.state, "store", store)
    monkeypatch.setattr(api_main.state, "metrics", MetricsRecorder())
    monkeypatch.setattr(api_main.state, "exporter", MetricsExporter(tmp_path / "metrics.jsonl"))
    monkeypatch.setattr(api_main.state, "running_run_id", None)
    with TestClient(api_main.app) as client:
        yield client


def test_health(client):
    """Health needs no key."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics(client):
    """Live metrics per source."""
    api_main.state.metrics.record_run("rightmove", parsed=4, saved=3, errors=1, duration=2.0)

    body = client.get("/metrics").json()
    assert body["current"]["total_saved"] == 3
    assert body["runs"] == []

    source = client.get("/metrics/rightmove").json()
    assert source["parsed"] == 4
    assert source["run_count"] == 1


def test_unknown_source_metrics(client):
    """Sources that never ran are 404."""
    assert client.get("/metrics/nope").status_code == 404


def test_api_key_required(client, monkeypatch):
    """A configured key is enforced on protected endpoints."""
    monkeypatch.setattr(config, "API_KEY", "secret")
    assert client.get("/metrics").status_code == 403
    assert client.get("/metrics", headers={"X-API-KEY": "secret"}).status_code == 200
    assert client.get("/health").status_code == 200


def test_heatmap(client, store):
    """Active listings in the box aggregate into grid points."""
    records = [
        make_record("1", price=100000, latitude=51.501, longitude=-0.121),
        make_record("2", price=150000, latitude=51.502, longitude=-0.122),
        make_record("3", price=120000, latitude=51.601, longitude=-0.221),
    ]
    asyncio.run(store.upsert_batch(records))
    asyncio.run(store.save_factors(FactorSet(property_id=records[2].id, overall_score=40.0)))

    response = client.get(
        "/heatmap", params={"lat_min": 51, "lat_max": 52, "lng_min": -1, "lng_max": 0}
    )
    assert response.status_code == 200
    points = sorted(response.json(), key=lambda p: p["count"])
    assert [p["count"] for p in points] == [1, 2]
    assert points[0]["score"] == 40.0
    assert points[1]["price"] == pytest.approx(125000)


def test_heatmap_invalid_box(client):
    """Inverted bounds are rejected."""
    response = client.get(
        "/heatmap", params={"lat_min": 52, "lat_max": 51, "lng_min": -1, "lng_max": 0}
    )
    assert response.status_code == 400


def test_scrape_unknown_source(client):
    """Unknown source names are a bad request."""
    response = client.post("/scrape", json={"sources": ["unknown_site"]})
    assert response.status_code == 400
    assert api_main.state.running_run_id is None


def test_scrape_rejects_bad_mode(client):
    """Only sequential and concurrent modes exist."""
    response = client.post("/scrape", json={"mode": "parallel"})
    assert response.status_code == 400
