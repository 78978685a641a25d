"""FastAPI main application."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from pricemap.config import Config, config
from pricemap.jobs.metrics import MetricsRecorder
from pricemap.jobs.metrics_exporter import MetricsExporter
from pricemap.jobs.run_control import RunControl
from pricemap.jobs.runner import ScrapeRunError, ScrapeRunner
from pricemap.main import build_runner, build_store, close_sources
from pricemap.parse.heatmap import DEFAULT_GRID_SIZE, aggregate_to_heatmap
from pricemap.parse.models import HeatmapPoint
from pricemap.store.base import PropertyStore

logger = logging.getLogger(__name__)

app = FastAPI(title="PriceMap Scraper API", version="0.1.0")

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)


def verify_api_key(api_key: str = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    expected_key = config.API_KEY
    if expected_key:
        if not api_key or api_key != expected_key:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


class AppState:
    """Components shared by the endpoints."""

    def __init__(self):
        self.store: Optional[PropertyStore] = None
        self.metrics = MetricsRecorder()
        self.exporter = MetricsExporter()
        self.running_run_id: Optional[str] = None


state = AppState()


@app.on_event("startup")
async def startup():
    """Initialize on startup."""
    if state.store is None:
        state.store = build_store()
    await state.store.initialize()


@app.on_event("shutdown")
async def shutdown():
    if state.store is not None:
        await state.store.close()


class ScrapeRequest(BaseModel):
    """Request model for scraping."""

    sources: Optional[list[str]] = None
    mode: str = "concurrent"
    workers: int = 4
    timeout: Optional[float] = None


class ScrapeResponse(BaseModel):
    """Response model for scraping."""

    run_id: str
    status: str
    sources: list[str]


@app.get("/health")
async def health():
    """Health check endpoint (no auth required)."""
    return {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "store": config.STORE_BACKEND,
        "running_run_id": state.running_run_id,
    }


@app.get("/metrics")
async def get_metrics(limit: int = Query(100, ge=1, le=1000), _: bool = Depends(verify_api_key)):
    """Live metrics plus the last exported runs (requires API key if configured)."""
    return {
        "current": state.metrics.snapshot(),
        "runs": state.exporter.read_last(limit),
    }


@app.get("/metrics/{source}")
async def get_source_metrics(source: str, _: bool = Depends(verify_api_key)):
    stats = state.metrics.source_snapshot(source)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"No metrics for source {source}")
    return {"source": source, **stats.as_dict()}


@app.get("/heatmap", response_model=list[HeatmapPoint])
async def get_heatmap(
    lat_min: float = Query(..., ge=-90, le=90),
    lat_max: float = Query(..., ge=-90, le=90),
    lng_min: float = Query(..., ge=-180, le=180),
    lng_max: float = Query(..., ge=-180, le=180),
    grid_size: float = Query(DEFAULT_GRID_SIZE, gt=0),
    _: bool = Depends(verify_api_key),
):
    """Price heatmap of active listings inside a bounding box."""
    if lat_min > lat_max or lng_min > lng_max:
        raise HTTPException(status_code=400, detail="Invalid bounding box")

    records = await state.store.list_active(lat_min, lat_max, lng_min, lng_max)
    scores = await state.store.overall_scores([r.id for r in records if r.id is not None])
    return aggregate_to_heatmap(records, grid_size, scores)


@app.post("/scrape", response_model=ScrapeResponse, status_code=202)
async def start_scrape(
    request: ScrapeRequest,
    background_tasks: BackgroundTasks,
    _: bool = Depends(verify_api_key),
):
    """Start a scrape run in the background."""
    if state.running_run_id is not None:
        raise HTTPException(status_code=409, detail=f"Run {state.running_run_id} already in progress")
    if request.mode not in ("sequential", "concurrent"):
        raise HTTPException(status_code=400, detail="mode must be 'sequential' or 'concurrent'")
    if request.workers < 1:
        raise HTTPException(status_code=400, detail="workers must be at least 1")

    try:
        runner = build_runner(state.store, source_names=request.sources, metrics=state.metrics)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    runner.exporter = state.exporter
    state.running_run_id = runner.run_id
    background_tasks.add_task(_run_scrape, runner, request)

    return ScrapeResponse(
        run_id=runner.run_id,
        status="started",
        sources=[source.name for source in runner.sources],
    )


async def _run_scrape(runner: ScrapeRunner, request: ScrapeRequest):
    """Run a scrape (background task)."""
    control = RunControl(stop_after_seconds=request.timeout)
    try:
        if request.mode == "sequential":
            await runner.run_all(control)
        else:
            await runner.run_all_concurrent(request.workers, control)
    except ScrapeRunError as e:
        logger.error(f"Run {runner.run_id}: {e}")
    except Exception as e:
        logger.error(f"Run {runner.run_id} crashed: {e}", exc_info=True)
    finally:
        await runner.wait_for_enrichment()
        await close_sources(runner)
        state.running_run_id = None


if __name__ == "__main__":
    import uvicorn

    Config.validate()
    uvicorn.run(app, host="0.0.0.0", port=8000)
