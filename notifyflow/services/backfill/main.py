"""Backfill service API + batch loop lifecycle."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, HTTPException

from notifyflow.common.config import settings
from notifyflow.common.db import SessionLocal
from notifyflow.common.logging import configure_logging
from notifyflow.common.metrics import metrics_response
from notifyflow.common.startup import log_startup_config
from notifyflow.common.tracing import instrument_app, setup_tracing
from notifyflow.services.backfill.models import BackfillJob
from notifyflow.services.backfill.schemas import BackfillJobCreateRequest, BackfillJobResponse
from notifyflow.services.backfill.service import BackfillProcessor

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "service_name",
        "postgres_dsn",
        "backfill_batch_size",
        "backfill_poll_interval_seconds",
        "backfill_retry_delay_seconds",
    ],
)
processor = BackfillProcessor(SessionLocal)


def enforce_api_key(x_api_key: str | None) -> None:
    """Simple API-key gate for admin endpoints."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def _job_response(job: BackfillJob) -> BackfillJobResponse:
    return BackfillJobResponse(
        job_id=job.id,
        tenant_id=job.tenant_id,
        status=job.status,
        total_customers=job.total_customers,
        processed_customers=job.processed_customers,
        completed_at=job.completed_at,
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the periodic batch loop with the application lifecycle."""

    loop_task = asyncio.create_task(processor.run_forever())
    yield
    loop_task.cancel()


app = FastAPI(title="Notifyflow Backfill Service", lifespan=lifespan)
instrument_app(app)


@app.post("/backfill/jobs", response_model=BackfillJobResponse)
def create_job(req: BackfillJobCreateRequest, x_api_key: str | None = Header(default=None)):
    """Snapshot a customer list into a pending backfill job."""

    enforce_api_key(x_api_key)
    job = processor.create_job(
        req.tenant_id,
        [target.customer_id for target in req.items],
        scheduled_for=req.scheduled_for,
    )
    return _job_response(job)


@app.get("/backfill/jobs/{job_id}", response_model=BackfillJobResponse)
def get_job(job_id: str):
    """Fetch progress for one job."""

    job = processor.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="backfill job not found")
    return _job_response(job)


@app.post("/backfill/process")
def process_batch(limit: int | None = None, x_api_key: str | None = Header(default=None)):
    """Run one batch now instead of waiting for the next timer tick."""

    enforce_api_key(x_api_key)
    if limit is not None and limit < 1:
        raise HTTPException(status_code=400, detail="limit must be positive")
    return {"success": True, "stats": processor.process_batch(limit).model_dump()}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
