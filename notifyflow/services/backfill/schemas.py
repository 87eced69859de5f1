"""API request/response schemas for backfill endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class BackfillTarget(BaseModel):
    customer_id: str = Field(min_length=1)


class BackfillJobCreateRequest(BaseModel):
    """Snapshot of customers to run the tenant's post-sale sequence for."""

    tenant_id: str = Field(min_length=1)
    items: list[BackfillTarget]
    scheduled_for: datetime | None = None


class BackfillJobResponse(BaseModel):
    job_id: str
    tenant_id: str
    status: str
    total_customers: int
    processed_customers: int
    completed_at: datetime | None = None


class BackfillStats(BaseModel):
    """Counters returned by one `process_batch` call."""

    items_processed: int = 0
    notifications_created: int = 0
    items_skipped: int = 0
    jobs_completed: int = 0
    ledger_conflicts: int = 0
    errors: int = 0
