"""Notification service lifecycle: event intake, inbox drain, rule admin, health/metrics."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, HTTPException

from notifyflow.common.config import settings
from notifyflow.common.db import SessionLocal
from notifyflow.common.events import CommerceEvent
from notifyflow.common.logging import configure_logging, log_context
from notifyflow.common.metrics import metrics_response
from notifyflow.common.startup import log_startup_config
from notifyflow.common.tracing import instrument_app, setup_tracing
from notifyflow.services.notification.service import NotificationService
from notifyflow.services.rules.schemas import RuleCreate, RuleUpdate
from notifyflow.services.rules.service import RuleNotFoundError, RuleService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["service_name", "postgres_dsn", "kafka_bootstrap_servers", "events_topic", "delivery_worker_url"],
)
service = NotificationService(SessionLocal)
rules = RuleService(SessionLocal)


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the event consumer with the application lifecycle."""

    consumer_task = asyncio.create_task(service.start_consumers())
    yield
    consumer_task.cancel()


app = FastAPI(title="Notifyflow Notification Service", lifespan=lifespan)
instrument_app(app)


@app.post("/events")
async def receive_event(event: CommerceEvent, x_api_key: str | None = Header(default=None)):
    """Dispatch one business event synchronously and return its summary."""

    enforce_api_key(x_api_key)
    with log_context(trace_id=event.trace_id, event_id=event.event_id, tenant_id=event.tenant_id):
        result = service.ingest(event)
    if result is None:
        return {"duplicate": True, "event_id": event.event_id}
    return {"duplicate": False, "event_id": event.event_id, "result": result.model_dump()}


@app.post("/events/process")
def process_pending(
    tenant_id: str,
    limit: int = 50,
    x_api_key: str | None = Header(default=None),
):
    """Drain events left in `new` for one tenant."""

    enforce_api_key(x_api_key)
    if limit < 1:
        raise HTTPException(status_code=400, detail="limit must be positive")
    return service.process_pending(tenant_id, limit=limit).model_dump()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


def _rule_view(rule) -> dict:
    return {
        "id": rule.id,
        "name": rule.name,
        "is_enabled": rule.is_enabled,
        "rule_type": rule.rule_type,
        "trigger_condition": rule.trigger_condition,
        "trigger_event_type": rule.trigger_event_type,
        "dedupe_scope": rule.dedupe_scope,
        "channels": rule.channels,
        "delay_seconds": rule.delay_seconds,
        "delay_unit": rule.delay_unit,
        "priority": rule.priority,
    }


@app.get("/tenants/{tenant_id}/rules")
def list_rules(tenant_id: str, rule_type: str | None = None, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return [_rule_view(rule) for rule in rules.list_rules(tenant_id, rule_type=rule_type)]


@app.post("/tenants/{tenant_id}/rules")
def create_rule(tenant_id: str, req: RuleCreate, x_api_key: str | None = Header(default=None)):
    """Create a rule; event type, dedupe scope and delay seconds are derived."""

    enforce_api_key(x_api_key)
    return _rule_view(rules.create_rule(tenant_id, req))


@app.patch("/tenants/{tenant_id}/rules/{rule_id}")
def update_rule(tenant_id: str, rule_id: str, req: RuleUpdate, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    try:
        return _rule_view(rules.update_rule(tenant_id, rule_id, req))
    except RuleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/tenants/{tenant_id}/rules/{rule_id}")
def delete_rule(tenant_id: str, rule_id: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    try:
        rules.delete_rule(tenant_id, rule_id)
    except RuleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"deleted": True}
