"""Event inbox handling in front of the trigger dispatcher."""

from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy import select, update

from notifyflow.common.config import settings
from notifyflow.common.events import CommerceEvent, EventEntity, consume_forever
from notifyflow.common.logging import logger
from notifyflow.common.metrics import duplicate_events_skipped_total, events_received_total
from notifyflow.common.storage import insert_or_skip
from notifyflow.common.tasks import fire_and_forget, wake_delivery_worker
from notifyflow.services.notification.dispatcher import DispatchResult, TriggerDispatcher
from notifyflow.services.notification.models import EventInbox


class InboxStats(BaseModel):
    events_fetched: int = 0
    events_processed: int = 0
    events_ignored: int = 0
    notifications_created: int = 0
    ledger_conflicts: int = 0
    errors: int = 0


class NotificationService:
    """Records inbound events once and dispatches them to matching rules."""

    def __init__(self, session_factory, service_name: str = "notification") -> None:
        self.session_factory = session_factory
        self.service_name = service_name
        self.dispatcher = TriggerDispatcher(session_factory, service_name=service_name)

    def _record_inbox(self, event: CommerceEvent) -> bool:
        with self.session_factory() as db:
            inserted = insert_or_skip(
                db,
                EventInbox,
                {
                    "id": event.event_id,
                    "tenant_id": event.tenant_id,
                    "event_type": event.event_type,
                    "entity_type": event.entity.type,
                    "entity_id": event.entity.id,
                    "payload": {"entity": event.entity.model_dump(), "context": event.context},
                    "status": "new",
                },
                conflict_columns=["id"],
            )
            db.commit()
        return inserted is not None

    def _finish_inbox(self, event_id: str, result: DispatchResult) -> str | None:
        """Close the inbox row; a dispatch with errors stays `new` for `process_pending`."""

        if result.errors:
            logger.warning("inbox row kept for retry event_id=%s errors=%s", event_id, result.errors)
            return None
        status = "processed" if result.rules_matched else "ignored"
        with self.session_factory() as db:
            db.execute(
                update(EventInbox)
                .where(EventInbox.id == event_id, EventInbox.status == "new")
                .values(status=status, processed_at=datetime.now(timezone.utc))
            )
            db.commit()
        return status

    def ingest(self, event: CommerceEvent) -> DispatchResult | None:
        """Dispatch one event; returns `None` when the event id was already seen."""

        if not self._record_inbox(event):
            logger.info("duplicate event skipped event_type=%s event_id=%s", event.event_type, event.event_id)
            duplicate_events_skipped_total.labels(service=self.service_name, event_type=event.event_type).inc()
            return None
        events_received_total.labels(service=self.service_name, event_type=event.event_type).inc()

        result = self.dispatcher.dispatch(
            event.tenant_id,
            event.event_type,
            event.entity,
            event.context,
            event_id=event.event_id,
        )
        self._finish_inbox(event.event_id, result)
        if result.notifications_created:
            fire_and_forget(
                wake_delivery_worker(event.tenant_id, result.notifications_created),
                name="wake_delivery_worker",
            )
        return result

    def process_pending(self, tenant_id: str, limit: int = 50) -> InboxStats:
        """Drain `new` inbox rows oldest-first, e.g. after a crash mid-dispatch."""

        stats = InboxStats()
        with self.session_factory() as db:
            rows = list(
                db.execute(
                    select(EventInbox)
                    .where(EventInbox.tenant_id == tenant_id, EventInbox.status == "new")
                    .order_by(EventInbox.received_at, EventInbox.id)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
        stats.events_fetched = len(rows)

        for row in rows:
            payload = row.payload or {}
            entity = EventEntity(**(payload.get("entity") or {"id": row.entity_id, "type": row.entity_type}))
            result = self.dispatcher.dispatch(
                row.tenant_id, row.event_type, entity, payload.get("context") or {}, event_id=row.id
            )
            status = self._finish_inbox(row.id, result)
            if status == "processed":
                stats.events_processed += 1
            elif status == "ignored":
                stats.events_ignored += 1
            stats.notifications_created += result.notifications_created
            stats.ledger_conflicts += result.ledger_conflicts
            stats.errors += result.errors

        logger.info("inbox drained tenant_id=%s stats=%s", tenant_id, stats.model_dump())
        return stats

    async def handle_event(self, event: CommerceEvent) -> None:
        self.ingest(event)

    async def start_consumers(self) -> None:
        """Consume business events from Kafka for the lifetime of the app."""

        await consume_forever(settings.events_topic, settings.events_consumer_group, self.handle_event)
