"""Post-sale backfill: drains due job items through the ledger/notification path.

`process_batch` is meant to be called repeatedly (timer loop or HTTP
trigger). Each call is self-contained: item completion is guarded by
`status = 'pending'` and every notification passes the dedup ledger, so
overlapping runs cannot double-schedule.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, update

from notifyflow.common.config import settings
from notifyflow.common.delay import to_seconds
from notifyflow.common.logging import log_context, logger
from notifyflow.common.metrics import (
    backfill_batch_seconds,
    backfill_items_total,
    backfill_jobs_completed_total,
    ledger_conflicts_total,
    notifications_scheduled_total,
)
from notifyflow.common.tracing import engine_span
from notifyflow.services.backfill.models import BackfillItem, BackfillJob, Customer
from notifyflow.services.backfill.schemas import BackfillStats
from notifyflow.services.notification.ledger import claim
from notifyflow.services.notification.writer import schedule_rule_channels, template_variables
from notifyflow.services.rules.compiler import RuleType
from notifyflow.services.rules.models import NotificationRule

BACKFILL_SOURCE = "post_sale_backfill"
BACKFILL_KEY_SOURCE = "backfill"


def customer_variables(customer: Customer) -> dict:
    first_order = customer.first_order_at.strftime("%d/%m/%Y") if customer.first_order_at else ""
    return template_variables(
        {
            "customer": {
                "id": customer.id,
                "full_name": customer.full_name,
                "email": customer.email,
                "phone": customer.phone,
            },
            "first_order_date": first_order,
        }
    )


class BackfillProcessor:
    """Creates backfill jobs and processes their due items in batches."""

    def __init__(self, session_factory, service_name: str = "backfill") -> None:
        self.session_factory = session_factory
        self.service_name = service_name

    def create_job(
        self,
        tenant_id: str,
        customer_ids: list[str],
        scheduled_for: datetime | None = None,
    ) -> BackfillJob:
        """Snapshot `customer_ids` into one job with one pending item each."""

        scheduled_for = scheduled_for or datetime.now(timezone.utc)
        unique_ids = list(dict.fromkeys(customer_ids))
        with self.session_factory() as db:
            job = BackfillJob(tenant_id=tenant_id, status="pending", total_customers=len(unique_ids))
            if not unique_ids:
                job.status = "completed"
                job.completed_at = datetime.now(timezone.utc)
            db.add(job)
            db.flush()
            db.add_all(
                BackfillItem(
                    job_id=job.id,
                    tenant_id=tenant_id,
                    customer_id=customer_id,
                    status="pending",
                    scheduled_for=scheduled_for,
                )
                for customer_id in unique_ids
            )
            db.commit()
            logger.info("backfill job created job_id=%s tenant_id=%s items=%s", job.id, tenant_id, len(unique_ids))
            return job

    def get_job(self, job_id: str) -> BackfillJob | None:
        with self.session_factory() as db:
            return db.get(BackfillJob, job_id)

    def _due_items(self, limit: int, now: datetime) -> list[BackfillItem]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(BackfillItem)
                    .where(BackfillItem.status == "pending", BackfillItem.scheduled_for <= now)
                    .order_by(BackfillItem.scheduled_for, BackfillItem.id)
                    .limit(limit)
                )
                .scalars()
                .all()
            )

    def _post_sale_rules(self, tenant_ids: set[str]) -> dict[str, list[NotificationRule]]:
        """Enabled post-sale rules per tenant, shortest delay first."""

        with self.session_factory() as db:
            rules = db.execute(
                select(NotificationRule)
                .where(
                    NotificationRule.tenant_id.in_(sorted(tenant_ids)),
                    NotificationRule.rule_type == RuleType.POST_SALE.value,
                    NotificationRule.is_enabled.is_(True),
                )
                .order_by(NotificationRule.delay_seconds, NotificationRule.priority.desc(), NotificationRule.id)
            ).scalars().all()
        by_tenant: dict[str, list[NotificationRule]] = {}
        for rule in rules:
            by_tenant.setdefault(rule.tenant_id, []).append(rule)
        return by_tenant

    def _customers(self, items: list[BackfillItem]) -> dict[tuple[str, str], Customer]:
        with self.session_factory() as db:
            rows = db.execute(
                select(Customer).where(Customer.id.in_(sorted({item.customer_id for item in items})))
            ).scalars().all()
        return {(row.tenant_id, row.id): row for row in rows}

    def _mark_skipped(self, item: BackfillItem, now: datetime, reason: str) -> bool:
        with self.session_factory() as db:
            marked = db.execute(
                update(BackfillItem)
                .where(BackfillItem.id == item.id, BackfillItem.status == "pending")
                .values(status="skipped", processed_at=now, error_message=reason)
            ).rowcount
            db.commit()
        logger.info("backfill item skipped item_id=%s reason=%s", item.id, reason)
        return marked == 1

    def _defer_failed(self, item: BackfillItem, now: datetime, error: Exception) -> None:
        """Move a failed item behind other due work and record why it failed."""

        retry_at = now + timedelta(seconds=settings.backfill_retry_delay_seconds)
        try:
            with self.session_factory() as db:
                db.execute(
                    update(BackfillItem)
                    .where(BackfillItem.id == item.id, BackfillItem.status == "pending")
                    .values(scheduled_for=retry_at, error_message=str(error)[:500])
                )
                db.commit()
        except Exception as exc:
            logger.exception("backfill item deferral failed item_id=%s: %s", item.id, exc)

    def _process_item(
        self,
        item: BackfillItem,
        customer: Customer,
        rules: list[NotificationRule],
        now: datetime,
        stats: BackfillStats,
    ) -> bool:
        """Schedule the whole rule sequence for one customer in one transaction."""

        # Stored delays are already seconds; the sequence is re-anchored at `now`.
        base_delay = to_seconds(rules[0].delay_seconds, "seconds")
        variables = customer_variables(customer)
        created: list[str] = []
        conflicts = 0
        errors = 0

        with self.session_factory() as db:
            for rule in rules:
                claimed = claim(
                    db,
                    item.tenant_id,
                    rule.id,
                    "customer",
                    customer.id,
                    scope_key=f"backfill_{item.job_id}",
                )
                if not claimed.claimed:
                    conflicts += 1
                    continue
                relative_delay = max(0, to_seconds(rule.delay_seconds, "seconds") - base_delay)
                outcome = schedule_rule_channels(
                    db,
                    claimed,
                    rule,
                    entity_id=customer.id,
                    variables=variables,
                    scheduled_for=now + timedelta(seconds=relative_delay),
                    key_source=BACKFILL_KEY_SOURCE,
                    provenance={"source": BACKFILL_SOURCE, "job_id": item.job_id},
                    max_attempts=settings.notification_max_attempts,
                    customer_id=customer.id,
                )
                created.extend(outcome.created_channels)
                errors += outcome.errors

            marked = db.execute(
                update(BackfillItem)
                .where(BackfillItem.id == item.id, BackfillItem.status == "pending")
                .values(status="completed", processed_at=now, error_message=None)
            ).rowcount
            if marked != 1:
                # Another run finished this item first; drop our claims with it.
                db.rollback()
                logger.info("backfill item already handled item_id=%s", item.id)
                return False
            db.execute(
                update(BackfillJob)
                .where(BackfillJob.id == item.job_id)
                .values(processed_customers=BackfillJob.processed_customers + 1)
            )
            db.commit()

        stats.items_processed += 1
        stats.notifications_created += len(created)
        stats.ledger_conflicts += conflicts
        stats.errors += errors
        for channel in created:
            notifications_scheduled_total.labels(
                service=self.service_name, channel=channel, source=BACKFILL_SOURCE
            ).inc()
        if conflicts:
            ledger_conflicts_total.labels(service=self.service_name, source=BACKFILL_SOURCE).inc(conflicts)
        return True

    def _complete_if_drained(self, job_id: str, now: datetime) -> bool:
        with self.session_factory() as db:
            remaining = db.execute(
                select(func.count())
                .select_from(BackfillItem)
                .where(BackfillItem.job_id == job_id, BackfillItem.status == "pending")
            ).scalar_one()
            if remaining:
                return False
            completed = db.execute(
                update(BackfillJob)
                .where(BackfillJob.id == job_id, BackfillJob.status == "pending")
                .values(status="completed", completed_at=now, processed_customers=BackfillJob.total_customers)
            ).rowcount
            db.commit()
        if completed:
            logger.info("backfill job completed job_id=%s", job_id)
        return completed == 1

    def process_batch(self, limit: int | None = None, now: datetime | None = None) -> BackfillStats:
        """Process up to `limit` due items, earliest `scheduled_for` first."""

        limit = limit or settings.backfill_batch_size
        now = now or datetime.now(timezone.utc)
        stats = BackfillStats()

        with backfill_batch_seconds.labels(service=self.service_name).time(), engine_span(
            "backfill.process_batch", limit=limit
        ):
            items = self._due_items(limit, now)
            if not items:
                logger.info("no due backfill items")
                return stats

            rules_by_tenant = self._post_sale_rules({item.tenant_id for item in items})
            customers = self._customers(items)

            for item in items:
                with log_context(tenant_id=item.tenant_id):
                    try:
                        customer = customers.get((item.tenant_id, item.customer_id))
                        rules = rules_by_tenant.get(item.tenant_id, [])
                        if customer is None or not rules:
                            reason = "Customer not found" if customer is None else "No post_sale rules"
                            if self._mark_skipped(item, now, reason):
                                stats.items_skipped += 1
                                backfill_items_total.labels(service=self.service_name, outcome="skipped").inc()
                            continue
                        if self._process_item(item, customer, rules, now, stats):
                            backfill_items_total.labels(service=self.service_name, outcome="completed").inc()
                    except Exception as exc:
                        # Rolled back; the item stays pending and is retried later.
                        logger.exception("backfill item failed item_id=%s: %s", item.id, exc)
                        stats.errors += 1
                        backfill_items_total.labels(service=self.service_name, outcome="error").inc()
                        self._defer_failed(item, now, exc)

            for job_id in dict.fromkeys(item.job_id for item in items):
                if self._complete_if_drained(job_id, now):
                    stats.jobs_completed += 1
                    backfill_jobs_completed_total.labels(service=self.service_name).inc()

        logger.info("backfill batch done stats=%s", stats.model_dump())
        return stats

    async def run_forever(self) -> None:
        """Timer loop: one batch per tick, immediately again while batches are full."""

        while True:
            try:
                stats = self.process_batch()
                handled = stats.items_processed + stats.items_skipped
            except Exception as exc:
                logger.exception("backfill batch failed: %s", exc)
                handled = 0
            if handled < settings.backfill_batch_size:
                await asyncio.sleep(settings.backfill_poll_interval_seconds)
            else:
                await asyncio.sleep(0)
