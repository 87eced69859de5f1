"""Live trigger dispatch: one business event -> scheduled notifications."""

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy import select

from notifyflow.common.config import settings
from notifyflow.common.events import EventEntity
from notifyflow.common.logging import logger
from notifyflow.common.metrics import (
    dispatch_errors_total,
    duplicate_notifications_skipped_total,
    ledger_conflicts_total,
    notifications_scheduled_total,
    rules_matched_total,
)
from notifyflow.common.tracing import engine_span
from notifyflow.services.notification.ledger import claim
from notifyflow.services.notification.writer import schedule_rule_channels, template_variables
from notifyflow.services.rules.filters import matches_filters, value_at_path
from notifyflow.services.rules.models import NotificationRule

LIVE_SOURCE = "live"


class DispatchResult(BaseModel):
    """Summary of one dispatch; failures are counted here, never raised."""

    event_type: str
    rules_evaluated: int = 0
    rules_matched: int = 0
    ledger_conflicts: int = 0
    notifications_created: int = 0
    duplicates_skipped: int = 0
    channels_skipped: int = 0
    errors: int = 0


def referenced_product_ids(entity: EventEntity, context: dict[str, Any]) -> set[str]:
    ids = set(entity.product_ids)
    ids.update(str(pid) for pid in context.get("product_ids") or [])
    for item in context.get("items") or []:
        if isinstance(item, dict) and item.get("product_id"):
            ids.add(str(item["product_id"]))
    return ids


def in_product_scope(rule: NotificationRule, product_ids: set[str]) -> bool:
    if rule.product_scope != "specific":
        return True
    return bool(product_ids.intersection(rule.product_ids or []))


def scoped_entity(dedupe_scope: str, entity: EventEntity, context: dict[str, Any]) -> tuple[str, str]:
    """Pick the (entity_type, entity_id) the ledger tracks for this scope.

    The event's own entity wins when its type matches the scope; otherwise
    `<scope>_id` or `<scope>.id` from the context; the event entity is the
    last resort.
    """

    if dedupe_scope == "none" or entity.type == dedupe_scope:
        return dedupe_scope, entity.id
    candidate = context.get(f"{dedupe_scope}_id") or value_at_path(context, f"{dedupe_scope}.id")
    if candidate:
        return dedupe_scope, str(candidate)
    return entity.type, entity.id


class TriggerDispatcher:
    """Matches enabled rules to an event and schedules their notifications."""

    def __init__(self, session_factory, service_name: str = "notification") -> None:
        self.session_factory = session_factory
        self.service_name = service_name

    def _matching_rules(self, tenant_id: str, event_type: str) -> list[NotificationRule]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(NotificationRule)
                    .where(
                        NotificationRule.tenant_id == tenant_id,
                        NotificationRule.trigger_event_type == event_type,
                        NotificationRule.is_enabled.is_(True),
                    )
                    .order_by(NotificationRule.priority.desc(), NotificationRule.id)
                )
                .scalars()
                .all()
            )

    def dispatch(
        self,
        tenant_id: str,
        event_type: str,
        entity: EventEntity,
        context: dict[str, Any] | None = None,
        event_id: str | None = None,
        now: datetime | None = None,
    ) -> DispatchResult:
        context = context or {}
        now = now or datetime.now(timezone.utc)
        result = DispatchResult(event_type=event_type)

        with engine_span("dispatch", tenant_id=tenant_id, event_type=event_type, entity_id=entity.id):
            try:
                rules = self._matching_rules(tenant_id, event_type)
                product_ids = referenced_product_ids(entity, context)
                variables = template_variables(context)
            except Exception as exc:
                logger.exception("rule lookup failed tenant_id=%s event_type=%s: %s", tenant_id, event_type, exc)
                result.errors += 1
                dispatch_errors_total.labels(service=self.service_name, source=LIVE_SOURCE).inc()
                return result

            for rule in rules:
                result.rules_evaluated += 1
                if not in_product_scope(rule, product_ids):
                    logger.info("rule %s skipped: no product in scope", rule.id)
                    continue
                if not matches_filters(context, rule.filters):
                    logger.info("rule %s skipped: filters did not match", rule.id)
                    continue
                result.rules_matched += 1
                rules_matched_total.labels(service=self.service_name, event_type=event_type).inc()
                self._schedule_rule(rule, entity, context, variables, event_id, now, result)

        logger.info(
            "dispatch done tenant_id=%s event_type=%s entity=%s:%s result=%s",
            tenant_id,
            event_type,
            entity.type,
            entity.id,
            result.model_dump(),
        )
        return result

    def _schedule_rule(
        self,
        rule: NotificationRule,
        entity: EventEntity,
        context: dict[str, Any],
        variables: dict[str, Any],
        event_id: str | None,
        now: datetime,
        result: DispatchResult,
    ) -> None:
        """Claim and schedule one rule in its own transaction."""

        entity_type, entity_id = scoped_entity(rule.dedupe_scope, entity, context)
        try:
            with self.session_factory() as db:
                claimed = claim(db, rule.tenant_id, rule.id, entity_type, entity_id)
                if not claimed.claimed:
                    result.ledger_conflicts += 1
                    ledger_conflicts_total.labels(service=self.service_name, source=LIVE_SOURCE).inc()
                    return

                scheduled_for = now + timedelta(seconds=rule.delay_seconds or 0)
                outcome = schedule_rule_channels(
                    db,
                    claimed,
                    rule,
                    entity_id=entity_id,
                    variables=variables,
                    scheduled_for=scheduled_for,
                    key_source=LIVE_SOURCE,
                    provenance={"source": LIVE_SOURCE},
                    max_attempts=settings.notification_max_attempts,
                    event_id=event_id,
                    customer_id=context.get("customer_id") or value_at_path(context, "customer.id"),
                )
                db.commit()
        except Exception as exc:
            logger.exception("dispatch failed rule_id=%s entity_id=%s: %s", rule.id, entity_id, exc)
            result.errors += 1
            dispatch_errors_total.labels(service=self.service_name, source=LIVE_SOURCE).inc()
            return

        result.notifications_created += outcome.created
        result.duplicates_skipped += outcome.duplicates
        result.channels_skipped += outcome.missing_recipient
        result.errors += outcome.errors
        for channel in outcome.created_channels:
            notifications_scheduled_total.labels(service=self.service_name, channel=channel, source=LIVE_SOURCE).inc()
        if outcome.errors:
            dispatch_errors_total.labels(service=self.service_name, source=LIVE_SOURCE).inc(outcome.errors)
        if outcome.duplicates:
            duplicate_notifications_skipped_total.labels(service=self.service_name, source=LIVE_SOURCE).inc(
                outcome.duplicates
            )
