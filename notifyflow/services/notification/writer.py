"""Turns one claimed (rule, entity) into per-channel notification rows."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from notifyflow.common.dedupe import dedupe_key
from notifyflow.common.logging import logger
from notifyflow.common.storage import insert_or_skip
from notifyflow.common.templating import preview, render
from notifyflow.services.notification.ledger import ClaimResult
from notifyflow.services.notification.models import Notification, NotificationLog
from notifyflow.services.rules.models import NotificationRule


_RECIPIENT_FIELDS = {
    "email": ("customer_email", "email"),
    "whatsapp": ("customer_phone", "phone"),
}


@dataclass
class ChannelOutcome:
    """Counters from scheduling one rule across its channels."""

    created_channels: list[str] = field(default_factory=list)
    duplicates: int = 0
    missing_recipient: int = 0
    errors: int = 0

    @property
    def created(self) -> int:
        return len(self.created_channels)


def template_variables(context: dict[str, Any]) -> dict[str, Any]:
    """Flatten an event context into `{{placeholder}}` variables.

    Top-level scalars pass through; a nested `customer` object becomes
    `customer_<field>` plus `customer_first_name`.
    """

    variables = {k: v for k, v in context.items() if not isinstance(v, (dict, list))}
    customer = context.get("customer")
    if isinstance(customer, dict):
        for key, value in customer.items():
            if not isinstance(value, (dict, list)):
                variables.setdefault(f"customer_{key}", value)
        if "full_name" in customer:
            variables.setdefault("customer_name", customer["full_name"])
    name = variables.get("customer_name")
    if isinstance(name, str) and name.strip():
        variables.setdefault("customer_first_name", name.split()[0])
    return variables


def resolve_recipient(channel: str, variables: dict[str, Any]) -> str | None:
    for field in _RECIPIENT_FIELDS.get(channel, ()):
        value = variables.get(field)
        if value:
            return str(value)
    return None


def render_content(rule: NotificationRule, variables: dict[str, Any]) -> dict[str, str]:
    return {
        "whatsapp_message": render(rule.whatsapp_message, variables),
        "email_subject": render(rule.email_subject, variables),
        "email_body": render(rule.email_body, variables),
    }


def schedule_rule_channels(
    db,
    claim: ClaimResult,
    rule: NotificationRule,
    *,
    entity_id: str,
    variables: dict[str, Any],
    scheduled_for: datetime,
    key_source: str,
    provenance: dict[str, Any],
    max_attempts: int,
    event_id: str | None = None,
    customer_id: str | None = None,
) -> ChannelOutcome:
    """Insert one Notification + NotificationLog per channel of `rule`.

    Requires a successful ledger claim. A missing recipient skips only that
    channel; a render failure is counted and the remaining channels go on.
    """

    if not claim.claimed:
        raise ValueError("notifications require a successful ledger claim")

    outcome = ChannelOutcome()
    for channel in rule.channels or []:
        recipient = resolve_recipient(channel, variables)
        if not recipient:
            logger.info("no recipient rule_id=%s channel=%s entity_id=%s", rule.id, channel, entity_id)
            outcome.missing_recipient += 1
            continue
        try:
            rendered = render_content(rule, variables)
        except Exception as exc:
            logger.warning("render failed rule_id=%s channel=%s error=%s", rule.id, channel, exc)
            outcome.errors += 1
            continue

        key = dedupe_key(rule.tenant_id, rule.id, entity_id, channel, key_source)
        notification_id = insert_or_skip(
            db,
            Notification,
            {
                "tenant_id": rule.tenant_id,
                "event_id": event_id,
                "rule_id": rule.id,
                "channel": channel,
                "recipient": recipient,
                "payload": {**variables, **rendered, "attachments": rule.attachments or [], **provenance},
                "status": "scheduled",
                "scheduled_for": scheduled_for,
                "next_attempt_at": scheduled_for,
                "attempt_count": 0,
                "max_attempts": max_attempts,
                "dedupe_key": key,
            },
            conflict_columns=["dedupe_key"],
        )
        if notification_id is None:
            logger.info("notification exists dedupe_key=%s", key)
            outcome.duplicates += 1
            continue

        db.add(
            NotificationLog(
                tenant_id=rule.tenant_id,
                notification_id=notification_id,
                rule_id=rule.id,
                customer_id=customer_id,
                rule_type=rule.rule_type,
                channel=channel,
                status="pending",
                recipient=recipient,
                content_preview=preview(channel, rendered),
                scheduled_for=scheduled_for,
            )
        )
        outcome.created_channels.append(channel)
    return outcome
