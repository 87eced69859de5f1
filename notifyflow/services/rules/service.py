"""Rule write path: the only code that persists `NotificationRule` rows."""

from sqlalchemy import select

from notifyflow.common.delay import UNIT_SECONDS, to_seconds
from notifyflow.common.logging import logger
from notifyflow.services.rules.compiler import compile_trigger
from notifyflow.services.rules.models import NotificationRule
from notifyflow.services.rules.schemas import RuleCreate, RuleUpdate


class RuleNotFoundError(ValueError):
    pass


def _apply_derived_fields(rule: NotificationRule) -> None:
    compiled = compile_trigger(rule.rule_type, rule.trigger_condition)
    rule.trigger_event_type = compiled.event_type
    rule.dedupe_scope = compiled.dedupe_scope.value


class RuleService:
    """Creates and updates rules, recompiling derived fields on every write."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create_rule(self, tenant_id: str, req: RuleCreate) -> NotificationRule:
        with self.session_factory() as db:
            rule = NotificationRule(
                tenant_id=tenant_id,
                name=req.name,
                description=req.description,
                is_enabled=req.is_enabled,
                rule_type=req.rule_type.value,
                trigger_condition=req.trigger_condition,
                channels=list(req.channels),
                whatsapp_message=req.whatsapp_message,
                email_subject=req.email_subject,
                email_body=req.email_body,
                attachments=[a.model_dump() for a in req.attachments],
                delay_seconds=to_seconds(req.delay_value, req.delay_unit),
                delay_unit=req.delay_unit,
                product_scope=req.product_scope,
                product_ids=req.product_ids,
                filters=[f.model_dump() for f in req.filters],
                priority=req.priority,
            )
            _apply_derived_fields(rule)
            db.add(rule)
            db.commit()
            logger.info(
                "rule_created rule_id=%s tenant_id=%s event_type=%s delay_seconds=%s",
                rule.id,
                tenant_id,
                rule.trigger_event_type,
                rule.delay_seconds,
            )
            return rule

    def _get(self, db, tenant_id: str, rule_id: str) -> NotificationRule:
        rule = db.execute(
            select(NotificationRule).where(NotificationRule.id == rule_id, NotificationRule.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if rule is None:
            raise RuleNotFoundError(f"rule {rule_id} not found")
        return rule

    def update_rule(self, tenant_id: str, rule_id: str, req: RuleUpdate) -> NotificationRule:
        """Apply explicitly-set fields, then re-derive event type, scope and delay."""

        changes = req.model_dump(exclude_unset=True)
        with self.session_factory() as db:
            rule = self._get(db, tenant_id, rule_id)

            delay_value = changes.pop("delay_value", None)
            delay_unit = changes.pop("delay_unit", None)
            if delay_value is not None or delay_unit is not None:
                if delay_value is None:
                    # Unit-only change keeps the authored number.
                    delay_value = rule.delay_seconds // UNIT_SECONDS.get(rule.delay_unit, 1)
                rule.delay_unit = delay_unit or rule.delay_unit
                rule.delay_seconds = to_seconds(delay_value, rule.delay_unit)

            if "rule_type" in changes and changes["rule_type"] is not None:
                changes["rule_type"] = changes["rule_type"].value
            for field, value in changes.items():
                setattr(rule, field, value)

            if rule.product_scope == "specific" and not rule.product_ids:
                raise ValueError("product_ids required when product_scope is 'specific'")
            _apply_derived_fields(rule)
            db.commit()
            logger.info("rule_updated rule_id=%s fields=%s", rule_id, sorted(req.model_fields_set))
            return rule

    def set_enabled(self, tenant_id: str, rule_id: str, enabled: bool) -> NotificationRule:
        return self.update_rule(tenant_id, rule_id, RuleUpdate(is_enabled=enabled))

    def delete_rule(self, tenant_id: str, rule_id: str) -> None:
        with self.session_factory() as db:
            db.delete(self._get(db, tenant_id, rule_id))
            db.commit()

    def list_rules(self, tenant_id: str, rule_type: str | None = None) -> list[NotificationRule]:
        with self.session_factory() as db:
            query = select(NotificationRule).where(NotificationRule.tenant_id == tenant_id)
            if rule_type is not None:
                query = query.where(NotificationRule.rule_type == rule_type)
            return list(db.execute(query.order_by(NotificationRule.priority.desc())).scalars().all())
