"""Live dispatch: ledger gating, delays, channel isolation and scoping."""

from datetime import timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.exc import OperationalError

from notifyflow.common.events import EventEntity
from notifyflow.services.notification.dispatcher import TriggerDispatcher
from notifyflow.services.notification.models import DedupLedgerEntry, Notification, NotificationLog
from tests.conftest import T0, as_utc


CONTEXT = {
    "order_number": "1001",
    "customer": {"id": "c1", "full_name": "Ana Souza", "email": "ana@example.com", "phone": "+5511999990000"},
}


def _count(session_factory, model) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(model)).scalar_one()


def _notifications(session_factory) -> list[Notification]:
    with session_factory() as db:
        return list(db.execute(select(Notification).order_by(Notification.channel)).scalars().all())


def test_same_event_twice_schedules_once(session_factory, make_rule):
    """Second delivery of an event hits the ledger and creates nothing."""

    rule = make_rule(channels=["email"], delay_value=0)
    dispatcher = TriggerDispatcher(session_factory)
    entity = EventEntity(id="o1", type="order")

    first = dispatcher.dispatch("t1", "order.paid", entity, CONTEXT, now=T0)
    second = dispatcher.dispatch("t1", "order.paid", entity, CONTEXT, now=T0)

    assert first.notifications_created == 1
    assert second.notifications_created == 0
    assert second.ledger_conflicts == 1
    [notification] = _notifications(session_factory)
    assert notification.status == "scheduled"
    assert notification.max_attempts == 3
    assert notification.rule_id == rule.id
    with session_factory() as db:
        entries = db.execute(select(DedupLedgerEntry)).scalars().all()
    assert [(e.tenant_id, e.rule_id, e.entity_id) for e in entries] == [("t1", rule.id, "o1")]


def test_rendered_payload_and_log(session_factory, make_rule):
    make_rule(channels=["email"])
    TriggerDispatcher(session_factory).dispatch("t1", "order.paid", EventEntity(id="o1", type="order"), CONTEXT, now=T0)

    [notification] = _notifications(session_factory)
    assert notification.recipient == "ana@example.com"
    assert notification.payload["email_subject"] == "Pedido 1001"
    assert notification.payload["email_body"].startswith("Olá Ana,")
    assert notification.payload["source"] == "live"
    with session_factory() as db:
        [log] = db.execute(select(NotificationLog)).scalars().all()
    assert log.notification_id == notification.id
    assert log.customer_id == "c1"
    assert log.rule_type == "payment"
    assert log.content_preview.startswith("Pedido 1001: Olá Ana")


def test_delay_is_added_to_now(session_factory, make_rule):
    make_rule(delay_value=10, delay_unit="minutes")
    TriggerDispatcher(session_factory).dispatch("t1", "order.paid", EventEntity(id="o1", type="order"), CONTEXT, now=T0)

    [notification] = _notifications(session_factory)
    assert as_utc(notification.scheduled_for) == T0 + timedelta(minutes=10)
    assert as_utc(notification.next_attempt_at) == as_utc(notification.scheduled_for)


def test_missing_recipient_skips_only_that_channel(session_factory, make_rule):
    make_rule(channels=["email", "whatsapp"])
    context = {"customer": {"id": "c1", "full_name": "Ana", "email": "ana@example.com"}}

    result = TriggerDispatcher(session_factory).dispatch(
        "t1", "order.paid", EventEntity(id="o1", type="order"), context, now=T0
    )

    assert result.notifications_created == 1
    assert result.channels_skipped == 1
    assert [n.channel for n in _notifications(session_factory)] == ["email"]


def test_each_channel_gets_its_own_notification(session_factory, make_rule):
    make_rule(channels=["email", "whatsapp"])
    TriggerDispatcher(session_factory).dispatch("t1", "order.paid", EventEntity(id="o1", type="order"), CONTEXT, now=T0)

    notifications = _notifications(session_factory)
    assert [n.channel for n in notifications] == ["email", "whatsapp"]
    assert notifications[1].recipient == "+5511999990000"
    assert notifications[1].payload["whatsapp_message"] == "Olá Ana!"
    assert notifications[0].dedupe_key != notifications[1].dedupe_key


def test_only_matching_enabled_rules_of_the_tenant(session_factory, make_rule, rule_service):
    make_rule(tenant_id="t2")
    disabled = make_rule()
    rule_service.set_enabled("t1", disabled.id, False)
    make_rule(rule_type="shipping", trigger_condition="posted")

    result = TriggerDispatcher(session_factory).dispatch(
        "t1", "order.paid", EventEntity(id="o1", type="order"), CONTEXT, now=T0
    )

    assert result.rules_evaluated == 0
    assert _count(session_factory, Notification) == 0


def test_product_scope(session_factory, make_rule):
    make_rule(name="shoes", product_scope="specific", product_ids=["p-shoes"])
    dispatcher = TriggerDispatcher(session_factory)

    miss = dispatcher.dispatch(
        "t1", "order.paid", EventEntity(id="o1", type="order"), {**CONTEXT, "items": [{"product_id": "p-hat"}]}, now=T0
    )
    hit = dispatcher.dispatch(
        "t1", "order.paid", EventEntity(id="o2", type="order", product_ids=["p-shoes"]), CONTEXT, now=T0
    )

    assert miss.rules_evaluated == 1 and miss.rules_matched == 0
    assert hit.notifications_created == 1


def test_rule_filters_gate_dispatch(session_factory, make_rule):
    make_rule(filters=[{"path": "order.payment_method", "op": "eq", "value": "pix"}])
    dispatcher = TriggerDispatcher(session_factory)

    card = dispatcher.dispatch(
        "t1", "order.paid", EventEntity(id="o1", type="order"), {**CONTEXT, "order": {"payment_method": "card"}}, now=T0
    )
    pix = dispatcher.dispatch(
        "t1", "order.paid", EventEntity(id="o2", type="order"), {**CONTEXT, "order": {"payment_method": "pix"}}, now=T0
    )

    assert card.rules_matched == 0
    assert pix.notifications_created == 1


def test_rules_evaluated_by_priority(session_factory, make_rule):
    low = make_rule(name="low", priority=1)
    high = make_rule(name="high", priority=5)
    dispatcher = TriggerDispatcher(session_factory)

    assert [r.id for r in dispatcher._matching_rules("t1", "order.paid")] == [high.id, low.id]
    result = dispatcher.dispatch("t1", "order.paid", EventEntity(id="o1", type="order"), CONTEXT, now=T0)
    assert result.notifications_created == 2


def test_scope_entity_taken_from_context(session_factory, make_rule):
    """A cart-scoped rule dedupes on the cart id even when the event is about a checkout."""

    make_rule(rule_type="abandoned_checkout", trigger_condition=None)
    dispatcher = TriggerDispatcher(session_factory)
    context = {**CONTEXT, "cart_id": "cart-9"}

    dispatcher.dispatch("t1", "checkout.abandoned", EventEntity(id="chk-1", type="checkout"), context, now=T0)
    again = dispatcher.dispatch("t1", "checkout.abandoned", EventEntity(id="chk-2", type="checkout"), context, now=T0)

    assert again.ledger_conflicts == 1
    with session_factory() as db:
        [entry] = db.execute(select(DedupLedgerEntry)).scalars().all()
    assert (entry.entity_type, entry.entity_id) == ("cart", "cart-9")


def test_dedupe_key_blocks_duplicates_without_ledger_row(session_factory, make_rule):
    """The notifications.dedupe_key uniqueness still holds if a ledger row is lost."""

    make_rule()
    dispatcher = TriggerDispatcher(session_factory)
    entity = EventEntity(id="o1", type="order")
    dispatcher.dispatch("t1", "order.paid", entity, CONTEXT, now=T0)
    with session_factory() as db:
        db.execute(delete(DedupLedgerEntry))
        db.commit()

    result = dispatcher.dispatch("t1", "order.paid", entity, CONTEXT, now=T0)

    assert result.duplicates_skipped == 1
    assert result.notifications_created == 0
    assert _count(session_factory, Notification) == 1
    assert _count(session_factory, NotificationLog) == 1


def test_failure_in_one_rule_does_not_stop_others(session_factory, make_rule, monkeypatch):
    broken = make_rule(name="broken", priority=9)
    make_rule(name="fine", priority=1)

    from notifyflow.services.notification import dispatcher as dispatcher_module

    real = dispatcher_module.schedule_rule_channels

    def flaky(db, claim, rule, **kwargs):
        if rule.id == broken.id:
            raise RuntimeError("insert failed")
        return real(db, claim, rule, **kwargs)

    monkeypatch.setattr(dispatcher_module, "schedule_rule_channels", flaky)
    result = TriggerDispatcher(session_factory).dispatch(
        "t1", "order.paid", EventEntity(id="o1", type="order"), CONTEXT, now=T0
    )

    assert result.errors == 1
    assert result.notifications_created == 1
    # The failed rule's claim rolled back with it, so a retry can still schedule it.
    with session_factory() as db:
        rule_ids = db.execute(select(DedupLedgerEntry.rule_id)).scalars().all()
    assert broken.id not in rule_ids


def test_rule_lookup_failure_is_counted_not_raised(session_factory, make_rule, monkeypatch):
    make_rule()
    dispatcher = TriggerDispatcher(session_factory)

    def db_down(tenant_id, event_type):
        raise OperationalError("SELECT notification_rules", {}, Exception("db down"))

    monkeypatch.setattr(dispatcher, "_matching_rules", db_down)
    result = dispatcher.dispatch("t1", "order.paid", EventEntity(id="o1", type="order"), CONTEXT, now=T0)

    assert result.errors == 1
    assert result.rules_evaluated == 0
    assert _count(session_factory, Notification) == 0
