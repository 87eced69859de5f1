"""Post-sale backfill: relative spacing, job completion and idempotent reruns."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, update

from notifyflow.common.config import settings
from notifyflow.common.events import EventEntity
from notifyflow.services.backfill import service as backfill_module
from notifyflow.services.backfill.models import BackfillItem
from notifyflow.services.backfill.service import BackfillProcessor, customer_variables
from notifyflow.services.notification.dispatcher import TriggerDispatcher
from notifyflow.services.notification.models import DedupLedgerEntry, Notification
from tests.conftest import T0, as_utc


def _post_sale_rule(make_rule, days: int, **fields):
    data = {
        "name": f"post sale d+{days}",
        "rule_type": "post_sale",
        "trigger_condition": None,
        "delay_value": days,
        "delay_unit": "days",
        "email_subject": "Obrigado {{customer_first_name}}",
        "email_body": "Primeira compra em {{first_order_date}}",
    }
    data.update(fields)
    return make_rule(**data)


def _items(session_factory, job_id: str) -> dict[str, BackfillItem]:
    with session_factory() as db:
        rows = db.execute(select(BackfillItem).where(BackfillItem.job_id == job_id)).scalars().all()
    return {row.customer_id: row for row in rows}


def _notifications(session_factory) -> list[Notification]:
    with session_factory() as db:
        return list(db.execute(select(Notification).order_by(Notification.scheduled_for)).scalars().all())


def test_sequence_is_reanchored_at_now(session_factory, make_rule, make_customer):
    """A 3-day and a 4-day rule land at now and now + 1 day."""

    _post_sale_rule(make_rule, days=3)
    _post_sale_rule(make_rule, days=4)
    make_customer("c1", first_order_at=datetime(2025, 12, 24, tzinfo=timezone.utc))
    processor = BackfillProcessor(session_factory)
    processor.create_job("t1", ["c1"], scheduled_for=T0)

    stats = processor.process_batch(limit=10, now=T0)

    assert stats.items_processed == 1
    assert stats.notifications_created == 2
    first, second = _notifications(session_factory)
    assert as_utc(first.scheduled_for) == T0
    assert as_utc(second.scheduled_for) == T0 + timedelta(days=1)
    assert first.payload["source"] == "post_sale_backfill"
    assert first.payload["email_body"] == "Primeira compra em 24/12/2025"
    assert first.recipient == "c1@example.com"


def test_job_completes_and_missing_customer_is_skipped(session_factory, make_rule, make_customer):
    _post_sale_rule(make_rule, days=0)
    make_customer("c1")
    make_customer("c2")
    processor = BackfillProcessor(session_factory)
    job = processor.create_job("t1", ["c1", "c2", "ghost"], scheduled_for=T0)

    stats = processor.process_batch(limit=10, now=T0)

    assert stats.items_processed == 2
    assert stats.items_skipped == 1
    assert stats.jobs_completed == 1
    items = _items(session_factory, job.id)
    assert items["ghost"].status == "skipped"
    assert items["ghost"].error_message == "Customer not found"
    assert {items["c1"].status, items["c2"].status} == {"completed"}
    job = processor.get_job(job.id)
    assert job.status == "completed"
    assert job.processed_customers == job.total_customers == 3
    assert job.completed_at is not None
    assert {n.payload["job_id"] for n in _notifications(session_factory)} == {job.id}


def test_partial_batch_keeps_job_pending(session_factory, make_rule, make_customer):
    _post_sale_rule(make_rule, days=0)
    for customer_id in ("c1", "c2", "c3"):
        make_customer(customer_id)
    processor = BackfillProcessor(session_factory)
    job = processor.create_job("t1", ["c1", "c2", "c3"], scheduled_for=T0)

    first = processor.process_batch(limit=2, now=T0)
    assert first.items_processed == 2
    assert first.jobs_completed == 0
    interim = processor.get_job(job.id)
    assert interim.status == "pending"
    assert interim.processed_customers == 2

    second = processor.process_batch(limit=2, now=T0)
    assert second.items_processed == 1
    assert second.jobs_completed == 1
    assert processor.get_job(job.id).status == "completed"


def test_items_not_yet_due_are_left_alone(session_factory, make_rule, make_customer):
    _post_sale_rule(make_rule, days=0)
    make_customer("c1")
    processor = BackfillProcessor(session_factory)
    job = processor.create_job("t1", ["c1"], scheduled_for=T0 + timedelta(hours=1))

    stats = processor.process_batch(limit=10, now=T0)

    assert stats.items_processed == 0
    assert _items(session_factory, job.id)["c1"].status == "pending"
    assert processor.process_batch(limit=10, now=T0 + timedelta(hours=2)).items_processed == 1


def test_tenant_without_post_sale_rules_skips_items(session_factory, make_rule, make_customer):
    make_rule()
    make_customer("c1")
    processor = BackfillProcessor(session_factory)
    job = processor.create_job("t1", ["c1"], scheduled_for=T0)

    stats = processor.process_batch(limit=10, now=T0)

    assert stats.items_skipped == 1
    assert _items(session_factory, job.id)["c1"].error_message == "No post_sale rules"
    assert processor.get_job(job.id).status == "completed"


def test_rerun_for_same_customer_schedules_nothing(session_factory, make_rule, make_customer):
    _post_sale_rule(make_rule, days=0)
    _post_sale_rule(make_rule, days=2)
    make_customer("c1")
    processor = BackfillProcessor(session_factory)
    processor.create_job("t1", ["c1"], scheduled_for=T0)
    processor.process_batch(limit=10, now=T0)

    processor.create_job("t1", ["c1"], scheduled_for=T0)
    stats = processor.process_batch(limit=10, now=T0)

    assert stats.items_processed == 1
    assert stats.notifications_created == 0
    assert stats.ledger_conflicts == 2
    assert len(_notifications(session_factory)) == 2


def test_live_claim_blocks_backfill(session_factory, make_rule, make_customer):
    _post_sale_rule(make_rule, days=0)
    make_customer("c1")
    TriggerDispatcher(session_factory).dispatch(
        "t1",
        "customer.first_order",
        EventEntity(id="c1", type="customer"),
        {"customer": {"id": "c1", "email": "c1@example.com", "full_name": "Ana"}},
        now=T0,
    )
    processor = BackfillProcessor(session_factory)
    processor.create_job("t1", ["c1"], scheduled_for=T0)

    stats = processor.process_batch(limit=10, now=T0)

    assert stats.ledger_conflicts == 1
    assert stats.notifications_created == 0
    [notification] = _notifications(session_factory)
    assert notification.payload["source"] == "live"


def test_ledger_entry_carries_job_scope_key(session_factory, make_rule, make_customer):
    _post_sale_rule(make_rule, days=0)
    make_customer("c1")
    processor = BackfillProcessor(session_factory)
    job = processor.create_job("t1", ["c1"], scheduled_for=T0)
    processor.process_batch(limit=10, now=T0)

    with session_factory() as db:
        [entry] = db.execute(select(DedupLedgerEntry)).scalars().all()
    assert (entry.entity_type, entry.entity_id) == ("customer", "c1")
    assert entry.scope_key == f"backfill_{job.id}"


def test_failing_item_stays_pending(session_factory, make_rule, make_customer, monkeypatch):
    _post_sale_rule(make_rule, days=0)
    make_customer("c1")
    make_customer("c2")
    real = backfill_module.schedule_rule_channels

    def flaky(db, claim, rule, **kwargs):
        if kwargs["entity_id"] == "c2":
            raise RuntimeError("insert failed")
        return real(db, claim, rule, **kwargs)

    monkeypatch.setattr(backfill_module, "schedule_rule_channels", flaky)
    processor = BackfillProcessor(session_factory)
    job = processor.create_job("t1", ["c1", "c2"], scheduled_for=T0)

    stats = processor.process_batch(limit=10, now=T0)

    assert stats.items_processed == 1
    assert stats.errors == 1
    assert stats.jobs_completed == 0
    failed = _items(session_factory, job.id)["c2"]
    assert failed.status == "pending"
    assert failed.error_message == "insert failed"
    assert as_utc(failed.scheduled_for) == T0 + timedelta(seconds=settings.backfill_retry_delay_seconds)
    with session_factory() as db:
        claimed = db.execute(select(DedupLedgerEntry.entity_id)).scalars().all()
    assert claimed == ["c1"]

    monkeypatch.setattr(backfill_module, "schedule_rule_channels", real)
    assert processor.process_batch(limit=10, now=T0).items_processed == 0

    retry = processor.process_batch(limit=10, now=T0 + timedelta(seconds=settings.backfill_retry_delay_seconds))
    assert retry.items_processed == 1
    assert retry.jobs_completed == 1
    assert _items(session_factory, job.id)["c2"].error_message is None


def test_empty_job_is_created_completed(session_factory):
    job = BackfillProcessor(session_factory).create_job("t1", [])

    assert job.status == "completed"
    assert job.total_customers == 0


def test_duplicate_customer_ids_collapse(session_factory):
    processor = BackfillProcessor(session_factory)
    job = processor.create_job("t1", ["c1", "c1", "c2"], scheduled_for=T0)

    assert job.total_customers == 2
    assert set(_items(session_factory, job.id)) == {"c1", "c2"}


def test_customer_variables_without_first_order(make_customer):
    customer = make_customer("c1", full_name="Bruno Lima")

    variables = customer_variables(customer)

    assert variables["customer_first_name"] == "Bruno"
    assert variables["first_order_date"] == ""
    assert variables["customer_phone"] == "+5511999990000"


def test_item_finished_by_another_run_rolls_back_claims(session_factory, make_rule, make_customer, monkeypatch):
    """Losing the guarded completion drops this run's ledger claims and notifications."""

    _post_sale_rule(make_rule, days=0)
    make_customer("c1")
    processor = BackfillProcessor(session_factory)
    job = processor.create_job("t1", ["c1"], scheduled_for=T0)
    stale = processor._due_items(10, T0)
    with session_factory() as db:
        db.execute(
            update(BackfillItem)
            .where(BackfillItem.job_id == job.id)
            .values(status="completed", processed_at=T0)
        )
        db.commit()
    monkeypatch.setattr(processor, "_due_items", lambda limit, now: stale)

    stats = processor.process_batch(limit=10, now=T0)

    assert stats.items_processed == 0
    assert stats.notifications_created == 0
    with session_factory() as db:
        assert db.execute(select(func.count()).select_from(DedupLedgerEntry)).scalar_one() == 0
        assert db.execute(select(func.count()).select_from(Notification)).scalar_one() == 0


def test_failing_items_do_not_starve_later_items(session_factory, make_rule, make_customer, monkeypatch):
    _post_sale_rule(make_rule, days=0)
    for customer_id in ("bad1", "bad2", "good"):
        make_customer(customer_id)
    real = backfill_module.schedule_rule_channels

    def flaky(db, claim, rule, **kwargs):
        if kwargs["entity_id"].startswith("bad"):
            raise RuntimeError("insert failed")
        return real(db, claim, rule, **kwargs)

    monkeypatch.setattr(backfill_module, "schedule_rule_channels", flaky)
    processor = BackfillProcessor(session_factory)
    processor.create_job("t1", ["bad1", "bad2"], scheduled_for=T0)
    later = processor.create_job("t1", ["good"], scheduled_for=T0 + timedelta(minutes=1))

    first = processor.process_batch(limit=2, now=T0 + timedelta(minutes=1))
    second = processor.process_batch(limit=2, now=T0 + timedelta(minutes=1))

    assert first.errors == 2
    assert second.items_processed == 1
    assert processor.get_job(later.id).status == "completed"
