"""Shared fixtures: in-memory SQLite schema and rule/customer builders."""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("API_KEY", "test-api-key")

from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from notifyflow.common.db import Base, build_engine
from notifyflow.services.backfill.models import Customer
from notifyflow.services.notification import models as notification_models  # noqa: F401
from notifyflow.services.rules.schemas import RuleCreate
from notifyflow.services.rules.service import RuleService


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored in UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def rule_service(session_factory):
    return RuleService(session_factory)


@pytest.fixture
def make_rule(rule_service):
    def _make(tenant_id: str = "t1", **fields):
        data = {
            "name": "rule",
            "rule_type": "payment",
            "trigger_condition": "payment_approved",
            "channels": ["email"],
            "email_subject": "Pedido {{order_number}}",
            "email_body": "Olá {{customer_first_name}}, recebemos seu pagamento.",
            "whatsapp_message": "Olá {{customer_first_name}}!",
        }
        data.update(fields)
        return rule_service.create_rule(tenant_id, RuleCreate(**data))

    return _make


@pytest.fixture
def make_customer(session_factory):
    def _make(customer_id: str, tenant_id: str = "t1", **fields):
        values = {
            "email": f"{customer_id}@example.com",
            "full_name": "Ana Souza",
            "phone": "+5511999990000",
        }
        values.update(fields)
        with session_factory() as db:
            customer = Customer(id=customer_id, tenant_id=tenant_id, **values)
            db.add(customer)
            db.commit()
            return customer

    return _make
