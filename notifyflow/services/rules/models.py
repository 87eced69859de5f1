"""Tenant-owned notification rule configuration."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from notifyflow.common.db import Base, JSONType


class NotificationRule(Base):
    """One business condition mapped to channel messages and a delay.

    `trigger_event_type`, `dedupe_scope` and the normalized `delay_seconds`
    are written only by `RuleService`, which derives them from the authored
    fields.
    """

    __tablename__ = "notification_rules"
    __table_args__ = (
        Index("ix_notification_rules_tenant_event", "tenant_id", "trigger_event_type", "is_enabled"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    rule_type: Mapped[str] = mapped_column(String)
    trigger_condition: Mapped[str | None] = mapped_column(String, nullable=True)
    trigger_event_type: Mapped[str] = mapped_column(String)
    channels: Mapped[list] = mapped_column(JSONType, default=list)
    whatsapp_message: Mapped[str | None] = mapped_column(String, nullable=True)
    email_subject: Mapped[str | None] = mapped_column(String, nullable=True)
    email_body: Mapped[str | None] = mapped_column(String, nullable=True)
    attachments: Mapped[list] = mapped_column(JSONType, default=list)
    delay_seconds: Mapped[int] = mapped_column(Integer, default=0)
    delay_unit: Mapped[str] = mapped_column(String, default="minutes")
    product_scope: Mapped[str] = mapped_column(String, default="all")
    product_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    filters: Mapped[list] = mapped_column(JSONType, default=list)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    dedupe_scope: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
