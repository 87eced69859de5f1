"""Backfill job/item tables plus the read-only customer view they join."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from notifyflow.common.db import Base


class Customer(Base):
    """Customer record owned by the commerce store; read-only here."""

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    full_name: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    first_order_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class BackfillJob(Base):
    """One retroactive post-sale run over a fixed customer snapshot."""

    __tablename__ = "post_sale_backfill_jobs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String, default="pending")
    total_customers: Mapped[int] = mapped_column(Integer, default=0)
    processed_customers: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class BackfillItem(Base):
    """One customer of a job's snapshot; the unit of idempotent progress."""

    __tablename__ = "post_sale_backfill_items"
    __table_args__ = (
        Index("ix_backfill_items_status_scheduled_for", "status", "scheduled_for"),
        Index("ix_backfill_items_job_status", "job_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    job_id: Mapped[str] = mapped_column(ForeignKey("post_sale_backfill_jobs.id"))
    tenant_id: Mapped[str] = mapped_column(String)
    customer_id: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="pending")
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(String, nullable=True)
