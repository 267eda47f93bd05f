from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.saleshub.models import Base, User


CUSTOMER_STATUSES = ("new", "contacted", "qualified", "applied", "approved", "won", "dead")
TEMPERATURES = ("hot", "warm", "cold", "dead")
PRIORITIES = ("urgent", "high", "medium", "low")


class Customer(Base):
    """A lead / customer record. Visibility is decided by crm.permissions."""

    __tablename__ = "customers"
    __table_args__ = (
        Index("idx_customers_email", "email"),
        Index("idx_customers_phone", "phone"),
        Index("idx_customers_status", "status"),
        Index("idx_customers_assigned_to_id", "assigned_to_id"),
        Index("idx_customers_manager_id", "manager_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(32), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(16), nullable=True)

    source: Mapped[str | None] = mapped_column(String(64), nullable=True)  # website, import, manual, referral
    source_page: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="new")

    # Assignment
    assigned_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    manager_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rep_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    assignment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)  # rep_link, manual, organic, import

    # Trailer interest
    trailer_size: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trailer_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stock_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    financing_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # cash, finance, rto
    vin: Mapped[str | None] = mapped_column(String(32), nullable=True)

    applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    credit_range: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recommended_path: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Scoring
    lead_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    temperature: Mapped[str] = mapped_column(String(16), nullable=False, default="cold")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    days_in_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    response_time_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_contacted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    manager_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rep_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    lost_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lost_reason_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Duplicate review (a second rep tried to claim an assigned lead)
    duplicate_status: Mapped[str | None] = mapped_column(String(32), nullable=True)  # pending_review, resolved
    duplicate_of_id: Mapped[int | None] = mapped_column(ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    locked_for_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    lock_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    duplicate_resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    duplicate_resolved_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    duplicate_resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # CSV import idempotency
    import_row_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    assigned_to: Mapped[User | None] = relationship("User", foreign_keys=[assigned_to_id], lazy="selectin")
    manager: Mapped[User | None] = relationship("User", foreign_keys=[manager_id], lazy="selectin")
    activities: Mapped[list["Activity"]] = relationship(
        "Activity",
        back_populates="customer",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Activity.created_at.desc()",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Activity(Base):
    """Customer timeline entry. Scheduled rows double as follow-up tasks."""

    __tablename__ = "activities"
    __table_args__ = (
        Index("idx_activities_customer_id", "customer_id"),
        Index("idx_activities_status_due", "status", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # call, email, sms, note, meeting, task, status_change, escalation, system
    activity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # completed, scheduled, overdue, cancelled
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    priority: Mapped[str | None] = mapped_column(String(16), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    customer: Mapped[Customer] = relationship("Customer", back_populates="activities")
    user: Mapped[User | None] = relationship("User", lazy="selectin")


class CrmSetting(Base):
    __tablename__ = "crm_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
