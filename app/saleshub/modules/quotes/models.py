from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.saleshub.models import Base, User
from app.saleshub.modules.crm.models import Customer
from app.saleshub.modules.inventory.models import Trailer


class Quote(Base):
    __tablename__ = "quotes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    quote_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # Q-YYYY-MMDD-NNN
    customer_id: Mapped[int | None] = mapped_column(ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    trailer_id: Mapped[int | None] = mapped_column(ForeignKey("trailers.id", ondelete="SET NULL"), nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    price: Mapped[float] = mapped_column(Float, nullable=False)
    tax_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    fees: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    zip_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    options: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # {"finance": [...], "rto": [...], "cash": {...}}

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    storage_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    customer: Mapped[Customer | None] = relationship("Customer", lazy="selectin")
    trailer: Mapped[Trailer | None] = relationship("Trailer", lazy="selectin")
    created_by: Mapped[User | None] = relationship("User", lazy="selectin")


class QuoteCounter(Base):
    """Per-day sequence backing the NNN suffix of quote numbers."""

    __tablename__ = "quote_counters"

    day: Mapped[str] = mapped_column(String(8), primary_key=True)  # YYYYMMDD
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
