from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.saleshub.models import Base, User
from app.saleshub.modules.crm.models import Customer
from app.saleshub.modules.inventory.models import Trailer


class DealCounter(Base):
    """Single-row sequence backing DEAL-NNNNN numbers."""

    __tablename__ = "deal_counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Deal(Base):
    __tablename__ = "deals"
    __table_args__ = (
        Index("idx_deals_sold_by_user_id", "sold_by_user_id"),
        Index("idx_deals_delivery_date", "delivery_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    deal_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    customer_id: Mapped[int | None] = mapped_column(ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    trailer_id: Mapped[int | None] = mapped_column(ForeignKey("trailers.id", ondelete="SET NULL"), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="sold")
    deal_type: Mapped[str] = mapped_column(String(16), nullable=False, default="cash")  # cash, finance, rto
    final_price: Mapped[float] = mapped_column(Float, nullable=False)
    delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    sold_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    sold_by_rep_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    sold_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Trailer snapshot at time of sale
    trailer_vin: Mapped[str | None] = mapped_column(String(32), nullable=True)
    trailer_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    trailer_manufacturer: Mapped[str | None] = mapped_column(String(128), nullable=True)
    trailer_category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trailer_size: Mapped[str | None] = mapped_column(String(32), nullable=True)
    trailer_axles: Mapped[str | None] = mapped_column(String(32), nullable=True)
    trailer_color: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trailer_height: Mapped[str | None] = mapped_column(String(32), nullable=True)
    trailer_stock_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    profit: Mapped[float | None] = mapped_column(Float, nullable=True)
    profit_margin: Mapped[float | None] = mapped_column(Float, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    marked_sold_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    marked_sold_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    customer: Mapped[Customer | None] = relationship("Customer", lazy="selectin")
    trailer: Mapped[Trailer | None] = relationship("Trailer", lazy="selectin")
    sold_by: Mapped[User | None] = relationship("User", foreign_keys=[sold_by_user_id], lazy="selectin")


class DeliveryRecord(Base):
    """Manually logged delivery with the commission/profit numbers the rep reports."""

    __tablename__ = "delivery_records"
    __table_args__ = (
        Index("idx_delivery_records_delivery_date", "delivery_date"),
        Index("idx_delivery_records_created_by", "created_by_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    trailer_identifier: Mapped[str] = mapped_column(String(128), nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    commission_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    profit_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    created_by: Mapped[User | None] = relationship("User", lazy="selectin")
