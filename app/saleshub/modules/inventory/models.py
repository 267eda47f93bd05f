from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.saleshub.models import Base, User


TRAILER_STATUSES = ("available", "reserved", "sold", "removed")


class Trailer(Base):
    __tablename__ = "trailers"
    __table_args__ = (
        Index("idx_trailers_status", "status"),
        Index("idx_trailers_manufacturer", "manufacturer"),
        Index("idx_trailers_category", "category"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    vin: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    stock_number: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    manufacturer: Mapped[str] = mapped_column(String(128), nullable=False)
    model: Mapped[str | None] = mapped_column(String(255), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)  # enclosed, dump, open, utility

    # Feet; width/length parsed from the model code (e.g. 7X16)
    length: Mapped[float | None] = mapped_column(Float, nullable=True)
    width: Mapped[float | None] = mapped_column(Float, nullable=True)
    height: Mapped[float | None] = mapped_column(Float, nullable=True)

    msrp: Mapped[float | None] = mapped_column(Float, nullable=True)
    sale_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    pricing_status: Mapped[str] = mapped_column(String(32), nullable=False, default="PRICED")  # PRICED, ASK_FOR_PRICING

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="available")
    features: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(128), nullable=True)

    sold_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    sold_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    upload_id: Mapped[int | None] = mapped_column(ForeignKey("inventory_uploads.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    sold_by: Mapped[User | None] = relationship("User", lazy="selectin")


class InventoryUpload(Base):
    """One manufacturer file import; keeps enough detail to roll the import back."""

    __tablename__ = "inventory_uploads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    manufacturer: Mapped[str] = mapped_column(String(128), nullable=False)
    file_type: Mapped[str] = mapped_column(String(16), nullable=False)  # excel, pdf
    storage_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    rows_parsed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    removed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    new_vins: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    updated_vins: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    removed_vins: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    errors: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    rolled_back_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    rolled_back_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    uploaded_by: Mapped[User | None] = relationship("User", foreign_keys=[uploaded_by_user_id], lazy="selectin")
