from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# CRM roles in precedence order; a user holding several gets the first one.
CRM_ROLE_KEYS = ("owner", "director", "manager", "salesperson")

PAYPLAN_PENDING = "PENDING"
PAYPLAN_ACCEPTED = "ACCEPTED"
PAYPLAN_DECLINED = "DECLINED"


class UserRole(Base):
    __tablename__ = "user_roles"
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class RolePermission(Base):
    __tablename__ = "role_permissions"
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Public salesperson code used in lead links (REP12345 / SMR12345 / VIP12345)
    rep_code: Mapped[str | None] = mapped_column(String(16), nullable=True, unique=True)
    manager_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    can_admin_crm: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    payplan_status: Mapped[str] = mapped_column(String(16), nullable=False, default=PAYPLAN_ACCEPTED)
    payplan_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    account_status: Mapped[str] = mapped_column(String(64), nullable=False, default="active")
    onboarding_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    w9_storage_key: Mapped[str | None] = mapped_column(Text, nullable=True)

    roles: Mapped[list["Role"]] = relationship(
        secondary="user_roles",
        back_populates="users",
        lazy="selectin",
    )
    manager: Mapped[User | None] = relationship("User", remote_side=[id], lazy="selectin")

    @property
    def role_keys(self) -> set[str]:
        return {r.key for r in self.roles}

    @property
    def crm_role(self) -> str | None:
        keys = self.role_keys
        for key in CRM_ROLE_KEYS:
            if key in keys:
                return key
        return None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "manager"
    name: Mapped[str] = mapped_column(String(128), nullable=False)  # display name
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list[User]] = relationship(secondary="user_roles", back_populates="roles", lazy="selectin")
    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "inventory.upload"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list[Role]] = relationship(secondary="role_permissions", back_populates="permissions", lazy="selectin")


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Generic on purpose; CRM activities are the customer-facing timeline, this is the system log.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "crm.customer.merge"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Customer"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.saleshub.modules.crm.models import Activity, CrmSetting, Customer  # noqa: E402,F401
from app.saleshub.modules.inventory.models import InventoryUpload, Trailer  # noqa: E402,F401
from app.saleshub.modules.deals.models import Deal, DealCounter, DeliveryRecord  # noqa: E402,F401
from app.saleshub.modules.quotes.models import Quote, QuoteCounter  # noqa: E402,F401
from app.saleshub.modules.messaging.models import Message, MessageThread, Notification  # noqa: E402,F401
from app.saleshub.modules.onboarding.models import OnboardingToken  # noqa: E402,F401
