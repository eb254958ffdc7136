from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .utils import _utcnow


class Base(DeclarativeBase):
    pass


# ════════════════════════════════════════════════
# SALESPERSON — a member of the sales floor
# ════════════════════════════════════════════════
class Salesperson(Base):
    """A salesperson or manager. ``manager_id`` points at the direct manager;
    a manager's team is themselves plus everyone reporting to them."""
    __tablename__ = "salespeople"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(120), default="")
    email: Mapped[str | None] = mapped_column(String(254), unique=True, nullable=True)
    role: Mapped[str] = mapped_column(String(24), default="member")
    # Roles: "member" | "manager" | "admin"
    manager_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


# ════════════════════════════════════════════════
# SALE — one commission-bearing transaction
# ════════════════════════════════════════════════
class Sale(Base):
    __tablename__ = "sales"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stock_number: Mapped[str] = mapped_column(String(120), default="", index=True)
    salesperson_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(120), default="")
    vehicle_type: Mapped[str] = mapped_column(String(8), default="new")
    sale_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Line items
    sale_price: Mapped[float] = mapped_column(Float, default=0.0)
    accessories_value: Mapped[float] = mapped_column(Float, default=0.0)
    warranty_selling_price: Mapped[float] = mapped_column(Float, default=0.0)
    warranty_cost: Mapped[float] = mapped_column(Float, default=0.0)
    service_price: Mapped[float] = mapped_column(Float, default=0.0)
    service_cost: Mapped[float] = mapped_column(Float, default=0.0)
    spiff_bonus: Mapped[float] = mapped_column(Float, default=0.0)
    spiff_comments: Mapped[str] = mapped_column(Text, default="")

    # Shared sale
    is_shared_sale: Mapped[bool] = mapped_column(Boolean, default=False)
    sales_partner_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    split_percentage: Mapped[int] = mapped_column(Integer, default=50)

    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)
    # pending | completed | cancelled

    # Commission breakdown (denormalized from the engine at save time)
    commission_sale: Mapped[float] = mapped_column(Float, default=0.0)
    commission_accessories: Mapped[float] = mapped_column(Float, default=0.0)
    commission_warranty: Mapped[float] = mapped_column(Float, default=0.0)
    commission_service: Mapped[float] = mapped_column(Float, default=0.0)
    commission_spiff: Mapped[float] = mapped_column(Float, default=0.0)
    commission_total: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, onupdate=_utcnow)

    # Optimistic concurrency token, bumped by SQLAlchemy on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


# ════════════════════════════════════════════════
# STOCK CLAIM — first claimant of a stock number
# The unique constraint is what closes the check-then-insert race.
# ════════════════════════════════════════════════
class StockClaim(Base):
    __tablename__ = "stock_claims"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stock_number: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    salesperson_id: Mapped[int] = mapped_column(Integer, nullable=False)
    sale_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


# ════════════════════════════════════════════════
# ACTIVITY LOG — audit trail
# ════════════════════════════════════════════════
class ActivityLogEntry(Base):
    __tablename__ = "activity_log"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(80), nullable=False)
    details: Mapped[str] = mapped_column(Text, default="")
    sale_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


# ════════════════════════════════════════════════
# USER PREFERENCE — per-user goals / saved filters
# ════════════════════════════════════════════════
class UserPreference(Base):
    __tablename__ = "user_preferences"
    __table_args__ = (UniqueConstraint("owner_id", "key", name="uq_user_preferences_owner_key"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)
