"""
store.py — SQLAlchemy-backed sale store and activity log.

Every public call returns a ``Result``; database errors are logged and turned
into ``Result(success=False, error=...)`` instead of being raised, so callers
must check ``.success``.

Concurrency:
  - The first claim of a stock number is recorded in ``stock_claims`` under a
    unique constraint. Two salespeople racing to create the same stock number
    can't both win: the loser gets a failed ``Result`` (the caller decides
    whether to retry). A second claimant is only accepted as a shared sale
    naming the original claimant as partner.
  - ``Sale.version`` is an optimistic-concurrency token. ``update``/``delete``
    accept ``expected_version``; a mismatch (or a concurrent write caught at
    flush time) fails without writing.
  - Each call commits on its own. Inside ``atomic(session)`` calls only flush,
    and the block commits once at the end or rolls back as a whole.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ActivityLogEntry, Sale, Salesperson, StockClaim
from .payplan import CommissionEngine
from .schemas import SaleIn, SaleRecord

logger = logging.getLogger("store")

SALE_STATUSES = ("pending", "completed", "cancelled")

LINE_ITEM_FIELDS = {
    "vehicle_type", "sale_price", "accessories_value",
    "warranty_selling_price", "warranty_cost",
    "service_price", "service_cost", "spiff_bonus",
}
UPDATABLE_FIELDS = LINE_ITEM_FIELDS | {
    "stock_number", "customer_name", "sale_date", "spiff_comments",
    "is_shared_sale", "sales_partner_id", "split_percentage", "status",
}

_ATOMIC = "dealer_commission.atomic"


@dataclass
class Result:
    success: bool
    error: str | None = None
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None) -> "Result":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, data: Any = None) -> "Result":
        return cls(success=False, error=error, data=data)


class AtomicAbort(Exception):
    """Raise inside ``atomic()`` to roll the whole block back."""

    def __init__(self, result: Result):
        super().__init__(result.error)
        self.result = result


@asynccontextmanager
async def atomic(session: AsyncSession):
    """Run several store writes as one transaction.

    Nested use joins the outer block.
    """
    if session.info.get(_ATOMIC):
        yield session
        return
    session.info[_ATOMIC] = True
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
    finally:
        session.info[_ATOMIC] = False


def _record(sale: Sale, salesperson_name: str | None = None) -> SaleRecord:
    return SaleRecord.model_validate(sale).model_copy(update={"salesperson_name": salesperson_name})


class _Repository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def in_atomic(self) -> bool:
        return bool(self.session.info.get(_ATOMIC))

    async def _commit(self) -> None:
        if self.in_atomic:
            await self.session.flush()
        else:
            await self.session.commit()

    async def _rollback(self) -> None:
        # Inside atomic() the owner of the block rolls back
        if not self.in_atomic:
            await self.session.rollback()

    async def _failed(self, what: str, exc: Exception) -> Result:
        logger.warning(f"{what} failed: {exc}")
        await self._rollback()
        return Result.fail(f"{what} failed: {exc.__class__.__name__}")


# ════════════════════════════════════════════════
# SALES
# ════════════════════════════════════════════════

class SaleStore(_Repository):
    def __init__(self, session: AsyncSession, engine: CommissionEngine | None = None):
        super().__init__(session)
        self.engine = engine or CommissionEngine()

    # ── Reads ────────────────────────────────────────────────────────────────

    def _select(self):
        return (
            select(Sale, Salesperson.full_name)
            .outerjoin(Salesperson, Salesperson.id == Sale.salesperson_id)
            .order_by(Sale.created_at, Sale.id)
        )

    async def query(self, stock_number: str, exclude_id: int | None = None) -> Result:
        """All sales recorded against ``stock_number`` (any status)."""
        stmt = self._select().where(Sale.stock_number == stock_number)
        if exclude_id is not None:
            stmt = stmt.where(Sale.id != exclude_id)
        try:
            rows = (await self.session.execute(stmt)).all()
        except SQLAlchemyError as e:
            return await self._failed(f"Stock number lookup for {stock_number!r}", e)
        return Result.ok([_record(s, name) for s, name in rows])

    async def get(self, sale_id: int) -> Result:
        try:
            row = (await self.session.execute(self._select().where(Sale.id == sale_id))).first()
        except SQLAlchemyError as e:
            return await self._failed(f"Fetch of sale {sale_id}", e)
        if row is None:
            return Result.fail(f"Sale {sale_id} not found")
        return Result.ok(_record(row[0], row[1]))

    async def list_sales(self, salesperson_id: int | None = None, status: str | None = None) -> Result:
        """Sales owned or partnered by ``salesperson_id`` (or all sales)."""
        stmt = self._select()
        if salesperson_id is not None:
            stmt = stmt.where(
                (Sale.salesperson_id == salesperson_id) | (Sale.sales_partner_id == salesperson_id)
            )
        if status is not None:
            stmt = stmt.where(Sale.status == status)
        try:
            rows = (await self.session.execute(stmt)).all()
        except SQLAlchemyError as e:
            return await self._failed("Sales listing", e)
        return Result.ok([_record(s, name) for s, name in rows])

    async def team_ids(self, manager_id: int) -> Result:
        """The manager plus their direct reports."""
        try:
            ids = (await self.session.execute(
                select(Salesperson.id).where(Salesperson.manager_id == manager_id)
            )).scalars().all()
        except SQLAlchemyError as e:
            return await self._failed(f"Team lookup for manager {manager_id}", e)
        return Result.ok([manager_id, *[i for i in ids if i != manager_id]])

    async def pending_sales_for(self, salesperson_ids: Iterable[int]) -> Result:
        ids = list(salesperson_ids)
        if not ids:
            return Result.ok([])
        stmt = self._select().where(Sale.salesperson_id.in_(ids), Sale.status == "pending")
        try:
            rows = (await self.session.execute(stmt)).all()
        except SQLAlchemyError as e:
            return await self._failed("Pending sales lookup", e)
        return Result.ok([_record(s, name) for s, name in rows])

    # ── Stock claims ─────────────────────────────────────────────────────────

    async def _claim_for(self, stock_number: str) -> StockClaim | None:
        return (await self.session.execute(
            select(StockClaim).where(StockClaim.stock_number == stock_number)
        )).scalar_one_or_none()

    async def _check_claim(self, stock_number: str, salesperson_id: int,
                           is_shared: bool, partner_id: int | None) -> str | None:
        """Error message if someone else holds ``stock_number``, else None."""
        if not stock_number:
            return None
        claim = await self._claim_for(stock_number)
        if claim is None or claim.salesperson_id == salesperson_id:
            return None
        if is_shared and partner_id == claim.salesperson_id:
            return None
        return (f"Stock number {stock_number} is already claimed by salesperson "
                f"{claim.salesperson_id}; record it as a shared sale with them or "
                f"use a different stock number")

    async def _sync_claim(self, stock_number: str) -> None:
        """Point the claim at the earliest live (non-cancelled) sale, or drop it."""
        if not stock_number:
            return
        claim = await self._claim_for(stock_number)
        live = (await self.session.execute(
            select(Sale)
            .where(Sale.stock_number == stock_number, Sale.status != "cancelled")
            .order_by(Sale.created_at, Sale.id)
            .limit(1)
        )).scalar_one_or_none()
        if live is None:
            if claim is not None:
                await self.session.delete(claim)
        elif claim is None:
            self.session.add(StockClaim(
                stock_number=stock_number, salesperson_id=live.salesperson_id, sale_id=live.id,
            ))
        else:
            claim.salesperson_id = live.salesperson_id
            claim.sale_id = live.id
        await self.session.flush()

    # ── Writes ───────────────────────────────────────────────────────────────

    async def create(self, sale_in: SaleIn, salesperson_id: int) -> Result:
        """Insert a sale with its computed commission breakdown."""
        try:
            conflict = await self._check_claim(
                sale_in.stock_number, salesperson_id,
                sale_in.is_shared_sale, sale_in.sales_partner_id,
            )
            if conflict:
                await self._rollback()
                return Result.fail(conflict)

            breakdown = self.engine.compute(sale_in)
            sale = Sale(**sale_in.model_dump(), salesperson_id=salesperson_id, **breakdown.as_columns())
            self.session.add(sale)
            await self.session.flush()
            if sale.stock_number and await self._claim_for(sale.stock_number) is None:
                self.session.add(StockClaim(
                    stock_number=sale.stock_number, salesperson_id=salesperson_id, sale_id=sale.id,
                ))
            await self._commit()
        except SQLAlchemyError as e:
            return await self._failed(f"Create of sale for stock {sale_in.stock_number!r}", e)

        logger.info(f"Sale {sale.id} created: stock={sale.stock_number!r} salesperson={salesperson_id} "
                    f"commission={breakdown.total:.2f}")
        return Result.ok(_record(sale))

    async def update(self, sale_id: int, patch: dict[str, Any], expected_version: int | None = None) -> Result:
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            return Result.fail(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        if "status" in patch and patch["status"] not in SALE_STATUSES:
            return Result.fail(f"Unknown status {patch['status']!r}")
        if "split_percentage" in patch and not (
                isinstance(patch["split_percentage"], int) and 1 <= patch["split_percentage"] <= 99):
            return Result.fail("split_percentage must be an integer 1-99")

        try:
            sale = await self.session.get(Sale, sale_id, populate_existing=True)
            if sale is None:
                return Result.fail(f"Sale {sale_id} not found")
            if sale.status == "cancelled":
                return Result.fail(f"Sale {sale_id} is cancelled and can no longer change")
            if expected_version is not None and sale.version != expected_version:
                return Result.fail(f"Sale {sale_id} was modified by someone else (version "
                                   f"{sale.version}, expected {expected_version})")

            old_stock = sale.stock_number
            for k, v in patch.items():
                setattr(sale, k, v)
            if not sale.is_shared_sale:
                sale.sales_partner_id = None
            elif sale.sales_partner_id is None:
                await self._rollback()
                return Result.fail("A shared sale needs a sales partner")

            if sale.stock_number != old_stock:
                conflict = await self._check_claim(
                    sale.stock_number, sale.salesperson_id, sale.is_shared_sale, sale.sales_partner_id,
                )
                if conflict:
                    await self._rollback()
                    return Result.fail(conflict)

            if LINE_ITEM_FIELDS & set(patch):
                for k, v in self.engine.compute(sale).as_columns().items():
                    setattr(sale, k, v)

            await self.session.flush()
            if sale.stock_number != old_stock or patch.get("status") == "cancelled":
                await self._sync_claim(old_stock)
                await self._sync_claim(sale.stock_number)
            await self._commit()
        except SQLAlchemyError as e:
            return await self._failed(f"Update of sale {sale_id}", e)

        logger.info(f"Sale {sale_id} updated: {', '.join(sorted(patch))}")
        return Result.ok(_record(sale))

    async def delete(self, sale_id: int, expected_version: int | None = None) -> Result:
        try:
            sale = await self.session.get(Sale, sale_id, populate_existing=True)
            if sale is None:
                return Result.fail(f"Sale {sale_id} not found")
            if expected_version is not None and sale.version != expected_version:
                return Result.fail(f"Sale {sale_id} was modified by someone else (version "
                                   f"{sale.version}, expected {expected_version})")
            stock = sale.stock_number
            await self.session.delete(sale)
            await self.session.flush()
            await self._sync_claim(stock)
            await self._commit()
        except SQLAlchemyError as e:
            return await self._failed(f"Delete of sale {sale_id}", e)

        logger.info(f"Sale {sale_id} deleted (stock={stock!r})")
        return Result.ok()


# ════════════════════════════════════════════════
# ACTIVITY LOG
# ════════════════════════════════════════════════

class ActivityLog(_Repository):
    async def record(self, actor_id: int, action: str, details: str, sale_id: int | None = None) -> Result:
        entry = ActivityLogEntry(user_id=actor_id, action=action, details=details, sale_id=sale_id)
        try:
            self.session.add(entry)
            await self._commit()
        except SQLAlchemyError as e:
            return await self._failed(f"Activity log write ({action})", e)
        return Result.ok(entry.id)

    async def recent(self, user_id: int, limit: int = 20) -> Result:
        try:
            rows = (await self.session.execute(
                select(ActivityLogEntry)
                .where(ActivityLogEntry.user_id == user_id)
                .order_by(ActivityLogEntry.created_at.desc(), ActivityLogEntry.id.desc())
                .limit(limit)
            )).scalars().all()
        except SQLAlchemyError as e:
            return await self._failed(f"Activity lookup for user {user_id}", e)
        return Result.ok(list(rows))
