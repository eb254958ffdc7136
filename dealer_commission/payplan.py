"""Commission engine.

Turns a sale's line items (vehicle price, accessories, warranty, service
contract, SPIFF) into a fixed-shape commission breakdown, and splits the total
between the two salespeople on a shared sale.

Usage:
    breakdown = CommissionEngine().compute(sale_in)

    # Shared sale: own share / partner share
    split = split_commission(breakdown.total, sale_in.split_percentage)

Every function here is total: missing, non-numeric, non-finite or negative
amounts count as 0 and nothing raises (except ``split_commission`` on an
out-of-range percentage).
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from .config import DEFAULT_SPLIT_PERCENTAGE
from .utils import to_money

# ── Pay plan constants ───────────────────────────────────────────────────────

# (inclusive lower bound, flat commission), highest first
SALE_PRICE_TIERS: tuple[tuple[float, float], ...] = (
    (30000.0, 500.0),
    (20000.0, 400.0),
    (10000.0, 300.0),
)
MIN_SALE_COMMISSION = 200.0

# $100 for every full step of accessories. New vehicles get the first $998
# free before steps start counting.
NEW_ACCESSORIES_STEP = 998.0
USED_ACCESSORIES_STEP = 850.0

# Warranty and service contracts: $100 per full $900 of profit
PROFIT_STEP = 900.0

COMMISSION_UNIT = 100.0


# ── Result containers ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CommissionBreakdown:
    sale: float = 0.0
    accessories: float = 0.0
    warranty: float = 0.0
    service: float = 0.0
    spiff: float = 0.0
    total: float = field(init=False)

    def __post_init__(self):
        object.__setattr__(
            self, "total",
            float(self.sale + self.accessories + self.warranty + self.service + self.spiff),
        )

    def as_dict(self) -> dict[str, float]:
        return asdict(self)

    def as_columns(self) -> dict[str, float]:
        """Column values for the denormalized breakdown on ``Sale``."""
        return {
            "commission_sale": self.sale,
            "commission_accessories": self.accessories,
            "commission_warranty": self.warranty,
            "commission_service": self.service,
            "commission_spiff": self.spiff,
            "commission_total": self.total,
        }


@dataclass(frozen=True)
class CommissionSplit:
    own: float = 0.0
    partner: float = 0.0

    @property
    def total(self) -> float:
        return self.own + self.partner


# ── Per-line commissions ─────────────────────────────────────────────────────

def sale_commission(sale_price) -> float:
    price = to_money(sale_price)
    for floor_price, amount in SALE_PRICE_TIERS:
        if price >= floor_price:
            return amount
    return MIN_SALE_COMMISSION if price > 0 else 0.0


def accessories_commission(accessories_value, vehicle_type) -> float:
    value = to_money(accessories_value)
    if vehicle_type == "new":
        if value > NEW_ACCESSORIES_STEP:
            return math.floor((value - NEW_ACCESSORIES_STEP) / NEW_ACCESSORIES_STEP) * COMMISSION_UNIT
        return 0.0
    return math.floor(value / USED_ACCESSORIES_STEP) * COMMISSION_UNIT


def profit_commission(selling_price, cost) -> float:
    profit = to_money(selling_price) - to_money(cost)
    return float(max(0.0, math.floor(profit / PROFIT_STEP) * COMMISSION_UNIT))


def warranty_commission(selling_price, cost) -> float:
    return profit_commission(selling_price, cost)


def service_commission(price, cost) -> float:
    return profit_commission(price, cost)


def total_commission(
    sale_price=0.0,
    accessories_value=0.0,
    vehicle_type="new",
    warranty_selling_price=0.0,
    warranty_cost=0.0,
    service_price=0.0,
    service_cost=0.0,
    spiff_bonus=0.0,
) -> CommissionBreakdown:
    return CommissionBreakdown(
        sale=sale_commission(sale_price),
        accessories=accessories_commission(accessories_value, vehicle_type),
        warranty=warranty_commission(warranty_selling_price, warranty_cost),
        service=service_commission(service_price, service_cost),
        spiff=to_money(spiff_bonus),
    )


# ── Shared sales ─────────────────────────────────────────────────────────────

def split_commission(total, split_percentage: int | None, is_shared: bool = True) -> CommissionSplit:
    """Split ``total`` into (own, partner) by the requesting salesperson's
    ``split_percentage``. Amounts are rounded to cents and always add back up
    to the rounded total."""
    amount = round(to_money(total), 2)
    if not is_shared:
        return CommissionSplit(own=amount, partner=0.0)
    if isinstance(split_percentage, bool) or not isinstance(split_percentage, int) \
            or not 1 <= split_percentage <= 99:
        raise ValueError(f"split_percentage must be an integer 1-99, got {split_percentage!r}")
    own = round(amount * split_percentage / 100.0, 2)
    return CommissionSplit(own=own, partner=round(amount - own, 2))


# ── Engine ───────────────────────────────────────────────────────────────────

def _field(sale: Any, name: str, default=None):
    if isinstance(sale, Mapping):
        return sale.get(name, default)
    return getattr(sale, name, default)


def split_percentage_of(sale: Any) -> int:
    """The sale's own share in percent; unset means the default split."""
    pct = _field(sale, "split_percentage")
    return DEFAULT_SPLIT_PERCENTAGE if pct is None else pct


class CommissionEngine:
    """Computes the commission breakdown for a single sale.

    ``sale`` may be a ``SaleIn`` (Pydantic), a ``Sale`` (ORM) or a plain
    mapping with the same field names. Missing fields count as 0.
    """

    def compute(self, sale: Any) -> CommissionBreakdown:
        return total_commission(
            sale_price=_field(sale, "sale_price"),
            accessories_value=_field(sale, "accessories_value"),
            vehicle_type=_field(sale, "vehicle_type", "new"),
            warranty_selling_price=_field(sale, "warranty_selling_price"),
            warranty_cost=_field(sale, "warranty_cost"),
            service_price=_field(sale, "service_price"),
            service_cost=_field(sale, "service_cost"),
            spiff_bonus=_field(sale, "spiff_bonus"),
        )

    def split(self, sale: Any, breakdown: CommissionBreakdown | None = None) -> CommissionSplit:
        """Own / partner shares of a sale's commission."""
        breakdown = breakdown or self.compute(sale)
        return split_commission(
            breakdown.total,
            split_percentage_of(sale),
            is_shared=bool(_field(sale, "is_shared_sale", False)),
        )
