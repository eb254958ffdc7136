"""Per-salesperson earnings over completed sales.

Shared sales are credited by ``split_percentage``: the salesperson who entered
the sale gets their own share and the partner gets the remainder. There is no
flat 50/50 path.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .payplan import _field, split_commission, split_percentage_of
from .utils import to_money


@dataclass
class SalesStats:
    total_commissions: float = 0.0
    total_sales_value: float = 0.0
    new_cars_sold: int = 0
    used_cars_sold: int = 0
    total_sales: int = 0


def commission_share(sale, user_id: int) -> float:
    """The part of ``sale.commission_total`` that belongs to ``user_id``."""
    total = to_money(_field(sale, "commission_total"))
    is_shared = bool(_field(sale, "is_shared_sale", False))
    owner = _field(sale, "salesperson_id")
    partner = _field(sale, "sales_partner_id")

    if not is_shared or partner is None:
        return total if owner == user_id else 0.0

    split = split_commission(total, split_percentage_of(sale))
    if owner == user_id:
        return split.own
    if partner == user_id:
        return split.partner
    return 0.0


def sales_stats(sales: Iterable, user_id: int | None = None) -> SalesStats:
    """Totals over completed sales; with ``user_id``, only that salesperson's
    owned or partnered sales, with commission counted by share."""
    stats = SalesStats()
    for sale in sales:
        if _field(sale, "status") != "completed":
            continue
        if user_id is not None:
            if user_id not in (_field(sale, "salesperson_id"), _field(sale, "sales_partner_id")):
                continue
            stats.total_commissions += commission_share(sale, user_id)
        else:
            stats.total_commissions += to_money(_field(sale, "commission_total"))
        stats.total_sales_value += to_money(_field(sale, "sale_price"))
        vt = _field(sale, "vehicle_type")
        if vt == "new":
            stats.new_cars_sold += 1
        elif vt == "used":
            stats.used_cars_sold += 1
        stats.total_sales += 1
    stats.total_commissions = round(stats.total_commissions, 2)
    return stats
