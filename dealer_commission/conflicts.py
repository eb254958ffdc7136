"""Team-wide double-claim alerts.

Alerts are never stored: they are re-derived from the current pending sales
every time, so a change notification only ever means "reload".
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable

from .schemas import SaleRecord
from .store import Result, SaleStore

logger = logging.getLogger("conflicts")


class Priority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_PRIORITY_RANK = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}


@dataclass
class ConflictAlert:
    stock_number: str
    sales: list[SaleRecord] = field(default_factory=list)
    priority: Priority = Priority.HIGH
    created_at: datetime | None = None

    @property
    def salesperson_ids(self) -> list[int]:
        seen: list[int] = []
        for s in self.sales:
            if s.salesperson_id not in seen:
                seen.append(s.salesperson_id)
        return seen


PriorityRule = Callable[[list[SaleRecord]], Priority]


def constant_high(sales: list[SaleRecord]) -> Priority:
    return Priority.HIGH


def aggregate_conflicts(sales: Iterable[SaleRecord],
                        priority_rule: PriorityRule | None = None) -> list[ConflictAlert]:
    """Group pending sales by stock number; every stock number held by two or
    more different salespeople becomes one alert.

    Several pending sales of one stock number by the same salesperson are not
    a double claim and raise no alert.
    """
    rule = priority_rule or constant_high
    groups: dict[str, list[SaleRecord]] = defaultdict(list)
    for sale in sales:
        if sale.status != "pending" or not sale.stock_number:
            continue
        groups[sale.stock_number].append(sale)

    alerts = []
    for stock_number, group in groups.items():
        if len(group) < 2 or len({s.salesperson_id for s in group}) < 2:
            continue
        group.sort(key=lambda s: (s.created_at, s.id))
        alerts.append(ConflictAlert(
            stock_number=stock_number,
            sales=group,
            priority=Priority(rule(group)),
            created_at=group[0].created_at,
        ))
    return alerts


def filter_alerts(alerts: Iterable[ConflictAlert], priority: str = "all") -> list[ConflictAlert]:
    if priority == "all":
        return list(alerts)
    wanted = Priority(priority)
    return [a for a in alerts if a.priority == wanted]


def sort_alerts(alerts: Iterable[ConflictAlert], by: str = "newest") -> list[ConflictAlert]:
    alerts = list(alerts)
    if by == "oldest":
        return sorted(alerts, key=lambda a: a.created_at)
    if by == "priority":
        return sorted(alerts, key=lambda a: _PRIORITY_RANK[a.priority], reverse=True)
    if by == "newest":
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)
    raise ValueError(f"Unknown sort order {by!r}")


async def load_team_alerts(store: SaleStore, manager_id: int,
                           priority_rule: PriorityRule | None = None) -> Result:
    """Alerts across the manager's own and direct reports' pending sales."""
    team = await store.team_ids(manager_id)
    if not team.success:
        return team
    pending = await store.pending_sales_for(team.data)
    if not pending.success:
        return pending
    alerts = aggregate_conflicts(pending.data, priority_rule)
    if alerts:
        logger.info(f"Manager {manager_id}: {len(alerts)} double claim alert(s) "
                    f"({', '.join(a.stock_number for a in alerts[:3])}"
                    f"{', ...' if len(alerts) > 3 else ''})")
    return Result.ok(alerts)
