from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from dealer_commission.conflicts import (
    ConflictAlert,
    Priority,
    aggregate_conflicts,
    filter_alerts,
    load_team_alerts,
    sort_alerts,
)
from dealer_commission.schemas import SaleRecord

T0 = datetime(2026, 3, 2, 9, 0)


def _sale(id, salesperson_id, stock, minutes=0, status="pending") -> SaleRecord:
    return SaleRecord(
        id=id, stock_number=stock, salesperson_id=salesperson_id, status=status,
        created_at=T0 + timedelta(minutes=minutes),
    )


def test_groups_pending_sales_by_stock_number():
    sales = [
        _sale(1, 1, "A100", minutes=10),
        _sale(2, 2, "A100", minutes=5),
        _sale(3, 1, "B200"),
        _sale(4, 2, "C300"),
    ]
    alerts = aggregate_conflicts(sales)

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.stock_number == "A100"
    assert [s.id for s in alert.sales] == [2, 1]
    assert alert.created_at == T0 + timedelta(minutes=5)
    assert alert.priority is Priority.HIGH
    assert alert.salesperson_ids == [2, 1]


def test_same_salesperson_twice_is_not_an_alert():
    assert aggregate_conflicts([_sale(1, 1, "A100"), _sale(2, 1, "A100", minutes=1)]) == []


def test_non_pending_and_blank_stock_numbers_are_skipped():
    sales = [
        _sale(1, 1, "A100"),
        _sale(2, 2, "A100", status="completed"),
        _sale(3, 1, ""),
        _sale(4, 2, ""),
    ]
    assert aggregate_conflicts(sales) == []


def test_three_claimants_form_one_alert():
    sales = [_sale(1, 1, "A100"), _sale(2, 2, "A100", 1), _sale(3, 3, "A100", 2)]
    (alert,) = aggregate_conflicts(sales)
    assert alert.salesperson_ids == [1, 2, 3]


def test_priority_rule_is_pluggable():
    sales = [_sale(1, 1, "A100"), _sale(2, 2, "A100", 1)]
    (alert,) = aggregate_conflicts(sales, priority_rule=lambda group: "low")
    assert alert.priority is Priority.LOW


def _alert(stock, minutes, priority=Priority.HIGH) -> ConflictAlert:
    return ConflictAlert(stock_number=stock, priority=priority, created_at=T0 + timedelta(minutes=minutes))


def test_filter_and_sort():
    alerts = [
        _alert("A100", 0, Priority.LOW),
        _alert("B200", 30, Priority.HIGH),
        _alert("C300", 10, Priority.MEDIUM),
    ]
    assert [a.stock_number for a in filter_alerts(alerts, "high")] == ["B200"]
    assert len(filter_alerts(alerts)) == 3
    assert [a.stock_number for a in sort_alerts(alerts)] == ["B200", "C300", "A100"]
    assert [a.stock_number for a in sort_alerts(alerts, "oldest")] == ["A100", "C300", "B200"]
    assert [a.stock_number for a in sort_alerts(alerts, "priority")] == ["B200", "C300", "A100"]

    with pytest.raises(ValueError):
        sort_alerts(alerts, "random")
    with pytest.raises(ValueError):
        filter_alerts(alerts, "urgent")


@pytest.mark.asyncio
async def test_team_alerts_cover_manager_and_direct_reports(store, make_salesperson, make_sale):
    boss = await make_salesperson("Morgan Manager", role="manager")
    alice = await make_salesperson("Alice Ames", manager_id=boss.id)
    bob = await make_salesperson("Bob Baker", manager_id=boss.id)
    outsider = await make_salesperson("Olive Other")

    first = await make_sale(alice, "A100", "Dana")
    second = await make_sale(bob, "A100", "Eli", minutes=5)
    await make_sale(alice, "B200")
    await make_sale(outsider, "B200", minutes=1)

    result = await load_team_alerts(store, boss.id)

    assert result.success
    (alert,) = result.data
    assert alert.stock_number == "A100"
    assert [s.id for s in alert.sales] == [first.id, second.id]
    assert [s.salesperson_name for s in alert.sales] == ["Alice Ames", "Bob Baker"]
    assert alert.created_at == first.created_at


@pytest.mark.asyncio
async def test_team_without_conflicts_has_no_alerts(store, make_salesperson, make_sale):
    boss = await make_salesperson("Morgan Manager", role="manager")
    alice = await make_salesperson("Alice Ames", manager_id=boss.id)
    await make_sale(alice, "A100")

    result = await load_team_alerts(store, boss.id)
    assert result.success and result.data == []
