from __future__ import annotations

from datetime import datetime

import pytest

from dealer_commission.double_claim import (
    NO_PARTNER,
    NOT_SHARED,
    OK,
    PARTNER_MISMATCH,
    DoubleClaimDetector,
    double_claim_warning,
    validate_shared_sale,
)
from dealer_commission.schemas import SaleIn, SaleRecord
from dealer_commission.store import Result


def _record(salesperson_id=1, name="Alice Ames", customer="Dana") -> SaleRecord:
    return SaleRecord(
        id=10, stock_number="A100", salesperson_id=salesperson_id, salesperson_name=name,
        customer_name=customer, created_at=datetime(2026, 3, 2, 9, 0),
    )


# ── Pure rules ───────────────────────────────────────────────────────────────

def test_no_conflict_is_always_valid():
    v = validate_shared_sale(False, None, None)
    assert v.is_valid and v.reason == OK


@pytest.mark.parametrize("shared, partner, reason", [
    (False, None, NOT_SHARED),
    (True, None, NO_PARTNER),
    (True, 2, PARTNER_MISMATCH),
])
def test_invalid_shared_sale_reasons(shared, partner, reason):
    v = validate_shared_sale(shared, partner, _record(salesperson_id=1))
    assert not v.is_valid
    assert v.reason == reason
    assert v.message


def test_partner_matching_claimant_is_valid():
    assert validate_shared_sale(True, 1, _record(salesperson_id=1)).is_valid


def test_long_warning_names_claimant_and_customer():
    text = double_claim_warning("A100", _record())
    assert text.startswith("POTENTIAL DOUBLE CLAIM DETECTED")
    assert "Already claimed by: Alice Ames" in text
    assert "Customer: Dana" in text
    assert double_claim_warning("A100", None) is None
    assert "Already claimed by: Unknown" in double_claim_warning("A100", _record(name=None))


# ── Detector against the store ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_own_sales_are_not_a_conflict(store, make_salesperson, make_sale):
    alice = await make_salesperson("Alice Ames")
    await make_sale(alice, "A100")

    check = await DoubleClaimDetector(store).check_conflict("A100", alice.id)

    assert not check.has_conflict
    assert check.warning is None


@pytest.mark.asyncio
async def test_conflict_warning_names_the_other_salesperson(store, make_salesperson, make_sale):
    alice = await make_salesperson("Alice Ames")
    bob = await make_salesperson("Bob Baker")
    sale = await make_sale(alice, "A100", "Dana")

    check = await DoubleClaimDetector(store).check_conflict(" A100 ", bob.id)

    assert check.has_conflict
    assert check.conflicting_sale.id == sale.id
    assert check.warning == (
        "Stock number A100 is already claimed by Alice Ames for customer Dana. "
        "Please verify this is a legitimate shared sale or check the stock number."
    )


@pytest.mark.asyncio
async def test_blank_stock_number_never_conflicts(store, make_salesperson, make_sale):
    alice = await make_salesperson("Alice Ames")
    await make_sale(alice, "")

    assert not (await DoubleClaimDetector(store).check_conflict("   ", 999)).has_conflict


@pytest.mark.asyncio
async def test_excluded_sale_is_ignored(store, make_salesperson, make_sale):
    alice = await make_salesperson("Alice Ames")
    bob = await make_salesperson("Bob Baker")
    live = await make_sale(alice, "A100")

    check = await DoubleClaimDetector(store).check_conflict("A100", bob.id, exclude_sale_id=live.id)

    assert not check.has_conflict


@pytest.mark.asyncio
async def test_cancelled_sale_of_another_salesperson_still_conflicts(store, make_salesperson, make_sale):
    alice = await make_salesperson("Alice Ames")
    bob = await make_salesperson("Bob Baker")
    cancelled = await make_sale(alice, "B200", "Dana", status="cancelled")

    check = await DoubleClaimDetector(store).check_conflict("B200", bob.id)

    assert check.has_conflict
    assert check.conflicting_sale.id == cancelled.id
    assert check.conflicting_sale.status == "cancelled"


@pytest.mark.asyncio
async def test_store_failure_is_reported_not_raised():
    class BrokenStore:
        async def query(self, stock_number, exclude_id=None):
            return Result.fail("Stock number lookup failed: OperationalError")

    check = await DoubleClaimDetector(BrokenStore()).check_conflict("A100", 1)

    assert not check.has_conflict
    assert check.error == "Stock number lookup failed: OperationalError"


@pytest.mark.asyncio
async def test_record_sale_refuses_plain_double_claim(store, make_salesperson):
    alice = await make_salesperson("Alice Ames")
    bob = await make_salesperson("Bob Baker")
    detector = DoubleClaimDetector(store)
    assert (await detector.record_sale(SaleIn(stock_number="A100"), alice.id)).success

    refused = await detector.record_sale(SaleIn(stock_number="A100"), bob.id)
    shared = await detector.record_sale(
        SaleIn(stock_number="A100", is_shared_sale=True, sales_partner_id=alice.id), bob.id,
    )

    assert not refused.success
    assert refused.data.reason == NOT_SHARED
    assert shared.success
