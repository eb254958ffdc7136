"""Double-claim detection for a single sale.

Run whenever a stock number is entered or edited: ``check_conflict`` asks the
store who else has recorded that stock number, and ``validate_shared_sale``
decides whether the sale may be saved anyway as a shared sale with the
original claimant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .schemas import SaleIn, SaleRecord
from .store import Result, SaleStore

logger = logging.getLogger("double_claim")

# Reasons returned by validate_shared_sale
OK = "ok"
NOT_SHARED = "not_shared"
NO_PARTNER = "no_partner"
PARTNER_MISMATCH = "partner_mismatch"

_MESSAGES = {
    NOT_SHARED: "This stock number is already claimed. Please enable shared sale or use a different stock number.",
    NO_PARTNER: "Please select the sales partner for this shared sale.",
    PARTNER_MISMATCH: "The selected sales partner does not match the original claimant of this stock number.",
}


@dataclass
class ConflictCheck:
    has_conflict: bool = False
    warning: str | None = None
    conflicting_sale: SaleRecord | None = None
    error: str | None = None


@dataclass
class SharedSaleValidation:
    is_valid: bool
    reason: str = OK
    message: str | None = None


def _claimant(sale: SaleRecord, fallback: str) -> str:
    return sale.salesperson_name or fallback


def conflict_warning(stock_number: str, sale: SaleRecord) -> str:
    return (f"Stock number {stock_number} is already claimed by "
            f"{_claimant(sale, 'another salesperson')} for customer {sale.customer_name}. "
            f"Please verify this is a legitimate shared sale or check the stock number.")


def double_claim_warning(stock_number: str, conflicting_sale: SaleRecord | None) -> str | None:
    """Long-form notice shown next to the sale form."""
    if conflicting_sale is None:
        return None
    return (
        "POTENTIAL DOUBLE CLAIM DETECTED\n"
        "\n"
        f"Stock Number: {stock_number}\n"
        f"Already claimed by: {_claimant(conflicting_sale, 'Unknown')}\n"
        f"Customer: {conflicting_sale.customer_name}\n"
        "\n"
        "If this is a legitimate shared sale, please:\n"
        '1. Enable "Shared Sale" option below\n'
        "2. Select the correct sales partner\n"
        "3. Ensure both parties agree to the commission split\n"
        "\n"
        "If this is an error, please verify the stock number or contact your manager."
    )


def validate_shared_sale(is_shared_sale: bool, partner_id: int | None,
                         conflicting_sale: SaleRecord | None) -> SharedSaleValidation:
    if conflicting_sale is None:
        return SharedSaleValidation(is_valid=True)
    if not is_shared_sale:
        reason = NOT_SHARED
    elif partner_id is None:
        reason = NO_PARTNER
    elif partner_id != conflicting_sale.salesperson_id:
        reason = PARTNER_MISMATCH
    else:
        return SharedSaleValidation(is_valid=True)
    return SharedSaleValidation(is_valid=False, reason=reason, message=_MESSAGES[reason])


class DoubleClaimDetector:
    def __init__(self, store: SaleStore):
        self.store = store

    async def check_conflict(self, stock_number: str, current_salesperson_id: int,
                             exclude_sale_id: int | None = None) -> ConflictCheck:
        """Is ``stock_number`` already claimed by a different salesperson?

        ``exclude_sale_id`` lets a sale being edited ignore itself. Every other
        salesperson's sale counts, whatever its status. A failed lookup
        reports no conflict with ``error`` set; it never raises.
        """
        stock_number = (stock_number or "").strip()
        if not stock_number:
            return ConflictCheck()

        result = await self.store.query(stock_number, exclude_sale_id)
        if not result.success:
            return ConflictCheck(error=result.error)

        conflicting = [
            s for s in result.data
            if s.salesperson_id != current_salesperson_id
        ]
        if not conflicting:
            return ConflictCheck()

        sale = conflicting[0]
        logger.info(f"Double claim on stock {stock_number!r}: salesperson {current_salesperson_id} "
                    f"vs sale {sale.id} (salesperson {sale.salesperson_id})")
        return ConflictCheck(
            has_conflict=True,
            warning=conflict_warning(stock_number, sale),
            conflicting_sale=sale,
        )

    async def record_sale(self, sale_in: SaleIn, salesperson_id: int) -> Result:
        """Save a new sale, refusing an unresolved double claim.

        The store re-checks the claim under its unique constraint, so a
        competing insert that lands between the check and the write still
        fails cleanly.
        """
        check = await self.check_conflict(sale_in.stock_number, salesperson_id)
        if check.error:
            return Result.fail(check.error)
        validation = validate_shared_sale(
            sale_in.is_shared_sale, sale_in.sales_partner_id, check.conflicting_sale,
        )
        if not validation.is_valid:
            return Result.fail(validation.message, data=validation)
        return await self.store.create(sale_in, salesperson_id)
