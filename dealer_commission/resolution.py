"""Double-claim resolution workflow.

Lifecycle of one alert:
    PENDING → SHARED_CONVERSION    (legitimate_shared)
    PENDING → CORRECTION_APPLIED   (error_correction)
    PENDING → CANCELLED            (cancel_duplicate)

All three targets are terminal. There are no implicit transitions: an action
not listed for the current state, a blank resolution note, or a keep-sale that
isn't part of the alert raises ``ResolutionError`` before anything is written.

Each resolution runs as one transaction: the sale writes and the
"Double Claim Resolved" activity entry commit together or not at all. Writes
carry the version each sale had when the alert was derived, so a sale edited
in the meantime aborts the resolution instead of being overwritten.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from . import config
from .conflicts import ConflictAlert
from .schemas import SaleRecord
from .store import ActivityLog, AtomicAbort, Result, SaleStore, atomic
from .utils import _utcnow, epoch_ms

logger = logging.getLogger("resolution")

ACTIVITY_ACTION = "Double Claim Resolved"


class ResolutionState(str, enum.Enum):
    PENDING = "pending"
    SHARED_CONVERSION = "shared_conversion"
    CORRECTION_APPLIED = "correction_applied"
    CANCELLED = "cancelled"


class ResolutionAction(str, enum.Enum):
    LEGITIMATE_SHARED = "legitimate_shared"
    ERROR_CORRECTION = "error_correction"
    CANCEL_DUPLICATE = "cancel_duplicate"


# {from_state: {action: to_state}}
_TRANSITIONS: dict[ResolutionState, dict[ResolutionAction, ResolutionState]] = {
    ResolutionState.PENDING: {
        ResolutionAction.LEGITIMATE_SHARED: ResolutionState.SHARED_CONVERSION,
        ResolutionAction.ERROR_CORRECTION: ResolutionState.CORRECTION_APPLIED,
        ResolutionAction.CANCEL_DUPLICATE: ResolutionState.CANCELLED,
    },
    # Terminal states: no outgoing transitions
    ResolutionState.SHARED_CONVERSION: {},
    ResolutionState.CORRECTION_APPLIED: {},
    ResolutionState.CANCELLED: {},
}


class ResolutionError(ValueError):
    """A resolution request that can't be applied to this alert."""


@dataclass(frozen=True)
class ResolutionRequest:
    action: ResolutionAction
    note: str
    actor_id: int
    keep_sale_id: int | None = None


@dataclass
class ResolutionOutcome:
    state: ResolutionState
    stock_number: str
    kept_sale_id: int
    updated_sale_ids: list[int] = field(default_factory=list)
    deleted_sale_ids: list[int] = field(default_factory=list)
    log_entry_id: int | None = None


def _require(result: Result) -> Result:
    if not result.success:
        raise AtomicAbort(result)
    return result


class ConflictResolutionWorkflow:
    def __init__(self, alert: ConflictAlert, store: SaleStore,
                 activity_log: ActivityLog | None = None,
                 clock: Callable[[], datetime] = _utcnow):
        if len(alert.sales) < 2:
            raise ResolutionError(f"Alert for stock {alert.stock_number} has fewer than two sales")
        self.alert = alert
        self.store = store
        self.activity_log = activity_log or ActivityLog(store.session)
        self.clock = clock
        self.state = ResolutionState.PENDING

    @property
    def is_resolved(self) -> bool:
        return not _TRANSITIONS[self.state]

    @staticmethod
    def valid_actions(state: ResolutionState) -> set[ResolutionAction]:
        return set(_TRANSITIONS.get(state, {}))

    def next_state(self, action: ResolutionAction) -> ResolutionState:
        allowed = _TRANSITIONS.get(self.state, {})
        if action not in allowed:
            allowed_str = ", ".join(sorted(a.value for a in allowed)) or "none"
            raise ResolutionError(
                f"Invalid resolution for stock {self.alert.stock_number}: "
                f"{self.state.value} --{action.value}-->. Allowed from {self.state.value}: [{allowed_str}]"
            )
        return allowed[action]

    def _keep_sale(self, keep_sale_id: int | None) -> SaleRecord:
        if keep_sale_id is None:
            return self.alert.sales[0]
        for sale in self.alert.sales:
            if sale.id == keep_sale_id:
                return sale
        raise ResolutionError(f"Sale {keep_sale_id} is not part of the alert for stock {self.alert.stock_number}")

    def _others(self, keep: SaleRecord) -> list[SaleRecord]:
        return [s for s in self.alert.sales if s.id != keep.id]

    # ── Resolution paths ─────────────────────────────────────────────────────

    def _shared_partner(self, keep: SaleRecord) -> int:
        partners = [pid for pid in self.alert.salesperson_ids if pid != keep.salesperson_id]
        if len(partners) != 1:
            raise ResolutionError(
                f"Stock {self.alert.stock_number} is claimed by {len(partners) + 1} salespeople; "
                f"a shared sale needs exactly two"
            )
        return partners[0]

    async def _convert_to_shared(self, keep: SaleRecord, outcome: ResolutionOutcome) -> None:
        _require(await self.store.update(keep.id, {
            "is_shared_sale": True,
            "sales_partner_id": self._shared_partner(keep),
            "status": "completed",
        }, expected_version=keep.version))
        outcome.updated_sale_ids.append(keep.id)
        for dup in self._others(keep):
            _require(await self.store.delete(dup.id, expected_version=dup.version))
            outcome.deleted_sale_ids.append(dup.id)

    async def _correct_stock_numbers(self, keep: SaleRecord, outcome: ResolutionOutcome) -> None:
        stamp = epoch_ms(self.clock())
        # one millisecond apart so every corrected number stays unique
        for i, sale in enumerate(self._others(keep)):
            _require(await self.store.update(sale.id, {
                "stock_number": f"{sale.stock_number}{config.CORRECTION_SUFFIX}{stamp + i}",
                "status": "completed",
            }, expected_version=sale.version))
            outcome.updated_sale_ids.append(sale.id)

    async def _cancel_duplicates(self, keep: SaleRecord, outcome: ResolutionOutcome) -> None:
        for sale in self._others(keep):
            _require(await self.store.update(sale.id, {"status": "cancelled"}, expected_version=sale.version))
            outcome.updated_sale_ids.append(sale.id)

    # ── Entry point ──────────────────────────────────────────────────────────

    async def resolve(self, request: ResolutionRequest) -> Result:
        """Apply ``request`` to the alert.

        Raises ``ResolutionError`` for requests that are invalid up front.
        Store failures roll back every write and come back as a failed
        ``Result``; the workflow then stays ``PENDING`` and may be retried.
        Inside a caller's own ``atomic()`` block the failure is re-raised
        instead, so the caller's block rolls back the partial writes.
        """
        action = ResolutionAction(request.action)
        note = (request.note or "").strip()
        if not note:
            raise ResolutionError("A resolution note is required")
        target = self.next_state(action)
        keep = self._keep_sale(request.keep_sale_id)
        if action is ResolutionAction.LEGITIMATE_SHARED:
            self._shared_partner(keep)

        outcome = ResolutionOutcome(state=target, stock_number=self.alert.stock_number, kept_sale_id=keep.id)
        paths = {
            ResolutionAction.LEGITIMATE_SHARED: self._convert_to_shared,
            ResolutionAction.ERROR_CORRECTION: self._correct_stock_numbers,
            ResolutionAction.CANCEL_DUPLICATE: self._cancel_duplicates,
        }
        details = (f"Resolved stock number {self.alert.stock_number} conflict via {action.value}. "
                   f"Notes: {note}")
        nested = self.store.in_atomic
        try:
            async with atomic(self.store.session):
                await paths[action](keep, outcome)
                logged = _require(await self.activity_log.record(
                    request.actor_id, ACTIVITY_ACTION, details, sale_id=keep.id,
                ))
                outcome.log_entry_id = logged.data
        except AtomicAbort as e:
            if nested:
                raise
            logger.warning(f"Resolution of stock {self.alert.stock_number} via {action.value} "
                           f"rolled back: {e.result.error}")
            return e.result
        except SQLAlchemyError as e:
            if nested:
                raise
            logger.warning(f"Resolution of stock {self.alert.stock_number} via {action.value} "
                           f"failed at commit: {e}")
            return Result.fail(f"Resolution commit failed: {e.__class__.__name__}")

        self.state = target
        logger.info(f"Stock {self.alert.stock_number} resolved by {request.actor_id}: "
                    f"{action.value} -> {target.value} (kept sale {keep.id})")
        return Result.ok(outcome)
