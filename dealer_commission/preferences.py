"""Per-user goals and saved filters.

Values are JSON objects stored under ``(owner_id, key)``; one owner can never
read or overwrite another owner's keys.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .models import UserPreference
from .store import Result, _Repository
from .utils import _utcnow, parse_date

GOALS_KEY = "goals"
FILTERS_KEY = "filters"

_FILTER_DATES = ("start_date", "end_date")


class PreferenceStore(_Repository):
    async def _row(self, owner_id: int, key: str) -> UserPreference | None:
        return (await self.session.execute(
            select(UserPreference).where(UserPreference.owner_id == owner_id, UserPreference.key == key)
        )).scalar_one_or_none()

    async def load(self, owner_id: int, key: str) -> Result:
        try:
            row = await self._row(owner_id, key)
        except SQLAlchemyError as e:
            return await self._failed(f"Load of {key!r} for user {owner_id}", e)
        return Result.ok(dict(row.value or {}) if row else {})

    async def save(self, owner_id: int, key: str, value: dict[str, Any]) -> Result:
        try:
            row = await self._row(owner_id, key)
            if row is None:
                self.session.add(UserPreference(owner_id=owner_id, key=key, value=dict(value)))
            else:
                # new dict so the JSON column registers the change
                row.value = dict(value)
            await self._commit()
        except SQLAlchemyError as e:
            return await self._failed(f"Save of {key!r} for user {owner_id}", e)
        return Result.ok()

    # ── Goals ────────────────────────────────────────────────────────────────

    async def get_goals(self, owner_id: int) -> Result:
        return await self.load(owner_id, GOALS_KEY)

    async def save_goal(self, owner_id: int, goal_id: str, target: float) -> Result:
        current = await self.get_goals(owner_id)
        if not current.success:
            return current
        goals = current.data
        goals[goal_id] = target
        return await self.save(owner_id, GOALS_KEY, goals)

    # ── Filters ──────────────────────────────────────────────────────────────

    async def save_filters(self, owner_id: int, filters: dict[str, Any]) -> Result:
        data = dict(filters)
        for k in _FILTER_DATES:
            if isinstance(data.get(k), (date, datetime)):
                data[k] = data[k].isoformat()[:10]
        data["saved_at"] = _utcnow().isoformat()
        return await self.save(owner_id, FILTERS_KEY, data)

    async def get_filters(self, owner_id: int) -> Result:
        """Saved filters with dates parsed back, or ``None`` if never saved."""
        loaded = await self.load(owner_id, FILTERS_KEY)
        if not loaded.success or not loaded.data:
            return Result.ok(None) if loaded.success else loaded
        data = loaded.data
        for k in _FILTER_DATES:
            if isinstance(data.get(k), str):
                data[k] = parse_date(data[k])
        return Result.ok(data)
