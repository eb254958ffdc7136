from __future__ import annotations

from datetime import date

import pytest

from dealer_commission.preferences import PreferenceStore


@pytest.fixture()
def prefs(db):
    return PreferenceStore(db)


@pytest.mark.asyncio
async def test_missing_key_loads_empty(prefs):
    result = await prefs.load(1, "goals")
    assert result.success and result.data == {}


@pytest.mark.asyncio
async def test_goals_accumulate_per_owner(prefs):
    assert (await prefs.save_goal(1, "monthly_units", 12)).success
    assert (await prefs.save_goal(1, "monthly_commission", 5000)).success
    assert (await prefs.save_goal(2, "monthly_units", 8)).success

    assert (await prefs.get_goals(1)).data == {"monthly_units": 12, "monthly_commission": 5000}
    assert (await prefs.get_goals(2)).data == {"monthly_units": 8}


@pytest.mark.asyncio
async def test_saving_a_goal_overwrites_the_old_target(prefs):
    await prefs.save_goal(1, "monthly_units", 12)
    await prefs.save_goal(1, "monthly_units", 15)
    assert (await prefs.get_goals(1)).data == {"monthly_units": 15}


@pytest.mark.asyncio
async def test_filters_round_trip_with_dates(prefs):
    assert (await prefs.get_filters(3)).data is None

    await prefs.save_filters(3, {
        "start_date": date(2026, 1, 1), "end_date": date(2026, 1, 31), "vehicle_type": "used",
    })
    saved = (await prefs.get_filters(3)).data

    assert saved["start_date"] == date(2026, 1, 1)
    assert saved["end_date"] == date(2026, 1, 31)
    assert saved["vehicle_type"] == "used"
    assert "saved_at" in saved
    assert (await prefs.get_filters(4)).data is None
