import math
from datetime import datetime, timezone


def _utcnow() -> datetime:
    """Naive UTC now, for TIMESTAMP columns (not TIMESTAMPTZ)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_ms(dt: datetime | None = None) -> int:
    dt = dt or _utcnow()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def to_money(v) -> float:
    """Coerce anything to a non-negative float amount.

    Strings like "$1,200" are accepted. Missing, non-numeric, non-finite
    and negative values all come back as 0.0.
    """
    if v is None or isinstance(v, bool):
        return 0.0
    if isinstance(v, str):
        v = v.replace("$", "").replace(",", "").strip()
        if not v:
            return 0.0
    try:
        f = float(v)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(f) or f < 0:
        return 0.0
    return f


def parse_date(s: str | None):
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%m-%d-%Y"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None
