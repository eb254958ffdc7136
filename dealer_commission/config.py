import os

# ─── DB ───
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:////tmp/commission.db").strip()
DB_ECHO = os.environ.get("DB_ECHO", "").strip().lower() in ("1", "true", "yes")

# ─── Conflict resolution ───
# Appended (with an epoch-ms timestamp) to stock numbers corrected during
# double-claim resolution, e.g. "A100_CORRECTED_1718900000000".
CORRECTION_SUFFIX = os.environ.get("CORRECTION_SUFFIX", "_CORRECTED_")

# Default own share for a shared sale when none was captured at entry.
DEFAULT_SPLIT_PERCENTAGE = 50
