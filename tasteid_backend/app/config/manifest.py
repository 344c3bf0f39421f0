# tasteid_backend/app/config/manifest.py
from __future__ import annotations

import os
from typing import Dict, List

# ---- DB settings and environment mode ----
from .paths import DATA_DIR

_DEFAULT_SQLITE_PATH = (DATA_DIR / "tasteid.sqlite3").resolve()
_env_db_url = (os.getenv("TASTEID_DB_URL") or os.getenv("DATABASE_URL") or "").strip()

# Exported DB_URL (used by db/session.py)
DB_URL: str = _env_db_url or f"sqlite:///{_DEFAULT_SQLITE_PATH}"

# Optional env flags
APP_ENV: str = os.getenv("APP_ENV", "development")
DEBUG_MODE: bool = os.getenv("DEBUG", "0") not in ("", "0", "false", "False")

# ---- Data gates ----
# Recompute is rejected below this many rating events.
MIN_EVENTS_FOR_PROFILE: int = int(os.getenv("TASTEID_MIN_EVENTS", "3"))
# Richer displays (patterns, drift) are flagged on from this many events.
RICH_PROFILE_EVENTS: int = int(os.getenv("TASTEID_RICH_PROFILE_EVENTS", "20"))

# ---- Rulebook validation manifest ----
RULES_REQUIRED: List[str] = [
    "engine.yaml",
    "vibe_map.yaml",
    "archetypes.yaml",
]

def validate_manifest() -> Dict[str, object]:
    # library_loader resolves its paths through this package; import late
    from tasteid_backend.app.tasteid.library_loader import has_rules_file, inventory

    missing_required: List[str] = [name for name in RULES_REQUIRED if not has_rules_file(name)]
    status = "ok" if not missing_required else "missing_required"
    return {
        "status": status,
        "inventory": inventory(),
        "required": RULES_REQUIRED,
        "missing_required": missing_required,
    }


__all__ = [
    "DB_URL", "APP_ENV", "DEBUG_MODE",
    "MIN_EVENTS_FOR_PROFILE", "RICH_PROFILE_EVENTS",
    "validate_manifest",
]
