# tasteid_backend/app/config/__init__.py
from __future__ import annotations

# Config surface used across the app: DB + data gates from manifest.py,
# file locations from paths.py.

from .manifest import (
    APP_ENV,
    DB_URL,
    DEBUG_MODE,
    MIN_EVENTS_FOR_PROFILE,
    RICH_PROFILE_EVENTS,
)
from .paths import (
    DATA_DIR,
    TASTEID_RULES_DIR,
    ensure_data_dir_exists,
    resolve_rules_file,
)

__all__ = [
    "APP_ENV", "DB_URL", "DEBUG_MODE",
    "MIN_EVENTS_FOR_PROFILE", "RICH_PROFILE_EVENTS",
    "DATA_DIR", "TASTEID_RULES_DIR", "ensure_data_dir_exists", "resolve_rules_file",
]
