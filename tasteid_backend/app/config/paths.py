# tasteid_backend/app/config/paths.py
from __future__ import annotations

"""
Where the TasteID backend keeps its files.

    DATA_DIR           sqlite database (env DATA_DIR, default <repo>/data)
    TASTEID_RULES_DIR  YAML rulebooks  (env TASTEID_RULES_DIR, default app/tasteid/rules)

The rulebooks ship inside the package, so the default rules dir is resolved
from this file rather than from the working directory.
"""

import os
from pathlib import Path

APP_ROOT: Path = Path(__file__).resolve().parents[1]
REPO_ROOT: Path = APP_ROOT.parents[1]


def _env_path(name: str) -> Path | None:
    raw = (os.getenv(name) or "").strip().strip('"').strip("'")
    return Path(raw).expanduser().resolve() if raw else None


DATA_DIR: Path = _env_path("DATA_DIR") or (REPO_ROOT / "data").resolve()
TASTEID_RULES_DIR: Path = _env_path("TASTEID_RULES_DIR") or (APP_ROOT / "tasteid" / "rules")


def resolve_rules_file(name: str) -> Path:
    """Absolute path of a rulebook; existence is the caller's concern."""
    return TASTEID_RULES_DIR / name


def ensure_data_dir_exists() -> Path:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    return DATA_DIR


__all__ = [
    "APP_ROOT", "REPO_ROOT", "DATA_DIR", "TASTEID_RULES_DIR",
    "resolve_rules_file", "ensure_data_dir_exists",
]
