# tasteid_backend/app/tasteid/library_loader.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict

import yaml  # PyYAML

from tasteid_backend.app.config.paths import resolve_rules_file
from tasteid_backend.app.models.tasteid import SIGNATURE_DIMENSIONS

# Purpose:
# Read-once access to the YAML rulebooks under tasteid/rules:
# - engine.yaml      threshold overrides per component (optional)
# - vibe_map.yaml    versioned vibe tag → signature dimension weights
# - archetypes.yaml  archetype prototypes over the normalized signature
# Tables are checked on load so a bad edit fails at startup, not mid-recompute.

log = logging.getLogger("tasteid.library_loader")
if not log.handlers:
    handler = logging.StreamHandler()
    log.addHandler(handler)
    log.setLevel(logging.INFO)

_RULES_ENGINE = "engine.yaml"
_RULES_VIBE_MAP = "vibe_map.yaml"
_RULES_ARCHETYPES = "archetypes.yaml"


# ---------- Loading ----------

@lru_cache(maxsize=16)
def load_yaml_rules(filename: str) -> Any:
    """Parsed rulebook. FileNotFoundError if absent, ValueError if not valid YAML."""
    path = resolve_rules_file(filename)
    if not path.exists():
        raise FileNotFoundError(f"Rules file not found: {path}")
    try:
        obj = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    log.info(f"[rules] loaded {filename} from {path}")
    return obj

def has_rules_file(filename: str) -> bool:
    return resolve_rules_file(filename).exists()


# ---------- Validation ----------

def _check_weights(where: str, weights: Any) -> None:
    if not isinstance(weights, dict):
        raise ValueError(f"{where}: expected a mapping of dimension → weight")
    for dim, w in weights.items():
        if dim not in SIGNATURE_DIMENSIONS:
            raise ValueError(f"{where}: unknown signature dimension '{dim}'")
        if not isinstance(w, (int, float)) or w < 0:
            raise ValueError(f"{where}: weight for '{dim}' must be a non-negative number")

def _check_range(where: str, dim: str, rng: Any) -> None:
    if dim not in SIGNATURE_DIMENSIONS:
        raise ValueError(f"{where}: unknown signature dimension '{dim}'")
    lo, hi = (rng.get("min"), rng.get("max")) if isinstance(rng, dict) else (None, None)
    if not all(isinstance(v, (int, float)) for v in (lo, hi)) or not 0 <= lo <= hi <= 1:
        raise ValueError(f"{where}: '{dim}' needs 0 <= min <= max <= 1")


# ---------- Well-known files ----------

def get_engine_rules() -> Dict[str, Any]:
    """Section → overrides (signature / patterns / consolidation / drift). Missing file → {}."""
    if not has_rules_file(_RULES_ENGINE):
        log.info(f"[rules] optional file missing: {_RULES_ENGINE}; using built-in defaults.")
        return {}
    data = load_yaml_rules(_RULES_ENGINE)
    return data if isinstance(data, dict) else {}

def get_vibe_map() -> Dict[str, Any]:
    """{"version": "...", "tags": {"nostalgic": {"emotional": 0.5, "comfort": 0.5}, ...}}"""
    data = load_yaml_rules(_RULES_VIBE_MAP)
    if not isinstance(data, dict) or not isinstance(data.get("tags"), dict):
        raise ValueError(f"{_RULES_VIBE_MAP} must define a 'tags' mapping")
    for tag, weights in data["tags"].items():
        _check_weights(f"{_RULES_VIBE_MAP} tag '{tag}'", weights)
    return data

def get_archetypes() -> Dict[str, Any]:
    """{"version": "...", "archetypes": {"genre-fluid": {"name": ..., "prototype": {...}}}, "typical_ranges": {...}}"""
    data = load_yaml_rules(_RULES_ARCHETYPES)
    if not isinstance(data, dict) or not isinstance(data.get("archetypes"), dict) or not data["archetypes"]:
        raise ValueError(f"{_RULES_ARCHETYPES} must define a non-empty 'archetypes' mapping")
    for aid, spec in data["archetypes"].items():
        _check_weights(f"{_RULES_ARCHETYPES} '{aid}'", (spec or {}).get("prototype"))
    for dim, rng in (data.get("typical_ranges") or {}).items():
        _check_range(f"{_RULES_ARCHETYPES} typical_ranges", dim, rng)
    return data


def inventory() -> Dict[str, Any]:
    """Which rulebooks are present. Safe to call from a health route."""
    return {
        "rules_dir": str(resolve_rules_file("")),
        "engine": has_rules_file(_RULES_ENGINE),
        "vibe_map": has_rules_file(_RULES_VIBE_MAP),
        "archetypes": has_rules_file(_RULES_ARCHETYPES),
    }
