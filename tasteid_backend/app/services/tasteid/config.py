# tasteid_backend/app/services/tasteid/config.py
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Tuple

from tasteid_backend.app.tasteid.library_loader import get_engine_rules

# Purpose:
# Thresholds for each engine component. Defaults live here; rules/engine.yaml
# overrides any subset of them per section. Unknown keys are ignored.


@dataclass
class SignatureConfig:
    population_mean_rating: float = 6.5
    population_std_dev: float = 1.35
    skew_std_devs: float = 0.75
    reactive_window_years: int = 1
    extreme_low_rating: float = 2.0
    extreme_high_rating: float = 9.0
    deep_dive_prior_ratings: int = 3
    full_confidence_events: int = 20
    secondary_tolerance: float = 0.10
    polarity_std_dev_scale: float = 3.0
    top_genres: int = 5
    top_artists: int = 10
    dominant_dimensions: int = 3
    standout_dimensions: int = 3


@dataclass
class PatternConfig:
    min_observations: int = 5
    emergence: float = 0.40      # new/faded → emerging
    confirmation: float = 0.60   # emerging → confirmed (with span)
    fade: float = 0.20           # emerging/confirmed → faded
    min_span_events: int = 20
    min_span_days: int = 30
    fade_absence_events: int = 30
    drop_absence_events: int = 120


@dataclass
class ConsolidationConfig:
    episode_gap_hours: float = 6.0
    discontinuity_window: int = 4
    discontinuity_threshold: float = 0.10
    trend_window_episodes: int = 5
    trend_relative_change: float = 0.25
    min_taste_ratings: int = 2
    decay: float = 0.8
    prune_below: float = 0.01
    max_stored_episodes: int = 50
    recurring_genre_episodes: int = 2


@dataclass
class DriftConfig:
    disappearance_min_new_events: int = 20
    signature_drift_threshold: float = 0.15
    rating_average_delta: float = 0.5
    rating_std_dev_delta: float = 0.75
    significant_severity: float = 0.3
    max_alerts: int = 100
    contradictions: List[Tuple[str, str]] = field(default_factory=lambda: [
        ("critical_ear", "music_optimist"),
        ("new_release_hunter", "archive_diver"),
        ("genre_purist", "genre_explorer"),
    ])


@dataclass
class EngineConfig:
    signature: SignatureConfig = field(default_factory=SignatureConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    consolidation: ConsolidationConfig = field(default_factory=ConsolidationConfig)
    drift: DriftConfig = field(default_factory=DriftConfig)


def _overlay(cfg: Any, section: Dict[str, Any]) -> Any:
    if not isinstance(section, dict):
        return cfg
    for f in fields(cfg):
        if f.name not in section or section[f.name] is None:
            continue
        val = section[f.name]
        if f.name == "contradictions":
            val = [tuple(pair) for pair in val if isinstance(pair, (list, tuple)) and len(pair) == 2]
        elif isinstance(getattr(cfg, f.name), bool):
            val = bool(val)
        elif isinstance(getattr(cfg, f.name), int):
            val = int(val)
        elif isinstance(getattr(cfg, f.name), float):
            val = float(val)
        setattr(cfg, f.name, val)
    return cfg


def load_engine_config(rules: Dict[str, Any] | None = None) -> EngineConfig:
    """Defaults overlaid with rules/engine.yaml (or an explicit rules dict, for tests)."""
    if rules is None:
        rules = get_engine_rules()
    return EngineConfig(
        signature=_overlay(SignatureConfig(), rules.get("signature") or {}),
        patterns=_overlay(PatternConfig(), rules.get("patterns") or {}),
        consolidation=_overlay(ConsolidationConfig(), rules.get("consolidation") or {}),
        drift=_overlay(DriftConfig(), rules.get("drift") or {}),
    )
