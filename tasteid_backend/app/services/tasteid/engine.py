# tasteid_backend/app/services/tasteid/engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tasteid_backend.app.config import MIN_EVENTS_FOR_PROFILE, RICH_PROFILE_EVENTS
from tasteid_backend.app.models.tasteid import (
    ConsolidatedTaste,
    DriftAlert,
    Episode,
    EpisodeStats,
    Pattern,
    PatternStatus,
    RatingEvent,
    SignatureResult,
    Snapshot,
    sort_events,
)
from tasteid_backend.app.services.tasteid.config import EngineConfig, load_engine_config
from tasteid_backend.app.services.tasteid.consolidation import ConsolidationEngine
from tasteid_backend.app.services.tasteid.drift import DriftDetector
from tasteid_backend.app.services.tasteid.errors import (
    InsufficientDataError,
    TasteComputationError,
    TasteIDError,
)
from tasteid_backend.app.services.tasteid.patterns import PatternLearningEngine
from tasteid_backend.app.services.tasteid.signature import SignatureComputer

# Purpose:
# newSnapshot = f(full history, prior snapshot).
# Runs the four components in order and returns everything the persistence
# layer needs in one value. No I/O, no wall clock: "now" is the latest rating.

log = logging.getLogger("tasteid.engine")
if not log.handlers:
    handler = logging.StreamHandler()
    log.addHandler(handler)
    log.setLevel(logging.INFO)

SNAPSHOT_KEYS = ("pattern_state", "cognitive_graph", "episode_history", "drift_state")


@dataclass
class TasteComputation:
    signature_result: SignatureResult
    patterns: List[Pattern]
    episodes: List[Episode]
    consolidated_tastes: List[ConsolidatedTaste]
    episode_stats: EpisodeStats
    drift_alerts: List[DriftAlert]
    significant_drifts: List[DriftAlert]
    metrics: Dict[str, Any] = field(default_factory=dict)
    snapshot: Snapshot = field(default_factory=Snapshot)

    def summary(self, max_tastes: int = 20, recent_episodes: int = 10) -> Dict[str, Any]:
        """Read-only derived views stored alongside the snapshot for the API layer."""
        return {
            "consolidated_tastes": [t.model_dump(mode="json") for t in self.consolidated_tastes[:max_tastes]],
            "episode_stats": self.episode_stats.model_dump(mode="json"),
            "recent_episodes": [e.model_dump(mode="json") for e in reversed(self.episodes[-recent_episodes:])],
            "significant_drifts": [a.model_dump(mode="json") for a in self.significant_drifts],
            "patterns_by_importance": [p.id for p in self.patterns],
            "metrics": dict(self.metrics),
        }


def _prior_blobs(prior: Snapshot | Mapping[str, Any] | None) -> Dict[str, Any]:
    if prior is None:
        return {}
    if isinstance(prior, Snapshot):
        return prior.model_dump(mode="json")
    return {k: prior.get(k) for k in SNAPSHOT_KEYS}


def compute_taste_profile(
    events: Sequence[RatingEvent],
    prior: Snapshot | Mapping[str, Any] | None = None,
    *,
    config: Optional[EngineConfig] = None,
    signature_computer: Optional[SignatureComputer] = None,
    min_events: int = MIN_EVENTS_FOR_PROFILE,
) -> TasteComputation:
    """
    Full batch recompute for one user.

    Raises InsufficientDataError below `min_events`; any other failure is
    wrapped in TasteComputationError so the caller writes nothing.
    Corrupt prior blobs are absorbed per component (cold start, logged).
    """
    if len(events) < min_events:
        raise InsufficientDataError(len(events), min_events)

    try:
        cfg = config or load_engine_config()
        ordered = sort_events(list(events))
        as_of = ordered[-1].created_at
        blobs = _prior_blobs(prior)

        # 1) signature / archetype / rating style
        sig_computer = signature_computer or SignatureComputer(cfg.signature)
        sig = sig_computer.compute(ordered)

        # 2) patterns (resume from prior lifecycle state)
        pattern_engine = PatternLearningEngine(cfg.patterns)
        pattern_engine.load_from_json(blobs.get("pattern_state"))
        patterns = pattern_engine.detect_patterns_from_reviews(ordered)

        # 3) episodes + graph, then tastes
        consolidation = ConsolidationEngine(cfg.consolidation)
        consolidation.load_from_json(blobs.get("episode_history"), fallback_graph=blobs.get("cognitive_graph"))
        episodes = consolidation.consolidate(ordered, patterns)
        tastes = consolidation.compute_consolidated_tastes(ordered)
        ranked = pattern_engine.get_patterns_sorted_by_importance(consolidation.graph)

        # 4) drift against the prior baseline
        drift = DriftDetector(cfg.drift)
        drift.load_from_json(blobs.get("drift_state"))
        drift.start_run(as_of)
        drift.detect_pattern_disappearance(ranked, len(ordered))
        drift.detect_contradictions(ranked)
        drift.detect_signature_drift(sig.signature)
        drift.detect_rating_style_shift(sig.rating_style)

        snapshot = Snapshot.model_validate({
            "pattern_state": pattern_engine.to_json(),
            "cognitive_graph": consolidation.graph_json(),
            "episode_history": consolidation.to_json(),
            "drift_state": drift.to_json(),
        })
        alerts = drift.get_all_alerts()
        metrics = {
            "event_count": len(ordered),
            "as_of": as_of.isoformat(),
            "rich_profile": len(ordered) >= RICH_PROFILE_EVENTS,
            "patterns": {s.value: len(pattern_engine.get_patterns_by_status(s)) for s in PatternStatus},
            "episodes": len(episodes),
            "graph": consolidation.graph.get_stats(),
            "drift_alerts": len(alerts),
            "vibe_map_version": sig.stats.vibe_map_version,
        }
    except TasteIDError:
        raise
    except Exception as e:
        log.exception("[engine] taste computation failed")
        raise TasteComputationError(f"taste computation failed: {e}") from e

    log.info(
        f"[engine] {len(ordered)} ratings → archetype={sig.archetype.primary} "
        f"patterns={len(ranked)} episodes={len(episodes)} alerts={len(alerts)}"
    )
    return TasteComputation(
        signature_result=sig,
        patterns=ranked,
        episodes=episodes,
        consolidated_tastes=tastes,
        episode_stats=consolidation.get_episode_stats(),
        drift_alerts=alerts,
        significant_drifts=drift.get_significant_drifts(),
        metrics=metrics,
        snapshot=snapshot,
    )
