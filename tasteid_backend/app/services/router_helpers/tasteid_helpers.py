# tasteid_backend/app/services/router_helpers/tasteid_helpers.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import HTTPException, status
from pydantic import ValidationError

from tasteid_backend.app.db.models import TasteProfile
from tasteid_backend.app.models.tasteid import Pattern, Snapshot
from tasteid_backend.app.services.data_stores import taste_profiles as store
from tasteid_backend.app.services.tasteid.errors import (
    ConcurrentRecomputeError,
    InsufficientDataError,
    TasteComputationError,
)
from tasteid_backend.app.services.tasteid.graph import CognitiveGraph
from tasteid_backend.app.services.tasteid.patterns import PatternLearningEngine

log = logging.getLogger("uvicorn.error")

# ---- shaping ----
def _row_to_dict(row: TasteProfile) -> Dict[str, Any]:
    """Flat profile columns + summary; snapshot blobs are internal and left out."""
    return {
        "user_id": row.user_id,
        "version": row.version,
        "archetype": {
            "primary": row.primary_archetype,
            "secondary": row.secondary_archetype,
            "confidence": row.archetype_confidence,
            "adventureness_score": row.adventureness_score,
            "polarity_score": row.polarity_score,
            "top_genres": row.top_genres or [],
            "top_artists": row.top_artists or [],
        },
        "rating_style": {
            "average": row.rating_average,
            "std_dev": row.rating_std_dev,
            "skew": row.rating_skew,
        },
        "signature": row.signature or {},
        "raw_signature": row.raw_signature or {},
        "stats": row.stats or {},
        "review_count": row.review_count,
        "summary": row.summary or {},
        "computed_at": row.computed_at.isoformat() if row.computed_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }

def _require_profile(user_id: str) -> TasteProfile:
    row = store.get_profile(user_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"no taste profile for {user_id}")
    return row

# ---- public helpers used by router ----
def compute(user_id: str) -> Dict[str, Any]:
    """Recompute and persist; maps the engine's error taxonomy onto HTTP."""
    try:
        row = store.recompute_for_user(user_id)
        return _row_to_dict(row)
    except InsufficientDataError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ConcurrentRecomputeError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"{e}; retry")
    except TasteComputationError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"compute taste profile failed: {e}")

def get_profile(user_id: str) -> Dict[str, Any]:
    return _row_to_dict(_require_profile(user_id))

def get_consolidation(user_id: str) -> Dict[str, Any]:
    summary = _require_profile(user_id).summary or {}
    return {
        "user_id": user_id,
        "consolidated_tastes": summary.get("consolidated_tastes", []),
        "episode_stats": summary.get("episode_stats", {}),
        "recent_episodes": summary.get("recent_episodes", []),
    }

def get_drift(user_id: str) -> Dict[str, Any]:
    row = _require_profile(user_id)
    summary = row.summary or {}
    return {
        "user_id": user_id,
        "significant_drifts": summary.get("significant_drifts", []),
        "alert_count": len((row.drift_state or {}).get("alerts") or []),
    }

def get_patterns(user_id: str) -> Dict[str, Any]:
    """Stored patterns ranked by importance against the stored graph (read-only)."""
    row = _require_profile(user_id)
    try:
        snap = Snapshot.model_validate({k: v for k, v in store.load_snapshot(row).items() if v is not None})
    except ValidationError as e:
        log.warning(f"[tasteid] stored snapshot for {user_id} unreadable: {e}")
        return {"user_id": user_id, "patterns": []}
    engine = PatternLearningEngine()
    engine.load_from_json([p.model_dump(mode="json") for p in snap.pattern_state])
    graph = CognitiveGraph()
    graph.load_from_json(snap.episode_history.graph if snap.episode_history.graph.nodes else snap.cognitive_graph)
    ranked: List[Pattern] = engine.get_patterns_sorted_by_importance(graph)
    return {
        "user_id": user_id,
        "patterns": [p.model_dump(mode="json") for p in ranked],
        "active": [p.id for p in engine.get_active_patterns()],
    }

def reset(user_id: str) -> Dict[str, Any]:
    try:
        return {"ok": True, "deleted": store.delete_profile(user_id)}
    except Exception as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"reset taste profile failed: {e}")
