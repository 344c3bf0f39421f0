# tasteid_backend/app/services/data_stores/taste_profiles.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock, RLock
from typing import Any, Dict, Optional
from weakref import WeakValueDictionary

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from tasteid_backend.app.db.models import TasteProfile
from tasteid_backend.app.db.session import engine
from tasteid_backend.app.services.data_stores.reviews import list_rating_events
from tasteid_backend.app.services.tasteid.engine import SNAPSHOT_KEYS, TasteComputation, compute_taste_profile
from tasteid_backend.app.services.tasteid.errors import ConcurrentRecomputeError

# Purpose:
# Read-modify-write of one user's taste profile, serialized per user:
# - in-process: an RLock keyed by user id
# - across processes: the `version` column, checked by a conditional UPDATE
#   (or a plain INSERT for a first profile, where the primary key is the guard)
# A run that loses the race raises ConcurrentRecomputeError and writes nothing.

log = logging.getLogger("tasteid.engine")

# an entry lives only while some caller holds (or waits on) its lock
_LOCKS: WeakValueDictionary[str, RLock] = WeakValueDictionary()
_LOCKS_GUARD = Lock()


def _user_lock(user_id: str) -> RLock:
    with _LOCKS_GUARD:
        lock = _LOCKS.get(user_id)
        if lock is None:
            lock = _LOCKS[user_id] = RLock()
        return lock


def get_profile(user_id: str) -> Optional[TasteProfile]:
    with Session(engine) as session:
        return session.get(TasteProfile, user_id)


def load_snapshot(row: Optional[TasteProfile]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {k: getattr(row, k) for k in SNAPSHOT_KEYS}


def _row_values(result: TasteComputation) -> Dict[str, Any]:
    sig = result.signature_result
    snap = result.snapshot.to_blobs()
    return {
        "primary_archetype": sig.archetype.primary,
        "secondary_archetype": sig.archetype.secondary,
        "archetype_confidence": sig.archetype.confidence,
        "adventureness_score": sig.archetype.adventureness_score,
        "polarity_score": sig.archetype.polarity_score,
        "rating_average": sig.rating_style.average,
        "rating_std_dev": sig.rating_style.std_dev,
        "rating_skew": sig.rating_style.skew.value,
        "review_count": sig.stats.event_count,
        "signature": sig.signature.model_dump(mode="json"),
        "raw_signature": sig.raw_signature.model_dump(mode="json"),
        "top_genres": list(sig.archetype.top_genres),
        "top_artists": list(sig.archetype.top_artists),
        "stats": sig.stats.model_dump(mode="json"),
        "pattern_state": snap["pattern_state"],
        "cognitive_graph": snap["cognitive_graph"],
        "episode_history": snap["episode_history"],
        "drift_state": snap["drift_state"],
        "summary": result.summary(),
        "computed_at": datetime.fromisoformat(result.metrics["as_of"]),
        "updated_at": datetime.now(timezone.utc),
    }


def save_profile(user_id: str, expected_version: Optional[int], values: Dict[str, Any]) -> TasteProfile:
    """
    Write one complete profile in a single transaction.
    expected_version=None means "no row existed when we read".
    """
    with Session(engine) as session:
        if expected_version is None:
            session.add(TasteProfile(user_id=user_id, version=1, **values))
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ConcurrentRecomputeError(user_id, 0) from e
        else:
            stmt = (
                update(TasteProfile)
                .where(TasteProfile.user_id == user_id)
                .where(TasteProfile.version == expected_version)
                .values(version=expected_version + 1, **values)
            )
            res = session.execute(stmt)
            if res.rowcount != 1:
                session.rollback()
                raise ConcurrentRecomputeError(user_id, expected_version)
            session.commit()
        return session.get(TasteProfile, user_id, populate_existing=True)


def recompute_for_user(user_id: str) -> TasteProfile:
    """
    Full recompute from the review feed + the stored snapshot.
    Raises InsufficientDataError / TasteComputationError / ConcurrentRecomputeError;
    in every failure case the stored profile is untouched.
    """
    with _user_lock(user_id):
        row = get_profile(user_id)
        expected = row.version if row is not None else None
        events = list_rating_events(user_id)
        result = compute_taste_profile(events, load_snapshot(row))
        saved = save_profile(user_id, expected, _row_values(result))
        log.info(f"[profiles] {user_id} saved at version {saved.version}")
        return saved


def delete_profile(user_id: str) -> bool:
    with _user_lock(user_id):
        with Session(engine) as session:
            row = session.get(TasteProfile, user_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True
