# models.py  (review feed + persisted taste profile)

from __future__ import annotations
from typing import Optional
from sqlmodel import SQLModel, Field, Column, JSON
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Review feed (owned by the review store; read-only here) ----------

class ReviewRow(SQLModel, table=True):
    __tablename__ = "review"

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    album_id: str = ""
    rating: float
    vibes: Optional[list] = Field(default=None, sa_column=Column(JSON))
    album_genres: Optional[list] = Field(default=None, sa_column=Column(JSON))
    artist_name: str = ""
    release_year: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow, index=True)


# ---------- TasteID profile (one row per user) ----------

class TasteProfile(SQLModel, table=True):
    __tablename__ = "taste_profile"

    user_id: str = Field(primary_key=True)
    version: int = 0                                # optimistic concurrency token

    # SignatureComputer output, flat
    primary_archetype: str
    secondary_archetype: Optional[str] = None
    archetype_confidence: float = 0.0
    adventureness_score: float = 0.0
    polarity_score: float = 0.0
    rating_average: float = 0.0
    rating_std_dev: float = 0.0
    rating_skew: str = "balanced"
    review_count: int = 0
    signature: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    raw_signature: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    top_genres: Optional[list] = Field(default=None, sa_column=Column(JSON))
    top_artists: Optional[list] = Field(default=None, sa_column=Column(JSON))
    stats: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    # Snapshot blobs, each reloaded verbatim by its component
    pattern_state: Optional[list] = Field(default=None, sa_column=Column(JSON))
    cognitive_graph: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    episode_history: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    drift_state: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    # Derived read-only views for the API
    summary: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    computed_at: Optional[datetime] = None          # as-of time of the history (latest rating)
    updated_at: datetime = Field(default_factory=_utcnow)
