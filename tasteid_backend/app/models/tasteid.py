# tasteid_backend/app/models/tasteid.py
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Purpose:
# Typed models shared by the taste engine components:
# - the rating-event feed (input)
# - signature / archetype / rating-style results
# - patterns, episodes, graph nodes/edges, drift alerts
# - the persisted snapshot (four JSON blobs)

SIGNATURE_DIMENSIONS = (
    "discovery",
    "comfort",
    "deep_dive",
    "reactive",
    "emotional",
    "social",
    "aesthetic",
)


def _as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes; the engine compares everything in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ===================== Enums =====================

class RatingSkew(str, Enum):
    HARSH = "harsh"
    LENIENT = "lenient"
    BALANCED = "balanced"

class PatternStatus(str, Enum):
    EMERGING = "emerging"
    CONFIRMED = "confirmed"
    FADED = "faded"

class DriftKind(str, Enum):
    PATTERN_DISAPPEARED = "pattern_disappeared"
    CONTRADICTION = "contradiction"
    SIGNATURE_DRIFT = "signature_drift"
    RATING_STYLE_SHIFT = "rating_style_shift"

class TasteTrend(str, Enum):
    STRENGTHENING = "strengthening"
    WEAKENING = "weakening"
    STABLE = "stable"

PatternCategory = Literal["signature", "rating", "engagement", "discovery"]
TasteKind = Literal["genre", "artist", "vibe"]


# ===================== Input =====================

class RatingEvent(BaseModel):
    """One rating from the review store, with album fields resolved by the caller."""
    id: str
    user_id: str = ""
    album_id: str = ""
    rating: float = Field(ge=0, le=10)
    vibes: List[str] = []
    created_at: datetime
    album_genres: List[str] = []
    artist_name: str = ""
    release_year: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("album_genres", "vibes")
    @classmethod
    def _norm_tags(cls, v: List[str]) -> List[str]:
        out: List[str] = []
        for t in v or []:
            t = (t or "").strip().lower()
            if t and t not in out:
                out.append(t)
        return out


def sort_events(events: List[RatingEvent]) -> List[RatingEvent]:
    return sorted(events, key=lambda e: (e.created_at, e.id))


# ===================== Signature =====================

class ListeningSignature(BaseModel):
    discovery: float = Field(0.0, ge=0.0)
    comfort: float = Field(0.0, ge=0.0)
    deep_dive: float = Field(0.0, ge=0.0, validation_alias=AliasChoices("deep_dive", "deepDive"))
    reactive: float = Field(0.0, ge=0.0)
    emotional: float = Field(0.0, ge=0.0)
    social: float = Field(0.0, ge=0.0)
    aesthetic: float = Field(0.0, ge=0.0)

    model_config = ConfigDict(populate_by_name=True)

    def as_dict(self) -> Dict[str, float]:
        return {d: float(getattr(self, d)) for d in SIGNATURE_DIMENSIONS}

    def total(self) -> float:
        return sum(self.as_dict().values())

    def normalized(self) -> "ListeningSignature":
        t = self.total()
        if t <= 0:
            return ListeningSignature()
        return ListeningSignature(**{d: v / t for d, v in self.as_dict().items()})

class RatingStyle(BaseModel):
    average: float
    std_dev: float = Field(ge=0.0)
    skew: RatingSkew

class ArchetypeResult(BaseModel):
    primary: str
    secondary: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    adventureness_score: float = Field(ge=0.0, le=1.0)
    polarity_score: float
    top_genres: List[str] = []
    top_artists: List[str] = []
    distances: Dict[str, float] = {}

class ArtistDNA(BaseModel):
    artist_name: str
    weight: float
    average_rating: float
    review_count: int

class StandoutDimension(BaseModel):
    dimension: str
    direction: Literal["high", "low"]
    deviation: float  # distance outside the typical range

class SignatureStats(BaseModel):
    event_count: int
    distinct_artists: int
    distinct_genres: int
    average_rating: float
    rating_std_dev: float
    rating_skew: RatingSkew
    top_genres: List[str] = []
    top_artists: List[str] = []
    genre_vector: Dict[str, float] = {}
    artist_dna: List[ArtistDNA] = []
    decade_preferences: Dict[str, float] = {}
    vibe_map_version: str = ""
    uniqueness: float = Field(default=0.0, ge=0.0, le=1.0)
    standout_dimensions: List[StandoutDimension] = []
    dominant_dimensions: List[str] = []

class SignatureResult(BaseModel):
    signature: ListeningSignature
    raw_signature: ListeningSignature
    archetype: ArchetypeResult
    rating_style: RatingStyle
    stats: SignatureStats


# ===================== Patterns =====================

class Pattern(BaseModel):
    id: str
    name: str
    description: str = ""
    category: PatternCategory
    status: PatternStatus
    confidence: float = Field(ge=0.0, le=1.0)
    first_observed_at: Optional[datetime] = None
    last_observed_at: Optional[datetime] = None
    last_observed_event_count: int = 0
    occurrence_count: int = 0
    importance_score: float = 0.0
    # Evidence from the current detection run only; never persisted.
    evidence_event_ids: List[str] = Field(default_factory=list, exclude=True)

    @field_validator("first_observed_at", "last_observed_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v) if v is not None else None


# ===================== Episodes / graph =====================

class Episode(BaseModel):
    id: str
    start_at: datetime
    end_at: datetime
    member_event_ids: List[str]
    dominant_genres: List[str] = []
    dominant_artists: List[str] = []
    average_rating: float = 0.0
    rating_variance: float = 0.0
    emotional_tone: float = 0.0
    patterns_detected: List[str] = []

    @field_validator("start_at", "end_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

class CognitiveNode(BaseModel):
    id: str
    type: str
    key: str
    weight: float = 0.0
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    data: Dict[str, Any] = {}

class CognitiveEdge(BaseModel):
    id: str
    source: str
    target: str
    kind: str
    weight: float = 0.0
    reinforcements: int = 0
    last_reinforced_at: Optional[datetime] = None

class GraphState(BaseModel):
    nodes: List[CognitiveNode] = []
    edges: List[CognitiveEdge] = []

class HistoryWatermark(BaseModel):
    event_count: int
    last_event_id: str
    last_event_at: datetime
    digest: str = ""  # sha256 over (id, created_at, rating) of the ordered history; "" on older snapshots

class EpisodeHistory(BaseModel):
    episodes: List[Episode] = []
    graph: GraphState = GraphState()
    watermark: Optional[HistoryWatermark] = None

class ConsolidatedTaste(BaseModel):
    name: str
    kind: TasteKind
    trend: TasteTrend
    recent_share: float
    older_share: float
    total_ratings: int
    average_rating: float
    confidence: float = Field(ge=0.0, le=1.0)

class EpisodeStats(BaseModel):
    total_episodes: int = 0
    avg_episode_length: float = 0.0
    avg_rating: float = 0.0
    longest_episode: int = 0
    top_genres: List[str] = []
    top_artists: List[str] = []


# ===================== Drift =====================

class DriftAlert(BaseModel):
    id: str
    kind: DriftKind
    severity: float = Field(ge=0.0, le=1.0)
    description: str
    detected_at: datetime
    subject: str = ""
    old_value: Any = None
    new_value: Any = None
    affected_patterns: List[str] = []

class PatternBaseline(BaseModel):
    id: str
    name: str = ""
    status: PatternStatus
    confidence: float = 0.0
    last_observed_event_count: int = 0

class DriftState(BaseModel):
    alerts: List[DriftAlert] = []
    previous_signature: Optional[ListeningSignature] = None
    previous_rating_style: Optional[RatingStyle] = None
    previous_patterns: List[PatternBaseline] = []
    previous_event_count: int = 0


# ===================== Snapshot =====================

class Snapshot(BaseModel):
    """The four persisted blobs; each reloads independently."""
    pattern_state: List[Pattern] = []
    cognitive_graph: GraphState = GraphState()
    episode_history: EpisodeHistory = EpisodeHistory()
    drift_state: DriftState = DriftState()

    def to_blobs(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


__all__ = [
    "SIGNATURE_DIMENSIONS",
    "RatingSkew", "PatternStatus", "DriftKind", "TasteTrend",
    "RatingEvent", "sort_events",
    "ListeningSignature", "RatingStyle", "ArchetypeResult", "ArtistDNA",
    "SignatureStats", "SignatureResult",
    "Pattern",
    "Episode", "CognitiveNode", "CognitiveEdge", "GraphState",
    "HistoryWatermark", "EpisodeHistory", "ConsolidatedTaste", "EpisodeStats",
    "DriftAlert", "PatternBaseline", "DriftState",
    "Snapshot",
]
