# tasteid_backend/app/services/tasteid/patterns.py
from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence

from pydantic import ValidationError

from tasteid_backend.app.models.tasteid import Pattern, PatternStatus, RatingEvent, sort_events
from tasteid_backend.app.services.tasteid.config import PatternConfig, load_engine_config
from tasteid_backend.app.services.tasteid.errors import CorruptStateError
from tasteid_backend.app.services.tasteid.graph import NODE_PATTERN, CognitiveGraph, node_id
from tasteid_backend.app.services.tasteid.signature import artist_key

# Purpose:
# Detect recurring behavioural motifs over the FULL history on every run and
# carry their lifecycle (emerging → confirmed → faded → dropped) across runs
# through the serialized pattern list. Identity is the detector id.

log = logging.getLogger("tasteid.patterns")
if not log.handlers:
    handler = logging.StreamHandler()
    log.addHandler(handler)
    log.setLevel(logging.INFO)

_STATUS_WEIGHT = {
    PatternStatus.CONFIRMED: 1.0,
    PatternStatus.EMERGING: 0.6,
    PatternStatus.FADED: 0.2,
}


class ObservationSpan(NamedTuple):
    events: int
    days: float


# ---------- Lifecycle ----------

def transition(
    status: Optional[PatternStatus],
    confidence: float,
    span: ObservationSpan,
    cfg: PatternConfig,
) -> Optional[PatternStatus]:
    """
    Pure lifecycle step. None means "no pattern" (never emerged).
    Dropping long-faded patterns is handled by the caller (it needs absence, not confidence).
    """
    if status is None:
        if confidence < cfg.emergence:
            return None
        status = PatternStatus.EMERGING
    elif status == PatternStatus.FADED:
        return PatternStatus.EMERGING if confidence >= cfg.emergence else PatternStatus.FADED

    if confidence < cfg.fade:
        return PatternStatus.FADED
    if (
        status == PatternStatus.EMERGING
        and confidence >= cfg.confirmation
        and span.events >= cfg.min_span_events
        and span.days >= cfg.min_span_days
    ):
        return PatternStatus.CONFIRMED
    return status


# ---------- Detector catalog ----------

@dataclass
class Reading:
    confidence: float
    evidence: List[int] = field(default_factory=list)   # indices into the ordered history
    description: str = ""


@dataclass
class HistoryView:
    """Precomputed per-run view shared by all detectors."""
    events: List[RatingEvent]
    ratings: List[float]
    mean: float
    std_dev: float
    artists: List[str]
    ages: List[Optional[int]]

    @classmethod
    def build(cls, events: List[RatingEvent]) -> "HistoryView":
        ratings = [e.rating for e in events]
        mean = sum(ratings) / len(ratings)
        std = math.sqrt(sum((r - mean) ** 2 for r in ratings) / len(ratings))
        ages = [
            (e.created_at.year - e.release_year) if e.release_year is not None else None
            for e in events
        ]
        return cls(
            events=events, ratings=ratings, mean=mean, std_dev=std,
            artists=[artist_key(e.artist_name) for e in events], ages=ages,
        )

    @property
    def n(self) -> int:
        return len(self.events)


@dataclass
class Detector:
    id: str
    name: str
    category: str
    description: str
    fn: Callable[[HistoryView], Optional[Reading]]


def _critical_ear(h: HistoryView) -> Optional[Reading]:
    if h.n < 15 or h.mean >= 5.5:
        return None
    ev = [i for i, r in enumerate(h.ratings) if r < 5.5]
    return Reading(min(1.0, h.n / 30), ev, f"Average rating {h.mean:.1f} - high standards")

def _music_optimist(h: HistoryView) -> Optional[Reading]:
    if h.n < 15 or h.mean <= 7.5:
        return None
    ev = [i for i, r in enumerate(h.ratings) if r > 7.5]
    return Reading(min(1.0, h.n / 30), ev, f"Average rating {h.mean:.1f} - finds joy everywhere")

def _polarized_taste(h: HistoryView) -> Optional[Reading]:
    ev = [i for i, r in enumerate(h.ratings) if r <= 4 or r >= 8]
    share = len(ev) / h.n
    if share <= 0.7:
        return None
    return Reading(share, ev)

def _perfection_seeker(h: HistoryView) -> Optional[Reading]:
    tens = [i for i, r in enumerate(h.ratings) if r >= 10]
    nines = sum(1 for r in h.ratings if 9 <= r < 10)
    if len(tens) < 3 or len(tens) <= nines:
        return None
    return Reading(min(1.0, len(tens) / 5), tens)

def _genre_explorer(h: HistoryView) -> Optional[Reading]:
    if h.n < 10:
        return None
    seen: set = set()
    ev: List[int] = []
    for i, e in enumerate(h.events):
        if any(g not in seen for g in e.album_genres):
            ev.append(i)
        seen.update(e.album_genres)
    diversity = len(seen) / h.n
    if diversity <= 0.5:
        return None
    return Reading(min(1.0, diversity * 1.5), ev, f"{len(seen)} genres across {h.n} ratings")

def _genre_purist(h: HistoryView) -> Optional[Reading]:
    if h.n < 10:
        return None
    counts = Counter(g for e in h.events for g in e.album_genres)
    if not counts:
        return None
    top, _ = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0]
    ev = [i for i, e in enumerate(h.events) if top in e.album_genres]
    share = len(ev) / h.n
    if share < 0.6 or len(counts) / h.n > 0.2:
        return None
    return Reading(share, ev, f"{share:.0%} of ratings are {top}")

def _mean_age(h: HistoryView) -> Optional[float]:
    ages = [a for a in h.ages if a is not None]
    return (sum(ages) / len(ages)) if ages else None

def _new_release_hunter(h: HistoryView) -> Optional[Reading]:
    avg = _mean_age(h)
    if h.n < 10 or avg is None or avg >= 2:
        return None
    ev = [i for i, a in enumerate(h.ages) if a is not None and a <= 1]
    return Reading(min(1.0, (2 - avg) / 2), ev)

def _archive_diver(h: HistoryView) -> Optional[Reading]:
    avg = _mean_age(h)
    if h.n < 15 or avg is None or avg <= 15:
        return None
    ev = [i for i, a in enumerate(h.ages) if a is not None and a > 15]
    return Reading(min(1.0, (avg - 15) / 10), ev, f"Average album age {avg:.0f} years")

def _discography_completionist(h: HistoryView) -> Optional[Reading]:
    counts = Counter(a for a in h.artists if a)
    deep = {a for a, c in counts.items() if c >= 5}
    if not deep:
        return None
    ev = [i for i, a in enumerate(h.artists) if a in deep]
    return Reading(min(1.0, len(deep) / 3), ev, f"{len(deep)} artist(s) with 5+ albums rated")

def _deep_dive_sprints(h: HistoryView) -> Optional[Reading]:
    # ≥3 of a 5-rating window by the window's first artist, inside 7 days
    ev: set = set()
    sprints = 0
    i = 0
    while i < h.n - 2:
        lead = h.artists[i]
        if not lead:
            i += 1
            continue
        hits = [j for j in range(i, min(i + 5, h.n)) if h.artists[j] == lead]
        span_days = (h.events[hits[-1]].created_at - h.events[i].created_at).total_seconds() / 86400
        if len(hits) >= 3 and span_days <= 7:
            sprints += 1
            ev.update(hits)
            i = hits[-1] + 1
            continue
        i += 1
    if not sprints:
        return None
    return Reading(min(1.0, 0.6 + 0.2 * sprints), sorted(ev), f"{sprints} artist sprint(s)")

def _emotional_listener(h: HistoryView) -> Optional[Reading]:
    if h.n < 10 or h.std_dev <= 2.5:
        return None
    ev = [i for i, r in enumerate(h.ratings) if abs(r - h.mean) > h.std_dev]
    return Reading(min(1.0, h.std_dev / 3), ev)

def _discovery_comfort_oscillation(h: HistoryView) -> Optional[Reading]:
    if h.n < 10:
        return None
    seen: set = set()
    last_novel: Optional[bool] = None
    ev: List[int] = []
    for i, a in enumerate(h.artists):
        novel = bool(a) and a not in seen
        if last_novel is not None and novel != last_novel:
            ev.append(i)
        last_novel = novel
        if a:
            seen.add(a)
    if len(ev) < 5:
        return None
    return Reading(min(1.0, len(ev) / 10), ev, f"{len(ev)} switches between new and familiar artists")


DETECTORS: List[Detector] = [
    Detector("critical_ear", "Critical Ear", "rating", "High standards; rates below the crowd", _critical_ear),
    Detector("music_optimist", "Music Optimist", "rating", "Finds joy everywhere", _music_optimist),
    Detector("polarized_taste", "Polarized Taste", "rating", "Bimodal ratings - loves it or hates it", _polarized_taste),
    Detector("perfection_seeker", "Perfection Seeker", "rating", "More 10s than near-perfect scores", _perfection_seeker),
    Detector("genre_explorer", "Genre Explorer", "discovery", "Keeps crossing genre lines", _genre_explorer),
    Detector("genre_purist", "Genre Purist", "discovery", "Stays loyal to one genre", _genre_purist),
    Detector("new_release_hunter", "New Release Hunter", "discovery", "Stays on top of current music as it drops", _new_release_hunter),
    Detector("archive_diver", "Archive Diver", "discovery", "Average album age over 15 years", _archive_diver),
    Detector("discography_completionist", "Discography Completionist", "engagement", "Works through whole catalogues", _discography_completionist),
    Detector("deep_dive_sprints", "Deep Dive Sprints", "engagement", "Goes all-in on artists when something clicks", _deep_dive_sprints),
    Detector("emotional_listener", "Emotional Listener", "signature", "Strong reactions reflected in rating variance", _emotional_listener),
    Detector("discovery_comfort_oscillation", "Discovery↔Comfort Oscillation", "signature",
             "Healthy balance between exploring new music and returning to favorites", _discovery_comfort_oscillation),
]
DETECTOR_IDS = [d.id for d in DETECTORS]


# ---------- Engine ----------

def parse_pattern_state(state: Any) -> Dict[str, Pattern]:
    if state is None:
        return {}
    if not isinstance(state, list):
        raise CorruptStateError("pattern", f"expected a list, got {type(state).__name__}")
    out: Dict[str, Pattern] = {}
    try:
        for item in state:
            p = item if isinstance(item, Pattern) else Pattern.model_validate(item)
            out[p.id] = p
    except ValidationError as e:
        raise CorruptStateError("pattern", str(e)) from e
    return out


class PatternLearningEngine:
    def __init__(self, cfg: PatternConfig | None = None):
        self.cfg = cfg or load_engine_config().patterns
        self.patterns: Dict[str, Pattern] = {}

    # ----- persistence -----

    def load_from_json(self, state: Any) -> bool:
        """Reload prior patterns. Corrupt state → cold start (logged); returns False in that case."""
        try:
            self.patterns = parse_pattern_state(state)
            return True
        except CorruptStateError as e:
            log.warning(f"[patterns] {e}; starting cold")
            self.patterns = {}
            return False

    def to_json(self) -> List[Dict[str, Any]]:
        return [self.patterns[k].model_dump(mode="json") for k in sorted(self.patterns)]

    # ----- detection -----

    def _span(self, events: Sequence[RatingEvent], since: datetime) -> ObservationSpan:
        count = sum(1 for e in events if e.created_at >= since)
        days = (events[-1].created_at - since).total_seconds() / 86400
        return ObservationSpan(count, days)

    def detect_patterns_from_reviews(self, events: Sequence[RatingEvent]) -> List[Pattern]:
        ordered = sort_events(list(events))
        if len(ordered) < self.cfg.min_observations:
            return self.get_all_patterns()

        h = HistoryView.build(ordered)
        n = h.n
        as_of = ordered[-1].created_at
        next_state: Dict[str, Pattern] = {}

        for det in DETECTORS:
            reading = det.fn(h) or Reading(0.0)
            confidence = max(0.0, min(1.0, reading.confidence))
            evidence = reading.evidence
            if evidence and (n - 1 - evidence[-1]) >= self.cfg.fade_absence_events:
                confidence = 0.0

            prev = self.patterns.get(det.id)
            prev_status = prev.status if prev else None
            if prev is None:
                first_at = ordered[evidence[0]].created_at if evidence else as_of
            elif prev.status != PatternStatus.FADED:
                first_at = prev.first_observed_at or as_of
            else:
                first_at = as_of  # resurrection restarts the span

            status = transition(prev_status, confidence, self._span(ordered, first_at), self.cfg)
            if status is None:
                continue
            if prev_status == PatternStatus.FADED and status == PatternStatus.FADED:
                first_at = prev.first_observed_at or first_at

            last_count = evidence[-1] + 1 if evidence else (prev.last_observed_event_count if prev else 0)
            last_at = ordered[evidence[-1]].created_at if evidence else (prev.last_observed_at if prev else None)
            if status == PatternStatus.FADED and n - last_count >= self.cfg.drop_absence_events:
                log.info(f"[patterns] dropping {det.id}: absent for {n - last_count} ratings")
                continue
            if status == PatternStatus.EMERGING and prev_status == PatternStatus.FADED:
                log.info(f"[patterns] {det.id} resurfaced (confidence {confidence:.2f})")

            next_state[det.id] = Pattern(
                id=det.id,
                name=det.name,
                description=reading.description or det.description,
                category=det.category,
                status=status,
                confidence=confidence,
                first_observed_at=first_at,
                last_observed_at=last_at,
                last_observed_event_count=last_count,
                occurrence_count=len(evidence),
                importance_score=prev.importance_score if prev else 0.0,
                evidence_event_ids=[ordered[i].id for i in evidence],
            )

        for pid in sorted(set(self.patterns) - set(DETECTOR_IDS)):
            log.info(f"[patterns] discarding unknown pattern id {pid}")
        self.patterns = next_state
        log.info(
            f"[patterns] {n} ratings → {len(next_state)} patterns "
            f"({len(self.get_patterns_by_status(PatternStatus.CONFIRMED))} confirmed)"
        )
        return self.get_all_patterns()

    # ----- views -----

    def get_all_patterns(self) -> List[Pattern]:
        return [self.patterns[k] for k in sorted(self.patterns)]

    def get_patterns_by_status(self, status: PatternStatus | str) -> List[Pattern]:
        status = PatternStatus(status)
        return [p for p in self.get_all_patterns() if p.status == status]

    def get_active_patterns(self) -> List[Pattern]:
        return [p for p in self.get_all_patterns() if p.status != PatternStatus.FADED]

    def get_patterns_sorted_by_importance(self, graph: CognitiveGraph | None = None) -> List[Pattern]:
        """
        importance = status_weight * (0.5 * confidence + 0.5 * graph importance / max graph importance)
        with a graph, status_weight * confidence without one. Graph importance blends PageRank,
        HITS, betweenness and recency (CognitiveGraph.compute_importance_scores). Stored on each pattern.
        """
        scores = graph.compute_importance_scores() if graph is not None else {}
        combined = {nid: s.combined for nid, s in scores.items()}
        top = max(combined.values()) if combined else 0.0
        for p in self.patterns.values():
            base = p.confidence
            if graph is not None:
                g = combined.get(node_id(NODE_PATTERN, p.id), 0.0)
                base = 0.5 * p.confidence + 0.5 * (g / top if top > 0 else 0.0)
            p.importance_score = _STATUS_WEIGHT[p.status] * base
        return sorted(self.patterns.values(), key=lambda p: (-p.importance_score, p.id))
