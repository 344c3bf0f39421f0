# tasteid_backend/app/services/tasteid/signature.py
from __future__ import annotations

import math
from collections import Counter, defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from tasteid_backend.app.models.tasteid import (
    SIGNATURE_DIMENSIONS,
    ArchetypeResult,
    ArtistDNA,
    ListeningSignature,
    RatingEvent,
    RatingSkew,
    RatingStyle,
    SignatureResult,
    SignatureStats,
    StandoutDimension,
    sort_events,
)
from tasteid_backend.app.services.tasteid.config import SignatureConfig, load_engine_config
from tasteid_backend.app.tasteid.library_loader import get_archetypes, get_vibe_map

# Purpose:
# Map a rating history to the 7-dimension listening signature, classify it
# against the archetype prototypes and summarise the rating style.
# Never raises for a non-empty history; sparse input just lowers confidence.

_SQRT2 = math.sqrt(2.0)


def _clip(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))

def artist_key(name: str) -> str:
    return (name or "").strip().lower()


# ---------- Signature scoring ----------

def score_events(
    events: Sequence[RatingEvent],
    vibe_tags: Dict[str, Dict[str, float]],
    cfg: SignatureConfig,
) -> ListeningSignature:
    """Raw (un-normalized) contribution sums. Events must already be ordered."""
    acc = {d: 0.0 for d in SIGNATURE_DIMENSIONS}
    artist_counts: Counter = Counter()
    seen_genres: set = set()
    prev_artist: Optional[str] = None

    for ev in events:
        a = artist_key(ev.artist_name)
        if a:
            prior = artist_counts[a]
            if prior == 0:
                acc["discovery"] += 1.0
            else:
                acc["comfort"] += 1.0
            if prior >= cfg.deep_dive_prior_ratings:
                acc["deep_dive"] += 1.0
            if prev_artist == a:
                acc["deep_dive"] += 0.5
        if any(g not in seen_genres for g in ev.album_genres):
            acc["discovery"] += 0.5

        if ev.release_year is not None and ev.created_at.year - ev.release_year <= cfg.reactive_window_years:
            acc["reactive"] += 1.0
        if ev.rating <= cfg.extreme_low_rating or ev.rating >= cfg.extreme_high_rating:
            acc["emotional"] += 1.0

        for tag in ev.vibes:
            for dim, w in (vibe_tags.get(tag) or {}).items():
                if dim in acc:
                    acc[dim] += max(0.0, float(w))

        if a:
            artist_counts[a] += 1
        seen_genres.update(ev.album_genres)
        prev_artist = a or None

    return ListeningSignature(**acc)


# ---------- Rating style ----------

def rating_style(ratings: Sequence[float], cfg: SignatureConfig) -> RatingStyle:
    n = len(ratings)
    avg = sum(ratings) / n
    std = math.sqrt(sum((r - avg) ** 2 for r in ratings) / n)
    z = (avg - cfg.population_mean_rating) / cfg.population_std_dev
    if z < -cfg.skew_std_devs:
        skew = RatingSkew.HARSH
    elif z > cfg.skew_std_devs:
        skew = RatingSkew.LENIENT
    else:
        skew = RatingSkew.BALANCED
    return RatingStyle(average=avg, std_dev=std, skew=skew)


# ---------- Archetypes ----------

def _as_distribution(sig: ListeningSignature) -> List[float]:
    vals = [max(0.0, v) for v in sig.as_dict().values()]
    total = sum(vals)
    return [v / total for v in vals] if total > 0 else vals

def classify_signature(
    signature: ListeningSignature,
    event_count: int,
    prototypes: Dict[str, Dict[str, float]],
    cfg: SignatureConfig,
) -> Tuple[str, Optional[str], float, Dict[str, float]]:
    """
    Nearest prototype by Euclidean distance.
    Returns (primary, secondary, confidence, distances); confidence is always in [0,1].
    """
    user = _as_distribution(signature)
    distances: Dict[str, float] = {}
    for aid, proto in prototypes.items():
        pv = [float((proto or {}).get(d, 0.0)) for d in SIGNATURE_DIMENSIONS]
        distances[aid] = math.sqrt(sum((u - p) ** 2 for u, p in zip(user, pv)))

    ranked = sorted(distances.items(), key=lambda kv: (kv[1], kv[0]))
    primary, best = ranked[0]
    secondary = None
    if len(ranked) > 1 and ranked[1][1] - best <= cfg.secondary_tolerance:
        secondary = ranked[1][0]

    if sum(user) <= 0:
        confidence = 0.0
    else:
        data_factor = min(1.0, event_count / max(1, cfg.full_confidence_events))
        confidence = _clip((1.0 - best / _SQRT2) * data_factor)
    return primary, secondary, confidence, distances


# ---------- Diversity ----------

def adventureness(events: Sequence[RatingEvent]) -> float:
    n = len(events)
    if n == 0:
        return 0.0
    artists = Counter(artist_key(e.artist_name) for e in events if artist_key(e.artist_name))
    genres = Counter(g for e in events for g in e.album_genres)

    artist_ratio = len(artists) / n
    genre_ratio = min(1.0, len(genres) / n)
    entropy = 0.0
    if len(genres) > 1:
        total = sum(genres.values())
        h = -sum((c / total) * math.log(c / total) for c in genres.values())
        entropy = h / math.log(len(genres))

    hhi = 0.0
    if artists:
        total_a = sum(artists.values())
        hhi = sum((c / total_a) ** 2 for c in artists.values())

    score = (0.4 * artist_ratio + 0.3 * genre_ratio + 0.3 * entropy) * (1.0 - 0.5 * hhi)
    return _clip(score)

def polarity(std_dev: float, cfg: SignatureConfig) -> float:
    return min(1.0, std_dev / cfg.polarity_std_dev_scale)


# ---------- Uniqueness ----------

def signature_uniqueness(
    signature: ListeningSignature,
    typical_ranges: Dict[str, Dict[str, float]],
    limit: int = 3,
) -> Tuple[float, List[StandoutDimension]]:
    """
    Mean distance of each dimension from the midpoint of its typical range, scaled so 0.5 off on
    every dimension is 1.0. Dimensions outside their range are returned largest-gap first.
    """
    values = signature.as_dict()
    dims = [d for d in SIGNATURE_DIMENSIONS if d in typical_ranges]
    if not dims:
        return 0.0, []
    total = 0.0
    standouts: List[StandoutDimension] = []
    for d in dims:
        lo, hi = float(typical_ranges[d]["min"]), float(typical_ranges[d]["max"])
        v = values[d]
        total += abs(v - (lo + hi) / 2)
        if v > hi:
            standouts.append(StandoutDimension(dimension=d, direction="high", deviation=v - hi))
        elif v < lo:
            standouts.append(StandoutDimension(dimension=d, direction="low", deviation=lo - v))
    standouts.sort(key=lambda s: (-s.deviation, SIGNATURE_DIMENSIONS.index(s.dimension)))
    return _clip(total / (0.5 * len(dims))), standouts[:limit]

def dominant_dimensions(signature: ListeningSignature, limit: int = 3) -> List[str]:
    """Strongest non-zero dimensions; ties keep the canonical dimension order."""
    values = signature.as_dict()
    ranked = sorted(SIGNATURE_DIMENSIONS, key=lambda d: (-values[d], SIGNATURE_DIMENSIONS.index(d)))
    return [d for d in ranked if values[d] > 0][:limit]


# ---------- Stats ----------

def _ranked_names(counts: Dict[str, int], ratings: Dict[str, List[float]], limit: int) -> List[str]:
    def avg(k: str) -> float:
        rs = ratings.get(k) or [0.0]
        return sum(rs) / len(rs)
    return [k for k, _ in sorted(counts.items(), key=lambda kv: (-kv[1], -avg(kv[0]), kv[0]))][:limit]

def _stats(events: Sequence[RatingEvent], style: RatingStyle, cfg: SignatureConfig, vibe_version: str) -> SignatureStats:
    n = len(events)
    genre_counts: Counter = Counter()
    genre_ratings: Dict[str, List[float]] = defaultdict(list)
    artist_counts: Counter = Counter()
    artist_ratings: Dict[str, List[float]] = defaultdict(list)
    display: Dict[str, str] = {}
    decades: Counter = Counter()

    for ev in events:
        for g in ev.album_genres:
            genre_counts[g] += 1
            genre_ratings[g].append(ev.rating)
        a = artist_key(ev.artist_name)
        if a:
            artist_counts[a] += 1
            artist_ratings[a].append(ev.rating)
            display.setdefault(a, ev.artist_name.strip())
        if ev.release_year:
            decades[f"{(ev.release_year // 10) * 10}s"] += 1

    top_artist_keys = _ranked_names(artist_counts, artist_ratings, cfg.top_artists)
    dated = sum(decades.values())
    return SignatureStats(
        event_count=n,
        distinct_artists=len(artist_counts),
        distinct_genres=len(genre_counts),
        average_rating=style.average,
        rating_std_dev=style.std_dev,
        rating_skew=style.skew,
        top_genres=_ranked_names(genre_counts, genre_ratings, cfg.top_genres),
        top_artists=[display[k] for k in top_artist_keys],
        genre_vector={g: (sum(rs) / len(rs)) / 10.0 for g, rs in sorted(genre_ratings.items())},
        artist_dna=[
            ArtistDNA(
                artist_name=display[k],
                weight=artist_counts[k] / n,
                average_rating=sum(artist_ratings[k]) / len(artist_ratings[k]),
                review_count=artist_counts[k],
            )
            for k in top_artist_keys
        ],
        decade_preferences={d: c / dated for d, c in sorted(decades.items())} if dated else {},
        vibe_map_version=vibe_version,
    )


# ---------- Public component ----------

class SignatureComputer:
    def __init__(
        self,
        cfg: SignatureConfig | None = None,
        vibe_map: Dict | None = None,
        archetypes: Dict | None = None,
    ):
        self.cfg = cfg or load_engine_config().signature
        vm = vibe_map if vibe_map is not None else get_vibe_map()
        self.vibe_tags: Dict[str, Dict[str, float]] = {
            str(k).strip().lower(): dict(v or {}) for k, v in (vm.get("tags") or {}).items()
        }
        self.vibe_version = str(vm.get("version") or "")
        arch = archetypes if archetypes is not None else get_archetypes()
        self.archetypes: Dict[str, Dict] = dict(arch.get("archetypes") or {})
        self.prototypes = {aid: (a or {}).get("prototype") or {} for aid, a in self.archetypes.items()}
        self.typical_ranges: Dict[str, Dict[str, float]] = dict(arch.get("typical_ranges") or {})

    def classify(self, signature: ListeningSignature, event_count: int):
        return classify_signature(signature, event_count, self.prototypes, self.cfg)

    def compute(self, events: Sequence[RatingEvent]) -> SignatureResult:
        if not events:
            raise ValueError("signature needs at least one rating event")
        ordered = sort_events(list(events))

        raw = score_events(ordered, self.vibe_tags, self.cfg)
        normalized = raw.normalized()
        style = rating_style([e.rating for e in ordered], self.cfg)
        stats = _stats(ordered, style, self.cfg, self.vibe_version)
        stats.uniqueness, stats.standout_dimensions = signature_uniqueness(
            normalized, self.typical_ranges, self.cfg.standout_dimensions,
        )
        stats.dominant_dimensions = dominant_dimensions(normalized, self.cfg.dominant_dimensions)

        primary, secondary, confidence, distances = self.classify(normalized, len(ordered))
        archetype = ArchetypeResult(
            primary=primary,
            secondary=secondary,
            confidence=confidence,
            adventureness_score=adventureness(ordered),
            polarity_score=polarity(style.std_dev, self.cfg),
            top_genres=stats.top_genres,
            top_artists=stats.top_artists,
            distances=distances,
        )
        return SignatureResult(
            signature=normalized,
            raw_signature=raw,
            archetype=archetype,
            rating_style=style,
            stats=stats,
        )
