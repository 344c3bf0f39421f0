# tasteid_backend/app/services/tasteid/consolidation.py
from __future__ import annotations

import hashlib
import logging
from collections import Counter, defaultdict
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from tasteid_backend.app.models.tasteid import (
    ConsolidatedTaste,
    Episode,
    EpisodeHistory,
    EpisodeStats,
    GraphState,
    HistoryWatermark,
    Pattern,
    PatternStatus,
    RatingEvent,
    TasteTrend,
    sort_events,
)
from tasteid_backend.app.services.tasteid.config import ConsolidationConfig, load_engine_config
from tasteid_backend.app.services.tasteid.errors import CorruptStateError
from tasteid_backend.app.services.tasteid.graph import (
    EDGE_BELONGS_TO,
    EDGE_CO_OCCURS,
    EDGE_EXHIBITED_IN,
    EDGE_EXPRESSES,
    LEARNED_EDGE_KINDS,
    NODE_EPISODE,
    NODE_GENRE,
    NODE_PATTERN,
    CognitiveGraph,
    node_id,
)
from tasteid_backend.app.services.tasteid.signature import artist_key

# Purpose:
# - Segment the history into episodes (listening sessions / thematic runs)
# - Trend each genre/artist/vibe: recent episodes vs the window before them
# - Deposit episodes, recurring genres and confirmed patterns into the
#   long-lived cognitive graph (EMA edge weights, decay + prune)
#
# Graph learning is gated by a watermark (event count, latest event id and a
# digest of the whole ordered history) so a recompute with no new ratings
# leaves every weight where it was, while an edit anywhere in the history does not.

log = logging.getLogger("tasteid.consolidation")
if not log.handlers:
    handler = logging.StreamHandler()
    log.addHandler(handler)
    log.setLevel(logging.INFO)


def history_digest(ordered: Sequence[RatingEvent]) -> str:
    h = hashlib.sha256()
    for e in ordered:
        h.update(f"{e.id}|{e.created_at.isoformat()}|{e.rating!r}\n".encode("utf-8"))
    return h.hexdigest()

def _jaccard(a: set, b: set) -> float:
    union = a | b
    return len(a & b) / len(union) if union else 1.0

def _top(counts: Counter, k: int) -> List[str]:
    return [name for name, _ in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))][:k]


# ---------- Segmentation ----------

def segment_events(events: Sequence[RatingEvent], cfg: ConsolidationConfig) -> List[List[RatingEvent]]:
    """
    Causal segmentation: a boundary opens before an event when the gap exceeds
    episode_gap_hours, or when the open episode's last `discontinuity_window`
    events are all present and the event's genres barely overlap theirs.
    Every event lands in exactly one group, in order.
    """
    groups: List[List[RatingEvent]] = []
    current: List[RatingEvent] = []
    max_gap = cfg.episode_gap_hours * 3600.0
    for ev in events:
        if current:
            gap = (ev.created_at - current[-1].created_at).total_seconds()
            boundary = gap > max_gap
            if not boundary and len(current) >= cfg.discontinuity_window:
                window = {g for e in current[-cfg.discontinuity_window:] for g in e.album_genres}
                genres = set(ev.album_genres)
                if window and genres and _jaccard(genres, window) < cfg.discontinuity_threshold:
                    boundary = True
            if boundary:
                groups.append(current)
                current = []
        current.append(ev)
    if current:
        groups.append(current)
    return groups

def build_episode(members: Sequence[RatingEvent]) -> Episode:
    ratings = [e.rating for e in members]
    avg = sum(ratings) / len(ratings)
    var = sum((r - avg) ** 2 for r in ratings) / len(ratings)
    genres = Counter(g for e in members for g in e.album_genres)
    artists: Counter = Counter()
    display: Dict[str, str] = {}
    for e in members:
        a = artist_key(e.artist_name)
        if a:
            artists[a] += 1
            display.setdefault(a, e.artist_name.strip())
    return Episode(
        id=f"ep_{members[0].id}",
        start_at=members[0].created_at,
        end_at=members[-1].created_at,
        member_event_ids=[e.id for e in members],
        dominant_genres=_top(genres, 3),
        dominant_artists=[display[a] for a in _top(artists, 3)],
        average_rating=avg,
        rating_variance=var,
        emotional_tone=(avg - 5.0) / 5.0,
    )


# ---------- State parsing ----------

def parse_episode_history(state: Any) -> EpisodeHistory:
    if state is None:
        return EpisodeHistory()
    if not isinstance(state, (dict, EpisodeHistory)):
        raise CorruptStateError("episode_history", f"expected an object, got {type(state).__name__}")
    try:
        return state if isinstance(state, EpisodeHistory) else EpisodeHistory.model_validate(state)
    except ValidationError as e:
        raise CorruptStateError("episode_history", str(e)) from e


class ConsolidationEngine:
    def __init__(self, cfg: ConsolidationConfig | None = None):
        self.cfg = cfg or load_engine_config().consolidation
        self.graph = CognitiveGraph()
        self.episodes: List[Episode] = []              # stored (most recent max_stored_episodes)
        self.watermark: Optional[HistoryWatermark] = None
        self._all_episodes: List[Episode] = []         # full extraction of the current run
        self._events: Dict[str, RatingEvent] = {}

    # ----- persistence -----

    def load_from_json(self, state: Any, fallback_graph: Any = None) -> bool:
        """
        Reload {episodes, graph, watermark}. If the history blob carries no graph,
        the standalone cognitive_graph blob is used instead. Corrupt → cold start.
        """
        try:
            history = parse_episode_history(state)
            graph_state = history.graph
            if not graph_state.nodes and not graph_state.edges and fallback_graph:
                try:
                    graph_state = GraphState.model_validate(fallback_graph)
                except ValidationError as e:
                    raise CorruptStateError("cognitive_graph", str(e)) from e
        except CorruptStateError as e:
            log.warning(f"[consolidation] {e}; starting cold")
            self.graph = CognitiveGraph()
            self.episodes = []
            self.watermark = None
            return False

        self.graph = CognitiveGraph()
        self.graph.load_from_json(graph_state)
        self.episodes = list(history.episodes)
        self.watermark = history.watermark
        return True

    def to_json(self) -> Dict[str, Any]:
        return EpisodeHistory(
            episodes=self.episodes,
            graph=self.graph.to_state(),
            watermark=self.watermark,
        ).model_dump(mode="json")

    def graph_json(self) -> Dict[str, Any]:
        return self.graph.to_json()

    # ----- episodes -----

    def extract_episodes(self, events: Sequence[RatingEvent]) -> List[Episode]:
        ordered = sort_events(list(events))
        self._events = {e.id: e for e in ordered}
        self._all_episodes = [build_episode(g) for g in segment_events(ordered, self.cfg)]
        self.episodes = self._all_episodes[-self.cfg.max_stored_episodes:]
        return list(self._all_episodes)

    def annotate_episodes(self, patterns: Sequence[Pattern]) -> None:
        """patterns_detected = active patterns with evidence inside the episode. Always recomputed."""
        active = [p for p in patterns if p.status != PatternStatus.FADED and p.evidence_event_ids]
        evidence = {p.id: set(p.evidence_event_ids) for p in active}
        for ep in self._all_episodes:
            members = set(ep.member_event_ids)
            ep.patterns_detected = sorted(pid for pid, ids in evidence.items() if ids & members)

    # ----- consolidated tastes -----

    def compute_consolidated_tastes(self, events: Sequence[RatingEvent]) -> List[ConsolidatedTaste]:
        ordered = sort_events(list(events))
        groups = segment_events(ordered, self.cfg)
        n_win = min(self.cfg.trend_window_episodes, len(groups) // 2)
        recent = [e for g in groups[-n_win:] for e in g] if n_win else []
        older = [e for g in groups[-2 * n_win:-n_win] for e in g] if n_win else []

        out: List[ConsolidatedTaste] = []
        for kind, items_of in (
            ("genre", lambda e: e.album_genres),
            ("artist", lambda e: [e.artist_name.strip()] if artist_key(e.artist_name) else []),
            ("vibe", lambda e: e.vibes),
        ):
            out.extend(self._trend_kind(kind, items_of, ordered, recent, older, n_win))
        return sorted(out, key=lambda t: (-t.confidence, t.kind, t.name))

    def _trend_kind(self, kind, items_of, all_events, recent, older, n_win) -> List[ConsolidatedTaste]:
        totals: Dict[str, List[float]] = defaultdict(list)
        display: Dict[str, str] = {}
        for e in all_events:
            for item in items_of(e):
                key = item.lower()
                display.setdefault(key, item)
                totals[key].append(e.rating)

        def share(evs: List[RatingEvent]) -> Dict[str, float]:
            if not evs:
                return {}
            c = Counter(item.lower() for e in evs for item in items_of(e))
            return {k: v / len(evs) for k, v in c.items()}

        r_share, o_share = share(recent), share(older)
        out: List[ConsolidatedTaste] = []
        for key, ratings in totals.items():
            if len(ratings) < self.cfg.min_taste_ratings:
                continue
            rs, os_ = r_share.get(key, 0.0), o_share.get(key, 0.0)
            trend = TasteTrend.STABLE
            if n_win:
                if os_ == 0.0:
                    trend = TasteTrend.STRENGTHENING if rs > 0 else TasteTrend.STABLE
                else:
                    change = (rs - os_) / os_
                    if change > self.cfg.trend_relative_change:
                        trend = TasteTrend.STRENGTHENING
                    elif change < -self.cfg.trend_relative_change:
                        trend = TasteTrend.WEAKENING
            out.append(ConsolidatedTaste(
                name=display[key],
                kind=kind,
                trend=trend,
                recent_share=rs,
                older_share=os_,
                total_ratings=len(ratings),
                average_rating=sum(ratings) / len(ratings),
                confidence=min(1.0, len(ratings) / 10.0),
            ))
        return out

    # ----- graph -----

    def needs_graph_update(self, events: Sequence[RatingEvent]) -> bool:
        if not events:
            return False
        ordered = sort_events(list(events))
        wm = self.watermark
        if wm is None or wm.event_count != len(ordered) or wm.last_event_id != ordered[-1].id:
            return True
        return bool(wm.digest) and wm.digest != history_digest(ordered)

    def _recurring_genres(self) -> Dict[str, int]:
        counts = Counter(g for ep in self.episodes for g in set(ep.dominant_genres))
        return {g: c for g, c in counts.items() if c >= self.cfg.recurring_genre_episodes}

    def update_graph_nodes(self) -> None:
        """Episode and taste nodes for the stored episode window; older episode nodes are evicted."""
        keep = {node_id(NODE_EPISODE, ep.id) for ep in self.episodes}
        for node in self.graph.get_nodes_by_type(NODE_EPISODE):
            if node.id not in keep:
                self.graph.remove_node(node.id)
        for ep in self.episodes:
            self.graph.upsert_node(
                NODE_EPISODE, ep.id, weight=float(len(ep.member_event_ids)), at=ep.end_at,
                data={"average_rating": ep.average_rating, "dominant_genres": ep.dominant_genres},
            )
        total = max(1, len(self.episodes))
        for genre, count in sorted(self._recurring_genres().items()):
            last = max(ep.end_at for ep in self.episodes if genre in ep.dominant_genres)
            self.graph.upsert_node(NODE_GENRE, genre, weight=count / total, at=last)

    def learn_edge_weights(self, patterns: Sequence[Pattern]) -> None:
        """
        Reinforce pattern→episode, pattern→taste, episode→taste and pattern→pattern
        edges from this run's observations; decay + prune everything not observed.
        """
        decay = self.cfg.decay
        at = self.episodes[-1].end_at if self.episodes else None
        touched: set = set()
        recurring = set(self._recurring_genres())

        def bump(src: str, dst: str, kind: str, observed: float) -> None:
            if observed <= 0:
                return
            touched.add(self.graph.reinforce(src, dst, kind, observed, decay, at).id)

        for ep in self.episodes:
            members = [self._events[i] for i in ep.member_event_ids if i in self._events]
            if not members:
                continue
            for genre in sorted(recurring & set(ep.dominant_genres)):
                share = sum(1 for e in members if genre in e.album_genres) / len(members)
                bump(node_id(NODE_EPISODE, ep.id), node_id(NODE_GENRE, genre), EDGE_BELONGS_TO, share)

        confirmed = [p for p in patterns if p.status == PatternStatus.CONFIRMED]
        for p in confirmed:
            self.graph.upsert_node(NODE_PATTERN, p.id, weight=p.confidence, at=p.last_observed_at,
                                   data={"name": p.name, "category": p.category})
        live = {node_id(NODE_PATTERN, p.id) for p in confirmed}
        for node in self.graph.get_nodes_by_type(NODE_PATTERN):
            if node.id not in live:
                node.weight = 0.0

        for p in confirmed:
            pid = node_id(NODE_PATTERN, p.id)
            evidence = set(p.evidence_event_ids)
            for ep in self.episodes:
                hits = sum(1 for i in ep.member_event_ids if i in evidence)
                bump(pid, node_id(NODE_EPISODE, ep.id), EDGE_EXHIBITED_IN,
                     p.confidence * hits / len(ep.member_event_ids))
            ev_events = [self._events[i] for i in p.evidence_event_ids if i in self._events]
            if ev_events:
                for genre in sorted(recurring):
                    share = sum(1 for e in ev_events if genre in e.album_genres) / len(ev_events)
                    bump(pid, node_id(NODE_GENRE, genre), EDGE_EXPRESSES, p.confidence * share)

        for i, a in enumerate(confirmed):
            for b in confirmed[i + 1:]:
                ea, eb = set(a.evidence_event_ids), set(b.evidence_event_ids)
                union = ea | eb
                if union:
                    bump(node_id(NODE_PATTERN, a.id), node_id(NODE_PATTERN, b.id), EDGE_CO_OCCURS,
                         len(ea & eb) / len(union))

        pruned = self.graph.decay_unobserved(LEARNED_EDGE_KINDS, touched, decay, self.cfg.prune_below)
        stale = [n for n in self.graph.get_nodes_by_type(NODE_PATTERN) if n.id not in live]
        stale += [n for n in self.graph.get_nodes_by_type(NODE_GENRE) if n.key not in recurring]
        for node in stale:
            if not self.graph.get_neighbors(node.id):
                self.graph.remove_node(node.id)
        log.info(f"[consolidation] reinforced {len(touched)} edges, pruned {pruned}")

    def consolidate(self, events: Sequence[RatingEvent], patterns: Sequence[Pattern]) -> List[Episode]:
        """One run: extract + annotate episodes, then learn the graph if the history moved."""
        ordered = sort_events(list(events))
        episodes = self.extract_episodes(ordered)
        self.annotate_episodes(patterns)
        if self.needs_graph_update(ordered):
            self.update_graph_nodes()
            self.learn_edge_weights(patterns)
            last = ordered[-1]
            self.watermark = HistoryWatermark(
                event_count=len(ordered), last_event_id=last.id, last_event_at=last.created_at,
                digest=history_digest(ordered),
            )
        else:
            log.info("[consolidation] history unchanged since last run; graph left as is")
        return episodes

    # ----- views -----

    def get_episode_stats(self) -> EpisodeStats:
        eps = self._all_episodes or self.episodes
        if not eps:
            return EpisodeStats()
        genres = Counter(g for ep in eps for g in ep.dominant_genres)
        artists = Counter(a for ep in eps for a in ep.dominant_artists)
        lengths = [len(ep.member_event_ids) for ep in eps]
        return EpisodeStats(
            total_episodes=len(eps),
            avg_episode_length=sum(lengths) / len(eps),
            avg_rating=sum(ep.average_rating for ep in eps) / len(eps),
            longest_episode=max(lengths),
            top_genres=_top(genres, 5),
            top_artists=_top(artists, 5),
        )

    def get_recent_episodes(self, count: int = 10) -> List[Episode]:
        eps = self._all_episodes or self.episodes
        return list(reversed(eps[-count:])) if count > 0 else []
