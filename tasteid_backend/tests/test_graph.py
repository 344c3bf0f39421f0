import math
from datetime import datetime, timedelta, timezone

import pytest

from tasteid_backend.app.services.tasteid.graph import (
    EDGE_BELONGS_TO,
    EDGE_CO_OCCURS,
    EDGE_EXPRESSES,
    NODE_EPISODE,
    NODE_GENRE,
    NODE_PATTERN,
    IMPORTANCE_WEIGHTS,
    CognitiveGraph,
    edge_id,
    node_id,
)

BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _small_graph() -> CognitiveGraph:
    g = CognitiveGraph()
    g.upsert_node(NODE_PATTERN, "genre_explorer", 0.8, BASE_TIME)
    g.upsert_node(NODE_GENRE, "jazz", 0.5, BASE_TIME)
    g.upsert_node(NODE_EPISODE, "ep_e0001", 1.0, BASE_TIME)
    g.reinforce(node_id(NODE_PATTERN, "genre_explorer"), node_id(NODE_GENRE, "jazz"), EDGE_EXPRESSES, 1.0, 0.8, BASE_TIME)
    g.reinforce(node_id(NODE_EPISODE, "ep_e0001"), node_id(NODE_GENRE, "jazz"), EDGE_BELONGS_TO, 0.5, 0.8, BASE_TIME)
    return g


def test_ids_are_keyed_strings():
    assert node_id(NODE_GENRE, "jazz") == "genre:jazz"
    assert edge_id("a", EDGE_CO_OCCURS, "b") == "a|co_occurs|b"


def test_upsert_keeps_one_node_and_widens_seen_range():
    g = CognitiveGraph()
    later = BASE_TIME.replace(year=2026)
    g.upsert_node(NODE_GENRE, "jazz", 0.2, later, {"ratings": 1})
    g.upsert_node(NODE_GENRE, "jazz", 0.6, BASE_TIME, {"episodes": 2})
    (node,) = g.get_nodes_by_type(NODE_GENRE)
    assert node.weight == 0.6
    assert node.first_seen_at == BASE_TIME and node.last_seen_at == later
    assert node.data == {"ratings": 1, "episodes": 2}


def test_reinforce_is_an_ema_on_a_single_edge():
    g = CognitiveGraph()
    g.reinforce("a", "b", EDGE_CO_OCCURS, 1.0, 0.8)
    e = g.reinforce("a", "b", EDGE_CO_OCCURS, 1.0, 0.8)
    assert len(g.edges) == 1
    assert e.weight == pytest.approx(0.36)  # 0.2, then 0.8 * 0.2 + 0.2
    assert e.reinforcements == 2


def test_reload_then_reinforce_does_not_duplicate_edges():
    g = _small_graph()
    state = g.to_json()

    again = CognitiveGraph()
    again.load_from_json(state)
    again.reinforce(node_id(NODE_PATTERN, "genre_explorer"), node_id(NODE_GENRE, "jazz"), EDGE_EXPRESSES, 1.0, 0.8)
    again.reinforce(node_id(NODE_PATTERN, "genre_explorer"), node_id(NODE_GENRE, "jazz"), EDGE_EXPRESSES, 1.0, 0.8)
    assert len(again.edges) == len(g.edges)
    assert again.edges[edge_id("pattern:genre_explorer", EDGE_EXPRESSES, "genre:jazz")].reinforcements == 3


def test_merge_replaces_records_with_the_same_id():
    g = _small_graph()
    state = g.to_json()
    g.load_from_json(state)
    g.load_from_json(state)
    assert len(g.nodes) == 3 and len(g.edges) == 2
    assert g.to_json() == state


def test_remove_node_drops_incident_edges():
    g = _small_graph()
    g.remove_node("genre:jazz")
    assert "genre:jazz" not in g.nodes
    assert g.edges == {}


def test_decay_prunes_only_untouched_edges_below_floor():
    g = _small_graph()
    keep = edge_id("pattern:genre_explorer", EDGE_EXPRESSES, "genre:jazz")
    pruned = 0
    for _ in range(20):
        pruned += g.decay_unobserved([EDGE_BELONGS_TO, EDGE_EXPRESSES], {keep}, 0.8, 0.01)
    assert pruned == 1
    assert list(g.edges) == [keep]


def test_neighbors_and_directional_views():
    g = _small_graph()
    assert g.get_neighbors("genre:jazz") == ["episode:ep_e0001", "pattern:genre_explorer"]
    assert [e.kind for e in g.get_edges_from("pattern:genre_explorer")] == [EDGE_EXPRESSES]
    assert len(g.get_edges_to("genre:jazz")) == 2


def test_pagerank_sums_to_one_and_favours_hubs():
    g = _small_graph()
    g.upsert_node(NODE_PATTERN, "lonely", 0.1)
    pr = g.compute_pagerank()
    assert sum(pr.values()) == pytest.approx(1.0)
    assert pr["genre:jazz"] > pr["pattern:lonely"]
    assert CognitiveGraph().compute_pagerank() == {}


def test_stats_shape():
    stats = _small_graph().get_stats()
    assert stats["node_count"] == 3
    assert stats["edge_count"] == 2
    assert stats["nodes_by_type"] == {"episode": 1, "genre": 1, "pattern": 1}
    assert stats["avg_degree"] == pytest.approx(4 / 3)


def _star() -> CognitiveGraph:
    # one pattern expressing three genres; two of the genres share an episode
    g = CognitiveGraph()
    g.upsert_node(NODE_PATTERN, "genre_explorer", 0.9, BASE_TIME)
    for k, genre in enumerate(["jazz", "folk", "house"]):
        g.upsert_node(NODE_GENRE, genre, 0.5, BASE_TIME + timedelta(days=10 * k))
        g.reinforce("pattern:genre_explorer", f"genre:{genre}", EDGE_EXPRESSES, 1.0, 0.5, BASE_TIME)
    g.upsert_node(NODE_EPISODE, "ep_v0001", 1.0, BASE_TIME)
    g.reinforce("episode:ep_v0001", "genre:jazz", EDGE_BELONGS_TO, 1.0, 0.5, BASE_TIME)
    return g


def test_hits_separates_hubs_from_authorities():
    hubs, auths = _star().compute_hits()
    assert max(hubs, key=hubs.get) == "pattern:genre_explorer"
    assert max(auths, key=auths.get) == "genre:jazz"
    assert auths["pattern:genre_explorer"] == 0.0
    assert sum(v * v for v in hubs.values()) == pytest.approx(1.0)
    assert CognitiveGraph().compute_hits() == ({}, {})


def test_betweenness_peaks_at_the_bridge():
    b = _star().compute_betweenness()
    # the pattern sits on every path between genres; jazz bridges to the episode
    assert b["pattern:genre_explorer"] > b["genre:jazz"] > 0.0
    assert b["genre:folk"] == 0.0 and b["episode:ep_v0001"] == 0.0
    assert all(0.0 <= v <= 1.0 for v in b.values())


def test_recency_is_relative_to_newest_node():
    g = _star()
    g.upsert_node(NODE_GENRE, "undated", 0.1)
    r = g.compute_recency()
    assert r["genre:house"] == pytest.approx(1.0)
    assert r["genre:folk"] == pytest.approx(math.exp(-10 / 30))
    assert r["genre:undated"] == 0.0


def test_importance_blends_all_signals():
    g = _star()
    scores = g.compute_importance_scores()
    assert set(scores) == set(g.nodes)
    s = scores["pattern:genre_explorer"]
    expected = sum(w * getattr(s, k) for k, w in IMPORTANCE_WEIGHTS.items())
    assert s.combined == pytest.approx(expected)
    assert sum(IMPORTANCE_WEIGHTS.values()) == pytest.approx(1.0)
    assert g.compute_importance_scores() == scores
