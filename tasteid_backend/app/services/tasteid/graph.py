# tasteid_backend/app/services/tasteid/graph.py
from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from tasteid_backend.app.models.tasteid import CognitiveEdge, CognitiveNode, GraphState

# Purpose:
# Arena-style associative graph. Nodes are keyed "{type}:{key}", edges
# "{source}|{kind}|{target}". Nothing holds object references across the
# boundary, so (de)serialization and merge-on-reload are keyed lookups.
#
# Edge weights follow an EMA: w' = decay * w + (1 - decay) * observed.

NODE_EPISODE = "episode"
NODE_GENRE = "genre"
NODE_PATTERN = "pattern"

EDGE_EXHIBITED_IN = "exhibited_in"   # pattern → episode
EDGE_EXPRESSES = "expresses"         # pattern → taste
EDGE_BELONGS_TO = "belongs_to"       # episode → taste
EDGE_CO_OCCURS = "co_occurs"         # pattern → pattern

LEARNED_EDGE_KINDS = (EDGE_EXHIBITED_IN, EDGE_EXPRESSES, EDGE_BELONGS_TO, EDGE_CO_OCCURS)

# pattern importance blend: structural position plus how recently the node was seen
IMPORTANCE_WEIGHTS = {
    "pagerank": 0.30,
    "authority": 0.25,
    "hub": 0.15,
    "betweenness": 0.15,
    "recency": 0.15,
}


@dataclass
class NodeImportance:
    pagerank: float = 0.0
    hub: float = 0.0
    authority: float = 0.0
    betweenness: float = 0.0
    recency: float = 0.0
    combined: float = 0.0


def node_id(node_type: str, key: str) -> str:
    return f"{node_type}:{key}"

def edge_id(source: str, kind: str, target: str) -> str:
    return f"{source}|{kind}|{target}"


class CognitiveGraph:
    def __init__(self) -> None:
        self.nodes: Dict[str, CognitiveNode] = {}
        self.edges: Dict[str, CognitiveEdge] = {}

    # ---------- nodes ----------

    def upsert_node(
        self,
        node_type: str,
        key: str,
        weight: float,
        at: Optional[datetime] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> CognitiveNode:
        nid = node_id(node_type, key)
        node = self.nodes.get(nid)
        if node is None:
            node = CognitiveNode(
                id=nid, type=node_type, key=key, weight=float(weight),
                first_seen_at=at, last_seen_at=at, data=dict(data or {}),
            )
            self.nodes[nid] = node
            return node
        node.weight = float(weight)
        if at is not None:
            if node.first_seen_at is None or at < node.first_seen_at:
                node.first_seen_at = at
            if node.last_seen_at is None or at > node.last_seen_at:
                node.last_seen_at = at
        if data:
            node.data = {**node.data, **data}
        return node

    def get_node(self, nid: str) -> Optional[CognitiveNode]:
        return self.nodes.get(nid)

    def get_nodes_by_type(self, node_type: str) -> List[CognitiveNode]:
        return [n for _, n in sorted(self.nodes.items()) if n.type == node_type]

    def remove_node(self, nid: str) -> None:
        self.nodes.pop(nid, None)
        for eid in [eid for eid, e in self.edges.items() if e.source == nid or e.target == nid]:
            del self.edges[eid]

    # ---------- edges ----------

    def reinforce(
        self,
        source: str,
        target: str,
        kind: str,
        observed: float,
        decay: float,
        at: Optional[datetime] = None,
    ) -> CognitiveEdge:
        """EMA update of one edge; creates it on first sight. One edge per (source, kind, target)."""
        eid = edge_id(source, kind, target)
        edge = self.edges.get(eid)
        if edge is None:
            edge = CognitiveEdge(id=eid, source=source, target=target, kind=kind)
            self.edges[eid] = edge
        edge.weight = decay * edge.weight + (1.0 - decay) * max(0.0, min(1.0, observed))
        edge.reinforcements += 1
        if at is not None:
            edge.last_reinforced_at = at
        return edge

    def decay_unobserved(self, kinds: Iterable[str], touched: Set[str], decay: float, prune_below: float) -> int:
        """Decay edges of the given kinds not reinforced this pass; prune what falls under the floor."""
        kinds = set(kinds)
        pruned = 0
        for eid in sorted(self.edges):
            edge = self.edges[eid]
            if edge.kind not in kinds or eid in touched:
                continue
            edge.weight *= decay
            if edge.weight < prune_below:
                del self.edges[eid]
                pruned += 1
        return pruned

    def get_edges_from(self, nid: str) -> List[CognitiveEdge]:
        return [e for _, e in sorted(self.edges.items()) if e.source == nid]

    def get_edges_to(self, nid: str) -> List[CognitiveEdge]:
        return [e for _, e in sorted(self.edges.items()) if e.target == nid]

    def get_neighbors(self, nid: str) -> List[str]:
        out = {e.target for e in self.edges.values() if e.source == nid}
        out.update(e.source for e in self.edges.values() if e.target == nid)
        return sorted(out)

    # ---------- analytics ----------

    def compute_pagerank(self, damping: float = 0.85, iterations: int = 50) -> Dict[str, float]:
        """
        Weighted PageRank over the undirected view of the graph.
        Patterns mostly have outgoing edges, so direction would starve them.
        """
        ids = sorted(self.nodes)
        n = len(ids)
        if n == 0:
            return {}
        adj: Dict[str, Dict[str, float]] = {i: {} for i in ids}
        for _, e in sorted(self.edges.items()):
            if e.source not in adj or e.target not in adj or e.weight <= 0:
                continue
            adj[e.source][e.target] = adj[e.source].get(e.target, 0.0) + e.weight
            adj[e.target][e.source] = adj[e.target].get(e.source, 0.0) + e.weight
        out_w = {i: sum(adj[i].values()) for i in ids}

        rank = {i: 1.0 / n for i in ids}
        for _ in range(iterations):
            dangling = sum(rank[i] for i in ids if out_w[i] <= 0)
            nxt = {i: (1.0 - damping) / n + damping * dangling / n for i in ids}
            for i in ids:
                if out_w[i] <= 0:
                    continue
                share = damping * rank[i] / out_w[i]
                for j, w in adj[i].items():
                    nxt[j] += share * w
            rank = nxt
        return rank

    def _undirected(self) -> Dict[str, List[str]]:
        adj: Dict[str, Set[str]] = {i: set() for i in self.nodes}
        for e in self.edges.values():
            if e.source in adj and e.target in adj and e.source != e.target:
                adj[e.source].add(e.target)
                adj[e.target].add(e.source)
        return {i: sorted(adj[i]) for i in sorted(adj)}

    def compute_hits(self, iterations: int = 20) -> Tuple[Dict[str, float], Dict[str, float]]:
        """
        Hub / authority scores over the directed edges, L2-normalized each round.
        Patterns are the hubs (they point at tastes and episodes); tastes collect authority.
        """
        ids = sorted(self.nodes)
        outgoing: Dict[str, List[str]] = {i: [] for i in ids}
        incoming: Dict[str, List[str]] = {i: [] for i in ids}
        for _, e in sorted(self.edges.items()):
            if e.source in outgoing and e.target in incoming:
                outgoing[e.source].append(e.target)
                incoming[e.target].append(e.source)

        hubs = {i: 1.0 for i in ids}
        auths = {i: 1.0 for i in ids}
        for _ in range(iterations):
            auths = {i: sum(hubs[s] for s in incoming[i]) for i in ids}
            hubs = {i: sum(auths[t] for t in outgoing[i]) for i in ids}
            auth_norm = math.sqrt(sum(v * v for v in auths.values())) or 1.0
            hub_norm = math.sqrt(sum(v * v for v in hubs.values())) or 1.0
            auths = {i: v / auth_norm for i, v in auths.items()}
            hubs = {i: v / hub_norm for i, v in hubs.items()}
        return hubs, auths

    def compute_betweenness(self) -> Dict[str, float]:
        """Brandes betweenness on the unweighted undirected view, scaled by 1 / ((n-1)(n-2))."""
        adj = self._undirected()
        ids = list(adj)
        score = {i: 0.0 for i in ids}
        for source in ids:
            stack: List[str] = []
            preds: Dict[str, List[str]] = {i: [] for i in ids}
            paths = {i: 0.0 for i in ids}
            dist = {i: -1 for i in ids}
            paths[source], dist[source] = 1.0, 0
            queue = deque([source])
            while queue:
                v = queue.popleft()
                stack.append(v)
                for w in adj[v]:
                    if dist[w] < 0:
                        dist[w] = dist[v] + 1
                        queue.append(w)
                    if dist[w] == dist[v] + 1:
                        paths[w] += paths[v]
                        preds[w].append(v)
            delta = {i: 0.0 for i in ids}
            while stack:
                w = stack.pop()
                for v in preds[w]:
                    delta[v] += paths[v] / paths[w] * (1.0 + delta[w])
                if w != source:
                    score[w] += delta[w]
        n = len(ids)
        if n > 2:
            factor = 1.0 / ((n - 1) * (n - 2))
            score = {i: v * factor for i, v in score.items()}
        return score

    def compute_recency(self, scale_days: float = 30.0) -> Dict[str, float]:
        """exp(-age / 30d), age measured from the newest last_seen_at in the graph. Undated nodes → 0."""
        seen = [n.last_seen_at for n in self.nodes.values() if n.last_seen_at is not None]
        if not seen:
            return {i: 0.0 for i in sorted(self.nodes)}
        latest = max(seen)
        out: Dict[str, float] = {}
        for i in sorted(self.nodes):
            at = self.nodes[i].last_seen_at
            if at is None:
                out[i] = 0.0
                continue
            age_days = (latest - at).total_seconds() / 86400
            out[i] = math.exp(-age_days / scale_days)
        return out

    def compute_importance_scores(self) -> Dict[str, NodeImportance]:
        pr = self.compute_pagerank()
        hubs, auths = self.compute_hits()
        between = self.compute_betweenness()
        recency = self.compute_recency()
        out: Dict[str, NodeImportance] = {}
        for i in sorted(self.nodes):
            parts = NodeImportance(
                pagerank=pr.get(i, 0.0),
                hub=hubs.get(i, 0.0),
                authority=auths.get(i, 0.0),
                betweenness=between.get(i, 0.0),
                recency=recency.get(i, 0.0),
            )
            parts.combined = sum(IMPORTANCE_WEIGHTS[k] * getattr(parts, k) for k in IMPORTANCE_WEIGHTS)
            out[i] = parts
        return out

    def get_stats(self) -> Dict[str, Any]:
        n = len(self.nodes)
        m = len(self.edges)
        by_type: Dict[str, int] = {}
        for node in self.nodes.values():
            by_type[node.type] = by_type.get(node.type, 0) + 1
        by_kind: Dict[str, int] = {}
        for edge in self.edges.values():
            by_kind[edge.kind] = by_kind.get(edge.kind, 0) + 1
        return {
            "node_count": n,
            "edge_count": m,
            "nodes_by_type": dict(sorted(by_type.items())),
            "edges_by_kind": dict(sorted(by_kind.items())),
            "density": (m / (n * (n - 1))) if n > 1 else 0.0,
            "avg_degree": (2.0 * m / n) if n else 0.0,
        }

    # ---------- persistence ----------

    def load_from_json(self, state: GraphState | Dict[str, Any]) -> None:
        """Merge a serialized graph; a record with an existing id replaces it, never duplicates it."""
        gs = state if isinstance(state, GraphState) else GraphState.model_validate(state or {})
        for node in gs.nodes:
            self.nodes[node.id] = node.model_copy(deep=True)
        for edge in gs.edges:
            self.edges[edge.id] = edge.model_copy(deep=True)

    def to_state(self) -> GraphState:
        return GraphState(
            nodes=[self.nodes[k].model_copy(deep=True) for k in sorted(self.nodes)],
            edges=[self.edges[k].model_copy(deep=True) for k in sorted(self.edges)],
        )

    def to_json(self) -> Dict[str, Any]:
        return self.to_state().model_dump(mode="json")
