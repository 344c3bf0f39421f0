import json
from datetime import datetime, timedelta, timezone

import pytest

from tasteid_backend.app.models.tasteid import DriftKind, PatternStatus
from tasteid_backend.app.services.tasteid import (
    InsufficientDataError,
    TasteComputationError,
    compute_taste_profile,
)
from tasteid_backend.app.services.tasteid.config import load_engine_config
from tasteid_backend.app.services.tasteid.engine import SNAPSHOT_KEYS


def _through_json(blobs):
    # what the store hands back: plain JSON, no pydantic objects
    return json.loads(json.dumps(blobs))


def test_scenario_a_three_identical_ratings(make_event):
    events = [make_event(i, artist="Same Artist", genres=["pop"], rating=10.0) for i in range(3)]
    res = compute_taste_profile(events)
    assert res.signature_result.archetype.adventureness_score < 0.3
    assert res.patterns == []
    assert res.metrics["rich_profile"] is False
    assert res.drift_alerts == []
    assert set(res.snapshot.to_blobs()) == set(SNAPSHOT_KEYS)


def test_below_minimum_is_rejected(make_event):
    with pytest.raises(InsufficientDataError) as exc:
        compute_taste_profile([make_event(0), make_event(1)])
    assert exc.value.have == 2 and exc.value.need == 3
    assert not exc.value.retryable


def test_scenario_b_confirms_oscillation(oscillating_history):
    res = compute_taste_profile(oscillating_history())
    by_id = {p.id: p for p in res.patterns}
    assert by_id["discovery_comfort_oscillation"].status == PatternStatus.CONFIRMED
    assert res.metrics["patterns"]["confirmed"] >= 1
    assert res.metrics["rich_profile"] is True
    assert "pattern:discovery_comfort_oscillation" in {n["id"] for n in res.snapshot.to_blobs()["cognitive_graph"]["nodes"]}


def test_scenario_c_fade_raises_disappearance(oscillating_history, familiar_tail):
    first = oscillating_history()
    r1 = compute_taste_profile(first)
    history = first + familiar_tail(len(first), 40, first[-1].created_at)
    r2 = compute_taste_profile(history, _through_json(r1.snapshot.to_blobs()))

    osc = next(p for p in r2.patterns if p.id == "discovery_comfort_oscillation")
    assert osc.status == PatternStatus.FADED
    gone = [a for a in r2.drift_alerts if a.kind == DriftKind.PATTERN_DISAPPEARED]
    assert [a.subject for a in gone] == ["discovery_comfort_oscillation"]
    assert gone[0].detected_at == history[-1].created_at


def test_scenario_d_recompute_is_idempotent(varied_history):
    r1 = compute_taste_profile(varied_history)
    blobs = _through_json(r1.snapshot.to_blobs())
    r2 = compute_taste_profile(varied_history, blobs)
    assert _through_json(r2.snapshot.to_blobs()) == blobs
    assert r2.drift_alerts == []
    assert r2.summary()["consolidated_tastes"] == r1.summary()["consolidated_tastes"]


def test_input_order_does_not_matter(varied_history):
    a = compute_taste_profile(varied_history)
    b = compute_taste_profile(list(reversed(varied_history)))
    assert a.snapshot.to_blobs() == b.snapshot.to_blobs()


def test_corrupt_prior_is_absorbed_as_cold_start(varied_history):
    cold = compute_taste_profile(varied_history)
    garbage = {
        "pattern_state": "not a list",
        "cognitive_graph": 5,
        "episode_history": [1, 2, 3],
        "drift_state": "nope",
    }
    res = compute_taste_profile(varied_history, garbage)
    assert res.snapshot.to_blobs() == cold.snapshot.to_blobs()


def test_unexpected_failure_is_wrapped(varied_history):
    class Exploding:
        def compute(self, events):
            raise RuntimeError("boom")

    with pytest.raises(TasteComputationError) as exc:
        compute_taste_profile(varied_history, signature_computer=Exploding())
    assert exc.value.retryable
    assert "boom" in str(exc.value)


def test_summary_views(varied_history):
    summary = compute_taste_profile(varied_history).summary()
    assert set(summary) == {
        "consolidated_tastes", "episode_stats", "recent_episodes",
        "significant_drifts", "patterns_by_importance", "metrics",
    }
    ends = [e["end_at"] for e in summary["recent_episodes"]]
    assert ends == sorted(ends, reverse=True)
    assert summary["metrics"]["event_count"] == 40


def test_config_overlay_coerces_and_filters():
    cfg = load_engine_config({
        "patterns": {"emergence": "0.5", "min_span_events": 10.0, "unknown_key": 1},
        "drift": {"contradictions": [["a", "b"], ["lonely"]]},
        "consolidation": None,
    })
    assert cfg.patterns.emergence == 0.5
    assert cfg.patterns.min_span_events == 10 and isinstance(cfg.patterns.min_span_events, int)
    assert cfg.drift.contradictions == [("a", "b")]
    assert cfg.consolidation.max_stored_episodes == 50


def test_disappearance_survives_frequent_recomputes(make_event):
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def ratings(first, count, rating):
        return [
            make_event(i, artist=f"Artist {i}", genres=["rock"], rating=rating, at=start + timedelta(days=2 * i))
            for i in range(first, first + count)
        ]

    history = ratings(0, 20, 5.0)
    r1 = compute_taste_profile(history)
    assert {p.id: p.status for p in r1.patterns}["critical_ear"] == PatternStatus.CONFIRMED

    # fades five ratings later: not enough new ratings to call it yet
    history = history + ratings(20, 5, 10.0)
    r2 = compute_taste_profile(history, _through_json(r1.snapshot.to_blobs()))
    assert {p.id: p.status for p in r2.patterns}["critical_ear"] == PatternStatus.FADED
    assert not [a for a in r2.drift_alerts if a.kind == DriftKind.PATTERN_DISAPPEARED]

    history = history + ratings(25, 25, 10.0)
    r3 = compute_taste_profile(history, _through_json(r2.snapshot.to_blobs()))
    gone = [a.subject for a in r3.drift_alerts if a.kind == DriftKind.PATTERN_DISAPPEARED]
    assert "critical_ear" in gone

    # same outcome as a single recompute straight from the first snapshot
    direct = compute_taste_profile(history, _through_json(r1.snapshot.to_blobs()))
    assert "critical_ear" in [a.subject for a in direct.drift_alerts if a.kind == DriftKind.PATTERN_DISAPPEARED]
