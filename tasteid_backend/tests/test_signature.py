import math

import pytest

from tasteid_backend.app.models.tasteid import SIGNATURE_DIMENSIONS, ListeningSignature, RatingSkew
from tasteid_backend.app.services.tasteid.config import SignatureConfig
from tasteid_backend.app.services.tasteid.signature import (
    SignatureComputer,
    adventureness,
    dominant_dimensions,
    rating_style,
    signature_uniqueness,
)


@pytest.fixture(scope="module")
def computer():
    return SignatureComputer()


def test_single_event_does_not_crash(computer, make_event):
    res = computer.compute([make_event(0)])
    assert res.stats.event_count == 1
    assert 0.0 <= res.archetype.confidence <= 1.0
    assert res.archetype.confidence < 0.1  # one rating is barely evidence


def test_empty_history_is_rejected(computer):
    with pytest.raises(ValueError):
        computer.compute([])


def test_signature_is_normalized_and_raw_is_kept(computer, varied_history):
    res = computer.compute(varied_history)
    assert math.isclose(res.signature.total(), 1.0, rel_tol=1e-9)
    assert res.raw_signature.total() > 1.0
    for d in SIGNATURE_DIMENSIONS:
        assert getattr(res.signature, d) >= 0.0


def test_contribution_rules(computer, make_event):
    events = [
        make_event(0, artist="A", genres=["rock"], rating=10, release_year=2025),   # novel artist + genre, reactive, extreme
        make_event(1, artist="A", genres=["rock"], rating=6, release_year=1990),    # comfort, same-artist streak
        make_event(2, artist="A", genres=["rock"], rating=6, release_year=1990),
        make_event(3, artist="A", genres=["rock"], rating=6, release_year=1990),
        make_event(4, artist="A", genres=["rock"], rating=6, release_year=1990),    # 3+ prior A ratings from here on
    ]
    raw = computer.compute(events).raw_signature
    assert raw.discovery == pytest.approx(1.5)
    assert raw.comfort == pytest.approx(4.0)
    assert raw.deep_dive == pytest.approx(0.5 * 4 + 1.0 * 2)
    assert raw.reactive == pytest.approx(1.0)
    assert raw.emotional == pytest.approx(1.0)


def test_vibe_tags_map_to_dimensions(computer, make_event):
    events = [
        make_event(0, artist="A", vibes=["party"], rating=6),
        make_event(1, artist="B", vibes=["atmospheric"], rating=6),
        make_event(2, artist="C", vibes=["not-a-known-tag"], rating=6),
    ]
    raw = computer.compute(events).raw_signature
    assert raw.social == pytest.approx(1.0)
    assert raw.aesthetic == pytest.approx(1.0)


def test_rating_style_skew():
    cfg = SignatureConfig()
    assert rating_style([3, 4, 4, 3], cfg).skew == RatingSkew.HARSH
    assert rating_style([9, 9, 10, 8], cfg).skew == RatingSkew.LENIENT
    style = rating_style([6, 7, 6, 7], cfg)
    assert style.skew == RatingSkew.BALANCED
    assert style.average == pytest.approx(6.5)
    assert style.std_dev == pytest.approx(0.5)


@pytest.mark.parametrize("values", [
    {},                                          # all zero
    {"discovery": 1.0},                          # one-hot
    {"aesthetic": 1e9},                          # maximally skewed, unnormalized
    {d: 1.0 for d in SIGNATURE_DIMENSIONS},      # uniform
    {"comfort": 0.3, "emotional": 0.7},
])
@pytest.mark.parametrize("n", [1, 3, 20, 500])
def test_archetype_confidence_bounds(computer, values, n):
    _, _, confidence, distances = computer.classify(ListeningSignature(**values), n)
    assert 0.0 <= confidence <= 1.0
    assert distances


def test_zero_signature_has_zero_confidence(computer):
    _, _, confidence, _ = computer.classify(ListeningSignature(), 50)
    assert confidence == 0.0


def test_exact_prototype_match(computer):
    proto = computer.prototypes["comfort-listener"]
    primary, secondary, confidence, distances = computer.classify(ListeningSignature(**proto), 20)
    assert primary == "comfort-listener"
    assert distances["comfort-listener"] == pytest.approx(0.0, abs=1e-12)
    assert secondary is None
    assert confidence == pytest.approx(1.0)


def test_scenario_a_low_adventureness(computer, make_event):
    events = [make_event(i, artist="Same Artist", genres=["pop"], rating=10.0) for i in range(3)]
    res = computer.compute(events)
    assert res.archetype.adventureness_score < 0.3
    assert res.archetype.top_artists == ["Same Artist"]


def test_adventureness_rises_with_diversity(make_event):
    narrow = [make_event(i, artist="A", genres=["pop"]) for i in range(10)]
    wide = [make_event(i, artist=f"A{i}", genres=[f"g{i}"]) for i in range(10)]
    assert adventureness(wide) > adventureness(narrow)
    assert 0.0 <= adventureness(wide) <= 1.0


def test_polarity_tracks_spread(computer, make_event):
    calm = computer.compute([make_event(i, artist=f"A{i}", rating=6 + i % 2) for i in range(10)])
    wild = computer.compute([make_event(i, artist=f"A{i}", rating=1 if i % 2 else 10) for i in range(10)])
    assert wild.archetype.polarity_score > calm.archetype.polarity_score
    assert wild.archetype.polarity_score <= 1.0


def test_stats_are_deterministic(computer, varied_history):
    a = computer.compute(varied_history).stats
    b = computer.compute(list(reversed(varied_history))).stats
    assert a == b
    assert a.top_genres and len(a.top_genres) <= 5
    assert sum(a.decade_preferences.values()) == pytest.approx(1.0)


def test_deep_dive_alias_accepted():
    sig = ListeningSignature.model_validate({"deepDive": 0.4, "comfort": 0.6})
    assert sig.deep_dive == pytest.approx(0.4)


RANGES = {
    "discovery": {"min": 0.15, "max": 0.30},
    "comfort": {"min": 0.18, "max": 0.32},
    "aesthetic": {"min": 0.02, "max": 0.10},
}


def test_uniqueness_measures_distance_from_typical():
    typical = ListeningSignature(discovery=0.225, comfort=0.25, aesthetic=0.06)
    score, standouts = signature_uniqueness(typical, RANGES)
    assert score == pytest.approx(0.0)
    assert standouts == []

    odd = ListeningSignature(discovery=0.0, comfort=0.0, aesthetic=1.0)
    score, standouts = signature_uniqueness(odd, RANGES)
    assert score == pytest.approx((0.225 + 0.25 + 0.94) / 1.5)
    assert [(s.dimension, s.direction) for s in standouts] == [
        ("aesthetic", "high"), ("comfort", "low"), ("discovery", "low"),
    ]
    assert standouts[0].deviation == pytest.approx(0.9)
    assert signature_uniqueness(odd, {}) == (0.0, [])


def test_dominant_dimensions_skip_empty_ones():
    sig = ListeningSignature(comfort=0.5, discovery=0.25, emotional=0.25)
    assert dominant_dimensions(sig) == ["comfort", "discovery", "emotional"]
    assert dominant_dimensions(sig, limit=1) == ["comfort"]
    assert dominant_dimensions(ListeningSignature(reactive=1.0)) == ["reactive"]


def test_stats_carry_uniqueness_and_dominant_dimensions(computer, varied_history):
    stats = computer.compute(varied_history).stats
    assert 0.0 <= stats.uniqueness <= 1.0
    assert 1 <= len(stats.dominant_dimensions) <= 3
    assert len(stats.standout_dimensions) <= 3
    assert all(s.deviation > 0 for s in stats.standout_dimensions)
