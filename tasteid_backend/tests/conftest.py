from __future__ import annotations
import os
import tempfile
from datetime import datetime, timedelta, timezone

# --- Data tree + DB override (must happen before any app import reads the env) ---
_TMP_DATA = tempfile.mkdtemp(prefix="tasteid-tests-")
os.environ["DATA_DIR"] = _TMP_DATA
os.environ["TASTEID_DB_URL"] = f"sqlite:///{os.path.join(_TMP_DATA, 'tasteid-test.sqlite3')}"

import pytest
from fastapi.testclient import TestClient

from tasteid_backend.app.db.session import init_db
from tasteid_backend.app.main import app
from tasteid_backend.app.models.tasteid import RatingEvent

BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _event(
    i: int,
    *,
    user: str = "u1",
    artist: str = "Artist",
    genres=("rock",),
    rating: float = 7.0,
    at: datetime | None = None,
    vibes=(),
    release_year: int | None = 2010,
    prefix: str = "e",
) -> RatingEvent:
    return RatingEvent(
        id=f"{prefix}{i:04d}",
        user_id=user,
        album_id=f"alb-{prefix}{i}",
        rating=rating,
        vibes=list(vibes),
        created_at=at or BASE_TIME + timedelta(days=i),
        album_genres=list(genres),
        artist_name=artist,
        release_year=release_year,
    )


def _oscillating(n: int = 50, days: int = 180, user: str = "osc") -> list:
    """Every other rating is a brand-new artist; the rest return to two familiar ones."""
    step = timedelta(days=days) / n
    familiar = ["Familiar One", "Familiar Two"]
    out = []
    for i in range(n):
        if i < 2:
            artist, genres = familiar[i], ["indie rock"]
        elif i % 2 == 0:
            artist, genres = familiar[(i // 2) % 2], ["indie rock"]
        else:
            artist, genres = f"Newcomer {i}", [f"genre-{i % 7}"]
        out.append(_event(
            i, user=user, artist=artist, genres=genres,
            rating=5.0 + (i % 4), at=BASE_TIME + step * i, prefix="o",
        ))
    return out


def _familiar_tail(start: int, count: int, after: datetime, user: str = "osc") -> list:
    return [
        _event(
            start + k, user=user, artist="Familiar One", genres=["indie rock"],
            rating=6.0 + (k % 3), at=after + timedelta(days=2 * (k + 1)), prefix="o",
        )
        for k in range(count)
    ]


@pytest.fixture
def make_event():
    return _event

@pytest.fixture
def oscillating_history():
    return _oscillating

@pytest.fixture
def familiar_tail():
    return _familiar_tail

@pytest.fixture
def varied_history():
    """40 ratings across genres/artists with irregular gaps (some same-day runs)."""
    out = []
    t = BASE_TIME
    artists = ["Aphex Twin", "Boards of Canada", "Burial", "Four Tet", "Caribou"]
    genres = [["electronic"], ["ambient", "electronic"], ["dubstep"], ["house"], ["jazz"], ["folk"]]
    for i in range(40):
        t = t + (timedelta(hours=2) if i % 5 else timedelta(days=3))
        out.append(_event(
            i, artist=artists[(i * 3) % len(artists)], genres=genres[(i * 5) % len(genres)],
            rating=float(3 + (i * 7) % 8), at=t, vibes=["atmospheric"] if i % 4 == 0 else [],
            release_year=2000 + i % 25, prefix="v",
        ))
    return out


# --- App client (lifespan runs init_db) ---
@pytest.fixture(scope="session")
def client():
    init_db()
    with TestClient(app) as c:
        yield c
