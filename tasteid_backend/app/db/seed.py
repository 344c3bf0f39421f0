# Demo data: one user with a few months of ratings, enough for every component.
from datetime import datetime, timedelta, timezone

from sqlmodel import Session, select

from tasteid_backend.app.db.models import ReviewRow
from tasteid_backend.app.db.session import engine, init_db
from tasteid_backend.app.models.tasteid import RatingEvent
from tasteid_backend.app.services.data_stores.reviews import add_reviews

DEMO_USER = "demo"

_FAMILIAR = [
    ("Radiohead", ["alternative", "art rock"], 1997),
    ("Björk", ["electronic", "art pop"], 1997),
    ("Kendrick Lamar", ["hip hop"], 2015),
]
_VIBES = [["melancholic"], ["atmospheric", "late-night"], ["hype"], ["nostalgic"], []]
_NEW_GENRES = [["jazz"], ["ambient"], ["shoegaze"], ["post-punk"], ["afrobeat"], ["folk"]]


def demo_events(user_id: str = DEMO_USER, count: int = 40) -> list:
    start = datetime(2025, 1, 6, 20, 0, tzinfo=timezone.utc)
    out = []
    for i in range(count):
        at = start + timedelta(days=i * 4, minutes=i)
        if i % 2 == 0:
            artist, genres, year = _FAMILIAR[(i // 2) % len(_FAMILIAR)]
        else:
            artist, genres, year = f"New Artist {i}", _NEW_GENRES[i % len(_NEW_GENRES)], 2024
        out.append(RatingEvent(
            id=f"{user_id}-r{i:03d}",
            user_id=user_id,
            album_id=f"alb-{i:03d}",
            rating=float(4 + (i * 3) % 7),
            vibes=_VIBES[i % len(_VIBES)],
            created_at=at,
            album_genres=genres,
            artist_name=artist,
            release_year=year,
        ))
    return out


def seed_defaults():
    init_db()
    with Session(engine) as session:
        if session.exec(select(ReviewRow).where(ReviewRow.user_id == DEMO_USER)).first():
            return "already seeded"
    add_reviews(demo_events())
    return "seeded"


if __name__ == "__main__":
    print(seed_defaults())
