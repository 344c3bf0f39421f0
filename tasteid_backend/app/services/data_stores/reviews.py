# tasteid_backend/app/services/data_stores/reviews.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List

from sqlmodel import Session, select

from tasteid_backend.app.db.models import ReviewRow
from tasteid_backend.app.db.session import engine
from tasteid_backend.app.models.tasteid import RatingEvent

# Purpose:
# Read-only ordered feed of one user's rating events, with the album fields
# (genres / artist / release year) already resolved onto each row.
# add_reviews() exists for fixtures and db/seed.py only.


def _to_event(row: ReviewRow) -> RatingEvent:
    return RatingEvent(
        id=row.id,
        user_id=row.user_id,
        album_id=row.album_id,
        rating=row.rating,
        vibes=list(row.vibes or []),
        created_at=row.created_at,
        album_genres=list(row.album_genres or []),
        artist_name=row.artist_name,
        release_year=row.release_year,
    )

def list_rating_events(user_id: str) -> List[RatingEvent]:
    with Session(engine) as session:
        rows = session.exec(
            select(ReviewRow)
            .where(ReviewRow.user_id == user_id)
            .order_by(ReviewRow.created_at, ReviewRow.id)
        ).all()
        return [_to_event(r) for r in rows]

def add_reviews(items: Iterable[RatingEvent | Dict[str, Any]]) -> int:
    """Insert or replace review rows by id."""
    n = 0
    with Session(engine) as session:
        for item in items:
            ev = item if isinstance(item, RatingEvent) else RatingEvent.model_validate(item)
            row = session.get(ReviewRow, ev.id)
            values = dict(
                user_id=ev.user_id,
                album_id=ev.album_id,
                rating=ev.rating,
                vibes=list(ev.vibes),
                album_genres=list(ev.album_genres),
                artist_name=ev.artist_name,
                release_year=ev.release_year,
                created_at=ev.created_at,
            )
            if row is None:
                row = ReviewRow(id=ev.id, **values)
            else:
                for k, v in values.items():
                    setattr(row, k, v)
            session.add(row)
            n += 1
        session.commit()
    return n
