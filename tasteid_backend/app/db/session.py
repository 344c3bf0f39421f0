# tasteid_backend/app/db/session.py

# [DB Session] one engine for the review feed and the taste_profile table
from sqlmodel import SQLModel, create_engine

from tasteid_backend.app.config import DB_URL, DEBUG_MODE, ensure_data_dir_exists

_IS_SQLITE = DB_URL.startswith("sqlite")
if _IS_SQLITE:
    ensure_data_dir_exists()

# Request handlers and the recompute lock run on worker threads
connect_args = {"check_same_thread": False} if _IS_SQLITE else {}

engine = create_engine(DB_URL, echo=DEBUG_MODE, connect_args=connect_args)


def init_db() -> None:
    # Ensure table definitions are registered before create_all
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)
