"""
Unified export surface for data store helpers.

Import from here in routers/engine code, e.g.:
    from tasteid_backend.app.services.data_stores import (
        # Reviews (read-only feed)
        list_rating_events,
        # Taste profiles
        get_profile, recompute_for_user, delete_profile,
    )
"""

from __future__ import annotations

# ---- Review feed ----
from .reviews import (  # noqa: F401
    list_rating_events,
    add_reviews,
)

# ---- Taste profiles ----
from .taste_profiles import (  # noqa: F401
    get_profile,
    load_snapshot,
    save_profile,
    recompute_for_user,
    delete_profile,
)

__all__ = [
    # reviews
    "list_rating_events", "add_reviews",
    # taste profiles
    "get_profile", "load_snapshot", "save_profile", "recompute_for_user", "delete_profile",
]
