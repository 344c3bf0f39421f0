import concurrent.futures as cf
import gc

import pytest
from fastapi.testclient import TestClient

from tasteid_backend.app.db.seed import demo_events
from tasteid_backend.app.services.data_stores import add_reviews, list_rating_events
from tasteid_backend.app.services.data_stores import taste_profiles
from tasteid_backend.app.services.tasteid import ConcurrentRecomputeError, compute_taste_profile


def test_parallel_recomputes_serialize_per_user(client: TestClient):
    add_reviews(demo_events("conc", 30))

    with cf.ThreadPoolExecutor(max_workers=8) as ex:
        resps = list(ex.map(lambda _: client.post("/tasteid/compute/conc"), range(8)))

    assert all(r.status_code == 200 for r in resps)
    assert sorted(r.json()["version"] for r in resps) == list(range(1, 9))
    assert client.get("/tasteid/conc").json()["version"] == 8


def test_stale_writer_is_rejected(client: TestClient):
    add_reviews(demo_events("stale", 30))
    values = taste_profiles._row_values(compute_taste_profile(list_rating_events("stale")))

    first = taste_profiles.save_profile("stale", None, values)
    assert first.version == 1

    # second "first write" loses on the primary key
    with pytest.raises(ConcurrentRecomputeError):
        taste_profiles.save_profile("stale", None, values)

    assert taste_profiles.save_profile("stale", 1, values).version == 2
    with pytest.raises(ConcurrentRecomputeError) as exc:
        taste_profiles.save_profile("stale", 1, values)
    assert exc.value.retryable
    assert taste_profiles.get_profile("stale").version == 2


def test_user_locks_are_released_once_idle():
    lock = taste_profiles._user_lock("idle-user")
    with lock:
        assert taste_profiles._user_lock("idle-user") is lock
    del lock
    gc.collect()
    assert "idle-user" not in taste_profiles._LOCKS
