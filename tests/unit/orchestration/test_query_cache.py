from __future__ import annotations

from dealdesk.orchestration.query_cache import (
    BOARD_KEY,
    OPPORTUNITY_LIST_KEY,
    QueryCache,
    account_key,
    opportunity_key,
)


def test_missing_key_is_stale():
    cache = QueryCache()
    assert cache.get(BOARD_KEY) is None
    assert cache.is_stale(BOARD_KEY) is True


def test_prefix_invalidation_marks_list_and_board():
    cache = QueryCache()
    cache.set(BOARD_KEY, [1])
    cache.set(opportunity_key(4), {"ID": 4})
    cache.set(account_key(7), {"ID": 7})

    invalidated = cache.invalidate(OPPORTUNITY_LIST_KEY)

    assert invalidated == [BOARD_KEY]
    assert cache.is_stale(BOARD_KEY) is True
    assert cache.get(BOARD_KEY) == [1]
    assert cache.is_stale(opportunity_key(4)) is False


def test_set_clears_stale_flag():
    cache = QueryCache()
    cache.set(account_key(7), {"ID": 7})
    cache.invalidate(account_key(7))
    cache.set(account_key(7), {"ID": 7, "Name": "Acme"})
    assert cache.is_stale(account_key(7)) is False


def test_snapshot_is_independent_copy():
    cache = QueryCache()
    cache.set(BOARD_KEY, [{"ID": 1, "Stage": 2}])
    snapshot = cache.snapshot(BOARD_KEY)
    cache.get(BOARD_KEY)[0]["Stage"] = 5
    assert snapshot == [{"ID": 1, "Stage": 2}]


def test_keys_lists_cached_entries():
    cache = QueryCache()
    cache.set(opportunity_key(1), {"ID": 1})
    cache.set(BOARD_KEY, [])
    assert sorted(cache.keys(), key=str) == sorted([opportunity_key(1), BOARD_KEY], key=str)
