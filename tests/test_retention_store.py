"""Tests for the bounded retention window."""

import random

import pytest

from feedwatch.core.kv_store import MemoryKeyValueStore
from feedwatch.services.retention_store import RetentionStore
from feedwatch.services.timestamps import parse_instant


def _check_window(state, max_retained=20):
    instants = [parse_instant(p.sortable_instant) for p in state.posts]
    assert len(state.posts) <= max_retained
    assert len({p.id for p in state.posts}) == len(state.posts)
    assert instants == sorted(instants, reverse=True)
    if state.posts:
        assert state.last_fetch_instant == state.posts[0].sortable_instant


@pytest.mark.asyncio
async def test_initial_state(store):
    state = await store.get_state()
    assert state.posts == []
    assert state.last_fetch_instant is None
    assert state.is_first_fetch is True
    assert await store.latest_instant() is None


@pytest.mark.asyncio
async def test_first_merge(store, make_post):
    new_count = await store.merge([make_post(1), make_post(3), make_post(2)])
    assert new_count == 3

    state = await store.get_state()
    assert [p.content for p in state.posts] == ["post number 3", "post number 2", "post number 1"]
    assert state.is_first_fetch is False
    assert state.last_fetch_instant == make_post(3).sortable_instant
    assert await store.latest_instant() == make_post(3).sortable_instant


@pytest.mark.asyncio
async def test_keeps_newest_twenty(store, make_post):
    posts = [make_post(i) for i in range(25)]
    random.Random(7).shuffle(posts)

    assert await store.merge(posts) == 25

    state = await store.get_state()
    assert len(state.posts) == 20
    assert [p.content for p in state.posts] == [f"post number {i}" for i in range(24, 4, -1)]
    assert state.last_fetch_instant == make_post(24).sortable_instant
    assert state.is_first_fetch is False


@pytest.mark.asyncio
async def test_merge_of_known_posts_changes_nothing(store, kv_store, make_post):
    await store.merge([make_post(1), make_post(2)])
    before = await kv_store.get()

    notified = []
    kv_store.subscribe(notified.append)
    assert await store.merge([make_post(2), make_post(1)]) == 0

    assert await kv_store.get() == before
    assert notified == []


@pytest.mark.asyncio
async def test_merge_empty_batch(store):
    assert await store.merge([]) == 0
    assert (await store.get_state()).is_first_fetch is True


@pytest.mark.asyncio
async def test_duplicates_within_batch_counted_once(store, make_post):
    post = make_post(1)
    assert await store.merge([post, post, make_post(2)]) == 2
    assert len((await store.get_state()).posts) == 2


@pytest.mark.asyncio
async def test_old_posts_fall_out_of_window(store, make_post):
    await store.merge([make_post(i) for i in range(100, 120)])
    new_count = await store.merge([make_post(1)])

    state = await store.get_state()
    # Counted as new, but too old to be retained
    assert new_count == 1
    assert make_post(1).id not in state.known_ids
    assert len(state.posts) == 20


@pytest.mark.asyncio
async def test_window_stays_bounded_over_many_merges(store, make_post):
    rng = random.Random(42)
    for _ in range(30):
        batch = [make_post(rng.randrange(200)) for _ in range(rng.randrange(0, 12))]
        await store.merge(batch)
        _check_window(await store.get_state())


@pytest.mark.asyncio
async def test_custom_window_size(kv_store, make_post):
    small = RetentionStore(kv_store, max_retained=3)
    await small.merge([make_post(i) for i in range(5)])
    state = await small.get_state()
    _check_window(state, max_retained=3)
    assert len(state.posts) == 3


@pytest.mark.asyncio
async def test_reset(store, make_post):
    await store.merge([make_post(1)])
    await store.reset()

    state = await store.get_state()
    assert state.posts == []
    assert state.last_fetch_instant is None
    assert state.is_first_fetch is True


@pytest.mark.asyncio
async def test_corrupt_state_treated_as_empty(make_post):
    kv_store = MemoryKeyValueStore()
    await kv_store.set({"posts": "not a list", "is_first_fetch": "maybe"})
    store = RetentionStore(kv_store)

    assert (await store.get_state()).posts == []
    assert await store.merge([make_post(1)]) == 1
    assert len((await store.get_state()).posts) == 1


@pytest.mark.asyncio
async def test_listeners_notified_on_merge(store, kv_store, make_post):
    notified = []
    kv_store.subscribe(notified.append)

    await store.merge([make_post(1)])

    assert len(notified) == 1
    assert notified[0]["posts"][0]["id"] == make_post(1).id
    assert notified[0]["is_first_fetch"] is False


@pytest.mark.asyncio
async def test_state_round_trips_through_store(kv_store, make_post):
    await RetentionStore(kv_store).merge([make_post(1), make_post(2)])
    reopened = RetentionStore(kv_store)
    state = await reopened.get_state()
    assert [p.id for p in state.posts] == [make_post(2).id, make_post(1).id]
