"""Tests for similarity-ranked, offset-paginated fact search."""

import pytest

from conftest import QUERY_VECTOR, text_embedding, unit_vector

USER = "user-1"


async def add_scored(fact_store, scores, user_id=USER, connection_id="conn-1"):
    embeddings = [text_embedding(f"fact {s}", unit_vector(s)) for s in scores]
    return await fact_store.add(user_id, connection_id, embeddings)


@pytest.mark.asyncio
async def test_threshold_limit_and_cursor(engine, fact_store):
    await add_scored(fact_store, [0.9, 0.5, 0.35, 0.1])

    page = await engine.search(USER, QUERY_VECTOR, 0.4, limit=2, offset=0)

    assert [r.text for r in page.items] == ["fact 0.9", "fact 0.5"]
    assert page.items[0].similarity_score == pytest.approx(0.9, abs=1e-4)
    assert page.next_cursor == 2

    page = await engine.search(USER, QUERY_VECTOR, 0.4, limit=2, offset=2)

    assert page.items == []
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_no_item_below_threshold(engine, fact_store):
    await add_scored(fact_store, [0.95, 0.6, 0.45, 0.3, 0.2])

    for offset in range(4):
        page = await engine.search(USER, QUERY_VECTOR, 0.4, limit=2, offset=offset)
        assert all(r.similarity_score >= 0.4 for r in page.items)


@pytest.mark.asyncio
async def test_zero_threshold_disables_filtering(engine, fact_store):
    await add_scored(fact_store, [0.9, 0.1, 0.05])

    page = await engine.search(USER, QUERY_VECTOR, 0.0, limit=10)

    assert len(page.items) == 3
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_full_page_sets_cursor(engine, fact_store):
    await add_scored(fact_store, [0.5 + i * 0.04 for i in range(10)])

    page = await engine.search(USER, QUERY_VECTOR, 0.4, limit=10, offset=0)

    assert len(page.items) == 10
    assert page.next_cursor == 10


@pytest.mark.asyncio
async def test_short_page_has_no_cursor(engine, fact_store):
    await add_scored(fact_store, [0.5 + i * 0.05 for i in range(7)])

    page = await engine.search(USER, QUERY_VECTOR, 0.4, limit=10, offset=0)

    assert len(page.items) == 7
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_results_are_sorted_and_deterministic(engine, fact_store):
    await add_scored(fact_store, [0.45, 0.8, 0.6, 0.95, 0.7])

    first = await engine.search(USER, QUERY_VECTOR, 0.4, limit=3, offset=1)
    second = await engine.search(USER, QUERY_VECTOR, 0.4, limit=3, offset=1)

    scores = [r.similarity_score for r in first.items]
    assert scores == sorted(scores, reverse=True)
    assert [r.record_id for r in first.items] == [r.record_id for r in second.items]
    assert [r.text for r in first.items] == ["fact 0.8", "fact 0.7", "fact 0.6"]


@pytest.mark.asyncio
async def test_equal_scores_are_ordered_by_id(engine, fact_store):
    vector = unit_vector(0.7)
    facts = await fact_store.add(
        USER,
        "conn-1",
        [text_embedding(f"twin {i}", vector) for i in range(4)],
    )

    page = await engine.search(USER, QUERY_VECTOR, 0.4, limit=4)

    assert [r.record_id for r in page.items] == sorted((f.id for f in facts), reverse=True)


@pytest.mark.asyncio
async def test_other_users_facts_never_match(engine, fact_store):
    await add_scored(fact_store, [0.9], user_id="someone-else")

    page = await engine.search(USER, QUERY_VECTOR, 0.0, limit=10)

    assert page.items == []
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_search_can_be_narrowed_to_a_connection(engine, fact_store):
    await add_scored(fact_store, [0.9], connection_id="conn-1")
    await add_scored(fact_store, [0.8], connection_id="conn-2")

    page = await engine.search(USER, QUERY_VECTOR, 0.4, limit=10, connection_id="conn-2")

    assert [r.connection_id for r in page.items] == ["conn-2"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "threshold, limit, offset",
    [(-0.1, 10, 0), (1.5, 10, 0), (0.4, 0, 0), (0.4, 10, -1)],
)
async def test_invalid_window_is_rejected(engine, threshold, limit, offset):
    with pytest.raises(ValueError):
        await engine.search(USER, QUERY_VECTOR, threshold, limit=limit, offset=offset)


@pytest.mark.asyncio
async def test_connections_ranked_by_best_fact(engine, fact_store):
    await fact_store.add(
        USER,
        "conn-a",
        [
            text_embedding("a weak", unit_vector(0.5)),
            text_embedding("a strong", unit_vector(0.9)),
        ],
    )
    await fact_store.add(USER, "conn-b", [text_embedding("b only", unit_vector(0.7))])
    await fact_store.add(USER, "conn-c", [text_embedding("c low", unit_vector(0.2))])

    page = await engine.search_connections(USER, QUERY_VECTOR, 0.4, limit=5)

    assert [m.connection_id for m in page.items] == ["conn-a", "conn-b"]
    assert page.items[0].best_fact.text == "a strong"
    assert page.next_cursor is None


@pytest.mark.asyncio
@pytest.mark.parametrize("page_size", [1, 2, 4])
async def test_pages_over_tied_scores_cover_each_fact_once(engine, fact_store, page_size):
    vector = unit_vector(0.7)
    facts = await fact_store.add(
        USER,
        "conn-1",
        [text_embedding(f"same {i}", vector) for i in range(6)],
    )

    seen = []
    offset = 0
    while True:
        page = await engine.search(USER, QUERY_VECTOR, 0.4, limit=page_size, offset=offset)
        seen.extend(r.record_id for r in page.items)
        if page.next_cursor is None:
            break
        offset = page.next_cursor

    assert sorted(seen) == sorted(f.id for f in facts)
    assert seen == sorted(seen, reverse=True)


@pytest.mark.asyncio
async def test_tied_connections_paginate_without_overlap(engine, fact_store):
    vector = unit_vector(0.7)
    for i in range(5):
        await fact_store.add(USER, f"conn-{i}", [text_embedding(f"shared {i}", vector)])

    seen = []
    for offset in range(0, 6, 2):
        page = await engine.search_connections(USER, QUERY_VECTOR, 0.4, limit=2, offset=offset)
        seen.extend(m.connection_id for m in page.items)

    assert sorted(seen) == [f"conn-{i}" for i in range(5)]
