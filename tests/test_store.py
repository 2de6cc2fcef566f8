"""Tests for the store contract shared by both variants."""

from __future__ import annotations

import asyncio
import math

import pytest

from coach_memory.embedding import pseudo_embedding
from coach_memory.models import AddVectorParams, SimilarityResult, now_ms
from coach_memory.store import InMemoryStore
from coach_memory.vector_math import cosine, l2_normalize
from conftest import MappingEmbedder


def _unit(angle_deg: float) -> list[float]:
    """2-d unit vector at *angle_deg* from the x axis."""
    rad = math.radians(angle_deg)
    return [math.cos(rad), math.sin(rad)]


async def _assert_aligned(store) -> None:
    items = await store.list_all()
    vectors = store.normalized_vectors()
    assert len(items) == store.size() == len(vectors)
    for item, vec in zip(items, vectors):
        assert vec == pytest.approx(l2_normalize(item.embedding))


# ---------------------------------------------------------------------------
# add_item / bulk_add
# ---------------------------------------------------------------------------


class TestAddItem:
    @pytest.mark.asyncio
    async def test_add_returns_item_and_grows_size(self, any_store):
        item = await any_store.add_item({"type": "message", "text": "Hello coach"})
        assert item.type == "message"
        assert item.text == "Hello coach"
        assert any_store.size() == 1

    @pytest.mark.asyncio
    async def test_text_is_trimmed_before_embedding(self, any_store, embedder):
        item = await any_store.add_item({"type": "mood", "text": "   tired today \n"})
        assert item.text == "tired today"
        assert embedder.calls == ["tired today"]
        assert item.embedding == pseudo_embedding("tired today")

    @pytest.mark.asyncio
    async def test_generated_id_and_timestamp(self, any_store):
        before = now_ms()
        item = await any_store.add_item({"type": "message", "text": "hi"})
        after = now_ms()
        assert item.id.startswith("vec_")
        assert len(item.id) == 12
        assert before <= item.timestamp <= after

    @pytest.mark.asyncio
    async def test_caller_supplied_fields_are_kept(self, any_store):
        item = await any_store.add_item(
            AddVectorParams(
                type="tactic",
                text="Box breathing",
                id="custom-1",
                timestamp=1234,
                meta={"source": "coach"},
            )
        )
        assert (item.id, item.timestamp, item.meta) == ("custom-1", 1234, {"source": "coach"})

    @pytest.mark.asyncio
    async def test_ts_alias_in_mapping(self, any_store):
        item = await any_store.add_item({"type": "summary", "text": "week one", "ts": 42})
        assert item.timestamp == 42

    @pytest.mark.asyncio
    async def test_supplied_embedding_skips_provider(self, any_store, embedder):
        item = await any_store.add_item(
            {"type": "exercise", "text": "stretch", "embedding": [0.0, 3.0, 4.0]}
        )
        assert embedder.calls == []
        assert item.embedding == [0.0, 3.0, 4.0]
        assert any_store.normalized_vectors()[0] == pytest.approx([0.0, 0.6, 0.8])

    @pytest.mark.asyncio
    async def test_missing_required_field_raises(self, memory_store):
        with pytest.raises(KeyError):
            await memory_store.add_item({"text": "no type"})

    @pytest.mark.asyncio
    async def test_bulk_add_preserves_order(self, any_store):
        items = await any_store.bulk_add(
            [{"type": "message", "text": f"note {i}"} for i in range(5)]
        )
        assert [it.text for it in items] == [f"note {i}" for i in range(5)]
        assert [it.text for it in await any_store.list_all()] == [f"note {i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_bulk_add_is_not_atomic(self, memory_store):
        with pytest.raises(KeyError):
            await memory_store.bulk_add(
                [
                    {"type": "message", "text": "first"},
                    {"text": "broken"},
                    {"type": "message", "text": "never added"},
                ]
            )
        assert [it.text for it in await memory_store.list_all()] == ["first"]


# ---------------------------------------------------------------------------
# query_similar
# ---------------------------------------------------------------------------


class TestQuerySimilar:
    @pytest.mark.asyncio
    async def test_empty_store_returns_empty_without_embedding(self, any_store, embedder):
        assert await any_store.query_similar("anything") == []
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_round_trip_with_known_embedding(self, any_store, embedder):
        e = [0.2, -0.4, 0.9, 0.1]
        embedder.vectors["what helps me relax?"] = e
        await any_store.add_item({"type": "message", "text": "Noise", "embedding": [-1.0, 0.5, 0.0, 0.3]})
        await any_store.add_item(
            {"type": "tactic", "text": "breathing helps me relax", "embedding": e}
        )

        results = await any_store.query_similar("what helps me relax?")

        assert results[0].text == "breathing helps me relax"
        assert results[0].score == pytest.approx(1.0)
        assert isinstance(results[0], SimilarityResult)

    @pytest.mark.asyncio
    async def test_min_score_filtering(self, any_store, embedder):
        embedder.vectors["q"] = [1.0, 0.0]
        await any_store.add_item({"type": "message", "text": "close", "embedding": [0.9, math.sqrt(1 - 0.81)]})
        await any_store.add_item({"type": "message", "text": "far", "embedding": [0.05, math.sqrt(1 - 0.0025)]})

        results = await any_store.query_similar("q", k=5, min_score=0.15)

        assert [r.text for r in results] == ["close"]
        assert results[0].score == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_min_score_is_inclusive(self, memory_store, embedder):
        embedder.vectors["q"] = [1.0, 0.0]
        await memory_store.add_item({"type": "message", "text": "exact", "embedding": [0.5, 0.0]})
        results = await memory_store.query_similar("q", min_score=1.0)
        assert [r.text for r in results] == ["exact"]

    @pytest.mark.asyncio
    async def test_top_k_truncation(self, any_store, embedder):
        embedder.vectors["q"] = [1.0, 0.0]
        # Insert out of score order: angle 0 scores highest.
        for angle in (40, 10, 30, 0, 20):
            await any_store.add_item({"type": "message", "text": f"a{angle}", "embedding": _unit(angle)})

        results = await any_store.query_similar("q", k=3, min_score=0.15)

        assert [r.text for r in results] == ["a0", "a10", "a20"]
        assert results[0].score >= results[1].score >= results[2].score

    @pytest.mark.asyncio
    async def test_ties_keep_insertion_order(self, memory_store, embedder):
        embedder.vectors["q"] = [1.0, 1.0]
        for name in ("first", "second", "third"):
            await memory_store.add_item({"type": "message", "text": name, "embedding": [2.0, 2.0]})
        results = await memory_store.query_similar("q", k=3)
        assert [r.text for r in results] == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_non_positive_k_returns_empty(self, memory_store):
        await memory_store.add_item({"type": "message", "text": "x", "embedding": [1.0]})
        assert await memory_store.query_similar("x", k=0) == []

    @pytest.mark.asyncio
    async def test_results_carry_item_fields(self, memory_store, embedder):
        embedder.vectors["q"] = [1.0, 0.0]
        await memory_store.add_item(
            {"type": "mood", "text": "good", "id": "m1", "timestamp": 7, "meta": {"v": 1}, "embedding": [1.0, 0.0]}
        )
        (r,) = await memory_store.query_similar("q")
        assert (r.id, r.type, r.timestamp, r.text, r.meta) == ("m1", "mood", 7, "good", {"v": 1})

    @pytest.mark.asyncio
    async def test_mismatched_dimensions_use_overlap(self, memory_store, embedder):
        embedder.vectors["q"] = [1.0, 0.0, 0.0]
        await memory_store.add_item({"type": "message", "text": "short", "embedding": [1.0]})
        (r,) = await memory_store.query_similar("q")
        assert r.score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_end_to_end_with_fallback_embeddings(self, memory_store):
        message = await memory_store.add_item(
            {"type": "message", "text": "I feel anxious before competition"}
        )
        tactic = await memory_store.add_item(
            {"type": "tactic", "text": "Try slow breathing exercises"}
        )
        assert message.embedding == pseudo_embedding("I feel anxious before competition")

        # The pseudo-embedding has no semantics: its hash buckets rank the tactic first.
        query = pseudo_embedding("anxious feelings")
        assert cosine(query, message.embedding) == pytest.approx(0.22398, abs=1e-4)
        assert cosine(query, tactic.embedding) == pytest.approx(0.59315, abs=1e-4)

        results = await memory_store.query_similar("anxious feelings", k=1, min_score=-1.0)
        assert len(results) == 1
        assert results[0].type == "tactic"
        assert results[0].score == pytest.approx(0.59315, abs=1e-4)

        both = await memory_store.query_similar("anxious feelings", k=5)
        assert [r.type for r in both] == ["tactic", "message"]
        assert both[1].score == pytest.approx(0.22398, abs=1e-4)


# ---------------------------------------------------------------------------
# prune
# ---------------------------------------------------------------------------


class TestPrune:
    @pytest.mark.asyncio
    async def test_prune_removes_oldest_by_timestamp(self, any_store):
        # Inserted out of timestamp order on purpose.
        for ts in (3000, 1000, 4000, 2000):
            await any_store.add_item({"type": "message", "text": f"t{ts}", "timestamp": ts})

        removed = await any_store.prune(2)

        assert removed == 2
        assert [it.timestamp for it in await any_store.list_all()] == [3000, 4000]
        await _assert_aligned(any_store)

    @pytest.mark.asyncio
    async def test_prune_noop_when_under_limit(self, any_store):
        await any_store.bulk_add([{"type": "message", "text": f"n{i}"} for i in range(3)])
        before = await any_store.list_all()

        assert await any_store.prune(3) == 0
        assert await any_store.prune(10) == 0
        assert await any_store.list_all() == before

    @pytest.mark.asyncio
    async def test_prune_to_zero(self, any_store):
        await any_store.bulk_add([{"type": "message", "text": f"n{i}"} for i in range(4)])
        assert await any_store.prune(0) == 4
        assert any_store.size() == 0
        assert any_store.normalized_vectors() == []

    @pytest.mark.asyncio
    async def test_equal_timestamps_evict_earlier_insert(self, memory_store):
        for name in ("a", "b", "c"):
            await memory_store.add_item({"type": "message", "text": name, "timestamp": 5})
        await memory_store.prune(1)
        assert [it.text for it in await memory_store.list_all()] == ["c"]

    @pytest.mark.asyncio
    async def test_prune_on_empty_store(self, any_store):
        assert await any_store.prune(0) == 0


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


class TestInvariants:
    @pytest.mark.asyncio
    async def test_cache_stays_aligned_across_adds_and_prunes(self, any_store):
        await any_store.bulk_add(
            [{"type": "message", "text": f"entry {i}", "timestamp": 100 - i} for i in range(6)]
        )
        await _assert_aligned(any_store)
        await any_store.prune(4)
        await _assert_aligned(any_store)
        await any_store.add_item({"type": "mood", "text": "late", "embedding": [0.0, 2.0]})
        await any_store.prune(2)
        await _assert_aligned(any_store)

    @pytest.mark.asyncio
    async def test_list_all_returns_a_copy(self, memory_store):
        await memory_store.add_item({"type": "message", "text": "x"})
        listed = await memory_store.list_all()
        listed.clear()
        assert memory_store.size() == 1

    @pytest.mark.asyncio
    async def test_concurrent_adds_lose_nothing(self):
        embedder = MappingEmbedder(delay=lambda text: 0.001 * (len(text) % 4))
        store = InMemoryStore(embedder=embedder)

        items = await asyncio.gather(
            *(store.add_item({"type": "message", "text": f"msg {i:02d}" + "!" * (i % 4)}) for i in range(20))
        )

        ids = [it.id for it in await store.list_all()]
        assert store.size() == 20
        assert sorted(ids) == sorted(it.id for it in items)
        assert len(set(ids)) == 20
        await _assert_aligned(store)
