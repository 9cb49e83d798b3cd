import math

import pytest
from langchain_core.embeddings import Embeddings

from scriptkill.domain.context.memory.vector_memory_store import build_where, distance_to_score
from scriptkill.domain.models.memory_record import GlobalMemoryKind, MemoryScope

from conftest import EMBEDDING_SIZE, FixedEmbeddings, KeywordEmbeddings, build_memory


class BrokenEmbeddings(Embeddings):
    def embed_query(self, text):
        raise RuntimeError("embedding service down")

    def embed_documents(self, texts):
        raise RuntimeError("embedding service down")


def test_distance_to_score_is_clamped():
    assert distance_to_score(0) == 1.0
    assert distance_to_score(0.25) == pytest.approx(0.75)
    assert distance_to_score(3.5) == 0.0


def test_build_where_for_conversation_scope():
    assert build_where(MemoryScope.conversation("s1")) is None
    assert build_where(MemoryScope.conversation("s1", "p1")) == {"participant_id": "p1"}


def test_build_where_for_global_scope():
    where = build_where(MemoryScope.global_memory("script_1", "role_a", GlobalMemoryKind.CLUE))
    assert where == {"$and": [
        {"script_id": "script_1"},
        {"kind": "clue"},
        {"role_id": {"$in": ["role_a", "*"]}},
    ]}
    assert build_where(MemoryScope.global_memory()) is None


@pytest.mark.asyncio
async def test_insert_then_search_returns_inserted_record(memory):
    text = "The butler hid the lantern in the cellar"
    record_id = await memory.insert_conversation_memory("s1", "p1", "said", text)

    results = await memory.search_conversation_memory("s1", "p1", text, top_k=3)

    assert record_id is not None
    assert results[0].id == record_id
    assert results[0].content == text
    assert results[0].score == pytest.approx(1.0, abs=1e-4)
    assert results[0].participant_label == "said"
    assert results[0].inserted_at is not None


@pytest.mark.asyncio
async def test_search_without_session_collection_is_empty(memory):
    assert await memory.search_conversation_memory("never_written", "p1", "anything") == []
    assert await memory.collections.get_conversation_collection("never_written") is None


@pytest.mark.asyncio
async def test_search_is_restricted_to_participant(memory):
    await memory.insert_conversation_memory("s1", "p1", "said", "I saw the doctor in the library")
    await memory.insert_conversation_memory("s1", "p2", "said", "I saw the doctor in the library too")

    results = await memory.search_conversation_memory("s1", "p1", "doctor library", top_k=5)

    assert [r.participant_id for r in results] == ["p1"]


@pytest.mark.asyncio
async def test_search_results_are_sorted_by_score(memory):
    await memory.insert_conversation_memory("s1", "p1", "note", "muddy boots by the greenhouse door")
    await memory.insert_conversation_memory("s1", "p1", "note", "the greenhouse was locked at nine")
    await memory.insert_conversation_memory("s1", "p1", "note", "muddy boots")

    results = await memory.search_conversation_memory("s1", "p1", "muddy boots", top_k=3)

    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert results[0].content == "muddy boots"


@pytest.mark.asyncio
async def test_non_positive_top_k_returns_nothing(memory):
    await memory.insert_conversation_memory("s1", "p1", "note", "a torn letter")
    assert await memory.search_conversation_memory("s1", "p1", "a torn letter", top_k=0) == []


@pytest.mark.asyncio
async def test_update_twice_keeps_single_record(memory):
    record_id = await memory.insert_conversation_memory("s1", "p1", "note", "the clock stopped at ten")

    assert await memory.update_conversation_memory("s1", record_id, "the clock stopped at eleven")
    assert await memory.update_conversation_memory("s1", record_id, "the clock stopped at eleven")

    collection = await memory.collections.get_conversation_collection("s1")
    assert collection.count() == 1
    results = await memory.search_conversation_memory("s1", "p1", "the clock stopped at eleven", top_k=5)
    assert [r.content for r in results] == ["the clock stopped at eleven"]
    # Metadata is untouched by an update
    assert results[0].participant_id == "p1"


@pytest.mark.asyncio
async def test_update_without_session_collection_counts_as_success(memory):
    assert await memory.update_conversation_memory("no_such_session", "x", "content") is True


@pytest.mark.asyncio
async def test_update_with_empty_content_is_a_no_op(memory):
    record_id = await memory.insert_conversation_memory("s1", "p1", "note", "original text")

    assert await memory.update_conversation_memory("s1", record_id, "   ") is False
    results = await memory.search_conversation_memory("s1", "p1", "original text")
    assert results[0].content == "original text"


@pytest.mark.asyncio
async def test_batch_insert_skips_empty_contents(memory):
    ids = await memory.batch_insert_conversation_memory(
        "s1", "p1", "clue", ["a cracked lantern", "", "   ", "a torn letter"]
    )

    assert len(ids) == 2
    collection = await memory.collections.get_conversation_collection("s1")
    assert collection.count() == 2


@pytest.mark.asyncio
async def test_insert_with_empty_text_stores_nothing(memory):
    assert await memory.insert_conversation_memory("s1", "p1", "note", "") is None
    assert await memory.collections.get_conversation_collection("s1") is None


@pytest.mark.asyncio
async def test_wrong_dimension_embedding_is_skipped(chroma_client):
    store = build_memory(chroma_client, KeywordEmbeddings(size=8), size=EMBEDDING_SIZE)

    assert await store.insert_conversation_memory("s1", "p1", "note", "some text") is None
    assert await store.batch_insert_conversation_memory("s1", "p1", "note", ["a", "b"]) == []


@pytest.mark.asyncio
async def test_embedding_failure_degrades_to_empty_results(chroma_client):
    store = build_memory(chroma_client, BrokenEmbeddings())

    assert await store.insert_global_clue_memory("script_1", "a clue") is None
    assert await store.search_global_clue_memory("script_1", "a clue") == []


@pytest.mark.asyncio
async def test_batch_delete_counts_existing_records(memory):
    first = await memory.insert_conversation_memory("s1", "p1", "note", "first note")
    await memory.insert_conversation_memory("s1", "p1", "note", "second note")

    assert await memory.batch_delete_conversation_memory("s1", [first, "missing"]) == 1
    assert await memory.delete_conversation_memory("s1", first) is False

    collection = await memory.collections.get_conversation_collection("s1")
    assert collection.count() == 1


@pytest.mark.asyncio
async def test_delete_without_session_collection(memory):
    assert await memory.batch_delete_conversation_memory("no_such_session", ["a", "b"]) == 0


@pytest.mark.asyncio
async def test_global_search_honours_role_and_script(memory):
    await memory.insert_global_clue_memory("script_1", "bloody knife under the stairs")
    await memory.insert_global_clue_memory("script_1", "bloody knife hidden by the cook", role_id="cook")
    await memory.insert_global_clue_memory("script_1", "bloody knife seen by the maid", role_id="maid")
    await memory.insert_global_clue_memory("script_2", "bloody knife in another story")

    results = await memory.search_global_clue_memory("script_1", "bloody knife", role_id="cook", top_k=10)

    contents = {r.content for r in results}
    assert contents == {"bloody knife under the stairs", "bloody knife hidden by the cook"}
    roles = {r.content: r.role_id for r in results}
    assert roles["bloody knife under the stairs"] is None
    assert roles["bloody knife hidden by the cook"] == "cook"
    assert all(r.script_id == "script_1" for r in results)


@pytest.mark.asyncio
async def test_timeline_search_only_returns_timeline_records(memory):
    await memory.insert_global_clue_memory("script_1", "the host was poisoned")
    await memory.insert_global_timeline_memory("script_1", "the host was poisoned at dinner", "game_start")

    results = await memory.search_global_timeline_memory("script_1", "the host was poisoned")

    assert len(results) == 1
    assert results[0].kind == GlobalMemoryKind.TIMELINE
    assert results[0].timeline_point == "game_start"


@pytest.mark.asyncio
async def test_clue_keyed_insert_overwrites(memory):
    await memory.insert_global_clue_memory("script_1", "a torn letter", clue_id="clue_1")
    await memory.insert_global_clue_memory("script_1", "a torn letter", clue_id="clue_1")

    assert memory.collections.global_collection.get(ids=["clue_1"])["ids"] == ["clue_1"]
    results = await memory.search_global_clue_memory("script_1", "a torn letter", top_k=5)
    assert [r.id for r in results] == ["clue_1"]


@pytest.mark.asyncio
async def test_global_update_and_delete(memory):
    record_id = await memory.insert_global_clue_memory("script_1", "footprints in the snow")

    assert await memory.update_global_memory(record_id, "footprints in the melting snow")
    results = await memory.search_global_clue_memory("script_1", "footprints in the melting snow")
    assert results[0].content == "footprints in the melting snow"

    assert await memory.delete_global_memory(record_id) is True
    assert await memory.search_global_clue_memory("script_1", "footprints in the melting snow") == []


@pytest.mark.asyncio
async def test_batch_insert_global_memory(memory):
    ids = await memory.batch_insert_global_memory(
        "script_1", GlobalMemoryKind.CLUE, ["a glove", "a key"], record_ids=["c1", "c2"]
    )

    assert ids == ["c1", "c2"]
    assert await memory.batch_delete_global_memory(["c1", "c2", "c3"]) == 2


@pytest.mark.asyncio
async def test_clue_relation_strength_extremes(chroma_client):
    vectors = {
        "lantern": [1.0, 0.0, 0.0, 0.0],
        "lantern again": [1.0, 0.0, 0.0, 0.0],
        "opposite": [-1.0, 0.0, 0.0, 0.0],
        "unrelated": [0.0, 1.0, 0.0, 0.0],
    }
    store = build_memory(chroma_client, FixedEmbeddings(vectors), size=4)
    for clue_id, text in [("a", "lantern"), ("b", "lantern again"), ("c", "opposite"), ("d", "unrelated")]:
        await store.insert_global_clue_memory("script_1", text, clue_id=clue_id)

    assert await store.clue_relation_strength("a", "b") == 100
    assert await store.clue_relation_strength("a", "c") == 0
    assert await store.clue_relation_strength("a", "d") == 50


@pytest.mark.asyncio
async def test_clue_relation_strength_with_missing_clue(memory):
    await memory.insert_global_clue_memory("script_1", "a broken watch", clue_id="watch")

    assert await memory.clue_relation_strength("watch", "missing") == 0


@pytest.mark.asyncio
async def test_filter_by_discovered_clues_truncates(memory):
    for index in range(4):
        await memory.insert_conversation_memory("s1", "p1", "clue", f"clue number {index} about the safe")

    results = await memory.filter_by_discovered_clues("s1", "p1", ["c1"], "the safe", top_k=2)

    assert len(results) == 2
    assert results[0].score >= results[1].score


@pytest.mark.asyncio
async def test_drop_session_memory(memory):
    await memory.insert_conversation_memory("s1", "p1", "note", "the window was open")

    assert await memory.drop_session_memory("s1") is True
    assert await memory.search_conversation_memory("s1", "p1", "the window was open") == []
    assert await memory.drop_session_memory("s1") is False


@pytest.mark.asyncio
async def test_scores_stay_in_unit_interval(memory):
    await memory.insert_conversation_memory("s1", "p1", "note", "completely different words here")

    results = await memory.search_conversation_memory("s1", "p1", "nothing shared at all")

    assert all(0.0 <= r.score <= 1.0 and not math.isnan(r.score) for r in results)
