"""
Tests for services/retrieval/RetrievalService.py
Scoring, ordering, filtering and tenant isolation of similarity search.
"""

import logging

import numpy as np
import pytest

from services.retrieval.RetrievalService import RetrievalService
from shared.models.document import Chunk, Document, SourceKind, make_chunk_id, make_document_id
from tests.conftest import TENANT_A_ID, TENANT_B_ID

QUERY = "what did we decide"


class StaticEmbedClient:
    """Returns fixed vectors for known texts."""

    def __init__(self, vectors: dict[str, list[float]]):
        self.vectors = vectors
        self.calls: list[str] = []

    async def do_embed(self, texts, model_id=None):
        texts = [texts] if isinstance(texts, str) else texts
        self.calls.extend(texts)
        return [self.vectors[text] for text in texts]


@pytest.fixture
def static_embed() -> StaticEmbedClient:
    return StaticEmbedClient({QUERY: [1.0, 0.0, 0.0]})


@pytest.fixture
def retrieval(helper_config, store, static_embed) -> RetrievalService:
    return RetrievalService(helper_config=helper_config, store=store, embed_client=static_embed)


async def store_document(store, tenant_id: str, native_id: str, embeddings: list[list[float]], model: str = "fake-embed") -> Document:
    document = Document(
        id=make_document_id(tenant_id, SourceKind.MEETING_NOTES, native_id),
        tenant_id=tenant_id,
        title=f"Notes {native_id}",
        content="irrelevant",
        source_kind=SourceKind.MEETING_NOTES,
        source_native_id=native_id,
    )
    chunks = [
        Chunk(
            id=make_chunk_id(document.id, ordinal),
            document_id=document.id,
            tenant_id=tenant_id,
            ordinal=ordinal,
            content=f"{native_id} part {ordinal}",
            embedding=embedding,
            token_count=3,
            metadata={"embedding_model": model},
        )
        for ordinal, embedding in enumerate(embeddings)
    ]
    await store.commit_document(tenant_id, document, chunks)
    return document


class TestRanking:
    """Test scoring and ordering of results."""

    async def test_results_ordered_by_score_and_thresholded(self, retrieval, store):
        await store_document(store, TENANT_A_ID, "page1", [[0.0, 1.0, 0.0], [0.8, 0.6, 0.0]])
        await store_document(store, TENANT_A_ID, "page2", [[1.0, 0.0, 0.0]])

        results = await retrieval.search(TENANT_A_ID, QUERY, limit=5, threshold=0.5, embedding_model="fake-embed")

        assert [r.content for r in results] == ["page2 part 0", "page1 part 1"]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(0.8)
        assert results[0].title == "Notes page2"
        assert results[0].source_kind == SourceKind.MEETING_NOTES

    async def test_limit_caps_results(self, retrieval, store):
        await store_document(store, TENANT_A_ID, "page1", [[1.0, 0.0, 0.0], [0.9, 0.1, 0.0], [0.7, 0.3, 0.0]])
        results = await retrieval.search(TENANT_A_ID, QUERY, limit=2, threshold=0.0, embedding_model="fake-embed")
        assert [r.ordinal for r in results] == [0, 1]

    async def test_ties_prefer_recent_documents_then_ordinal(self, retrieval, store):
        await store_document(store, TENANT_A_ID, "older", [[1.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
        await store_document(store, TENANT_A_ID, "newer", [[1.0, 0.0, 0.0]])

        results = await retrieval.search(TENANT_A_ID, QUERY, limit=5, threshold=0.0, embedding_model="fake-embed")

        assert [r.content for r in results] == ["newer part 0", "older part 0", "older part 1"]

    async def test_same_inputs_give_same_order(self, retrieval, store):
        await store_document(store, TENANT_A_ID, "page1", [[1.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.5, 0.5, 0.0]])
        first = await retrieval.search(TENANT_A_ID, QUERY, limit=5, threshold=0.0, embedding_model="fake-embed")
        second = await retrieval.search(TENANT_A_ID, QUERY, limit=5, threshold=0.0, embedding_model="fake-embed")
        assert [r.chunk_id for r in first] == [r.chunk_id for r in second]

    def test_zero_vectors_score_zero(self):
        scores = RetrievalService.cosine_similarities(
            np.asarray([1.0, 0.0], dtype=np.float32), np.asarray([[0.0, 0.0], [2.0, 0.0]], dtype=np.float32)
        )
        assert scores.tolist() == pytest.approx([0.0, 1.0])


class TestShortCircuits:
    async def test_no_chunks_skips_query_embedding(self, retrieval, static_embed):
        assert await retrieval.search(TENANT_A_ID, QUERY, limit=5, threshold=0.0, embedding_model="fake-embed") == []
        assert static_embed.calls == []

    async def test_non_positive_limit_returns_nothing(self, retrieval, store, static_embed):
        await store_document(store, TENANT_A_ID, "page1", [[1.0, 0.0, 0.0]])
        assert await retrieval.search(TENANT_A_ID, QUERY, limit=0, threshold=0.0, embedding_model="fake-embed") == []
        assert static_embed.calls == []


class TestFiltering:
    """Test that incompatible or foreign chunks are never scored."""

    async def test_chunks_of_other_model_or_dimension_skipped(self, retrieval, store, caplog):
        await store_document(store, TENANT_A_ID, "page1", [[1.0, 0.0, 0.0]], model="other-model")
        await store_document(store, TENANT_A_ID, "page2", [[1.0, 0.0]])
        await store_document(store, TENANT_A_ID, "page3", [[0.6, 0.8, 0.0]])

        with caplog.at_level(logging.WARNING):
            results = await retrieval.search(TENANT_A_ID, QUERY, limit=5, threshold=0.0, embedding_model="fake-embed")

        assert [r.content for r in results] == ["page3 part 0"]
        assert "Skipped 2 chunk(s)" in caplog.text

    async def test_other_tenants_chunks_never_returned(self, retrieval, store):
        await store_document(store, TENANT_B_ID, "secret", [[1.0, 0.0, 0.0]])
        await store_document(store, TENANT_A_ID, "page1", [[0.0, 1.0, 0.0]])

        results = await retrieval.search(TENANT_A_ID, QUERY, limit=5, threshold=-1.0, embedding_model="fake-embed")

        assert [r.content for r in results] == ["page1 part 0"]
        assert await retrieval.search(TENANT_B_ID, QUERY, limit=5, threshold=0.5, embedding_model="fake-embed") != []
