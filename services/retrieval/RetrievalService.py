import numpy as np

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.store.DocumentStoreInterface import DocumentStoreInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperRetry import HelperRetry
from shared.models.document import RankedChunk, SearchCandidate


class RetrievalService:
    """Tenant-scoped similarity search over stored chunks.

    Scores are cosine similarities in [-1, 1]. Results are ordered by score
    descending, then by document recency, then by chunk ordinal, so equal
    inputs always produce the same order.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        store: DocumentStoreInterface,
        embed_client: EmbedClientInterface,
        helper_retry: HelperRetry | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self.store = store
        self.embed_client = embed_client
        self.helper_retry = helper_retry or HelperRetry(helper_config)

    ##########################################
    ############### HELPERS ##################
    ##########################################

    async def _embed_query(self, query: str, embedding_model: str) -> np.ndarray:
        async for attempt in self.helper_retry.attempts():
            with attempt:
                vectors = await self.embed_client.do_embed(query, model_id=embedding_model)
        return np.asarray(vectors[0], dtype=np.float32)

    def _filter_compatible(self, candidates: list[SearchCandidate], embedding_model: str, dimension: int) -> list[SearchCandidate]:
        compatible = []
        skipped = 0
        for candidate in candidates:
            chunk_model = candidate.chunk.metadata.get("embedding_model")
            if (chunk_model and chunk_model != embedding_model) or len(candidate.chunk.embedding) != dimension:
                skipped += 1
                continue
            compatible.append(candidate)
        if skipped:
            self.logging.warning(
                "Skipped %d chunk(s) embedded with another model or dimension than '%s' (dim %d)",
                skipped,
                embedding_model,
                dimension,
            )
        return compatible

    @staticmethod
    def cosine_similarities(query_vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        """Cosine similarity between one vector and every row of a matrix. Zero vectors score 0."""
        query_norm = np.linalg.norm(query_vector)
        row_norms = np.linalg.norm(matrix, axis=1)
        denominator = row_norms * query_norm
        dots = matrix @ query_vector
        return np.divide(dots, denominator, out=np.zeros_like(dots), where=denominator > 0)

    ##########################################
    ################# CORE ###################
    ##########################################

    async def search(self, tenant_id: str, query: str, limit: int, threshold: float, embedding_model: str) -> list[RankedChunk]:
        """Return the tenant's chunks most similar to the query.

        Args:
            tenant_id (str): Canonical tenant ID; only this tenant's chunks are scored.
            query (str): Natural-language query.
            limit (int): Maximum number of results.
            threshold (float): Minimum cosine similarity to keep a result.
            embedding_model (str): Model the query is embedded with; chunks
                embedded with another model are ignored.

        Returns:
            list[RankedChunk]: At most `limit` results, best first. Empty if the
                tenant has no chunks or none reach the threshold.

        Raises:
            BridgeError: EMBEDDING_UNAVAILABLE if the query cannot be embedded after retries.
        """
        if limit <= 0:
            return []

        candidates = await self.store.get_search_candidates(tenant_id)
        if not candidates:
            self.logging.debug("Tenant %s has no chunks, skipping query embedding", tenant_id)
            return []

        query_vector = await self._embed_query(query, embedding_model)
        candidates = self._filter_compatible(candidates, embedding_model, len(query_vector))
        if not candidates:
            return []

        matrix = np.asarray([c.chunk.embedding for c in candidates], dtype=np.float32)
        scores = self.cosine_similarities(query_vector, matrix)

        ranked = [
            RankedChunk(
                chunk_id=candidate.chunk.id,
                document_id=candidate.chunk.document_id,
                ordinal=candidate.chunk.ordinal,
                content=candidate.chunk.content,
                score=float(score),
                title=candidate.document_title,
                source_kind=candidate.source_kind,
                document_updated_at=candidate.document_updated_at,
            )
            for candidate, score in zip(candidates, scores)
            if score >= threshold
        ]
        ranked.sort(key=lambda r: (-r.score, -r.document_updated_at.timestamp(), r.ordinal, r.chunk_id))
        self.logging.debug("Query for tenant %s matched %d of %d chunk(s)", tenant_id, len(ranked), len(candidates))
        return ranked[:limit]
