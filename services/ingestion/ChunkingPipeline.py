"""Chunking & embedding pipeline.

Splits a document's content into overlapping windows and embeds every window.
The pipeline is all-or-nothing per document: if any window cannot be embedded
after retries, no chunks are returned and the caller commits nothing.
"""

import math

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperRetry import HelperRetry
from shared.models.document import Chunk, Document, make_chunk_id
from shared.models.errors import BridgeError, ErrorKind

CHARS_PER_TOKEN = 4


def estimate_token_count(text: str) -> int:
    """Rough token estimate, one token per four characters."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class ChunkingPipeline:
    def __init__(self, helper_config: HelperConfig, embed_client: EmbedClientInterface, helper_retry: HelperRetry | None = None) -> None:
        self.logging = helper_config.get_logger()
        self.embed_client = embed_client
        self.helper_retry = helper_retry or HelperRetry(helper_config)

        self.max_tokens = int(helper_config.get_number_val("CHUNK_MAX_TOKENS", default=500))
        self.overlap_tokens = int(helper_config.get_number_val("CHUNK_OVERLAP_TOKENS", default=50))
        self.min_tokens = int(helper_config.get_number_val("CHUNK_MIN_TOKENS", default=25))
        if self.max_tokens <= 0:
            raise ValueError("CHUNK_MAX_TOKENS must be positive.")
        if not 0 <= self.overlap_tokens < self.max_tokens:
            raise ValueError("CHUNK_OVERLAP_TOKENS must be between 0 and CHUNK_MAX_TOKENS.")

    ##########################################
    ############### SPLITTING ################
    ##########################################

    def split_windows(self, text: str) -> list[str]:
        """Split text into windows of at most max_tokens, overlapping by overlap_tokens.

        A window end is pulled back to the last sentence end or line break when
        that lies in the second half of the window. A trailing window shorter
        than min_tokens is merged into its predecessor, so the last window may
        exceed max_tokens by less than min_tokens.

        Args:
            text (str): The full document content.

        Returns:
            list[str]: Non-empty, stripped windows in document order.
        """
        max_chars = self.max_tokens * CHARS_PER_TOKEN
        overlap_chars = self.overlap_tokens * CHARS_PER_TOKEN
        length = len(text)

        spans: list[tuple[int, int]] = []
        start = 0
        while start < length:
            end = min(start + max_chars, length)
            if end < length:
                break_point = max(text.rfind(".", start, end + 1), text.rfind("\n", start, end + 1))
                if break_point > start + max_chars * 0.5:
                    end = break_point + 1
            if text[start:end].strip():
                spans.append((start, end))
            if end >= length:
                break
            next_start = end - overlap_chars
            start = next_start if next_start > start else end

        if len(spans) > 1 and estimate_token_count(text[spans[-1][0]:spans[-1][1]].strip()) < self.min_tokens:
            last_start, last_end = spans.pop()
            prev_start, _ = spans.pop()
            spans.append((prev_start, last_end))

        return [text[s:e].strip() for s, e in spans]

    ##########################################
    ############### EMBEDDING ################
    ##########################################

    async def _embed_window(self, text: str, embedding_model: str) -> list[float]:
        async for attempt in self.helper_retry.attempts():
            with attempt:
                vectors = await self.embed_client.do_embed(text, model_id=embedding_model)
        return vectors[0]

    ##########################################
    ################# CORE ###################
    ##########################################

    async def process(self, document: Document, embedding_model: str) -> list[Chunk]:
        """Chunk and embed a document.

        Args:
            document (Document): The document to process.
            embedding_model (str): Model snapshot taken by the caller; every chunk
                is embedded with this model even if settings change meanwhile.

        Returns:
            list[Chunk]: Chunks with contiguous ordinals 0..N-1, or [] for empty content.

        Raises:
            BridgeError: EMBEDDING_UNAVAILABLE if a window still fails after retries
                or the vectors do not share one dimension.
        """
        windows = self.split_windows(document.content)
        if not windows:
            self.logging.debug("Document %s has no content to chunk", document.id)
            return []

        chunks: list[Chunk] = []
        dimension: int | None = None
        for ordinal, window in enumerate(windows):
            try:
                vector = await self._embed_window(window, embedding_model)
            except BridgeError as e:
                self.logging.error(
                    "Embedding window %d of %d for document %s failed: %s",
                    ordinal + 1,
                    len(windows),
                    document.id,
                    e.message,
                )
                raise
            if dimension is None:
                dimension = len(vector)
            elif len(vector) != dimension:
                raise BridgeError(
                    ErrorKind.EMBEDDING_UNAVAILABLE,
                    f"Embedding dimension changed within document {document.id}: {len(vector)} != {dimension}.",
                )
            chunks.append(
                Chunk(
                    id=make_chunk_id(document.id, ordinal),
                    document_id=document.id,
                    tenant_id=document.tenant_id,
                    ordinal=ordinal,
                    content=window,
                    embedding=vector,
                    token_count=estimate_token_count(window),
                    metadata={
                        **document.metadata,
                        "embedding_model": embedding_model,
                        "total_chunks": len(windows),
                    },
                )
            )

        self.logging.info(
            "Chunked document %s into %d chunk(s), avg %d chars",
            document.id,
            len(chunks),
            sum(len(c.content) for c in chunks) // len(chunks),
        )
        return chunks
