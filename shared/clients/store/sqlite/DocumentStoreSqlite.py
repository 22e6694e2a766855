"""SQLite-backed document store.

Embeddings are stored as float32 blobs. Every public operation runs in a
worker thread on its own connection; writes additionally hold a process-wide
asyncio lock and run inside one transaction, so a cancelled caller either
never reaches the commit or the commit completes as a whole.
"""

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

import numpy as np

from shared.clients.store.DocumentStoreInterface import DocumentStoreInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.document import Chunk, Document, SearchCandidate, SourceKind, utcnow
from shared.models.errors import BridgeError, ErrorKind

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    source_kind TEXT NOT NULL,
    source_native_id TEXT NOT NULL,
    source_version TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (tenant_id, source_kind, source_native_id)
);

CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    tenant_id TEXT NOT NULL,
    ordinal INTEGER NOT NULL,
    content TEXT NOT NULL,
    embedding BLOB NOT NULL,
    token_count INTEGER NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    UNIQUE (document_id, ordinal)
);

CREATE INDEX IF NOT EXISTS idx_chunks_tenant ON chunks(tenant_id);
CREATE INDEX IF NOT EXISTS idx_documents_tenant_source ON documents(tenant_id, source_kind);
"""

_DOCUMENT_COLUMNS = "id, tenant_id, title, content, source_kind, source_native_id, source_version, metadata, created_at, updated_at"


class DocumentStoreSqlite(DocumentStoreInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._path = Path(self.get_config_val("PATH", default="data/knowledge.sqlite3", val_type="string"))
        self._busy_timeout = self.get_config_val("BUSY_TIMEOUT", default=30, val_type="number")
        self._write_lock = asyncio.Lock()

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Sqlite"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="PATH", val_type="string", default="data/knowledge.sqlite3"),
            EnvConfig(env_key="BUSY_TIMEOUT", val_type="number", default=30),
        ]

    ##########################################
    ############## LIFECYCLE #################
    ##########################################

    async def boot(self) -> None:
        """Create the database file and schema if they do not exist."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(self._initialize)
        self.logging.info("Document store ready at %s", self._path)

    async def close(self) -> None:
        # connections are per operation
        return None

    async def do_healthcheck(self) -> bool:
        try:
            await asyncio.to_thread(self._ping)
            return True
        except sqlite3.Error as e:
            self.logging.error("Document store healthcheck failed: %s", e)
            return False

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=self._busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize(self) -> None:
        with self._connection() as conn:
            conn.executescript(SCHEMA)

    def _ping(self) -> None:
        with self._connection() as conn:
            conn.execute("SELECT 1").fetchone()

    ##########################################
    ################ WRITES ##################
    ##########################################

    async def upsert(self, tenant_id: str, document: Document) -> None:
        self._assert_document_tenant(tenant_id, document)
        async with self._write_lock:
            await asyncio.to_thread(self._run_write, tenant_id, document, None)

    async def replace_chunks(self, tenant_id: str, document_id: str, chunks: list[Chunk]) -> None:
        self._assert_chunks_tenant(tenant_id, document_id, chunks)
        self._assert_contiguous_ordinals(chunks)
        async with self._write_lock:
            await asyncio.to_thread(self._run_replace_chunks, tenant_id, document_id, chunks)

    async def commit_document(self, tenant_id: str, document: Document, chunks: list[Chunk]) -> None:
        self._assert_document_tenant(tenant_id, document)
        self._assert_chunks_tenant(tenant_id, document.id, chunks)
        self._assert_contiguous_ordinals(chunks)
        async with self._write_lock:
            await asyncio.to_thread(self._run_write, tenant_id, document, chunks)

    async def delete(self, tenant_id: str, document_id: str) -> bool:
        async with self._write_lock:
            return await asyncio.to_thread(self._run_delete, tenant_id, document_id)

    def _run_write(self, tenant_id: str, document: Document, chunks: list[Chunk] | None) -> None:
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            self._write_document(conn, tenant_id, document)
            if chunks is not None:
                self._write_chunks(conn, document.id, chunks)

    def _run_replace_chunks(self, tenant_id: str, document_id: str, chunks: list[Chunk]) -> None:
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            owner = self._get_owner(conn, document_id)
            if owner is None:
                raise BridgeError(ErrorKind.SOURCE_ITEM_NOT_FOUND, f"Document {document_id} does not exist.")
            self._check_owner(owner, tenant_id, document_id)
            self._write_chunks(conn, document_id, chunks)

    def _run_delete(self, tenant_id: str, document_id: str) -> bool:
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            owner = self._get_owner(conn, document_id)
            if owner is None:
                return False
            self._check_owner(owner, tenant_id, document_id)
            conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            return True

    def _write_document(self, conn: sqlite3.Connection, tenant_id: str, document: Document) -> None:
        owner = self._get_owner(conn, document.id)
        if owner is not None:
            self._check_owner(owner, tenant_id, document.id)
        now = utcnow().isoformat()
        conn.execute(
            f"""INSERT INTO documents ({_DOCUMENT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (tenant_id, source_kind, source_native_id) DO UPDATE SET
                    title = excluded.title,
                    content = excluded.content,
                    source_version = excluded.source_version,
                    metadata = excluded.metadata,
                    updated_at = excluded.updated_at""",
            (
                document.id,
                tenant_id,
                document.title,
                document.content,
                document.source_kind.value,
                document.source_native_id,
                document.source_version,
                json.dumps(document.metadata, default=str),
                document.created_at.isoformat(),
                now,
            ),
        )

    def _write_chunks(self, conn: sqlite3.Connection, document_id: str, chunks: list[Chunk]) -> None:
        conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
        conn.executemany(
            """INSERT INTO chunks (id, document_id, tenant_id, ordinal, content, embedding, token_count, metadata)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    chunk.id,
                    document_id,
                    chunk.tenant_id,
                    chunk.ordinal,
                    chunk.content,
                    np.asarray(chunk.embedding, dtype=np.float32).tobytes(),
                    chunk.token_count,
                    json.dumps(chunk.metadata, default=str),
                )
                for chunk in chunks
            ],
        )

    def _get_owner(self, conn: sqlite3.Connection, document_id: str) -> str | None:
        row = conn.execute("SELECT tenant_id FROM documents WHERE id = ?", (document_id,)).fetchone()
        return row["tenant_id"] if row else None

    def _check_owner(self, owner: str, tenant_id: str, document_id: str) -> None:
        if owner != tenant_id:
            raise BridgeError(
                ErrorKind.TENANT_MISMATCH,
                f"Document {document_id} belongs to another tenant.",
                {"requesting_tenant": tenant_id, "document_id": document_id},
            )

    ##########################################
    ################# READS ##################
    ##########################################

    async def get_by_source(self, tenant_id: str, source_kind: SourceKind) -> list[Document]:
        return await asyncio.to_thread(
            self._query_documents,
            "WHERE tenant_id = ? AND source_kind = ? ORDER BY created_at",
            (tenant_id, source_kind.value),
        )

    async def get_all(self, tenant_id: str) -> list[Document]:
        return await asyncio.to_thread(
            self._query_documents, "WHERE tenant_id = ? ORDER BY created_at", (tenant_id,)
        )

    async def get_by_source_native_id(self, tenant_id: str, source_kind: SourceKind, source_native_id: str) -> Document | None:
        documents = await asyncio.to_thread(
            self._query_documents,
            "WHERE tenant_id = ? AND source_kind = ? AND source_native_id = ?",
            (tenant_id, source_kind.value, source_native_id),
        )
        return documents[0] if documents else None

    async def get_document(self, tenant_id: str, document_id: str) -> Document | None:
        return await asyncio.to_thread(self._query_document, tenant_id, document_id)

    async def get_chunks(self, tenant_id: str, document_id: str) -> list[Chunk]:
        return await asyncio.to_thread(self._query_chunks, tenant_id, document_id)

    async def get_search_candidates(self, tenant_id: str) -> list[SearchCandidate]:
        return await asyncio.to_thread(self._query_candidates, tenant_id)

    def _query_documents(self, where: str, params: tuple) -> list[Document]:
        with self._connection() as conn:
            rows = conn.execute(f"SELECT {_DOCUMENT_COLUMNS} FROM documents {where}", params).fetchall()
        return [self._row_to_document(row) for row in rows]

    def _query_document(self, tenant_id: str, document_id: str) -> Document | None:
        with self._connection() as conn:
            row = conn.execute(f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,)).fetchone()
        if row is None:
            return None
        self._check_owner(row["tenant_id"], tenant_id, document_id)
        return self._row_to_document(row)

    def _query_chunks(self, tenant_id: str, document_id: str) -> list[Chunk]:
        with self._connection() as conn:
            owner = self._get_owner(conn, document_id)
            if owner is None:
                return []
            self._check_owner(owner, tenant_id, document_id)
            rows = conn.execute(
                "SELECT * FROM chunks WHERE document_id = ? AND tenant_id = ? ORDER BY ordinal",
                (document_id, tenant_id),
            ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def _query_candidates(self, tenant_id: str) -> list[SearchCandidate]:
        # both sides filtered by tenant so a mislabelled row can never leak across tenants
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT c.*, d.title AS document_title, d.source_kind AS document_source_kind,
                          d.updated_at AS document_updated_at
                   FROM chunks c JOIN documents d ON d.id = c.document_id
                   WHERE c.tenant_id = ? AND d.tenant_id = ?""",
                (tenant_id, tenant_id),
            ).fetchall()
        return [
            SearchCandidate(
                chunk=self._row_to_chunk(row),
                document_title=row["document_title"],
                source_kind=SourceKind(row["document_source_kind"]),
                document_updated_at=datetime.fromisoformat(row["document_updated_at"]),
            )
            for row in rows
        ]

    ##########################################
    ############### PARSERS ##################
    ##########################################

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            tenant_id=row["tenant_id"],
            title=row["title"],
            content=row["content"],
            source_kind=SourceKind(row["source_kind"]),
            source_native_id=row["source_native_id"],
            source_version=row["source_version"],
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_chunk(self, row: sqlite3.Row) -> Chunk:
        return Chunk(
            id=row["id"],
            document_id=row["document_id"],
            tenant_id=row["tenant_id"],
            ordinal=row["ordinal"],
            content=row["content"],
            embedding=np.frombuffer(row["embedding"], dtype=np.float32).tolist(),
            token_count=row["token_count"],
            metadata=json.loads(row["metadata"] or "{}"),
        )
