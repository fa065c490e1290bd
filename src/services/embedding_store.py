"""SQLite document store for analyses with a sqlite_vec ANN index over file embeddings"""

import logging
import math
import re
import sqlite3
import struct
from datetime import datetime, timezone
from pathlib import Path

import sqlite_vec
from pydantic import BaseModel

from src.config import AppConfig, config
from src.models.analysis import AnalysisDocument, FileAnalysisItem, ReviewRun, SourceType
from src.models.embedding import VectorEmbedding
from src.models.search_result import ReviewRunContext
from src.services.error_policy import fail_loudly
from src.services.errors import (
    ConfigurationError,
    DimensionMismatch,
    IndexUnavailable,
    InvalidInput,
    NotFound,
)

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("review_runs", "analyses", "analysis_files")

# sqlite_vec rejects KNN queries with k above this
MAX_KNN_K = 4096


def serialize_vector(vector: list[float]) -> bytes:
    """Pack a vector as little-endian float32, the format vec0 expects"""
    return struct.pack(f"<{len(vector)}f", *vector)


def deserialize_vector(blob: bytes | None) -> list[float] | None:
    if not blob or len(blob) % 4:
        return None
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


class CandidateFile(BaseModel):
    """An indexed file joined to its owning document and review run, as found by the store"""

    file_id: int
    document_id: str
    filename: str
    quality_score: float | None = None
    ai_insights: str = ""
    embedding: list[float] | None = None
    source_type: SourceType | None = None
    review_run: ReviewRunContext | None = None

    @property
    def is_resolved(self) -> bool:
        """False when the owning document or review run no longer exists"""
        return self.source_type is not None and self.review_run is not None


class EmbeddingStore:
    """SQLite-based store for analysis documents and their per-file embeddings"""

    def __init__(self, db_path: str | None = None, settings: AppConfig | None = None):
        self.config = settings or config
        self.db_path = db_path or self.config.db_path
        self.index_name = self.config.vector_index_name
        # For :memory: databases, we need to keep a persistent connection
        # because each connection gets a separate in-memory database
        self._memory_conn: sqlite3.Connection | None = None

    @property
    def dimension(self) -> int:
        return self.config.embedding_dimension

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
        except Exception as e:
            # sqlite_vec might be statically linked; ANN queries fail later if it is absent
            logger.warning(f"Could not load sqlite_vec extension: {e}")
        return conn

    def _get_connection(self) -> sqlite3.Connection:
        """
        Create and configure a new database connection

        For :memory: databases, returns the persistent connection.
        For file databases, creates a new connection.
        """
        if self.db_path == ":memory:":
            if self._memory_conn is None:
                self._memory_conn = self._open()
            return self._memory_conn
        return self._open()

    def _ensure_connection(
        self, conn: sqlite3.Connection | None
    ) -> tuple[sqlite3.Connection, bool]:
        """
        Ensure we have a connection, creating one if needed

        Returns:
            Tuple of (connection, should_close)
        """
        if conn is not None:
            return conn, False

        new_conn = self._get_connection()
        # Never close :memory: connections (they're persistent)
        should_close = self.db_path != ":memory:"
        return new_conn, should_close

    # ------------------------------------------------------------------
    # Schema (out-of-band)
    # ------------------------------------------------------------------

    async def create_schema(self, conn: sqlite3.Connection | None = None) -> None:
        """
        Create tables and the ANN index

        Run from the build CLI, never from the query path.
        """
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn, should_close = self._ensure_connection(conn)

        try:
            with conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS review_runs (
                        id TEXT PRIMARY KEY,
                        source_type TEXT NOT NULL,
                        title TEXT NOT NULL,
                        author TEXT,
                        number INTEGER,
                        created_at TIMESTAMP NOT NULL
                    )
                """)

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS analyses (
                        id TEXT PRIMARY KEY,
                        review_run_id TEXT NOT NULL,
                        source_type TEXT NOT NULL,
                        quality_score REAL,
                        complexity REAL,
                        maintainability REAL,
                        ai_insights TEXT NOT NULL DEFAULT '',
                        created_at TIMESTAMP NOT NULL
                    )
                """)

                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_analyses_review_run
                    ON analyses(review_run_id)
                """)

                # Embeddings live on the file rows; the vec0 table below is only an index
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS analysis_files (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        analysis_id TEXT NOT NULL,
                        position INTEGER NOT NULL,
                        filename TEXT NOT NULL,
                        quality_score REAL,
                        complexity REAL,
                        maintainability REAL,
                        ai_insights TEXT NOT NULL DEFAULT '',
                        embedding BLOB,
                        embedding_model TEXT,
                        embedded_at TIMESTAMP,
                        UNIQUE(analysis_id, filename),
                        CHECK(position >= 0)
                    )
                """)

                self._create_index(conn)
        finally:
            if should_close:
                conn.close()

    def _create_index(self, conn: sqlite3.Connection) -> None:
        # Partitioned by source type so KNN ranking never mixes source types
        conn.execute(f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS {self.index_name} USING vec0(
                file_id INTEGER PRIMARY KEY,
                source_type TEXT PARTITION KEY,
                embedding FLOAT[{self.dimension}] distance_metric=cosine
            )
        """)

    async def verify_schema(self, conn: sqlite3.Connection | None = None) -> None:
        """
        Check that tables and the ANN index exist with the configured dimension

        Raises:
            ConfigurationError: Schema is missing, or the index dimension or partitioning differs
        """
        conn, should_close = self._ensure_connection(conn)

        try:
            rows = conn.execute(
                "SELECT name, sql FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
            tables = {row["name"]: row["sql"] or "" for row in rows}

            missing = [name for name in (*REQUIRED_TABLES, self.index_name) if name not in tables]
            if missing:
                raise ConfigurationError(
                    f"Missing required tables: {missing}. Run the build CLI (init) first."
                )

            index_sql = tables[self.index_name]
            match = re.search(r"FLOAT\[(\d+)\]", index_sql, re.IGNORECASE)
            if not match:
                raise ConfigurationError(
                    f"Cannot determine dimension of ANN index {self.index_name}"
                )
            index_dim = int(match.group(1))
            if index_dim != self.dimension:
                raise ConfigurationError(
                    f"ANN index {self.index_name} has {index_dim} dimensions but "
                    f"embedding_dimension is {self.dimension}. Run the build CLI (reindex)."
                )
            if not re.search(r"source_type\s+TEXT\s+PARTITION\s+KEY", index_sql, re.IGNORECASE):
                raise ConfigurationError(
                    f"ANN index {self.index_name} is not partitioned by source_type. "
                    f"Run the build CLI (reindex)."
                )
        finally:
            if should_close:
                conn.close()

    # ------------------------------------------------------------------
    # Writes (hard failure policy)
    # ------------------------------------------------------------------

    def _check_vector(self, vector: list[float]) -> None:
        if len(vector) != self.dimension:
            raise DimensionMismatch(self.dimension, len(vector))
        if not all(isinstance(x, int | float) and math.isfinite(x) for x in vector):
            raise InvalidInput("Embedding contains non-finite values")

    def _index_vector(
        self, conn: sqlite3.Connection, file_id: int, source_type: str, blob: bytes
    ) -> None:
        # vec0 does not honour INSERT OR REPLACE, so replace explicitly
        conn.execute(f"DELETE FROM {self.index_name} WHERE file_id = ?", (file_id,))
        conn.execute(
            f"INSERT INTO {self.index_name} (file_id, source_type, embedding) VALUES (?, ?, ?)",
            (file_id, source_type, blob),
        )

    def _unindex_files(self, conn: sqlite3.Connection, analysis_id: str) -> None:
        rows = conn.execute(
            "SELECT id FROM analysis_files WHERE analysis_id = ?", (analysis_id,)
        ).fetchall()
        for row in rows:
            conn.execute(f"DELETE FROM {self.index_name} WHERE file_id = ?", (row["id"],))

    @fail_loudly("save_analysis")
    async def save_analysis(
        self,
        run: ReviewRun,
        document: AnalysisDocument,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        """
        Persist a review run and its analysis document, indexing valid file embeddings

        File embeddings that are not exactly `embedding_dimension` finite floats are
        stored as absent and left out of the index.

        Args:
            run: Review run the document belongs to
            document: Analysis document with its files
            conn: Optional connection (for transactions)
        """
        if document.review_run_id != run.id:
            raise InvalidInput(
                f"Analysis {document.id} belongs to review run {document.review_run_id}, "
                f"not {run.id}"
            )
        if document.source_type != run.source_type:
            raise InvalidInput(
                f"Analysis source type {document.source_type.value} does not match "
                f"review run source type {run.source_type.value}"
            )

        conn, should_close = self._ensure_connection(conn)

        try:
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO review_runs (
                        id, source_type, title, author, number, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                    (
                        run.id,
                        run.source_type.value,
                        run.title,
                        run.author,
                        run.number,
                        run.created_at.isoformat(),
                    ),
                )

                conn.execute(
                    """
                    INSERT OR REPLACE INTO analyses (
                        id, review_run_id, source_type, quality_score, complexity,
                        maintainability, ai_insights, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        document.id,
                        document.review_run_id,
                        document.source_type.value,
                        document.quality_score,
                        document.complexity,
                        document.maintainability,
                        document.ai_insights,
                        document.created_at.isoformat(),
                    ),
                )

                # Documents are immutable once written; a re-save replaces all files
                self._unindex_files(conn, document.id)
                conn.execute("DELETE FROM analysis_files WHERE analysis_id = ?", (document.id,))

                indexed = 0
                for position, item in enumerate(document.files):
                    blob = None
                    if item.embedding is not None:
                        if item.has_valid_embedding(self.dimension):
                            blob = serialize_vector(item.embedding)
                        else:
                            logger.warning(
                                f"Invalid embedding for {document.id}/{item.filename} "
                                f"({len(item.embedding)} dims, expected {self.dimension}); "
                                f"excluded from index"
                            )

                    cursor = conn.execute(
                        """
                        INSERT INTO analysis_files (
                            analysis_id, position, filename, quality_score, complexity,
                            maintainability, ai_insights, embedding, embedding_model, embedded_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                        (
                            document.id,
                            position,
                            item.filename,
                            item.quality_score,
                            item.complexity,
                            item.maintainability,
                            item.ai_insights,
                            blob,
                            self.config.embedding_model if blob else None,
                            datetime.now(timezone.utc).isoformat() if blob else None,
                        ),
                    )

                    if blob is not None:
                        self._index_vector(
                            conn, cursor.lastrowid, document.source_type.value, blob
                        )
                        indexed += 1

            logger.info(
                f"Saved analysis {document.id} ({len(document.files)} files, {indexed} indexed)"
            )
        finally:
            if should_close:
                conn.close()

    def _find_file(
        self, conn: sqlite3.Connection, document_id: str, filename: str
    ) -> tuple[int, str]:
        """
        Returns:
            tuple[int, str]: File row id and the source type of its analysis
        """
        row = conn.execute(
            """
            SELECT f.id, a.source_type
            FROM analysis_files f
            JOIN analyses a ON a.id = f.analysis_id
            WHERE f.analysis_id = ? AND f.filename = ?
        """,
            (document_id, filename),
        ).fetchone()
        if not row:
            raise NotFound(f"File {filename} not found in analysis {document_id}")
        return row["id"], row["source_type"]

    @fail_loudly("store_embedding")
    async def store(
        self,
        document_id: str,
        filename: str,
        vector: list[float],
        model_name: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        """
        Attach an embedding to a file of an analysis document (idempotent upsert)

        Args:
            document_id: Owning analysis document
            filename: File within the document
            vector: Embedding of exactly `embedding_dimension` finite floats
            model_name: Model that produced the vector (defaults to configured model)
            conn: Optional connection (for transactions)

        Raises:
            NotFound: No such file under that document
            DimensionMismatch: Vector length differs from the configured dimension
        """
        self._check_vector(vector)

        conn, should_close = self._ensure_connection(conn)

        try:
            file_id, source_type = self._find_file(conn, document_id, filename)
            blob = serialize_vector(vector)

            with conn:
                conn.execute(
                    """
                    UPDATE analysis_files
                    SET embedding = ?, embedding_model = ?, embedded_at = ?
                    WHERE id = ?
                """,
                    (
                        blob,
                        model_name or self.config.embedding_model,
                        datetime.now(timezone.utc).isoformat(),
                        file_id,
                    ),
                )
                self._index_vector(conn, file_id, source_type, blob)

            logger.debug(f"Stored embedding for {document_id}/{filename}")
        finally:
            if should_close:
                conn.close()

    @fail_loudly("clear_embedding")
    async def clear_embedding(
        self, document_id: str, filename: str, conn: sqlite3.Connection | None = None
    ) -> None:
        """
        Remove a file's embedding and its index entry

        Raises:
            NotFound: No such file under that document
        """
        conn, should_close = self._ensure_connection(conn)

        try:
            file_id, _ = self._find_file(conn, document_id, filename)
            with conn:
                conn.execute(
                    """
                    UPDATE analysis_files
                    SET embedding = NULL, embedding_model = NULL, embedded_at = NULL
                    WHERE id = ?
                """,
                    (file_id,),
                )
                conn.execute(f"DELETE FROM {self.index_name} WHERE file_id = ?", (file_id,))
        finally:
            if should_close:
                conn.close()

    @fail_loudly("delete_analysis")
    async def delete_analysis(
        self, document_id: str, conn: sqlite3.Connection | None = None
    ) -> bool:
        """
        Delete an analysis document together with its files and their embeddings

        Returns:
            bool: True if the document existed
        """
        conn, should_close = self._ensure_connection(conn)

        try:
            with conn:
                self._unindex_files(conn, document_id)
                conn.execute("DELETE FROM analysis_files WHERE analysis_id = ?", (document_id,))
                cursor = conn.execute("DELETE FROM analyses WHERE id = ?", (document_id,))
            return cursor.rowcount > 0
        finally:
            if should_close:
                conn.close()

    @fail_loudly("rebuild_index")
    async def rebuild_index(self, conn: sqlite3.Connection | None = None) -> int:
        """
        Drop and recreate the ANN index from the embeddings stored on file rows

        Used after changing the embedding dimension. Stored vectors of another
        length stay on their rows but are not indexed.

        Returns:
            int: Number of indexed files
        """
        conn, should_close = self._ensure_connection(conn)

        try:
            with conn:
                conn.execute(f"DROP TABLE IF EXISTS {self.index_name}")
                self._create_index(conn)

                indexed = 0
                skipped = 0
                # Files of a deleted analysis have no source type and stay unindexed
                rows = conn.execute("""
                    SELECT f.id, f.embedding, a.source_type
                    FROM analysis_files f
                    JOIN analyses a ON a.id = f.analysis_id
                    WHERE f.embedding IS NOT NULL
                """).fetchall()
                for row in rows:
                    vector = deserialize_vector(row["embedding"])
                    if vector is None or len(vector) != self.dimension:
                        skipped += 1
                        continue
                    self._index_vector(conn, row["id"], row["source_type"], row["embedding"])
                    indexed += 1

            if skipped:
                logger.warning(
                    f"{skipped} stored embeddings do not have {self.dimension} dimensions "
                    f"and were left out of the index"
                )
            logger.info(f"Rebuilt index {self.index_name} with {indexed} embeddings")
            return indexed
        finally:
            if should_close:
                conn.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_analysis(
        self, document_id: str, conn: sqlite3.Connection | None = None
    ) -> AnalysisDocument | None:
        """Load an analysis document with its files, or None if it does not exist"""
        conn, should_close = self._ensure_connection(conn)

        try:
            row = conn.execute("SELECT * FROM analyses WHERE id = ?", (document_id,)).fetchone()
            if not row:
                return None

            file_rows = conn.execute(
                """
                SELECT filename, quality_score, complexity, maintainability, ai_insights, embedding
                FROM analysis_files
                WHERE analysis_id = ?
                ORDER BY position
            """,
                (document_id,),
            ).fetchall()

            return AnalysisDocument(
                id=row["id"],
                review_run_id=row["review_run_id"],
                source_type=row["source_type"],
                quality_score=row["quality_score"],
                complexity=row["complexity"],
                maintainability=row["maintainability"],
                ai_insights=row["ai_insights"],
                created_at=row["created_at"],
                files=[
                    FileAnalysisItem(
                        filename=f["filename"],
                        quality_score=f["quality_score"],
                        complexity=f["complexity"],
                        maintainability=f["maintainability"],
                        ai_insights=f["ai_insights"],
                        embedding=deserialize_vector(f["embedding"]),
                    )
                    for f in file_rows
                ],
            )
        finally:
            if should_close:
                conn.close()

    async def get_embedding(
        self, document_id: str, filename: str, conn: sqlite3.Connection | None = None
    ) -> VectorEmbedding | None:
        """
        Read back the embedding stored for a file

        Returns:
            VectorEmbedding | None: Stored vector, or None if the file has no embedding

        Raises:
            NotFound: Document or file does not exist
        """
        conn, should_close = self._ensure_connection(conn)

        try:
            exists = conn.execute(
                "SELECT 1 FROM analyses WHERE id = ?", (document_id,)
            ).fetchone()
            if not exists:
                raise NotFound(f"Analysis {document_id} not found")

            row = conn.execute(
                """
                SELECT embedding, embedding_model, embedded_at
                FROM analysis_files
                WHERE analysis_id = ? AND filename = ?
            """,
                (document_id, filename),
            ).fetchone()
            if not row:
                raise NotFound(f"File {filename} not found in analysis {document_id}")

            vector = deserialize_vector(row["embedding"])
            if vector is None:
                return None

            return VectorEmbedding(
                document_id=document_id,
                filename=filename,
                embedding=vector,
                model_name=row["embedding_model"],
                created_at=row["embedded_at"] or datetime.now(timezone.utc),
            )
        finally:
            if should_close:
                conn.close()

    async def get_source_type(
        self, document_id: str, conn: sqlite3.Connection | None = None
    ) -> SourceType:
        """
        Raises:
            NotFound: Document does not exist
        """
        conn, should_close = self._ensure_connection(conn)

        try:
            row = conn.execute(
                "SELECT source_type FROM analyses WHERE id = ?", (document_id,)
            ).fetchone()
            if not row:
                raise NotFound(f"Analysis {document_id} not found")
            return SourceType(row["source_type"])
        finally:
            if should_close:
                conn.close()

    async def nearest_neighbors(
        self,
        query_vector: list[float],
        k: int,
        source_type: SourceType,
        conn: sqlite3.Connection | None = None,
    ) -> list[tuple[int, float]]:
        """
        Approximate nearest-neighbor search over file embeddings of one source type

        Args:
            query_vector: Query embedding (already validated by the caller)
            k: Number of candidates to retrieve (capped at the sqlite_vec maximum)
            source_type: Index partition to search
            conn: Optional connection (for transactions)

        Returns:
            list[tuple[int, float]]: (file_id, cosine similarity) pairs, most similar first

        Raises:
            IndexUnavailable: Index is missing or the query failed
        """
        conn, should_close = self._ensure_connection(conn)

        try:
            # Note: sqlite_vec requires k = ? in WHERE clause instead of separate LIMIT
            cursor = conn.execute(
                f"""
                SELECT file_id, distance
                FROM {self.index_name}
                WHERE embedding MATCH ? AND k = ? AND source_type = ?
                ORDER BY distance
            """,
                (serialize_vector(query_vector), min(k, MAX_KNN_K), SourceType(source_type).value),
            )
            # Cosine distance is 1 - cosine similarity
            return [(row["file_id"], 1.0 - row["distance"]) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise IndexUnavailable(f"ANN query on {self.index_name} failed: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def fetch_candidates(
        self, file_ids: list[int], conn: sqlite3.Connection | None = None
    ) -> list[CandidateFile]:
        """
        Load indexed files together with their owning document and review run

        Index entries whose file row is gone are omitted. Files whose document or
        review run is gone are returned unresolved so the caller can drop them.

        Raises:
            IndexUnavailable: Store query failed
        """
        if not file_ids:
            return []

        conn, should_close = self._ensure_connection(conn)

        try:
            placeholders = ", ".join("?" for _ in file_ids)
            cursor = conn.execute(
                f"""
                SELECT
                    f.id AS file_id, f.analysis_id, f.filename, f.quality_score,
                    f.ai_insights, f.embedding,
                    a.source_type,
                    r.id AS run_id, r.title, r.author, r.number, r.created_at AS run_created_at
                FROM analysis_files f
                LEFT JOIN analyses a ON a.id = f.analysis_id
                LEFT JOIN review_runs r ON r.id = a.review_run_id
                WHERE f.id IN ({placeholders})
            """,
                file_ids,
            )

            candidates: list[CandidateFile] = []
            for row in cursor.fetchall():
                review_run = None
                if row["run_id"] is not None:
                    review_run = ReviewRunContext(
                        id=row["run_id"],
                        title=row["title"],
                        author=row["author"],
                        number=row["number"],
                        created_at=row["run_created_at"],
                    )
                candidates.append(
                    CandidateFile(
                        file_id=row["file_id"],
                        document_id=row["analysis_id"],
                        filename=row["filename"],
                        quality_score=row["quality_score"],
                        ai_insights=row["ai_insights"] or "",
                        embedding=deserialize_vector(row["embedding"]),
                        source_type=row["source_type"],
                        review_run=review_run,
                    )
                )
            return candidates
        except sqlite3.Error as e:
            raise IndexUnavailable(f"Loading search candidates failed: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def count_indexed(self, conn: sqlite3.Connection | None = None) -> int:
        """Get total number of entries in the ANN index"""
        conn, should_close = self._ensure_connection(conn)

        try:
            cursor = conn.execute(f"SELECT COUNT(*) FROM {self.index_name}")
            result = cursor.fetchone()
            return result[0] if result else 0
        finally:
            if should_close:
                conn.close()

    async def health_check(self, conn: sqlite3.Connection | None = None) -> bool:
        """Check if database is properly initialized"""
        conn, should_close = self._ensure_connection(conn)

        try:
            conn.execute("SELECT COUNT(*) FROM analysis_files").fetchone()
            return True
        except sqlite3.Error:
            return False
        finally:
            if should_close:
                conn.close()

    def close(self) -> None:
        """
        Close database connection

        For :memory: databases, closes the persistent connection.
        For file databases, this is a no-op (connections are per-method).
        """
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None
