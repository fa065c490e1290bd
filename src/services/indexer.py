"""Embed analyzed file contents and attach them to their analysis documents"""

import logging
from collections.abc import Mapping

from src.services.embedder import Embedder
from src.services.embedding_store import EmbeddingStore
from src.services.error_policy import fail_loudly

logger = logging.getLogger(__name__)


class AnalysisIndexer:
    """Generate and store file embeddings during analysis ingestion"""

    def __init__(self, store: EmbeddingStore, embedder: Embedder):
        self.store = store
        self.embedder = embedder

    @fail_loudly("index_file")
    async def index_file(self, document_id: str, filename: str, content: str) -> list[float]:
        """
        Embed one file's content and store it on its analysis document

        Returns:
            list[float]: The stored embedding
        """
        vector = await self.embedder.embed_text(content)
        await self.store.store(document_id, filename, vector, model_name=self.embedder.model_name)
        logger.info(f"Embedded {document_id}/{filename} ({len(vector)} dims)")
        return vector

    @fail_loudly("index_analysis")
    async def index_analysis(self, document_id: str, contents: Mapping[str, str]) -> int:
        """
        Embed every file of an analysis document

        Files with empty or whitespace-only content are skipped.

        Args:
            document_id: Analysis document the files belong to
            contents: Mapping of filename to file content

        Returns:
            int: Number of files embedded
        """
        pending = {
            filename: content
            for filename, content in contents.items()
            if content and content.strip()
        }
        for filename in contents.keys() - pending.keys():
            logger.info(f"Skipping embedding for {document_id}/{filename} (empty content)")

        if not pending:
            return 0

        filenames = list(pending)
        vectors = await self.embedder.embed_batch(pending[name] for name in filenames)
        for filename, vector in zip(filenames, vectors):
            await self.store.store(
                document_id, filename, vector, model_name=self.embedder.model_name
            )

        logger.info(f"Embedded {len(filenames)} files for analysis {document_id}")
        return len(filenames)
