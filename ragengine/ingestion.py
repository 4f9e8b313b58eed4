"""Document indexing: chunk, embed and store."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .config import config
from .document_processing import TextChunker
from .models import DEFAULT_NAMESPACE, Document, utc_now_iso
from .vector_store import DeleteRequest, chunk_to_vector_record

if TYPE_CHECKING:
    from .embeddings import EmbeddingService
    from .models import DocumentChunk, DocumentMetadata
    from .vector_store import IndexStats, VectorRecord, VectorStore

logger = config.get_logger(__name__)


class DocumentIndexer:
    """Load -> Split -> Embed -> Store for documents already in memory."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: VectorStore,
        chunker: TextChunker | None = None,
    ) -> None:
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.chunker = chunker or TextChunker()

    async def index_document(
        self,
        document: Document,
        namespace: str | None = None,
    ) -> list[DocumentChunk]:
        """Chunk, embed and upsert a document.

        Args:
            document: Document to index.
            namespace: Target namespace. Defaults to the document's domain.

        Returns:
            The stored chunks, with embeddings, in chunk index order.
        """
        namespace = namespace or document.metadata.domain or DEFAULT_NAMESPACE
        logger.info("Indexing document %s into namespace %s", document.id, namespace)

        chunks = self.chunker.chunk_document(document)
        await self.index_chunks(chunks, namespace, domain=document.metadata.domain)

        logger.info("Indexed document %s as %d chunks", document.id, len(chunks))
        return chunks

    async def embed_chunks(
        self,
        chunks: list[DocumentChunk],
        domain: str | None = None,
    ) -> list[VectorRecord]:
        """Attach embeddings to chunks in order and build their store records.

        Returns:
            One record per chunk; nothing is written to the store.
        """
        if not chunks:
            return []

        results = await self.embedding_service.embed_batch(
            [chunk.content for chunk in chunks],
            domain=domain,
        )
        for chunk, result in zip(chunks, results, strict=True):
            chunk.embedding = result.embedding
        return [chunk_to_vector_record(chunk) for chunk in chunks]

    async def index_chunks(
        self,
        chunks: list[DocumentChunk],
        namespace: str,
        domain: str | None = None,
    ) -> None:
        """Embed chunks in order and upsert them as one batch."""
        records = await self.embed_chunks(chunks, domain)
        if records:
            await self.vector_store.upsert(records, namespace=namespace)

    async def delete_document(
        self,
        document_id: str,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> int:
        """Delete every chunk of a document.

        Returns:
            Number of chunks removed.
        """
        removed = await self.vector_store.delete(
            DeleteRequest(
                namespace=namespace,
                filter={"document_id": {"$eq": document_id}},
            )
        )
        logger.info(
            "Removed %d chunks of document %s from namespace %s",
            removed,
            document_id,
            namespace,
        )
        return removed

    async def update_document(
        self,
        document_id: str,
        content: str,
        metadata: DocumentMetadata,
        namespace: str | None = None,
    ) -> list[DocumentChunk]:
        """Replace a document's chunks with a fresh indexing of ``content``.

        The new content is chunked and embedded before the old chunks are
        removed, so a failed embedding leaves the stored document intact.

        Returns:
            The newly stored chunks.
        """
        updated = metadata.copy()
        updated.updated_at = utc_now_iso()
        namespace = namespace or updated.domain or DEFAULT_NAMESPACE

        document = Document(id=document_id, content=content, metadata=updated)
        chunks = self.chunker.chunk_document(document)
        records = await self.embed_chunks(chunks, updated.domain)

        await self.delete_document(document_id, namespace)
        await self.vector_store.upsert(records, namespace=namespace)
        logger.info("Updated document %s as %d chunks", document_id, len(chunks))
        return chunks

    async def get_stats(self) -> IndexStats:
        return await self.vector_store.get_stats()
