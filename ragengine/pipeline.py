"""Main RAG pipeline orchestrating ingestion and the three-stage query flow."""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from .completion import CompletionService
from .config import config
from .context import build_no_results_message, prepare_context
from .embeddings import EmbeddingService
from .errors import DocumentValidationError
from .ingestion import DocumentIndexer
from .models import (
    DEFAULT_NAMESPACE,
    KNOWN_DOMAINS,
    BatchIngestResult,
    BatchItemResult,
    RAGResponse,
    ResponseMetadata,
    SemanticQuery,
    ServiceHealth,
    ServiceStatus,
)
from .scoring import calculate_confidence
from .validation import (
    ensure_valid,
    first_invalid,
    validate_content,
    validate_document,
    validate_document_id,
    validate_domain,
    validate_min_score,
    validate_optional_domain,
    validate_query_text,
    validate_top_k,
)
from .vector_store import QueryRequest, VectorStore, convert_filters, get_vector_store

if TYPE_CHECKING:
    from .models import Document, DocumentChunk, DocumentMetadata, VectorMatch

logger = config.get_logger(__name__)


class PipelineStage(enum.Enum):
    """Progress of a single query through the pipeline."""

    START = "start"
    QUERY_PROCESSED = "query_processed"
    RETRIEVED = "retrieved"
    GENERATED = "generated"
    NO_RESULTS = "no_results"
    DONE = "done"


# Stage that runs next, named in the note attached to a failure.
NEXT_STAGE_NAMES = {
    PipelineStage.START: "query processing",
    PipelineStage.QUERY_PROCESSED: "retrieval",
    PipelineStage.RETRIEVED: "generation",
}


def _advance(current: PipelineStage, new: PipelineStage) -> PipelineStage:
    logger.debug("RAG query stage %s -> %s", current.value, new.value)
    return new


@dataclass(frozen=True)
class RetrievalOptions:
    """Pipeline-wide retrieval and ingestion defaults."""

    default_top_k: int = 5
    min_score: float = 0.7
    max_tokens_per_context: int = 4000
    ingest_concurrency: int = 5

    def __post_init__(self) -> None:
        """Reject options that would make retrieval meaningless.

        Raises:
            ValueError: If a bound is violated.
        """
        failure = first_invalid(
            validate_top_k(self.default_top_k),
            validate_min_score(self.min_score),
        )
        if failure is not None:
            raise ValueError(failure.reason)
        if self.max_tokens_per_context <= 0:
            msg = "max_tokens_per_context must be positive"
            raise ValueError(msg)
        if self.ingest_concurrency < 1:
            msg = "ingest_concurrency must be at least 1"
            raise ValueError(msg)

    @classmethod
    def from_config(cls) -> RetrievalOptions:
        """Build options from the application configuration.

        Returns:
            RetrievalOptions populated from config.
        """
        return cls(
            default_top_k=config.RAG_DEFAULT_TOP_K,
            min_score=config.RAG_MIN_SCORE,
            max_tokens_per_context=config.RAG_MAX_TOKENS_PER_CONTEXT,
            ingest_concurrency=config.RAG_INGEST_CONCURRENCY,
        )


class RAGPipeline:
    """Query orchestrator and document management surface.

    Every collaborator is passed in explicitly, so several pipelines with
    different clients or stores can coexist and tests can substitute doubles.
    No state is kept between calls apart from the collaborators themselves.
    """

    def __init__(
        self,
        completion_service: CompletionService,
        embedding_service: EmbeddingService,
        vector_store: VectorStore,
        indexer: DocumentIndexer | None = None,
        options: RetrievalOptions | None = None,
    ) -> None:
        """Initialize the pipeline with its collaborators.

        Args:
            completion_service: Gateway for query processing and answers.
            embedding_service: Gateway for query and chunk embeddings.
            vector_store: Namespaced vector storage.
            indexer: Ingestion helper. If None, built from the embedding
                service and vector store with a config-driven chunker.
            options: Retrieval defaults. If None, read from config.
        """
        self.completion_service = completion_service
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.indexer = indexer or DocumentIndexer(embedding_service, vector_store)
        self.options = options or RetrievalOptions.from_config()

    @classmethod
    def from_config(
        cls,
        api_key: str | None = None,
        vector_backend: str | None = None,
    ) -> RAGPipeline:
        """Build an OpenAI-backed pipeline over the configured vector store.

        Returns:
            RAGPipeline that still needs ``await pipeline.initialize()``.
        """
        options = RetrievalOptions.from_config()
        store = get_vector_store(vector_backend)
        logger.info("Using %s vector storage", store.backend)
        return cls(
            completion_service=CompletionService(api_key=api_key),
            embedding_service=EmbeddingService(api_key=api_key),
            vector_store=store,
            options=options,
        )

    async def initialize(self) -> None:
        """Open the vector store and verify the completion API."""
        if not self.vector_store.is_ready():
            await self.vector_store.initialize()
        if not self.completion_service.is_ready():
            await self.completion_service.initialize()
        logger.info("RAG pipeline initialized")

    async def close(self) -> None:
        await self.vector_store.close()
        await self.completion_service.close()
        await self.embedding_service.close()

    async def query(self, user_query: str, domain: str | None = None) -> RAGResponse:
        """Answer a question from the knowledge base.

        Args:
            user_query: The caller's question.
            domain: Domain preference that overrides the inferred one.

        Returns:
            RAGResponse with the answer, its sources and a confidence score.

        Raises:
            DocumentValidationError: If the query or domain is invalid.
        """
        ensure_valid(validate_query_text(user_query))
        ensure_valid(validate_optional_domain(domain))

        start_time = time.perf_counter()
        stage = PipelineStage.START
        logger.info("Starting RAG query %r (domain=%s)", user_query[:100], domain)

        try:
            available_domains = await self.get_available_domains()
            semantic_query = await self.process_query(
                user_query, available_domains, domain
            )
            stage = _advance(stage, PipelineStage.QUERY_PROCESSED)

            matches = await self.retrieve_documents(semantic_query)
            stage = _advance(stage, PipelineStage.RETRIEVED)

            answer = await self.generate_response(user_query, semantic_query, matches)
            stage = _advance(
                stage,
                PipelineStage.GENERATED if matches else PipelineStage.NO_RESULTS,
            )
        except Exception as e:
            e.add_note(f"RAG stage failed: {NEXT_STAGE_NAMES[stage]}")
            logger.exception(
                "RAG query failed during %s after %.1f ms",
                NEXT_STAGE_NAMES[stage],
                (time.perf_counter() - start_time) * 1000,
            )
            raise

        response = RAGResponse(
            answer=answer,
            sources=matches,
            confidence=calculate_confidence(matches),
            processing_time_ms=(time.perf_counter() - start_time) * 1000,
            metadata=ResponseMetadata(
                original_query=user_query,
                processed_query=semantic_query,
                total_matches=len(matches),
            ),
        )
        logger.info(
            "RAG query finished as %s in %.1f ms (%d sources, confidence %.2f)",
            stage.value,
            response.processing_time_ms,
            len(matches),
            response.confidence,
        )
        _advance(stage, PipelineStage.DONE)
        return response

    async def get_available_domains(self) -> list[str]:
        """Domains currently present in the vector store.

        Returns:
            Namespace names, or the known domains when the store has none.
        """
        namespaces = await self.vector_store.list_namespaces()
        return namespaces or list(KNOWN_DOMAINS)

    async def process_query(
        self,
        user_query: str,
        available_domains: list[str],
        preferred_domain: str | None = None,
    ) -> SemanticQuery:
        """Stage 1: turn the raw question into a SemanticQuery.

        An explicit ``preferred_domain`` always replaces the inferred domain.
        An inferred domain the store does not know is dropped.

        Returns:
            SemanticQuery with pipeline-wide top_k and min_score.
        """
        processed = await self.completion_service.process_query(
            user_query, available_domains
        )
        logger.debug(
            "Query processing confidence %.2f: %s",
            processed.confidence,
            processed.reasoning,
        )

        filters = processed.filters
        if preferred_domain:
            filters.domain = preferred_domain
        elif filters.domain and filters.domain not in {
            *available_domains,
            *KNOWN_DOMAINS,
        }:
            logger.warning("Ignoring unknown inferred domain %r", filters.domain)
            filters.domain = None

        return SemanticQuery(
            query=processed.semantic_query,
            filters=filters,
            top_k=self.options.default_top_k,
            min_score=self.options.min_score,
        )

    async def retrieve_documents(
        self,
        semantic_query: SemanticQuery,
    ) -> list[VectorMatch]:
        """Stage 2: embed the query and fetch matches above ``min_score``.

        Returns:
            Matches sorted by descending score; ties keep store order.
        """
        domain = semantic_query.filters.domain
        vector = await self.embedding_service.embed_query(semantic_query.query, domain)

        expression = (
            None
            if semantic_query.filters.is_empty()
            else convert_filters(semantic_query.filters)
        )
        response = await self.vector_store.query(
            QueryRequest(
                vector=vector,
                top_k=semantic_query.top_k,
                namespace=domain or DEFAULT_NAMESPACE,
                filter=expression,
                include_metadata=True,
                include_values=False,
            )
        )

        matches = [
            match
            for match in response.matches
            if match.score >= semantic_query.min_score
        ]
        matches.sort(key=lambda match: match.score, reverse=True)
        logger.debug(
            "Retrieved %d of %d matches from %s (min_score=%.2f)",
            len(matches),
            len(response.matches),
            response.namespace,
            semantic_query.min_score,
        )
        return matches

    async def generate_response(
        self,
        original_query: str,
        semantic_query: SemanticQuery,
        matches: list[VectorMatch],
    ) -> str:
        """Stage 3: answer from the matches, or explain that none were found.

        Returns:
            The completion model's answer, or the no-results message without
            calling the model when there are no matches.
        """
        if not matches:
            logger.info("No matches for %r", original_query)
            return build_no_results_message(original_query, semantic_query)

        context = prepare_context(matches, self.options.max_tokens_per_context)
        return await self.completion_service.generate_answer(
            original_query, semantic_query, context
        )

    async def add_document(self, document: Document) -> list[DocumentChunk]:
        """Validate and index a document into its domain's namespace.

        Returns:
            The stored chunks.
        """
        ensure_valid(validate_document(document))
        namespace = document.metadata.domain or DEFAULT_NAMESPACE
        try:
            return await self.indexer.index_document(document, namespace)
        except Exception:
            logger.exception("Error adding document %s", document.id)
            raise

    async def add_documents(self, documents: list[Document]) -> BatchIngestResult:
        """Index independent documents concurrently.

        At most ``ingest_concurrency`` documents are in flight at once. A
        failing document does not stop the others; its error is reported in
        the result.

        Returns:
            BatchIngestResult with one outcome per document, in input order.
        """
        semaphore = asyncio.Semaphore(self.options.ingest_concurrency)

        async def _ingest(document: Document) -> BatchItemResult:
            async with semaphore:
                try:
                    await self.add_document(document)
                except Exception as e:  # noqa: BLE001
                    return BatchItemResult(
                        document_id=document.id, succeeded=False, error=str(e)
                    )
                return BatchItemResult(document_id=document.id, succeeded=True)

        results = await asyncio.gather(*(_ingest(document) for document in documents))
        batch = BatchIngestResult(results=list(results))
        logger.info(
            "Batch ingestion finished: %d succeeded, %d failed",
            batch.successful,
            batch.failed,
        )
        return batch

    async def update_document(
        self,
        document_id: str,
        content: str,
        metadata: DocumentMetadata,
    ) -> list[DocumentChunk]:
        """Replace a document's content and metadata.

        Returns:
            The newly stored chunks.

        Raises:
            DocumentValidationError: If the id, content or domain is invalid.
        """
        failure = first_invalid(
            validate_document_id(document_id),
            validate_content(content),
            validate_domain(metadata.domain),
        )
        if failure is not None:
            raise DocumentValidationError(failure.reason)

        try:
            return await self.indexer.update_document(document_id, content, metadata)
        except Exception:
            logger.exception("Error updating document %s", document_id)
            raise

    async def remove_document(self, document_id: str, domain: str | None = None) -> int:
        """Remove every chunk of a document from a namespace.

        Returns:
            Number of chunks removed.
        """
        ensure_valid(validate_document_id(document_id))
        ensure_valid(validate_optional_domain(domain))
        try:
            return await self.indexer.delete_document(
                document_id, domain or DEFAULT_NAMESPACE
            )
        except Exception:
            logger.exception("Error removing document %s", document_id)
            raise

    async def get_status(self) -> ServiceStatus:
        """Report collaborator health and index statistics.

        Returns:
            ServiceStatus; stats are only collected from a healthy store.
        """
        completion_ok, store_ok, embedding_ok = await asyncio.gather(
            self.completion_service.health_check(),
            self.vector_store.health_check(),
            self.embedding_service.health_check(),
        )
        stats = asdict(await self.indexer.get_stats()) if store_ok else None
        return ServiceStatus(
            is_ready=completion_ok and store_ok and embedding_ok,
            health=ServiceHealth(
                completion=completion_ok,
                vector_store=store_ok,
                embedding=embedding_ok,
            ),
            stats=stats,
        )
