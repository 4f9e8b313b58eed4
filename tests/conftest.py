"""Test configuration and fixtures for RAGEngine tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Mock services and API responses
- Service fixtures
- Text processing fixtures
- Vector store fixtures
- Pipeline fixtures
"""

import hashlib
from unittest.mock import AsyncMock, Mock, create_autospec, patch

import numpy as np
import pytest
import pytest_asyncio

from ragengine import (
    ChunkingOptions,
    CompletionService,
    DocumentIndexer,
    EmbeddingService,
    RAGPipeline,
    RetrievalOptions,
    TextChunker,
)
from ragengine.models import (
    EmbeddingResult,
    QueryFilter,
    QueryProcessingResult,
)
from ragengine.vector_store import (
    IndexStats,
    QueryResponse,
    VectorStore,
    get_vector_store,
)


class TestConstants:
    """Centralized test constants to avoid repetition across test files.

    All test constants are defined here to maintain consistency across
    the test suite and make it easy to update values globally.
    """

    # API Configuration
    TEST_API_KEY = "test-key"
    TEST_EMBEDDING_MODEL = "text-embedding-3-small"
    TEST_COMPLETION_MODEL = "gpt-test"
    DEFAULT_EMBEDDING_DIMENSION = 384

    # Text Chunking Configuration
    SMALL_CHUNK_SIZE = 100
    SMALL_CHUNK_OVERLAP = 10
    SMALL_MIN_CHUNK_SIZE = 20
    DEFAULT_CHUNK_SIZE = 1000
    DEFAULT_CHUNK_OVERLAP = 100
    DEFAULT_MIN_CHUNK_SIZE = 200

    # Pipeline Configuration
    TEST_ANSWER = "Test answer"


class MockEmbeddingService:
    """Mock embedding service for testing without API calls.

    Generates deterministic embeddings based on text content hash,
    ensuring consistent test results across runs. Identical texts get
    identical unit vectors, so a query equal to a stored chunk scores 1.0.
    """

    def __init__(
        self, dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION
    ) -> None:
        self.dimension = dimension
        self.model = TestConstants.TEST_EMBEDDING_MODEL
        self.batch_calls: list[tuple[list[str], str | None]] = []
        self.healthy = True

    def get_embedding(self, text: str) -> np.ndarray:
        """Generate deterministic mock embedding based on text hash."""
        seed = int.from_bytes(
            hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
            byteorder="big",
            signed=False,
        )
        rng = np.random.default_rng(seed)
        embedding = rng.normal(0, 1, self.dimension)
        return (embedding / np.linalg.norm(embedding)).astype(np.float32)

    async def embed(self, text: str, domain: str | None = None) -> EmbeddingResult:  # noqa: ARG002
        return EmbeddingResult(
            embedding=self.get_embedding(text),
            token_count=len(text.split()),
            model=self.model,
        )

    async def embed_query(self, text: str, domain: str | None = None) -> np.ndarray:
        result = await self.embed(text, domain)
        return result.embedding

    async def embed_batch(
        self,
        texts: list[str],
        domain: str | None = None,
        batch_size: int | None = None,  # noqa: ARG002
    ) -> list[EmbeddingResult]:
        self.batch_calls.append((list(texts), domain))
        return [await self.embed(text, domain) for text in texts]

    async def health_check(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        pass


def create_mock_openai_response(
    embeddings: list[list[float]], total_tokens: int = 0
) -> Mock:
    """Create a mock OpenAI embeddings API response.

    Args:
        embeddings: List of embedding vectors to return.
        total_tokens: Token usage reported by the response.

    Returns:
        Mock object representing OpenAI embeddings API response.
    """
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    mock_response.usage = Mock(total_tokens=total_tokens)
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    """Create a mock OpenAI chat completion response.

    Args:
        content: The content for the chat completion response.

    Returns:
        Mock object representing OpenAI chat completion response.
    """
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


@pytest.fixture
def embeddings_response():
    """Factory for mock embeddings API responses."""
    return create_mock_openai_response


@pytest.fixture
def chat_response():
    """Factory for mock chat completion responses."""
    return create_mock_chat_response


@pytest.fixture
def openai_embeddings_api_mock():
    """Patch AsyncEmbeddings.create with an AsyncMock.

    This is the foundation fixture that others can build upon.
    Returns the mock object directly without any pre-configuration.
    """
    with patch(
        "openai.resources.embeddings.AsyncEmbeddings.create",
        new_callable=AsyncMock,
    ) as mock_create:
        yield mock_create


@pytest.fixture
def embedding_service_factory():
    """Factory for creating EmbeddingService instances with different configurations."""

    def _create_service(api_key=None, model=TestConstants.TEST_EMBEDDING_MODEL):  # noqa: ANN202
        """Create an EmbeddingService instance.

        Args:
            api_key: API key to use, defaults to TestConstants.TEST_API_KEY
            model: Model to use; None resolves the configured model per domain.
        """
        return EmbeddingService(
            api_key=api_key or TestConstants.TEST_API_KEY, model=model
        )

    return _create_service


@pytest.fixture
def embedding_service(embedding_service_factory):
    """Default EmbeddingService with test API key for most tests."""
    return embedding_service_factory()


@pytest.fixture
def completion_service():
    """CompletionService with test API key and a fixed model name."""
    return CompletionService(
        api_key=TestConstants.TEST_API_KEY,
        model=TestConstants.TEST_COMPLETION_MODEL,
    )


@pytest.fixture
def chat_completions_mock(completion_service):
    """Patch ``chat.completions.create`` on the completion service's client."""
    with patch.object(
        completion_service.client.chat.completions,
        "create",
        new_callable=AsyncMock,
    ) as mock_create:
        yield mock_create


@pytest.fixture
def chunking_options_small():
    """Chunking options for small chunks (100/10/20)."""
    return ChunkingOptions(
        max_chunk_size=TestConstants.SMALL_CHUNK_SIZE,
        overlap_size=TestConstants.SMALL_CHUNK_OVERLAP,
        min_chunk_size=TestConstants.SMALL_MIN_CHUNK_SIZE,
    )


@pytest.fixture
def text_chunker_small(chunking_options_small):
    """Text chunker configured for small chunks (100/10/20)."""
    return TextChunker(chunking_options_small)


@pytest.fixture
def text_chunker_default():
    """Text chunker configured with default settings (1000/100/200)."""
    return TextChunker(
        ChunkingOptions(
            max_chunk_size=TestConstants.DEFAULT_CHUNK_SIZE,
            overlap_size=TestConstants.DEFAULT_CHUNK_OVERLAP,
            min_chunk_size=TestConstants.DEFAULT_MIN_CHUNK_SIZE,
        )
    )


@pytest.fixture
def mock_embedding_service():
    """Pre-configured MockEmbeddingService for consistent test embeddings."""
    return MockEmbeddingService()


@pytest.fixture(params=["sqlite", "faiss"])
def vector_store_factory(request, tmp_path):
    """Factory for uninitialized stores of the parametrized backend."""

    def _create_store():  # noqa: ANN202
        return get_vector_store(
            request.param,
            db_path=tmp_path / "test_store.db",
            index_dir=tmp_path / "faiss",
        )

    return _create_store


@pytest_asyncio.fixture
async def vector_store(vector_store_factory):
    """Initialized vector store for each backend, closed after the test."""
    store = vector_store_factory()
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def completion_service_mock():
    """Autospec CompletionService answering with fixed query processing output."""
    service = create_autospec(CompletionService, instance=True)
    service.process_query.return_value = QueryProcessingResult(
        semantic_query="engagement rate trend",
        filters=QueryFilter(domain="instagram"),
        confidence=0.9,
        reasoning="test",
    )
    service.generate_answer.return_value = TestConstants.TEST_ANSWER
    service.is_ready.return_value = True
    service.health_check.return_value = True
    return service


@pytest.fixture
def embedding_service_mock(mock_embedding_service):
    """Autospec EmbeddingService returning hash-seeded vectors."""
    service = create_autospec(EmbeddingService, instance=True)
    service.embed_query.side_effect = mock_embedding_service.embed_query
    service.embed_batch.side_effect = mock_embedding_service.embed_batch
    service.health_check.return_value = True
    return service


@pytest.fixture
def vector_store_mock():
    """Autospec VectorStore with two namespaces and no matches."""
    store = create_autospec(VectorStore, instance=True)
    store.backend = "mock"
    store.is_ready.return_value = True
    store.list_namespaces.return_value = ["general", "instagram"]
    store.query.return_value = QueryResponse(matches=[], namespace="instagram")
    store.health_check.return_value = True
    store.get_stats.return_value = IndexStats(
        total_vector_count=3, dimension=384, namespaces={"instagram": 3}
    )
    return store


@pytest.fixture
def indexer_mock():
    return create_autospec(DocumentIndexer, instance=True)


@pytest.fixture
def rag_pipeline(completion_service_mock, embedding_service_mock, vector_store_mock):
    """RAGPipeline wired to autospec collaborators and default options."""
    return RAGPipeline(
        completion_service=completion_service_mock,
        embedding_service=embedding_service_mock,
        vector_store=vector_store_mock,
        options=RetrievalOptions(),
    )


@pytest.fixture
def rag_pipeline_with_indexer(
    completion_service_mock, embedding_service_mock, vector_store_mock, indexer_mock
):
    """RAGPipeline whose document operations go to an autospec indexer."""
    return RAGPipeline(
        completion_service=completion_service_mock,
        embedding_service=embedding_service_mock,
        vector_store=vector_store_mock,
        indexer=indexer_mock,
        options=RetrievalOptions(),
    )
