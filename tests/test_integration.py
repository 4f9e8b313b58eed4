"""End-to-end pipeline tests over real chunking and both vector store backends.

Only the OpenAI-facing services are replaced: embeddings come from the
hash-seeded MockEmbeddingService and query processing echoes the question.
"""

from unittest.mock import AsyncMock, create_autospec, patch

import pytest
import pytest_asyncio

from ragengine import (
    ChunkingOptions,
    CompletionService,
    Document,
    DocumentIndexer,
    RAGPipeline,
    RetrievalOptions,
    TextChunker,
)
from ragengine.models import DocumentMetadata, QueryFilter, QueryProcessingResult

SQUAT = "Keep your chest up and push your knees out when you squat."
DEADLIFT = "Brace your core and keep the bar close during a deadlift."
REELS = "Short reels posted in the evening reach the most followers."


def _echo_query(user_query, available_domains):  # noqa: ARG001
    return QueryProcessingResult(
        semantic_query=user_query, filters=QueryFilter(), confidence=0.8
    )


@pytest.fixture
def echo_completion_service():
    service = create_autospec(CompletionService, instance=True)
    service.process_query.side_effect = _echo_query
    service.generate_answer.return_value = "Generated answer"
    service.is_ready.return_value = True
    service.health_check.return_value = True
    return service


@pytest_asyncio.fixture
async def pipeline(echo_completion_service, mock_embedding_service, vector_store):
    chunker = TextChunker(
        ChunkingOptions(max_chunk_size=200, overlap_size=20, min_chunk_size=40)
    )
    return RAGPipeline(
        completion_service=echo_completion_service,
        embedding_service=mock_embedding_service,
        vector_store=vector_store,
        indexer=DocumentIndexer(mock_embedding_service, vector_store, chunker),
        options=RetrievalOptions(),
    )


@pytest.mark.asyncio
async def test_query_finds_matching_chunk(pipeline, echo_completion_service):
    await pipeline.add_document(Document(id="squat", content=SQUAT))
    await pipeline.add_document(Document(id="deadlift", content=DEADLIFT))

    response = await pipeline.query(SQUAT)

    assert response.answer == "Generated answer"
    assert [source.id for source in response.sources] == ["squat_chunk_0"]
    assert response.sources[0].score == pytest.approx(1.0, abs=1e-5)
    assert response.sources[0].metadata["document_id"] == "squat"
    assert response.confidence == pytest.approx(1.0)

    context = echo_completion_service.generate_answer.await_args.args[2]
    assert [entry.content for entry in context] == [SQUAT]


@pytest.mark.asyncio
async def test_query_is_scoped_to_domain(pipeline, echo_completion_service):
    await pipeline.add_document(
        Document(id="reels", content=REELS, metadata=DocumentMetadata("instagram"))
    )

    scoped = await pipeline.query(REELS, domain="instagram")
    unscoped = await pipeline.query(REELS)

    assert [source.id for source in scoped.sources] == ["reels_chunk_0"]
    assert unscoped.sources == []
    assert REELS in unscoped.answer
    echo_completion_service.generate_answer.assert_awaited_once()


@pytest.mark.asyncio
async def test_namespaces_feed_query_processing(pipeline, echo_completion_service):
    await pipeline.add_document(
        Document(id="reels", content=REELS, metadata=DocumentMetadata("instagram"))
    )

    await pipeline.query("anything new?")

    echo_completion_service.process_query.assert_awaited_once_with(
        "anything new?", ["instagram"]
    )


@pytest.mark.asyncio
async def test_remove_document(pipeline):
    await pipeline.add_document(Document(id="squat", content=SQUAT))

    removed = await pipeline.remove_document("squat")
    response = await pipeline.query(SQUAT)

    assert removed == 1
    assert response.sources == []
    assert response.confidence == 0.1


@pytest.mark.asyncio
async def test_update_document_replaces_content(pipeline):
    metadata = DocumentMetadata(domain="fitness", source="notes.md")
    await pipeline.add_document(Document(id="lift", content=SQUAT, metadata=metadata))

    await pipeline.update_document("lift", DEADLIFT, metadata)

    old = await pipeline.query(SQUAT, domain="fitness")
    new = await pipeline.query(DEADLIFT, domain="fitness")
    assert old.sources == []
    assert [source.content for source in new.sources] == [DEADLIFT]
    assert new.sources[0].metadata["source"] == "notes.md"


@pytest.mark.asyncio
async def test_long_document_is_chunked(pipeline):
    paragraphs = [SQUAT, DEADLIFT, REELS, SQUAT.upper(), DEADLIFT.lower()]
    document = Document(id="guide", content="\n\n".join(paragraphs))

    chunks = await pipeline.add_document(document)
    status = await pipeline.get_status()

    assert len(chunks) > 1
    assert status.stats["namespaces"] == {"general": len(chunks)}
    assert all(len(chunk.content) <= 200 + 20 for chunk in chunks)


@pytest.mark.asyncio
async def test_batch_ingest_keeps_going(pipeline):
    result = await pipeline.add_documents(
        [
            Document(id="squat", content=SQUAT),
            Document(id="", content=DEADLIFT),
            Document(id="reels", content=REELS),
        ]
    )

    status = await pipeline.get_status()
    assert (result.successful, result.failed) == (2, 1)
    assert not result.results[1].succeeded
    assert status.stats["total_vector_count"] == 2


@pytest.mark.asyncio
async def test_status_reports_health(pipeline, mock_embedding_service):
    await pipeline.add_document(Document(id="squat", content=SQUAT))

    ready = await pipeline.get_status()
    mock_embedding_service.healthy = False
    degraded = await pipeline.get_status()

    assert ready.is_ready
    assert ready.stats["dimension"] == 384
    assert not degraded.is_ready
    assert not degraded.health.embedding
    assert degraded.stats is not None


@pytest.mark.asyncio
async def test_failed_update_keeps_stored_document(pipeline, mock_embedding_service):
    metadata = DocumentMetadata(domain="fitness")
    await pipeline.add_document(Document(id="lift", content=SQUAT, metadata=metadata))
    before = (await pipeline.get_status()).stats["namespaces"]

    with (
        patch.object(
            mock_embedding_service,
            "embed_batch",
            new_callable=AsyncMock,
            side_effect=RuntimeError("quota"),
        ),
        pytest.raises(RuntimeError, match="quota"),
    ):
        await pipeline.update_document("lift", DEADLIFT, metadata)

    after = (await pipeline.get_status()).stats["namespaces"]
    response = await pipeline.query(SQUAT, domain="fitness")
    assert after == before == {"fitness": 1}
    assert [source.id for source in response.sources] == ["lift_chunk_0"]
