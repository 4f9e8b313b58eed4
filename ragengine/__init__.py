"""RAGEngine - retrieval-augmented question answering over namespaced documents."""

from .completion import CompletionService
from .document_processing import ChunkingOptions, DocumentLoader, TextChunker
from .embeddings import EmbeddingService
from .errors import (
    CompletionResponseError,
    DocumentValidationError,
    EmbeddingResponseError,
    RAGEngineError,
    VectorStoreNotReadyError,
)
from .ingestion import DocumentIndexer
from .models import (
    Document,
    DocumentChunk,
    DocumentMetadata,
    QueryFilter,
    RAGResponse,
    SemanticQuery,
    VectorMatch,
)
from .pipeline import PipelineStage, RAGPipeline, RetrievalOptions
from .vector_store import FaissVectorStore, SQLiteVectorStore, get_vector_store

__all__ = [
    "ChunkingOptions",
    "CompletionResponseError",
    "CompletionService",
    "Document",
    "DocumentChunk",
    "DocumentIndexer",
    "DocumentLoader",
    "DocumentMetadata",
    "DocumentValidationError",
    "EmbeddingResponseError",
    "EmbeddingService",
    "FaissVectorStore",
    "PipelineStage",
    "QueryFilter",
    "RAGEngineError",
    "RAGPipeline",
    "RAGResponse",
    "RetrievalOptions",
    "SQLiteVectorStore",
    "SemanticQuery",
    "TextChunker",
    "VectorMatch",
    "VectorStoreNotReadyError",
    "get_vector_store",
]
