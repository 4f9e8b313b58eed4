"""Error types raised by the RAG engine.

Failures of the OpenAI SDK, SQLite or FAISS are not wrapped: they reach the
caller as the original exception, annotated with the pipeline stage that
raised them. The classes below cover the cases where the engine itself
detects a problem.
"""


class RAGEngineError(Exception):
    """Base class for errors raised by the engine itself."""


class CompletionResponseError(RAGEngineError, ValueError):
    """The completion model returned an empty or unparsable payload."""


class EmbeddingResponseError(RAGEngineError, ValueError):
    """The embedding model returned no vector for the input."""


class VectorStoreNotReadyError(RAGEngineError, RuntimeError):
    """A vector store was used before ``initialize()`` completed."""


class DocumentValidationError(RAGEngineError, ValueError):
    """A document or query failed validation before reaching the pipeline."""
