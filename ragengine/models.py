"""Data models for the RAG engine."""

from __future__ import annotations

import datetime
import re
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import numpy as np

KNOWN_DOMAINS: tuple[str, ...] = ("instagram", "fitness", "trading", "general")
DEFAULT_NAMESPACE = "general"
CONTENT_TYPES: tuple[str, ...] = ("text", "post", "article", "summary", "note")
DEFAULT_CONTENT_TYPE = "text"

CHUNK_ID_PATTERN = re.compile(r"_chunk_\d+$")

_CORE_METADATA_KEYS = (
    "domain",
    "source",
    "content_type",
    "tags",
    "created_at",
    "updated_at",
    "title",
    "author",
    "url",
)


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""  # noqa: DOC201
    return datetime.datetime.now(tz=datetime.UTC).isoformat()


@dataclass
class DocumentMetadata:
    """Fixed metadata schema plus an open extension map."""

    domain: str = DEFAULT_NAMESPACE
    source: str = "unknown"
    content_type: str = DEFAULT_CONTENT_TYPE
    tags: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    title: str | None = None
    author: str | None = None
    url: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Flatten core fields and extras into a single metadata mapping.

        Core fields win over extras with the same key. ``None`` optionals are
        omitted.

        Returns:
            Metadata mapping suitable for vector store records.
        """
        data: dict[str, Any] = dict(self.extra)
        for key in _CORE_METADATA_KEYS:
            value = getattr(self, key)
            if value is None:
                continue
            data[key] = list(value) if key == "tags" else value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocumentMetadata:
        """Split a flat metadata mapping into core fields and extras.

        Returns:
            DocumentMetadata instance.
        """
        core = {key: data[key] for key in _CORE_METADATA_KEYS if key in data}
        extra = {key: value for key, value in data.items() if key not in core}
        tags = core.pop("tags", [])
        if isinstance(tags, str):
            tags = [tags]
        return cls(tags=[str(tag) for tag in tags], extra=extra, **core)

    def copy(self) -> DocumentMetadata:
        """Return an independent value copy."""  # noqa: DOC201
        return DocumentMetadata.from_dict(self.to_dict())


@dataclass
class Document:
    """Unit of ingestible knowledge."""

    id: str
    content: str
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    embedding: np.ndarray | None = None


@dataclass
class DocumentChunk:
    """Contiguous, possibly overlapping slice of a document's content."""

    id: str
    content: str
    chunk_index: int
    total_chunks: int
    metadata: DocumentMetadata
    embedding: np.ndarray | None = None

    @property
    def document_id(self) -> str:
        """Identifier of the parent document, recovered from the chunk id."""
        return CHUNK_ID_PATTERN.sub("", self.id)

    @staticmethod
    def make_id(document_id: str, chunk_index: int) -> str:
        """Build the deterministic chunk id for a document position."""  # noqa: DOC201
        return f"{document_id}_chunk_{chunk_index}"


@dataclass
class DateRange:
    """Inclusive ISO-8601 date range."""

    start: str
    end: str


@dataclass
class QueryFilter:
    """Metadata constraints inferred from, or supplied with, a query."""

    domain: str | None = None
    tags: list[str] = field(default_factory=list)
    source: str | None = None
    content_type: str | None = None
    date_range: DateRange | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def is_empty(self) -> bool:
        """Check whether the filter constrains anything.

        Returns:
            True if no constraint is set.
        """
        return not (
            self.domain
            or self.tags
            or self.source
            or self.content_type
            or self.date_range
            or self.extra
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> QueryFilter:
        """Parse a filter mapping produced by the completion model.

        Accepts both camelCase (``contentType``, ``dateRange``) and snake_case
        keys. Empty values are treated as absent.

        Returns:
            QueryFilter instance.
        """
        data = dict(data or {})
        domain = data.pop("domain", None) or None
        tags = data.pop("tags", None) or []
        if isinstance(tags, str):
            tags = [tags]
        source = data.pop("source", None) or None
        content_type = (
            data.pop("content_type", None) or data.pop("contentType", None) or None
        )
        data.pop("contentType", None)
        raw_range = data.pop("date_range", None) or data.pop("dateRange", None)
        data.pop("dateRange", None)
        date_range = None
        if isinstance(raw_range, dict) and raw_range.get("start") and raw_range.get(
            "end"
        ):
            date_range = DateRange(start=raw_range["start"], end=raw_range["end"])
        extra = {key: value for key, value in data.items() if value not in (None, "")}
        return cls(
            domain=domain,
            tags=[str(tag) for tag in tags],
            source=source,
            content_type=content_type,
            date_range=date_range,
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize the non-empty constraints.

        Returns:
            Mapping of constraint names to values.
        """
        data: dict[str, Any] = {}
        if self.domain:
            data["domain"] = self.domain
        if self.tags:
            data["tags"] = list(self.tags)
        if self.source:
            data["source"] = self.source
        if self.content_type:
            data["content_type"] = self.content_type
        if self.date_range:
            data["date_range"] = asdict(self.date_range)
        data.update(self.extra)
        return data


@dataclass
class SemanticQuery:
    """Processed form of a user's natural-language question."""

    query: str
    filters: QueryFilter = field(default_factory=QueryFilter)
    top_k: int = 5
    min_score: float = 0.7

    def to_dict(self) -> dict[str, Any]:
        """Serialize for response metadata."""  # noqa: DOC201
        return {
            "query": self.query,
            "filters": self.filters.to_dict(),
            "top_k": self.top_k,
            "min_score": self.min_score,
        }


@dataclass
class QueryProcessingResult:
    """Output of the query-processing completion call."""

    semantic_query: str
    filters: QueryFilter
    confidence: float
    reasoning: str = ""


@dataclass
class VectorMatch:
    """Single retrieval result."""

    id: str
    score: float
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    values: np.ndarray | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize without raw vector values."""  # noqa: DOC201
        return {
            "id": self.id,
            "score": self.score,
            "content": self.content,
            "metadata": dict(self.metadata),
        }


@dataclass
class ContextEntry:
    """Retrieved content prepared for the answer prompt."""

    content: str
    metadata: dict[str, Any]
    score: float


@dataclass
class EmbeddingResult:
    """Vector returned by the embedding model."""

    embedding: np.ndarray
    token_count: int
    model: str


@dataclass
class ResponseMetadata:
    """Echo of the request that produced a response."""

    original_query: str
    processed_query: SemanticQuery
    total_matches: int


@dataclass
class RAGResponse:
    """Final answer envelope."""

    answer: str
    sources: list[VectorMatch]
    confidence: float
    processing_time_ms: float
    metadata: ResponseMetadata

    def to_dict(self) -> dict[str, Any]:
        """Serialize to plain JSON-compatible types."""  # noqa: DOC201
        return {
            "answer": self.answer,
            "sources": [source.to_dict() for source in self.sources],
            "confidence": self.confidence,
            "processing_time_ms": self.processing_time_ms,
            "metadata": {
                "original_query": self.metadata.original_query,
                "processed_query": self.metadata.processed_query.to_dict(),
                "total_matches": self.metadata.total_matches,
            },
        }


@dataclass
class ChunkStats:
    """Size statistics of a chunk list."""

    total_chunks: int = 0
    avg_chunk_size: float = 0.0
    min_chunk_size: int = 0
    max_chunk_size: int = 0


@dataclass
class ChunkValidation:
    """Outcome of a chunk quality check."""

    is_valid: bool
    issues: list[str]
    stats: ChunkStats


@dataclass
class ServiceHealth:
    """Health of each external collaborator."""

    completion: bool = False
    vector_store: bool = False
    embedding: bool = False


@dataclass
class ServiceStatus:
    """Readiness report for the whole pipeline."""

    is_ready: bool
    health: ServiceHealth
    stats: dict[str, Any] | None = None


@dataclass
class BatchItemResult:
    """Outcome of ingesting one document in a batch."""

    document_id: str
    succeeded: bool
    error: str | None = None


@dataclass
class BatchIngestResult:
    """Per-document outcomes of a batch ingestion."""

    results: list[BatchItemResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed(self) -> int:
        return self.total - self.successful
