"""Input validation as tagged results.

Each validator returns ``Valid(value)`` or ``Invalid(reason)`` instead of
raising, so callers can collect or compose checks with plain functions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .errors import DocumentValidationError
from .models import CONTENT_TYPES, KNOWN_DOMAINS

if TYPE_CHECKING:
    from .models import Document

T = TypeVar("T")

MAX_QUERY_LENGTH = 2000
MAX_TOP_K = 20
MAX_DOCUMENT_ID_LENGTH = 255
MAX_CONTENT_LENGTH = 50000


@dataclass(frozen=True)
class Valid(Generic[T]):
    """Successful validation carrying the checked value."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Invalid:
    """Failed validation carrying a human-readable reason."""

    reason: str

    @property
    def ok(self) -> bool:
        return False


ValidationResult = Valid[T] | Invalid


def validate_query_text(query: Any) -> ValidationResult[str]:
    if not isinstance(query, str) or not 1 <= len(query) <= MAX_QUERY_LENGTH:
        return Invalid(
            f"Query must be a string between 1 and {MAX_QUERY_LENGTH} characters"
        )
    return Valid(query)


def validate_domain(domain: Any) -> ValidationResult[str]:
    if domain not in KNOWN_DOMAINS:
        return Invalid(f"Domain must be one of: {', '.join(KNOWN_DOMAINS)}")
    return Valid(domain)


def validate_optional_domain(domain: Any) -> ValidationResult[str | None]:
    if domain is None:
        return Valid(None)
    return validate_domain(domain)


def validate_top_k(top_k: Any) -> ValidationResult[int]:
    if (
        isinstance(top_k, bool)
        or not isinstance(top_k, int)
        or not 1 <= top_k <= MAX_TOP_K
    ):
        return Invalid(f"topK must be an integer between 1 and {MAX_TOP_K}")
    return Valid(top_k)


def validate_min_score(min_score: Any) -> ValidationResult[float]:
    if (
        isinstance(min_score, bool)
        or not isinstance(min_score, int | float)
        or not 0.0 <= min_score <= 1.0
    ):
        return Invalid("minScore must be a float between 0 and 1")
    return Valid(float(min_score))


def validate_document_id(document_id: Any) -> ValidationResult[str]:
    if (
        not isinstance(document_id, str)
        or not 1 <= len(document_id) <= MAX_DOCUMENT_ID_LENGTH
    ):
        return Invalid(
            "Document ID must be a string between 1 and "
            f"{MAX_DOCUMENT_ID_LENGTH} characters"
        )
    return Valid(document_id)


def validate_content(content: Any) -> ValidationResult[str]:
    if not isinstance(content, str) or not 1 <= len(content) <= MAX_CONTENT_LENGTH:
        return Invalid(
            f"Content must be a string between 1 and {MAX_CONTENT_LENGTH} characters"
        )
    return Valid(content)


def validate_content_type(content_type: Any) -> ValidationResult[str]:
    if content_type not in CONTENT_TYPES:
        return Invalid(f"Content type must be one of: {', '.join(CONTENT_TYPES)}")
    return Valid(content_type)


def validate_tags(tags: Any) -> ValidationResult[list[str]]:
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        return Invalid("Tags must be an array of strings")
    return Valid(tags)


def first_invalid(*results: ValidationResult[Any]) -> Invalid | None:
    """Return the first failed result, if any.

    Returns:
        The first Invalid among ``results``, or None when all are Valid.
    """
    for result in results:
        if isinstance(result, Invalid):
            return result
    return None


def validate_document(document: Document) -> ValidationResult[Document]:
    """Check a document's identifier, content and core metadata.

    Returns:
        Valid(document) or the first Invalid found.
    """
    failure = first_invalid(
        validate_document_id(document.id),
        validate_content(document.content),
        validate_domain(document.metadata.domain),
        validate_content_type(document.metadata.content_type),
        validate_tags(document.metadata.tags),
    )
    if failure is not None:
        return failure
    return Valid(document)


def ensure_valid(result: ValidationResult[T]) -> T:
    """Unwrap a validation result at an API boundary.

    Returns:
        The validated value.

    Raises:
        DocumentValidationError: If the result is Invalid.
    """
    if isinstance(result, Invalid):
        raise DocumentValidationError(result.reason)
    return result.value
