"""Context preparation for answer generation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import ContextEntry

if TYPE_CHECKING:
    from .models import SemanticQuery, VectorMatch

SENTENCE_CUT_THRESHOLD = 0.7
WORD_CUT_THRESHOLD = 0.8
ELLIPSIS = "..."

NO_RESULTS_TEMPLATE = (
    "I couldn't find any relevant information{domain} to answer your question "
    'about "{query}". This could be because:\n\n'
    "1. The information isn't available in the knowledge base\n"
    "2. The query might need to be rephrased\n"
    "3. The content might be in a different domain\n\n"
    "Try rephrasing your question or checking if the information exists in "
    "the system."
)


def truncate_content(content: str, max_length: float) -> str:
    """Shorten content to ``max_length`` characters at a natural boundary.

    Prefers the last sentence end past 70% of the window, then the last space
    past 80% of the window (with an ellipsis), then a hard cut with an
    ellipsis.

    Returns:
        The content unchanged if it fits, otherwise the truncated text.
    """
    limit = int(max_length)
    if len(content) <= limit:
        return content

    truncated = content[:limit]
    last_sentence_end = max(truncated.rfind(mark) for mark in ".!?")
    if last_sentence_end > limit * SENTENCE_CUT_THRESHOLD:
        return truncated[: last_sentence_end + 1]

    last_space = truncated.rfind(" ")
    if last_space > limit * WORD_CUT_THRESHOLD:
        return truncated[:last_space] + ELLIPSIS

    return truncated + ELLIPSIS


def prepare_context(
    matches: list[VectorMatch],
    max_tokens_per_context: int,
) -> list[ContextEntry]:
    """Split the context budget evenly across matches and truncate each.

    Returns:
        One ContextEntry per match, in match order.
    """
    if not matches:
        return []

    budget = max_tokens_per_context / len(matches)
    return [
        ContextEntry(
            content=truncate_content(match.content, budget),
            metadata=dict(match.metadata),
            score=match.score,
        )
        for match in matches
    ]


def build_no_results_message(original_query: str, semantic_query: SemanticQuery) -> str:
    """Explain that nothing relevant was found, naming the query and domain.

    Returns:
        Deterministic templated answer.
    """
    domain = semantic_query.filters.domain
    return NO_RESULTS_TEMPLATE.format(
        domain=f" in the {domain} domain" if domain else "",
        query=original_query,
    )
