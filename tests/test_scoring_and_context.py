"""Tests for confidence scoring and context preparation."""

import math

import pytest

from ragengine.context import (
    build_no_results_message,
    prepare_context,
    truncate_content,
)
from ragengine.models import QueryFilter, SemanticQuery, VectorMatch
from ragengine.scoring import calculate_confidence


def _matches(*scores, content="Matched content."):
    return [
        VectorMatch(id=f"doc_chunk_{i}", score=score, content=content)
        for i, score in enumerate(scores)
    ]


@pytest.mark.parametrize(
    ("scores", "expected"),
    [
        ((), 0.1),
        ((0.91, 0.88, 0.85), 1.0),
        ((0.5,), 0.5 + 0.1 / 3 + 0.1),
        ((0.6, 0.3), 0.6 + 0.2 / 3 + 0.075),
        ((0.0, 0.0, 0.0), 0.1),
        ((-0.2,), 0.1),
    ],
)
def test_calculate_confidence(scores, expected):
    confidence = calculate_confidence(_matches(*scores))

    assert confidence == pytest.approx(expected)
    assert not math.isnan(confidence)


def test_calculate_confidence_ignores_order():
    assert calculate_confidence(_matches(0.7, 0.9)) == calculate_confidence(
        _matches(0.9, 0.7)
    )


def test_truncate_content_fits():
    assert truncate_content("short", 10) == "short"


def test_truncate_content_at_sentence_end():
    content = "A" * 80 + ". " + "B" * 50

    assert truncate_content(content, 100) == "A" * 80 + "."


def test_truncate_content_at_word_boundary():
    content = "First sentence here. Second sentence is longer and goes on."

    assert truncate_content(content, 40) == "First sentence here. Second sentence is..."


def test_truncate_content_hard_cut():
    assert truncate_content("x" * 200, 50) == "x" * 50 + "..."


def test_prepare_context_splits_budget():
    matches = [
        VectorMatch(id="a", score=0.9, content="y" * 80, metadata={"source": "a"}),
        VectorMatch(id="b", score=0.8, content="short"),
    ]

    context = prepare_context(matches, max_tokens_per_context=100)

    assert [entry.content for entry in context] == ["y" * 50 + "...", "short"]
    assert [entry.score for entry in context] == [0.9, 0.8]
    assert context[0].metadata == {"source": "a"}


def test_prepare_context_empty():
    assert prepare_context([], 4000) == []


def test_no_results_message_with_domain():
    semantic_query = SemanticQuery(
        query="engagement", filters=QueryFilter(domain="instagram")
    )

    message = build_no_results_message("Why did reach drop?", semantic_query)

    assert "in the instagram domain" in message
    assert '"Why did reach drop?"' in message


def test_no_results_message_without_domain():
    message = build_no_results_message("Anything?", SemanticQuery(query="anything"))

    assert message.startswith(
        "I couldn't find any relevant information to answer your question"
    )
    assert "Anything?" in message
