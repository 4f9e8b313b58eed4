"""Tests for CompletionService query processing and answer generation."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from ragengine import CompletionService
from ragengine.completion import DOMAIN_EXPERTISE, build_context_sections
from ragengine.errors import CompletionResponseError
from ragengine.models import ContextEntry, QueryFilter, SemanticQuery

DOMAINS = ["instagram", "fitness"]


def test_init_uses_given_model(completion_service):
    assert completion_service.model == "gpt-test"
    assert completion_service.client.api_key == "test-key"
    assert not completion_service.is_ready()


@pytest.mark.asyncio
async def test_process_query_parses_json(
    completion_service, chat_completions_mock, chat_response
):
    chat_completions_mock.return_value = chat_response(
        json.dumps(
            {
                "semanticQuery": "engagement rate trend",
                "filters": {"domain": "instagram", "contentType": "post"},
                "confidence": 0.95,
                "reasoning": "Asked about engagement",
            }
        )
    )

    result = await completion_service.process_query(
        "What is the engagement rate trend?", DOMAINS
    )

    assert result.semantic_query == "engagement rate trend"
    assert result.filters.domain == "instagram"
    assert result.filters.content_type == "post"
    assert result.confidence == 0.95
    assert result.reasoning == "Asked about engagement"

    kwargs = chat_completions_mock.await_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert "instagram, fitness" in kwargs["messages"][0]["content"]
    assert "What is the engagement rate trend?" in kwargs["messages"][1]["content"]


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["{}", None])
async def test_process_query_fallbacks(
    completion_service, chat_completions_mock, chat_response, content
):
    chat_completions_mock.return_value = chat_response(content)

    result = await completion_service.process_query("best squat form", DOMAINS)

    assert result.semantic_query == "best squat form"
    assert result.filters == QueryFilter(domain="instagram")
    assert result.confidence == 0.8
    assert result.reasoning == "Standard query processing"


@pytest.mark.asyncio
async def test_process_query_accepts_query_key(
    completion_service, chat_completions_mock, chat_response
):
    chat_completions_mock.return_value = chat_response(
        json.dumps({"query": "squat depth", "filters": {"domain": "fitness"}})
    )

    result = await completion_service.process_query("how deep to squat", DOMAINS)

    assert result.semantic_query == "squat depth"
    assert result.filters.domain == "fitness"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("content", "error_match"),
    [
        ("not json at all", "invalid JSON"),
        ("[1, 2, 3]", "list, not an object"),
        (json.dumps({"filters": "fitness"}), "non-object filters"),
        (json.dumps({"confidence": "high"}), "bad confidence"),
        (json.dumps({"confidence": [0.9]}), "bad confidence"),
    ],
)
async def test_process_query_rejects_malformed_payload(
    completion_service, chat_completions_mock, chat_response, content, error_match
):
    chat_completions_mock.return_value = chat_response(content)

    with pytest.raises(CompletionResponseError, match=error_match):
        await completion_service.process_query("question", DOMAINS)


@pytest.mark.asyncio
async def test_process_query_api_error(completion_service, chat_completions_mock):
    chat_completions_mock.side_effect = Exception("API Error")

    with pytest.raises(Exception, match="API Error"):
        await completion_service.process_query("question", DOMAINS)


@pytest.mark.asyncio
async def test_generate_answer(
    completion_service, chat_completions_mock, chat_response
):
    chat_completions_mock.return_value = chat_response("Engagement is rising.")
    semantic_query = SemanticQuery(
        query="engagement rate trend", filters=QueryFilter(domain="instagram")
    )
    context = [
        ContextEntry(content="Rate went from 3% to 4%.", metadata={}, score=0.91)
    ]

    answer = await completion_service.generate_answer(
        "What is the engagement rate trend?", semantic_query, context
    )

    assert answer == "Engagement is rising."
    messages = chat_completions_mock.await_args.kwargs["messages"]
    assert DOMAIN_EXPERTISE["instagram"] in messages[0]["content"]
    assert "[Context 1] (Relevance: 91.0%)" in messages[1]["content"]
    assert "Search query: engagement rate trend" in messages[1]["content"]


@pytest.mark.asyncio
async def test_generate_answer_unknown_domain_uses_general_expertise(
    completion_service, chat_completions_mock, chat_response
):
    chat_completions_mock.return_value = chat_response("Answer.")
    semantic_query = SemanticQuery(query="q", filters=QueryFilter(domain="cooking"))

    await completion_service.generate_answer("q", semantic_query, [])

    messages = chat_completions_mock.await_args.kwargs["messages"]
    assert DOMAIN_EXPERTISE["general"] in messages[0]["content"]


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", None])
async def test_generate_answer_empty_response(
    completion_service, chat_completions_mock, chat_response, content
):
    chat_completions_mock.return_value = chat_response(content)

    with pytest.raises(CompletionResponseError, match="No answer generated"):
        await completion_service.generate_answer("q", SemanticQuery(query="q"), [])


def test_build_context_sections():
    context = [
        ContextEntry(content="First.", metadata={}, score=0.91),
        ContextEntry(content="Second.", metadata={}, score=0.755),
    ]

    assert build_context_sections(context) == (
        "[Context 1] (Relevance: 91.0%)\nFirst.\n\n"
        "[Context 2] (Relevance: 75.5%)\nSecond."
    )


@pytest.mark.asyncio
async def test_initialize_health_and_close(completion_service):
    with (
        patch.object(
            completion_service.client.models, "list", new_callable=AsyncMock
        ) as mock_list,
        patch.object(
            completion_service.client, "close", new_callable=AsyncMock
        ) as mock_close,
    ):
        await completion_service.initialize()
        assert completion_service.is_ready()
        assert await completion_service.health_check()

        mock_list.side_effect = Exception("down")
        assert not await completion_service.health_check()

        await completion_service.close()
        mock_close.assert_awaited_once()
        assert not completion_service.is_ready()


@pytest.mark.asyncio
async def test_initialize_failure_propagates():
    service = CompletionService(api_key="test-key")
    with (
        patch.object(
            service.client.models,
            "list",
            new_callable=AsyncMock,
            side_effect=Exception("unauthorized"),
        ),
        pytest.raises(Exception, match="unauthorized"),
    ):
        await service.initialize()

    assert not service.is_ready()
