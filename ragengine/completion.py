"""OpenAI chat completion service for query processing and answer generation."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from openai import AsyncOpenAI

from .config import config
from .errors import CompletionResponseError
from .models import QueryFilter, QueryProcessingResult

if TYPE_CHECKING:
    from .models import ContextEntry, SemanticQuery

logger = config.get_logger(__name__)

DEFAULT_QUERY_CONFIDENCE = 0.8
DEFAULT_REASONING = "Standard query processing"

DOMAIN_EXPERTISE = {
    "instagram": (
        "an Instagram content strategist who reads engagement metrics, "
        "post formats and posting patterns"
    ),
    "fitness": (
        "a fitness coach who explains training, recovery and nutrition "
        "clearly and safely"
    ),
    "trading": (
        "a trading analyst who is precise about figures and never presents "
        "information as financial advice"
    ),
    "general": "a knowledgeable assistant",
}

QUERY_PROCESSING_PROMPT = """You are a query processor for a retrieval system.
Analyze the user's question and extract:
1. A semantic search query optimized for vector similarity search
2. Metadata filters narrowing the search
3. A confidence score between 0 and 1 for your processing

Available domains: {domains}

Return JSON in this exact format:
{{
  "semanticQuery": "focused search terms based on the user query",
  "filters": {{
    "domain": "one of the available domains"
  }},
  "confidence": 0.95,
  "reasoning": "short explanation of the processing"
}}

Only add tags, contentType or dateRange filters if the user explicitly asks
for them. Keep the semanticQuery focused on what the user actually asked."""

ANSWER_PROMPT = """You are {expertise}.
Answer the user's question using the provided context. Ground every claim in
the context, say so when the context does not contain the answer, and keep
the answer concise and actionable."""


def build_context_sections(context: list[ContextEntry]) -> str:
    """Render context entries as numbered sections with their relevance.

    Returns:
        Sections separated by blank lines.
    """
    return "\n\n".join(
        f"[Context {i}] (Relevance: {entry.score * 100:.1f}%)\n{entry.content}"
        for i, entry in enumerate(context, start=1)
    )


class CompletionService:
    """Handles OpenAI chat completions for both LLM stages of a query."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the CompletionService.

        Args:
            api_key: OpenAI API key. If None, reads from OPENAI_API_KEY.
            model: Chat model name. If None, uses config.COMPLETION_MODEL.
            client: Pre-built async client, mainly for tests.
        """
        if client is None:
            default_headers = config.get_api_headers()
            client = AsyncOpenAI(
                api_key=api_key or config.get_openai_api_key(),
                base_url=config.OPENAI_BASE_URL,
                organization=config.OPENAI_ORGANIZATION,
                default_headers=default_headers or None,
            )
        self.client = client
        self.model = model or config.COMPLETION_MODEL
        self._ready = False

    async def initialize(self) -> None:
        """Verify connectivity by listing the available models once."""
        logger.info("Initializing completion client")
        try:
            await self.client.models.list()
        except Exception:
            logger.exception("Failed to initialize completion client")
            raise
        self._ready = True
        logger.info("Completion client initialized")

    def is_ready(self) -> bool:
        return self._ready

    async def health_check(self) -> bool:
        """Check the completion API is reachable.

        Returns:
            True if a models listing succeeds.
        """
        try:
            await self.client.models.list()
        except Exception:
            logger.exception("Completion health check failed")
            return False
        return True

    async def process_query(
        self,
        user_query: str,
        available_domains: list[str],
    ) -> QueryProcessingResult:
        """Turn a raw question into a search query, filters and confidence.

        Missing fields fall back to the raw query, a filter on the first
        available domain and a confidence of 0.8.

        Args:
            user_query: The caller's question.
            available_domains: Domains the model may choose from.

        Returns:
            QueryProcessingResult.

        Raises:
            CompletionResponseError: If the model returns content that is
                not a JSON object.
        """
        logger.debug(
            "Processing query (%d chars) over domains %s",
            len(user_query),
            available_domains,
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": QUERY_PROCESSING_PROMPT.format(
                            domains=", ".join(available_domains)
                        ),
                    },
                    {
                        "role": "user",
                        "content": f'User Query: "{user_query}"\n\n'
                        "Extract the semantic search query.",
                    },
                ],
                temperature=config.QUERY_PROCESSING_TEMPERATURE,
                max_tokens=config.QUERY_PROCESSING_MAX_TOKENS,
                response_format={"type": "json_object"},
            )
        except Exception:
            logger.exception("Error processing user query")
            raise

        content = response.choices[0].message.content or "{}"
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            msg = f"Query processing returned invalid JSON: {content[:200]!r}"
            raise CompletionResponseError(msg) from e
        if not isinstance(payload, dict):
            msg = f"Query processing returned {type(payload).__name__}, not an object"
            raise CompletionResponseError(msg)

        raw_filters = payload.get("filters")
        if not raw_filters and available_domains:
            raw_filters = {"domain": available_domains[0]}
        if raw_filters and not isinstance(raw_filters, dict):
            msg = f"Query processing returned non-object filters: {raw_filters!r}"
            raise CompletionResponseError(msg)

        raw_confidence = payload.get("confidence") or DEFAULT_QUERY_CONFIDENCE
        try:
            confidence = float(raw_confidence)
        except (TypeError, ValueError) as e:
            msg = f"Query processing returned bad confidence: {raw_confidence!r}"
            raise CompletionResponseError(msg) from e

        result = QueryProcessingResult(
            semantic_query=payload.get("semanticQuery")
            or payload.get("query")
            or user_query,
            filters=QueryFilter.from_dict(raw_filters),
            confidence=confidence,
            reasoning=payload.get("reasoning") or DEFAULT_REASONING,
        )
        logger.debug(
            "Query processed: %r -> %r (domain=%s, confidence=%.2f)",
            user_query,
            result.semantic_query,
            result.filters.domain,
            result.confidence,
        )
        return result

    async def generate_answer(
        self,
        original_query: str,
        semantic_query: SemanticQuery,
        context: list[ContextEntry],
    ) -> str:
        """Generate a grounded answer from retrieved context.

        Returns:
            The model's answer text.

        Raises:
            CompletionResponseError: If the model returns no content.
        """
        domain = semantic_query.filters.domain or "general"
        expertise = DOMAIN_EXPERTISE.get(domain, DOMAIN_EXPERTISE["general"])
        user_prompt = (
            f"Question: {original_query}\n\n"
            f"Search query: {semantic_query.query}\n\n"
            f"Context:\n{build_context_sections(context)}"
        )

        logger.debug(
            "Generating answer for %r with %d context entries (domain=%s)",
            original_query,
            len(context),
            domain,
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": ANSWER_PROMPT.format(expertise=expertise),
                    },
                    {"role": "user", "content": user_prompt},
                ],
                temperature=config.COMPLETION_TEMPERATURE,
                max_tokens=config.COMPLETION_MAX_TOKENS,
            )
        except Exception:
            logger.exception("Error generating answer")
            raise

        answer = response.choices[0].message.content if response.choices else None
        if not answer:
            msg = "No answer generated by the completion model"
            raise CompletionResponseError(msg)
        return answer

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        self._ready = False
        await self.client.close()
