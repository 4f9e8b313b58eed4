"""OpenAI embeddings service."""

import numpy as np
from openai import AsyncOpenAI

from .config import config
from .errors import EmbeddingResponseError
from .models import EmbeddingResult

logger = config.get_logger(__name__)


class EmbeddingService:
    """Handles OpenAI embeddings generation."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the EmbeddingService with OpenAI API key and model.

        Args:
            api_key: OpenAI API key. If None,
                reads from OPENAI_API_KEY environment variable.
            model: Embedding model name. If None, the configured model is
                resolved per domain on every call.
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
        self.model = model

    def model_for_domain(self, domain: str | None = None) -> str:
        """Resolve the embedding model used for a domain.

        Returns:
            The explicit model if one was given, otherwise the configured
            model for the domain.
        """
        return self.model or config.get_embedding_model(domain)

    async def embed(self, text: str, domain: str | None = None) -> EmbeddingResult:
        """Get embedding for a single text.

        Args:
            text: The input text to generate an embedding for.
            domain: Domain hint used to pick the embedding model.

        Returns:
            EmbeddingResult with the vector, token usage and model name.

        Raises:
            EmbeddingResponseError: If the response carries no vector.
        """
        model = self.model_for_domain(domain)
        try:
            response = await self.client.embeddings.create(model=model, input=text)
        except Exception:
            logger.exception("Error generating embedding")
            raise

        if not response.data:
            msg = f"Embedding model {model} returned no data"
            raise EmbeddingResponseError(msg)

        usage = getattr(response, "usage", None)
        return EmbeddingResult(
            embedding=np.asarray(response.data[0].embedding, dtype="float32"),
            token_count=int(getattr(usage, "total_tokens", 0) or 0),
            model=model,
        )

    async def embed_query(self, text: str, domain: str | None = None) -> np.ndarray:
        """Embed a search query.

        Returns:
            np.ndarray: The query vector.
        """
        result = await self.embed(text, domain)
        return result.embedding

    async def embed_batch(
        self,
        texts: list[str],
        domain: str | None = None,
        batch_size: int | None = None,
    ) -> list[EmbeddingResult]:
        """Get embeddings for multiple texts in batches.

        Token usage reported for a batch is split evenly across its items.

        Args:
            texts: List of input texts to generate embeddings for.
            domain: Domain hint used to pick the embedding model.
            batch_size: Number of texts per request. If None, uses
                config.EMBEDDING_BATCH_SIZE.

        Returns:
            list[EmbeddingResult]: One result per input text, in input order.

        Raises:
            EmbeddingResponseError: If a batch returns fewer vectors than texts.
        """
        if not texts:
            return []

        model = self.model_for_domain(domain)
        batch_size = batch_size or config.EMBEDDING_BATCH_SIZE
        results: list[EmbeddingResult] = []

        for i in range(0, len(texts), batch_size):
            batch_texts = texts[i : i + batch_size]
            try:
                response = await self.client.embeddings.create(
                    model=model,
                    input=batch_texts,
                )
            except Exception:
                logger.exception("Error generating batch embeddings")
                raise

            if len(response.data) != len(batch_texts):
                msg = (
                    f"Embedding model {model} returned {len(response.data)} vectors "
                    f"for {len(batch_texts)} texts"
                )
                raise EmbeddingResponseError(msg)

            usage = getattr(response, "usage", None)
            total_tokens = int(getattr(usage, "total_tokens", 0) or 0)
            per_item = total_tokens // len(batch_texts)
            results.extend(
                EmbeddingResult(
                    embedding=np.asarray(data.embedding, dtype="float32"),
                    token_count=per_item,
                    model=model,
                )
                for data in response.data
            )
            logger.info("Generated embeddings for batch %d", i // batch_size + 1)

        return results

    async def health_check(self) -> bool:
        """Check the default embedding model is reachable.

        Returns:
            True if the model can be retrieved from the API.
        """
        try:
            await self.client.models.retrieve(self.model_for_domain())
        except Exception:
            logger.exception("Embedding health check failed")
            return False
        return True

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        await self.client.close()
