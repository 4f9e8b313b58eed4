"""Configuration management for the RAG engine."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI Configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get OpenAI API key from environment variables.

        Returns:
            OpenAI API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")
    OPENAI_ORGANIZATION: str | None = os.getenv("OPENAI_ORGANIZATION")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Embedding Configuration
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_BATCH_SIZE: int = int(os.getenv("EMBEDDING_BATCH_SIZE", "100"))

    # Completion Configuration
    COMPLETION_MODEL: str = os.getenv("COMPLETION_MODEL", "gpt-4.1-nano-2025-04-14")
    COMPLETION_MAX_TOKENS: int = int(os.getenv("COMPLETION_MAX_TOKENS", "1000"))
    COMPLETION_TEMPERATURE: float = float(os.getenv("COMPLETION_TEMPERATURE", "0.7"))

    # Query Processing Configuration
    QUERY_PROCESSING_MAX_TOKENS: int = int(
        os.getenv("QUERY_PROCESSING_MAX_TOKENS", "500")
    )
    QUERY_PROCESSING_TEMPERATURE: float = float(
        os.getenv("QUERY_PROCESSING_TEMPERATURE", "0.3")
    )

    # Chunking Configuration
    RAG_MAX_CHUNK_SIZE: int = int(os.getenv("RAG_MAX_CHUNK_SIZE", "1000"))
    RAG_OVERLAP_SIZE: int = int(os.getenv("RAG_OVERLAP_SIZE", "200"))
    RAG_MIN_CHUNK_SIZE: int = int(os.getenv("RAG_MIN_CHUNK_SIZE", "100"))

    # Retrieval Configuration
    RAG_DEFAULT_TOP_K: int = int(os.getenv("RAG_DEFAULT_TOP_K", "5"))
    RAG_MIN_SCORE: float = float(os.getenv("RAG_MIN_SCORE", "0.7"))
    RAG_MAX_TOKENS_PER_CONTEXT: int = int(
        os.getenv("RAG_MAX_TOKENS_PER_CONTEXT", "4000")
    )
    RAG_INGEST_CONCURRENCY: int = int(os.getenv("RAG_INGEST_CONCURRENCY", "5"))

    # Vector Store Configuration
    VECTOR_BACKEND: str = os.getenv("VECTOR_BACKEND", "faiss").lower()
    VECTOR_STORE_DB_PATH: Path = Path(
        os.getenv("VECTOR_STORE_DB_PATH", "data/vector_store.db")
    )
    FAISS_INDEX_DIR: Path = Path(os.getenv("FAISS_INDEX_DIR", "data/faiss"))
    VECTOR_RAW_TOP_K_MULTIPLIER: int = int(
        os.getenv("VECTOR_RAW_TOP_K_MULTIPLIER", "2")
    )

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "RAGEngine/1.0")
    API_TEST_HEADER_NAME: str | None = os.getenv("API_TEST_HEADER_NAME")
    API_TEST_HEADER_VALUE: str | None = os.getenv("API_TEST_HEADER_VALUE")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values.

        Raises:
            ValueError: If OPENAI_API_KEY is not set.
        """
        if not cls.get_openai_api_key():
            msg = (
                "OPENAI_API_KEY is required. Please set it in .env file or environment."
            )
            raise ValueError(msg)

    @classmethod
    def get_embedding_model(cls, domain: str | None = None) -> str:
        """Resolve the embedding model, honouring per-domain overrides.

        A domain may pin its own model with ``EMBEDDING_MODEL_<DOMAIN>``
        (for example ``EMBEDDING_MODEL_TRADING``). Every vector in a namespace
        must come from the same model, so the override applies to both
        ingestion and queries for that domain.

        Returns:
            Embedding model name.
        """
        if domain:
            override = os.getenv(f"EMBEDDING_MODEL_{domain.upper()}")
            if override:
                return override
        return cls.EMBEDDING_MODEL

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        logging.getLogger("openai").setLevel(
            getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Build default headers for outbound API calls.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        if cls.API_TEST_HEADER_NAME and cls.API_TEST_HEADER_VALUE:
            headers[cls.API_TEST_HEADER_NAME] = cls.API_TEST_HEADER_VALUE

        return headers


config = Config()
