"""Application configuration with sensible defaults.

Values are read from the environment once at startup and validated eagerly.
"""
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator, model_validator

from pdfchat.errors import ConfigError

# Paths
BASE_DIR = Path(__file__).parent.parent
DEFAULT_DATA_DIR = BASE_DIR / "data"

EXTRACTORS = ("pdfminer", "pdftotext", "regex")


class Settings(BaseModel):
    """Typed service configuration."""

    # Storage
    data_dir: Path = DEFAULT_DATA_DIR
    upload_dir: Optional[Path] = None
    db_path: Optional[Path] = None

    # OpenAI-compatible provider (embeddings + chat completions)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-ada-002"
    chat_model: str = "gpt-3.5-turbo"

    # Pinecone-compatible vector index
    pinecone_api_key: str = ""
    pinecone_index_host: str = ""

    # RAG parameters (character-based)
    chunk_size: int = 1000
    chunk_overlap: Optional[int] = None  # defaults to 10% of chunk_size
    similarity_threshold: float = 0.7
    retrieval_top_k: int = 5
    history_limit: int = 5
    max_response_tokens: int = 500
    temperature: float = 0.7
    upsert_batch_size: int = 100
    pdf_extractor: str = "pdfminer"

    # Rate limiting
    rate_limit_requests: int = 60
    rate_limit_window: int = 3600

    # Uploads
    max_file_size: int = 10 * 1024 * 1024
    watch_uploads: bool = False
    auto_process_uploads: bool = True

    # Request header carrying the authenticated user id, set by a trusted proxy
    user_id_header: str = ""

    # Network timeouts (seconds)
    short_timeout: float = 30.0
    embed_timeout: float = 60.0
    long_timeout: float = 120.0

    # Logging
    log_level: str = "INFO"

    @field_validator("chunk_size", "retrieval_top_k", "max_response_tokens",
                     "rate_limit_requests", "rate_limit_window", "max_file_size",
                     "upsert_batch_size")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("history_limit")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("similarity_threshold")
    @classmethod
    def _unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("must be between 0 and 1")
        return value

    @field_validator("temperature")
    @classmethod
    def _temperature_range(cls, value: float) -> float:
        if not 0.0 <= value <= 2.0:
            raise ValueError("must be between 0 and 2")
        return value

    @field_validator("upsert_batch_size")
    @classmethod
    def _index_batch_ceiling(cls, value: int) -> int:
        if value > 100:
            raise ValueError("vector index accepts at most 100 records per upsert")
        return value

    @field_validator("pdf_extractor")
    @classmethod
    def _known_extractor(cls, value: str) -> str:
        value = value.lower()
        if value not in EXTRACTORS:
            raise ValueError(f"unknown extractor '{value}', expected one of {EXTRACTORS}")
        return value

    @field_validator("openai_base_url", "pinecone_index_host")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _derive_defaults(self) -> "Settings":
        if self.upload_dir is None:
            self.upload_dir = self.data_dir / "uploads"
        if self.db_path is None:
            self.db_path = self.data_dir / "pdfchat.sqlite"
        if self.chunk_overlap is None:
            self.chunk_overlap = int(self.chunk_size * 0.1)
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )
        return self

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """Build settings from environment variables.

        Args:
            **overrides: Explicit values that take precedence over the environment

        Returns:
            Validated Settings instance

        Raises:
            ConfigError: If any value fails validation
        """
        env = {
            "data_dir": os.getenv("DATA_DIR"),
            "upload_dir": os.getenv("UPLOAD_DIR"),
            "db_path": os.getenv("DB_PATH"),
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "openai_base_url": os.getenv("OPENAI_BASE_URL"),
            "embedding_model": os.getenv("EMBEDDING_MODEL"),
            "chat_model": os.getenv("CHAT_MODEL"),
            "pinecone_api_key": os.getenv("PINECONE_API_KEY"),
            "pinecone_index_host": os.getenv("PINECONE_INDEX_HOST"),
            "chunk_size": os.getenv("CHUNK_SIZE"),
            "chunk_overlap": os.getenv("CHUNK_OVERLAP"),
            "similarity_threshold": os.getenv("SIMILARITY_THRESHOLD"),
            "retrieval_top_k": os.getenv("RETRIEVAL_TOP_K"),
            "history_limit": os.getenv("HISTORY_LIMIT"),
            "max_response_tokens": os.getenv("MAX_RESPONSE_TOKENS"),
            "temperature": os.getenv("TEMPERATURE"),
            "upsert_batch_size": os.getenv("UPSERT_BATCH_SIZE"),
            "pdf_extractor": os.getenv("PDF_EXTRACTOR"),
            "rate_limit_requests": os.getenv("RATE_LIMIT_REQUESTS"),
            "rate_limit_window": os.getenv("RATE_LIMIT_WINDOW"),
            "max_file_size": os.getenv("MAX_FILE_SIZE"),
            "watch_uploads": os.getenv("WATCH_UPLOADS"),
            "auto_process_uploads": os.getenv("AUTO_PROCESS_UPLOADS"),
            "user_id_header": os.getenv("USER_ID_HEADER"),
            "short_timeout": os.getenv("SHORT_TIMEOUT"),
            "embed_timeout": os.getenv("EMBED_TIMEOUT"),
            "long_timeout": os.getenv("LONG_TIMEOUT"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        values = {key: value for key, value in env.items() if value is not None}
        values.update(overrides)

        try:
            return cls(**values)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def ensure_directories(self) -> None:
        """Create data and upload directories if missing."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.upload_dir.mkdir(parents=True, exist_ok=True)
