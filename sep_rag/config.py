"""Application configuration for the ingestion and retrieval engine."""

from pathlib import Path
from typing import Any, Optional

import requests
from dotenv import load_dotenv
from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SepRagConfig(BaseSettings):  # type: ignore[misc]
    """Settings controlling storage locations, service endpoints and budgets.

    A single instance is created at process start and handed to every
    component that needs credentials or endpoints.
    """

    db_dsn: str = Field(..., description="PostgreSQL DSN for articles, chunks and the queue")
    data_dir: Path = Field(..., description="Root directory of the generation-text blob store")
    chroma_url: str = Field("localhost", description="Host of the ChromaDB HTTP server")
    chroma_collection: str = Field("sep-chunks", description="ChromaDB collection name")
    sep_base_url: AnyHttpUrl = Field(
        "https://plato.stanford.edu", description="Base URL of the encyclopedia site"
    )
    cloudflare_account_id: str = Field(..., description="Cloudflare account for Workers AI")
    cloudflare_api_token: str = Field(..., description="Cloudflare API token for Workers AI")
    embedding_model: str = Field("@cf/baai/bge-m3", description="Workers AI embedding model")
    reranker_model: str = Field(
        "@cf/baai/bge-reranker-base", description="Workers AI cross-encoder reranker"
    )
    openai_api_key: Optional[str] = Field(
        None, description="OpenAI key for TeX conversion and table summaries"
    )
    openai_model: str = Field("gpt-5-nano", description="Model used for text conversion")
    request_timeout_s: float = Field(
        30.0, description="Default timeout (in seconds) for outbound HTTP requests"
    )
    conversion_max_workers: int = Field(
        8, description="Parallel requests per conversion batch"
    )
    max_tokens_per_chunk: int = Field(1024, description="Token budget for non-preamble chunks")
    encoding_name: str = Field("cl100k_base", description="tiktoken encoding for token counts")

    model_config = SettingsConfigDict(env_prefix="SEP_RAG_", env_file=".env", extra="ignore")

    def model_post_init(self, __context: Any) -> None:
        """Normalize paths to absolute locations."""

        self.data_dir = self.data_dir.expanduser().resolve()

    @field_validator("max_tokens_per_chunk", "conversion_max_workers")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be a positive integer")
        return value

    @property
    def sep_url(self) -> str:
        return str(self.sep_base_url).rstrip("/")

    def build_session(self) -> requests.Session:
        """Return a :class:`requests.Session` with the project user agent."""

        session = requests.Session()
        session.headers["User-Agent"] = "sep-rag"
        return session


def load_dotenv_from_root(override: bool = False) -> None:
    """Load ``SEP_RAG_*`` variables from ``./.env`` into the process environment.

    Settings read ``.env`` on their own; this also makes the values visible to
    Alembic's ``env.py``, which only looks at the environment.
    """

    load_dotenv(dotenv_path=".env", override=override)
