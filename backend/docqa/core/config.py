from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """docqa configuration, read from the environment or a `.env` file."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="127.0.0.1", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # Plain string; a list type would make pydantic-settings JSON-decode it.
    cors_origins: str = Field(
        default="http://127.0.0.1:5500,http://localhost:5500",
        alias="CORS_ORIGINS",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    chat_provider: str = Field(default="ollama", alias="CHAT_PROVIDER")
    ollama_base_url: str = Field(default="http://127.0.0.1:11434", alias="OLLAMA_BASE_URL")
    openai_base_url: str = Field(default="https://api.openai.com", alias="OPENAI_BASE_URL")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    chat_model: str = Field(default="llama3.1", alias="CHAT_MODEL")
    chat_temperature: float = Field(default=0.2, alias="CHAT_TEMPERATURE")
    answer_language: str = Field(default="zh-cn", alias="ANSWER_LANGUAGE")

    embed_provider: str = Field(default="ollama", alias="EMBED_PROVIDER")
    embed_model: str = Field(default="nomic-embed-text", alias="EMBED_MODEL")
    embed_dim: int = Field(default=64, alias="EMBED_DIM")

    docs_dir: str = Field(default=".docs", alias="DOCS_DIR")
    chunk_size: int = Field(default=1000, alias="CHUNK_SIZE")
    chunk_overlap: int = Field(default=200, alias="CHUNK_OVERLAP")
    top_k: int = Field(default=4, alias="TOP_K")
    context_max_chars: int = Field(default=12000, alias="CONTEXT_MAX_CHARS")

    index_db_url: str = Field(
        default="sqlite+aiosqlite:///./docqa_index.db", alias="INDEX_DB_URL"
    )
    index_collection: str = Field(default="langchain_docs", alias="INDEX_COLLECTION")

    redis_url: str = Field(default="redis://127.0.0.1:6379/0", alias="REDIS_URL")
    redis_username: str = Field(default="", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_db: Optional[int] = Field(default=None, alias="REDIS_DB")
    redis_key_prefix: str = Field(default="rag:mem:", alias="REDIS_KEY_PREFIX")
    redis_ttl_seconds: int = Field(default=0, alias="REDIS_TTL_SECONDS")
    redis_max_value_bytes: int = Field(default=0, alias="REDIS_MAX_VALUE_BYTES")
    summary_keep_last_n: int = Field(default=6, alias="SUMMARY_KEEP_LAST_N")
    summary_prefix: str = Field(default="对话摘要：", alias="SUMMARY_PREFIX")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    @field_validator("redis_db", mode="before")
    @classmethod
    def _empty_db_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def parsed_cors_origins(self) -> List[str]:
        """CORS origins from ``CORS_ORIGINS``: a comma list or a JSON array."""

        raw = (self.cors_origins or "").strip()
        entries: List[Any] = raw.split(",")
        if raw.startswith("["):
            try:
                decoded: Any = json.loads(raw)
            except json.JSONDecodeError:
                decoded = None
            if isinstance(decoded, list):
                entries = decoded
        origins = (str(entry).strip() for entry in entries)
        return [origin for origin in origins if origin]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings for this process, read once."""

    return Settings()
