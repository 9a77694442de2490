# /flowcore/config/settings.py

from typing import Dict, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


DEFAULT_SPLIT_SEPARATORS: Dict[str, List[str]] = {
    "en": [".", "\n", " "],
    "ja": ["。", "\n", "、"],
    "zh": ["。", "\n", "，"],
    "ko": [".", "\n", " "],
    "th": ["\n", " "],
    "*": [".", "\n", " "],
}


class Settings(BaseSettings):
    # App metadata
    environment: str = "production"
    api_version: str = "v1"
    cors_allowed_origins: List[str] = Field(default_factory=list)

    # Session store
    session_store_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379"
    session_ttl_seconds: int = 0  # 0 keeps sessions until the store evicts them

    # AI apps and models
    aiapps_dir: str = "aiapps"
    default_org: str = "_default"
    models_file: str = "conf/models.yaml"
    prompts_dir: str = "prompts"
    samples_dir: str = "samples"
    documents_dir: str = "documents"
    debug_mode: bool = False
    log_level: str = "INFO"
    default_chat_model: str = "chat-openai"
    default_docchat_model: str = "chat-knowledgebase-openai"
    default_simple_model: str = "simplellm-openai"

    # Credentials
    crypt_key: str | None = None
    ai_key: str | None = None

    # Model client defaults
    model_timeout_seconds: float = 60.0
    model_max_retries: int = 5
    model_backoff_base_seconds: float = 1.0
    model_backoff_exponent: float = 2.0

    # Retrieval
    retrieval_top_k: int = 3
    retrieval_widening_factor: int = 10
    retrieval_cutoff_score: float = 0.0
    retrieval_chunk_size: int = 1000
    retrieval_chunk_overlap: int = 0
    retrieval_max_coord_boost: float = 0.1
    # Chunk corpora at least this large use IDF in the transient index; 0 keeps it off.
    retrieval_transient_idf_min_chunks: int = 0
    split_separators: Dict[str, List[str]] = Field(default_factory=lambda: dict(DEFAULT_SPLIT_SEPARATORS))

    # Quota
    default_quota: float = -1
    model_prices: Dict[str, float] = Field(default_factory=dict)
    quota_window_seconds: int = 86400

    # ---------------- Validators ---------------- #

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def parse_cors_allowed_origins(cls, v):
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("session_store_backend")
    @classmethod
    def session_store_backend_must_be_known(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("memory", "redis"):
            raise ValueError("SESSION_STORE_BACKEND must be 'memory' or 'redis'")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        v = v.upper().strip()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError("LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return v

    @field_validator("retrieval_widening_factor", "retrieval_top_k", "model_max_retries")
    @classmethod
    def must_not_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    def separators_for(self, lang: str) -> List[str]:
        return self.split_separators.get(lang) or self.split_separators.get("*") or DEFAULT_SPLIT_SEPARATORS["*"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
