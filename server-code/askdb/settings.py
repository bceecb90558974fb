# askdb/settings.py
from __future__ import annotations
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices


class Settings(BaseSettings):
    # pydantic v2 config
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Database (read-only) ---
    DB_URL_RO: str = Field(validation_alias=AliasChoices("DB_URL_RO", "DATABASE_URL"))
    DB_NAME: Optional[str] = None
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DEFAULT_SQL_LIMIT: int = Field(default=5000, validation_alias=AliasChoices("DEFAULT_SQL_LIMIT", "SQL_DEFAULT_LIMIT"))
    STATEMENT_TIMEOUT_MS: int = Field(default=20000, validation_alias=AliasChoices("STATEMENT_TIMEOUT_MS", "SQL_STATEMENT_TIMEOUT_MS"))  # 20s

    # --- Retry / health ---
    DB_RETRY_MAX_ATTEMPTS: int = 3
    DB_RETRY_BASE_DELAY_MS: int = 1000
    DB_RETRY_MAX_DELAY_MS: int = 10000
    DB_RETRY_JITTER_MS: int = 200
    DB_HEALTH_CHECK_INTERVAL_S: float = 30.0

    # --- Text-generation service (OpenAI-compatible chat completions) ---
    LLM_API_KEY: Optional[str] = Field(default=None, validation_alias=AliasChoices("LLM_API_KEY", "ALIBABA_LLM_API_KEY"))
    LLM_API_BASE_URL: str = Field(
        default="https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
        validation_alias=AliasChoices("LLM_API_BASE_URL", "ALIBABA_LLM_API_BASE_URL"),
    )
    LLM_MODEL: str = Field(default="qwen-plus", validation_alias=AliasChoices("LLM_MODEL", "ALIBABA_LLM_API_MODEL"))
    LLM_TEMPERATURE: float = 0.1
    LLM_MAX_TOKENS: int = 500
    LLM_TIMEOUT_S: float = 60.0
    # How long a rejected credential blocks further calls
    LLM_AUTH_BACKOFF_S: float = 300.0

    # --- Schema snapshot cache ---
    SCHEMA_CACHE_PATH: str = ".cache/database-schema.json"
    SCHEMA_MAX_AGE_HOURS: float = 1.0
    SCHEMA_INTROSPECTION_CONCURRENCY: int = 4
    WARM_SCHEMA_ON_STARTUP: bool = True

    # --- Result shaping ---
    RESULT_MAX_ROWS: int = 30
    CHART_MAX_POINTS: int = 20

    # Misc
    LOG_LEVEL: str = "INFO"
    APP_NAME: str = "askdb API"
    APP_VERSION: str = "0.1.0"
