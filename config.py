# config.py
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices, field_validator, model_validator

ProviderMode = Literal["dashscope", "compatible"]

DEFAULT_MODEL = "qwen-plus"

_PROVIDER_ALIASES = {
    "dashscope": "dashscope",
    "bailian": "dashscope",
    "compatible": "compatible",
    "openai": "compatible",
}


@dataclass(frozen=True)
class LLMConfig:
    """Resolved provider settings handed to the generation client and normalizer."""
    api_key: str = ""
    endpoint: Optional[str] = None
    mode: Optional[ProviderMode] = None
    model: str = DEFAULT_MODEL
    temperature: float = 0.6
    max_retries: int = 3
    request_timeout_s: float = 120.0
    normalization_fallbacks: bool = False
    debug_structured_output: bool = False


class Settings(BaseSettings):
    # Read .env; ignore extra env vars to avoid crashes
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_prefix="",  # no automatic prefix
    )

    # --- Runtime env / debugging ---
    APP_ENV: Literal["development", "staging", "production"] = Field(
        default="development",
        validation_alias=AliasChoices("APP_ENV", "app_env"),
    )
    DEBUG: bool = Field(
        default=False,
        validation_alias=AliasChoices("DEBUG", "debug"),
    )

    # --- LLM provider ---
    LLM_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("LLM_API_KEY", "BAILIAN_API_KEY", "OPENAI_API_KEY"),
    )
    LLM_PROVIDER: Optional[ProviderMode] = Field(
        default=None,
        validation_alias=AliasChoices("LLM_PROVIDER", "llm_provider"),
    )
    LLM_API_BASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("LLM_API_BASE_URL", "BAILIAN_API_BASE_URL", "OPENAI_API_BASE_URL"),
    )
    LLM_MODEL: str = Field(
        default=DEFAULT_MODEL,
        validation_alias=AliasChoices("LLM_MODEL", "BAILIAN_MODEL"),
    )
    LLM_TEMPERATURE: float = Field(
        default=0.6,
        ge=0,
        le=2,
        validation_alias=AliasChoices("LLM_TEMPERATURE", "llm_temperature"),
    )
    LLM_MAX_RETRIES: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices("LLM_MAX_RETRIES", "llm_max_retries"),
    )
    LLM_REQUEST_TIMEOUT_S: float = Field(
        default=120.0,
        gt=0,
        validation_alias=AliasChoices("LLM_REQUEST_TIMEOUT_S", "llm_request_timeout_s"),
    )

    # Placeholder days/activities/budget are only synthesized when this is on
    LLM_ENABLE_NORMALIZATION_FALLBACKS: bool = Field(
        default=False,
        validation_alias=AliasChoices("LLM_ENABLE_NORMALIZATION_FALLBACKS", "llm_enable_normalization_fallbacks"),
    )
    LLM_DEBUG_STRUCTURED_OUTPUT: bool = Field(
        default=False,
        validation_alias=AliasChoices("LLM_DEBUG_STRUCTURED_OUTPUT", "llm_debug_structured_output"),
    )

    # --- Server Settings (for deployment) ---
    PORT: int = Field(
        default=8000,
        validation_alias=AliasChoices("PORT", "port"),
    )
    HOST: str = Field(
        default="0.0.0.0",
        validation_alias=AliasChoices("HOST", "host"),
    )

    # --- Logging ---
    LOG_LEVEL: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "log_level"),
    )

    # --- CORS (env-driven) ---
    CORS_ALLOW_ORIGINS: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "cors_allow_origins"),
    )
    # Optional comma-separated alternative that overrides the above
    FRONTEND_ORIGINS: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("FRONTEND_ORIGINS", "frontend_origins"),
    )

    CORS_ALLOW_CREDENTIALS: bool = Field(
        default=False,
        validation_alias=AliasChoices("CORS_ALLOW_CREDENTIALS", "cors_allow_credentials"),
    )
    CORS_ALLOW_METHODS: List[str] = Field(
        default_factory=lambda: ["GET", "POST", "OPTIONS"],
        validation_alias=AliasChoices("CORS_ALLOW_METHODS", "cors_allow_methods"),
    )
    CORS_ALLOW_HEADERS: List[str] = Field(
        default_factory=lambda: [
            "Accept",
            "Accept-Language",
            "Content-Language",
            "Content-Type",
            "X-Request-Id",
        ],
        validation_alias=AliasChoices("CORS_ALLOW_HEADERS", "cors_allow_headers"),
    )
    CORS_EXPOSE_HEADERS: List[str] = Field(
        default_factory=lambda: ["X-Request-Id"],
        validation_alias=AliasChoices("CORS_EXPOSE_HEADERS", "cors_expose_headers"),
    )
    CORS_MAX_AGE: int = Field(
        default=86400,
        validation_alias=AliasChoices("CORS_MAX_AGE", "cors_max_age"),
    )

    @field_validator("LLM_PROVIDER", mode="before")
    @classmethod
    def _map_provider_alias(cls, v):
        if v is None:
            return None
        key = str(v).strip().lower()
        if not key:
            return None
        if key not in _PROVIDER_ALIASES:
            raise ValueError(f"Unknown LLM_PROVIDER {v!r}; expected one of {sorted(_PROVIDER_ALIASES)}")
        return _PROVIDER_ALIASES[key]

    @field_validator("LLM_API_KEY", mode="after")
    @classmethod
    def _strip_key(cls, v: str) -> str:
        return v.strip()

    @model_validator(mode="after")
    def _merge_frontend_origins(self) -> "Settings":
        if self.FRONTEND_ORIGINS:
            parts = [p.strip() for p in self.FRONTEND_ORIGINS.split(",") if p.strip()]
            if parts:
                self.CORS_ALLOW_ORIGINS = parts
        return self

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Validate critical settings for production deployment."""
        if self.APP_ENV == "production" and not self.LLM_API_KEY:
            raise ValueError(
                "LLM_API_KEY (or BAILIAN_API_KEY) must be set in production."
            )
        return self

    @property
    def is_dev(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.DEBUG else self.LOG_LEVEL.upper()

    def llm_config(self) -> LLMConfig:
        return LLMConfig(
            api_key=self.LLM_API_KEY,
            endpoint=self.LLM_API_BASE_URL,
            mode=self.LLM_PROVIDER,
            model=self.LLM_MODEL,
            temperature=self.LLM_TEMPERATURE,
            max_retries=self.LLM_MAX_RETRIES,
            request_timeout_s=self.LLM_REQUEST_TIMEOUT_S,
            normalization_fallbacks=self.LLM_ENABLE_NORMALIZATION_FALLBACKS,
            debug_structured_output=self.LLM_DEBUG_STRUCTURED_OUTPUT,
        )

settings = Settings()
