import os
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field

TRUTHY = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_str(name: str) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or None


class Settings(BaseModel):
    """Process-wide configuration, read once from the environment."""

    app_env: str = "local"
    port: int = 3001
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 1500
    llm_timeout_secs: float = 30.0
    llm_max_retries: int = 4
    llm_retry_base_delay_ms: int = 500
    llm_retry_jitter_ms: int = 250
    refine_prompt_version: Optional[str] = None

    openai_api_key: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    azure_openai_api_key: Optional[str] = None
    azure_openai_endpoint: Optional[str] = None
    azure_openai_deployment: Optional[str] = None
    azure_openai_api_version: str = "2024-02-15-preview"

    rate_limit_window_ms: int = 15 * 60 * 1000
    rate_limit_max: int = 10
    trust_proxy: bool = False

    expose_error_details: bool = False
    metrics_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        origins_raw = os.getenv("CORS_ORIGINS", "*").strip() or "*"
        origins = ["*"] if origins_raw == "*" else [o.strip() for o in origins_raw.split(",") if o.strip()]
        return cls(
            app_env=os.getenv("APP_ENV", "local"),
            port=_env_int("PORT", 3001),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            request_id_header=os.getenv("REQUEST_ID_HEADER", "X-Request-ID"),
            cors_origins=origins,
            llm_provider=(os.getenv("LLM_PROVIDER", "openai") or "openai").strip().lower(),
            llm_model=os.getenv("LLM_MODEL", "gpt-4o-mini") or "gpt-4o-mini",
            llm_temperature=_env_float("LLM_TEMPERATURE", 0.7),
            llm_max_tokens=_env_int("LLM_MAX_TOKENS", 1500),
            llm_timeout_secs=_env_float("LLM_TIMEOUT_SECS", 30.0),
            llm_max_retries=max(0, _env_int("LLM_MAX_RETRIES", 4)),
            llm_retry_base_delay_ms=max(0, _env_int("LLM_RETRY_BASE_DELAY_MS", 500)),
            llm_retry_jitter_ms=max(0, _env_int("LLM_RETRY_JITTER_MS", 250)),
            refine_prompt_version=_env_str("REFINE_PROMPT_VERSION"),
            openai_api_key=_env_str("OPENAI_API_KEY"),
            openrouter_api_key=_env_str("OPENROUTER_API_KEY"),
            azure_openai_api_key=_env_str("AZURE_OPENAI_API_KEY"),
            azure_openai_endpoint=_env_str("AZURE_OPENAI_ENDPOINT"),
            azure_openai_deployment=_env_str("AZURE_OPENAI_DEPLOYMENT"),
            azure_openai_api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
            rate_limit_window_ms=max(1, _env_int("RATE_LIMIT_WINDOW_MS", 15 * 60 * 1000)),
            rate_limit_max=max(1, _env_int("RATE_LIMIT_MAX", 10)),
            trust_proxy=_env_flag("TRUST_PROXY"),
            expose_error_details=_env_flag("EXPOSE_ERROR_DETAILS"),
            metrics_token=_env_str("METRICS_TOKEN"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
