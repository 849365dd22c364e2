import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv

load_dotenv()

# You can override these via environment variables (or a .env file):
#   LLM_PROVIDER=openai | gemini | perplexity
#   LLM_MODEL=gpt-4.1-mini
#   GEMINI_MODEL=gemini-2.5-flash
#   PERPLEXITY_MODEL=sonar
#   MAX_UPLOAD_BYTES=5242880
#   LLM_BUDGET_SECONDS=60


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [p.strip() for p in raw.split(",") if p.strip()]


@dataclass(frozen=True)
class Settings:
    max_upload_bytes: int
    min_job_description_chars: int
    max_job_description_chars: int

    llm_provider: str
    llm_model: str
    gemini_model: str
    perplexity_model: str
    llm_temperature: float
    llm_budget_seconds: float
    llm_client_timeout: float

    # Ratio we *ask* the model to stay within. The reconciler enforces its own
    # hard limits independently of what the prompt says.
    prompt_length_ratio: float

    log_level: str
    cors_origins: List[str]


def load_settings() -> Settings:
    """Read settings from the environment."""
    return Settings(
        max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", 5 * 1024 * 1024),
        min_job_description_chars=_env_int("MIN_JOB_DESCRIPTION_CHARS", 50),
        max_job_description_chars=_env_int("MAX_JOB_DESCRIPTION_CHARS", 20000),
        llm_provider=os.getenv("LLM_PROVIDER", "openai").lower(),
        llm_model=os.getenv("LLM_MODEL", "gpt-4.1-mini"),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        perplexity_model=os.getenv("PERPLEXITY_MODEL", "sonar"),
        llm_temperature=_env_float("LLM_TEMPERATURE", 0.4),
        llm_budget_seconds=_env_float("LLM_BUDGET_SECONDS", 60.0),
        llm_client_timeout=_env_float("LLM_CLIENT_TIMEOUT", 45.0),
        prompt_length_ratio=_env_float("PROMPT_LENGTH_RATIO", 1.2),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=_env_list("CORS_ORIGINS", "*"),
    )


settings = load_settings()
