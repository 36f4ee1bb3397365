"""
Centralized configuration for the document dashboard pipeline.

Rationale:
- Read everything from the environment once; main.py loads .env before this runs.
- Keep token-budget constants together so the reducer and gateway agree on them.
"""

import os
from dataclasses import dataclass, field
from typing import Tuple

from .errors import ConfigurationError

DEFAULT_LLM_API_URL = "https://api.groq.com/openai/v1/chat/completions"
DEFAULT_LLM_MODEL = "meta-llama/llama-4-scout-17b-16e-instruct"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class LLMSettings:
    """Remote text-generation endpoint settings"""
    api_url: str = DEFAULT_LLM_API_URL
    api_key: str = ""
    model: str = DEFAULT_LLM_MODEL
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "LLMSettings":
        return cls(
            api_url=os.getenv("LLM_API_URL", DEFAULT_LLM_API_URL),
            api_key=os.getenv("LLM_API_KEY") or os.getenv("OPENROUTER_API_KEY") or "",
            model=os.getenv("LLM_MODEL", DEFAULT_LLM_MODEL),
            timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 30.0),
        )


@dataclass(frozen=True)
class TokenBudget:
    """
    Token counts shared by the reducer and the gateway.

    safe_text_limit is the target size for document text; max_prompt_tokens is
    the allowance for the instructions wrapped around it. Together they must fit
    inside max_input_tokens, which the gateway enforces per request.
    """
    max_input_tokens: int = 6000
    max_prompt_tokens: int = 1500
    safe_text_limit: int = 4000
    chunk_overlap: int = 100
    summary_tokens: int = 1500

    def __post_init__(self):
        for name in ("max_input_tokens", "max_prompt_tokens", "safe_text_limit", "summary_tokens"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.chunk_overlap < 0:
            raise ConfigurationError(f"chunk_overlap must not be negative, got {self.chunk_overlap}")
        if self.safe_text_limit + self.max_prompt_tokens > self.max_input_tokens:
            raise ConfigurationError(
                "safe_text_limit + max_prompt_tokens must not exceed max_input_tokens "
                f"({self.safe_text_limit} + {self.max_prompt_tokens} > {self.max_input_tokens})"
            )

    @classmethod
    def from_env(cls) -> "TokenBudget":
        return cls(
            max_input_tokens=_env_int("MAX_INPUT_TOKENS", 6000),
            max_prompt_tokens=_env_int("MAX_PROMPT_TOKENS", 1500),
            safe_text_limit=_env_int("SAFE_TEXT_LIMIT", 4000),
            chunk_overlap=_env_int("CHUNK_OVERLAP_TOKENS", 100),
            summary_tokens=_env_int("SUMMARY_TOKENS", 1500),
        )


@dataclass(frozen=True)
class PipelineSettings:
    """Business rules applied to model output"""
    min_records: int = 3

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        min_records = _env_int("MIN_EXTRACTED_RECORDS", 3)
        if min_records < 1:
            raise ConfigurationError(f"MIN_EXTRACTED_RECORDS must be at least 1, got {min_records}")
        return cls(min_records=min_records)


@dataclass(frozen=True)
class SessionSettings:
    """In-memory session lifetime"""
    ttl_seconds: int = 24 * 60 * 60
    sweep_interval_seconds: int = 60 * 60

    @classmethod
    def from_env(cls) -> "SessionSettings":
        return cls(
            ttl_seconds=_env_int("SESSION_TTL_SECONDS", 24 * 60 * 60),
            sweep_interval_seconds=_env_int("SESSION_SWEEP_SECONDS", 60 * 60),
        )


@dataclass(frozen=True)
class UploadSettings:
    """Upload validation"""
    max_bytes: int = 50 * 1024 * 1024
    allowed_extensions: Tuple[str, ...] = field(default=(".pdf", ".png", ".jpg", ".jpeg"))

    @classmethod
    def from_env(cls) -> "UploadSettings":
        return cls(max_bytes=_env_int("MAX_UPLOAD_BYTES", 50 * 1024 * 1024))


@dataclass(frozen=True)
class ServiceConfig:
    """Complete service configuration"""
    llm: LLMSettings = field(default_factory=LLMSettings)
    budget: TokenBudget = field(default_factory=TokenBudget)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    sessions: SessionSettings = field(default_factory=SessionSettings)
    upload: UploadSettings = field(default_factory=UploadSettings)
    log_level: str = "INFO"

    @classmethod
    def load(cls) -> "ServiceConfig":
        """Load configuration from environment"""
        return cls(
            llm=LLMSettings.from_env(),
            budget=TokenBudget.from_env(),
            pipeline=PipelineSettings.from_env(),
            sessions=SessionSettings.from_env(),
            upload=UploadSettings.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
