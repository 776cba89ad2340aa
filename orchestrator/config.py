"""Centralized configuration for the clinic booking orchestrator.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/clinic-orchestrator/<VARIABLE_NAME>``.
Everything that is not a secret is a plain ``os.getenv`` with a default;
components accept these as constructor defaults so tests can override
them without touching the environment.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_SSM_PREFIX = "/clinic-orchestrator"

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is not
    installed; the caller then reports the missing value itself.
    """
    try:
        import boto3  # noqa: PLC0415 (optional ``aws`` extra)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{_SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store {_SSM_PREFIX}/{name} (AWS)."
    )


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
# Extraction is a short structured task; a cheaper model is enough
EXTRACTION_MODEL_NAME: str = os.getenv("EXTRACTION_MODEL_NAME", "claude-haiku-4-5")
LLM_TEMPERATURE: float = _float_env("LLM_TEMPERATURE", 0.3)
LLM_TIMEOUT_SECONDS: float = _float_env("LLM_TIMEOUT_SECONDS", 30.0)

# ── Embeddings ──────────────────────────────────────────────────────
OPENAI_API_KEY: str = _require_env("OPENAI_API_KEY")
EMBEDDING_MODEL_NAME: str = os.getenv("EMBEDDING_MODEL_NAME", "text-embedding-3-small")
EMBEDDING_CACHE_SIZE: int = _int_env("EMBEDDING_CACHE_SIZE", 100)
EMBEDDING_MAX_CHARS: int = _int_env("EMBEDDING_MAX_CHARS", 8000)
EMBEDDING_BATCH_SIZE: int = _int_env("EMBEDDING_BATCH_SIZE", 25)
EMBEDDING_TIMEOUT_SECONDS: float = _float_env("EMBEDDING_TIMEOUT_SECONDS", 15.0)

# ── Vector store (Chroma) ───────────────────────────────────────────
CHROMA_PATH: str | None = os.getenv("CHROMA_PATH") or None
CHROMA_FAQ_COLLECTION: str = os.getenv("CHROMA_FAQ_COLLECTION", "faq_embeddings")
CHROMA_CONVERSATION_COLLECTION: str = os.getenv(
    "CHROMA_CONVERSATION_COLLECTION", "conversation_history",
)
CHROMA_APPOINTMENT_COLLECTION: str = os.getenv(
    "CHROMA_APPOINTMENT_COLLECTION", "appointment_history",
)
RAG_TOP_K: int = _int_env("RAG_TOP_K", 5)
RAG_SCORE_THRESHOLD: float = _float_env("RAG_SCORE_THRESHOLD", 0.7)
FAQ_SCORE_THRESHOLD: float = _float_env("FAQ_SCORE_THRESHOLD", 0.3)
# Bundled with the package
FAQ_DATA_PATH: str = os.getenv(
    "FAQ_DATA_PATH", str(Path(__file__).resolve().parent / "data" / "faq.json"),
)
FAQ_SEED_ON_STARTUP: bool = os.getenv("FAQ_SEED_ON_STARTUP", "true").lower() == "true"

# ── Backend domain service ──────────────────────────────────────────
BACKEND_URL: str = os.getenv("BACKEND_URL", "http://localhost:5000")
BACKEND_TIMEOUT_SECONDS: float = _float_env("BACKEND_TIMEOUT_SECONDS", 10.0)
REFERENCE_DATA_TTL_SECONDS: float = _float_env("REFERENCE_DATA_TTL_SECONDS", 300.0)
REFERENCE_DATA_RETRY_SECONDS: float = _float_env("REFERENCE_DATA_RETRY_SECONDS", 30.0)
DUPLICATE_MARKERS: list[str] = [
    marker.strip().lower()
    for marker in os.getenv(
        "DUPLICATE_MARKERS", "already exists,já existe um agendamento",
    ).split(",")
    if marker.strip()
]

# ── Sessions ────────────────────────────────────────────────────────
SESSION_TIMEOUT_MINUTES: float = _float_env("SESSION_TIMEOUT_MINUTES", 30.0)
SESSION_SWEEP_INTERVAL_SECONDS: float = _float_env("SESSION_SWEEP_INTERVAL_SECONDS", 300.0)
# 0 keeps every message
MEMORY_BUFFER_SIZE: int = _int_env("MEMORY_BUFFER_SIZE", 10)

# ── Decision thresholds ─────────────────────────────────────────────
SLOT_KEEP_THRESHOLD: float = _float_env("SLOT_KEEP_THRESHOLD", 0.3)
SCENARIO_CONFIDENCE_THRESHOLD: float = _float_env("SCENARIO_CONFIDENCE_THRESHOLD", 0.5)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _int_env("SERVER_PORT", 8000)
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
