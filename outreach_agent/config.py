"""Centralized configuration for the MultipleAI outreach agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/outreach-agent/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 - lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/outreach-agent/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _get_secret(name: str) -> str | None:
    """Return a config value from env-var or SSM, or ``None`` if unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _get_secret(name)
    if value:
        return value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /outreach-agent/{name} (AWS)."
    )


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes")


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-haiku-4-5")
# Voice replies must stay short enough to be spoken in a single breath
GENERATION_MAX_TOKENS: int = int(os.getenv("GENERATION_MAX_TOKENS", "100"))
GENERATION_TEMPERATURE: float = float(os.getenv("GENERATION_TEMPERATURE", "0.7"))

# ── Persona ─────────────────────────────────────────────────────────
AGENT_NAME: str = os.getenv("AGENT_NAME", "Sarah")
COMPANY_NAME: str = os.getenv("COMPANY_NAME", "MultipleAI Solutions")
SCHEDULING_LINK: str = os.getenv(
    "SCHEDULING_LINK", "https://calendly.com/ali-shehroz-19991/30min",
)

# ── Twilio (optional, telephony endpoints fail cleanly without it) ──
TWILIO_ACCOUNT_SID: str | None = _get_secret("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN: str | None = _get_secret("TWILIO_AUTH_TOKEN")
TWILIO_PHONE_NUMBER: str | None = _get_secret("TWILIO_PHONE_NUMBER")
VALIDATE_TWILIO_SIGNATURE: bool = _env_bool("VALIDATE_TWILIO_SIGNATURE")
VOICE: str = os.getenv("VOICE", "Polly.Joanna")
HANGUP_DIGIT: str = os.getenv("HANGUP_DIGIT", "9")
MAX_SILENT_TURNS: int = int(os.getenv("MAX_SILENT_TURNS", "3"))
# Base URL Twilio uses to reach us; derived from the request when empty
PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

# ── Document corpus & index ─────────────────────────────────────────
CORPUS_DIR: str = os.getenv("CORPUS_DIR", "uploads")
INDEX_STALENESS_SECONDS: int = int(os.getenv("INDEX_STALENESS_SECONDS", str(24 * 60 * 60)))
INDEX_CHECK_INTERVAL_SECONDS: int = int(os.getenv("INDEX_CHECK_INTERVAL_SECONDS", "3600"))
CONTEXT_CHAR_BUDGET: int = int(os.getenv("CONTEXT_CHAR_BUDGET", "1500"))

# ── Sessions ────────────────────────────────────────────────────────
MAX_HISTORY_TURNS: int = int(os.getenv("MAX_HISTORY_TURNS", "10"))
WEB_SESSION_IDLE_SECONDS: int = int(os.getenv("WEB_SESSION_IDLE_SECONDS", str(30 * 60)))
CALL_SESSION_IDLE_SECONDS: int = int(os.getenv("CALL_SESSION_IDLE_SECONDS", str(60 * 60)))
SESSION_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", "300"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", os.getenv("PORT", "3000")))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
