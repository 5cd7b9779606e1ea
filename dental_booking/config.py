"""Centralized configuration for the dental booking tool backend.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/dental-booking/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))

SSM_PREFIX = "/dental-booking"


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 cannot reach
    AWS, so the local ``.env`` path keeps working.
    """
    try:
        import boto3  # noqa: PLC0415 - lazy import, only needed on AWS

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{SSM_PREFIX}/{name}", WithDecryption=True)
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
        f"Set it in .env (local) or SSM Parameter Store {SSM_PREFIX}/{name} (AWS)."
    )


def _optional_env(name: str, default: str = "") -> str:
    """Like ``_require_env`` but falls back to *default* instead of raising."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value
    return default


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
# Constrained-output classification only (slot numbers, ids, dates)
CLASSIFIER_MODEL_NAME: str = os.getenv("CLASSIFIER_MODEL_NAME", "claude-haiku-4-5")

# ── NexHealth ───────────────────────────────────────────────────────
NEXHEALTH_API_KEY: str = _require_env("NEXHEALTH_API_KEY")
NEXHEALTH_BASE_URL: str = os.getenv("NEXHEALTH_BASE_URL", "https://nexhealth.info")

# ── Storage ─────────────────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./dental_booking.db")

# ── Scheduling rules ────────────────────────────────────────────────
DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "America/Chicago")
SLOT_HOLD_MINUTES: int = int(os.getenv("SLOT_HOLD_MINUTES", "10"))
MAX_TOOL_CHAIN_DEPTH: int = int(os.getenv("MAX_TOOL_CHAIN_DEPTH", "2"))
# Used when the voice platform does not send an assistant id we know
DEFAULT_PRACTICE_ID: str = os.getenv("DEFAULT_PRACTICE_ID", "")

# ── Notifications ───────────────────────────────────────────────────
RESEND_API_KEY: str = _optional_env("RESEND_API_KEY")
NOTIFICATION_FROM_EMAIL: str = os.getenv(
    "NOTIFICATION_FROM_EMAIL", "appointments@example.com",
)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000",
).split(",")
