from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from utils.exceptions import ConfigError


PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_LABEL_NAME = "Vacation Auto Reply"
DEFAULT_SUBJECT = "Vacation Auto Reply"
DEFAULT_REPLY_BODY = (
    "Thank you for your email. I am currently on vacation and will respond when I return."
)


@dataclass(slots=True)
class AppConfig:
    credentials_file: Path
    token_file: Path
    user_id: str
    operator_email: Optional[str]
    label_name: str
    reply_subject: str
    reply_body: str
    unread_query: str
    poll_min_seconds: int
    poll_max_seconds: int
    retry_attempts: int
    log_dir: Path
    log_level: str


def _resolve_path(value: str | None, fallback: str) -> Path:
    candidate = Path(value or fallback)
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate
    return candidate


def _maybe_write_secret_file(target: Path, inline_value: str | None, b64_value: str | None) -> None:
    if not inline_value and not b64_value:
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    if inline_value:
        target.write_text(inline_value, encoding="utf-8")
        return
    try:
        decoded = base64.b64decode(b64_value or "", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigError(f"Failed to decode base64 secret payload for {target.name}") from exc
    target.write_bytes(decoded)


def _int_setting(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def default_unread_query(label_name: str) -> str:
    return f'is:unread -label:"{label_name}"'


def load_config(env_file: str | os.PathLike[str] | None = None) -> AppConfig:
    """Load configuration values from a .env file and environment variables."""

    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)

    credentials_file = _resolve_path(os.getenv("GOOGLE_CLIENT_SECRETS"), "config/credentials.json")
    token_file = _resolve_path(os.getenv("GOOGLE_TOKEN_PATH"), "token.json")
    log_dir = _resolve_path(os.getenv("LOG_DIR"), "logs")

    _maybe_write_secret_file(
        credentials_file,
        os.getenv("GOOGLE_CLIENT_SECRETS_JSON"),
        os.getenv("GOOGLE_CLIENT_SECRETS_B64"),
    )
    _maybe_write_secret_file(
        token_file,
        os.getenv("GOOGLE_TOKEN_JSON"),
        os.getenv("GOOGLE_TOKEN_B64"),
    )

    poll_min = _int_setting("POLL_MIN_SECONDS", 45, minimum=1)
    poll_max = _int_setting("POLL_MAX_SECONDS", 120, minimum=1)
    if poll_min > poll_max:
        raise ConfigError(
            f"POLL_MIN_SECONDS ({poll_min}) must not exceed POLL_MAX_SECONDS ({poll_max})"
        )

    label_name = os.getenv("AUTO_REPLY_LABEL") or DEFAULT_LABEL_NAME

    return AppConfig(
        credentials_file=credentials_file,
        token_file=token_file,
        user_id=os.getenv("GMAIL_USER_ID", "me"),
        operator_email=os.getenv("OPERATOR_EMAIL") or None,
        label_name=label_name,
        reply_subject=os.getenv("AUTO_REPLY_SUBJECT") or DEFAULT_SUBJECT,
        reply_body=os.getenv("AUTO_REPLY_BODY") or DEFAULT_REPLY_BODY,
        unread_query=os.getenv("UNREAD_QUERY") or default_unread_query(label_name),
        poll_min_seconds=poll_min,
        poll_max_seconds=poll_max,
        retry_attempts=_int_setting("RETRY_ATTEMPTS", 4, minimum=1),
        log_dir=log_dir,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
