from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from utils.exceptions import ConfigError

LOGGER = logging.getLogger(__name__)

DEFAULT_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass(slots=True, frozen=True)
class ClientCredentials:
    """OAuth client registration read from the Google client secrets file."""

    client_id: str
    client_secret: str
    redirect_uri: str
    auth_uri: str = DEFAULT_AUTH_URI
    token_uri: str = DEFAULT_TOKEN_URI

    def to_client_config(self) -> Dict[str, Dict[str, Any]]:
        """Return the structure google_auth_oauthlib expects."""
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uris": [self.redirect_uri],
                "auth_uri": self.auth_uri,
                "token_uri": self.token_uri,
            }
        }


@dataclass(slots=True, frozen=True)
class Token:
    access_token: str
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "token_type": self.token_type,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Token":
        expiry = data.get("expiry")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expiry=datetime.fromisoformat(expiry) if expiry else None,
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope"),
        )


def load_client_credentials(path: Path) -> ClientCredentials:
    """Read the client id, secret and redirect URI from a secrets file.

    The file uses Google's download format, with the values nested under a
    ``web`` key (``installed`` is accepted as well).
    """

    if not path.exists():
        raise ConfigError(f"Missing client secrets file: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Unreadable client secrets file {path}: {exc}") from exc

    section = None
    if isinstance(data, dict):
        section = data.get("web") or data.get("installed")
    if not isinstance(section, dict):
        raise ConfigError(f"Client secrets file {path} has no 'web' section")

    redirect_uris = section.get("redirect_uris") or []
    client_id = section.get("client_id")
    client_secret = section.get("client_secret")
    if not client_id or not client_secret or not redirect_uris:
        raise ConfigError(
            f"Client secrets file {path} must define client_id, client_secret and redirect_uris"
        )

    return ClientCredentials(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uris[0],
        auth_uri=section.get("auth_uri") or DEFAULT_AUTH_URI,
        token_uri=section.get("token_uri") or DEFAULT_TOKEN_URI,
    )


class TokenStore:
    """JSON file holding the last OAuth token obtained for the mailbox."""

    def __init__(self, token_file: Path):
        self._token_file = token_file

    @property
    def path(self) -> Path:
        return self._token_file

    def load(self) -> Token | None:
        if not self._token_file.exists():
            LOGGER.debug("No token stored at %s", self._token_file)
            return None
        try:
            data = json.loads(self._token_file.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise TypeError("token file does not hold a JSON object")
            return Token.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Ignoring unreadable token file %s: %s", self._token_file, exc)
            return None

    def save(self, token: Token) -> None:
        directory = self._token_file.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._token_file.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(token.to_dict(), handle)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._token_file)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        LOGGER.debug("Persisted OAuth token to %s", self._token_file)
