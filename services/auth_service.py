from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Iterable, List

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from services.credential_store import ClientCredentials, Token, TokenStore
from utils.exceptions import AuthError

LOGGER = logging.getLogger(__name__)
SCOPES: Iterable[str] = ("https://www.googleapis.com/auth/gmail.modify",)
CODE_PROMPT = "Enter the code from that page here: "

FlowFactory = Callable[..., Any]


class AuthState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class AuthService:
    """Handle the OAuth2 credential lifecycle for the responder's mailbox.

    A stored token is restored as-is. Without one, ``authorize`` walks the
    operator through the out-of-band code exchange exactly once.
    """

    def __init__(
        self,
        client: ClientCredentials,
        token_store: TokenStore,
        *,
        display: Callable[[str], Any] = print,
        prompt: Callable[[str], str] = input,
        flow_factory: FlowFactory = Flow.from_client_config,
    ):
        self._client = client
        self._token_store = token_store
        self._display = display
        self._prompt = prompt
        self._flow_factory = flow_factory
        self._credentials: Credentials | None = None
        self.state = AuthState.UNAUTHENTICATED

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    def authenticate(self, interactive: bool = True) -> Credentials:
        if self.state is AuthState.AUTHENTICATED and self._credentials is not None:
            return self._credentials

        token = self._token_store.load()
        if token is not None:
            LOGGER.debug("Restoring stored token from %s", self._token_store.path)
            return self._activate(token)

        if not interactive:
            raise AuthError(
                f"No stored token at {self._token_store.path}; run the 'authorize' command first"
            )
        return self.authorize()

    def authorize(self) -> Credentials:
        flow = self._flow_factory(
            self._client.to_client_config(),
            scopes=list(SCOPES),
            redirect_uri=self._client.redirect_uri,
        )
        auth_url, _ = flow.authorization_url(access_type="offline", prompt="consent")
        self._display(f"Authorize this app by visiting this URL: {auth_url}")
        code = self._prompt(CODE_PROMPT).strip()
        if not code:
            raise AuthError("No authorization code entered")

        LOGGER.info("Exchanging authorization code for a token")
        try:
            flow.fetch_token(code=code)
        except (OAuth2Error, ValueError) as exc:
            raise AuthError(f"Authorization code was rejected: {exc}") from exc

        token = _token_from_credentials(flow.credentials)
        self._token_store.save(token)
        LOGGER.info("Token stored to %s", self._token_store.path)
        return self._activate(token)

    def _activate(self, token: Token) -> Credentials:
        self._credentials = Credentials(
            token=token.access_token,
            refresh_token=token.refresh_token,
            token_uri=self._client.token_uri,
            client_id=self._client.client_id,
            client_secret=self._client.client_secret,
            scopes=_scopes_for(token),
            expiry=token.expiry,
        )
        self.state = AuthState.AUTHENTICATED
        return self._credentials


def _scopes_for(token: Token) -> List[str]:
    if token.scope:
        return token.scope.split()
    return list(SCOPES)


def _token_from_credentials(creds: Any) -> Token:
    scopes = getattr(creds, "scopes", None) or SCOPES
    return Token(
        access_token=creds.token,
        refresh_token=creds.refresh_token,
        expiry=creds.expiry,
        scope=" ".join(scopes),
    )
