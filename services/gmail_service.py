from __future__ import annotations

import base64
import logging
from email.mime.text import MIMEText
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Sequence

import httplib2
from google.auth.exceptions import RefreshError
from google.auth.exceptions import TransportError as GoogleAuthTransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from models.email_message import EmailMessage
from models.label import Label
from utils.config import DEFAULT_SUBJECT
from utils.exceptions import AuthError, MailboxError, NotFoundError, TransientRemoteError

LOGGER = logging.getLogger(__name__)

UNREAD_QUERY = "is:unread"
TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


def build_session(credentials: Credentials) -> Any:
    """Build the Gmail API resource all mailbox calls go through."""
    return build("gmail", "v1", credentials=credentials, cache_discovery=False)


class GmailService:
    """Wrapper around the Gmail API for the operations the responder needs."""

    def __init__(
        self,
        session: Any,
        user_id: str = "me",
        *,
        retry_attempts: int = 4,
        retry_wait: Any = None,
    ):
        self._client = session
        self._user_id = user_id
        self._label_cache: Dict[str, str] = {}
        self._retry_attempts = retry_attempts
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=30)

    @property
    def user_id(self) -> str:
        return self._user_id

    def list_unread(self, query: str = UNREAD_QUERY) -> List[str]:
        message_ids: List[str] = []
        page_token: Optional[str] = None
        while True:
            request = (
                self._client.users()
                .messages()
                .list(userId=self.user_id, q=query, pageToken=page_token)
            )
            response = self._execute(request, "list unread messages")
            message_ids.extend(item["id"] for item in response.get("messages", []) or [])
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        LOGGER.info("Found %s unread message(s)", len(message_ids))
        return message_ids

    def get_message(self, message_id: str) -> EmailMessage:
        request = (
            self._client.users()
            .messages()
            .get(userId=self.user_id, id=message_id, format="full")
        )
        response = self._execute(request, f"get message {message_id}")
        return _to_email_message(response)

    def get_thread_messages(self, thread_id: str) -> List[EmailMessage]:
        request = (
            self._client.users()
            .threads()
            .get(
                userId=self.user_id,
                id=thread_id,
                format="metadata",
                metadataHeaders=["From", "Subject", "Message-ID", "Date", "Auto-Submitted"],
            )
        )
        response = self._execute(request, f"get thread {thread_id}")
        return [_to_email_message(item) for item in response.get("messages", []) or []]

    def send_reply(
        self,
        thread_id: str,
        body: str,
        *,
        to: str,
        sender: str,
        subject: str = DEFAULT_SUBJECT,
        in_reply_to: str | None = None,
    ) -> str:
        raw = build_reply(body, to=to, sender=sender, subject=subject, in_reply_to=in_reply_to)
        request = (
            self._client.users()
            .messages()
            .send(userId=self.user_id, body={"threadId": thread_id, "raw": raw})
        )
        # a send that timed out may still have been delivered, so never resend
        response = self._execute(request, f"send reply on thread {thread_id}", attempts=1)
        LOGGER.debug("Sent message %s on thread %s", response.get("id"), thread_id)
        return response["id"]

    def apply_label(self, message_id: str, label_name: str) -> List[str]:
        cached = label_name in self._label_cache
        try:
            response = self._add_label(message_id, self.get_or_create_label_id(label_name))
        except TransientRemoteError:
            raise
        except MailboxError:
            if not cached:
                raise
            LOGGER.warning("Cached id for label %s was rejected, resolving it again", label_name)
            self._label_cache.pop(label_name, None)
            response = self._add_label(message_id, self.get_or_create_label_id(label_name))
        LOGGER.info("Applied label %s to message %s", label_name, message_id)
        return response.get("labelIds", [])

    def _add_label(self, message_id: str, label_id: str) -> Dict[str, Any]:
        request = (
            self._client.users()
            .messages()
            .modify(userId=self.user_id, id=message_id, body={"addLabelIds": [label_id]})
        )
        return self._execute(request, f"label message {message_id}")

    def get_or_create_label_id(self, label_name: str) -> str:
        if label_name in self._label_cache:
            return self._label_cache[label_name]

        existing = self.list_labels()
        match = next((label for label in existing if label.matches(label_name)), None)
        if match is None:
            match = next(
                (label for label in existing if label.matches(label_name, exact=False)), None
            )
        if match is not None:
            LOGGER.debug("Label %s already exists as %s", label_name, match.id)
            label_id = match.id
        else:
            body = {"name": label_name, "labelListVisibility": "labelShow", "messageListVisibility": "show"}
            request = self._client.users().labels().create(userId=self.user_id, body=body)
            response = self._execute(request, f"create label {label_name}")
            label_id = response["id"]
            LOGGER.info("Created label %s with id %s", label_name, label_id)

        self._label_cache[label_name] = label_id
        return label_id

    def list_labels(self) -> List[Label]:
        request = self._client.users().labels().list(userId=self.user_id)
        response = self._execute(request, "list labels")
        return [Label(id=item["id"], name=item["name"]) for item in response.get("labels", [])]

    def get_profile_address(self) -> str:
        request = self._client.users().getProfile(userId=self.user_id)
        response = self._execute(request, "get profile")
        return response["emailAddress"]

    def _execute(self, request: Any, action: str, attempts: int | None = None) -> Dict[str, Any]:
        retrying = Retrying(
            retry=retry_if_exception_type(TransientRemoteError),
            wait=self._retry_wait,
            stop=stop_after_attempt(attempts or self._retry_attempts),
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
            reraise=True,
        )
        return retrying(_execute_once, request, action)


def _execute_once(request: Any, action: str) -> Dict[str, Any]:
    try:
        return request.execute()
    except RefreshError as exc:
        LOGGER.error("Gmail token could not be refreshed; run 'authorize --force': %s", exc)
        raise AuthError(f"Failed to {action}: token refresh rejected") from exc
    except GoogleAuthTransportError as exc:
        raise TransientRemoteError(f"Failed to {action}: {exc}") from exc
    except HttpError as exc:
        status = int(getattr(exc.resp, "status", 0) or 0)
        if status == 404:
            raise NotFoundError(f"Failed to {action}: not found") from exc
        if status in TRANSIENT_STATUSES:
            raise TransientRemoteError(f"Failed to {action}: HTTP {status}") from exc
        raise MailboxError(f"Failed to {action}: HTTP {status}") from exc
    except (OSError, httplib2.HttpLib2Error) as exc:
        raise TransientRemoteError(f"Failed to {action}: {exc}") from exc


def build_reply(
    body: str,
    *,
    to: str,
    sender: str,
    subject: str = DEFAULT_SUBJECT,
    in_reply_to: str | None = None,
) -> str:
    """Return the reply as a URL-safe base64 string for the ``raw`` field."""

    message = MIMEText(body, "plain", "utf-8")
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    if in_reply_to:
        message["In-Reply-To"] = in_reply_to
        message["References"] = in_reply_to
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


def _to_email_message(response: Dict[str, Any]) -> EmailMessage:
    payload = response.get("payload", {})
    headers = _headers_to_dict(payload.get("headers", []))
    received_at = None
    if date_header := headers.get("date"):
        try:
            received_at = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            LOGGER.debug("Unable to parse date header: %s", date_header)
    return EmailMessage(
        id=response["id"],
        thread_id=response.get("threadId"),
        subject=headers.get("subject", "(no subject)"),
        snippet=response.get("snippet", ""),
        sender=headers.get("from"),
        message_id_header=headers.get("message-id"),
        labels=response.get("labelIds", []),
        headers=headers,
        received_at=received_at,
    )


def _headers_to_dict(headers: Sequence[Dict[str, str]]) -> Dict[str, str]:
    mapped: Dict[str, str] = {}
    for header in headers:
        name = header.get("name", "").lower()
        value = header.get("value", "")
        mapped[name] = value
    return mapped
