"""Shared fixtures and an in-memory stand-in for the Gmail API resource."""

from __future__ import annotations

import base64
import itertools
import re
from email import message_from_bytes
from typing import Any, Callable, Dict, List, Optional

import httplib2
import pytest
from googleapiclient.errors import HttpError
from tenacity import wait_none

from services.gmail_service import GmailService

OPERATOR = "me@example.com"
EXCLUDED_LABEL = re.compile(r'-label:"([^"]+)"')


def http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b"{}")


class FakeRequest:
    def __init__(self, handler: Callable[[], Dict[str, Any]]):
        self._handler = handler

    def execute(self) -> Dict[str, Any]:
        return self._handler()


class FakeMessages:
    def __init__(self, gmail: "FakeGmail"):
        self._gmail = gmail

    def list(self, userId: str, q: str | None = None, pageToken: str | None = None, **_: Any) -> FakeRequest:
        return FakeRequest(lambda: self._gmail.handle_list(q, pageToken))

    def get(self, userId: str, id: str, format: str = "full") -> FakeRequest:
        return FakeRequest(lambda: self._gmail.handle_get(id))

    def send(self, userId: str, body: Dict[str, Any]) -> FakeRequest:
        return FakeRequest(lambda: self._gmail.handle_send(body))

    def modify(self, userId: str, id: str, body: Dict[str, Any]) -> FakeRequest:
        return FakeRequest(lambda: self._gmail.handle_modify(id, body))


class FakeLabels:
    def __init__(self, gmail: "FakeGmail"):
        self._gmail = gmail

    def list(self, userId: str) -> FakeRequest:
        return FakeRequest(lambda: {"labels": [dict(label) for label in self._gmail.labels]})

    def create(self, userId: str, body: Dict[str, Any]) -> FakeRequest:
        return FakeRequest(lambda: self._gmail.handle_create_label(body))


class FakeThreads:
    def __init__(self, gmail: "FakeGmail"):
        self._gmail = gmail

    def get(self, userId: str, id: str, **_: Any) -> FakeRequest:
        return FakeRequest(lambda: self._gmail.handle_thread(id))


class FakeUsers:
    def __init__(self, gmail: "FakeGmail"):
        self._gmail = gmail

    def messages(self) -> FakeMessages:
        return FakeMessages(self._gmail)

    def labels(self) -> FakeLabels:
        return FakeLabels(self._gmail)

    def threads(self) -> "FakeThreads":
        return FakeThreads(self._gmail)

    def getProfile(self, userId: str) -> FakeRequest:
        return FakeRequest(lambda: {"emailAddress": self._gmail.address})


class FakeGmail:
    """Mimics the ``users().messages().list(...).execute()`` call chain."""

    def __init__(self, address: str = OPERATOR, page_size: int = 100):
        self.address = address
        self.page_size = page_size
        self.messages: Dict[str, Dict[str, Any]] = {}
        self.labels: List[Dict[str, str]] = [{"id": "INBOX", "name": "INBOX"}, {"id": "UNREAD", "name": "UNREAD"}]
        self.sent: List[Dict[str, Any]] = []
        self.created_labels: List[str] = []
        self.queries: List[Optional[str]] = []
        self.failures: Dict[str, List[Exception]] = {}
        self._ids = itertools.count(1)

    def users(self) -> FakeUsers:
        return FakeUsers(self)

    def add_message(
        self,
        message_id: str,
        sender: str,
        thread_id: str | None = None,
        subject: str = "Hello",
        message_id_header: str | None = None,
        extra_headers: Dict[str, str] | None = None,
    ) -> None:
        headers = [
            {"name": "From", "value": sender},
            {"name": "To", "value": self.address},
            {"name": "Subject", "value": subject},
            {"name": "Date", "value": "Mon, 19 Oct 2026 09:30:00 +0000"},
        ]
        if message_id_header:
            headers.append({"name": "Message-ID", "value": message_id_header})
        for name, value in (extra_headers or {}).items():
            headers.append({"name": name, "value": value})
        self.messages[message_id] = {
            "id": message_id,
            "threadId": thread_id or f"thread-{message_id}",
            "labelIds": ["INBOX", "UNREAD"],
            "snippet": f"{subject} snippet",
            "payload": {"headers": headers},
        }

    def fail_next(self, operation: str, *errors: Exception) -> None:
        self.failures.setdefault(operation, []).extend(errors)

    def _maybe_fail(self, operation: str) -> None:
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def handle_list(self, query: str | None, page_token: str | None) -> Dict[str, Any]:
        self._maybe_fail("list")
        self.queries.append(query)
        excluded = {
            label["id"] for label in self.labels if label["name"] in EXCLUDED_LABEL.findall(query or "")
        }
        unread = [
            m["id"]
            for m in self.messages.values()
            if "UNREAD" in m["labelIds"] and not excluded.intersection(m["labelIds"])
        ]
        start = int(page_token or 0)
        page = unread[start : start + self.page_size]
        response: Dict[str, Any] = {}
        if page:
            response["messages"] = [{"id": mid, "threadId": self.messages[mid]["threadId"]} for mid in page]
        if start + self.page_size < len(unread):
            response["nextPageToken"] = str(start + self.page_size)
        return response

    def handle_get(self, message_id: str) -> Dict[str, Any]:
        self._maybe_fail(f"get:{message_id}")
        if message_id not in self.messages:
            raise http_error(404)
        return self.messages[message_id]

    def handle_send(self, body: Dict[str, Any]) -> Dict[str, Any]:
        self._maybe_fail("send")
        sent_id = f"sent-{next(self._ids)}"
        self.sent.append({"id": sent_id, **body})
        mime = message_from_bytes(base64.urlsafe_b64decode(body["raw"]))
        self.messages[sent_id] = {
            "id": sent_id,
            "threadId": body.get("threadId"),
            "labelIds": ["SENT"],
            "snippet": "",
            "payload": {"headers": [{"name": key, "value": value} for key, value in mime.items()]},
        }
        return {"id": sent_id, "threadId": body.get("threadId"), "labelIds": ["SENT"]}

    def handle_modify(self, message_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self._maybe_fail("modify")
        if message_id not in self.messages:
            raise http_error(404)
        known = {label["id"] for label in self.labels}
        if any(label_id not in known for label_id in body.get("addLabelIds", [])):
            raise http_error(400)
        label_ids = self.messages[message_id]["labelIds"]
        for label_id in body.get("addLabelIds", []):
            if label_id not in label_ids:
                label_ids.append(label_id)
        return {"id": message_id, "labelIds": list(label_ids)}

    def handle_thread(self, thread_id: str) -> Dict[str, Any]:
        messages = [m for m in self.messages.values() if m["threadId"] == thread_id]
        if not messages:
            raise http_error(404)
        return {"id": thread_id, "messages": messages}

    def handle_create_label(self, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["name"]
        if any(label["name"].lower() == name.lower() for label in self.labels):
            raise http_error(409)
        label = {"id": f"Label_{next(self._ids)}", "name": name}
        self.labels.append(label)
        self.created_labels.append(name)
        return dict(label)


def decode_sent(sent: Dict[str, Any]):
    return message_from_bytes(base64.urlsafe_b64decode(sent["raw"]))


@pytest.fixture
def fake_gmail() -> FakeGmail:
    return FakeGmail()


@pytest.fixture
def gmail_service(fake_gmail: FakeGmail) -> GmailService:
    return GmailService(fake_gmail, retry_attempts=3, retry_wait=wait_none())
