from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from googleapiclient.errors import Error as GoogleApiError

from models.email_message import EmailMessage, normalize_address
from services.gmail_service import UNREAD_QUERY, GmailService
from utils.config import DEFAULT_LABEL_NAME, DEFAULT_REPLY_BODY, DEFAULT_SUBJECT
from utils.exceptions import NotFoundError, VacationResponderError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CycleReport:
    """Outcome of one pass over the unread messages."""

    replied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.replied) + len(self.skipped) + len(self.failed)


def is_reply_eligible(message: EmailMessage, operator_address: str) -> bool:
    """A message gets the vacation reply unless the operator or a machine sent it."""

    sender = message.sender_address
    if sender is None or message.is_auto_submitted:
        return False
    return sender != normalize_address(operator_address)


def has_auto_reply(thread: Iterable[EmailMessage], operator_address: str, subject: str) -> bool:
    """True when the operator already sent the vacation reply on this thread."""

    operator = normalize_address(operator_address)
    return any(
        "SENT" in message.labels and message.sender_address == operator and message.subject == subject
        for message in thread
    )


class AutoResponder:
    """Send the canned vacation reply to each eligible unread message."""

    def __init__(
        self,
        gmail: GmailService,
        operator_address: str,
        *,
        reply_body: str = DEFAULT_REPLY_BODY,
        subject: str = DEFAULT_SUBJECT,
        label_name: str = DEFAULT_LABEL_NAME,
        unread_query: str = UNREAD_QUERY,
    ):
        self._gmail = gmail
        self.operator_address = operator_address
        self._reply_body = reply_body
        self._subject = subject
        self._label_name = label_name
        self._unread_query = unread_query

    def run_cycle(self) -> CycleReport:
        report = CycleReport()
        try:
            message_ids = self._gmail.list_unread(self._unread_query)
        except (VacationResponderError, GoogleApiError) as exc:
            LOGGER.error("Error checking emails: %s", exc)
            return report

        for message_id in message_ids:
            try:
                if self.handle(message_id):
                    report.replied.append(message_id)
                else:
                    report.skipped.append(message_id)
            except NotFoundError:
                LOGGER.warning("Message %s disappeared before it could be handled", message_id)
                report.skipped.append(message_id)
            except (VacationResponderError, GoogleApiError) as exc:
                LOGGER.error("Failed to handle message %s: %s", message_id, exc)
                report.failed.append(message_id)

        if report.total:
            LOGGER.info(
                "Cycle finished: %s replied, %s skipped, %s failed",
                len(report.replied),
                len(report.skipped),
                len(report.failed),
            )
        return report

    def handle(self, message_id: str) -> bool:
        """Reply to and label one message. Returns False when it was not eligible."""

        message = self._gmail.get_message(message_id)
        if not is_reply_eligible(message, self.operator_address):
            LOGGER.debug("Not replying to %s from %s", message.id, message.sender)
            return False

        if message.thread_id:
            thread = self._gmail.get_thread_messages(message.thread_id)
            if has_auto_reply(thread, self.operator_address, self._subject):
                LOGGER.info("Thread %s already has an auto-reply, labelling %s only", message.thread_id, message.id)
                self._gmail.apply_label(message.id, self._label_name)
                return False

        self._gmail.send_reply(
            message.thread_id or message.id,
            self._reply_body,
            to=message.sender or "",
            sender=self.operator_address,
            subject=self._subject,
            in_reply_to=message.message_id_header,
        )
        self._gmail.apply_label(message.id, self._label_name)
        LOGGER.info("Auto-reply sent: %s", message.id)
        return True
