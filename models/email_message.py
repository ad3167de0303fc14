from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parseaddr
from typing import Dict, List


def normalize_address(value: str | None) -> str | None:
    """Bare lower-cased address from a header value like ``Name <addr>``."""
    if not value:
        return None
    _, address = parseaddr(value)
    return address.strip().lower() or None


@dataclass(slots=True)
class EmailMessage:
    """Simplified representation of a Gmail message."""

    id: str
    thread_id: str | None
    subject: str
    snippet: str
    sender: str | None = None
    message_id_header: str | None = None
    labels: List[str] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    received_at: datetime | None = None

    @property
    def sender_address(self) -> str | None:
        return normalize_address(self.sender)

    @property
    def is_auto_submitted(self) -> bool:
        # RFC 3834: anything other than "no" marks machine-generated mail
        value = self.headers.get("auto-submitted", "").strip().lower()
        return bool(value) and value != "no"
