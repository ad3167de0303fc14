from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class Label:
    """Gmail label as returned by users.labels."""

    id: str
    name: str

    def matches(self, name: str, *, exact: bool = True) -> bool:
        if exact:
            return self.name == name
        return self.name.casefold() == name.casefold()
