"""Session log entry models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class TextPart(BaseModel):
    """A single text content part of a log entry."""

    type: Literal["text"] = "text"
    text: str


class LogEntry(BaseModel):
    """One append-only record in a session's history."""

    role: Literal["system", "user", "assistant"]
    content: list[TextPart] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_text(cls, role: str, text: str, *tags: str) -> LogEntry:
        """Build an entry holding a single text part."""
        return cls(role=role, content=[TextPart(text=text)], tags=list(tags))

    @property
    def rendered(self) -> str:
        """Concatenated text of all parts."""
        return "".join(part.text for part in self.content)
