"""
Centralised constants used across the application.

Keeping magic strings in one place makes it easy to rename keys,
avoids silent typos, and keeps ``grep`` useful when debugging.
"""

from __future__ import annotations

# ── Redis key prefixes ──────────────────────────────────────────────────────

REDIS_PREFIX_SESSION_LOG: str = "session_log:"
"""Prefix for per-session append-only log lists."""


# ── Session log tags and roles ──────────────────────────────────────────────

TAG_PROCESSOR: str = "processor"
"""Tag on log entries written by the field processor pipeline."""

TAG_PROMPT: str = "prompt"
"""Tag on log entries holding a rendered request prompt."""

TAG_RESPONSE: str = "response"
"""Tag on log entries holding a full model response."""

TAG_REPAIR: str = "repair"
"""Extra tag on prompt/response entries of a repair round."""

ROLE_USER: str = "user"
ROLE_ASSISTANT: str = "assistant"

DEFAULT_SESSION_ID: str = "default"
"""Session used when the caller does not name one."""


# ── Field markers ───────────────────────────────────────────────────────────

MARKER_DELIMITER: str = ":"
"""Character separating a field title from its value."""

REASON_FIELD_NAME: str = "reason"
"""Output field prepended by ``ChainOfThought``."""
