"""Sliding-window context trimming with a rolling note of older turns."""
from __future__ import annotations

import random
import re
import string
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

# -----------------------------
# Constants
# -----------------------------
MAX_CONTEXT_MESSAGES = 12
WINDOW_SIZE = MAX_CONTEXT_MESSAGES

DEFAULT_SUMMARY_CHARS = 280
SUMMARY_MAX_CHARS = 500
NOTE_MAX_CHARS = 600
TITLE_MAX_CHARS = 40

UNTITLED = "Untitled"
ELLIPSIS = "…"

ROLES = ("user", "assistant", "system", "note")

_WS = re.compile(r"\s+")
_ID_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    return int(time.time() * 1000)


# -----------------------------
# Types
# -----------------------------
@dataclass(frozen=True)
class Message:
    """A single chat message. Never mutated once created."""

    id: str
    role: str
    content: str
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=str(data["id"]),
            role=str(data["role"]),
            content=str(data.get("content", "")),
            created_at=int(data.get("createdAt", 0)),
        )


@dataclass
class ContextPolicy:
    """Controls how much verbatim history is kept and how long notes get."""
    window_size: int = WINDOW_SIZE       # recent messages kept verbatim
    summary_chars: int = SUMMARY_MAX_CHARS  # bound on the rendered older slice
    note_chars: int = NOTE_MAX_CHARS     # bound on the folded rolling note

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "ContextPolicy":
        ctx = (cfg or {}).get("context", {}) or {}
        return cls(
            window_size=int(ctx.get("window_size", WINDOW_SIZE)),
            summary_chars=int(ctx.get("summary_chars", SUMMARY_MAX_CHARS)),
            note_chars=int(ctx.get("note_chars", NOTE_MAX_CHARS)),
        )


DEFAULT_POLICY = ContextPolicy()


@dataclass(frozen=True)
class TrimResult:
    trimmed: List[Message]
    note: Optional[str] = None


# -----------------------------
# Operations
# -----------------------------
def create_message(role: str, content: str) -> Message:
    """Create a message with a fresh id and the current timestamp."""
    if role not in ROLES:
        raise ValueError(f"unknown message role: {role!r}")
    now = now_ms()
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return Message(id=f"{role}-{now}-{suffix}", role=role, content=content, created_at=now)


def summarize_text(text: str, max_length: int = DEFAULT_SUMMARY_CHARS) -> str:
    """Bound ``text`` to ``max_length`` characters, marking a cut with an ellipsis."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 1].rstrip() + ELLIPSIS


def summarize_messages(messages: Sequence[Message], max_length: int = SUMMARY_MAX_CHARS) -> str:
    """Render messages as Student/Tutor lines and bound the result."""
    lines = []
    for m in messages:
        prefix = "Student" if m.role == "user" else "Tutor"
        lines.append(f"{prefix}: {_WS.sub(' ', m.content).strip()}")
    return summarize_text("\n".join(lines), max_length)


def trim_context(
    messages: Sequence[Message],
    existing_note: Optional[str] = "",
    policy: Optional[ContextPolicy] = None,
) -> TrimResult:
    """Keep the most recent window verbatim and fold the rest into a note.

    Parameters
    ----------
    messages : Sequence[Message]
        Full chronological message log of a session.
    existing_note : str | None
        Rolling note produced by earlier trims, if any.
    policy : ContextPolicy | None
        Window and length bounds; module defaults when omitted.

    Returns
    -------
    TrimResult
        ``trimmed`` is either the input unchanged or a synthetic ``note``
        message followed by the recent window. ``note`` is the rolling note
        text, or ``None`` when there is none.
    """
    p = policy or DEFAULT_POLICY
    existing_note = existing_note or ""

    if len(messages) <= p.window_size:
        return TrimResult(trimmed=list(messages), note=existing_note or None)

    older = messages[: len(messages) - p.window_size]
    recent = messages[len(messages) - p.window_size:]

    summary = summarize_messages(older, p.summary_chars)
    if existing_note:
        note = summarize_text(f"{existing_note}\n{summary}", p.note_chars)
    else:
        note = summary

    note_message = create_message("note", note)
    return TrimResult(trimmed=[note_message, *recent], note=note)


def infer_title_from_messages(messages: Sequence[Message]) -> str:
    first_user = next((m for m in messages if m.role == "user"), None)
    if first_user is None:
        return UNTITLED
    return summarize_text(first_user.content, TITLE_MAX_CHARS)
