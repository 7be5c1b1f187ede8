"""Chat sessions as explicit values, plus pluggable stores to keep them in."""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .context import (
    ContextPolicy,
    Message,
    now_ms,
    create_message,
    infer_title_from_messages,
    trim_context,
)

logger = logging.getLogger(__name__)

FRESH_TITLE = "Fresh session"
GREETING = (
    "Hello! I'm RevisionAI. Tell me what you're studying today and I'll help "
    "you stay organised."
)
CLEARED_GREETING = "All caught up! Share your next topic and we'll continue from here."

# Roles the relay accepts; "note" only travels as the session summary.
WIRE_ROLES = ("system", "user", "assistant", "tool")


# -----------------------------
# Types
# -----------------------------
@dataclass(frozen=True)
class Session:
    id: str
    title: str
    created_at: int
    updated_at: int
    messages: List[Message] = field(default_factory=list)
    system_note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messages": [m.to_dict() for m in self.messages],
        }
        if self.system_note is not None:
            out["systemNote"] = self.system_note
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", FRESH_TITLE)),
            created_at=int(data.get("createdAt", 0)),
            updated_at=int(data.get("updatedAt", 0)),
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            system_note=data.get("systemNote"),
        )


@dataclass(frozen=True)
class SessionSummary:
    id: str
    title: str
    updated_at: int
    summary: str


# -----------------------------
# State transitions
# -----------------------------
def create_session(greeting: str = GREETING) -> Session:
    now = now_ms()
    return Session(
        id=f"session-{now}",
        title=FRESH_TITLE,
        created_at=now,
        updated_at=now,
        messages=[create_message("assistant", greeting)],
    )


def send_user_message(
    session: Session, content: str, policy: Optional[ContextPolicy] = None
) -> Session:
    """Append a user turn, re-trim the window and name the session if still fresh."""
    user_message = create_message("user", content)
    result = trim_context([*session.messages, user_message], session.system_note, policy)

    title = session.title
    if len(session.messages) == 1 and session.title == FRESH_TITLE:
        title = infer_title_from_messages([user_message])

    return replace(
        session,
        title=title,
        messages=result.trimmed,
        system_note=result.note if result.note is not None else session.system_note,
        updated_at=now_ms(),
    )


def receive_assistant_reply(
    session: Session, content: str, policy: Optional[ContextPolicy] = None
) -> Session:
    reply = create_message("assistant", content)
    result = trim_context([*session.messages, reply], session.system_note, policy)
    return replace(
        session,
        messages=result.trimmed,
        system_note=result.note if result.note is not None else session.system_note,
        updated_at=now_ms(),
    )


def clear_session(session: Session) -> Session:
    return replace(
        session,
        messages=[create_message("assistant", CLEARED_GREETING)],
        system_note=None,
        updated_at=now_ms(),
    )


def rename_session(session: Session, title: str) -> Session:
    return replace(session, title=title, updated_at=now_ms())


def summarize_session(session: Session) -> SessionSummary:
    return SessionSummary(
        id=session.id,
        title=session.title,
        updated_at=session.updated_at,
        summary=session.system_note or infer_title_from_messages(session.messages),
    )


def build_chat_request(
    session: Session, options: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Derive the relay request body for a session.

    Note messages are not sent verbatim; their content already lives in the
    session's rolling note, which travels as ``sessionSummary``.
    """
    body: Dict[str, Any] = {
        "messages": [
            {"role": m.role, "content": m.content}
            for m in session.messages
            if m.role in WIRE_ROLES
        ]
    }
    if session.system_note:
        body["sessionSummary"] = session.system_note
    if options:
        body["options"] = dict(options)
    return body


def export_session(session: Session) -> str:
    return json.dumps(session.to_dict(), ensure_ascii=False, indent=2)


def export_filename(session: Session) -> str:
    stem = re.sub(r"[^a-z0-9]+", "-", session.title, flags=re.IGNORECASE)
    return f"{stem or 'session'}.json"


# -----------------------------
# Collections
# -----------------------------
def upsert_session(sessions: List[Session], session: Session) -> List[Session]:
    """Replace the session with the same id, or put a new one first."""
    if any(s.id == session.id for s in sessions):
        return [session if s.id == session.id else s for s in sessions]
    return [session, *sessions]


def delete_session(sessions: List[Session], session_id: str) -> List[Session]:
    return [s for s in sessions if s.id != session_id]


# -----------------------------
# Stores
# -----------------------------
class SessionStore(Protocol):
    def load_all(self) -> List[Session]: ...

    def save_all(self, sessions: List[Session]) -> None: ...


class MemorySessionStore:
    """Keeps sessions in process; handy for tests and short-lived tools."""

    def __init__(self, sessions: Optional[List[Session]] = None) -> None:
        self._sessions: List[Session] = list(sessions or [])

    def load_all(self) -> List[Session]:
        return list(self._sessions)

    def save_all(self, sessions: List[Session]) -> None:
        self._sessions = list(sessions)


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


class JSONFileSessionStore:
    """All sessions in one JSON file, written atomically.

    A file that cannot be parsed is renamed to ``<name>.corrupt.json`` and
    the store starts empty.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def load_all(self) -> List[Session]:
        with self._lock:
            if not self.path.exists():
                return []
            try:
                with self.path.open("r", encoding="utf-8") as f:
                    raw = json.load(f)
                return [Session.from_dict(item) for item in raw]
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                bad = self.path.with_suffix(".corrupt.json")
                logger.warning("Failed to parse session store %s (%s); moving it to %s", self.path, e, bad)
                os.replace(self.path, bad)
                return []

    def save_all(self, sessions: List[Session]) -> None:
        with self._lock:
            payload = [s.to_dict() for s in sessions]
            _atomic_write_text(self.path, json.dumps(payload, ensure_ascii=False, indent=2))
