"""RevisionAI chat relay and conversation-context management.

This package provides a FastAPI application factory named ``create_app``
inside ``revision_chat/server.py`` (see :func:`create_app`), and the pure
context/session helpers the chat client uses to keep the model context small.

Typical usage
-------------
from revision_chat import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

__all__ = ["create_app", "__version__", "get_version"]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__


def create_app(*args, **kwargs):
    """Lazy proxy for :func:`revision_chat.server.create_app`.

    Importing the context helpers does not pull in FastAPI or httpx.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
