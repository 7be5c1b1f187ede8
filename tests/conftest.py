"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, List

import httpx
import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> str:
    """Shipped default config."""
    return str(project_root / "config" / "default.yaml")


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ["REVISION_CHAT_CONFIG", "OPENAI_API"]:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("REVISION_CHAT__"):
            monkeypatch.delenv(var, raising=False)
    yield monkeypatch


@pytest.fixture(scope="function")
def api_key(clean_env: pytest.MonkeyPatch) -> str:
    clean_env.setenv("OPENAI_API", "sk-test")
    return "sk-test"


class UpstreamSpy:
    """Fake provider: records requests and answers through ``respond``."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.respond = respond
        self.requests: List[httpx.Request] = []
        self.transport = httpx.MockTransport(self)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)


@pytest.fixture
def upstream() -> Callable[[Callable[[httpx.Request], httpx.Response]], UpstreamSpy]:
    """Factory fixture: ``spy = upstream(lambda req: httpx.Response(...))``."""
    return UpstreamSpy
