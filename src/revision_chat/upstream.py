"""Upstream provider settings, request construction and the single call."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from .errors import UpstreamRejected, UpstreamUnreachable

logger = logging.getLogger(__name__)


# -----------------------------
# Types & defaults
# -----------------------------
DEFAULT_ENDPOINT = "https://api.openai.com/v1/responses"
DEFAULT_MODEL = "gpt-5"
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that continues the conversation based on the "
    "provided context."
)
SUMMARY_PREFIX = "Previous session summary:\n"

DEFAULT_OVERRIDABLE_OPTIONS = (
    "temperature",
    "top_p",
    "max_output_tokens",
    "model",
    "metadata",
    "reasoning",
    "text",
    "instructions",
)
# Never taken from caller options, whatever the allow-list says.
PROTECTED_FIELDS = frozenset({"input", "stream"})

UNREACHABLE_MESSAGE = "Failed to reach OpenAI service."
REJECTED_MESSAGE = "OpenAI service returned an error."


def _allow_list(allowed: Any) -> Union[str, List[str]]:
    """Normalize the configured allow-list; env overrides arrive as "a, b" strings."""
    if allowed is None:
        return list(DEFAULT_OVERRIDABLE_OPTIONS)
    if isinstance(allowed, str):
        if allowed.strip() == "*":
            return "*"
        return [k.strip() for k in allowed.split(",") if k.strip()]
    return [str(k) for k in allowed]


@dataclass
class UpstreamSettings:
    endpoint: str = DEFAULT_ENDPOINT
    model: str = DEFAULT_MODEL
    modality: str = "text"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    api_key_env: str = "OPENAI_API"
    timeout: Optional[float] = None  # None: wait on the provider indefinitely
    # "*" lets any option through; otherwise only the listed keys.
    overridable_options: Union[str, Sequence[str]] = field(
        default_factory=lambda: list(DEFAULT_OVERRIDABLE_OPTIONS)
    )

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "UpstreamSettings":
        up = (cfg or {}).get("upstream", {}) or {}
        timeout = up.get("timeout")
        allowed = up.get("overridable_options")
        return cls(
            endpoint=str(up.get("endpoint") or DEFAULT_ENDPOINT),
            model=str(up.get("model") or DEFAULT_MODEL),
            modality=str(up.get("modality") or "text"),
            system_prompt=str(up.get("system_prompt") or DEFAULT_SYSTEM_PROMPT).strip(),
            api_key_env=str(up.get("api_key_env") or "OPENAI_API"),
            timeout=None if timeout is None else float(timeout),
            overridable_options=_allow_list(allowed),
        )

    def api_key(self) -> Optional[str]:
        """Credential from the environment, read on every call."""
        return os.environ.get(self.api_key_env) or None


# -----------------------------
# Request construction
# -----------------------------
def filter_options(options: Optional[Dict[str, Any]], settings: UpstreamSettings) -> Dict[str, Any]:
    if not options:
        return {}
    kept: Dict[str, Any] = {}
    for key, value in options.items():
        if key in PROTECTED_FIELDS:
            logger.warning("[upstream] dropping protected option %r", key)
            continue
        if settings.overridable_options != "*" and key not in settings.overridable_options:
            logger.warning("[upstream] dropping option %r (not in overridable_options)", key)
            continue
        kept[key] = value
    return kept


def build_messages(
    messages: List[Dict[str, Any]],
    session_summary: Optional[str],
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    if session_summary:
        out.append({"role": "system", "content": f"{SUMMARY_PREFIX}{session_summary}"})
    out.append({"role": "system", "content": system_prompt})
    out.extend(messages)
    return out


def build_payload(
    messages: List[Dict[str, Any]],
    session_summary: Optional[str],
    options: Optional[Dict[str, Any]],
    settings: UpstreamSettings,
) -> Dict[str, Any]:
    """Provider request body: fixed fields first, then the permitted options."""
    payload: Dict[str, Any] = {
        "model": settings.model,
        "modality": settings.modality,
        "input": build_messages(messages, session_summary, settings.system_prompt),
        "stream": True,
    }
    payload.update(filter_options(options, settings))
    return payload


def build_headers(api_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


def log_upstream_error(error: Any) -> None:
    if isinstance(error, BaseException):
        logger.error("[upstream] Error: %s", error, exc_info=error)
    else:
        logger.error("[upstream] Unexpected error: %s", error)


# -----------------------------
# The call
# -----------------------------
def _has_body(response: httpx.Response) -> bool:
    if response.status_code == 204:
        return False
    return response.headers.get("content-length") != "0"


async def open_stream(
    client: httpx.AsyncClient,
    settings: UpstreamSettings,
    payload: Dict[str, Any],
    api_key: str,
) -> httpx.Response:
    """POST the payload once and return the still-unread streaming response.

    Raises
    ------
    UpstreamUnreachable
        The transport failed before a response arrived. Not retried.
    UpstreamRejected
        The provider answered with a non-success status or an empty body.
        The response is read and closed before raising.
    """
    request = client.build_request(
        "POST", settings.endpoint, json=payload, headers=build_headers(api_key)
    )
    try:
        response = await client.send(request, stream=True)
    except httpx.TransportError as e:
        log_upstream_error(e)
        raise UpstreamUnreachable(UNREACHABLE_MESSAGE) from e

    if response.is_success and _has_body(response):
        return response

    try:
        await response.aread()
        error_text = response.text
    except (httpx.HTTPError, UnicodeDecodeError) as e:
        logger.warning("[upstream] could not read error body: %s", e)
        error_text = ""
    finally:
        await response.aclose()

    detail = error_text or response.reason_phrase
    log_upstream_error(detail)
    raise UpstreamRejected(REJECTED_MESSAGE, status=response.status_code, detail=detail)
