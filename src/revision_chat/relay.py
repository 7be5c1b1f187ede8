"""Per-request relay: validate, call upstream once, re-frame the stream."""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, field_validator

from .errors import ClientValidationError, ConfigurationError, StreamCorruption
from .sse import SSEFramer
from .upstream import UpstreamSettings, build_payload, log_upstream_error, open_stream

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "OpenAI API key is not configured."
BODY_MESSAGE = "Request body must be a JSON object."
FIELD_MESSAGES = {
    "messages": "`messages` must be a non-empty array of message objects.",
    "sessionSummary": "`sessionSummary` must be a string when provided.",
    "options": "`options` must be an object when provided.",
}


class RelayState(str, enum.Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    UPSTREAM_CALLING = "upstream_calling"
    STREAMING = "streaming"
    CLOSED = "closed"
    REJECTED = "rejected"
    UPSTREAM_FAILED = "upstream_failed"


# -----------------------------
# Pydantic request models
# -----------------------------
class ChatMessage(BaseModel):
    # Unknown keys are forwarded upstream untouched.
    model_config = ConfigDict(extra="allow")

    role: StrictStr
    content: StrictStr


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1)
    session_summary: Optional[StrictStr] = Field(default=None, alias="sessionSummary")
    options: Optional[Dict[str, Any]] = None

    @field_validator("session_summary", "options", mode="before")
    @classmethod
    def _reject_explicit_null(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("must not be null")
        return v

    def wire_messages(self) -> List[Dict[str, Any]]:
        return [m.model_dump() for m in self.messages]


def parse_chat_request(body: Any) -> ChatRequest:
    """Validate a decoded JSON body, raising :class:`ClientValidationError`."""
    if not isinstance(body, dict):
        raise ClientValidationError(BODY_MESSAGE)
    try:
        return ChatRequest.model_validate(body)
    except ValidationError as e:
        loc = e.errors()[0].get("loc") or ("",)
        raise ClientValidationError(
            FIELD_MESSAGES.get(str(loc[0]), BODY_MESSAGE)
        ) from e


# -----------------------------
# Relay
# -----------------------------
class ChatRelay:
    """One instance per inbound request; owns one upstream client and connection."""

    def __init__(
        self,
        settings: UpstreamSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.transport = transport
        self.state = RelayState.RECEIVED
        self._client: Optional[httpx.AsyncClient] = None
        self._response: Optional[httpx.Response] = None

    def _move(self, state: RelayState) -> None:
        logger.debug("relay %s -> %s", self.state.value, state.value)
        self.state = state

    async def start(self, body: Any) -> AsyncIterator[bytes]:
        """Validate ``body``, open the upstream stream and return the SSE events.

        Errors raised here happen before any response byte is sent and map to
        JSON error responses.
        """
        try:
            request = parse_chat_request(body)
        except ClientValidationError:
            self._move(RelayState.REJECTED)
            raise
        self._move(RelayState.VALIDATED)

        api_key = self.settings.api_key()
        if not api_key:
            self._move(RelayState.REJECTED)
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)

        payload = build_payload(
            request.wire_messages(), request.session_summary, request.options, self.settings
        )
        self._move(RelayState.UPSTREAM_CALLING)
        self._client = httpx.AsyncClient(transport=self.transport, timeout=self.settings.timeout)
        try:
            self._response = await open_stream(self._client, self.settings, payload, api_key)
        except Exception:
            self._move(RelayState.UPSTREAM_FAILED)
            await self._client.aclose()
            raise
        self._move(RelayState.STREAMING)
        return self.events()

    async def events(self) -> AsyncIterator[bytes]:
        if self._client is None or self._response is None:
            raise RuntimeError("events() called before start()")
        try:
            async for event in relay_events(self._response.aiter_bytes()):
                yield event
            self._move(RelayState.CLOSED)
        except asyncio.CancelledError:
            logger.warning("relay cancelled while streaming (client went away)")
            self._move(RelayState.UPSTREAM_FAILED)
            raise
        except StreamCorruption:
            self._move(RelayState.UPSTREAM_FAILED)
            raise
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Release the upstream response and client. Safe to call more than once.

        The server also runs this after the response, which covers a client
        that disconnects before the first chunk is pulled.
        """
        if self._response is not None:
            await self._response.aclose()
        if self._client is not None:
            await self._client.aclose()
        if self.state not in (RelayState.CLOSED, RelayState.UPSTREAM_FAILED, RelayState.REJECTED):
            self._move(RelayState.UPSTREAM_FAILED)


async def relay_events(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Re-frame an async byte iterator as SSE events, ending with the close event.

    Read or decode failures are logged and re-raised as
    :class:`StreamCorruption`; nothing is yielded after the failure.
    """
    framer = SSEFramer()
    try:
        async for chunk in chunks:
            for event in framer.feed(chunk):
                yield event
        for event in framer.close():
            yield event
    except Exception as e:
        log_upstream_error(e)
        raise StreamCorruption(str(e)) from e
