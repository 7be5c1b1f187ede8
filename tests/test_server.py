from __future__ import annotations

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from revision_chat.server import create_app

VALID = {"messages": [{"role": "user", "content": "What is calculus?"}]}


def _client(config_path: str, transport=None) -> TestClient:
    return TestClient(create_app(config_path, transport=transport))


def _ndjson_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        content=b'{"type":"response.output_text.delta","delta":"Calc"}\n'
        b'{"type":"response.completed"}\n',
    )


def test_empty_messages_rejected(clean_env, config_path):
    r = _client(config_path).post("/api/chat", json={"messages": []})
    assert r.status_code == 400
    assert r.headers["content-type"].startswith("application/json")
    assert "messages" in r.json()["error"]


@pytest.mark.parametrize(
    "body, field",
    [
        ({"messages": [{"role": "user"}]}, "messages"),
        ({"messages": [{"role": "user", "content": 5}]}, "messages"),
        ({"messages": ["hi"]}, "messages"),
        ({"messages": "hi"}, "messages"),
        ({**VALID, "sessionSummary": 3}, "sessionSummary"),
        ({**VALID, "sessionSummary": None}, "sessionSummary"),
        ({**VALID, "options": "fast"}, "options"),
        ({**VALID, "options": None}, "options"),
    ],
)
def test_malformed_bodies_rejected(clean_env, config_path, body, field):
    r = _client(config_path).post("/api/chat", json=body)
    assert r.status_code == 400
    assert field in r.json()["error"]


def test_non_object_body_rejected(clean_env, config_path):
    client = _client(config_path)
    assert client.post("/api/chat", json=[1, 2]).status_code == 400
    r = client.post("/api/chat", content=b"{nope", headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert r.json() == {"error": "Request body must be a JSON object."}


def test_missing_api_key_is_configuration_error(clean_env, config_path, upstream):
    spy = upstream(_ndjson_ok)
    r = _client(config_path, spy.transport).post("/api/chat", json=VALID)
    assert r.status_code == 500
    assert r.json() == {"error": "OpenAI API key is not configured."}
    assert spy.requests == []


def test_validation_runs_before_key_check(clean_env, config_path):
    r = _client(config_path).post("/api/chat", json={"messages": []})
    assert r.status_code == 400


def test_streams_upstream_lines_as_sse(api_key, config_path, upstream):
    spy = upstream(_ndjson_ok)
    r = _client(config_path, spy.transport).post("/api/chat", json=VALID)

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["cache-control"] == "no-cache, no-transform"
    assert r.text == (
        'data: {"type":"response.output_text.delta","delta":"Calc"}\n\n'
        'data: {"type":"response.completed"}\n\n'
        "event: close\ndata: [DONE]\n\n"
    )
    assert r.text.count("data: ") == 3


def test_upstream_request_shape(api_key, config_path, upstream):
    spy = upstream(_ndjson_ok)
    body = {
        "messages": [
            {"role": "user", "content": "hi", "name": "sam"},
            {"role": "assistant", "content": "hello"},
        ],
        "sessionSummary": "Student: earlier",
        "options": {"temperature": 0.3, "stream": False, "input": [], "evil": 1},
    }
    _client(config_path, spy.transport).post("/api/chat", json=body)

    (sent,) = spy.requests
    assert sent.method == "POST"
    assert str(sent.url) == "https://api.openai.com/v1/responses"
    assert sent.headers["authorization"] == "Bearer sk-test"
    assert sent.headers["content-type"] == "application/json"

    payload = json.loads(sent.content)
    assert payload["model"] == "gpt-5"
    assert payload["modality"] == "text"
    assert payload["stream"] is True
    assert payload["temperature"] == 0.3
    assert "evil" not in payload
    assert payload["input"][0] == {
        "role": "system",
        "content": "Previous session summary:\nStudent: earlier",
    }
    assert payload["input"][1]["role"] == "system"
    assert payload["input"][1]["content"].startswith("You are a helpful assistant")
    assert payload["input"][2:] == body["messages"]


def test_upstream_rejection_is_surfaced(api_key, config_path, upstream):
    spy = upstream(lambda req: httpx.Response(429, content=b'{"error":"rate limited"}'))
    r = _client(config_path, spy.transport).post("/api/chat", json=VALID)

    assert r.status_code == 429
    assert r.headers["content-type"].startswith("application/json")
    data = r.json()
    assert data["error"] == "OpenAI service returned an error."
    assert data["status"] == 429
    assert data["detail"] == '{"error":"rate limited"}'


def test_upstream_empty_error_body_falls_back_to_reason(api_key, config_path, upstream):
    spy = upstream(lambda req: httpx.Response(503))
    r = _client(config_path, spy.transport).post("/api/chat", json=VALID)
    assert r.status_code == 503
    assert r.json()["detail"] == "Service Unavailable"


def test_upstream_no_content_is_failure(api_key, config_path, upstream):
    spy = upstream(lambda req: httpx.Response(204))
    r = _client(config_path, spy.transport).post("/api/chat", json=VALID)
    assert r.status_code == 502
    assert r.json()["status"] == 204


def test_upstream_unreachable_is_502(api_key, config_path):
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    r = _client(config_path, httpx.MockTransport(refuse)).post("/api/chat", json=VALID)
    assert r.status_code == 502
    assert r.json() == {"error": "Failed to reach OpenAI service."}
    assert "refused" not in r.text


def test_health_reports_configuration(clean_env, config_path):
    client = _client(config_path)
    assert client.get("/health").json()["configured"] is False
    clean_env.setenv("OPENAI_API", "sk-x")
    data = client.get("/health").json()
    assert data["configured"] is True
    assert data["model"] == "gpt-5"
