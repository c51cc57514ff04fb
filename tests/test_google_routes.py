import base64
import json

import anyio
import httpx
from fastapi.testclient import TestClient

from app.settings import hash_access_code

STREAM_PATH = "/api/google/v1beta/models/gemini-pro:streamGenerateContent"


class _ChunkStream(httpx.AsyncByteStream):
    """Upstream body that is only produced when iterated."""

    def __init__(self, chunks):
        self._chunks = chunks

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk


class _BrokenStream(httpx.AsyncByteStream):
    """Upstream body that breaks off after its first frame."""

    def __init__(self, first):
        self._first = first

    async def __aiter__(self):
        yield self._first
        raise httpx.ReadError("upstream reset")


def _blob(data) -> str:
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


def test_post_body_is_sanitized_before_forwarding(app, upstream):
    payload = {
        "contents": [{"role": "user", "parts": [{"text": "hello"}]}],
        "provider": "google",
        "path": "v1beta/models/x",
    }

    with TestClient(app) as client:
        resp = client.post(STREAM_PATH, json=payload, headers={"x-goog-api-key": "user-key"})

    assert resp.status_code == 200
    sent = upstream.last
    assert sent.method == "POST"
    assert json.loads(sent.content) == {
        "contents": [{"role": "user", "parts": [{"text": "hello"}]}],
    }
    assert sent.headers["content-type"] == "application/json"
    assert sent.headers["cache-control"] == "no-store"
    assert sent.headers["x-goog-api-key"] == "user-key"
    assert sent.url.host == "generativelanguage.googleapis.com"
    assert sent.url.path == "/v1beta/models/gemini-pro:streamGenerateContent"


def test_server_key_used_without_caller_key(app, upstream):
    with TestClient(app) as client:
        client.post(STREAM_PATH, json={"contents": []})

    assert upstream.last.headers["x-goog-api-key"] == "server-key"


def test_server_base_url_applies_with_server_config(app, upstream, monkeypatch, proxy_settings):
    monkeypatch.setattr(proxy_settings, "google_base_url", "mirror.example/", raising=False)

    with TestClient(app) as client:
        client.post(STREAM_PATH, json={"contents": []})
        client.post(STREAM_PATH, json={"contents": []}, headers={"x-goog-api-key": "mine"})

    assert upstream.requests[0].url.host == "mirror.example"
    assert upstream.requests[1].url.host == "generativelanguage.googleapis.com"


def test_alt_sse_and_other_query_params_are_forwarded(app, upstream):
    with TestClient(app) as client:
        client.post(f"{STREAM_PATH}?alt=sse&foo=bar", json={"contents": []})

    params = upstream.last.url.params
    assert params["alt"] == "sse"
    assert params["foo"] == "bar"


def test_custom_endpoint_header_without_scheme(app, upstream):
    with TestClient(app) as client:
        client.post(
            STREAM_PATH,
            json={"contents": []},
            headers={"x-custom-provider-endpoint": "my.proxy.example/"},
        )

    sent = upstream.last
    assert sent.url.scheme == "https"
    assert sent.url.host == "my.proxy.example"
    assert sent.url.path == "/v1beta/models/gemini-pro:streamGenerateContent"


def test_custom_config_blob_supplies_endpoint_and_key(app, upstream):
    blob = base64.b64encode(
        json.dumps({"endpoint": "blob.example", "apiKey": "blob-key"}).encode("utf-8")
    ).decode("ascii")

    with TestClient(app) as client:
        client.post(STREAM_PATH, json={"contents": []}, headers={"x-custom-provider-config": blob})

    sent = upstream.last
    assert sent.url.host == "blob.example"
    assert sent.headers["x-goog-api-key"] == "blob-key"


def test_endpoint_only_blob_never_receives_server_key(app, upstream):
    blob = _blob({"endpoint": "evil.example"})

    with TestClient(app) as client:
        resp = client.post(
            STREAM_PATH, json={"contents": []}, headers={"x-custom-provider-config": blob}
        )

    assert resp.status_code == 200
    sent = upstream.last
    assert sent.headers["x-goog-api-key"] == "server-key"
    assert sent.url.host == "generativelanguage.googleapis.com"


def test_endpoint_only_blob_applies_with_caller_key(app, upstream):
    blob = _blob({"endpoint": "blob.example"})

    with TestClient(app) as client:
        client.post(
            STREAM_PATH,
            json={"contents": []},
            headers={"x-custom-provider-config": blob, "x-goog-api-key": "user-key"},
        )

    sent = upstream.last
    assert sent.url.host == "blob.example"
    assert sent.headers["x-goog-api-key"] == "user-key"


def test_custom_route_derives_subpath_from_url(app, upstream):
    with TestClient(app) as client:
        resp = client.post(
            "/api/custom_myproxy/google/v1beta/models/x:generateContent",
            json={"contents": []},
        )

    assert resp.status_code == 200
    assert upstream.last.url.path == "/v1beta/models/x:generateContent"


def test_empty_or_fully_stripped_body_sends_no_body(app, upstream):
    with TestClient(app) as client:
        client.post(STREAM_PATH, json={"provider": "google", "path": "v1beta"})
        client.get("/api/google/v1beta/models")

    stripped, listed = upstream.requests
    assert stripped.method == "POST"
    assert stripped.content == b""
    assert listed.method == "GET"
    assert listed.content == b""
    assert listed.url.path == "/v1beta/models"


def test_scalar_body_is_not_forwarded(app, upstream):
    with TestClient(app) as client:
        client.post(STREAM_PATH, content=b"42", headers={"content-type": "application/json"})

    assert upstream.last.content == b""


def test_options_returns_ok_without_upstream_call(app, upstream):
    with TestClient(app) as client:
        resp = client.options(STREAM_PATH)

    assert resp.status_code == 200
    assert resp.json() == {"body": "OK"}
    assert upstream.requests == []


def test_malformed_json_is_rejected_without_upstream_call(app, upstream):
    with TestClient(app) as client:
        resp = client.post(
            STREAM_PATH,
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid JSON"
    assert upstream.requests == []


def test_invalid_utf8_body_is_rejected_without_upstream_call(app, upstream):
    with TestClient(app) as client:
        resp = client.post(STREAM_PATH, content=b"\xff\xfe")

    assert resp.status_code == 400
    assert resp.json()["message"] == "Failed to read body"
    assert upstream.requests == []


def test_auth_failure_returns_401_without_upstream_call(app, upstream, monkeypatch, proxy_settings):
    monkeypatch.setattr(proxy_settings, "access_codes_raw", "open-sesame", raising=False)

    with TestClient(app) as client:
        missing = client.post(STREAM_PATH, json={"contents": []})
        wrong = client.post(
            STREAM_PATH,
            json={"contents": []},
            headers={"Authorization": "Bearer nk-nope"},
        )
        ok = client.post(
            STREAM_PATH,
            json={"contents": []},
            headers={"Authorization": "Bearer nk-open-sesame"},
        )

    assert missing.status_code == 401
    assert missing.json()["message"] == "empty access code"
    assert wrong.status_code == 401
    assert wrong.json()["message"] == "wrong access code"
    assert ok.status_code == 200
    assert len(upstream.requests) == 1
    assert upstream.last.headers["x-goog-api-key"] == "server-key"
    assert hash_access_code("open-sesame") in proxy_settings.get_access_code_hashes()


def test_upstream_error_is_relayed_unchanged(app, upstream):
    error_body = {"error": {"code": 500, "message": "backend exploded", "status": "INTERNAL"}}
    upstream.respond = lambda request: httpx.Response(
        500,
        json=error_body,
        headers={"www-authenticate": 'Basic realm="google"', "x-upstream": "1"},
    )

    with TestClient(app) as client:
        resp = client.post(STREAM_PATH, json={"contents": []})

    assert resp.status_code == 500
    assert resp.json() == error_body
    assert "www-authenticate" not in resp.headers
    assert resp.headers["x-upstream"] == "1"
    assert resp.headers["x-accel-buffering"] == "no"


def test_streamed_response_passes_through(app, upstream):
    frames = [
        b'data: {"candidates":[{"content":{"parts":[{"text":"Hel"}]}}]}\n\n',
        b'data: {"candidates":[{"content":{"parts":[{"text":"lo"}]}}]}\n\n',
    ]
    upstream.respond = lambda request: httpx.Response(
        200,
        headers={"content-type": "text/event-stream", "X-Accel-Buffering": "yes"},
        stream=_ChunkStream(frames),
    )

    with TestClient(app) as client:
        with client.stream("POST", f"{STREAM_PATH}?alt=sse", json={"contents": []}) as resp:
            body = b"".join(resp.iter_bytes())

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["x-accel-buffering"] == "no"
    assert body == b"".join(frames)


def test_upstream_failure_mid_stream_ends_body(app, upstream):
    first = b"data: {\"candidates\": []}\n\n"
    upstream.respond = lambda request: httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        stream=_BrokenStream(first),
    )

    with TestClient(app) as client:
        with client.stream("POST", f"{STREAM_PATH}?alt=sse", json={"contents": []}) as resp:
            body = b"".join(resp.iter_bytes())

    assert resp.status_code == 200
    assert body == first


def test_redirects_are_relayed_not_followed(app, upstream):
    upstream.respond = lambda request: httpx.Response(
        302, headers={"location": "https://elsewhere.example/"}
    )

    with TestClient(app) as client:
        resp = client.get("/api/google/v1beta/models", follow_redirects=False)

    assert resp.status_code == 302
    assert resp.headers["location"] == "https://elsewhere.example/"
    assert len(upstream.requests) == 1


def test_deadline_expiry_returns_gateway_timeout(app, upstream, monkeypatch, proxy_settings):
    monkeypatch.setattr(proxy_settings, "upstream_timeout", 0.05, raising=False)

    async def _slow(request):
        await anyio.sleep(5)
        return httpx.Response(200)

    upstream.respond = _slow

    with TestClient(app) as client:
        resp = client.post(STREAM_PATH, json={"contents": []})

    assert resp.status_code == 504
    assert resp.json()["error"] == "upstream_timeout"


def test_transport_error_returns_bad_gateway(app, upstream):
    def _fail(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.respond = _fail

    with TestClient(app) as client:
        resp = client.post(STREAM_PATH, json={"contents": []})

    assert resp.status_code == 502
    payload = resp.json()
    assert payload["error"] == "upstream_unreachable"
    assert "connection refused" in payload["message"]


def test_unexpected_failure_returns_generic_error(app, upstream):
    def _boom(request):
        raise RuntimeError("boom")

    upstream.respond = _boom

    with TestClient(app) as client:
        resp = client.post(STREAM_PATH, json={"contents": []})

    assert resp.status_code == 500
    payload = resp.json()
    assert payload["error"] == "internal_error"
    assert payload["details"]["error_id"]


def test_health(app):
    with TestClient(app) as client:
        resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
