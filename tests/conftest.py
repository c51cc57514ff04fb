"""
Shared pytest configuration.

Ensures the project root is importable and provides a FastAPI app whose
upstream HTTP client is backed by httpx.MockTransport, so no test ever
talks to the real Generative Language API.
"""

import sys
from pathlib import Path
from typing import Callable, List

import httpx
import pytest


# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.deps import get_http_client  # noqa: E402
from app.routes import create_app  # noqa: E402
from app.settings import settings  # noqa: E402


class UpstreamRecorder:
    """
    MockTransport handler that records every request it receives and
    delegates the response to a swappable function.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.respond: Callable = self._default_response

    @staticmethod
    def _default_response(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": []})

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self.respond(request)

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "no upstream request was made"
        return self.requests[-1]


@pytest.fixture
def upstream() -> UpstreamRecorder:
    return UpstreamRecorder()


@pytest.fixture
def proxy_settings(monkeypatch):
    monkeypatch.setattr(settings, "google_api_key", "server-key", raising=False)
    monkeypatch.setattr(settings, "google_base_url", None, raising=False)
    monkeypatch.setattr(
        settings,
        "gemini_base_url",
        "https://generativelanguage.googleapis.com",
        raising=False,
    )
    monkeypatch.setattr(settings, "stripped_body_fields_raw", "provider,path", raising=False)
    monkeypatch.setattr(settings, "upstream_timeout", 600.0, raising=False)
    monkeypatch.setattr(settings, "access_codes_raw", None, raising=False)
    monkeypatch.setattr(settings, "hide_user_api_key", False, raising=False)
    return settings


@pytest.fixture
def app(proxy_settings, upstream):
    application = create_app()
    mock_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    application.dependency_overrides[get_http_client] = lambda: mock_client
    return application
