import httpx
from fastapi import Request

from .settings import ProxyConfig, settings


def create_http_client() -> httpx.AsyncClient:
    """
    Shared AsyncClient for upstream calls; redirects are relayed, not followed.
    """
    return httpx.AsyncClient(timeout=settings.upstream_timeout, follow_redirects=False)


async def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    FastAPI dependency returning the process-wide client created in the
    app lifespan. It is not closed per request because streamed response
    bodies outlive the endpoint function.
    """
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        client = create_http_client()
        request.app.state.http_client = client
    return client


def get_proxy_config() -> ProxyConfig:
    """
    Fresh configuration snapshot for each forwarded request.
    """
    return ProxyConfig.from_settings(settings)
