"""
Google Generative Language API passthrough:
- /api/google/{path}
- /api/custom_{id}/google/{path}

The request body is stripped of the chat client's routing metadata, the
key and base URL are resolved, and the upstream response is relayed
with its status, headers and (streamed) body.
"""

import uuid
from dataclasses import asdict
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from ..auth import authenticate
from ..deps import get_http_client, get_proxy_config
from ..endpoint import (
    CUSTOM_CONFIG_HEADER,
    GOOGLE_PATH_PREFIX,
    build_upstream_url,
    decode_custom_config,
    resolve_api_key,
    resolve_base_url,
    resolve_subpath,
)
from ..errors import bad_gateway, bad_request, gateway_timeout, internal_error, unauthorized
from ..log_sanitizer import preview_text, sanitize_url_for_log
from ..logging_config import logger
from ..payload import InvalidJSONBody, encode_upstream_body, parse_json_body, strip_fields
from ..request_body import BodyReadError, SingleReadBody
from ..settings import ProxyConfig
from ..upstream import (
    UpstreamRequestError,
    build_upstream_headers,
    open_upstream,
    relay_upstream_response,
)

FORWARDED_METHODS = ["GET", "POST", "OPTIONS"]

router = APIRouter(tags=["google"])


class GoogleForwardingHandler:
    """
    Forwards one inbound request to the Generative Language API.

    Configuration and the HTTP client are injected so the handler never
    touches process-wide state. `deadline` overrides the configured
    upstream timeout for this handler.
    """

    def __init__(
        self,
        config: ProxyConfig,
        client: httpx.AsyncClient,
        *,
        deadline: Optional[float] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.deadline = deadline if deadline is not None else config.upstream_timeout

    async def handle(self, request: Request, subpath: Optional[str] = None) -> Response:
        if request.method == "OPTIONS":
            return JSONResponse({"body": "OK"}, status_code=200)

        try:
            return await self._forward(request, subpath)
        except UpstreamRequestError as exc:
            details = {"url": exc.url}
            if exc.timed_out:
                return gateway_timeout(str(exc), details=details)
            return bad_gateway(str(exc), details=details)
        except Exception:
            error_id = uuid.uuid4().hex
            logger.exception(
                "[Google] unexpected error %s %s (error_id=%s)",
                request.method,
                request.url.path,
                error_id,
            )
            return internal_error(
                "Failed to forward request", details={"error_id": error_id}
            )

    async def _forward(self, request: Request, subpath: Optional[str]) -> Response:
        headers = request.headers
        custom_config = decode_custom_config(headers.get(CUSTOM_CONFIG_HEADER))

        auth_result = authenticate(
            headers,
            self.config,
            fallback_api_key=custom_config.api_key if custom_config else "",
        )
        if auth_result.error:
            logger.info("[Google] rejected %s %s: %s", request.method, request.url.path, auth_result.msg)
            return unauthorized(auth_result.msg or "unauthorized", details=asdict(auth_result))

        api_key = resolve_api_key(
            headers, auth_result, self.config, custom_config=custom_config
        )
        base_url = resolve_base_url(
            headers,
            self.config,
            use_server_config=auth_result.use_server_config,
            custom_config=custom_config,
        )
        path = resolve_subpath(request.url.path, subpath)
        url = build_upstream_url(base_url, path, request.query_params.multi_items())

        try:
            raw_body = await SingleReadBody(request).read_text()
        except BodyReadError as exc:
            logger.warning("[Google] failed to read body: %s", exc)
            return bad_request("Failed to read body")

        logger.debug("[Google] raw body: %s", preview_text(raw_body))

        try:
            parsed = parse_json_body(raw_body)
        except InvalidJSONBody as exc:
            logger.warning("[Google] invalid JSON body: %s", exc)
            return bad_request("Invalid JSON")

        content = encode_upstream_body(
            strip_fields(parsed, self.config.stripped_body_fields)
        )
        logger.debug(
            "[Google] forwarding %s %s payload=%s",
            request.method,
            sanitize_url_for_log(url),
            preview_text(content.decode("utf-8")) if content else None,
        )

        upstream_resp = await open_upstream(
            client=self.client,
            method=request.method,
            url=url,
            headers=build_upstream_headers(api_key),
            content=content,
            deadline=self.deadline,
        )
        return relay_upstream_response(upstream_resp)


def get_forwarding_handler(
    config: ProxyConfig = Depends(get_proxy_config),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> GoogleForwardingHandler:
    return GoogleForwardingHandler(config, client)


@router.api_route(f"{GOOGLE_PATH_PREFIX}/{{path:path}}", methods=FORWARDED_METHODS)
async def forward_google(
    path: str,
    request: Request,
    handler: GoogleForwardingHandler = Depends(get_forwarding_handler),
) -> Response:
    return await handler.handle(request, subpath=path)


@router.api_route(
    "/api/custom_{custom_id}/google/{rest:path}", methods=FORWARDED_METHODS
)
async def forward_custom_google(
    custom_id: str,
    rest: str,
    request: Request,
    handler: GoogleForwardingHandler = Depends(get_forwarding_handler),
) -> Response:
    """
    Custom-provider route: the upstream path is recovered from the URL itself.
    """
    return await handler.handle(request)


__all__ = ["GoogleForwardingHandler", "get_forwarding_handler", "router"]
