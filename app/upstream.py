from collections.abc import AsyncIterator
from typing import Dict, Optional

import anyio
import httpx
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from .log_sanitizer import preview_text, sanitize_url_for_log
from .logging_config import logger


# Never relayed: the browser would pop a native credential prompt for
# www-authenticate, and the framing headers belong to the upstream hop.
_DROPPED_RESPONSE_HEADERS = {
    "www-authenticate",
    "connection",
    "keep-alive",
    "transfer-encoding",
    "content-length",
}


class UpstreamRequestError(Exception):
    """
    The upstream call failed before a response could be relayed
    (transport error or deadline expiry). Never retried.
    """

    def __init__(self, *, message: str, url: str, timed_out: bool = False) -> None:
        super().__init__(message)
        self.url = url
        self.timed_out = timed_out


def build_upstream_headers(api_key: str) -> Dict[str, str]:
    """
    Headers sent to the Generative Language API. Nothing from the inbound
    request is forwarded besides the resolved key.
    """
    return {
        "Content-Type": "application/json",
        "Cache-Control": "no-store",
        "x-goog-api-key": api_key,
    }


async def open_upstream(
    *,
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Dict[str, str],
    content: Optional[bytes],
    deadline: float,
) -> httpx.Response:
    """
    Send the request and wait for the upstream response under one deadline.

    Successful responses come back unread so the body can be streamed.
    Anything else is buffered and logged here, inside the deadline, and
    handed back as-is for relaying. Redirects are never followed.
    """
    safe_url = sanitize_url_for_log(url)
    request = client.build_request(method, url, headers=headers, content=content)
    resp: Optional[httpx.Response] = None
    try:
        with anyio.fail_after(deadline):
            resp = await client.send(request, stream=True, follow_redirects=False)
            if not resp.is_success:
                await resp.aread()
    except TimeoutError as exc:
        if resp is not None:
            await resp.aclose()
        logger.warning("Upstream %s %s exceeded deadline of %ss", method, safe_url, deadline)
        raise UpstreamRequestError(
            message=f"Upstream did not answer within {deadline} seconds",
            url=safe_url,
            timed_out=True,
        ) from exc
    except httpx.TimeoutException as exc:
        if resp is not None:
            await resp.aclose()
        logger.warning("Upstream %s %s timed out: %s", method, safe_url, exc)
        raise UpstreamRequestError(
            message="Upstream request timed out", url=safe_url, timed_out=True
        ) from exc
    except httpx.HTTPError as exc:
        if resp is not None:
            await resp.aclose()
        logger.warning("Upstream %s %s transport error: %s", method, safe_url, exc)
        raise UpstreamRequestError(
            message=f"Upstream request failed: {exc}", url=safe_url
        ) from exc

    if not resp.is_success:
        logger.error(
            "Upstream returned error %s for %s %s; response=%s",
            resp.status_code,
            method,
            safe_url,
            preview_text(resp.text),
        )
    else:
        logger.info(
            "Upstream %s %s connected with status %s", method, safe_url, resp.status_code
        )
    return resp


async def _iter_upstream_body(resp: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in resp.aiter_raw():
            if chunk:
                yield chunk
    except httpx.HTTPError as exc:
        # Status and headers are already sent; end the body where it broke.
        logger.warning(
            "Upstream stream from %s interrupted: %s",
            sanitize_url_for_log(str(resp.request.url)),
            exc,
        )
    finally:
        await resp.aclose()


def relay_upstream_response(resp: httpx.Response) -> Response:
    """
    Turn the upstream response into ours: same status, same headers minus
    www-authenticate and hop-by-hop framing, X-Accel-Buffering forced off.

    Unread (2xx) bodies stream through as raw bytes, so any
    content-encoding stays valid. Buffered (error) bodies were decoded by
    httpx, so their content-encoding header is dropped as well.
    """
    buffered = resp.is_stream_consumed
    dropped = _DROPPED_RESPONSE_HEADERS | ({"content-encoding"} if buffered else set())

    if buffered:
        response: Response = Response(content=resp.content, status_code=resp.status_code)
    else:
        response = StreamingResponse(
            _iter_upstream_body(resp),
            status_code=resp.status_code,
            background=BackgroundTask(resp.aclose),
        )

    for name, value in resp.headers.multi_items():
        if name.lower() in dropped:
            continue
        response.headers.append(name, value)
    response.headers["X-Accel-Buffering"] = "no"
    return response


__all__ = [
    "UpstreamRequestError",
    "build_upstream_headers",
    "open_upstream",
    "relay_upstream_response",
]
