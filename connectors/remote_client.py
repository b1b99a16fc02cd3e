"""
RemoteApiClient — resilient httpx wrapper for one paginated, rate-limited
third-party REST API.

Handles:
  • bearer-token auth with one lazy refresh per request on 401
  • 429 Too Many Requests (respects Retry-After, otherwise exponential backoff)
  • one retry of idempotent requests after a transport failure
  • lazy, restartable pagination (``Link: rel="next"`` / ``X-Next-Page``)
  • chunked upload through an upload-session endpoint, aborted on failure
  • mapping of every non-2xx response onto the ``ConnectorError`` taxonomy
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol

import httpx

from connectors.errors import (
    ConnectorError,
    InvalidInput,
    NotAuthenticated,
    NotAuthorized,
    NotFound,
    RemoteApiFailure,
    TransportFailure,
)
from utils.schemas import utcnow

logger = logging.getLogger(__name__)

_IDEMPOTENT_METHODS = {"GET", "HEAD", "OPTIONS", "PUT", "DELETE"}

# Async callback receiving (chunks_sent, chunks_total).
ChunkCallback = Callable[[int, int], Awaitable[None]]


class TokenSource(Protocol):
    async def token(self) -> str: ...

    async def can_refresh(self) -> bool: ...

    async def refresh(self) -> str: ...


@dataclass
class RetryPolicy:
    max_retries: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    transport_retry_delay: float = 0.5

    def rate_limit_delay(self, attempt: int, retry_after: Optional[str]) -> float:
        """Seconds to wait before rate-limit retry number ``attempt`` (0-based)."""
        if retry_after:
            wait = _parse_retry_after(retry_after)
            if wait is not None:
                return min(wait, self.backoff_max)
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)


def _parse_retry_after(value: str) -> Optional[float]:
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        # RFC 2822 "-0000" dates parse naive; they are UTC
        when = when.replace(tzinfo=timezone.utc)
    return max((when - utcnow()).total_seconds(), 0.0)


def _sanitize_for_log(value: object) -> str:
    """Replace newlines so remote text cannot forge log lines."""
    return str(value).replace("\n", "\\n").replace("\r", "\\r")


def remote_message(response: httpx.Response) -> str:
    """Best-effort extraction of the provider's error message."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        for key in ("message", "error_description", "error"):
            value = body.get(key)
            if value:
                return value if isinstance(value, str) else str(value)
    return str(body)[:500]


def error_from_response(response: httpx.Response, resource: str = "") -> ConnectorError:
    """Classify a non-2xx response into the shared taxonomy."""
    status = response.status_code
    message = remote_message(response)
    resource = resource or response.request.url.path
    if status == 401:
        return NotAuthenticated(message or "Not authenticated")
    if status == 403:
        return NotAuthorized(resource)
    if status == 404:
        return NotFound(resource)
    if status == 429 or status >= 500:
        return RemoteApiFailure(status, message)
    if 400 <= status < 500:
        return InvalidInput(message or f"HTTP {status}")
    return RemoteApiFailure(status, message)


class RemoteApiClient:
    """
    Async client bound to one API base URL.

    Use as an async context manager::

        async with RemoteApiClient(base_url, token_source=src) as api:
            project = await api.get_json("/projects/42")
    """

    def __init__(
        self,
        base_url: str,
        *,
        token_source: Optional[TokenSource] = None,
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        page_size: int = 100,
        chunk_size: int = 1024 * 1024,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_source = token_source
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.page_size = page_size
        self.chunk_size = chunk_size
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "RemoteApiClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            headers=self._headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── Core request loop ───────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        idempotent: Optional[bool] = None,
        resource: str = "",
        check: bool = True,
    ) -> httpx.Response:
        """
        Send one logical request.

        With ``check=False`` non-2xx responses (other than 429, which is
        always retried) are returned instead of raised.

        Raises
        ------
        ConnectorError subclass on any failure (see module docstring).
        """
        if self._client is None:
            raise RuntimeError("RemoteApiClient used outside 'async with'")

        method = method.upper()
        if idempotent is None:
            idempotent = method in _IDEMPOTENT_METHODS
        safe_path = _sanitize_for_log(path)
        rate_attempts = 0
        transport_retried = False

        while True:
            request_headers = dict(headers or {})
            if self.token_source is not None:
                request_headers["Authorization"] = f"Bearer {await self.token_source.token()}"

            try:
                response = await self._client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    data=data,
                    content=content,
                    headers=request_headers,
                )
            except httpx.TransportError as exc:
                if idempotent and not transport_retried:
                    transport_retried = True
                    logger.info(
                        "Transport error on %s %s: %s — retrying once in %.1fs",
                        method, safe_path, _sanitize_for_log(exc), self.retry.transport_retry_delay,
                    )
                    await asyncio.sleep(self.retry.transport_retry_delay)
                    continue
                logger.warning("Transport error on %s %s: %s", method, safe_path, _sanitize_for_log(exc))
                raise TransportFailure(
                    exc.__class__.__name__, context={"operation": f"{method} {path}"}
                ) from exc

            if response.status_code == 429:
                if rate_attempts < self.retry.max_retries:
                    wait = self.retry.rate_limit_delay(rate_attempts, response.headers.get("Retry-After"))
                    rate_attempts += 1
                    logger.info(
                        "HTTP 429 from %s — retry %d/%d in %.1fs",
                        safe_path, rate_attempts, self.retry.max_retries, wait,
                    )
                    await asyncio.sleep(wait)
                    continue
                logger.warning("HTTP 429 from %s — exhausted %d retries", safe_path, self.retry.max_retries)
                raise RemoteApiFailure(429, remote_message(response), context={"operation": f"{method} {path}"})

            if (
                response.status_code == 401
                and self.token_source is not None
                and await self.token_source.can_refresh()
            ):
                logger.info("HTTP 401 from %s — refreshing token", safe_path)
                await self.token_source.refresh()
                continue

            if response.is_success or not check:
                return response

            error = error_from_response(response, resource)
            if response.status_code >= 500:
                logger.error(
                    "HTTP %d from %s %s — %s",
                    response.status_code, method, safe_path, _sanitize_for_log(remote_message(response)),
                )
            raise error.with_context(operation=f"{method} {path}")

    async def get_json(self, path: str, **kwargs: Any) -> Any:
        response = await self.request("GET", path, **kwargs)
        return response.json()

    async def post_json(self, path: str, payload: Any, **kwargs: Any) -> Any:
        response = await self.request("POST", path, json=payload, **kwargs)
        return response.json() if response.content else None

    # ── Pagination ──────────────────────────────────────────────────────

    def paginate(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        limit: Optional[int] = None,
        resource: str = "",
    ) -> "Paginator":
        return Paginator(self, path, params or {}, limit=limit, page_size=self.page_size, resource=resource)

    # ── Chunked upload ──────────────────────────────────────────────────

    async def upload_chunked(
        self,
        sessions_path: str,
        data: bytes,
        *,
        filename: str,
        metadata: Optional[Dict[str, Any]] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Dict[str, Any]:
        """
        Upload ``data`` through the provider's upload-session endpoint.

        ``POST sessions_path`` opens a session, each chunk is a ``PUT`` with a
        ``Content-Range`` header, ``POST …/complete`` commits the file.  Any
        failure aborts the session with ``DELETE`` and re-raises, so a file is
        either fully committed or not at all.
        """
        size = len(data)
        total = max(1, math.ceil(size / self.chunk_size))
        opened = await self.post_json(
            sessions_path,
            {"file_name": filename, "size": size, "chunks": total, **(metadata or {})},
            idempotent=False,
        )
        upload_id = str((opened or {}).get("id", ""))
        if not upload_id:
            raise RemoteApiFailure(502, "upload session response has no id", context={"upload": filename})
        session_path = f"{sessions_path.rstrip('/')}/{upload_id}"

        chunk_no = 0
        try:
            for chunk_no in range(1, total + 1):
                start = (chunk_no - 1) * self.chunk_size
                chunk = data[start:start + self.chunk_size]
                end = start + max(len(chunk), 1) - 1
                await self.request(
                    "PUT",
                    session_path,
                    content=chunk,
                    headers={
                        "Content-Type": "application/octet-stream",
                        "Content-Range": f"bytes {start}-{end}/{size}",
                    },
                )
                if on_chunk is not None:
                    await on_chunk(chunk_no, total)
            completed = await self.post_json(f"{session_path}/complete", {}, idempotent=False)
        except ConnectorError as exc:
            logger.warning(
                "Chunked upload of %s failed at chunk %d/%d — aborting session %s",
                _sanitize_for_log(filename), chunk_no, total, upload_id,
            )
            await self._abort_upload(session_path)
            raise exc.with_context(upload=filename, chunk=f"{chunk_no}/{total}")

        logger.info("Uploaded %s in %d chunk(s) (%d bytes)", _sanitize_for_log(filename), total, size)
        return completed or {}

    async def _abort_upload(self, session_path: str) -> None:
        try:
            await self.request("DELETE", session_path)
        except ConnectorError as exc:
            # The session expires on the provider side if the DELETE is lost
            logger.warning("Could not abort upload session %s: %s", session_path, exc)


class Paginator:
    """
    Lazy, finite, restartable async iterable over a paginated list endpoint.

    Each ``async for`` starts from the first page.  Pages are fetched only
    when the previous page is exhausted, so breaking early (or reaching
    ``limit``) never requests further pages.
    """

    def __init__(
        self,
        client: RemoteApiClient,
        path: str,
        params: Dict[str, Any],
        *,
        limit: Optional[int],
        page_size: int,
        resource: str = "",
    ) -> None:
        self._client = client
        self._path = path
        self._params = dict(params)
        self._limit = limit
        self._page_size = page_size
        self._resource = resource

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        if self._limit is not None and self._limit <= 0:
            return
        yielded = 0
        url: Optional[str] = self._path
        params: Optional[Dict[str, Any]] = {"per_page": self._page_size, **self._params}
        while url:
            response = await self._client.request("GET", url, params=params, resource=self._resource)
            items = response.json()
            if not isinstance(items, list):
                raise RemoteApiFailure(response.status_code, "expected a JSON list from paginated endpoint")
            for item in items:
                yield item
                yielded += 1
                if self._limit is not None and yielded >= self._limit:
                    return
            url, params = self._next_page(response, params)

    def _next_page(
        self,
        response: httpx.Response,
        params: Optional[Dict[str, Any]],
    ) -> tuple[Optional[str], Optional[Dict[str, Any]]]:
        next_link = response.links.get("next", {}).get("url")
        if next_link:
            # The link already carries every query parameter
            return next_link, None
        next_page = response.headers.get("X-Next-Page", "").strip()
        if next_page:
            return self._path, {**(params or self._params), "per_page": self._page_size, "page": next_page}
        return None, None

    async def collect(self) -> List[Any]:
        return [item async for item in self]
