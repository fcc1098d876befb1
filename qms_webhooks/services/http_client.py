from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Mapping

import httpx


@dataclass(frozen=True)
class HttpResult:
    ok: bool
    status_code: int | None
    body: str | None

    error_code: str | None = None
    error_message: str | None = None

    elapsed_ms: int | None = None
    # as put on the wire, defaults merged in
    request_headers: dict[str, str] | None = None


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars]


class WebhookHttpClient:
    """
    Shared HTTP client for subscriber callbacks.

    - Uses one AsyncClient instance (connection pooling).
    - Every call runs under a hard deadline; hitting it cancels the request.
    - Does NOT retry; the delivery ledger owns retries.
    - Never raises for transport problems, returns HttpResult instead.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        max_response_body_chars: int = 5000,
        default_headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._deadline = timeout_seconds
        self._max_body = max_response_body_chars
        self._default_headers = dict(default_headers or {})
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
            follow_redirects=False,
        )

    @property
    def timeout_seconds(self) -> float:
        return self._deadline

    async def aclose(self) -> None:
        await self._client.aclose()

    async def post_bytes(
        self,
        *,
        url: str,
        content: bytes,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResult:
        # Merge headers (caller wins)
        h = dict(self._default_headers)
        if headers:
            h.update(dict(headers))

        started = time.perf_counter()
        try:
            status_code, reason, body = await asyncio.wait_for(
                self._post_capped(url, content, h),
                timeout=self._deadline,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            return HttpResult(
                ok=False,
                status_code=None,
                body=None,
                error_code="TIMEOUT",
                error_message=f"timeout after {self._deadline:g}s" + (f": {e}" if str(e) else ""),
                elapsed_ms=_elapsed_ms(started),
                request_headers=h,
            )
        except (httpx.RequestError, httpx.InvalidURL) as e:
            # DNS errors, connection refused, TLS, etc.
            return HttpResult(
                ok=False,
                status_code=None,
                body=None,
                error_code="REQUEST_ERROR",
                error_message=str(e) or type(e).__name__,
                elapsed_ms=_elapsed_ms(started),
                request_headers=h,
            )

        elapsed_ms = _elapsed_ms(started)

        if 200 <= status_code < 300:
            return HttpResult(
                ok=True,
                status_code=status_code,
                body=body,
                elapsed_ms=elapsed_ms,
                request_headers=h,
            )

        return HttpResult(
            ok=False,
            status_code=status_code,
            body=body,
            error_code=f"HTTP_{status_code}",
            error_message=f"HTTP {status_code}: {reason}".rstrip(": "),
            elapsed_ms=elapsed_ms,
            request_headers=h,
        )

    async def _post_capped(self, url: str, content: bytes, headers: dict[str, str]) -> tuple[int, str, str]:
        # streamed so an oversized response never sits in memory whole
        async with self._client.stream("POST", url, content=content, headers=headers) as resp:
            body = await _read_capped(resp, max_chars=self._max_body)
            return resp.status_code, resp.reason_phrase, body


async def _read_capped(resp: httpx.Response, *, max_chars: int) -> str:
    # utf-8 needs at most 4 bytes per char
    budget = max_chars * 4
    chunks: list[bytes] = []
    size = 0
    async for chunk in resp.aiter_bytes():
        chunks.append(chunk)
        size += len(chunk)
        if size >= budget:
            break
    raw = b"".join(chunks)[:budget]
    return _cap_text(raw.decode(resp.encoding or "utf-8", errors="replace"), max_chars=max_chars)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
