from __future__ import annotations

import enum
import logging
from typing import Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class FetchErrorKind(str, enum.Enum):
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"


class FetchError(RuntimeError):
    """A page could not be fetched. Never retried here; the caller decides."""

    def __init__(self, kind: FetchErrorKind, url: str, detail: str = "", status_code: Optional[int] = None) -> None:
        self.kind = kind
        self.url = url
        self.status_code = status_code
        msg = f"{kind.value} fetching {url}"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class Fetcher:
    """Single timed GET with a fixed identity header.

    Holds one pooled httpx.AsyncClient; use as an async context manager or call
    aclose() when done.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = float(timeout)
        self.headers = headers or {"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"}
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=self.headers,
            follow_redirects=True,
            transport=transport,
        )

    async def fetch(self, url: str) -> str:
        try:
            resp = await self._client.get(url)
        except httpx.TimeoutException as exc:
            raise FetchError(FetchErrorKind.TIMEOUT, url, str(exc)) from exc
        except httpx.HTTPError as exc:
            raise FetchError(FetchErrorKind.NETWORK_ERROR, url, str(exc)) from exc
        if not resp.is_success:
            raise FetchError(FetchErrorKind.HTTP_ERROR, url, status_code=resp.status_code)
        logger.debug("Fetched %s (%d bytes)", url, len(resp.content))
        return resp.text

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
