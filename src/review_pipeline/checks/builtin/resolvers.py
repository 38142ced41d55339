"""
review-pipeline — HTTP link and DOI resolvers.

File: src/review_pipeline/checks/builtin/resolvers.py

Purpose
- Default network resolvers for ``links-resolve`` and ``doi-exists``, switched on
  with ``checks.resolve_network``. Without them both checks stay offline.

Functional requirements
- Outgoing requests are bounded by ``max_connections`` per event loop.
- A link resolves when HEAD (or GET, when HEAD is refused) ends below 400 after
  following redirects.
- A DOI resolves through doi.org, falling back to the OpenAlex works API.
- Transport failures count as "did not resolve"; they never raise into the check.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import Any, Final

import httpx
import structlog

from review_pipeline.checks.builtin.references import DOI_RESOLVER_SERVICE, LINK_RESOLVER_SERVICE

DOI_ORG_URL: Final[str] = "https://doi.org/"
OPENALEX_WORKS_URL: Final[str] = "https://api.openalex.org/works/"
DEFAULT_MAX_CONNECTIONS: Final[int] = 25
DEFAULT_REQUEST_TIMEOUT_SECONDS: Final[float] = 10.0
USER_AGENT: Final[str] = "review-pipeline/0.1 (+link and DOI checks)"

# Servers that refuse HEAD often still serve GET.
_RETRY_WITH_GET: Final[frozenset[int]] = frozenset({403, 405, 501})


class HttpResolver:
    """Resolves links and DOIs over HTTP with a shared outgoing-connection bound."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Any | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if max_connections <= 0:
            raise ValueError("max_connections must be > 0")
        self._timeout_seconds = float(timeout_seconds)
        self._max_connections = max_connections
        self._transport = transport
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._limiters: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore]
        self._limiters = weakref.WeakKeyDictionary()

    def services(self) -> dict[str, Any]:
        """Executor ``services`` entries wiring this resolver into the reference checks."""

        return {
            LINK_RESOLVER_SERVICE: self.resolve_link,
            DOI_RESOLVER_SERVICE: self.resolve_doi,
        }

    async def resolve_link(self, url: str) -> bool:
        async with self._limiter(), self._client() as client:
            return await self._reachable(client, url)

    async def resolve_doi(self, doi: str) -> bool:
        target = DOI_ORG_URL + doi
        async with self._limiter(), self._client() as client:
            if await self._reachable(client, target):
                return True
            return await self._reachable(client, OPENALEX_WORKS_URL + target)

    async def _reachable(self, client: httpx.AsyncClient, url: str) -> bool:
        try:
            response = await client.head(url)
            if response.status_code in _RETRY_WITH_GET:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            self._logger.debug(
                "http_resolver_request_failed",
                url=url,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        self._logger.debug("http_resolver_response", url=url, status_code=response.status_code)
        return response.status_code < 400

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        )

    def _limiter(self) -> asyncio.Semaphore:
        # asyncio primitives bind to one loop; run_sync starts a fresh loop per run.
        loop = asyncio.get_running_loop()
        limiter = self._limiters.get(loop)
        if limiter is None:
            limiter = asyncio.Semaphore(self._max_connections)
            self._limiters[loop] = limiter
        return limiter


__all__ = [
    "DEFAULT_MAX_CONNECTIONS",
    "DEFAULT_REQUEST_TIMEOUT_SECONDS",
    "DOI_ORG_URL",
    "OPENALEX_WORKS_URL",
    "HttpResolver",
]
