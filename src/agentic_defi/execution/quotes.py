"""HTTP client for the swap/bridge quote service.

Posts a :class:`SwapQuoteRequest` to ``{base_url}/swap/quote`` and
validates the JSON response into a :class:`SwapQuote`.  Every transport,
HTTP status and validation failure surfaces as
:class:`QuoteServiceError`.

Usage::

    async with HttpQuoteService("http://localhost:8000") as quotes:
        quote = await quotes.request(req)
"""

from __future__ import annotations

import logging

import httpx
import pydantic

from agentic_defi.core.errors import QuoteServiceError
from agentic_defi.core.models import SwapQuote, SwapQuoteRequest

logger = logging.getLogger(__name__)

QUOTE_PATH = "/swap/quote"


class HttpQuoteService:
    """Async quote client backed by a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    # -- Lifecycle -----------------------------------------------------------

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
            self._owns_client = True

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpQuoteService:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- Requests ------------------------------------------------------------

    async def request(self, req: SwapQuoteRequest) -> SwapQuote:
        await self.open()
        assert self._client is not None

        url = f"{self._base_url}{QUOTE_PATH}"
        body = req.model_dump(exclude_none=True)
        try:
            resp = await self._client.post(url, json=body)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise QuoteServiceError(
                f"Quote service returned {exc.response.status_code}: "
                f"{exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise QuoteServiceError(f"Quote service unreachable: {exc}") from exc

        try:
            quote = SwapQuote.model_validate(resp.json())
        except (ValueError, pydantic.ValidationError) as exc:
            raise QuoteServiceError(f"Malformed quote response: {exc}") from exc

        logger.debug(
            "Quote received: %s -> %s chain=%s success=%s steps=%d",
            req.token_in,
            req.token_out,
            req.chain,
            quote.success,
            len(quote.route.steps),
        )
        return quote
