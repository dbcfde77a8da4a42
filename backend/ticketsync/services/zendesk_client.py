"""Zendesk API client with request pacing and rate-limit retry."""

import asyncio
import logging
from typing import Any

import httpx

from ticketsync.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class ZendeskClientError(Exception):
    """Base exception for Zendesk client errors."""

    pass


class ZendeskRateLimitError(ZendeskClientError):
    """Raised when the API keeps answering 429 after all retries."""

    pass


class ZendeskClient:
    """
    Client for the Zendesk Support REST API (v2).

    Features:
    - Fixed delay after every successful request to stay under the per-minute quota
    - 429 handling driven by the server's Retry-After header (bounded retries)
    - No retry for any other HTTP or transport error
    """

    def __init__(
        self,
        base_url: str = settings.zendesk_base_url,
        email: str = settings.zendesk_email,
        api_token: str = settings.zendesk_api_token,
        request_delay: float = settings.request_delay_seconds,
        max_retries: int = settings.max_retries,
        default_retry_after: int = settings.default_retry_after_seconds,
        timeout: float = settings.request_timeout_seconds,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.email = email
        self.request_delay = request_delay
        self.max_retries = max_retries
        self.default_retry_after = default_retry_after
        self.timeout = timeout
        self.transport = transport

        # API token auth: "{email}/token" as the username
        self.auth = httpx.BasicAuth(f"{email}/token", api_token)
        self.headers: dict[str, str] = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def url_for(self, path: str) -> str:
        """Build an absolute API URL from a path like ``groups.json``."""
        return f"{self.base_url}/{path.lstrip('/')}"

    def _retry_after(self, response: httpx.Response) -> float:
        value = response.headers.get("Retry-After")
        try:
            return float(value) if value is not None else float(self.default_retry_after)
        except ValueError:
            return float(self.default_retry_after)

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await client.get(url, params=params)
        except httpx.RequestError as e:
            raise ZendeskClientError(f"Request error for {url}: {e}") from e

    async def _request_with_retry(
        self,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """GET a JSON document, retrying only on 429."""
        async with httpx.AsyncClient(
            timeout=self.timeout,
            auth=self.auth,
            headers=self.headers,
            transport=self.transport,
        ) as client:
            retries = 0
            while True:
                logger.debug(f"Fetching {url} params={params}")
                response = await self._get(client, url, params)

                if response.status_code == 429:
                    if retries >= self.max_retries:
                        raise ZendeskRateLimitError(
                            f"Still rate limited after {self.max_retries} retries: {url}"
                        )
                    wait_time = self._retry_after(response)
                    retries += 1
                    logger.warning(
                        f"Rate limited, waiting {wait_time}s before retry "
                        f"({retries}/{self.max_retries})"
                    )
                    await asyncio.sleep(wait_time)
                    continue

                try:
                    response.raise_for_status()
                except httpx.HTTPStatusError as e:
                    raise ZendeskClientError(f"HTTP error: {e}") from e

                payload = response.json()
                break

        # Pace requests so a whole sync run stays under the quota
        if self.request_delay > 0:
            await asyncio.sleep(self.request_delay)

        return payload

    async def fetch_page(
        self,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> tuple[dict[str, Any], str | None]:
        """
        Fetch one page of a list endpoint.

        Args:
            url: Absolute URL (either built with ``url_for`` or a ``next_page`` link)
            params: Query parameters (leave empty when following ``next_page``)

        Returns:
            Tuple of (decoded JSON payload, next page URL or None)
        """
        payload = await self._request_with_retry(url, params)
        return payload, payload.get("next_page")
