"""Practitioner directory lookups.

Plain request/response GETs next to the streaming search. These are idempotent,
so transient failures (network errors and 5xx) are retried with tenacity.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from .config import ApiSettings, settings
from .credentials import CredentialProvider, StaticTokenProvider
from .models import PractitionerDetail, PractitionerStats, PractitionerSummary

logger = logging.getLogger(__name__)


class DirectoryError(Exception):
    """Raised when a directory lookup fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code >= 500


class PractitionerDirectory:
    """Client for the practitioner and stats endpoints."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        credentials: CredentialProvider | None = None,
        *,
        config: ApiSettings | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._config = config or settings.api
        self._client = client
        self._owns_client = client is None
        self._credentials = credentials or StaticTokenProvider.from_settings(self._config)
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=10)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.request_timeout,
            )
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> PractitionerDirectory:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a JSON document, retrying transient failures.

        Raises:
            DirectoryError: If the request fails after retries or returns a 4xx
        """
        headers = {"Accept": "application/json"}
        token = self._credentials.get_token() if self._credentials is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url = f"{self._config.base_url}{path}"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._config.retry_attempts),
                wait=self._retry_wait,
                retry=retry_if_exception(_is_transient),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(f"Retrying GET {path} (attempt {attempt.retry_state.attempt_number})")
                    response = await self._get_client().get(url, params=params, headers=headers)
                    response.raise_for_status()
                    return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"GET {path} failed with HTTP {status}")
            raise DirectoryError(f"GET {path} failed: HTTP {status}", status_code=status) from e
        except httpx.HTTPError as e:
            logger.error(f"GET {path} failed: {e}")
            raise DirectoryError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise DirectoryError(f"GET {path} returned invalid JSON: {e}") from e

    async def get_practitioner(self, practitioner_id: str) -> PractitionerDetail:
        data = await self._get(f"/api/v1/practitioners/{practitioner_id}")
        return PractitionerDetail.model_validate(data)

    async def get_practitioner_summary(self, practitioner_id: str) -> PractitionerSummary:
        data = await self._get(f"/api/v1/practitioners/{practitioner_id}/summary")
        return PractitionerSummary.model_validate(data)

    async def list_practitioners(
        self,
        *,
        limit: int | None = None,
        offset: int | None = None,
        skills: list[str] | None = None,
        location: str | None = None,
    ) -> list[PractitionerDetail]:
        """List practitioners with optional filters.

        Args:
            limit: Page size
            offset: Page start
            skills: Skill names; each is sent as a repeated `skills` parameter
            location: Location filter

        Returns:
            List of PractitionerDetail
        """
        params: dict[str, Any] = {}
        if limit is not None:
            params["limit"] = limit
        if offset is not None:
            params["offset"] = offset
        if skills:
            params["skills"] = list(skills)
        if location:
            params["location"] = location

        data = await self._get("/api/v1/practitioners", params=params or None)
        if not isinstance(data, list):
            raise DirectoryError(f"Expected a list of practitioners, got {type(data).__name__}")
        return [PractitionerDetail.model_validate(item) for item in data]

    async def get_practitioner_stats(self) -> PractitionerStats:
        data = await self._get("/api/v1/stats/practitioners")
        return PractitionerStats.model_validate(data)
