"""Pitch resume generation for a matched practitioner.

A single POST per resume. Generation runs an LLM on the backend and is not
idempotent, so failures are reported to the caller instead of retried.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Iterable

import httpx

from .config import ApiSettings, settings
from .credentials import CredentialProvider, StaticTokenProvider
from .models import PitchResumeRequest, PitchResumeResponse

logger = logging.getLogger(__name__)

PITCH_RESUME_PATH = "/api/v1/pitch-resume"
DEFAULT_CLIENT_NAME = "Valued Client"
GENERATION_FAILED_MESSAGE = "Failed to generate pitch resume"

_CLIENT_PATTERNS = [
    re.compile(r"client[:\s]+([^.]+)", re.IGNORECASE),
    re.compile(r"for ([A-Z][a-z]+ [A-Z][a-z]+)"),
    re.compile(r"working with ([A-Z][a-z]+ [A-Z][a-z]+)"),
    re.compile(r"at ([A-Z][a-z]+ [A-Z][a-z]+)"),
]

_ROLE_PATTERNS = [
    re.compile(r"role[:\s]+([^.]+)", re.IGNORECASE),
    re.compile(r"position[:\s]+([^.]+)", re.IGNORECASE),
    re.compile(r"looking for ([^.]+)", re.IGNORECASE),
    re.compile(r"need ([^.]+)", re.IGNORECASE),
]


class PitchResumeError(Exception):
    """Raised when the backend cannot generate a pitch resume."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


def _first_group(patterns: Iterable[re.Pattern], text: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def extract_client_from_query(query: str) -> str | None:
    """Client name mentioned in a search query ("client: Acme", "for Acme Bank")."""
    return _first_group(_CLIENT_PATTERNS, query)


def extract_role_from_query(query: str) -> str:
    """Role description from a search query, or the whole query if none is named."""
    return _first_group(_ROLE_PATTERNS, query) or query


class PitchResumeService:
    """Client for the pitch resume endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        credentials: CredentialProvider | None = None,
        *,
        config: ApiSettings | None = None,
    ) -> None:
        self._config = config or settings.api
        self._client = client
        self._owns_client = client is None
        self._credentials = credentials or StaticTokenProvider.from_settings(self._config)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.request_timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> PitchResumeService:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def generate(self, request: PitchResumeRequest) -> PitchResumeResponse:
        """Generate a tailored pitch resume.

        Args:
            request: Practitioner, client and role to tailor the resume to

        Returns:
            PitchResumeResponse with the generated text and highlights

        Raises:
            PitchResumeError: If the request fails or the response is not a pitch resume
        """
        headers = {"Accept": "application/json"}
        token = self._credentials.get_token() if self._credentials is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url = f"{self._config.base_url}{PITCH_RESUME_PATH}"
        logger.info(f"Generating pitch resume for {request.practitioner_id} ({request.client_name})")

        try:
            response = await self._get_client().post(url, json=request.model_dump(), headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Pitch resume request failed: {e}")
            raise PitchResumeError(str(e) or GENERATION_FAILED_MESSAGE) from e

        if not response.is_success:
            details = self._error_body(response)
            detail = details.get("detail") if isinstance(details, dict) else None
            message = detail if isinstance(detail, str) and detail else GENERATION_FAILED_MESSAGE
            logger.error(f"Pitch resume generation failed with HTTP {response.status_code}: {message}")
            raise PitchResumeError(message, status_code=response.status_code, details=details)

        try:
            result = PitchResumeResponse.model_validate(response.json())
        except ValueError as e:
            raise PitchResumeError(f"Invalid pitch resume response: {e}") from e

        logger.info(f"Pitch resume generated in {result.processing_time_ms:.0f}ms")
        return result

    @staticmethod
    def _error_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text or None

    async def generate_simple(
        self,
        practitioner_id: str,
        client_name: str,
        role_description: str,
        key_requirements: Iterable[str] = (),
        tone: str = "professional",
        include_contact_info: bool = True,
    ) -> PitchResumeResponse:
        return await self.generate(PitchResumeRequest(
            practitioner_id=practitioner_id,
            client_name=client_name,
            role_description=role_description,
            key_requirements=list(key_requirements),
            tone=tone,
            include_contact_info=include_contact_info,
        ))

    async def generate_from_query(
        self,
        practitioner_id: str,
        query: str,
        client_name: str | None = None,
        key_requirements: Iterable[str] = (),
    ) -> PitchResumeResponse:
        """Generate a pitch resume using the client and role named in a search query.

        An explicit `client_name` wins over one found in the query; without
        either, the resume is addressed to a generic client.
        """
        client = client_name or extract_client_from_query(query) or DEFAULT_CLIENT_NAME
        return await self.generate(PitchResumeRequest(
            practitioner_id=practitioner_id,
            client_name=client,
            role_description=extract_role_from_query(query),
            key_requirements=list(key_requirements),
        ))
