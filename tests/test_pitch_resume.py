"""
Tests for pitch resume generation and query extraction helpers.
"""
import json

import httpx
import pytest

from client.config import ApiSettings
from client.credentials import StaticTokenProvider
from client.models import PitchResumeRequest
from client.pitch_resume import (
    DEFAULT_CLIENT_NAME,
    PitchResumeError,
    PitchResumeService,
    extract_client_from_query,
    extract_role_from_query,
)

RESPONSE = {
    "practitioner_id": "p1",
    "client_name": "Acme Insurance",
    "role_description": "COBOL developer",
    "pitch_resume": "Ada brings fifteen years of mainframe delivery...",
    "key_highlights": ["Led DB2 migration", "z/OS performance tuning"],
    "processing_time_ms": 2150.5,
}


def make_service(handler, token=None) -> PitchResumeService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PitchResumeService(
        client,
        StaticTokenProvider(token),
        config=ApiSettings(base_url="http://backend.test"),
    )


class TestQueryExtraction:

    @pytest.mark.parametrize("query, client", [
        ("client: Acme Bank. Need a COBOL developer", "Acme Bank"),
        ("COBOL developer for Acme Insurance", "Acme Insurance"),
        ("working with Globex Corp on a DB2 upgrade", "Globex Corp"),
        ("mainframe modernization", None),
    ])
    def test_client(self, query, client):
        assert extract_client_from_query(query) == client

    @pytest.mark.parametrize("query, role", [
        ("Role: Senior mainframe architect. Remote", "Senior mainframe architect"),
        ("We are looking for a CICS specialist", "a CICS specialist"),
        ("client: Acme Bank. Need COBOL developer", "COBOL developer"),
        ("mainframe modernization", "mainframe modernization"),
    ])
    def test_role(self, query, role):
        assert extract_role_from_query(query) == role


class TestGenerate:

    @pytest.mark.asyncio
    async def test_generate(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=RESPONSE)

        async with make_service(handler, token="tok") as service:
            result = await service.generate(PitchResumeRequest(
                practitioner_id="p1",
                client_name="Acme Insurance",
                role_description="COBOL developer",
                key_requirements=["COBOL", "DB2"],
            ))

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/v1/pitch-resume"
        assert request.headers["authorization"] == "Bearer tok"
        assert json.loads(request.content) == {
            "practitioner_id": "p1",
            "client_name": "Acme Insurance",
            "role_description": "COBOL developer",
            "key_requirements": ["COBOL", "DB2"],
            "tone": "professional",
            "include_contact_info": True,
        }
        assert result.key_highlights == ["Led DB2 migration", "z/OS performance tuning"]
        assert result.error is None

    @pytest.mark.asyncio
    async def test_generate_simple_passes_options(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=RESPONSE)

        async with make_service(handler) as service:
            await service.generate_simple("p1", "Acme", "Architect", ["IMS"], tone="concise", include_contact_info=False)

        assert bodies[0]["tone"] == "concise"
        assert bodies[0]["include_contact_info"] is False
        assert bodies[0]["key_requirements"] == ["IMS"]

    @pytest.mark.asyncio
    async def test_generate_from_query_extracts_client_and_role(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=RESPONSE)

        async with make_service(handler) as service:
            await service.generate_from_query("p1", "client: Acme Bank. Need COBOL developer")
            await service.generate_from_query("p1", "mainframe modernization")
            await service.generate_from_query("p1", "COBOL developer for Acme Insurance", client_name="Initech")

        assert (bodies[0]["client_name"], bodies[0]["role_description"]) == ("Acme Bank", "COBOL developer")
        assert (bodies[1]["client_name"], bodies[1]["role_description"]) == (DEFAULT_CLIENT_NAME, "mainframe modernization")
        assert bodies[2]["client_name"] == "Initech"


class TestErrors:

    @pytest.mark.asyncio
    async def test_detail_from_error_body(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"detail": "Practitioner p9 not found"})

        async with make_service(handler) as service:
            with pytest.raises(PitchResumeError) as exc_info:
                await service.generate_simple("p9", "Acme", "Architect")

        assert exc_info.value.message == "Practitioner p9 not found"
        assert exc_info.value.status_code == 404
        assert exc_info.value.details == {"detail": "Practitioner p9 not found"}
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, text="upstream unavailable")

        async with make_service(handler) as service:
            with pytest.raises(PitchResumeError) as exc_info:
                await service.generate_simple("p1", "Acme", "Architect")

        assert exc_info.value.message == "Failed to generate pitch resume"
        assert exc_info.value.details == "upstream unavailable"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_service(handler) as service:
            with pytest.raises(PitchResumeError) as exc_info:
                await service.generate_simple("p1", "Acme", "Architect")

        assert exc_info.value.status_code is None
        assert "refused" in exc_info.value.message
