from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable

import pytest

from client.config import ApiSettings, Settings, StreamSettings
from client.credentials import StaticTokenProvider
from client.session import QuerySession
from client.transport import Frame, TransportError


def sse(event: str | None, payload: Any) -> bytes:
    """Encode one event-stream frame."""
    lines = []
    if event is not None:
        lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(payload, ensure_ascii=False)}")
    return ("\n".join(lines) + "\n\n").encode("utf-8")


def match(practitioner_id: str, **fields: Any) -> dict[str, Any]:
    """Minimal match item as the backend sends it."""
    item = {
        "practitioner_id": practitioner_id,
        "name": f"Practitioner {practitioner_id}",
        "headline": "Mainframe engineer",
        "match_score": 0.8,
        "explanation": "",
        "explanation_status": "pending",
        "matched_keywords": ["cobol"],
    }
    item.update(fields)
    return item


def match_results(*ids: str, pending: bool = True, **fields: Any) -> dict[str, Any]:
    payload = {
        "query": "COBOL mainframe",
        "matches": [match(pid) for pid in ids],
        "total_results": len(ids),
        "processing_time_ms": 120.0,
        "explanations_pending": pending,
    }
    payload.update(fields)
    return payload


class FakeHandle:
    """Records cancellation; the fake stream never runs on its own."""

    def __init__(self) -> None:
        self.cancel_calls = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_calls > 0

    def cancel(self) -> None:
        self.cancel_calls += 1

    async def wait(self) -> None:
        return None


@dataclass
class OpenedStream:
    endpoint: str
    body: dict[str, Any]
    token: str | None
    on_frame: Callable[[Frame], None]
    on_error: Callable[[TransportError], None] | None
    on_end: Callable[[], None] | None
    handle: FakeHandle = field(default_factory=FakeHandle)

    def emit(self, event: str | None, payload: Any) -> None:
        self.on_frame(Frame(event=event, data=json.dumps(payload)))

    def fail(self, message: str) -> None:
        self.on_error(TransportError(message))

    def end(self) -> None:
        self.on_end()


class FakeTransport:
    """Stands in for StreamTransport; tests push frames by hand."""

    def __init__(self) -> None:
        self.opened: list[OpenedStream] = []

    @property
    def current(self) -> OpenedStream:
        return self.opened[-1]

    def open(self, endpoint, request_body, auth_token, on_frame, *, on_error=None, on_end=None):
        stream = OpenedStream(endpoint, dict(request_body), auth_token, on_frame, on_error, on_end)
        self.opened.append(stream)
        return stream.handle


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        api=ApiSettings(base_url="http://backend.test/", access_token=None),
        stream=StreamSettings(default_limit=5, include_explanations=True),
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def session(transport: FakeTransport, test_settings: Settings) -> QuerySession:
    return QuerySession(transport, StaticTokenProvider("test-token"), config=test_settings)


@pytest.fixture
def snapshots(session: QuerySession) -> list:
    received: list = []
    session.subscribe(received.append)
    return received
