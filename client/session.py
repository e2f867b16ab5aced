"""Query session state machine.

Owns the keyed item collection for the current search and applies routed
stream events to it as a reducer. Everything runs on the event loop, so the
session is the only writer: transport callbacks funnel through `_on_frame`,
and presentation code reads immutable snapshots and drives the session with
`start`, `cancel` and `retry`.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, Mapping, Protocol

from .config import Settings, settings as default_settings
from .credentials import CredentialProvider, StaticTokenProvider
from .models import (
    ErrorPayload,
    ExplanationCompletePayload,
    ExplanationStatus,
    LLMSearchTerms,
    MatchItem,
    MatchResultsPayload,
    StatusPayload,
    StreamCompletePayload,
    StreamingMatchQuery,
)
from .router import (
    EnrichmentFailure,
    EnrichmentUpdate,
    MatchBatch,
    StatusUpdate,
    StreamComplete,
    StreamError,
    StreamEvent,
    Unclassified,
    classify_frame,
)
from .transport import Frame, StreamTransport, TransportError

logger = logging.getLogger(__name__)

STARTING_MESSAGE = "Starting search..."
CANCELLED_MESSAGE = "Search cancelled"
COMPLETE_MESSAGE = "Search complete"
CLOSED_EARLY_MESSAGE = "Stream closed before the search completed"


class Stage(str, Enum):
    """Session stage."""
    IDLE = "idle"
    SEARCHING = "searching"
    ENRICHING = "enriching"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (Stage.COMPLETE, Stage.ERROR)


# Stages a `status` event may move to, keyed by the backend's stage names
SERVER_STAGES = {
    "search": Stage.SEARCHING,
    "searching": Stage.SEARCHING,
    "explanations": Stage.ENRICHING,
    "enriching": Stage.ENRICHING,
    "enrichment": Stage.ENRICHING,
}

_STAGE_ORDER = {Stage.IDLE: 0, Stage.SEARCHING: 1, Stage.ENRICHING: 2}


class StreamHandleLike(Protocol):
    def cancel(self) -> None: ...

    async def wait(self) -> None: ...


class TransportLike(Protocol):
    def open(
        self,
        endpoint: str,
        request_body: Mapping[str, Any],
        auth_token: str | None,
        on_frame: Callable[[Frame], None],
        *,
        on_error: Callable[[TransportError], None] | None = None,
        on_end: Callable[[], None] | None = None,
    ) -> StreamHandleLike: ...


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session at one point in time."""
    query: str = ""
    items: tuple[MatchItem, ...] = ()
    total_results: int = 0
    explanations_completed: int = 0
    explanations_total: int = 0
    stage: Stage = Stage.IDLE
    status_message: str = ""
    search_time_ms: float = 0.0
    total_processing_time_ms: float = 0.0
    error: str | None = None
    llm_search_terms: LLMSearchTerms | None = None
    is_stream_active: bool = False
    generation: int = 0
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def progress_percent(self) -> float:
        """Enrichment progress in [0, 100]."""
        if self.explanations_total <= 0:
            return 0.0
        percent = self.explanations_completed / self.explanations_total * 100
        return min(100.0, max(0.0, percent))

    @property
    def progress(self) -> int:
        """Whole-number progress for display, rounded down so 100 means all done."""
        if self.explanations_total <= 0:
            return 0
        return _clamp(self.explanations_completed * 100 // self.explanations_total, 100)

    @property
    def elapsed_ms(self) -> float | None:
        """Client-side wall time of the run, still counting while active."""
        if self.started_at is None:
            return None
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return (end - self.started_at) * 1000

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(item.practitioner_id for item in self.items)

    @property
    def is_searching(self) -> bool:
        return self.stage == Stage.SEARCHING

    @property
    def is_generating_explanations(self) -> bool:
        return self.stage == Stage.ENRICHING

    def get(self, practitioner_id: str) -> MatchItem | None:
        for item in self.items:
            if item.practitioner_id == practitioner_id:
                return item
        return None


Listener = Callable[[SessionSnapshot], None]


def _clamp(value: int, upper: int) -> int:
    return max(0, min(value, upper))


class QuerySession:
    """Streaming practitioner search with a subscribable snapshot.

    Usage:
        session = QuerySession()
        session.subscribe(render)
        await session.start("COBOL mainframe")
        await session.wait()
    """

    def __init__(
        self,
        transport: TransportLike | None = None,
        credentials: CredentialProvider | None = None,
        *,
        config: Settings | None = None,
        endpoint: str | None = None,
    ) -> None:
        self._config = config or default_settings
        self._transport = transport or StreamTransport(config=self._config.api)
        self._credentials = credentials or StaticTokenProvider.from_settings(self._config.api)
        self._endpoint = endpoint or self._config.api.stream_url

        self._listeners: list[Listener] = []
        self._handle: StreamHandleLike | None = None
        self._generation = 0
        self._last_query: StreamingMatchQuery | None = None

        self._reset("")
        self._stage = Stage.IDLE
        self._snapshot = self._build_snapshot()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for new snapshots. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def last_query(self) -> StreamingMatchQuery | None:
        return self._last_query

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def start(self, query: str | StreamingMatchQuery) -> None:
        """Start a new search, superseding any run in progress.

        The previous stream is cancelled and fully stopped before the new
        request is issued.
        """
        request = self._build_request(query)
        await self._terminate_active()

        self._last_query = request
        self._generation += 1
        generation = self._generation

        self._reset(request.query)
        self._stage = Stage.SEARCHING
        self._status = STARTING_MESSAGE
        self._stream_active = True
        self._started_at = time.monotonic()
        self._publish()

        logger.info(f"Starting search {generation}: {request.query!r}")

        try:
            token = self._credentials.get_token() if self._credentials is not None else None
            self._handle = self._transport.open(
                self._endpoint,
                request.model_dump(exclude_none=True),
                token,
                partial(self._on_frame, generation),
                on_error=partial(self._on_transport_error, generation),
                on_end=partial(self._on_transport_end, generation),
            )
        except Exception as e:
            logger.error(f"Failed to start search: {e}", exc_info=True)
            self._fail(f"Failed to start search: {e}")
            self._publish()

    def cancel(self) -> None:
        """Stop the active stream, keeping items merged so far.

        Does nothing when no stream is active, so repeated calls are harmless.
        """
        if not self._stream_active:
            logger.debug("Cancel requested with no active stream")
            return

        if self._handle is not None:
            self._handle.cancel()

        self._stage = Stage.IDLE
        self._status = CANCELLED_MESSAGE
        self._stream_active = False
        self._finished_at = time.monotonic()
        logger.info(f"Search {self._generation} cancelled with {len(self._items)} items retained")
        self._publish()

    async def retry(self) -> None:
        """Start again with the last submitted query, if there is one."""
        if self._last_query is None:
            logger.debug("Retry requested before any search")
            return
        await self.start(self._last_query)

    async def wait(self) -> None:
        """Wait for the current stream's read loop to exit."""
        if self._handle is not None:
            await self._handle.wait()

    async def aclose(self) -> None:
        self.cancel()
        await self._terminate_active()
        closer = getattr(self._transport, "aclose", None)
        if closer is not None:
            await closer()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_request(self, query: str | StreamingMatchQuery) -> StreamingMatchQuery:
        if isinstance(query, StreamingMatchQuery):
            return query
        return StreamingMatchQuery(
            query=query,
            limit=self._config.stream.default_limit,
            include_explanations=self._config.stream.include_explanations,
        )

    async def _terminate_active(self) -> None:
        # Loop: a concurrent start() may have opened a stream while we waited
        while self._handle is not None:
            handle = self._handle
            self._handle = None
            handle.cancel()
            await handle.wait()

    def _reset(self, query: str) -> None:
        self._query = query
        self._items: dict[str, MatchItem] = {}
        self._batch_applied = False
        self._total_results = 0
        self._completed = 0
        self._total = 0
        self._status = ""
        self._search_time_ms = 0.0
        self._total_processing_time_ms = 0.0
        self._error: str | None = None
        self._llm_search_terms: LLMSearchTerms | None = None
        self._stream_active = False
        self._started_at: float | None = None
        self._finished_at: float | None = None

    def _build_snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            query=self._query,
            items=tuple(self._items.values()),
            total_results=self._total_results,
            explanations_completed=self._completed,
            explanations_total=self._total,
            stage=self._stage,
            status_message=self._status,
            search_time_ms=self._search_time_ms,
            total_processing_time_ms=self._total_processing_time_ms,
            error=self._error,
            llm_search_terms=self._llm_search_terms,
            is_stream_active=self._stream_active,
            generation=self._generation,
            started_at=self._started_at,
            finished_at=self._finished_at,
        )

    def _publish(self) -> None:
        snapshot = self._build_snapshot()
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Session listener failed: {e}", exc_info=True)

    def _accepts(self, generation: int) -> bool:
        return generation == self._generation and self._stream_active

    def _on_frame(self, generation: int, frame: Frame) -> None:
        if not self._accepts(generation):
            logger.debug(f"Dropping {frame.event or 'untagged'} frame from inactive stream {generation}")
            return
        self._apply(classify_frame(frame))

    def _on_transport_error(self, generation: int, error: TransportError) -> None:
        if not self._accepts(generation):
            return
        self._fail(error.message)
        self._publish()

    def _on_transport_end(self, generation: int) -> None:
        if not self._accepts(generation):
            return
        if self._stage == Stage.COMPLETE:
            self._stream_active = False
            self._finished_at = time.monotonic()
        else:
            logger.warning(f"Search {generation} stream ended in stage {self._stage.value}")
            self._fail(CLOSED_EARLY_MESSAGE)
        self._publish()

    def _apply(self, event: StreamEvent) -> None:
        if isinstance(event, MatchBatch):
            self._on_match_batch(event.payload)
        elif isinstance(event, EnrichmentUpdate):
            self._on_enrichment_update(event.payload)
        elif isinstance(event, EnrichmentFailure):
            self._on_enrichment_failure(event.payload)
        elif isinstance(event, StatusUpdate):
            self._on_status_update(event.payload)
        elif isinstance(event, StreamError):
            self._on_stream_error(event.payload)
        elif isinstance(event, StreamComplete):
            self._on_stream_complete(event.payload)
        elif isinstance(event, Unclassified):
            # Already logged by the router
            return
        self._publish()

    def _on_match_batch(self, batch: MatchResultsPayload) -> None:
        if self._batch_applied:
            logger.warning("Ignoring repeated match_results for the current search")
            return
        self._batch_applied = True

        for item in batch.matches:
            if item.practitioner_id in self._items:
                logger.warning(f"Duplicate practitioner {item.practitioner_id} in match_results, keeping first")
                continue
            if batch.explanations_pending and item.explanation_status.can_advance_to(ExplanationStatus.LOADING):
                item = item.model_copy(update={"explanation_status": ExplanationStatus.LOADING})
            self._items[item.practitioner_id] = item

        self._total_results = batch.total_results
        self._total = len(self._items)
        self._search_time_ms = batch.processing_time_ms
        self._llm_search_terms = batch.llm_search_terms

        if batch.explanations_pending:
            self._stage = Stage.ENRICHING
            self._status = f"Found {batch.total_results} matches. Generating explanations..."
        else:
            self._stage = Stage.COMPLETE
            self._status = f"Found {batch.total_results} matches"

        logger.info(
            f"Received {len(self._items)} matches in {batch.processing_time_ms:.0f}ms "
            f"(explanations pending: {batch.explanations_pending})"
        )

    def _on_enrichment_update(self, update: ExplanationCompletePayload) -> None:
        item = self._items.get(update.practitioner_id)
        if item is None:
            logger.debug(f"Explanation for unknown practitioner {update.practitioner_id} ignored")
            return

        if item.explanation_status.can_advance_to(ExplanationStatus.COMPLETE):
            self._items[item.practitioner_id] = item.model_copy(update={
                "explanation": update.explanation,
                "explanation_status": ExplanationStatus.COMPLETE,
            })
        else:
            logger.debug(
                f"Explanation for {item.practitioner_id} ignored, status already {item.explanation_status.value}"
            )

        size = len(self._items)
        self._completed = max(self._completed, _clamp(update.completed, size))
        if update.total:
            self._total = _clamp(update.total, size)
        self._status = f"Generated {self._completed}/{self._total} explanations"

    def _on_enrichment_failure(self, failure: ErrorPayload) -> None:
        item = self._items.get(failure.practitioner_id) if failure.practitioner_id else None
        if item is None:
            logger.warning(f"Explanation error: {failure.message}")
            return

        logger.warning(f"Explanation error for {item.practitioner_id}: {failure.message}")
        if item.explanation_status.can_advance_to(ExplanationStatus.ERROR):
            self._items[item.practitioner_id] = item.model_copy(
                update={"explanation_status": ExplanationStatus.ERROR}
            )

    def _on_status_update(self, status: StatusPayload) -> None:
        self._status = status.message

        stage = SERVER_STAGES.get((status.stage or "").strip().lower())
        if stage is not None and not self._stage.is_terminal:
            if _STAGE_ORDER[stage] >= _STAGE_ORDER[self._stage]:
                self._stage = stage

        if status.total is not None:
            self._total = _clamp(status.total, len(self._items))

    def _on_stream_error(self, error: ErrorPayload) -> None:
        logger.error(f"Stream error: {error.message}")
        self._fail(error.message)
        self._stop_reading()

    def _on_stream_complete(self, summary: StreamCompletePayload) -> None:
        self._stage = Stage.COMPLETE
        self._status = COMPLETE_MESSAGE
        self._total_processing_time_ms = summary.total_processing_time_ms
        self._stream_active = False
        self._finished_at = time.monotonic()
        logger.info(
            f"Search {self._generation} complete: {summary.explanations_generated} explanations "
            f"in {summary.total_processing_time_ms:.0f}ms"
        )
        self._stop_reading()

    def _fail(self, message: str) -> None:
        self._stage = Stage.ERROR
        self._error = message
        self._status = f"Error: {message}"
        self._stream_active = False
        self._finished_at = time.monotonic()

    def _stop_reading(self) -> None:
        # The run is over; nothing more from this connection will be applied
        if self._handle is not None:
            self._handle.cancel()
