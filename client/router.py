"""Event router: classify decoded frames into domain events.

Classification is dual-path. The explicit `event:` tag is tried first. When
the tag is missing or unknown (legacy servers), the payload's shape decides.
Anything that fits neither path becomes `Unclassified`; the router never raises.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ValidationError

from .models import (
    ErrorPayload,
    ExplanationCompletePayload,
    MatchResultsPayload,
    StatusPayload,
    StreamCompletePayload,
)
from .transport import Frame

logger = logging.getLogger(__name__)


class ProtocolError(Exception):
    """Raised when a frame cannot be turned into a domain event."""
    pass


class EventKind(str, Enum):
    """Domain event variants."""
    MATCH_BATCH = "match_batch"
    ENRICHMENT_UPDATE = "enrichment_update"
    ENRICHMENT_FAILURE = "enrichment_failure"
    STATUS_UPDATE = "status_update"
    STREAM_ERROR = "stream_error"
    STREAM_COMPLETE = "stream_complete"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class MatchBatch:
    payload: MatchResultsPayload
    kind: EventKind = EventKind.MATCH_BATCH


@dataclass(frozen=True)
class EnrichmentUpdate:
    payload: ExplanationCompletePayload
    kind: EventKind = EventKind.ENRICHMENT_UPDATE


@dataclass(frozen=True)
class EnrichmentFailure:
    payload: ErrorPayload
    kind: EventKind = EventKind.ENRICHMENT_FAILURE


@dataclass(frozen=True)
class StatusUpdate:
    payload: StatusPayload
    kind: EventKind = EventKind.STATUS_UPDATE


@dataclass(frozen=True)
class StreamError:
    payload: ErrorPayload
    kind: EventKind = EventKind.STREAM_ERROR


@dataclass(frozen=True)
class StreamComplete:
    payload: StreamCompletePayload
    kind: EventKind = EventKind.STREAM_COMPLETE


@dataclass(frozen=True)
class Unclassified:
    tag: str | None
    payload: Any
    reason: str
    kind: EventKind = EventKind.UNCLASSIFIED


StreamEvent = Union[
    MatchBatch,
    EnrichmentUpdate,
    EnrichmentFailure,
    StatusUpdate,
    StreamError,
    StreamComplete,
    Unclassified,
]

# Wire tag -> (payload model, event variant)
TAG_ROUTES: dict[str, tuple[type[BaseModel], type]] = {
    "match_results": (MatchResultsPayload, MatchBatch),
    "explanation_complete": (ExplanationCompletePayload, EnrichmentUpdate),
    "explanation_error": (ErrorPayload, EnrichmentFailure),
    "status": (StatusPayload, StatusUpdate),
    "stream_complete": (StreamCompletePayload, StreamComplete),
    "error": (ErrorPayload, StreamError),
}


def normalize_tag(tag: str | None) -> str | None:
    """Lowercase and unify separators; empty tags become None."""
    if tag is None:
        return None
    tag = tag.strip().lower().replace("-", "_")
    return tag or None


def _build(model: type[BaseModel], variant: type, payload: Any) -> StreamEvent:
    return variant(payload=model.model_validate(payload))


def _looks_like_match_list(payload: Any) -> bool:
    return (
        isinstance(payload, list)
        and bool(payload)
        and all(isinstance(m, dict) and "practitioner_id" in m for m in payload)
    )


def classify_by_shape(payload: Any) -> StreamEvent:
    """Structural fallback for untagged or legacy payloads.

    Raises:
        ProtocolError: If the shape matches no known event
        ValidationError: If the shape matches but the fields are invalid
    """
    if _looks_like_match_list(payload):
        return MatchBatch(payload=MatchResultsPayload.model_validate({
            "matches": payload,
            "total_results": len(payload),
        }))

    if not isinstance(payload, dict):
        raise ProtocolError(f"Payload is not an object: {type(payload).__name__}")

    if isinstance(payload.get("matches"), list):
        return _build(MatchResultsPayload, MatchBatch, payload)
    if payload.get("practitioner_id") and "explanation" in payload:
        return _build(ExplanationCompletePayload, EnrichmentUpdate, payload)
    if payload.get("message") and payload.get("stage"):
        return _build(StatusPayload, StatusUpdate, payload)
    if "total_processing_time_ms" in payload:
        return _build(StreamCompletePayload, StreamComplete, payload)
    if payload.get("message"):
        return _build(ErrorPayload, StreamError, payload)

    raise ProtocolError(f"Unrecognized payload keys: {sorted(payload)[:10]}")


def classify(tag: str | None, payload: Any) -> StreamEvent:
    """Classify a payload into a StreamEvent.

    Args:
        tag: The frame's `event:` value, if any
        payload: Decoded JSON document

    Returns:
        A StreamEvent; `Unclassified` when nothing fits
    """
    normalized = normalize_tag(tag)
    route = TAG_ROUTES.get(normalized) if normalized else None

    try:
        if route is not None:
            model, variant = route
            return _build(model, variant, payload)

        if normalized is not None:
            logger.info(f"Unknown stream event type: {tag}, trying payload shape")
        return classify_by_shape(payload)

    except ValidationError as e:
        reason = f"invalid {normalized or 'untagged'} payload: {e.error_count()} validation error(s)"
    except ProtocolError as e:
        reason = str(e)

    logger.warning(f"Dropping unclassified stream event (tag={tag!r}): {reason}")
    return Unclassified(tag=tag, payload=payload, reason=reason)


def classify_frame(frame: Frame) -> StreamEvent:
    """Decode a frame's JSON and classify it."""
    try:
        payload = frame.json()
    except (json.JSONDecodeError, ValueError) as e:
        reason = f"invalid JSON: {e}"
        logger.warning(f"Dropping unclassified stream event (tag={frame.event!r}): {reason}")
        return Unclassified(tag=frame.event, payload=frame.data, reason=reason)
    return classify(frame.event, payload)
