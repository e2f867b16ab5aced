"""Pydantic models for the streaming match request and event payloads.

Shapes follow the backend's `text/event-stream` contract. Unknown fields are
ignored so that newer backends do not break older clients.
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ExplanationStatus(str, Enum):
    """Per-item enrichment status. Order of declaration is the allowed order."""
    PENDING = "pending"
    LOADING = "loading"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_final(self) -> bool:
        return self in (ExplanationStatus.COMPLETE, ExplanationStatus.ERROR)

    def can_advance_to(self, target: ExplanationStatus) -> bool:
        """True if moving to `target` goes forward and leaves no final state."""
        return not self.is_final and target.rank > self.rank


_STATUS_RANK = {
    ExplanationStatus.PENDING: 0,
    ExplanationStatus.LOADING: 1,
    ExplanationStatus.COMPLETE: 2,
    ExplanationStatus.ERROR: 2,
}


class StreamingMatchQuery(BaseModel):
    """Request body for the streaming match endpoint."""
    query: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1, le=100)
    include_explanations: bool | None = None


class MatchItem(BaseModel):
    """Single practitioner match. Immutable; updates go through model_copy."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    practitioner_id: str
    name: str = ""
    headline: str = ""
    email: str = ""
    linkedin_url: str = ""
    location: str = ""
    skills: tuple[str, ...] = ()
    about: str = ""
    match_score: float = 0.0
    explanation: str = ""
    explanation_status: ExplanationStatus = ExplanationStatus.PENDING
    matched_keywords: tuple[str, ...] = ()
    phrase_matches: tuple[str, ...] = ()
    word_matches: tuple[str, ...] = ()
    boost_factor: float = 1.0

    @property
    def boost_percent(self) -> int:
        """Boost over the raw relevance score, as a whole percentage."""
        return max(0, round((self.boost_factor - 1) * 100))


class LLMSearchTerms(BaseModel):
    """Query expansion reported by the backend."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    primary_concepts: tuple[str, ...] = ()
    expanded_terms: tuple[str, ...] = ()
    exact_matches: tuple[str, ...] = ()
    domain_context: str = ""
    confidence_score: float = 0.0


class MatchResultsPayload(BaseModel):
    """`match_results` event."""
    model_config = ConfigDict(extra="ignore")

    query: str = ""
    matches: list[MatchItem]
    total_results: int = 0
    processing_time_ms: float = 0.0
    explanations_pending: bool = False
    llm_search_terms: LLMSearchTerms | None = None


class ExplanationCompletePayload(BaseModel):
    """`explanation_complete` event."""
    model_config = ConfigDict(extra="ignore")

    practitioner_id: str
    explanation: str
    enhanced_analysis: Any = None
    completed: int = 0
    total: int = 0
    processing_time_ms: float = 0.0


class StatusPayload(BaseModel):
    """`status` event."""
    model_config = ConfigDict(extra="ignore")

    message: str
    stage: str | None = None
    total: int | None = None


class StreamCompletePayload(BaseModel):
    """`stream_complete` event."""
    model_config = ConfigDict(extra="ignore")

    total_processing_time_ms: float = 0.0
    explanations_generated: int = 0


class ErrorPayload(BaseModel):
    """`error` and `explanation_error` events."""
    model_config = ConfigDict(extra="ignore")

    message: str
    practitioner_id: str | None = None


class PractitionerDetail(BaseModel):
    """Full practitioner record from the directory."""
    model_config = ConfigDict(extra="allow")

    practitioner_id: str
    name: str = ""
    email: str | None = None
    linkedin_url: str | None = None
    location: str | None = None
    skills: list[str] = Field(default_factory=list)
    headline: str | None = None
    about: str | None = None
    work_history: list[Any] = Field(default_factory=list)
    project_history: Any = None
    enriched_skills: list[Any] = Field(default_factory=list)
    linkedin_about: str | None = None
    ai_summary: str | None = None


class PractitionerSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    headline: str = ""
    ai_summary: str = ""
    skills_overview: list[str] = Field(default_factory=list)
    experience_summary: str = ""
    key_projects: list[str] = Field(default_factory=list)


class PractitionerStats(BaseModel):
    """Index statistics reported by the backend."""
    model_config = ConfigDict(extra="ignore")

    total_vectors: int = 0
    estimated_unique_practitioners: int = 0
    index_name: str = ""
    dimension: int = 0
    index_fullness: float = 0.0
    namespaces: Any = None
    status: str = ""
    error: str | None = None


class PitchResumeRequest(BaseModel):
    """Request body for tailored pitch resume generation."""
    practitioner_id: str
    client_name: str
    role_description: str
    key_requirements: list[str] = Field(default_factory=list)
    tone: str = "professional"
    include_contact_info: bool = True


class PitchResumeResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    practitioner_id: str
    client_name: str = ""
    role_description: str = ""
    pitch_resume: str = ""
    key_highlights: list[str] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    error: dict[str, Any] | None = None
