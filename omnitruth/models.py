"""
Pydantic models for the OmniTruth Feed API.

Covers the feed entities (posts, community votes), the analysis payload
returned by the AI collaborator, and the request/response bodies of the
HTTP routes. Every model reads and writes the camelCase keys used by the
collaborator and the web client, while Python code uses snake_case names.
"""

import math
from datetime import datetime, UTC
from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


ALL = "ALL"

DEFAULT_TRUST_SCORE = 50
NEUTRAL_CROWD_SCORE = 50
DEFAULT_SUMMARY = "Analysis incomplete."


# =============================================================================
# Enums
# =============================================================================


class Verdict(str, Enum):
    """Veracity label attached to a post by the analysis collaborator."""
    TRUE = "TRUE"
    MOSTLY_TRUE = "MOSTLY_TRUE"
    PARTIALLY_TRUE = "PARTIALLY_TRUE"
    MISLEADING = "MISLEADING"
    FAKE = "FAKE"
    UNVERIFIED = "UNVERIFIED"
    SATIRE = "SATIRE"


class CommunityRole(str, Enum):
    """Role a voter declares when casting a vote."""
    JOURNALIST = "Journalist"
    EXPERT = "Expert"
    EYEWITNESS = "Eyewitness"
    CITIZEN = "Citizen"


class VoteVerdict(str, Enum):
    """A single community member's judgment on a post."""
    REAL = "REAL"
    FAKE = "FAKE"
    UNSURE = "UNSURE"


class PostType(str, Enum):
    POST = "POST"
    REEL = "REEL"
    GENERATED_REEL = "GENERATED_REEL"


class ContextType(str, Enum):
    """Framing the analysis collaborator applies to the input text."""
    NEWS = "NEWS"      # Factual verification, bias, source credibility
    CHAT = "CHAT"      # Intent, manipulation, power dynamics
    DEBATE = "DEBATE"  # Fallacies, argument strength


class SortKey(str, Enum):
    """Orderings offered by the feed view."""
    LATEST = "LATEST"
    TRUST_HIGH = "TRUST_HIGH"
    TRUST_LOW = "TRUST_LOW"
    CROWD_HIGH = "CROWD_HIGH"


class ClaimStatus(str, Enum):
    SUPPORTED = "SUPPORTED"
    CONTRADICTED = "CONTRADICTED"
    INSUFFICIENT = "INSUFFICIENT"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class DateRange(str, Enum):
    ALL = "ALL"
    LAST_24H = "LAST_24H"
    LAST_WEEK = "LAST_WEEK"
    LAST_MONTH = "LAST_MONTH"
    LAST_YEAR = "LAST_YEAR"


VerdictFilter = Union[Verdict, Literal["ALL"]]
RoleFilter = Union[CommunityRole, Literal["ALL"]]


# =============================================================================
# Boundary coercion helpers
# =============================================================================


def clamp_score(value: float, low: int = 0, high: int = 100) -> float:
    """Clamp a score into [low, high]."""
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest int, halves going up (55.5 -> 56, 44.5 -> 45)."""
    return int(math.floor(value + 0.5))


def coerce_score(value: Any, default: int) -> int:
    """Best-effort conversion of an untrusted score to an int in [0, 100]."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return round_half_up(clamp_score(number))


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _clamp_credibility(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("credibility must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError("credibility must be a number") from e
    if math.isnan(number):
        raise ValueError("credibility must be a number")
    return round_half_up(clamp_score(number))


def _coerce_enum(value: Any, enum_cls, default):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().upper())
        except ValueError:
            return default
    return default


def _coerce_text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return default


class CamelModel(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Analysis payload
# =============================================================================


class Claim(CamelModel):
    """A factual claim extracted and checked by the analysis collaborator."""

    id: str = ""
    text: str = ""
    status: ClaimStatus = ClaimStatus.INSUFFICIENT
    confidence: float = 0.0
    reasoning: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def lenient_status(cls, v):
        return _coerce_enum(v, ClaimStatus, ClaimStatus.INSUFFICIENT)

    @field_validator("confidence", mode="before")
    @classmethod
    def lenient_confidence(cls, v):
        if isinstance(v, bool):
            return 0.0
        try:
            return float(v)
        except (TypeError, ValueError):
            return 0.0

    @field_validator("id", "text", "reasoning", mode="before")
    @classmethod
    def lenient_text(cls, v):
        if v is None:
            return ""
        return str(v)


class ManipulationFlag(CamelModel):
    """A rhetorical or psychological manipulation technique spotted in the text."""

    type: str = "Unknown"
    severity: Severity = Severity.LOW
    description: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def lenient_severity(cls, v):
        return _coerce_enum(v, Severity, Severity.LOW)

    @field_validator("type", "description", mode="before")
    @classmethod
    def lenient_text(cls, v):
        if v is None:
            return ""
        return str(v)


class IntentAnalysis(CamelModel):
    """Motive and subtext read from the text."""

    primary_motive: str = "Unknown"
    emotional_state: str = "Neutral"
    hidden_meaning: str = "None detected"
    power_dynamics: str = "Balanced"

    @model_validator(mode="before")
    @classmethod
    def drop_non_text(cls, data):
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str) and v.strip()}


class AnalysisResult(CamelModel):
    """
    Structured output of a deep analysis run.

    Built from untrusted collaborator JSON: absent or malformed fields are
    replaced with safe defaults instead of failing validation, so a broken
    response still yields a usable (neutral) result.
    """

    trust_score: int = DEFAULT_TRUST_SCORE
    verdict: Verdict = Verdict.UNVERIFIED
    summary: str = DEFAULT_SUMMARY
    claims: List[Claim] = Field(default_factory=list)
    manipulation_flags: List[ManipulationFlag] = Field(default_factory=list)
    intent: IntentAnalysis = Field(default_factory=IntentAnalysis)
    sources: List[str] = Field(default_factory=list)
    reality_graph_summary: str = ""

    @model_validator(mode="before")
    @classmethod
    def fill_defaults(cls, data):
        if not isinstance(data, dict):
            return {}
        return data

    @field_validator("trust_score", mode="before")
    @classmethod
    def lenient_trust_score(cls, v):
        return coerce_score(v, DEFAULT_TRUST_SCORE)

    @field_validator("verdict", mode="before")
    @classmethod
    def lenient_verdict(cls, v):
        return _coerce_enum(v, Verdict, Verdict.UNVERIFIED)

    @field_validator("summary", mode="before")
    @classmethod
    def lenient_summary(cls, v):
        return _coerce_text(v, DEFAULT_SUMMARY)

    @field_validator("reality_graph_summary", mode="before")
    @classmethod
    def lenient_reality_graph_summary(cls, v):
        return _coerce_text(v, "")

    @field_validator("claims", mode="before")
    @classmethod
    def lenient_claims(cls, v):
        if not isinstance(v, list):
            return []
        claims = []
        for idx, item in enumerate(v):
            if isinstance(item, Claim):
                claims.append(item)
            elif isinstance(item, dict):
                item = dict(item)
                if not item.get("id"):
                    item["id"] = str(idx + 1)
                claims.append(item)
        return claims

    @field_validator("manipulation_flags", mode="before")
    @classmethod
    def lenient_flags(cls, v):
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, (dict, ManipulationFlag))]

    @field_validator("intent", mode="before")
    @classmethod
    def lenient_intent(cls, v):
        if isinstance(v, IntentAnalysis):
            return v
        return v if isinstance(v, dict) else {}

    @field_validator("sources", mode="before")
    @classmethod
    def unique_sources(cls, v):
        if not isinstance(v, list):
            return []
        seen = []
        for src in v:
            if isinstance(src, str) and src.strip() and src not in seen:
                seen.append(src)
        return seen

    @model_validator(mode="after")
    def default_reality_graph_summary(self):
        if not self.reality_graph_summary:
            self.reality_graph_summary = self.summary
        return self


# =============================================================================
# Feed entities
# =============================================================================


class Vote(CamelModel):
    """
    One community member's judgment on one post.

    ``user_credibility`` is a snapshot taken when the vote is cast so that
    replaying the vote history always reproduces the same crowd score.
    Out-of-range credibility is clamped, never rejected.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    user_id: str
    user_credibility: int
    role: CommunityRole = CommunityRole.CITIZEN
    verdict: VoteVerdict
    reason: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("user_credibility", mode="before")
    @classmethod
    def clamp_credibility(cls, v):
        return _clamp_credibility(v)

    @field_validator("timestamp")
    @classmethod
    def utc_timestamp(cls, v):
        return as_utc(v)


class Post(CamelModel):
    """A feed post with its AI trust label and community consensus."""

    id: str
    author: str
    author_role: Optional[str] = None
    content: str
    image: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    trust_score: int = Field(default=DEFAULT_TRUST_SCORE, ge=0, le=100)
    crowd_score: int = Field(default=NEUTRAL_CROWD_SCORE, ge=0, le=100)
    verdict: Verdict = Verdict.UNVERIFIED
    type: PostType = PostType.POST
    votes: List[Vote] = Field(default_factory=list)
    verification_details: Optional[AnalysisResult] = None
    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    has_liked: bool = False

    @field_validator("timestamp")
    @classmethod
    def utc_timestamp(cls, v):
        return as_utc(v)

    @property
    def is_consistent(self) -> bool:
        """True when summary fields agree with the attached analysis (or none is attached)."""
        details = self.verification_details
        if details is None:
            return True
        return details.trust_score == self.trust_score and details.verdict == self.verdict


# =============================================================================
# Request Models
# =============================================================================


class CreatePostRequest(CamelModel):
    """Request to publish a user-authored post into the feed."""

    id: Optional[str] = Field(default=None, description="Client-chosen id (generated if omitted)")
    author: str = Field(..., min_length=1, max_length=200)
    author_role: Optional[str] = Field(default=None, max_length=50)
    content: str = Field(..., min_length=1, max_length=4000)
    image: Optional[str] = None
    type: PostType = PostType.POST
    verification_details: Optional[AnalysisResult] = Field(
        default=None,
        description="Pre-computed analysis; trust score and verdict are taken from it"
    )


class CastVoteRequest(CamelModel):
    """Request to cast a community vote on a post."""

    user_id: str = Field(..., min_length=1)
    user_credibility: int = Field(..., description="Voter credibility snapshot (clamped to 0-100)")
    role: CommunityRole = CommunityRole.CITIZEN
    verdict: VoteVerdict
    reason: str = Field(default="", max_length=1000)

    @field_validator("user_credibility", mode="before")
    @classmethod
    def clamp_credibility(cls, v):
        return _clamp_credibility(v)

    def to_vote(self) -> Vote:
        return Vote(
            user_id=self.user_id,
            user_credibility=self.user_credibility,
            role=self.role,
            verdict=self.verdict,
            reason=self.reason,
        )


class GenerateReelRequest(CamelModel):
    """Request to generate a breaking-news reel post about a topic."""

    topic: str = Field(..., min_length=1, max_length=200)

    @field_validator("topic")
    @classmethod
    def non_blank(cls, v):
        if not v.strip():
            raise ValueError("topic must not be blank")
        return v.strip()


class AnalyzeTextRequest(CamelModel):
    """Request to analyze free text without touching the feed."""

    text: str = Field(..., min_length=1, max_length=10000)
    context_type: ContextType = ContextType.NEWS


class SearchFilters(CamelModel):
    date_range: DateRange = DateRange.ALL
    author_role: RoleFilter = ALL
    verdict: VerdictFilter = ALL


class SearchRequest(CamelModel):
    """Request to run a global search through the analysis collaborator."""

    query: str = Field(..., min_length=1, max_length=500)
    filters: SearchFilters = Field(default_factory=SearchFilters)

    @field_validator("query")
    @classmethod
    def non_blank(cls, v):
        if not v.strip():
            raise ValueError("query must not be blank")
        return v.strip()


# =============================================================================
# Response Models
# =============================================================================


class FeedResponse(CamelModel):
    """A projected view of the feed."""

    posts: List[Post]
    total: int
    loading: bool = False
    filter_verdict: VerdictFilter = ALL
    sort: SortKey = SortKey.LATEST


class SearchResponse(CamelModel):
    query: str
    posts: List[Post]
    total: int


class VoteResultResponse(CamelModel):
    """Outcome of casting a vote."""

    post: Post
    previous_crowd_score: int
    crowd_score: int
    weight: float


class VoteWeightResponse(CamelModel):
    credibility: int
    weight: float


class ConsensusSummaryResponse(CamelModel):
    """Aggregate view of a post's vote history."""

    post_id: str
    crowd_score: int
    total_votes: int = 0
    consensus_volume: int = 0
    uncertainty: float = 0.0
    mean_credibility: Optional[float] = None
    verdict_counts: dict = Field(default_factory=dict)
    role_counts: dict = Field(default_factory=dict)


class VerificationResponse(CamelModel):
    """Result of a verification request on a stored post."""

    post: Post
    analyzed: bool
    analysis_failed: bool = False


class RefreshResponse(CamelModel):
    success: bool
    posts_loaded: int
    loading: bool = False


class HealthResponse(CamelModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    database_connected: bool
    posts_count: int = 0
    votes_count: int = 0
    loading: bool = False
    last_refresh: Optional[datetime] = None
