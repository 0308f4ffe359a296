"""
Pipeline Data Models
====================

Pydantic models for everything that crosses a component boundary:
batch items, lead rows, extraction and scoring results, market stats.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

RC_PERCENTILES = [0, 1, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55, 60, 65, 70, 75, 80, 85, 90, 95, 99, 99.9]
RC_KEYS = [
    "rcP00", "rcP01", "rcP05", "rcP10", "rcP15", "rcP20", "rcP25", "rcP30",
    "rcP35", "rcP40", "rcP45", "rcP50", "rcP55", "rcP60", "rcP65", "rcP70",
    "rcP75", "rcP80", "rcP85", "rcP90", "rcP95", "rcP99", "rcP999",
]

NO_WEBSITE_DATA_FLAG = "No website data available"
SCORING_FAILED_REASON = "scoring_failed"


class LeadStatus(str, Enum):
    """Pipeline status stored on the lead row."""

    IDLE = "idle"
    QUEUED_FOR_SCRAPE = "queued_for_scrape"
    SCRAPING = "scraping"
    SCRAPED = "scraped"
    SCRAPE_FAILED = "scrape_failed"
    QUEUED_FOR_SCORING = "queued_for_scoring"
    SCORING = "scoring"
    SCORED = "scored"
    SCORING_FAILED = "scoring_failed"


class OwnershipType(str, Enum):
    FOUNDER_OWNED = "founder-owned"
    FAMILY_OWNED = "family-owned"
    PARTNER_OWNED = "partner-owned"
    PE_BACKED = "PE-backed"
    CORPORATE_SUBSIDIARY = "corporate subsidiary"
    FRANCHISE = "franchise"
    UNKNOWN = "unknown"


class WebsiteQuality(str, Enum):
    NONE = "none"
    TEMPLATE_BASIC = "template/basic"
    PROFESSIONAL = "professional"
    CONTENT_RICH = "content-rich"


class BatchItem(BaseModel):
    """Unit of work handed to either orchestrator."""

    lead_id: str
    place_id: str


class Lead(BaseModel):
    """
    Lead row as read from the storage collaborator.

    Only identity, website and market-segment fields are read by the
    pipeline; row_version is the optimistic-concurrency token.
    """

    lead_id: str
    place_id: str
    website: Optional[str] = None
    name: Optional[str] = None
    business_type: Optional[str] = None
    review_count: Optional[int] = None
    rating: Optional[float] = None
    pipeline_status: LeadStatus = LeadStatus.IDLE
    scraped_at: Optional[str] = None
    scored_at: Optional[str] = None
    extraction: Optional[Dict[str, Any]] = None
    row_version: int = 0


class NotableQuote(BaseModel):
    url: str
    text: str
    category: Optional[str] = None


class TeamMember(BaseModel):
    name: str
    title: str
    is_executive: bool = False
    source_url: str = ""


class ExtractionResult(BaseModel):
    """
    Structured signals pulled from a lead's website.

    Every field always has a value. ExtractionResult.empty() is the
    documented default used when a scrape yields nothing.
    """

    owner_names: List[str] = Field(default_factory=list)
    first_name_only_contacts: List[str] = Field(default_factory=list)
    team_members_named: int = 0
    team_member_names: List[str] = Field(default_factory=list)
    years_in_business: Optional[int] = None
    founded_year: Optional[int] = None
    services: List[str] = Field(default_factory=list)
    has_commercial_clients: bool = False
    commercial_client_names: List[str] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    location_count: int = 0
    pricing_signals: List[str] = Field(default_factory=list)
    copyright_year: Optional[int] = None
    website_quality: WebsiteQuality = WebsiteQuality.NONE
    red_flags: List[str] = Field(default_factory=lambda: [NO_WEBSITE_DATA_FLAG])
    testimonial_count: int = 0
    recurring_revenue_signals: List[str] = Field(default_factory=list)
    notable_quotes: List[NotableQuote] = Field(default_factory=list)

    # Contact details
    headcount_estimate: Optional[int] = None
    emails: List[str] = Field(default_factory=list)
    phones: List[str] = Field(default_factory=list)
    social: Dict[str, str] = Field(default_factory=dict)
    contact_page_url: Optional[str] = None

    @classmethod
    def empty(cls) -> "ExtractionResult":
        return cls()

    @classmethod
    def from_stored(cls, data: Optional[Dict[str, Any]]) -> "ExtractionResult":
        """Load a stored extraction, falling back to the empty default."""
        if not data:
            return cls.empty()
        return cls.model_validate(data)


class SupportingEvidence(BaseModel):
    url: str
    snippet: str


class ScoringResult(BaseModel):
    """Validated classifier output for one lead."""

    controlling_owner: Optional[str] = None
    ownership_type: OwnershipType
    is_excluded: bool
    exclusion_reason: Optional[str] = None
    business_quality_score: float
    sell_likelihood_score: float
    rationale: str
    supporting_evidence: List[SupportingEvidence] = Field(default_factory=list)

    @field_validator("ownership_type", mode="before")
    @classmethod
    def _match_ownership(cls, value):
        if isinstance(value, OwnershipType):
            return value
        if not isinstance(value, str):
            raise ValueError("ownership_type must be a string")
        wanted = value.strip().lower()
        for member in OwnershipType:
            if member.value.lower() == wanted:
                return member
        raise ValueError(f"unknown ownership_type: {value!r}")

    @field_validator("is_excluded", mode="before")
    @classmethod
    def _strict_bool(cls, value):
        if not isinstance(value, bool):
            raise ValueError("is_excluded must be a boolean")
        return value

    @field_validator("business_quality_score", "sell_likelihood_score", mode="before")
    @classmethod
    def _clamp_score(cls, value):
        if isinstance(value, bool) or value is None:
            raise ValueError("score must be numeric")
        try:
            score = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"score must be numeric, got {value!r}")
        if score != score:  # NaN
            raise ValueError("score must be numeric, got NaN")
        return max(0.0, min(100.0, score))

    @field_validator("rationale")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("rationale must not be empty")
        return value.strip()

    @field_validator("controlling_owner", "exclusion_reason", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and value.strip().lower() in ("", "null", "none", "n/a"):
            return None
        return value

    @property
    def priority_score(self) -> int:
        return int(round(self.business_quality_score * 0.4 + self.sell_likelihood_score * 0.6))

    @property
    def priority_tier(self) -> int:
        if self.priority_score >= 70:
            return 1
        if self.priority_score >= 40:
            return 2
        return 3

    @classmethod
    def scoring_failed(cls, detail: str) -> "ScoringResult":
        """Terminal result for a lead the classifier could not score."""
        return cls(
            ownership_type=OwnershipType.UNKNOWN,
            is_excluded=True,
            exclusion_reason=SCORING_FAILED_REASON,
            business_quality_score=0,
            sell_likelihood_score=0,
            rationale=f"Scoring failed: {detail}",
        )


class MarketStats(BaseModel):
    """
    Review-count distribution of one market segment.

    breakpoints maps RC_KEYS to values, non-decreasing in RC_KEYS order.
    """

    segment: Optional[str] = None
    lead_count: int = 0
    breakpoints: Dict[str, float] = Field(default_factory=lambda: {key: 0.0 for key in RC_KEYS})
    rating_mean: float = 0.0
    rating_median: float = 0.0

    def values(self) -> List[float]:
        return [self.breakpoints[key] for key in RC_KEYS]

    def at(self, percentile: float) -> float:
        return self.breakpoints[RC_KEYS[RC_PERCENTILES.index(percentile)]]
