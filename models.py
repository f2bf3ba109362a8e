from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WebsiteFilter(str, Enum):
    NO_WEBSITE = "NO_WEBSITE"  # only businesses without any website
    POOR_WEBSITE = "POOR_WEBSITE"  # no website or a weak one
    ANY = "ANY"


class WebsiteStatus(str, Enum):
    NONE = "NONE"
    POOR = "POOR"
    GOOD = "GOOD"
    UNKNOWN = "UNKNOWN"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class Stage(str, Enum):
    PROMPT = "PROMPT"
    BUILD = "BUILD"
    REVIEW = "REVIEW"
    OUTREACH = "OUTREACH"
    SUMMARY = "SUMMARY"

    @property
    def position(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER = list(Stage)

STAGE_LABELS = {
    Stage.PROMPT: "1. Blueprint",
    Stage.BUILD: "2. Build",
    Stage.REVIEW: "3. Review",
    Stage.OUTREACH: "4. Outreach",
    Stage.SUMMARY: "5. Zusammenfassung",
}


class Session(BaseModel):
    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utc_now)
    category: str = ""
    location: str = ""
    rating_min: float = 0.0
    rating_max: float = 5.0
    website_filter: WebsiteFilter = WebsiteFilter.ANY
    review_count_min: int = 0
    include_media: bool = False
    status: SessionStatus = SessionStatus.ACTIVE


class EnrichedData(BaseModel):
    social_links: list[str] = Field(default_factory=list)
    emails: list[str] = Field(default_factory=list)
    phones: list[str] = Field(default_factory=list)
    services: list[str] = Field(default_factory=list)
    media_assets: list[str] = Field(default_factory=list)
    extra_details: str = ""

    def merge(self, update: EnrichedData) -> EnrichedData:
        """Return a copy where every non-empty field of ``update`` wins.

        Empty fields of a later enrichment never erase data gathered earlier.
        """
        merged = {}
        for name in type(self).model_fields:
            value = getattr(update, name)
            merged[name] = value if value else getattr(self, name)
        return EnrichedData.model_validate(merged)

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in type(self).model_fields)


class Business(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: Optional[str] = None
    name: str = ""
    address: str = ""
    rating: float = 0.0
    review_count: int = 0
    website_status: WebsiteStatus = WebsiteStatus.UNKNOWN
    description: str = ""
    phone: str = ""
    website: str = ""
    google_maps_uri: str = ""
    notes: str = ""
    enriched_data: Optional[EnrichedData] = None

    def with_enrichment(self, update: EnrichedData) -> Business:
        current = self.enriched_data or EnrichedData()
        return self.model_copy(update={"enriched_data": current.merge(update)})

    @property
    def is_enriched(self) -> bool:
        return self.enriched_data is not None and not self.enriched_data.is_empty()


class CritiquePoint(BaseModel):
    point: str
    # [ymin, xmin, ymax, xmax] in percent of the page
    box_2d: list[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0, 0.0])
    related_code_snippet: str = ""

    @property
    def has_location(self) -> bool:
        return any(self.box_2d)


class WebsiteReview(BaseModel):
    visual_design_score: float = 0.0
    usability_score: float = 0.0
    conversion_score: float = 0.0
    strengths: list[str] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    critique: list[CritiquePoint] = Field(default_factory=list)
    is_approved: bool = False
    is_fallback: bool = False


class ColdEmail(BaseModel):
    subject: str = ""
    body: str = ""


class FollowUp(BaseModel):
    subject: str = ""
    body: str = ""
    delay: str = ""  # e.g. "2 Tage später"


class Objection(BaseModel):
    objection: str = ""
    response: str = ""


class OutreachPackage(BaseModel):
    cold_email: ColdEmail = Field(default_factory=ColdEmail)
    whatsapp: str = ""
    call_script: str = ""
    follow_ups: list[FollowUp] = Field(default_factory=list)
    objections: list[Objection] = Field(default_factory=list)
    is_fallback: bool = False


class OutreachSection(str, Enum):
    EMAIL = "cold_email"
    WHATSAPP = "whatsapp"
    SCRIPT = "call_script"
    FOLLOW_UP = "follow_ups"


class StyleOptions(BaseModel):
    design_style: str = "Modern Professional"
    website_type: str = "Landing Page"


class OutreachOptions(BaseModel):
    include_calendar: bool = False


class PipelineBundle(BaseModel):
    """Everything the workflow has produced for one business."""

    business: Business
    stage: Stage = Stage.PROMPT
    furthest_stage: Stage = Stage.PROMPT
    blueprint: str = ""
    blueprint_approved: bool = False
    markup: str = ""
    website_url: str = ""
    screenshot: str = ""  # base64 PNG without data-URI prefix
    review: Optional[WebsiteReview] = None
    outreach: Optional[OutreachPackage] = None
    updated_at: datetime = Field(default_factory=utc_now)

    def completeness_score(self) -> int:
        parts = [
            self.business.is_enriched,
            bool(self.blueprint.strip()),
            bool(self.markup.strip() or self.website_url.strip()),
            self.review is not None,
            self.outreach is not None,
        ]
        return 20 * sum(parts)
