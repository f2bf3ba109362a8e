from __future__ import annotations

from types import SimpleNamespace

import pytest

import cache
from generation.gateway import GenerationGateway
from models import (
    Business,
    ColdEmail,
    CritiquePoint,
    EnrichedData,
    FollowUp,
    OutreachPackage,
    WebsiteReview,
    WebsiteStatus,
)
from remote_store import PersistenceError, RemoteStore
from scrapers.outscraper_client import OutscraperService

SAMPLE_MARKUP = (
    "<!DOCTYPE html><html><head><title>Joe's Cafe</title></head>"
    '<body><section id="home"><h1 class="hero">Fresh coffee daily</h1>'
    '<a class="cta" href="#contact">Visit us</a></section></body></html>'
)


@pytest.fixture(autouse=True)
def isolated_cache(tmp_path, monkeypatch):
    monkeypatch.setattr(cache, "_DB_PATH", tmp_path / "cache.db")
    return tmp_path / "cache.db"


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(GenerationGateway._complete.retry, "sleep", lambda seconds: None)
    monkeypatch.setattr(OutscraperService._api_search.retry, "sleep", lambda seconds: None)


class FakeCompletions:
    """Replays scripted replies; the last one repeats. Exceptions are raised."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=reply))]
        )


class FakeClient:
    def __init__(self, *replies):
        self.completions = FakeCompletions(replies)
        self.chat = SimpleNamespace(completions=self.completions)

    @property
    def calls(self):
        return self.completions.calls


def make_gateway(*replies) -> GenerationGateway:
    return GenerationGateway(
        "test-key", model_fast="fast-model", model_pro="pro-model", client=FakeClient(*replies)
    )


def make_review(**overrides) -> WebsiteReview:
    values = dict(
        visual_design_score=80,
        usability_score=75,
        conversion_score=70,
        strengths=["Clear hero"],
        issues=["CTA is hard to see"],
        recommendations=["Increase CTA contrast"],
        critique=[
            CritiquePoint(point="CTA is hard to see", related_code_snippet='class="cta"'),
            CritiquePoint(point="Hero lacks imagery"),
        ],
        is_approved=True,
    )
    values.update(overrides)
    return WebsiteReview(**values)


def make_outreach(**overrides) -> OutreachPackage:
    values = dict(
        cold_email=ColdEmail(subject="A new website for Joe's Cafe", body="Hi Joe, ..."),
        whatsapp="Hi Joe!",
        call_script="Hello, this is ...",
        follow_ups=[
            FollowUp(subject="Quick reminder", body="Just checking in", delay="2 days"),
            FollowUp(subject="Last note", body="Closing the loop", delay="1 week"),
        ],
    )
    values.update(overrides)
    return OutreachPackage(**values)


def make_business(**overrides) -> Business:
    values = dict(
        name="Joe's Cafe",
        address="1 Main St, Springfield",
        rating=4.5,
        review_count=120,
        website_status=WebsiteStatus.NONE,
    )
    values.update(overrides)
    return Business(**values)


class FakeGateway:
    """Stand-in for GenerationGateway with fixed results per operation."""

    def __init__(self):
        self.found: list[Business] = [make_business()]
        self.enriched = EnrichedData(services=["Coffee", "Cake"], phones=["+1 555 0100"])
        self.blueprint = "# Joe's Cafe\n\n## Home\nFresh coffee daily."
        self.revised_blueprint = None
        self.markup = SAMPLE_MARKUP
        self.revised_markup = None
        self.review = make_review()
        self.outreach = make_outreach()
        self.partial: dict = {"whatsapp": "Hi Joe, updated!"}
        self.calls: list[tuple[str, dict]] = []
        self.on_call = None

    def _record(self, name: str, **kwargs) -> None:
        self.calls.append((name, kwargs))
        if self.on_call is not None:
            self.on_call(name)

    def called(self, name: str) -> list[dict]:
        return [kwargs for call, kwargs in self.calls if call == name]

    def discover_businesses(self, category, location, min_rating, limit=5, website_filter=None):
        self._record("discover_businesses", category=category, location=location)
        return [b.model_copy() for b in self.found]

    def enrich_business(self, business):
        self._record("enrich_business")
        return self.enriched

    def draft_blueprint(self, business):
        self._record("draft_blueprint")
        return self.blueprint

    def revise_blueprint(self, current, feedback):
        self._record("revise_blueprint", feedback=feedback)
        if self.revised_blueprint is not None:
            return self.revised_blueprint
        return current + "\n\n" + feedback

    def generate_site_markup(self, business, blueprint, style=None):
        self._record("generate_site_markup", style=style)
        return self.markup

    def revise_site_markup(self, markup, instructions):
        self._record("revise_site_markup", instructions=instructions)
        if self.revised_markup is not None:
            return self.revised_markup
        return markup.replace('class="cta"', 'class="cta bold"')

    def critique_website(self, url, screenshot=None, markup=None):
        self._record("critique_website", url=url, screenshot=screenshot, markup=markup)
        return self.review

    def draft_outreach(self, business, website_url, options=None):
        self._record("draft_outreach", website_url=website_url, options=options)
        return self.outreach

    def revise_outreach_section(self, current, feedback, section, index=None, business_name=""):
        self._record("revise_outreach_section", section=section, index=index)
        return self.partial


class FailingStore(RemoteStore):
    """Remote tier that is configured but unreachable."""

    def __init__(self):
        super().__init__("postgresql://unreachable")

    def _begin(self):
        raise PersistenceError("connection refused")

    def _insert(self, table):
        raise PersistenceError("connection refused")


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sqlite_store(tmp_path) -> RemoteStore:
    return RemoteStore(f"sqlite:///{tmp_path / 'remote.db'}")
