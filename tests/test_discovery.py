import pytest
from conftest import FailingStore, make_business

from discovery import SearchParams, discover, matches_filters, start_session
from models import WebsiteFilter, WebsiteStatus
from remote_store import RemoteStore


class FakeOutscraper:
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error
        self.queries = []

    def search_businesses(self, category, location, limit=20):
        self.queries.append((category, location, limit))
        if self.error:
            raise self.error
        return [b.model_copy() for b in self.results]


@pytest.mark.parametrize(
    "status, website_filter, expected",
    [
        (WebsiteStatus.NONE, WebsiteFilter.NO_WEBSITE, True),
        (WebsiteStatus.POOR, WebsiteFilter.NO_WEBSITE, False),
        (WebsiteStatus.POOR, WebsiteFilter.POOR_WEBSITE, True),
        (WebsiteStatus.UNKNOWN, WebsiteFilter.POOR_WEBSITE, False),
        (WebsiteStatus.GOOD, WebsiteFilter.ANY, True),
    ],
)
def test_website_filter(status, website_filter, expected):
    params = SearchParams(category="Cafe", location="Springfield", website_filter=website_filter)
    assert matches_filters(make_business(website_status=status), params) is expected


def test_rating_and_review_bounds():
    params = SearchParams(
        category="Cafe", location="Springfield", rating_min=4.0, rating_max=4.8, review_count_min=50
    )
    assert matches_filters(make_business(rating=4.5, review_count=120), params)
    assert not matches_filters(make_business(rating=4.9), params)
    assert not matches_filters(make_business(rating=3.9), params)
    assert not matches_filters(make_business(review_count=10), params)


def test_discover_filters_and_limits(fake_gateway):
    fake_gateway.found = [
        make_business(name=f"Cafe {i}", website_status=WebsiteStatus.NONE) for i in range(4)
    ] + [make_business(name="Has Site", website_status=WebsiteStatus.GOOD)]
    params = SearchParams(
        category="Cafe", location="Springfield", website_filter=WebsiteFilter.NO_WEBSITE, limit=3
    )
    found = discover(params, fake_gateway)
    assert [b.name for b in found] == ["Cafe 0", "Cafe 1", "Cafe 2"]


def test_discover_reuses_cache(fake_gateway):
    params = SearchParams(category="Cafe", location="Springfield")
    first = discover(params, fake_gateway)
    second = discover(params, fake_gateway)
    assert [b.name for b in first] == [b.name for b in second]
    assert len(fake_gateway.called("discover_businesses")) == 1


def test_larger_limit_is_not_served_from_smaller_search(fake_gateway):
    fake_gateway.found = [make_business(name=f"Cafe {i}") for i in range(5)]
    small = discover(SearchParams(category="Cafe", location="Springfield", limit=1), fake_gateway)
    large = discover(SearchParams(category="Cafe", location="Springfield", limit=5), fake_gateway)
    assert len(small) == 1
    assert len(large) == 5
    assert len(fake_gateway.called("discover_businesses")) == 2


def test_empty_results_are_not_cached(fake_gateway):
    fake_gateway.found = []
    params = SearchParams(category="Cafe", location="Nowhere")
    assert discover(params, fake_gateway) == []
    discover(params, fake_gateway)
    assert len(fake_gateway.called("discover_businesses")) == 2


def test_outscraper_results_are_preferred(fake_gateway):
    outscraper = FakeOutscraper([make_business(name="From Maps")])
    found = discover(SearchParams(category="Cafe", location="Springfield"), fake_gateway, outscraper)
    assert [b.name for b in found] == ["From Maps"]
    assert outscraper.queries == [("Cafe", "Springfield", 5)]
    assert not fake_gateway.called("discover_businesses")


def test_outscraper_failure_falls_back_to_model(fake_gateway):
    outscraper = FakeOutscraper(error=RuntimeError("quota exceeded"))
    found = discover(SearchParams(category="Cafe", location="Springfield"), fake_gateway, outscraper)
    assert [b.name for b in found] == ["Joe's Cafe"]
    assert fake_gateway.called("discover_businesses")


def test_start_session_assigns_fresh_ids(fake_gateway):
    params = SearchParams(category="Cafe", location="Springfield")
    first = start_session(params, fake_gateway, RemoteStore(""))
    second = start_session(params, fake_gateway, RemoteStore(""))

    [a], [b] = first.businesses, second.businesses
    assert a.session_id == first.session.id
    assert a.id != b.id
    assert not first.synced
    assert "nur lokal" in first.message


def test_start_session_survives_remote_outage(fake_gateway):
    result = start_session(SearchParams(category="Cafe", location="Springfield"), fake_gateway, FailingStore())
    assert len(result.businesses) == 1
    assert not result.synced


def test_start_session_persists_remotely(fake_gateway, sqlite_store):
    params = SearchParams(category="Cafe", location="Springfield", include_media=True)
    result = start_session(params, fake_gateway, sqlite_store)
    assert result.synced

    [session] = sqlite_store.fetch_sessions()
    assert session.include_media is True
    stored = sqlite_store.fetch_businesses(result.session.id)
    assert [b.id for b in stored] == [b.id for b in result.businesses]
