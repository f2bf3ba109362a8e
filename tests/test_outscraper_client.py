import pytest

from models import WebsiteStatus
from scrapers.outscraper_client import OutscraperService


class FakeApiClient:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def google_maps_search(self, query, **kwargs):
        self.calls.append((query, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def service():
    return OutscraperService("test-key")


def test_search_parses_places(service):
    service.client = FakeApiClient(
        [
            [
                {
                    "name": "Joe's Cafe",
                    "full_address": "1 Main St, Springfield",
                    "rating": 4.5,
                    "reviews": "1,234",
                    "category": "Cafe",
                    "phone": "+1 555 0100",
                    "location_link": "https://maps.google.com/?cid=1",
                    "email_1": "joe@cafe.com",
                    "email_2": "joe@cafe.com",
                },
                {"name": "Bean There", "site": "https://beanthere.com", "rating": None},
                {"rating": 5},
            ]
        ]
    )
    businesses = service.search_businesses("Cafe", "Springfield", limit=10)

    assert [b.name for b in businesses] == ["Joe's Cafe", "Bean There"]
    joe, bean = businesses
    assert joe.review_count == 1234
    assert joe.website_status == WebsiteStatus.NONE
    assert joe.google_maps_uri == "https://maps.google.com/?cid=1"
    assert joe.enriched_data.emails == ["joe@cafe.com"]
    assert bean.website_status == WebsiteStatus.UNKNOWN
    assert bean.rating == 0.0
    assert bean.enriched_data is None

    query, kwargs = service.client.calls[0]
    assert query == "Cafe in Springfield"
    assert kwargs["limit"] == 10
    assert kwargs["language"] == "de"


def test_empty_response(service):
    service.client = FakeApiClient([[]])
    assert service.search_businesses("Cafe", "Nowhere") == []


def test_transient_errors_are_retried(service):
    service.client = FakeApiClient(RuntimeError("503"), [[{"name": "Joe's Cafe"}]])
    assert [b.name for b in service.search_businesses("Cafe", "Springfield")] == ["Joe's Cafe"]
    assert len(service.client.calls) == 2
