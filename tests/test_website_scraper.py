import pytest

from scrapers.website_scraper import (
    WebsiteScraper,
    _extract_contact_data_from_html,
    _extract_links,
    _is_social,
    _keyword_filter_urls,
    _normalize_url,
    _with_scheme,
)

HOMEPAGE = """
<html><body>
  <p>Welcome to Joe's Cafe, the best coffee in Springfield since 1990. Come by!</p>
  <a href="/kontakt">Kontakt</a>
  <a href="/menu">Menu</a>
  <a href="https://other-site.com/contact">Partner</a>
  <a href="/files/impressum.pdf">Impressum PDF</a>
  <a href="mailto:joe@cafe.com?subject=Hi">Mail</a>
  <a href="https://www.instagram.com/joescafe">Instagram</a>
</body></html>
"""

CONTACT_PAGE = """
<html><body>
  <a href="tel:+15550100">Call</a>
  <a href="mailto:info@cafe.com">Info</a>
  <a href="mailto:joe@cafe.com">Joe</a>
  <a href="https://facebook.com/joescafe">Facebook</a>
</body></html>
"""


@pytest.fixture
def scraper():
    s = WebsiteScraper()
    yield s
    s.close()


def test_contact_data_from_links():
    data = _extract_contact_data_from_html(HOMEPAGE, "https://joescafe.com")
    assert data["emails"] == ["joe@cafe.com"]
    assert data["phones"] == []
    assert data["social_links"] == ["https://www.instagram.com/joescafe"]


def test_keyword_filter_skips_assets():
    links = _extract_links(HOMEPAGE, "https://joescafe.com")
    assert _keyword_filter_urls(links) == [
        "https://joescafe.com/kontakt",
        "https://other-site.com/contact",
    ]


def test_url_helpers():
    assert _with_scheme("joescafe.com") == "https://joescafe.com"
    assert _with_scheme("http://joescafe.com") == "http://joescafe.com"
    assert _normalize_url("https://joescafe.com/#top") == "https://joescafe.com/"
    assert _normalize_url("mailto:joe@cafe.com") is None
    assert _is_social("https://m.facebook.com/joescafe")
    assert not _is_social("https://notfacebook.com/joescafe")


def test_fetch_contact_data_visits_same_host_subpages(scraper, monkeypatch):
    pages = {
        "https://joescafe.com": HOMEPAGE,
        "https://joescafe.com/kontakt": CONTACT_PAGE,
    }
    fetched = []

    def fake_fetch(url):
        fetched.append(url)
        return pages.get(url)

    monkeypatch.setattr(scraper, "_fetch_html", fake_fetch)
    data = scraper.fetch_contact_data("joescafe.com/")

    assert fetched == ["https://joescafe.com", "https://joescafe.com/kontakt"]
    assert data.emails == ["joe@cafe.com", "info@cafe.com"]
    assert data.phones == ["+15550100"]
    assert data.social_links == [
        "https://www.instagram.com/joescafe",
        "https://facebook.com/joescafe",
    ]


def test_thin_homepage_is_rendered_in_browser(scraper, monkeypatch):
    monkeypatch.setattr(scraper, "_fetch_html", lambda url: "<html><body></body></html>")
    monkeypatch.setattr(scraper, "_render_with_playwright", lambda url: CONTACT_PAGE)
    data = scraper.fetch_contact_data("https://joescafe.com")
    assert data.phones == ["+15550100"]


def test_unreachable_site_gives_empty_data(scraper, monkeypatch):
    monkeypatch.setattr(scraper, "_fetch_html", lambda url: None)
    monkeypatch.setattr(scraper, "_render_with_playwright", lambda url: None)
    assert scraper.fetch_contact_data("https://down.example").is_empty()
    assert scraper.fetch_contact_data("").is_empty()


def test_screenshot_without_browser(scraper, monkeypatch):
    monkeypatch.setattr(scraper, "_get_browser", lambda: None)
    assert scraper.capture_screenshot("https://joescafe.com") is None
