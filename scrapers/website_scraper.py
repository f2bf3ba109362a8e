from __future__ import annotations

import base64
import logging
import re
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from models import EnrichedData

logger = logging.getLogger(__name__)

MAX_PAGES = 5
MIN_TEXT_LENGTH = 50
VIEWPORT = {"width": 1280, "height": 800}

CONTACT_KEYWORDS = [
    "kontakt",
    "contact",
    "contatti",
    "impressum",
    "team",
    "about",
    "ueber-uns",
    "about-us",
    "chi-siamo",
    "unternehmen",
    "company",
]

SOCIAL_HOSTS = (
    "facebook.com",
    "instagram.com",
    "linkedin.com",
    "twitter.com",
    "x.com",
    "tiktok.com",
    "youtube.com",
    "pinterest.com",
)


class WebsiteScraper:
    def __init__(self):
        self.session = requests.Session()
        self.session.headers.update(
            {
                "User-Agent": (
                    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
                    "AppleWebKit/537.36 (KHTML, like Gecko) "
                    "Chrome/120.0 Safari/537.36"
                )
            }
        )
        self._playwright = None
        self._browser = None

    def close(self):
        """Close the persistent Playwright browser if open."""
        if self._browser:
            try:
                self._browser.close()
            except Exception:
                pass
            self._browser = None
        if self._playwright:
            try:
                self._playwright.stop()
            except Exception:
                pass
            self._playwright = None

    def __del__(self):
        self.close()

    def fetch_contact_data(self, website_url: str) -> EnrichedData:
        """Collect emails, phones and social profiles linked from a business site."""
        if not website_url:
            return EnrichedData()

        base_url = _with_scheme(website_url.rstrip("/"))
        homepage = self._fetch_html(base_url)
        if not homepage or len(_html_to_text(homepage)) < MIN_TEXT_LENGTH:
            homepage = self._render_with_playwright(base_url) or homepage
        if not homepage:
            logger.info(f"Website {base_url}: nicht erreichbar")
            return EnrichedData()

        pages = [homepage]
        base_host = _host(base_url)
        subpages = [
            url
            for url in _keyword_filter_urls(_extract_links(homepage, base_url))
            if _host(url) == base_host and url.rstrip("/") != base_url
        ]
        for url in subpages[: MAX_PAGES - 1]:
            html = self._fetch_html(url)
            if html:
                pages.append(html)

        data = {"emails": [], "phones": [], "social_links": []}
        for html in pages:
            for key, values in _extract_contact_data_from_html(html, base_url).items():
                for value in values:
                    if value not in data[key]:
                        data[key].append(value)

        logger.info(
            f"Website {base_url}: {len(pages)} Seiten geladen, "
            f"{len(data['emails'])} Emails, {len(data['phones'])} Telefonnummern und "
            f"{len(data['social_links'])} Social-Links direkt extrahiert"
        )
        return EnrichedData(**data)

    def capture_screenshot(self, url: str) -> str | None:
        """Return a full-page PNG screenshot as base64, or None."""
        browser = self._get_browser()
        if browser is None:
            return None
        try:
            page = browser.new_page(viewport=VIEWPORT)
            try:
                page.goto(_with_scheme(url), wait_until="networkidle", timeout=30000)
                image = page.screenshot(full_page=True, type="png")
            finally:
                page.close()
            return base64.b64encode(image).decode("ascii")
        except Exception as e:
            logger.warning(f"Screenshot fehlgeschlagen für {url}: {e}")
            return None

    def _fetch_html(self, url: str) -> str | None:
        try:
            resp = self.session.get(url, timeout=20)
            if resp.status_code >= 400:
                return None
            return resp.text
        except Exception as e:
            logger.debug(f"HTTP fetch fehlgeschlagen für {url}: {e}")
            return None

    def _get_browser(self):
        """Lazily start a persistent Playwright browser instance."""
        if self._browser is None:
            try:
                from playwright.sync_api import sync_playwright
            except Exception:
                logger.debug("Playwright nicht installiert, Browser-Funktionen deaktiviert")
                return None
            try:
                self._playwright = sync_playwright().start()
                self._browser = self._playwright.chromium.launch()
            except Exception as e:
                logger.debug(f"Playwright-Start fehlgeschlagen: {e}")
                self._playwright = None
                return None
        return self._browser

    def _render_with_playwright(self, url: str) -> str | None:
        browser = self._get_browser()
        if browser is None:
            return None
        try:
            page = browser.new_page()
            try:
                page.goto(url, wait_until="networkidle", timeout=30000)
                html = page.content()
            finally:
                page.close()
            return html
        except Exception as e:
            logger.debug(f"Playwright-Render fehlgeschlagen für {url}: {e}")
            return None


def _with_scheme(url: str) -> str:
    return url if url.startswith("http") else "https://" + url


def _extract_links(html: str, base_url: str) -> list[str]:
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    for a in soup.find_all("a", href=True):
        href = a.get("href") or ""
        if not href:
            continue
        full = _normalize_url(urljoin(base_url, href))
        if full and full not in links:
            links.append(full)
    return links


def _html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return soup.get_text(separator="\n", strip=True)


def _extract_contact_data_from_html(html: str, base_url: str = "") -> dict[str, list[str]]:
    """Extract emails, phones and social profiles from mailto:, tel: and profile links."""
    soup = BeautifulSoup(html, "html.parser")
    emails: list[str] = []
    phones: list[str] = []
    social: list[str] = []
    for a in soup.find_all("a", href=True):
        href = (a.get("href") or "").strip()
        if href.startswith("mailto:"):
            email = href[7:].split("?")[0].strip()
            if email and email not in emails:
                emails.append(email)
        elif href.startswith("tel:"):
            phone = href[4:].strip()
            if phone and phone not in phones:
                phones.append(phone)
        else:
            url = urljoin(base_url, href) if base_url else href
            if _is_social(url) and url not in social:
                social.append(url)
    return {"emails": emails, "phones": phones, "social_links": social}


def _is_social(url: str) -> bool:
    host = _host(url)
    if host.startswith("www."):
        host = host[4:]
    return any(host == h or host.endswith("." + h) for h in SOCIAL_HOSTS)


def _keyword_filter_urls(urls: list[str]) -> list[str]:
    pattern = re.compile(
        r"(" + "|".join(re.escape(k) for k in CONTACT_KEYWORDS) + r")", re.I
    )
    filtered = [u for u in urls if pattern.search(u) and not _is_asset(u)]
    return filtered[:MAX_PAGES]


def _normalize_url(url: str) -> str | None:
    url = url.strip()
    if not url or url.startswith("mailto:") or url.startswith("tel:"):
        return None
    # query strings stay, some sites route contact pages through them
    return re.sub(r"#.*$", "", url)


def _is_asset(url: str) -> bool:
    return bool(
        re.search(r"\.(?:pdf|jpg|jpeg|png|gif|svg|webp|zip|rar|7z|xml)$", url, re.I)
    )


def _host(url: str) -> str:
    try:
        return urlparse(url).netloc.lower()
    except Exception:
        return ""
