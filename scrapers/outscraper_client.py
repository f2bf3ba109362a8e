from __future__ import annotations

import logging

from outscraper import ApiClient
from tenacity import retry, stop_after_attempt, wait_exponential

from generation.normalizer import coerce_float, coerce_int
from models import Business, EnrichedData, WebsiteStatus

logger = logging.getLogger(__name__)


class OutscraperService:
    def __init__(self, api_key: str, language: str = "de"):
        self.client = ApiClient(api_key=api_key)
        self.language = language

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=2, max=30))
    def _api_search(self, query: str, limit: int) -> list[dict]:
        results = self.client.google_maps_search(
            query,
            limit=limit,
            language=self.language,
            enrichment=["domains_service"],
        )
        if not results or not results[0]:
            return []
        return results[0]

    def search_businesses(
        self, category: str, location: str, limit: int = 20
    ) -> list[Business]:
        query = f"{category} in {location}"
        logger.info(f"OutScraper-Suche: '{query}', limit={limit}")

        raw_results = self._api_search(query, limit)
        if not raw_results:
            logger.warning("Keine Ergebnisse von OutScraper erhalten")
            return []

        businesses = []
        for item in raw_results:
            try:
                business = self._parse_result(item)
                if business:
                    businesses.append(business)
            except Exception as e:
                name = item.get("name", "???")
                logger.warning(f"Fehler beim Parsen von '{name}': {e}")

        logger.info(f"{len(businesses)} Firmen gefunden")
        return businesses

    def _parse_result(self, item: dict) -> Business | None:
        if not item.get("name"):
            return None

        # Collect emails from domains_service enrichment (email_1, email_2, email_3)
        emails = []
        for i in range(1, 4):
            email = item.get(f"email_{i}")
            if email and email not in emails:
                emails.append(email)

        website = item.get("site") or item.get("website") or ""
        # Maps only tells us whether a site exists, not whether it is any good
        status = WebsiteStatus.UNKNOWN if website else WebsiteStatus.NONE

        return Business(
            name=item.get("name") or "",
            address=item.get("full_address") or item.get("address") or "",
            rating=coerce_float(item.get("rating")),
            review_count=coerce_int(item.get("reviews")),
            website_status=status,
            description=item.get("category") or item.get("type") or "",
            phone=item.get("phone") or "",
            website=website,
            google_maps_uri=item.get("location_link") or "",
            enriched_data=EnrichedData(emails=emails) if emails else None,
        )
