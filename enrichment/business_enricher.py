from __future__ import annotations

import logging

from generation.gateway import GenerationGateway
from models import Business, EnrichedData
from scrapers.website_scraper import WebsiteScraper

logger = logging.getLogger(__name__)

NOTES_PREFIX = "Extra: "


class BusinessEnricher:
    """Gathers contact and background data for a business.

    Two sources are combined: model-driven web research through the gateway
    and, when the business has a website, links scraped directly from it.
    Results only ever add to what is already known.
    """

    def __init__(self, gateway: GenerationGateway, scraper: WebsiteScraper | None = None):
        self.gateway = gateway
        self.scraper = scraper

    def research(self, business: Business) -> EnrichedData:
        found = self.gateway.enrich_business(business)
        if self.scraper is not None and business.website:
            try:
                scraped = self.scraper.fetch_contact_data(business.website)
            except Exception as e:
                logger.warning(f"'{business.name}': Website-Scraping fehlgeschlagen: {e}")
                scraped = EnrichedData()
            found = _union(scraped, found)
        if found.is_empty():
            logger.info(f"'{business.name}': Keine zusätzlichen Daten gefunden")
        else:
            logger.info(
                f"'{business.name}': {len(found.emails)} Emails, {len(found.phones)} "
                f"Telefonnummern, {len(found.services)} Leistungen gefunden"
            )
        return found

    def apply(self, business: Business, found: EnrichedData) -> Business:
        enriched = business.with_enrichment(found)
        data = enriched.enriched_data
        updates = {}
        if not enriched.phone and data.phones:
            updates["phone"] = data.phones[0]
        if not enriched.notes and data.services:
            updates["notes"] = NOTES_PREFIX + ", ".join(data.services)
        return enriched.model_copy(update=updates) if updates else enriched

    def enrich_business(self, business: Business) -> Business:
        return self.apply(business, self.research(business))


def _union(first: EnrichedData, second: EnrichedData) -> EnrichedData:
    """Combine two findings field by field, keeping order and dropping duplicates."""
    merged = {}
    for name in EnrichedData.model_fields:
        a, b = getattr(first, name), getattr(second, name)
        if isinstance(a, list):
            merged[name] = list(dict.fromkeys(a + b))
        else:
            merged[name] = "\n\n".join(part for part in (a, b) if part)
    return EnrichedData(**merged)
