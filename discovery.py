from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pydantic import BaseModel

import cache
from generation.gateway import GenerationGateway
from models import Business, Session, WebsiteFilter, WebsiteStatus, new_id
from remote_store import PersistenceError, RemoteStore
from scrapers.outscraper_client import OutscraperService

logger = logging.getLogger(__name__)

_ALLOWED_STATUS = {
    WebsiteFilter.NO_WEBSITE: {WebsiteStatus.NONE},
    WebsiteFilter.POOR_WEBSITE: {WebsiteStatus.NONE, WebsiteStatus.POOR},
}


class SearchParams(BaseModel):
    category: str
    location: str
    rating_min: float = 0.0
    rating_max: float = 5.0
    website_filter: WebsiteFilter = WebsiteFilter.ANY
    review_count_min: int = 0
    include_media: bool = False
    limit: int = 5

    def to_session(self) -> Session:
        return Session(
            category=self.category,
            location=self.location,
            rating_min=self.rating_min,
            rating_max=self.rating_max,
            website_filter=self.website_filter,
            review_count_min=self.review_count_min,
            include_media=self.include_media,
        )


@dataclass
class DiscoveryResult:
    session: Session
    businesses: list[Business] = field(default_factory=list)
    synced: bool = False

    @property
    def message(self) -> str:
        count = len(self.businesses)
        if self.synced:
            return f"{count} Unternehmen gefunden und gespeichert"
        return f"{count} Unternehmen gefunden (nur lokal)"


def matches_filters(business: Business, params: SearchParams) -> bool:
    if not params.rating_min <= business.rating <= params.rating_max:
        return False
    if business.review_count < params.review_count_min:
        return False
    allowed = _ALLOWED_STATUS.get(params.website_filter)
    return allowed is None or business.website_status in allowed


def discover(
    params: SearchParams,
    gateway: GenerationGateway,
    outscraper: OutscraperService | None = None,
) -> list[Business]:
    """Find candidate businesses, using cached results when they are fresh."""
    found = cache.get_cached_businesses(
        params.category,
        params.location,
        params.rating_min,
        params.website_filter,
        params.limit,
    )
    if found is not None:
        logger.info(f"Suchergebnisse aus Cache geladen ({len(found)} Firmen)")
    else:
        found = []
        if outscraper is not None:
            try:
                found = outscraper.search_businesses(
                    params.category, params.location, limit=params.limit
                )
            except Exception as e:
                logger.error(f"OutScraper-Fehler, nutze KI-Suche: {e}")
        if not found:
            found = gateway.discover_businesses(
                params.category,
                params.location,
                params.rating_min,
                limit=params.limit,
                website_filter=params.website_filter,
            )
        if found:
            cache.set_cached_businesses(
                params.category,
                params.location,
                params.rating_min,
                params.website_filter,
                params.limit,
                found,
            )

    matching = [b for b in found if matches_filters(b, params)]
    if len(matching) < len(found):
        logger.info(f"{len(found) - len(matching)} Firmen durch Filter aussortiert")
    return matching[: params.limit]


def start_session(
    params: SearchParams,
    gateway: GenerationGateway,
    store: RemoteStore,
    outscraper: OutscraperService | None = None,
) -> DiscoveryResult:
    """Run discovery and record the new session with its businesses."""
    session = params.to_session()
    businesses = [
        b.model_copy(update={"id": new_id(), "session_id": session.id})
        for b in discover(params, gateway, outscraper)
    ]
    result = DiscoveryResult(session=session, businesses=businesses)
    if not store.enabled:
        return result

    try:
        store.create_session(session)
        store.save_businesses(businesses)
        result.synced = True
    except PersistenceError as e:
        logger.warning(f"Session {session.id} konnte nicht gespeichert werden: {e}")
    return result
