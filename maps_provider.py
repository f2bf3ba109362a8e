"""Lazy, shared Google Places client for location suggestions.

The client is created once per API key on a background thread. Callers get a
``Future`` and wait with a timeout, so the UI never blocks on a slow or broken
Maps setup. A failed initialisation is retried on the next request.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from google.maps import places_v1

logger = logging.getLogger(__name__)

INIT_TIMEOUT_SECONDS = 10
REGION_TYPES = ["(regions)"]
CITY_TYPES = ["(cities)"]

_lock = threading.Lock()
_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="maps-init")
_providers: dict[str, Future] = {}


class MapProviderError(Exception):
    pass


def _create_client(api_key: str) -> places_v1.PlacesClient:
    client = places_v1.PlacesClient(client_options={"api_key": api_key})
    logger.info("Google Places Client initialisiert")
    return client


def _failed(future: Future) -> bool:
    return future.done() and (future.cancelled() or future.exception() is not None)


def ensure_map_provider(api_key: str, factory=_create_client) -> Future:
    """Return the (possibly still pending) client future for ``api_key``."""
    if not api_key:
        future: Future = Future()
        future.set_exception(MapProviderError("GOOGLE_MAPS_KEY ist nicht gesetzt"))
        return future
    with _lock:
        future = _providers.get(api_key)
        if future is None or _failed(future):
            future = _executor.submit(factory, api_key)
            _providers[api_key] = future
        return future


def get_map_provider(
    api_key: str, timeout: float = INIT_TIMEOUT_SECONDS, factory=_create_client
) -> places_v1.PlacesClient | None:
    try:
        return ensure_map_provider(api_key, factory).result(timeout=timeout)
    except FutureTimeoutError:
        logger.warning(f"Google Places nicht innerhalb von {timeout}s verfügbar")
        return None
    except Exception as e:
        logger.warning(f"Google Places nicht verfügbar: {e}")
        return None


def suggest_locations(
    client: places_v1.PlacesClient, query: str, cities: bool = False, limit: int = 5
) -> list[str]:
    """Autocomplete a region (or city) name."""
    if not query.strip():
        return []
    request = places_v1.AutocompletePlacesRequest(
        input=query,
        included_primary_types=CITY_TYPES if cities else REGION_TYPES,
    )
    try:
        response = client.autocomplete_places(request=request)
    except Exception as e:
        logger.warning(f"Ortsvorschläge für '{query}' fehlgeschlagen: {e}")
        return []

    suggestions = []
    for suggestion in response.suggestions:
        text = suggestion.place_prediction.text.text
        if text and text not in suggestions:
            suggestions.append(text)
    return suggestions[:limit]
