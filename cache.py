from __future__ import annotations

import hashlib
import json
import logging
import os
import sqlite3
import time
from pathlib import Path

from models import Business, PipelineBundle, WebsiteFilter

logger = logging.getLogger(__name__)

_DB_PATH = Path(os.getenv("PIPELINE_CACHE_PATH", "cache.db"))
_TTL_SECONDS = 7 * 24 * 3600  # 7 days, discovery results only


def _get_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(str(_DB_PATH))
    conn.execute(
        """CREATE TABLE IF NOT EXISTS cache (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            created_at REAL NOT NULL
        )"""
    )
    conn.execute(
        """CREATE TABLE IF NOT EXISTS bundles (
            business_id TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at REAL NOT NULL
        )"""
    )
    return conn


def _cache_key(*parts: str) -> str:
    raw = "|".join(parts)
    return hashlib.sha256(raw.encode()).hexdigest()


# --- pipeline bundles ---


def save_bundle(bundle: PipelineBundle) -> bool:
    """Write the bundle for its business id, replacing any earlier version."""
    try:
        conn = _get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO bundles (business_id, value, updated_at) VALUES (?, ?, ?)",
            (bundle.business.id, bundle.model_dump_json(), time.time()),
        )
        conn.commit()
        conn.close()
        return True
    except Exception as e:
        logger.error(f"Lokales Speichern für '{bundle.business.name}' fehlgeschlagen: {e}")
        return False


def load_bundle(business_id: str) -> PipelineBundle | None:
    try:
        conn = _get_conn()
        row = conn.execute(
            "SELECT value FROM bundles WHERE business_id = ?", (business_id,)
        ).fetchone()
        conn.close()
        if row is None:
            return None
        return PipelineBundle.model_validate_json(row[0])
    except Exception as e:
        logger.warning(f"Lokaler Stand für {business_id} nicht lesbar: {e}")
        return None


def load_bundles(business_ids: list[str]) -> dict[str, PipelineBundle]:
    bundles = {}
    for business_id in business_ids:
        bundle = load_bundle(business_id)
        if bundle is not None:
            bundles[business_id] = bundle
    return bundles


# --- discovery results ---


def _discovery_key(
    category: str,
    location: str,
    rating_min: float,
    website_filter: WebsiteFilter,
    limit: int,
) -> str:
    return _cache_key(
        "discovery",
        category.strip().lower(),
        location.strip().lower(),
        f"{rating_min:.1f}",
        WebsiteFilter(website_filter).value,
        str(limit),
    )


def get_cached_businesses(
    category: str,
    location: str,
    rating_min: float,
    website_filter: WebsiteFilter,
    limit: int,
) -> list[Business] | None:
    """Return cached discovery results if fresh enough, else None."""
    key = _discovery_key(category, location, rating_min, website_filter, limit)
    try:
        conn = _get_conn()
        row = conn.execute(
            "SELECT value, created_at FROM cache WHERE key = ?", (key,)
        ).fetchone()
        conn.close()
        if row is None:
            return None
        value, created_at = row
        if time.time() - created_at > _TTL_SECONDS:
            return None
        data = json.loads(value)
        return [Business(**b) for b in data]
    except Exception as e:
        logger.debug(f"Cache-Lesefehler: {e}")
        return None


def set_cached_businesses(
    category: str,
    location: str,
    rating_min: float,
    website_filter: WebsiteFilter,
    limit: int,
    businesses: list[Business],
) -> None:
    """Store discovery results in cache."""
    key = _discovery_key(category, location, rating_min, website_filter, limit)
    try:
        value = json.dumps(
            [b.model_dump(mode="json") for b in businesses], ensure_ascii=False
        )
        conn = _get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO cache (key, value, created_at) VALUES (?, ?, ?)",
            (key, value, time.time()),
        )
        conn.commit()
        conn.close()
    except Exception as e:
        logger.debug(f"Cache-Schreibfehler: {e}")
