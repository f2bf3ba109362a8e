"""Remote tier: best-effort sync of sessions and pipeline records to a SQL database.

Every child record kind has one row per business, written with a single
``INSERT ... ON CONFLICT (business_id) DO UPDATE`` so concurrent manual and
periodic saves can never create duplicates.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from models import Business, OutreachPackage, Session, WebsiteReview, utc_now

logger = logging.getLogger(__name__)

metadata = MetaData()

sessions_table = Table(
    "sessions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("category", Text, nullable=False),
    Column("location", Text, nullable=False),
    Column("rating_min", Float),
    Column("rating_max", Float),
    Column("website_filter", String(32)),
    Column("review_count_min", Integer),
    Column("include_media", Boolean),
    Column("status", String(16)),
)

businesses_table = Table(
    "businesses",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("session_id", String(64), index=True),
    Column("name", Text, nullable=False),
    Column("address", Text),
    Column("rating", Float),
    Column("review_count", Integer),
    Column("website_status", String(16)),
    Column("description", Text),
    Column("phone", Text),
    Column("website", Text),
    Column("google_maps_uri", Text),
    Column("notes", Text),
    Column("enriched_data", JSON),
)


def _child_table(name: str, *columns: Column) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("business_id", String(64), nullable=False, unique=True),
        *columns,
        Column("updated_at", DateTime(timezone=True), nullable=False),
    )


prompts_table = _child_table(
    "prompts", Column("content", Text), Column("approved", Boolean)
)
websites_table = _child_table(
    "websites", Column("markup", Text), Column("url", Text), Column("screenshot", Text)
)
reviews_table = _child_table("reviews", Column("data", JSON))
outreach_table = _child_table("outreach", Column("data", JSON))

CHILD_TABLES = {
    "prompts": prompts_table,
    "websites": websites_table,
    "reviews": reviews_table,
    "outreach": outreach_table,
}


class PersistenceError(Exception):
    pass


class RemoteStore:
    def __init__(self, database_url: str = ""):
        self.database_url = database_url
        self._engine = None
        self._schema_ready = False

    @property
    def enabled(self) -> bool:
        return bool(self.database_url)

    def _get_engine(self):
        if self._engine is None:
            try:
                self._engine = create_engine(self.database_url, pool_pre_ping=True)
            except Exception as e:
                raise PersistenceError(f"Datenbank nicht erreichbar: {e}") from e
            if self._engine.dialect.name not in ("postgresql", "sqlite"):
                raise PersistenceError(
                    f"Datenbank-Dialekt '{self._engine.dialect.name}' wird nicht unterstützt"
                )
        return self._engine

    @contextmanager
    def _begin(self):
        engine = self._get_engine()
        try:
            if not self._schema_ready:
                metadata.create_all(engine)
                self._schema_ready = True
            with engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    def _insert(self, table: Table):
        if self._get_engine().dialect.name == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    def _upsert_child(self, table: Table, business_id: str, values: dict) -> None:
        if not self.enabled:
            return
        row = {"business_id": business_id, "updated_at": utc_now(), **values}
        stmt = self._insert(table).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=["business_id"],
            set_={key: stmt.excluded[key] for key in row if key != "business_id"},
        )
        with self._begin() as conn:
            conn.execute(stmt)
        logger.debug(f"{table.name} für {business_id} synchronisiert")

    # --- sessions and businesses ---

    def create_session(self, session: Session) -> str:
        if not self.enabled:
            return session.id
        row = session.model_dump(mode="json")
        row["created_at"] = session.created_at
        with self._begin() as conn:
            conn.execute(sessions_table.insert().values(**row))
        logger.info(f"Session {session.id} remote angelegt")
        return session.id

    def save_businesses(self, businesses: list[Business]) -> list[str]:
        """Insert new businesses; rows that already exist are left untouched."""
        ids = [b.id for b in businesses]
        if not self.enabled or not businesses:
            return ids
        rows = [_business_row(b) for b in businesses]
        stmt = self._insert(businesses_table).values(rows)
        stmt = stmt.on_conflict_do_nothing(index_elements=["id"])
        with self._begin() as conn:
            conn.execute(stmt)
        logger.info(f"{len(rows)} Unternehmen remote gespeichert")
        return ids

    def update_business(self, business: Business) -> None:
        """Write the latest business fields (e.g. after enrichment).

        A business without enrichment leaves the stored ``enriched_data`` alone.
        """
        if not self.enabled:
            return
        row = _business_row(business)
        keep = {"id"} if business.is_enriched else {"id", "enriched_data"}
        stmt = self._insert(businesses_table).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={key: stmt.excluded[key] for key in row if key not in keep},
        )
        with self._begin() as conn:
            conn.execute(stmt)

    # --- pipeline records ---

    def upsert_prompt(self, business_id: str, content: str, approved: bool) -> None:
        self._upsert_child(
            prompts_table, business_id, {"content": content, "approved": approved}
        )

    def upsert_website(
        self, business_id: str, markup: str, url: str, screenshot: str = ""
    ) -> None:
        self._upsert_child(
            websites_table,
            business_id,
            {"markup": markup, "url": url, "screenshot": screenshot},
        )

    def upsert_review(self, business_id: str, review: WebsiteReview) -> None:
        self._upsert_child(
            reviews_table, business_id, {"data": review.model_dump(mode="json")}
        )

    def upsert_outreach(self, business_id: str, outreach: OutreachPackage) -> None:
        self._upsert_child(
            outreach_table, business_id, {"data": outreach.model_dump(mode="json")}
        )

    # --- reads ---

    def fetch_sessions(self, limit: int = 20) -> list[Session]:
        if not self.enabled:
            return []
        query = (
            select(sessions_table)
            .order_by(sessions_table.c.created_at.desc())
            .limit(limit)
        )
        with self._begin() as conn:
            rows = conn.execute(query).mappings().all()
        return [Session.model_validate(dict(row)) for row in rows]

    def fetch_businesses(self, session_id: str) -> list[Business]:
        if not self.enabled:
            return []
        query = (
            select(businesses_table)
            .where(businesses_table.c.session_id == session_id)
            .order_by(businesses_table.c.name)
        )
        with self._begin() as conn:
            rows = conn.execute(query).mappings().all()
        return [Business.model_validate(dict(row)) for row in rows]

    def fetch_record(self, kind: str, business_id: str) -> dict | None:
        """Return the stored row of one record kind for a business, or None."""
        table = CHILD_TABLES[kind]
        if not self.enabled:
            return None
        with self._begin() as conn:
            row = (
                conn.execute(select(table).where(table.c.business_id == business_id))
                .mappings()
                .first()
            )
        return dict(row) if row else None


def _business_row(business: Business) -> dict:
    row = business.model_dump(mode="json", exclude={"enriched_data"})
    row["enriched_data"] = (
        business.enriched_data.model_dump() if business.enriched_data else None
    )
    return row

