"""Subscription store — upsert-by-user_id backends.

Two interchangeable backends, selected by SUBSCRIPTION_STORE:
- SqlSubscriptionStore: INSERT ... ON CONFLICT (user_id) DO UPDATE through
  Flask-SQLAlchemy (Postgres in production, SQLite in tests).
- SupabaseSubscriptionStore: PostgREST upsert with the service role key
  (``Prefer: resolution=merge-duplicates``).

Both raise StoreError on failure; neither retries.
"""

import logging
from datetime import datetime

import requests
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from billing_relay.errors import StoreError
from billing_relay.models.subscription import Subscription
from billing_relay.services.mapping import TIMESTAMP_FIELDS

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _parse_iso(value):
    """``2023-11-14T22:13:20.000Z`` -> aware datetime (None passes through)."""
    if value is None:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class SqlSubscriptionStore:
    """Upserts into the subscriptions table via a SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    def _row(self, record):
        row = record.as_dict()
        for key in TIMESTAMP_FIELDS + ("updated_at",):
            row[key] = _parse_iso(row[key])
        return row

    def upsert(self, record):
        """Insert the record, or overwrite every mapped field on user_id conflict."""
        dialect = self.session.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise StoreError(f"Upsert not supported on {dialect}")

        row = self._row(record)
        stmt = insert(Subscription.__table__).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={k: v for k, v in row.items() if k != "user_id"},
        )

        try:
            self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f"Upsert failed for user {record.user_id}: {e}") from e

    def get(self, user_id):
        return self.session.query(Subscription).filter_by(user_id=user_id).first()


class SupabaseSubscriptionStore:
    """Upserts through the Supabase REST API (PostgREST)."""

    def __init__(self, url, service_key, table="subscriptions", timeout=10):
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.table = table
        self.timeout = timeout

    def _headers(self):
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates,return=minimal",
        }

    def upsert(self, record):
        """POST with on_conflict=user_id; Supabase merges into the existing row."""
        endpoint = f"{self.url}/rest/v1/{self.table}"
        try:
            resp = requests.post(
                endpoint,
                params={"on_conflict": "user_id"},
                json=record.as_dict(),
                headers=self._headers(),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            detail = ""
            if e.response is not None:
                detail = f" ({e.response.status_code}: {e.response.text})"
            raise StoreError(
                f"Supabase upsert failed for user {record.user_id}: {e}{detail}"
            ) from e
        logger.debug(f"Supabase upsert ok for user {record.user_id}")


def build_store(app, session=None):
    """Construct the configured store for one request."""
    backend = app.config.get("SUBSCRIPTION_STORE", "sql")
    if backend == "supabase":
        return SupabaseSubscriptionStore(
            url=app.config["SUPABASE_URL"],
            service_key=app.config["SUPABASE_SERVICE_ROLE_KEY"],
            table=app.config.get("SUBSCRIPTION_TABLE", "subscriptions"),
            timeout=app.config.get("SUPABASE_TIMEOUT", 10),
        )
    if backend == "sql":
        if session is None:
            from billing_relay.extensions import db
            session = db.session
        return SqlSubscriptionStore(session)
    raise ValueError(f"Unknown SUBSCRIPTION_STORE: {backend!r}")
