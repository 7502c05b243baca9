"""
Table backend abstraction for the hosted Supabase project and a local
SQLAlchemy stand-in.

Both implementations expose the same generic select/insert/update/delete
surface over the four CRM tables. Filters are structured so each backend can
render them natively (PostgREST filter strings vs. SQL expressions).
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

import httpx
from postgrest.exceptions import APIError
from sqlalchemy import (
    Column,
    ForeignKey,
    String,
    Text,
    and_,
    create_engine,
    delete,
    event,
    insert,
    or_,
    select,
    true,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from crm.records import DEFAULT_TAG_COLOR, now_iso

CONTACTS_TABLE = "contacts"
ACTIVITIES_TABLE = "activities"
TAGS_TABLE = "tags"
CONTACT_TAGS_TABLE = "contact_tags"

FILTER_OPS = ("eq", "ilike", "in")


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def ilike(column: str, pattern: str) -> Filter:
    return Filter(column, "ilike", pattern)


LIKE_ESCAPE = "\\"


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so ``term`` only matches literally."""
    return (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


class TableBackend(Protocol):
    """Generic table operations the data-access layer needs from the store."""

    # Exception types a request can fail with; callers wrap these.
    request_errors: tuple[type[BaseException], ...]

    def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        any_of: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        ...

    def insert(self, table: str, row: dict) -> dict:
        ...

    def update(
        self, table: str, values: dict, *, filters: Sequence[Filter]
    ) -> list[dict]:
        ...

    def delete(self, table: str, *, filters: Sequence[Filter]) -> None:
        ...


def is_unique_violation(exc: BaseException) -> bool:
    """True when a backend error is a uniqueness/primary-key conflict."""
    if getattr(exc, "code", None) == "23505":
        return True
    orig = getattr(exc, "orig", None)
    message = str(orig if orig is not None else exc).lower()
    return "unique constraint" in message or "duplicate key" in message


# PostgREST reserves these inside or=(...) groups.
_POSTGREST_RESERVED = set(',.:()"\\')


def _postgrest_value(value: Any) -> str:
    text = str(value)
    if any(ch in _POSTGREST_RESERVED for ch in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def render_postgrest_filter(flt: Filter) -> str:
    """Render a filter in PostgREST's ``column.op.value`` syntax."""
    if flt.op == "in":
        values = ",".join(_postgrest_value(v) for v in flt.value)
        return f"{flt.column}.in.({values})"
    return f"{flt.column}.{flt.op}.{_postgrest_value(flt.value)}"


class SupabaseTableBackend:
    """Runs table requests through the supabase-py client."""

    request_errors = (APIError, httpx.HTTPError)

    def __init__(self, client):
        self._client = client

    def _apply_filters(self, query, filters: Sequence[Filter]):
        for flt in filters:
            if flt.op == "eq":
                query = query.eq(flt.column, flt.value)
            elif flt.op == "ilike":
                query = query.ilike(flt.column, flt.value)
            else:
                query = query.in_(flt.column, list(flt.value))
        return query

    def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        any_of: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        query = self._client.table(table).select("*")
        query = self._apply_filters(query, filters)
        if any_of:
            query = query.or_(",".join(render_postgrest_filter(f) for f in any_of))
        if order_by:
            query = query.order(order_by, desc=descending)
        if limit is not None:
            query = query.limit(limit)
        response = query.execute()
        return list(response.data or [])

    def insert(self, table: str, row: dict) -> dict:
        response = self._client.table(table).insert(row).execute()
        if not response.data:
            return dict(row)
        return response.data[0]

    def update(
        self, table: str, values: dict, *, filters: Sequence[Filter]
    ) -> list[dict]:
        query = self._apply_filters(self._client.table(table).update(values), filters)
        response = query.execute()
        return list(response.data or [])

    def delete(self, table: str, *, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        query = self._apply_filters(self._client.table(table).delete(), filters)
        query.execute()


Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class ContactRow(Base):
    __tablename__ = CONTACTS_TABLE

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    company = Column(String, nullable=True)
    status = Column(String, nullable=False, default="Lead", index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(String, nullable=False, default=now_iso)
    updated_at = Column(String, nullable=False, default=now_iso)


class ActivityRow(Base):
    __tablename__ = ACTIVITIES_TABLE

    id = Column(String, primary_key=True, default=_new_id)
    contact_id = Column(
        String,
        ForeignKey(f"{CONTACTS_TABLE}.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    date = Column(String, nullable=False, default=now_iso)
    created_at = Column(String, nullable=False, default=now_iso)


class TagRow(Base):
    __tablename__ = TAGS_TABLE

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default=DEFAULT_TAG_COLOR)


class ContactTagRow(Base):
    __tablename__ = CONTACT_TAGS_TABLE

    # Composite primary key: a tag is attached to a contact at most once.
    contact_id = Column(
        String,
        ForeignKey(f"{CONTACTS_TABLE}.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag_id = Column(
        String,
        ForeignKey(f"{TAGS_TABLE}.id", ondelete="CASCADE"),
        primary_key=True,
    )


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SqlTableBackend:
    """
    SQLAlchemy-backed stand-in for the hosted tables. Accepts any SQLAlchemy
    URL (SQLite for local runs and tests, Postgres for a self-hosted schema).
    """

    request_errors = (SQLAlchemyError,)

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("A database URL is required for SqlTableBackend")
        engine_kwargs: dict[str, Any] = {"future": True}
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise each thread sees its own database.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(pool_pre_ping=True, pool_recycle=1800)
        self.engine = create_engine(database_url, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._lock = threading.Lock()
        Base.metadata.create_all(self.engine)

    def _table(self, name: str):
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise ValueError(f"Unknown table: {name}") from None

    @staticmethod
    def _clause(table, flt: Filter):
        column = table.c[flt.column]
        if flt.op == "eq":
            return column == flt.value
        if flt.op == "ilike":
            return column.ilike(flt.value, escape=LIKE_ESCAPE)
        return column.in_(list(flt.value))

    def _where(self, table, filters: Sequence[Filter], any_of: Sequence[Filter] = ()):
        clauses = [self._clause(table, f) for f in filters]
        if any_of:
            clauses.append(or_(*(self._clause(table, f) for f in any_of)))
        return and_(true(), *clauses)

    def _pk_filter(self, table, row) -> Any:
        return and_(*(col == row[col.name] for col in table.primary_key.columns))

    def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        any_of: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        tbl = self._table(table)
        stmt = select(tbl).where(self._where(tbl, filters, any_of))
        if order_by:
            column = tbl.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._lock, self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(stmt).mappings()]

    def insert(self, table: str, row: dict) -> dict:
        tbl = self._table(table)
        values = {k: v for k, v in row.items() if k in tbl.c}
        with self._lock, self.engine.begin() as conn:
            result = conn.execute(insert(tbl).values(**values))
            pk = dict(
                zip(
                    (col.name for col in tbl.primary_key.columns),
                    result.inserted_primary_key,
                )
            )
            stored = conn.execute(
                select(tbl).where(self._pk_filter(tbl, pk))
            ).mappings().one()
            return dict(stored)

    def update(
        self, table: str, values: dict, *, filters: Sequence[Filter]
    ) -> list[dict]:
        tbl = self._table(table)
        values = {k: v for k, v in values.items() if k in tbl.c}
        where = self._where(tbl, filters)
        with self._lock, self.engine.begin() as conn:
            pk_cols = list(tbl.primary_key.columns)
            keys = [dict(r) for r in conn.execute(select(*pk_cols).where(where)).mappings()]
            if not keys:
                return []
            if values:
                conn.execute(update(tbl).where(where).values(**values))
            rows = []
            for key in keys:
                stored = conn.execute(
                    select(tbl).where(self._pk_filter(tbl, key))
                ).mappings().one()
                rows.append(dict(stored))
            return rows

    def delete(self, table: str, *, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        tbl = self._table(table)
        with self._lock, self.engine.begin() as conn:
            conn.execute(delete(tbl).where(self._where(tbl, filters)))
