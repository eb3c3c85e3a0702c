"""
Record Store - query interface over the hosted BloodLink database
Supports select/filter/order/limit and insert over named collections
(donors, blood_requests, volunteers, partnerships)
"""

import asyncio
import copy
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)

FILTER_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "in", "ilike")


class RecordStoreError(Exception):
    """Raised when the record store cannot complete a query or insert"""


@dataclass
class Query:
    """
    A pending select over one table. Filters are ANDed together.
    Build it with the chaining helpers, then ``await query.execute()``.
    """
    store: "RecordStore"
    table: str
    filters: List[Tuple[str, str, Any]] = field(default_factory=list)
    ordering: Optional[Tuple[str, bool]] = None
    row_limit: Optional[int] = None

    def filter(self, column: str, op: str, value: Any) -> "Query":
        if op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        self.filters.append((column, op, value))
        return self

    def eq(self, column: str, value: Any) -> "Query":
        return self.filter(column, "eq", value)

    def in_(self, column: str, values) -> "Query":
        return self.filter(column, "in", list(values))

    def ilike(self, column: str, pattern: str) -> "Query":
        return self.filter(column, "ilike", pattern)

    def order(self, column: str, desc: bool = False) -> "Query":
        self.ordering = (column, desc)
        return self

    def limit(self, count: int) -> "Query":
        self.row_limit = count
        return self

    async def execute(self) -> List[Dict[str, Any]]:
        return await self.store.run_query(self)


class RecordStore:
    """Base class for record stores"""

    def select(self, table: str) -> Query:
        return Query(store=self, table=table)

    async def run_query(self, query: Query) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError


def ilike_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate an SQL ILIKE pattern (% and _ wildcards) to a compiled regex"""
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _matches(row: Dict[str, Any], column: str, op: str, value: Any) -> bool:
    actual = row.get(column)

    if op == "eq":
        return actual == value
    if op == "neq":
        return actual != value
    if op == "in":
        return actual in value
    if op == "ilike":
        if actual is None:
            return False
        return bool(ilike_to_regex(value).match(str(actual)))

    if actual is None:
        return False
    if op == "gt":
        return actual > value
    if op == "gte":
        return actual >= value
    if op == "lt":
        return actual < value
    if op == "lte":
        return actual <= value
    raise ValueError(f"Unsupported filter operator: {op}")


class InMemoryRecordStore(RecordStore):
    """
    Record store kept in process memory. Used by the demo and the tests.
    Unknown tables read as empty.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        for name, rows in (tables or {}).items():
            self.tables[name] = [self._with_defaults(row) for row in rows]

    @staticmethod
    def _with_defaults(row: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(row)
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return record

    async def run_query(self, query: Query) -> List[Dict[str, Any]]:
        rows = [
            row for row in self.tables.get(query.table, [])
            if all(_matches(row, column, op, value) for column, op, value in query.filters)
        ]

        if query.ordering:
            column, desc = query.ordering
            # Rows missing the column sort last in either direction
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            rows = present + missing

        if query.row_limit is not None:
            rows = rows[:query.row_limit]

        return copy.deepcopy(rows)

    async def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        inserted = [self._with_defaults(row) for row in rows]
        self.tables.setdefault(table, []).extend(inserted)
        logger.debug(f"Inserted {len(inserted)} rows into {table}")
        return copy.deepcopy(inserted)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def build_query_params(query: Query) -> List[Tuple[str, str]]:
    """Encode a query as PostgREST URL parameters"""
    params = [("select", "*")]

    for column, op, value in query.filters:
        if op == "in":
            items = ",".join(f'"{_format_value(v)}"' for v in value)
            params.append((column, f"in.({items})"))
        elif op == "eq" and value is None:
            params.append((column, "is.null"))
        else:
            params.append((column, f"{op}.{_format_value(value)}"))

    if query.ordering:
        column, desc = query.ordering
        params.append(("order", f"{column}.{'desc' if desc else 'asc'}"))

    if query.row_limit is not None:
        params.append(("limit", str(query.row_limit)))

    return params


class RestRecordStore(RecordStore):
    """
    Record store backed by a PostgREST endpoint (the REST interface of a
    hosted Supabase project)
    """

    def __init__(self, base_url: str, api_key: str, timeout_seconds: float = 10):
        """
        Args:
            base_url (str): Project URL, e.g. https://xyz.supabase.co
            api_key (str): Service or anon key sent as apikey and bearer token
            timeout_seconds (float): Total timeout per request
        """
        if not base_url:
            raise ValueError("Record store URL is required")
        self.base_url = base_url.rstrip("/") + "/rest/v1"
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": "BloodLink/1.0",
        }

    async def run_query(self, query: Query) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/{query.table}"
        params = build_query_params(query)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url, params=params, headers=self._headers()) as response:
                    if response.status >= 400:
                        detail = await response.text()
                        raise RecordStoreError(
                            f"Query on {query.table} failed with HTTP {response.status}: {detail}"
                        )
                    return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Record store query error on {query.table}: {e!r}")
            raise RecordStoreError(f"Query on {query.table} failed: {e!r}") from e

    async def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/{table}"
        headers = {**self._headers(), "Prefer": "return=representation"}

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(url, json=rows, headers=headers) as response:
                    if response.status >= 400:
                        detail = await response.text()
                        raise RecordStoreError(
                            f"Insert into {table} failed with HTTP {response.status}: {detail}"
                        )
                    return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Record store insert error on {table}: {e!r}")
            raise RecordStoreError(f"Insert into {table} failed: {e!r}") from e
