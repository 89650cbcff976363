"""
Fluent builder for YQL-style query strings.

Every mutator returns the builder so calls chain, and none of them raise.
Values are embedded as single-quoted literals exactly as given: embedded
quote characters are **not** escaped. Downstream consumers parse the rendered
string with this quoting, so never feed untrusted input straight into a
builder.

Usage::

    from vespakit.query import QueryBuilder
    yql = (
        QueryBuilder()
        .select(["title", "body"])
        .from_("docs")
        .where("status", "published")
        .order_by("created_at", "desc")
        .limit(10)
        .get_query()
    )
    # "select title, body from docs where status = 'published' order by created_at desc limit 10"
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

_UNSET: Any = object()


def _fields(fields: str | Iterable[str]) -> str:
    if isinstance(fields, str):
        return fields
    return ", ".join(fields)


def _condition(field: str, operator: Any, value: Any) -> str:
    # Two-argument form: the operator slot holds the value.
    if value is _UNSET:
        operator, value = "=", operator
    return f"{field} {operator} '{value}'"


class QueryBuilder:
    """Stateful builder owned by one caller; not safe to share between threads."""

    def __init__(self) -> None:
        self._select = "*"
        self._source = ""
        self._where: list[str] = []
        self._or_where: list[str] = []
        self._joins: list[str] = []
        self._group_by = ""
        self._having = ""
        self._order_by = ""
        self._limit = ""
        self._offset = ""

    def select(self, fields: str | Iterable[str]) -> QueryBuilder:
        self._select = _fields(fields)
        return self

    def from_(self, source: str) -> QueryBuilder:
        self._source = source
        return self

    def where(self, field: str, operator: Any, value: Any = _UNSET) -> QueryBuilder:
        """AND a condition. ``where("status", "published")`` means ``status = 'published'``."""
        self._where.append(_condition(field, operator, value))
        return self

    def or_where(self, field: str, operator: Any, value: Any = _UNSET) -> QueryBuilder:
        """OR a condition after the AND block."""
        self._or_where.append(_condition(field, operator, value))
        return self

    def where_nested(self, callback: Callable[[QueryBuilder], Any]) -> QueryBuilder:
        """AND a parenthesized group built by *callback* on a fresh builder.

        Only the nested builder's AND conditions are used.
        """
        nested = QueryBuilder()
        callback(nested)
        self._where.append("(" + " and ".join(nested._where) + ")")
        return self

    def where_in(self, field: str, values: Iterable[Any]) -> QueryBuilder:
        joined = "', '".join(str(v) for v in values)
        self._where.append(f"{field} IN ('{joined}')")
        return self

    def match(self, field: str, value: Any) -> QueryBuilder:
        """AND a full-text ``match(field, 'value')`` condition."""
        self._where.append(f"match({field}, '{value}')")
        return self

    def join(self, source: str, on: str, type: str = "inner") -> QueryBuilder:
        self._joins.append(f"{type} join {source} on {on}")
        return self

    def group_by(self, fields: str | Iterable[str]) -> QueryBuilder:
        self._group_by = f"group by {_fields(fields)}"
        return self

    def having(self, field: str, operator: Any, value: Any = _UNSET) -> QueryBuilder:
        self._having = f"having {_condition(field, operator, value)}"
        return self

    def order_by(self, field: str, direction: str = "asc") -> QueryBuilder:
        self._order_by = f"order by {field} {direction}"
        return self

    def limit(self, limit: int) -> QueryBuilder:
        self._limit = f"limit {limit}"
        return self

    def offset(self, offset: int) -> QueryBuilder:
        self._offset = f"offset {offset}"
        return self

    def raw(self, query: str) -> str:
        """Return *query* untouched, for callers that already hold a YQL string."""
        return query

    def clear(self) -> QueryBuilder:
        """Reset every clause to its initial state, in place."""
        self._select = "*"
        self._source = ""
        self._where.clear()
        self._or_where.clear()
        self._joins.clear()
        self._group_by = ""
        self._having = ""
        self._order_by = ""
        self._limit = ""
        self._offset = ""
        return self

    def get_query(self) -> str:
        """Render the query.

        Clause order is fixed: select, from, joins, AND conditions, OR
        conditions, group by, having, order by, limit, offset.
        """
        query = f"select {self._select} from {self._source}"

        if self._joins:
            query += " " + " ".join(self._joins)
        if self._where:
            query += " where " + " and ".join(self._where)
        if self._or_where:
            query += (" or " if self._where else " where ") + " or ".join(self._or_where)

        for clause in (self._group_by, self._having, self._order_by, self._limit, self._offset):
            if clause:
                query += f" {clause}"

        return query

    def __str__(self) -> str:
        return self.get_query()

    def __repr__(self) -> str:
        return f"QueryBuilder({self.get_query()!r})"
