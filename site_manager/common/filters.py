"""Generic filtering, sorting, and text search utilities."""

from __future__ import annotations

from typing import Any, Optional, Sequence

from sqlalchemy import Select, String, and_, cast, or_
from sqlalchemy.orm import InstrumentedAttribute

LIKE_ESCAPE = "\\"


def contains_pattern(value: str) -> str:
    """``%value%`` with LIKE wildcards in *value* escaped by ``LIKE_ESCAPE``."""
    for char in (LIKE_ESCAPE, "%", "_"):
        value = value.replace(char, LIKE_ESCAPE + char)
    return f"%{value}%"


# ── Sorting ─────────────────────────────────────────────────────────

def apply_sorting(
    query: Select,
    model: Any,
    sort: Optional[str],
    *,
    default: Optional[str] = None,
) -> Select:
    """
    Parse a sort string like ``"-created_at"`` and apply ORDER BY.

    * Leading ``-`` → DESC; otherwise ASC.
    * Unknown columns fall back to *default* (or leave the query untouched).
    """
    sort = sort or default
    if not sort:
        return query

    descending = sort.startswith("-")
    col = _get_column(model, sort.lstrip("-"))
    if col is None:
        if default and sort != default:
            return apply_sorting(query, model, default)
        return query
    return query.order_by(col.desc() if descending else col.asc())


# ── Generic filtering ──────────────────────────────────────────────

def apply_filters(
    query: Select,
    model: Any,
    filters: dict[str, Any],
) -> Select:
    """
    Apply a dict of filter parameters to a SQLAlchemy ``Select``.

    Key suffixes determine the operator:

    ============  ==================
    Suffix        Operator
    ============  ==================
    (none)        ``==``
    ``__ilike``   case-insensitive LIKE (wraps ``%…%``)
    ``__from``    ``>=``
    ``__to``      ``<=``
    ``__in``      ``IN (…)``
    ============  ==================

    ``None`` values are silently skipped.
    """
    conditions: list = []

    for key, value in filters.items():
        if value is None:
            continue

        if key.endswith("__ilike"):
            col = _get_column(model, key.removesuffix("__ilike"))
            if col is not None:
                conditions.append(col.ilike(contains_pattern(str(value)), escape=LIKE_ESCAPE))

        elif key.endswith("__from"):
            col = _get_column(model, key.removesuffix("__from"))
            if col is not None:
                conditions.append(col >= value)

        elif key.endswith("__to"):
            col = _get_column(model, key.removesuffix("__to"))
            if col is not None:
                conditions.append(col <= value)

        elif key.endswith("__in"):
            col = _get_column(model, key.removesuffix("__in"))
            if col is not None:
                conditions.append(col.in_(value))

        else:
            col = _get_column(model, key)
            if col is not None:
                conditions.append(col == value)

    if conditions:
        query = query.where(and_(*conditions))

    return query


# ── Text search ─────────────────────────────────────────────────────

def apply_search(
    query: Select,
    model: Any,
    search: Optional[str],
    columns: Sequence[str],
) -> Select:
    """OR together a case-insensitive substring match across *columns*."""
    if not search or not search.strip():
        return query

    term = contains_pattern(search.strip())
    like_conds = [
        cast(col, String).ilike(term, escape=LIKE_ESCAPE)
        for col in (_get_column(model, name) for name in columns)
        if col is not None
    ]
    if not like_conds:
        return query
    return query.where(or_(*like_conds))


# ── Internal helper ─────────────────────────────────────────────────

def _get_column(model: Any, name: str) -> Optional[InstrumentedAttribute]:
    """Safely retrieve a mapped column attribute by name."""
    if name.startswith("_"):
        return None
    attr = getattr(model, name, None)
    return attr if isinstance(attr, InstrumentedAttribute) else None
