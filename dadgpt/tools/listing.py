"""Filtering and ordering shared by the list actions of the entity tools.

Order is fixed: priority weight descending, then due date ascending with
undated entries last, then creation time ascending. Summaries built from
listings depend on this order being stable.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from typing import Any, TypeVar

from dadgpt.state.schemas import PRIORITY_WEIGHT, EntityContext
from dadgpt.utils import parse_date

E = TypeVar("E", bound=EntityContext)


def sort_key(entity: EntityContext) -> tuple[int, int, date, Any]:
    due = parse_date(entity.due_date)
    return (
        -PRIORITY_WEIGHT.get(entity.priority, 0),
        1 if due is None else 0,
        due or date.max,
        entity.created_at,
    )


def sort_entities(entities: Iterable[E]) -> list[E]:
    return sorted(entities, key=sort_key)


def narrow(entities: Sequence[E], **filters: Any) -> list[E]:
    """Entities whose attributes equal every non-None filter value.

    Returns a new list; the input sequence is left untouched. String
    comparisons are case-insensitive.
    """
    active = {k: v for k, v in filters.items() if v is not None}
    return [e for e in entities if all(_equals(getattr(e, k, None), v) for k, v in active.items())]


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.lower() == expected.lower()
    return actual == expected
