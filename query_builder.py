"""List query plan for broken cars.

``build_list_query`` turns the raw list parameters (optional filters, paging and the
``sort`` string) into a :class:`QueryDescription`. Nothing here touches the database;
``database.get_data`` renders the description into SQL.

Sort string format::

    "year|asc, firstBrokenDate|desc"

Pairs are applied left to right, the first pair being the primary key. The direction
is optional and defaults to ``asc``. Column names are checked against the sortable
fields in :mod:`records`, so nothing from the request reaches SQL as an identifier.
"""

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional

from errors import InvalidPagination, InvalidSortColumn, InvalidSortDirection
from records import DATE_RANGE_FIELDS, FIELDS_BY_NAME, FILTER_FIELDS, SORT_FIELDS, is_blank

DEFAULT_LIMIT = 20
DEFAULT_OFFSET = 0
# LIMIT / OFFSET are bound as 64-bit integers
PAGE_VALUE_MAX = 2 ** 63 - 1
SORT_DIRECTIONS = ("asc", "desc")


@dataclass(frozen=True)
class Predicate:
    field: str
    op: str  # eq | gte | lt | lte
    value: Any


@dataclass(frozen=True)
class SortKey:
    field: str
    direction: str = "asc"


@dataclass(frozen=True)
class QueryDescription:
    predicates: List[Predicate] = field(default_factory=list)
    sort: List[SortKey] = field(default_factory=list)
    limit: int = DEFAULT_LIMIT
    offset: int = DEFAULT_OFFSET


def _day_start(d) -> datetime:
    return datetime.combine(d, time.min)


def build_predicates(filters: Dict[str, Any]) -> List[Predicate]:
    predicates: List[Predicate] = []
    for name in FILTER_FIELDS:
        raw = filters.get(name)
        if is_blank(raw):
            continue
        spec = FIELDS_BY_NAME[name]
        value = spec.parse(name, raw)
        if name == "createdDate":
            # timestamp column: match the whole calendar day
            predicates.append(Predicate(name, "gte", _day_start(value)))
            predicates.append(Predicate(name, "lt", _day_start(value + timedelta(days=1))))
        else:
            predicates.append(Predicate(name, "eq", value))

    for name in DATE_RANGE_FIELDS:
        spec = FIELDS_BY_NAME[name]
        lower = filters.get(f"{name}From")
        upper = filters.get(f"{name}To")
        if not is_blank(lower):
            value = spec.parse(f"{name}From", lower)
            if name == "createdDate":
                value = _day_start(value)
            predicates.append(Predicate(name, "gte", value))
        if not is_blank(upper):
            value = spec.parse(f"{name}To", upper)
            if name == "createdDate":
                predicates.append(Predicate(name, "lt", _day_start(value + timedelta(days=1))))
            else:
                predicates.append(Predicate(name, "lte", value))
    return predicates


def parse_sort(sort: Optional[str]) -> List[SortKey]:
    if is_blank(sort):
        return []
    keys: List[SortKey] = []
    seen = set()
    for part in sort.split(","):
        part = part.strip()
        if not part:
            continue
        column, _, direction = part.partition("|")
        column = column.strip()
        direction = direction.strip().lower() or "asc"
        if column not in SORT_FIELDS:
            raise InvalidSortColumn(column)
        if direction not in SORT_DIRECTIONS:
            raise InvalidSortDirection(direction)
        if column in seen:
            continue
        seen.add(column)
        keys.append(SortKey(column, direction))
    return keys


def parse_page_value(name: str, value: Any, default: int) -> int:
    if is_blank(value):
        return default
    if isinstance(value, bool):
        raise InvalidPagination(name, value)
    if isinstance(value, int):
        out = value
    else:
        try:
            out = int(str(value).strip())
        except ValueError:
            raise InvalidPagination(name, value)
    if not 0 <= out <= PAGE_VALUE_MAX:
        raise InvalidPagination(name, value)
    return out


def build_list_query(
    filters: Optional[Dict[str, Any]] = None,
    limit: Any = None,
    offset: Any = None,
    sort: Optional[str] = None,
) -> QueryDescription:
    return QueryDescription(
        predicates=build_predicates(filters or {}),
        sort=parse_sort(sort),
        limit=parse_page_value("limit", limit, DEFAULT_LIMIT),
        offset=parse_page_value("offset", offset, DEFAULT_OFFSET),
    )
