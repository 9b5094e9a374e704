"""OData query builder for Service Layer requests.

Accumulates query state and renders it in ``build()``. Chained calls may be
made in any order.

Usage:
    params = (
        ODataQuery()
        .select("CardCode", "CardName")
        .where_equals("EmailAddress", "jane@example.com")
        .where("CardType", "eq", "cCustomer")
        .top(1)
        .build()
    )
    # {"$select": "CardCode,CardName",
    #  "$filter": "EmailAddress eq 'jane@example.com' and CardType eq 'cCustomer'",
    #  "$top": "1"}
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class FilterOperator(str, Enum):
    """Supported filter operators."""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"
    CONTAINS = "contains"
    STARTS_WITH = "startswith"
    ENDS_WITH = "endswith"


FUNCTION_OPERATORS = frozenset({
    FilterOperator.CONTAINS,
    FilterOperator.STARTS_WITH,
    FilterOperator.ENDS_WITH,
})


def format_literal(value: Any) -> str:
    """Render a Python value as an OData literal.

    Only strings are quoted (embedded single quotes are doubled). Numbers,
    booleans, dates and ``None`` are rendered bare.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%dT%H:%M:%S")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    text = str(value).replace("'", "''")
    return f"'{text}'"


def quote_key(key: str) -> str:
    """Quote a string entity key for a path segment, e.g. ``Items('A''1')``."""
    return "'" + str(key).replace("'", "''") + "'"


class ODataQuery:
    """Builder for ``$select``, ``$filter``, ``$expand``, ``$orderby``,
    ``$top``, ``$skip`` and ``$count`` parameters."""

    def __init__(self):
        self.reset()

    def reset(self) -> "ODataQuery":
        self._select: List[str] = []
        self._filters: List[str] = []
        self._expand: List[str] = []
        self._order_by: List[Tuple[str, str]] = []
        self._top: Optional[int] = None
        self._skip: Optional[int] = None
        self._count = False
        return self

    # Projection

    def select(self, *fields: str) -> "ODataQuery":
        for name in _flatten(fields):
            if name not in self._select:
                self._select.append(name)
        return self

    def expand(self, *relations: str) -> "ODataQuery":
        for name in _flatten(relations):
            if name not in self._expand:
                self._expand.append(name)
        return self

    # Filters

    def where(self, field: str, operator: Any, value: Any) -> "ODataQuery":
        """Add a predicate. ``operator`` is a ``FilterOperator`` or its value.

        Raises:
            ValueError: If the operator is not supported
        """
        op = FilterOperator(operator)
        if op in FUNCTION_OPERATORS:
            self._filters.append(f"{op.value}({field}, {format_literal(value)})")
        else:
            self._filters.append(f"{field} {op.value} {format_literal(value)}")
        return self

    def where_equals(self, field: str, value: Any) -> "ODataQuery":
        return self.where(field, FilterOperator.EQ, value)

    def where_not_equals(self, field: str, value: Any) -> "ODataQuery":
        return self.where(field, FilterOperator.NE, value)

    def where_greater_than(self, field: str, value: Any, inclusive: bool = False) -> "ODataQuery":
        return self.where(field, FilterOperator.GE if inclusive else FilterOperator.GT, value)

    def where_less_than(self, field: str, value: Any, inclusive: bool = False) -> "ODataQuery":
        return self.where(field, FilterOperator.LE if inclusive else FilterOperator.LT, value)

    def where_contains(self, field: str, value: str) -> "ODataQuery":
        return self.where(field, FilterOperator.CONTAINS, value)

    def where_starts_with(self, field: str, value: str) -> "ODataQuery":
        return self.where(field, FilterOperator.STARTS_WITH, value)

    def where_ends_with(self, field: str, value: str) -> "ODataQuery":
        return self.where(field, FilterOperator.ENDS_WITH, value)

    def where_in(self, field: str, values: Iterable[Any]) -> "ODataQuery":
        """OR together equality predicates. An empty list adds nothing."""
        parts = [f"{field} eq {format_literal(v)}" for v in values]
        if parts:
            self._filters.append("(" + " or ".join(parts) + ")")
        return self

    def where_raw(self, expression: str) -> "ODataQuery":
        self._filters.append(expression)
        return self

    # Ordering and paging

    def order_by(self, field: str, direction: str = "asc") -> "ODataQuery":
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise ValueError(f"Invalid sort direction: {direction}")
        self._order_by.append((field, direction))
        return self

    def order_by_desc(self, field: str) -> "ODataQuery":
        return self.order_by(field, "desc")

    def top(self, count: int) -> "ODataQuery":
        self._top = max(0, int(count))
        return self

    limit = top

    def skip(self, count: int) -> "ODataQuery":
        self._skip = max(0, int(count))
        return self

    offset = skip

    def paginate(self, page: int, per_page: int = 20) -> "ODataQuery":
        """Set ``$top``/``$skip`` for a 1-based page, replacing any limit/offset."""
        page = max(1, int(page))
        self._top = per_page
        self._skip = (page - 1) * per_page
        return self

    def with_count(self, enabled: bool = True) -> "ODataQuery":
        self._count = enabled
        return self

    # Rendering

    def build(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self._select:
            params["$select"] = ",".join(self._select)
        if self._filters:
            params["$filter"] = " and ".join(self._filters)
        if self._expand:
            params["$expand"] = ",".join(self._expand)
        if self._order_by:
            params["$orderby"] = ",".join(f"{f} {d}" for f, d in self._order_by)
        if self._top is not None:
            params["$top"] = str(self._top)
        if self._skip:
            params["$skip"] = str(self._skip)
        if self._count:
            params["$count"] = "true"
        return params

    def __repr__(self) -> str:
        return f"ODataQuery({self.build()!r})"


def _flatten(values: Iterable[Any]) -> List[str]:
    result: List[str] = []
    for value in values:
        if isinstance(value, (list, tuple)):
            result.extend(str(v) for v in value)
        else:
            result.append(str(value))
    return result
