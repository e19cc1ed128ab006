"""Allow-listed builder for QuickBooks Online query strings.

QuickBooks exposes a SQL-like query language
(``SELECT * FROM Invoice WHERE Balance > 0 ORDER BY DocNumber MAXRESULTS 20``).
Every condition added here is checked against a per-entity allowlist of
field/operator pairs, and every literal is rendered by its field type:
numbers must parse as finite decimals, dates must be ``YYYY-MM-DD``, and
strings are single-quoted with quotes and backslashes escaped. Nothing
from a caller reaches the query text unvalidated.

Usage:
    query = (
        QueryBuilder("Invoice")
        .where("Balance", ">", 0)
        .where("TotalAmt", ">=", 500)
        .order_by("DocNumber")
        .max_results(20)
        .build()
    )
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from src.errors.domain import ValidationError


class FieldType(str, Enum):
    """Literal rendering rules for query fields."""

    string = "string"
    number = "number"
    date = "date"
    boolean = "boolean"


_COMPARISON_OPS = frozenset({"=", "<", ">", "<=", ">="})

# Queryable fields per entity: field -> (type, allowed operators)
ENTITY_FIELDS: dict[str, dict[str, tuple[FieldType, frozenset[str]]]] = {
    "Invoice": {
        "Id": (FieldType.string, frozenset({"=", "IN"})),
        "DocNumber": (FieldType.string, frozenset({"=", "IN", "LIKE"})),
        "CustomerRef": (FieldType.string, frozenset({"=", "IN"})),
        "Balance": (FieldType.number, _COMPARISON_OPS),
        "TotalAmt": (FieldType.number, _COMPARISON_OPS),
        "TxnDate": (FieldType.date, _COMPARISON_OPS),
        "DueDate": (FieldType.date, _COMPARISON_OPS),
    },
    "Customer": {
        "Id": (FieldType.string, frozenset({"=", "IN"})),
        "DisplayName": (FieldType.string, frozenset({"=", "LIKE"})),
        "CompanyName": (FieldType.string, frozenset({"=", "LIKE"})),
        "Active": (FieldType.boolean, frozenset({"="})),
        "Balance": (FieldType.number, _COMPARISON_OPS),
    },
    "Payment": {
        "Id": (FieldType.string, frozenset({"=", "IN"})),
        "CustomerRef": (FieldType.string, frozenset({"="})),
        "TxnDate": (FieldType.date, _COMPARISON_OPS),
        "TotalAmt": (FieldType.number, _COMPARISON_OPS),
    },
    "Item": {
        "Id": (FieldType.string, frozenset({"=", "IN"})),
        "Name": (FieldType.string, frozenset({"=", "LIKE"})),
        "Active": (FieldType.boolean, frozenset({"="})),
    },
}

ORDERABLE_FIELDS: dict[str, frozenset[str]] = {
    "Invoice": frozenset({"Id", "DocNumber", "TxnDate", "DueDate", "TotalAmt", "Balance"}),
    "Customer": frozenset({"Id", "DisplayName", "CompanyName", "Balance"}),
    "Payment": frozenset({"Id", "TxnDate", "TotalAmt"}),
    "Item": frozenset({"Id", "Name"}),
}

MAX_RESULTS_LIMIT = 1000

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def quote_string(value: Any) -> str:
    """Render a string literal with backslashes and single quotes escaped."""
    text = str(value)
    escaped = text.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def format_number(value: Any) -> str:
    """Render a numeric literal, rejecting anything that is not a finite number.

    Raises:
        ValidationError: If the value is not numeric.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Expected a number, got {value!r}")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Expected a number, got {value!r}") from e
    if not number.is_finite():
        raise ValidationError(f"Expected a finite number, got {value!r}")
    if number == number.to_integral_value():
        return str(int(number))
    return format(number.normalize(), "f")


def format_date(value: Any) -> str:
    """Render a date literal as ``'YYYY-MM-DD'``.

    Accepts ``date``/``datetime`` objects or ISO date strings.

    Raises:
        ValidationError: If the value is not a valid calendar date.
    """
    if isinstance(value, datetime):
        return f"'{value.date().isoformat()}'"
    if isinstance(value, date):
        return f"'{value.isoformat()}'"
    text = str(value).strip()
    if not _DATE_RE.match(text):
        raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD")
    try:
        date.fromisoformat(text)
    except ValueError as e:
        raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD") from e
    return f"'{text}'"


def format_boolean(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip().lower()
    if text in ("true", "false"):
        return text
    raise ValidationError(f"Expected true or false, got {value!r}")


_FORMATTERS = {
    FieldType.string: quote_string,
    FieldType.number: format_number,
    FieldType.date: format_date,
    FieldType.boolean: format_boolean,
}


@dataclass(frozen=True)
class Condition:
    """One validated ``field operator literal`` clause."""

    field: str
    operator: str
    literal: str

    def render(self) -> str:
        return f"{self.field} {self.operator} {self.literal}"


class QueryBuilder:
    """Fluent builder for QuickBooks query strings.

    Args:
        entity: Entity to select from ('Invoice', 'Customer', 'Payment', 'Item').

    Raises:
        ValidationError: If the entity is not supported.
    """

    def __init__(self, entity: str = "Invoice") -> None:
        if entity not in ENTITY_FIELDS:
            raise ValidationError(f"Unsupported query entity: {entity}")
        self._entity = entity
        self._conditions: list[Condition] = []
        self._order: tuple[str, str] | None = None
        self._max_results: int | None = None
        self._start_position: int | None = None

    @property
    def conditions(self) -> list[Condition]:
        return list(self._conditions)

    def where(self, field: str, operator: str, value: Any) -> "QueryBuilder":
        """Add an AND-ed condition after checking the allowlist.

        Args:
            field: Entity field name.
            operator: One of the operators allowed for that field.
            value: Literal value; a list/tuple for ``IN``.

        Returns:
            self, for chaining.

        Raises:
            ValidationError: If the field, operator, or value is not allowed.
        """
        fields = ENTITY_FIELDS[self._entity]
        if field not in fields:
            raise ValidationError(f"Field '{field}' cannot be queried on {self._entity}")
        field_type, operators = fields[field]
        op = operator.strip().upper()
        if op not in operators:
            raise ValidationError(
                f"Operator '{operator}' is not allowed for {self._entity}.{field}"
            )

        formatter = _FORMATTERS[field_type]
        if op == "IN":
            if not isinstance(value, (list, tuple)) or not value:
                raise ValidationError("IN requires a non-empty list of values")
            literal = "(" + ", ".join(formatter(v) for v in value) + ")"
        elif op == "LIKE":
            pattern = str(value).replace("%", "")
            if not pattern:
                raise ValidationError("LIKE requires a non-empty value")
            literal = quote_string(f"%{pattern}%")
        else:
            literal = formatter(value)

        self._conditions.append(Condition(field, op, literal))
        return self

    def order_by(self, field: str, direction: str = "ASC") -> "QueryBuilder":
        if field not in ORDERABLE_FIELDS[self._entity]:
            raise ValidationError(f"Cannot order {self._entity} by '{field}'")
        direction = direction.strip().upper()
        if direction not in ("ASC", "DESC"):
            raise ValidationError(f"Sort direction must be ASC or DESC, got {direction!r}")
        self._order = (field, direction)
        return self

    def max_results(self, limit: int) -> "QueryBuilder":
        limit = _as_int(limit, "MAXRESULTS")
        if not 1 <= limit <= MAX_RESULTS_LIMIT:
            raise ValidationError(f"MAXRESULTS must be between 1 and {MAX_RESULTS_LIMIT}")
        self._max_results = limit
        return self

    def start_position(self, position: int) -> "QueryBuilder":
        position = _as_int(position, "STARTPOSITION")
        if position < 1:
            raise ValidationError("STARTPOSITION must be at least 1")
        self._start_position = position
        return self

    def _where_clause(self) -> str:
        if not self._conditions:
            return ""
        return " WHERE " + " AND ".join(c.render() for c in self._conditions)

    def build(self) -> str:
        """Render the ``SELECT *`` query."""
        query = f"SELECT * FROM {self._entity}{self._where_clause()}"
        if self._order is not None:
            query += f" ORDER BY {self._order[0]} {self._order[1]}"
        if self._start_position is not None:
            query += f" STARTPOSITION {self._start_position}"
        if self._max_results is not None:
            query += f" MAXRESULTS {self._max_results}"
        return query

    def build_count(self) -> str:
        """Render the ``SELECT COUNT(*)`` query (ordering and paging dropped)."""
        return f"SELECT COUNT(*) FROM {self._entity}{self._where_clause()}"


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be an integer, got {value!r}") from e


INVOICE_STATUSES = ("all", "paid", "unpaid", "overdue")


@dataclass
class InvoiceFilters:
    """Recognized invoice list filters.

    Attributes:
        status: 'paid', 'unpaid', 'overdue', or 'all'/None for no filter.
        customer: QuickBooks customer id (CustomerRef value).
        min_amount / max_amount: Bounds on TotalAmt (inclusive).
        date_from / date_to: Bounds on TxnDate (inclusive, YYYY-MM-DD).
        limit: MAXRESULTS value.
        start_position: STARTPOSITION value (1-based), optional.
        order_by / direction: Sort field and direction.
    """

    status: str | None = None
    customer: str | None = None
    min_amount: Any = None
    max_amount: Any = None
    date_from: Any = None
    date_to: Any = None
    limit: int = 20
    start_position: int | None = None
    order_by: str = "DocNumber"
    direction: str = "ASC"


def apply_status(builder: QueryBuilder, status: str | None, today: date) -> None:
    """Translate a derived invoice status into Balance/DueDate conditions."""
    if status is None:
        return
    normalized = status.strip().lower()
    if normalized in ("", "all"):
        return
    if normalized == "paid":
        builder.where("Balance", "=", 0)
    elif normalized == "unpaid":
        builder.where("Balance", ">", 0)
    elif normalized == "overdue":
        builder.where("Balance", ">", 0).where("DueDate", "<", today)
    else:
        raise ValidationError(
            f"Unknown invoice status '{status}'. Use one of: {', '.join(INVOICE_STATUSES)}"
        )


def build_invoice_query(filters: InvoiceFilters, today: date | None = None) -> str:
    """Build the invoice list query for a set of filters.

    Args:
        filters: Filter values; unset fields add no condition.
        today: Reference date for the 'overdue' status (defaults to today).

    Returns:
        QuickBooks query string.

    Raises:
        ValidationError: If any filter value is invalid.
    """
    builder = QueryBuilder("Invoice")
    apply_status(builder, filters.status, today or date.today())
    if filters.customer:
        builder.where("CustomerRef", "=", filters.customer)
    if filters.min_amount not in (None, ""):
        builder.where("TotalAmt", ">=", filters.min_amount)
    if filters.max_amount not in (None, ""):
        builder.where("TotalAmt", "<=", filters.max_amount)
    if filters.date_from:
        builder.where("TxnDate", ">=", filters.date_from)
    if filters.date_to:
        builder.where("TxnDate", "<=", filters.date_to)
    builder.order_by(filters.order_by, filters.direction)
    if filters.start_position is not None:
        builder.start_position(filters.start_position)
    builder.max_results(filters.limit)
    return builder.build()
