"""LoopBack-style filter parsing for tree queries.

Clients send ``filter`` / ``where`` as JSON in the query string, e.g.::

    {"where": {"approved": true, "tagId": 7}, "order": "timeCreated DESC",
     "limit": 50, "skip": 100}

This module turns that JSON into a backend-neutral :class:`TreeQuery`.
Stores compile the query to SQL (``storage.postgres.filters``) or evaluate
it in memory (``storage.memory``).

Two properties are synthetic and never reach a store as plain columns:

* ``tagId``: becomes a :class:`TagConstraint` (join on ``tree_tag``).
  ``null`` selects trees that carry no tag at all.
* ``organizationId``: kept on the query until
  :class:`~treetracker_admin.services.trees.TreeQueryService` expands it into
  planting-organization / planter predicates.

Both are only recognised at the top level of ``where``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Union

from .errors import FilterError

# camelCase property → column attribute. snake_case names are accepted too.
TREE_PROPERTIES: dict[str, str] = {
    "id": "id",
    "uuid": "uuid",
    "timeCreated": "time_created",
    "timeUpdated": "time_updated",
    "planterId": "planter_id",
    "planterIdentifier": "planter_identifier",
    "deviceIdentifier": "device_identifier",
    "plantingOrganizationId": "planting_organization_id",
    "imageUrl": "image_url",
    "lat": "lat",
    "lon": "lon",
    "gpsAccuracy": "gps_accuracy",
    "note": "note",
    "active": "active",
    "approved": "approved",
    "rejectionReason": "rejection_reason",
    "speciesId": "species_id",
    "morphology": "morphology",
    "age": "age",
    "captureApprovalTag": "capture_approval_tag",
    "tokenId": "token_id",
}
_COLUMNS = frozenset(TREE_PROPERTIES.values())

# Operand kind per column; comparisons against another kind are rejected.
_COLUMN_KINDS: dict[str, str] = {
    "id": "int",
    "uuid": "str",
    "time_created": "datetime",
    "time_updated": "datetime",
    "planter_id": "int",
    "planter_identifier": "str",
    "device_identifier": "str",
    "planting_organization_id": "int",
    "image_url": "str",
    "lat": "float",
    "lon": "float",
    "gps_accuracy": "int",
    "note": "str",
    "active": "bool",
    "approved": "bool",
    "rejection_reason": "str",
    "species_id": "int",
    "morphology": "str",
    "age": "str",
    "capture_approval_tag": "str",
    "token_id": "str",
}

TAG_PROPERTY = "tagId"
ORGANIZATION_PROPERTY = "organizationId"

OPERATORS = frozenset({
    "eq", "neq", "gt", "gte", "lt", "lte",
    "inq", "nin", "between", "like", "nlike", "ilike", "nilike",
})
_LIST_OPERATORS = frozenset({"inq", "nin"})


# ---------------------------------------------------------------------------
# Query model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Comparison:
    column: str
    op: str
    value: Any


@dataclass(frozen=True)
class Conjunction:
    op: str  # "and" | "or"
    clauses: tuple["Condition", ...]


Condition = Union[Comparison, Conjunction]


@dataclass(frozen=True)
class TagConstraint:
    """Restrict results by tag; ``tag_id=None`` means untagged trees."""

    tag_id: int | None


@dataclass(frozen=True)
class OrderBy:
    column: str
    descending: bool = False


@dataclass(frozen=True)
class TreeQuery:
    condition: Condition | None = None
    tag: TagConstraint | None = None
    organization_id: int | None = None
    order: tuple[OrderBy, ...] = ()
    limit: int | None = None
    offset: int = 0
    fields: tuple[str, ...] | None = None

    def and_where(self, condition: Condition) -> TreeQuery:
        """Return a copy with *condition* AND-ed onto the existing predicate."""
        if self.condition is None:
            return replace(self, condition=condition)
        return replace(
            self, condition=Conjunction("and", (self.condition, condition)),
        )

    def without_organization(self) -> TreeQuery:
        return replace(self, organization_id=None)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def loads_json(raw: str | None, name: str) -> dict[str, Any] | None:
    """Decode the JSON query-string parameter *name*."""
    if raw is None or raw == "":
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FilterError(f"'{name}' is not valid JSON: {exc.msg}") from exc
    if data is None:
        return None
    if not isinstance(data, dict):
        raise FilterError(f"'{name}' must be a JSON object")
    return data


def resolve_property(name: str) -> str:
    """Map a client property name to its column attribute."""
    if name in TREE_PROPERTIES:
        return TREE_PROPERTIES[name]
    if name in _COLUMNS:
        return name
    raise FilterError(f"Unknown tree property '{name}'")


def parse_where(where: dict[str, Any] | None) -> TreeQuery:
    """Parse a top-level ``where`` object."""
    if not where:
        return TreeQuery()
    if not isinstance(where, dict):
        raise FilterError("'where' must be an object")

    remaining = dict(where)
    tag: TagConstraint | None = None
    organization_id: int | None = None

    if TAG_PROPERTY in remaining:
        raw_tag = remaining.pop(TAG_PROPERTY)
        tag = TagConstraint(None if raw_tag is None else _as_int(raw_tag, TAG_PROPERTY))
    if ORGANIZATION_PROPERTY in remaining:
        raw_org = remaining.pop(ORGANIZATION_PROPERTY)
        if raw_org is None:
            raise FilterError(f"'{ORGANIZATION_PROPERTY}' cannot be null")
        organization_id = _as_int(raw_org, ORGANIZATION_PROPERTY)

    return TreeQuery(
        condition=_parse_object(remaining),
        tag=tag,
        organization_id=organization_id,
    )


def parse_filter(filter_: dict[str, Any] | None) -> TreeQuery:
    """Parse a full ``filter`` object (where/order/limit/skip/offset/fields)."""
    if not filter_:
        return TreeQuery()

    unknown = set(filter_) - {"where", "order", "limit", "skip", "offset", "fields", "include"}
    if unknown:
        raise FilterError(f"Unsupported filter keys: {sorted(unknown)}")

    query = parse_where(filter_.get("where"))
    offset = filter_.get("skip", filter_.get("offset", 0)) or 0
    limit = filter_.get("limit")

    return replace(
        query,
        order=_parse_order(filter_.get("order")),
        limit=None if limit is None else _non_negative(limit, "limit"),
        offset=_non_negative(offset, "skip"),
        fields=_parse_fields(filter_.get("fields")),
    )


def _parse_object(where: dict[str, Any]) -> Condition | None:
    clauses: list[Condition] = []
    for key, value in where.items():
        if key in ("and", "or"):
            if not isinstance(value, list) or not value:
                raise FilterError(f"'{key}' expects a non-empty list")
            nested: list[Condition] = []
            for item in value:
                if not isinstance(item, dict):
                    raise FilterError(f"'{key}' items must be objects")
                if TAG_PROPERTY in item or ORGANIZATION_PROPERTY in item:
                    raise FilterError(
                        "tagId and organizationId are only supported at the top level of 'where'"
                    )
                parsed = _parse_object(item)
                if parsed is not None:
                    nested.append(parsed)
            if nested:
                clauses.append(Conjunction(key, tuple(nested)))
            continue
        clauses.extend(_parse_property(key, value))

    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return Conjunction("and", tuple(clauses))


def _parse_property(name: str, value: Any) -> list[Comparison]:
    column = resolve_property(name)
    if not isinstance(value, dict):
        return [Comparison(column, "eq", _coerce(column, value))]
    if not value:
        raise FilterError(f"Empty condition for '{name}'")

    result = []
    for op, operand in value.items():
        if op not in OPERATORS:
            raise FilterError(f"Unsupported operator '{op}' on '{name}'")
        if op in _LIST_OPERATORS and not isinstance(operand, list):
            raise FilterError(f"'{op}' on '{name}' expects a list")
        if op == "between" and (not isinstance(operand, list) or len(operand) != 2):
            raise FilterError(f"'between' on '{name}' expects [low, high]")
        if op in ("like", "nlike", "ilike", "nilike"):
            if not isinstance(operand, str):
                raise FilterError(f"'{op}' on '{name}' expects a string pattern")
            if _COLUMN_KINDS[column] != "str":
                raise FilterError(f"'{op}' is only supported on text properties, not '{name}'")
            result.append(Comparison(column, op, operand))
            continue
        if isinstance(operand, list):
            operand = [_coerce(column, item) for item in operand]
        else:
            operand = _coerce(column, operand)
        result.append(Comparison(column, op, operand))
    return result


def _coerce(column: str, value: Any) -> Any:
    """Check *value* against the column's kind and convert where needed.

    ``null`` passes through for every column. Numeric strings are accepted
    for numeric columns and ISO strings become datetimes for timestamps.
    """
    if value is None:
        return None
    kind = _COLUMN_KINDS[column]
    if kind == "datetime":
        if not isinstance(value, str):
            raise FilterError(f"'{column}' expects an ISO-8601 timestamp, got {value!r}")
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise FilterError(f"'{value}' is not an ISO-8601 timestamp") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    if kind == "bool":
        if not isinstance(value, bool):
            raise FilterError(f"'{column}' expects a boolean, got {value!r}")
        return value
    if kind == "int":
        return _as_int(value, column)
    if kind == "float":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                pass
        raise FilterError(f"'{column}' expects a number, got {value!r}")
    if not isinstance(value, str):
        raise FilterError(f"'{column}' expects a string, got {value!r}")
    return value


def _parse_order(order: Any) -> tuple[OrderBy, ...]:
    if order is None:
        return ()
    items = [order] if isinstance(order, str) else order
    if not isinstance(items, list):
        raise FilterError("'order' must be a string or list of strings")

    result = []
    for item in items:
        if not isinstance(item, str) or not item.strip():
            raise FilterError("'order' entries must be non-empty strings")
        parts = item.split()
        if len(parts) > 2:
            raise FilterError(f"Invalid order clause '{item}'")
        direction = parts[1].upper() if len(parts) == 2 else "ASC"
        if direction not in ("ASC", "DESC"):
            raise FilterError(f"Invalid order direction '{parts[1]}'")
        result.append(OrderBy(resolve_property(parts[0]), direction == "DESC"))
    return tuple(result)


def _parse_fields(fields: Any) -> tuple[str, ...] | None:
    if fields is None:
        return None
    if isinstance(fields, list):
        return tuple(resolve_property(f) for f in fields)
    if isinstance(fields, dict):
        included = [resolve_property(k) for k, v in fields.items() if v]
        if included:
            return tuple(included)
        excluded = {resolve_property(k) for k, v in fields.items() if not v}
        return tuple(c for c in TREE_PROPERTIES.values() if c not in excluded)
    raise FilterError("'fields' must be a list or an object")


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise FilterError(f"'{name}' must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    raise FilterError(f"'{name}' must be an integer")


def _non_negative(value: Any, name: str) -> int:
    number = _as_int(value, name)
    if number < 0:
        raise FilterError(f"'{name}' must be >= 0")
    return number
