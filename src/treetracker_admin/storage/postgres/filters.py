"""Compile a :class:`~treetracker_admin.core.filters.TreeQuery` to SQLAlchemy.

Tag constraints become semi-joins against ``tree_tag``:

* ``tagId = n``    → ``EXISTS (SELECT 1 FROM tree_tag WHERE tree_id = trees.id AND tag_id = n)``
* ``tagId = null`` → ``NOT EXISTS (SELECT 1 FROM tree_tag WHERE tree_id = trees.id)``

A semi-join keeps one row per tree even when a tree carries the same tag
twice, which a plain ``JOIN`` would duplicate.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Select, and_, exists, func, not_, or_, select
from sqlalchemy.sql.elements import ColumnElement

from treetracker_admin.core.filters import (
    Comparison,
    Condition,
    Conjunction,
    TreeQuery,
)

from .models import TreeRecord, TreeTagRecord


def _column(name: str) -> Any:
    return getattr(TreeRecord, name)


def condition_clause(condition: Condition) -> ColumnElement[bool]:
    """Translate a parsed where-condition into a boolean SQL expression."""
    if isinstance(condition, Conjunction):
        parts = [condition_clause(c) for c in condition.clauses]
        return and_(*parts) if condition.op == "and" else or_(*parts)
    return _comparison_clause(condition)


def _comparison_clause(cmp: Comparison) -> ColumnElement[bool]:
    col = _column(cmp.column)
    op, value = cmp.op, cmp.value

    if op == "eq":
        return col.is_(None) if value is None else col == value
    if op == "neq":
        return col.is_not(None) if value is None else col != value
    if op == "gt":
        return col > value
    if op == "gte":
        return col >= value
    if op == "lt":
        return col < value
    if op == "lte":
        return col <= value
    if op == "inq":
        return col.in_(value)
    if op == "nin":
        return col.not_in(value)
    if op == "between":
        return col.between(value[0], value[1])
    if op == "like":
        return col.like(value)
    if op == "nlike":
        return col.not_like(value)
    if op == "ilike":
        return col.ilike(value)
    if op == "nilike":
        return col.not_ilike(value)
    raise ValueError(f"Unsupported operator {op!r}")


def _apply_where(stmt: Select, query: TreeQuery) -> Select:
    if query.organization_id is not None:
        raise ValueError("organizationId must be expanded before querying the store")

    if query.condition is not None:
        stmt = stmt.where(condition_clause(query.condition))

    if query.tag is not None:
        tagged = select(TreeTagRecord.id).where(TreeTagRecord.tree_id == TreeRecord.id)
        if query.tag.tag_id is None:
            stmt = stmt.where(not_(exists(tagged)))
        else:
            stmt = stmt.where(exists(tagged.where(TreeTagRecord.tag_id == query.tag.tag_id)))
    return stmt


def tree_select(query: TreeQuery) -> Select:
    """SELECT trees matching *query*, ordered and paginated."""
    stmt = _apply_where(select(TreeRecord), query)

    for clause in query.order:
        col = _column(clause.column)
        stmt = stmt.order_by(col.desc() if clause.descending else col.asc())
    stmt = stmt.order_by(TreeRecord.id.asc())  # stable tie-break

    if query.offset:
        stmt = stmt.offset(query.offset)
    if query.limit is not None:
        stmt = stmt.limit(query.limit)
    return stmt


def tree_count(query: TreeQuery) -> Select:
    """SELECT COUNT(*) of trees matching *query* (order/pagination ignored)."""
    return _apply_where(select(func.count()).select_from(TreeRecord), query)
