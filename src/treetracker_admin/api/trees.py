"""Tree endpoints.

``filter`` and ``where`` are JSON-encoded query parameters in the LoopBack
style existing admin clients send, e.g.
``GET /trees?filter={"where":{"tagId":3},"limit":20}``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Response

from treetracker_admin.api.dependencies import QueriesDep, WorkflowDep
from treetracker_admin.core.filters import loads_json, parse_filter, parse_where
from treetracker_admin.core.models import Tree, TreeCount, TreeUpdate

router = APIRouter(prefix="/trees", tags=["trees"])


def _serialize(tree: Tree, fields: tuple[str, ...] | None = None) -> dict[str, Any]:
    """Tree → camelCase JSON dict, optionally projected to *fields*."""
    if fields is not None:
        return tree.model_dump(mode="json", by_alias=True, include=set(fields))
    exclude = {"tree_tags"} if tree.tree_tags is None else None
    return tree.model_dump(mode="json", by_alias=True, exclude=exclude)


@router.get("/count", response_model=TreeCount)
async def count_trees(
    queries: QueriesDep,
    where: str | None = Query(default=None, description="JSON where clause"),
) -> TreeCount:
    """Count trees matching ``where``."""
    query = parse_where(loads_json(where, "where"))
    return TreeCount(count=await queries.count(query))


@router.get("")
async def find_trees(
    queries: QueriesDep,
    filter: str | None = Query(default=None, description="JSON filter"),
) -> list[dict[str, Any]]:
    """List trees matching ``filter``."""
    query = parse_filter(loads_json(filter, "filter"))
    trees = await queries.find(query)
    return [_serialize(t, query.fields) for t in trees]


@router.get("/near")
async def trees_near(
    queries: QueriesDep,
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius: float | None = Query(
        default=None, gt=0, description="measured in meters (default: 100 meters)",
    ),
    limit: int | None = Query(default=None, gt=0, description="default is 100"),
) -> list[dict[str, Any]]:
    """Trees within ``radius`` metres of a lat/lon point."""
    trees = await queries.near(lat, lon, radius, limit)
    return [_serialize(t) for t in trees]


@router.get("/{tree_id}")
async def get_tree(tree_id: int, queries: QueriesDep) -> dict[str, Any]:
    """One tree, with its tag links."""
    return _serialize(await queries.find_by_id(tree_id))


@router.patch("/{tree_id}", status_code=204)
async def update_tree(tree_id: int, body: TreeUpdate, workflow: WorkflowDep) -> Response:
    """Partially update a tree; may raise a verification event."""
    await workflow.update_tree(tree_id, body)
    return Response(status_code=204)
