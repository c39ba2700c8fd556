"""Tree read queries: count, find, lookup by id, and proximity search.

Resolves the synthetic ``organizationId`` filter before handing the query
to the store, applies default ordering, and caps page sizes.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from treetracker_admin.core.config import ApiConfig
from treetracker_admin.core.filters import (
    Comparison,
    Conjunction,
    OrderBy,
    TreeQuery,
)
from treetracker_admin.core.interfaces import IOrganizationDirectory, ITreeStore
from treetracker_admin.core.models import Tree

logger = logging.getLogger(__name__)


class TreeQueryService:
    def __init__(
        self,
        tree_store: ITreeStore,
        organizations: IOrganizationDirectory,
        config: ApiConfig | None = None,
    ) -> None:
        self._trees = tree_store
        self._organizations = organizations
        self._config = config or ApiConfig()

    async def count(self, query: TreeQuery) -> int:
        query = await self.expand_organization(query)
        return await self._trees.count(query)

    async def find(self, query: TreeQuery) -> list[Tree]:
        query = self._with_defaults(await self.expand_organization(query))
        logger.debug("Tree find query=%s", query)
        return await self._trees.find(query)

    async def find_by_id(self, tree_id: int) -> Tree:
        return await self._trees.find_by_id(tree_id, include_tags=True)

    async def near(
        self,
        lat: float,
        lon: float,
        radius_m: float | None = None,
        limit: int | None = None,
    ) -> list[Tree]:
        radius_m = radius_m or self._config.near_default_radius_m
        limit = min(limit or self._config.near_default_limit, self._config.max_limit)
        logger.debug("Near query lat=%s lon=%s radius=%s limit=%s", lat, lon, radius_m, limit)
        return await self._trees.near(lat, lon, radius_m, limit)

    async def expand_organization(self, query: TreeQuery) -> TreeQuery:
        """Replace ``organizationId`` with planting-org and planter predicates.

        A tree belongs to an organization when it was planted for the
        organization (or one nested below it) or by a planter of one of
        those organizations.
        """
        if query.organization_id is None:
            return query

        entity_ids = await self._organizations.entity_ids_for_organization(
            query.organization_id,
        )
        planter_ids = await self._organizations.planter_ids_for_entities(entity_ids)
        clause = Conjunction("or", (
            Comparison("planting_organization_id", "inq", entity_ids),
            Comparison("planter_id", "inq", planter_ids),
        ))
        logger.debug(
            "Expanded organization %s to %d entities, %d planters",
            query.organization_id,
            len(entity_ids),
            len(planter_ids),
        )
        return query.without_organization().and_where(clause)

    def _with_defaults(self, query: TreeQuery) -> TreeQuery:
        order = query.order
        if not order and query.tag is not None and query.tag.tag_id is None:
            order = (OrderBy("time_created", descending=True),)

        limit = self._config.default_limit if query.limit is None else query.limit
        return replace(query, order=order, limit=min(limit, self._config.max_limit))
