"""FastAPI dependencies resolving components from ``app.state``."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from treetracker_admin.services.trees import TreeQueryService
from treetracker_admin.services.verification import TreeUpdateWorkflow


def get_queries(request: Request) -> TreeQueryService:
    return request.app.state.components.queries


def get_workflow(request: Request) -> TreeUpdateWorkflow:
    return request.app.state.components.workflow


QueriesDep = Annotated[TreeQueryService, Depends(get_queries)]
WorkflowDep = Annotated[TreeUpdateWorkflow, Depends(get_workflow)]
