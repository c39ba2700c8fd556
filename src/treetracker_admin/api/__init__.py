"""HTTP surface: FastAPI application factory and tree routes."""

from treetracker_admin.api.app import create_app

__all__ = ["create_app"]
