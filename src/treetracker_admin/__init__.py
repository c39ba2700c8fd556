"""Treetracker admin API: tree capture queries and verification updates."""

__version__ = "0.1.0"
