"""HTTP surface for the adherence prediction service."""

from .app import create_app

__all__ = ["create_app"]
