"""JSON API for header monitoring administration."""

from .app import create_app

__all__ = ["create_app"]
