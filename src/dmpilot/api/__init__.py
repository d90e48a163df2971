"""HTTP surface: Meta webhook and the dashboard read API."""

from dmpilot.api.app import create_app

__all__ = ["create_app"]
