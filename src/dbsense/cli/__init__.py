"""dbsense command-line interface."""

from dbsense.cli.main import app

__all__ = ["app"]
