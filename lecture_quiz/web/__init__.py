"""HTTP interface for lecture processing and quiz taking."""

from .server import create_app

__all__ = ["create_app"]
