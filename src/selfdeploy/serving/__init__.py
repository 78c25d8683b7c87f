"""Serving state and the content handler bound to the live directory."""

from .content import ContentServer
from .state import ServingState

__all__ = ["ContentServer", "ServingState"]
