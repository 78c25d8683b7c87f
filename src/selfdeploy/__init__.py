"""Selfdeploy - a content server that deploys itself."""

__version__ = "0.1.0"
__author__ = "Selfdeploy Team"

from selfdeploy.core.config import Settings
from selfdeploy.main import create_app, install

__all__ = ["Settings", "create_app", "install", "__version__"]
