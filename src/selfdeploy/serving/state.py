"""Process-wide serving state: the live directory and its current handler."""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from selfdeploy.deploy.swap import read_marker
from selfdeploy.serving.content import ContentServer

logger = structlog.get_logger()


class ServingState:
    """Holds the handler used by content requests.

    Readers take the current handler with a single attribute read. The only
    writer is a successful deploy, which replaces the reference whole.
    """

    def __init__(self, dist_path: Path, handle: Optional[ContentServer] = None):
        self.dist_path = dist_path
        self._handle = handle
        self._write_lock = threading.Lock()

    @classmethod
    def from_directory(cls, dist_path: Path) -> "ServingState":
        """Build state for ``dist_path``, adopting a deployment already on disk."""
        dist_path.mkdir(parents=True, exist_ok=True)
        marker = read_marker(dist_path)
        if marker is None:
            return cls(dist_path)

        extra = {}
        try:
            extra["deployed_at"] = datetime.fromisoformat(marker["deployedAt"])
        except (KeyError, TypeError, ValueError):
            pass
        handle = ContentServer(root=dist_path, package_name=marker.get("package"), **extra)
        logger.info("Found existing deployment", package=handle.package_name)
        return cls(dist_path, handle)

    @property
    def handle(self) -> Optional[ContentServer]:
        return self._handle

    @property
    def deployed(self) -> bool:
        return self._handle is not None

    def publish(self, handle: ContentServer) -> None:
        with self._write_lock:
            self._handle = handle
        logger.info("Content published", package=handle.package_name)
