"""Static content handler bound to one serving directory."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi.responses import FileResponse, PlainTextResponse, Response

from selfdeploy.deploy.swap import MARKER_FILE


def _not_found() -> Response:
    return PlainTextResponse("Not found", status_code=404)


@dataclass(frozen=True)
class ContentServer:
    """Serves files from ``root`` with an SPA fallback to ``index.html``.

    Instances are immutable. A deploy builds a new one rather than mutating
    the one requests are currently using.
    """

    root: Path
    package_name: Optional[str] = None
    deployed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def _resolve(self, path: str) -> Optional[Path]:
        base = self.root.resolve()
        candidate = (base / path.lstrip("/")).resolve()
        if not candidate.is_relative_to(base) or candidate.name == MARKER_FILE:
            return None
        return candidate

    def response_for(self, path: str) -> Response:
        """Return the response for a request path relative to the root."""
        target = self._resolve(path)
        if target is None:
            return _not_found()

        if target.is_file():
            return FileResponse(str(target))
        if target.is_dir() and (target / "index.html").is_file():
            return FileResponse(str(target / "index.html"))

        # Paths with an extension are asset requests; don't answer them with HTML
        if "." in Path(path).name:
            return _not_found()

        index_file = self.root / "index.html"
        if index_file.is_file():
            return FileResponse(str(index_file))

        return _not_found()
