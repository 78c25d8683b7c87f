"""Replace the live serving directory with freshly extracted content.

The preferred strategy renames the new tree into place: the incoming tree is
first moved next to the live directory (same parent, so same filesystem),
then the live directory is renamed aside and the incoming tree renamed over
it. Readers see either the old tree or the new one; the only gap is the
instant between the two renames, where the path briefly does not exist.

When the live directory cannot be renamed (it is a mount point, sits on a
different device, or its parent is not writable) the swap falls back to
clearing the live directory and copying the new tree in. That fallback has
a window in which a reader can observe a partially copied tree.
"""

from __future__ import annotations

import errno
import json
import os
import shutil
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from selfdeploy.core.exceptions import SwapError

logger = structlog.get_logger()

MARKER_FILE = ".selfdeploy.json"

# rename(2) failures that mean "use the copy strategy", not "give up"
_RENAME_UNAVAILABLE = {errno.EXDEV, errno.EBUSY, errno.EACCES, errno.EPERM}


class SwapStrategy(str, Enum):
    RENAME = "rename"
    COPY = "copy"


def read_marker(live_dir: Path) -> Optional[Dict[str, Any]]:
    """Return the deployment marker stored in ``live_dir``, if any."""
    marker = live_dir / MARKER_FILE
    try:
        with open(marker, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _write_marker(tree: Path, marker: Dict[str, Any]) -> None:
    with open(tree / MARKER_FILE, "w", encoding="utf-8") as f:
        json.dump(marker, f)


def _rename_over(incoming: Path, live_dir: Path, token: str) -> None:
    if not live_dir.exists():
        os.rename(incoming, live_dir)
        return

    retired = live_dir.with_name(f".{live_dir.name}.retired-{token}")
    os.rename(live_dir, retired)
    try:
        os.rename(incoming, live_dir)
    except OSError:
        os.rename(retired, live_dir)
        raise
    shutil.rmtree(retired, ignore_errors=True)


def _clear_and_copy(incoming: Path, live_dir: Path) -> None:
    live_dir.mkdir(parents=True, exist_ok=True)
    for child in live_dir.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()
    shutil.copytree(incoming, live_dir, dirs_exist_ok=True, symlinks=True)


def swap_directory(
    extract_dir: Path,
    live_dir: Path,
    *,
    content_dir_name: str,
    marker: Optional[Dict[str, Any]] = None,
) -> SwapStrategy:
    """Make ``live_dir`` hold exactly ``extract_dir/content_dir_name``.

    Returns the strategy that was used. Raises SwapError when the content
    folder is missing or the filesystem refuses the operation.
    """
    content = extract_dir / content_dir_name
    if not content.is_dir():
        raise SwapError(f"Package does not contain a '{content_dir_name}' folder", code="missing_content")

    token = uuid.uuid4().hex[:8]
    incoming = live_dir.with_name(f".{live_dir.name}.incoming-{token}")
    try:
        live_dir.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(content), str(incoming))
        if marker is not None:
            _write_marker(incoming, marker)

        try:
            _rename_over(incoming, live_dir, token)
            strategy = SwapStrategy.RENAME
        except OSError as exc:
            if exc.errno not in _RENAME_UNAVAILABLE:
                raise
            logger.warning(
                "Live directory cannot be renamed; clearing and copying instead",
                reason=exc.strerror,
            )
            _clear_and_copy(incoming, live_dir)
            strategy = SwapStrategy.COPY
    except OSError as exc:
        raise SwapError(f"Failed to replace live content: {exc.strerror or exc}", code="io") from exc
    finally:
        if incoming.exists():
            shutil.rmtree(incoming, ignore_errors=True)

    logger.info("Live content replaced", strategy=strategy.value)
    return strategy
