"""Deploy pipeline steps.

The orchestrator lives in ``selfdeploy.deploy.manager``; it depends on the
serving package, which in turn uses the swap helpers exported here.
"""

from .fetch import fetch_package_to_path
from .extract import extract_archive
from .swap import MARKER_FILE, SwapStrategy, read_marker, swap_directory

__all__ = [
    "fetch_package_to_path",
    "extract_archive",
    "swap_directory",
    "read_marker",
    "SwapStrategy",
    "MARKER_FILE",
]
