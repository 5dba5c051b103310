"""Disk space checking for the SQLite weather log.

The relay checks free space before appending a reading so that a full disk
surfaces as a DiskFullError instead of a cryptic SQLite I/O error.
"""

import logging
import shutil
from pathlib import Path
from typing import Tuple, Union

from .errors import DiskFullError

logger = logging.getLogger(__name__)

CRITICAL_THRESHOLD_PERCENT = 95


def get_disk_usage(path: Union[str, Path] = "/") -> Tuple[int, int, float]:
    """Get disk usage for the given path.

    Args:
        path: Filesystem path to check. A database file that does not exist
            yet is resolved to its nearest existing ancestor.

    Returns:
        Tuple of (used_bytes, total_bytes, percent_used)
    """
    path = Path(path).resolve()
    while not path.exists() and path != path.parent:
        path = path.parent
    usage = shutil.disk_usage(path)
    percent = (usage.used / usage.total) * 100
    return usage.used, usage.total, percent


def require_disk_space(
    path: Union[str, Path] = "/", threshold: float = CRITICAL_THRESHOLD_PERCENT
) -> None:
    """Raise DiskFullError if disk is above threshold.

    Use this as a guard before write operations.

    Raises:
        DiskFullError: If disk usage exceeds threshold.
    """
    used, total, percent = get_disk_usage(path)
    if percent >= threshold:
        used_gb = used / (1024**3)
        total_gb = total / (1024**3)
        raise DiskFullError(
            f"Disk usage critical: {percent:.1f}% ({used_gb:.1f}/{total_gb:.1f} GB). "
            f"Writes suspended until usage drops below {threshold}%."
        )
