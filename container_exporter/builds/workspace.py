"""Temporary build workspaces.

Every export gets its own workspace directory; workspaces are never shared
between exports, so no locking is needed.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "container-export-"


def create(tmp_dir: Path | None = None) -> Path:
    """Create a fresh, exclusively owned workspace directory.

    Args:
        tmp_dir: Parent directory (system default if None).

    Returns:
        Path to the new workspace.

    Raises:
        OSError: If the directory cannot be created.
    """
    if tmp_dir is not None:
        tmp_dir.mkdir(parents=True, exist_ok=True)
    workdir = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=tmp_dir))
    logger.debug("Created workspace %s", workdir)
    return workdir


def remove(workdir: Path) -> None:
    """Remove a workspace directory and everything below it.

    Args:
        workdir: Workspace to remove.

    Raises:
        FileNotFoundError: If the workspace is already gone.
        OSError: If removal fails.
    """
    logger.debug("Removing workspace %s", workdir)
    shutil.rmtree(workdir)


__all__ = ["WORKSPACE_PREFIX", "create", "remove"]
