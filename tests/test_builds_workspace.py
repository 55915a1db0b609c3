"""Tests for builds/workspace.py module."""

from pathlib import Path

import pytest

from container_exporter.builds import workspace


class TestWorkspace:
    """Tests for create and remove."""

    def test_create_under_tmp_dir(self, tmp_path: Path) -> None:
        """Workspaces are fresh directories below tmp_dir."""
        first = workspace.create(tmp_path / "work")
        second = workspace.create(tmp_path / "work")

        assert first != second
        assert first.parent == tmp_path / "work"
        assert first.name.startswith(workspace.WORKSPACE_PREFIX)

    def test_remove(self, tmp_path: Path) -> None:
        """Removal deletes the whole tree."""
        workdir = workspace.create(tmp_path)
        (workdir / "rootfs" / "etc").mkdir(parents=True)

        workspace.remove(workdir)

        assert not workdir.exists()

    def test_remove_missing(self, tmp_path: Path) -> None:
        """Removing a missing workspace raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            workspace.remove(tmp_path / "gone")
