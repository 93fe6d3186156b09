"""Shared fixtures for the treesnap test suite."""

import pytest

from treesnap import base


@pytest.fixture
def worktree(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def repo(worktree):
    """A freshly initialized repository on an unborn main branch."""
    return base.init(str(worktree))


@pytest.fixture
def write(worktree):
    """Write text into the working tree, creating parent directories."""

    def _write(path, content):
        full = worktree / path
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(content.encode() if isinstance(content, str) else content)
        return full

    return _write

