import errno
import os
from pathlib import Path

import pytest

from selfdeploy.core.exceptions import SwapError
from selfdeploy.deploy import swap as swap_module
from selfdeploy.deploy.swap import MARKER_FILE, SwapStrategy, read_marker, swap_directory


def make_extracted(root: Path, files: dict) -> Path:
    for name, data in files.items():
        target = root / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(data)
    return root


def tree(path: Path) -> set:
    return {str(p.relative_to(path)) for p in path.rglob("*") if p.is_file()}


def test_swap_into_empty_location(tmp_path: Path):
    extracted = make_extracted(tmp_path / "a", {"deploy-dist/index.html": "A", "README": "top level"})
    live = tmp_path / "dist"

    strategy = swap_directory(extracted, live, content_dir_name="deploy-dist")

    assert strategy == SwapStrategy.RENAME
    assert (live / "index.html").read_text() == "A"
    assert not (live / "README").exists()


def test_swap_leaves_no_residue(tmp_path: Path):
    live = tmp_path / "dist"
    first = make_extracted(tmp_path / "a", {"deploy-dist/index.html": "A", "deploy-dist/old.js": "old"})
    swap_directory(first, live, content_dir_name="deploy-dist")

    second = make_extracted(tmp_path / "b", {"deploy-dist/index.html": "B", "deploy-dist/new/app.js": "new"})
    swap_directory(second, live, content_dir_name="deploy-dist")

    assert tree(live) == {"index.html", os.path.join("new", "app.js")}
    assert (live / "index.html").read_text() == "B"
    # no incoming/retired siblings left behind
    assert sorted(p.name for p in tmp_path.iterdir()) == ["a", "b", "dist"]


def test_marker_written_with_content(tmp_path: Path):
    extracted = make_extracted(tmp_path / "a", {"deploy-dist/index.html": "A"})
    live = tmp_path / "dist"

    swap_directory(extracted, live, content_dir_name="deploy-dist", marker={"package": "site-a.tar.gz"})

    assert (live / MARKER_FILE).exists()
    assert read_marker(live) == {"package": "site-a.tar.gz"}


def test_read_marker_absent_or_garbage(tmp_path: Path):
    assert read_marker(tmp_path) is None
    (tmp_path / MARKER_FILE).write_text("{not json")
    assert read_marker(tmp_path) is None


def test_missing_content_folder(tmp_path: Path):
    live = tmp_path / "dist"
    live.mkdir()
    (live / "index.html").write_text("current")
    extracted = make_extracted(tmp_path / "a", {"other-folder/index.html": "A"})

    with pytest.raises(SwapError) as exc_info:
        swap_directory(extracted, live, content_dir_name="deploy-dist")

    assert exc_info.value.code == "missing_content"
    assert str(tmp_path) not in str(exc_info.value)
    assert (live / "index.html").read_text() == "current"


def test_falls_back_to_copy_when_live_dir_cannot_be_renamed(tmp_path: Path, monkeypatch):
    live = tmp_path / "dist"
    live.mkdir()
    (live / "stale.html").write_text("stale")
    extracted = make_extracted(tmp_path / "a", {"deploy-dist/index.html": "A"})

    real_rename = os.rename

    def rename(src, dst):
        if Path(src) == live or Path(dst) == live:
            raise OSError(errno.EBUSY, "Device or resource busy")
        return real_rename(src, dst)

    monkeypatch.setattr(swap_module.os, "rename", rename)

    strategy = swap_directory(extracted, live, content_dir_name="deploy-dist")

    assert strategy == SwapStrategy.COPY
    assert tree(live) == {"index.html"}
    assert sorted(p.name for p in tmp_path.iterdir()) == ["a", "dist"]


def test_other_filesystem_errors_raise_swap_error(tmp_path: Path, monkeypatch):
    live = tmp_path / "dist"
    live.mkdir()
    (live / "index.html").write_text("current")
    extracted = make_extracted(tmp_path / "a", {"deploy-dist/index.html": "A"})

    real_rename = os.rename

    def rename(src, dst):
        if Path(dst) == live and ".incoming-" in Path(src).name:
            raise OSError(errno.ENOSPC, "No space left on device")
        return real_rename(src, dst)

    monkeypatch.setattr(swap_module.os, "rename", rename)

    with pytest.raises(SwapError) as exc_info:
        swap_directory(extracted, live, content_dir_name="deploy-dist")

    assert "No space left" in str(exc_info.value)
    assert (live / "index.html").read_text() == "current"
