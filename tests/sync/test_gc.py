from __future__ import annotations

import os
from pathlib import Path
import shutil
from unittest import mock

import pytest

from arena_templates.exceptions import SyncError
from arena_templates_sync.gc import gc, list_versions, versions_dir


def make_versions(root: Path, count: int) -> list[str]:
    directory = versions_dir(root)
    names = []
    for i in range(count):
        path = directory / f"v{i:02d}"
        path.mkdir(parents=True)
        (path / "file").write_text(str(i))
        os.utime(path, (1_000 + i, 1_000 + i))
        names.append(path.name)
    return names


def test_missing_versions_dir_is_noop(tmp_path: Path):
    assert gc(tmp_path / "nothing") == []


def test_keeps_newest(tmp_path: Path):
    names = make_versions(tmp_path, 5)
    removed = gc(tmp_path, max_versions=2)
    assert removed == names[:3]
    assert [p.name for p in list_versions(tmp_path)] == names[3:]


def test_under_limit_removes_nothing(tmp_path: Path):
    make_versions(tmp_path, 3)
    assert gc(tmp_path, max_versions=3) == []
    assert len(list_versions(tmp_path)) == 3  # noqa: PLR2004


def test_non_positive_limit_uses_default(tmp_path: Path):
    make_versions(tmp_path, 12)
    removed = gc(tmp_path, max_versions=0)
    assert len(removed) == 2  # noqa: PLR2004
    assert len(list_versions(tmp_path)) == 10  # noqa: PLR2004


def test_ignores_plain_files(tmp_path: Path):
    make_versions(tmp_path, 2)
    (versions_dir(tmp_path) / "stray.txt").write_text("x")
    assert gc(tmp_path, max_versions=1) == ["v00"]
    assert (versions_dir(tmp_path) / "stray.txt").exists()


def test_equal_mtimes_ordered_by_name(tmp_path: Path):
    directory = versions_dir(tmp_path)
    for name in ["ccc", "aaa", "bbb"]:
        (directory / name).mkdir(parents=True)
        os.utime(directory / name, (500, 500))
    assert gc(tmp_path, max_versions=1) == ["aaa", "bbb"]


def test_failures_are_aggregated(tmp_path: Path):
    names = make_versions(tmp_path, 4)
    real_rmtree = shutil.rmtree

    def flaky_rmtree(path, *args, **kwargs):
        if Path(path).name == names[0]:
            raise PermissionError("denied")
        return real_rmtree(path, *args, **kwargs)

    with (
        mock.patch("arena_templates_sync.gc.shutil.rmtree", side_effect=flaky_rmtree),
        pytest.raises(SyncError, match="failed to remove 1 old version"),
    ):
        gc(tmp_path, max_versions=1)
    remaining = [p.name for p in list_versions(tmp_path)]
    assert remaining == [names[0], names[3]]


def test_protected_versions_survive(tmp_path: Path):
    names = make_versions(tmp_path, 5)
    removed = gc(tmp_path, max_versions=2, protect={names[0]})
    assert removed == names[1:4]
    assert {p.name for p in list_versions(tmp_path)} == {names[0], names[4]}
