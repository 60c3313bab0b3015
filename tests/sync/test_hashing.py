from __future__ import annotations

import os
from pathlib import Path

import pytest

from arena_templates_sync.artifacts import Artifact
from arena_templates_sync.hashing import (
    VERSION_LENGTH,
    calculate_directory_hash,
    calculate_directory_size,
    compute_checksum,
    compute_version,
)


def make_tree(root: Path) -> Path:
    (root / "templates" / "basic").mkdir(parents=True)
    (root / "templates" / "basic" / "template.yaml").write_text("metadata:\n  name: basic\n")
    (root / "README.md").write_text("hello")
    return root


def test_hash_is_stable_across_copies(tmp_path: Path):
    first = make_tree(tmp_path / "a")
    second = make_tree(tmp_path / "b")
    assert calculate_directory_hash(first) == calculate_directory_hash(second)


def test_hash_ignores_mtime(tmp_path: Path):
    root = make_tree(tmp_path / "a")
    before = calculate_directory_hash(root)
    os.utime(root / "README.md", (0, 0))
    assert calculate_directory_hash(root) == before


def test_hash_changes_with_content_and_names(tmp_path: Path):
    root = make_tree(tmp_path / "a")
    original = calculate_directory_hash(root)
    (root / "README.md").write_text("changed")
    changed_content = calculate_directory_hash(root)
    (root / "README.md").rename(root / "README.txt")
    renamed = calculate_directory_hash(root)
    assert len({original, changed_content, renamed}) == 3  # noqa: PLR2004


def test_empty_directory_counts(tmp_path: Path):
    root = make_tree(tmp_path / "a")
    before = calculate_directory_hash(root)
    (root / "empty").mkdir()
    assert calculate_directory_hash(root) != before


def test_directory_size(tmp_path: Path):
    root = tmp_path / "a"
    root.mkdir()
    (root / "one").write_bytes(b"x" * 10)
    (root / "sub").mkdir()
    (root / "sub" / "two").write_bytes(b"y" * 5)
    (root / "link").symlink_to(root / "one")
    assert calculate_directory_size(root) == 15  # noqa: PLR2004


def test_compute_version_uses_checksum_prefix(tmp_path: Path):
    artifact = Artifact(path=tmp_path, checksum="sha256:abcdef0123456789ff", revision="1")
    assert compute_version(artifact) == "abcdef012345"


@pytest.mark.parametrize("checksum", ["md5:abc", "sha256:abc", "", "abcdef0123456789"])
def test_compute_version_falls_back_to_content_hash(tmp_path: Path, checksum: str):
    root = make_tree(tmp_path / "a")
    artifact = Artifact(path=root, checksum=checksum, revision="1")
    version = compute_version(artifact)
    assert version == calculate_directory_hash(root)[:VERSION_LENGTH]
    assert len(version) == VERSION_LENGTH


def test_identical_content_gets_identical_version(tmp_path: Path):
    first = make_tree(tmp_path / "a")
    second = make_tree(tmp_path / "b")
    v1 = compute_version(Artifact(path=first, checksum=compute_checksum(first), revision="1"))
    v2 = compute_version(Artifact(path=second, checksum=compute_checksum(second), revision="2"))
    assert v1 == v2
