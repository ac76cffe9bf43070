"""
Tests for the removal of partial conversion output.
"""

import os
import tempfile

from hls_runner.encoding.cleanup import cleanup


def test_cleanup_empties_the_output_directory():
    """Every file and subdirectory goes, the directory itself stays."""

    with tempfile.TemporaryDirectory() as temp_dir:
        for name in ("master.m3u8", "variant_720p.m3u8", "segment_720p_000.ts"):
            with open(os.path.join(temp_dir, name), "w", encoding="utf-8") as handle:
                handle.write("content")

        nested = os.path.join(temp_dir, "nested")
        os.makedirs(nested)
        with open(os.path.join(nested, "data.txt"), "w", encoding="utf-8") as handle:
            handle.write("nested content")

        assert cleanup(temp_dir) == 4
        assert os.path.isdir(temp_dir)
        assert os.listdir(temp_dir) == []

        # Nothing left to remove
        assert cleanup(temp_dir) == 0


def test_cleanup_missing_directory_is_a_noop(tmp_path):
    assert cleanup(tmp_path / "missing") == 0


def test_cleanup_removes_symlinks_not_their_targets(tmp_path):
    target_dir = tmp_path / "keep"
    target_dir.mkdir()
    (target_dir / "file.txt").write_text("keep me")
    output_dir = tmp_path / "out"
    output_dir.mkdir()
    os.symlink(target_dir, output_dir / "link")

    assert cleanup(output_dir) == 1
    assert (target_dir / "file.txt").exists()


def test_cleanup_skips_entries_it_cannot_delete(tmp_path, monkeypatch):
    (tmp_path / "a.ts").write_text("a")
    (tmp_path / "b.ts").write_text("b")
    real_remove = os.remove

    def flaky_remove(path):
        if path.endswith("a.ts"):
            raise PermissionError("denied")
        real_remove(path)

    monkeypatch.setattr(os, "remove", flaky_remove)
    assert cleanup(tmp_path) == 1
    assert sorted(os.listdir(tmp_path)) == ["a.ts"]
