"""Tests for pymosaic.tools.sandbox -- workspace containment and the allow-list."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from pymosaic.tools.sandbox import PathSandbox, PathSecurityError


class TestValidate:
    def test_relative_path_resolves_inside_root(self, workspace, sandbox):
        assert sandbox.validate("src/a.py") == workspace.resolve() / "src" / "a.py"

    def test_root_itself_is_allowed(self, workspace, sandbox):
        assert sandbox.validate(".") == workspace.resolve()

    def test_parent_escape_is_denied(self, sandbox):
        with pytest.raises(PathSecurityError) as exc:
            sandbox.validate("../outside.txt")
        assert "outside the workspace" in str(exc.value)
        assert exc.value.target == "../outside.txt"

    def test_absolute_outside_is_denied(self, tmp_path, sandbox):
        assert not sandbox.is_safe(tmp_path / "elsewhere" / "x.txt")

    def test_sibling_with_common_prefix_is_denied(self, tmp_path, workspace, sandbox):
        sibling = tmp_path / (workspace.name + "-evil")
        sibling.mkdir()
        assert not sandbox.is_safe(sibling / "x.txt")

    @pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
    def test_symlink_pointing_outside_is_denied(self, tmp_path, workspace, sandbox):
        outside = tmp_path / "secret"
        outside.mkdir()
        (workspace / "link").symlink_to(outside, target_is_directory=True)
        assert not sandbox.is_safe("link/file.txt")


class TestAllowList:
    def test_allow_and_disallow(self, tmp_path, sandbox):
        extra = tmp_path / "extra"
        sandbox.allow_path(extra)
        assert sandbox.is_safe(extra / "deep" / "f.txt")
        assert sandbox.allowed_paths() == [extra.resolve()]
        sandbox.disallow_path(extra)
        assert not sandbox.is_safe(extra / "f.txt")

    def test_clear(self, tmp_path, sandbox):
        sandbox.allow_path(tmp_path / "a")
        sandbox.allow_path(tmp_path / "b")
        sandbox.clear_allowed_paths()
        assert sandbox.allowed_paths() == []

    def test_admit_for_write_creates_new_external_parent(self, tmp_path, sandbox):
        target = tmp_path / "fresh" / "nested" / "out.txt"
        resolved = sandbox.admit_for_write(target)
        assert resolved == target.resolve()
        assert target.parent.is_dir()
        assert target.parent.resolve() in sandbox.allowed_paths()
        # The admitted directory stays reachable afterwards.
        assert sandbox.is_safe(target.parent / "other.txt")

    def test_admit_for_write_refuses_existing_external_parent(self, tmp_path, sandbox):
        existing = tmp_path / "existing"
        existing.mkdir()
        with pytest.raises(PathSecurityError) as exc:
            sandbox.admit_for_write(existing / "new.txt")
        assert "existing external directories" in str(exc.value)
        assert sandbox.allowed_paths() == []

    def test_admit_new_directory_refuses_existing(self, tmp_path, sandbox):
        existing = tmp_path / "there"
        existing.mkdir()
        with pytest.raises(PathSecurityError):
            sandbox.admit_new_directory(existing)

    def test_admit_new_directory_creates_and_allows(self, tmp_path, sandbox):
        fresh = tmp_path / "made-by-agent"
        assert sandbox.admit_new_directory(fresh) == fresh.resolve()
        assert fresh.is_dir()
        assert sandbox.is_safe(fresh / "x")

    def test_write_and_mkdir_checks_have_no_side_effects(self, tmp_path, sandbox):
        existing = tmp_path / "existing"
        existing.mkdir()
        assert sandbox.can_write("inside.txt")
        assert sandbox.can_write(tmp_path / "fresh" / "f.txt")
        assert not sandbox.can_write(existing / "f.txt")
        assert sandbox.can_create_directory(tmp_path / "newdir")
        assert not sandbox.can_create_directory(existing)
        assert not (tmp_path / "fresh").exists()
        assert not (tmp_path / "newdir").exists()
        assert sandbox.allowed_paths() == []

    def test_inside_workspace_never_touches_allow_list(self, sandbox):
        sandbox.admit_for_write("a/b/c.txt")
        assert sandbox.allowed_paths() == []


def test_root_is_normalized(tmp_path):
    (tmp_path / "ws").mkdir()
    sb = PathSandbox(str(tmp_path / "ws" / ".." / "ws"))
    assert sb.root == (tmp_path / "ws").resolve()
    assert isinstance(sb.root, Path)
