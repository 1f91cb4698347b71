"""End-to-end tests for the dotdipper CLI."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from dotdipper.cli import main
from dotdipper.config import compiled_dir, config_path, load_config, manifest_path, save_config
from dotdipper.hashing import build_manifest, save_manifest


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def env(tmp_path: Path, target_root: Path):
    """Base dir and target root, with two dotfiles already on disk."""
    base = tmp_path / ".dotdipper"
    (target_root / ".bashrc").write_text("alias ll='ls -l'\n")
    (target_root / ".config" / "git").mkdir(parents=True)
    (target_root / ".config" / "git" / "config").write_text("[user]\n")
    return base, target_root


def _run(runner: CliRunner, base: Path, root: Path, *args: str, **kwargs):
    cmd, *rest = args
    if cmd == "init":
        return runner.invoke(main, [cmd, "--home", str(base), *rest], **kwargs)
    return runner.invoke(
        main, [cmd, "--home", str(base), "--target-root", str(root), *rest], **kwargs
    )


def _bootstrap(runner: CliRunner, base: Path, root: Path) -> None:
    assert _run(runner, base, root, "init").exit_code == 0
    result = _run(
        runner, base, root, "track",
        str(root / ".bashrc"), str(root / ".config" / "git" / "config"),
    )
    assert result.exit_code == 0, result.output
    result = _run(runner, base, root, "snapshot")
    assert result.exit_code == 0, result.output


class TestSetup:
    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for name in ("init", "track", "snapshot", "status", "diff", "apply", "verify", "secrets"):
            assert name in result.output

    def test_init_twice_fails(self, runner, env):
        base, root = env
        assert _run(runner, base, root, "init").exit_code == 0

        result = _run(runner, base, root, "init")

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_track_stores_home_relative_entries(self, runner, env):
        base, root = env
        _run(runner, base, root, "init")

        result = _run(runner, base, root, "track", str(root / ".bashrc"))

        assert result.exit_code == 0
        assert load_config(config_path(base)).general.tracked_files == ["~/.bashrc"]

    def test_config_show(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)

        result = runner.invoke(main, ["config", "--home", str(base), "--show"])

        assert result.exit_code == 0
        assert "default_mode: symlink" in result.output
        assert "~/.bashrc" in result.output

    def test_missing_config_exits_1(self, runner, tmp_path):
        result = runner.invoke(
            main, ["status", "--home", str(tmp_path / "nowhere"), "--target-root", str(tmp_path)],
        )
        assert result.exit_code == 1
        assert "Error:" in result.output


class TestSnapshotCommands:
    def test_snapshot_then_unchanged(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)

        result = _run(runner, base, root, "snapshot")

        assert result.exit_code == 0
        assert "No changes detected" in result.output
        assert (compiled_dir(base) / ".bashrc").exists()

    def test_status_clean_and_modified(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)

        clean = _run(runner, base, root, "status")
        (root / ".bashrc").write_text("changed\n")
        dirty = _run(runner, base, root, "status")
        detailed = _run(runner, base, root, "status", "--detailed")

        assert "everything is up to date" in clean.output
        assert dirty.exit_code == 0
        assert "1 modified" in dirty.output
        assert "~/.bashrc" not in dirty.output
        assert "Modified files:" in detailed.output
        assert "~/.bashrc" in detailed.output
        assert "Added files:" not in detailed.output

    def test_verify(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)

        ok = _run(runner, base, root, "verify")
        (root / ".bashrc").write_text("changed\n")
        live = _run(runner, base, root, "verify", "--live")

        assert "All 2 file(s) verified." in ok.output
        assert live.exit_code == 0
        assert "1 file(s) do not match" in live.output
        assert ".bashrc" in live.output

    def test_verify_without_manifest(self, runner, env):
        base, root = env
        _run(runner, base, root, "init")

        result = _run(runner, base, root, "verify")

        assert result.exit_code == 0
        assert "No manifest found" in result.output


class TestReconcile:
    def test_diff_reports_missing(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)
        (root / ".bashrc").unlink()

        result = _run(runner, base, root, "diff")

        assert result.exit_code == 0
        assert "Diff Summary" in result.output
        assert "1 missing" in result.output
        assert "~/.bashrc" in result.output
        assert "~/.config/git/config" not in result.output

    def test_diff_detailed_shows_content(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)
        (root / ".bashrc").write_text("alias ll='ls -la'\n")
        done = subprocess.CompletedProcess(
            args=["git"], returncode=1, stderr="",
            stdout="diff --git a b\nindex 1..2\n--- a\n+++ b\n@@ -1 +1 @@\n-alias ll='ls -la'\n+alias ll='ls -l'\n",
        )

        with patch("dotdipper.diff.subprocess.run", return_value=done):
            result = _run(runner, base, root, "diff", "--detailed")

        assert result.exit_code == 0, result.output
        assert "+alias ll='ls -l'" in result.output
        assert "diff --git" not in result.output

    def test_diff_hints_at_encrypted_entries(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)
        (compiled_dir(base) / ".netrc.age").write_text("ciphertext")
        (root / ".netrc").write_text("plain")
        compiled = compiled_dir(base)
        manifest = build_manifest(
            [compiled / ".bashrc", compiled / ".netrc.age"], root=compiled,
        )
        save_manifest(manifest, manifest_path(base))

        result = _run(runner, base, root, "diff")

        assert result.exit_code == 0
        assert "encrypted file(s)" in result.output

    def test_apply_restores_then_is_noop(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)
        (root / ".bashrc").unlink()

        first = _run(runner, base, root, "apply")
        second = _run(runner, base, root, "apply")

        assert first.exit_code == 0, first.output
        assert "Symlinked: 1" in first.output
        assert "Apply completed." in first.output
        assert os.readlink(root / ".bashrc") == str(compiled_dir(base) / ".bashrc")
        assert second.exit_code == 0
        assert "already up to date" in second.output

    def test_apply_prompt_declined(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)
        (root / ".bashrc").write_text("local edit\n")

        result = _run(runner, base, root, "apply", input="n\n")

        assert result.exit_code == 0
        assert "Skipped: 1" in result.output
        assert (root / ".bashrc").read_text() == "local edit\n"

    def test_apply_only_filter(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)
        (root / ".bashrc").unlink()
        (root / ".config" / "git" / "config").unlink()

        result = _run(runner, base, root, "apply", "--only", "~/.config/git")

        assert result.exit_code == 0
        assert "Filtered to 1" in result.output
        assert (root / ".config" / "git" / "config").is_symlink()
        assert not os.path.lexists(root / ".bashrc")

    def test_failing_hook_exits_1(self, runner, env):
        base, root = env
        _bootstrap(runner, base, root)
        config = load_config(config_path(base))
        config.hooks.pre_apply = ["false"]
        save_config(config_path(base), config)
        (root / ".bashrc").unlink()

        result = _run(runner, base, root, "apply")

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert not os.path.lexists(root / ".bashrc")


class TestSecretsCommands:
    def test_secrets_init_generates_key(self, runner, env):
        base, root = env
        _run(runner, base, root, "init")
        key = root / ".config" / "age" / "keys.txt"
        config = load_config(config_path(base))
        config.secrets.key_path = str(key)
        save_config(config_path(base), config)

        def fake_keygen(args, **kwargs):
            key.write_text("# public key: age1example\nAGE-SECRET-KEY-1ABC\n")
            return subprocess.CompletedProcess(args=args, returncode=0, stdout=b"", stderr=b"")

        with patch("dotdipper.secrets.shutil.which", return_value="/usr/bin/age-keygen"), \
                patch("dotdipper.secrets.subprocess.run", side_effect=fake_keygen):
            result = runner.invoke(main, ["secrets", "init", "--home", str(base)])

        assert result.exit_code == 0, result.output
        assert "Age key generated" in result.output
        assert "Public key: age1example" in result.output

    def test_secrets_init_rejects_invalid_key(self, runner, env):
        base, root = env
        _run(runner, base, root, "init")
        key = root / "bad-key.txt"
        key.write_text("garbage\n")
        config = load_config(config_path(base))
        config.secrets.key_path = str(key)
        save_config(config_path(base), config)

        result = runner.invoke(main, ["secrets", "init", "--home", str(base)])

        assert result.exit_code == 1
        assert "Invalid age key file" in result.output
