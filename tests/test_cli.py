"""Tests for the command line interface."""

import json
import shutil
from pathlib import Path

import pytest
from click.testing import CliRunner

from conftest import make_conversation, make_workspace
from convo_vault.__main__ import cli, format_bytes


@pytest.fixture
def exports(tmp_path: Path) -> Path:
    root = tmp_path / "exports"
    root.mkdir()
    for conv_id in ("c1", "c2"):
        conversation = make_conversation(conv_id, title=f"Chat {conv_id}")
        (root / f"{conv_id}.json").write_text(json.dumps(conversation.to_dict()))
    return root


@pytest.fixture
def config_path(tmp_path: Path, exports: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        f"""
archive_dir: {tmp_path / "archive"}
log_dir: {tmp_path / "logs"}
storage:
  formats: [json]
providers:
  claude:
    kind: directory
    options:
      path: {exports}
"""
    )
    return path


def run(config_path: Path, *args: str):
    return CliRunner().invoke(cli, ["--config", str(config_path), *args])


class TestArchiveCommand:
    """Tests for `convo-vault archive`."""

    def test_archives_and_reports(self, tmp_path: Path, config_path: Path) -> None:
        result = run(config_path, "archive")

        assert result.exit_code == 0, result.output
        assert "Archived: 2" in result.output
        index = json.loads((tmp_path / "archive" / "claude" / "index.json").read_text())
        assert sorted(index) == ["c1", "c2"]

    def test_archives_workspace_library(self, tmp_path: Path, config_path: Path, exports: Path) -> None:
        (exports / "library").mkdir()
        (exports / "library" / "workspaces.json").write_text(json.dumps([make_workspace().to_dict()]))

        result = run(config_path, "archive")

        assert result.exit_code == 0, result.output
        assert "Workspaces:       1" in result.output
        assert (tmp_path / "archive" / "claude" / "workspaces" / "ws-1" / "workspace.md").exists()

    def test_second_run_skips(self, config_path: Path) -> None:
        run(config_path, "archive")

        result = run(config_path, "archive")

        assert result.exit_code == 0
        assert "Archived: 0" in result.output
        assert "Skipped:  2" in result.output

    def test_dry_run(self, tmp_path: Path, config_path: Path) -> None:
        result = run(config_path, "archive", "--dry-run", "--id", "c2")

        assert result.exit_code == 0
        assert "Would archive: 1" in result.output
        assert "+ c2" in result.output
        assert not (tmp_path / "archive" / "claude").exists()

    def test_unknown_provider_is_setup_failure(self, config_path: Path) -> None:
        result = run(config_path, "archive", "--provider", "nope")
        assert result.exit_code == 1

    def test_invalid_date_is_setup_failure(self, config_path: Path) -> None:
        result = run(config_path, "archive", "--since", "last tuesday")
        assert result.exit_code == 1

    def test_unreachable_provider_is_setup_failure(self, config_path: Path, exports: Path) -> None:
        shutil.rmtree(exports)

        result = run(config_path, "archive")

        assert result.exit_code == 1

    def test_malformed_export_is_setup_failure(self, config_path: Path, exports: Path) -> None:
        """Should exit 1 with a message rather than a traceback."""
        data = json.loads((exports / "c1.json").read_text())
        data["updatedAt"] = "garbage"
        (exports / "c1.json").write_text(json.dumps(data))

        result = run(config_path, "archive")

        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)

    def test_invalid_config(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("storage:\n  formats: [pdf]\n")

        result = CliRunner().invoke(cli, ["--config", str(path), "stats"])

        assert result.exit_code == 1


class TestStatusCommand:
    def test_reports_new_conversations(self, config_path: Path) -> None:
        result = run(config_path, "status")

        assert result.exit_code == 0, result.output
        assert "New:               2" in result.output
        assert "+ Chat c1 (2 messages)" in result.output

    def test_up_to_date_after_archive(self, config_path: Path) -> None:
        run(config_path, "archive")

        result = run(config_path, "status")

        assert "Already archived:  2" in result.output
        assert "Run `convo-vault archive`" not in result.output


class TestVerifyCommand:
    """Tests for `convo-vault verify` exit codes."""

    def test_clean_archive_exits_zero(self, config_path: Path) -> None:
        run(config_path, "archive")

        result = run(config_path, "verify", "--full")

        assert result.exit_code == 0, result.output
        assert "Verify result: OK" in result.output

    def test_issues_exit_two(self, tmp_path: Path, config_path: Path) -> None:
        """Should exit 2 when the archive has integrity problems."""
        run(config_path, "archive")
        shutil.rmtree(tmp_path / "archive" / "claude" / "conversations" / "c1")

        result = run(config_path, "verify", "--local-only")

        assert result.exit_code == 2
        assert "Missing dirs: 1" in result.output

    def test_missing_remote_conversations_exit_two(self, config_path: Path) -> None:
        result = run(config_path, "verify")

        assert result.exit_code == 2
        assert "Missing locally: 2" in result.output

    def test_setup_failure_exits_one(self, config_path: Path, exports: Path) -> None:
        shutil.rmtree(exports)

        result = run(config_path, "verify")

        assert result.exit_code == 1


class TestMaintenanceCommands:
    def test_gc_with_empty_archive(self, config_path: Path) -> None:
        result = run(config_path, "gc")

        assert result.exit_code == 0
        assert "Nothing archived yet." in result.output

    def test_gc_after_archive(self, config_path: Path) -> None:
        run(config_path, "archive")

        result = run(config_path, "gc", "--dry-run")

        assert result.exit_code == 0
        assert "claude: Would remove 0 files" in result.output

    def test_stats(self, config_path: Path) -> None:
        run(config_path, "archive")

        result = run(config_path, "stats")

        assert result.exit_code == 0
        assert "Conversations:  2" in result.output
        assert "Messages:       4" in result.output
        assert "Dedup savings:  0 B" in result.output


class TestFormatBytes:
    @pytest.mark.parametrize(
        "size,expected",
        [(0, "0 B"), (1023, "1023 B"), (1536, "1.50 KB"), (5 * 1024**2, "5.00 MB"), (3 * 1024**3, "3.00 GB")],
    )
    def test_units(self, size: int, expected: str) -> None:
        assert format_bytes(size) == expected
