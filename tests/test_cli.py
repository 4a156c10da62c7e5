"""Tests for the omero-autoimport CLI commands."""

import subprocess
import time
from unittest.mock import patch

import click.testing
import pytest
from conftest import FakeOmeroCli, omero_descriptor, write_json

from omero_autoimport.cli import cli


@pytest.fixture(autouse=True)
def _dated_files():
    """Report files as created just now, even where the file system keeps no birth time."""
    now = subprocess.CompletedProcess(args=[], returncode=0, stdout=f"{int(time.time())}\n", stderr="")
    with patch("omero_autoimport.scanner.locator.subprocess.run", return_value=now):
        yield


@pytest.fixture
def runner():
    return click.testing.CliRunner()


@pytest.fixture
def setup(tmp_path):
    """A watch directory with one new image and its descriptor."""
    watch = tmp_path / "watch"
    watch.mkdir()
    write_json(watch / ".suffixes.json", {"suffixes": [".tif"]})
    (watch / "a.tif").write_bytes(b"img")
    write_json(watch / "elabftw-metadata.json", omero_descriptor(42, "alice"))
    return {
        "watch": watch,
        "watch_list": write_json(tmp_path / "watch.json", {"paths": [str(watch)]}),
        "credentials": write_json(tmp_path / "cred.json", {"user": "importer", "password": "pw"}),
    }


def _invoke(runner, *args):
    return runner.invoke(cli, ["--log-file", "", *args])


class TestHelp:
    def test_run_help(self, runner):
        result = _invoke(runner, "run", "--help")
        assert result.exit_code == 0
        assert "--watch-list" in result.output
        assert "--credentials" in result.output
        assert "--window-hours" in result.output
        assert "--host" in result.output

    def test_scan_help(self, runner):
        result = _invoke(runner, "scan", "--help")
        assert result.exit_code == 0
        assert "--watch-list" in result.output


class TestRun:
    def test_imports_new_file(self, runner, setup):
        fake = FakeOmeroCli()
        with patch("omero_autoimport.cli._build_omero_cli", return_value=fake):
            result = _invoke(
                runner,
                "run",
                "--watch-list", str(setup["watch_list"]),
                "--credentials", str(setup["credentials"]),
            )

        assert result.exit_code == 0, result.output
        assert "Imported: 1" in result.output
        assert fake.operations("import") == [("import", "a.tif", "alice", 42)]

    def test_failed_import_still_exits_zero(self, runner, setup):
        fake = FakeOmeroCli()
        fake.fail[("import", "a.tif")] = "exit code 1: nope"
        with patch("omero_autoimport.cli._build_omero_cli", return_value=fake):
            result = _invoke(
                runner,
                "run",
                "--watch-list", str(setup["watch_list"]),
                "--credentials", str(setup["credentials"]),
            )
        assert result.exit_code == 0
        assert "Failed: 1" in result.output

    def test_unreadable_watch_list_exits_1(self, runner, setup, tmp_path):
        result = _invoke(
            runner,
            "run",
            "--watch-list", str(tmp_path / "missing.json"),
            "--credentials", str(setup["credentials"]),
        )
        assert result.exit_code == 1
        assert "cannot read watch list" in result.output

    def test_missing_credentials_exits_1(self, runner, setup, tmp_path):
        fake = FakeOmeroCli()
        with patch("omero_autoimport.cli._build_omero_cli", return_value=fake):
            result = _invoke(
                runner,
                "run",
                "--watch-list", str(setup["watch_list"]),
                "--credentials", str(tmp_path / "nope.json"),
            )
        assert result.exit_code == 1
        assert "admin credentials" in result.output
        assert fake.calls == []

    def test_no_valid_dirs_exits_1(self, runner, setup, tmp_path):
        watch_list = write_json(tmp_path / "w2.json", {"paths": [str(tmp_path / "gone")]})
        with patch("omero_autoimport.cli._build_omero_cli", return_value=FakeOmeroCli()):
            result = _invoke(
                runner,
                "run",
                "--watch-list", str(watch_list),
                "--credentials", str(setup["credentials"]),
            )
        assert result.exit_code == 1
        assert "no valid watch directories" in result.output

    def test_appends_to_log_file(self, runner, setup, tmp_path):
        log_file = tmp_path / "upload.log"
        log_file.write_text("previous run\n")
        with patch("omero_autoimport.cli._build_omero_cli", return_value=FakeOmeroCli()):
            result = runner.invoke(
                cli,
                [
                    "--log-file", str(log_file),
                    "run",
                    "--watch-list", str(setup["watch_list"]),
                    "--credentials", str(setup["credentials"]),
                ],
            )
        assert result.exit_code == 0
        content = log_file.read_text()
        assert content.startswith("previous run\n")
        assert "SUCCESS: imported" in content


class TestScan:
    def test_lists_candidates(self, runner, setup):
        result = _invoke(runner, "scan", "--watch-list", str(setup["watch_list"]))
        assert result.exit_code == 0
        assert "a.tif" in result.output
        assert "user=alice dataset=42" in result.output

    def test_reports_missing_suffix_list(self, runner, setup):
        (setup["watch"] / ".suffixes.json").unlink()
        result = _invoke(runner, "scan", "--watch-list", str(setup["watch_list"]))
        assert result.exit_code == 0
        assert "no .suffixes.json" in result.output

    def test_missing_watch_list(self, runner, tmp_path):
        result = _invoke(runner, "scan", "--watch-list", str(tmp_path / "none.json"))
        assert result.exit_code == 1
