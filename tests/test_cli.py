"""Tests for the purge-duplicates command line."""

from __future__ import annotations

import logging

import pytest

import duplicate_purger
import purge_duplicates
from duplicate_purger import MODULE_VERSION
from purge_duplicates import build_parser, main


class TestArgumentParsing:

    def test_flags_default_to_off(self):
        args = build_parser().parse_args(["some/dir"])

        assert args.directory == "some/dir"
        assert args.show_progress is False
        assert args.live_run is False

    def test_flags_after_directory(self):
        args = build_parser().parse_args(["test_directory", "--show-progress", "--live-run"])

        assert args.directory == "test_directory"
        assert args.show_progress is True
        assert args.live_run is True

    @pytest.mark.parametrize("flag", ["-v", "--version"])
    def test_version(self, flag, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main([flag])

        assert excinfo.value.code == 0
        assert capsys.readouterr().out.strip() == f"purge-duplicates v{MODULE_VERSION}"

    def test_missing_directory_argument(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main([])

        assert excinfo.value.code != 0
        assert "usage:" in capsys.readouterr().err

    def test_unknown_flag(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main([str(tmp_path), "--force"])

        assert excinfo.value.code != 0
        assert "--force" in capsys.readouterr().err


class TestMain:

    def test_dry_run_by_default(self, tmp_path, write_file, capsys):
        write_file("a.txt", "X")
        write_file("b.txt", "X")

        assert main([str(tmp_path)]) == 0

        out = capsys.readouterr().out
        assert "would be deleted" in out
        assert (tmp_path / "a.txt").exists()
        assert (tmp_path / "b.txt").exists()

    def test_live_run_deletes(self, tmp_path, write_file, capsys):
        write_file("a.txt", "X")
        write_file("b.txt", "X")

        assert main([str(tmp_path), "--live-run"]) == 0

        assert (tmp_path / "a.txt").exists()
        assert not (tmp_path / "b.txt").exists()
        assert "Processed 1 unique files." in capsys.readouterr().out

    def test_missing_directory_is_fatal(self, tmp_path, capsys):
        assert main([str(tmp_path / "missing")]) == 1

        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err.startswith("Error: Directory not found")

    def test_empty_directory_with_progress(self, tmp_path, capsys):
        assert main([str(tmp_path), "--show-progress"]) == 0

        assert "No files found in the directory." in capsys.readouterr().out


class TestUnusableLogDirectory:
    """The CLI still runs, and still reports root errors, without file logging."""

    @pytest.fixture
    def fresh_logger_without_files(self, blocked_log_dirs, monkeypatch):
        real_get_logger = duplicate_purger.get_logger
        logger_name = "purge-test-cli-no-log-dir"

        def isolated_logger():
            return real_get_logger(logger_name)

        monkeypatch.setattr(duplicate_purger, "get_logger", isolated_logger)
        monkeypatch.setattr(purge_duplicates, "get_logger", isolated_logger)
        yield
        logging.getLogger(logger_name).handlers = []

    def test_missing_root_still_reported(self, tmp_path, fresh_logger_without_files, capsys):
        assert main([str(tmp_path / "missing")]) == 1

        err = capsys.readouterr().err
        assert "Error: Directory not found" in err
        assert "Traceback" not in err

    def test_scan_runs_without_log_files(self, tmp_path, write_file, fresh_logger_without_files, capsys):
        write_file("data/a.txt", "X")
        write_file("data/b.txt", "X")

        assert main([str(tmp_path / "data"), "--live-run"]) == 0

        assert not (tmp_path / "data" / "b.txt").exists()
        assert "Processed 1 unique files." in capsys.readouterr().out
