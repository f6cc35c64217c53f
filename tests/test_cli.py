"""
Tests for mpm_engine.cli — argument parsing, output streams and exit codes.
"""

import json
from unittest import mock

import pytest

from mpm_engine import cli

from conftest import M1, M2, read_registry


@pytest.fixture(autouse=True)
def no_process_hooks():
    with mock.patch("mpm_core.lock.atexit.register") as register, \
            mock.patch("mpm_engine.cli._install_signal_handlers") as signals:
        yield register, signals


@pytest.fixture
def root(config):
    return config.root


class TestParser:
    def test_command_and_args(self):
        args = cli.build_parser().parse_args(["add", "users", "auth"])
        assert args.command == "add"
        assert args.args == ["users", "auth"]

    def test_root_option(self):
        args = cli.build_parser().parse_args(["--root", "/srv/site", "list"])
        assert args.root == "/srv/site"
        assert args.args == []


class TestMain:
    def test_success_prints_output(self, root, repo, config, capsys):
        repo.publish("users", "1.0", {"app/users.txt": "u"})
        assert cli.main(["--root", root, "add", "users"]) == 0

        out, err = capsys.readouterr()
        assert "Successfully installed 1 package(s): users" in out
        assert err == ""
        assert "users" in read_registry(config)["packages"]

    def test_error_goes_to_stderr(self, root, repo, capsys):
        assert cli.main(["--root", root, "info", "ghost"]) == 1

        out, err = capsys.readouterr()
        assert out == ""
        assert err.strip() == "Error: Package not found: ghost"

    def test_io_error_goes_to_stderr(self, root, repo, config, capsys):
        repo.publish("users", "1.0", {"app/users.txt": "u"})
        with open(config.cache_dir, "w") as f:
            f.write("not a directory")
        assert cli.main(["--root", root, "add", "users"]) == 1

        out, err = capsys.readouterr()
        assert out == ""
        assert err.startswith("Error: Cannot create lock directory")

    def test_usage_error(self, root, repo, capsys):
        assert cli.main(["--root", root, "del"]) == 1
        assert "Usage: pkg del PACKAGE" in capsys.readouterr().err

    def test_pkg_prefix(self, root, capsys):
        assert cli.main(["--root", root, "pkg", "version"]) == 0
        assert capsys.readouterr().out.startswith("MPM - Mehr's Package Manager v")

    def test_invalid_repos_file(self, tmp_path, capsys):
        (tmp_path / ".config").mkdir()
        (tmp_path / ".config" / "repos.json").write_text("{")
        assert cli.main(["--root", str(tmp_path), "list"]) == 1
        assert "Invalid repositories configuration" in capsys.readouterr().err

    def test_cleanup_hook_registered(self, root, no_process_hooks):
        register, signals = no_process_hooks
        cli.main(["--root", root, "help"])
        register.assert_called_once()
        signals.assert_called_once_with()

    def test_uses_configured_mirrors(self, root, repo, config):
        with open(config.repos_file) as f:
            assert json.load(f) == {"main": [M1, M2]}
        cli.main(["--root", root, "update"])
        assert repo.requests == [f"{M1}/database.json"]
