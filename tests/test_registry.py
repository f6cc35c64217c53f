"""
Tests for mpm_core.registry and mpm_core.config.
"""

import json
import os
from datetime import datetime, timezone
from unittest import mock

import pytest

from mpm_core import (
    ConfigError, InstalledPackage, MpmConfig, Registry, RegistryStore,
)
from mpm_core.config import DEFAULT_REPOS


def _clock(ts="2026-03-01T12:00:00"):
    return lambda: datetime.fromisoformat(ts).replace(tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return RegistryStore(str(tmp_path / ".config" / "packages.json"), clock=_clock())


class TestRegistryStore:
    def test_missing_file_is_empty_registry(self, store):
        registry = store.load()
        assert registry.packages == {}
        assert registry.created_at == "2026-03-01T12:00:00+00:00"
        assert not os.path.exists(store.path)

    def test_save_then_load(self, store):
        registry = store.load()
        registry.packages["users"] = InstalledPackage(
            version="1.0", installed_at="2026-03-01T12:00:00+00:00",
            dependencies=["auth"], files=["app/users.txt"],
            download_url="https://m1.example.com/main/users-1.0.zip",
            checksum="sha256:ab", repository="main")
        store.save(registry)

        loaded = store.load()
        assert loaded.packages["users"] == registry.packages["users"]
        assert loaded.created_at == registry.created_at

    def test_document_layout(self, store):
        registry = store.load()
        registry.packages["a"] = InstalledPackage(version="2.0", installed_at="t")
        store.save(registry)

        with open(store.path) as f:
            data = json.load(f)
        assert set(data) == {"createdAt", "updatedAt", "packages"}
        assert set(data["packages"]["a"]) == {
            "version", "installed_at", "dependencies", "files",
            "download_url", "download_time", "checksum", "repository",
        }

    def test_save_stamps_updated_at(self, tmp_path):
        path = str(tmp_path / "packages.json")
        RegistryStore(path, clock=_clock("2026-01-01T00:00:00")).save(
            Registry(created_at="c", updated_at="old"))
        with open(path) as f:
            assert json.load(f)["updatedAt"] == "2026-01-01T00:00:00+00:00"

    def test_save_leaves_no_temp_files(self, store):
        store.save(store.load())
        assert os.listdir(os.path.dirname(store.path)) == ["packages.json"]

    def test_failed_write_keeps_previous_document(self, store):
        store.save(store.load())
        with open(store.path) as f:
            before = f.read()

        with mock.patch("mpm_core.registry.json.dump", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.save(store.load())

        with open(store.path) as f:
            assert f.read() == before
        assert os.listdir(os.path.dirname(store.path)) == ["packages.json"]

    @pytest.mark.parametrize("content", [
        "not json", "[]", '{"packages": []}',
        '{"packages": {"a": "oops"}}', '{"packages": {"a": null}}',
    ])
    def test_invalid_document(self, store, content):
        os.makedirs(os.path.dirname(store.path))
        with open(store.path, "w") as f:
            f.write(content)
        with pytest.raises(ConfigError, match="Invalid packages configuration"):
            store.load()

    def test_partial_entries_get_defaults(self, store):
        os.makedirs(os.path.dirname(store.path))
        with open(store.path, "w") as f:
            json.dump({"packages": {"a": {"version": "1.0"}}}, f)
        pkg = store.load().packages["a"]
        assert pkg.version == "1.0"
        assert pkg.files == []
        assert pkg.dependencies == []


class TestRegistryQueries:
    @pytest.fixture
    def registry(self):
        return Registry(created_at="c", updated_at="u", packages={
            "app": InstalledPackage("1.0", "t", dependencies=["lib", "auth"],
                                    files=["app/main.txt", "shared/readme.txt"]),
            "auth": InstalledPackage("1.0", "t", dependencies=["lib"],
                                     files=["auth/a.txt", "shared/readme.txt"]),
            "lib": InstalledPackage("1.0", "t", files=["lib/l.txt"]),
        })

    def test_dependents_of(self, registry):
        assert registry.dependents_of("lib") == ["app", "auth"]
        assert registry.dependents_of("app") == []

    def test_owners_of(self, registry):
        assert registry.owners_of("shared/readme.txt") == ["app", "auth"]
        assert registry.owners_of("shared/readme.txt", exclude="app") == ["auth"]
        assert registry.owners_of("nobody.txt") == []


class TestConfig:
    def test_paths(self, tmp_path):
        cfg = MpmConfig(root=str(tmp_path))
        assert cfg.repos_file == os.path.join(str(tmp_path), ".config", "repos.json")
        assert cfg.packages_file == os.path.join(str(tmp_path), ".config", "packages.json")
        assert cfg.lock_file == os.path.join(str(tmp_path), ".cache", "mpm.lock")
        assert cfg.cache_dir == os.path.join(str(tmp_path), ".cache")

    def test_from_env(self, tmp_path):
        env = {"MPM_ROOT": str(tmp_path), "MPM_REPO": "extra"}
        with mock.patch.dict(os.environ, env):
            cfg = MpmConfig.from_env()
        assert cfg.root == str(tmp_path)
        assert cfg.repo == "extra"

    def test_explicit_root_wins(self, tmp_path):
        with mock.patch.dict(os.environ, {"MPM_ROOT": "/elsewhere"}):
            cfg = MpmConfig.from_env(root=str(tmp_path))
        assert cfg.root == str(tmp_path)

    def test_bad_max_execution_time_ignored(self, tmp_path):
        with mock.patch.dict(os.environ, {"MPM_MAX_EXECUTION_TIME": "soon"}):
            cfg = MpmConfig.from_env(root=str(tmp_path))
        assert cfg.max_execution_time == 0

    def test_default_repos_when_missing(self, tmp_path):
        assert MpmConfig(root=str(tmp_path)).load_repos() == DEFAULT_REPOS

    def test_load_repos_from_file(self, config):
        repos = config.load_repos()
        assert list(repos) == ["main"]
        assert len(repos["main"]) == 2

    @pytest.mark.parametrize("content", ["{", "{}", "[1]"])
    def test_invalid_repos_file(self, tmp_path, content):
        cfg = MpmConfig(root=str(tmp_path))
        os.makedirs(cfg.config_dir)
        with open(cfg.repos_file, "w") as f:
            f.write(content)
        with pytest.raises(ConfigError, match="Invalid repositories configuration"):
            cfg.load_repos()
