"""
Shared test fixtures for the MPM test suite.

  - FakeRepo / repo: in-memory mirrors behind a patched urllib urlopen;
    serves database.json and {id}-{version}.zip per mirror
  - config: MpmConfig rooted in tmp_path with a two-mirror repos.json
  - manager: PackageManager wired to config + repo
  - client: TestClient wired to manager through the app's manager hook
  - make_zip_bytes / write_zip: build archives on the fly
"""

import hashlib
import io
import json
import os
import urllib.error
import zipfile
from unittest import mock

import pytest

from mpm_core import MpmConfig, PackageManager

M1 = "https://m1.example.com/main"
M2 = "https://m2.example.com/main"


def make_zip_bytes(entries):
    """Build a ZIP archive in memory. A None value makes a directory entry."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in entries.items():
            if content is None:
                zf.writestr(name if name.endswith("/") else name + "/", b"")
            else:
                zf.writestr(name, content)
    return buf.getvalue()


def write_zip(path, entries):
    with open(path, "wb") as f:
        f.write(make_zip_bytes(entries))
    return str(path)


def sha256_checksum(data):
    return "sha256:" + hashlib.sha256(data).hexdigest()


class FakeResponse(io.BytesIO):
    def __init__(self, body):
        super().__init__(body)
        self.headers = {"Content-Length": str(len(body))}


class FakeRepo:
    """Mirrors kept in memory; plug `urlopen` in place of urllib's."""

    def __init__(self, mirrors=(M1, M2)):
        self.mirrors = list(mirrors)
        self.packages = {}
        self.routes = {}
        self.requests = []
        self.down = set()

    def publish(self, pkg, version, files, dependencies=(), checksum=None,
                body=None, name=None, description="", mirrors=None,
                released_at="2026-01-01T00:00:00+00:00", **extra):
        """Publish pkg@version as latest on the given (default: all) mirrors."""
        if body is None:
            body = make_zip_bytes(files)
        for mirror in (self.mirrors if mirrors is None else mirrors):
            self.routes[f"{mirror}/{pkg}-{version}.zip"] = body
        entry = self.packages.setdefault(pkg, {
            "name": name or pkg.title(),
            "description": description,
            "versions": {},
        })
        entry.update(extra)
        entry["latest"] = version
        entry["versions"][version] = {
            "checksum": checksum or sha256_checksum(body),
            "dependencies": list(dependencies),
            "released_at": released_at,
        }
        return body

    def archive_requests(self):
        return [url for url in self.requests if url.endswith(".zip")]

    def urlopen(self, req, timeout=None, context=None):
        url = req.full_url
        self.requests.append(url)
        for mirror in self.down:
            if url.startswith(mirror):
                raise urllib.error.URLError("connection refused")
        if url in (f"{m}/database.json" for m in self.mirrors):
            return FakeResponse(json.dumps({"packages": self.packages}).encode("utf-8"))
        if url in self.routes:
            return FakeResponse(self.routes[url])
        raise urllib.error.HTTPError(url, 404, "Not Found", {}, None)


@pytest.fixture
def repo():
    fake = FakeRepo()
    with mock.patch("mpm_core.transport.urllib.request.urlopen",
                    side_effect=fake.urlopen):
        yield fake


@pytest.fixture
def config(tmp_path):
    root = tmp_path / "site"
    root.mkdir()
    cfg = MpmConfig(root=str(root))
    os.makedirs(cfg.config_dir)
    with open(cfg.repos_file, "w") as f:
        json.dump({"main": [M1, M2]}, f)
    return cfg


@pytest.fixture
def manager(config, repo):
    return PackageManager(config)


def read_registry(config):
    with open(config.packages_file) as f:
        return json.load(f)


def read_file(config, rel):
    with open(os.path.join(config.root, *rel.split("/"))) as f:
        return f.read()


def exists(config, rel):
    return os.path.exists(os.path.join(config.root, *rel.split("/")))


@pytest.fixture
def client(manager):
    from starlette.testclient import TestClient
    from mpm_engine import app as app_module
    app_module._set_manager(manager)
    with TestClient(app_module.app) as client:
        yield client
    app_module._reset_manager()
