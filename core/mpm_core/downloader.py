"""
downloader.py — Archive downloads with local cache, mirror failover and
strict checksum verification.

Archives are cached as {cache_dir}/{id}-{version}.zip. A cached or freshly
downloaded file is only trusted once its checksum matches the database.
"""

import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone

from . import transport
from .config import DOWNLOAD_TIMEOUT
from .errors import (
    ChecksumMismatchError, DownloadFailedError, MpmError, PackageIOError,
    PackageSetError,
)
from .resolver import latest_entry

logger = logging.getLogger(__name__)


@dataclass
class DownloadMeta:
    zip_file: str
    url: str               # "cached" or the source URL
    downloaded_at: str
    checksum: str
    repository: str


def calculate_digest(file_path, algorithm):
    """Hex digest of a file using 8KB chunks."""
    h = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        while True:
            chunk = f.read(8192)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def verify_checksum(file_path, expected):
    """Check a file against an "algorithm:hexdigest" string.

    A malformed expected value, an unsupported algorithm or an unreadable
    file all count as a failed verification.
    """
    if not expected or ":" not in expected:
        return False
    algorithm, expected_hash = expected.split(":", 1)
    if not algorithm or not expected_hash:
        return False
    try:
        actual = calculate_digest(file_path, algorithm.lower())
    except (ValueError, TypeError, OSError):
        return False
    return hmac.compare_digest(expected_hash.strip().lower(), actual)


def _discard(path):
    try:
        os.unlink(path)
    except OSError as e:
        logger.warning("Cannot remove temporary file %s: %s", path, e)


class Downloader:
    def __init__(self, cache_dir, repo_client, timeout=DOWNLOAD_TIMEOUT,
                 clock=None):
        self.cache_dir = cache_dir
        self.repo_client = repo_client
        self.timeout = timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def cache_path(self, name, version):
        return os.path.join(self.cache_dir, f"{name}-{version}.zip")

    def _meta(self, path, url, checksum, repo_name):
        return DownloadMeta(
            zip_file=path,
            url=url,
            downloaded_at=self._clock().isoformat(),
            checksum=checksum,
            repository=repo_name,
        )

    def download_one(self, name, version, checksum, repo_name,
                     progress_callback=None):
        """Fetch one archive, from cache or the first mirror that serves
        bytes matching the checksum.

        Raises:
            RepoNotFoundError: If the repository has no mirrors.
            ChecksumMismatchError: If the last mirror served corrupt bytes.
            DownloadFailedError: If every mirror failed otherwise.
            PackageIOError: If the cache directory cannot be prepared.
        """
        mirrors = self.repo_client.mirrors(repo_name)
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
        except OSError as e:
            raise PackageIOError(
                f"Cannot create cache directory: {self.cache_dir} ({e})") from e
        cache_file = self.cache_path(name, version)

        if os.path.exists(cache_file):
            if verify_checksum(cache_file, checksum):
                logger.debug("Cache hit: %s", cache_file)
                return self._meta(cache_file, "cached", checksum, repo_name)
            logger.warning("Cached %s fails checksum, discarding", cache_file)
            try:
                os.unlink(cache_file)
            except OSError as e:
                raise PackageIOError(
                    f"Cannot remove stale cache file: {cache_file} ({e})") from e

        last_error = None
        last_error_cls = DownloadFailedError
        for mirror in mirrors:
            url = f"{mirror}/{name}-{version}.zip"
            try:
                tmp_path, size = transport.download_file(
                    url, self.cache_dir, timeout=self.timeout,
                    progress_callback=progress_callback)
            except transport.TransportError as e:
                last_error = f"Mirror {mirror}: download failed ({e})"
                last_error_cls = DownloadFailedError
                logger.warning("%s", last_error)
                continue

            if not verify_checksum(tmp_path, checksum):
                _discard(tmp_path)
                last_error = (f"Checksum mismatch from mirror {mirror} - "
                              "file corrupted or wrong version")
                last_error_cls = ChecksumMismatchError
                logger.warning("%s", last_error)
                continue

            try:
                os.replace(tmp_path, cache_file)
            except OSError as e:
                _discard(tmp_path)
                last_error = f"Mirror {mirror}: cannot write cache file ({e})"
                last_error_cls = DownloadFailedError
                logger.warning("%s", last_error)
                continue

            logger.info("Downloaded: %s-%s.zip (%d bytes) from %s",
                        name, version, size, mirror)
            return self._meta(cache_file, url, checksum, repo_name)

        raise last_error_cls(
            f"Failed to download {name}-{version} with valid checksum: {last_error}")

    def download_all(self, packages, database, repo_name):
        """Download every package's latest archive, all or nothing.

        Returns:
            Mapping of package id -> DownloadMeta, in the given order.

        Raises:
            PackageSetError: Listing every package that failed and why.
        """
        downloaded = {}
        failed = {}
        for pkg in packages:
            try:
                version, info = latest_entry(database, pkg)
                downloaded[pkg] = self.download_one(
                    pkg, version, info.get("checksum", ""), repo_name)
            except MpmError as e:
                failed[pkg] = e

        if failed:
            raise PackageSetError("Failed to download and verify packages", failed)
        return downloaded
