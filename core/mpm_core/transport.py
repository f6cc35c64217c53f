"""
transport.py — Blocking HTTP(S) fetches for repository mirrors (pure stdlib)

Provides a small bytes fetch for metadata documents and a streaming download
into a temporary file for archives. Everything raises TransportError so
callers can fail over to the next mirror without caring about urllib's
exception zoo.
"""

import logging
import os
import ssl
import tempfile
import urllib.error
import urllib.request

logger = logging.getLogger(__name__)

USER_AGENT = "mpm-pkg/1.0"
CHUNK_SIZE = 8192


class TransportError(Exception):
    """Raised when a URL cannot be fetched."""


class TransportSSLError(TransportError):
    """Raised when TLS certificate verification fails."""


def _create_ssl_context():
    """Create an SSL context for mirror requests.

    Supports the following environment variables:
      - MPM_SSL_CERT: Path to a custom CA certificate bundle (PEM).
      - MPM_SSL_VERIFY: Set to "0" to disable certificate verification.
            Archive integrity still rests on checksum verification.

    Returns:
        ssl.SSLContext or None (None = use urllib defaults).
    """
    ssl_verify = os.environ.get("MPM_SSL_VERIFY", "1").strip()
    ssl_cert = os.environ.get("MPM_SSL_CERT", "").strip()

    if ssl_verify == "0":
        logger.warning(
            "SSL certificate verification disabled (MPM_SSL_VERIFY=0). "
            "This is insecure and should only be used for troubleshooting."
        )
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    if ssl_cert:
        if not os.path.isfile(ssl_cert):
            logger.warning("MPM_SSL_CERT file not found: %s", ssl_cert)
            return None
        logger.info("Using custom CA bundle: %s", ssl_cert)
        return ssl.create_default_context(cafile=ssl_cert)

    return None


def _is_ssl_error(exc):
    """Check whether an exception is caused by SSL certificate verification."""
    if isinstance(exc, ssl.SSLError):
        return True
    # urllib wraps SSL errors in URLError
    if isinstance(exc, urllib.error.URLError):
        return isinstance(getattr(exc, "reason", None), ssl.SSLError)
    return False


def _wrap(exc, url):
    if _is_ssl_error(exc):
        return TransportSSLError(f"SSL certificate verification failed for {url}: {exc}")
    return TransportError(f"{url}: {exc}")


def fetch_bytes(url, timeout=30):
    """GET a URL and return the response body.

    Raises:
        TransportError: On any network failure (TransportSSLError for TLS).
    """
    logger.debug("GET %s (timeout=%ss)", url, timeout)
    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout,
                                    context=_create_ssl_context()) as resp:
            return resp.read()
    except (urllib.error.URLError, OSError, ValueError) as e:
        raise _wrap(e, url) from e


def download_file(url, dest_dir, timeout=60, progress_callback=None):
    """Stream a URL into a new temporary file inside dest_dir.

    The caller owns the returned file: it is expected to verify it and then
    rename or delete it.

    Args:
        url: Source URL.
        dest_dir: Directory for the temporary file (same filesystem as the
                  final location, so a rename is atomic).
        timeout: Request timeout in seconds.
        progress_callback: Optional callable(bytes_downloaded, total_bytes).
                           total_bytes may be 0 if Content-Length is absent.

    Returns:
        Tuple of (tmp_path, bytes_downloaded).

    Raises:
        TransportError: On network failure; no temporary file is left behind.
    """
    logger.debug("Downloading %s (timeout=%ss)", url, timeout)
    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})

    try:
        os.makedirs(dest_dir, exist_ok=True)
        tmp_fd, tmp_path = tempfile.mkstemp(suffix=".tmp", dir=dest_dir)
    except OSError as e:
        raise TransportError(f"Cannot create temporary file in {dest_dir}: {e}") from e
    try:
        with urllib.request.urlopen(req, timeout=timeout,
                                    context=_create_ssl_context()) as resp:
            total = int(resp.headers.get("Content-Length", 0) or 0)
            downloaded = 0
            while True:
                chunk = resp.read(CHUNK_SIZE)
                if not chunk:
                    break
                os.write(tmp_fd, chunk)
                downloaded += len(chunk)
                if progress_callback:
                    progress_callback(downloaded, total)
        os.close(tmp_fd)
        tmp_fd = None
        return tmp_path, downloaded
    except (urllib.error.URLError, OSError, ValueError) as e:
        if tmp_fd is not None:
            os.close(tmp_fd)
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise _wrap(e, url) from e
