"""Download files into a directory cache keyed by SHA-256.

Files can be cached either by the SHA-256 of their contents, which lets a
stale or corrupt cached copy be detected and replaced, or by the SHA-256 of
their URL, which cannot be invalidated without changing the URL or deleting
the file by hand. The two keys are not interchangeable.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import IO, Any, Optional, Union
from urllib.parse import urlsplit

import requests

from .progress import send_status

__all__ = ["Downloader", "sha256_of_file"]

_log = logging.getLogger(__name__)

_USER_AGENT = "bb-downloader"
_CONNECT_TIMEOUT = 10
_READ_TIMEOUT = 15
_CHUNK_SIZE = 64 * 1024
_READ_SIZE = 512 * 1024


def sha256_of_file(path: Union[str, os.PathLike]) -> bytes:
    """Return the SHA-256 digest of the file at ``path``."""
    hasher = hashlib.sha256()
    with open(path, "rb") as file:
        for block in iter(lambda: file.read(_READ_SIZE), b""):
            hasher.update(block)
    return hasher.digest()


def _check_sha(sha256: bytes) -> bytes:
    sha256 = bytes(sha256)
    if len(sha256) != 32:
        raise ValueError("SHA-256 digest must be 32 bytes")
    return sha256


def _check_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise requests.exceptions.InvalidURL(f"invalid URL: {url!r}")
    return url


def _persist(temp: IO[bytes], path: Path) -> None:
    temp.seek(0)
    with open(path, "wb") as out:
        shutil.copyfileobj(temp, out)
        out.flush()


class Downloader:
    """Downloader that caches files in ``cache_dir``."""

    def __init__(self, cache_dir: Union[str, os.PathLike]) -> None:
        self.cache_dir = Path(cache_dir)
        if not self.cache_dir.exists():
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
            except OSError:
                pass
        if self.cache_dir.exists() and not self.cache_dir.is_dir():
            raise NotADirectoryError("cache_dir should be a directory")

        self.session = requests.Session()
        self.session.headers["User-Agent"] = _USER_AGENT
        self._timeout = (_CONNECT_TIMEOUT, _READ_TIMEOUT)

    def _path_from_sha(self, sha256: bytes) -> Path:
        return self.cache_dir / sha256.hex()

    def _path_from_url(self, url: str) -> Path:
        return self._path_from_sha(hashlib.sha256(url.encode("utf-8")).digest())

    def check_cache_from_sha(self, sha256: bytes) -> Optional[Path]:
        """Return the cached file with this content hash, deleting a mismatching one."""
        sha256 = _check_sha(sha256)
        path = self._path_from_sha(sha256)
        if path.exists():
            try:
                if sha256_of_file(path) == sha256:
                    return path
            except OSError:
                pass
            try:
                path.unlink()
            except OSError:
                pass
        return None

    def check_cache_from_url(self, url: str) -> Optional[Path]:
        """Return the file cached for ``url``, if there is one."""
        path = self._path_from_url(url)
        return path if path.exists() else None

    def download_json_no_cache(self, url: str) -> Any:
        """Fetch and decode a JSON document without caching it."""
        response = self.session.get(_check_url(url), timeout=self._timeout)
        return response.json()

    def download(self, url: str, chan: Optional[Any] = None) -> Path:
        """Return the cached file for ``url``, downloading it first if needed.

        Progress between 0 and 1 is put on ``chan`` without blocking.
        """
        _check_url(url)
        cached = self.check_cache_from_url(url)
        if cached is not None:
            return cached
        return self.download_no_cache(url, chan)

    def download_no_cache(self, url: str, chan: Optional[Any] = None) -> Path:
        """Download ``url`` without looking in the cache, replacing any cached copy."""
        _check_url(url)
        path = self._path_from_url(url)
        send_status(chan, 0.0)

        with tempfile.TemporaryFile() as temp:
            self._fetch(url, temp, chan, None)
            _persist(temp, path)
        return path

    def download_with_sha(self, url: str, sha256: bytes, chan: Optional[Any] = None) -> Path:
        """Return a cached file with contents hashing to ``sha256``, downloading if needed.

        Raises ValueError if the downloaded data has a different hash.
        """
        sha256 = _check_sha(sha256)
        _check_url(url)
        _log.debug("Download %s with sha256: %s", url, sha256.hex())

        cached = self.check_cache_from_sha(sha256)
        if cached is not None:
            return cached

        path = self._path_from_sha(sha256)
        send_status(chan, 0.0)

        with tempfile.TemporaryFile() as temp:
            hasher = hashlib.sha256()
            self._fetch(url, temp, chan, hasher)
            digest = hasher.digest()
            if digest != sha256:
                _log.error("Expected SHA256: %s, got %s", sha256.hex(), digest.hex())
                raise ValueError("Invalid SHA256")
            _persist(temp, path)
        return path

    def _fetch(
        self,
        url: str,
        out: IO[bytes],
        chan: Optional[Any],
        hasher: Optional["hashlib._Hash"],
    ) -> None:
        with self.session.get(url, stream=True, timeout=self._timeout) as response:
            length = response.headers.get("Content-Length")
            total = int(length) if length and length.isdigit() else 0
            received = 0
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                if not chunk:
                    continue
                received += len(chunk)
                if hasher is not None:
                    hasher.update(chunk)
                out.write(chunk)
                if total:
                    send_status(chan, received / total)
        out.flush()