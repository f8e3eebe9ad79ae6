"""Blocking retrieval of locator URLs into a local file."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import logging
from pathlib import Path
import threading
from typing import BinaryIO, Iterable
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests

from .config import DEFAULT_CHUNK_BYTES, DEFAULT_TIMEOUT_SECONDS, DEFAULT_USER_AGENT
from .errors import FetchCancelledError, RetrievalError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadResult:
    path: Path
    size: int
    sha256: bytes


@dataclass
class HttpTransport:
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    chunk_bytes: int = DEFAULT_CHUNK_BYTES
    user_agent: str = DEFAULT_USER_AGENT
    session: requests.Session | None = None

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.chunk_bytes < 1:
            raise ValueError("chunk_bytes must be >= 1")
        self._session = self.session or requests.Session()

    def download(
        self,
        url: str,
        dest: Path,
        *,
        cancel: threading.Event | None = None,
    ) -> DownloadResult:
        """Stream ``url`` into ``dest``; the SHA-256 is computed on the way."""
        if cancel is not None and cancel.is_set():
            raise FetchCancelledError("FETCH_CANCELLED")
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return self._copy_local(Path(url2pathname(parsed.path)), dest, cancel)

        logger.info("Fetching %s", url)
        try:
            response = self._session.get(
                url,
                stream=True,
                timeout=self.timeout_seconds,
                headers={"User-Agent": self.user_agent},
            )
        except requests.Timeout as exc:
            raise RetrievalError(f"FETCH_TIMEOUT:{url}") from exc
        except requests.RequestException as exc:
            raise RetrievalError(f"FETCH_FAILED:{url}:{str(exc)[:256]}") from exc
        try:
            if not 200 <= response.status_code < 300:
                raise RetrievalError(f"FETCH_HTTP_STATUS:{response.status_code}:{url}")
            try:
                return _write_chunks(response.iter_content(chunk_size=self.chunk_bytes), dest, cancel)
            except requests.Timeout as exc:
                raise RetrievalError(f"FETCH_TIMEOUT:{url}") from exc
            except requests.RequestException as exc:
                raise RetrievalError(f"FETCH_FAILED:{url}:{str(exc)[:256]}") from exc
        finally:
            response.close()

    def _copy_local(self, source: Path, dest: Path, cancel: threading.Event | None) -> DownloadResult:
        logger.info("Copying %s", source)
        try:
            handle = source.open("rb")
        except OSError as exc:
            raise RetrievalError(f"FETCH_FAILED:file://{source}:{exc.strerror}") from exc
        with handle:
            return _write_chunks(_read_chunks(handle, self.chunk_bytes), dest, cancel)


def _read_chunks(handle: BinaryIO, chunk_bytes: int) -> Iterable[bytes]:
    return iter(lambda: handle.read(chunk_bytes), b"")


def _write_chunks(chunks: Iterable[bytes], dest: Path, cancel: threading.Event | None) -> DownloadResult:
    digest = hashlib.sha256()
    size = 0
    dest.parent.mkdir(parents=True, exist_ok=True)
    with dest.open("wb") as handle:
        for chunk in chunks:
            if cancel is not None and cancel.is_set():
                raise FetchCancelledError("FETCH_CANCELLED")
            if not chunk:
                continue
            handle.write(chunk)
            digest.update(chunk)
            size += len(chunk)
    return DownloadResult(path=dest, size=size, sha256=digest.digest())
