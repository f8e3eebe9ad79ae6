"""Pinned fetcher: resolve a locator to a verified, imported artifact."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path, PurePosixPath
import tempfile
import threading
from typing import Any, Mapping
from urllib.parse import unquote, urlparse

from .cache import CacheEntry, ContentCache
from .config import FetcherProfile, ResolveConfig
from .errors import ArtifactImportError, IntegrityError
from .hashing import MODE_FLAT, nar_sha256
from .importer import import_artifact
from .locator import SourceLocator
from .transport import HttpTransport
from .unpack import is_archive, unpack_archive


logger = logging.getLogger(__name__)

ARCHIVE_NAME = "archive"
TREE_NAME = "tree"


@dataclass(frozen=True)
class ImportedArtifact:
    locator: SourceLocator
    root: Path
    checksum: str
    namespace: Any
    config: ResolveConfig
    from_cache: bool = False

    def get(self, name: str) -> Any:
        if self.namespace is None:
            raise AttributeError(f"{self.locator.display_name} has no imported namespace")
        if isinstance(self.namespace, Mapping):
            return self.namespace[name]
        return getattr(self.namespace, name)


class PinnedFetcher:
    def __init__(
        self,
        profile: FetcherProfile | None = None,
        *,
        transport: HttpTransport | None = None,
        cache: ContentCache | None = None,
    ) -> None:
        self.profile = profile or FetcherProfile()
        self.transport = transport or HttpTransport(
            timeout_seconds=self.profile.fetch.timeout_seconds,
            chunk_bytes=self.profile.fetch.chunk_bytes,
            user_agent=self.profile.fetch.user_agent,
        )
        self.cache = cache or ContentCache(self.profile.cache.root)

    def resolve(
        self,
        locator: SourceLocator,
        config: ResolveConfig | Mapping[str, Any] | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> ImportedArtifact:
        resolve_config = ResolveConfig.coerce(config)
        entry = self._cached_entry(locator)
        from_cache = entry is not None
        if entry is None:
            entry = self._fetch_into_cache(locator, cancel)

        namespace = import_artifact(entry.root, locator, resolve_config)
        return ImportedArtifact(
            locator=locator,
            root=entry.root,
            checksum=locator.checksum,
            namespace=namespace,
            config=resolve_config,
            from_cache=from_cache,
        )

    def _cached_entry(self, locator: SourceLocator) -> CacheEntry | None:
        entry = self.cache.lookup(locator)
        if entry is None:
            return None
        if self.profile.cache.verify_on_hit and not self.cache.verify(entry, locator):
            logger.warning(
                "Cached %s failed re-verification; evicting key=%s",
                locator.display_name,
                locator.cache_key,
            )
            self.cache.evict(locator.cache_key)
            return None
        logger.info("Resolved %s from cache %s", locator.display_name, entry.path)
        return entry

    def _fetch_into_cache(self, locator: SourceLocator, cancel: threading.Event | None) -> CacheEntry:
        staging = self.cache.staging(locator.cache_key)
        try:
            if locator.unpack:
                download_path = staging / ARCHIVE_NAME
            else:
                download_path = staging / TREE_NAME / url_filename(locator.url)
            result = self.transport.download(locator.url, download_path, cancel=cancel)

            if locator.mode == MODE_FLAT:
                self._check_digest(locator, result.sha256)
                if locator.unpack:
                    self._unpack(download_path, staging / TREE_NAME)
                payload = download_path.relative_to(staging).as_posix()
            else:
                if locator.unpack:
                    self._unpack(download_path, staging / TREE_NAME)
                    download_path.unlink()
                    payload_path = staging / TREE_NAME
                else:
                    payload_path = download_path
                self._check_digest(locator, nar_sha256(payload_path))
                payload = payload_path.relative_to(staging).as_posix()

            entry = self.cache.commit(staging, locator, payload=payload, size=result.size)
        except BaseException:
            self.cache.discard(staging)
            raise
        logger.info(
            "Fetched %s size=%s checksum=%s into %s",
            locator.display_name,
            result.size,
            locator.checksum,
            entry.path,
        )
        return entry

    def _check_digest(self, locator: SourceLocator, actual: bytes) -> None:
        if actual != locator.digest:
            expected = locator.checksum
            observed = locator.render(actual)
            logger.error(
                "Checksum mismatch for %s expected=%s actual=%s",
                locator.display_name,
                expected,
                observed,
            )
            raise IntegrityError(expected, observed, locator.url)

    def _unpack(self, archive: Path, dest: Path) -> None:
        if not is_archive(archive):
            raise ArtifactImportError(f"ARCHIVE_FORMAT_UNKNOWN:{archive.name}")
        unpack_archive(archive, dest)


def prefetch(
    url: str,
    *,
    mode: str = MODE_FLAT,
    unpack: bool = False,
    transport: HttpTransport | None = None,
) -> tuple[bytes, int]:
    """Download ``url`` without a pin and return ``(digest, size)``.

    Used to compute the checksum for a new locator; nothing is cached.
    """
    transport = transport or HttpTransport()
    with tempfile.TemporaryDirectory(prefix="pinfetch-prefetch.") as scratch:
        scratch_dir = Path(scratch)
        download_path = scratch_dir / (ARCHIVE_NAME if unpack else url_filename(url))
        result = transport.download(url, download_path)
        if mode == MODE_FLAT:
            return result.sha256, result.size
        if unpack:
            if not is_archive(download_path):
                raise ArtifactImportError(f"ARCHIVE_FORMAT_UNKNOWN:{download_path.name}")
            return nar_sha256(unpack_archive(download_path, scratch_dir / TREE_NAME)), result.size
        return nar_sha256(download_path), result.size


def url_filename(url: str) -> str:
    name = PurePosixPath(unquote(urlparse(url).path)).name
    return name or "source"


def resolve(
    locator: SourceLocator,
    config: ResolveConfig | Mapping[str, Any] | None = None,
    *,
    profile: FetcherProfile | None = None,
    cancel: threading.Event | None = None,
) -> ImportedArtifact:
    return PinnedFetcher(profile).resolve(locator, config, cancel=cancel)
