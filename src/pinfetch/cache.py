"""Content-addressed cache of verified artifacts (write-once entries)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import shutil
import tempfile
from typing import Any

from .errors import LocatorError
from .hashing import hash_path, nar_sha256
from .locator import SourceLocator


logger = logging.getLogger(__name__)

SEAL_NAME = "_PINNED.json"
SEAL_VERSION = "v0"


@dataclass(frozen=True)
class CacheEntry:
    path: Path
    seal: dict[str, Any]

    @property
    def root(self) -> Path:
        return self.path / str(self.seal.get("root", "tree"))

    @property
    def payload(self) -> Path:
        return self.path / str(self.seal["payload"])


class ContentCache:
    """Entries live under ``objects/<mode>-<sha256 hex>``.

    An entry is built in a private staging directory under ``tmp/`` and
    renamed into place only once verified and sealed, so readers in other
    processes never observe a partial entry.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.objects_dir = root / "objects"
        self.tmp_dir = root / "tmp"
        self._created_root = False

    def entry_path(self, cache_key: str) -> Path:
        return self.objects_dir / cache_key

    def lookup(self, locator: SourceLocator) -> CacheEntry | None:
        path = self.entry_path(locator.cache_key)
        seal_path = path / SEAL_NAME
        if not seal_path.exists():
            return None
        try:
            seal = json.loads(seal_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Cache seal unreadable path=%s error=%s", seal_path, exc)
            return None
        if seal.get("cache_key") != locator.cache_key or "payload" not in seal:
            logger.warning("Cache seal does not match key=%s path=%s", locator.cache_key, seal_path)
            return None
        return CacheEntry(path=path, seal=seal)

    def verify(self, entry: CacheEntry, locator: SourceLocator) -> bool:
        try:
            if hash_path(entry.payload, locator.mode) != locator.digest:
                return False
            tree_digest = entry.seal.get("tree_nar_sha256")
            # The payload is the archive when a flat pin is unpacked; the tree is sealed separately.
            return tree_digest is None or nar_sha256(entry.root).hex() == tree_digest
        except (OSError, LocatorError) as exc:
            logger.warning("Cache payload unreadable path=%s error=%s", entry.payload, exc)
            return False

    def staging(self, cache_key: str) -> Path:
        return self._mkdtemp(f"{cache_key}.")

    def commit(self, staging: Path, locator: SourceLocator, *, payload: str, size: int) -> CacheEntry:
        seal = build_seal(locator, payload=payload, size=size)
        tree = staging / seal["root"]
        if payload != seal["root"] and tree.is_dir():
            seal["tree_nar_sha256"] = nar_sha256(tree).hex()
        tmp_seal = staging / (SEAL_NAME + ".tmp")
        tmp_seal.write_text(_canonical(seal) + "\n", encoding="utf-8")
        os.replace(tmp_seal, staging / SEAL_NAME)

        target = self.entry_path(locator.cache_key)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists():
            # Another resolver committed the same content first.
            self.discard(staging)
            return self._committed(target, locator)
        try:
            os.rename(staging, target)
        except OSError:
            if not target.exists():
                raise
            self.discard(staging)
            return self._committed(target, locator)
        self._prune()
        return CacheEntry(path=target, seal=seal)

    def evict(self, cache_key: str) -> None:
        path = self.entry_path(cache_key)
        if not path.exists():
            return
        graveyard = self._mkdtemp(f"{cache_key}.evict.")
        try:
            os.rename(path, graveyard / "entry")
        except FileNotFoundError:
            pass
        self.discard(graveyard)

    def discard(self, staging: Path) -> None:
        shutil.rmtree(staging, ignore_errors=True)
        self._prune()

    def _mkdtemp(self, prefix: str) -> Path:
        if not self.root.exists():
            self._created_root = True
        for _ in range(3):
            self.tmp_dir.mkdir(parents=True, exist_ok=True)
            try:
                return Path(tempfile.mkdtemp(prefix=prefix, dir=self.tmp_dir))
            except FileNotFoundError:
                # tmp/ was pruned by a concurrent resolver between mkdir and mkdtemp.
                continue
        return Path(tempfile.mkdtemp(prefix=prefix, dir=self.tmp_dir))

    def _prune(self) -> None:
        """Drop ``tmp/`` (and a root this cache created) once nothing is left in them."""
        candidates = [self.tmp_dir]
        if self._created_root:
            candidates.append(self.root)
        for path in candidates:
            try:
                path.rmdir()
            except OSError:
                return

    def _committed(self, target: Path, locator: SourceLocator) -> CacheEntry:
        entry = self.lookup(locator)
        if entry is None:
            raise OSError(f"cache entry vanished during commit: {target}")
        return entry


def build_seal(locator: SourceLocator, *, payload: str, size: int) -> dict[str, Any]:
    return {
        "version": SEAL_VERSION,
        "cache_key": locator.cache_key,
        "url": locator.url,
        "checksum": locator.checksum,
        "mode": locator.mode,
        "unpack": locator.unpack,
        "payload": payload,
        "root": "tree",
        "size": size,
        "sealed_at_utc": datetime.now(tz=timezone.utc).isoformat(),
    }


def _canonical(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
