"""Archive extraction for verified downloads."""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath
import shutil
import tarfile
import zipfile

from .errors import ArtifactImportError


logger = logging.getLogger(__name__)


def is_archive(path: Path) -> bool:
    return tarfile.is_tarfile(path) or zipfile.is_zipfile(path)


def unpack_archive(archive: Path, dest: Path) -> Path:
    """Extract ``archive`` into ``dest`` and return the tree root.

    When the archive holds exactly one top-level directory, that directory is
    the root, matching how pinned tarballs of a repository revision are laid
    out (``nixpkgs-<rev>/...``).
    """
    staging = dest.with_name(dest.name + ".unpack")
    staging.mkdir(parents=True, exist_ok=False)
    try:
        if tarfile.is_tarfile(archive):
            _extract_tar(archive, staging)
        elif zipfile.is_zipfile(archive):
            _extract_zip(archive, staging)
        else:
            raise ArtifactImportError(f"ARCHIVE_FORMAT_UNKNOWN:{archive.name}")

        entries = list(staging.iterdir())
        if len(entries) == 1 and entries[0].is_dir() and not entries[0].is_symlink():
            os.rename(entries[0], dest)
        else:
            os.rename(staging, dest)
    finally:
        if staging.exists():
            shutil.rmtree(staging)
    logger.debug("Unpacked %s into %s", archive.name, dest)
    return dest


def _safe_member_path(root: Path, name: str) -> Path:
    relative = PurePosixPath(name)
    if relative.is_absolute() or ".." in relative.parts:
        raise ArtifactImportError(f"ARCHIVE_MEMBER_UNSAFE:{name}")
    return root.joinpath(*relative.parts)


def _extract_tar(archive: Path, dest: Path) -> None:
    try:
        with tarfile.open(archive, "r:*") as tar:
            members = tar.getmembers()
            for member in members:
                _safe_member_path(dest, member.name)
                if member.issym() or member.islnk():
                    link = PurePosixPath(member.linkname)
                    target = PurePosixPath(member.name).parent / link if member.issym() else link
                    if link.is_absolute() or _escapes(target):
                        raise ArtifactImportError(f"ARCHIVE_MEMBER_UNSAFE:{member.name}")
                elif not (member.isfile() or member.isdir()):
                    raise ArtifactImportError(f"ARCHIVE_MEMBER_UNSUPPORTED:{member.name}")
            if hasattr(tarfile, "data_filter"):
                tar.extractall(dest, members=members, filter="data")
            else:
                tar.extractall(dest, members=members)
    except tarfile.TarError as exc:
        raise ArtifactImportError(f"ARCHIVE_CORRUPT:{archive.name}:{exc}") from exc


def _extract_zip(archive: Path, dest: Path) -> None:
    try:
        with zipfile.ZipFile(archive, "r") as zf:
            for info in zf.infolist():
                target = _safe_member_path(dest, info.filename)
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info, "r") as source, target.open("wb") as handle:
                    shutil.copyfileobj(source, handle)
                mode = (info.external_attr >> 16) & 0o777
                if mode:
                    os.chmod(target, mode)
    except zipfile.BadZipFile as exc:
        raise ArtifactImportError(f"ARCHIVE_CORRUPT:{archive.name}:{exc}") from exc


def _escapes(target: PurePosixPath) -> bool:
    depth = 0
    for part in target.parts:
        if part == "..":
            depth -= 1
        elif part not in {"", "."}:
            depth += 1
        if depth < 0:
            return True
    return False
