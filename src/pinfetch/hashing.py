"""SHA-256 digests and checksum encodings (hex, Nix base-32, SRI).

Recursive hashes follow the Nix archive (NAR) serialisation so that a pin
written for ``fetchTarball`` verifies against the unpacked tree.
"""

from __future__ import annotations

import base64
import hashlib
import os
import stat
from pathlib import Path
from typing import BinaryIO, Callable

from .errors import LocatorError


MODE_FLAT = "flat"
MODE_RECURSIVE = "recursive"
HASH_MODES = {MODE_FLAT, MODE_RECURSIVE}

FORMAT_HEX = "hex"
FORMAT_NIX32 = "nix32"
FORMAT_SRI = "sri"
CHECKSUM_FORMATS = {FORMAT_HEX, FORMAT_NIX32, FORMAT_SRI}

DIGEST_SIZE = 32
NIX32_ALPHABET = "0123456789abcdfghijklmnpqrsvwxyz"
NIX32_LENGTH = (DIGEST_SIZE * 8 - 1) // 5 + 1
_CHUNK_BYTES = 1 << 20


def nix32_encode(digest: bytes) -> str:
    length = (len(digest) * 8 - 1) // 5 + 1
    chars: list[str] = []
    for n in range(length - 1, -1, -1):
        bit = n * 5
        index, shift = divmod(bit, 8)
        value = digest[index] >> shift
        if index + 1 < len(digest):
            value |= digest[index + 1] << (8 - shift)
        chars.append(NIX32_ALPHABET[value & 0x1F])
    return "".join(chars)


def nix32_decode(text: str, size: int = DIGEST_SIZE) -> bytes:
    if len(text) != (size * 8 - 1) // 5 + 1:
        raise LocatorError(f"NIX32_LENGTH_INVALID:{len(text)}")
    out = bytearray(size)
    for n, char in enumerate(reversed(text)):
        digit = NIX32_ALPHABET.find(char)
        if digit < 0:
            raise LocatorError(f"NIX32_CHAR_INVALID:{char!r}")
        bit = n * 5
        index, shift = divmod(bit, 8)
        out[index] |= (digit << shift) & 0xFF
        carry = digit >> (8 - shift)
        if index + 1 < size:
            out[index + 1] |= carry
        elif carry:
            raise LocatorError("NIX32_OVERFLOW")
    return bytes(out)


def parse_checksum(text: str) -> tuple[bytes, str]:
    """Decode a SHA-256 checksum, returning ``(digest, format)``."""
    value = (text or "").strip()
    if value.startswith("sha256-"):
        try:
            digest = base64.b64decode(value[len("sha256-"):], validate=True)
        except ValueError as exc:
            raise LocatorError(f"SRI_INVALID:{value}") from exc
        if len(digest) != DIGEST_SIZE:
            raise LocatorError(f"SRI_LENGTH_INVALID:{value}")
        return digest, FORMAT_SRI
    if value.startswith("sha256:"):
        value = value[len("sha256:"):]
    if len(value) == DIGEST_SIZE * 2:
        try:
            return bytes.fromhex(value), FORMAT_HEX
        except ValueError as exc:
            raise LocatorError(f"HEX_INVALID:{value}") from exc
    if len(value) == NIX32_LENGTH:
        return nix32_decode(value), FORMAT_NIX32
    raise LocatorError(f"CHECKSUM_UNRECOGNISED:{text}")


def format_checksum(digest: bytes, fmt: str) -> str:
    if fmt == FORMAT_HEX:
        return digest.hex()
    if fmt == FORMAT_NIX32:
        return nix32_encode(digest)
    if fmt == FORMAT_SRI:
        return "sha256-" + base64.b64encode(digest).decode("ascii")
    raise LocatorError(f"CHECKSUM_FORMAT_UNKNOWN:{fmt}")


def sha256_file(path: Path) -> bytes:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_BYTES), b""):
            digest.update(chunk)
    return digest.digest()


def nar_sha256(path: Path) -> bytes:
    """SHA-256 of the NAR serialisation of ``path`` (file, symlink or directory)."""
    digest = hashlib.sha256()
    write_nar(path, digest.update)
    return digest.digest()


def write_nar(path: Path, sink: Callable[[bytes], object]) -> None:
    _nar_str(sink, b"nix-archive-1")
    _nar_node(sink, path)


def hash_path(path: Path, mode: str) -> bytes:
    if mode == MODE_FLAT:
        if not path.is_file():
            raise LocatorError(f"FLAT_HASH_NEEDS_FILE:{path}")
        return sha256_file(path)
    if mode == MODE_RECURSIVE:
        return nar_sha256(path)
    raise LocatorError(f"HASH_MODE_UNKNOWN:{mode}")


def _nar_node(sink: Callable[[bytes], object], path: Path) -> None:
    info = os.lstat(path)
    _nar_str(sink, b"(")
    _nar_str(sink, b"type")
    if stat.S_ISLNK(info.st_mode):
        _nar_str(sink, b"symlink")
        _nar_str(sink, b"target")
        _nar_str(sink, os.fsencode(os.readlink(path)))
    elif stat.S_ISREG(info.st_mode):
        _nar_str(sink, b"regular")
        if info.st_mode & stat.S_IXUSR:
            _nar_str(sink, b"executable")
            _nar_str(sink, b"")
        _nar_str(sink, b"contents")
        with path.open("rb") as handle:
            _nar_stream(sink, handle, info.st_size)
    elif stat.S_ISDIR(info.st_mode):
        _nar_str(sink, b"directory")
        for name in sorted(os.fsencode(entry) for entry in os.listdir(path)):
            _nar_str(sink, b"entry")
            _nar_str(sink, b"(")
            _nar_str(sink, b"name")
            _nar_str(sink, name)
            _nar_str(sink, b"node")
            _nar_node(sink, path / os.fsdecode(name))
            _nar_str(sink, b")")
    else:
        raise LocatorError(f"NAR_UNSUPPORTED_FILE_TYPE:{path}")
    _nar_str(sink, b")")


def _nar_str(sink: Callable[[bytes], object], data: bytes) -> None:
    sink(len(data).to_bytes(8, "little"))
    sink(data)
    _nar_pad(sink, len(data))


def _nar_stream(sink: Callable[[bytes], object], handle: BinaryIO, size: int) -> None:
    sink(size.to_bytes(8, "little"))
    for chunk in iter(lambda: handle.read(_CHUNK_BYTES), b""):
        sink(chunk)
    _nar_pad(sink, size)


def _nar_pad(sink: Callable[[bytes], object], size: int) -> None:
    remainder = size % 8
    if remainder:
        sink(b"\0" * (8 - remainder))
