"""Source locators: the (URL, expected checksum) pins."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml

from .errors import LocatorError
from .hashing import HASH_MODES, MODE_FLAT, MODE_RECURSIVE, format_checksum, parse_checksum


SUPPORTED_SCHEMES = {"http", "https", "file"}


@dataclass(frozen=True)
class SourceLocator:
    url: str
    checksum: str
    mode: str = MODE_FLAT
    unpack: bool = False
    entrypoint: str | None = None
    markers: tuple[str, ...] = ()
    name: str | None = None
    digest: bytes = field(init=False, repr=False, compare=False)
    checksum_format: str = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        scheme = urlparse(self.url).scheme
        if scheme not in SUPPORTED_SCHEMES:
            raise LocatorError(f"URL_SCHEME_UNSUPPORTED:{self.url}")
        if self.mode not in HASH_MODES:
            raise LocatorError(f"HASH_MODE_UNKNOWN:{self.mode}")
        digest, fmt = parse_checksum(self.checksum)
        object.__setattr__(self, "digest", digest)
        object.__setattr__(self, "checksum_format", fmt)
        object.__setattr__(self, "markers", tuple(self.markers))

    @property
    def cache_key(self) -> str:
        return f"{self.mode}-{self.digest.hex()}"

    @property
    def display_name(self) -> str:
        return self.name or self.url

    def render(self, digest: bytes) -> str:
        """Encode ``digest`` the same way this locator's checksum is written."""
        return format_checksum(digest, self.checksum_format)

    def as_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "checksum": self.checksum,
            "mode": self.mode,
            "unpack": self.unpack,
            "entrypoint": self.entrypoint,
            "markers": list(self.markers),
            "name": self.name,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, name: str | None = None) -> "SourceLocator":
        if not isinstance(data, Mapping):
            raise LocatorError(f"PIN_NOT_A_MAPPING:{name}")
        try:
            url = data["url"]
            checksum = data.get("checksum") or data["sha256"]
        except KeyError as exc:
            raise LocatorError(f"PIN_FIELD_MISSING:{name}:{exc.args[0]}") from exc
        markers = data.get("markers") or ()
        if isinstance(markers, str):
            markers = (markers,)
        return cls(
            url=str(url),
            checksum=str(checksum),
            mode=str(data.get("mode", MODE_FLAT)),
            unpack=bool(data.get("unpack", False)),
            entrypoint=data.get("entrypoint"),
            markers=tuple(str(item) for item in markers),
            name=data.get("name", name),
        )


NIXPKGS = SourceLocator(
    url="https://github.com/NixOS/nixpkgs/archive/f5cc5ce8d60fe69c968582434fbfbf8f350555cb.tar.gz",
    checksum="025773zp9hvizwf4frimm7mnr6cydmckw7kayqmik6scisq0mfk5",
    mode=MODE_RECURSIVE,
    unpack=True,
    markers=("default.nix",),
    name="nixpkgs",
)

BUILTIN_PINS: dict[str, SourceLocator] = {"nixpkgs": NIXPKGS}


def pins_from_mapping(data: Mapping[str, Any] | None) -> dict[str, SourceLocator]:
    pins: dict[str, SourceLocator] = {}
    for pin_name, entry in (data or {}).items():
        pins[str(pin_name)] = SourceLocator.from_mapping(entry, name=str(pin_name))
    return pins


def load_pins(path: Path) -> dict[str, SourceLocator]:
    """Read the ``pins`` mapping of a YAML file into locators."""
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, Mapping):
        raise LocatorError(f"PIN_FILE_INVALID:{path}")
    return pins_from_mapping(data.get("pins"))
