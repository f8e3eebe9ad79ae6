"""Fetcher profile loader and resolve-time configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
import re
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping

import yaml

from .errors import LocatorError
from .locator import BUILTIN_PINS, SourceLocator, pins_from_mapping


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_CHUNK_BYTES = 1 << 20
DEFAULT_USER_AGENT = "pinfetch/0.1"


def default_cache_root() -> Path:
    return Path.home() / ".cache" / "pinfetch"


def _resolve_env(value: str | None) -> str | None:
    if not value or not isinstance(value, str):
        return value
    match = _ENV_PATTERN.fullmatch(value.strip())
    if match:
        return os.getenv(match.group(1)) or ""
    return value


class ResolveConfig(Mapping[str, Any]):
    """Options handed to the imported artifact.

    No option is recognised yet; whatever the caller passes is forwarded
    unchanged to the artifact's entry point.
    """

    def __init__(self, options: Mapping[str, Any] | None = None) -> None:
        self._options = MappingProxyType(dict(options or {}))

    @classmethod
    def coerce(cls, value: "ResolveConfig | Mapping[str, Any] | None") -> "ResolveConfig":
        if isinstance(value, ResolveConfig):
            return value
        return cls(value)

    def __getitem__(self, key: str) -> Any:
        return self._options[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._options)

    def __len__(self) -> int:
        return len(self._options)

    def __repr__(self) -> str:
        return f"ResolveConfig({dict(self._options)!r})"

    def as_dict(self) -> dict[str, Any]:
        return dict(self._options)


@dataclass(frozen=True)
class FetchPolicy:
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    chunk_bytes: int = DEFAULT_CHUNK_BYTES
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(frozen=True)
class CacheWiring:
    root: Path = field(default_factory=default_cache_root)
    verify_on_hit: bool = True


@dataclass(frozen=True)
class FetcherProfile:
    profile_id: str = "local"
    fetch: FetchPolicy = field(default_factory=FetchPolicy)
    cache: CacheWiring = field(default_factory=CacheWiring)
    pins: Mapping[str, SourceLocator] = field(default_factory=lambda: dict(BUILTIN_PINS))

    def pin(self, name: str) -> SourceLocator:
        try:
            return self.pins[name]
        except KeyError:
            raise KeyError(f"unknown pin: {name}") from None

    @classmethod
    def load(cls, path: Path) -> "FetcherProfile":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, Mapping):
            raise LocatorError(f"PROFILE_INVALID:{path}")
        fetch = data.get("fetch") or {}
        cache = data.get("cache") or {}
        for section, value in (("fetch", fetch), ("cache", cache)):
            if not isinstance(value, Mapping):
                raise LocatorError(f"PROFILE_SECTION_INVALID:{section}:{path}")

        timeout = fetch.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
        chunk_bytes = fetch.get("chunk_bytes", DEFAULT_CHUNK_BYTES)
        user_agent = _resolve_env(fetch.get("user_agent")) or DEFAULT_USER_AGENT

        cache_root = _resolve_env(cache.get("root"))
        verify_on_hit = cache.get("verify_on_hit", True)
        if isinstance(verify_on_hit, str):
            verify_on_hit = verify_on_hit.lower() in {"1", "true", "yes"}

        pins = dict(BUILTIN_PINS)
        pins.update(pins_from_mapping(data.get("pins")))

        return cls(
            profile_id=str(data.get("profile_id", "local")),
            fetch=FetchPolicy(
                timeout_seconds=float(timeout),
                chunk_bytes=int(chunk_bytes),
                user_agent=user_agent,
            ),
            cache=CacheWiring(
                root=Path(cache_root).expanduser() if cache_root else default_cache_root(),
                verify_on_hit=bool(verify_on_hit),
            ),
            pins=pins,
        )
