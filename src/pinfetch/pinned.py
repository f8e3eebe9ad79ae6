"""The pinned package set.

Nothing is fetched at import time; the tarball is retrieved and verified the
first time :func:`pkgs` is called.
"""

from __future__ import annotations

from typing import Any, Mapping

from .config import ResolveConfig
from .fetcher import ImportedArtifact, PinnedFetcher
from .locator import NIXPKGS


def pkgs(
    config: ResolveConfig | Mapping[str, Any] | None = None,
    *,
    fetcher: PinnedFetcher | None = None,
) -> ImportedArtifact:
    return (fetcher or PinnedFetcher()).resolve(NIXPKGS, config)
