"""Pinned, hash-verified retrieval of external sources."""

from .config import FetcherProfile, ResolveConfig
from .errors import (
    ArtifactImportError,
    FetchCancelledError,
    IntegrityError,
    LocatorError,
    PinFetchError,
    RetrievalError,
)
from .fetcher import ImportedArtifact, PinnedFetcher, resolve
from .locator import NIXPKGS, SourceLocator, load_pins
from .pinned import pkgs

__all__ = [
    "ArtifactImportError",
    "FetchCancelledError",
    "FetcherProfile",
    "ImportedArtifact",
    "IntegrityError",
    "LocatorError",
    "NIXPKGS",
    "PinFetchError",
    "PinnedFetcher",
    "ResolveConfig",
    "RetrievalError",
    "SourceLocator",
    "load_pins",
    "pkgs",
    "resolve",
]
