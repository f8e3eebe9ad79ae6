from __future__ import annotations

from pathlib import Path

import pinfetch
from pinfetch.config import ResolveConfig
from pinfetch.fetcher import ImportedArtifact
from pinfetch.locator import NIXPKGS, SourceLocator
from pinfetch.pinned import pkgs


class _RecordingFetcher:
    def __init__(self) -> None:
        self.calls: list[tuple[SourceLocator, object]] = []

    def resolve(self, locator: SourceLocator, config: object = None) -> ImportedArtifact:
        self.calls.append((locator, config))
        return ImportedArtifact(
            locator=locator,
            root=Path("/nonexistent"),
            checksum=locator.checksum,
            namespace=None,
            config=ResolveConfig.coerce(config),  # type: ignore[arg-type]
        )


def test_pkgs_resolves_builtin_nixpkgs_pin_on_demand() -> None:
    fetcher = _RecordingFetcher()
    artifact = pkgs({}, fetcher=fetcher)  # type: ignore[arg-type]
    assert fetcher.calls == [(NIXPKGS, {})]
    assert artifact.checksum == "025773zp9hvizwf4frimm7mnr6cydmckw7kayqmik6scisq0mfk5"
    assert artifact.config == {}


def test_package_exports_resolution_surface() -> None:
    assert pinfetch.pkgs is pkgs
    assert pinfetch.NIXPKGS is NIXPKGS
    assert issubclass(pinfetch.ArtifactImportError, ImportError)
    assert issubclass(pinfetch.FetchCancelledError, pinfetch.RetrievalError)
