from __future__ import annotations

from pathlib import Path

import pytest

from pinfetch.errors import LocatorError
from pinfetch.hashing import nix32_decode
from pinfetch.locator import NIXPKGS, SourceLocator, load_pins


def test_nixpkgs_pin_matches_pinned_revision() -> None:
    assert NIXPKGS.url.endswith("/f5cc5ce8d60fe69c968582434fbfbf8f350555cb.tar.gz")
    assert NIXPKGS.mode == "recursive"
    assert NIXPKGS.unpack is True
    assert NIXPKGS.markers == ("default.nix",)
    assert NIXPKGS.digest == nix32_decode("025773zp9hvizwf4frimm7mnr6cydmckw7kayqmik6scisq0mfk5")
    assert NIXPKGS.cache_key == f"recursive-{NIXPKGS.digest.hex()}"


def test_locator_is_immutable() -> None:
    with pytest.raises(AttributeError):
        NIXPKGS.url = "https://example.test/other.tar.gz"  # type: ignore[misc]


def test_locators_compare_by_declared_fields() -> None:
    first = SourceLocator(url="https://example.test/a.py", checksum="a" * 64)
    second = SourceLocator(url="https://example.test/a.py", checksum="a" * 64)
    assert first == second
    assert hash(first) == hash(second)


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"url": "ftp://example.test/a.tar.gz", "checksum": "a" * 64}, "URL_SCHEME_UNSUPPORTED"),
        ({"url": "https://example.test/a.tar.gz", "checksum": "a" * 10}, "CHECKSUM_UNRECOGNISED"),
        ({"url": "https://example.test/a.tar.gz", "checksum": "a" * 64, "mode": "git"}, "HASH_MODE_UNKNOWN"),
    ],
)
def test_locator_rejects_malformed_input(kwargs: dict, code: str) -> None:
    with pytest.raises(LocatorError, match=code):
        SourceLocator(**kwargs)


def test_render_uses_the_pinned_encoding() -> None:
    digest = bytes(range(32))
    hex_pin = SourceLocator(url="https://example.test/a", checksum="b" * 64)
    sri_pin = SourceLocator(url="https://example.test/a", checksum="sha256-" + "A" * 43 + "=")
    assert hex_pin.render(digest) == digest.hex()
    assert sri_pin.render(digest).startswith("sha256-")


def test_load_pins_reads_yaml_mapping(tmp_path: Path) -> None:
    pin_file = tmp_path / "pins.yaml"
    pin_file.write_text(
        "pins:\n"
        "  helpers:\n"
        "    url: https://example.test/helpers.py\n"
        f"    sha256: {'c' * 64}\n"
        "    entrypoint: helpers:build\n"
        "  tree:\n"
        "    url: https://example.test/tree.tar.gz\n"
        f"    checksum: '{'0' * 52}'\n"
        "    mode: recursive\n"
        "    unpack: true\n"
        "    markers: default.nix\n",
        encoding="utf-8",
    )
    pins = load_pins(pin_file)
    assert sorted(pins) == ["helpers", "tree"]
    assert pins["helpers"].entrypoint == "helpers:build"
    assert pins["helpers"].name == "helpers"
    assert pins["tree"].markers == ("default.nix",)
    assert pins["tree"].unpack is True


def test_load_pins_reports_missing_fields(tmp_path: Path) -> None:
    pin_file = tmp_path / "pins.yaml"
    pin_file.write_text("pins:\n  broken:\n    url: https://example.test/x\n", encoding="utf-8")
    with pytest.raises(LocatorError, match="PIN_FIELD_MISSING:broken"):
        load_pins(pin_file)
