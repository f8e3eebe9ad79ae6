from __future__ import annotations

import hashlib
import io
import json
from pathlib import Path
import tarfile

import pytest

from pinfetch.cli import main
from pinfetch.hashing import nar_sha256, nix32_encode


def _run(capsys: pytest.CaptureFixture[str], argv: list[str]) -> dict:
    main(argv)
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def test_hash_prints_flat_checksum(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    target = tmp_path / "blob.bin"
    target.write_bytes(b"pinned")
    result = _run(capsys, ["hash", str(target), "--format", "hex"])
    assert result["checksum"] == hashlib.sha256(b"pinned").hexdigest()
    assert result["mode"] == "flat"


def test_prefetch_unpacked_tarball_matches_tree_hash(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = tmp_path / "src" / "pkgs-1"
    source.mkdir(parents=True)
    (source / "default.nix").write_text("{ }: { }\n", encoding="utf-8")
    archive = tmp_path / "pkgs-1.tar.gz"
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        tar.add(source, arcname="pkgs-1")
    archive.write_bytes(buffer.getvalue())

    result = _run(capsys, ["prefetch", archive.as_uri(), "--mode", "recursive", "--unpack"])
    assert result["checksum"] == nix32_encode(nar_sha256(source))
    assert result["size"] == archive.stat().st_size


def test_fetch_resolves_pin_from_profile(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    blob = tmp_path / "helpers.py"
    blob.write_bytes(b"VALUE = 1\n")
    digest = hashlib.sha256(blob.read_bytes()).hexdigest()
    profile = tmp_path / "profile.yaml"
    profile.write_text(
        "pins:\n"
        "  helpers:\n"
        f"    url: {blob.as_uri()}\n"
        f"    checksum: sha256:{digest}\n",
        encoding="utf-8",
    )
    argv = ["fetch", "--profile", str(profile), "--pin", "helpers", "--cache-dir", str(tmp_path / "cache")]
    first = _run(capsys, argv)
    second = _run(capsys, argv)
    assert first["from_cache"] is False
    assert second["from_cache"] is True
    assert Path(first["root"]).joinpath("helpers.py").exists()


def test_fetch_exits_with_reason_on_integrity_failure(tmp_path: Path) -> None:
    blob = tmp_path / "helpers.py"
    blob.write_bytes(b"VALUE = 1\n")
    profile = tmp_path / "profile.yaml"
    profile.write_text(
        f"pins:\n  helpers:\n    url: {blob.as_uri()}\n    checksum: {'f' * 64}\n",
        encoding="utf-8",
    )
    with pytest.raises(SystemExit, match="CHECKSUM_MISMATCH"):
        main(["fetch", "--profile", str(profile), "--pin", "helpers", "--cache-dir", str(tmp_path / "cache")])


def test_fetch_rejects_unknown_pin(tmp_path: Path) -> None:
    with pytest.raises(SystemExit, match="PIN_UNKNOWN:nope"):
        main(["fetch", "--pin", "nope", "--cache-dir", str(tmp_path / "cache")])
