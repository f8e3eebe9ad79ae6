"""CLI entrypoint for pinned retrieval (fetch / prefetch / hash)."""

from __future__ import annotations

import argparse
from dataclasses import replace
import json
import logging
from pathlib import Path

from .config import FetcherProfile
from .errors import PinFetchError
from .fetcher import PinnedFetcher, prefetch
from .hashing import CHECKSUM_FORMATS, FORMAT_NIX32, HASH_MODES, MODE_FLAT, format_checksum, hash_path
from .logging_utils import configure_logging
from .transport import HttpTransport


def _load_profile(args: argparse.Namespace) -> FetcherProfile:
    profile = FetcherProfile.load(Path(args.profile)) if args.profile else FetcherProfile()
    if args.cache_dir:
        profile = replace(profile, cache=replace(profile.cache, root=Path(args.cache_dir)))
    return profile


def _cmd_fetch(args: argparse.Namespace) -> dict:
    profile = _load_profile(args)
    try:
        locator = profile.pin(args.pin)
    except KeyError as exc:
        raise SystemExit(f"PIN_UNKNOWN:{args.pin}") from exc
    artifact = PinnedFetcher(profile).resolve(locator)
    return {
        "name": locator.display_name,
        "root": str(artifact.root),
        "checksum": artifact.checksum,
        "from_cache": artifact.from_cache,
    }


def _cmd_prefetch(args: argparse.Namespace) -> dict:
    transport = HttpTransport(timeout_seconds=args.timeout)
    digest, size = prefetch(args.url, mode=args.mode, unpack=args.unpack, transport=transport)
    return {
        "url": args.url,
        "checksum": format_checksum(digest, args.format),
        "mode": args.mode,
        "unpack": args.unpack,
        "size": size,
    }


def _cmd_hash(args: argparse.Namespace) -> dict:
    path = Path(args.path)
    if not path.exists():
        raise SystemExit(f"PATH_NOT_FOUND:{path}")
    digest = hash_path(path, args.mode)
    return {"path": str(path), "checksum": format_checksum(digest, args.format), "mode": args.mode}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pinned, hash-verified source retrieval")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    fetch = sub.add_parser("fetch", help="Resolve a pin into the local cache")
    fetch.add_argument("--profile", help="Path to fetcher profile YAML")
    fetch.add_argument("--pin", default="nixpkgs", help="Pin name (default: nixpkgs)")
    fetch.add_argument("--cache-dir", help="Override cache root")
    fetch.set_defaults(handler=_cmd_fetch)

    pre = sub.add_parser("prefetch", help="Download a URL and print its checksum")
    pre.add_argument("url", help="Source URL (https://, http:// or file://)")
    pre.add_argument("--mode", choices=sorted(HASH_MODES), default=MODE_FLAT)
    pre.add_argument("--unpack", action="store_true", help="Unpack the archive before hashing")
    pre.add_argument("--format", choices=sorted(CHECKSUM_FORMATS), default=FORMAT_NIX32)
    pre.add_argument("--timeout", type=float, default=120.0, help="Network timeout in seconds")
    pre.set_defaults(handler=_cmd_prefetch)

    hsh = sub.add_parser("hash", help="Hash a local file or directory")
    hsh.add_argument("path")
    hsh.add_argument("--mode", choices=sorted(HASH_MODES), default=MODE_FLAT)
    hsh.add_argument("--format", choices=sorted(CHECKSUM_FORMATS), default=FORMAT_NIX32)
    hsh.set_defaults(handler=_cmd_hash)
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=getattr(logging, str(args.log_level).upper(), logging.INFO))
    try:
        result = args.handler(args)
    except PinFetchError as exc:
        raise SystemExit(str(exc)) from exc
    print(json.dumps(result, sort_keys=True))


if __name__ == "__main__":
    main()
