#!/usr/bin/env python3
import argparse
import json
import os
from pathlib import Path

SYSTEM_ID = "mythicrealms"
MANIFEST_NAME = "system.json"
FREE_MANIFEST_NAME = "module.json"
MANIFEST_MODE = 0o644


class BuildError(RuntimeError):
    """A release step failed and the remaining steps must not run."""


class ManifestError(BuildError, ValueError):
    """The checked-out manifest disagrees with the release being built."""


def _read_json(path: Path):
    if not path.exists():
        raise FileNotFoundError(f"Manifest not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _write_json(path: Path, payload) -> None:
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
        handle.write("\n")
    os.chmod(path, MANIFEST_MODE)


def parse_tag_version(tag: str) -> str:
    """Return everything after the first hyphen of a `<prefix>-<version>` tag.

    Pre-release suffixes stay part of the version, so `v1-2.3.0-beta.1` must
    match a manifest version of `2.3.0-beta.1`, not `2.3.0`.
    """
    prefix, sep, version = str(tag or "").partition("-")
    if not sep or not prefix or not version:
        raise ManifestError(f"Release tag '{tag}' is not of the form <prefix>-<version>.")
    return version


def release_download_url(base_url: str, tag: str) -> str:
    return f"{base_url.rstrip('/')}/releases/download/{tag}/{SYSTEM_ID}-{tag}.zip"


def _source_books(manifest: dict) -> dict:
    flags = manifest.get("flags") or {}
    return (flags.get(SYSTEM_ID) or {}).get("sourceBooks") or {}


def merge_source_books(system: dict, free: dict) -> dict:
    """Copy free-rules source books onto the system manifest, keeping existing keys."""
    flags = system.setdefault("flags", {})
    system_flags = flags.setdefault(SYSTEM_ID, {})
    books = system_flags.setdefault("sourceBooks", {})
    for key, value in _source_books(free).items():
        books.setdefault(key, value)
    return books


def validate_release(manifest: dict, tag: str, base_url: str) -> None:
    version = parse_tag_version(tag)
    if manifest.get("version") != version:
        raise ManifestError(
            f"System manifest version mismatch: expected '{version}', found '{manifest.get('version')}'."
        )
    download = release_download_url(base_url, tag)
    if manifest.get("download") != download:
        raise ManifestError(
            f"System download path mismatch: expected '{download}', found '{manifest.get('download')}'."
        )


def compile_manifest(dist, free, tag: str, base_url: str) -> dict:
    dist = Path(dist)
    manifest_path = dist / MANIFEST_NAME
    free_manifest = _read_json(Path(free) / FREE_MANIFEST_NAME)
    manifest = _read_json(manifest_path)

    validate_release(manifest, tag, base_url)

    merge_source_books(manifest, free_manifest)
    (manifest.get("flags") or {}).pop("hotReload", None)

    _write_json(manifest_path, manifest)
    return manifest


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Merge free-rules source books into a checked-out system.json.")
    parser.add_argument("tag", help="The release version tag, e.g. release-1.2.0.")
    parser.add_argument("free_rules", metavar="free-rules", help="Path to the free rules content.")
    parser.add_argument("--out", "-o", default="./dist", help="Checked-out system directory.")
    parser.add_argument("--url", required=True, help="Public URL where releases are posted.")
    args = parser.parse_args(argv)

    try:
        manifest = compile_manifest(args.out, args.free_rules, args.tag, args.url)
    except (ValueError, FileNotFoundError) as err:
        raise SystemExit(f"manifest failed: {err}")
    print(f"compiled {MANIFEST_NAME}: version {manifest['version']}")


if __name__ == "__main__":
    main()
