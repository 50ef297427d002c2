#!/usr/bin/env python3
import argparse
import json
import os
import zipfile
from pathlib import Path

SYSTEM_ID = "mythicrealms"
MANIFEST_NAME = "system.json"
PLATFORM_CONFIG_NAME = "foundryvtt.json"


def _read_json(path: Path):
    if not path.exists():
        raise FileNotFoundError(f"Release input not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _unique_preserve(values: list[str]) -> list[str]:
    out = []
    seen = set()
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def release_includes(manifest: dict, config: dict) -> list[str]:
    """Paths, relative to the system root, that make up a release archive."""
    esmodules = manifest.get("esmodules") or []
    return _unique_preserve([
        MANIFEST_NAME,
        *esmodules,
        *(f"{path}.map" for path in esmodules),
        *(manifest.get("styles") or []),
        *(pack.get("path") for pack in manifest.get("packs") or []),
        *(language.get("path") for language in manifest.get("languages") or []),
        *(config.get("includes") or []),
    ])


def add_path(zf, root: Path, path: str, skip: Path | None = None) -> int:
    full = root / path
    if not full.exists():
        print(f"skip {path}: not found")
        return 0
    if full.is_dir():
        written = 0
        for dirpath, dirnames, files in os.walk(full):
            dirnames.sort()
            for name in sorted(files):
                file_full = Path(dirpath) / name
                if skip is not None and file_full.resolve() == skip:
                    continue
                zf.write(file_full, file_full.relative_to(root).as_posix())
                written += 1
        return written
    if skip is not None and full.resolve() == skip:
        return 0
    zf.write(full, full.relative_to(root).as_posix())
    return 1


def write_archive(root, path, includes: list[str]) -> int:
    root = Path(root)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        path.unlink()
    written = 0
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
        for item in includes:
            written += add_path(zf, root, item, skip=path.resolve())
    return written


def zip_release(dist, tag: str) -> Path:
    dist = Path(dist)
    manifest = _read_json(dist / MANIFEST_NAME)
    config = _read_json(dist / PLATFORM_CONFIG_NAME)
    artifact = dist / f"{SYSTEM_ID}-{tag}.zip"
    written = write_archive(dist, artifact, release_includes(manifest, config))
    print(f"wrote {artifact}: {written} files")
    return artifact


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Archive a built system directory into a release zip.")
    parser.add_argument("tag", help="The release version tag.")
    parser.add_argument("--out", "-o", default="./dist", help="Built system directory.")
    args = parser.parse_args(argv)
    zip_release(args.out, args.tag)


if __name__ == "__main__":
    main()
