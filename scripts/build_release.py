#!/usr/bin/env python3
"""
Build the Mythic Realms system package for distribution.

Clones a release tag, folds in the free rules content (source books, icons
and compendium packs), runs the project's own build and writes
<dist>/mythicrealms-<tag>.zip. Any failing step aborts the run.
"""
import argparse
import json
import shutil
import subprocess
import sys
from pathlib import Path

from build_system_zip import zip_release
from compile_manifest import FREE_MANIFEST_NAME, SYSTEM_ID, BuildError, compile_manifest

DEFAULT_REPO = "git@github.com:YourUsername/MythicRealms.git"
DEFAULT_URL = "https://github.com/YourUsername/MythicRealms"

INSTALL_CMD = ["npm", "ci", "--ignore-scripts"]
BUILD_CMD = ["npm", "run", "build"]
COMPILED_ENTRYPOINT = f"{SYSTEM_ID}-compiled.mjs"
ENTRYPOINT = f"{SYSTEM_ID}.mjs"


class CommandError(BuildError):
    def __init__(self, cmd: list[str], returncode: int):
        self.cmd = list(cmd)
        self.returncode = returncode
        super().__init__(f"{cmd[0]} exited {returncode}")


def run(cmd: list[str], cwd=None) -> None:
    """Run an external tool with the terminal's stdio and wait for it."""
    try:
        result = subprocess.run(cmd, cwd=cwd)
    except OSError as err:
        raise CommandError(cmd, 127) from err
    if result.returncode != 0:
        raise CommandError(cmd, result.returncode)


def prepare_dist(dist: Path) -> None:
    print("cleaning existing dist...")
    shutil.rmtree(dist, ignore_errors=True)
    dist.mkdir(parents=True, exist_ok=True)


def checkout(tag: str, repo: str, dist: Path) -> None:
    print(f"cloning {repo} at {tag}...")
    run(["git", "clone", "-b", tag, "--depth", "1", repo, str(dist)])


def install_deps(dist: Path) -> None:
    print("installing dependencies...")
    run(INSTALL_CMD, cwd=dist)


def copy_images(free: Path, dist: Path) -> None:
    source = free / "icons"
    if not source.is_dir():
        print("skip icons: not found in free rules")
        return
    print("copying icons...")
    shutil.copytree(source, dist / "icons", dirs_exist_ok=True)


def free_module_id(free: Path) -> str:
    path = free / FREE_MANIFEST_NAME
    if not path.exists():
        return ""
    with path.open("r", encoding="utf-8") as handle:
        manifest = json.load(handle)
    return str(manifest.get("id") or manifest.get("name") or "")


def rewrite_icon_paths(text: str, module_id: str) -> str:
    if not module_id:
        return text
    return text.replace(f"modules/{module_id}/icons/", f"systems/{SYSTEM_ID}/icons/")


def _copy_file(src: Path, dest: Path, module_id: str) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    raw = src.read_bytes()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        dest.write_bytes(raw)
    else:
        dest.write_bytes(rewrite_icon_paths(text, module_id).encode("utf-8"))
    shutil.copymode(src, dest)


def copy_compendium_content(free: Path, dist: Path, module_id: str = "") -> int:
    print("copying compendium content...")
    source = free / "packs"
    target = dist / "packs"
    copied = 0
    for entry in sorted(source.iterdir()):
        if entry.is_dir():
            for file_path in sorted(p for p in entry.rglob("*") if p.is_file()):
                _copy_file(file_path, target / file_path.relative_to(source), module_id)
                copied += 1
        elif entry.is_file():
            _copy_file(entry, target / entry.name, module_id)
            copied += 1
        print(f"copied {entry.name} to {target}")
    return copied


def build(dist: Path) -> None:
    print("building system...")
    run(BUILD_CMD, cwd=dist)
    (dist / COMPILED_ENTRYPOINT).rename(dist / ENTRYPOINT)


class StepError(BuildError):
    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.returncode = getattr(cause, "returncode", 1)
        super().__init__(f"{step}: {cause}")


def release(tag: str, free, dist, repo: str = DEFAULT_REPO, url: str = DEFAULT_URL) -> Path:
    free = Path(free)
    dist = Path(dist)
    steps = [
        ("prepare", lambda: prepare_dist(dist)),
        ("checkout", lambda: checkout(tag, repo, dist)),
        ("install", lambda: install_deps(dist)),
        ("manifest", lambda: compile_manifest(dist, free, tag, url)),
        ("icons", lambda: copy_images(free, dist)),
        ("packs", lambda: copy_compendium_content(free, dist, free_module_id(free))),
        ("build", lambda: build(dist)),
        ("zip", lambda: zip_release(dist, tag)),
    ]
    result = None
    for name, step in steps:
        try:
            result = step()
        except (BuildError, OSError, ValueError) as err:
            raise StepError(name, err) from err
    return result


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="dist", description="Build the Mythic Realms package for distribution.")
    parser.add_argument("tag", help="The release version tag.")
    parser.add_argument("free_rules", metavar="free-rules", help="Path to the free rules content (Afflictions, Statuses, etc.)")
    parser.add_argument("--out", "-o", default="./dist", help="Path to the output directory.")
    parser.add_argument("--repo", "-r", default=DEFAULT_REPO, help="The Mythic Realms repository.")
    parser.add_argument("--url", default=DEFAULT_URL, help="Public URL where releases are posted.")
    args = parser.parse_args(argv)

    try:
        artifact = release(args.tag, args.free_rules, args.out, repo=args.repo, url=args.url)
    except StepError as err:
        print(f"build failed at {err}", file=sys.stderr)
        sys.exit(err.returncode)
    print(f"release artifact written to {artifact}")


if __name__ == "__main__":
    main()
