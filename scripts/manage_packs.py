#!/usr/bin/env python3
"""
Manage Mythic Realms compendium packs.

Editable sources live one document per file under packs/_source/<pack>/**/*.yml;
compiled packs are newline-delimited JSON at the path system.json declares for
the pack, or packs/<pack> when it declares none.

    package clean [pack] [entry]    normalize source files in place
    package pack [pack]             compile sources into the compiled pack
    package unpack [pack] [entry]   extract compiled packs back into sources
"""
from __future__ import annotations

import argparse
import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import yaml

from clean_packs import clean_pack_entry

PACK_SRC = Path("packs") / "_source"
PACK_DEST = Path("packs")
MANIFEST_NAME = "system.json"
SOURCE_MODE = 0o664

FOLDER_FILE = "_folder.yml"
CONTAINER_FILE = "_container.yml"

APOSTROPHE_RE = re.compile("['\u2019]")
NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
HYPHENS_RE = re.compile(r"-{2,}")


def slugify(name: str) -> str:
    slug = APOSTROPHE_RE.sub("", str(name or "").lower())
    slug = NON_ALNUM_RE.sub("-", slug)
    return HYPHENS_RE.sub("-", slug).strip("-")


def _matches(entry: dict, entry_name: str | None) -> bool:
    if not entry_name:
        return True
    return str(entry.get("name") or "").lower() == entry_name.lower()


def _load_yaml(path: Path):
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


def _load_source(path: Path):
    try:
        return _load_yaml(path)
    except yaml.YAMLError as err:
        print(f"skip {path}: {err}")
        return None


def _dump_yaml(data) -> str:
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


def _write_yaml(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        path.unlink()
    path.write_text(_dump_yaml(data), encoding="utf-8")
    os.chmod(path, SOURCE_MODE)


def iter_source_files(directory: Path) -> Iterator[Path]:
    for child in sorted(directory.iterdir()):
        if child.is_dir():
            yield from iter_source_files(child)
        elif child.suffix == ".yml":
            yield child


def select_pack_folders(src: Path, pack_name: str | None = None) -> list[Path]:
    if not src.is_dir():
        return []
    return [
        folder for folder in sorted(src.iterdir())
        if folder.is_dir() and (not pack_name or folder.name == pack_name)
    ]


def clean_packs(pack_name: str | None = None, entry_name: str | None = None, root: Path | None = None) -> int:
    root = Path(root) if root else Path.cwd()
    cleaned = 0
    for folder in select_pack_folders(root / PACK_SRC, pack_name):
        print(f"cleaning pack: {folder.name}")
        for src in iter_source_files(folder):
            data = _load_source(src)
            if data is None:
                continue
            if not isinstance(data, dict) or not data.get("_id") or not data.get("_key"):
                print(f"skip {src}: missing _id or _key")
                continue
            if not _matches(data, entry_name):
                continue
            clean_pack_entry(data)
            _write_yaml(src, data)
            cleaned += 1
    return cleaned


def _write_compiled(path: Path, docs: list[dict]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = "".join(json.dumps(doc, ensure_ascii=False) + "\n" for doc in docs)
    path.write_text(payload, encoding="utf-8")


def compile_packs(pack_name: str | None = None, root: Path | None = None) -> dict[str, int]:
    root = Path(root) if root else Path.cwd()
    declared = _declared_pack_paths(root)
    counts = {}
    for folder in select_pack_folders(root / PACK_SRC, pack_name):
        dest = root / declared.get(folder.name, PACK_DEST / folder.name)
        print(f"compiling pack: {folder.name}")
        docs = []
        for src in iter_source_files(folder):
            data = _load_source(src)
            if data is None:
                continue
            if not isinstance(data, dict) or not data.get("_id"):
                print(f"skip {src}: missing _id")
                continue
            clean_pack_entry(data)
            docs.append(data)
        _write_compiled(dest, docs)
        counts[folder.name] = len(docs)
        print(f"wrote {dest.relative_to(root)}: {len(docs)}")
    return counts


def read_compiled_pack(path: Path) -> Iterator[dict]:
    with Path(path).open("r", encoding="utf-8") as handle:
        for line in handle:
            if line.strip():
                yield json.loads(line)


@dataclass
class TreeNode:
    """A folder or container as seen during discovery."""

    name: str
    parent: str | None = None
    folder: str | None = None
    path: str = ""


def _is_folder(entry: dict) -> bool:
    return str(entry.get("_key") or "").startswith("!folders")


def _is_container(entry: dict) -> bool:
    return entry.get("type") == "container"


def _container_of(entry: dict) -> str | None:
    system = entry.get("system")
    return system.get("container") if isinstance(system, dict) else None


def _node_name(entry: dict) -> str:
    return slugify(entry.get("name")) or str(entry["_id"])


def discover_tree(docs) -> tuple[dict[str, TreeNode], dict[str, TreeNode]]:
    folders: dict[str, TreeNode] = {}
    containers: dict[str, TreeNode] = {}
    for entry in docs:
        if _is_folder(entry):
            folders[entry["_id"]] = TreeNode(_node_name(entry), parent=entry.get("folder"))
        elif _is_container(entry):
            containers[entry["_id"]] = TreeNode(
                _node_name(entry), parent=_container_of(entry), folder=entry.get("folder")
            )
    return folders, containers


def _chain_path(collection: dict[str, TreeNode], node: TreeNode) -> str:
    parts = [node.name]
    seen = {id(node)}
    parent = collection.get(node.parent) if node.parent else None
    while parent is not None and id(parent) not in seen:
        seen.add(id(parent))
        parts.append(parent.name)
        parent = collection.get(parent.parent) if parent.parent else None
    return "/".join(reversed(parts))


def resolve_tree_paths(folders: dict[str, TreeNode], containers: dict[str, TreeNode]) -> None:
    for node in folders.values():
        node.path = _chain_path(folders, node)
    for node in containers.values():
        node.path = _chain_path(containers, node)
        owner = folders.get(node.folder) if node.folder else None
        if owner is not None:
            node.path = f"{owner.path}/{node.path}"


def entry_output_path(entry: dict, folders: dict[str, TreeNode], containers: dict[str, TreeNode]) -> Path:
    entry_id = entry.get("_id")
    if entry_id in folders:
        return Path(folders[entry_id].path) / FOLDER_FILE
    if entry_id in containers:
        return Path(containers[entry_id].path) / CONTAINER_FILE
    parent = containers.get(_container_of(entry)) or folders.get(entry.get("folder"))
    base = Path(parent.path) if parent is not None else Path()
    return base / f"{slugify(entry.get('name')) or entry_id}.yml"


def _read_manifest(root: Path) -> dict:
    path = root / MANIFEST_NAME
    if not path.exists():
        raise FileNotFoundError(f"Manifest not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _declared_pack_paths(root: Path) -> dict[str, Path]:
    if not (root / MANIFEST_NAME).exists():
        return {}
    return {
        pack["name"]: Path(pack["path"])
        for pack in _read_manifest(root).get("packs") or []
        if pack.get("name") and pack.get("path")
    }


def extract_packs(pack_name: str | None = None, entry_name: str | None = None, root: Path | None = None) -> dict[str, int]:
    root = Path(root) if root else Path.cwd()
    manifest = _read_manifest(root)
    packs = [p for p in manifest.get("packs") or [] if not pack_name or p.get("name") == pack_name]

    counts = {}
    for pack_info in packs:
        source = root / pack_info["path"]
        dest = root / PACK_SRC / pack_info["name"]
        if not source.exists():
            print(f"skip {pack_info['name']}: {pack_info['path']} not found")
            continue
        print(f"extracting pack: {pack_info['name']}")

        folders, containers = discover_tree(read_compiled_pack(source))
        resolve_tree_paths(folders, containers)

        written = 0
        for entry in read_compiled_pack(source):
            if not _matches(entry, entry_name):
                continue
            clean_pack_entry(entry)
            _write_yaml(dest / entry_output_path(entry, folders, containers), entry)
            written += 1
        counts[pack_info["name"]] = written
        print(f"wrote {dest.relative_to(root)}: {written}")
    return counts


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Manage Mythic Realms compendium packs.")
    parser.add_argument("--root", type=Path, default=None, help="System root containing system.json and packs/ (default: current directory).")
    commands = parser.add_subparsers(dest="command", required=True)
    package = commands.add_parser("package", help="Clean, compile or extract compendium packs.")
    package.add_argument("action", choices=["clean", "pack", "unpack"], help="Action to perform.")
    package.add_argument("pack", nargs="?", help="Name of pack to target.")
    package.add_argument("entry", nargs="?", help="Specific entry name (for clean/unpack only).")
    args = parser.parse_args(argv)

    if args.action == "clean":
        clean_packs(args.pack, args.entry, root=args.root)
    elif args.action == "pack":
        if args.entry:
            parser.error("entry filter is only supported by clean and unpack")
        compile_packs(args.pack, root=args.root)
    else:
        extract_packs(args.pack, args.entry, root=args.root)


if __name__ == "__main__":
    main()
