import json
import stat

import pytest

from compile_manifest import (
    ManifestError,
    compile_manifest,
    merge_source_books,
    parse_tag_version,
    release_download_url,
)

URL = "https://example.test/MythicRealms"
TAG = "v1-2.3.0"


def write_json(path, payload):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


@pytest.fixture()
def release_dirs(tmp_path):
    dist = tmp_path / "dist"
    free = tmp_path / "free"
    write_json(dist / "system.json", {
        "id": "mythicrealms",
        "version": "2.3.0",
        "download": f"{URL}/releases/download/{TAG}/mythicrealms-{TAG}.zip",
        "flags": {
            "hotReload": {"extensions": ["css"]},
            "mythicrealms": {"sourceBooks": {"core": {"title": "Core Rules"}}},
        },
    })
    write_json(free / "module.json", {
        "id": "mythicrealms-free",
        "flags": {"mythicrealms": {"sourceBooks": {
            "core": {"title": "Other"},
            "expansion": {"title": "Expansion"},
        }}},
    })
    return dist, free


def test_parse_tag_version():
    assert parse_tag_version("v1-2.3.0") == "2.3.0"
    assert parse_tag_version("release-2.3.0-beta.1") == "2.3.0-beta.1"


@pytest.mark.parametrize("tag", ["2.3.0", "-2.3.0", "v1-", ""])
def test_parse_tag_version_rejects_malformed(tag):
    with pytest.raises(ManifestError):
        parse_tag_version(tag)


def test_release_download_url():
    assert release_download_url(URL + "/", TAG) == (
        "https://example.test/MythicRealms/releases/download/v1-2.3.0/mythicrealms-v1-2.3.0.zip"
    )


def test_merge_source_books_creates_missing_flags():
    system = {}
    merge_source_books(system, {"flags": {"mythicrealms": {"sourceBooks": {"a": 1}}}})
    assert system == {"flags": {"mythicrealms": {"sourceBooks": {"a": 1}}}}


def test_merge_source_books_without_free_books():
    system = {"flags": {"mythicrealms": {"sourceBooks": {"core": 1}}}}
    merge_source_books(system, {})
    assert system["flags"]["mythicrealms"]["sourceBooks"] == {"core": 1}


def test_compile_manifest_merges_and_strips_hot_reload(release_dirs):
    dist, free = release_dirs
    result = compile_manifest(dist, free, TAG, URL)

    written = (dist / "system.json").read_text(encoding="utf-8")
    assert written.endswith("}\n")
    assert json.loads(written) == result
    assert "hotReload" not in result["flags"]
    assert result["flags"]["mythicrealms"]["sourceBooks"] == {
        "core": {"title": "Core Rules"},
        "expansion": {"title": "Expansion"},
    }
    assert '\n  "id": "mythicrealms",' in written


def test_compile_manifest_file_not_world_writable(release_dirs):
    dist, free = release_dirs
    compile_manifest(dist, free, TAG, URL)
    mode = stat.S_IMODE((dist / "system.json").stat().st_mode)
    assert mode == 0o644


def test_version_mismatch_writes_nothing(release_dirs):
    dist, free = release_dirs
    manifest_path = dist / "system.json"
    payload = json.loads(manifest_path.read_text(encoding="utf-8"))
    payload["version"] = "2.2.0"
    write_json(manifest_path, payload)
    before = manifest_path.read_text(encoding="utf-8")

    with pytest.raises(ManifestError, match="2.3.0"):
        compile_manifest(dist, free, TAG, URL)
    assert manifest_path.read_text(encoding="utf-8") == before


def test_download_mismatch_names_expected_url(release_dirs):
    dist, free = release_dirs
    with pytest.raises(ManifestError, match="releases/download/v1-2.3.0/mythicrealms-v1-2.3.0.zip"):
        compile_manifest(dist, free, TAG, "https://elsewhere.test/repo")


def test_missing_free_manifest(release_dirs, tmp_path):
    dist, _free = release_dirs
    with pytest.raises(FileNotFoundError):
        compile_manifest(dist, tmp_path / "nowhere", TAG, URL)
