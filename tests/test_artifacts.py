from __future__ import annotations

import io
import json
import stat
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from src.artifacts import ArtifactRecord, ArtifactStore, extract_artifact, list_artifact_members


OUTPUTS = ("iptv.txt", "iptv.m3u", "discovered_servers.txt")
NOW = datetime(2026, 5, 1, 0, 0, tzinfo=timezone.utc)


def _checkout_with(tmp_path: Path, files: dict[str, str]) -> Path:
    root = tmp_path / "checkout"
    root.mkdir(exist_ok=True)
    for name, content in files.items():
        (root / name).write_text(content, encoding="utf-8")
    return root


def _publish(store: ArtifactStore, checkout: Path, run_id: str, now: datetime = NOW, days: int = 7) -> ArtifactRecord:
    return store.publish(
        checkout_dir=checkout,
        names=OUTPUTS,
        artifact_name="iptv-files",
        run_id=run_id,
        retention_days=days,
        now=now,
    )


def _zip_file(path: Path, entries: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return path


@pytest.mark.unit
def test_publish_bundles_existing_files_only(tmp_path: Path) -> None:
    checkout = _checkout_with(tmp_path, {"iptv.txt": "a\n", "discovered_servers.txt": "b\n", "other.txt": "c\n"})
    store = ArtifactStore(tmp_path / "artifacts")

    record = _publish(store, checkout, "run1")

    assert record.members == ["iptv.txt", "discovered_servers.txt"]
    assert record.bundle_path == "iptv-files-run1.zip"
    assert record.published
    bundle = store.resolve_bundle(record)
    assert bundle is not None and bundle.exists()
    assert record.size_bytes == bundle.stat().st_size
    assert list_artifact_members(bundle) == ["discovered_servers.txt", "iptv.txt"]
    with zipfile.ZipFile(bundle) as zf:
        assert zf.read("iptv.txt") == b"a\n"


@pytest.mark.unit
def test_publish_sets_retention_window(tmp_path: Path) -> None:
    checkout = _checkout_with(tmp_path, {"iptv.txt": "a\n"})
    record = _publish(ArtifactStore(tmp_path / "artifacts"), checkout, "run1", days=7)

    assert record.created_at == "2026-05-01T00:00:00Z"
    assert record.expires_at == "2026-05-08T00:00:00Z"
    assert record.is_expired(NOW + timedelta(days=6)) is False
    assert record.is_expired(NOW + timedelta(days=7)) is True


@pytest.mark.unit
def test_publish_without_files_records_no_bundle(tmp_path: Path) -> None:
    checkout = _checkout_with(tmp_path, {})
    store = ArtifactStore(tmp_path / "artifacts")

    record = _publish(store, checkout, "run1")

    assert record.members == []
    assert record.bundle_path is None
    assert record.published is False
    assert store.resolve_bundle(record) is None
    assert not list(store.artifact_dir.glob("*.zip"))


@pytest.mark.unit
def test_publish_rejects_bad_retention(tmp_path: Path) -> None:
    checkout = _checkout_with(tmp_path, {"iptv.txt": "a\n"})
    with pytest.raises(ValueError):
        _publish(ArtifactStore(tmp_path / "artifacts"), checkout, "run1", days=0)


@pytest.mark.unit
def test_publish_failure_leaves_no_partial_bundle(tmp_path: Path) -> None:
    checkout = _checkout_with(tmp_path, {"iptv.txt": "a\n", "iptv.m3u": "#EXTM3U\n"})
    store = ArtifactStore(tmp_path / "artifacts")

    with patch.object(zipfile.ZipFile, "write", side_effect=OSError("No space left on device")):
        with pytest.raises(OSError, match="No space left"):
            _publish(store, checkout, "run1")

    assert list((tmp_path / "artifacts").iterdir()) == []
    assert list(store.iter_records(include_expired=True)) == []


@pytest.mark.unit
def test_index_lists_records_in_publish_order(tmp_path: Path) -> None:
    checkout = _checkout_with(tmp_path, {"iptv.txt": "a\n"})
    store = ArtifactStore(tmp_path / "artifacts")
    _publish(store, checkout, "run1")
    _publish(store, checkout, "run2", now=NOW + timedelta(hours=1))

    ids = [r.run_id for r in store.iter_records(now=NOW + timedelta(hours=2))]
    assert ids == ["run1", "run2"]
    latest = store.latest("iptv-files", now=NOW + timedelta(hours=2))
    assert latest is not None and latest.run_id == "run2"
    assert store.latest("other-name", now=NOW) is None


@pytest.mark.unit
def test_latest_skips_records_without_bundle(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "artifacts")
    _publish(store, _checkout_with(tmp_path, {"iptv.txt": "a\n"}), "run1")
    (tmp_path / "checkout" / "iptv.txt").unlink()
    _publish(store, tmp_path / "checkout", "run2")

    latest = store.latest(now=NOW)
    assert latest is not None and latest.run_id == "run1"


@pytest.mark.unit
def test_prune_expired_deletes_bundles_and_records(tmp_path: Path) -> None:
    checkout = _checkout_with(tmp_path, {"iptv.txt": "a\n"})
    store = ArtifactStore(tmp_path / "artifacts")
    old = _publish(store, checkout, "old", now=NOW - timedelta(days=10))
    fresh = _publish(store, checkout, "fresh", now=NOW)

    pruned = store.prune_expired(now=NOW)

    assert [r.run_id for r in pruned] == ["old"]
    assert not (store.artifact_dir / old.bundle_path).exists()
    assert (store.artifact_dir / fresh.bundle_path).exists()
    assert [r.run_id for r in store.iter_records(include_expired=True, now=NOW)] == ["fresh"]
    assert store.prune_expired(now=NOW) == []


@pytest.mark.unit
def test_iter_records_hides_expired_unless_asked(tmp_path: Path) -> None:
    checkout = _checkout_with(tmp_path, {"iptv.txt": "a\n"})
    store = ArtifactStore(tmp_path / "artifacts")
    _publish(store, checkout, "old", now=NOW - timedelta(days=10))

    assert list(store.iter_records(now=NOW)) == []
    assert [r.run_id for r in store.iter_records(include_expired=True, now=NOW)] == ["old"]


@pytest.mark.unit
def test_malformed_index_lines_are_skipped(tmp_path: Path) -> None:
    checkout = _checkout_with(tmp_path, {"iptv.txt": "a\n"})
    store = ArtifactStore(tmp_path / "artifacts")
    _publish(store, checkout, "run1")
    with open(store.index_path, "a", encoding="utf-8") as f:
        f.write("not-json\n")
        f.write(json.dumps({"name": "iptv-files"}) + "\n")
        f.write("\n")

    assert [r.run_id for r in store.iter_records(now=NOW)] == ["run1"]


@pytest.mark.unit
def test_record_round_trip_validates(tmp_path: Path) -> None:
    checkout = _checkout_with(tmp_path, {"iptv.m3u": "#EXTM3U\n"})
    record = _publish(ArtifactStore(tmp_path / "artifacts"), checkout, "run1")

    assert ArtifactRecord.from_dict(record.to_dict()) == record

    bad = record.to_dict()
    bad["members"] = ["../etc/passwd"]
    with pytest.raises(ValueError):
        ArtifactRecord.from_dict(bad)


@pytest.mark.unit
def test_extract_artifact_writes_known_files(tmp_path: Path) -> None:
    bundle = _zip_file(tmp_path / "b.zip", {"iptv.txt": b"a\n", "iptv.m3u": b"#EXTM3U\n"})

    result = extract_artifact(bundle, tmp_path / "out")

    assert result.names == ["iptv.m3u", "iptv.txt"]
    assert result.skipped_entries == 0
    assert result.truncated is False
    assert (tmp_path / "out" / "iptv.txt").read_bytes() == b"a\n"


@pytest.mark.unit
def test_extract_artifact_skips_unknown_and_traversal_entries(tmp_path: Path) -> None:
    bundle = _zip_file(
        tmp_path / "b.zip",
        {
            "iptv.txt": b"ok",
            "../iptv.m3u": b"evil",
            "/abs/discovered_servers.txt": b"evil",
            "nested/iptv.txt": b"evil",
            "run.sh": b"evil",
        },
    )

    result = extract_artifact(bundle, tmp_path / "out")

    assert result.names == ["iptv.txt"]
    assert result.skipped_entries == 4
    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == ["iptv.txt"]
    assert not (tmp_path / "iptv.m3u").exists()


@pytest.mark.unit
def test_extract_artifact_skips_symlinks(tmp_path: Path) -> None:
    info = zipfile.ZipInfo("iptv.txt")
    info.external_attr = (stat.S_IFLNK | 0o777) << 16
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(info, "/etc/passwd")
    bundle = tmp_path / "b.zip"
    bundle.write_bytes(buf.getvalue())

    result = extract_artifact(bundle, tmp_path / "out")

    assert result.extracted_paths == []
    assert result.skipped_entries == 1


@pytest.mark.unit
def test_extract_artifact_size_cap(tmp_path: Path) -> None:
    bundle = _zip_file(tmp_path / "b.zip", {"iptv.txt": b"a" * 10, "iptv.m3u": b"b" * 10})

    result = extract_artifact(bundle, tmp_path / "out", max_total_uncompressed_bytes=15)

    assert result.truncated is True
    assert result.names == ["iptv.txt"]


@pytest.mark.unit
def test_extract_artifact_rejects_bad_limits_and_zips(tmp_path: Path) -> None:
    bundle = _zip_file(tmp_path / "b.zip", {"iptv.txt": b"a"})
    with pytest.raises(ValueError):
        extract_artifact(bundle, tmp_path / "out", max_total_uncompressed_bytes=0)

    junk = tmp_path / "junk.zip"
    junk.write_bytes(b"not a zip")
    with pytest.raises(zipfile.BadZipFile):
        extract_artifact(junk, tmp_path / "out")
