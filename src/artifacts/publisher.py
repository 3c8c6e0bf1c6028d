"""
Artifact Publisher
==================
Bundle the well-known output files of a run into a retained zip artifact.

Layout under the artifact directory:
- ``<name>-<run_id>.zip``: one bundle per run
- ``index.jsonl``: one ArtifactRecord per line, append-only between prunes
- ``index.jsonl.lock``: file lock guarding the index

Missing output files are silently omitted. Bundles whose retention window
has passed are deleted on the next publish.
"""

from __future__ import annotations

import json
import os
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from filelock import FileLock, Timeout
from loguru import logger

from src.config import PIPELINE
from src.utils.schema_validation import validate_artifact_record
from src.utils.validation import resolve_output_file


INDEX_FILENAME = "index.jsonl"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso_z(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class ArtifactRecord:
    """One published artifact."""

    name: str
    run_id: str
    created_at: str
    expires_at: str
    retention_days: int
    members: List[str] = field(default_factory=list)
    bundle_path: Optional[str] = None
    size_bytes: int = 0

    @property
    def published(self) -> bool:
        return self.bundle_path is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return _parse_iso(self.expires_at) <= (now or _utc_now())

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "schema_version": "1.0",
            "name": self.name,
            "run_id": self.run_id,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "retention_days": self.retention_days,
            "members": list(self.members),
            "bundle_path": self.bundle_path,
            "size_bytes": self.size_bytes,
        }
        validate_artifact_record(payload)
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArtifactRecord":
        validate_artifact_record(data)
        return cls(
            name=data["name"],
            run_id=data["run_id"],
            created_at=data["created_at"],
            expires_at=data["expires_at"],
            retention_days=int(data["retention_days"]),
            members=list(data.get("members") or []),
            bundle_path=data.get("bundle_path"),
            size_bytes=int(data.get("size_bytes") or 0),
        )


class ArtifactStore:
    """Retained artifact bundles plus their index."""

    def __init__(
        self,
        artifact_dir: str | Path,
        lock_timeout_seconds: int = PIPELINE.FILE_LOCK_SECONDS,
    ):
        self.artifact_dir = Path(artifact_dir).expanduser().resolve()
        self.lock_timeout_seconds = lock_timeout_seconds

    @property
    def index_path(self) -> Path:
        return self.artifact_dir / INDEX_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.index_path.with_suffix(self.index_path.suffix + ".lock")

    def _lock(self) -> FileLock:
        self.artifact_dir.mkdir(parents=True, exist_ok=True)
        return FileLock(self.lock_path, timeout=self.lock_timeout_seconds)

    def bundle_path_for(self, name: str, run_id: str) -> Path:
        return self.artifact_dir / f"{name}-{run_id}.zip"

    def publish(
        self,
        *,
        checkout_dir: Path,
        names: Sequence[str],
        artifact_name: str,
        run_id: str,
        retention_days: int,
        now: Optional[datetime] = None,
    ) -> ArtifactRecord:
        """Bundle whichever of ``names`` exist in the checkout and index the bundle.

        When none of the files exist no bundle is written and the returned
        record has ``bundle_path`` None.
        """
        if retention_days < 1:
            raise ValueError("retention_days must be >= 1")

        created = now or _utc_now()
        checkout_dir = Path(checkout_dir).resolve()

        members: List[str] = []
        sources: List[Path] = []
        for name in names:
            path = resolve_output_file(checkout_dir, name)
            if path.is_file():
                members.append(name)
                sources.append(path)

        bundle_rel: Optional[str] = None
        size = 0
        if members:
            bundle = self.bundle_path_for(artifact_name, run_id)
            bundle.parent.mkdir(parents=True, exist_ok=True)
            tmp = bundle.with_suffix(bundle.suffix + ".tmp")
            try:
                with zipfile.ZipFile(tmp, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                    for name, src in zip(members, sources):
                        zf.write(src, arcname=name)
                os.replace(tmp, bundle)
            finally:
                tmp.unlink(missing_ok=True)
            size = bundle.stat().st_size
            bundle_rel = bundle.name
            logger.info("Published artifact {} with {} ({} bytes)", bundle.name, ", ".join(members), size)
        else:
            logger.warning("No output files found; artifact {} not uploaded", artifact_name)

        record = ArtifactRecord(
            name=artifact_name,
            run_id=run_id,
            created_at=_iso_z(created),
            expires_at=_iso_z(created + timedelta(days=retention_days)),
            retention_days=retention_days,
            members=members,
            bundle_path=bundle_rel,
            size_bytes=size,
        )

        line = json.dumps(record.to_dict(), ensure_ascii=False, sort_keys=True)
        try:
            with self._lock():
                with open(self.index_path, "a", encoding="utf-8") as f:
                    f.write(line)
                    f.write("\n")
                    f.flush()
        except Timeout as e:
            raise TimeoutError(
                f"Timed out acquiring artifact index lock {self.lock_path} after {self.lock_timeout_seconds}s"
            ) from e

        return record

    def _read_index_unlocked(self) -> List[ArtifactRecord]:
        if not self.index_path.exists():
            return []
        records: List[ArtifactRecord] = []
        with open(self.index_path, "r", encoding="utf-8") as f:
            for idx, raw_line in enumerate(f, start=1):
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    records.append(ArtifactRecord.from_dict(json.loads(line)))
                except (json.JSONDecodeError, ValueError, KeyError) as e:
                    logger.warning("Skipping malformed artifact record at {} line {}: {}", self.index_path, idx, e)
        return records

    def iter_records(self, *, include_expired: bool = False, now: Optional[datetime] = None) -> Iterator[ArtifactRecord]:
        """Iterate indexed artifacts in publish order."""
        for record in self._read_index_unlocked():
            if include_expired or not record.is_expired(now):
                yield record

    def resolve_bundle(self, record: ArtifactRecord) -> Optional[Path]:
        if record.bundle_path is None:
            return None
        return self.artifact_dir / record.bundle_path

    def latest(self, artifact_name: Optional[str] = None, now: Optional[datetime] = None) -> Optional[ArtifactRecord]:
        """Most recent unexpired record that actually has a bundle."""
        found: Optional[ArtifactRecord] = None
        for record in self.iter_records(now=now):
            if record.published and (artifact_name is None or record.name == artifact_name):
                found = record
        return found

    def prune_expired(self, now: Optional[datetime] = None) -> List[ArtifactRecord]:
        """Delete expired bundles and drop their records from the index.

        Returns the pruned records.
        """
        moment = now or _utc_now()
        try:
            with self._lock():
                records = self._read_index_unlocked()
                keep = [r for r in records if not r.is_expired(moment)]
                pruned = [r for r in records if r.is_expired(moment)]
                if not pruned:
                    return []

                for record in pruned:
                    bundle = self.resolve_bundle(record)
                    if bundle is None:
                        continue
                    try:
                        bundle.unlink(missing_ok=True)
                    except OSError as e:
                        logger.warning("Could not delete expired artifact {}: {}", bundle, e)

                tmp = self.index_path.with_suffix(self.index_path.suffix + ".tmp")
                with open(tmp, "w", encoding="utf-8") as f:
                    for record in keep:
                        f.write(json.dumps(record.to_dict(), ensure_ascii=False, sort_keys=True))
                        f.write("\n")
                os.replace(tmp, self.index_path)
        except Timeout as e:
            raise TimeoutError(
                f"Timed out acquiring artifact index lock {self.lock_path} after {self.lock_timeout_seconds}s"
            ) from e

        logger.info("Pruned {} expired artifact(s)", len(pruned))
        return pruned
