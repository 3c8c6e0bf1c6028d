"""Artifact download.

Extract a published bundle into a directory. Only the well-known output
file names are ever written.

Threat model:
- Zip-slip path traversal ("../" paths, absolute paths, backslashes)
- Zip bombs (huge uncompressed totals)
- Symlinks (writing outside destination via link entries)
- Encrypted entries (cannot be inspected safely)
"""

from __future__ import annotations

import shutil
import stat
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Optional, Sequence

from src.config import COLLECTOR


DEFAULT_MAX_TOTAL_BYTES = 512 * 1024 * 1024


@dataclass(frozen=True)
class ArtifactExtractionResult:
    extracted_paths: List[Path]
    skipped_entries: int
    truncated: bool

    @property
    def names(self) -> List[str]:
        return sorted(p.name for p in self.extracted_paths)


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    # external_attr carries the POSIX mode in its top 16 bits.
    mode = (int(info.external_attr) >> 16) & 0o170000
    return mode == stat.S_IFLNK


def _is_encrypted(info: zipfile.ZipInfo) -> bool:
    return bool(int(info.flag_bits) & 0x1)


def _member_name(name: str) -> Optional[str]:
    """Return the bare file name of a top-level member, or None."""
    normalized = (name or "").replace("\\", "/")
    if not normalized:
        return None
    p = PurePosixPath(normalized)
    if p.is_absolute() or len(p.parts) != 1:
        return None
    if p.name in {".", ".."}:
        return None
    return p.name


def list_artifact_members(bundle: Path) -> List[str]:
    """Names of the file entries in a bundle, as stored."""
    with zipfile.ZipFile(bundle) as zf:
        return sorted(info.filename for info in zf.infolist() if not info.is_dir())


def extract_artifact(
    bundle: Path,
    dest_dir: Path,
    *,
    allowed_names: Optional[Sequence[str]] = None,
    max_total_uncompressed_bytes: int = DEFAULT_MAX_TOTAL_BYTES,
) -> ArtifactExtractionResult:
    """Safely extract a published artifact bundle.

    Args:
        bundle: Path to the zip bundle.
        dest_dir: Directory into which files will be extracted.
        allowed_names: Member names that may be extracted; defaults to the
            configured collector output files.
        max_total_uncompressed_bytes: Hard cap on the sum of extracted sizes.

    Raises:
        zipfile.BadZipFile: When the bundle is not a valid zip.
        ValueError: When limits are invalid.
    """
    if max_total_uncompressed_bytes <= 0:
        raise ValueError("max_total_uncompressed_bytes must be > 0")

    allowed = set(allowed_names if allowed_names is not None else COLLECTOR.OUTPUT_FILES)

    dest_dir = Path(dest_dir).resolve()
    dest_dir.mkdir(parents=True, exist_ok=True)

    extracted: List[Path] = []
    skipped = 0
    truncated = False
    total_uncompressed = 0

    with zipfile.ZipFile(bundle) as zf:
        for info in zf.infolist():
            if info.is_dir() or _is_encrypted(info) or _is_symlink(info):
                skipped += 1
                continue

            name = _member_name(info.filename)
            if name is None or name not in allowed:
                skipped += 1
                continue

            size = int(info.file_size)
            if size < 0:
                skipped += 1
                continue

            if total_uncompressed + size > max_total_uncompressed_bytes:
                truncated = True
                break

            out_path = (dest_dir / name).resolve()
            if not out_path.is_relative_to(dest_dir):
                skipped += 1
                continue

            with zf.open(info) as src, open(out_path, "wb") as dst:
                shutil.copyfileobj(src, dst, length=1024 * 1024)

            extracted.append(out_path)
            total_uncompressed += size

    return ArtifactExtractionResult(extracted_paths=extracted, skipped_entries=skipped, truncated=truncated)
