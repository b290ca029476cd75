"""Names and discovery of the local files that make up one backup instance.

An instance is either a single archive (``Job [2024-Jan-01].7z``) or a
volume set (``Job [2024-Jan-01].7z.001``, ``.002`` ...), plus its sidecar
files. Sidecars are named after the instance base, which for a volume set
is the name without the volume number.
"""

import re
from pathlib import Path

VOLUME_SUFFIX_RE = re.compile(r"\.\d{3,}$")

CONTENTS_MANIFEST_SUFFIX = ".contents.manifest"
PIN_SUFFIX = ".pinned"


def instance_base(archive_path: Path | str) -> Path:
    """Path of the archive with any volume number stripped."""
    archive_path = Path(archive_path)
    return archive_path.with_name(VOLUME_SUFFIX_RE.sub("", archive_path.name))


def is_volume(archive_path: Path | str) -> bool:
    return bool(VOLUME_SUFFIX_RE.search(Path(archive_path).name))


def contents_manifest_path(archive_path: Path | str) -> Path:
    base = instance_base(archive_path)
    return base.with_name(base.name + CONTENTS_MANIFEST_SUFFIX)


def checksum_path(archive_path: Path | str, algorithm: str) -> Path:
    """Checksum sidecar: ``<archive>.<algo>`` or ``<base>.manifest.<algo>``."""
    base = instance_base(archive_path)
    if is_volume(archive_path):
        return base.with_name(f"{base.name}.manifest.{algorithm.lower()}")
    return base.with_name(f"{base.name}.{algorithm.lower()}")


def pin_path(archive_path: Path | str) -> Path:
    base = instance_base(archive_path)
    return base.with_name(base.name + PIN_SUFFIX)


def find_volumes(base: Path | str) -> list[Path]:
    """Existing volume files for ``base``, sorted by name."""
    base = Path(base)
    if not base.parent.is_dir():
        return []
    pattern = re.compile(re.escape(base.name) + VOLUME_SUFFIX_RE.pattern)
    return sorted(p for p in base.parent.iterdir() if p.is_file() and pattern.match(p.name))


def primary_files(archive_path: Path | str) -> list[Path]:
    """The archive itself, or every volume of its set."""
    archive_path = Path(archive_path)
    if is_volume(archive_path):
        return find_volumes(instance_base(archive_path))
    return [archive_path] if archive_path.is_file() else []


def sidecar_paths(archive_path: Path | str, algorithm: str) -> list[Path]:
    return [
        contents_manifest_path(archive_path),
        checksum_path(archive_path, algorithm),
        pin_path(archive_path),
    ]


def discover_staged_files(archive_path: Path | str, algorithm: str) -> list[Path]:
    """Primary files plus whichever expected sidecars exist, without duplicates."""
    files = primary_files(archive_path)
    for sidecar in sidecar_paths(archive_path, algorithm):
        if sidecar.is_file() and sidecar not in files:
            files.append(sidecar)
    return files
