# pyright: standard

"""sevenzip-backup: sevenzip_backup/core/checksum.py
Checksum files, split volume manifests and contents manifests.

Checksum lines have the form ``HASH  filename`` with an upper-case hex
digest, which is what ``sha256sum``-style tools and 7-Zip's own hash
listing accept.
"""

import hashlib
import logging
from pathlib import Path
from typing import Iterable

from ..sevenzip.runner import ArchiveEntry

logger = logging.getLogger(__name__)

ERROR_MARKER = "ERROR_GENERATING_CHECKSUM"
CHUNK_SIZE = 1024 * 1024

ALGORITHMS = {
    "MD5": "md5",
    "SHA1": "sha1",
    "SHA256": "sha256",
    "SHA384": "sha384",
    "SHA512": "sha512",
}

CONTENTS_HEADER = 'CRC,Size,Modified,Attributes,"Path"'


def file_hash(path: Path | str, algorithm: str = "SHA256") -> str:
    """Return the upper-case hex digest of ``path``.

    Raises:
        ValueError: Unsupported algorithm
        OSError: The file cannot be read
    """
    name = ALGORITHMS.get(algorithm.upper())
    if name is None:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
    digest = hashlib.new(name)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest().upper()


def format_line(digest: str, filename: str) -> str:
    return f"{digest}  {filename}"


def parse_line(line: str) -> tuple[str, str]:
    """Split a ``HASH  filename`` line.

    Raises:
        ValueError: The line is not in that form
    """
    digest, sep, filename = line.rstrip("\r\n").partition("  ")
    if not sep or not digest or not filename:
        raise ValueError(f"Malformed checksum line: {line!r}")
    return digest, filename


def write_checksum_file(archive_path: Path, checksum_file: Path, algorithm: str) -> str:
    """Hash a single archive and write its checksum file. Returns the digest."""
    digest = file_hash(archive_path, algorithm)
    checksum_file.write_text(format_line(digest, archive_path.name) + "\n", encoding="utf-8")
    logger.info("%s checksum written to %s", algorithm, checksum_file)
    return digest


def write_split_manifest(
    volumes: Iterable[Path], manifest_file: Path, algorithm: str
) -> list[str]:
    """Write one ``HASH  filename`` line per volume, sorted by name.

    A volume that cannot be hashed gets ``ERROR_GENERATING_CHECKSUM`` in
    place of its digest. Returns the names of such volumes.
    """
    lines = []
    failed = []
    for volume in sorted(volumes, key=lambda p: p.name):
        try:
            digest = file_hash(volume, algorithm)
        except OSError as e:
            logger.warning("Could not hash volume %s: %s", volume, e)
            digest = ERROR_MARKER
            failed.append(volume.name)
        lines.append(format_line(digest, volume.name))
    manifest_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
    logger.info("Split volume manifest (%d volumes) written to %s", len(lines), manifest_file)
    return failed


def verify_checksum_file(checksum_file: Path, algorithm: str) -> list[str]:
    """Recompute every hash listed in ``checksum_file``.

    Files are looked up next to the checksum file.

    Returns:
        A list of problems; empty when everything matches.
    """
    if not checksum_file.is_file():
        return [f"Checksum file not found: {checksum_file}"]
    try:
        text = checksum_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return [f"Cannot read checksum file {checksum_file}: {e}"]

    problems = []
    entries = 0
    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            expected, filename = parse_line(line)
        except ValueError as e:
            problems.append(str(e))
            continue
        entries += 1
        if expected == ERROR_MARKER:
            problems.append(f"No checksum was generated for {filename}")
            continue
        target = checksum_file.parent / filename
        if not target.is_file():
            problems.append(f"Listed file is missing: {filename}")
            continue
        try:
            actual = file_hash(target, algorithm)
        except OSError as e:
            problems.append(f"Cannot hash {filename}: {e}")
            continue
        if actual != expected.upper():
            problems.append(f"Checksum mismatch for {filename}: expected {expected}, got {actual}")
    if not entries and not problems:
        problems.append(f"Checksum file is empty: {checksum_file}")
    return problems


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def write_contents_manifest(entries: Iterable[ArchiveEntry], manifest_file: Path) -> int:
    """Write the per-file listing of an archive, skipping directories.

    Returns the number of files written.
    """
    lines = [CONTENTS_HEADER]
    for entry in entries:
        if entry.is_dir:
            continue
        lines.append(
            f"{entry.crc},{entry.size},{entry.modified},{entry.attributes},{_quote(entry.path)}"
        )
    manifest_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
    logger.info("Contents manifest (%d files) written to %s", len(lines) - 1, manifest_file)
    return len(lines) - 1
