"""Tests for checksum files and manifests."""

import hashlib

import pytest

from sevenzip_backup.core import checksum


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / "Docs [2024-01-01].7z"
    path.write_bytes(b"archive contents")
    return path


class TestFileHash:
    """Tests for file_hash."""

    def test_uppercase_digest(self, archive):
        """Test digests are upper-case hex of the file bytes."""
        expected = hashlib.sha256(b"archive contents").hexdigest().upper()
        assert checksum.file_hash(archive) == expected

    def test_algorithm_case_insensitive(self, archive):
        """Test lower-case algorithm names are accepted."""
        assert checksum.file_hash(archive, "md5") == checksum.file_hash(archive, "MD5")

    def test_unknown_algorithm(self, archive):
        """Test unsupported algorithms raise ValueError."""
        with pytest.raises(ValueError, match="Unsupported"):
            checksum.file_hash(archive, "CRC32")


class TestParseLine:
    """Tests for parse_line."""

    def test_filename_with_spaces(self):
        """Test only the first double space separates digest and name."""
        assert checksum.parse_line("ABC  My  File.7z\n") == ("ABC", "My  File.7z")

    def test_malformed(self):
        """Test a line without a separator raises ValueError."""
        with pytest.raises(ValueError):
            checksum.parse_line("ABC file.7z")


class TestChecksumFile:
    """Tests for writing and verifying single archive checksums."""

    def test_write_then_verify(self, archive, tmp_path):
        """Test a freshly written checksum verifies cleanly."""
        target = tmp_path / "Docs [2024-01-01].7z.sha256"
        digest = checksum.write_checksum_file(archive, target, "SHA256")

        assert target.read_text() == f"{digest}  {archive.name}\n"
        assert checksum.verify_checksum_file(target, "SHA256") == []

    def test_modified_archive_fails(self, archive, tmp_path):
        """Test changing the archive after hashing is detected."""
        target = tmp_path / "Docs [2024-01-01].7z.sha256"
        checksum.write_checksum_file(archive, target, "SHA256")
        archive.write_bytes(b"tampered")

        problems = checksum.verify_checksum_file(target, "SHA256")

        assert len(problems) == 1
        assert "mismatch" in problems[0]

    def test_missing_checksum_file(self, tmp_path):
        """Test a missing checksum file is reported, not raised."""
        problems = checksum.verify_checksum_file(tmp_path / "nope.sha256", "SHA256")
        assert "not found" in problems[0]

    def test_empty_checksum_file(self, tmp_path):
        """Test an empty checksum file is a problem."""
        target = tmp_path / "empty.sha256"
        target.write_text("")
        assert "empty" in checksum.verify_checksum_file(target, "SHA256")[0]

    def test_listed_file_missing(self, tmp_path):
        """Test a listed file that does not exist is reported."""
        target = tmp_path / "x.sha256"
        target.write_text("ABCDEF  gone.7z\n")
        assert checksum.verify_checksum_file(target, "SHA256") == ["Listed file is missing: gone.7z"]


class TestSplitManifest:
    """Tests for split volume manifests."""

    def _volumes(self, tmp_path, count=3):
        volumes = []
        for n in range(count, 0, -1):
            path = tmp_path / f"Docs [2024-01-01].7z.{n:03d}"
            path.write_bytes(b"volume %d" % n)
            volumes.append(path)
        return volumes

    def test_one_sorted_line_per_volume(self, tmp_path):
        """Test volumes are listed once each in name order."""
        volumes = self._volumes(tmp_path)
        manifest = tmp_path / "Docs [2024-01-01].7z.manifest.sha256"

        failed = checksum.write_split_manifest(volumes, manifest, "SHA256")

        lines = manifest.read_text().splitlines()
        assert failed == []
        assert [checksum.parse_line(line)[1] for line in lines] == [
            "Docs [2024-01-01].7z.001",
            "Docs [2024-01-01].7z.002",
            "Docs [2024-01-01].7z.003",
        ]
        assert checksum.verify_checksum_file(manifest, "SHA256") == []

    def test_unreadable_volume_gets_marker(self, tmp_path):
        """Test a volume that cannot be hashed is marked in the manifest."""
        volumes = self._volumes(tmp_path, 2)
        volumes.append(tmp_path / "Docs [2024-01-01].7z.003")
        manifest = tmp_path / "m.sha256"

        failed = checksum.write_split_manifest(volumes, manifest, "SHA256")

        assert failed == ["Docs [2024-01-01].7z.003"]
        assert f"{checksum.ERROR_MARKER}  Docs [2024-01-01].7z.003" in manifest.read_text()
        problems = checksum.verify_checksum_file(manifest, "SHA256")
        assert problems == ["No checksum was generated for Docs [2024-01-01].7z.003"]


class TestContentsManifest:
    """Tests for write_contents_manifest."""

    def test_files_only_with_quoting(self, tmp_path, archive_entries):
        """Test directories are skipped and quotes in paths are doubled."""
        manifest = tmp_path / "x.contents.manifest"

        count = checksum.write_contents_manifest(archive_entries, manifest)

        assert count == 2
        assert manifest.read_text().splitlines() == [
            checksum.CONTENTS_HEADER,
            'ABCD1234,4,2024-01-02 03:04:05,A,"docs/a.txt"',
            '0000FFFF,7,2024-01-02 03:04:06,A,"docs/""quoted"".txt"',
        ]
