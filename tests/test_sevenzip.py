"""Tests for 7-Zip argument building and the runner."""

import pytest

from sevenzip_backup.__util__ import AbortError
from sevenzip_backup.sevenzip import SevenZipRunner, build_archive_args
from sevenzip_backup.sevenzip.runner import parse_affinity, parse_technical_listing

LISTING = """
7-Zip 23.01 (x64)

Listing archive: Docs.7z

--
Path = Docs.7z
Type = 7z
Physical Size = 1234

----------
Path = docs
Size = 0
Modified = 2024-01-02 03:04:05
Attributes = D
CRC =
Folder = +

Path = docs\\a.txt
Size = 4
Modified = 2024-01-02 03:04:05
Attributes = A
CRC = ABCD1234
Folder = -
"""


class FakeProcess:
    def __init__(self, returncode, stdout=""):
        self.returncode = returncode
        self.pid = 4242
        self._stdout = stdout

    def communicate(self):
        return self._stdout, ""


class FakePopen:
    """Records commands and replays a list of exit codes."""

    def __init__(self, codes, stdout=""):
        self.codes = list(codes)
        self.stdout = stdout
        self.commands = []

    def __call__(self, command, **kwargs):
        self.commands.append(command)
        return FakeProcess(self.codes.pop(0), self.stdout)


class TestBuildArchiveArgs:
    """Tests for build_archive_args."""

    def test_order(self, make_effective):
        """Test switches come before the target and sources."""
        effective = make_effective(
            compression_level="-mx=9",
            temp_directory="T:/tmp",
            exclude_list_file="ex.txt",
        )
        args = build_archive_args(effective, "D:/out.7z", ["C:/a", "C:/b"])

        assert args[0] == "a"
        assert args[1:3] == ["-t7z", "-mx=9"]
        assert "-ssw" in args
        assert args[-6:] == ["-wT:/tmp", "-x@ex.txt", "-y", "D:/out.7z", "C:/a", "C:/b"]
        assert "-mhe=on" not in args

    def test_empty_values_omitted(self, make_effective):
        effective = make_effective(dictionary_size="", word_size="", compress_open_files=False)
        args = build_archive_args(effective, "out.7z", ["src"])
        assert "" not in args
        assert "-ssw" not in args

    def test_split_beats_sfx(self, make_effective):
        """Test SFX is not requested for split archives."""
        effective = make_effective(create_sfx=True, split_volume_size="700m")
        args = build_archive_args(effective, "out.7z", ["src"])
        assert "-v700m" in args
        assert not any(a.startswith("-sfx") for a in args)

    def test_sfx_module(self, make_effective):
        effective = make_effective(create_sfx=True, sfx_module="GUI")
        assert "-sfx7z.sfx" in build_archive_args(effective, "out.exe", ["src"])

    def test_header_encryption_only_for_7z(self, make_effective):
        """Test -mhe=on is added only for 7z archives with a password."""
        seven = build_archive_args(make_effective(), "o.7z", ["s"], has_password=True)
        zipped = build_archive_args(
            make_effective(archive_type="-tzip"), "o.zip", ["s"], has_password=True
        )
        assert "-mhe=on" in seven
        assert "-mhe=on" not in zipped


class TestParsing:
    """Tests for listing and affinity parsing."""

    def test_technical_listing(self):
        """Test the archive header is skipped and folders are flagged."""
        entries = parse_technical_listing(LISTING)
        assert [e.path for e in entries] == ["docs", "docs\\a.txt"]
        assert entries[0].is_dir
        assert not entries[1].is_dir
        assert entries[1].size == 4
        assert entries[1].crc == "ABCD1234"

    def test_listing_without_entries(self):
        assert parse_technical_listing("garbage") == []

    @pytest.mark.parametrize(
        "value,expected",
        [("", set()), ("0,2", {0, 2}), ("0x5", {0, 2}), (" 3 , ", {3})],
    )
    def test_affinity(self, value, expected):
        assert parse_affinity(value) == expected


class TestRunner:
    """Tests for SevenZipRunner."""

    def test_retries_until_success(self):
        """Test failed attempts are retried with a delay."""
        popen = FakePopen([2, 2, 0])
        slept = []
        runner = SevenZipRunner("7z", popen=popen, sleep=slept.append)

        result = runner.execute(["a", "x.7z"], enable_retries=True, max_attempts=3, delay_seconds=5)

        assert result.exit_code == 0
        assert result.attempts == 3
        assert slept == [5, 5]

    def test_no_retries_when_disabled(self):
        popen = FakePopen([2])
        runner = SevenZipRunner("7z", popen=popen, sleep=lambda s: None)
        result = runner.execute(["a"], enable_retries=False, max_attempts=5)
        assert result.attempts == 1
        assert result.exit_code == 2

    def test_warning_retried_unless_success(self):
        """Test exit code 1 is retried unless warnings count as success."""
        runner = SevenZipRunner("7z", popen=FakePopen([1, 0]), sleep=lambda s: None)
        assert runner.execute(["a"], enable_retries=True, max_attempts=2).attempts == 2

        runner = SevenZipRunner("7z", popen=FakePopen([1]), sleep=lambda s: None)
        result = runner.execute(
            ["a"], enable_retries=True, max_attempts=2, treat_warnings_as_success=True
        )
        assert result.attempts == 1
        assert result.exit_code == 1

    def test_password_appended(self):
        popen = FakePopen([0])
        SevenZipRunner("7z", popen=popen).execute(["a", "x.7z"], password="pw")
        assert popen.commands[0] == ["7z", "a", "x.7z", "-ppw"]

    def test_missing_executable(self):
        """Test a missing 7-Zip aborts the job."""

        def popen(command, **kwargs):
            raise FileNotFoundError(command[0])

        with pytest.raises(AbortError, match="not found"):
            SevenZipRunner("nope7z", popen=popen).execute(["a"])

    def test_list_contents(self):
        popen = FakePopen([0], stdout=LISTING)
        entries = SevenZipRunner("7z", popen=popen).list_contents("Docs.7z")
        assert popen.commands[0] == ["7z", "l", "-slt", "Docs.7z"]
        assert len(entries) == 2

    def test_list_failure(self):
        with pytest.raises(AbortError, match="exit code 2"):
            SevenZipRunner("7z", popen=FakePopen([2])).list_contents("Docs.7z")
