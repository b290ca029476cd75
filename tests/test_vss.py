"""Tests for the diskshadow driven VSS manager."""

from pathlib import Path

import pytest

from sevenzip_backup import __util__
from sevenzip_backup.__util__ import SnapshotTimeoutError, SourceResolutionError
from sevenzip_backup.snapshot.vss import (
    VssManager,
    parse_diskshadow_output,
    script_encoding,
    shadow_path_for,
    volume_of,
)

DISKSHADOW_OUTPUT = r"""
Microsoft DiskShadow version 1.0
Alias SZB_C for shadow ID {11111111-2222-3333-4444-555555555555} set as environment variable.

Querying all shadow copies with the shadow copy set ID {aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee}

        * Shadow copy ID = {11111111-2222-3333-4444-555555555555}         %SZB_C%
                - Shadow copy set: {aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee}
                - Original count of shadow copies = 2
                - Original volume name: \\?\Volume{0000}\ [C:\]
                - Shadow copy device name: \\?\GLOBALROOT\Device\HarddiskVolumeShadowCopy7
        * Shadow copy ID = {66666666-7777-8888-9999-000000000000}         %SZB_D%
                - Original volume name: \\?\Volume{1111}\ [D:\]
                - Shadow copy device name: \\?\GLOBALROOT\Device\HarddiskVolumeShadowCopy8
"""


class FakeProcess:
    def __init__(self, returncode=0, finishes=True):
        self.returncode = returncode if finishes else None
        self._final = returncode
        self.finishes = finishes
        self.killed = False
        self.waited = False

    def poll(self):
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9

    def wait(self):
        self.waited = True
        return self.returncode


class FakePopen:
    """Writes canned diskshadow output to the log file it is given."""

    def __init__(self, output="", returncode=0, finishes=True):
        self.output = output
        self.returncode = returncode
        self.finishes = finishes
        self.commands = []
        self.scripts = []
        self.processes = []

    def __call__(self, command, stdout=None, **kwargs):
        self.commands.append(command)
        with open(command[-1], encoding=script_encoding()) as f:
            self.scripts.append(f.read())
        stdout.write(self.output)
        process = FakeProcess(self.returncode, self.finishes)
        self.processes.append(process)
        return process


class TestParsing:
    """Tests for the pure helpers."""

    def test_volume_of(self):
        """Test drive letter extraction."""
        assert volume_of("c:\\Data") == "C"
        assert volume_of("\\\\server\\share") is None
        assert volume_of("relative") is None

    def test_parse_output(self):
        """Test shadow ids and devices are mapped per volume."""
        shadows = parse_diskshadow_output(DISKSHADOW_OUTPUT)
        assert shadows == {
            "C": (
                "{11111111-2222-3333-4444-555555555555}",
                "\\\\?\\GLOBALROOT\\Device\\HarddiskVolumeShadowCopy7",
            ),
            "D": (
                "{66666666-7777-8888-9999-000000000000}",
                "\\\\?\\GLOBALROOT\\Device\\HarddiskVolumeShadowCopy8",
            ),
        }

    def test_shadow_path(self):
        """Test the drive is replaced by the shadow device."""
        device = "\\\\?\\GLOBALROOT\\Device\\HarddiskVolumeShadowCopy7"
        assert shadow_path_for("C:\\Users\\me", device) == device + "\\Users\\me"
        assert shadow_path_for("C:\\", device) == device + "\\"


class TestVssManager:
    """Tests for shadow copy creation and removal."""

    def test_create_maps_paths(self, tmp_path):
        """Test each path is rewritten to its volume's shadow."""
        popen = FakePopen(DISKSHADOW_OUTPUT)
        manager = VssManager(popen=popen, sleep=lambda s: None)

        mapping = manager.create_shadow_copies(
            ["C:\\Data", "D:\\Photos"], "Persistent NoWriters", str(tmp_path / "c.cab"), 30, 1
        )

        assert mapping == {
            "C:\\Data": "\\\\?\\GLOBALROOT\\Device\\HarddiskVolumeShadowCopy7\\Data",
            "D:\\Photos": "\\\\?\\GLOBALROOT\\Device\\HarddiskVolumeShadowCopy8\\Photos",
        }
        script = popen.scripts[0]
        assert "SET CONTEXT Persistent NoWriters" in script
        assert "ADD VOLUME C: ALIAS SZB_C" in script
        assert "ADD VOLUME D: ALIAS SZB_D" in script
        assert len(manager.shadow_ids) == 2

    def test_no_local_volumes(self):
        """Test that UNC-only sources yield None without running diskshadow."""
        popen = FakePopen()
        manager = VssManager(popen=popen)
        assert manager.create_shadow_copies(["\\\\srv\\share"], "Persistent", "c.cab", 5, 1) is None
        assert popen.commands == []

    def test_timeout(self):
        """Test a hung diskshadow is killed and reported as a timeout."""
        popen = FakePopen(finishes=False)
        manager = VssManager(popen=popen, sleep=lambda s: None)

        with pytest.raises(SnapshotTimeoutError):
            manager.create_shadow_copies(["C:\\Data"], "Persistent", "c.cab", 0, 1)
        assert popen.processes[0].killed

    def test_nonzero_exit(self):
        """Test diskshadow failures are source resolution errors."""
        manager = VssManager(popen=FakePopen("boom", returncode=1), sleep=lambda s: None)
        with pytest.raises(SourceResolutionError, match="exited with code 1"):
            manager.create_shadow_copies(["C:\\Data"], "Persistent", "c.cab", 30, 1)

    def test_remove(self):
        """Test removal deletes every created shadow by id."""
        popen = FakePopen(DISKSHADOW_OUTPUT)
        manager = VssManager(popen=popen, sleep=lambda s: None)
        manager.create_shadow_copies(["C:\\Data"], "Persistent", "c.cab", 30, 1)

        manager.remove_shadow_copies()

        assert "DELETE SHADOWS ID {11111111-2222-3333-4444-555555555555}" in popen.scripts[1]
        assert manager.shadow_ids == []

    def test_remove_without_shadows_is_noop(self):
        """Test removal does nothing when nothing was created."""
        popen = FakePopen()
        VssManager(popen=popen).remove_shadow_copies()
        assert popen.commands == []

    def test_failed_create_still_removes_created_shadows(self):
        """Test shadows listed before a failing exit are deleted afterwards."""
        popen = FakePopen(DISKSHADOW_OUTPUT, returncode=1)
        manager = VssManager(popen=popen, sleep=lambda s: None)
        with pytest.raises(SourceResolutionError):
            manager.create_shadow_copies(["C:\\Data", "D:\\Photos"], "Persistent", "c.cab", 30, 1)
        assert len(manager.shadow_ids) == 2

        popen.returncode = 0
        manager.remove_shadow_copies()

        assert "DELETE SHADOWS ID {11111111-2222-3333-4444-555555555555}" in popen.scripts[1]
        assert "DELETE SHADOWS ID {66666666-7777-8888-9999-000000000000}" in popen.scripts[1]
        assert manager.shadow_ids == []

    def test_timed_out_create_still_removes_created_shadows(self):
        """Test shadows logged before a timeout are tracked for removal."""
        popen = FakePopen(DISKSHADOW_OUTPUT, finishes=False)
        manager = VssManager(popen=popen, sleep=lambda s: None)
        with pytest.raises(SnapshotTimeoutError):
            manager.create_shadow_copies(["C:\\Data"], "Persistent", "c.cab", 0, 1)
        assert popen.processes[0].waited
        assert "{11111111-2222-3333-4444-555555555555}" in manager.shadow_ids

        popen.finishes = True
        manager.remove_shadow_copies()
        assert "DELETE SHADOWS ID {11111111-2222-3333-4444-555555555555}" in popen.scripts[1]

    def test_timeout_survives_locked_temp_files(self, monkeypatch):
        """Test a temp file that cannot be deleted does not mask the timeout."""

        def locked(self, missing_ok=False):
            raise PermissionError(13, "in use", str(self))

        monkeypatch.setattr(Path, "unlink", locked)
        manager = VssManager(popen=FakePopen(finishes=False), sleep=lambda s: None)
        with pytest.raises(SnapshotTimeoutError):
            manager.create_shadow_copies(["C:\\Data"], "Persistent", "c.cab", 0, 1)

    def test_cache_path_outside_code_page(self, monkeypatch):
        """Test a cache path the code page cannot hold fails before diskshadow runs."""
        monkeypatch.setattr(__util__, "is_windows", lambda: False)
        monkeypatch.setattr("locale.getpreferredencoding", lambda do_setlocale=True: "ascii")
        popen = FakePopen(DISKSHADOW_OUTPUT)
        manager = VssManager(popen=popen, sleep=lambda s: None)
        cache = "C:\\Sauvegardes\\métadonnées.cab"
        with pytest.raises(SourceResolutionError, match="code page"):
            manager.create_shadow_copies(["C:\\Data"], "Persistent", cache, 30, 1)
        assert popen.commands == []

    def test_cache_path_with_non_ascii_characters(self):
        """Test accented cache paths are written in the script code page."""
        popen = FakePopen(DISKSHADOW_OUTPUT)
        manager = VssManager(popen=popen, sleep=lambda s: None)
        cache = "C:\\Sauvegardes\\métadonnées.cab"
        try:
            cache.encode(script_encoding())
        except UnicodeEncodeError:
            pytest.skip("code page cannot hold the cache path")
        manager.create_shadow_copies(["C:\\Data"], "Persistent", cache, 30, 1)
        assert f'SET METADATA CACHE "{cache}"' in popen.scripts[0]
