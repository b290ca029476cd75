"""Hyper-V checkpoint provider driven through PowerShell."""

import json
import logging
import subprocess
import uuid

from .. import __util__
from .common import SnapshotProvider, SnapshotSession

logger = logging.getLogger(__name__)

POWERSHELL = ["powershell.exe", "-NoProfile", "-NonInteractive", "-Command"]


class HyperVSnapshotProvider(SnapshotProvider):
    """Checkpoint a virtual machine and mount its disks read-only."""

    type_name = "HyperV"

    def _powershell(self, script: str, timeout: int | None = None) -> str:
        timeout = timeout or int(self.settings.get("TimeoutSeconds", 300))
        try:
            result = __util__.exec_subprocess(
                POWERSHELL + [script],
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise __util__.SnapshotTimeoutError(
                f"Hyper-V command did not finish within {timeout} seconds"
            ) from e
        if result.returncode != 0:
            raise __util__.SourceResolutionError(result.stderr.strip() or "PowerShell failed")
        return result.stdout.strip()

    def create_snapshot(self, resource_name: str) -> SnapshotSession:
        name = f"sevenzip-backup-{uuid.uuid4().hex[:8]}"
        host = self.settings.get("ComputerName")
        host_arg = f" -ComputerName '{host}'" if host else ""
        script = (
            f"$cp = Checkpoint-VM -Name '{resource_name}' -SnapshotName '{name}'"
            f"{host_arg} -Passthru; $cp.Id.ToString()"
        )
        logger.info("Creating Hyper-V checkpoint '%s' of VM '%s'", name, resource_name)
        try:
            checkpoint_id = self._powershell(script)
        except __util__.SnapshotTimeoutError:
            raise
        except __util__.AbortError as e:
            return SnapshotSession(False, error_message=str(e), resource_name=resource_name)
        return SnapshotSession(
            True,
            session_id=checkpoint_id,
            resource_name=resource_name,
            provider_name=self.type_name,
            details={"checkpoint_name": name, "vhd_paths": []},
        )

    def get_mount_paths(self, session: SnapshotSession) -> list[str]:
        listing = self._powershell(
            f"Get-VMSnapshot -Id '{session.session_id}' | Get-VMHardDiskDrive | "
            "ForEach-Object { $_.Path }"
        )
        disks = [line.strip() for line in listing.splitlines() if line.strip()]
        vhd_paths = session.details.setdefault("vhd_paths", [])
        mounts = []
        for disk in disks:
            # Recorded before mounting so a failed or hung mount is still dismounted.
            vhd_paths.append(disk)
            output = self._powershell(
                f"$v = Mount-VHD -Path '{disk}' -ReadOnly -Passthru | Get-Disk | "
                "Get-Partition | Get-Volume | Where-Object DriveLetter; "
                "ConvertTo-Json -InputObject @($v | ForEach-Object "
                "{ \"$($_.DriveLetter):\\\" }) -Compress"
            )
            drives = json.loads(output or "[]")
            mounts.extend([drives] if isinstance(drives, str) else drives)
        logger.info("Mounted checkpoint disks at: %s", ", ".join(mounts) or "(none)")
        return mounts

    def dismount(self, session: SnapshotSession) -> None:
        failures = []
        for vhd in session.details.get("vhd_paths", []):
            logger.debug("Dismounting %s", vhd)
            try:
                self._powershell(f"Dismount-VHD -Path '{vhd}'")
            except __util__.AbortError as e:
                logger.error("Could not dismount %s: %s", vhd, e)
                failures.append(f"{vhd}: {e}")
        if session.success and session.session_id:
            logger.info("Removing Hyper-V checkpoint %s", session.session_id)
            self._powershell(f"Get-VMSnapshot -Id '{session.session_id}' | Remove-VMSnapshot")
        if failures:
            raise __util__.SourceResolutionError(
                "Dismount failed for " + "; ".join(failures)
            )
