# pyright: standard

"""Upload staged files with the OpenSSH ``scp`` and ``ssh`` clients."""

import logging
import subprocess
import time
from pathlib import Path

from .. import __util__
from ..config.schema import ResolvedTarget
from .common import TargetProvider, TransferContext, TransferOutcome

logger = logging.getLogger(__name__)


class SFTPTargetProvider(TargetProvider):
    """Target type ``SFTP``.

    TargetSpecificSettings:
        SFTPServerAddress: Host name or address (required)
        SFTPRemotePath: Remote directory (required)
        SFTPUserName: Remote user; the ssh default user when omitted
        SFTPPort: Port, default 22
        SFTPKeyFilePath: Private key file passed with ``-i``
        CreateJobNameSubdirectory: Put files under a directory named after the job
    """

    type_name = "SFTP"

    def __init__(self, ssh: str = "ssh", scp: str = "scp") -> None:
        self.ssh = ssh
        self.scp = scp

    @staticmethod
    def _options(target: ResolvedTarget, port_flag: str) -> list[str]:
        specific = target.specific
        options = ["-o", "BatchMode=yes", port_flag, str(specific.get("SFTPPort", 22))]
        key_file = specific.get("SFTPKeyFilePath")
        if key_file:
            options += ["-i", str(key_file)]
        return options

    @staticmethod
    def _host(target: ResolvedTarget) -> str:
        host = str(TargetProvider.required_setting(target, "SFTPServerAddress"))
        user = target.specific.get("SFTPUserName")
        return f"{user}@{host}" if user else host

    def _run(self, command: list[str]) -> subprocess.CompletedProcess:
        return __util__.exec_subprocess(
            command, capture_output=True, text=True, check=False, stdin=subprocess.DEVNULL
        )

    def transfer(
        self, local_file: Path, target: ResolvedTarget, context: TransferContext
    ) -> TransferOutcome:
        try:
            host = self._host(target)
            remote_dir = self.remote_join(
                str(self.required_setting(target, "SFTPRemotePath")),
                self.job_subdirectory(target, context),
            )
        except ValueError as e:
            return TransferOutcome(False, error_message=str(e))
        remote_path = self.remote_join(remote_dir, local_file.name)

        if context.simulate:
            logger.info("SIMULATE: would upload %s to %s:%s", local_file, host, remote_path)
            return TransferOutcome(True, remote_path=remote_path)

        start = time.monotonic()
        try:
            mkdir = self._run(
                [self.ssh] + self._options(target, "-p") + [host, "mkdir", "-p", remote_dir]
            )
            if mkdir.returncode != 0:
                return TransferOutcome(
                    False,
                    remote_path=remote_path,
                    error_message=f"Cannot create {remote_dir} on {host}: {mkdir.stderr.strip()}",
                )
            upload = self._run(
                [self.scp, "-q"]
                + self._options(target, "-P")
                + [str(local_file), f"{host}:{remote_path}"]
            )
        except __util__.AbortError as e:
            return TransferOutcome(False, remote_path=remote_path, error_message=str(e))

        if upload.returncode != 0:
            logger.error("scp of %s failed: %s", local_file.name, upload.stderr.strip())
            return TransferOutcome(
                False,
                remote_path=remote_path,
                error_message=f"scp exited with {upload.returncode}: {upload.stderr.strip()}",
            )
        duration = time.monotonic() - start
        return TransferOutcome(
            True, remote_path, "", duration, local_file.stat().st_size
        )
