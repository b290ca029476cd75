# pyright: standard

"""sevenzip-backup: sevenzip_backup/sevenzip/runner.py
Run the 7-Zip executable with retries, priority and CPU affinity.

Exit code contract: 0 = success, 1 = warning (e.g. locked files skipped),
anything else = error.
"""

import ctypes
import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .. import __util__
from .args import build_list_args, build_test_args

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_WARNING = 1

WINDOWS_PRIORITY_CLASSES = {
    "Idle": "IDLE_PRIORITY_CLASS",
    "BelowNormal": "BELOW_NORMAL_PRIORITY_CLASS",
    "Normal": "NORMAL_PRIORITY_CLASS",
    "AboveNormal": "ABOVE_NORMAL_PRIORITY_CLASS",
    "High": "HIGH_PRIORITY_CLASS",
}
POSIX_NICENESS = {"Idle": 19, "BelowNormal": 10}


@dataclass
class ExecutionResult:
    exit_code: int
    elapsed_seconds: float = 0.0
    attempts: int = 1
    stdout: str = ""
    stderr: str = ""


@dataclass
class ArchiveEntry:
    """One file listed by ``7z l -slt``."""

    path: str
    size: int = 0
    modified: str = ""
    attributes: str = ""
    crc: str = ""
    is_dir: bool = False


def parse_affinity(affinity: str) -> set[int]:
    """Parse ``"0,1,3"`` or a hex mask like ``"0x5"`` into CPU numbers."""
    affinity = affinity.strip()
    if not affinity:
        return set()
    if affinity.lower().startswith("0x"):
        mask = int(affinity, 16)
        return {bit for bit in range(mask.bit_length()) if mask & (1 << bit)}
    cpus = set()
    for part in affinity.split(","):
        part = part.strip()
        if part:
            cpus.add(int(part))
    return cpus


def parse_technical_listing(output: str) -> list[ArchiveEntry]:
    """Parse the ``-slt`` listing into entries (archive header excluded)."""
    entries = []
    _, sep, body = output.partition("\n----------")
    if not sep:
        return entries

    block: dict[str, str] = {}
    for line in body.splitlines() + [""]:
        line = line.rstrip("\r")
        if not line.strip():
            if "Path" in block:
                attributes = block.get("Attributes", "")
                flags = attributes.split()[0] if attributes.split() else ""
                size = block.get("Size", "")
                entries.append(
                    ArchiveEntry(
                        path=block["Path"],
                        size=int(size) if size.isdigit() else 0,
                        modified=block.get("Modified", ""),
                        attributes=attributes,
                        crc=block.get("CRC", ""),
                        is_dir=block.get("Folder") == "+" or "D" in flags,
                    )
                )
            block = {}
            continue
        key, eq, value = line.partition(" = ")
        if eq:
            block[key.strip()] = value.strip()
    return entries


class SevenZipRunner:
    """Invoke 7-Zip as an opaque subprocess."""

    def __init__(
        self,
        executable: str = "7z",
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.executable = executable
        self._popen = popen
        self._sleep = sleep

    def _popen_kwargs(self, priority: str) -> dict:
        kwargs: dict = {}
        if __util__.is_windows():
            flag = getattr(subprocess, WINDOWS_PRIORITY_CLASSES.get(priority, ""), 0)
            if flag:
                kwargs["creationflags"] = flag
        elif priority in POSIX_NICENESS:
            niceness = POSIX_NICENESS[priority]
            kwargs["preexec_fn"] = lambda: os.nice(niceness)
        return kwargs

    @staticmethod
    def _apply_affinity(process, affinity: str) -> None:
        cpus = parse_affinity(affinity)
        if not cpus:
            return
        try:
            if __util__.is_windows():
                mask = sum(1 << cpu for cpu in cpus)
                handle = int(process._handle)  # pylint: disable=protected-access
                ctypes.windll.kernel32.SetProcessAffinityMask(handle, mask)  # type: ignore[attr-defined]
            elif hasattr(os, "sched_setaffinity"):
                os.sched_setaffinity(process.pid, cpus)
            logger.debug("7-Zip CPU affinity set to %s", sorted(cpus))
        except (OSError, AttributeError, ValueError) as e:
            logger.warning("Could not set 7-Zip CPU affinity %r: %s", affinity, e)

    def _run_once(
        self,
        args: list[str],
        priority: str = "Normal",
        affinity: str = "",
        password: Optional[str] = None,
        capture: bool = False,
    ) -> ExecutionResult:
        command = [self.executable] + args
        if password:
            command.append(f"-p{password}")
        shown = [a if not a.startswith("-p") or a == "-p" else "-p********" for a in command]
        logger.debug("7-Zip command: %s", " ".join(shown))

        start = time.monotonic()
        try:
            process = self._popen(
                command,
                stdout=subprocess.PIPE if capture else subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                **self._popen_kwargs(priority),
            )
        except FileNotFoundError as e:
            raise __util__.AbortError(f"7-Zip executable not found: {self.executable}") from e
        self._apply_affinity(process, affinity)
        stdout, stderr = process.communicate()
        return ExecutionResult(
            exit_code=process.returncode,
            elapsed_seconds=time.monotonic() - start,
            stdout=stdout or "",
            stderr=stderr or "",
        )

    def _with_retries(
        self,
        run: Callable[[], ExecutionResult],
        enable_retries: bool,
        max_attempts: int,
        delay_seconds: int,
        treat_warnings_as_success: bool,
        what: str,
    ) -> ExecutionResult:
        ok_codes = {EXIT_SUCCESS, EXIT_WARNING} if treat_warnings_as_success else {EXIT_SUCCESS}
        attempts_allowed = max(max_attempts, 1) if enable_retries else 1
        total = 0.0
        result = ExecutionResult(exit_code=-1)
        for attempt in range(1, attempts_allowed + 1):
            result = run()
            total += result.elapsed_seconds
            result.attempts = attempt
            if result.exit_code in ok_codes:
                break
            if attempt < attempts_allowed:
                logger.warning(
                    "7-Zip %s attempt %d/%d exited with code %d; retrying in %ds",
                    what,
                    attempt,
                    attempts_allowed,
                    result.exit_code,
                    delay_seconds,
                )
                self._sleep(delay_seconds)
        result.elapsed_seconds = total
        return result

    def execute(
        self,
        args: list[str],
        priority: str = "Normal",
        affinity: str = "",
        password: Optional[str] = None,
        *,
        enable_retries: bool = False,
        max_attempts: int = 1,
        delay_seconds: int = 0,
        treat_warnings_as_success: bool = False,
    ) -> ExecutionResult:
        """Run an archive operation, retrying failed attempts if enabled."""
        return self._with_retries(
            lambda: self._run_once(args, priority, affinity, password),
            enable_retries,
            max_attempts,
            delay_seconds,
            treat_warnings_as_success,
            "archive",
        )

    def test(
        self,
        archive_path: str,
        password: Optional[str] = None,
        *,
        enable_retries: bool = False,
        max_attempts: int = 1,
        delay_seconds: int = 0,
        treat_warnings_as_success: bool = False,
    ) -> ExecutionResult:
        """Test archive integrity (``7z t``)."""
        return self._with_retries(
            lambda: self._run_once(build_test_args(archive_path), password=password),
            enable_retries,
            max_attempts,
            delay_seconds,
            treat_warnings_as_success,
            "test",
        )

    def list_contents(
        self, archive_path: str, password: Optional[str] = None
    ) -> list[ArchiveEntry]:
        """List archive contents. Raises AbortError if 7-Zip fails."""
        result = self._run_once(
            build_list_args(archive_path), password=password, capture=True
        )
        if result.exit_code not in (EXIT_SUCCESS, EXIT_WARNING):
            raise __util__.AbortError(
                f"Listing {archive_path} failed with exit code {result.exit_code}: "
                f"{result.stderr.strip()}"
            )
        return parse_technical_listing(result.stdout)
