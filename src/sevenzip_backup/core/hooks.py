"""User hook scripts run before and after a job."""

import logging
import os
import subprocess
from pathlib import Path
from typing import Optional

from .. import __util__
from ..__util__ import HookError
from ..config.schema import EffectiveJobConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "SEVENZIP_BACKUP_"


def hook_command(script_path: str) -> list[str]:
    if script_path.lower().endswith(".ps1"):
        return ["powershell.exe", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File", script_path]
    return [script_path]


def run_hook(
    script_path: Optional[str],
    effective: EffectiveJobConfig,
    status: str = "",
    archive_path: str = "",
    kind: str = "hook",
) -> bool:
    """Run one hook script. Returns False if there was nothing to run.

    Raises:
        HookError: The script is missing or exits non-zero
    """
    if not script_path:
        return False
    if not Path(script_path).is_file():
        raise HookError(f"{kind} script not found: {script_path}")

    env = dict(os.environ)
    env.update(
        {
            f"{ENV_PREFIX}JOB": effective.job_name,
            f"{ENV_PREFIX}STATUS": status,
            f"{ENV_PREFIX}ARCHIVE": archive_path,
            f"{ENV_PREFIX}SIMULATE": "1" if effective.simulate else "0",
        }
    )
    command = hook_command(script_path)
    if effective.simulate:
        logger.info("SIMULATE: would run %s script %s", kind, script_path)
        return True

    logger.info("Running %s script: %s", kind, script_path)
    try:
        result = __util__.exec_subprocess(
            command, env=env, capture_output=True, text=True, check=False
        )
    except __util__.AbortError as e:
        raise HookError(f"{kind} script could not be started: {e}") from e
    for line in (result.stdout or "").splitlines():
        logger.info("[%s] %s", kind, line)
    if result.returncode != 0:
        raise HookError(
            f"{kind} script {script_path} exited with code {result.returncode}: "
            f"{(result.stderr or '').strip()}"
        )
    return True


def run_post_hooks(effective: EffectiveJobConfig, status: str, archive_path: str = "") -> list[str]:
    """Run the post-backup scripts that match ``status``. Failures become warnings."""
    scripts = []
    if status in ("SUCCESS", "WARNINGS"):
        scripts.append(("post-backup success", effective.post_backup_script_on_success_path))
    else:
        scripts.append(("post-backup failure", effective.post_backup_script_on_failure_path))
    scripts.append(("post-backup always", effective.post_backup_script_always_path))

    problems = []
    for kind, script in scripts:
        try:
            run_hook(script, effective, status, archive_path, kind)
        except HookError as e:
            logger.warning("%s", e)
            problems.append(str(e))
    return problems
