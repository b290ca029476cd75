"""Obtain the archive password for a job."""

import logging
import os
from pathlib import Path
from typing import Callable, Optional

from rich.prompt import Prompt

from ..__util__ import CredentialError
from ..config.schema import EffectiveJobConfig, RunMode

logger = logging.getLogger(__name__)


def _ask(job_name: str) -> str:
    return Prompt.ask(f"Archive password for job '{job_name}'", password=True)


def get_archive_password(
    effective: EffectiveJobConfig,
    run_mode: RunMode = RunMode.NON_INTERACTIVE,
    prompt: Callable[[str], str] = _ask,
) -> Optional[str]:
    """Return the password selected by ``ArchivePasswordMethod``, or None.

    Raises:
        CredentialError: The configured method cannot supply a password
    """
    method = effective.archive_password_method
    job = effective.job_name
    if method == "None":
        return None

    if method == "PlainText":
        password = effective.archive_password_plain_text
        if not password:
            raise CredentialError(f"Job '{job}': ArchivePasswordPlainText is empty")
        logger.warning("Job '%s' stores its archive password in plain text", job)
        return password

    if method == "SecretFile":
        path = effective.archive_password_file_path
        if not path:
            raise CredentialError(f"Job '{job}': ArchivePasswordFilePath is not set")
        try:
            password = Path(path).read_text(encoding="utf-8").strip()
        except OSError as e:
            raise CredentialError(f"Job '{job}': cannot read password file {path}: {e}") from e
        if not password:
            raise CredentialError(f"Job '{job}': password file {path} is empty")
        return password

    if method == "EnvironmentVariable":
        name = effective.archive_password_secret_name
        if not name:
            raise CredentialError(f"Job '{job}': ArchivePasswordSecretName is not set")
        password = os.environ.get(name)
        if not password:
            raise CredentialError(f"Job '{job}': environment variable {name} is not set")
        return password

    if method == "Interactive":
        if run_mode is not RunMode.INTERACTIVE:
            raise CredentialError(
                f"Job '{job}' needs an interactive password but no terminal is available"
            )
        if effective.simulate:
            logger.info("SIMULATE: would prompt for the archive password")
            return None
        try:
            password = prompt(job)
        except EOFError as e:
            raise CredentialError(f"Job '{job}': no password entered") from e
        if not password:
            raise CredentialError(f"Job '{job}': no password entered")
        return password

    raise CredentialError(f"Job '{job}': unknown ArchivePasswordMethod '{method}'")
