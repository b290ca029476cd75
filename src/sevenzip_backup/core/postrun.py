"""System action (shutdown, restart ...) after a run."""

import logging
import time
from typing import Callable, Optional

from .. import __util__
from ..config.schema import PostRunActionSettings

logger = logging.getLogger(__name__)

ACTIONS = ("None", "Shutdown", "Restart", "Hibernate", "LogOff", "Sleep", "Lock")


def action_command(settings: PostRunActionSettings) -> tuple[list[str], bool]:
    """Windows command line for the action, and whether it handles the delay itself."""
    force = ["/f"] if settings.force_action else []
    delay = ["/t", str(settings.delay_seconds)]
    commands = {
        "Shutdown": (["shutdown", "/s"] + delay + force, True),
        "Restart": (["shutdown", "/r"] + delay + force, True),
        "Hibernate": (["shutdown", "/h"] + force, False),
        "LogOff": (["shutdown", "/l"] + force, False),
        "Sleep": (["rundll32.exe", "powrprof.dll,SetSuspendState", "0,1,0"], False),
        "Lock": (["rundll32.exe", "user32.dll,LockWorkStation"], False),
    }
    if settings.action not in commands:
        raise ValueError(f"Unknown post-run action: {settings.action}")
    return commands[settings.action]


def perform_post_run_action(
    settings: Optional[PostRunActionSettings],
    status: str,
    simulate: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[str]:
    """Carry out the action if it is enabled and ``status`` triggers it.

    Returns:
        The action name when it was performed or simulated, else None
    """
    if settings is None or not settings.enabled or settings.action == "None":
        return None
    if not settings.triggers_on(status):
        logger.info(
            "Post-run action %s not triggered by status %s (triggers: %s)",
            settings.action,
            status,
            ", ".join(settings.trigger_on_status),
        )
        return None

    command, handles_delay = action_command(settings)
    if simulate:
        logger.info(
            "SIMULATE: would run post-run action %s after %ds: %s",
            settings.action,
            settings.delay_seconds,
            " ".join(command),
        )
        return settings.action
    if not __util__.is_windows():
        logger.warning("Post-run action %s is only supported on Windows", settings.action)
        return None

    if settings.delay_seconds > 0 and not handles_delay:
        logger.info("Post-run action %s in %d seconds", settings.action, settings.delay_seconds)
        sleep(settings.delay_seconds)
    logger.info("Performing post-run action: %s", settings.action)
    result = __util__.exec_subprocess(command, check=False)
    if result.returncode != 0:
        logger.error("Post-run action %s failed with exit code %d", settings.action, result.returncode)
        return None
    return settings.action
