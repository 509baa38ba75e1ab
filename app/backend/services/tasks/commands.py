"""Pre/post backup shell commands."""

from __future__ import annotations

import subprocess
from typing import Optional

from api.logging_config import get_logger
from backend.exceptions import CommandError

logger = get_logger(__name__)


def run_shell_command(command: str, *, timeout: Optional[float] = None) -> str:
    """Run a shell command line and return its output.

    Args:
        command: Command line, interpreted by the shell.
        timeout: Optional timeout in seconds.

    Returns:
        str: Combined stdout/stderr.

    Raises:
        CommandError: When the command cannot be started, times out or exits nonzero.
    """

    logger.debug("Running shell command: %s", command)
    try:
        result = subprocess.run(
            command,
            shell=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise CommandError(f"Failed to run command {command!r}: {exc}", command=command) from exc

    output = "\n".join(part for part in (result.stdout, result.stderr) if part)
    if result.returncode != 0:
        raise CommandError(
            f"Command {command!r} exited with {result.returncode}: {output.strip()}",
            command=command,
            returncode=result.returncode,
            output=output,
        )

    logger.trace("Command output (command=%s): %s", command, output)  # type: ignore[attr-defined]
    return output
