"""Exception taxonomy for the backup service.

Startup errors (`ConfigurationError`, `AuthError`, `InitError`) are fatal and
stop the process before any job is scheduled. Runtime errors (`EngineError`,
`CommandError`, `PipelineError`, `RemoteStoreError`) are recorded against the
affected backup name or operation class and never stop the scheduler.
"""

from __future__ import annotations

from typing import Optional, Sequence


class AutoResticError(RuntimeError):
    """Base class for all service errors."""


class ConfigurationError(AutoResticError):
    """Raised when the configuration is missing values or is invalid."""


class AuthError(AutoResticError):
    """Raised when the repository exists but the password does not unlock it."""


class InitError(AutoResticError):
    """Raised when a new repository cannot be initialized."""


class EngineError(AutoResticError):
    """Raised when a restic invocation exits with a nonzero status.

    Attributes:
        command: The argument vector that was executed (without secrets).
        returncode: Process exit code, or None when the process did not start.
        output: Captured stdout/stderr of the invocation.
    """

    def __init__(
        self,
        message: str,
        *,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        output: str = "",
    ):
        self.command = list(command or [])
        self.returncode = returncode
        self.output = output or ""
        detail = message
        if self.output.strip():
            detail = f"{message}: {self.output.strip()}"
        super().__init__(detail)


class CommandError(AutoResticError):
    """Raised when a pre/post backup shell command fails."""

    def __init__(self, message: str, *, command: str = "", returncode: Optional[int] = None, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output or ""
        super().__init__(message)


class PipelineError(AutoResticError):
    """Raised when a stage of the archive export pipeline fails."""


class ArchiveEncryptionError(PipelineError):
    """Raised when archive encryption or decryption fails."""


class RemoteStoreError(AutoResticError):
    """Raised when an object storage call fails."""
