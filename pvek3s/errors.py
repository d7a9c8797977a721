"""Exception hierarchy for pvek3s."""
from typing import List, Optional


class Pvek3sError(Exception):
    """Base class for every error the CLI reports with exit code 1."""


class PreconditionError(Pvek3sError):
    """Something required before any side effect is missing (root, tools, storage)."""


class ConfigurationError(PreconditionError):
    """User supplied configuration failed validation."""


class CommandError(Pvek3sError):
    """An external command exited non-zero."""

    def __init__(self, cmd: List[str], returncode: int, stderr: Optional[str] = None):
        # utils imports this module
        from .utils import redact_command

        self.cmd = cmd
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        msg = f"Command failed: {redact_command(cmd)} (exit code: {returncode})"
        if self.stderr:
            msg += f"\n{self.stderr}"
        super().__init__(msg)


class ProvisioningError(Pvek3sError):
    """A provisioning phase failed."""

    def __init__(self, phase: int, label: str, cause: Exception):
        self.phase = phase
        self.label = label
        self.cause = cause
        super().__init__(f"Phase {phase} ({label}) failed: {cause}")


class ReadinessTimeout(Pvek3sError):
    """A readiness predicate did not hold before the deadline."""

    def __init__(self, what: str, timeout: float):
        self.what = what
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.0f}s waiting for {what}")


class DuplicateContainerError(Pvek3sError):
    """More than one container carries the same cluster hostname."""

    def __init__(self, hostname: str, ctids: List[int]):
        self.hostname = hostname
        self.ctids = ctids
        ids = ", ".join(str(c) for c in ctids)
        super().__init__(f"Found multiple containers with hostname {hostname}: {ids}")
