"""Utility functions and helpers for the pvek3s application."""
import logging
import re
import subprocess
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..config import Config
from ..errors import CommandError, ReadinessTimeout

logger = logging.getLogger("pvek3s.utils")

_CIDR_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})/(\d{1,2})$")
_IPV4_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")

# Flags whose following argument is a secret
_SECRET_FLAGS = ("--password", "--token")


def validate_ip(value: str) -> bool:
    """Return True when value is an IPv4 address in CIDR notation.

    ``192.168.1.100/24`` passes; ``192.168.1.100`` (no prefix) and
    ``300.1.1.1/24`` (octet out of range) fail.
    """
    match = _CIDR_RE.match((value or "").strip())
    if not match:
        return False
    *octets, prefix = (int(part) for part in match.groups())
    return all(0 <= o <= 255 for o in octets) and 0 <= prefix <= 32


def validate_ipv4(value: str) -> bool:
    """Return True for a bare dotted-quad IPv4 address."""
    match = _IPV4_RE.match((value or "").strip())
    return bool(match) and all(0 <= int(o) <= 255 for o in match.groups())


def strip_prefix(cidr: str) -> str:
    """``192.168.1.100/24`` -> ``192.168.1.100``."""
    return cidr.split("/", 1)[0]


def redact_command(cmd: Sequence[str]) -> str:
    """Render a command for logging with passwords and tokens masked."""
    parts: List[str] = []
    hide_next = False
    for arg in cmd:
        arg = str(arg)
        if hide_next:
            parts.append("[REDACTED]")
            hide_next = False
            continue
        if arg in _SECRET_FLAGS:
            hide_next = True
        parts.append(re.sub(r"(K3S_TOKEN=)\S+", r"\1[REDACTED]", arg))
    return " ".join(parts)


def poll_until(predicate: Callable[[], bool], what: str, timeout: float, interval: float) -> None:
    """Call predicate every interval seconds until it returns True.

    Raises:
        ReadinessTimeout: predicate still False once timeout has elapsed
    """
    deadline = time.monotonic() + timeout
    while True:
        if predicate():
            return
        if time.monotonic() >= deadline:
            raise ReadinessTimeout(what, timeout)
        time.sleep(interval)


def run_command(
    cmd: List[str],
    *,
    check: bool = True,
    capture_output: bool = True,
    input: Optional[str] = None,
    env: Optional[dict] = None,
    cwd: Optional[Path] = None,
    timeout: Optional[int] = None,
) -> subprocess.CompletedProcess:
    """Run an external command, raising CommandError on failure when check is set."""
    cmd_str = redact_command(cmd)
    logger.debug(f"💻 Running: {cmd_str}")
    try:
        result = subprocess.run(
            cmd,
            text=True,
            input=input,
            env=env,
            cwd=cwd,
            timeout=timeout or Config.COMMAND_TIMEOUT,
            stdout=subprocess.PIPE if capture_output else None,
            stderr=subprocess.PIPE if capture_output else None,
        )
    except FileNotFoundError as e:
        raise CommandError(list(cmd), 127, str(e)) from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(list(cmd), -1, f"timed out after {e.timeout}s") from e

    if capture_output and result.stdout:
        logger.debug(f"🟢 Output:\n{result.stdout}")
    if check and result.returncode != 0:
        logger.error(f"❌ Command failed: {cmd_str} (exit code: {result.returncode})")
        raise CommandError(list(cmd), result.returncode, result.stderr)
    return result
