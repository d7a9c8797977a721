"""
Thin wrapper over the Proxmox VE command line tools.

Everything that touches the hypervisor goes through :class:`Proxmox`, which
shells out to ``pct``, ``pvesm``, ``pveam`` and ``pvesh``. The runner is
injectable so tests can record or fake the calls.
"""
import json
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from ..config import Config
from ..errors import CommandError, PreconditionError
from ..models import ClusterConfig, NodeSpec
from ..utils import run_command

logger = logging.getLogger("pvek3s.proxmox")

Runner = Callable[..., subprocess.CompletedProcess]

REQUIRED_TOOLS = ("pct", "pveversion", "pvesm", "pveam")
KERNEL_MODULES = ("overlay", "br_netfilter", "ip_tables", "ip6_tables", "nf_nat", "xt_conntrack")


class Proxmox:
    """Commands against the local Proxmox VE host."""

    def __init__(self, runner: Runner = run_command, conf_dir: Optional[Path] = None):
        self.runner = runner
        self.conf_dir = Path(conf_dir or Config.LXC_CONF_DIR)

    # -- raw access -------------------------------------------------------

    def _pct(self, *args: Union[str, int], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
        return self.runner(["pct", *[str(a) for a in args]], check=check, **kwargs)

    def conf_path(self, ctid: int) -> Path:
        return self.conf_dir / f"{ctid}.conf"

    # -- containers -------------------------------------------------------

    def list_ids(self) -> List[int]:
        """Container ids from ``pct list`` (header skipped)."""
        result = self._pct("list", check=False)
        if result.returncode != 0:
            return []
        ids = []
        for line in (result.stdout or "").splitlines()[1:]:
            fields = line.split()
            if fields and fields[0].isdigit():
                ids.append(int(fields[0]))
        return ids

    def config(self, ctid: int) -> Dict[str, str]:
        """Parse ``pct config <id>`` into a dict. Empty when the container is gone."""
        result = self._pct("config", ctid, check=False)
        if result.returncode != 0:
            return {}
        config: Dict[str, str] = {}
        for line in (result.stdout or "").splitlines():
            key, sep, value = line.partition(":")
            if sep and key and not key.startswith(" "):
                config[key.strip()] = value.strip()
        return config

    def hostname(self, ctid: int) -> Optional[str]:
        return self.config(ctid).get("hostname")

    def status(self, ctid: int) -> Optional[str]:
        """``running``/``stopped``, or None when the container does not exist."""
        result = self._pct("status", ctid, check=False)
        if result.returncode != 0:
            return None
        # "status: running"
        _, _, value = (result.stdout or "").strip().partition(":")
        return value.strip() or None

    def exists(self, ctid: int) -> bool:
        return self.status(ctid) is not None

    def is_running(self, ctid: int) -> bool:
        return self.status(ctid) == "running"

    def create(self, node: NodeSpec, cluster: ClusterConfig) -> None:
        if cluster.password is None or not cluster.storage or not cluster.template_storage:
            raise PreconditionError("Storage, template and password are required to create containers")
        net0 = f"name=eth0,bridge={cluster.bridge},ip={node.ip},gw={cluster.gateway}"
        logger.info(f"📦 Creating container {node.ctid} ({node.hostname})")
        self._pct(
            "create", node.ctid, f"{cluster.template_storage}:vztmpl/{cluster.os_template}",
            "--hostname", node.hostname,
            "--cores", node.cpu,
            "--memory", node.ram,
            "--swap", 0,
            "--rootfs", f"{cluster.storage}:{node.disk}",
            "--net0", net0,
            "--password", cluster.password.get_secret_value(),
            "--unprivileged", 0,
            "--features", "nesting=1",
            "--onboot", 1,
        )

    def start(self, ctid: int) -> None:
        self._pct("start", ctid)

    def stop(self, ctid: int) -> None:
        self._pct("stop", ctid)

    def destroy(self, ctid: int) -> None:
        self._pct("destroy", ctid, "--purge")

    def exec(self, ctid: int, command: Sequence[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
        return self._pct("exec", ctid, "--", *command, check=check, **kwargs)

    def sh(self, ctid: int, script: str, check: bool = True, **kwargs) -> subprocess.CompletedProcess:
        """Run a shell snippet inside the container with bash."""
        return self.exec(ctid, ["bash", "-c", script], check=check, **kwargs)

    def path_exists(self, ctid: int, path: str, directory: bool = False) -> bool:
        flag = "-d" if directory else "-f"
        return self.exec(ctid, ["test", flag, path], check=False).returncode == 0

    def has_command(self, ctid: int, name: str) -> bool:
        return self.exec(ctid, ["which", name], check=False).returncode == 0

    def read_file(self, ctid: int, path: str) -> str:
        return self.exec(ctid, ["cat", path]).stdout or ""

    def push(self, ctid: int, source: Union[str, Path], dest: str, perms: Optional[str] = None) -> None:
        args: List[Union[str, int]] = ["push", ctid, str(source), dest]
        if perms:
            args += ["--perms", perms]
        self._pct(*args)

    def next_ctid(self, base: int, taken: Sequence[int] = ()) -> int:
        """First id >= base not used by any guest on the cluster nor in ``taken``."""
        used = set(self.used_ids()) | set(taken)
        ctid = base
        while ctid in used:
            ctid += 1
        return ctid

    def used_ids(self) -> List[int]:
        result = self.runner(
            ["pvesh", "get", "/cluster/resources", "--type", "vm", "--output-format", "json"],
            check=False,
        )
        if result.returncode != 0:
            return self.list_ids()
        try:
            return [int(item["vmid"]) for item in json.loads(result.stdout or "[]") if "vmid" in item]
        except (ValueError, KeyError, TypeError):
            logger.warning("⚠️  Could not parse pvesh output, falling back to pct list")
            return self.list_ids()

    # -- storage & templates ---------------------------------------------

    def storages(self, content: str) -> List[str]:
        """Storage ids supporting the given content type (``rootdir``, ``vztmpl``)."""
        result = self.runner(["pvesm", "status", "-content", content], check=False)
        if result.returncode != 0:
            return []
        return [line.split()[0] for line in (result.stdout or "").splitlines()[1:] if line.strip()]

    def update_templates(self) -> None:
        self.runner(["pveam", "update"], check=False)

    def available_templates(self, match: str = "debian-12", limit: int = 5) -> List[str]:
        result = self.runner(["pveam", "available", "--section", "system"], check=False)
        if result.returncode != 0:
            return []
        templates = []
        for line in (result.stdout or "").splitlines():
            fields = line.split()
            if len(fields) >= 2 and match in fields[1]:
                templates.append(fields[1])
        return templates[:limit]

    def download_template(self, storage: str, template: str) -> None:
        listing = self.runner(["pveam", "list", storage], check=False)
        if template in (listing.stdout or ""):
            logger.info(f"✅ Template {template} already present on {storage}")
            return
        logger.info(f"⬇️  Downloading template {template} to {storage}")
        self.runner(["pveam", "download", storage, template])


# -- host preflight -------------------------------------------------------

def check_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("This command must be run as root")


def check_proxmox(tools: Sequence[str] = REQUIRED_TOOLS) -> None:
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise PreconditionError(
            f"Not a Proxmox VE host or tools missing: {', '.join(missing)}"
        )


def load_kernel_modules(runner: Runner = run_command, modules: Sequence[str] = KERNEL_MODULES) -> None:
    """Load the host kernel modules K3s needs inside privileged containers. Best effort."""
    for module in modules:
        try:
            runner(["modprobe", module])
        except CommandError as e:
            logger.warning(f"⚠️  Could not load kernel module {module}: {e}")
