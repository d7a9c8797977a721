"""
Standalone K3s installers for the machine they run on.

These do not touch Proxmox: run them inside a container (or any Debian
host) to install a K3s server or join it as an agent.
"""
import logging
import os
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional

import requests

from ..config import Config
from ..errors import CommandError, Pvek3sError
from ..utils import poll_until, run_command
from . import k3s
from .lxc import KMSG_SCRIPT, KMSG_SCRIPT_PATH, KMSG_UNIT, KMSG_UNIT_PATH

logger = logging.getLogger("pvek3s.installer")

Runner = Callable[..., subprocess.CompletedProcess]

CONTROL_PACKAGES = ["curl", "wget", "ca-certificates", "gnupg"]
WORKER_PACKAGES = ["curl", "wget", "ca-certificates"]


def fetch_script(url: str, timeout: int = 30) -> str:
    """Download an installer script."""
    logger.info(f"⬇️  Fetching {url}")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise Pvek3sError(f"Failed to download {url}: {e}") from e
    return response.text


class HostInstaller:
    """Installs K3s on the local host."""

    def __init__(self, runner: Runner = run_command, root: Path = Path("/"),
                 fetch: Callable[[str], str] = fetch_script):
        self.runner = runner
        self.root = root
        self.fetch = fetch

    def _path(self, path: str) -> Path:
        return self.root / path.lstrip("/")

    def setup_kmsg(self) -> None:
        logger.info("🔧 Setting up /dev/kmsg")
        script = self._path(KMSG_SCRIPT_PATH)
        script.parent.mkdir(parents=True, exist_ok=True)
        script.write_text(KMSG_SCRIPT)
        script.chmod(0o755)
        unit = self._path(KMSG_UNIT_PATH)
        unit.parent.mkdir(parents=True, exist_ok=True)
        unit.write_text(KMSG_UNIT)
        self.runner(["systemctl", "daemon-reload"])
        self.runner(["systemctl", "enable", "--now", "conf-kmsg"])
        logger.info("✅ Set up /dev/kmsg")

    def update_system(self) -> None:
        logger.info("🔄 Updating system packages")
        self.runner(["apt-get", "update"])
        self.runner(["apt-get", "upgrade", "-y"], env=self._apt_env())
        logger.info("✅ Updated system packages")

    def install_dependencies(self, packages: List[str]) -> None:
        logger.info("📦 Installing dependencies")
        self.runner(["apt-get", "install", "-y", *packages], env=self._apt_env())
        logger.info("✅ Installed dependencies")

    @staticmethod
    def _apt_env() -> Dict[str, str]:
        return {**os.environ, "DEBIAN_FRONTEND": "noninteractive"}

    def run_k3s_installer(self, args: List[str], extra_env: Optional[Dict[str, str]] = None) -> None:
        script = self.fetch(Config.K3S_INSTALL_URL)
        env = {**os.environ, **(extra_env or {})}
        self.runner(["sh", "-s", "-", *args], input=script, env=env, capture_output=False)

    def install_control(self, node_name: str) -> None:
        logger.info(f"🚀 Installing K3s control plane as {node_name}")
        self.run_k3s_installer(k3s.control_install_args(node_name))
        logger.info("✅ Installed K3s control plane")

    def join_cluster(self, control_ip: str, token: str, node_name: str) -> None:
        logger.info(f"🔗 Joining K3s cluster at {k3s.server_url(control_ip)} as {node_name}")
        self.run_k3s_installer(
            k3s.worker_install_args(node_name),
            k3s.worker_install_env(control_ip, token),
        )
        logger.info("✅ Joined K3s cluster as worker")

    def node_is_ready(self, node_name: str) -> bool:
        result = self.runner(["kubectl", "get", "node", node_name, "--no-headers"], check=False)
        fields = (result.stdout or "").split()
        return result.returncode == 0 and len(fields) >= 2 and fields[1] == "Ready"

    def wait_for_ready(self, node_name: str, timeout: Optional[float] = None) -> bool:
        """Best-effort readiness wait; returns False on timeout."""
        timeout = Config.READY_TIMEOUT if timeout is None else timeout
        logger.info("⏳ Waiting for K3s to be ready")
        try:
            poll_until(lambda: self.node_is_ready(node_name), f"node {node_name} to be Ready",
                       timeout, Config.POLL_INTERVAL)
        except Pvek3sError as e:
            logger.warning(f"⚠️  {e}, continuing")
            return False
        logger.info("✅ K3s is ready")
        return True

    def install_helm(self) -> None:
        logger.info("⎈ Installing Helm")
        self.runner(["bash"], input=self.fetch(Config.HELM_INSTALL_URL))
        logger.info("✅ Installed Helm")

    def install_nginx_ingress(self) -> None:
        logger.info("🚀 Installing NGINX Ingress Controller")
        env = {**os.environ, "KUBECONFIG": k3s.KUBECONFIG_PATH}
        self.runner(["helm", "repo", "add", k3s.NGINX_REPO_NAME, k3s.NGINX_REPO_URL, "--force-update"], env=env)
        self.runner(["helm", "repo", "update"], env=env)
        self.runner([
            "helm", "upgrade", "--install", k3s.NGINX_RELEASE, f"{k3s.NGINX_REPO_NAME}/ingress-nginx",
            "--set", "controller.publishService.enabled=true",
        ], env=env)
        logger.info("✅ Installed NGINX Ingress Controller")

    def node_token(self) -> str:
        return self._path(k3s.NODE_TOKEN_PATH).read_text().strip()

    def primary_ip(self) -> str:
        try:
            result = self.runner(["hostname", "-I"])
        except CommandError:
            return "127.0.0.1"
        addresses = (result.stdout or "").split()
        return addresses[0] if addresses else "127.0.0.1"

    def nodes(self) -> Optional[str]:
        result = self.runner(["kubectl", "get", "nodes"], check=False)
        return result.stdout if result.returncode == 0 else None
