"""K3s, Helm and ingress installation inside the cluster containers."""
import logging
import shlex
from typing import Dict, List, Optional

from ..config import Config
from ..errors import CommandError, Pvek3sError, ReadinessTimeout
from ..utils import poll_until
from .proxmox import Proxmox

logger = logging.getLogger("pvek3s.k3s")

K3S_BIN = "/usr/local/bin/k3s"
NODE_TOKEN_PATH = "/var/lib/rancher/k3s/server/node-token"
KUBECONFIG_PATH = "/etc/rancher/k3s/k3s.yaml"
API_PORT = 6443

NGINX_REPO_NAME = "ingress-nginx"
NGINX_REPO_URL = "https://kubernetes.github.io/ingress-nginx"
NGINX_RELEASE = "nginx-ingress"


def server_url(control_ip: str) -> str:
    return f"https://{control_ip}:{API_PORT}"


def control_install_args(node_name: str) -> List[str]:
    return [
        "--disable", "traefik",
        "--node-name", node_name,
        "--write-kubeconfig-mode", "644",
    ]


def worker_install_env(control_ip: str, token: str) -> Dict[str, str]:
    return {"K3S_URL": server_url(control_ip), "K3S_TOKEN": token}


def worker_install_args(node_name: str) -> List[str]:
    return ["--node-name", node_name]


def control_install_command(node_name: str) -> str:
    args = " ".join(shlex.quote(a) for a in control_install_args(node_name))
    return f"curl -sfL {Config.K3S_INSTALL_URL} | sh -s - {args}"


def worker_install_command(control_ip: str, token: str, node_name: str) -> str:
    """Shell pipeline joining a node as K3s agent.

    >>> worker_install_command("192.168.1.100", "ABC", "worker-1.k8s")
    'curl -sfL https://get.k3s.io | K3S_URL=https://192.168.1.100:6443 K3S_TOKEN=ABC sh -s - --node-name worker-1.k8s'
    """
    env = " ".join(f"{k}={shlex.quote(v)}" for k, v in worker_install_env(control_ip, token).items())
    args = " ".join(shlex.quote(a) for a in worker_install_args(node_name))
    return f"curl -sfL {Config.K3S_INSTALL_URL} | {env} sh -s - {args}"


def install_k3s_control(pve: Proxmox, ctid: int, node_name: str) -> None:
    if pve.path_exists(ctid, NODE_TOKEN_PATH):
        logger.info(f"✅ K3s control plane already installed on {node_name}")
        return
    logger.info(f"🚀 Installing K3s control plane on {node_name}")
    pve.sh(ctid, control_install_command(node_name))
    logger.info(f"✅ Installed K3s control plane on {node_name}")


def install_k3s_worker(pve: Proxmox, ctid: int, node_name: str, control_ip: str, token: str) -> None:
    if pve.path_exists(ctid, K3S_BIN):
        logger.info(f"✅ K3s agent already installed on {node_name}")
        return
    logger.info(f"🔗 Joining {node_name} to {server_url(control_ip)}")
    pve.sh(ctid, worker_install_command(control_ip, token, node_name))
    logger.info(f"✅ Joined {node_name} to the cluster")


def get_k3s_token(pve: Proxmox, ctid: int) -> str:
    """Read the cluster join token from the control plane. Never cached."""
    token = pve.read_file(ctid, NODE_TOKEN_PATH).strip()
    if not token:
        raise Pvek3sError(f"Cluster token at {NODE_TOKEN_PATH} is empty")
    return token


def node_is_ready(pve: Proxmox, ctid: int, node_name: str) -> bool:
    result = pve.exec(ctid, ["kubectl", "get", "node", node_name, "--no-headers"], check=False)
    if result.returncode != 0:
        return False
    fields = (result.stdout or "").split()
    return len(fields) >= 2 and fields[1] == "Ready"


def wait_for_node_ready(
    pve: Proxmox,
    ctid: int,
    node_name: str,
    timeout: Optional[float] = None,
    interval: Optional[float] = None,
) -> None:
    """Poll ``kubectl get node`` on the control plane until the node is Ready.

    Raises:
        ReadinessTimeout: the node did not become Ready in time
    """
    timeout = Config.READY_TIMEOUT if timeout is None else timeout
    interval = Config.POLL_INTERVAL if interval is None else interval
    logger.info(f"⏳ Waiting for node {node_name} to be Ready (timeout: {timeout:.0f}s)")
    poll_until(
        lambda: node_is_ready(pve, ctid, node_name),
        f"node {node_name} to be Ready", timeout, interval,
    )
    logger.info(f"✅ Node {node_name} is Ready")


def install_helm(pve: Proxmox, ctid: int) -> None:
    if pve.has_command(ctid, "helm"):
        logger.info("✅ Helm already installed")
        return
    logger.info("⎈ Installing Helm")
    pve.sh(ctid, f"curl -fsSL {Config.HELM_INSTALL_URL} | bash")
    logger.info("✅ Installed Helm")


def _helm(pve: Proxmox, ctid: int, *args: str):
    return pve.exec(ctid, ["env", f"KUBECONFIG={KUBECONFIG_PATH}", "helm", *args])


def install_nginx_ingress(pve: Proxmox, ctid: int) -> None:
    logger.info(f"🚀 Installing Helm release '{NGINX_RELEASE}'")
    _helm(pve, ctid, "repo", "add", NGINX_REPO_NAME, NGINX_REPO_URL, "--force-update")
    _helm(pve, ctid, "repo", "update")
    _helm(
        pve, ctid,
        "upgrade", "--install", NGINX_RELEASE, f"{NGINX_REPO_NAME}/ingress-nginx",
        "--set", "controller.publishService.enabled=true",
    )
    logger.info(f"✅ Helm release '{NGINX_RELEASE}' installed successfully.")


def best_effort(step: str, func, *args, **kwargs) -> bool:
    """Run an optional step, logging failures instead of raising."""
    try:
        func(*args, **kwargs)
        return True
    except (CommandError, ReadinessTimeout) as e:
        logger.warning(f"⚠️  {step} did not complete, continuing: {e}")
        return False


def get_nodes(pve: Proxmox, ctid: int) -> Optional[str]:
    result = pve.exec(ctid, ["kubectl", "get", "nodes", "-o", "wide"], check=False)
    return result.stdout if result.returncode == 0 else None


def get_kubeconfig(pve: Proxmox, ctid: int, control_ip: str) -> Optional[str]:
    """Kubeconfig usable from outside the cluster (loopback swapped for the control IP)."""
    result = pve.exec(ctid, ["cat", KUBECONFIG_PATH], check=False)
    if result.returncode != 0:
        return None
    return (result.stdout or "").replace("127.0.0.1", control_ip)
