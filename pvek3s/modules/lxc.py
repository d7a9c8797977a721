"""Container preparation so K3s can run inside privileged LXC."""
import logging
import os
from pathlib import Path
from typing import List

from ..config import Config
from ..errors import CommandError
from ..utils import poll_until
from .proxmox import Proxmox

logger = logging.getLogger("pvek3s.lxc")

# Relax confinement for nested container runtimes
K3S_LXC_CONFIG: List[str] = [
    "lxc.apparmor.profile: unconfined",
    "lxc.cgroup2.devices.allow: a",
    "lxc.cap.drop:",
    'lxc.mount.auto: "proc:rw sys:rw"',
]

KMSG_SCRIPT_PATH = "/usr/local/bin/conf-kmsg.sh"
KMSG_UNIT_PATH = "/etc/systemd/system/conf-kmsg.service"

KMSG_SCRIPT = """#!/bin/sh -e
if [ ! -e /dev/kmsg ]; then
    ln -s /dev/console /dev/kmsg
fi
mount --make-rshared /
"""

KMSG_UNIT = """[Unit]
Description=Make sure /dev/kmsg exists

[Service]
Type=simple
RemainAfterExit=yes
ExecStart=/usr/local/bin/conf-kmsg.sh
TimeoutStartSec=0

[Install]
WantedBy=default.target
"""


def is_configured_for_k3s(pve: Proxmox, ctid: int) -> bool:
    path = pve.conf_path(ctid)
    return path.exists() and "lxc.apparmor.profile" in path.read_text()


def configure_lxc_for_k3s(pve: Proxmox, ctid: int) -> None:
    """Append the K3s LXC settings to the container config. The container must be stopped."""
    if is_configured_for_k3s(pve, ctid):
        logger.info(f"✅ Container {ctid} already configured for K3s")
        return
    if pve.is_running(ctid):
        logger.info(f"⏹️  Stopping container {ctid} before reconfiguring")
        pve.stop(ctid)

    path = pve.conf_path(ctid)
    existing = path.read_text() if path.exists() else ""
    missing = [line for line in K3S_LXC_CONFIG if line not in existing.splitlines()]
    with open(path, "a") as f:
        if existing and not existing.endswith("\n"):
            f.write("\n")
        f.write("\n".join(missing) + "\n")
    logger.info(f"✅ Configured container {ctid} for K3s")


def start_container(pve: Proxmox, ctid: int, timeout: float = 30) -> None:
    """Start a container and wait until pct reports it running."""
    if pve.is_running(ctid):
        logger.info(f"✅ Container {ctid} already running")
        return
    logger.info(f"▶️  Starting container {ctid}")
    pve.start(ctid)
    poll_until(lambda: pve.is_running(ctid), f"container {ctid} to start", timeout, interval=1)
    logger.info(f"✅ Started container {ctid}")


def push_kernel_config(pve: Proxmox, ctid: int) -> None:
    """Copy the host kernel config so kubelet's kernel checks pass inside the container."""
    source = Path(f"/boot/config-{os.uname().release}")
    if not source.exists():
        logger.warning(f"⚠️  {source} not found on host, skipping kernel config push")
        return
    pve.push(ctid, source, str(source))
    logger.info(f"✅ Pushed kernel config to container {ctid}")


def setup_kmsg(pve: Proxmox, ctid: int) -> None:
    """Install the /dev/kmsg shim and enable its systemd unit."""
    if pve.path_exists(ctid, KMSG_SCRIPT_PATH):
        logger.info(f"✅ /dev/kmsg already set up in container {ctid}")
        return
    logger.info(f"🔧 Setting up /dev/kmsg in container {ctid}")
    pve.exec(ctid, ["tee", KMSG_SCRIPT_PATH], input=KMSG_SCRIPT)
    pve.exec(ctid, ["chmod", "+x", KMSG_SCRIPT_PATH])
    pve.exec(ctid, ["tee", KMSG_UNIT_PATH], input=KMSG_UNIT)
    pve.exec(ctid, ["systemctl", "daemon-reload"])
    pve.exec(ctid, ["systemctl", "enable", "--now", "conf-kmsg"])
    logger.info(f"✅ Set up /dev/kmsg in container {ctid}")


def install_base_packages(pve: Proxmox, ctid: int) -> None:
    logger.info(f"📦 Installing base packages in container {ctid}")
    pve.sh(ctid, "apt-get update -qq && DEBIAN_FRONTEND=noninteractive apt-get install -y -qq "
                 "curl wget ca-certificates gnupg")


def install_ohmyzsh(pve: Proxmox, ctid: int, hostname: str) -> None:
    """Install zsh with Oh My Zsh and make it root's shell."""
    if pve.path_exists(ctid, "/root/.oh-my-zsh", directory=True):
        logger.info(f"✅ Oh My Zsh already installed on {hostname}")
        return
    logger.info(f"🐚 Installing Oh My Zsh on {hostname}")
    pve.sh(ctid, "DEBIAN_FRONTEND=noninteractive apt-get install -y -qq zsh git curl")
    pve.sh(ctid, f'RUNZSH=no CHSH=no sh -c "$(curl -fsSL {Config.OHMYZSH_INSTALL_URL})" "" --unattended')
    pve.exec(ctid, ["chsh", "-s", "/usr/bin/zsh", "root"])
    logger.info(f"✅ Installed Oh My Zsh on {hostname}")


def stop_and_destroy(pve: Proxmox, ctid: int) -> None:
    """Stop and destroy one container, logging instead of raising."""
    if not pve.exists(ctid):
        return
    try:
        if pve.is_running(ctid):
            logger.info(f"⏹️  Stopping container {ctid}")
            pve.stop(ctid)
    except CommandError as e:
        logger.warning(f"⚠️  Failed to stop container {ctid}: {e}")
    try:
        logger.info(f"🗑️ Destroying container {ctid}")
        pve.destroy(ctid)
    except CommandError as e:
        logger.warning(f"⚠️  Failed to destroy container {ctid}: {e}")
