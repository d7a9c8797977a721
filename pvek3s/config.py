"""Configuration management for the pvek3s application."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Application configuration with sensible defaults."""

    # Logging
    LOG_LEVEL: str = os.getenv("PVEK3S_LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv(
        "PVEK3S_LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    LOG_FILE: str = os.getenv("PVEK3S_LOG_FILE", "")

    # Proxmox paths
    LXC_CONF_DIR: Path = Path(os.getenv("PVEK3S_LXC_CONF_DIR", "/etc/pve/lxc"))
    STATE_FILE: Path = Path(
        os.getenv("PVEK3S_STATE_FILE", "~/.config/pvek3s/state.yaml")
    ).expanduser()

    # Timeouts (in seconds)
    READY_TIMEOUT: int = int(os.getenv("PVEK3S_READY_TIMEOUT", "120"))
    POLL_INTERVAL: float = float(os.getenv("PVEK3S_POLL_INTERVAL", "5"))
    COMMAND_TIMEOUT: int = int(os.getenv("PVEK3S_COMMAND_TIMEOUT", "900"))  # 15 minutes

    # Upstream installers
    K3S_INSTALL_URL: str = os.getenv("PVEK3S_K3S_INSTALL_URL", "https://get.k3s.io")
    HELM_INSTALL_URL: str = os.getenv(
        "PVEK3S_HELM_INSTALL_URL",
        "https://raw.githubusercontent.com/helm/helm/main/scripts/get-helm-3"
    )
    OHMYZSH_INSTALL_URL: str = os.getenv(
        "PVEK3S_OHMYZSH_INSTALL_URL",
        "https://raw.githubusercontent.com/ohmyzsh/ohmyzsh/master/tools/install.sh"
    )

    # Container ids are allocated upwards from here
    BASE_CTID: int = int(os.getenv("PVEK3S_BASE_CTID", "100"))
