"""K3s Kubernetes clusters on Proxmox VE LXC containers."""

__version__ = "0.1.0"
