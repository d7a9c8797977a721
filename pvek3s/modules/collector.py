"""Interactive collection of the cluster configuration."""
import logging
from typing import List, Optional, Sequence

import typer
from pydantic import ValidationError
from rich.table import Table

from ..config import Config
from ..errors import ConfigurationError, PreconditionError
from ..models import ClusterConfig, ClusterDefaults, NodeRole
from ..utils import validate_ip, validate_ipv4
from .proxmox import Proxmox

logger = logging.getLogger("pvek3s.collector")


class Prompter:
    """Blocking terminal prompts. Ctrl-C or EOF raises ``typer.Abort``."""

    def choose(self, title: str, options: Sequence[str], default: Optional[str] = None) -> str:
        """Numbered menu; re-asks until the answer is one of the options."""
        typer.echo(f"{title}:")
        for index, option in enumerate(options, 1):
            typer.echo(f"  {index}) {option}")
        default_index = list(options).index(default) + 1 if default in options else 1
        while True:
            index = typer.prompt("Select", default=default_index, type=int)
            if 1 <= index <= len(options):
                return options[index - 1]
            typer.secho(f"Enter a number between 1 and {len(options)}", fg=typer.colors.RED)

    def text(self, title: str, default: Optional[str] = None) -> str:
        return typer.prompt(title, default=default)

    def number(self, title: str, default: int) -> int:
        while True:
            value = typer.prompt(title, default=default, type=int)
            if value >= 1:
                return value
            typer.secho("Enter a positive number", fg=typer.colors.RED)

    def password(self, title: str) -> str:
        return typer.prompt(title, default="", hide_input=True, confirmation_prompt=True, show_default=False)

    def confirm(self, title: str, default: bool = True) -> bool:
        return typer.confirm(title, default=default)


class ConfigCollector:
    """Asks for storage, template, network, sizing and add-on choices in order."""

    def __init__(self, pve: Proxmox, prompter: Optional[Prompter] = None,
                 defaults: Optional[ClusterDefaults] = None):
        self.pve = pve
        self.prompter = prompter or Prompter()
        self.defaults = defaults or ClusterDefaults()

    def _cidr(self, title: str, default: str) -> str:
        value = self.prompter.text(f"{title} (CIDR format)", default).strip()
        if not validate_ip(value):
            raise ConfigurationError(f"Invalid IP format {value!r}. Use CIDR notation (e.g., {default})")
        return value

    def _storage(self) -> str:
        storages = self.pve.storages("rootdir")
        if not storages:
            raise PreconditionError("No storage available for containers")
        return self.prompter.choose("Select storage for containers", storages)

    def _template_storage(self) -> str:
        storages = self.pve.storages("vztmpl")
        if not storages:
            raise PreconditionError("No storage available for templates. Enable 'vztmpl' content on a storage.")
        if len(storages) == 1:
            logger.info(f"✅ Using {storages[0]} for templates")
            return storages[0]
        return self.prompter.choose("Select storage for templates", storages)

    def _template(self, template_storage: str) -> str:
        logger.info("🔄 Updating template list")
        self.pve.update_templates()
        templates = self.pve.available_templates("debian-12")
        if not templates:
            raise PreconditionError("No Debian 12 templates available. Run 'pveam update' first.")
        default = self.defaults.os_template if self.defaults.os_template in templates else templates[0]
        template = self.prompter.choose("Select OS template (Debian 12 recommended)", templates, default)
        self.pve.download_template(template_storage, template)
        return template

    def allocate_ctids(self) -> List[int]:
        """Three free ids counting up from the configured base."""
        control = self.pve.next_ctid(Config.BASE_CTID)
        worker1 = self.pve.next_ctid(control + 1, taken=[control])
        worker2 = self.pve.next_ctid(worker1 + 1, taken=[control, worker1])
        return [control, worker1, worker2]

    def collect(self) -> ClusterConfig:
        d = self.defaults
        p = self.prompter

        storage = self._storage()
        template_storage = self._template_storage()
        template = self._template(template_storage)

        gateway = p.text("Enter the network gateway IP", "192.168.1.1").strip()
        if not validate_ipv4(gateway):
            raise ConfigurationError(f"Invalid gateway IP {gateway!r}")
        control_ip = self._cidr("Enter the Control Plane IP", "192.168.1.100/24")
        worker1_ip = self._cidr("Enter Worker 1 IP", "192.168.1.101/24")
        worker2_ip = self._cidr("Enter Worker 2 IP", "192.168.1.102/24")

        password = p.password("Enter root password for containers")
        if not password:
            raise ConfigurationError("Password cannot be empty")

        bridge = p.text("Enter network bridge", d.bridge).strip()

        control_cpu = p.number("Enter CPU cores for Control Plane", d.control_cpu)
        control_ram = p.number("Enter RAM (MB) for Control Plane", d.control_ram)
        control_disk = p.number("Enter disk size (GB) for Control Plane", d.control_disk)
        worker_cpu = p.number("Enter CPU cores for Workers", d.worker_cpu)
        worker_ram = p.number("Enter RAM (MB) for Workers", d.worker_ram)
        worker_disk = p.number("Enter disk size (GB) for Workers", d.worker_disk)

        install_helm = p.confirm("Install Helm package manager?", d.install_helm)
        install_nginx = p.confirm("Install NGINX Ingress Controller? (requires Helm)", d.install_nginx)

        control_ctid, worker1_ctid, worker2_ctid = self.allocate_ctids()

        try:
            return ClusterConfig(
                storage=storage,
                template_storage=template_storage,
                os_template=template,
                password=password,
                bridge=bridge,
                gateway=gateway,
                control_ctid=control_ctid,
                worker1_ctid=worker1_ctid,
                worker2_ctid=worker2_ctid,
                control_ip=control_ip,
                worker1_ip=worker1_ip,
                worker2_ip=worker2_ip,
                control_cpu=control_cpu,
                control_ram=control_ram,
                control_disk=control_disk,
                worker_cpu=worker_cpu,
                worker_ram=worker_ram,
                worker_disk=worker_disk,
                install_helm=install_helm or install_nginx,
                install_nginx=install_nginx,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid cluster configuration: {e}") from e


def config_from_containers(pve: Proxmox, containers: dict) -> ClusterConfig:
    """Rebuild a resume configuration from the detected containers' net0 settings."""
    def net0(ctid: int) -> dict:
        raw = pve.config(ctid).get("net0", "")
        return dict(part.split("=", 1) for part in raw.split(",") if "=" in part)

    nets = {role: net0(ctid) for role, ctid in containers.items()}
    defaults = ClusterDefaults()
    try:
        return ClusterConfig(
            bridge=nets[NodeRole.CONTROL].get("bridge", defaults.bridge),
            gateway=nets[NodeRole.CONTROL].get("gw", ""),
            control_ctid=containers[NodeRole.CONTROL],
            worker1_ctid=containers[NodeRole.WORKER_1],
            worker2_ctid=containers[NodeRole.WORKER_2],
            control_ip=nets[NodeRole.CONTROL].get("ip", ""),
            worker1_ip=nets[NodeRole.WORKER_1].get("ip", ""),
            worker2_ip=nets[NodeRole.WORKER_2].get("ip", ""),
            install_helm=defaults.install_helm,
            install_nginx=defaults.install_nginx,
        )
    except ValidationError as e:
        raise ConfigurationError(f"Could not read network settings of the cluster containers: {e}") from e


def render_summary(cluster: ClusterConfig) -> Table:
    table = Table(title="K3s Cluster Configuration")
    table.add_column("Node")
    table.add_column("Container ID", justify="right")
    table.add_column("Hostname")
    table.add_column("IP Address")
    table.add_column("CPU", justify="right")
    table.add_column("Memory", justify="right")
    table.add_column("Disk", justify="right")
    for node in cluster.nodes():
        table.add_row(
            node.role.value, str(node.ctid), node.hostname, node.ip,
            str(node.cpu), f"{node.ram}MB", f"{node.disk}GB",
        )
    table.caption = (
        f"Gateway {cluster.gateway} · Bridge {cluster.bridge} · "
        f"Helm {'yes' if cluster.helm_enabled else 'no'} · "
        f"NGINX Ingress {'yes' if cluster.install_nginx else 'no'}"
    )
    return table
