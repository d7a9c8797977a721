"""Cluster lifecycle actions behind the ``pvek3s`` command flags."""
import logging
from typing import Dict, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from pvek3s.errors import PreconditionError
from pvek3s.models import LAST_PHASE, PHASE_LABELS, ROLES, ClusterConfig, NodeRole
from pvek3s.modules import k3s
from pvek3s.modules.collector import ConfigCollector, config_from_containers, render_summary
from pvek3s.modules.phases import PhaseRunner
from pvek3s.modules.proxmox import Proxmox, check_proxmox, check_root, load_kernel_modules
from pvek3s.modules.state import StateStore
from pvek3s.modules.status import StatusDetector
from pvek3s.modules.uninstall import uninstall_cluster

logger = logging.getLogger("pvek3s.cluster")

console = Console()


def get_proxmox() -> Proxmox:
    return Proxmox()


def preflight(pve: Proxmox) -> None:
    """Root, Proxmox tools and host kernel modules, before any side effect."""
    check_root()
    check_proxmox()
    load_kernel_modules(pve.runner)


def list_phases() -> None:
    typer.secho("\nAvailable Phases:\n", fg=typer.colors.BLUE, bold=True)
    for number, label in PHASE_LABELS.items():
        typer.echo(f"  {typer.style(f'Phase {number}:', fg=typer.colors.GREEN)} {label}")
    typer.echo("")


def show_status(pve: Proxmox) -> None:
    check_proxmox()
    detector = StatusDetector(pve)
    containers = detector.detect_containers()
    if not containers:
        typer.secho("No K3s cluster containers found.", fg=typer.colors.YELLOW)
        typer.echo("Run pvek3s without arguments to create a new cluster.")
        return

    table = Table(title="Detected Containers")
    table.add_column("Hostname")
    table.add_column("Container ID", justify="right")
    table.add_column("Status")
    records = detector.records(containers)
    for role in ROLES:
        record = records.get(role)
        if record is None:
            table.add_row(role.hostname, "-", "[red]not found[/red]")
        else:
            colour = "green" if record.running else "red"
            table.add_row(record.hostname, str(record.ctid), f"[{colour}]{record.status}[/{colour}]")
    console.print(table)

    typer.secho("\nPhase Status:", fg=typer.colors.YELLOW)
    last = 0
    for check in detector.detect_phases(containers):
        mark = typer.style("✓", fg=typer.colors.GREEN) if check.complete else typer.style("✗", fg=typer.colors.RED)
        typer.echo(f"  {mark} Phase {check.phase}: {check.label}")
        if not check.complete:
            break
        last = check.phase

    if last < LAST_PHASE:
        typer.echo(f"\nResume with: pvek3s --start-phase {last + 1}  (or pvek3s --resume)\n")
    else:
        typer.secho("\nCluster setup complete!\n", fg=typer.colors.GREEN)


def _confirm(message: str, yes: bool) -> bool:
    return yes or typer.confirm(message, default=False)


def create(pve: Proxmox, store: StateStore, yes: bool = False) -> ClusterConfig:
    """Interactive fresh creation, rolled back if a phase fails."""
    preflight(pve)
    if not _confirm(
        "This will create a K3s cluster with 1 control plane and 2 worker nodes "
        "on Proxmox LXC containers. Continue?", yes,
    ):
        raise typer.Exit(0)

    cluster = ConfigCollector(pve).collect()
    console.print(render_summary(cluster))
    if not _confirm("Ready to create the K3s cluster with the above configuration? "
                    "This will create 3 LXC containers.", yes):
        raise typer.Exit(0)

    PhaseRunner(pve, cluster, resume=False, store=store).run(1)
    show_completion_info(pve, cluster)
    return cluster


def _state_matches_host(pve: Proxmox, ctids: Dict[NodeRole, int]) -> bool:
    return all(role in ctids for role in ROLES) and all(
        pve.hostname(ctid) == role.hostname for role, ctid in ctids.items()
    )


def resume_settings(pve: Proxmox, store: StateStore) -> Tuple[ClusterConfig, Optional[int]]:
    """Configuration and next phase for a resumed run.

    The state record wins when the containers it names are still there;
    otherwise everything is reconstructed from live probes.
    """
    state = store.load()
    if state is not None and state.settings and _state_matches_host(pve, state.ctids):
        logger.info(f"📄 Using state record {store.path} (last completed phase {state.last_phase})")
        return state.to_config(), state.next_phase

    if state is not None:
        logger.warning("⚠️  State record does not match the host, probing containers instead")
    detector = StatusDetector(pve)
    containers = detector.detect_containers()
    if any(role not in containers for role in ROLES):
        raise PreconditionError("Could not detect all cluster containers. Run --status to check.")
    logger.info(
        "✅ Detected containers: "
        + ", ".join(f"{role.hostname}={containers[role]}" for role in ROLES)
    )
    return config_from_containers(pve, containers), detector.resume_point(containers)


def resume(pve: Proxmox, store: StateStore, start_phase: Optional[int] = None, yes: bool = False) -> None:
    """Continue a previous run from ``start_phase`` or the detected resume point."""
    preflight(pve)
    cluster, detected = resume_settings(pve, store)
    start = start_phase or detected
    if start is None:
        typer.secho("✅ All phases already complete, nothing to resume.", fg=typer.colors.GREEN)
        return

    typer.secho(f"Resume mode: starting from Phase {start}: {PHASE_LABELS[start]}", fg=typer.colors.YELLOW)
    ids = ", ".join(f"{node.hostname}: CT {node.ctid}" for node in cluster.nodes())
    if not _confirm(f"Resume K3s cluster setup ({ids})?", yes):
        raise typer.Exit(0)

    PhaseRunner(pve, cluster, resume=True, store=store).run(start)
    show_completion_info(pve, cluster)


def uninstall(pve: Proxmox, store: StateStore, yes: bool = False) -> None:
    check_root()
    check_proxmox()
    typer.secho("WARNING: This will destroy all K3s cluster containers!", fg=typer.colors.RED, bold=True)

    def confirm(containers: Dict[NodeRole, int]) -> bool:
        typer.secho("Containers to be destroyed:", fg=typer.colors.YELLOW)
        for role in ROLES:
            if role in containers:
                typer.echo(f"  - {role.hostname} (CT {containers[role]})")
        return _confirm("Are you sure you want to destroy all cluster containers? "
                        "This action cannot be undone!", yes)

    uninstall_cluster(pve, confirm, store)


def show_completion_info(pve: Proxmox, cluster: ClusterConfig) -> None:
    control = cluster.node(NodeRole.CONTROL)
    address = control.address

    typer.secho("\nK3s Cluster Created Successfully!\n", fg=typer.colors.GREEN, bold=True)
    typer.secho("Cluster Nodes:", fg=typer.colors.YELLOW)
    typer.echo(k3s.get_nodes(pve, control.ctid) or "  (Run 'kubectl get nodes' on control plane to verify)")

    typer.secho("Container IDs:", fg=typer.colors.YELLOW)
    for node in cluster.nodes():
        typer.echo(f"  {node.hostname}: {node.ctid} ({node.address})")

    typer.secho("\nTo access the cluster:", fg=typer.colors.YELLOW)
    typer.echo(f"  SSH: ssh root@{address}")
    typer.echo("  kubectl: kubectl get nodes")
    if cluster.install_nginx:
        typer.secho("\nNGINX Ingress Controller:", fg=typer.colors.YELLOW)
        typer.echo("  Access any node IP on ports 80/443 to reach ingress")
        typer.echo("  Check status: kubectl get svc -A | grep ingress")
    typer.secho("\nUninstall cluster:", fg=typer.colors.YELLOW)
    typer.echo("  pvek3s --uninstall")

    kubeconfig = k3s.get_kubeconfig(pve, control.ctid, address)
    if kubeconfig:
        typer.secho("\nSave this to ~/.kube/config on your local machine:\n", fg=typer.colors.YELLOW)
        typer.echo(kubeconfig)
