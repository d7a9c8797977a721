"""Single-purpose installers: K3s server or agent on this host."""
from typing import Optional

import typer

from pvek3s.errors import Pvek3sError
from pvek3s.logging import setup_logger
from pvek3s.modules import k3s
from pvek3s.modules.installer import CONTROL_PACKAGES, WORKER_PACKAGES, HostInstaller
from pvek3s.modules.proxmox import check_root

logger = setup_logger("pvek3s.install")

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

app = typer.Typer(help="Install K3s directly on this host", context_settings=CONTEXT_SETTINGS)

WORKER_USAGE = """Usage: k3s-worker-install <control-plane-ip> <cluster-token> [node-name]

Arguments:
  control-plane-ip  IP address of the K3s control plane
  cluster-token     K3s cluster token (from /var/lib/rancher/k3s/server/node-token)
  node-name         Name for this worker node (default: worker.k8s)

Example:
  k3s-worker-install 192.168.1.100 K10abc123...xyz worker-1.k8s"""


def get_installer() -> HostInstaller:
    return HostInstaller()


def show_cluster_info(installer: HostInstaller) -> None:
    token = installer.node_token()
    cluster_ip = installer.primary_ip()
    typer.secho("\nK3s Control Plane Installed Successfully!\n", fg=typer.colors.GREEN, bold=True)
    typer.secho("Cluster Status:", fg=typer.colors.YELLOW)
    typer.echo(installer.nodes() or "  (K3s is starting...)")
    typer.secho("\nTo join worker nodes, run on each worker:", fg=typer.colors.YELLOW)
    typer.echo(f"  {k3s.worker_install_command(cluster_ip, token, '<worker-name>')}")
    typer.echo(f"  or: k3s-worker-install {cluster_ip} {token} <worker-name>")
    typer.secho("\nKubeconfig location:", fg=typer.colors.YELLOW)
    typer.echo(f"  {k3s.KUBECONFIG_PATH}\n")


def control(
    node_name: str = typer.Argument("control.k8s", help="Node name for the control plane"),
    addons: bool = typer.Option(True, "--addons/--no-addons", help="Install Helm after K3s"),
    nginx: Optional[bool] = typer.Option(
        None, "--nginx/--no-nginx", help="Install the NGINX ingress controller (asks when omitted)"
    ),
):
    """Install K3s as control plane on this host."""
    typer.echo(f"K3s Control Plane Installation\nNode name: {node_name}\n")
    installer = get_installer()
    try:
        check_root()
        installer.setup_kmsg()
        installer.update_system()
        installer.install_dependencies(CONTROL_PACKAGES)
        installer.install_control(node_name)
        installer.wait_for_ready(node_name)

        if addons:
            installer.install_helm()
            if nginx is None:
                nginx = typer.confirm("Install NGINX Ingress Controller?", default=False)
            if nginx:
                installer.install_nginx_ingress()

        show_cluster_info(installer)
    except Pvek3sError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(code=1)


def worker(
    control_ip: Optional[str] = typer.Argument(None, help="IP address of the K3s control plane"),
    token: Optional[str] = typer.Argument(None, help="K3s cluster token"),
    node_name: str = typer.Argument("worker.k8s", help="Name for this worker node"),
):
    """Join this host to a K3s cluster as worker."""
    if not control_ip or not token:
        logger.error("❌ Missing required arguments")
        typer.echo(WORKER_USAGE)
        raise typer.Exit(code=1)

    typer.echo(f"K3s Worker Node Installation\nControl Plane IP: {control_ip}\nNode Name: {node_name}\n")
    installer = get_installer()
    try:
        check_root()
        installer.setup_kmsg()
        installer.update_system()
        installer.install_dependencies(WORKER_PACKAGES)
        installer.join_cluster(control_ip, token, node_name)
    except Pvek3sError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(code=1)

    typer.secho("\nWorker Node Joined Successfully!\n", fg=typer.colors.GREEN, bold=True)
    typer.echo(f"Node Name: {node_name}")
    typer.echo("To verify, run on the control plane: kubectl get nodes\n")


app.command("control")(control)
app.command("worker")(worker)

# Standalone entry points
control_app = typer.Typer(add_completion=False, context_settings=CONTEXT_SETTINGS)
control_app.command()(control)

worker_app = typer.Typer(add_completion=False, context_settings=CONTEXT_SETTINGS)
worker_app.command()(worker)
