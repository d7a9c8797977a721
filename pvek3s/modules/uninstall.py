"""Remove the cluster containers."""
import logging
from typing import Callable, Dict, List, Optional

import typer

from ..models import ROLES, NodeRole
from . import lxc
from .proxmox import Proxmox
from .state import StateStore
from .status import StatusDetector

logger = logging.getLogger("pvek3s.uninstall")


def uninstall_cluster(
    pve: Proxmox,
    confirm: Callable[[Dict[NodeRole, int]], bool],
    store: Optional[StateStore] = None,
) -> List[int]:
    """Stop and destroy every detected cluster container.

    ``confirm`` is only asked when something was found. Individual stop or
    destroy failures are logged and skipped.

    Returns:
        The container ids that were removed (empty when nothing was found or
        the user declined).
    """
    containers = StatusDetector(pve).detect_containers()
    if not containers:
        logger.warning("⚠️  No cluster containers found")
        return []

    if not confirm(containers):
        typer.echo("❌ Uninstall cancelled.")
        return []

    removed = []
    for role in ROLES:
        ctid = containers.get(role)
        if ctid is None:
            continue
        lxc.stop_and_destroy(pve, ctid)
        removed.append(ctid)

    if store is not None:
        store.clear()
    typer.secho("✅ Cluster uninstalled successfully!", fg=typer.colors.GREEN)
    return removed
