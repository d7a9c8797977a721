"""
Phased, resumable cluster provisioning.

Seven phases run in strictly increasing order. A fresh run records a
cleanup action for every container it creates; if a phase fails the actions
are unwound newest first, destroying what this run built. A resumed run
records nothing, so a failure leaves the pre-existing containers alone for
inspection.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import typer

from ..errors import ProvisioningError, Pvek3sError
from ..models import FIRST_PHASE, LAST_PHASE, PHASE_LABELS, WORKER_ROLES, ClusterConfig, NodeRole
from . import k3s, lxc
from .proxmox import Proxmox
from .state import StateStore

logger = logging.getLogger("pvek3s.phases")


@dataclass(frozen=True)
class Phase:
    number: int
    label: str
    procedure: Callable[[], None]


class CleanupStack:
    """Undo actions pushed as provisioning succeeds, unwound LIFO on failure."""

    def __init__(self):
        self._actions: List[Tuple[str, Callable[[], None]]] = []

    def __len__(self) -> int:
        return len(self._actions)

    def push(self, description: str, action: Callable[[], None]) -> None:
        self._actions.append((description, action))

    def clear(self) -> None:
        self._actions.clear()

    def unwind(self) -> List[str]:
        """Run every action newest first. Failures are logged, not raised."""
        done = []
        while self._actions:
            description, action = self._actions.pop()
            logger.info(f"↩️  Rolling back: {description}")
            try:
                action()
                done.append(description)
            except Exception as e:
                logger.error(f"❌ Rollback step failed ({description}): {e}")
        return done


def phase_banner(number: int, label: str) -> None:
    rule = "═" * 62
    typer.secho(f"\n{rule}", fg=typer.colors.BLUE)
    typer.secho(f"  Phase {number}: {label}", fg=typer.colors.BLUE, bold=True)
    typer.secho(f"{rule}\n", fg=typer.colors.BLUE)


class PhaseRunner:
    """Runs the provisioning phases against one cluster configuration."""

    def __init__(
        self,
        pve: Proxmox,
        cluster: ClusterConfig,
        resume: bool = False,
        store: Optional[StateStore] = None,
        ready_timeout: Optional[float] = None,
    ):
        self.pve = pve
        self.cluster = cluster
        self.resume = resume
        self.store = store
        self.ready_timeout = ready_timeout
        self.cleanup = CleanupStack()
        self.phases: List[Phase] = [
            Phase(1, PHASE_LABELS[1], self.create_containers),
            Phase(2, PHASE_LABELS[2], self.configure_containers),
            Phase(3, PHASE_LABELS[3], self.start_containers),
            Phase(4, PHASE_LABELS[4], self.install_shells),
            Phase(5, PHASE_LABELS[5], self.install_control_plane),
            Phase(6, PHASE_LABELS[6], self.join_workers),
            Phase(7, PHASE_LABELS[7], self.install_addons),
        ]

    def run(self, start: int = FIRST_PHASE) -> List[int]:
        """Execute phases ``start``..7 and return the numbers that ran.

        Raises:
            ValueError: start is not a phase number
            ProvisioningError: a phase failed (after rollback on a fresh run)
        """
        if start not in PHASE_LABELS:
            raise ValueError(f"start phase must be between {FIRST_PHASE} and {LAST_PHASE}, got {start}")

        executed = []
        for phase in self.phases:
            if phase.number < start:
                continue
            phase_banner(phase.number, phase.label)
            logger.info(f"▶️  Phase {phase.number}: {phase.label}")
            try:
                phase.procedure()
            except Exception as e:
                logger.error(f"❌ Phase {phase.number} ({phase.label}) failed: {e}")
                if not self.resume and len(self.cleanup):
                    logger.warning("🧹 Fresh run failed, removing containers created by this run")
                    self.cleanup.unwind()
                    if self.store is not None:
                        self.store.clear()
                raise ProvisioningError(phase.number, phase.label, e) from e
            executed.append(phase.number)
            if self.store is not None:
                self.store.record_phase(self.cluster, phase.number)
            logger.info(f"✅ Phase {phase.number} complete")

        self.cleanup.clear()
        return executed

    # -- phase procedures -----------------------------------------------

    def create_containers(self) -> None:
        for node in self.cluster.nodes():
            if self.pve.exists(node.ctid):
                if self.pve.hostname(node.ctid) == node.hostname:
                    logger.info(f"✅ Container {node.ctid} ({node.hostname}) already exists")
                    continue
                raise Pvek3sError(f"Container id {node.ctid} is already used by another guest")
            # pct create can fail after the guest is allocated
            if not self.resume:
                ctid = node.ctid
                self.cleanup.push(
                    f"destroy container {ctid} ({node.hostname})",
                    lambda ctid=ctid: lxc.stop_and_destroy(self.pve, ctid),
                )
            self.pve.create(node, self.cluster)

    def configure_containers(self) -> None:
        for node in self.cluster.nodes():
            lxc.configure_lxc_for_k3s(self.pve, node.ctid)

    def start_containers(self) -> None:
        for node in self.cluster.nodes():
            lxc.start_container(self.pve, node.ctid)
            lxc.push_kernel_config(self.pve, node.ctid)
            lxc.setup_kmsg(self.pve, node.ctid)
            lxc.install_base_packages(self.pve, node.ctid)

    def ensure_containers_running(self) -> None:
        for node in self.cluster.nodes():
            lxc.start_container(self.pve, node.ctid)

    def install_shells(self) -> None:
        self.ensure_containers_running()
        for node in self.cluster.nodes():
            lxc.install_ohmyzsh(self.pve, node.ctid, node.hostname)

    def install_control_plane(self) -> None:
        self.ensure_containers_running()
        control = self.cluster.node(NodeRole.CONTROL)
        k3s.install_k3s_control(self.pve, control.ctid, control.hostname)
        k3s.best_effort(
            "Control plane readiness", k3s.wait_for_node_ready,
            self.pve, control.ctid, control.hostname, timeout=self.ready_timeout,
        )

    def join_workers(self) -> None:
        self.ensure_containers_running()
        control = self.cluster.node(NodeRole.CONTROL)
        token = k3s.get_k3s_token(self.pve, control.ctid)
        workers = [self.cluster.node(role) for role in WORKER_ROLES]
        for worker in workers:
            k3s.install_k3s_worker(self.pve, worker.ctid, worker.hostname, control.address, token)
        for worker in workers:
            k3s.best_effort(
                f"Readiness of {worker.hostname}", k3s.wait_for_node_ready,
                self.pve, control.ctid, worker.hostname, timeout=self.ready_timeout,
            )

    def install_addons(self) -> None:
        self.ensure_containers_running()
        if not self.cluster.helm_enabled:
            logger.info("⏭️  Skipped (Helm not requested)")
            return
        control = self.cluster.node(NodeRole.CONTROL)
        if not k3s.best_effort("Helm installation", k3s.install_helm, self.pve, control.ctid):
            return
        if self.cluster.install_nginx:
            k3s.best_effort(
                "Cluster readiness", k3s.wait_for_node_ready,
                self.pve, control.ctid, control.hostname, timeout=self.ready_timeout,
            )
            k3s.best_effort("NGINX ingress installation", k3s.install_nginx_ingress, self.pve, control.ctid)
