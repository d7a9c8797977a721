"""Reconstruct how far a previous run got by probing the host and containers."""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..errors import DuplicateContainerError
from ..models import LAST_PHASE, PHASE_LABELS, ROLES, WORKER_ROLES, ContainerRecord, NodeRole
from .k3s import K3S_BIN, NODE_TOKEN_PATH
from .lxc import KMSG_SCRIPT_PATH, is_configured_for_k3s
from .proxmox import Proxmox

logger = logging.getLogger("pvek3s.status")


@dataclass(frozen=True)
class PhaseCheck:
    phase: int
    label: str
    complete: bool


class StatusDetector:
    """Heuristic progress detection from live probes.

    Not authoritative: manual changes inside the containers can fool it.
    """

    def __init__(self, pve: Proxmox):
        self.pve = pve

    def detect_containers(self) -> Dict[NodeRole, int]:
        """Map each role to the id of the container carrying its hostname.

        Raises:
            DuplicateContainerError: two containers claim the same role hostname
        """
        found: Dict[NodeRole, List[int]] = {}
        for ctid in self.pve.list_ids():
            role = NodeRole.from_hostname(self.pve.hostname(ctid) or "")
            if role is not None:
                found.setdefault(role, []).append(ctid)

        for role, ctids in found.items():
            if len(ctids) > 1:
                raise DuplicateContainerError(role.hostname, sorted(ctids))
        return {role: ctids[0] for role, ctids in found.items()}

    def records(self, containers: Dict[NodeRole, int]) -> Dict[NodeRole, ContainerRecord]:
        return {
            role: ContainerRecord(ctid, role.hostname, self.pve.status(ctid) or 'missing')
            for role, ctid in containers.items()
        }

    def _probes(self, containers: Dict[NodeRole, int]) -> Dict[int, Callable[[], bool]]:
        control = containers.get(NodeRole.CONTROL)
        return {
            1: lambda: all(role in containers for role in ROLES),
            2: lambda: is_configured_for_k3s(self.pve, control),
            3: lambda: (self.pve.is_running(control)
                        and self.pve.path_exists(control, KMSG_SCRIPT_PATH)),
            4: lambda: self.pve.path_exists(control, "/root/.oh-my-zsh", directory=True),
            5: lambda: self.pve.path_exists(control, NODE_TOKEN_PATH),
            6: lambda: all(self.pve.path_exists(containers[role], K3S_BIN) for role in WORKER_ROLES),
            7: lambda: self.pve.has_command(control, "helm"),
        }

    def detect_phases(self, containers: Optional[Dict[NodeRole, int]] = None) -> List[PhaseCheck]:
        """Per-phase completion, gap-free: after the first miss nothing is probed."""
        if containers is None:
            containers = self.detect_containers()
        checks = []
        complete = True
        for phase, probe in self._probes(containers).items():
            complete = complete and bool(probe())
            checks.append(PhaseCheck(phase, PHASE_LABELS[phase], complete))
        return checks

    def last_completed(self, containers: Optional[Dict[NodeRole, int]] = None) -> int:
        last = 0
        for check in self.detect_phases(containers):
            if not check.complete:
                break
            last = check.phase
        return last

    def resume_point(self, containers: Optional[Dict[NodeRole, int]] = None) -> Optional[int]:
        """Lowest unmet phase, or None when every phase is complete."""
        last = self.last_completed(containers)
        return None if last >= LAST_PHASE else last + 1
