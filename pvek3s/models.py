"""Data models for K3s on Proxmox LXC."""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils import strip_prefix, validate_ip, validate_ipv4

DOMAIN = "k8s"

PHASE_LABELS: Dict[int, str] = {
    1: "Create LXC Containers",
    2: "Configure LXC for K3s",
    3: "Start Containers & Setup",
    4: "Install Oh My Zsh",
    5: "Install K3s Control Plane",
    6: "Join Worker Nodes",
    7: "Install Helm & NGINX Ingress",
}
FIRST_PHASE = min(PHASE_LABELS)
LAST_PHASE = max(PHASE_LABELS)


class NodeRole(str, Enum):
    """The three fixed node roles. The hostname of each is fixed too."""
    CONTROL = 'control'
    WORKER_1 = 'worker-1'
    WORKER_2 = 'worker-2'

    @property
    def hostname(self) -> str:
        return f"{self.value}.{DOMAIN}"

    @property
    def is_control(self) -> bool:
        return self is NodeRole.CONTROL

    @classmethod
    def from_hostname(cls, hostname: str) -> Optional['NodeRole']:
        for role in cls:
            if role.hostname == hostname:
                return role
        return None


ROLES: Tuple[NodeRole, ...] = (NodeRole.CONTROL, NodeRole.WORKER_1, NodeRole.WORKER_2)
WORKER_ROLES: Tuple[NodeRole, ...] = (NodeRole.WORKER_1, NodeRole.WORKER_2)


@dataclass(frozen=True)
class NodeSpec:
    """One container of the cluster as it should be created."""
    role: NodeRole
    ctid: int
    ip: str
    cpu: int
    ram: int
    disk: int

    @property
    def hostname(self) -> str:
        return self.role.hostname

    @property
    def address(self) -> str:
        return strip_prefix(self.ip)


@dataclass(frozen=True)
class ContainerRecord:
    """A container seen on the host. Status is a single live reading."""
    ctid: int
    hostname: str
    status: str = 'unknown'

    @property
    def running(self) -> bool:
        return self.status == 'running'


class ClusterDefaults(BaseSettings):
    """Defaults for the interactive prompts, overridable with var_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="var_", extra="ignore", case_sensitive=False)

    control_cpu: int = Field(default=4, ge=1)
    control_ram: int = Field(default=4096, ge=256)
    control_disk: int = Field(default=16, ge=1)
    worker_cpu: int = Field(default=4, ge=1)
    worker_ram: int = Field(default=4096, ge=256)
    worker_disk: int = Field(default=16, ge=1)
    os_template: str = "debian-12-standard_12.7-1_amd64.tar.zst"
    bridge: str = "vmbr0"
    install_helm: bool = True
    install_nginx: bool = True


class ClusterConfig(BaseModel):
    """Immutable cluster configuration handed to every phase.

    Creation-only settings (storage, template, password) are optional so the
    same model can describe a resumed cluster reconstructed from the host.
    """

    model_config = ConfigDict(frozen=True)

    storage: Optional[str] = None
    template_storage: Optional[str] = None
    os_template: Optional[str] = None
    password: Optional[SecretStr] = None
    bridge: str = "vmbr0"
    gateway: str

    control_ctid: int = Field(ge=100)
    worker1_ctid: int = Field(ge=100)
    worker2_ctid: int = Field(ge=100)

    control_ip: str
    worker1_ip: str
    worker2_ip: str

    control_cpu: int = Field(default=4, ge=1)
    control_ram: int = Field(default=4096, ge=256)
    control_disk: int = Field(default=16, ge=1)
    worker_cpu: int = Field(default=4, ge=1)
    worker_ram: int = Field(default=4096, ge=256)
    worker_disk: int = Field(default=16, ge=1)

    install_helm: bool = True
    install_nginx: bool = True

    @field_validator('control_ip', 'worker1_ip', 'worker2_ip')
    @classmethod
    def check_cidr(cls, v: str) -> str:
        if not validate_ip(v):
            raise ValueError(f"Invalid IP format {v!r}. Use CIDR notation (e.g., 192.168.1.100/24)")
        return v.strip()

    @field_validator('gateway')
    @classmethod
    def check_gateway(cls, v: str) -> str:
        if not validate_ipv4(v):
            raise ValueError(f"Invalid gateway IP {v!r}")
        return v.strip()

    @field_validator('password')
    @classmethod
    def check_password(cls, v: Optional[SecretStr]) -> Optional[SecretStr]:
        if v is not None and not v.get_secret_value():
            raise ValueError("Password cannot be empty")
        return v

    @model_validator(mode='after')
    def check_distinct_ids(self) -> 'ClusterConfig':
        ids = {self.control_ctid, self.worker1_ctid, self.worker2_ctid}
        if len(ids) != 3:
            raise ValueError("Container ids must be distinct")
        return self

    @property
    def control_address(self) -> str:
        return strip_prefix(self.control_ip)

    @property
    def helm_enabled(self) -> bool:
        # NGINX ingress is installed with Helm
        return self.install_helm or self.install_nginx

    def node(self, role: NodeRole) -> NodeSpec:
        if role is NodeRole.CONTROL:
            return NodeSpec(role, self.control_ctid, self.control_ip,
                            self.control_cpu, self.control_ram, self.control_disk)
        if role is NodeRole.WORKER_1:
            return NodeSpec(role, self.worker1_ctid, self.worker1_ip,
                            self.worker_cpu, self.worker_ram, self.worker_disk)
        return NodeSpec(role, self.worker2_ctid, self.worker2_ip,
                        self.worker_cpu, self.worker_ram, self.worker_disk)

    def nodes(self) -> Tuple[NodeSpec, ...]:
        return tuple(self.node(role) for role in ROLES)

    def ctids(self) -> Dict[NodeRole, int]:
        return {node.role: node.ctid for node in self.nodes()}
