"""
Provisioning modules.
"""
from .phases import CleanupStack, PhaseRunner
from .proxmox import Proxmox
from .state import ClusterState, StateStore
from .status import PhaseCheck, StatusDetector

__all__ = [
    'CleanupStack',
    'PhaseRunner',
    'Proxmox',
    'ClusterState',
    'StateStore',
    'PhaseCheck',
    'StatusDetector',
]
