"""Small persisted record of provisioning progress.

The record lives in a YAML file and is rewritten after every completed
phase. It holds the container ids, the last completed phase and the
non-secret cluster settings, so a resumed run does not have to guess.
"""
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..config import Config
from ..errors import ConfigurationError
from ..models import LAST_PHASE, ClusterConfig, NodeRole

logger = logging.getLogger("pvek3s.state")

# Never persisted
_SECRET_FIELDS = {"password"}


class ClusterState(BaseModel):
    """Provisioning progress of one cluster."""
    ctids: Dict[NodeRole, int] = Field(default_factory=dict)
    last_phase: int = Field(default=0, ge=0, le=LAST_PHASE)
    settings: Dict[str, Any] = Field(default_factory=dict)
    updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, cluster: ClusterConfig, last_phase: int = 0) -> 'ClusterState':
        return cls(
            ctids=cluster.ctids(),
            last_phase=last_phase,
            settings=cluster.model_dump(exclude=_SECRET_FIELDS),
        )

    def to_config(self) -> ClusterConfig:
        try:
            return ClusterConfig(**self.settings)
        except ValidationError as e:
            raise ConfigurationError(f"State record holds invalid settings: {e}") from e

    @property
    def next_phase(self) -> Optional[int]:
        return None if self.last_phase >= LAST_PHASE else self.last_phase + 1


class StateStore:
    """Reads and writes the state record file."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path or Config.STATE_FILE).expanduser()

    def load(self) -> Optional[ClusterState]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r') as f:
                data = yaml.safe_load(f) or {}
            return ClusterState(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            logger.warning(f"⚠️  Ignoring unreadable state file {self.path}: {e}")
            return None

    def save(self, state: ClusterState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        state = state.model_copy(update={"updated": datetime.now(timezone.utc)})
        with open(self.path, 'w') as f:
            yaml.safe_dump(state.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)
        self.path.chmod(0o600)
        logger.debug(f"Wrote state to {self.path}")

    def record_phase(self, cluster: ClusterConfig, phase: int) -> None:
        self.save(ClusterState.from_config(cluster, last_phase=phase))

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info(f"🧹 Removed state file: {self.path}")
