"""
Rotation state records.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


class CycleState(str, Enum):
    SCHEDULED = "Scheduled"
    WARNED = "Warned"
    ROTATED = "Rotated"
    FAILED = "Failed"


LIVE_STATES = frozenset({CycleState.SCHEDULED, CycleState.WARNED})


class TriggerAction(str, Enum):
    SCHEDULE_ROTATION = "schedule_rotation"
    SEND_WARNING = "send_warning"
    ROTATE = "rotate"


@dataclass(frozen=True)
class ClientCredential:
    """A rotating machine-client secret. The secret value is never held here."""

    client_id: str
    rotation_period: timedelta
    grace_period: timedelta
    created_at: datetime

    def __post_init__(self) -> None:
        if self.grace_period >= self.rotation_period:
            raise ValueError("grace_period must be shorter than rotation_period")
        if self.grace_period < timedelta(0):
            raise ValueError("grace_period must not be negative")


@dataclass(frozen=True)
class ClientMetadata:
    """What the issuing provider tells us about a client."""

    client_id: str
    client_name: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RotationCycle:
    client_id: str
    warn_at: datetime
    rotate_at: datetime
    state: CycleState = CycleState.SCHEDULED
    warn_rule_id: Optional[str] = None
    rotate_rule_id: Optional[str] = None
    rotated_at: Optional[datetime] = None
    failure: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "warn_at": self.warn_at.isoformat(),
            "rotate_at": self.rotate_at.isoformat(),
            "state": self.state.value,
            "warn_rule_id": self.warn_rule_id,
            "rotate_rule_id": self.rotate_rule_id,
            "rotated_at": self.rotated_at.isoformat() if self.rotated_at else None,
            "failure": self.failure,
        }


class TriggerEvent(BaseModel):
    """Payload delivered by the trigger facility."""

    action: Optional[str] = None
    client_id: Optional[str] = None
    rotate_at: Optional[str] = None
