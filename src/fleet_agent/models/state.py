"""Lifecycle state enum and persisted state records."""

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LifecycleState(str, Enum):
    """Instance lifecycle states.

    State transitions:
    booting → operational ⇄ decommissioning → decommissioned
       ⇅
    stranded

    booting is the only initial state and decommissioned is terminal.
    stranded blocks nothing: a retry may move it back to booting.
    """

    BOOTING = "booting"
    OPERATIONAL = "operational"
    STRANDED = "stranded"
    DECOMMISSIONING = "decommissioning"
    DECOMMISSIONED = "decommissioned"


# States recorded with the coordinator when transitioned to
RECORDED_STATES = frozenset(
    {
        LifecycleState.BOOTING,
        LifecycleState.OPERATIONAL,
        LifecycleState.STRANDED,
        LifecycleState.DECOMMISSIONING,
    }
)

# States for which the MOTD banner reports success
SUCCESSFUL_STATES = frozenset({LifecycleState.OPERATIONAL})

# States for which the MOTD banner reports a failure
FAILED_STATES = frozenset({LifecycleState.STRANDED})


class LifecycleRecord(BaseModel):
    """Persistent lifecycle record at <state_dir>/state.json.

    Rewritten on every transition and read once at startup to reconcile
    reboots and crashes.
    """

    value: LifecycleState = Field(..., description="Lifecycle state at write time")
    identity: str = Field(..., description="Agent identity at write time")
    uptime: Optional[float] = Field(
        None, ge=0, description="System uptime in seconds at write time"
    )
    startup_tags: List[str] = Field(default_factory=list)

    @field_validator("uptime", mode="before")
    @classmethod
    def parse_uptime(cls, v):
        """Accept uptime recorded as a string."""
        if isinstance(v, str):
            return float(v) if v.strip() else None
        return v

    @field_validator("startup_tags", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v


class LoginPolicy(BaseModel):
    """Most recently enacted login policy.

    Opaque to the agent core: unknown fields are kept as-is.
    """

    model_config = ConfigDict(extra="allow")

    audit_id: Optional[int] = None
    exclusive: bool = False
    users: List[Any] = Field(default_factory=list)
