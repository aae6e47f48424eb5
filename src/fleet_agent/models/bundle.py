"""Executable bundle models."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Executable(BaseModel):
    """Single executable step of a bundle."""

    name: str = Field(..., min_length=1, description="Script or recipe nickname")
    command: str = Field(..., min_length=1, description="Shell command to run")
    env: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(None, gt=0, description="Seconds before the step is killed")


class ExecutableBundle(BaseModel):
    """Ordered set of executables delivered by the coordinator.

    Example:
        {
            "audit_id": 4242,
            "executables": [
                {"name": "install-packages", "command": "apt-get install -y nginx"}
            ]
        }
    """

    audit_id: int = Field(..., description="Audit entry receiving status updates")
    executables: List[Executable] = Field(default_factory=list)

    def __str__(self) -> str:
        names = ", ".join(e.name for e in self.executables)
        return f"[{names}]"
