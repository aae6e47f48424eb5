"""Pydantic models for the local control API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from fleet_agent.models.bundle import ExecutableBundle


class StateRequest(BaseModel):
    """POST /api/v1.0/state payload.

    Example:
        {"value": "operational"}
    """

    value: str = Field(..., description="Target lifecycle state", examples=["operational", "stranded"])


class StateData(BaseModel):
    """Lifecycle data nested in responses."""

    value: Optional[str] = Field(None, description="Current lifecycle state")
    identity: Optional[str] = Field(None, description="Agent identity")
    startup_tags: List[str] = Field(default_factory=list)


class StateResponse(BaseModel):
    """GET /api/v1.0/state response."""

    code: int = Field(default=200, description="Application-level status code")
    msg: str = Field(default="success")
    data: StateData


class ExecuteRequest(BaseModel):
    """POST /api/v1.0/execute payload.

    Example:
        {"recipe": "app::restart", "json": {"app": {"port": 8080}}}
    """

    recipe: str = Field(..., min_length=1, description="Recipe name")
    json_attributes: Optional[Dict[str, Any]] = Field(
        None, alias="json", description="Attributes used when running the recipe"
    )


class DecommissionBundleRequest(BaseModel):
    """POST /api/v1.0/bundles/decommission payload, sent by the coordinator."""

    bundle: ExecutableBundle
    user_id: Optional[int] = Field(None, description="User who requested decommission")
    skip_db_update: bool = Field(False)


class SuccessResponse(BaseModel):
    """Success response for command endpoints."""

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[dict] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error response for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(..., description="Application-level error code (400/409/504)")
    msg: str = Field(..., description="Error message")
    state: Optional[str] = Field(None, description="Lifecycle state when the error occurred")
