"""API route handlers for the local control surface."""

import asyncio

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from fleet_agent.api.models import (
    DecommissionBundleRequest,
    ErrorResponse,
    ExecuteRequest,
    StateData,
    StateRequest,
    StateResponse,
    SuccessResponse,
)
from fleet_agent.exceptions import InvalidStateError
from fleet_agent.models.bundle import ExecutableBundle
from fleet_agent.models.state import LifecycleState

router = APIRouter(prefix="/api/v1.0")


def _state_value(instance_state):
    value = instance_state.get()
    return value.value if value else None


def _error(code: int, msg: str, instance_state=None) -> JSONResponse:
    body = ErrorResponse(
        code=code,
        msg=msg,
        state=_state_value(instance_state) if instance_state is not None else None,
    )
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"))


@router.get("/state", response_model=StateResponse)
async def get_state(request: Request):
    """GET /api/v1.0/state - Query current lifecycle state.

    Response format:
        {
            "code": 200,
            "msg": "success",
            "data": {"value": "operational", "identity": "i-123", "startup_tags": []}
        }
    """
    instance_state = request.app.state.instance_state
    return StateResponse(
        data=StateData(
            value=_state_value(instance_state),
            identity=instance_state.identity,
            startup_tags=instance_state.startup_tags,
        )
    )


@router.post("/state", response_model=SuccessResponse)
async def post_state(body: StateRequest, request: Request):
    """POST /api/v1.0/state - Transition lifecycle state (boot sequence reports)."""
    instance_state = request.app.state.instance_state
    try:
        value = instance_state.set(body.value)
    except InvalidStateError as e:
        return _error(400, str(e), instance_state)
    return SuccessResponse(data={"value": value.value})


@router.post("/bundles", response_model=SuccessResponse)
async def post_bundle(bundle: ExecutableBundle, request: Request):
    """POST /api/v1.0/bundles - Schedule a bundle for execution.

    Refused with code 409 once the instance is decommissioning.
    """
    instance_state = request.app.state.instance_state
    if instance_state.get() in (LifecycleState.DECOMMISSIONING, LifecycleState.DECOMMISSIONED):
        return _error(409, "Instance is decommissioning", instance_state)

    request.app.state.scheduler.schedule_bundle(bundle)
    return SuccessResponse()


@router.post("/bundles/decommission", response_model=SuccessResponse)
async def post_decommission_bundle(body: DecommissionBundleRequest, request: Request):
    """POST /api/v1.0/bundles/decommission - Coordinator-initiated decommission."""
    scheduler = request.app.state.scheduler
    result = scheduler.schedule_decommission(
        {"bundle": body.bundle, "user_id": body.user_id, "skip_db_update": body.skip_db_update}
    )
    if not result.success:
        return _error(409, str(result.content), request.app.state.instance_state)
    return SuccessResponse()


@router.post("/execute", response_model=SuccessResponse)
async def post_execute(body: ExecuteRequest, request: Request):
    """POST /api/v1.0/execute - Forward a recipe execution request to the coordinator."""
    options = {"recipe": body.recipe, "json": body.json_attributes or {}}
    request.app.state.scheduler.execute(options)
    return SuccessResponse()


@router.post("/decommission", response_model=SuccessResponse)
async def post_decommission(request: Request):
    """POST /api/v1.0/decommission - Run decommission and reply once it is done.

    The caller is expected to POST /terminate afterwards.
    """
    scheduler = request.app.state.scheduler
    instance_state = request.app.state.instance_state
    timeout = request.app.state.settings.decommission_wait_timeout

    done = asyncio.get_running_loop().create_future()

    def on_decommissioned() -> None:
        if not done.done():
            done.set_result(True)

    scheduler.run_decommission(on_decommissioned)
    try:
        await asyncio.wait_for(done, timeout=timeout)
    except asyncio.TimeoutError:
        return _error(504, "Decommission did not complete in time", instance_state)

    return SuccessResponse(data={"value": _state_value(instance_state)})


@router.post("/terminate", response_model=SuccessResponse)
async def post_terminate(request: Request, background_tasks: BackgroundTasks):
    """POST /api/v1.0/terminate - Stop the agent once the response is sent."""
    background_tasks.add_task(_terminate, request.app.state.scheduler)
    return SuccessResponse()


@router.post("/reenroll/vote", response_model=SuccessResponse)
async def post_reenroll_vote(request: Request):
    """POST /api/v1.0/reenroll/vote - Vote for re-enrolling with the fleet."""
    manager = request.app.state.reenroll_manager
    manager.vote()
    return SuccessResponse(data={"votes": manager.total_votes, "reenrolling": manager.reenrolling})


async def _terminate(scheduler) -> None:
    """Background task for terminate."""
    scheduler.terminate()
