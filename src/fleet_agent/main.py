"""FastAPI application for the fleet instance agent."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from fleet_agent.api.routes import router
from fleet_agent.config import settings as default_settings
from fleet_agent.services.instance_state import InstanceState
from fleet_agent.services.listener import CommandListener
from fleet_agent.services.platform import PlatformController
from fleet_agent.services.reenroll import ReenrollManager
from fleet_agent.services.request_channel import RequestChannel
from fleet_agent.services.scheduler import BundleScheduler
from fleet_agent.utils.logging import setup_logger


def supervise_worker(scheduler: BundleScheduler, logger: logging.Logger):
    """Build the supervisor hook restarting the worker after a fatal failure."""

    def on_fatal(exc: BaseException) -> None:
        logger.error(f"Bundle worker failed: {exc}")
        scheduler.restart()

    return on_fatal


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Initialize logger
    - Build coordinator channel, platform controller and state machine
    - Reconcile persisted lifecycle state
    - Start the bundle worker (deferred until the instance leaves booting)

    Shutdown:
    - Wait for in-flight coordinator requests
    """
    settings = getattr(app.state, "settings", None) or default_settings
    app.state.settings = settings

    logger = setup_logger("fleet_agent", str(Path(settings.log_dir) / "agent.log"), level=logging.INFO)
    logger.info(f"Instance agent {settings.identity} starting up...")

    channel = RequestChannel(settings.coordinator_url, timeout=settings.request_timeout)
    platform = PlatformController(
        shutdown_command=settings.shutdown_command,
        reenroll_command=settings.reenroll_command,
        motd_dir=settings.motd_dir,
    )
    instance_state = InstanceState(
        channel,
        platform,
        state_dir=settings.state_dir,
        log_dir=settings.log_dir,
        force_shutdown_delay=settings.force_shutdown_delay,
    )
    instance_state.init(settings.identity)
    logger.info(f"Lifecycle state: {instance_state.get().value}")

    scheduler = BundleScheduler(
        instance_state,
        channel,
        listener=getattr(app.state, "listener", None),
        shutdown_delay=settings.shutdown_delay,
    )
    scheduler.on_fatal = supervise_worker(scheduler, logger)
    reenroll_manager = ReenrollManager(
        platform.request_reenroll,
        threshold=settings.reenroll_threshold,
        reset_delay=settings.reenroll_reset_delay,
    )

    app.state.channel = channel
    app.state.instance_state = instance_state
    app.state.scheduler = scheduler
    app.state.reenroll_manager = reenroll_manager

    scheduler.start()
    logger.info(f"Instance agent ready on {settings.control_host}:{settings.control_port}")

    yield

    logger.info("Instance agent shutting down...")
    await channel.drain()


app = FastAPI(
    title="Fleet Instance Agent",
    description="Lifecycle and bundle execution agent for managed instances",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "fleet-agent", "version": "1.0.0"}


def main():
    """Main entry point: serve the control API through the command listener."""
    settings = default_settings
    app.state.settings = settings
    listener = CommandListener(app, host=settings.control_host, port=settings.control_port)
    app.state.listener = listener
    asyncio.run(listener.listen())


if __name__ == "__main__":
    main()
