"""Global pytest fixtures and configuration."""

import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fleet_agent.models.bundle import Executable, ExecutableBundle  # noqa: E402
from fleet_agent.models.result import OperationResult  # noqa: E402
from fleet_agent.services.instance_state import InstanceState  # noqa: E402


TEST_LOGGER = "test_fleet_agent"


@pytest.fixture
def mock_channel():
    """Mock RequestChannel: requests are recorded, never sent."""
    channel = MagicMock()
    channel.submit = MagicMock()
    channel.push = MagicMock()
    return channel


@pytest.fixture
def mock_platform():
    """Mock PlatformController reporting 1000s of uptime."""
    platform = MagicMock()
    platform.uptime = MagicMock(return_value=1000.0)
    platform.update_motd = MagicMock()
    platform.request_shutdown = MagicMock()
    return platform


@pytest.fixture
def state_logger():
    """Logger receiving state log handlers; handlers are closed afterwards."""
    logger = logging.getLogger(TEST_LOGGER)
    yield logger
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture
def make_instance_state(tmp_path, mock_channel, mock_platform, state_logger):
    """Factory building InstanceState objects sharing one state directory."""

    def _make(**kwargs):
        return InstanceState(
            kwargs.pop("channel", mock_channel),
            kwargs.pop("platform", mock_platform),
            state_dir=str(tmp_path / "state"),
            log_dir=str(tmp_path / "logs"),
            logger_name=TEST_LOGGER,
            **kwargs,
        )

    return _make


@pytest.fixture
def instance_state(make_instance_state):
    """InstanceState initialized on a fresh state directory (booting)."""
    state = make_instance_state()
    state.init("agent-1")
    return state


@pytest.fixture
def sample_bundle():
    """Bundle with two shell steps."""
    return ExecutableBundle(
        audit_id=42,
        executables=[
            Executable(name="first", command="echo first"),
            Executable(name="second", command="echo second"),
        ],
    )


def _complete_submit(channel, result=None, call_index=-1):
    """Invoke the callback of a recorded channel.submit call."""
    args = channel.submit.call_args_list[call_index][0]
    callback = args[2] if len(args) > 2 else None
    if callback is not None:
        callback(result or OperationResult.success_result())
    return args


@pytest.fixture
def complete_submit():
    """Helper resolving a pending channel.submit with a result."""
    return _complete_submit


@pytest.fixture
def agent_settings(tmp_path):
    """Settings pointing every path into tmp_path."""
    from fleet_agent.config import AgentSettings

    return AgentSettings(
        identity="agent-1",
        state_dir=str(tmp_path / "state"),
        log_dir=str(tmp_path / "logs"),
        decommission_wait_timeout=1.0,
    )


@pytest.fixture
def app_client(agent_settings, mock_channel, mock_platform):
    """Factory creating a TestClient with the lifespan running against mocks."""
    from unittest.mock import AsyncMock, patch

    from fastapi.testclient import TestClient

    from fleet_agent.main import app

    mock_channel.drain = AsyncMock()
    app.state.settings = agent_settings

    def _make():
        with patch("fleet_agent.main.setup_logger") as mock_log:
            mock_log.return_value = logging.getLogger("fleet_agent")
            with patch("fleet_agent.main.RequestChannel", return_value=mock_channel):
                with patch("fleet_agent.main.PlatformController", return_value=mock_platform):
                    with TestClient(app, raise_server_exceptions=True) as c:
                        yield c

    yield _make

    for name in ("settings", "instance_state", "scheduler", "reenroll_manager", "channel"):
        if hasattr(app.state, name):
            delattr(app.state, name)
    agent_logger = logging.getLogger("fleet_agent")
    for handler in list(agent_logger.handlers):
        handler.close()
        agent_logger.removeHandler(handler)
