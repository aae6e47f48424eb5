"""Instance lifecycle state machine with crash and reboot reconciliation."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, List, Optional, Union

from pydantic import ValidationError

from fleet_agent.exceptions import InvalidStateError
from fleet_agent.models.result import OperationResult
from fleet_agent.models.state import (
    RECORDED_STATES,
    LifecycleRecord,
    LifecycleState,
    LoginPolicy,
)
from fleet_agent.services.platform import PlatformController
from fleet_agent.services.request_channel import RequestChannel
from fleet_agent.utils.logging import switch_log_target
from fleet_agent.utils.persistence import read_json, write_json


StateObserver = Callable[[LifecycleState], None]


class InstanceState:
    """Single source of truth for the agent's lifecycle state.

    Manages:
    - Current lifecycle value, persisted at <state_dir>/state.json
    - Scripts already executed, persisted at <state_dir>/past_scripts.json
    - Last enacted login policy, persisted at <state_dir>/login_policy.json
    - Observers notified synchronously on every transition

    All mutations happen on the event loop, so no locking is required.
    """

    RECORD_ROUTE = "/state_recorder/record"

    def __init__(
        self,
        channel: RequestChannel,
        platform: PlatformController,
        state_dir: str = "./state",
        log_dir: str = "./logs",
        force_shutdown_delay: float = 180.0,
        logger_name: str = "fleet_agent",
    ):
        """Initialize instance state (call init() before use).

        Args:
            channel: Channel used to record transitions with the coordinator
            platform: Platform controller for uptime, MOTD and shutdown
            state_dir: Directory holding the persisted state files
            log_dir: Directory holding the boot and decommission logs
            force_shutdown_delay: Seconds to wait for the cloud to shut us down
            logger_name: Logger receiving the state-specific log handler
        """
        self.logger = logging.getLogger("fleet_agent.instance_state")
        self.channel = channel
        self.platform = platform
        self.force_shutdown_delay = force_shutdown_delay

        state_path = Path(state_dir)
        self.state_file_path = state_path / "state.json"
        self.scripts_file_path = state_path / "past_scripts.json"
        self.login_policy_file_path = state_path / "login_policy.json"

        log_path = Path(log_dir)
        self.state_log_files = {
            LifecycleState.BOOTING: log_path / "install.log",
            LifecycleState.DECOMMISSIONING: log_path / "decommission.log",
        }
        self._target_logger = logging.getLogger(logger_name)
        self._log_handler: Optional[logging.Handler] = None
        self._log_level = logging.NOTSET

        self._value: Optional[LifecycleState] = None
        self._identity: Optional[str] = None
        self._startup_tags: List[str] = []
        self._past_scripts: List[str] = []
        self._login_policy: Optional[LoginPolicy] = None
        self._observers: List[StateObserver] = []
        self._force_shutdown_timer: Optional[asyncio.TimerHandle] = None

    @property
    def value(self) -> Optional[LifecycleState]:
        return self._value

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    @property
    def past_scripts(self) -> List[str]:
        return list(self._past_scripts)

    @property
    def login_policy(self) -> Optional[LoginPolicy]:
        return self._login_policy

    @property
    def startup_tags(self) -> List[str]:
        """Tags retrieved on startup."""
        return list(self._startup_tags)

    @startup_tags.setter
    def startup_tags(self, tags: List[str]) -> None:
        self._startup_tags = list(tags)

    def init(self, identity: str) -> None:
        """Load persisted state and reconcile how the agent last stopped.

        Scenarios:
        1) first run       -- no state file: transition to booting
        2) reboot/restart  -- same identity, uptime went backwards: booting
        3) re-imaged boot  -- identity changed: booting
        4) crash/restart   -- same identity, no reboot: keep state as-is

        Args:
            identity: Agent identity
        """
        self._identity = identity
        self._startup_tags = []
        self.state_file_path.parent.mkdir(parents=True, exist_ok=True)

        record = self._load_record()
        if record is None:
            self.logger.debug(f"Initializing instance {identity} with booting")
            self.set(LifecycleState.BOOTING)
        elif (
            record.identity != identity
            or record.uptime is None
            or self.platform.uptime() < record.uptime
        ):
            self.logger.debug("Reboot/bundle/start detected; transitioning state to booting")
            self.set(LifecycleState.BOOTING)
        else:
            self.logger.info(f"Restart without reboot, keeping state {record.value.value}")
            self._value = record.value
            self._startup_tags = list(record.startup_tags)
            self._update_logger()

        self._past_scripts = self._load_past_scripts()
        self.logger.debug(f"Past scripts: {self._past_scripts}")

        self._login_policy = self._load_login_policy()
        if self._login_policy is not None:
            self.logger.debug(f"Existing login users: {len(self._login_policy.users)} recorded")

    def get(self) -> Optional[LifecycleState]:
        return self._value

    def set(self, value: Union[LifecycleState, str]) -> LifecycleState:
        """Transition to `value`.

        Switches the log target, refreshes the MOTD banner, records the
        transition with the coordinator, persists the lifecycle record and
        finally notifies observers in registration order.

        Args:
            value: One of the LifecycleState values

        Returns:
            The new state

        Raises:
            InvalidStateError: If value is not a known lifecycle state
        """
        try:
            new_value = LifecycleState(value)
        except ValueError:
            raise InvalidStateError(f"Invalid instance state '{value}'") from None

        previous = self._value.value if self._value else None
        self.logger.info(f"Transitioning state from {previous} to {new_value.value}")
        self._value = new_value
        self._update_logger()
        self._update_motd()

        if new_value in RECORDED_STATES:
            self._record_state(new_value)

        record = LifecycleRecord(
            value=new_value,
            identity=self._identity or "",
            uptime=self.platform.uptime(),
            startup_tags=self._startup_tags,
        )
        write_json(self.state_file_path, record.model_dump(mode="json"))

        for observer in self._observers:
            observer(new_value)
        return new_value

    def observe(self, observer: StateObserver) -> None:
        """Call `observer` with the new state on every subsequent transition."""
        self._observers.append(observer)

    def record_script_execution(self, name: str) -> bool:
        """Record that script `name` ran successfully.

        Returns:
            True if the script was added, False if it was already recorded
        """
        if name in self._past_scripts:
            return False
        self._past_scripts.append(name)
        write_json(self.scripts_file_path, self._past_scripts)
        return True

    def set_login_policy(self, policy: LoginPolicy) -> LoginPolicy:
        """Store and persist the most recently enacted login policy."""
        self._login_policy = policy.model_copy(deep=True)
        write_json(self.login_policy_file_path, self._login_policy.model_dump(mode="json"))
        return policy

    def shutdown(self, user_id: Optional[int], skip_db_update: bool) -> None:
        """Ask the coordinator to shut this instance down.

        Shuts down locally right away if the coordinator refuses, and arms a
        timer forcing the shutdown if nothing has happened after
        force_shutdown_delay seconds.

        Args:
            user_id: ID of the user that triggered soft termination
            skip_db_update: Whether the coordinator should skip requerying state
        """
        payload = {
            "agent_identity": self._identity,
            "state": LifecycleState.DECOMMISSIONED.value,
            "user_id": user_id,
            "skip_db_update": skip_db_update,
        }

        def on_recorded(result: OperationResult) -> None:
            if not result.success:
                self.logger.warning(f"Coordinator did not record shutdown: {result.content}")
                self.platform.request_shutdown()

        self.channel.submit(self.RECORD_ROUTE, payload, on_recorded)
        self._force_shutdown_timer = asyncio.get_running_loop().call_later(
            self.force_shutdown_delay, self.platform.request_shutdown
        )

    def _record_state(self, value: LifecycleState) -> None:
        def on_recorded(result: OperationResult) -> None:
            if not result.success:
                self.logger.warning(f"Failed to record state: {result.content}")

        self.channel.submit(
            self.RECORD_ROUTE,
            {"agent_identity": self._identity, "state": value.value},
            on_recorded,
        )

    def _update_logger(self) -> None:
        """Point the state log handler at the file for the current state, if any."""
        if self._log_handler is not None:
            self._log_level = self._log_handler.level
        self._log_handler = switch_log_target(
            self._target_logger,
            self.state_log_files.get(self._value),
            self._log_handler,
            self._log_level,
        )

    def _update_motd(self) -> None:
        try:
            self.platform.update_motd(self._value)
        except Exception as e:
            self.logger.debug(f"MOTD update failed: {e}")

    def _load_record(self) -> Optional[LifecycleRecord]:
        if not self.state_file_path.exists():
            return None
        try:
            record = LifecycleRecord.model_validate(read_json(self.state_file_path))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            self.logger.error(f"Failed to load state file: {e}", exc_info=True)
            return None
        self.logger.debug(f"Initializing instance {self._identity} with {record}")
        return record

    def _load_past_scripts(self) -> List[str]:
        if not self.scripts_file_path.exists():
            return []
        try:
            scripts = read_json(self.scripts_file_path)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Ignoring unreadable script ledger {self.scripts_file_path}: {e}")
            return []
        if not isinstance(scripts, list) or not all(isinstance(s, str) for s in scripts):
            self.logger.error(
                f"Ignoring script ledger {self.scripts_file_path}: expected a list of names, "
                f"got {type(scripts).__name__}"
            )
            return []
        return list(dict.fromkeys(scripts))

    def _load_login_policy(self) -> Optional[LoginPolicy]:
        if not self.login_policy_file_path.exists():
            return None
        try:
            return LoginPolicy.model_validate(read_json(self.login_policy_file_path))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            # A corrupt policy file is not important enough to fail startup
            self.logger.warning(f"Ignoring unreadable login policy: {e}")
            return None
