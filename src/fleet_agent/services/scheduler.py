"""Sequential bundle execution and the decommission protocol."""

import asyncio
import logging
import os
import signal
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from fleet_agent.exceptions import FatalWorkerError
from fleet_agent.models.bundle import ExecutableBundle
from fleet_agent.models.result import OperationResult
from fleet_agent.models.state import LifecycleState
from fleet_agent.services.auditor import AuditorProxy
from fleet_agent.services.instance_state import InstanceState
from fleet_agent.services.listener import CommandListener
from fleet_agent.services.request_channel import RequestChannel
from fleet_agent.services.sequence import ExecutableSequence


class _DrainMarker:
    def __repr__(self) -> str:
        return "<drain marker>"


# Pushed after the decommission bundle: no more work, finalize decommission
DRAIN_MARKER = _DrainMarker()


class BundleScheduler:
    """Runs scheduled bundles one at a time, in order.

    The worker processes a single queue entry per task and spawns a fresh
    task for the next entry. It only starts once the instance is past
    booting. Decommissioning clears the queue, runs the decommission bundle
    and then hands over to the post-decommission callback.
    """

    def __init__(
        self,
        instance_state: InstanceState,
        channel: RequestChannel,
        listener: Optional[CommandListener] = None,
        sequence_factory: Optional[Callable[[ExecutableBundle], Any]] = None,
        shutdown_delay: float = 180.0,
        on_fatal: Optional[Callable[[BaseException], None]] = None,
    ):
        """Initialize scheduler.

        Args:
            instance_state: Lifecycle state gating and recording decommission
            channel: Channel to the coordinator
            listener: Command listener stopped on terminate
            sequence_factory: Builds the runnable sequence for a bundle
                (default: ExecutableSequence)
            shutdown_delay: Seconds to wait for decommission scripts before
                forcing shutdown
            on_fatal: Supervisor hook receiving fatal worker failures
        """
        self.logger = logging.getLogger("fleet_agent.scheduler")
        self.instance_state = instance_state
        self.channel = channel
        self.listener = listener
        self.sequence_factory = sequence_factory or self._default_sequence
        self.shutdown_delay = shutdown_delay
        self.on_fatal = on_fatal

        self._queue: asyncio.Queue = asyncio.Queue()
        self._running = False
        self._worker: Optional[asyncio.Task] = None
        self._post_decommission_callback: Optional[Callable[[], None]] = None
        self._shutdown_timer: Optional[asyncio.TimerHandle] = None

    @property
    def agent_identity(self) -> Optional[str]:
        return self.instance_state.identity

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        """Number of queued entries, drain marker included."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the worker now, or as soon as the instance leaves booting."""
        if self.instance_state.get() != LifecycleState.BOOTING:
            self._start_worker()
        else:
            self.instance_state.observe(self._on_state_change)

    def restart(self) -> None:
        """Spawn a new worker after a fatal failure."""
        if self.instance_state.get() == LifecycleState.DECOMMISSIONED:
            self.logger.info("Instance decommissioned, not restarting worker")
            return
        self.logger.info("Restarting bundle worker")
        self._spawn_worker()

    def schedule_bundle(self, bundle: ExecutableBundle) -> OperationResult:
        """Queue `bundle` to run as soon as possible.

        Returns:
            Always a success result; empty bundles are ignored
        """
        if bundle.executables:
            self._auditor(bundle.audit_id).update_status(f"Scheduling execution of {bundle}")
            self._queue.put_nowait(bundle)
        return OperationResult.success_result()

    def execute(self, options: Dict[str, Any]) -> bool:
        """Ask the coordinator to schedule a recipe on this agent.

        Args:
            options: Recipe request, e.g. {"recipe": "nginx::restart", "json": {...}}

        Returns:
            Always True
        """
        payload = dict(options)
        payload["agent_identity"] = self.agent_identity

        def on_forwarded(result: OperationResult) -> None:
            if not result.success:
                self.logger.info(f"Failed to execute recipe: {result.content}")

        self.channel.submit("/forwarder/schedule_recipe", payload, on_forwarded)
        return True

    def schedule_decommission(self, options: Dict[str, Any]) -> OperationResult:
        """Cancel pending work and run the decommission bundle.

        Only installs the default post-decommission callback (soft
        termination: shut the machine down) when run_decommission has not
        installed one already.

        Args:
            options: {"bundle": ExecutableBundle or dict,
                      "user_id": int, "skip_db_update": bool}

        Returns:
            Success, or an error if the instance is already decommissioning
        """
        if self.instance_state.get() == LifecycleState.DECOMMISSIONING:
            return OperationResult.error_result("Instance is already decommissioning")

        bundle = options["bundle"]
        if not isinstance(bundle, ExecutableBundle):
            bundle = ExecutableBundle.model_validate(bundle)
        user_id = options.get("user_id")
        skip_db_update = bool(options.get("skip_db_update", False))

        if self._post_decommission_callback is None:
            self._shutdown_timer = asyncio.get_running_loop().call_later(
                self.shutdown_delay, self.instance_state.shutdown, user_id, skip_db_update
            )

            def shutdown_after_decommission() -> None:
                self._cancel_shutdown_timer()
                self.instance_state.shutdown(user_id, skip_db_update)

            self._post_decommission_callback = shutdown_after_decommission

        self._clear_queue()
        self.instance_state.set(LifecycleState.DECOMMISSIONING)
        self.schedule_bundle(bundle)
        self._queue.put_nowait(DRAIN_MARKER)
        return OperationResult.success_result()

    def run_decommission(self, callback: Optional[Callable[[], None]] = None) -> bool:
        """Decommission and call `callback` once the decommission bundle ran.

        Replaces any previously installed callback rather than chaining it:
        a hard termination arriving after a soft one must not notify the
        coordinator a second time.

        Returns:
            Always True
        """
        self._post_decommission_callback = callback
        state = self.instance_state.get()

        if state == LifecycleState.DECOMMISSIONED:
            if callback is not None:
                callback()
        elif state != LifecycleState.DECOMMISSIONING:
            self.channel.submit(
                "/booter/get_decommission_bundle",
                {"agent_identity": self.agent_identity},
                self._on_decommission_bundle,
            )
        return True

    def terminate(self) -> None:
        """Stop the command listener and send ourselves SIGTERM.

        Does not run the decommission bundle; call run_decommission first for
        a graceful stop.
        """
        self.logger.info(f"Instance agent {self.agent_identity} terminating")
        if self.listener is not None:
            self.listener.stop_listening()
        os.kill(os.getpid(), signal.SIGTERM)

    def _on_decommission_bundle(self, result: OperationResult) -> None:
        if not result.success:
            self.logger.warning(f"Failed to retrieve decommission bundle: {result.content}")
            return
        try:
            bundle = ExecutableBundle.model_validate(result.content)
        except ValidationError as e:
            self.logger.warning(f"Failed to retrieve decommission bundle: invalid bundle: {e}")
            return
        res = self.schedule_decommission({"bundle": bundle})
        if not res.success:
            self.logger.warning(f"Could not schedule decommission: {res.content}")

    def _on_state_change(self, state: LifecycleState) -> None:
        if state != LifecycleState.BOOTING and not self._running:
            self._start_worker()

    def _start_worker(self) -> None:
        self._running = True
        self._spawn_worker()

    def _spawn_worker(self) -> None:
        task = asyncio.get_running_loop().create_task(self._run_bundles())
        task.add_done_callback(self._on_worker_done)
        self._worker = task

    def _on_worker_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        if self.on_fatal is not None:
            self.on_fatal(exc)
        else:
            self.logger.critical(f"Bundle worker stopped: {exc}")

    async def _run_bundles(self) -> None:
        """Process one queue entry, then re-arm unless it was the drain marker."""
        entry = None
        try:
            entry = await self._queue.get()
            if entry is DRAIN_MARKER:
                self._finish_decommission()
                return

            sequence = self.sequence_factory(entry)
            if await sequence.run():
                self.channel.push(
                    "/updater/update_inputs",
                    {"agent_identity": self.agent_identity, "patch": sequence.inputs_patch},
                )
            self._spawn_worker()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            msg = f"Bundle execution failed with exception: {e}"
            self.logger.error(msg, exc_info=True)
            audit_id = None
            if isinstance(entry, ExecutableBundle):
                audit_id = entry.audit_id
                self._auditor(audit_id).append_error(msg, category="error")
            raise FatalWorkerError(msg, audit_id=audit_id) from e

    def _finish_decommission(self) -> None:
        self.instance_state.set(LifecycleState.DECOMMISSIONED)
        loop = asyncio.get_running_loop()
        loop.call_soon(
            self.channel.push, "/registrar/remove", {"agent_identity": self.agent_identity}
        )

        callback = self._post_decommission_callback
        if callback is not None:

            def run_callback() -> None:
                self._post_decommission_callback = None
                callback()

            loop.call_soon(run_callback)
        else:
            loop.call_soon(self.terminate)

    def _cancel_shutdown_timer(self) -> None:
        if self._shutdown_timer is not None:
            self._shutdown_timer.cancel()
            self._shutdown_timer = None

    def _clear_queue(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    def _auditor(self, audit_id: int) -> AuditorProxy:
        return AuditorProxy(self.channel, audit_id)

    def _default_sequence(self, bundle: ExecutableBundle) -> ExecutableSequence:
        return ExecutableSequence(bundle, self.instance_state, self._auditor(bundle.audit_id))
