"""Default step runner executing a bundle's executables in order."""

import asyncio
import contextlib
import logging
import os
from typing import Any, Dict

from fleet_agent.models.bundle import Executable, ExecutableBundle
from fleet_agent.services.auditor import AuditorProxy
from fleet_agent.services.instance_state import InstanceState


class ExecutableSequence:
    """Runs each executable of a bundle as a subprocess, stopping at the first failure.

    After run(), `inputs_patch` holds the outcome of every step that ran,
    keyed by executable name, for reporting back to the coordinator.
    """

    def __init__(self, bundle: ExecutableBundle, instance_state: InstanceState, auditor: AuditorProxy):
        self.logger = logging.getLogger("fleet_agent.sequence")
        self.bundle = bundle
        self.instance_state = instance_state
        self.auditor = auditor
        self.inputs_patch: Dict[str, Dict[str, Any]] = {}

    async def run(self) -> bool:
        """Execute all steps.

        Returns:
            True if every step exited 0, False otherwise
        """
        self.auditor.update_status(f"Running {self.bundle}")
        for executable in self.bundle.executables:
            if not await self._run_executable(executable):
                self.auditor.append_error(f"Execution of {executable.name} failed")
                return False
        self.auditor.update_status(f"Completed {self.bundle}")
        return True

    async def _run_executable(self, executable: Executable) -> bool:
        self.auditor.update_status(f"Running {executable.name}")
        env = {**os.environ, **executable.env}

        try:
            process = await asyncio.create_subprocess_shell(
                executable.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
            )
        except OSError as e:
            self.logger.error(f"Could not start {executable.name}: {e}")
            return False

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=executable.timeout)
        except asyncio.TimeoutError:
            self.logger.error(f"{executable.name} timed out after {executable.timeout}s")
            self._kill(process)
            await process.wait()
            self.inputs_patch[executable.name] = {"exit_code": None, "stdout": ""}
            return False
        except asyncio.CancelledError:
            self.logger.warning(f"{executable.name} cancelled, killing it")
            self._kill(process)
            raise

        output = stdout.decode(errors="replace") if stdout else ""
        self.inputs_patch[executable.name] = {"exit_code": process.returncode, "stdout": output}
        if output:
            self.auditor.append_output(output)

        if process.returncode != 0:
            self.logger.warning(f"{executable.name} exited with code {process.returncode}")
            return False

        self.instance_state.record_script_execution(executable.name)
        return True

    @staticmethod
    def _kill(process) -> None:
        # The step may exit between the timeout and the kill
        with contextlib.suppress(ProcessLookupError):
            process.kill()
