"""Host platform control: uptime, MOTD banner, shutdown and re-enroll."""

import asyncio
import contextlib
import logging
import shutil
import sys
from pathlib import Path
from typing import Optional, Set

from fleet_agent.models.state import FAILED_STATES, SUCCESSFUL_STATES, LifecycleState


class PlatformController:
    """Wraps the OS-level actions the agent needs."""

    WALL_TIMEOUT = 5.0

    def __init__(
        self,
        shutdown_command: str = "shutdown -h now",
        reenroll_command: str = "rs_reenroll",
        motd_dir: Optional[str] = None,
        motd_path: Path = Path("/etc/motd"),
        uptime_path: Path = Path("/proc/uptime"),
    ):
        """Initialize platform controller.

        Args:
            shutdown_command: Command powering the machine off
            reenroll_command: Command re-registering the agent with the fleet
            motd_dir: Directory holding the motd, motd-complete and motd-failed
                templates (MOTD updates are skipped when None)
            motd_path: System MOTD file
            uptime_path: Proc file reporting system uptime
        """
        self.logger = logging.getLogger("fleet_agent.platform")
        self.shutdown_command = shutdown_command
        self.reenroll_command = reenroll_command
        self.motd_dir = Path(motd_dir) if motd_dir else None
        self.motd_path = motd_path
        self.uptime_path = uptime_path
        self._shutdown_requested = False
        self._tasks: Set[asyncio.Task] = set()

    def uptime(self) -> float:
        """System uptime in seconds, or 0.0 if undetermined."""
        try:
            return float(self.uptime_path.read_text().split()[0])
        except (OSError, ValueError, IndexError) as e:
            self.logger.warning(f"Could not determine uptime: {e}")
            return 0.0

    def update_motd(self, state: LifecycleState) -> None:
        """Point the MOTD banner at the template matching `state`.

        Purely informational, so every failure is swallowed. The wall
        broadcast runs as a background task and is skipped outside a loop.
        """
        if not sys.platform.startswith("linux") or self.motd_dir is None:
            return

        if state in SUCCESSFUL_STATES:
            template, message = "motd-complete", "Installation complete. Details can be found in /var/log/messages"
        elif state in FAILED_STATES:
            template, message = "motd-failed", "Installation failed. Please review /var/log/messages"
        else:
            template, message = "motd", None

        try:
            self.motd_path.unlink(missing_ok=True)
            shutil.copyfile(self.motd_dir / template, self.motd_path)
        except OSError as e:
            self.logger.debug(f"Could not update MOTD: {e}")

        if message:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                self.logger.debug("No event loop, skipping MOTD broadcast")
                return
            self._spawn(self._broadcast(message))

    async def _broadcast(self, message: str) -> None:
        """Send `message` to logged-in users through wall."""
        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                "wall",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(process.communicate(message.encode()), timeout=self.WALL_TIMEOUT)
        except asyncio.TimeoutError:
            self.logger.debug("MOTD broadcast timed out")
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        except OSError as e:
            self.logger.debug(f"Could not broadcast MOTD message: {e}")

    async def run_command(self, command: str) -> None:
        """Run a shell command.

        Raises:
            RuntimeError: If the command exits non-zero
        """
        self.logger.info(f"Running: {command}")
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            raise RuntimeError(
                f"Command '{command}' failed: "
                f"exit code {process.returncode}, "
                f"stderr: {stderr.decode(errors='replace')}"
            )

    async def shutdown(self) -> None:
        self.logger.info("Shutting down instance")
        try:
            await self.run_command(self.shutdown_command)
        except (OSError, RuntimeError) as e:
            self.logger.error(f"Shutdown failed: {e}")

    def request_shutdown(self) -> Optional[asyncio.Task]:
        """Start shutdown once; later requests are ignored."""
        if self._shutdown_requested:
            self.logger.debug("Shutdown already requested")
            return None
        self._shutdown_requested = True
        return self._spawn(self.shutdown())

    async def reenroll(self) -> None:
        try:
            await self.run_command(self.reenroll_command)
        except (OSError, RuntimeError) as e:
            self.logger.error(f"Re-enroll failed: {e}")

    def request_reenroll(self) -> asyncio.Task:
        return self._spawn(self.reenroll())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
