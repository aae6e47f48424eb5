"""Local command listener serving the control API."""

import logging
from typing import Optional

import uvicorn

from fleet_agent.exceptions import AlreadyListeningError


class CommandListener:
    """Owns the single uvicorn server bound to the local control port.

    Other processes on the machine talk to the agent through it without
    going through the coordinator.
    """

    def __init__(self, app, host: str = "127.0.0.1", port: int = 12316):
        self.logger = logging.getLogger("fleet_agent.listener")
        self.app = app
        self.host = host
        self.port = port
        self._server: Optional[uvicorn.Server] = None

    @property
    def listening(self) -> bool:
        return self._server is not None

    async def listen(self) -> None:
        """Serve the control API until stopped.

        Raises:
            AlreadyListeningError: If a server is already running
        """
        if self.listening:
            raise AlreadyListeningError("Already listening")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info",
            access_log=True,
        )
        self._server = uvicorn.Server(config)
        self.logger.info(f"Command listener on {self.host}:{self.port}")
        try:
            await self._server.serve()
        finally:
            self._server = None

    def stop_listening(self) -> bool:
        """Ask the server to exit.

        Returns:
            True if the listener was listening, False otherwise
        """
        if self._server is None:
            return False
        self._server.should_exit = True
        self._server = None
        return True
