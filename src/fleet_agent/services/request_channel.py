"""Request/push channel to the fleet coordinator."""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set

import httpx

from fleet_agent.models.result import OperationResult


ResultCallback = Callable[[OperationResult], None]


class RequestChannel:
    """Sends requests and fire-and-forget pushes to the coordinator.

    Every reply is classified into an OperationResult; transport and HTTP
    errors become error results and are never raised to callers.
    """

    def __init__(self, coordinator_url: str = "http://localhost:9080", timeout: float = 10.0):
        """Initialize request channel.

        Args:
            coordinator_url: Base URL of the coordinator (default: http://localhost:9080)
            timeout: Per-request timeout in seconds
        """
        self.logger = logging.getLogger("fleet_agent.request_channel")
        self.coordinator_url = coordinator_url.rstrip("/")
        self.timeout = timeout
        self._pending: Set[asyncio.Task] = set()

    def url_for(self, route: str) -> str:
        return f"{self.coordinator_url}/api/v1.0{route}"

    async def request(self, route: str, payload: Dict[str, Any]) -> OperationResult:
        """Send a request and wait for the coordinator's reply.

        Args:
            route: Coordinator route (e.g. "/state_recorder/record")
            payload: JSON-serializable request body

        Returns:
            OperationResult carrying the reply content or the error message
        """
        self.logger.debug(f"Request {route}: {payload}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url_for(route), json=payload)
                response.raise_for_status()
                result = OperationResult.from_response(response.json())
        except httpx.HTTPError as e:
            self.logger.warning(f"Request {route} failed: {e}")
            return OperationResult.error_result(f"Request {route} failed: {e}")
        except ValueError as e:
            self.logger.warning(f"Invalid reply to {route}: {e}")
            return OperationResult.error_result(f"Invalid reply to {route}: {e}")

        if not result.success:
            self.logger.debug(f"Request {route} returned error: {result.content}")
        return result

    def submit(
        self,
        route: str,
        payload: Dict[str, Any],
        callback: Optional[ResultCallback] = None,
    ) -> asyncio.Task:
        """Schedule a request and hand its result to `callback` on the event loop.

        Must be called from within the running event loop.
        """

        async def _run() -> OperationResult:
            result = await self.request(route, payload)
            if callback is not None:
                try:
                    callback(result)
                except Exception as e:
                    self.logger.error(f"Handling reply to {route} failed: {e}", exc_info=True)
            return result

        return self._track(asyncio.get_running_loop().create_task(_run()))

    def push(self, route: str, payload: Dict[str, Any]) -> asyncio.Task:
        """Fire-and-forget send; failures are logged only."""
        return self._track(asyncio.get_running_loop().create_task(self._push(route, payload)))

    async def _push(self, route: str, payload: Dict[str, Any]) -> None:
        self.logger.debug(f"Push {route}: {payload}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url_for(route), json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning(f"Push {route} failed: {e}")
        except Exception as e:
            self.logger.error(f"Unexpected error pushing {route}: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait for in-flight requests and pushes to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task
