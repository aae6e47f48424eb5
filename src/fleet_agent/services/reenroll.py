"""Re-enroll vote counter."""

import asyncio
import logging
from typing import Callable, Optional


class ReenrollManager:
    """Tracks re-enroll votes and triggers a re-enroll once a threshold is reached.

    The count resets when no vote arrives for `reset_delay` seconds. Once a
    re-enroll has been triggered it is never triggered again in this process.
    """

    def __init__(
        self,
        reenroll_action: Callable[[], object],
        threshold: int = 3,
        reset_delay: float = 7200.0,
    ):
        self.logger = logging.getLogger("fleet_agent.reenroll")
        self.reenroll_action = reenroll_action
        self.threshold = threshold
        self.reset_delay = reset_delay
        self.total_votes = 0
        self.reenrolling = False
        self._reset_timer: Optional[asyncio.TimerHandle] = None

    def vote(self) -> None:
        self.total_votes += 1
        if self._reset_timer is not None:
            self._reset_timer.cancel()
        self._reset_timer = asyncio.get_running_loop().call_later(self.reset_delay, self.reset_votes)

        self.logger.debug(f"[re-enroll] Vote {self.total_votes}/{self.threshold}")
        if self.total_votes >= self.threshold and not self.reenrolling:
            self.logger.info("[re-enroll] Re-enroll threshold reached, shutting down and re-enrolling")
            self.reenrolling = True
            self.reenroll_action()

    def reset_votes(self) -> None:
        self.total_votes = 0
        self._reset_timer = None
