from __future__ import annotations

import enum
import logging
import threading
from typing import Optional

import schedule

from services.auto_responder import AutoResponder, CycleReport

LOGGER = logging.getLogger(__name__)


class CycleState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class MailboxPoller:
    """Run responder cycles on a randomized interval until stopped.

    Each firing re-draws the next delay uniformly from
    ``[min_interval, max_interval]`` seconds, bounds included.
    """

    def __init__(
        self,
        responder: AutoResponder,
        min_interval: int = 45,
        max_interval: int = 120,
        *,
        scheduler: Optional[schedule.Scheduler] = None,
        wake_interval: float = 1.0,
    ):
        if min_interval > max_interval:
            raise ValueError("min_interval must not exceed max_interval")
        self._responder = responder
        self._min_interval = min_interval
        self._max_interval = max_interval
        self._scheduler = scheduler or schedule.Scheduler()
        self._wake_interval = wake_interval
        self._stop = threading.Event()
        self._job: Optional[schedule.Job] = None
        self.state = CycleState.IDLE
        self.cycles_run = 0
        self.ticks_skipped = 0

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def tick(self) -> CycleReport | None:
        if self.state is CycleState.RUNNING:
            self.ticks_skipped += 1
            LOGGER.warning("Previous cycle still running, skipping this tick")
            return None

        self.state = CycleState.RUNNING
        try:
            report = self._responder.run_cycle()
        finally:
            self.state = CycleState.IDLE
        self.cycles_run += 1
        return report

    def schedule_job(self) -> schedule.Job:
        if self._job is None:
            self._job = (
                self._scheduler.every(self._min_interval)
                .to(self._max_interval)
                .seconds.do(self.tick)
            )
            LOGGER.debug("Next poll at %s", self._job.next_run)
        return self._job

    def run_forever(self, run_immediately: bool = False) -> None:
        self.schedule_job()
        LOGGER.info(
            "Polling every %s-%s seconds. Press Ctrl+C to stop.",
            self._min_interval,
            self._max_interval,
        )
        if run_immediately and not self.stopped:
            self.tick()
        try:
            while not self._stop.is_set():
                self._scheduler.run_pending()
                self._stop.wait(self._wake_interval)
        finally:
            self._scheduler.cancel_job(self._job)
            self._job = None
            LOGGER.info("Poller stopped after %s cycle(s)", self.cycles_run)

    def stop(self) -> None:
        self._stop.set()
