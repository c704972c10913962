"""Periodic pollers with inactivity auto-suspend and activity resume.

Each Poller owns one timer family. States::

    IDLE ──start──▶ POLLING ──idle timeout──▶ SUSPENDED ──activity──▶ POLLING
                       │
                       └──"Token expirado"──▶ HALTED (only resume()/start() leave it)

Ticks are fired at a fixed rate as separate tasks, so a slow network call
can overlap the next tick; callers tolerate that through idempotent dedup.
A tick that raises is logged and counted; the timer stays alive.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from leaddesk.sync.envelope import ResultEnvelope

logger = logging.getLogger(__name__)

MESSAGE_POLL_INTERVAL_SECONDS = 15.0
MESSAGE_IDLE_TIMEOUT_SECONDS = 5 * 60.0
CONTACT_POLL_INTERVAL_SECONDS = 60.0
CONTACT_IDLE_TIMEOUT_SECONDS = 10 * 60.0

TickFn = Callable[[str], Awaitable[Any]]
HaltedFn = Callable[[str], Awaitable[None]]


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    SUSPENDED = "suspended"
    HALTED = "halted"


class Poller:
    """One timer family: a fixed-interval tick plus an inactivity countdown.

    Attributes:
        name: Label used in logs and task names.
        interval: Seconds between ticks.
        idle_timeout: Seconds without activity before suspending.
        ticks: Number of ticks fired.
        tick_errors: Number of ticks that raised.
    """

    def __init__(
        self,
        name: str,
        tick: TickFn,
        interval: float,
        idle_timeout: float,
        target_provider: Callable[[], str | None],
        on_halted: HaltedFn | None = None,
    ) -> None:
        """Initialize an idle poller.

        Args:
            name: Label for logs ("messages", "contacts").
            tick: Async callable invoked with the polling target.
            interval: Seconds between ticks.
            idle_timeout: Inactivity window before auto-suspend.
            target_provider: Returns the target to resume on activity,
                read at call time.
            on_halted: Awaited with the poller name when a tick's auth
                expiry actually halts this poller.
        """
        self.name = name
        self.interval = interval
        self.idle_timeout = idle_timeout
        self._tick = tick
        self._target_provider = target_provider
        self._on_halted = on_halted
        self._state = PollerState.IDLE
        self._target: str | None = None
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._idle_handle: asyncio.TimerHandle | None = None
        self._inflight: set[asyncio.Task[Any]] = set()
        self.ticks = 0
        self.tick_errors = 0

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def target(self) -> str | None:
        return self._target

    @property
    def is_running(self) -> bool:
        return self._state == PollerState.POLLING and self._task is not None

    def start(self, target: str | None) -> None:
        """Clear any live timer, then start polling ``target``.

        Passing None only clears. Starting is explicit, so it also leaves
        the HALTED state.
        """
        self._cancel_timers()
        self._generation += 1
        if target is None:
            self._target = None
            self._state = PollerState.IDLE
            logger.info("Poller %s stopped (no target)", self.name)
            return
        self._target = target
        self._state = PollerState.POLLING
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._generation, target), name=f"poller-{self.name}"
        )
        self._arm_idle()
        logger.info(
            "Poller %s polling %s every %.1fs (idle timeout %.0fs)",
            self.name, target, self.interval, self.idle_timeout,
        )

    def stop(self) -> None:
        """Cancel the timer and the idle countdown; back to IDLE."""
        self._cancel_timers()
        self._generation += 1
        self._state = PollerState.IDLE

    def halt(self, generation: int | None = None) -> bool:
        """Stop because the credential expired.

        Args:
            generation: Generation that observed the expiry. A stale tick
                from a previous start cannot halt the current timer.

        Returns:
            True if this call halted the poller (False when stale or
            already halted).
        """
        if generation is not None and generation != self._generation:
            logger.debug("Ignoring auth halt from stale %s tick", self.name)
            return False
        if self._state == PollerState.HALTED:
            return False
        self._cancel_timers()
        self._state = PollerState.HALTED
        logger.warning("Poller %s halted: credential expired", self.name)
        return True

    def mark_activity(self) -> bool:
        """Handle a user-activity signal.

        Re-arms the countdown when polling; restarts from the current target
        when suspended or idle. Does nothing while HALTED.

        Returns:
            True if polling was (re)started.
        """
        if self.is_running:
            self._arm_idle()
            return False
        if self._state == PollerState.HALTED:
            logger.debug("Poller %s is halted; activity ignored until re-login", self.name)
            return False
        target = self._target_provider()
        if target is None:
            return False
        logger.info("Poller %s resuming on activity", self.name)
        self.start(target)
        return True

    def resume(self) -> bool:
        """Leave HALTED after a fresh login and restart from the current target."""
        if self._state == PollerState.HALTED:
            self._state = PollerState.IDLE
        return self.mark_activity()

    async def run_once(self, target: str) -> Any:
        """Run one tick immediately, outside the timer.

        An auth-expired result halts the current generation.
        """
        return await self._run_tick(self._generation, target)

    async def shutdown(self) -> None:
        """Stop and cancel in-flight ticks (teardown)."""
        self.stop()
        current = asyncio.current_task()
        pending = [t for t in self._inflight if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._inflight.clear()

    async def _run(self, generation: int, target: str) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self.interval)
            task = loop.create_task(
                self._run_tick(generation, target), name=f"tick-{self.name}"
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _run_tick(self, generation: int, target: str) -> Any:
        self.ticks += 1
        try:
            result = await self._tick(target)
        except Exception:
            self.tick_errors += 1
            logger.exception("Poller %s tick for %s failed", self.name, target)
            return None
        if isinstance(result, ResultEnvelope) and result.auth_expired:
            if self.halt(generation) and self._on_halted is not None:
                await self._on_halted(self.name)
        return result

    def _arm_idle(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
        self._idle_handle = asyncio.get_running_loop().call_later(
            self.idle_timeout, self._on_idle
        )

    def _on_idle(self) -> None:
        self._idle_handle = None
        if self._state != PollerState.POLLING:
            return
        self._cancel_timers()
        self._state = PollerState.SUSPENDED
        logger.info(
            "Poller %s suspended after %.0fs without activity", self.name, self.idle_timeout
        )

    def _cancel_timers(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def debug_info(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "target": self._target,
            "ticks": self.ticks,
            "tick_errors": self.tick_errors,
            "inflight": len(self._inflight),
        }


class PollingScheduler:
    """The two independent timer families: message-level and contact-level.

    Stopping one never stops the other.
    """

    def __init__(
        self,
        message_tick: TickFn,
        contact_tick: TickFn,
        active_conversation: Callable[[], str | None],
        contacts_target: Callable[[], str | None],
        message_interval: float = MESSAGE_POLL_INTERVAL_SECONDS,
        message_idle_timeout: float = MESSAGE_IDLE_TIMEOUT_SECONDS,
        contact_interval: float = CONTACT_POLL_INTERVAL_SECONDS,
        contact_idle_timeout: float = CONTACT_IDLE_TIMEOUT_SECONDS,
        on_halted: HaltedFn | None = None,
    ) -> None:
        self.messages = Poller(
            "messages", message_tick, message_interval, message_idle_timeout,
            active_conversation, on_halted,
        )
        self.contacts = Poller(
            "contacts", contact_tick, contact_interval, contact_idle_timeout,
            contacts_target, on_halted,
        )

    def mark_activity(self) -> None:
        self.messages.mark_activity()
        self.contacts.mark_activity()

    def resume(self) -> None:
        self.messages.resume()
        self.contacts.resume()

    async def shutdown(self) -> None:
        await self.messages.shutdown()
        await self.contacts.shutdown()

    def debug_info(self) -> dict[str, Any]:
        return {
            "messages": self.messages.debug_info(),
            "contacts": self.contacts.debug_info(),
        }
