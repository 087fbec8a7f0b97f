"""IR learning sessions: start a capture window and poll until it resolves."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from .const import LEARNING_MAX_ATTEMPTS, LEARNING_POLL_INTERVAL, LEARNING_TIMEOUT_SECONDS
from .errors import BackendUnavailableError, LearningTimeoutError, NoInputPortConfiguredError

if TYPE_CHECKING:
    from .registry import DeviceRegistry

_LOGGER = logging.getLogger(__name__)

SessionListener = Callable[["LearningSession"], None]


class LearningStatus(StrEnum):
    IDLE = "idle"
    WAITING = "waiting"
    SAVED = "saved"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({LearningStatus.SAVED, LearningStatus.TIMED_OUT, LearningStatus.CANCELLED})


@dataclass
class LearningSession:
    """One capture window for one command of one profile."""

    board_id: str
    profile_id: str
    command: str
    port: int
    timeout_seconds: int = LEARNING_TIMEOUT_SECONDS
    started_at: float = field(default_factory=time.time)
    status: LearningStatus = LearningStatus.WAITING
    attempts: int = 0
    received_code: Any = None
    finished_at: float | None = None
    task: asyncio.Task | None = field(default=None, init=False, repr=False, compare=False)
    _done: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False, compare=False)

    @property
    def is_active(self) -> bool:
        return self.status is LearningStatus.WAITING

    def finish(self, status: LearningStatus) -> bool:
        """Move to a terminal status; terminal statuses never change again."""
        if self.status in TERMINAL_STATUSES:
            return False
        self.status = status
        self.finished_at = time.time()
        self._done.set()
        return True

    async def async_wait(self) -> LearningStatus:
        await self._done.wait()
        return self.status

    def raise_for_status(self) -> None:
        if self.status is LearningStatus.TIMED_OUT:
            raise LearningTimeoutError(
                f"No IR code received for {self.command} on board {self.board_id} port {self.port}"
            )

    def as_dict(self) -> dict[str, Any]:
        return {
            "board_id": self.board_id,
            "profile_id": self.profile_id,
            "command": self.command,
            "port": self.port,
            "timeout": self.timeout_seconds,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "status": str(self.status),
            "attempts": self.attempts,
        }


class LearningController:
    """Run at most one learning session per profile."""

    def __init__(
        self,
        registry: DeviceRegistry,
        *,
        poll_interval: float = LEARNING_POLL_INTERVAL,
        max_attempts: int = LEARNING_MAX_ATTEMPTS,
    ) -> None:
        self._registry = registry
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._sessions: dict[str, LearningSession] = {}
        self._listeners: list[SessionListener] = []

    @property
    def sessions(self) -> dict[str, LearningSession]:
        return dict(self._sessions)

    def get_session(self, profile_id: str) -> LearningSession | None:
        return self._sessions.get(profile_id)

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self, session: LearningSession) -> None:
        for listener in list(self._listeners):
            listener(session)

    async def async_start(
        self,
        board_id: str,
        profile_id: str,
        command: str,
        port: Any,
        timeout_seconds: int = LEARNING_TIMEOUT_SECONDS,
    ) -> LearningSession:
        """Open a capture window on ``port`` of ``board_id`` and start polling."""

        try:
            port_number = int(port)
        except (TypeError, ValueError):
            port_number = 0
        if port_number <= 0:
            raise NoInputPortConfiguredError(f"Board {board_id} has no IR input port selected")

        input_ports = await self._registry.async_get_learning_ports(board_id)
        if port_number not in {_port_number(entry) for entry in input_ports}:
            raise NoInputPortConfiguredError(f"Port {port_number} on board {board_id} is not configured as an IR input")

        self.cancel(profile_id)

        await self._registry.async_start_learning(board_id, profile_id, command, port_number, timeout_seconds)

        session = LearningSession(
            board_id=board_id,
            profile_id=profile_id,
            command=command,
            port=port_number,
            timeout_seconds=timeout_seconds,
        )
        # another start for this profile may have landed while the backend call was pending
        self.cancel(profile_id)
        self._sessions[profile_id] = session
        _LOGGER.debug(
            "Learning %s for profile %s on board %s port %s",
            command,
            profile_id,
            board_id,
            port_number,
        )
        session.task = asyncio.create_task(self._async_poll(session))
        self._notify(session)
        return session

    def cancel(self, profile_id: str) -> LearningSession | None:
        """Stop polling for the profile's session; any late result is dropped."""
        session = self._sessions.get(profile_id)
        if session is None:
            return None
        if session.finish(LearningStatus.CANCELLED):
            _LOGGER.debug("Learning %s for profile %s cancelled", session.command, profile_id)
            self._notify(session)
        return session

    async def async_wait(self, profile_id: str) -> LearningStatus:
        session = self._sessions.get(profile_id)
        if session is None:
            return LearningStatus.IDLE
        return await session.async_wait()

    async def async_shutdown(self) -> None:
        for profile_id in list(self._sessions):
            session = self.cancel(profile_id)
            if session is None or session.task is None:
                continue
            session.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await session.task
        self._sessions.clear()

    async def _async_poll(self, session: LearningSession) -> None:
        try:
            while session.is_active:
                try:
                    status = await self._registry.async_poll_learning_status(session.board_id)
                except BackendUnavailableError as err:
                    _LOGGER.debug("Learning status poll for board %s failed: %s", session.board_id, err)
                    status = None
                status = status or {}
                session.attempts += 1

                if not session.is_active:
                    _LOGGER.debug("Discarding learning status for %s after session ended", session.command)
                    return

                if status.get("saved") or status.get("received_code"):
                    session.received_code = status.get("received_code")
                    self._registry.record_learned_command(session.profile_id, session.command)
                    session.finish(LearningStatus.SAVED)
                    _LOGGER.debug("Learned %s for profile %s", session.command, session.profile_id)
                    self._notify(session)
                    await self._async_refresh_profiles()
                    return

                if session.attempts >= self._max_attempts:
                    session.finish(LearningStatus.TIMED_OUT)
                    _LOGGER.debug(
                        "Learning %s for profile %s timed out after %s polls",
                        session.command,
                        session.profile_id,
                        session.attempts,
                    )
                    self._notify(session)
                    return

                await asyncio.sleep(self._poll_interval)
        except asyncio.CancelledError:  # pragma: no cover - task cancellation
            raise
        except Exception:  # pragma: no cover - diagnostics
            _LOGGER.exception("Learning poll loop for %s failed", session.command)
            if session.finish(LearningStatus.CANCELLED):
                self._notify(session)

    async def _async_refresh_profiles(self) -> None:
        try:
            await self._registry.async_refresh_profiles()
        except BackendUnavailableError as err:
            _LOGGER.debug("Profile refresh after learning failed: %s", err)


def _port_number(entry: Any) -> int | None:
    if isinstance(entry, dict):
        entry = entry.get("port", entry.get("gpio"))
    try:
        return int(entry)
    except (TypeError, ValueError):
        return None
