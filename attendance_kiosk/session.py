"""Shared session plumbing for the registration and recognition controllers."""
from __future__ import annotations

import abc
import asyncio
import enum
import itertools
import logging
from asyncio import QueueEmpty
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Coroutine, Dict, List, Optional, Set

from .backend.client import RecognitionServiceClient
from .config import Settings, get_settings
from .models import CaptureFrame
from .sensors.camera import CaptureConstraints, DeviceHandle, DeviceManager
from .state import ControllerEvent
from .timers import TimerGroup

logger = logging.getLogger(__name__)


class EventHub:
    """Fan-out of controller events to UI subscribers (bounded, drop-oldest)."""

    def __init__(self, queue_size: int = 16) -> None:
        self.queue_size = queue_size
        self._ui_subscribers: List[asyncio.Queue[ControllerEvent]] = []

    def register_ui(self) -> asyncio.Queue[ControllerEvent]:
        queue: asyncio.Queue[ControllerEvent] = asyncio.Queue(maxsize=self.queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[ControllerEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._ui_subscribers)

    async def broadcast(self, event: ControllerEvent) -> None:
        """Broadcast event to all UI subscribers with error handling."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)


@dataclass
class SessionContext:
    """Everything one session owns; torn down as a unit."""

    session_id: int
    timers: TimerGroup
    device_scope: AsyncExitStack = field(default_factory=AsyncExitStack)
    handle: Optional[DeviceHandle] = None
    frames_taken: int = 0
    service_calls: int = 0

    async def hold_device(self, devices: DeviceManager, constraints: CaptureConstraints, owner: str) -> DeviceHandle:
        self.handle = await self.device_scope.enter_async_context(devices.hold(constraints, owner=owner))
        return self.handle

    async def release_device(self) -> None:
        try:
            await self.device_scope.aclose()
        finally:
            self.handle = None

    def take_frame(self, devices: DeviceManager, handle: DeviceHandle) -> CaptureFrame:
        if self.frames_taken:
            raise RuntimeError(f"session {self.session_id} already captured its frame")
        frame = devices.capture_frame(handle)
        self.frames_taken += 1
        return frame

    def claim_service_call(self) -> None:
        """Each session makes at most one enroll/identify call."""
        if self.service_calls:
            raise RuntimeError(f"session {self.session_id} already called the service")
        self.service_calls += 1


class SessionController(abc.ABC):
    """Generation-counted session owner shared by both kiosk screens.

    Every asynchronous continuation captures the session id it was started
    under and re-checks it with :meth:`_is_current` before touching state;
    a mismatch means the session was reset or the screen was left, and the
    completion is dropped.
    """

    screen: str = "session"

    def __init__(
        self,
        *,
        devices: DeviceManager,
        service: RecognitionServiceClient,
        settings: Optional[Settings] = None,
        hub: Optional[EventHub] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.devices = devices
        self.service = service
        self.hub = hub or EventHub(self.settings.ui_event_queue_size)
        self._ids = itertools.count(1)
        self._session = self._make_session()
        self._session_task: Optional[asyncio.Task[None]] = None
        self._background_tasks: Set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------

    @property
    def session_id(self) -> int:
        return self._session.session_id

    @property
    def timers(self) -> TimerGroup:
        return self._session.timers

    @property
    @abc.abstractmethod
    def phase(self) -> enum.Enum:
        ...

    @abc.abstractmethod
    def snapshot(self) -> Dict[str, Any]:
        """Render-ready view of the controller state."""

    def _make_session(self) -> SessionContext:
        session_id = next(self._ids)
        return SessionContext(session_id=session_id, timers=TimerGroup(f"{self.screen}-{session_id}"))

    def _is_current(self, session_id: int) -> bool:
        return session_id == self._session.session_id

    async def _teardown_session(self, reason: str) -> None:
        ctx = self._session
        cancelled = ctx.timers.cancel_all()
        await ctx.release_device()
        logger.info(
            "🔄 [%s] session %d torn down (%s, %d timer(s) cancelled)",
            self.screen.upper(),
            ctx.session_id,
            reason,
            cancelled,
        )

    async def _begin_new_session(self, reason: str) -> SessionContext:
        await self._teardown_session(reason)
        self._session = self._make_session()
        logger.info("🎬 [%s] session %d started", self.screen.upper(), self._session.session_id)
        return self._session

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"{self.screen}-{name}")
        self._background_tasks.add(task)
        task.add_done_callback(self._task_done)
        self._session_task = task
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[%s] task %s crashed: %r", self.screen.upper(), task.get_name(), exc)

    async def join(self) -> None:
        """Wait for the most recently started session task to finish."""
        task = self._session_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _drain_background(self) -> None:
        for task in list(self._background_tasks):
            task.cancel()
        for task in list(self._background_tasks):
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping background task: %s", e)
        self._background_tasks.clear()

    # ------------------------------------------------------------
    # UI events
    # ------------------------------------------------------------

    async def _broadcast(self, event_type: str = "state", *, error: Optional[str] = None, **data: Any) -> None:
        await self.hub.broadcast(
            ControllerEvent(
                type=event_type,
                screen=self.screen,
                phase=self.phase.value,
                session_id=self.session_id,
                data=data or self.snapshot(),
                error=error,
            )
        )


__all__ = ["EventHub", "SessionContext", "SessionController"]
