"""Exclusive access to a session's host context.

A `ContextCell` hands its value to one call at a time. Blocking callers wait
on a `threading.Event`, asyncio callers await a future; both queue on the same
FIFO and the releasing call hands ownership directly to the next waiter, so
exactly one waiter resumes per release.
"""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import threading
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, AsyncIterator, Iterator, Mapping

from component_trampoline.errors import ReentrantAccess, TrampolineError

if TYPE_CHECKING:
    from component_trampoline.resolver import ResolvedBinding

# Maps each cell borrowed by the current flow to the frame that acquired it.
# Tasks and threads spawned during a call inherit a snapshot, so an entry only
# counts while that frame is still the holder.
_HELD_CELLS: contextvars.ContextVar[Mapping[ContextCell, CallFrame]] = (
    contextvars.ContextVar("component_trampoline_held_cells", default=MappingProxyType({}))
)


@dataclass(eq=False)
class CallFrame:
    """Bookkeeping for one in-flight call."""

    instance: Any
    binding: ResolvedBinding | None = None
    export: str | None = None
    thread_id: int = field(default_factory=threading.get_ident)
    task: asyncio.Task[Any] | None = None

    @classmethod
    def current(
        cls,
        instance: Any,
        binding: ResolvedBinding | None = None,
        export: str | None = None,
    ) -> CallFrame:
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None
        return cls(instance=instance, binding=binding, export=export, task=task)

    def describe(self) -> str:
        if self.binding is not None:
            return str(self.binding.key)
        return self.export or "<call>"


class _Waiter:
    __slots__ = ("frame", "event", "future", "loop", "granted")

    def __init__(
        self,
        frame: CallFrame,
        event: threading.Event | None = None,
        future: asyncio.Future[None] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.frame = frame
        self.event = event
        self.future = future
        self.loop = loop
        self.granted = False


def _wake(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


class ContextCell:
    def __init__(self, value: Any) -> None:
        self._value = value
        self._mutex = threading.Lock()
        self._holder: CallFrame | None = None
        self._waiters: deque[_Waiter] = deque()

    @property
    def holder(self) -> CallFrame | None:
        return self._holder

    @property
    def locked(self) -> bool:
        return self._holder is not None

    def held_by_current_flow(self) -> bool:
        held = _HELD_CELLS.get().get(self)
        return held is not None and held is self._holder

    def _check_acquirable_locked(self, frame: CallFrame) -> None:
        held = _HELD_CELLS.get().get(self)
        if held is not None and held is self._holder:
            raise ReentrantAccess(
                f"{frame.describe()} re-entered a host context held by "
                f"{held.describe()}"
            )

    def acquire(self, frame: CallFrame) -> None:
        with self._mutex:
            self._check_acquirable_locked(frame)
            holder = self._holder
            if holder is None:
                self._holder = frame
                return
            if holder.thread_id == frame.thread_id:
                # The holder runs on this thread; blocking here can never end.
                raise ReentrantAccess(
                    f"{frame.describe()} would block the thread holding the "
                    f"host context for {holder.describe()}"
                )
            waiter = _Waiter(frame, event=threading.Event())
            self._waiters.append(waiter)
        waiter.event.wait()

    async def acquire_async(self, frame: CallFrame) -> None:
        loop = asyncio.get_running_loop()
        with self._mutex:
            self._check_acquirable_locked(frame)
            if self._holder is None:
                self._holder = frame
                return
            waiter = _Waiter(frame, future=loop.create_future(), loop=loop)
            self._waiters.append(waiter)
        try:
            await waiter.future
        except asyncio.CancelledError:
            with self._mutex:
                if waiter.granted:
                    if self._holder is waiter.frame:
                        self._handoff_locked()
                elif waiter in self._waiters:
                    self._waiters.remove(waiter)
            raise

    def release(self, frame: CallFrame) -> None:
        with self._mutex:
            if self._holder is not frame:
                raise TrampolineError(
                    f"{frame.describe()} released a host context it does not hold"
                )
            self._handoff_locked()

    def _handoff_locked(self) -> None:
        if not self._waiters:
            self._holder = None
            return
        waiter = self._waiters.popleft()
        self._holder = waiter.frame
        waiter.granted = True
        if waiter.future is not None and waiter.loop is not None:
            waiter.loop.call_soon_threadsafe(_wake, waiter.future)
        elif waiter.event is not None:
            waiter.event.set()

    @contextlib.contextmanager
    def with_context(self, frame: CallFrame) -> Iterator[Any]:
        self.acquire(frame)
        token = _HELD_CELLS.set(MappingProxyType({**_HELD_CELLS.get(), self: frame}))
        try:
            yield self._value
        finally:
            _HELD_CELLS.reset(token)
            self.release(frame)

    @contextlib.asynccontextmanager
    async def with_context_async(self, frame: CallFrame) -> AsyncIterator[Any]:
        await self.acquire_async(frame)
        token = _HELD_CELLS.set(MappingProxyType({**_HELD_CELLS.get(), self: frame}))
        try:
            yield self._value
        finally:
            _HELD_CELLS.reset(token)
            self.release(frame)
