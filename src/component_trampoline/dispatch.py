"""Trampoline dispatch: every outbound guest call passes through here.

A call is mediated in four steps: look up the precomputed call site, take the
session's host context exclusively, run the bound implementation (through the
registration's trampoline interceptor when one is set), then translate the
outcome into the calling convention:

* a normal return flows back as the result, wrapped in `Ok` when the import's
  signature declares an error type;
* `HostImplementationError` becomes `Err(payload)` when the signature declares
  an error type and a `Trap` otherwise;
* any other exception raised by host code aborts the call with a `Trap`.
"""

from __future__ import annotations

import contextlib
import inspect
import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterator, Union

from component_trampoline.context import CallFrame, ContextCell
from component_trampoline.errors import (
    HostImplementationError,
    InstanceTornDown,
    ReentrantAccess,
    Trap,
)
from component_trampoline.interfaces import FuncSignature, InterfaceKey
from component_trampoline.registry import Implementation
from component_trampoline.resolver import ResolvedBinding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ok:
    value: Any = None


@dataclass(frozen=True)
class Err:
    error: Any = None


class GuestCall:
    """One mediated call, as seen by a trampoline interceptor.

    `context` is the session's host context; it is only valid until the
    interceptor returns.
    """

    def __init__(
        self,
        binding: ResolvedBinding,
        context: Any,
        arguments: tuple[Any, ...],
        implementation: Implementation,
    ) -> None:
        self.binding = binding
        self.context = context
        self.arguments = arguments
        self._implementation = implementation

    @property
    def interface(self) -> InterfaceKey:
        return self.binding.key

    @property
    def slot(self) -> str:
        return self.binding.slot

    @property
    def signature(self) -> FuncSignature | None:
        return self.binding.signature

    @property
    def trampoline_context(self) -> Any:
        """Static configuration registered for this interface, if any."""
        return self.binding.registration.trampoline_context

    def call(self, *arguments: Any) -> Any:
        """Run the bound implementation, optionally with replaced arguments."""
        args = arguments if arguments else self.arguments
        return self._implementation(self.context, *args)


class AsyncGuestCall(GuestCall):
    async def call_async(self, *arguments: Any) -> Any:
        result = self.call(*arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


class Trampoline:
    """Synchronous interceptor wrapped around every call to a registration."""

    def bounce(self, call: GuestCall) -> Any:
        return call.call()


class AsyncTrampoline:
    """Asynchronous interceptor; only usable by asynchronous instances."""

    async def bounce_async(self, call: AsyncGuestCall) -> Any:
        return await call.call_async()


AnyTrampoline = Union[Trampoline, AsyncTrampoline]


def is_async_trampoline(trampoline: Any) -> bool:
    return trampoline is not None and hasattr(trampoline, "bounce_async")


@dataclass(frozen=True)
class CallSite:
    index: int
    binding: ResolvedBinding
    implementation: Implementation
    trampoline: AnyTrampoline | None = None


class Dispatcher:
    """Owns one session's call sites and host context."""

    def __init__(
        self,
        owner: Any,
        sites: tuple[CallSite, ...],
        cell: ContextCell,
        *,
        trace_calls: bool = False,
    ) -> None:
        self._owner = owner
        self._sites = sites
        self._slots = {site.binding.slot: site.index for site in sites}
        self._cell = cell
        self._trace_calls = trace_calls
        self._frames_lock = threading.Lock()
        self._frames: list[CallFrame] = []
        self._closed = False

    @property
    def sites(self) -> tuple[CallSite, ...]:
        return self._sites

    @property
    def cell(self) -> ContextCell:
        return self._cell

    @property
    def closed(self) -> bool:
        return self._closed

    def index_of(self, slot: str) -> int:
        try:
            return self._slots[slot]
        except KeyError:
            raise Trap(f"Component has no import slot '{slot}'") from None

    def in_flight(self) -> list[CallFrame]:
        with self._frames_lock:
            return list(self._frames)

    def close(self) -> None:
        self._closed = True

    def check_open(self) -> None:
        if self._closed:
            raise InstanceTornDown("Instance has been torn down")

    @contextlib.contextmanager
    def track(self, frame: CallFrame) -> Iterator[CallFrame]:
        self.check_open()
        with self._frames_lock:
            self._frames.append(frame)
        try:
            yield frame
        finally:
            with self._frames_lock:
                self._frames.remove(frame)

    def _site(self, index: int, arguments: tuple[Any, ...]) -> CallSite:
        site = self._sites[index]
        if self._trace_calls:
            logger.debug("dispatch %s args=%r", site.binding.key, arguments)
        return site

    def dispatch(self, index: int, arguments: tuple[Any, ...]) -> Any:
        site = self._site(index, arguments)
        frame = CallFrame.current(self._owner, site.binding)
        with self.track(frame), self._cell.with_context(frame) as context:
            call = GuestCall(site.binding, context, arguments, site.implementation)
            try:
                if site.trampoline is not None:
                    value = site.trampoline.bounce(call)
                else:
                    value = call.call()
            except Exception as exc:
                return self._failure(site, exc)
        return self._success(site, value)

    async def dispatch_async(self, index: int, arguments: tuple[Any, ...]) -> Any:
        site = self._site(index, arguments)
        frame = CallFrame.current(self._owner, site.binding)
        with self.track(frame):
            async with self._cell.with_context_async(frame) as context:
                call = AsyncGuestCall(
                    site.binding, context, arguments, site.implementation
                )
                try:
                    trampoline = site.trampoline
                    if trampoline is None:
                        value = await call.call_async()
                    elif is_async_trampoline(trampoline):
                        value = await trampoline.bounce_async(call)
                    else:
                        value = trampoline.bounce(call)
                        if inspect.isawaitable(value):
                            value = await value
                except Exception as exc:
                    return self._failure(site, exc)
        return self._success(site, value)

    def _success(self, site: CallSite, value: Any) -> Any:
        signature = site.binding.signature
        if signature is None or not signature.has_error_result:
            return value
        if isinstance(value, (Ok, Err)):
            return value
        return Ok(value)

    def _failure(self, site: CallSite, exc: Exception) -> Any:
        key = site.binding.key
        if isinstance(exc, (ReentrantAccess, Trap, InstanceTornDown)):
            raise exc
        if isinstance(exc, HostImplementationError):
            signature = site.binding.signature
            if signature is not None and signature.has_error_result:
                return Err(exc.payload)
            logger.warning("%s failed without an error result type: %s", key, exc)
            raise Trap(f"{key} failed: {exc}") from exc
        logger.warning("%s trapped: %r", key, exc)
        raise Trap(f"{key} aborted: {exc!r}") from exc
