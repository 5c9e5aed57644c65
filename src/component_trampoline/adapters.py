"""Blocking and asyncio front ends that guest code uses to reach its imports."""

from __future__ import annotations

import abc
from typing import Any, Awaitable, Callable

from component_trampoline.dispatch import Dispatcher
from component_trampoline.errors import Trap


class _Imports(abc.ABC):
    def __init__(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher

    def slots(self) -> list[str]:
        return [site.binding.slot for site in self._dispatcher.sites]

    def __contains__(self, slot: object) -> bool:
        return slot in self.slots()

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self[name]
        except Trap:
            raise AttributeError(name) from None

    @abc.abstractmethod
    def __getitem__(self, slot: str) -> Any: ...


class SyncImports(_Imports):
    """Calls block the current thread until the host implementation returns."""

    def call(self, slot: str, *args: Any) -> Any:
        dispatcher = self._dispatcher
        return dispatcher.dispatch(dispatcher.index_of(slot), args)

    def __getitem__(self, slot: str) -> Callable[..., Any]:
        dispatcher = self._dispatcher
        index = dispatcher.index_of(slot)

        def _call(*args: Any) -> Any:
            return dispatcher.dispatch(index, args)

        _call.__name__ = slot
        return _call


class AsyncImports(_Imports):
    """Calls return awaitables; the calling task suspends until completion."""

    async def call(self, slot: str, *args: Any) -> Any:
        dispatcher = self._dispatcher
        return await dispatcher.dispatch_async(dispatcher.index_of(slot), args)

    def __getitem__(self, slot: str) -> Callable[..., Awaitable[Any]]:
        dispatcher = self._dispatcher
        index = dispatcher.index_of(slot)

        def _call(*args: Any) -> Awaitable[Any]:
            return dispatcher.dispatch_async(index, args)

        _call.__name__ = slot
        return _call
