from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Iterator, Mapping

from component_trampoline.errors import DuplicateRegistration, RegistryFrozen
from component_trampoline.interfaces import FuncSignature, InterfaceKey
from component_trampoline.versions import Version, VersionMap

if TYPE_CHECKING:
    from component_trampoline.dispatch import AnyTrampoline

logger = logging.getLogger(__name__)

Implementation = Callable[..., Any]


def is_async_callable(func: Any) -> bool:
    if inspect.iscoroutinefunction(func):
        return True
    call = getattr(func, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


@dataclass(frozen=True)
class Registration:
    """A host implementation bound to one interface key.

    `implementation` is called as ``implementation(context, *arguments)``. It
    may be a coroutine function, in which case only asynchronous instances can
    bind it.
    """

    key: InterfaceKey
    implementation: Implementation
    signature: FuncSignature | None = None
    capability: str | None = None
    trampoline: AnyTrampoline | None = None
    # Static configuration handed to the trampoline, separate from host state.
    trampoline_context: Any = None

    @property
    def is_async(self) -> bool:
        return is_async_callable(self.implementation)


class _RegistryView:
    _entries: Mapping[tuple[str, str], VersionMap[Registration]]

    def __len__(self) -> int:
        return sum(len(versions) for versions in self._entries.values())

    def __iter__(self) -> Iterator[InterfaceKey]:
        for (namespace, name), versions in sorted(self._entries.items()):
            for version in versions:
                yield InterfaceKey(namespace, name, version)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, InterfaceKey):
            return False
        return self.lookup_exact(key) is not None

    def lookup_exact(self, key: InterfaceKey) -> Registration | None:
        versions = self._entries.get((key.namespace, key.name))
        if versions is None:
            return None
        return versions.get_exact(key.version)

    def candidates(self, namespace: str, name: str) -> list[Registration]:
        versions = self._entries.get((namespace, name))
        if versions is None:
            return []
        return [registration for _, registration in versions.items()]

    def version_map(self, namespace: str, name: str) -> VersionMap[Registration] | None:
        return self._entries.get((namespace, name))


class Registry(_RegistryView):
    """Build-phase registry; mutable until `freeze()`."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], VersionMap[Registration]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(
        self,
        key: InterfaceKey,
        implementation: Implementation,
        *,
        signature: FuncSignature | None = None,
        capability: str | None = None,
        trampoline: AnyTrampoline | None = None,
        trampoline_context: Any = None,
    ) -> Registration:
        if not callable(implementation):
            raise TypeError(f"Implementation for {key} must be callable")
        registration = Registration(
            key=key,
            implementation=implementation,
            signature=signature,
            capability=capability,
            trampoline=trampoline,
            trampoline_context=trampoline_context,
        )
        self.add(registration)
        return registration

    def add(self, registration: Registration) -> None:
        if self._frozen:
            raise RegistryFrozen(f"Cannot register {registration.key}: registry is frozen")
        key = registration.key
        versions = self._entries.setdefault((key.namespace, key.name), VersionMap())
        if not versions.try_insert(key.version, registration):
            raise DuplicateRegistration(key)
        logger.debug("registered %s", key)

    def freeze(self) -> FrozenRegistry:
        self._frozen = True
        return FrozenRegistry(self._entries)


class FrozenRegistry(_RegistryView):
    """Immutable registry view; safe to share and read concurrently."""

    def __init__(self, entries: Mapping[tuple[str, str], VersionMap[Registration]]) -> None:
        copied: dict[tuple[str, str], VersionMap[Registration]] = {}
        for path, versions in entries.items():
            snapshot: VersionMap[Registration] = VersionMap()
            for version, registration in versions.items():
                snapshot.try_insert(version, registration)
            copied[path] = snapshot
        self._entries = MappingProxyType(copied)

    def versions(self, namespace: str, name: str) -> list[Version]:
        versions = self._entries.get((namespace, name))
        return list(versions) if versions is not None else []
