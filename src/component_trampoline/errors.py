from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from component_trampoline.interfaces import ImportRequest, InterfaceKey
    from component_trampoline.versions import Version


class TrampolineError(Exception):
    """Base error for linker, resolution and dispatch failures."""


class InterfacePathError(TrampolineError, ValueError):
    """Malformed `namespace/name@version` text."""


class VersionParseError(InterfacePathError):
    """Malformed semantic version or version requirement."""


class DuplicateRegistration(TrampolineError):
    """An implementation is already registered under this exact key."""

    def __init__(self, key: InterfaceKey | str) -> None:
        super().__init__(f"Duplicate registration: {key}")
        self.key = key


class RegistryFrozen(TrampolineError):
    """Registration attempted after the registry was frozen."""


class InstantiationError(TrampolineError):
    """Instantiation aborted; no Instance was produced."""


class ImportUnsatisfied(InstantiationError):
    """No registration satisfies an import request."""

    def __init__(
        self,
        request: ImportRequest,
        nearest: Sequence[Version] = (),
        message: str | None = None,
    ) -> None:
        self.request = request
        self.nearest = tuple(nearest)
        if message is None:
            message = f"Unsatisfied import {request}"
            if self.nearest:
                available = ", ".join(str(v) for v in self.nearest)
                message = f"{message} (nearest available: {available})"
        super().__init__(message)


class VersionIncompatible(ImportUnsatisfied):
    """Candidates exist under the requested name but none is compatible."""


class CapabilityDenied(InstantiationError):
    """A registration requires a capability the linker was not granted."""

    def __init__(self, key: InterfaceKey, capability: str) -> None:
        super().__init__(f"Missing capability '{capability}' for {key}")
        self.key = key
        self.capability = capability


class PackageCycle(InstantiationError):
    """Provider packages import each other."""

    def __init__(self, cycle: Sequence[str]) -> None:
        super().__init__("Package import cycle detected: " + " -> ".join(cycle))
        self.cycle = list(cycle)


class InvalidSynchronicity(InstantiationError):
    """A coroutine implementation was bound into a blocking instance."""


class ReentrantAccess(TrampolineError):
    """A call tried to re-acquire a host context it already holds."""


class InstanceTornDown(TrampolineError):
    """The instance was closed; no further calls are accepted."""


class Trap(TrampolineError):
    """A mediated call aborted."""


class HostImplementationError(TrampolineError):
    """Raised by host implementations for expected domain-level failures.

    `payload` becomes the `Err` value when the import's signature declares an
    error type; otherwise the failure escalates to a `Trap`.
    """

    def __init__(self, payload: Any = None, message: str | None = None) -> None:
        super().__init__(message if message is not None else str(payload))
        self.payload = payload
