"""Link sandboxed components through host-mediated trampoline calls."""

from __future__ import annotations

from component_trampoline.adapters import AsyncImports, SyncImports
from component_trampoline.capabilities import CapabilityGrant
from component_trampoline.config import LinkerConfig
from component_trampoline.context import CallFrame, ContextCell
from component_trampoline.dispatch import (
    AsyncGuestCall,
    AsyncTrampoline,
    Err,
    GuestCall,
    Ok,
    Trampoline,
)
from component_trampoline.engine import ComponentDescription, PyComponent
from component_trampoline.errors import (
    CapabilityDenied,
    DuplicateRegistration,
    HostImplementationError,
    ImportUnsatisfied,
    InstanceTornDown,
    InstantiationError,
    InterfacePathError,
    InvalidSynchronicity,
    PackageCycle,
    ReentrantAccess,
    RegistryFrozen,
    TrampolineError,
    Trap,
    VersionIncompatible,
    VersionParseError,
)
from component_trampoline.interfaces import FuncSignature, ImportRequest, InterfaceKey
from component_trampoline.linker import Instance, InstanceState, Linker, LinkerBuilder
from component_trampoline.registry import FrozenRegistry, Registration, Registry
from component_trampoline.resolver import ResolvedBinding, resolve, resolve_all
from component_trampoline.versions import Version, VersionMap, VersionReq

__all__ = [
    "AsyncGuestCall",
    "AsyncImports",
    "AsyncTrampoline",
    "CallFrame",
    "CapabilityDenied",
    "CapabilityGrant",
    "ComponentDescription",
    "ContextCell",
    "DuplicateRegistration",
    "Err",
    "FrozenRegistry",
    "FuncSignature",
    "GuestCall",
    "HostImplementationError",
    "ImportRequest",
    "ImportUnsatisfied",
    "Instance",
    "InstanceState",
    "InstanceTornDown",
    "InstantiationError",
    "InterfaceKey",
    "InterfacePathError",
    "InvalidSynchronicity",
    "Linker",
    "LinkerBuilder",
    "LinkerConfig",
    "Ok",
    "PackageCycle",
    "PyComponent",
    "ReentrantAccess",
    "Registration",
    "Registry",
    "RegistryFrozen",
    "ResolvedBinding",
    "SyncImports",
    "Trampoline",
    "TrampolineError",
    "Trap",
    "Version",
    "VersionIncompatible",
    "VersionMap",
    "VersionParseError",
    "VersionReq",
    "resolve",
    "resolve_all",
]
