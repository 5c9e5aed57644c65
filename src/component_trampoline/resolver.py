"""Link-time resolution of import requests against a frozen registry.

Resolution is eager and deterministic: every declared import is bound once at
instantiation, to the highest registered version compatible with its
requirement. Nothing is looked up lazily per call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from component_trampoline.errors import ImportUnsatisfied, VersionIncompatible
from component_trampoline.interfaces import FuncSignature, ImportRequest, InterfaceKey
from component_trampoline.registry import Registration, _RegistryView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedBinding:
    request: ImportRequest
    registration: Registration

    @property
    def key(self) -> InterfaceKey:
        return self.registration.key

    @property
    def slot(self) -> str:
        return self.request.slot_name

    @property
    def signature(self) -> FuncSignature | None:
        # The importer's declared shape wins over the implementation's.
        if self.request.signature is not None:
            return self.request.signature
        return self.registration.signature


def resolve(request: ImportRequest, registry: _RegistryView) -> ResolvedBinding:
    versions = registry.version_map(request.namespace, request.name)
    if versions is None or len(versions) == 0:
        raise ImportUnsatisfied(request)
    selected = versions.select(request.requirement)
    if selected is None:
        nearest = versions.nearest(request.requirement)
        raise VersionIncompatible(request, nearest)
    _, registration = selected
    logger.debug("resolved %s -> %s", request, registration.key)
    return ResolvedBinding(request, registration)


def resolve_all(
    requests: Iterable[ImportRequest], registry: _RegistryView
) -> tuple[ResolvedBinding, ...]:
    return tuple(resolve(request, registry) for request in requests)
