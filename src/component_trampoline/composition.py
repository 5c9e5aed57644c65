"""Components registered as providers of other components' imports.

A provider package exports its functions under ``namespace/export@version``.
When a consumer binds one of those exports, the provider is instantiated
first, after its own dependencies. The load order is computed up front so
that a missing import or a cycle anywhere in the graph aborts instantiation
before any engine work happens.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable

from component_trampoline.engine import ComponentDescription
from component_trampoline.errors import PackageCycle, Trap
from component_trampoline.registry import _RegistryView
from component_trampoline.resolver import ResolvedBinding, resolve_all
from component_trampoline.versions import Version


@dataclass(frozen=True)
class Package:
    namespace: str
    version: Version
    component: ComponentDescription
    context_factory: Callable[[], Any] | None = None

    @property
    def package_id(self) -> str:
        return f"{self.namespace}@{self.version}"

    def new_context(self) -> Any:
        if self.context_factory is None:
            return None
        return self.context_factory()


@dataclass(frozen=True)
class PackageExport:
    """Registry placeholder for an export served by a provider instance."""

    package_id: str
    export: str

    def __call__(self, _context: Any, *args: Any) -> Any:
        raise Trap(f"{self.package_id}/{self.export} was not bound to a provider")


@dataclass(frozen=True)
class LoadStep:
    package: Package
    bindings: tuple[ResolvedBinding, ...]


def plan_instantiation(
    component: ComponentDescription,
    registry: _RegistryView,
    packages: dict[str, Package],
    check: Callable[[ResolvedBinding], None],
    origin: str | None = None,
) -> tuple[tuple[ResolvedBinding, ...], list[LoadStep]]:
    """Resolve `component` and every provider it reaches.

    Returns the component's own bindings and the providers in load order
    (dependencies first). `check` is run on every binding.
    """
    steps: dict[str, LoadStep] = {}
    stack = [origin if origin is not None else component.name]
    bindings = _plan(component, registry, packages, check, stack, steps)
    return bindings, list(steps.values())


def _plan(
    component: ComponentDescription,
    registry: _RegistryView,
    packages: dict[str, Package],
    check: Callable[[ResolvedBinding], None],
    stack: list[str],
    steps: dict[str, LoadStep],
) -> tuple[ResolvedBinding, ...]:
    bindings = resolve_all(component.imports, registry)
    for binding in bindings:
        check(binding)
    for package_id in _providers(bindings):
        if package_id in stack:
            cycle = stack[stack.index(package_id) :]
            cycle.append(package_id)
            raise PackageCycle(cycle)
        if package_id in steps:
            continue
        package = packages[package_id]
        stack.append(package_id)
        provider_bindings = _plan(
            package.component, registry, packages, check, stack, steps
        )
        stack.pop()
        steps[package_id] = LoadStep(package, provider_bindings)
    return bindings


def _providers(bindings: Iterable[ResolvedBinding]) -> list[str]:
    seen: list[str] = []
    for binding in bindings:
        implementation = binding.registration.implementation
        if isinstance(implementation, PackageExport):
            if implementation.package_id not in seen:
                seen.append(implementation.package_id)
    return seen
