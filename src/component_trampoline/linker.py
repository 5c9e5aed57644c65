from __future__ import annotations

import asyncio
import enum
import inspect
import logging
import threading
from typing import Any, Callable, Iterable

from component_trampoline.adapters import AsyncImports, SyncImports
from component_trampoline.composition import (
    LoadStep,
    Package,
    PackageExport,
    plan_instantiation,
)
from component_trampoline.config import LinkerConfig
from component_trampoline.context import CallFrame, ContextCell
from component_trampoline.dispatch import (
    AnyTrampoline,
    CallSite,
    Dispatcher,
    is_async_trampoline,
)
from component_trampoline.engine import ComponentDescription
from component_trampoline.errors import (
    DuplicateRegistration,
    InstantiationError,
    InvalidSynchronicity,
    RegistryFrozen,
    TrampolineError,
)
from component_trampoline.interfaces import FuncSignature, InterfaceKey
from component_trampoline.registry import (
    FrozenRegistry,
    Implementation,
    Registration,
    Registry,
    is_async_callable,
)
from component_trampoline.resolver import ResolvedBinding
from component_trampoline.versions import Version, coerce_version

logger = logging.getLogger(__name__)


class InstanceState(enum.Enum):
    CREATED = "created"
    ACTIVE = "active"
    TORN_DOWN = "torn_down"


def _coerce_key(key: InterfaceKey | str) -> InterfaceKey:
    if isinstance(key, InterfaceKey):
        return key
    return InterfaceKey.parse(key)


class LinkerBuilder:
    """Accumulates registrations; `build()` freezes them into a `Linker`.

    Registrations are keyed by ``(namespace, name, version)``::

        builder = LinkerBuilder()
        builder.register("counter", "increment", "1.0.0", increment)
        builder.register("counter/reset@1.0.0", reset)
        linker = builder.build()
    """

    def __init__(
        self,
        *,
        config: LinkerConfig | None = None,
        trampoline: AnyTrampoline | None = None,
    ) -> None:
        self._registry = Registry()
        self._packages: dict[str, Package] = {}
        self._config = config if config is not None else LinkerConfig.from_env()
        self._trampoline = trampoline

    @property
    def registry(self) -> Registry:
        return self._registry

    def register(
        self,
        *args: Any,
        signature: FuncSignature | None = None,
        capability: str | None = None,
        trampoline: AnyTrampoline | None = None,
        trampoline_context: Any = None,
    ) -> Registration:
        if len(args) == 2:
            key = _coerce_key(args[0])
            implementation = args[1]
        elif len(args) == 4:
            namespace, name, version, implementation = args
            key = InterfaceKey.of(namespace, name, version)
        else:
            raise TypeError(
                "register() takes (key, implementation) or "
                "(namespace, name, version, implementation)"
            )
        return self._registry.register(
            key,
            implementation,
            signature=signature,
            capability=capability,
            trampoline=trampoline,
            trampoline_context=trampoline_context,
        )

    def implement(
        self,
        key: InterfaceKey | str,
        *,
        signature: FuncSignature | None = None,
        capability: str | None = None,
        trampoline: AnyTrampoline | None = None,
        trampoline_context: Any = None,
    ) -> Callable[[Implementation], Implementation]:
        """Decorator form of `register`."""

        def _decorator(func: Implementation) -> Implementation:
            self.register(
                key,
                func,
                signature=signature,
                capability=capability,
                trampoline=trampoline,
                trampoline_context=trampoline_context,
            )
            return func

        return _decorator

    def register_package(
        self,
        component: ComponentDescription,
        namespace: str,
        version: Version | str,
        *,
        context_factory: Callable[[], Any] | None = None,
        trampoline: AnyTrampoline | None = None,
        capability: str | None = None,
        signatures: dict[str, FuncSignature] | None = None,
        trampoline_context: Any = None,
        interface_contexts: dict[str, Any] | None = None,
    ) -> list[Registration]:
        """Register every export of `component` as ``namespace/export@version``.

        `trampoline_context` is the default handed to the trampoline for every
        export; `interface_contexts` overrides it per export name.
        """
        if self._registry.frozen:
            raise RegistryFrozen("Cannot register packages after build()")
        package = Package(namespace, coerce_version(version), component, context_factory)
        if package.package_id in self._packages:
            raise DuplicateRegistration(package.package_id)
        keys = [
            InterfaceKey(namespace, export, package.version)
            for export in component.exports
        ]
        for key in keys:
            if key in self._registry:
                raise DuplicateRegistration(key)
        unknown = set(interface_contexts or ()) - set(component.exports)
        if unknown:
            raise ValueError(
                f"interface_contexts names unknown exports: {sorted(unknown)}"
            )
        self._packages[package.package_id] = package
        signatures = signatures or {}
        interface_contexts = interface_contexts or {}
        return [
            self._registry.register(
                key,
                PackageExport(package.package_id, key.name),
                signature=signatures.get(key.name),
                capability=capability,
                trampoline=trampoline,
                trampoline_context=interface_contexts.get(
                    key.name, trampoline_context
                ),
            )
            for key in keys
        ]

    def build(self) -> Linker:
        if self._registry.frozen:
            raise RegistryFrozen("LinkerBuilder.build() was already called")
        registry = self._registry.freeze()
        logger.debug("linker built with %d registrations", len(registry))
        return Linker(
            registry,
            dict(self._packages),
            config=self._config,
            trampoline=self._trampoline,
        )


class Linker:
    """Frozen registrations plus the logic to instantiate components."""

    def __init__(
        self,
        registry: FrozenRegistry,
        packages: dict[str, Package] | None = None,
        *,
        config: LinkerConfig | None = None,
        trampoline: AnyTrampoline | None = None,
    ) -> None:
        self._registry = registry
        self._packages = dict(packages or {})
        self._config = config if config is not None else LinkerConfig()
        self._trampoline = trampoline

    @property
    def registry(self) -> FrozenRegistry:
        return self._registry

    @property
    def config(self) -> LinkerConfig:
        return self._config

    def instantiate(
        self, component: ComponentDescription, host_context: Any = None
    ) -> Instance:
        """Instantiate `component` for the blocking calling convention.

        Every import is resolved and checked before the engine runs; engine
        failures propagate unchanged and leave no instance behind.
        """
        order = self._prepare(component, host_context, blocking=True)
        try:
            for target, description in order:
                target._exports = dict(description.instantiate(target.imports))
        except BaseException:
            for target, _ in reversed(order):
                target.close()
            raise
        instance = order[-1][0]
        logger.info(
            "instantiated %s with %d imports", component.name, len(instance.bindings)
        )
        return instance

    async def instantiate_async(
        self, component: ComponentDescription, host_context: Any = None
    ) -> Instance:
        """Instantiate `component` for the asyncio calling convention."""
        order = self._prepare(component, host_context, blocking=False)
        try:
            for target, description in order:
                exports = description.instantiate(target.imports)
                if inspect.isawaitable(exports):
                    exports = await exports
                target._exports = dict(exports)
        except BaseException:
            for target, _ in reversed(order):
                target.close()
            raise
        instance = order[-1][0]
        logger.info(
            "instantiated %s (async) with %d imports",
            component.name,
            len(instance.bindings),
        )
        return instance

    def _prepare(
        self, component: ComponentDescription, host_context: Any, *, blocking: bool
    ) -> list[tuple[Instance, ComponentDescription]]:
        bindings, steps = self._plan(component, blocking=blocking)
        providers: dict[str, Instance] = {}
        order: list[tuple[Instance, ComponentDescription]] = []
        for step in steps:
            provider = self._new_instance(
                step.package.component,
                step.bindings,
                step.package.new_context(),
                blocking=blocking,
                providers=providers,
            )
            providers[step.package.package_id] = provider
            order.append((provider, step.package.component))
        instance = self._new_instance(
            component, bindings, host_context, blocking=blocking, providers=providers
        )
        order.append((instance, component))
        return order

    def invoke(self, instance: Instance, export: str, *args: Any) -> Any:
        return instance.invoke(export, *args)

    async def invoke_async(self, instance: Instance, export: str, *args: Any) -> Any:
        return await instance.invoke_async(export, *args)

    def _plan(
        self, component: ComponentDescription, *, blocking: bool
    ) -> tuple[tuple[ResolvedBinding, ...], list[LoadStep]]:
        _check_slots(component)
        origin = None
        for package in self._packages.values():
            if package.component is component:
                origin = package.package_id
                break

        def check(binding: ResolvedBinding) -> None:
            self._check_binding(binding, blocking)

        return plan_instantiation(
            component, self._registry, self._packages, check, origin
        )

    def _check_binding(self, binding: ResolvedBinding, blocking: bool) -> None:
        registration = binding.registration
        self._config.capabilities.require(registration.capability, registration.key)
        if not blocking:
            return
        trampoline = self._effective_trampoline(registration)
        if is_async_trampoline(trampoline):
            raise InvalidSynchronicity(
                f"{registration.key} uses an async trampoline; "
                "use instantiate_async()"
            )
        implementation = registration.implementation
        if isinstance(implementation, PackageExport):
            package = self._packages[implementation.package_id]
            target = package.component.exports.get(implementation.export)
            if is_async_callable(target):
                raise InvalidSynchronicity(
                    f"{registration.key} is exported by a coroutine; "
                    "use instantiate_async()"
                )
        elif registration.is_async:
            raise InvalidSynchronicity(
                f"{registration.key} is a coroutine implementation; "
                "use instantiate_async()"
            )

    def _effective_trampoline(self, registration: Registration) -> AnyTrampoline | None:
        if registration.trampoline is not None:
            return registration.trampoline
        return self._trampoline

    def _new_instance(
        self,
        component: ComponentDescription,
        bindings: tuple[ResolvedBinding, ...],
        host_context: Any,
        *,
        blocking: bool,
        providers: dict[str, Instance],
    ) -> Instance:
        sites = []
        owned: list[Instance] = []
        for index, binding in enumerate(bindings):
            registration = binding.registration
            implementation = registration.implementation
            if isinstance(implementation, PackageExport):
                provider = providers[implementation.package_id]
                if provider not in owned:
                    owned.append(provider)
                implementation = _provider_call(
                    provider, implementation.export, blocking
                )
            sites.append(
                CallSite(
                    index,
                    binding,
                    implementation,
                    self._effective_trampoline(registration),
                )
            )
        return Instance(
            component.name,
            tuple(sites),
            ContextCell(host_context),
            blocking=blocking,
            trace_calls=self._config.trace_calls,
            providers=owned,
        )


def _check_slots(component: ComponentDescription) -> None:
    seen: set[str] = set()
    for request in component.imports:
        slot = request.slot_name
        if slot in seen:
            raise InstantiationError(
                f"Duplicate import slot '{slot}' in {component.name}"
            )
        seen.add(slot)


def _provider_call(provider: Instance, export: str, blocking: bool) -> Implementation:
    if blocking:

        def _call(_context: Any, *args: Any) -> Any:
            return provider.invoke(export, *args)

        return _call

    async def _call_async(_context: Any, *args: Any) -> Any:
        return await provider.invoke_async(export, *args)

    return _call_async


class Instance:
    """A component bound to its imports and one host context.

    ``CREATED`` until the first export call, ``ACTIVE`` afterwards, and
    ``TORN_DOWN`` once closed. A torn-down instance rejects every call.
    `state` stays ``ACTIVE`` between calls; use `in_flight()` to see whether
    any call is currently running.
    """

    def __init__(
        self,
        name: str,
        sites: tuple[CallSite, ...],
        cell: ContextCell,
        *,
        blocking: bool = True,
        trace_calls: bool = False,
        providers: Iterable[Instance] = (),
    ) -> None:
        self.name = name
        self._dispatcher = Dispatcher(self, sites, cell, trace_calls=trace_calls)
        self._blocking = blocking
        self._imports: SyncImports | AsyncImports
        if blocking:
            self._imports = SyncImports(self._dispatcher)
        else:
            self._imports = AsyncImports(self._dispatcher)
        self._exports: dict[str, Callable[..., Any]] = {}
        self._providers = tuple(providers)
        self._state = InstanceState.CREATED
        self._state_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<Instance {self.name} {self._state.value}>"

    @property
    def state(self) -> InstanceState:
        return self._state

    @property
    def is_async(self) -> bool:
        return not self._blocking

    @property
    def imports(self) -> SyncImports | AsyncImports:
        return self._imports

    @property
    def exports(self) -> list[str]:
        return sorted(self._exports)

    @property
    def bindings(self) -> tuple[ResolvedBinding, ...]:
        return tuple(site.binding for site in self._dispatcher.sites)

    def binding(self, slot: str) -> ResolvedBinding:
        return self._dispatcher.sites[self._dispatcher.index_of(slot)].binding

    def in_flight(self) -> list[CallFrame]:
        return self._dispatcher.in_flight()

    def _begin(self, export: str, *, blocking: bool) -> Callable[..., Any]:
        self._dispatcher.check_open()
        if blocking != self._blocking:
            if self._blocking:
                raise TrampolineError(
                    f"{self.name} was instantiated for blocking calls; use invoke()"
                )
            raise TrampolineError(
                f"{self.name} was instantiated for async calls; use invoke_async()"
            )
        try:
            func = self._exports[export]
        except KeyError:
            raise TrampolineError(f"{self.name} has no export '{export}'") from None
        with self._state_lock:
            if self._state is InstanceState.CREATED:
                self._state = InstanceState.ACTIVE
        return func

    def invoke(self, export: str, *args: Any) -> Any:
        func = self._begin(export, blocking=True)
        frame = CallFrame.current(self, export=export)
        with self._dispatcher.track(frame):
            result = func(*args)
        if inspect.isawaitable(result):
            close = getattr(result, "close", None)
            if close is not None:
                close()
            raise TrampolineError(
                f"{self.name}.{export} is a coroutine; use an async instance"
            )
        return result

    async def invoke_async(self, export: str, *args: Any) -> Any:
        func = self._begin(export, blocking=False)
        frame = CallFrame.current(self, export=export)
        with self._dispatcher.track(frame):
            result = func(*args)
            if inspect.isawaitable(result):
                result = await result
        return result

    def cancel_pending(self) -> int:
        """Cancel every suspended asynchronous call on this instance.

        Returns the number of tasks cancelled. Each cancelled call releases
        the host context as it unwinds; the context's data is left as the
        host implementation last wrote it.
        """
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        tasks = []
        for frame in self._dispatcher.in_flight():
            task = frame.task
            if task is None or task is current or task.done() or task in tasks:
                continue
            tasks.append(task)
        for task in tasks:
            loop = task.get_loop()
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                task.cancel()
            else:
                loop.call_soon_threadsafe(task.cancel)
        return len(tasks)

    def close(self) -> None:
        with self._state_lock:
            if self._state is InstanceState.TORN_DOWN:
                return
            self._state = InstanceState.TORN_DOWN
        self.cancel_pending()
        self._dispatcher.close()
        for provider in reversed(self._providers):
            provider.close()
        logger.info("instance %s torn down", self.name)

    def __enter__(self) -> Instance:
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    async def __aenter__(self) -> Instance:
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        self.close()
