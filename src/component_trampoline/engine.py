"""The seam to the component execution engine.

The linker only needs three things from an engine: the list of imports a
component declares, a way to hand the component its bound import slots, and
the component's callable exports. `PyComponent` is an in-process engine built
from plain Python callables; a WASM runtime binding implements the same
protocol.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, Union

from component_trampoline.interfaces import ImportRequest

Exports = Mapping[str, Callable[..., Any]]


class ComponentDescription(Protocol):
    name: str
    imports: Sequence[ImportRequest]
    # Export names mapped to their definitions; read statically when the
    # component is registered as a provider package.
    exports: Mapping[str, Any]

    def instantiate(self, imports: Any) -> Union[Exports, Awaitable[Exports]]: ...


def _coerce_request(value: ImportRequest | str) -> ImportRequest:
    if isinstance(value, ImportRequest):
        return value
    return ImportRequest.parse(value)


@dataclass
class PyComponent:
    """A component whose exports are Python callables.

    Each export is called as ``export(imports, *args)``, where `imports` is the
    instance's `SyncImports` or `AsyncImports`. Exports of components meant for
    asynchronous instances may be coroutine functions.
    """

    name: str
    imports: Sequence[ImportRequest | str] = ()
    exports: dict[str, Callable[..., Any]] = field(default_factory=dict)
    on_instantiate: Callable[[Any], Any] | None = None

    def __post_init__(self) -> None:
        self.imports = tuple(_coerce_request(item) for item in self.imports)
        self.exports = dict(self.exports)

    def export(
        self, func: Callable[..., Any] | None = None, *, name: str | None = None
    ) -> Any:
        def _register(target: Callable[..., Any]) -> Callable[..., Any]:
            self.exports[name or target.__name__] = target
            return target

        if func is not None:
            return _register(func)
        return _register

    def instantiate(self, imports: Any) -> Exports:
        if self.on_instantiate is not None:
            self.on_instantiate(imports)
        return {
            export_name: functools.partial(func, imports)
            for export_name, func in self.exports.items()
        }
