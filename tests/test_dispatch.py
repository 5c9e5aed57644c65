from __future__ import annotations

import logging

import pytest

from component_trampoline import (
    Err,
    FuncSignature,
    GuestCall,
    HostImplementationError,
    ImportRequest,
    InterfaceKey,
    LinkerBuilder,
    LinkerConfig,
    Ok,
    PyComponent,
    Trampoline,
    Trap,
)


def _lookup(context: dict, key: str) -> str:
    if key not in context:
        raise HostImplementationError(f"missing:{key}")
    return context[key]


def _store_component(signature: FuncSignature | None) -> PyComponent:
    component = PyComponent(
        "store-guest",
        imports=[ImportRequest.parse("store/get@^1", signature=signature)],
    )
    component.export(lambda imports, key: imports.get(key), name="get")
    return component


def _store_linker(**kwargs) -> LinkerBuilder:
    builder = LinkerBuilder(config=LinkerConfig(), **kwargs)
    return builder


def test_error_result_signature_wraps_outcomes() -> None:
    builder = _store_linker()
    builder.register("store/get@1.0.0", _lookup)
    instance = builder.build().instantiate(
        _store_component(FuncSignature(params=("string",), result="string", error="string")),
        {"a": "apple"},
    )
    assert instance.invoke("get", "a") == Ok("apple")
    assert instance.invoke("get", "b") == Err("missing:b")


def test_domain_error_without_error_type_traps() -> None:
    builder = _store_linker()
    builder.register("store/get@1.0.0", _lookup)
    instance = builder.build().instantiate(_store_component(None), {"a": "apple"})
    assert instance.invoke("get", "a") == "apple"
    with pytest.raises(Trap):
        instance.invoke("get", "b")
    assert instance.invoke("get", "a") == "apple"


def test_unexpected_exception_traps_and_logs(caplog: pytest.LogCaptureFixture) -> None:
    def broken(context, key):
        raise KeyError(key)

    builder = _store_linker()
    builder.register("store/get@1.0.0", broken)
    instance = builder.build().instantiate(_store_component(FuncSignature(error="e")))
    with caplog.at_level(logging.WARNING, logger="component_trampoline.dispatch"):
        with pytest.raises(Trap) as excinfo:
            instance.invoke("get", "x")
    assert isinstance(excinfo.value.__cause__, KeyError)
    assert "store/get@1.0.0" in caplog.text


def test_registration_signature_used_when_request_has_none() -> None:
    builder = _store_linker()
    builder.register("store/get@1.0.0", _lookup, signature=FuncSignature(error="string"))
    instance = builder.build().instantiate(_store_component(None), {})
    assert instance.invoke("get", "zzz") == Err("missing:zzz")


def test_returned_result_values_pass_through() -> None:
    builder = _store_linker()
    builder.register("store/get@1.0.0", lambda context, key: Err("explicit"))
    instance = builder.build().instantiate(_store_component(FuncSignature(error="s")))
    assert instance.invoke("get", "k") == Err("explicit")


class _Recorder(Trampoline):
    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []

    def bounce(self, call: GuestCall):
        self.calls.append((str(call.interface), call.arguments))
        return call.call()


class _Upper(Trampoline):
    def bounce(self, call: GuestCall):
        return call.call(*(arg.upper() for arg in call.arguments))


def test_linker_trampoline_sees_every_call() -> None:
    recorder = _Recorder()
    builder = _store_linker(trampoline=recorder)
    builder.register("store/get@1.0.0", _lookup)
    instance = builder.build().instantiate(_store_component(None), {"a": "apple"})
    instance.invoke("get", "a")
    assert recorder.calls == [("store/get@1.0.0", ("a",))]


def test_registration_trampoline_overrides_linker_trampoline() -> None:
    recorder = _Recorder()
    builder = _store_linker(trampoline=recorder)
    builder.register("store/get@1.0.0", _lookup, trampoline=_Upper())
    instance = builder.build().instantiate(_store_component(None), {"A": "APPLE"})
    assert instance.invoke("get", "a") == "APPLE"
    assert recorder.calls == []


def test_trace_calls_logs_dispatch(caplog: pytest.LogCaptureFixture) -> None:
    builder = LinkerBuilder(config=LinkerConfig(trace_calls=True))
    builder.register("store/get@1.0.0", _lookup)
    instance = builder.build().instantiate(_store_component(None), {"a": "apple"})
    with caplog.at_level(logging.DEBUG, logger="component_trampoline.dispatch"):
        instance.invoke("get", "a")
    assert "dispatch store/get@1.0.0" in caplog.text


def test_in_flight_frames_visible_to_host() -> None:
    seen = []

    def inspect_frames(context):
        seen.extend(frame.describe() for frame in context["instance"].in_flight())

    builder = _store_linker()
    builder.register("host/inspect@1.0.0", inspect_frames)
    component = PyComponent("inspector", imports=["host/inspect"])
    component.export(lambda imports: imports.inspect(), name="run")
    context: dict = {}
    instance = builder.build().instantiate(component, context)
    context["instance"] = instance
    instance.invoke("run")
    assert seen == ["run", "host/inspect@1.0.0"]
    assert instance.in_flight() == []


def test_trampoline_context_per_interface_overrides_default() -> None:
    class Tagging(Trampoline):
        def __init__(self) -> None:
            self.seen: dict[str, object] = {}

        def bounce(self, call: GuestCall):
            self.seen[call.slot] = call.trampoline_context
            return call.call()

    provider = PyComponent(
        "kv",
        exports={
            "put": lambda imports, key: None,
            "get": lambda imports, key: key,
        },
    )
    tagging = Tagging()
    builder = _store_linker()
    builder.register_package(
        provider,
        "kv",
        "1.0.0",
        trampoline=tagging,
        trampoline_context={"limit": 10},
        interface_contexts={"get": {"limit": 1}},
    )
    builder.register("store/get@1.0.0", _lookup, trampoline=tagging)
    consumer = PyComponent("app", imports=["kv/put", "kv/get"])
    consumer.export(lambda imports: (imports.put("k"), imports.get("k")), name="run")
    instance = builder.build().instantiate(consumer)
    assert instance.invoke("run") == (None, "k")
    assert tagging.seen == {"put": {"limit": 10}, "get": {"limit": 1}}

    direct = builder.registry.lookup_exact(InterfaceKey.parse("store/get@1.0.0"))
    assert direct is not None and direct.trampoline_context is None


def test_registration_trampoline_context() -> None:
    recorder: list[object] = []

    class Recording(Trampoline):
        def bounce(self, call: GuestCall):
            recorder.append(call.trampoline_context)
            return call.call()

    builder = _store_linker()
    builder.register(
        "store/get@1.0.0", _lookup, trampoline=Recording(), trampoline_context="cfg"
    )
    instance = builder.build().instantiate(_store_component(None), {"a": "apple"})
    assert instance.invoke("get", "a") == "apple"
    assert recorder == ["cfg"]


def test_interface_contexts_must_name_exports() -> None:
    provider = PyComponent("kv", exports={"get": lambda imports, key: key})
    with pytest.raises(ValueError):
        _store_linker().register_package(
            provider, "kv", "1.0.0", interface_contexts={"missing": 1}
        )
