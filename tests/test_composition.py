from __future__ import annotations

import asyncio

import pytest

from component_trampoline import (
    DuplicateRegistration,
    ImportUnsatisfied,
    InstanceState,
    InvalidSynchronicity,
    LinkerBuilder,
    LinkerConfig,
    PyComponent,
)
from component_trampoline.errors import PackageCycle


def _kv_provider() -> PyComponent:
    provider = PyComponent("kv", imports=["host/save@^1", "host/load@^1"])

    @provider.export
    def put(imports, key, value):
        imports.save(key, value)

    @provider.export
    def get(imports, key):
        return imports.load(key)

    return provider


def _save(context: dict, key, value) -> None:
    context[key] = value


def _builder() -> LinkerBuilder:
    builder = LinkerBuilder(config=LinkerConfig())
    builder.register("host/save@1.0.0", _save)
    builder.register("host/load@1.0.0", lambda context, key: context.get(key))
    return builder


def _consumer() -> PyComponent:
    consumer = PyComponent("app", imports=["kv/put@^0.1", "kv/get@^0.1"])

    @consumer.export
    def run(imports):
        imports.put("answer", 42)
        return imports.get("answer")

    return consumer


def test_provider_package_serves_consumer() -> None:
    backing: dict = {}
    builder = _builder()
    registrations = builder.register_package(
        _kv_provider(), "kv", "0.1.0", context_factory=lambda: backing
    )
    assert [str(r.key) for r in registrations] == ["kv/put@0.1.0", "kv/get@0.1.0"]
    linker = builder.build()
    instance = linker.instantiate(_consumer())
    assert instance.invoke("run") == 42
    assert backing == {"answer": 42}
    instance.close()
    assert instance.state is InstanceState.TORN_DOWN


def test_each_consumer_gets_its_own_provider() -> None:
    builder = _builder()
    builder.register_package(_kv_provider(), "kv", "0.1.0", context_factory=dict)
    linker = builder.build()

    reader = PyComponent("reader", imports=["kv/get"])
    reader.export(lambda imports, key: imports.get(key), name="read")
    writer = linker.instantiate(_consumer())
    writer.invoke("run")
    assert linker.instantiate(reader).invoke("read", "answer") is None


def test_provider_missing_import_aborts_consumer() -> None:
    builder = LinkerBuilder(config=LinkerConfig())
    builder.register_package(_kv_provider(), "kv", "0.1.0")
    with pytest.raises(ImportUnsatisfied) as excinfo:
        builder.build().instantiate(_consumer())
    assert excinfo.value.request.path == "host/save"


def test_package_cycle_detected() -> None:
    ping = PyComponent("ping", imports=["pong/serve"])
    ping.export(lambda imports: imports.serve(), name="serve")
    pong = PyComponent("pong", imports=["ping/serve"])
    pong.export(lambda imports: imports.serve(), name="serve")
    builder = LinkerBuilder(config=LinkerConfig())
    builder.register_package(ping, "ping", "1.0.0")
    builder.register_package(pong, "pong", "1.0.0")
    app = PyComponent("app", imports=["ping/serve"])
    with pytest.raises(PackageCycle) as excinfo:
        builder.build().instantiate(app)
    assert excinfo.value.cycle == ["ping@1.0.0", "pong@1.0.0", "ping@1.0.0"]


def test_duplicate_package_rejected() -> None:
    builder = _builder()
    builder.register_package(_kv_provider(), "kv", "0.1.0")
    with pytest.raises(DuplicateRegistration):
        builder.register_package(_kv_provider(), "kv", "0.1.0")
    builder.register("other/put@1.0.0", lambda context: None)
    clashing = PyComponent("other", exports={"put": lambda imports: None})
    with pytest.raises(DuplicateRegistration):
        builder.register_package(clashing, "other", "1.0.0")
    assert len(builder.registry) == 5


def test_coroutine_export_needs_async_consumer() -> None:
    async def fetch(imports):
        return "fetched"

    provider = PyComponent("net", exports={"fetch": fetch})
    builder = LinkerBuilder(config=LinkerConfig())
    builder.register_package(provider, "net", "1.0.0")
    linker = builder.build()
    consumer = PyComponent("app", imports=["net/fetch"])
    consumer.export(lambda imports: imports.fetch(), name="run")
    with pytest.raises(InvalidSynchronicity):
        linker.instantiate(consumer)

    async def main():
        instance = await linker.instantiate_async(consumer)
        return await instance.invoke_async("run")

    assert asyncio.run(main()) == "fetched"
