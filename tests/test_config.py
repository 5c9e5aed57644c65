from __future__ import annotations

import logging

import pytest

from component_trampoline import CapabilityDenied, CapabilityGrant, LinkerBuilder, LinkerConfig
from component_trampoline import capabilities
from component_trampoline.interfaces import InterfaceKey


def test_capability_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRAMPOLINE_CAPABILITIES", "")
    monkeypatch.delenv("TRAMPOLINE_TRUSTED", raising=False)
    grant = CapabilityGrant.from_env()
    with pytest.raises(CapabilityDenied):
        grant.require("net.connect", InterfaceKey.parse("net/connect@1.0.0"))


def test_capability_present(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRAMPOLINE_CAPABILITIES", "net.connect, fs.read")
    grant = CapabilityGrant.from_env()
    assert grant.has("net.connect")
    assert grant.has("fs.read")
    assert not grant.has("fs.write")
    assert capabilities.env_capabilities() == frozenset({"net.connect", "fs.read"})


def test_trusted_grants_everything(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRAMPOLINE_CAPABILITIES", "")
    monkeypatch.setenv("TRAMPOLINE_TRUSTED", "yes")
    assert CapabilityGrant.from_env().has("anything")


def test_require_without_capability_is_noop() -> None:
    CapabilityGrant().require(None, InterfaceKey.parse("a/b@1.0.0"))


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRAMPOLINE_CAPABILITIES", "fs.read")
    monkeypatch.setenv("TRAMPOLINE_TRACE_CALLS", "1")
    config = LinkerConfig.from_env()
    assert config.trace_calls
    assert config.capabilities.has("fs.read")


def test_default_config_is_locked_down() -> None:
    config = LinkerConfig()
    assert not config.trace_calls
    assert not config.capabilities.has("fs.read")


def test_builder_reads_env_config(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("TRAMPOLINE_CAPABILITIES", "")
    monkeypatch.delenv("TRAMPOLINE_TRUSTED", raising=False)
    monkeypatch.delenv("TRAMPOLINE_TRACE_CALLS", raising=False)
    builder = LinkerBuilder()
    builder.register("fs/read@1.0.0", lambda context: None, capability="fs.read")
    with caplog.at_level(logging.DEBUG, logger="component_trampoline"):
        linker = builder.build()
    assert not linker.config.trace_calls
    assert "linker built with 1 registrations" in caplog.text
