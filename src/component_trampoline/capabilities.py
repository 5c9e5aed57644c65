"""Capability grants gating which host implementations a linker may bind."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from component_trampoline.errors import CapabilityDenied

if TYPE_CHECKING:
    from component_trampoline.interfaces import InterfaceKey

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_caps(raw: str) -> frozenset[str]:
    caps: set[str] = set()
    for part in raw.split(","):
        stripped = part.strip()
        if stripped:
            caps.add(stripped)
    return frozenset(caps)


def _raw_getenv(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def _parse_flag(raw: str) -> bool:
    return raw.strip().lower() in _TRUE_VALUES


_CAPS_CACHE: frozenset[str] | None = None
_CAPS_RAW: str | None = None


def env_capabilities() -> frozenset[str]:
    global _CAPS_CACHE, _CAPS_RAW
    raw = _raw_getenv("TRAMPOLINE_CAPABILITIES", "")
    if _CAPS_CACHE is None or raw != _CAPS_RAW:
        _CAPS_RAW = raw
        _CAPS_CACHE = _parse_caps(raw)
    return _CAPS_CACHE


def env_trusted() -> bool:
    return _parse_flag(_raw_getenv("TRAMPOLINE_TRUSTED", ""))


@dataclass(frozen=True)
class CapabilityGrant:
    granted: frozenset[str] = frozenset()
    trusted: bool = False

    @classmethod
    def of(cls, caps: Iterable[str] | str, trusted: bool = False) -> CapabilityGrant:
        if isinstance(caps, str):
            return cls(_parse_caps(caps), trusted)
        return cls(frozenset(caps), trusted)

    @classmethod
    def from_env(cls) -> CapabilityGrant:
        return cls(env_capabilities(), env_trusted())

    def has(self, capability: str) -> bool:
        if self.trusted:
            return True
        return capability in self.granted

    def require(self, capability: str | None, key: InterfaceKey) -> None:
        if capability is None:
            return
        if not self.has(capability):
            raise CapabilityDenied(key, capability)

