from __future__ import annotations

from dataclasses import dataclass, field

from component_trampoline.capabilities import (
    CapabilityGrant,
    _parse_flag,
    _raw_getenv,
)


@dataclass(frozen=True)
class LinkerConfig:
    capabilities: CapabilityGrant = field(default_factory=CapabilityGrant)
    trace_calls: bool = False

    @classmethod
    def from_env(cls) -> LinkerConfig:
        return cls(
            capabilities=CapabilityGrant.from_env(),
            trace_calls=_parse_flag(_raw_getenv("TRAMPOLINE_TRACE_CALLS", "")),
        )
