"""Interface keys, import requests and call signatures.

The textual form follows the WIT convention ``namespace/name@version``; the
version part is optional. Namespaces may contain ``:`` (``wasi:http``).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from component_trampoline.errors import InterfacePathError
from component_trampoline.versions import (
    Version,
    VersionReq,
    coerce_req,
    coerce_version,
)


def _split_path(text: str) -> tuple[str, str, str | None]:
    parts = text.strip().split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InterfacePathError(f"Invalid interface path: {text!r}")
    namespace, rest = parts
    if "@" in namespace:
        raise InterfacePathError(f"Invalid interface path: {text!r}")
    name, sep, version = rest.partition("@")
    if not name or "@" in version:
        raise InterfacePathError(f"Invalid interface path: {text!r}")
    return namespace, name, version if sep else None


@dataclass(frozen=True)
class FuncSignature:
    """Static call shape of an import slot.

    When `error` is set the call returns a ``result<result, error>`` value:
    successes come back as `Ok`, domain failures as `Err`.
    """

    params: tuple[str, ...] = ()
    result: str | None = None
    error: str | None = None

    @property
    def has_error_result(self) -> bool:
        return self.error is not None


@dataclass(frozen=True, order=True)
class InterfaceKey:
    namespace: str
    name: str
    version: Version

    @classmethod
    def of(cls, namespace: str, name: str, version: Version | str) -> InterfaceKey:
        return cls(namespace, name, coerce_version(version))

    @classmethod
    def parse(cls, text: str) -> InterfaceKey:
        namespace, name, version = _split_path(text)
        if version is None:
            raise InterfacePathError(f"Interface key needs a version: {text!r}")
        return cls(namespace, name, Version.parse(version))

    @property
    def path(self) -> str:
        return f"{self.namespace}/{self.name}"

    def __str__(self) -> str:
        return f"{self.path}@{self.version}"


@dataclass(frozen=True)
class ImportRequest:
    namespace: str
    name: str
    requirement: VersionReq = field(default_factory=VersionReq.any)
    signature: FuncSignature | None = None
    slot: str | None = None

    @classmethod
    def of(
        cls,
        namespace: str,
        name: str,
        requirement: VersionReq | Version | str | None = None,
        *,
        signature: FuncSignature | None = None,
        slot: str | None = None,
    ) -> ImportRequest:
        return cls(namespace, name, coerce_req(requirement), signature, slot)

    @classmethod
    def parse(
        cls,
        text: str,
        *,
        signature: FuncSignature | None = None,
        slot: str | None = None,
    ) -> ImportRequest:
        namespace, name, requirement = _split_path(text)
        return cls(namespace, name, VersionReq.parse(requirement), signature, slot)

    @property
    def path(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def slot_name(self) -> str:
        return self.slot if self.slot is not None else self.name

    def __str__(self) -> str:
        if self.requirement.is_any:
            return self.path
        return f"{self.path}@{self.requirement}"
