"""Semantic versions, version requirements and a version-indexed map."""

from __future__ import annotations

import bisect
import functools
import re
from dataclasses import dataclass
from typing import Generic, Iterator, TypeVar

from component_trampoline.errors import VersionParseError

T = TypeVar("T")

_IDENT = r"[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*"
_VERSION_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    rf"(?:-({_IDENT}))?(?:\+({_IDENT}))?$"
)
_PARTIAL_RE = re.compile(
    r"^(0|[1-9]\d*)(?:\.(0|[1-9]\d*)(?:\.(0|[1-9]\d*)(?:-(" + _IDENT + r"))?)?)?$"
)


def _pre_key(pre: tuple[str, ...]) -> tuple:
    # A release sorts above every pre-release of the same core version.
    if not pre:
        return (1,)
    idents = []
    for part in pre:
        if part.isdigit():
            idents.append((0, int(part), ""))
        else:
            idents.append((1, 0, part))
    return (0, tuple(idents))


@functools.total_ordering
@dataclass(frozen=True)
class Version:
    major: int
    minor: int
    patch: int
    pre: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> Version:
        match = _VERSION_RE.match(text.strip())
        if match is None:
            raise VersionParseError(f"Invalid semantic version: {text!r}")
        major, minor, patch, pre, build = match.groups()
        return cls(
            int(major),
            int(minor),
            int(patch),
            tuple(pre.split(".")) if pre else (),
            tuple(build.split(".")) if build else (),
        )

    @property
    def core(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def precedence(self) -> tuple:
        return (self.major, self.minor, self.patch, _pre_key(self.pre))

    def _sort_key(self) -> tuple:
        return (*self.precedence(), self.build)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            text += "-" + ".".join(self.pre)
        if self.build:
            text += "+" + ".".join(self.build)
        return text


def coerce_version(value: Version | str) -> Version:
    if isinstance(value, Version):
        return value
    return Version.parse(value)


@dataclass(frozen=True)
class VersionReq:
    """A version requirement.

    `kind` is one of:

    * ``"any"``: unconstrained, written ``*`` or left empty;
    * ``"exact"``: written ``=X.Y.Z``; matches that version regardless of
      build metadata;
    * ``"caret"``: written ``^X.Y.Z`` or bare ``X.Y.Z``. Compatible versions
      share the left-most non-zero component and are not lower than the
      requested one. ``minor`` and ``patch`` may be omitted (``^1``, ``^0.3``).

    Pre-release versions only match a requirement that names a pre-release of
    the same ``major.minor.patch``.
    """

    kind: str
    major: int = 0
    minor: int | None = None
    patch: int | None = None
    pre: tuple[str, ...] = ()

    @classmethod
    def any(cls) -> VersionReq:
        return cls("any")

    @classmethod
    def exact(cls, version: Version | str) -> VersionReq:
        version = coerce_version(version)
        return cls("exact", version.major, version.minor, version.patch, version.pre)

    @classmethod
    def caret(cls, version: Version | str) -> VersionReq:
        version = coerce_version(version)
        return cls("caret", version.major, version.minor, version.patch, version.pre)

    @classmethod
    def parse(cls, text: str | None) -> VersionReq:
        raw = (text or "").strip()
        if raw in ("", "*"):
            return cls.any()
        if raw.startswith("="):
            try:
                return cls.exact(Version.parse(raw[1:]))
            except VersionParseError:
                raise VersionParseError(
                    f"Invalid version requirement: {text!r}"
                ) from None
        if raw.startswith("^"):
            raw = raw[1:]
        match = _PARTIAL_RE.match(raw.strip())
        if match is None:
            raise VersionParseError(f"Invalid version requirement: {text!r}")
        major, minor, patch, pre = match.groups()
        return cls(
            "caret",
            int(major),
            None if minor is None else int(minor),
            None if patch is None else int(patch),
            tuple(pre.split(".")) if pre else (),
        )

    @property
    def is_any(self) -> bool:
        return self.kind == "any"

    def _lower(self) -> Version:
        return Version(self.major, self.minor or 0, self.patch or 0, self.pre)

    def _upper(self) -> tuple[int, int, int]:
        major, minor, patch = self.major, self.minor, self.patch
        if minor is None:
            return (major + 1, 0, 0)
        if major > 0:
            return (major + 1, 0, 0)
        if patch is None or minor > 0:
            return (0, minor + 1, 0)
        return (0, 0, patch + 1)

    def matches(self, version: Version) -> bool:
        if self.kind == "any":
            return True
        if self.kind == "exact":
            return version.precedence() == self._lower().precedence()
        if version.pre:
            lower = self._lower()
            if not self.pre or version.core != lower.core:
                return False
        if version.precedence() < self._lower().precedence():
            return False
        return version.core < self._upper()

    def distance(self, version: Version) -> tuple[int, int, int]:
        lower = self._lower()
        return (
            abs(version.major - lower.major),
            abs(version.minor - lower.minor),
            abs(version.patch - lower.patch),
        )

    def __str__(self) -> str:
        if self.kind == "any":
            return "*"
        parts = [str(self.major)]
        if self.minor is not None:
            parts.append(str(self.minor))
            if self.patch is not None:
                parts.append(str(self.patch))
        text = ".".join(parts)
        if self.pre:
            text += "-" + ".".join(self.pre)
        return ("=" if self.kind == "exact" else "^") + text


def coerce_req(value: VersionReq | Version | str | None) -> VersionReq:
    if isinstance(value, VersionReq):
        return value
    if isinstance(value, Version):
        return VersionReq.caret(value)
    return VersionReq.parse(value)


class VersionMap(Generic[T]):
    """Values indexed by version, kept in ascending version order."""

    def __init__(self) -> None:
        self._versions: list[Version] = []
        self._values: dict[Version, T] = {}

    def __len__(self) -> int:
        return len(self._versions)

    def __contains__(self, version: object) -> bool:
        return version in self._values

    def __iter__(self) -> Iterator[Version]:
        return iter(self._versions)

    def items(self) -> Iterator[tuple[Version, T]]:
        for version in self._versions:
            yield version, self._values[version]

    def try_insert(self, version: Version, value: T) -> bool:
        if version in self._values:
            return False
        bisect.insort(self._versions, version)
        self._values[version] = value
        return True

    def get_exact(self, version: Version) -> T | None:
        return self._values.get(version)

    def latest(self) -> tuple[Version, T] | None:
        if not self._versions:
            return None
        version = self._versions[-1]
        return version, self._values[version]

    def select(self, req: VersionReq) -> tuple[Version, T] | None:
        """Return the highest version satisfying `req`."""
        for version in reversed(self._versions):
            if req.matches(version):
                return version, self._values[version]
        return None

    def nearest(self, req: VersionReq, limit: int = 3) -> list[Version]:
        if req.is_any:
            return list(reversed(self._versions))[:limit]
        ranked = sorted(
            self._versions,
            key=lambda v: (req.distance(v), v.precedence()),
        )
        return ranked[:limit]
