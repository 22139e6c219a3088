"""Predicate base class and the registry of predicate kinds.

A predicate declaration is a single-key mapping ``{kind: params}``. Decoding
looks the kind up in a closed registry; every predicate can dump itself back
to the exact declaration it was built from.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, ClassVar

from isil_tagger.exceptions import ConfigurationError
from isil_tagger.record import Record

_REGISTRY: dict[str, type[Filter]] = {}


class FilterContext:
    """Shared services predicates may need while decoding."""

    def __init__(self, holdings: Any = None, base_dir: Any = None) -> None:
        self.holdings = holdings
        self.base_dir = base_dir


class Filter(ABC):
    kind: ClassVar[str]

    @abstractmethod
    def apply(self, record: Record) -> bool:
        """Return True if the record passes this predicate."""

    @abstractmethod
    def params(self) -> dict[str, Any]:
        """The parameters this predicate was declared with."""

    @classmethod
    @abstractmethod
    def from_params(cls, params: Mapping[str, Any], ctx: FilterContext) -> Filter:
        ...

    def to_config(self) -> dict[str, Any]:
        return {self.kind: self.params()}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.params()!r})"


def register(cls: type[Filter]) -> type[Filter]:
    if cls.kind in _REGISTRY:
        raise ValueError(f"duplicate filter kind: {cls.kind}")
    _REGISTRY[cls.kind] = cls
    return cls


def registered_kinds() -> list[str]:
    return sorted(_REGISTRY)


def decode_filter(declaration: Any, ctx: FilterContext) -> Filter:
    if not isinstance(declaration, Mapping) or len(declaration) != 1:
        raise ConfigurationError(
            "filter declaration must be a mapping with exactly one kind",
            context={"declaration": declaration},
        )
    (kind, params), = declaration.items()
    cls = _REGISTRY.get(kind)
    if cls is None:
        raise ConfigurationError(
            f"unknown filter kind: {kind}",
            context={"kind": kind, "known": registered_kinds()},
        )
    if not isinstance(params, Mapping):
        raise ConfigurationError(
            f"parameters of filter {kind} must be a mapping",
            context={"kind": kind},
        )
    return cls.from_params(params, ctx)
