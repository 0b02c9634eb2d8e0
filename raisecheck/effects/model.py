"""Raising-effect lattice shared by every checker stage.

A function either never raises (:data:`NO_THROW`), raises exactly one error
type (:class:`TypedThrow`), or raises *some* error whose type has been erased
(:data:`BASE_THROW`).  The order is::

    NoThrow  <  TypedThrow(T)  <  BaseThrow

with distinct ``TypedThrow`` values incomparable.  ``BaseThrow`` is modelled as
its own top element rather than as ``TypedThrow`` of an umbrella error type.

:func:`join` and :func:`assignable` are the only primitives the rest of the
package uses to compare effects; both are pure and total.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Sequence, Union

__all__ = [
    "BASE_THROW",
    "NEVER",
    "NO_THROW",
    "BaseThrow",
    "DeclaredErrors",
    "EffectType",
    "ErrorCapability",
    "NoThrow",
    "TypedThrow",
    "assignable",
    "format_effect",
    "from_types",
    "is_raising",
    "join",
    "join_all",
]

# Spelling of the uninhabited error type: ``raises(Never)`` is ``NoThrow``.
NEVER = "Never"


@dataclass(slots=True, frozen=True)
class NoThrow:
    """The function never raises."""

    def __str__(self) -> str:
        return "nothrow"


@dataclass(slots=True, frozen=True)
class BaseThrow:
    """The function raises some error value; its type is erased."""

    def __str__(self) -> str:
        return "raises"


@dataclass(slots=True, frozen=True)
class TypedThrow:
    """The function raises values of exactly ``error_type``."""

    error_type: str

    def __str__(self) -> str:
        return f"raises({self.error_type})"


EffectType = Union[NoThrow, BaseThrow, TypedThrow]

NO_THROW = NoThrow()
BASE_THROW = BaseThrow()

ErrorCapability = Callable[[str], bool]


class DeclaredErrors:
    """Error capability backed by a fixed set of declared error type names."""

    __slots__ = ("names",)

    def __init__(self, names: Iterable[str] = ()) -> None:
        self.names = frozenset(names)

    def __call__(self, type_name: str) -> bool:
        return type_name in self.names

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"DeclaredErrors({sorted(self.names)!r})"


# ---------------------------------------------------------------------------
# Lattice operations


def join(left: EffectType, right: EffectType) -> EffectType:
    """Return the least upper bound of ``left`` and ``right``."""

    if isinstance(left, NoThrow):
        return right
    if isinstance(right, NoThrow):
        return left
    if isinstance(left, BaseThrow) or isinstance(right, BaseThrow):
        return BASE_THROW
    if left == right:
        return left
    return BASE_THROW


def join_all(effects: Iterable[EffectType]) -> EffectType:
    """Fold :func:`join` left to right, starting from ``NoThrow``."""

    result: EffectType = NO_THROW
    for effect in effects:
        result = join(result, effect)
    return result


def assignable(source: EffectType, target: EffectType) -> bool:
    """Return True when a function of effect ``source`` may stand in for ``target``."""

    if isinstance(source, NoThrow):
        return True
    if isinstance(target, BaseThrow):
        return True
    if isinstance(source, TypedThrow) and isinstance(target, TypedThrow):
        return source.error_type == target.error_type
    return False


def is_raising(effect: EffectType) -> bool:
    return not isinstance(effect, NoThrow)


def from_types(names: Sequence[str]) -> EffectType:
    """Effect of a parenthesised ``raises(...)`` type list.

    ``Never`` contributes nothing; several distinct types erase to
    ``BaseThrow``.
    """

    return join_all(TypedThrow(name) for name in names if name != NEVER)


def format_effect(effect: EffectType) -> str:
    return str(effect)
