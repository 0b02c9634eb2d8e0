"""Public entry points for the raising-effect lattice and its error kinds."""

from raisecheck.effects.errors import (
    AmbiguousModifier,
    DelegationError,
    DelegationTypeMismatch,
    Diagnostic,
    EffectError,
    EffectMismatch,
    InvalidDelegation,
    NotAnError,
    UndeclaredRaise,
    UnhandledRaisePath,
)
from raisecheck.effects.model import (
    BASE_THROW,
    NO_THROW,
    BaseThrow,
    DeclaredErrors,
    EffectType,
    NoThrow,
    TypedThrow,
    assignable,
    join,
    join_all,
)

__all__ = [
    "AmbiguousModifier",
    "BASE_THROW",
    "BaseThrow",
    "DeclaredErrors",
    "DelegationError",
    "DelegationTypeMismatch",
    "Diagnostic",
    "EffectError",
    "EffectMismatch",
    "EffectType",
    "InvalidDelegation",
    "NO_THROW",
    "NoThrow",
    "NotAnError",
    "TypedThrow",
    "UndeclaredRaise",
    "UnhandledRaisePath",
    "assignable",
    "join",
    "join_all",
]
