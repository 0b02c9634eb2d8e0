"""Error kinds raised by the effect checker and the diagnostics they become.

Every error here is recoverable at the level of a compilation unit: the
checker catches it, records a :class:`Diagnostic` on the offending node and
continues with ``BaseThrow`` as that node's effect.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from ..dsl import ast

__all__ = [
    "AmbiguousModifier",
    "DelegationError",
    "DelegationTypeMismatch",
    "Diagnostic",
    "EffectError",
    "EffectMismatch",
    "InvalidDelegation",
    "NotAnError",
    "UndeclaredRaise",
    "UnhandledRaisePath",
]


class EffectError(RuntimeError):
    """Base class for raising-effect violations."""

    kind = "EffectError"

    def __init__(
        self,
        message: str,
        *,
        node: Optional[ast.Node] = None,
        detail: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.message = message
        self.node = node
        self.detail = dict(detail or {})
        if node is not None and node.span is not None:
            span = node.span
            super().__init__(f"{span.start_line}:{span.start_column}: {message}")
        else:
            super().__init__(message)


class AmbiguousModifier(EffectError):
    """A bare identifier follows ``raises`` where it can only be a type."""

    kind = "AmbiguousModifier"

    def __init__(self, identifier: str, line: int, column: int) -> None:
        super().__init__(
            f"'{identifier}' after bare 'raises' is not a type; write 'raises({identifier})'",
            detail={"identifier": identifier},
        )
        self.identifier = identifier
        self.line = line
        self.column = column


class EffectMismatch(EffectError):
    """An aggregate element does not fit the aggregate's fixed binding."""

    kind = "EffectMismatch"


class NotAnError(EffectError):
    """A ``raises(T)`` clause names a type that fails the error capability."""

    kind = "NotAnError"


class UndeclaredRaise(EffectError):
    """A body raises more than its declared effect permits."""

    kind = "UndeclaredRaise"


class DelegationError(EffectError):
    """Base class for forwarding-function resolution failures."""

    kind = "DelegationError"


class InvalidDelegation(DelegationError):
    kind = "InvalidDelegation"


class DelegationTypeMismatch(DelegationError):
    kind = "DelegationTypeMismatch"


class UnhandledRaisePath(DelegationError):
    kind = "UnhandledRaisePath"


@dataclass(slots=True, frozen=True)
class Diagnostic:
    """Structured description of a recorded effect violation."""

    kind: str
    message: str
    function: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    detail: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, error: EffectError, *, function: Optional[str] = None) -> "Diagnostic":
        line: Optional[int] = None
        column: Optional[int] = None
        if isinstance(error, AmbiguousModifier):
            line, column = error.line, error.column
        elif error.node is not None and error.node.span is not None:
            line, column = error.node.span.start_line, error.node.span.start_column
        return cls(
            kind=error.kind,
            message=error.message,
            function=function,
            line=line,
            column=column,
            detail=dict(error.detail),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.function is not None:
            payload["function"] = self.function
        if self.line is not None:
            payload["line"] = self.line
            payload["column"] = self.column
        if self.detail:
            payload["detail"] = dict(self.detail)
        return payload
