"""Resolution of forwarding ("delegating") functions.

A forwarding function declares ``forwards(f, ...)``: its own raising effect is
computed from the effects of the referenced function parameters rather than
written down.  Three modes exist, tried in this order:

1. no explicit target: the join of the forwarded parameters' effects;
2. explicit ``raises(T)`` and a converting ``try``/``catch`` in the body:
   ``TypedThrow(T)``, provided every unconverted raise path already fits ``T``;
3. explicit ``raises(T)`` without conversion (passthrough): every forwarded
   parameter must be ``TypedThrow(T)`` or ``NoThrow``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Mapping, Optional, Sequence

from ..dsl import ast
from ..telemetry.logger import get_logger
from .errors import DelegationTypeMismatch, InvalidDelegation, UnhandledRaisePath
from .model import NO_THROW, EffectType, TypedThrow, assignable, is_raising, join_all

__all__ = [
    "DelegatedParameter",
    "DelegationSpec",
    "RaisePath",
    "build_spec",
    "call_site_effect",
    "collect_raise_paths",
    "resolve_delegation",
]

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class DelegatedParameter:
    """A parameter named in ``forwards(...)`` and its declared effect."""

    name: str
    position: int
    effect: EffectType


@dataclass(slots=True, frozen=True)
class RaisePath:
    """One call of a forwarded parameter inside the function body.

    ``converted`` is True when a ``catch`` absorbs or rewraps whatever that call
    raises instead of letting the original value escape.
    """

    parameter: str
    converted: bool
    node: Optional[ast.Node] = field(default=None, compare=False)


@dataclass(slots=True, frozen=True)
class DelegationSpec:
    """Everything needed to resolve a forwarding function's effect."""

    function: str
    parameters: tuple[DelegatedParameter, ...]
    target: Optional[str] = None
    has_conversion: bool = False
    paths: tuple[RaisePath, ...] = ()
    node: Optional[ast.Node] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not any(is_raising(param.effect) for param in self.parameters):
            raise InvalidDelegation(
                f"'{self.function}' forwards no parameter with a raising function type",
                node=self.node,
            )

    @property
    def mode(self) -> str:
        if self.target is None:
            return "join"
        return "conversion" if self.has_conversion else "passthrough"


def resolve_delegation(spec: DelegationSpec, param_effects: Mapping[str, EffectType]) -> EffectType:
    """Return the effect of ``spec``'s function given its parameters' effects.

    ``param_effects`` maps forwarded parameter names to effects: the declared
    ones when resolving the signature, the arguments' when resolving a call.
    """

    raising = [param for param in spec.parameters if is_raising(param.effect)]
    if not raising:
        raise InvalidDelegation(
            f"'{spec.function}' forwards no parameter with a raising function type",
            node=spec.node,
        )
    effects = {param.name: param_effects.get(param.name, param.effect) for param in raising}

    if spec.target is None:
        result = join_all(effects.values())
        logger.debug("'%s' forwards %s", spec.function, result)
        return result

    target = TypedThrow(spec.target)
    if spec.has_conversion:
        for path in spec.paths:
            effect = effects.get(path.parameter)
            if effect is None or path.converted or assignable(effect, target):
                continue
            raise UnhandledRaisePath(
                f"'{spec.function}' lets {effect} from '{path.parameter}' escape "
                f"unconverted past {target}",
                node=path.node if path.node is not None else spec.node,
                detail={"mode": spec.mode, "parameter": path.parameter, "effect": str(effect)},
            )
        return target

    for name, effect in effects.items():
        if not assignable(effect, target):
            raise DelegationTypeMismatch(
                f"'{spec.function}' passes '{name}' through as {target} but it is {effect}",
                node=spec.node,
                detail={"mode": spec.mode, "parameter": name, "effect": str(effect)},
            )
    return target


def call_site_effect(spec: DelegationSpec, argument_effects: Mapping[str, EffectType]) -> EffectType:
    """Effect of one call of a forwarding function with concrete arguments."""

    forwarded = [argument_effects.get(param.name, param.effect) for param in spec.parameters]
    if not any(is_raising(effect) for effect in forwarded):
        return NO_THROW
    return resolve_delegation(spec, argument_effects)


# ---------------------------------------------------------------------------
# Building specs from declarations


def build_spec(
    fn: ast.FunctionDecl, parameter_effects: Mapping[str, EffectType]
) -> DelegationSpec:
    """Construct the :class:`DelegationSpec` of a forwarding declaration.

    Raises :class:`InvalidDelegation` when no forwarded parameter raises.
    """

    positions = {param.name: index for index, param in enumerate(fn.parameters)}
    parameters = tuple(
        DelegatedParameter(
            name=name, position=positions[name], effect=parameter_effects.get(name, NO_THROW)
        )
        for name in fn.forwards
    )
    target: Optional[str] = None
    if fn.effect is not None and fn.effect.types:
        target = fn.effect.types[0]
    paths = tuple(collect_raise_paths(fn.body, fn.forwards))
    return DelegationSpec(
        function=fn.name,
        parameters=parameters,
        target=target,
        has_conversion=any(path.converted for path in paths),
        paths=paths,
        node=fn,
    )


def collect_raise_paths(body: ast.Block, names: Sequence[str]) -> Iterator[RaisePath]:
    """Yield a :class:`RaisePath` for every call of ``names`` in ``body``.

    Closures defined in the body are skipped: defining one runs nothing.
    """

    wanted = set(names)
    for call, converted in _walk_statements(body.statements, wanted, converted=False):
        yield RaisePath(parameter=call.function, converted=converted, node=call)


def _walk_statements(
    statements: Sequence[ast.Node], wanted: set[str], *, converted: bool
) -> Iterator[tuple[ast.Call, bool]]:
    for stmt in statements:
        if isinstance(stmt, ast.Try):
            rethrows = stmt.binding is not None and _reraises(stmt.handler, stmt.binding)
            yield from _walk_statements(
                stmt.body.statements, wanted, converted=converted or not rethrows
            )
            yield from _walk_statements(stmt.handler.statements, wanted, converted=converted)
            continue
        for child in _statement_parts(stmt):
            if isinstance(child, ast.Block):
                yield from _walk_statements(child.statements, wanted, converted=converted)
            else:
                yield from _walk_expression(child, wanted, converted=converted)


def _statement_parts(stmt: ast.Node) -> Iterator[ast.Node]:
    if isinstance(stmt, ast.Block):
        yield stmt
        return
    if isinstance(stmt, ast.Conditional):
        for test, block in stmt.branches:
            if test is not None:
                yield test
            yield block
        return
    if isinstance(stmt, ast.Loop):
        for part in (stmt.iterable, stmt.condition):
            if part is not None:
                yield part
        yield stmt.body
        return
    if isinstance(stmt, (ast.Let, ast.Assign, ast.Raise, ast.Append)):
        yield stmt.value
        return
    if isinstance(stmt, ast.Return):
        if stmt.value is not None:
            yield stmt.value
        return
    yield stmt


def _walk_expression(
    expr: ast.Node, wanted: set[str], *, converted: bool
) -> Iterator[tuple[ast.Call, bool]]:
    if isinstance(expr, ast.Closure):
        return
    if isinstance(expr, ast.Call) and expr.function in wanted:
        yield expr, converted
    for child in expr.children():
        yield from _walk_expression(child, wanted, converted=converted)


def _reraises(handler: ast.Block, binding: str) -> bool:
    """True when ``handler`` raises the caught value itself."""

    for node in _iter_outside_closures(handler):
        if isinstance(node, ast.Raise) and ast.identifier_name(node.value) == binding:
            return True
    return False


def _iter_outside_closures(node: ast.Node) -> Iterator[ast.Node]:
    yield node
    for child in node.children():
        if isinstance(child, ast.Closure):
            continue
        yield from _iter_outside_closures(child)
