"""Effect inference for closures, function bodies and closure aggregates.

The engine walks statement trees and gathers *candidates*: the effect each
uncaught ``raise`` and each call to a raising callee contributes.  How a
candidate set collapses into one :class:`EffectType` depends on the active
:class:`InferencePolicy`:

* ``precise``: one concrete error type and nothing erased gives
  ``TypedThrow(T)``; anything else that raises gives ``BaseThrow``.
* ``compatibility`` (default): any raising closure is ``BaseThrow`` so that
  every raising closure stays interchangeable with every other one.

Function bodies are always collapsed precisely because they are checked against
an explicit signature.  Closure results are memoized per node on the engine.
Recoverable violations met while walking (aggregate mismatches, bad
delegations...) are passed to ``report`` and replaced with ``BaseThrow``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from ..dsl import ast
from ..telemetry.logger import get_logger
from . import delegation
from .errors import EffectError, EffectMismatch, NotAnError, UndeclaredRaise
from .model import (
    BASE_THROW,
    NEVER,
    NO_THROW,
    EffectType,
    ErrorCapability,
    TypedThrow,
    assignable,
    from_types,
    is_raising,
    join_all,
)

__all__ = [
    "Binding",
    "CollectionEffectBinding",
    "EffectEnv",
    "EffectInference",
    "InferencePolicy",
    "clause_effect",
    "collapse",
]

logger = get_logger(__name__)


class InferencePolicy(str, enum.Enum):
    """How an unannotated closure's candidate set becomes an effect."""

    COMPATIBILITY = "compatibility"
    PRECISE = "precise"


def collapse(candidates: Iterable[EffectType], policy: InferencePolicy) -> EffectType:
    """Reduce a candidate set to a single effect under ``policy``."""

    joined = join_all(candidates)
    if policy is InferencePolicy.COMPATIBILITY and is_raising(joined):
        return BASE_THROW
    return joined


# ---------------------------------------------------------------------------
# Clause and annotation helpers


def clause_effect(
    clause: Optional[ast.EffectClause], capability: ErrorCapability
) -> EffectType:
    """Effect written by ``clause``; raises :class:`NotAnError` for non-error types."""

    if clause is None:
        return NO_THROW
    if not clause.is_typed:
        return BASE_THROW
    for name in clause.types:
        if name != NEVER and not capability(name):
            raise NotAnError(
                f"'{name}' does not satisfy the error capability",
                node=clause,
                detail={"type": name},
            )
    return from_types(clause.types)


def _element_annotation(annotation: Optional[ast.TypeExpr]) -> Optional[ast.TypeExpr]:
    if isinstance(annotation, ast.TypeRef) and annotation.name in {"list", "set"}:
        if len(annotation.arguments) == 1:
            return annotation.arguments[0]
    return None


# ---------------------------------------------------------------------------
# Aggregate binding


@dataclass(slots=True)
class CollectionEffectBinding:
    """Single effect fixed for every function value stored in an aggregate.

    ``effect`` is ``None`` only for an empty, unannotated literal; the first
    insertion fixes it, erased to ``BaseThrow`` when ``erase`` is set (the
    compatibility policy).  Once fixed it is never widened.
    """

    effect: Optional[EffectType]
    kind: str = "list"
    declared: bool = False
    erase: bool = False

    def admit(
        self,
        element: EffectType,
        *,
        index: Optional[int] = None,
        node: Optional[ast.Node] = None,
    ) -> EffectType:
        """Check ``element`` against the binding (fixing it if still open)."""

        if self.effect is None:
            self.effect = BASE_THROW if self.erase and is_raising(element) else element
            return self.effect
        if not assignable(element, self.effect):
            where = f"element {index}" if index is not None else "inserted value"
            raise EffectMismatch(
                f"{where} has effect {element} but the {self.kind} is bound to {self.effect}",
                node=node,
                detail={"index": index, "element": str(element), "binding": str(self.effect)},
            )
        return self.effect


# ---------------------------------------------------------------------------
# Environment


@dataclass(slots=True)
class Binding:
    """What a name means for effect analysis.

    ``kind`` is ``callable`` (calling it contributes ``effect``), ``error``
    (raising it contributes ``effect``), ``collection`` (elements share
    ``collection.effect``) or ``constructor`` (a declared type name).
    """

    kind: str
    effect: EffectType = NO_THROW
    parameters: tuple[Optional[EffectType], ...] = ()
    spec: Optional["delegation.DelegationSpec"] = None
    collection: Optional[CollectionEffectBinding] = None


@dataclass(slots=True)
class EffectEnv:
    """Lexically scoped name table used while walking bodies."""

    bindings: dict[str, Binding] = field(default_factory=dict)
    parent: Optional["EffectEnv"] = None

    def child(self) -> "EffectEnv":
        return EffectEnv(parent=self)

    def define(self, name: str, binding: Binding) -> None:
        self.bindings[name] = binding

    def rebind(self, name: str, binding: Binding) -> None:
        """Replace ``name`` in the scope that defines it."""

        env: Optional[EffectEnv] = self
        while env is not None:
            if name in env.bindings:
                env.bindings[name] = binding
                return
            env = env.parent

    def lookup(self, name: str) -> Optional[Binding]:
        env: Optional[EffectEnv] = self
        while env is not None:
            if name in env.bindings:
                return env.bindings[name]
            env = env.parent
        return None


# ---------------------------------------------------------------------------
# Engine


class EffectInference:
    """Infers closure, body and aggregate effects for one compilation unit."""

    def __init__(
        self,
        capability: ErrorCapability,
        *,
        policy: InferencePolicy = InferencePolicy.COMPATIBILITY,
        report: Optional[Callable[[EffectError], None]] = None,
    ) -> None:
        self.capability = capability
        self.policy = policy
        self.report = report if report is not None else _raise_error
        self._closure_effects: dict[int, EffectType] = {}

    # ------------------------------------------------------------------
    # Public entry points

    def infer_closure_effect(self, closure: ast.Closure, env: EffectEnv) -> EffectType:
        """Effect of ``closure``; computed once per node."""

        key = id(closure)
        cached = self._closure_effects.get(key)
        if cached is not None:
            return cached

        scope = env.child()
        self.bind_parameters(closure.parameters, scope)
        candidates: list[EffectType] = []
        if isinstance(closure.body, ast.Block):
            self._collect_block(closure.body, scope, candidates)
        else:
            self._collect_expression(closure.body, scope, candidates)

        if closure.effect is not None:
            effect = self.declared_effect(closure.effect)
            body_effect = join_all(candidates)
            if not assignable(body_effect, effect):
                self.report(
                    UndeclaredRaise(
                        f"closure body raises {body_effect} but is annotated {effect}",
                        node=closure,
                        detail={"declared": str(effect), "body": str(body_effect)},
                    )
                )
                effect = BASE_THROW
        else:
            effect = collapse(candidates, self.policy)

        logger.debug("closure at %s inferred as %s", _location(closure), effect)
        self._closure_effects[key] = effect
        closure.metadata["effect"] = effect
        return effect

    def infer_body_effect(self, body: ast.Block, env: EffectEnv) -> EffectType:
        """Precise effect of a function body, used against its signature."""

        candidates: list[EffectType] = []
        self._collect_block(body, env, candidates)
        return join_all(candidates)

    def infer_collection_effect(
        self,
        elements: Sequence[ast.Expression],
        env: EffectEnv,
        *,
        declared: Optional[EffectType] = None,
        kind: str = "list",
    ) -> CollectionEffectBinding:
        """Fix the aggregate binding for ``elements``.

        Raises :class:`EffectMismatch` naming the first offending element.
        """

        effects = [self.value_effect(element, env) for element in elements]
        if declared is not None:
            binding = CollectionEffectBinding(declared, kind=kind, declared=True)
            start = 0
        elif not effects:
            erase = self.policy is InferencePolicy.COMPATIBILITY
            return CollectionEffectBinding(None, kind=kind, erase=erase)
        elif self.policy is InferencePolicy.COMPATIBILITY:
            return CollectionEffectBinding(collapse(effects, self.policy), kind=kind, erase=True)
        else:
            binding = CollectionEffectBinding(effects[0], kind=kind)
            start = 1
        for index in range(start, len(effects)):
            binding.admit(effects[index], index=index, node=elements[index])
        return binding

    def value_effect(self, expr: ast.Expression, env: EffectEnv) -> EffectType:
        """Effect of calling the function value ``expr`` (``NoThrow`` for plain data)."""

        if isinstance(expr, ast.Closure):
            return self.infer_closure_effect(expr, env)
        name = ast.identifier_name(expr)
        if name is not None:
            binding = env.lookup(name)
            if binding is not None and binding.kind == "callable":
                return binding.effect
        return NO_THROW

    def bind_parameters(
        self,
        parameters: Sequence[ast.Parameter],
        env: EffectEnv,
        bindings: Optional[Sequence[Binding]] = None,
    ) -> None:
        if bindings is None:
            bindings = [self.parameter_binding(param) for param in parameters]
        for param, binding in zip(parameters, bindings):
            env.define(param.name, binding)

    def parameter_binding(self, param: ast.Parameter) -> Binding:
        annotation = param.type_annotation
        if isinstance(annotation, ast.FunctionTypeRef):
            return Binding("callable", self.declared_effect(annotation.effect))
        element = _element_annotation(annotation)
        if isinstance(element, ast.FunctionTypeRef):
            effect = self.declared_effect(element.effect)
            return Binding(
                "collection",
                effect,
                collection=CollectionEffectBinding(effect, declared=True),
            )
        if isinstance(annotation, ast.TypeRef) and self.capability(annotation.name):
            return Binding("error", TypedThrow(annotation.name))
        return Binding("value")

    # ------------------------------------------------------------------
    # Statement walking

    def _collect_block(self, block: ast.Block, env: EffectEnv, sink: list[EffectType]) -> None:
        scope = env.child()
        for stmt in block.statements:
            self._collect_statement(stmt, scope, sink)

    def _collect_statement(self, stmt: ast.Node, env: EffectEnv, sink: list[EffectType]) -> None:
        if isinstance(stmt, ast.Let):
            self._collect_let(stmt, env, sink)
        elif isinstance(stmt, ast.Assign):
            self._collect_assign(stmt, env, sink)
        elif isinstance(stmt, ast.Return):
            if stmt.value is not None:
                self._collect_expression(stmt.value, env, sink)
        elif isinstance(stmt, ast.Raise):
            self._collect_expression(stmt.value, env, sink)
            raised = self._raised_effect(stmt.value, env)
            stmt.metadata["effect"] = raised
            sink.append(raised)
        elif isinstance(stmt, ast.Try):
            self._collect_try(stmt, env, sink)
        elif isinstance(stmt, ast.Append):
            self._collect_append(stmt, env, sink)
        elif isinstance(stmt, ast.Loop):
            self._collect_loop(stmt, env, sink)
        elif isinstance(stmt, ast.Conditional):
            for test, block in stmt.branches:
                if test is not None:
                    self._collect_expression(test, env, sink)
                self._collect_block(block, env, sink)
        elif isinstance(stmt, ast.Block):
            self._collect_block(stmt, env, sink)
        else:
            self._collect_expression(stmt, env, sink)

    def _collect_let(self, stmt: ast.Let, env: EffectEnv, sink: list[EffectType]) -> None:
        declared_fn: Optional[EffectType] = None
        if isinstance(stmt.type_annotation, ast.FunctionTypeRef):
            declared_fn = self.declared_effect(stmt.type_annotation.effect)
        element = _element_annotation(stmt.type_annotation)
        declared_element: Optional[EffectType] = None
        if isinstance(element, ast.FunctionTypeRef):
            declared_element = self.declared_effect(element.effect)

        value = stmt.value
        if isinstance(value, ast.CollectionLiteral):
            collection = self._collection_binding(value, env, sink, declared=declared_element)
            env.define(
                stmt.name,
                Binding("collection", collection.effect or NO_THROW, collection=collection),
            )
            return

        self._collect_expression(value, env, sink)
        if declared_fn is not None:
            actual = self.value_effect(value, env)
            if not assignable(actual, declared_fn):
                self.report(
                    EffectMismatch(
                        f"'{stmt.name}' is declared {declared_fn} but bound to a value of effect {actual}",
                        node=stmt,
                        detail={"declared": str(declared_fn), "actual": str(actual)},
                    )
                )
                stmt.metadata["effect"] = BASE_THROW
                env.define(stmt.name, Binding("callable", BASE_THROW))
                return
            env.define(stmt.name, Binding("callable", declared_fn))
            return
        env.define(stmt.name, self._binding_for_value(value, env, stmt.type_annotation))

    def _binding_for_value(
        self, value: ast.Expression, env: EffectEnv, annotation: Optional[ast.TypeExpr]
    ) -> Binding:
        if isinstance(value, ast.Closure):
            return Binding("callable", self.infer_closure_effect(value, env))
        if isinstance(value, ast.Call) and self.capability(value.function):
            return Binding("error", TypedThrow(value.function))
        name = ast.identifier_name(value)
        if name is not None:
            existing = env.lookup(name)
            if existing is not None and existing.kind in {"callable", "error", "collection"}:
                return existing
        if isinstance(annotation, ast.TypeRef) and self.capability(annotation.name):
            return Binding("error", TypedThrow(annotation.name))
        return Binding("value")

    def _collect_assign(self, stmt: ast.Assign, env: EffectEnv, sink: list[EffectType]) -> None:
        self._collect_expression(stmt.value, env, sink)
        binding = env.lookup(stmt.target)
        if binding is None or binding.kind != "callable":
            return
        actual = self.value_effect(stmt.value, env)
        if not assignable(actual, binding.effect):
            self.report(
                EffectMismatch(
                    f"cannot assign a value of effect {actual} to '{stmt.target}' ({binding.effect})",
                    node=stmt,
                    detail={"declared": str(binding.effect), "actual": str(actual)},
                )
            )
            stmt.metadata["effect"] = BASE_THROW
            env.rebind(stmt.target, Binding("callable", BASE_THROW))

    def _collect_try(self, stmt: ast.Try, env: EffectEnv, sink: list[EffectType]) -> None:
        caught: list[EffectType] = []
        self._collect_block(stmt.body, env, caught)
        caught_effect = join_all(caught)
        stmt.metadata["caught_effect"] = caught_effect
        handler_env = env.child()
        if stmt.binding is not None:
            raised_again = caught_effect if is_raising(caught_effect) else BASE_THROW
            handler_env.define(stmt.binding, Binding("error", raised_again))
        self._collect_block(stmt.handler, handler_env, sink)

    def _collect_append(self, stmt: ast.Append, env: EffectEnv, sink: list[EffectType]) -> None:
        self._collect_expression(stmt.value, env, sink)
        binding = env.lookup(stmt.target)
        if binding is None or binding.collection is None:
            return
        collection = binding.collection
        element = self.value_effect(stmt.value, env)
        try:
            collection.admit(element, node=stmt)
        except EffectMismatch as exc:
            stmt.metadata["effect"] = BASE_THROW
            self.report(exc)
            return
        binding.effect = collection.effect or NO_THROW
        stmt.metadata["effect"] = element

    def _collect_loop(self, loop: ast.Loop, env: EffectEnv, sink: list[EffectType]) -> None:
        scope = env.child()
        if loop.kind == "for" and loop.iterable is not None and loop.target is not None:
            element_effect = self._iterable_element_effect(loop.iterable, env, sink)
            if element_effect is not None:
                scope.define(loop.target, Binding("callable", element_effect))
            else:
                scope.define(loop.target, Binding("value"))
        elif loop.condition is not None:
            self._collect_expression(loop.condition, env, sink)
        self._collect_block(loop.body, scope, sink)

    def _iterable_element_effect(
        self, iterable: ast.Expression, env: EffectEnv, sink: list[EffectType]
    ) -> Optional[EffectType]:
        if isinstance(iterable, ast.CollectionLiteral):
            return self._collection_binding(iterable, env, sink).effect
        self._collect_expression(iterable, env, sink)
        name = ast.identifier_name(iterable)
        if name is not None:
            binding = env.lookup(name)
            if binding is not None and binding.collection is not None:
                return binding.collection.effect
        return None

    # ------------------------------------------------------------------
    # Expressions

    def _collect_expression(
        self, expr: ast.Expression, env: EffectEnv, sink: list[EffectType]
    ) -> None:
        if isinstance(expr, ast.Call):
            for argument in expr.arguments:
                self._collect_expression(argument, env, sink)
            effect = self._call_effect(expr, env)
            expr.metadata["effect"] = effect
            if is_raising(effect):
                sink.append(effect)
        elif isinstance(expr, ast.Closure):
            # Defining a closure runs nothing; its effect is recorded for later calls.
            self.infer_closure_effect(expr, env)
        elif isinstance(expr, ast.CollectionLiteral):
            self._collection_binding(expr, env, sink)
        elif isinstance(expr, ast.BinaryOp):
            self._collect_expression(expr.left, env, sink)
            self._collect_expression(expr.right, env, sink)
        elif isinstance(expr, ast.UnaryOp):
            self._collect_expression(expr.operand, env, sink)

    def _collection_binding(
        self,
        literal: ast.CollectionLiteral,
        env: EffectEnv,
        sink: list[EffectType],
        *,
        declared: Optional[EffectType] = None,
    ) -> CollectionEffectBinding:
        for element in literal.elements:
            self._collect_expression(element, env, sink)
        try:
            binding = self.infer_collection_effect(
                literal.elements, env, declared=declared, kind=literal.kind
            )
        except EffectMismatch as exc:
            self.report(exc)
            binding = CollectionEffectBinding(
                declared if declared is not None else BASE_THROW,
                kind=literal.kind,
                declared=declared is not None,
            )
        literal.metadata["collection_binding"] = binding
        return binding

    def _call_effect(self, call: ast.Call, env: EffectEnv) -> EffectType:
        binding = env.lookup(call.function)
        if binding is None or binding.kind != "callable":
            return NO_THROW
        arguments = [self.value_effect(argument, env) for argument in call.arguments]
        mismatched = False
        for position, expected in enumerate(binding.parameters):
            if expected is None or position >= len(arguments):
                continue
            if not assignable(arguments[position], expected):
                mismatched = True
                self.report(
                    EffectMismatch(
                        f"argument {position} of '{call.function}' has effect "
                        f"{arguments[position]} but the parameter expects {expected}",
                        node=call,
                        detail={
                            "argument": position,
                            "expected": str(expected),
                            "actual": str(arguments[position]),
                        },
                    )
                )
        if binding.spec is None:
            return binding.effect
        if mismatched:
            # One diagnostic per call site.
            return BASE_THROW
        forwarded = {
            param.name: arguments[param.position]
            if param.position < len(arguments)
            else param.effect
            for param in binding.spec.parameters
        }
        try:
            return delegation.call_site_effect(binding.spec, forwarded)
        except EffectError as exc:
            if exc.node is None:
                exc.node = call
            self.report(exc)
            return BASE_THROW

    def _raised_effect(self, value: ast.Expression, env: EffectEnv) -> EffectType:
        if isinstance(value, ast.Call):
            binding = env.lookup(value.function)
            if binding is not None and binding.kind == "constructor":
                if self.capability(value.function):
                    return TypedThrow(value.function)
                self.report(
                    NotAnError(
                        f"'{value.function}' is raised but is not an error type",
                        node=value,
                        detail={"type": value.function},
                    )
                )
                return BASE_THROW
            return BASE_THROW
        name = ast.identifier_name(value)
        if name is not None:
            binding = env.lookup(name)
            if binding is not None and binding.kind == "error":
                return binding.effect
            if binding is not None and binding.kind == "constructor":
                if self.capability(name):
                    return TypedThrow(name)
                self.report(
                    NotAnError(
                        f"'{name}' is raised but is not an error type",
                        node=value,
                        detail={"type": name},
                    )
                )
        return BASE_THROW

    # ------------------------------------------------------------------
    # Helpers

    def declared_effect(self, clause: Optional[ast.EffectClause]) -> EffectType:
        try:
            return clause_effect(clause, self.capability)
        except NotAnError as exc:
            self.report(exc)
            return BASE_THROW


def _raise_error(error: EffectError) -> None:
    raise error


def _location(node: ast.Node) -> str:
    if node.span is None:
        return "<unknown>"
    return f"{node.span.start_line}:{node.span.start_column}"
