"""Checker pass: annotate every function, member and closure with its effect.

The pass runs in three steps over one module:

1. seed the module environment with declared types and every signature,
   resolving forwarding functions through :mod:`.delegation`;
2. walk each function body with :class:`~.inference.EffectInference`, which
   fills in closure and aggregate effects and checks them;
3. compare each body's precise effect against its signature.

Violations never stop the pass.  Each one becomes a :class:`Diagnostic`, and
the offending node's effect falls back to ``BaseThrow``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional

from ..dsl import ast, grammar
from ..telemetry.logger import get_logger
from ..utils.config import AnalysisConfig
from . import delegation
from .errors import AmbiguousModifier, Diagnostic, EffectError, UndeclaredRaise
from .inference import Binding, EffectEnv, EffectInference
from .model import BASE_THROW, DeclaredErrors, EffectType, ErrorCapability, assignable

__all__ = ["CheckResult", "check_module", "check_source"]

logger = get_logger(__name__)


@dataclass(slots=True)
class CheckResult:
    """Annotated module plus every diagnostic recorded while checking it."""

    module: ast.Module
    diagnostics: tuple[Diagnostic, ...]
    effects: Mapping[str, EffectType] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    def kinds(self) -> list[str]:
        return [diagnostic.kind for diagnostic in self.diagnostics]


def check_source(
    source: str,
    *,
    filename: str = "<dsl>",
    config: Optional[AnalysisConfig] = None,
    capability: Optional[ErrorCapability] = None,
) -> CheckResult:
    """Parse and check ``source`` in one call."""

    module = grammar.parse_module(source, filename=filename)
    return check_module(module, config=config, capability=capability)


def check_module(
    module: ast.Module,
    *,
    config: Optional[AnalysisConfig] = None,
    capability: Optional[ErrorCapability] = None,
) -> CheckResult:
    """Resolve and check the raising effects of ``module``."""

    config = config or AnalysisConfig()
    if capability is None:
        capability = DeclaredErrors(decl.name for decl in module.errors)
    checker = _Checker(module, config, capability)
    result = checker.run()
    logger.info(
        "checked %d function(s) under %s policy: %d diagnostic(s)",
        len(module.functions),
        config.policy.value,
        len(result.diagnostics),
    )
    return result


class _Checker:
    def __init__(
        self, module: ast.Module, config: AnalysisConfig, capability: ErrorCapability
    ) -> None:
        self.module = module
        self.config = config
        self.capability = capability
        self.diagnostics: list[Diagnostic] = []
        self.effects: dict[str, EffectType] = {}
        self.parameter_bindings: dict[str, list[Binding]] = {}
        self.current_function: Optional[str] = None
        self.engine = EffectInference(capability, policy=config.policy, report=self._record)

    def run(self) -> CheckResult:
        for error in self.module.metadata.get("parse_diagnostics", []):
            if isinstance(error, AmbiguousModifier):
                self._record(error)

        env = EffectEnv()
        for decl in [*self.module.errors, *self.module.types]:
            env.define(decl.name, Binding("constructor"))
        for interface in self.module.interfaces:
            self._seed_interface(interface)
        for fn in self.module.functions:
            self.current_function = fn.name
            env.define(fn.name, self._seed_function(fn))

        for fn in self.module.functions:
            self.current_function = fn.name
            self._check_body(fn, env)
        self.current_function = None

        return CheckResult(
            module=self.module, diagnostics=tuple(self.diagnostics), effects=dict(self.effects)
        )

    # ------------------------------------------------------------------
    # Signatures

    def _seed_interface(self, interface: ast.InterfaceDecl) -> None:
        for member in interface.members:
            self.current_function = f"{interface.name}.{member.name}"
            effect = self.engine.declared_effect(member.effect)
            member.metadata["effect"] = effect
            self.effects[self.current_function] = effect

    def _seed_function(self, fn: ast.FunctionDecl) -> Binding:
        bindings = [self.engine.parameter_binding(param) for param in fn.parameters]
        self.parameter_bindings[fn.name] = bindings
        parameters = tuple(
            binding.effect if binding.kind == "callable" else None for binding in bindings
        )
        if not fn.forwards:
            effect = self.engine.declared_effect(fn.effect)
            self._annotate(fn, effect)
            return Binding("callable", effect, parameters=parameters)

        declared = {
            param.name: binding.effect
            for param, binding in zip(fn.parameters, bindings)
            if binding.kind == "callable"
        }
        try:
            spec = delegation.build_spec(fn, declared)
            effect = delegation.resolve_delegation(spec, declared)
        except EffectError as exc:
            self._record(exc)
            self._annotate(fn, BASE_THROW)
            return Binding("callable", BASE_THROW, parameters=parameters)
        fn.metadata["delegation"] = spec
        self._annotate(fn, effect)
        logger.debug("'%s' resolved in %s mode to %s", fn.name, spec.mode, effect)
        return Binding("callable", effect, parameters=parameters, spec=spec)

    def _annotate(self, fn: ast.FunctionDecl, effect: EffectType) -> None:
        fn.metadata["effect"] = effect
        self.effects[fn.name] = effect

    # ------------------------------------------------------------------
    # Bodies

    def _check_body(self, fn: ast.FunctionDecl, env: EffectEnv) -> None:
        scope = env.child()
        self.engine.bind_parameters(fn.parameters, scope, self.parameter_bindings[fn.name])
        body_effect = self.engine.infer_body_effect(fn.body, scope)
        fn.metadata["body_effect"] = body_effect
        declared = self.effects[fn.name]
        if self.config.check_bodies and not assignable(body_effect, declared):
            self._record(
                UndeclaredRaise(
                    f"'{fn.name}' is declared {declared} but its body raises {body_effect}",
                    node=fn,
                    detail={"declared": str(declared), "body": str(body_effect)},
                )
            )
            self._annotate(fn, BASE_THROW)

    def _record(self, error: EffectError) -> None:
        diagnostic = Diagnostic.from_error(error, function=self.current_function)
        logger.debug("%s: %s", diagnostic.kind, diagnostic.message)
        self.diagnostics.append(diagnostic)
