"""Tests for forwarding-function resolution."""

from __future__ import annotations

import pytest

from raisecheck.dsl import grammar
from raisecheck.effects import delegation
from raisecheck.effects.checker import check_source
from raisecheck.effects.delegation import DelegatedParameter, DelegationSpec, RaisePath
from raisecheck.effects.errors import (
    DelegationTypeMismatch,
    InvalidDelegation,
    UnhandledRaisePath,
)
from raisecheck.effects.inference import InferencePolicy
from raisecheck.effects.model import BASE_THROW, NO_THROW, TypedThrow
from raisecheck.utils.config import AnalysisConfig

FOO = TypedThrow("FooError")
BAR = TypedThrow("BarError")
CUSTOM = TypedThrow("CustomError")
OTHER = TypedThrow("OtherError")

PRELUDE = """
error FooError;
error BarError;
error CustomError;
error OtherError;
"""


def _spec(*effects, **kwargs) -> DelegationSpec:
    names = "ghijk"
    parameters = tuple(
        DelegatedParameter(name=names[index], position=index, effect=effect)
        for index, effect in enumerate(effects)
    )
    return DelegationSpec(function="f", parameters=parameters, **kwargs)


def _declared(spec: DelegationSpec) -> dict:
    return {param.name: param.effect for param in spec.parameters}


def test_join_mode_over_distinct_types_erases() -> None:
    spec = _spec(FOO, BAR)
    assert spec.mode == "join"
    assert delegation.resolve_delegation(spec, _declared(spec)) == BASE_THROW


def test_join_mode_over_one_type_stays_typed() -> None:
    spec = _spec(FOO, FOO)
    assert delegation.resolve_delegation(spec, _declared(spec)) == FOO


def test_join_mode_with_erased_parameter() -> None:
    spec = _spec(FOO, BASE_THROW)
    assert delegation.resolve_delegation(spec, _declared(spec)) == BASE_THROW


def test_join_ignores_non_raising_parameters() -> None:
    spec = _spec(FOO, NO_THROW)
    assert delegation.resolve_delegation(spec, _declared(spec)) == FOO


def test_conversion_mode_resolves_to_target() -> None:
    spec = _spec(
        OTHER,
        target="CustomError",
        has_conversion=True,
        paths=(RaisePath("g", converted=True),),
    )
    assert spec.mode == "conversion"
    assert delegation.resolve_delegation(spec, _declared(spec)) == CUSTOM


def test_conversion_mode_rejects_unconverted_paths() -> None:
    spec = _spec(
        OTHER,
        OTHER,
        target="CustomError",
        has_conversion=True,
        paths=(RaisePath("g", converted=True), RaisePath("h", converted=False)),
    )
    with pytest.raises(UnhandledRaisePath) as exc:
        delegation.resolve_delegation(spec, _declared(spec))
    assert "'h'" in str(exc.value)


def test_conversion_mode_accepts_unconverted_paths_of_target_type() -> None:
    spec = _spec(
        OTHER,
        CUSTOM,
        target="CustomError",
        has_conversion=True,
        paths=(RaisePath("g", converted=True), RaisePath("h", converted=False)),
    )
    assert delegation.resolve_delegation(spec, _declared(spec)) == CUSTOM


def test_passthrough_mode() -> None:
    spec = _spec(CUSTOM, NO_THROW, target="CustomError")
    assert spec.mode == "passthrough"
    assert delegation.resolve_delegation(spec, _declared(spec)) == CUSTOM


@pytest.mark.parametrize("effect", [OTHER, BASE_THROW])
def test_passthrough_mode_rejects_other_effects(effect) -> None:
    spec = _spec(effect, target="CustomError")
    with pytest.raises(DelegationTypeMismatch):
        delegation.resolve_delegation(spec, _declared(spec))


@pytest.mark.parametrize("effects", [(), (NO_THROW,), (NO_THROW, NO_THROW)])
def test_spec_without_raising_parameter_is_rejected(effects) -> None:
    with pytest.raises(InvalidDelegation):
        _spec(*effects)


def test_call_site_with_non_raising_arguments_is_no_throw() -> None:
    spec = _spec(FOO, BAR)
    assert delegation.call_site_effect(spec, {"g": NO_THROW, "h": NO_THROW}) == NO_THROW


def test_call_site_uses_argument_effects() -> None:
    spec = _spec(FOO, BAR)
    assert delegation.call_site_effect(spec, {"g": FOO, "h": NO_THROW}) == FOO
    assert delegation.call_site_effect(spec, {"g": FOO, "h": BAR}) == BASE_THROW


def test_call_site_passthrough_still_checks_arguments() -> None:
    spec = _spec(CUSTOM, target="CustomError")
    with pytest.raises(DelegationTypeMismatch):
        delegation.call_site_effect(spec, {"g": OTHER})


def _paths(source: str) -> list[tuple[str, bool]]:
    fn = grammar.parse_module(PRELUDE + source).functions[0]
    return [
        (path.parameter, path.converted)
        for path in delegation.collect_raise_paths(fn.body, fn.forwards)
    ]


def test_collect_raise_paths() -> None:
    source = """
    fn f(g: fn() raises, h: fn() raises) forwards(g, h) {
        try { g(); } catch e { raise CustomError("wrapped"); }
        try { h(); } catch e { raise e; }
        let later = || g();
        if true { h(); }
    }
    """
    assert _paths(source) == [("g", True), ("h", False), ("h", False)]


def test_catch_without_binding_converts() -> None:
    source = "fn f(g: fn() raises) forwards(g) { try { g(); } catch { } }"
    assert _paths(source) == [("g", True)]


def test_build_spec_reads_declaration() -> None:
    source = """
    fn f(x: int, g: fn() raises(OtherError)) forwards(g) raises(CustomError) {
        try { g(); } catch e { raise CustomError("wrapped"); }
    }
    """
    fn = grammar.parse_module(PRELUDE + source).functions[0]
    spec = delegation.build_spec(fn, {"g": OTHER})

    assert spec.target == "CustomError"
    assert spec.has_conversion
    assert spec.parameters == (DelegatedParameter("g", 1, OTHER),)
    assert spec.mode == "conversion"


# ---------------------------------------------------------------------------
# Through the checker


def test_checker_resolves_join_mode() -> None:
    source = """
    fn both(g: fn() raises(FooError), h: fn() raises(BarError)) forwards(g, h) {
        g();
        h();
    }
    """
    result = check_source(PRELUDE + source)
    fn = result.module.functions[0]

    assert result.ok
    assert result.effects["both"] == BASE_THROW
    assert fn.metadata["delegation"].mode == "join"


def test_checker_resolves_conversion_mode() -> None:
    source = """
    fn convert(g: fn() raises(OtherError)) forwards(g) raises(CustomError) {
        try { g(); } catch e { raise CustomError("wrapped"); }
    }
    """
    result = check_source(PRELUDE + source)
    assert result.ok
    assert result.effects["convert"] == CUSTOM


def test_checker_reports_unhandled_raise_path() -> None:
    source = """
    fn convert(g: fn() raises(OtherError), h: fn() raises(OtherError))
        forwards(g, h) raises(CustomError) {
        try { g(); } catch e { raise CustomError("wrapped"); }
        h();
    }
    """
    result = check_source(PRELUDE + source)

    assert result.kinds() == ["UnhandledRaisePath"]
    assert result.diagnostics[0].function == "convert"
    assert result.effects["convert"] == BASE_THROW


def test_checker_reports_passthrough_mismatch() -> None:
    source = "fn pass(g: fn() raises(OtherError)) forwards(g) raises(CustomError) { g(); }"
    result = check_source(PRELUDE + source)

    assert result.kinds() == ["DelegationTypeMismatch"]
    assert result.effects["pass"] == BASE_THROW


def test_checker_reports_invalid_delegation() -> None:
    result = check_source(PRELUDE + "fn f(g: fn()) forwards(g) { g(); }")
    assert result.kinds() == ["InvalidDelegation"]
    assert "delegation" not in result.module.functions[0].metadata


def test_call_sites_depend_on_arguments() -> None:
    source = """
    fn apply(g: fn() raises(FooError)) forwards(g) { g(); }
    fn quiet() { apply(|| 1); }
    fn loud() raises(FooError) { apply(|| { raise FooError("x"); }); }
    """
    result = check_source(PRELUDE + source, config=AnalysisConfig(policy=InferencePolicy.PRECISE))
    _, quiet, loud = result.module.functions

    assert result.ok
    assert quiet.metadata["body_effect"] == NO_THROW
    assert loud.metadata["body_effect"] == FOO


def test_call_site_with_annotated_closure_under_compatibility() -> None:
    source = """
    fn apply(g: fn() raises(FooError)) forwards(g) { g(); }
    fn loud() raises(FooError) { apply(|| raises(FooError) { raise FooError("x"); }); }
    """
    result = check_source(PRELUDE + source)
    assert result.ok
    assert result.module.functions[1].metadata["body_effect"] == FOO


def test_passthrough_argument_mismatch_is_reported_once() -> None:
    source = """
    fn pass(g: fn() raises(CustomError)) forwards(g) raises(CustomError) { g(); }
    fn main() raises { pass(|| raises(OtherError) { raise OtherError("x"); }); }
    """
    result = check_source(PRELUDE + source)

    assert result.kinds() == ["EffectMismatch"]
    assert result.diagnostics[0].detail == {
        "argument": 0,
        "expected": "raises(CustomError)",
        "actual": "raises(OtherError)",
    }
    assert result.module.functions[1].metadata["body_effect"] == BASE_THROW


def test_unhandled_raise_path_detail_names_the_parameter() -> None:
    source = """
    fn convert(g: fn() raises(OtherError), h: fn() raises(OtherError))
        forwards(g, h) raises(CustomError) {
        try { g(); } catch e { raise CustomError("wrapped"); }
        h();
    }
    """
    result = check_source(PRELUDE + source)

    assert result.kinds() == ["UnhandledRaisePath"]
    assert result.diagnostics[0].detail["parameter"] == "h"
    assert result.diagnostics[0].detail["mode"] == "conversion"
