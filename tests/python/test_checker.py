"""End-to-end checker behaviour and report helpers."""

from __future__ import annotations

import json

from raisecheck.dsl import ast, grammar
from raisecheck.effects import reporters
from raisecheck.effects.checker import check_module, check_source
from raisecheck.effects.errors import AmbiguousModifier, NotAnError
from raisecheck.effects.model import BASE_THROW, NO_THROW, TypedThrow
from raisecheck.utils.config import AnalysisConfig

FOO = TypedThrow("FooError")


def test_clean_module_resolves_every_signature() -> None:
    source = """
    error FooError;
    fn quiet() { }
    fn never() raises(Never) { }
    fn typed() raises(FooError) { raise FooError("a"); }
    fn erased() raises { typed(); }
    """
    result = check_source(source)

    assert result.ok
    assert result.effects == {
        "quiet": NO_THROW,
        "never": NO_THROW,
        "typed": FOO,
        "erased": BASE_THROW,
    }
    assert result.module.functions[2].metadata["effect"] == FOO


def test_raises_never_rejects_a_raising_body() -> None:
    source = """
    error FooError;
    fn f() raises(Never) { raise FooError("a"); }
    """
    result = check_source(source)
    assert result.kinds() == ["UndeclaredRaise"]
    assert "raises(FooError)" in result.diagnostics[0].message


def test_ambiguous_signature_continues_with_erased_effect() -> None:
    source = """
    error FooError;
    fn f() raises FooError { raise FooError("a"); }
    fn g() { f(); }
    """
    result = check_source(source)

    assert result.kinds() == ["AmbiguousModifier", "UndeclaredRaise"]
    assert result.effects["f"] == BASE_THROW
    assert result.diagnostics[0].function is None
    assert result.diagnostics[1].function == "g"


def test_non_error_type_in_clause_is_reported() -> None:
    source = """
    type Config;
    fn f() raises(Config) { }
    """
    result = check_source(source)

    assert result.kinds() == ["NotAnError"]
    assert result.effects["f"] == BASE_THROW


def test_raising_a_non_error_value_is_reported() -> None:
    source = """
    type Config;
    fn f() raises { raise Config(); }
    """
    result = check_source(source)
    assert result.kinds() == ["NotAnError"]


def test_custom_capability_is_honoured() -> None:
    source = "fn f() raises(Timeout) { }"
    assert check_source(source).kinds() == ["NotAnError"]
    assert check_source(source, capability=lambda name: name == "Timeout").ok


def test_interface_members_are_annotated() -> None:
    source = """
    error SomeError;
    interface Store {
        fn load() raises(SomeError)
        mut fn reset()
        fn flush() raises
    }
    """
    result = check_source(source)
    members = result.module.interfaces[0].members

    assert result.ok
    assert result.effects == {
        "Store.load": TypedThrow("SomeError"),
        "Store.reset": NO_THROW,
        "Store.flush": BASE_THROW,
    }
    assert members[0].metadata["effect"] == TypedThrow("SomeError")


def test_body_check_can_be_disabled() -> None:
    source = """
    error FooError;
    fn f() { raise FooError("a"); }
    """
    assert check_source(source).kinds() == ["UndeclaredRaise"]
    assert check_source(source, config=AnalysisConfig(check_bodies=False)).ok


def test_every_violation_in_a_unit_is_recorded() -> None:
    source = """
    error FooError;
    type Config;
    fn a() raises(Config) { }
    fn b() { raise FooError("a"); }
    fn c(g: fn()) forwards(g) { g(); }
    """
    result = check_source(source)
    assert sorted(result.kinds()) == ["InvalidDelegation", "NotAnError", "UndeclaredRaise"]
    assert [d.function for d in result.diagnostics] == ["a", "c", "b"]


def test_check_module_accepts_a_parsed_module() -> None:
    module = grammar.parse_module("error FooError; fn f() raises(FooError) { }")
    result = check_module(module)
    assert result.module is module
    assert result.effects["f"] == FOO


def test_diagnostic_locations_follow_nodes() -> None:
    source = "error FooError;\nfn f() {\n    raise FooError(\"a\");\n}\n"
    result = check_source(source)
    diagnostic = result.diagnostics[0]

    assert (diagnostic.line, diagnostic.column) == (2, 1)
    assert diagnostic.to_dict()["kind"] == "UndeclaredRaise"


def test_build_report_payload() -> None:
    source = """
    error FooError;
    fn f() { raise FooError("a"); }
    fn g() raises(FooError) { raise FooError("b"); }
    """
    payload = reporters.build_report(check_source(source), filename="demo.rc")

    assert payload["status"] == "failed"
    assert payload["file"] == "demo.rc"
    assert payload["diagnostic_count"] == 1
    assert payload["diagnostics"][0]["function"] == "f"
    assert payload["functions"] == {"f": "raises", "g": "raises(FooError)"}
    assert payload["diagnostics"][0]["detail"] == {"declared": "nothrow", "body": "raises(FooError)"}
    json.dumps(payload)


def test_format_text_is_compiler_style() -> None:
    source = "error FooError;\nfn f() { raise FooError(\"a\"); }\n"
    text = reporters.format_text(check_source(source), filename="demo.rc")
    lines = text.splitlines()

    assert lines[0].startswith("demo.rc:2:1: UndeclaredRaise: ")
    assert lines[0].endswith("(in f)")
    assert lines[-1] == "1 diagnostic"


def test_every_closure_is_annotated() -> None:
    source = """
    error FooError;
    fn f(g: fn() raises(FooError)) {
        let outer = || {
            let inner = || g();
            return 1;
        };
        let hs = [|| 1, || 2];
        for h in [|| 3] { h(); }
    }
    """
    result = check_source(source)
    closures = [node for node in result.module.walk() if isinstance(node, ast.Closure)]

    assert len(closures) == 5
    assert all("effect" in closure.metadata for closure in closures)
    literals = [node for node in result.module.walk() if isinstance(node, ast.CollectionLiteral)]
    assert all("collection_binding" in literal.metadata for literal in literals)


def test_undeclared_raise_erases_the_function_effect() -> None:
    source = """
    error FooError;
    fn f() raises(Never) { raise FooError("a"); }
    """
    result = check_source(source)
    f = result.module.functions[0]

    assert result.kinds() == ["UndeclaredRaise"]
    assert f.metadata["effect"] == BASE_THROW
    assert result.effects["f"] == BASE_THROW
    assert result.diagnostics[0].detail == {"declared": "nothrow", "body": "raises(FooError)"}


def test_only_ambiguous_modifiers_are_taken_from_the_parser() -> None:
    module = grammar.parse_module('error FooError;\nfn f() raises FooError { raise FooError("a"); }\n')
    module.metadata["parse_diagnostics"].append(NotAnError("'Config' is not an error type"))
    result = check_module(module)

    assert result.kinds() == ["AmbiguousModifier"]
    assert result.diagnostics[0].detail == {"identifier": "FooError"}


def test_ambiguous_modifier_keeps_its_parser_location() -> None:
    error = AmbiguousModifier("FooError", 3, 12)
    module = grammar.parse_module("fn f() { }")
    module.metadata["parse_diagnostics"] = [error]
    diagnostic = check_module(module).diagnostics[0]

    assert (diagnostic.line, diagnostic.column) == (3, 12)
    assert diagnostic.to_dict()["detail"] == {"identifier": "FooError"}
