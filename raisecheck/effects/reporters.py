"""Report helpers turning a :class:`CheckResult` into printable payloads."""

from __future__ import annotations

from typing import Any, Dict

from .checker import CheckResult
from .model import format_effect

__all__ = ["build_report", "format_text"]


def build_report(result: CheckResult, *, filename: str | None = None) -> Dict[str, Any]:
    """Convert ``result`` into a JSON-friendly dictionary."""

    payload: Dict[str, Any] = {
        "status": "ok" if result.ok else "failed",
        "diagnostic_count": len(result.diagnostics),
    }
    if filename is not None:
        payload["file"] = filename
    if result.diagnostics:
        payload["diagnostics"] = [diagnostic.to_dict() for diagnostic in result.diagnostics]
    if result.effects:
        payload["functions"] = {
            name: format_effect(effect) for name, effect in sorted(result.effects.items())
        }
    return payload


def format_text(result: CheckResult, *, filename: str = "<dsl>") -> str:
    """One line per diagnostic, compiler style, followed by a summary line."""

    lines: list[str] = []
    for diagnostic in result.diagnostics:
        location = filename
        if diagnostic.line is not None:
            location = f"{filename}:{diagnostic.line}:{diagnostic.column}"
        where = f" (in {diagnostic.function})" if diagnostic.function else ""
        lines.append(f"{location}: {diagnostic.kind}: {diagnostic.message}{where}")
    noun = "diagnostic" if len(result.diagnostics) == 1 else "diagnostics"
    lines.append(f"{len(result.diagnostics)} {noun}")
    return "\n".join(lines)
