"""Utility helpers for loading YAML configuration files."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml

from ..effects.inference import InferencePolicy

__all__ = ["AnalysisConfig", "apply_overrides", "load_analysis_config", "load_config"]


def load_config(path: str | Path) -> Any:
    """Return the parsed YAML document located at ``path``.

    Raises :class:`FileNotFoundError` for a missing file and :class:`ValueError`
    when the document does not parse or its root is not a mapping.  An empty
    document yields an empty dict.
    """

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"configuration file not found: {config_path}")
    raw_text = config_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to parse configuration: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("configuration root must be a mapping")
    return data


@dataclass(slots=True, frozen=True)
class AnalysisConfig:
    """Knobs for one checker run.

    ``policy`` selects how unannotated closures are inferred; ``check_bodies``
    turns off the body-versus-signature comparison for callers that only want
    signatures resolved.
    """

    policy: InferencePolicy = InferencePolicy.COMPATIBILITY
    check_bodies: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisConfig":
        section = data.get("analysis", data)
        if not isinstance(section, Mapping):
            raise ValueError("'analysis' section must be a mapping")
        unknown = set(section) - {"policy", "check_bodies"}
        if unknown:
            raise ValueError(f"unknown analysis option(s): {', '.join(sorted(unknown))}")
        config = cls()
        if "policy" in section:
            config = replace(config, policy=_coerce_policy(section["policy"]))
        if "check_bodies" in section:
            config = replace(config, check_bodies=_coerce_bool(section["check_bodies"]))
        return config


def load_analysis_config(
    path: str | Path | None = None, *, overrides: Sequence[str] = ()
) -> AnalysisConfig:
    """Load an :class:`AnalysisConfig` from ``path`` and apply ``key=value`` overrides."""

    data: dict[str, Any] = load_config(path) if path is not None else {}
    return AnalysisConfig.from_mapping(apply_overrides(data, overrides))


def apply_overrides(data: Mapping[str, Any], overrides: Sequence[str]) -> dict[str, Any]:
    """Return ``data`` with dot-notation ``key=value`` overrides merged in."""

    result: dict[str, Any] = {key: value for key, value in data.items()}
    for item in overrides:
        if "=" not in item:
            raise ValueError(f"override must look like KEY=VALUE: {item!r}")
        key, raw_value = item.split("=", 1)
        parts = [part for part in key.strip().split(".") if part]
        if not parts:
            raise ValueError(f"override has an empty key: {item!r}")
        cursor = result
        for part in parts[:-1]:
            nested = cursor.get(part)
            if not isinstance(nested, dict):
                nested = {}
                cursor[part] = nested
            cursor = nested
        cursor[parts[-1]] = yaml.safe_load(raw_value)
    return result


def _coerce_policy(value: Any) -> InferencePolicy:
    try:
        return InferencePolicy(str(value).strip().lower())
    except ValueError as exc:
        choices = ", ".join(policy.value for policy in InferencePolicy)
        raise ValueError(f"unknown inference policy {value!r} (expected one of: {choices})") from exc


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"expected a boolean, found {value!r}")
