"""Layered YAML configuration loading for CardCraft."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional, Tuple

import yaml

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
HOME_ENV = "CARDCRAFT_HOME"
DEFAULT_HOME = "~/.cardcraft"

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "missing", "invalid"]


SchemaSpec = Dict[str, Any]

CONFIG_SCHEMA: SchemaSpec = {
    "runtime": {
        "type": dict,
        "schema": {
            "name": {"type": str, "default": "CardCraft"},
        },
        "default": {},
    },
    "logging": {
        "type": dict,
        "schema": {
            "level": {"type": str, "default": "WARNING"},
            "structured": {"type": bool, "default": True},
        },
        "default": {},
    },
    "ui": {
        "type": dict,
        "schema": {
            "verbose": {"type": bool, "default": True},
        },
        "default": {},
    },
    "storage": {
        "type": dict,
        "schema": {
            "state_dir": {"type": str, "default": "state"},
            "images_db": {"type": str, "default": "state/images.db"},
        },
        "default": {},
    },
    "sync": {
        "type": dict,
        "schema": {
            "provider": {"type": str, "default": "folder", "choices": ("folder", "drive")},
            "auto": {"type": bool, "default": True},
            "debounce_seconds": {"type": (int, float), "default": 5.0},
            "conflict_window_ms": {"type": int, "default": 1000},
            "on_deck_error": {"type": str, "default": "abort", "choices": ("abort", "continue")},
            "folder_path": {"type": str, "default": "remote"},
            "drive": {
                "type": dict,
                "schema": {
                    "folder_name": {"type": str, "default": "CardCraftStudio Data"},
                    "credentials_file": {"type": str, "default": "state/drive-credentials.json"},
                    "timeout": {"type": (int, float), "default": 30.0},
                },
                "default": {},
            },
        },
        "default": {},
    },
}


@dataclass
class Diagnostic:
    """Represents a configuration validation or loading issue."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """All configuration data CardCraft needs at runtime."""

    home_dir: Path
    status: ConfigurationStatus
    merged: Dict[str, Any] = field(default_factory=dict)
    repo_defaults: Dict[str, Any] = field(default_factory=dict)
    home_overrides: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None

    def resolve_path(self, value: str) -> Path:
        """Resolve a configured path; relative paths live under the home dir."""
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.home_dir / path

    def section(self, name: str) -> Dict[str, Any]:
        value = self.merged.get(name, {})
        return value if isinstance(value, dict) else {}


def resolve_home_dir(
    env: Optional[Mapping[str, str]] = None,
    default: str = DEFAULT_HOME,
) -> Path:
    """Resolve the CardCraft home directory from the environment."""

    env_source = env if env is not None else os.environ
    raw = env_source.get(HOME_ENV) or default
    return Path(raw).expanduser()


def load_runtime_configuration(
    home_dir: Optional[Path] = None,
    defaults_dir: Path = DEFAULT_CONFIG_DIR,
) -> ConfigurationBundle:
    """Load repo defaults and deep-merge home overrides on top."""

    resolved_home = home_dir or resolve_home_dir()
    diagnostics: List[Diagnostic] = []
    files_loaded: List[Path] = []

    repo_defaults, repo_files = _load_directory_configs(
        defaults_dir,
        diagnostics,
        label="repo defaults",
    )
    files_loaded.extend(repo_files)

    status: ConfigurationStatus = "ready"
    home_overrides: Dict[str, Any] = {}

    if not resolved_home.exists():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Home directory '{resolved_home}' does not exist.",
            )
        )
        status = "missing"
    elif not resolved_home.is_dir():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Home path '{resolved_home}' is not a directory.",
            )
        )
        status = "invalid"
    else:
        home_overrides, override_files = _load_directory_configs(
            resolved_home / "config",
            diagnostics,
            label="home overrides",
        )
        files_loaded.extend(override_files)

    merged = deepcopy(repo_defaults)
    _deep_merge_dicts(merged, home_overrides)

    _validate_section(merged, CONFIG_SCHEMA, "config", diagnostics)

    if status == "ready" and any(diag.level == "error" for diag in diagnostics):
        status = "invalid"

    return ConfigurationBundle(
        home_dir=resolved_home,
        status=status,
        merged=merged,
        repo_defaults=repo_defaults,
        home_overrides=home_overrides,
        files_loaded=files_loaded,
        diagnostics=diagnostics,
    )


def _load_directory_configs(
    directory: Path,
    diagnostics: List[Diagnostic],
    label: str,
) -> Tuple[Dict[str, Any], List[Path]]:
    """Load all YAML files from a directory, merging them in name order."""

    data: Dict[str, Any] = {}
    loaded_files: List[Path] = []

    if not directory.exists():
        diagnostics.append(
            Diagnostic(
                level="info",
                message=f"No configuration directory found at '{directory}' ({label}).",
                source=directory,
            )
        )
        return data, loaded_files

    if not directory.is_dir():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Configuration path '{directory}' ({label}) is not a directory.",
                source=directory,
            )
        )
        return data, loaded_files

    yaml_files = sorted(list(directory.glob("*.yml")) + list(directory.glob("*.yaml")))

    for yaml_file in yaml_files:
        try:
            content = yaml.safe_load(yaml_file.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"Failed to parse '{yaml_file}': {exc}",
                    source=yaml_file,
                )
            )
            continue

        if content is None:
            loaded_files.append(yaml_file)
            continue

        if not isinstance(content, MutableMapping):
            diagnostics.append(
                Diagnostic(
                    level="warning",
                    message=f"Ignoring '{yaml_file}' because it does not contain a mapping.",
                    source=yaml_file,
                )
            )
            continue

        _deep_merge_dicts(data, dict(content))
        loaded_files.append(yaml_file)

    return data, loaded_files


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        if (
            key in dest
            and isinstance(dest[key], MutableMapping)
            and isinstance(value, Mapping)
        ):
            _deep_merge_dicts(dest[key], value)
        else:
            dest[key] = deepcopy(value)


def _validate_section(
    target: Dict[str, Any],
    schema: SchemaSpec,
    path: str,
    diagnostics: List[Diagnostic],
) -> None:
    for key in list(target.keys()):
        if key not in schema:
            diagnostics.append(
                Diagnostic(
                    level="warning",
                    message=f"Unknown configuration key '{path}.{key}'.",
                )
            )

    for key, spec in schema.items():
        child_path = f"{path}.{key}"
        if key not in target:
            target[key] = deepcopy(spec.get("default"))
            if spec.get("type") is dict:
                _validate_section(target[key], spec.get("schema", {}), child_path, diagnostics)
            continue

        value = target[key]
        expected_type = spec.get("type")

        if expected_type is dict:
            if not isinstance(value, dict):
                diagnostics.append(
                    Diagnostic(level="error", message=f"'{child_path}' must be a mapping.")
                )
                target[key] = value = {}
            _validate_section(value, spec.get("schema", {}), child_path, diagnostics)
            continue

        if not isinstance(value, expected_type) or (isinstance(value, bool) and expected_type is not bool):
            if isinstance(expected_type, tuple):
                type_name = ", ".join(t.__name__ for t in expected_type)
            else:
                type_name = expected_type.__name__
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"'{child_path}' must be of type {type_name}.",
                )
            )
            target[key] = deepcopy(spec.get("default"))
            continue

        choices = spec.get("choices")
        if choices and value not in choices:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"'{child_path}' must be one of {', '.join(choices)} (got '{value}').",
                )
            )
            target[key] = deepcopy(spec.get("default"))


__all__ = [
    "CONFIG_SCHEMA",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DEFAULT_CONFIG_DIR",
    "Diagnostic",
    "HOME_ENV",
    "load_runtime_configuration",
    "resolve_home_dir",
]
