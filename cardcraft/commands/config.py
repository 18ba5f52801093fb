"""Slash command for viewing and editing configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import yaml
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.tree import Tree

from ..configuration import ConfigurationBundle, load_runtime_configuration
from ..errors import CardCraftError
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich

YAML_FLAGS = {"--yaml", "-y", "yaml"}
CLI_OVERRIDE_FILENAME = "99-cli-overrides.yml"
RESTART_SECTIONS = {"storage", "sync"}


class ConfigMutationError(CardCraftError):
    """Signals a failure while editing home overrides."""


def _build_config_tree(data: Any) -> Tree:
    root = Tree("config", guide_style="cyan")
    _add_tree_nodes(root, data)
    return root


def _add_tree_nodes(node: Tree, value: Any, *, label: str | None = None) -> None:
    if isinstance(value, dict):
        branch = node.add(f"[bold]{label}[/]") if label else node
        if not value:
            branch.add("[dim]{ }[/]")
        for key in sorted(value.keys()):
            _add_tree_nodes(branch, value[key], label=str(key))
        return

    if isinstance(value, list):
        branch = node.add(f"[bold]{label}[/] [dim]list ({len(value)})[/]")
        for idx, item in enumerate(value):
            _add_tree_nodes(branch, item, label=f"[{idx}]")
        return

    node.add(f"[bold]{label}[/]: {_format_value(value)}")


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    if not args:
        return _render_config_view(context.config, show_yaml=False)

    if all(arg.lower() in YAML_FLAGS for arg in args):
        return _render_config_view(context.config, show_yaml=True)

    key_parts = _parse_key_path(args[0])
    if len(args) == 1:
        value = _lookup_path(context.config.merged, key_parts)
        dotted = ".".join(key_parts)
        if value is None:
            return f"[config] {dotted} is not set."
        return f"[config] {dotted} = {_format_value(value)}"

    value_raw = " ".join(args[1:]).strip()
    return _handle_set_value(context, key_parts, value_raw)


def _render_config_view(bundle: ConfigurationBundle, show_yaml: bool) -> str:
    files_table = Table(show_header=True, header_style="bold magenta", box=box.SIMPLE, pad_edge=False)
    files_table.add_column("Order", justify="right", style="magenta", no_wrap=True)
    files_table.add_column("File", overflow="fold", ratio=1)
    for idx, path in enumerate(bundle.files_loaded, start=1):
        files_table.add_row(str(idx), str(path))
    if not bundle.files_loaded:
        files_table.add_row("-", "[dim]No config files loaded[/dim]")

    def _render(console: Console) -> None:
        console.print(Panel(files_table, title="Loaded Config Files", border_style="magenta", padding=(0, 1)))
        if show_yaml:
            yaml_text = yaml.safe_dump(bundle.merged or {}, sort_keys=True, default_flow_style=False).strip()
            console.print(
                Panel(
                    Syntax(yaml_text or "# empty configuration", "yaml", word_wrap=True),
                    title="Merged Configuration (YAML)",
                    border_style="cyan",
                    padding=(0, 1),
                )
            )
        else:
            console.print(
                Panel(_build_config_tree(bundle.merged or {}), title="Merged Configuration", border_style="cyan", padding=(0, 1))
            )
            console.print("[dim]Tip: '/config --yaml' prints the merged YAML; '/config KEY VALUE' sets a value.[/dim]")

    return render_rich(_render)


def _handle_set_value(context: SlashCommandContext, key_parts: List[str], value_raw: str) -> str:
    try:
        value = yaml.safe_load(value_raw)
    except yaml.YAMLError as exc:
        return f"[config] could not parse value: {exc}"
    if isinstance(value, (list, dict)):
        return "[config] only scalar values can be set from the command line."

    override_path = context.config.home_dir / "config" / CLI_OVERRIDE_FILENAME
    data = _load_override_data(override_path)
    _assign_key(data, key_parts, value)
    _write_override_data(override_path, data)

    bundle = load_runtime_configuration(context.config.home_dir)
    bundle.log_path = context.config.log_path
    context.router.config = bundle
    context.config = bundle

    dotted = ".".join(key_parts)
    message = (
        f"[config] {dotted} updated to {_format_value(_lookup_path(bundle.merged, key_parts))} "
        f"(stored in {_friendly_path(override_path, bundle.home_dir)})"
    )
    errors = [diag.message for diag in bundle.diagnostics if diag.level == "error"]
    if errors:
        message += "\n[config] warning: " + "; ".join(errors)
    if key_parts[0] in RESTART_SECTIONS:
        message += "\n[config] restart CardCraft for this setting to take effect."
    return message


COMMAND = SlashCommand(
    name="config",
    description="Show merged configuration, or get/set a value. Usage: /config [--yaml | KEY [VALUE]]",
    handler=_handler,
)


def _parse_key_path(expr: str) -> List[str]:
    parts = [segment.strip() for segment in expr.split(".") if segment.strip()]
    if not parts:
        raise ConfigMutationError("key path cannot be empty.")
    return parts


def _load_override_data(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigMutationError(f"could not read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigMutationError(f"override file '{path}' must contain a mapping.")
    return data


def _write_override_data(path: Path, data: Dict[str, Any]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data, sort_keys=True, default_flow_style=False), encoding="utf-8")
    except OSError as exc:
        raise ConfigMutationError(f"failed to write {path}: {exc}") from exc


def _assign_key(data: Dict[str, Any], parts: List[str], value: Any) -> None:
    cursor: Dict[str, Any] = data
    for part in parts[:-1]:
        next_value = cursor.get(part)
        if not isinstance(next_value, dict):
            next_value = {}
            cursor[part] = next_value
        cursor = next_value
    cursor[parts[-1]] = value


def _lookup_path(data: Any, parts: List[str]) -> Any:
    cursor = data
    for part in parts:
        if not isinstance(cursor, dict) or part not in cursor:
            return None
        cursor = cursor[part]
    return cursor


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    return repr(value)


def _friendly_path(path: Path, home_dir: Path) -> str:
    try:
        return str(path.relative_to(home_dir))
    except ValueError:
        return str(path)
