# cardcraft/app.py
"""
Interactive shell for CardCraft.

Every action is a slash command; sync passes run on a background event loop so
the prompt stays responsive while a pass uploads or waits on a conflict.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
try:
    import readline
except ImportError:  # pragma: no cover
    readline = None
import shlex
from shutil import get_terminal_size
from typing import List, Optional

from .commands import COMMANDS
from .configuration import (
    ConfigurationBundle,
    Diagnostic,
    load_runtime_configuration,
    resolve_home_dir,
)
from .errors import CardCraftError
from .logging_utils import setup_logging
from .slash_commands import CommandRouter
from .workspace import Workspace

logger = logging.getLogger("cardcraft")
TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off"}


def _log_path_within_home(log_path: Path, home_dir: Path) -> bool:
    try:
        log_path.relative_to(home_dir)
        return True
    except ValueError:
        return False


def print_banner(config: ConfigurationBundle) -> None:
    """Print the header so users know which home CardCraft is using."""

    terminal_width = get_terminal_size(fallback=(80, 24)).columns
    name = str((config.section("runtime")).get("name") or "CardCraft")
    if terminal_width >= 60:
        inner_width = 58
        lines = [
            "╭" + "─" * inner_width + "╮",
            f"│{name.upper().center(inner_width)}│",
            f"│{'decks ◇ cards ◇ sync'.center(inner_width)}│",
            "╰" + "─" * inner_width + "╯",
        ]
        print("\n".join(lines))
    else:
        print(name)
    print(f"home: {config.home_dir}   (/help for commands, /quit to leave)")
    print()


def _parse_env_flag(value: str, *, default: bool = True) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_STRINGS:
        return True
    if normalized in FALSE_STRINGS:
        return False
    return default


def _resolve_ui_verbose(config_bundle: ConfigurationBundle) -> bool:
    env_value = os.environ.get("CARDCRAFT_UI_VERBOSE")
    if env_value is not None:
        return _parse_env_flag(env_value)
    verbose_setting = config_bundle.section("ui").get("verbose")
    return True if verbose_setting is None else bool(verbose_setting)


def build_router(config: ConfigurationBundle, workspace: Optional[Workspace] = None) -> CommandRouter:
    router = CommandRouter(config, workspace=workspace)
    for command in COMMANDS:
        router.register(command)
    return router


def emit_configuration_report(config: ConfigurationBundle) -> None:
    """Print diagnostics so users can correct issues quickly."""

    problems = [diag for diag in config.diagnostics if diag.level != "info"]
    if not problems:
        print(f"[config] Loaded {len(config.files_loaded)} file(s) from repo and home config directories.")
        return

    print("[config] Diagnostics:")
    for diag in problems:
        prefix = diag.source or config.home_dir
        print(f"  - ({diag.level.upper()}) {diag.message} [{prefix}]")


def configure_autocomplete(router: CommandRouter) -> None:
    """Enable readline tab completion for slash commands."""

    if readline is None:
        return

    commands = list(router.command_names)

    def completer(text: str, state: int):
        buffer = readline.get_line_buffer()
        if not buffer.startswith("/"):
            return None
        fragment = text[1:] if text.startswith("/") else text
        matches = [f"/{cmd}" for cmd in commands if cmd.startswith(fragment)]
        if state < len(matches):
            return matches[state]
        return None

    readline.set_completer(completer)
    readline.parse_and_bind("tab: complete")
    readline.set_completer_delims(" \t")


def split_command_line(command_line: str) -> List[str]:
    """Split a command line, honouring quotes where they balance."""
    try:
        return shlex.split(command_line)
    except ValueError:
        return command_line.split()


def execute_cli_command(command_line: str, router: CommandRouter, *, suppress_output: bool = False) -> str:
    stripped = command_line.strip()
    if not stripped:
        return ""

    parts = split_command_line(stripped)
    command, args = parts[0], parts[1:]
    result = router.handle(command, args)
    if not suppress_output:
        print(result)
    logger.info("Executed CLI command: %s", stripped)
    return result


def open_workspace(config_bundle: ConfigurationBundle) -> Optional[Workspace]:
    """Open local stores and start the sync runtime; None when that fails."""

    try:
        return Workspace.open(config_bundle)
    except CardCraftError as exc:
        logger.exception("Failed to open workspace")
        config_bundle.diagnostics.append(
            Diagnostic(level="error", message=f"Workspace unavailable: {exc}", source=config_bundle.home_dir)
        )
        return None


def main() -> None:
    """Entry point for `python -m cardcraft`."""

    home_dir = resolve_home_dir()
    try:
        home_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"[config] Unable to create home directory '{home_dir}': {exc}")

    config_bundle = load_runtime_configuration(home_dir)
    logging_cfg = config_bundle.section("logging")
    log_path = setup_logging(
        config_bundle.home_dir,
        logging_cfg.get("level") or "WARNING",
        structured=bool(logging_cfg.get("structured", True)),
    )
    config_bundle.log_path = log_path
    if not _log_path_within_home(log_path, config_bundle.home_dir):
        config_bundle.diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"Home log directory is not writable; logging to fallback path '{log_path}'.",
                source=log_path,
            )
        )
    logger.info("Logging initialized at %s", log_path)

    ui_verbose = _resolve_ui_verbose(config_bundle)
    workspace = open_workspace(config_bundle)
    if ui_verbose:
        print_banner(config_bundle)
        emit_configuration_report(config_bundle)
    router = build_router(config_bundle, workspace)
    configure_autocomplete(router)

    # Catch up with edits made on other devices since the last session.
    if workspace is not None and workspace.scheduler is not None:
        workspace.scheduler.notify()

    try:
        _repl(router, ui_verbose)
    finally:
        if workspace is not None:
            workspace.close()


def _repl(router: CommandRouter, ui_verbose: bool) -> None:
    while True:
        try:
            raw_line = input("> ")
        except (EOFError, KeyboardInterrupt):
            print("\n[Exiting CardCraft]")
            return

        if raw_line == "\x0c":  # Ctrl-L (form feed)
            print("\033[2J\033[H", end="")
            if ui_verbose:
                print_banner(router.config)
            continue

        line = raw_line.strip()
        if not line:
            continue
        command_line = line[1:] if line.startswith("/") else line
        if command_line.lower() in {"quit", "exit"}:
            print("[Goodbye]")
            return
        if not line.startswith("/"):
            print("[cardcraft] commands start with '/'. Try /help.")
            continue
        execute_cli_command(command_line, router)


__all__ = ["build_router", "execute_cli_command", "main", "split_command_line"]
