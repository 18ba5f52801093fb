"""Slash commands for exporting and importing deck archives."""

from __future__ import annotations

from pathlib import Path
from typing import List

from ..deck_io import export_deck_zip, export_file_name, import_deck_zip
from ..slash_commands import SlashCommand, SlashCommandContext


def _export_handler(context: SlashCommandContext, args: List[str]) -> str:
    """Export a deck and its images to a zip archive."""
    workspace = context.require_workspace()
    if not args:
        return "[export] Usage: /export DECK [PATH]"

    deck = workspace.library.get(workspace.library.resolve_id(args[0]))
    if len(args) > 1:
        output_path = Path(" ".join(args[1:])).expanduser()
    else:
        output_path = Path("exports") / export_file_name(deck.name)
    if not output_path.is_absolute():
        output_path = context.config.home_dir / output_path
    if output_path.is_dir():
        output_path = output_path / export_file_name(deck.name)

    export_deck_zip(deck, workspace.images, output_path)
    return f"[export] '{deck.name}' exported to: {output_path}"


def _import_handler(context: SlashCommandContext, args: List[str]) -> str:
    """Import a deck archive as a new deck."""
    workspace = context.require_workspace()
    if not args:
        return "[import] Usage: /import PATH"

    path = Path(" ".join(args)).expanduser()
    if not path.is_absolute() and not path.exists():
        path = context.config.home_dir / path
    if not path.is_file():
        return f"[import] no such file: {path}"

    imported = import_deck_zip(path, workspace.images)
    deck = workspace.library.import_deck(imported.name, imported.cards, imported.style)
    return (
        f"[import] imported '{deck.name}' ({len(deck.cards)} cards, "
        f"{imported.images_restored} images) as {deck.id}"
    )


EXPORT_COMMAND = SlashCommand(
    name="export",
    description="Export a deck with its images to a zip. Usage: /export DECK [PATH]",
    handler=_export_handler,
    requires_workspace=True,
)

IMPORT_COMMAND = SlashCommand(
    name="import",
    description="Import a deck zip as a new deck. Usage: /import PATH",
    handler=_import_handler,
    requires_workspace=True,
)
