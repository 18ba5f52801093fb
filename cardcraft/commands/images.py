"""Slash command for inspecting the local image store."""

from __future__ import annotations

from typing import List

from rich import box
from rich.console import Console
from rich.table import Table

from ..slash_commands import SlashCommand, SlashCommandContext, render_rich
from ..sync.engine import EngineState

USAGE = "Usage: /images [list | gc]"


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    workspace = context.require_workspace()
    subcommand = args[0].lower() if args else "list"

    if subcommand == "gc":
        if workspace.engine.state is not EngineState.IDLE:
            return "[images] sync is in progress; try again when it finishes"
        removed = workspace.images.prune(workspace.library.referenced_hashes())
        return f"[images] removed {removed} unreferenced image(s)"

    if subcommand != "list":
        return f"[images] unknown subcommand '{subcommand}'. {USAGE}"

    stats = workspace.images.stats()
    if not stats:
        return "[images] no images stored"
    referenced = workspace.library.referenced_hashes()

    def _render(console: Console) -> None:
        table = Table(title="Stored Images", show_header=True, header_style="bold cyan", box=box.SIMPLE)
        table.add_column("Hash", style="dim", no_wrap=True)
        table.add_column("Type")
        table.add_column("Size", justify="right")
        table.add_column("Used", justify="center")
        for image_hash, mime_type, size in stats:
            table.add_row(
                image_hash[:16],
                mime_type,
                _format_size(size),
                "[green]yes[/green]" if image_hash in referenced else "[dim]no[/dim]",
            )
        console.print(table)
        console.print(f"[dim]{len(stats)} image(s), {_format_size(sum(s[2] for s in stats))} total[/dim]")

    return render_rich(_render)


COMMAND = SlashCommand(
    name="images",
    description="List stored images or remove unreferenced ones. " + USAGE,
    handler=_handler,
    requires_workspace=True,
)
