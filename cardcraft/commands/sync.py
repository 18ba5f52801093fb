"""Slash command for deck synchronization."""

from __future__ import annotations

from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import List

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..errors import DeckFormatError
from ..models import parse_deck
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich
from ..sync.conflict import ConflictChoice, ResolverState, SyncConflict
from ..sync.engine import SyncOutcome, SyncStatus

USAGE = "Usage: /sync [status | run | resolve local|cloud | dismiss | enable | disable]"
CHOICES = {
    "local": ConflictChoice.KEEP_LOCAL,
    "keep-local": ConflictChoice.KEEP_LOCAL,
    "cloud": ConflictChoice.USE_CLOUD,
    "use-cloud": ConflictChoice.USE_CLOUD,
}


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Manage deck synchronization."""
    workspace = context.require_workspace()
    subcommand = args[0].lower() if args else "status"

    if subcommand == "status":
        return _show_status(context)
    if subcommand == "run":
        try:
            outcome = workspace.sync()
        except FutureTimeoutError:
            return "[sync] sync is still running in the background; check /sync status"
        # A manual pass that got past sign-in opts the user in to automatic sync.
        if outcome.error_kind != "authentication" and outcome.status is not SyncStatus.BUSY:
            workspace.set_sync_enabled(True)
        return _format_outcome(context, outcome)
    if subcommand == "resolve":
        if len(args) < 2 or args[1].lower() not in CHOICES:
            return f"[sync] choose 'local' or 'cloud'. {USAGE}"
        return _format_outcome(context, workspace.resolve_conflict(CHOICES[args[1].lower()]))
    if subcommand == "dismiss":
        return _format_outcome(context, workspace.dismiss_conflict())
    if subcommand in ("enable", "disable"):
        enabled = subcommand == "enable"
        workspace.set_sync_enabled(enabled)
        if enabled and workspace.scheduler is None:
            return "[sync] sync enabled; automatic passes are off (sync.auto), use /sync run"
        return f"[sync] automatic sync {'enabled' if enabled else 'disabled'}"
    if subcommand == "help":
        return f"[sync] {USAGE}"
    return f"[sync] unknown subcommand '{subcommand}'. {USAGE}"


def _format_outcome(context: SlashCommandContext, outcome: SyncOutcome) -> str:
    if outcome.status is SyncStatus.CONFLICT and outcome.conflict is not None:
        resolver = context.require_workspace().engine.resolver
        if resolver.state is ResolverState.CONFLICT_PENDING:
            resolver.present()
        return _render_conflict(outcome.conflict)

    lines = [f"[sync] {outcome.message}"]
    if outcome.images_uploaded or outcome.images_downloaded:
        lines.append(f"  Images: {outcome.images_uploaded} uploaded, {outcome.images_downloaded} downloaded")
    for error in outcome.errors:
        if error != outcome.message:
            lines.append(f"  error: {error}")
    for warning in outcome.warnings:
        lines.append(f"  warning: {warning}")
    if outcome.error_kind == "authentication":
        lines.append("  Sign in again (check sync.drive.credentials_file) and retry with /sync run")
    return "\n".join(lines)


def _describe(content: str) -> str:
    try:
        deck = parse_deck(content)
    except DeckFormatError:
        return "(unreadable)"
    return f"{deck.name}, {len(deck.cards)} cards"


def _render_conflict(conflict: SyncConflict) -> str:
    def _render(console: Console) -> None:
        table = Table(show_header=True, header_style="bold yellow", box=box.SIMPLE, pad_edge=False)
        table.add_column("")
        table.add_column("This device", style="green")
        table.add_column("Cloud", style="cyan")
        table.add_row("Content", _describe(conflict.local_content), _describe(conflict.remote_content))
        table.add_row(
            "Modified",
            datetime.fromtimestamp(conflict.local_ms / 1000).strftime("%Y-%m-%d %H:%M:%S"),
            datetime.fromtimestamp(conflict.remote_ms / 1000).strftime("%Y-%m-%d %H:%M:%S"),
        )
        console.print(
            Panel(
                table,
                title=f"Sync conflict: {conflict.local_deck.name}",
                border_style="yellow",
                padding=(0, 1),
            )
        )
        console.print(
            f"[dim]{len(conflict.remaining)} deck(s) wait behind this one. "
            "Use '/sync resolve local', '/sync resolve cloud', or '/sync dismiss'.[/dim]"
        )
        if _describe(conflict.remote_content) == "(unreadable)":
            console.print("[yellow]The cloud copy cannot be read; only 'local' or 'dismiss' will work.[/yellow]")

    return render_rich(_render)


def _show_status(context: SlashCommandContext) -> str:
    workspace = context.require_workspace()
    engine = workspace.engine
    last = engine.last_outcome

    def _render(console: Console) -> None:
        table = Table(title="Deck Sync Status", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")
        table.add_row("Provider", workspace.settings.provider)
        table.add_row("Signed in", str(workspace.remote.is_signed_in))
        table.add_row("Auto-sync", "enabled" if workspace.sync_enabled else "disabled")
        table.add_row("Debounce", f"{workspace.settings.debounce_seconds:g}s")
        table.add_row("Conflict window", f"{engine.window_ms} ms")
        table.add_row("On deck error", engine.on_deck_error)
        table.add_row("Engine", engine.state.value)
        table.add_row("Pending deletions", str(len(workspace.tombstones)))
        if last is not None:
            table.add_row("Last result", f"{last.status.value}: {last.message}")
        console.print(table)
        if engine.conflict is not None:
            console.print(f"[yellow]Conflict pending on '{engine.conflict.local_deck.name}'.[/yellow]")

    return render_rich(_render)


COMMAND = SlashCommand(
    name="sync",
    description="Sync decks with the remote store. " + USAGE,
    handler=_handler,
    requires_workspace=True,
)
