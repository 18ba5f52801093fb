"""Slash command for managing decks in the local library."""

from __future__ import annotations

from datetime import datetime
from typing import List

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..models import Deck, ImageRef
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich

USAGE = "Usage: /decks [list | new NAME | show DECK | rename DECK NAME | delete DECK]"


def _format_ms(ms: int) -> str:
    if not ms:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    workspace = context.require_workspace()
    library = workspace.library
    subcommand = args[0].lower() if args else "list"
    rest = args[1:]

    if subcommand in ("list", "ls"):
        return _render_list(library.decks())

    if subcommand in ("new", "create"):
        if not rest:
            return f"[decks] deck name required. {USAGE}"
        deck = library.create(" ".join(rest))
        return f"[decks] created '{deck.name}' ({deck.id})"

    if not rest:
        return f"[decks] deck id or name required. {USAGE}"
    deck_id = library.resolve_id(rest[0])

    if subcommand == "show":
        return _render_deck(library.get(deck_id))
    if subcommand == "rename":
        if len(rest) < 2:
            return f"[decks] new name required. {USAGE}"
        deck = library.rename(deck_id, " ".join(rest[1:]))
        return f"[decks] renamed to '{deck.name}'"
    if subcommand in ("delete", "rm"):
        name = library.get(deck_id).name
        library.delete(deck_id)
        return f"[decks] deleted '{name}'; the remote copy is removed on the next sync"

    return f"[decks] unknown subcommand '{subcommand}'. {USAGE}"


def _render_list(decks: List[Deck]) -> str:
    if not decks:
        return "[decks] no decks yet. Create one with /decks new NAME"

    def _render(console: Console) -> None:
        table = Table(title="Decks", show_header=True, header_style="bold cyan", box=box.SIMPLE)
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Name", style="green")
        table.add_column("Cards", justify="right")
        table.add_column("Images", justify="right")
        table.add_column("Updated", no_wrap=True)
        for deck in decks:
            table.add_row(
                deck.id[:8],
                deck.name,
                str(len(deck.cards)),
                str(len(deck.image_hashes())),
                _format_ms(deck.updated_at),
            )
        console.print(table)

    return render_rich(_render)


def _render_deck(deck: Deck) -> str:
    def _render(console: Console) -> None:
        cards = Table(show_header=True, header_style="bold magenta", box=box.SIMPLE, pad_edge=False)
        cards.add_column("#", justify="right", style="magenta")
        cards.add_column("Card", style="dim", no_wrap=True)
        cards.add_column("Name", style="green")
        cards.add_column("Data", overflow="fold", ratio=1)
        for index, card in enumerate(deck.cards):
            slots = []
            for slot, value in sorted(card.data.items()):
                if isinstance(value, ImageRef):
                    shown = f"[cyan]image {value.hash[:12]}[/cyan]"
                elif isinstance(value, str) and value.startswith("data:"):
                    shown = "[yellow]inline image[/yellow]"
                else:
                    shown = str(value)
                slots.append(f"{slot}={shown}")
            cards.add_row(str(index), card.id[:8], card.name or "-", ", ".join(slots) or "[dim](empty)[/dim]")
        title = f"{deck.name} [dim]({deck.id}, updated {_format_ms(deck.updated_at)})[/dim]"
        console.print(Panel(cards, title=title, border_style="cyan", padding=(0, 1)))

    return render_rich(_render)


COMMAND = SlashCommand(
    name="decks",
    description="List, create, show, rename, or delete decks. " + USAGE,
    handler=_handler,
    requires_workspace=True,
)
