"""Slash command for editing cards inside a deck."""

from __future__ import annotations

from pathlib import Path
from typing import List

from ..errors import DeckNotFoundError
from ..models import Deck
from ..slash_commands import SlashCommand, SlashCommandContext

USAGE = (
    "Usage: /card add DECK [NAME] | set DECK CARD SLOT VALUE | image DECK CARD SLOT PATH"
    " | clear DECK CARD SLOT | remove DECK CARD | duplicate DECK CARD | move DECK CARD INDEX"
)
MIN_ARGS = {"add": 1, "set": 4, "image": 4, "clear": 3, "remove": 2, "duplicate": 2, "move": 3}


def resolve_card_id(deck: Deck, token: str) -> str:
    """Accept a full card id, a unique id prefix, or a position in the deck."""
    if deck.find_card(token) is not None:
        return token
    matches = [card.id for card in deck.cards if card.id.startswith(token)]
    if len(matches) == 1:
        return matches[0]
    if token.isdigit() and int(token) < len(deck.cards):
        return deck.cards[int(token)].id
    raise DeckNotFoundError(f"No unique card matches '{token}' in '{deck.name}'")


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    library = context.require_workspace().library
    if not args:
        return f"[card] {USAGE}"
    subcommand = args[0].lower()
    rest = args[1:]
    if subcommand not in MIN_ARGS:
        return f"[card] unknown subcommand '{subcommand}'. {USAGE}"
    if len(rest) < MIN_ARGS[subcommand]:
        return f"[card] missing arguments. {USAGE}"

    deck = library.get(library.resolve_id(rest[0]))

    if subcommand == "add":
        card = library.add_card(deck.id, " ".join(rest[1:]))
        return f"[card] added card {card.id[:8]} to '{deck.name}'"

    card_id = resolve_card_id(deck, rest[1])

    if subcommand == "set":
        library.set_card_value(deck.id, card_id, rest[2], " ".join(rest[3:]))
        return f"[card] {rest[2]} set on card {card_id[:8]}"
    if subcommand == "image":
        ref = library.set_card_image(deck.id, card_id, rest[2], Path(" ".join(rest[3:])).expanduser())
        return f"[card] stored image {ref.hash[:12]} in {rest[2]} of card {card_id[:8]}"
    if subcommand == "clear":
        library.set_card_value(deck.id, card_id, rest[2], None)
        return f"[card] cleared {rest[2]} on card {card_id[:8]}"
    if subcommand == "remove":
        library.remove_card(deck.id, card_id)
        return f"[card] removed card {card_id[:8]} from '{deck.name}'"
    if subcommand == "duplicate":
        clone = library.duplicate_card(deck.id, card_id)
        return f"[card] duplicated card {card_id[:8]} as {clone.id[:8]}"

    try:
        index = int(rest[2])
    except ValueError:
        return f"[card] INDEX must be an integer. {USAGE}"
    library.move_card(deck.id, card_id, index)
    return f"[card] moved card {card_id[:8]} to position {index}"


COMMAND = SlashCommand(
    name="card",
    description="Add, edit, duplicate, reorder, or remove cards. " + USAGE,
    handler=_handler,
    requires_workspace=True,
)
