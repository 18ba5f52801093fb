"""Slash command registry."""

from __future__ import annotations

from .card import COMMAND as CARD_COMMAND
from .config import COMMAND as CONFIG_COMMAND
from .decks import COMMAND as DECKS_COMMAND
from .help import COMMAND as HELP_COMMAND
from .images import COMMAND as IMAGES_COMMAND
from .status import COMMAND as STATUS_COMMAND
from .sync import COMMAND as SYNC_COMMAND
from .transfer import EXPORT_COMMAND, IMPORT_COMMAND

COMMANDS = [
    STATUS_COMMAND,
    HELP_COMMAND,
    CARD_COMMAND,
    CONFIG_COMMAND,
    DECKS_COMMAND,
    EXPORT_COMMAND,
    IMAGES_COMMAND,
    IMPORT_COMMAND,
    SYNC_COMMAND,
]

__all__ = ["COMMANDS"]
