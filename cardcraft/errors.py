"""Exception types shared across CardCraft.

Remote store failures are split so the sync engine can tell a vanished file
(``RemoteNotFoundError``) from a broken connection (``TransportError``); the two
are handled differently while draining tombstones.
"""

from __future__ import annotations


class CardCraftError(Exception):
    """Base class for all CardCraft errors."""


class RemoteStoreError(CardCraftError):
    """A remote file store call was rejected."""


class TransportError(RemoteStoreError):
    """The remote store could not be reached (connection reset, timeout, DNS)."""


class RemoteNotFoundError(RemoteStoreError):
    """The requested remote file does not exist."""


class AuthenticationError(CardCraftError):
    """No valid credential could be obtained for the remote store."""


class DeckFormatError(CardCraftError):
    """A serialized deck failed to parse or validate."""


class StorageError(CardCraftError):
    """Local persistence failed."""


class DeckNotFoundError(CardCraftError):
    """The requested deck or card is not in the local library."""


class ConflictStateError(CardCraftError):
    """An operation was attempted in the wrong conflict-resolution state."""


__all__ = [
    "AuthenticationError",
    "CardCraftError",
    "ConflictStateError",
    "DeckFormatError",
    "DeckNotFoundError",
    "RemoteNotFoundError",
    "RemoteStoreError",
    "StorageError",
    "TransportError",
]
