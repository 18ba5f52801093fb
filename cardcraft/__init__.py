"""CardCraft: offline-first card deck authoring with remote sync."""

__version__ = "0.1.0"
