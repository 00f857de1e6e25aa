"""Persistence backend."""

from conduit.storage.database import Database

__all__ = ["Database"]
