"""Error taxonomy shared by the storage boundary, the ledger and the journal."""

from __future__ import annotations


class TradelogError(Exception):
    """Base class for every error raised by tradelog."""


class NotFoundError(TradelogError):
    """Referenced account or trade does not exist for the requesting user."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class StorageError(TradelogError):
    """A read or write against the database failed."""


class ValidationError(TradelogError):
    """Caller supplied input the journal refuses to record."""
