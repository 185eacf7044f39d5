import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

import psycopg

from nautical.db import Store
from nautical.errors import ConstructionError, DecodeError, QueryError, RecordNotFoundError

logger = logging.getLogger(__name__)

UUID_SIZE = 16
FLAG_MAX = 255


class Field(str, Enum):
    """Columns of the internal table that filters may name."""

    ID = "id"
    UUID = "uuid"
    ADDED = "added"
    UPDATED = "updated"
    FLAG = "flag"
    TYPE = "type"
    ORIGIN = "origin"
    DATA = "data"


TEXT_FIELDS = frozenset({Field.TYPE, Field.ORIGIN})
TIME_FIELDS = frozenset({Field.ADDED, Field.UPDATED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Entity:
    """Anything a repository can stream. Identified by ``id``."""

    id: int


@dataclass(eq=False)
class Internal(Entity):
    """
    A row of the internal table.

    ``data`` is opaque here; its format is defined by ``type``. The store
    handle is kept so the entity can persist itself.
    """

    store: Store = field(repr=False)
    id: int = 0
    uuid: bytes = b""
    added: datetime = None
    updated: datetime = None
    flag: int = 0
    type: str = ""
    origin: str = ""
    data: bytes = b""

    def validate(self) -> None:
        """Check the invariants a stored row must satisfy."""
        if not isinstance(self.uuid, bytes) or len(self.uuid) != UUID_SIZE:
            raise DecodeError("internal", "uuid", f"expected {UUID_SIZE} bytes")
        if not isinstance(self.flag, int) or not 0 <= self.flag <= FLAG_MAX:
            raise DecodeError("internal", "flag", f"{self.flag!r} outside 0..{FLAG_MAX}")
        if self.added is None or self.updated is None:
            raise DecodeError("internal", "added", "timestamps must be set")
        try:
            earlier = self.updated < self.added
        except TypeError as e:
            raise DecodeError("internal", "updated", str(e)) from e
        if earlier:
            raise DecodeError("internal", "updated", "earlier than added")

    def save(self) -> "Internal":
        """
        Insert the entity, or update it if it already has an id.

        Updates bump ``updated`` to now. ``uuid`` and ``added`` are never
        rewritten.

        Raises:
            DecodeError: the entity breaks an invariant
            RecordNotFoundError: an update matched no row
            QueryError: the statement failed
        """
        if self.id:
            self.updated = max(utcnow(), self.added)
        self.validate()

        try:
            if not self.id:
                row = self.store.fetch_one(
                    """
                    INSERT INTO internal (uuid, added, updated, flag, type, origin, data)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        self.uuid,
                        self.added,
                        self.updated,
                        self.flag,
                        self.type,
                        self.origin,
                        self.data,
                    ),
                )
                self.id = row["id"]
            else:
                row = self.store.fetch_one(
                    """
                    UPDATE internal
                    SET updated = %s, flag = %s, type = %s, origin = %s, data = %s
                    WHERE id = %s
                    RETURNING id
                    """,
                    (self.updated, self.flag, self.type, self.origin, self.data, self.id),
                )
                if row is None:
                    raise RecordNotFoundError("internal", self.id)
        except psycopg.Error as e:
            logger.error("Failed to save internal %s: %s", self.id or "(new)", e)
            raise QueryError("internal", "save", str(e)) from e

        return self


def new_internal(store: Store) -> Internal:
    """Create an empty Internal bound to ``store``, with a fresh uuid."""
    if store is None:
        raise ConstructionError("internal", "no store handle")
    if store.closed:
        raise ConstructionError("internal", "store is closed")

    now = utcnow()
    return Internal(store=store, uuid=uuid4().bytes, added=now, updated=now)
