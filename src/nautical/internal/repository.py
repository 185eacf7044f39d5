import logging
import threading
from contextlib import closing
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, NoReturn, Optional

import psycopg
from psycopg import sql

from nautical.db import Store
from nautical.errors import (
    InvalidFieldError,
    QueryError,
    RecordNotFoundError,
    RepositoryException,
    TypeMismatchError,
)
from nautical.internal.model import (
    TEXT_FIELDS,
    TIME_FIELDS,
    Entity,
    Field,
    Internal,
    new_internal,
)
from nautical.stream import Stream

SELECT_ALL = sql.SQL(
    "SELECT id, uuid, added, updated, flag, type, origin, data FROM internal"
)


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ``value`` matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_bytes(value) -> bytes:
    if isinstance(value, (memoryview, bytearray)):
        return bytes(value)
    return value


class InternalRepository:
    """
    Repository for the internal table.

    Point queries (get, create) run in the caller's thread and raise.
    Scans (all, lookup, contains, equals, before, after, between) return a
    Stream straight away and fill it from one background thread per call.
    A scan that fails to start leaves the reason on ``stream.error``;
    rows that fail to import are skipped.

    Filter methods only accept columns from Field, and each checks the
    subset that makes sense for it before the scan starts.
    """

    name = "internal"

    def __init__(
        self,
        store: Store,
        factory: Callable[[Store], Entity] = new_internal,
        model_class: type = Internal,
    ):
        self.store = store
        self.factory = factory
        self.model_class = model_class
        self.crates: dict[int, Internal] = {}
        self._logger = logging.getLogger(f"repository.{self.name}")

    # =========================================================================
    # Entities
    # =========================================================================

    def create(self) -> Internal:
        """Get a new, unsaved entity. Raises ConstructionError."""
        return self.factory(self.store)

    def load(self, stream: Iterable[Any]) -> int:
        """
        Drain ``stream`` into the crates index, keyed by id.

        Items that are not entities of this repository's kind are dropped.
        A later entity with the same id replaces the earlier one. Returns
        the number of entities indexed. Not safe to call concurrently.
        """
        count = 0
        for entity in stream:
            if not isinstance(entity, self.model_class):
                continue
            self.crates[entity.id] = entity
            count += 1
        return count

    def import_row(
        self,
        entity_id: int,
        uuid: bytes,
        added: datetime,
        updated: datetime,
        flag: int,
        entity_type: str,
        origin: str,
        data: bytes,
    ) -> Internal:
        """
        Build an entity from the raw column values of one row.

        Raises:
            ConstructionError: the factory failed
            TypeMismatchError: the factory returned something else
            DecodeError: the values break an entity invariant
        """
        entity = self.create()
        if not isinstance(entity, self.model_class):
            raise TypeMismatchError(self.name, self.model_class, entity)

        entity.id = entity_id
        entity.uuid = _as_bytes(uuid)
        entity.added = added
        entity.updated = updated
        entity.flag = flag
        entity.type = entity_type
        entity.origin = origin
        entity.data = _as_bytes(data)
        entity.validate()

        return entity

    def _import(self, row: dict[str, Any]) -> Internal:
        return self.import_row(
            row["id"],
            row["uuid"],
            row["added"],
            row["updated"],
            row["flag"],
            row["type"],
            row["origin"],
            row["data"],
        )

    def get(self, entity_id: int) -> Internal:
        """
        Get one entity by id.

        Raises:
            RecordNotFoundError: no row has this id
            QueryError: the query failed
        """
        try:
            row = self.store.fetch_one(
                """
                SELECT id, uuid, added, updated, flag, type, origin, data
                FROM internal WHERE id = %s
                """,
                (entity_id,),
            )
        except psycopg.Error as e:
            self._handle_db_error(e, "get", {"id": entity_id})

        if row is None:
            raise RecordNotFoundError(self.name, entity_id)

        return self._import(row)

    # =========================================================================
    # Scans
    # =========================================================================

    def all(self) -> Stream:
        """Stream every row, in storage order."""
        return self._scan("all", None, None)

    def lookup(self, *ids: int) -> Stream:
        """
        Stream the entities for ``ids``, in the order given.

        Ids that are missing or fail to load are skipped.
        """

        def work(stream: Stream) -> None:
            for entity_id in ids:
                try:
                    entity = self.get(entity_id)
                except Exception as e:
                    self._logger.debug("Lookup skipped id %s: %s", entity_id, e)
                    continue
                if not stream.send(entity):
                    return

        return self._spawn("lookup", work)

    def contains(self, field: Field | str, search: str) -> Stream:
        """Stream rows whose text ``field`` contains ``search``."""
        column = self._column("contains", field, TEXT_FIELDS)
        where = sql.SQL("{} LIKE %s").format(column)
        return self._scan("contains", where, ("%" + escape_like(search) + "%",))

    def equals(self, field: Field | str, search: Any) -> Stream:
        """Stream rows whose ``field`` equals ``search``."""
        column = self._column("equals", field, Field)
        where = sql.SQL("{} = %s").format(column)
        return self._scan("equals", where, (search,))

    def before(self, field: Field | str, search: datetime) -> Stream:
        """Stream rows whose timestamp ``field`` is strictly earlier than ``search``."""
        column = self._column("before", field, TIME_FIELDS)
        where = sql.SQL("{} < %s").format(column)
        return self._scan("before", where, (search,))

    def after(self, field: Field | str, search: datetime) -> Stream:
        """Stream rows whose timestamp ``field`` is strictly later than ``search``."""
        column = self._column("after", field, TIME_FIELDS)
        where = sql.SQL("{} > %s").format(column)
        return self._scan("after", where, (search,))

    def between(self, field: Field | str, lower: datetime, upper: datetime) -> Stream:
        """
        Stream rows with ``lower < field < upper``.

        Both bounds are exclusive. The first bound is the lower one.
        """
        column = self._column("between", field, TIME_FIELDS)
        where = sql.SQL("{col} > %s AND {col} < %s").format(col=column)
        return self._scan("between", where, (lower, upper))

    # =========================================================================
    # Producer plumbing
    # =========================================================================

    def _column(self, operation: str, field, allowed) -> sql.Identifier:
        try:
            column = Field(field)
        except ValueError:
            raise InvalidFieldError(self.name, operation, field, allowed) from None
        if column not in allowed:
            raise InvalidFieldError(self.name, operation, field, allowed)
        return sql.Identifier(column.value)

    def _scan(
        self,
        operation: str,
        where: Optional[sql.Composable],
        params: Optional[tuple],
    ) -> Stream:
        if where is None:
            query = SELECT_ALL
        else:
            query = sql.SQL("{} WHERE {}").format(SELECT_ALL, where)

        def work(stream: Stream) -> None:
            self._process(stream, self.store.iter_rows(query, params))

        return self._spawn(operation, work)

    def _spawn(self, operation: str, work: Callable[[Stream], None]) -> Stream:
        stream = Stream(name=f"{self.name}.{operation}")

        def run() -> None:
            error = None
            self._logger.debug("Producer %s started", stream.name)
            try:
                work(stream)
            except psycopg.Error as e:
                self._logger.error("Scan %s failed: %s", operation, e, exc_info=True)
                error = QueryError(self.name, operation, str(e))
                error.__cause__ = e
            except Exception as e:
                self._logger.error("Producer %s crashed: %s", operation, e, exc_info=True)
                error = RepositoryException(str(e), self.name, operation)
                error.__cause__ = e
            finally:
                stream.close(error)
                self._logger.debug("Producer %s finished", stream.name)

        threading.Thread(target=run, name=f"nautical-{stream.name}", daemon=True).start()
        return stream

    def _process(self, stream: Stream, rows: Iterator[dict[str, Any]]) -> None:
        """Import each row and send it; skip rows that fail to import."""
        with closing(rows):
            for row in rows:
                try:
                    entity = self._import(row)
                except Exception as e:
                    self._logger.debug("Skipping row %s: %s", row.get("id"), e)
                    continue

                if not stream.send(entity):
                    self._logger.debug("Stream %s cancelled", stream.name)
                    return

    def _handle_db_error(
        self,
        error: psycopg.Error,
        operation: str,
        context: Optional[dict] = None,
    ) -> NoReturn:
        """Log a database error and re-raise it as a QueryError."""
        self._logger.error(
            f"Database error in {operation}: {error}",
            extra={"context": context or {}},
            exc_info=True,
        )
        raise QueryError(self.name, operation, str(error)) from error
