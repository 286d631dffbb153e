"""Persistent source id to target key mapping with write-behind batching."""

import threading
from datetime import datetime
from typing import Callable, Dict, List, NamedTuple, Optional

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import MetaData, delete, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..migration.exceptions import (
    BatchFlushError,
    CompensationRecord,
    MappingStoreError,
)
from ..migration.pagination import Pagination
from ..utils.dates import to_utc_naive
from .database import get_session
from .models import EntityType, mapping_table


class MappingRecord(BaseModel):
    """One migrated or skipped source entity."""

    source_id: str = Field(..., description='Source system id')
    entity_type: EntityType = Field(..., description='Entity type')
    target_key: Optional[int] = Field(default=None, description='Target system key')
    create_time: Optional[datetime] = Field(
        default=None, description='Source creation time used for resuming'
    )
    skip_reason: Optional[str] = Field(default=None, description='Why it was skipped')

    @property
    def migrated(self) -> bool:
        return self.target_key is not None

    @property
    def cache_key(self) -> str:
        return _cache_key(self.entity_type, self.source_id)


class ResumeCursor(NamedTuple):
    """Position of the last migrated entity of a type."""

    create_time: Optional[datetime]
    source_id: str


class FlushResult(BaseModel):
    """Outcome of a successful batch flush."""

    inserted: int = Field(default=0, description='Rows inserted')
    updated: int = Field(default=0, description='Existing rows overwritten')

    @property
    def total(self) -> int:
        return self.inserted + self.updated


def _cache_key(entity_type: EntityType, source_id: str) -> str:
    return f'{entity_type.value}:{source_id}'


class MappingStore:
    """Mapping table access with an in-memory cache and a batch buffer.

    Lookups consult the cache before the database, so records still sitting
    in the unflushed buffer are visible to the run that inserted them.
    Inserts are buffered and written in one transaction once ``batch_size``
    records are pending or ``flush_batch`` is called.
    """

    def __init__(
        self,
        engine: Engine,
        batch_size: int = 100,
        table_prefix: str = '',
        save_skip_reason: bool = True,
        auto_ddl: bool = True,
    ):
        """Initialize mapping store.

        Args:
            engine: SQLAlchemy engine for the mapping database
            batch_size: Buffered records that trigger an automatic flush
            table_prefix: Prefix for the mapping table name
            save_skip_reason: Persist skip reasons
            auto_ddl: Create the mapping table if it does not exist
        """
        if batch_size <= 0:
            raise ValueError('Batch size must be positive')

        self.engine = engine
        self.batch_size = batch_size
        self.save_skip_reason = save_skip_reason
        self.metadata = MetaData()
        self.table = mapping_table(self.metadata, table_prefix)
        self.logger = logger.bind(component='MappingStore')

        self._lock = threading.RLock()
        self._buffer: Dict[str, MappingRecord] = {}
        self._cache: Dict[str, MappingRecord] = {}
        self._pending_compensation: List[CompensationRecord] = []

        if auto_ddl:
            try:
                self.metadata.create_all(self.engine)
            except SQLAlchemyError as e:
                raise MappingStoreError(f'Failed to create mapping table: {e}') from e

    # Lookups

    def exists(self, source_id: str, entity_type: EntityType) -> bool:
        """Whether a migrated or skipped record exists."""
        return self._lookup(source_id, entity_type) is not None

    def has_target_key(self, source_id: str, entity_type: EntityType) -> bool:
        """Whether the entity was migrated."""
        return self.find_target_key(source_id, entity_type) is not None

    def find_target_key(
        self, source_id: Optional[str], entity_type: EntityType
    ) -> Optional[int]:
        """Target key of a migrated entity, or None."""
        if source_id is None:
            return None
        record = self._lookup(source_id, entity_type)
        return record.target_key if record else None

    def find(self, source_id: str, entity_type: EntityType) -> Optional[MappingRecord]:
        return self._lookup(source_id, entity_type)

    def _lookup(self, source_id: str, entity_type: EntityType) -> Optional[MappingRecord]:
        key = _cache_key(entity_type, source_id)
        with self._lock:
            record = self._cache.get(key)
        if record is not None:
            return record

        stmt = select(self.table).where(
            self.table.c.source_id == source_id,
            self.table.c.entity_type == entity_type.value,
        )
        row = self._fetch_one(stmt, f'look up {key}')
        if row is None:
            return None

        record = self._to_record(row)
        with self._lock:
            self._cache.setdefault(key, record)
        return record

    # Writes

    def insert(
        self,
        source_id: str,
        target_key: Optional[int] = None,
        create_time: Optional[datetime] = None,
        entity_type: EntityType = EntityType.RUNTIME_PROCESS_INSTANCE,
        skip_reason: Optional[str] = None,
    ) -> None:
        """Buffer a mapping record and make it visible to lookups at once.

        Inserting the same (source_id, entity_type) twice before a flush
        replaces the buffered record.
        """
        record = MappingRecord(
            source_id=source_id,
            entity_type=entity_type,
            target_key=target_key,
            create_time=to_utc_naive(create_time),
            skip_reason=skip_reason if self.save_skip_reason else None,
        )

        with self._lock:
            key = record.cache_key
            self._buffer[key] = record
            self._cache[key] = record
            if target_key is not None:
                self._pending_compensation = [
                    c
                    for c in self._pending_compensation
                    if _cache_key(c.entity_type, c.source_id) != key
                ]
                self._pending_compensation.append(
                    CompensationRecord(entity_type, source_id, target_key)
                )

            if len(self._buffer) >= self.batch_size:
                self.flush_batch()

    def flush_batch(self) -> FlushResult:
        """Write all buffered records in one transaction.

        Returns:
            Counts of inserted and overwritten rows

        Raises:
            BatchFlushError: If the write fails. The attempted records are
                dropped from the cache and ``compensation`` lists the target
                keys created for them.
        """
        with self._lock:
            if not self._buffer:
                return FlushResult()

            records = list(self._buffer.values())
            compensation = list(self._pending_compensation)
            self._buffer.clear()
            self._pending_compensation = []

            try:
                result = self._write_batch(records)
            except SQLAlchemyError as e:
                for record in records:
                    self._cache.pop(record.cache_key, None)
                self.logger.error(
                    f'Failed to flush {len(records)} mapping records, '
                    f'{len(compensation)} target entities need compensation: {e}'
                )
                raise BatchFlushError(
                    f'Failed to flush {len(records)} mapping records: {e}',
                    compensation=compensation,
                ) from e

        self.logger.debug(
            f'Flushed {result.total} mapping records '
            f'({result.inserted} inserted, {result.updated} updated)'
        )
        return result

    def _write_batch(self, records: List[MappingRecord]) -> FlushResult:
        t = self.table
        with get_session(self.engine) as session:
            existing = set()
            by_type: Dict[EntityType, List[str]] = {}
            for record in records:
                by_type.setdefault(record.entity_type, []).append(record.source_id)
            for entity_type, source_ids in by_type.items():
                rows = session.execute(
                    select(t.c.source_id).where(
                        t.c.entity_type == entity_type.value,
                        t.c.source_id.in_(source_ids),
                    )
                )
                existing.update(_cache_key(entity_type, r.source_id) for r in rows)

            new_rows = [self._to_row(r) for r in records if r.cache_key not in existing]
            if new_rows:
                session.execute(insert(t), new_rows)

            updated = 0
            for record in records:
                if record.cache_key in existing:
                    session.execute(
                        update(t)
                        .where(
                            t.c.source_id == record.source_id,
                            t.c.entity_type == record.entity_type.value,
                        )
                        .values(
                            target_key=record.target_key,
                            create_time=record.create_time,
                            skip_reason=record.skip_reason,
                        )
                    )
                    updated += 1

        return FlushResult(inserted=len(new_rows), updated=updated)

    def update_target_key(
        self, source_id: str, target_key: int, entity_type: EntityType
    ) -> None:
        """Mark an existing record as migrated and clear its skip reason."""
        self._update_row(source_id, entity_type, target_key=target_key, skip_reason=None)

    def update_skip_reason(
        self, source_id: str, entity_type: EntityType, skip_reason: Optional[str]
    ) -> None:
        """Replace the skip reason of an existing record."""
        if not self.save_skip_reason:
            skip_reason = None
        self._update_row(source_id, entity_type, target_key=None, skip_reason=skip_reason)

    def _update_row(self, source_id: str, entity_type: EntityType, **values) -> None:
        key = _cache_key(entity_type, source_id)
        with self._lock:
            buffered = self._buffer.get(key)
            if buffered is not None:
                updated = buffered.copy(update=values)
                self._buffer[key] = updated
                self._cache[key] = updated
                return

        t = self.table
        stmt = (
            update(t)
            .where(t.c.source_id == source_id, t.c.entity_type == entity_type.value)
            .values(**values)
        )
        try:
            with get_session(self.engine) as session:
                session.execute(stmt)
        except SQLAlchemyError as e:
            raise MappingStoreError(f'Failed to update mapping {key}: {e}') from e

        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache[key] = cached.copy(update=values)

    # Resume support

    def find_resume_cursor(self, entity_type: EntityType) -> Optional[ResumeCursor]:
        """Position of the latest migrated entity of a type.

        Ordered by (create_time, source_id) descending. Unflushed records are
        not considered; flush before asking.
        """
        t = self.table
        stmt = (
            select(t.c.create_time, t.c.source_id)
            .where(t.c.entity_type == entity_type.value, t.c.target_key.is_not(None))
            .order_by(t.c.create_time.desc(), t.c.source_id.desc())
            .limit(1)
        )
        row = self._fetch_one(stmt, f'find resume cursor for {entity_type.value}')
        if row is None:
            return None
        return ResumeCursor(row.create_time, row.source_id)

    def find_latest_id(self, entity_type: EntityType) -> Optional[str]:
        cursor = self.find_resume_cursor(entity_type)
        return cursor.source_id if cursor else None

    # Reporting

    def count_skipped(self, entity_type: Optional[EntityType] = None) -> int:
        return self._count(entity_type, skipped=True)

    def count_migrated(self, entity_type: Optional[EntityType] = None) -> int:
        return self._count(entity_type, skipped=False)

    def _count(self, entity_type: Optional[EntityType], skipped: bool) -> int:
        t = self.table
        condition = t.c.target_key.is_(None) if skipped else t.c.target_key.is_not(None)
        stmt = select(func.count()).select_from(t).where(condition)
        if entity_type is not None:
            stmt = stmt.where(t.c.entity_type == entity_type.value)
        row = self._fetch_one(stmt, 'count mappings')
        return int(row[0]) if row else 0

    def find_skipped(
        self,
        entity_type: EntityType,
        offset: int = 0,
        limit: int = 100,
        after_source_id: Optional[str] = None,
    ) -> List[MappingRecord]:
        """Skipped records of a type ordered by source id."""
        t = self.table
        stmt = select(t).where(
            t.c.entity_type == entity_type.value, t.c.target_key.is_(None)
        )
        if after_source_id is not None:
            stmt = stmt.where(t.c.source_id > after_source_id)
        stmt = stmt.order_by(t.c.source_id.asc()).offset(offset).limit(limit)
        return self._fetch_records(stmt, f'find skipped {entity_type.value}')

    def find_migrated(
        self, entity_type: EntityType, offset: int = 0, limit: int = 100
    ) -> List[MappingRecord]:
        """Migrated records of a type in resume order."""
        t = self.table
        stmt = (
            select(t)
            .where(t.c.entity_type == entity_type.value, t.c.target_key.is_not(None))
            .order_by(t.c.create_time.asc(), t.c.source_id.asc())
            .offset(offset)
            .limit(limit)
        )
        return self._fetch_records(stmt, f'find migrated {entity_type.value}')

    def list_skipped(self, entity_type: EntityType) -> List[MappingRecord]:
        """All skipped records of a type. Read only."""
        return Pagination(
            self.batch_size,
            lambda: self.count_skipped(entity_type),
            fetch_page=lambda offset, limit: self.find_skipped(entity_type, offset, limit),
        ).to_list()

    def list_mappings(self, entity_type: EntityType) -> List[MappingRecord]:
        """All migrated records of a type. Read only."""
        return Pagination(
            self.batch_size,
            lambda: self.count_migrated(entity_type),
            fetch_page=lambda offset, limit: self.find_migrated(entity_type, offset, limit),
        ).to_list()

    def iterate_skipped(
        self, entity_type: EntityType, callback: Callable[[MappingRecord], None]
    ) -> int:
        """Hand every skipped record of a type to ``callback`` exactly once.

        Each page is read from offset 0 because the callback usually turns
        the record into a migrated one. Records that stay skipped are passed
        over by continuing after the last source id seen.
        """
        last_seen: List[Optional[str]] = [None]

        def fetch(offset: int, limit: int) -> List[MappingRecord]:
            return self.find_skipped(entity_type, offset, limit, after_source_id=last_seen[0])

        def handle(record: MappingRecord) -> None:
            last_seen[0] = record.source_id
            callback(record)

        return Pagination(
            self.batch_size,
            lambda: self.count_skipped(entity_type),
            fetch_page=fetch,
            fixed_offset=True,
        ).for_each(handle)

    # Maintenance

    def delete_all_mappings(self, entity_type: Optional[EntityType] = None) -> int:
        """Delete mapping rows, all of them or those of one type.

        Returns:
            Number of deleted rows
        """
        t = self.table
        stmt = delete(t)
        if entity_type is not None:
            stmt = stmt.where(t.c.entity_type == entity_type.value)
        try:
            with get_session(self.engine) as session:
                deleted = session.execute(stmt).rowcount
        except SQLAlchemyError as e:
            raise MappingStoreError(f'Failed to delete mappings: {e}') from e

        with self._lock:
            if entity_type is None:
                self._buffer.clear()
                self._cache.clear()
                self._pending_compensation = []
            else:
                prefix = f'{entity_type.value}:'
                for store in (self._buffer, self._cache):
                    for key in [k for k in store if k.startswith(prefix)]:
                        del store[key]
                self._pending_compensation = [
                    c for c in self._pending_compensation if c.entity_type != entity_type
                ]

        self.logger.info(f'Deleted {deleted} mapping records')
        return deleted

    def reset(self) -> int:
        return self.delete_all_mappings()

    def clear_buffers(self) -> None:
        """Drop buffered records and cached lookups without writing."""
        with self._lock:
            for key in self._buffer:
                self._cache.pop(key, None)
            self._buffer.clear()
            self._pending_compensation = []

    def clear_cache(self) -> None:
        with self._lock:
            self._cache = {k: v for k, v in self._cache.items() if k in self._buffer}

    def buffer_size(self) -> int:
        with self._lock:
            return len(self._buffer)

    # Helpers

    def _fetch_one(self, stmt, action: str):
        try:
            with get_session(self.engine) as session:
                return session.execute(stmt).first()
        except SQLAlchemyError as e:
            raise MappingStoreError(f'Failed to {action}: {e}') from e

    def _fetch_records(self, stmt, action: str) -> List[MappingRecord]:
        try:
            with get_session(self.engine) as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as e:
            raise MappingStoreError(f'Failed to {action}: {e}') from e
        return [self._to_record(row) for row in rows]

    @staticmethod
    def _to_record(row) -> MappingRecord:
        return MappingRecord(
            source_id=row.source_id,
            entity_type=EntityType(row.entity_type),
            target_key=row.target_key,
            create_time=row.create_time,
            skip_reason=row.skip_reason,
        )

    @staticmethod
    def _to_row(record: MappingRecord) -> dict:
        return {
            'source_id': record.source_id,
            'entity_type': record.entity_type.value,
            'target_key': record.target_key,
            'create_time': record.create_time,
            'skip_reason': record.skip_reason,
        }
