"""Migrator base class and the skip/retry state machine shared by all migrators."""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..api.exceptions import EngineAPIError
from ..api.interface import HistoryWriter, SourceQuery, SourceReader, TargetClient
from ..conversion.registry import EntityConversionService
from ..models.source import SourceEntity
from ..persistence.mapping_store import MappingRecord, MappingStore
from ..persistence.models import EntityType
from .exceptions import (
    SKIP_REASON_MISSING_SOURCE_ENTITY,
    BatchFlushError,
    CompensationRecord,
    ConversionError,
    EntitySkippedError,
    MappingStoreError,
    UnsupportedVariableTypeError,
    ValidationError,
    VariableInterceptorError,
)
from .pagination import Pagination
from .validator import RuntimeValidator
from .variables import VariableService

# Failures that turn a single entity into a SKIPPED record instead of aborting
SKIPPABLE_ERRORS = (
    EntitySkippedError,
    ValidationError,
    ConversionError,
    UnsupportedVariableTypeError,
    VariableInterceptorError,
)


class MigratorMode(str, Enum):
    """Migrator run modes."""

    MIGRATE = 'MIGRATE'
    RETRY_SKIPPED = 'RETRY_SKIPPED'
    LIST_SKIPPED = 'LIST_SKIPPED'
    LIST_MAPPINGS = 'LIST_MAPPINGS'

    @property
    def read_only(self) -> bool:
        return self in (MigratorMode.LIST_SKIPPED, MigratorMode.LIST_MAPPINGS)


class TypeStats(BaseModel):
    """Outcome counts of one entity type in one run."""

    entity_type: EntityType = Field(..., description='Entity type')
    migrated: int = Field(default=0, description='Entities migrated in this run')
    skipped: int = Field(default=0, description='Entities skipped in this run')
    already_migrated: int = Field(
        default=0, description='Entities recorded by an earlier run and passed over'
    )

    @property
    def processed(self) -> int:
        return self.migrated + self.skipped


class MigratorReport(BaseModel):
    """Result of one migrator start."""

    migrator: str = Field(..., description='Migrator name')
    mode: MigratorMode = Field(..., description='Run mode')
    started_at: datetime = Field(default_factory=datetime.now, description='Start time')
    completed_at: Optional[datetime] = Field(default=None, description='Completion time')
    stats: List[TypeStats] = Field(default_factory=list, description='Counts per type')
    records: Dict[EntityType, List[MappingRecord]] = Field(
        default_factory=dict, description='Listed mapping records per type'
    )

    @property
    def migrated(self) -> int:
        return sum(s.migrated for s in self.stats)

    @property
    def skipped(self) -> int:
        return sum(s.skipped for s in self.stats)


class MigrationContext(BaseModel):
    """Clients, stores and settings shared by the migrators of one run."""

    source: SourceReader = Field(..., description='Camunda 7 reader')
    target: TargetClient = Field(..., description='Camunda 8 client')
    history: Optional[HistoryWriter] = Field(
        default=None, description='Camunda 8 history store'
    )
    mapping_store: MappingStore = Field(..., description='Source id to target key mapping')
    conversion: EntityConversionService = Field(..., description='Transformer pipeline')
    variable_service: VariableService = Field(..., description='Variable conversion')
    validator: Optional[RuntimeValidator] = Field(
        default=None, description='Runtime instance validator'
    )

    page_size: int = Field(default=100, description='Source page size')
    resume_window_seconds: int = Field(
        default=3600, description='Re-scan window behind the resume cursor'
    )
    full_scan: bool = Field(default=False, description='Ignore the resume cursor')
    cleanup_ttl_days: Optional[int] = Field(
        default=180, description='History cleanup offset from the end date'
    )
    job_type: str = Field(default='migrator', description='Migrator job type')

    class Config:
        """Pydantic configuration."""

        arbitrary_types_allowed = True


class BaseMigrator(ABC):
    """Drives one family of entity types through the mapping state machine.

    Per source entity the outcome is one of: passed over (a mapping record
    already exists), MIGRATED (target created, key recorded), SKIPPED
    (record without key, with the reason), or nothing at all when
    ``migrate_entity`` returns None.

    In RETRY_SKIPPED mode only the SKIPPED records of each type are read
    back and their previous outcome is overwritten.
    """

    ENTITY_TYPES: List[EntityType] = []

    def __init__(
        self,
        context: MigrationContext,
        mode: MigratorMode = MigratorMode.MIGRATE,
        entity_types: Optional[Iterable[EntityType]] = None,
    ):
        """Initialize migrator.

        Args:
            context: Shared migration context
            mode: Run mode
            entity_types: Subset of ``ENTITY_TYPES`` to handle, all if None

        Raises:
            ValueError: If a requested type is not handled by this migrator
        """
        self.context = context
        self.mode = MigratorMode(mode)
        self.logger = logger.bind(component=type(self).__name__)

        if entity_types is None:
            self.entity_types = list(self.ENTITY_TYPES)
        else:
            requested = set(entity_types)
            unknown = requested - set(self.ENTITY_TYPES)
            if unknown:
                names = ', '.join(sorted(t.value for t in unknown))
                raise ValueError(f'{type(self).__name__} does not handle: {names}')
            # keep dependency order regardless of the requested order
            self.entity_types = [t for t in self.ENTITY_TYPES if t in requested]

    @property
    def source(self) -> SourceReader:
        return self.context.source

    @property
    def target(self) -> TargetClient:
        return self.context.target

    @property
    def mapping_store(self) -> MappingStore:
        return self.context.mapping_store

    def start(self) -> MigratorReport:
        """Run the migrator in its configured mode."""
        report = MigratorReport(migrator=type(self).__name__, mode=self.mode)

        if self.mode == MigratorMode.LIST_SKIPPED:
            for entity_type in self.entity_types:
                report.records[entity_type] = self.mapping_store.list_skipped(entity_type)
        elif self.mode == MigratorMode.LIST_MAPPINGS:
            for entity_type in self.entity_types:
                report.records[entity_type] = self.mapping_store.list_mappings(entity_type)
        else:
            for entity_type in self.entity_types:
                report.stats.append(self.migrate_type(entity_type))
            self.after_migrate(report)

        report.completed_at = datetime.now()
        return report

    def migrate_type(self, entity_type: EntityType) -> TypeStats:
        """Migrate or retry every entity of one type, then flush.

        Raises:
            BatchFlushError: After the target entities of the lost batch
                were compensated
        """
        stats = TypeStats(entity_type=entity_type)
        self.logger.info(f'Migrating {entity_type.display_name} entities ({self.mode.value})')

        try:
            if self.mode == MigratorMode.RETRY_SKIPPED:
                self.mapping_store.iterate_skipped(
                    entity_type, lambda record: self._retry(entity_type, record, stats)
                )
            else:
                self.scan(entity_type, lambda entity: self._handle(entity_type, entity, stats))
            self.mapping_store.flush_batch()
        except BatchFlushError as e:
            self.logger.error(
                f'Mapping flush failed for {entity_type.value}, '
                f'compensating {len(e.compensation)} target entities'
            )
            self.compensate(e.compensation)
            raise

        self.logger.info(
            f'{entity_type.display_name}: {stats.migrated} migrated, {stats.skipped} skipped, '
            f'{stats.already_migrated} already processed'
        )
        return stats

    def scan(self, entity_type: EntityType, callback: Callable[[SourceEntity], None]) -> int:
        """Hand every source entity after the resume point to ``callback``."""
        query = self.build_query(entity_type)
        pagination = Pagination(
            self.context.page_size,
            lambda: self.source.count(entity_type, query),
            fetch_page=lambda offset, limit: self.source.fetch_page(
                entity_type, offset, limit, query
            ),
        )
        return pagination.for_each(callback)

    def base_query(self, entity_type: EntityType) -> SourceQuery:
        """Filter every scan of a type starts from."""
        return SourceQuery()

    def build_query(self, entity_type: EntityType) -> SourceQuery:
        """Scan filter positioned at the resume point of a type.

        With a resume window the scan restarts that many seconds before the
        cursor and relies on the mapping store to pass over what was already
        recorded. A window of zero continues strictly after the cursor.
        Types without a create time are always scanned in full.
        """
        query = self.base_query(entity_type)
        if self.context.full_scan:
            return query

        cursor = self.mapping_store.find_resume_cursor(entity_type)
        if cursor is None or cursor.create_time is None:
            return query

        window = self.context.resume_window_seconds
        if window:
            created_from = cursor.create_time - timedelta(seconds=window)
            self.logger.debug(
                f'Resuming {entity_type.value} from {created_from} '
                f'({window}s before {cursor.source_id})'
            )
            return query.copy(update={'created_from': created_from})

        self.logger.debug(
            f'Resuming {entity_type.value} after ({cursor.create_time}, {cursor.source_id})'
        )
        return query.copy(
            update={'after_time': cursor.create_time, 'after_id': cursor.source_id}
        )

    def _handle(self, entity_type: EntityType, entity: SourceEntity, stats: TypeStats) -> None:
        if self.mapping_store.exists(entity.source_id, entity_type):
            self.logger.trace(f'{entity_type.value} {entity.source_id} already processed')
            stats.already_migrated += 1
            return
        self._process(entity_type, entity, stats)

    def _retry(self, entity_type: EntityType, record: MappingRecord, stats: TypeStats) -> None:
        entity = self.source.get_single(entity_type, record.source_id)
        if entity is None:
            self.logger.warning(
                f'Skipping {entity_type.display_name} {record.source_id}: '
                f'{SKIP_REASON_MISSING_SOURCE_ENTITY}'
            )
            self.mapping_store.update_skip_reason(
                record.source_id, entity_type, SKIP_REASON_MISSING_SOURCE_ENTITY
            )
            stats.skipped += 1
            return
        self._process(entity_type, entity, stats)

    def _process(self, entity_type: EntityType, entity: SourceEntity, stats: TypeStats) -> None:
        try:
            target_key = self.migrate_entity(entity)
        except SKIPPABLE_ERRORS as e:
            reason = self.skip_reason(e)
            self.logger.warning(
                f'Skipping {entity_type.display_name} {entity.source_id}: {reason}'
            )
            self.logger.opt(exception=e).debug(f'Skip cause for {entity.source_id}')
            self.mark_skipped(entity_type, entity, reason)
            stats.skipped += 1
            return

        if target_key is None:
            return
        self.mark_migrated(entity_type, entity, target_key)
        stats.migrated += 1

    @staticmethod
    def skip_reason(error: Exception) -> str:
        if isinstance(error, EntitySkippedError):
            return error.reason
        return str(error)

    def create_time(self, entity: SourceEntity) -> Optional[datetime]:
        """Time stored with the mapping record and used to resume."""
        return entity.created_at

    def mark_migrated(self, entity_type: EntityType, entity: SourceEntity, target_key: int) -> None:
        source_id = entity.source_id
        if self.mode == MigratorMode.RETRY_SKIPPED:
            try:
                self.mapping_store.update_target_key(source_id, target_key, entity_type)
            except MappingStoreError:
                self.compensate([CompensationRecord(entity_type, source_id, target_key)])
                raise
        else:
            self.mapping_store.insert(
                source_id, target_key, self.create_time(entity), entity_type
            )
        self.logger.debug(f'Migrated {entity_type.value} {source_id} -> {target_key}')

    def mark_skipped(self, entity_type: EntityType, entity: SourceEntity, reason: str) -> None:
        if self.mode == MigratorMode.RETRY_SKIPPED:
            self.mapping_store.update_skip_reason(entity.source_id, entity_type, reason)
        else:
            self.mapping_store.insert(
                entity.source_id,
                None,
                self.create_time(entity),
                entity_type,
                skip_reason=reason,
            )

    def compensate(self, records: List[CompensationRecord]) -> None:
        """Undo target writes whose mapping records were lost.

        Failures are logged and the remaining records are still attempted.
        """
        for record in records:
            try:
                self.compensate_entity(record)
                self.logger.info(
                    f'Compensated {record.entity_type.value} {record.source_id} '
                    f'(target key {record.target_key})'
                )
            except EngineAPIError as e:
                self.logger.error(
                    f'Failed to compensate {record.entity_type.value} {record.source_id} '
                    f'(target key {record.target_key}): {e}'
                )

    def after_migrate(self, report: MigratorReport) -> None:
        """Hook run once all types were migrated."""
        pass

    @abstractmethod
    def migrate_entity(self, entity: SourceEntity) -> Optional[int]:
        """Create the target counterpart of one source entity.

        Returns:
            Target key, or None when there is nothing to record

        Raises:
            EntitySkippedError: If a prerequisite is missing
            ValidationError: If the entity is structurally incompatible
            ConversionError: If the pipeline fails
            UnsupportedVariableTypeError: If a variable cannot be converted
        """
        pass

    @abstractmethod
    def compensate_entity(self, record: CompensationRecord) -> None:
        """Delete or cancel one target entity."""
        pass
