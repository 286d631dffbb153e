"""Migration engine - main entry point for migration operations."""

from typing import Dict, Iterable, List, Optional

from loguru import logger

from ..api.client import EngineClientFactory
from ..api.interface import SourceReader, TargetClient
from ..config.config import Config
from ..conversion.registry import EntityConversionService
from ..conversion.transformers import create_registry
from ..persistence.database import get_engine
from ..persistence.history_store import TargetHistoryStore
from ..persistence.mapping_store import MappingRecord, MappingStore
from ..persistence.models import EntityType
from .orchestrator import MigrationOrchestrator, MigrationPlan, MigrationSummary
from .strategy import MigrationContext, MigratorMode
from .validator import RuntimeValidator
from .variables import VariableService, load_interceptor


class MigrationEngine:
    """Main migration engine that coordinates the entire migration process."""

    def __init__(
        self,
        config: Config,
        source_client: Optional[SourceReader] = None,
        target_client: Optional[TargetClient] = None,
    ):
        """Initialize migration engine.

        Args:
            config: Migration configuration
            source_client: Camunda 7 reader, created from ``config.source`` if None
            target_client: Camunda 8 client, created from ``config.target`` if None
        """
        self.config = config
        self.logger = logger.bind(component='MigrationEngine')

        # Initialize engine clients
        self.source_client = source_client or EngineClientFactory.create_source_client(
            config.source
        )
        self.target_client = target_client or EngineClientFactory.create_target_client(
            config.target
        )

        # Persistence
        database = config.database
        self.mapping_store = MappingStore(
            get_engine(database.url, database.echo),
            batch_size=config.migration.batch_size,
            table_prefix=database.table_prefix,
            save_skip_reason=config.migration.save_skip_reason,
            auto_ddl=database.auto_ddl,
        )
        self.history_store = TargetHistoryStore(
            get_engine(database.history_url or database.url, database.echo),
            table_prefix=database.table_prefix,
            auto_ddl=database.auto_ddl,
        )

        # Conversion
        self.variable_service = VariableService(
            self.source_client,
            [load_interceptor(path) for path in config.migration.variable_interceptors],
        )
        registry = create_registry(
            config.migration.transformers,
            config.migration.disabled_transformers,
            self.variable_service,
        )
        self.logger.debug(f'Registered transformers: {", ".join(registry.names())}')
        if self.variable_service.interceptors:
            self.logger.debug(
                f'Registered variable interceptors: '
                f'{", ".join(i.name for i in self.variable_service.interceptors)}'
            )

        # Create migration context
        self.context = MigrationContext(
            source=self.source_client,
            target=self.target_client,
            history=self.history_store,
            mapping_store=self.mapping_store,
            conversion=EntityConversionService(registry),
            variable_service=self.variable_service,
            validator=RuntimeValidator(
                self.source_client,
                self.target_client,
                config.migration.tenant_ids,
                config.migration.effective_validation_job_type,
            ),
            page_size=config.migration.page_size,
            resume_window_seconds=config.migration.resume_window_seconds,
            cleanup_ttl_days=config.history.cleanup_ttl_days,
            job_type=config.migration.job_type,
        )

        self.orchestrator = MigrationOrchestrator(self.context)

    def migrate(self, plan: Optional[MigrationPlan] = None) -> MigrationSummary:
        """Execute migration with the given plan.

        Args:
            plan: Migration plan (runtime migration if not provided)

        Returns:
            Migration summary
        """
        if plan is None:
            plan = MigrationPlan()

        self.logger.info('Starting Camunda migration')

        try:
            # Test connectivity
            self._test_connectivity()

            summary = self.orchestrator.execute_migration(plan)

            self.logger.info('Migration completed successfully')
            return summary

        except Exception as e:
            self.logger.error(f'Migration failed: {e}')
            raise

    def list_skipped(
        self, entity_types: Optional[Iterable[EntityType]] = None
    ) -> Dict[EntityType, List[MappingRecord]]:
        """Skipped mapping records per entity type."""
        return self._list(MigratorMode.LIST_SKIPPED, entity_types)

    def list_mappings(
        self, entity_types: Optional[Iterable[EntityType]] = None
    ) -> Dict[EntityType, List[MappingRecord]]:
        """All mapping records per entity type."""
        return self._list(MigratorMode.LIST_MAPPINGS, entity_types)

    def _list(
        self, mode: MigratorMode, entity_types: Optional[Iterable[EntityType]]
    ) -> Dict[EntityType, List[MappingRecord]]:
        plan = MigrationPlan(
            migrate_identity=True,
            migrate_history=True,
            migrate_runtime=True,
            entity_types=list(entity_types) if entity_types else None,
            mode=mode,
        )
        summary = self.orchestrator.execute_migration(plan)

        records: Dict[EntityType, List[MappingRecord]] = {}
        for report in summary.reports:
            records.update(report.records)
        return records

    def status(self) -> Dict[EntityType, Dict[str, int]]:
        """Migrated and skipped counts of every entity type."""
        return {
            entity_type: {
                'migrated': self.mapping_store.count_migrated(entity_type),
                'skipped': self.mapping_store.count_skipped(entity_type),
            }
            for entity_type in EntityType
        }

    def reset(self) -> int:
        """Drop every mapping record.

        Returns:
            Number of deleted records
        """
        deleted = self.mapping_store.reset()
        self.logger.warning(f'Deleted {deleted} mapping records')
        return deleted

    def test_connectivity(self) -> Dict[str, bool]:
        """Reachability of both engines."""
        return {
            'source': self.source_client.test_connection(),
            'target': self.target_client.test_connection(),
        }

    def _test_connectivity(self) -> None:
        """Test connectivity to both engines.

        Raises:
            ConnectionError: If connectivity test fails
        """
        self.logger.info('Testing connectivity to Camunda engines')
        results = self.test_connectivity()

        if not results['source']:
            raise ConnectionError('Cannot connect to source Camunda 7 engine')

        if not results['target']:
            raise ConnectionError('Cannot connect to target Camunda 8 cluster')

        self.logger.info('Connectivity tests passed')

    def close(self) -> None:
        """Flush pending mapping records and close the engine clients."""
        self.mapping_store.flush_batch()
        for client in (self.source_client, self.target_client):
            close = getattr(client, 'close', None)
            if close is not None:
                close()
