"""Migration orchestrator for coordinating the migrator families."""

from datetime import datetime
from typing import Dict, List, Optional, Type

from loguru import logger
from pydantic import BaseModel, Field

from ..persistence.models import EntityType
from .history import HistoryMigrator
from .identity import IdentityMigrator
from .runtime import RuntimeMigrator
from .strategy import BaseMigrator, MigrationContext, MigratorMode, MigratorReport

MIGRATORS: Dict[str, Type[BaseMigrator]] = {
    'identity': IdentityMigrator,
    'history': HistoryMigrator,
    'runtime': RuntimeMigrator,
}


class MigrationPlan(BaseModel):
    """Migration execution plan."""

    migrate_identity: bool = Field(default=False, description='Migrate tenants and authorizations')
    migrate_history: bool = Field(default=False, description='Migrate historic data')
    migrate_runtime: bool = Field(default=True, description='Migrate running instances')

    # Execution order (dependencies)
    execution_order: List[str] = Field(
        default=['identity', 'history', 'runtime'],
        description='Order of migrator families',
    )

    entity_types: Optional[List[EntityType]] = Field(
        default=None, description='Restrict the run to these entity types'
    )
    mode: MigratorMode = Field(default=MigratorMode.MIGRATE, description='Run mode')
    full_scan: bool = Field(default=False, description='Ignore resume cursors')


class MigrationSummary(BaseModel):
    """Summary of migration results."""

    mode: MigratorMode = Field(..., description='Run mode')
    total_migrated: int = Field(default=0, description='Entities migrated')
    total_skipped: int = Field(default=0, description='Entities skipped')
    total_already_migrated: int = Field(
        default=0, description='Entities recorded by an earlier run'
    )

    # Timing
    started_at: datetime = Field(..., description='Migration start time')
    completed_at: Optional[datetime] = Field(
        default=None, description='Migration completion time'
    )

    # Results by entity type
    results_by_type: Dict[str, Dict[str, int]] = Field(
        default_factory=dict, description='Results grouped by entity type'
    )

    reports: List[MigratorReport] = Field(
        default_factory=list, description='Report of every migrator run'
    )

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat() if v else None}


class MigrationOrchestrator:
    """Runs the migrator families of a plan in dependency order."""

    def __init__(self, context: MigrationContext):
        """Initialize migration orchestrator.

        Args:
            context: Migration context with clients, stores and settings
        """
        self.context = context
        self.logger = logger.bind(component='MigrationOrchestrator')

    def execute_migration(self, plan: MigrationPlan) -> MigrationSummary:
        """Execute migration according to the plan.

        Args:
            plan: Migration execution plan

        Returns:
            Migration summary with results
        """
        self.logger.info(f'Starting migration execution ({plan.mode.value})')
        summary = MigrationSummary(mode=plan.mode, started_at=datetime.now())

        migrators = self._create_migrators(plan)
        if not migrators:
            self.logger.warning('Nothing to migrate, no migrator selected by the plan')

        original_full_scan = self.context.full_scan
        self.context.full_scan = plan.full_scan
        try:
            for family, migrator in migrators:
                self.logger.info(f'Starting {family} migrator')
                report = migrator.start()
                summary.reports.append(report)

                for stats in report.stats:
                    summary.results_by_type[stats.entity_type.value] = {
                        'migrated': stats.migrated,
                        'skipped': stats.skipped,
                        'already_migrated': stats.already_migrated,
                    }
                    summary.total_migrated += stats.migrated
                    summary.total_skipped += stats.skipped
                    summary.total_already_migrated += stats.already_migrated
        except Exception as e:
            self.logger.error(f'Migration execution failed: {e}')
            raise
        finally:
            self.context.full_scan = original_full_scan

        summary.completed_at = datetime.now()
        if not plan.mode.read_only:
            self.logger.info(
                f'Migration completed: {summary.total_migrated} migrated, '
                f'{summary.total_skipped} skipped, '
                f'{summary.total_already_migrated} already migrated'
            )
        return summary

    def _create_migrators(self, plan: MigrationPlan) -> List[tuple]:
        """Migrators enabled by the plan, each limited to the requested types.

        Raises:
            ValueError: If a requested type belongs to no enabled migrator
        """
        requested = set(plan.entity_types) if plan.entity_types else None
        migrators = []
        covered = set()

        for family in plan.execution_order:
            if not self._should_run(family, plan):
                self.logger.info(f'Skipping {family} migrator (disabled in plan)')
                continue

            migrator_cls = MIGRATORS[family]
            entity_types = None
            if requested is not None:
                entity_types = [t for t in migrator_cls.ENTITY_TYPES if t in requested]
                if not entity_types:
                    continue
                covered.update(entity_types)

            migrators.append((family, migrator_cls(self.context, plan.mode, entity_types)))

        if requested is not None and requested - covered:
            names = ', '.join(sorted(t.value for t in requested - covered))
            raise ValueError(f'No enabled migrator handles: {names}')
        return migrators

    @staticmethod
    def _should_run(family: str, plan: MigrationPlan) -> bool:
        flags = {
            'identity': plan.migrate_identity,
            'history': plan.migrate_history,
            'runtime': plan.migrate_runtime,
        }
        return flags.get(family, False)
