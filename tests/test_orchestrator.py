"""Tests for the migration orchestrator and engine."""

import pytest

from camunda_migrate.config.config import Config
from camunda_migrate.migration.engine import MigrationEngine
from camunda_migrate.migration.history import HistoryMigrator
from camunda_migrate.migration.identity import IdentityMigrator
from camunda_migrate.migration.orchestrator import MigrationOrchestrator, MigrationPlan
from camunda_migrate.migration.strategy import MigratorMode
from camunda_migrate.models.source import (
    ProcessDefinition,
    RuntimeProcessInstance,
    Tenant,
    TypedValue,
)
from camunda_migrate.persistence.models import EntityType

from conftest import IN_MEMORY_URL, at


class TestMigrationOrchestrator:
    """Test plan handling and result aggregation."""

    @pytest.fixture(autouse=True)
    def setup_fixtures(self, source, target, make_context):
        """Set up test fixtures."""
        self.source = source
        self.target = target
        self.context = make_context()
        self.orchestrator = MigrationOrchestrator(self.context)

    def test_default_plan_runs_runtime_only(self):
        """Test the default plan selects the runtime migrator."""
        migrators = self.orchestrator._create_migrators(MigrationPlan())

        assert [family for family, _ in migrators] == ['runtime']

    def test_entity_types_select_families(self):
        """Test requested types pick only the migrators handling them."""
        plan = MigrationPlan(
            migrate_identity=True,
            migrate_history=True,
            entity_types=[EntityType.HISTORY_PROCESS_DEFINITION, EntityType.TENANT],
        )

        migrators = self.orchestrator._create_migrators(plan)

        assert [family for family, _ in migrators] == ['identity', 'history']
        identity, history = migrators[0][1], migrators[1][1]
        assert isinstance(identity, IdentityMigrator)
        assert identity.entity_types == [EntityType.TENANT]
        assert isinstance(history, HistoryMigrator)
        assert history.entity_types == [EntityType.HISTORY_PROCESS_DEFINITION]

    def test_type_of_disabled_family(self):
        """Test requesting a type of a disabled migrator fails."""
        plan = MigrationPlan(
            migrate_runtime=False, entity_types=[EntityType.RUNTIME_PROCESS_INSTANCE]
        )

        with pytest.raises(ValueError, match='RUNTIME_PROCESS_INSTANCE'):
            self.orchestrator._create_migrators(plan)

    def test_summary_totals(self):
        """Test counts are summed across migrators."""
        self.source.add(
            Tenant(id='acme'),
            ProcessDefinition(id='order:1:abc', key='order', deployment_time=at(0)),
        )
        plan = MigrationPlan(
            migrate_identity=True,
            migrate_history=True,
            migrate_runtime=False,
            entity_types=[EntityType.TENANT, EntityType.HISTORY_PROCESS_DEFINITION],
        )

        summary = self.orchestrator.execute_migration(plan)

        assert summary.total_migrated == 2
        assert summary.total_skipped == 0
        assert summary.results_by_type['TENANT']['migrated'] == 1
        assert summary.results_by_type['HISTORY_PROCESS_DEFINITION']['migrated'] == 1
        assert len(summary.reports) == 2
        assert summary.completed_at is not None

    def test_full_scan_is_restored(self):
        """Test the plan's full scan flag only lasts for the run."""
        self.orchestrator.execute_migration(MigrationPlan(full_scan=True))

        assert self.context.full_scan is False


class TestMigrationEngine:
    """Test the engine facade over fake engines and an in-memory database."""

    @pytest.fixture(autouse=True)
    def setup_fixtures(self, source, target, db_engine):
        """Set up test fixtures."""
        self.source = source
        self.target = target
        self.config = Config(
            source={'url': 'http://localhost:8080/engine-rest'},
            target={'url': 'http://localhost:8088'},
            database={'url': IN_MEMORY_URL},
        )
        self.engine = MigrationEngine(self.config, source, target)
        source.add(
            RuntimeProcessInstance(
                id='pi-1',
                process_definition_id='order:1:abc',
                process_definition_key='order',
                start_time=at(0),
                root_process_instance_id='pi-1',
            )
        )

    def test_migrate_skips_undeployed_process(self):
        """Test a runtime run records the validation failure."""
        summary = self.engine.migrate()

        assert summary.total_skipped == 1
        assert self.target.instances == {}
        status = self.engine.status()
        assert status[EntityType.RUNTIME_PROCESS_INSTANCE] == {'migrated': 0, 'skipped': 1}

    def test_list_skipped(self):
        """Test skipped records are listed per type."""
        self.engine.migrate()

        records = self.engine.list_skipped([EntityType.RUNTIME_PROCESS_INSTANCE])

        assert list(records) == [EntityType.RUNTIME_PROCESS_INSTANCE]
        assert records[EntityType.RUNTIME_PROCESS_INSTANCE][0].source_id == 'pi-1'
        assert self.engine.list_mappings()[EntityType.TENANT] == []

    def test_retry_plan(self):
        """Test a retry run picks up the instance once it can be migrated."""
        self.engine.migrate()
        self.engine.context.validator = None

        summary = self.engine.migrate(MigrationPlan(mode=MigratorMode.RETRY_SKIPPED))

        assert summary.total_migrated == 1
        assert self.target.created_legacy_ids() == ['pi-1']

    def test_reset(self):
        """Test reset drops every mapping record."""
        self.engine.migrate()

        assert self.engine.reset() == 1
        assert self.engine.status()[EntityType.RUNTIME_PROCESS_INSTANCE]['skipped'] == 0

    def test_unreachable_source(self):
        """Test a run stops before migrating when the source is down."""
        self.source.reachable = False

        with pytest.raises(ConnectionError, match='source Camunda 7'):
            self.engine.migrate()

    def test_connectivity(self):
        """Test reachability is reported per engine."""
        self.target.reachable = False

        assert self.engine.test_connectivity() == {'source': True, 'target': False}

    def test_close_flushes(self):
        """Test closing writes buffered mapping records."""
        self.engine.mapping_store.insert('x', 1, at(0))

        self.engine.close()

        assert self.engine.mapping_store.buffer_size() == 0

    def test_variable_interceptors_from_config(self):
        """Test configured interceptors change the variables sent to the target."""
        config = Config(
            source={'url': 'http://localhost:8080/engine-rest'},
            target={'url': 'http://localhost:8088'},
            database={'url': IN_MEMORY_URL},
            migration={'variable_interceptors': ['conftest:UpperCaseInterceptor']},
        )
        engine = MigrationEngine(config, self.source, self.target)
        engine.context.validator = None
        self.source.variables['pi-1'] = {'name': TypedValue(type='String', value='ada')}

        engine.migrate()

        created = next(iter(self.target.instances.values()))
        assert created['variables'] == {'name': 'ADA', 'legacyId': 'pi-1'}
