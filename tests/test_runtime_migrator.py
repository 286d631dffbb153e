"""Tests for the runtime process instance migrator."""

import pytest
from unittest.mock import Mock, patch
from sqlalchemy.exc import SQLAlchemyError

from camunda_migrate.api.exceptions import EngineAPIError
from camunda_migrate.api.interface import ActivatedJob, FlowNodeActivation
from camunda_migrate.migration.exceptions import (
    SKIP_REASON_PROCESS_INSTANCE_NOT_RUNNING,
    BatchFlushError,
)
from camunda_migrate.migration.runtime import RuntimeMigrator
from camunda_migrate.migration.strategy import MigratorMode
from camunda_migrate.migration.validator import RuntimeValidator
from camunda_migrate.migration.variables import (
    FILE_TYPE_UNSUPPORTED_ERROR,
    VariableInterceptor,
    VariableService,
)
from camunda_migrate.models.source import (
    HistoricActivityInstance,
    RuntimeProcessInstance,
    TypedValue,
)
from camunda_migrate.persistence.models import EntityType

from conftest import FakeTarget, activity_tree, at, bpmn

PI = EntityType.RUNTIME_PROCESS_INSTANCE


def running(instance_id, seconds, **overrides):
    data = dict(
        id=instance_id,
        process_definition_id='order:1:abc',
        process_definition_key='order',
        start_time=at(seconds),
        root_process_instance_id=instance_id,
    )
    data.update(overrides)
    return RuntimeProcessInstance(**data)


class RejectingInterceptor(VariableInterceptor):
    """Refuses every long value."""

    value_types = frozenset({'long'})

    def execute(self, context):
        raise ValueError(f'{context.name} is not allowed')


class TestRuntimeScan:
    """Test scanning, resuming and idempotence."""

    @pytest.fixture(autouse=True)
    def setup_fixtures(self, source, target, mapping_store, make_context):
        """Set up test fixtures."""
        self.source = source
        self.target = target
        self.mapping_store = mapping_store
        self.make_context = make_context
        source.add(running('a', 0), running('b', 10), running('c', 20))

    def run(self, mode=MigratorMode.MIGRATE, **settings):
        settings.setdefault('page_size', 1)
        return RuntimeMigrator(self.make_context(**settings), mode).start()

    def test_migrates_in_create_time_order(self):
        """Test instances are created oldest first across pages."""
        report = self.run()

        assert self.target.created_legacy_ids() == ['a', 'b', 'c']
        assert report.migrated == 3
        assert self.mapping_store.count_migrated(PI) == 3

    def test_second_run_writes_nothing(self):
        """Test a repeated run creates no target instances."""
        self.run()
        writes = list(self.target.writes)

        report = self.run()

        assert self.target.writes == writes
        assert report.migrated == 0
        assert report.stats[0].already_migrated == 3

    def test_resume_window_finds_late_instance(self):
        """Test an instance created behind the cursor is still picked up."""
        self.run()
        self.source.add(running('d', 15))

        report = self.run()

        assert self.target.created_legacy_ids() == ['a', 'b', 'c', 'd']
        assert report.migrated == 1
        assert report.stats[0].already_migrated == 3

    def test_zero_window_continues_after_cursor(self):
        """Test a zero window only reads entities after the cursor."""
        self.run(resume_window_seconds=0)
        self.source.add(running('d', 15), running('e', 30))

        self.run(resume_window_seconds=0)

        assert self.target.created_legacy_ids() == ['a', 'b', 'c', 'e']

    def test_full_scan_ignores_cursor(self):
        """Test a full scan visits every source entity."""
        self.run(resume_window_seconds=0)
        self.source.add(running('d', 15))

        report = self.run(resume_window_seconds=0, full_scan=True)

        assert 'd' in self.target.created_legacy_ids()
        assert report.stats[0].already_migrated == 3

    def test_sub_instances_and_finished_instances_are_ignored(self):
        """Test only running root instances are scanned."""
        self.source.add(
            running('sub', 5, super_process_instance_id='a', root_process_instance_id='a'),
            running('done', 6, end_time=at(7), state='COMPLETED'),
        )

        self.run()

        assert self.target.created_legacy_ids() == ['a', 'b', 'c']

    def test_instance_finished_before_migration(self):
        """Test an instance that ended meanwhile is left without a record."""
        finished = running('a', 0, end_time=at(99))
        self.source.get_single = Mock(return_value=finished)

        report = self.run()

        assert self.target.instances == {}
        assert report.migrated == 0
        assert report.skipped == 0
        assert not self.mapping_store.exists('a', PI)

    def test_unsupported_variable_skips_instance(self):
        """Test an instance with an unsupported variable is skipped."""
        self.source.variables['b'] = {'doc': TypedValue(type='File')}

        report = self.run()

        assert self.target.created_legacy_ids() == ['a', 'c']
        assert report.skipped == 1
        assert self.mapping_store.find('b', PI).skip_reason == FILE_TYPE_UNSUPPORTED_ERROR

    def test_variables_are_passed(self):
        """Test global variables and legacyId reach the target."""
        self.source.variables['a'] = {'amount': TypedValue(type='Long', value=10)}

        self.run()

        created = next(iter(self.target.instances.values()))
        assert created['variables'] == {'amount': 10, 'legacyId': 'a'}

    def test_equal_create_times_and_late_arrival(self):
        """Test ties on create time are broken by id and a late tie is found on the next run."""
        self.source.entities.clear()
        self.source.add(running('a', 100), running('b', 100), running('c', 150))

        self.run()
        assert self.target.created_legacy_ids() == ['a', 'b', 'c']

        self.source.add(running('d', 100))
        report = self.run()

        assert self.target.created_legacy_ids() == ['a', 'b', 'c', 'd']
        assert report.migrated == 1
        assert report.stats[0].already_migrated == 3

    def test_interceptor_failure_skips_instance(self):
        """Test a failing variable interceptor turns the instance into a skip."""
        self.source.variables['b'] = {'amount': TypedValue(type='Long', value=10)}
        service = VariableService(self.source, [RejectingInterceptor()])

        report = self.run(variable_service=service)

        assert self.target.created_legacy_ids() == ['a', 'c']
        assert report.skipped == 1
        assert 'RejectingInterceptor' in self.mapping_store.find('b', PI).skip_reason


class TestRuntimeSkipAndRetry:
    """Test validation failures and their retry."""

    @pytest.fixture(autouse=True)
    def setup_fixtures(self, source, target, mapping_store, make_context):
        """Set up test fixtures."""
        self.source = source
        self.target = target
        self.mapping_store = mapping_store
        self.make_context = make_context

        source.add(running('a', 0))
        source.definition_xml['order:1:abc'] = bpmn()
        source.trees['a'] = activity_tree('a', ('act-1', 'approve'))

    def run(self, mode=MigratorMode.MIGRATE):
        validator = RuntimeValidator(self.source, self.target)
        return RuntimeMigrator(self.make_context(validator=validator), mode).start()

    def test_skip_then_retry_until_migrated(self):
        """Test the skip reason follows each retry until the instance migrates."""
        report = self.run()
        assert report.skipped == 1
        assert 'No C8 deployment found' in self.mapping_store.find('a', PI).skip_reason

        self.target.deploy_process('order', bpmn(start_listener=None))
        report = self.run(MigratorMode.RETRY_SKIPPED)
        assert report.skipped == 1
        assert 'No execution listener' in self.mapping_store.find('a', PI).skip_reason
        assert self.target.instances == {}

        self.target.deploy_process('order', bpmn())
        report = self.run(MigratorMode.RETRY_SKIPPED)

        assert report.migrated == 1
        record = self.mapping_store.find('a', PI)
        assert record.target_key is not None
        assert record.skip_reason is None
        assert self.target.created_legacy_ids() == ['a']

    def test_plain_run_does_not_retry(self):
        """Test a MIGRATE run passes over skipped instances."""
        self.run()
        self.target.deploy_process('order', bpmn())

        report = self.run()

        assert report.stats[0].already_migrated == 1
        assert self.target.instances == {}

    def test_retry_of_vanished_source_entity(self):
        """Test a skipped instance that no longer exists keeps its record."""
        self.run()
        self.source.remove(PI, 'a')

        report = self.run(MigratorMode.RETRY_SKIPPED)

        assert report.skipped == 1
        assert self.mapping_store.find('a', PI).skip_reason == 'Source entity no longer exists'

    def test_retry_of_finished_instance_updates_reason(self):
        """Test a skipped instance that finished on the source gets a new reason."""
        self.mapping_store.insert('a', None, None, PI, skip_reason='R1')
        self.mapping_store.flush_batch()
        self.source.remove(PI, 'a')
        self.source.add(running('a', 0, end_time=at(50), state='COMPLETED'))

        report = self.run(MigratorMode.RETRY_SKIPPED)

        assert report.skipped == 1
        record = self.mapping_store.find('a', PI)
        assert record.target_key is None
        assert record.skip_reason == SKIP_REASON_PROCESS_INSTANCE_NOT_RUNNING
        assert self.target.instances == {}

    def test_parsed_models_are_dropped_after_run(self):
        """Test the validator's model caches are emptied once a run ends."""
        self.target.deploy_process('order', bpmn())
        validator = RuntimeValidator(self.source, self.target)

        RuntimeMigrator(self.make_context(validator=validator)).start()

        assert self.target.created_legacy_ids() == ['a']
        assert validator._source_models == {}
        assert validator._target_models == {}

    def test_list_modes_are_read_only(self):
        """Test listing modes write nothing."""
        self.run()
        writes = list(self.target.writes)

        skipped = self.run(MigratorMode.LIST_SKIPPED)
        mappings = self.run(MigratorMode.LIST_MAPPINGS)

        assert [r.source_id for r in skipped.records[PI]] == ['a']
        assert mappings.records[PI] == []
        assert self.target.writes == writes


class TestRuntimeCompensation:
    """Test compensation when mapping records cannot be stored."""

    def test_failed_flush_cancels_created_instances(self, source, target, mapping_store, make_context):
        """Test created target instances are canceled when their mappings are lost."""
        source.add(running('a', 0), running('b', 10))
        migrator = RuntimeMigrator(make_context())

        with patch.object(mapping_store, '_write_batch', side_effect=SQLAlchemyError('down')):
            with pytest.raises(BatchFlushError):
                migrator.start()

        assert sorted(target.canceled) == sorted(target.instances)
        assert len(target.canceled) == 2
        assert not mapping_store.exists('a', PI)

    def test_compensation_failure_is_logged(self, source, target, mapping_store, make_context):
        """Test a failing cancel does not stop the remaining compensation."""
        source.add(running('a', 0), running('b', 10))
        calls = []

        def cancel(key):
            calls.append(key)
            if len(calls) == 1:
                raise EngineAPIError('unavailable')

        target.cancel_process_instance = cancel
        migrator = RuntimeMigrator(make_context())

        with patch.object(mapping_store, '_write_batch', side_effect=SQLAlchemyError('down')):
            with pytest.raises(BatchFlushError):
                migrator.start()

        assert len(calls) == 2


class TestMigratorJobs:
    """Test moving parked target instances to their active elements."""

    @pytest.fixture(autouse=True)
    def setup_fixtures(self, source, make_context):
        """Set up test fixtures."""
        self.source = source
        self.target = FakeTarget(park_instances=True)
        self.make_context = make_context

    def run(self):
        return RuntimeMigrator(self.make_context(target=self.target)).start()

    def test_instance_is_moved_to_active_elements(self):
        """Test the migrator job is replaced by the source's active elements."""
        self.source.add(running('a', 0))
        self.source.trees['a'] = activity_tree('a', ('act-1', 'approve'))
        self.source.local_variables['act-1'] = {'note': TypedValue(type='String', value='hi')}

        self.run()

        assert self.target.jobs == []
        assert len(self.target.modifications) == 1
        instance_key, _, activations = self.target.modifications[0]
        assert instance_key in self.target.instances
        assert activations == [FlowNodeActivation(element_id='approve', variables={'note': 'hi'})]

    def test_call_activity_passes_called_instance(self):
        """Test a call activity gets the called instance id as legacyId."""
        self.source.add(
            running('a', 0),
            HistoricActivityInstance(
                id='call-1',
                activity_id='call',
                activity_type='callActivity',
                process_instance_id='a',
                called_process_instance_id='sub-1',
            ),
        )
        self.source.trees['a'] = activity_tree('a', ('call-1', 'call', 'callActivity'))

        self.run()

        _, _, activations = self.target.modifications[0]
        assert activations == [
            FlowNodeActivation(element_id='call', variables={'legacyId': 'sub-1'})
        ]

    def test_externally_started_instance_is_left_alone(self):
        """Test jobs without legacyId are not touched."""
        self.target.jobs.append(
            ActivatedJob(key=1, type='migrator', process_instance_key=2, element_instance_key=3)
        )

        self.run()

        assert self.target.modifications == []

    def test_missing_source_tree(self):
        """Test instances whose source tree is gone are not modified."""
        self.source.add(running('a', 0))

        self.run()

        assert self.target.modifications == []
        assert self.target.created_legacy_ids() == ['a']
