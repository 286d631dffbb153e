"""Tests for the conversion pipeline and built-in transformers."""

import pytest
from datetime import datetime

from camunda_migrate.conversion.context import ConversionContext
from camunda_migrate.conversion.registry import (
    EntityConversionService,
    EntityTransformer,
    TransformerRegistry,
    load_transformer,
)
from camunda_migrate.conversion.transformers import (
    HistoryCleanupTransformer,
    create_registry,
)
from camunda_migrate.migration.exceptions import ConversionError, UnsupportedVariableTypeError
from camunda_migrate.models.source import (
    HistoricActivityInstance,
    HistoricDecisionInstance,
    HistoricProcessInstance,
    HistoricVariableInstance,
    RuntimeProcessInstance,
    TypedValue,
)
from camunda_migrate.models.target import (
    DEFAULT_TENANT,
    DecisionInstanceRecord,
    FlowNodeRecord,
    FlowNodeState,
    ModelBuilder,
    ProcessInstanceRecord,
    ProcessInstanceStart,
    ProcessInstanceState,
    VariableRecord,
)
from camunda_migrate.persistence.models import EntityType

from conftest import at


class RecordingTransformer(EntityTransformer):
    """Appends its name to the process instance business key."""

    types = frozenset({EntityType.HISTORY_PROCESS_INSTANCE})

    def __init__(self, label, priority):
        self.label = label
        self.priority = priority

    @property
    def name(self):
        return self.label

    def execute(self, context):
        current = context.builder.business_key or ''
        context.builder.business_key = current + self.label


class FailingTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_PROCESS_INSTANCE})

    def execute(self, context):
        raise KeyError('boom')


def process_instance(**overrides):
    data = dict(
        id='pi-1',
        process_definition_id='order:1:abc',
        process_definition_key='order',
        start_time=at(0),
        state='COMPLETED',
        end_time=at(60),
    )
    data.update(overrides)
    return HistoricProcessInstance(**data)


class TestTransformerRegistry:
    """Test transformer ordering and lookup."""

    def test_priority_then_registration_order(self):
        """Test lower priorities run first, ties keep registration order."""
        registry = TransformerRegistry(
            [
                RecordingTransformer('c', 20),
                RecordingTransformer('a', 10),
                RecordingTransformer('b', 20),
            ]
        )
        service = EntityConversionService(registry)
        context = ConversionContext(process_instance(), ModelBuilder(ProcessInstanceRecord))

        service.run(context)

        assert context.builder.business_key == 'acb'

    def test_for_type_filters(self):
        """Test only transformers declaring the type are returned."""
        registry = create_registry()

        names = [t.name for t in registry.for_type(EntityType.HISTORY_FLOW_NODE)]

        assert names == ['FlowNodeTransformer', 'HistoryCleanupTransformer']

    def test_register_requires_types(self):
        """Test a transformer without types is rejected."""
        transformer = RecordingTransformer('x', 1)
        transformer.types = frozenset()

        with pytest.raises(ValueError):
            TransformerRegistry().register(transformer)

    def test_unregister(self):
        """Test a transformer can be removed by name."""
        registry = create_registry()

        assert registry.unregister('AutoCancelTransformer') is True
        assert 'AutoCancelTransformer' not in registry.names()
        assert registry.unregister('AutoCancelTransformer') is False

    def test_disabled_transformers(self):
        """Test built-in transformers can be left out."""
        registry = create_registry(disabled=['HistoryCleanupTransformer'])

        assert 'HistoryCleanupTransformer' not in registry.names()

    def test_load_transformer(self):
        """Test transformers are loaded from module:Class paths."""
        transformer = load_transformer(
            'camunda_migrate.conversion.transformers:HistoryCleanupTransformer'
        )

        assert isinstance(transformer, HistoryCleanupTransformer)

    def test_load_transformer_rejects_other_classes(self):
        """Test only transformer classes can be loaded."""
        with pytest.raises(TypeError):
            load_transformer('camunda_migrate.models.target:ModelBuilder')


class TestEntityConversionService:
    """Test pipeline execution and error wrapping."""

    def test_failure_is_wrapped(self):
        """Test transformer exceptions become conversion errors."""
        service = EntityConversionService(TransformerRegistry([FailingTransformer()]))
        context = ConversionContext(process_instance(), ModelBuilder(ProcessInstanceRecord))

        with pytest.raises(ConversionError) as exc_info:
            service.run(context)

        assert exc_info.value.transformer == 'FailingTransformer'
        assert exc_info.value.entity_id == 'pi-1'

    def test_no_transformer_registered(self):
        """Test converting a type without transformers fails."""
        service = EntityConversionService(TransformerRegistry())
        context = ConversionContext(process_instance(), ModelBuilder(ProcessInstanceRecord))

        with pytest.raises(ConversionError):
            service.convert(context)

    def test_invalid_record_is_a_conversion_error(self):
        """Test building a record with missing required fields fails."""
        service = EntityConversionService(create_registry())
        context = ConversionContext(process_instance(), ModelBuilder(ProcessInstanceRecord))

        with pytest.raises(ConversionError) as exc_info:
            service.convert(context)

        assert exc_info.value.transformer == 'build'

    def test_builder_rejects_unknown_fields(self):
        """Test builders only accept declared record fields."""
        builder = ModelBuilder(FlowNodeRecord)

        with pytest.raises(AttributeError):
            builder.unknown = 1


class TestBuiltinTransformers:
    """Test the conversion of each entity kind."""

    def setup_method(self):
        """Set up test fixtures."""
        self.service = EntityConversionService(create_registry())

    def convert(self, entity, record_cls, lookups=None, **fields):
        builder = ModelBuilder(record_cls, **{record_cls.KEY_FIELD: 1}, **fields)
        return self.service.convert(ConversionContext(entity, builder, lookups))

    def test_completed_process_instance(self):
        """Test a completed instance keeps its dates and gets a cleanup date."""
        record = self.convert(
            process_instance(), ProcessInstanceRecord, {'cleanup_ttl_days': 30}
        )

        assert record.state == ProcessInstanceState.COMPLETED
        assert record.process_definition_id == 'order'
        assert record.tenant_id == DEFAULT_TENANT
        assert record.history_cleanup_date == datetime(2024, 3, 1, 10, 1, 0)

    def test_running_process_instance_is_canceled(self):
        """Test a running instance is closed at migration time."""
        now = datetime(2024, 6, 1)
        record = self.convert(
            process_instance(state='ACTIVE', end_time=None),
            ProcessInstanceRecord,
            {'now': now},
        )

        assert record.state == ProcessInstanceState.CANCELED
        assert record.end_date == now

    def test_removal_time_wins_over_cleanup_ttl(self):
        """Test the source removal time is kept as cleanup date."""
        removal = datetime(2025, 1, 1)
        record = self.convert(
            process_instance(removal_time=removal),
            ProcessInstanceRecord,
            {'cleanup_ttl_days': 30},
        )

        assert record.history_cleanup_date == removal

    def test_unknown_process_instance_state(self):
        """Test unknown states fail the conversion."""
        with pytest.raises(ConversionError):
            self.convert(process_instance(state='WEIRD'), ProcessInstanceRecord)

    def test_flow_node(self):
        """Test flow node type and state mapping."""
        node = HistoricActivityInstance(
            id='task-1',
            activity_id='approve',
            activity_type='userTask',
            process_definition_key='order',
            start_time=at(0),
            canceled=True,
            end_time=at(5),
            tenant_id='tenant-a',
        )
        record = self.convert(node, FlowNodeRecord)

        assert record.type == 'USER_TASK'
        assert record.state == FlowNodeState.TERMINATED
        assert record.tenant_id == 'tenant-a'

    def test_unknown_flow_node_type(self):
        """Test unknown activity types fail the conversion."""
        node = HistoricActivityInstance(id='n', activity_id='x', activity_type='mystery')

        with pytest.raises(ConversionError):
            self.convert(node, FlowNodeRecord)

    def test_variable_value_is_json(self):
        """Test history variable values are stored as JSON text."""
        variable = HistoricVariableInstance(
            id='v-1', name='amount', type='Integer', value=12, create_time=at(0)
        )
        record = self.convert(variable, VariableRecord)

        assert record.name == 'amount'
        assert record.value == '12'

    def test_unsupported_variable_passes_through(self):
        """Test unsupported variable types are not wrapped."""
        variable = HistoricVariableInstance(id='v-1', name='blob', type='Bytes', value='AAE=')

        with pytest.raises(UnsupportedVariableTypeError):
            self.convert(variable, VariableRecord)

    def test_decision_instance_id(self):
        """Test the decision instance id combines key and source id."""
        decision = HistoricDecisionInstance(
            id='di-1',
            decision_definition_id='dd-1',
            decision_definition_key='approve',
            process_definition_key='order',
            evaluation_time=at(0),
            collect_result_value=3.0,
        )
        record = self.convert(decision, DecisionInstanceRecord)

        assert record.decision_instance_id == '1-di-1'
        assert record.result == '3.0'

    def test_decision_instance_needs_key(self):
        """Test decision instances need their key before conversion."""
        decision = HistoricDecisionInstance(id='di-1', decision_definition_id='dd-1')
        builder = ModelBuilder(DecisionInstanceRecord)

        with pytest.raises(ConversionError):
            self.service.convert(ConversionContext(decision, builder))

    def test_process_instance_start(self):
        """Test the start command carries the variables and legacyId."""
        instance = RuntimeProcessInstance(
            id='pi-7',
            process_definition_id='order:1:abc',
            process_definition_key='order',
            tenant_id='tenant-a',
        )
        builder = ModelBuilder(ProcessInstanceStart)
        variables = {'payload': {'a': 1}}

        command = self.service.convert(
            ConversionContext(instance, builder, {'variables': variables})
        )

        assert command.bpmn_process_id == 'order'
        assert command.tenant_id == 'tenant-a'
        assert command.variables == {'payload': {'a': 1}, 'legacyId': 'pi-7'}
