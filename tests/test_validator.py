"""Tests for runtime instance validation."""

import pytest

from camunda_migrate.migration.bpmn import BpmnModel
from camunda_migrate.migration.exceptions import ValidationError
from camunda_migrate.migration.validator import RuntimeValidator
from camunda_migrate.models.source import RuntimeProcessInstance

from conftest import FakeSource, FakeTarget, activity_tree, at, bpmn

SOURCE_DEFINITION_ID = 'order:1:abc'


def instance(instance_id='pi-1', **overrides):
    data = dict(
        id=instance_id,
        process_definition_id=SOURCE_DEFINITION_ID,
        process_definition_key='order',
        start_time=at(0),
        root_process_instance_id=instance_id,
    )
    data.update(overrides)
    return RuntimeProcessInstance(**data)


class TestRuntimeValidator:
    """Test the checks run before a process instance is migrated."""

    def setup_method(self):
        """Set up test fixtures."""
        self.source = FakeSource()
        self.target = FakeTarget()
        self.validator = RuntimeValidator(self.source, self.target, tenant_ids=['tenant-a'])

    def prepare(self, source_xml=None, target_xml=None, leaves=(('act-1', 'approve'),), **overrides):
        pi = instance(**overrides)
        self.source.add(pi)
        self.source.definition_xml[SOURCE_DEFINITION_ID] = source_xml or bpmn()
        self.source.trees[pi.id] = activity_tree(pi.id, *leaves)
        self.target.deploy_process('order', target_xml or bpmn(), pi.tenant_id)
        return pi

    def test_valid_instance(self):
        """Test a compatible instance passes."""
        self.prepare()

        self.validator.validate_process_instance_state('pi-1')

    def test_unconfigured_tenant(self):
        """Test instances of other tenants are rejected."""
        self.prepare(tenant_id='tenant-b')

        with pytest.raises(ValidationError, match=r'tenant id \[tenant-b\]'):
            self.validator.validate_process_instance_state('pi-1')

    def test_configured_tenant(self):
        """Test instances of configured tenants pass."""
        self.prepare(tenant_id='tenant-a')

        self.validator.validate_process_instance_state('pi-1')

    def test_missing_target_deployment(self):
        """Test a process that was not deployed on the target is rejected."""
        self.source.add(instance())

        with pytest.raises(ValidationError, match=r'No C8 deployment found for process ID \[order\]'):
            self.validator.validate_process_instance_state('pi-1')

    def test_missing_target_tenant_deployment(self):
        """Test the tenant is named when the deployment is missing for it."""
        self.source.add(instance(tenant_id='tenant-a'))
        self.target.deploy_process('order', bpmn(), None)

        with pytest.raises(ValidationError, match=r'and tenant \[tenant-a\]'):
            self.validator.validate_process_instance_state('pi-1')

    def test_missing_execution_listener(self):
        """Test the start event must declare the migrator listener."""
        self.prepare(target_xml=bpmn(start_listener=None))

        with pytest.raises(ValidationError, match="No execution listener of type 'migrator'"):
            self.validator.validate_process_instance_state('pi-1')

    def test_listener_check_disabled(self):
        """Test the listener check can be turned off."""
        self.validator = RuntimeValidator(self.source, self.target, validation_job_type=None)
        self.prepare(target_xml=bpmn(start_listener=None))

        self.validator.validate_process_instance_state('pi-1')

    def test_no_none_start_event(self):
        """Test a target process needs a none start event."""
        xml = bpmn().replace(
            '<bpmn:startEvent id="start">',
            '<bpmn:startEvent id="start"><bpmn:timerEventDefinition/>',
        )
        self.prepare(target_xml=xml)

        with pytest.raises(ValidationError, match='should have a None Start Event'):
            self.validator.validate_process_instance_state('pi-1')

    def test_active_element_missing_on_target(self):
        """Test every active element must exist in the target model."""
        self.prepare(leaves=[('act-1', 'review')], source_xml=bpmn(body='<bpmn:userTask id="review"/>'))

        with pytest.raises(ValidationError, match=r'Flow node with id \[review\] doesn\'t exist'):
            self.validator.validate_process_instance_state('pi-1')

    def test_multi_instance_is_rejected(self):
        """Test active multi-instance bodies are rejected."""
        source_xml = bpmn(
            body='<bpmn:userTask id="review">'
            '<bpmn:multiInstanceLoopCharacteristics/></bpmn:userTask>'
        )
        self.prepare(
            source_xml=source_xml,
            target_xml=bpmn(body='<bpmn:userTask id="review"/>'),
            leaves=[('act-1', 'review#multiInstanceBody')],
        )

        with pytest.raises(ValidationError, match=r'multi-instance .* id \[review\]'):
            self.validator.validate_process_instance_state('pi-1')

    def test_active_parallel_gateway_is_rejected(self):
        """Test a joining parallel gateway cannot be migrated."""
        body = '<bpmn:parallelGateway id="join"/>'
        self.prepare(
            source_xml=bpmn(body=body),
            target_xml=bpmn(body=body),
            leaves=[('act-1', 'join', 'parallelGateway')],
        )

        with pytest.raises(ValidationError, match=r'joining parallel gateway with id \[join\]'):
            self.validator.validate_process_instance_state('pi-1')

    def test_call_activity_dropping_legacy_id(self):
        """Test call activities must pass legacyId to the called process."""
        call = (
            '<bpmn:callActivity id="call"><bpmn:extensionElements>'
            '<zeebe:calledElement processId="sub" propagateAllParentVariables="false"/>'
            '</bpmn:extensionElements></bpmn:callActivity>'
        )
        self.prepare(
            source_xml=bpmn(body='<bpmn:callActivity id="call"/>'),
            target_xml=bpmn(body=call),
            leaves=[('act-1', 'call', 'callActivity')],
        )

        with pytest.raises(ValidationError, match='propagateAllParentVariables=false'):
            self.validator.validate_process_instance_state('pi-1')

    def test_call_activity_with_legacy_id_mapping(self):
        """Test an explicit legacyId input mapping is accepted."""
        call = (
            '<bpmn:callActivity id="call"><bpmn:extensionElements>'
            '<zeebe:calledElement processId="sub" propagateAllParentVariables="false"/>'
            '<zeebe:ioMapping><zeebe:input source="=legacyId" target="legacyId"/></zeebe:ioMapping>'
            '</bpmn:extensionElements></bpmn:callActivity>'
        )
        self.prepare(
            source_xml=bpmn(body='<bpmn:callActivity id="call"/>'),
            target_xml=bpmn(body=call),
            leaves=[('act-1', 'call', 'callActivity')],
        )

        self.validator.validate_process_instance_state('pi-1')

    def test_child_instances_are_validated(self):
        """Test running sub-process instances of the root are checked too."""
        self.prepare()
        self.source.add(
            instance(
                'sub-1',
                process_definition_key='sub',
                super_process_instance_id='pi-1',
                root_process_instance_id='pi-1',
            )
        )

        with pytest.raises(ValidationError, match=r'process ID \[sub\]'):
            self.validator.validate_process_instance_state('pi-1')

    def test_missing_source_model(self):
        """Test a missing source definition fails validation."""
        self.prepare()
        del self.source.definition_xml[SOURCE_DEFINITION_ID]

        with pytest.raises(ValidationError, match='No C7 process definition found'):
            self.validator.validate_process_instance_state('pi-1')

    def test_finished_instance_without_tree(self):
        """Test instances without an activity tree only get definition checks."""
        self.prepare()
        del self.source.trees['pi-1']

        self.validator.validate_process_instance_state('pi-1')


class TestBpmnModel:
    """Test BPMN inspection helpers."""

    def test_lookups(self):
        """Test elements are found by id."""
        model = BpmnModel(bpmn())

        assert model.has_element('approve')
        assert model.element_type('approve') == 'userTask'
        assert model.has_none_start_event()
        assert model.execution_listener_types(model.process_start_events()[0]) == ['migrator']

    def test_invalid_xml(self):
        """Test unparsable XML is a validation error."""
        with pytest.raises(ValidationError, match='Failed to parse BPMN model'):
            BpmnModel('<not-closed>')
