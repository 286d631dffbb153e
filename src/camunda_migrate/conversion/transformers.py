"""Built-in transformers for every migrated entity type."""

from typing import Iterable, List, Optional

from ..migration.variables import LEGACY_ID_VAR_NAME, VariableService
from ..models.target import (
    DEFAULT_TENANT,
    EvaluatedInput,
    EvaluatedOutput,
    FlowNodeState,
    IncidentState,
    JobState,
    ProcessInstanceState,
    UserTaskState,
)
from ..persistence.models import EntityType
from ..utils.dates import add_days
from .authorization import map_authorization
from .context import ConversionContext
from .registry import EntityTransformer, TransformerRegistry, load_transformer


def tenant_or_default(tenant_id: Optional[str]) -> str:
    return tenant_id or DEFAULT_TENANT


class ProcessDefinitionTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_PROCESS_DEFINITION})
    priority = 10

    def execute(self, context: ConversionContext) -> None:
        definition = context.entity
        context.builder.update(
            process_definition_id=definition.key,
            name=definition.name,
            version=definition.version,
            version_tag=definition.version_tag,
            resource_name=definition.resource,
            bpmn_xml=context.lookup('resource_xml'),
            tenant_id=tenant_or_default(definition.tenant_id),
        )


class DecisionRequirementsTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_DECISION_REQUIREMENT})
    priority = 11

    def execute(self, context: ConversionContext) -> None:
        drd = context.entity
        context.builder.update(
            decision_requirements_id=drd.key,
            name=drd.name,
            version=drd.version,
            resource_name=drd.resource,
            xml=context.lookup('resource_xml'),
            tenant_id=tenant_or_default(drd.tenant_id),
        )


class DecisionDefinitionTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_DECISION_DEFINITION})
    priority = 12

    def execute(self, context: ConversionContext) -> None:
        decision = context.entity
        context.builder.update(
            decision_definition_id=decision.key,
            name=decision.name,
            version=decision.version,
            decision_requirements_id=decision.decision_requirements_definition_key,
            tenant_id=tenant_or_default(decision.tenant_id),
        )


class ProcessInstanceTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_PROCESS_INSTANCE})
    priority = 20

    STATES = {
        'ACTIVE': ProcessInstanceState.ACTIVE,
        'SUSPENDED': ProcessInstanceState.ACTIVE,
        'COMPLETED': ProcessInstanceState.COMPLETED,
        'EXTERNALLY_TERMINATED': ProcessInstanceState.CANCELED,
        'INTERNALLY_TERMINATED': ProcessInstanceState.CANCELED,
    }

    def execute(self, context: ConversionContext) -> None:
        instance = context.entity
        if instance.state not in self.STATES:
            raise ValueError(f'Unknown state: {instance.state}')

        context.builder.update(
            process_definition_id=instance.process_definition_key,
            version=instance.process_definition_version,
            start_date=instance.start_time,
            end_date=instance.end_time,
            state=self.STATES[instance.state],
            business_key=instance.business_key,
            tenant_id=tenant_or_default(instance.tenant_id),
            history_cleanup_date=instance.removal_time,
        )


class AutoCancelTransformer(EntityTransformer):
    """Close history of instances that are still running on the source.

    The running counterpart lives on in Camunda 8 as a new instance, so the
    history copy is marked canceled at migration time.
    """

    types = frozenset({EntityType.HISTORY_PROCESS_INSTANCE})
    priority = 21

    def execute(self, context: ConversionContext) -> None:
        builder = context.builder
        if builder.state == ProcessInstanceState.ACTIVE:
            builder.state = ProcessInstanceState.CANCELED
            builder.end_date = context.lookup('now')


class FlowNodeTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_FLOW_NODE})
    priority = 30

    TYPES = {
        'startEvent': 'START_EVENT',
        'startTimerEvent': 'START_EVENT',
        'messageStartEvent': 'START_EVENT',
        'errorStartEvent': 'START_EVENT',
        'signalStartEvent': 'START_EVENT',
        'compensationStartEvent': 'START_EVENT',
        'noneEndEvent': 'END_EVENT',
        'errorEndEvent': 'END_EVENT',
        'cancelEndEvent': 'END_EVENT',
        'terminateEndEvent': 'END_EVENT',
        'messageEndEvent': 'END_EVENT',
        'signalEndEvent': 'END_EVENT',
        'serviceTask': 'SERVICE_TASK',
        'sendTask': 'SEND_TASK',
        'userTask': 'USER_TASK',
        'scriptTask': 'SCRIPT_TASK',
        'businessRuleTask': 'BUSINESS_RULE_TASK',
        'manualTask': 'MANUAL_TASK',
        'receiveTask': 'RECEIVE_TASK',
        'task': 'TASK',
        'exclusiveGateway': 'EXCLUSIVE_GATEWAY',
        'parallelGateway': 'PARALLEL_GATEWAY',
        'inclusiveGateway': 'INCLUSIVE_GATEWAY',
        'eventBasedGateway': 'EVENT_BASED_GATEWAY',
        'intermediateTimer': 'INTERMEDIATE_CATCH_EVENT',
        'intermediateMessageCatch': 'INTERMEDIATE_CATCH_EVENT',
        'intermediateSignalCatch': 'INTERMEDIATE_CATCH_EVENT',
        'intermediateConditional': 'INTERMEDIATE_CATCH_EVENT',
        'intermediateNoneThrowEvent': 'INTERMEDIATE_THROW_EVENT',
        'intermediateMessageThrowEvent': 'INTERMEDIATE_THROW_EVENT',
        'intermediateSignalThrow': 'INTERMEDIATE_THROW_EVENT',
        'intermediateCompensationThrowEvent': 'INTERMEDIATE_THROW_EVENT',
        'boundaryTimer': 'BOUNDARY_EVENT',
        'boundaryMessage': 'BOUNDARY_EVENT',
        'boundarySignal': 'BOUNDARY_EVENT',
        'boundaryError': 'BOUNDARY_EVENT',
        'boundaryEscalation': 'BOUNDARY_EVENT',
        'boundaryConditional': 'BOUNDARY_EVENT',
        'boundaryCompensation': 'BOUNDARY_EVENT',
        'callActivity': 'CALL_ACTIVITY',
        'subProcess': 'SUB_PROCESS',
        'adHocSubProcess': 'AD_HOC_SUB_PROCESS',
        'transaction': 'SUB_PROCESS',
        'multiInstanceBody': 'MULTI_INSTANCE_BODY',
    }

    def execute(self, context: ConversionContext) -> None:
        node = context.entity
        flow_node_type = self.TYPES.get(node.activity_type)
        if flow_node_type is None:
            raise ValueError(f'Unknown type: {node.activity_type}')

        if node.canceled:
            state = FlowNodeState.TERMINATED
        elif node.end_time is not None:
            state = FlowNodeState.COMPLETED
        else:
            state = FlowNodeState.ACTIVE

        context.builder.update(
            flow_node_id=node.activity_id,
            flow_node_name=node.activity_name,
            type=flow_node_type,
            state=state,
            process_definition_id=node.process_definition_key,
            start_date=node.start_time,
            end_date=node.end_time,
            tenant_id=tenant_or_default(node.tenant_id),
            history_cleanup_date=node.removal_time,
        )


class UserTaskTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_USER_TASK})
    priority = 40

    STATES = {
        'Init': UserTaskState.CREATED,
        'Created': UserTaskState.CREATED,
        'Updated': UserTaskState.CREATED,
        'Completed': UserTaskState.COMPLETED,
        'Deleted': UserTaskState.CANCELED,
    }

    def execute(self, context: ConversionContext) -> None:
        task = context.entity
        if task.task_state is None:
            state = UserTaskState.COMPLETED if task.end_time else UserTaskState.CREATED
        elif task.task_state in self.STATES:
            state = self.STATES[task.task_state]
        else:
            raise ValueError(f'Unknown state: {task.task_state}')

        context.builder.update(
            element_id=task.task_definition_key,
            name=task.name,
            assignee=task.assignee,
            priority=task.priority,
            state=state,
            process_definition_id=task.process_definition_key,
            creation_date=task.start_time,
            completion_date=task.end_time,
            due_date=task.due,
            follow_up_date=task.follow_up,
            tenant_id=tenant_or_default(task.tenant_id),
            history_cleanup_date=task.removal_time,
        )


class VariableTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_VARIABLE})
    priority = 50

    def __init__(self, variable_service: Optional[VariableService] = None):
        self.variable_service = variable_service or VariableService()

    def execute(self, context: ConversionContext) -> None:
        variable = context.entity
        context.builder.update(
            name=variable.name,
            value=self.variable_service.convert_history_value(
                variable.name, variable.typed_value
            ),
            process_definition_id=variable.process_definition_key,
            tenant_id=tenant_or_default(variable.tenant_id),
            history_cleanup_date=variable.removal_time,
        )


class IncidentTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_INCIDENT})
    priority = 60

    ERROR_TYPES = {
        'failedJob': 'JOB_NO_RETRIES',
        'failedExternalTask': 'JOB_NO_RETRIES',
    }

    def execute(self, context: ConversionContext) -> None:
        incident = context.entity
        context.builder.update(
            flow_node_id=incident.activity_id,
            error_type=self.ERROR_TYPES.get(incident.incident_type, 'UNKNOWN'),
            error_message=incident.incident_message,
            state=IncidentState.ACTIVE if incident.open else IncidentState.RESOLVED,
            creation_date=incident.create_time,
            process_definition_id=incident.process_definition_key,
            tenant_id=tenant_or_default(incident.tenant_id),
            history_cleanup_date=incident.removal_time,
        )


class JobTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_JOB})
    priority = 70

    def execute(self, context: ConversionContext) -> None:
        log = context.entity
        if log.success_log:
            state = JobState.COMPLETED
        elif log.deletion_log:
            state = JobState.CANCELED
        elif log.failure_log:
            state = JobState.FAILED
        else:
            state = JobState.CREATED

        context.builder.update(
            type=log.job_definition_type,
            state=state,
            retries=log.job_retries,
            error_message=log.job_exception_message,
            element_id=log.activity_id,
            process_definition_id=log.process_definition_key,
            end_time=log.timestamp,
            tenant_id=tenant_or_default(log.tenant_id),
            history_cleanup_date=log.removal_time,
        )


class ExternalTaskTransformer(EntityTransformer):
    """External task log entries become job records of their topic."""

    types = frozenset({EntityType.HISTORY_EXTERNAL_TASK})
    priority = 75

    def execute(self, context: ConversionContext) -> None:
        log = context.entity
        if log.creation_log:
            state = JobState.CREATED
        elif log.failure_log:
            state = JobState.FAILED
        elif log.success_log:
            state = JobState.COMPLETED
        else:
            state = JobState.CANCELED

        context.builder.update(
            type=log.topic_name,
            worker=log.worker_id,
            state=state,
            retries=log.retries,
            error_message=log.error_message,
            element_id=log.activity_id,
            process_definition_id=log.process_definition_key,
            end_time=None if log.creation_log else log.timestamp,
            tenant_id=tenant_or_default(log.tenant_id),
            history_cleanup_date=log.removal_time,
        )


class AuditLogTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_AUDIT_LOG})
    priority = 80

    def execute(self, context: ConversionContext) -> None:
        entry = context.entity
        details = {}
        if entry.property_name:
            details = {
                'property': entry.property_name,
                'previous_value': entry.org_value,
                'new_value': entry.new_value,
            }

        context.builder.update(
            operation_type=entry.operation_type.upper(),
            entity_type=entry.entity_type.upper() if entry.entity_type else None,
            category=entry.category,
            actor_id=entry.user_id,
            timestamp=entry.timestamp,
            annotation=entry.annotation,
            details=details,
            tenant_id=tenant_or_default(entry.tenant_id),
            history_cleanup_date=entry.removal_time,
        )


class DecisionInstanceTransformer(EntityTransformer):
    types = frozenset({EntityType.HISTORY_DECISION_INSTANCE})
    priority = 90

    def execute(self, context: ConversionContext) -> None:
        decision = context.entity
        builder = context.builder
        if builder.decision_instance_key is None:
            raise ValueError('decision_instance_key must be assigned before conversion')

        result = decision.collect_result_value
        builder.update(
            decision_instance_id=f'{builder.decision_instance_key}-{decision.id}',
            evaluation_date=decision.evaluation_time,
            result=str(result) if result is not None else None,
            process_definition_id=decision.process_definition_key,
            decision_definition_id=decision.decision_definition_key,
            decision_requirements_id=decision.decision_requirements_definition_key,
            evaluated_inputs=[
                EvaluatedInput(
                    input_id=i.id,
                    input_name=i.clause_name,
                    input_value=None if i.value is None else str(i.value),
                )
                for i in decision.inputs
            ],
            evaluated_outputs=[
                EvaluatedOutput(
                    output_id=o.id,
                    output_name=o.clause_name,
                    output_value=None if o.value is None else str(o.value),
                    rule_id=o.rule_id,
                    rule_index=o.rule_order,
                )
                for o in decision.outputs
            ],
            tenant_id=tenant_or_default(decision.tenant_id),
            history_cleanup_date=decision.removal_time,
        )


class HistoryCleanupTransformer(EntityTransformer):
    """Derive a cleanup date from the end of a record when the source has none."""

    types = frozenset(EntityType.history_types())
    priority = 99

    END_FIELDS = ('end_date', 'completion_date', 'end_time', 'evaluation_date', 'timestamp')

    def execute(self, context: ConversionContext) -> None:
        builder = context.builder
        if builder.history_cleanup_date is not None:
            return
        ttl_days = context.lookup('cleanup_ttl_days')
        for field in self.END_FIELDS:
            end = getattr(builder, field) if builder.is_set(field) else None
            if end is not None:
                builder.history_cleanup_date = add_days(end, ttl_days)
                return


class ProcessInstanceStartTransformer(EntityTransformer):
    """Prepare the create command for a running instance.

    ``variables`` in the lookups are already converted target values.
    """

    types = frozenset({EntityType.RUNTIME_PROCESS_INSTANCE})
    priority = 100

    def execute(self, context: ConversionContext) -> None:
        instance = context.entity
        variables = dict(context.lookup('variables', {}))
        variables[LEGACY_ID_VAR_NAME] = instance.id

        context.builder.update(
            bpmn_process_id=instance.process_definition_key,
            tenant_id=tenant_or_default(instance.tenant_id),
            variables=variables,
        )


class TenantTransformer(EntityTransformer):
    types = frozenset({EntityType.TENANT})
    priority = 110

    def execute(self, context: ConversionContext) -> None:
        tenant = context.entity
        context.builder.update(tenant_id=tenant.id, name=tenant.name)


class AuthorizationTransformer(EntityTransformer):
    """Map a Camunda 7 grant onto a Camunda 8 permission set.

    Authorizations without a Camunda 8 counterpart raise the skip error of
    ``map_authorization`` unchanged.
    """

    types = frozenset({EntityType.AUTHORIZATION})
    priority = 110

    def execute(self, context: ConversionContext) -> None:
        record = map_authorization(context.entity)
        context.builder.update(**record.dict(exclude={'authorization_key'}))


def builtin_transformers(
    variable_service: Optional[VariableService] = None,
) -> List[EntityTransformer]:
    variable_service = variable_service or VariableService()
    return [
        ProcessDefinitionTransformer(),
        DecisionRequirementsTransformer(),
        DecisionDefinitionTransformer(),
        ProcessInstanceTransformer(),
        AutoCancelTransformer(),
        FlowNodeTransformer(),
        UserTaskTransformer(),
        VariableTransformer(variable_service),
        IncidentTransformer(),
        JobTransformer(),
        ExternalTaskTransformer(),
        AuditLogTransformer(),
        DecisionInstanceTransformer(),
        HistoryCleanupTransformer(),
        ProcessInstanceStartTransformer(),
        TenantTransformer(),
        AuthorizationTransformer(),
    ]


def create_registry(
    extra: Iterable[str] = (),
    disabled: Iterable[str] = (),
    variable_service: Optional[VariableService] = None,
) -> TransformerRegistry:
    """Registry with the built-in transformers plus configured ones.

    Args:
        extra: ``module:ClassName`` paths of additional transformers
        disabled: Names of built-in transformers to leave out
        variable_service: Shared variable service
    """
    disabled = set(disabled)
    registry = TransformerRegistry(
        t for t in builtin_transformers(variable_service) if t.name not in disabled
    )
    for path in extra:
        registry.register(load_transformer(path))
    return registry
