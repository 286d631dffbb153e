"""Migration of historic data into the Camunda 8 history store."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Type

from ..api.interface import HistoryWriter
from ..conversion.context import ConversionContext
from ..models.source import (
    DecisionDefinition,
    DecisionRequirementsDefinition,
    HistoricActivityInstance,
    HistoricDecisionInstance,
    HistoricExternalTaskLog,
    HistoricIncident,
    HistoricJobLog,
    HistoricProcessInstance,
    HistoricTaskInstance,
    HistoricVariableInstance,
    ProcessDefinition,
    SourceEntity,
    UserOperationLogEntry,
)
from ..models.target import (
    AuditLogRecord,
    DecisionDefinitionRecord,
    DecisionInstanceRecord,
    DecisionRequirementsRecord,
    FlowNodeRecord,
    HistoryRecord,
    IncidentRecord,
    JobRecord,
    ModelBuilder,
    ProcessDefinitionRecord,
    ProcessInstanceRecord,
    UserTaskRecord,
    VariableRecord,
)
from ..persistence.models import EntityType
from ..utils.dates import to_utc_naive
from .exceptions import (
    SKIP_REASON_BELONGS_TO_SKIPPED_TASK,
    SKIP_REASON_CMMN_VARIABLE,
    SKIP_REASON_MISSING_DECISION_DEFINITION,
    SKIP_REASON_MISSING_DECISION_REQUIREMENTS,
    SKIP_REASON_MISSING_FLOW_NODE,
    SKIP_REASON_MISSING_JOB_REFERENCE,
    SKIP_REASON_MISSING_PARENT_DECISION_INSTANCE,
    SKIP_REASON_MISSING_PARENT_PROCESS_INSTANCE,
    SKIP_REASON_MISSING_PROCESS_DEFINITION,
    SKIP_REASON_MISSING_PROCESS_INSTANCE,
    SKIP_REASON_MISSING_ROOT_PROCESS_INSTANCE,
    SKIP_REASON_MISSING_SCOPE_KEY,
    SKIP_REASON_STANDALONE_USER_TASK,
    CompensationRecord,
    EntitySkippedError,
)
from .strategy import BaseMigrator, MigrationContext, MigratorMode

EXTERNAL_TASK_INCIDENT = 'failedExternalTask'

RECORD_KINDS: Dict[EntityType, Type[HistoryRecord]] = {
    EntityType.HISTORY_PROCESS_DEFINITION: ProcessDefinitionRecord,
    EntityType.HISTORY_PROCESS_INSTANCE: ProcessInstanceRecord,
    EntityType.HISTORY_FLOW_NODE: FlowNodeRecord,
    EntityType.HISTORY_USER_TASK: UserTaskRecord,
    EntityType.HISTORY_VARIABLE: VariableRecord,
    EntityType.HISTORY_EXTERNAL_TASK: JobRecord,
    EntityType.HISTORY_INCIDENT: IncidentRecord,
    EntityType.HISTORY_JOB: JobRecord,
    EntityType.HISTORY_AUDIT_LOG: AuditLogRecord,
    EntityType.HISTORY_DECISION_REQUIREMENT: DecisionRequirementsRecord,
    EntityType.HISTORY_DECISION_DEFINITION: DecisionDefinitionRecord,
    EntityType.HISTORY_DECISION_INSTANCE: DecisionInstanceRecord,
}


class HistoryMigrator(BaseMigrator):
    """Copies historic entities into the target history store.

    Types are migrated parents first. An entity whose parent was not
    migrated is skipped with the matching reason and picked up again by a
    RETRY_SKIPPED run once the parent exists.
    """

    ENTITY_TYPES = EntityType.history_types()

    def __init__(self, context: MigrationContext, mode: MigratorMode = MigratorMode.MIGRATE, entity_types=None):
        super().__init__(context, mode, entity_types)
        if context.history is None:
            raise ValueError('HistoryMigrator needs a history store')

        self._handlers: Dict[EntityType, Callable[[Any], Optional[int]]] = {
            EntityType.HISTORY_PROCESS_DEFINITION: self.migrate_process_definition,
            EntityType.HISTORY_PROCESS_INSTANCE: self.migrate_process_instance,
            EntityType.HISTORY_FLOW_NODE: self.migrate_flow_node,
            EntityType.HISTORY_USER_TASK: self.migrate_user_task,
            EntityType.HISTORY_VARIABLE: self.migrate_variable,
            EntityType.HISTORY_EXTERNAL_TASK: self.migrate_external_task,
            EntityType.HISTORY_INCIDENT: self.migrate_incident,
            EntityType.HISTORY_JOB: self.migrate_job,
            EntityType.HISTORY_AUDIT_LOG: self.migrate_audit_log,
            EntityType.HISTORY_DECISION_REQUIREMENT: self.migrate_decision_requirements,
            EntityType.HISTORY_DECISION_DEFINITION: self.migrate_decision_definition,
            EntityType.HISTORY_DECISION_INSTANCE: self.migrate_decision_instance,
        }

    @property
    def history(self) -> HistoryWriter:
        return self.context.history

    def migrate_entity(self, entity: SourceEntity) -> Optional[int]:
        return self._handlers[entity.TAG](entity)

    def compensate_entity(self, record: CompensationRecord) -> None:
        self.history.delete(RECORD_KINDS[record.entity_type].KIND, record.target_key)

    # Definitions

    def migrate_process_definition(self, definition: ProcessDefinition) -> int:
        xml = self._resource_xml(definition.deployment_id, definition.resource)
        return self._insert(definition, ProcessDefinitionRecord, lookups={'resource_xml': xml})

    def migrate_decision_requirements(self, drd: DecisionRequirementsDefinition) -> int:
        xml = self._resource_xml(drd.deployment_id, drd.resource)
        return self._insert(drd, DecisionRequirementsRecord, lookups={'resource_xml': xml})

    def migrate_decision_definition(self, decision: DecisionDefinition) -> int:
        drd_key = None
        drd_id = decision.decision_requirements_definition_id
        if drd_id is not None:
            drd_key = self._require(
                decision,
                drd_id,
                EntityType.HISTORY_DECISION_REQUIREMENT,
                SKIP_REASON_MISSING_DECISION_REQUIREMENTS,
            )
        return self._insert(decision, DecisionDefinitionRecord, decision_requirements_key=drd_key)

    # Process instances and their children

    def migrate_process_instance(self, instance: HistoricProcessInstance) -> int:
        definition_key = self._require(
            instance,
            instance.process_definition_id,
            EntityType.HISTORY_PROCESS_DEFINITION,
            SKIP_REASON_MISSING_PROCESS_DEFINITION,
        )

        parent_key = None
        if instance.super_process_instance_id:
            parent_key = self._require(
                instance,
                instance.super_process_instance_id,
                EntityType.HISTORY_PROCESS_INSTANCE,
                SKIP_REASON_MISSING_PARENT_PROCESS_INSTANCE,
            )

        root_id = instance.root_process_instance_id
        root_key = None
        if root_id and root_id != instance.id:
            root_key = self._require(
                instance,
                root_id,
                EntityType.HISTORY_PROCESS_INSTANCE,
                SKIP_REASON_MISSING_ROOT_PROCESS_INSTANCE,
            )

        key = self.history.next_key()
        return self._insert(
            instance,
            ProcessInstanceRecord,
            key=key,
            process_definition_key=definition_key,
            parent_process_instance_key=parent_key,
            root_process_instance_key=root_key if root_key is not None else key,
        )

    def migrate_flow_node(self, node: HistoricActivityInstance) -> int:
        instance_key = self._require(
            node,
            node.process_instance_id,
            EntityType.HISTORY_PROCESS_INSTANCE,
            SKIP_REASON_MISSING_PROCESS_INSTANCE,
        )
        key = self.history.next_key()
        return self._insert(
            node,
            FlowNodeRecord,
            key=key,
            process_instance_key=instance_key,
            process_definition_key=self._find(
                node.process_definition_id, EntityType.HISTORY_PROCESS_DEFINITION
            ),
            tree_path=f'{instance_key}/{key}',
        )

    def migrate_user_task(self, task: HistoricTaskInstance) -> int:
        if not task.process_instance_id:
            raise EntitySkippedError(task.id, SKIP_REASON_STANDALONE_USER_TASK)

        instance_key = self._require(
            task,
            task.process_instance_id,
            EntityType.HISTORY_PROCESS_INSTANCE,
            SKIP_REASON_MISSING_PROCESS_INSTANCE,
        )
        element_instance_key = self._require(
            task,
            task.activity_instance_id,
            EntityType.HISTORY_FLOW_NODE,
            SKIP_REASON_MISSING_FLOW_NODE,
        )
        return self._insert(
            task,
            UserTaskRecord,
            process_instance_key=instance_key,
            element_instance_key=element_instance_key,
            process_definition_key=self._find(
                task.process_definition_id, EntityType.HISTORY_PROCESS_DEFINITION
            ),
        )

    def migrate_variable(self, variable: HistoricVariableInstance) -> int:
        if variable.case_instance_id:
            raise EntitySkippedError(variable.id, SKIP_REASON_CMMN_VARIABLE)

        if variable.task_id and self._find(variable.task_id, EntityType.HISTORY_USER_TASK) is None:
            raise EntitySkippedError(variable.id, SKIP_REASON_BELONGS_TO_SKIPPED_TASK)

        instance_key = self._require(
            variable,
            variable.process_instance_id,
            EntityType.HISTORY_PROCESS_INSTANCE,
            SKIP_REASON_MISSING_PROCESS_INSTANCE,
        )

        # process level variables are scoped to the root activity instance,
        # which shares its id with the process instance
        scope_id = variable.activity_instance_id
        if scope_id is None or scope_id == variable.process_instance_id:
            scope_key = instance_key
        else:
            scope_key = self._find(scope_id, EntityType.HISTORY_FLOW_NODE)
        if scope_key is None:
            reason = (
                SKIP_REASON_BELONGS_TO_SKIPPED_TASK
                if variable.task_id
                else SKIP_REASON_MISSING_SCOPE_KEY
            )
            raise EntitySkippedError(variable.id, reason)

        return self._insert(
            variable, VariableRecord, process_instance_key=instance_key, scope_key=scope_key
        )

    def migrate_incident(self, incident: HistoricIncident) -> int:
        instance_key = self._require(
            incident,
            incident.process_instance_id,
            EntityType.HISTORY_PROCESS_INSTANCE,
            SKIP_REASON_MISSING_PROCESS_INSTANCE,
        )

        definition_key = self._require(
            incident,
            incident.process_definition_id,
            EntityType.HISTORY_PROCESS_DEFINITION,
            SKIP_REASON_MISSING_PROCESS_DEFINITION,
        )

        flow_node_key = None
        if incident.activity_id:
            flow_node_key = self._find_flow_node_key(instance_key, incident.activity_id)
            if flow_node_key is None:
                raise EntitySkippedError(incident.id, SKIP_REASON_MISSING_FLOW_NODE)

        if incident.incident_type == EXTERNAL_TASK_INCIDENT:
            job_key = self._external_task_job_key(incident.configuration)
            if job_key is None:
                raise EntitySkippedError(incident.id, SKIP_REASON_MISSING_JOB_REFERENCE)
        else:
            # jobs are migrated after incidents, so the job key is only known on retry
            job_key = self._find(incident.configuration, EntityType.HISTORY_JOB)

        return self._insert(
            incident,
            IncidentRecord,
            process_instance_key=instance_key,
            process_definition_key=definition_key,
            flow_node_instance_key=flow_node_key,
            job_key=job_key,
        )

    def migrate_external_task(self, log: HistoricExternalTaskLog) -> int:
        instance_key = self._require(
            log,
            log.process_instance_id,
            EntityType.HISTORY_PROCESS_INSTANCE,
            SKIP_REASON_MISSING_PROCESS_INSTANCE,
        )
        definition_key = self._require(
            log,
            log.process_definition_id,
            EntityType.HISTORY_PROCESS_DEFINITION,
            SKIP_REASON_MISSING_PROCESS_DEFINITION,
        )
        element_instance_key = self._require(
            log,
            log.activity_instance_id,
            EntityType.HISTORY_FLOW_NODE,
            SKIP_REASON_MISSING_FLOW_NODE,
        )
        return self._insert(
            log,
            JobRecord,
            process_instance_key=instance_key,
            process_definition_key=definition_key,
            element_instance_key=element_instance_key,
        )

    def migrate_job(self, log: HistoricJobLog) -> int:
        instance_key = self._require(
            log,
            log.process_instance_id,
            EntityType.HISTORY_PROCESS_INSTANCE,
            SKIP_REASON_MISSING_PROCESS_INSTANCE,
        )
        return self._insert(log, JobRecord, process_instance_key=instance_key)

    def migrate_audit_log(self, entry: UserOperationLogEntry) -> int:
        instance_key = None
        if entry.process_instance_id:
            instance_key = self._require(
                entry,
                entry.process_instance_id,
                EntityType.HISTORY_PROCESS_INSTANCE,
                SKIP_REASON_MISSING_PROCESS_INSTANCE,
            )

        task_key = None
        if entry.task_id:
            task_key = self._require(
                entry,
                entry.task_id,
                EntityType.HISTORY_USER_TASK,
                SKIP_REASON_BELONGS_TO_SKIPPED_TASK,
            )

        return self._insert(
            entry, AuditLogRecord, process_instance_key=instance_key, user_task_key=task_key
        )

    # Decision instances

    def migrate_decision_instance(self, decision: HistoricDecisionInstance) -> Optional[int]:
        if decision.process_definition_key is None:
            self.logger.debug(
                f'Decision instance {decision.id} was evaluated outside a process, not migrated'
            )
            return None

        definition_key = self._require(
            decision,
            decision.decision_definition_id,
            EntityType.HISTORY_DECISION_DEFINITION,
            SKIP_REASON_MISSING_DECISION_DEFINITION,
        )
        process_definition_key = self._require(
            decision,
            decision.process_definition_id,
            EntityType.HISTORY_PROCESS_DEFINITION,
            SKIP_REASON_MISSING_PROCESS_DEFINITION,
        )
        instance_key = self._require(
            decision,
            decision.process_instance_id,
            EntityType.HISTORY_PROCESS_INSTANCE,
            SKIP_REASON_MISSING_PROCESS_INSTANCE,
        )

        root_definition_key = None
        if decision.root_decision_instance_id:
            root_key = self._require(
                decision,
                decision.root_decision_instance_id,
                EntityType.HISTORY_DECISION_INSTANCE,
                SKIP_REASON_MISSING_PARENT_DECISION_INSTANCE,
            )
            root = self.history.find(DecisionInstanceRecord.KIND, root_key)
            root_definition_key = root.decision_definition_key if root else None

        flow_node_key = self._require(
            decision,
            decision.activity_instance_id,
            EntityType.HISTORY_FLOW_NODE,
            SKIP_REASON_MISSING_FLOW_NODE,
        )

        definition = self.history.find(DecisionDefinitionRecord.KIND, definition_key)
        return self._insert(
            decision,
            DecisionInstanceRecord,
            decision_definition_key=definition_key,
            decision_requirements_key=definition.decision_requirements_key if definition else None,
            root_decision_definition_key=root_definition_key,
            process_definition_key=process_definition_key,
            process_instance_key=instance_key,
            flow_node_instance_key=flow_node_key,
            flow_node_id=decision.activity_id,
        )

    # Helpers

    def _find(self, source_id: Optional[str], entity_type: EntityType) -> Optional[int]:
        return self.mapping_store.find_target_key(source_id, entity_type)

    def _require(
        self,
        entity: SourceEntity,
        source_id: Optional[str],
        entity_type: EntityType,
        reason: str,
    ) -> int:
        """Target key of a migrated parent, skipping ``entity`` if there is none."""
        key = self._find(source_id, entity_type)
        if key is None:
            raise EntitySkippedError(entity.source_id, reason)
        return key

    def _external_task_job_key(self, external_task_id: Optional[str]) -> Optional[int]:
        """Job key of the failure log entry that raised an external task incident."""
        if not external_task_id:
            return None
        failure_log = self.source.get_failure_external_task_log(external_task_id)
        if failure_log is None:
            return None
        return self._find(failure_log.id, EntityType.HISTORY_EXTERNAL_TASK)

    def _find_flow_node_key(self, process_instance_key: int, element_id: str) -> Optional[int]:
        nodes = self.history.search(
            FlowNodeRecord.KIND,
            process_instance_key=process_instance_key,
            element_id=element_id,
        )
        return nodes[0].flow_node_instance_key if nodes else None

    def _resource_xml(self, deployment_id: Optional[str], resource: Optional[str]) -> Optional[str]:
        if not deployment_id or not resource:
            return None
        return self.source.get_resource_xml(deployment_id, resource)

    def _insert(
        self,
        entity: SourceEntity,
        record_cls: Type[HistoryRecord],
        key: Optional[int] = None,
        lookups: Optional[Dict[str, Any]] = None,
        **resolved: Any,
    ) -> int:
        """Convert an entity with its resolved keys and write the record."""
        if key is None:
            key = self.history.next_key()

        builder = ModelBuilder(record_cls, **{record_cls.KEY_FIELD: key})
        builder.update(**resolved)
        context = ConversionContext(
            entity,
            builder,
            {
                'now': to_utc_naive(datetime.now(timezone.utc)),
                'cleanup_ttl_days': self.context.cleanup_ttl_days,
                **(lookups or {}),
            },
        )
        record = self.context.conversion.convert(context)
        return self.history.insert(record)
