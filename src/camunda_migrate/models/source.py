"""Camunda 7 entity models read by the migrator."""

from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field, validator

from ..persistence.models import EntityType
from ..utils.dates import to_utc_naive


class SourceEntity(BaseModel):
    """Base class for every entity read from the source engine.

    ``TAG`` selects the transformers and the mapping table type;
    ``CREATE_TIME_FIELD`` names the field that orders the source scan.
    """

    TAG: ClassVar[EntityType]
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = None

    id: str = Field(..., description='Source id')
    tenant_id: Optional[str] = Field(default=None, description='Tenant id')

    class Config:
        """Pydantic configuration."""

        extra = 'ignore'

    @validator('*')
    def normalize_dates(cls, v):
        """Store all timestamps as naive UTC."""
        if isinstance(v, datetime):
            return to_utc_naive(v)
        return v

    @property
    def source_id(self) -> str:
        return self.id

    @property
    def created_at(self) -> Optional[datetime]:
        if self.CREATE_TIME_FIELD is None:
            return None
        return getattr(self, self.CREATE_TIME_FIELD)


class TypedValue(BaseModel):
    """A Camunda 7 typed variable value."""

    type: str = Field(default='Null', description='Value type name, e.g. String, Json')
    value: Any = Field(default=None, description='Raw or serialized value')
    value_info: Dict[str, Any] = Field(
        default_factory=dict,
        description='objectTypeName, serializationDataFormat, filename, ...',
    )

    @property
    def serialization_data_format(self) -> Optional[str]:
        return self.value_info.get('serializationDataFormat')

    @property
    def object_type_name(self) -> Optional[str]:
        return self.value_info.get('objectTypeName')


class ProcessDefinition(SourceEntity):
    """Deployed BPMN process definition."""

    TAG: ClassVar[EntityType] = EntityType.HISTORY_PROCESS_DEFINITION
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'deployment_time'

    key: str = Field(..., description='BPMN process id')
    name: Optional[str] = Field(default=None, description='Process name')
    version: int = Field(default=1, description='Definition version')
    version_tag: Optional[str] = Field(default=None, description='Version tag')
    deployment_id: Optional[str] = Field(default=None, description='Deployment id')
    resource: Optional[str] = Field(default=None, description='BPMN resource name')
    deployment_time: Optional[datetime] = Field(default=None, description='Deployed at')


class DecisionRequirementsDefinition(SourceEntity):
    """Deployed DRD."""

    TAG: ClassVar[EntityType] = EntityType.HISTORY_DECISION_REQUIREMENT
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'deployment_time'

    key: str = Field(..., description='DRD id')
    name: Optional[str] = Field(default=None, description='DRD name')
    version: int = Field(default=1, description='Definition version')
    deployment_id: Optional[str] = Field(default=None, description='Deployment id')
    resource: Optional[str] = Field(default=None, description='DMN resource name')
    deployment_time: Optional[datetime] = Field(default=None, description='Deployed at')


class DecisionDefinition(SourceEntity):
    """Deployed DMN decision."""

    TAG: ClassVar[EntityType] = EntityType.HISTORY_DECISION_DEFINITION
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'deployment_time'

    key: str = Field(..., description='Decision id')
    name: Optional[str] = Field(default=None, description='Decision name')
    version: int = Field(default=1, description='Definition version')
    decision_requirements_definition_id: Optional[str] = Field(
        default=None, description='Owning DRD'
    )
    decision_requirements_definition_key: Optional[str] = Field(
        default=None, description='Owning DRD id'
    )
    deployment_id: Optional[str] = Field(default=None, description='Deployment id')
    resource: Optional[str] = Field(default=None, description='DMN resource name')
    deployment_time: Optional[datetime] = Field(default=None, description='Deployed at')


class HistoricProcessInstance(SourceEntity):
    """Historic process instance, running or finished."""

    TAG: ClassVar[EntityType] = EntityType.HISTORY_PROCESS_INSTANCE
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'start_time'

    process_definition_id: str = Field(..., description='Definition id')
    process_definition_key: str = Field(..., description='BPMN process id')
    process_definition_version: Optional[int] = Field(default=None, description='Version')
    business_key: Optional[str] = Field(default=None, description='Business key')
    start_time: Optional[datetime] = Field(default=None, description='Started at')
    end_time: Optional[datetime] = Field(default=None, description='Ended at')
    removal_time: Optional[datetime] = Field(default=None, description='Removal time')
    state: str = Field(default='ACTIVE', description='Instance state')
    super_process_instance_id: Optional[str] = Field(
        default=None, description='Calling instance'
    )
    root_process_instance_id: Optional[str] = Field(default=None, description='Root')

    @property
    def finished(self) -> bool:
        return self.end_time is not None


class RuntimeProcessInstance(HistoricProcessInstance):
    """Unfinished root process instance to restart on the target."""

    TAG: ClassVar[EntityType] = EntityType.RUNTIME_PROCESS_INSTANCE


class HistoricActivityInstance(SourceEntity):
    """Historic flow node instance."""

    TAG: ClassVar[EntityType] = EntityType.HISTORY_FLOW_NODE
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'start_time'

    activity_id: str = Field(..., description='BPMN element id')
    activity_name: Optional[str] = Field(default=None, description='Element name')
    activity_type: str = Field(..., description='Camunda 7 activity type')
    parent_activity_instance_id: Optional[str] = Field(default=None, description='Parent')
    process_instance_id: Optional[str] = Field(default=None, description='Instance')
    process_definition_id: Optional[str] = Field(default=None, description='Definition')
    process_definition_key: Optional[str] = Field(default=None, description='BPMN id')
    called_process_instance_id: Optional[str] = Field(
        default=None, description='Instance started by a call activity'
    )
    root_process_instance_id: Optional[str] = Field(default=None, description='Root')
    start_time: Optional[datetime] = Field(default=None, description='Started at')
    end_time: Optional[datetime] = Field(default=None, description='Ended at')
    removal_time: Optional[datetime] = Field(default=None, description='Removal time')
    canceled: bool = Field(default=False, description='Canceled')


class HistoricTaskInstance(SourceEntity):
    """Historic user task."""

    TAG: ClassVar[EntityType] = EntityType.HISTORY_USER_TASK
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'start_time'

    name: Optional[str] = Field(default=None, description='Task name')
    task_definition_key: Optional[str] = Field(default=None, description='Element id')
    assignee: Optional[str] = Field(default=None, description='Assignee')
    priority: int = Field(default=50, description='Priority')
    due: Optional[datetime] = Field(default=None, description='Due date')
    follow_up: Optional[datetime] = Field(default=None, description='Follow-up date')
    activity_instance_id: Optional[str] = Field(default=None, description='Flow node')
    process_instance_id: Optional[str] = Field(default=None, description='Instance')
    process_definition_id: Optional[str] = Field(default=None, description='Definition')
    process_definition_key: Optional[str] = Field(default=None, description='BPMN id')
    start_time: Optional[datetime] = Field(default=None, description='Created at')
    end_time: Optional[datetime] = Field(default=None, description='Ended at')
    removal_time: Optional[datetime] = Field(default=None, description='Removal time')
    task_state: Optional[str] = Field(default=None, description='Created, Completed, ...')
    delete_reason: Optional[str] = Field(default=None, description='Delete reason')


class HistoricVariableInstance(SourceEntity):
    """Historic variable instance."""

    TAG: ClassVar[EntityType] = EntityType.HISTORY_VARIABLE
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'create_time'

    name: str = Field(..., description='Variable name')
    type: str = Field(default='Null', description='Value type name')
    value: Any = Field(default=None, description='Value')
    value_info: Dict[str, Any] = Field(default_factory=dict, description='Value info')
    process_instance_id: Optional[str] = Field(default=None, description='Instance')
    process_definition_key: Optional[str] = Field(default=None, description='BPMN id')
    activity_instance_id: Optional[str] = Field(default=None, description='Scope')
    task_id: Optional[str] = Field(default=None, description='Owning task')
    case_instance_id: Optional[str] = Field(default=None, description='CMMN case')
    create_time: Optional[datetime] = Field(default=None, description='Created at')
    removal_time: Optional[datetime] = Field(default=None, description='Removal time')

    @property
    def typed_value(self) -> TypedValue:
        return TypedValue(type=self.type, value=self.value, value_info=self.value_info)


class HistoricIncident(SourceEntity):
    """Historic incident."""

    TAG: ClassVar[EntityType] = EntityType.HISTORY_INCIDENT
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'create_time'

    incident_type: str = Field(default='failedJob', description='Incident type')
    incident_message: Optional[str] = Field(default=None, description='Message')
    process_instance_id: Optional[str] = Field(default=None, description='Instance')
    process_definition_id: Optional[str] = Field(default=None, description='Definition')
    process_definition_key: Optional[str] = Field(default=None, description='BPMN id')
    activity_id: Optional[str] = Field(default=None, description='Element id')
    configuration: Optional[str] = Field(default=None, description='Job id for job incidents')
    create_time: Optional[datetime] = Field(default=None, description='Created at')
    end_time: Optional[datetime] = Field(default=None, description='Ended at')
    removal_time: Optional[datetime] = Field(default=None, description='Removal time')
    open: bool = Field(default=True, description='Still open')
    resolved: bool = Field(default=False, description='Resolved')
    deleted: bool = Field(default=False, description='Deleted')


class HistoricJobLog(SourceEntity):
    """Historic job log entry.

    Jobs are tracked by job id, so a job is recorded from the first of its
    log entries seen in scan order.
    """

    TAG: ClassVar[EntityType] = EntityType.HISTORY_JOB
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'timestamp'

    job_id: str = Field(..., description='Job id')
    job_definition_type: Optional[str] = Field(default=None, description='Job type')
    job_retries: Optional[int] = Field(default=None, description='Retries left')
    job_exception_message: Optional[str] = Field(default=None, description='Error')
    activity_id: Optional[str] = Field(default=None, description='Element id')
    process_instance_id: Optional[str] = Field(default=None, description='Instance')
    process_definition_key: Optional[str] = Field(default=None, description='BPMN id')
    timestamp: Optional[datetime] = Field(default=None, description='Logged at')
    removal_time: Optional[datetime] = Field(default=None, description='Removal time')
    creation_log: bool = Field(default=False, description='Job created')
    failure_log: bool = Field(default=False, description='Job failed')
    success_log: bool = Field(default=False, description='Job succeeded')
    deletion_log: bool = Field(default=False, description='Job deleted')

    @property
    def source_id(self) -> str:
        return self.job_id


class HistoricExternalTaskLog(SourceEntity):
    """Historic external task log entry.

    Every entry is migrated as its own job record, keyed by the log id.
    """

    TAG: ClassVar[EntityType] = EntityType.HISTORY_EXTERNAL_TASK
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'timestamp'

    external_task_id: str = Field(..., description='External task id')
    topic_name: Optional[str] = Field(default=None, description='Topic')
    worker_id: Optional[str] = Field(default=None, description='Worker')
    retries: Optional[int] = Field(default=None, description='Retries left')
    error_message: Optional[str] = Field(default=None, description='Error')
    activity_id: Optional[str] = Field(default=None, description='Element id')
    activity_instance_id: Optional[str] = Field(default=None, description='Flow node')
    process_instance_id: Optional[str] = Field(default=None, description='Instance')
    process_definition_id: Optional[str] = Field(default=None, description='Definition')
    process_definition_key: Optional[str] = Field(default=None, description='BPMN id')
    timestamp: Optional[datetime] = Field(default=None, description='Logged at')
    removal_time: Optional[datetime] = Field(default=None, description='Removal time')
    creation_log: bool = Field(default=False, description='Task created')
    failure_log: bool = Field(default=False, description='Task failed')
    success_log: bool = Field(default=False, description='Task completed')
    deletion_log: bool = Field(default=False, description='Task deleted')


class UserOperationLogEntry(SourceEntity):
    """User operation log entry."""

    TAG: ClassVar[EntityType] = EntityType.HISTORY_AUDIT_LOG
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'timestamp'

    operation_type: str = Field(..., description='Create, Update, Delete, ...')
    entity_type: Optional[str] = Field(default=None, description='Affected entity kind')
    category: Optional[str] = Field(default=None, description='Operator, TaskWorker, Admin')
    user_id: Optional[str] = Field(default=None, description='Actor')
    property_name: Optional[str] = Field(default=None, description='Changed property')
    org_value: Optional[str] = Field(default=None, description='Old value')
    new_value: Optional[str] = Field(default=None, description='New value')
    annotation: Optional[str] = Field(default=None, description='Annotation')
    process_instance_id: Optional[str] = Field(default=None, description='Instance')
    process_definition_key: Optional[str] = Field(default=None, description='BPMN id')
    task_id: Optional[str] = Field(default=None, description='Task')
    timestamp: Optional[datetime] = Field(default=None, description='Logged at')
    removal_time: Optional[datetime] = Field(default=None, description='Removal time')


class DecisionInput(BaseModel):
    """Evaluated decision input."""

    id: str = Field(..., description='Input instance id')
    clause_id: Optional[str] = Field(default=None, description='Clause id')
    clause_name: Optional[str] = Field(default=None, description='Clause name')
    value: Any = Field(default=None, description='Value')


class DecisionOutput(BaseModel):
    """Evaluated decision output."""

    id: str = Field(..., description='Output instance id')
    clause_id: Optional[str] = Field(default=None, description='Clause id')
    clause_name: Optional[str] = Field(default=None, description='Clause name')
    rule_id: Optional[str] = Field(default=None, description='Matched rule')
    rule_order: Optional[int] = Field(default=None, description='Rule order')
    value: Any = Field(default=None, description='Value')


class HistoricDecisionInstance(SourceEntity):
    """Historic decision evaluation."""

    TAG: ClassVar[EntityType] = EntityType.HISTORY_DECISION_INSTANCE
    CREATE_TIME_FIELD: ClassVar[Optional[str]] = 'evaluation_time'

    decision_definition_id: str = Field(..., description='Decision definition id')
    decision_definition_key: Optional[str] = Field(default=None, description='Decision id')
    decision_requirements_definition_key: Optional[str] = Field(
        default=None, description='DRD id'
    )
    process_definition_id: Optional[str] = Field(default=None, description='Definition')
    process_definition_key: Optional[str] = Field(default=None, description='BPMN id')
    process_instance_id: Optional[str] = Field(default=None, description='Instance')
    activity_id: Optional[str] = Field(default=None, description='Business rule task')
    activity_instance_id: Optional[str] = Field(default=None, description='Flow node')
    root_decision_instance_id: Optional[str] = Field(default=None, description='Root')
    evaluation_time: Optional[datetime] = Field(default=None, description='Evaluated at')
    removal_time: Optional[datetime] = Field(default=None, description='Removal time')
    collect_result_value: Optional[float] = Field(default=None, description='Collect result')
    inputs: List[DecisionInput] = Field(default_factory=list, description='Inputs')
    outputs: List[DecisionOutput] = Field(default_factory=list, description='Outputs')


class Tenant(SourceEntity):
    """Camunda 7 tenant."""

    TAG: ClassVar[EntityType] = EntityType.TENANT

    name: Optional[str] = Field(default=None, description='Tenant name')


class Authorization(SourceEntity):
    """Camunda 7 authorization."""

    TAG: ClassVar[EntityType] = EntityType.AUTHORIZATION

    type: int = Field(default=1, description='0 global, 1 grant, 2 revoke')
    user_id: Optional[str] = Field(default=None, description='Granted user')
    group_id: Optional[str] = Field(default=None, description='Granted group')
    resource_type: int = Field(..., description='Camunda 7 resource type id')
    resource_id: str = Field(default='*', description='Resource id or *')
    permissions: List[str] = Field(default_factory=list, description='Permission names')


class ActivityInstance(BaseModel):
    """Node of a runtime activity instance tree."""

    id: str = Field(..., description='Activity instance id')
    activity_id: str = Field(..., description='BPMN element id')
    activity_type: Optional[str] = Field(default=None, description='Activity type')
    activity_name: Optional[str] = Field(default=None, description='Element name')
    process_instance_id: Optional[str] = Field(default=None, description='Instance')
    child_activity_instances: List['ActivityInstance'] = Field(
        default_factory=list, description='Children'
    )
    child_transition_instances: List[Dict[str, Any]] = Field(
        default_factory=list, description='Async continuations waiting to run'
    )

    def active_flow_nodes(self) -> Dict[str, str]:
        """Activity instance id to element id of every active leaf.

        Transition instances waiting on an async continuation count as
        active leaves too.
        """
        nodes: Dict[str, str] = {}
        for child in self.child_activity_instances:
            if child.child_activity_instances or child.child_transition_instances:
                nodes.update(child.active_flow_nodes())
            else:
                nodes[child.id] = child.activity_id
        for transition in self.child_transition_instances:
            nodes[transition['id']] = transition['activity_id']
        return nodes

    def walk(self):
        """Yield this node and all descendants, depth first."""
        yield self
        for child in self.child_activity_instances:
            yield from child.walk()


ActivityInstance.update_forward_refs()


SOURCE_MODELS: Dict[EntityType, type] = {
    model.TAG: model
    for model in (
        ProcessDefinition,
        DecisionRequirementsDefinition,
        DecisionDefinition,
        HistoricProcessInstance,
        RuntimeProcessInstance,
        HistoricActivityInstance,
        HistoricTaskInstance,
        HistoricVariableInstance,
        HistoricIncident,
        HistoricJobLog,
        HistoricExternalTaskLog,
        UserOperationLogEntry,
        HistoricDecisionInstance,
        Tenant,
        Authorization,
    )
}
