"""Camunda 8 records produced by the conversion pipeline."""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field

DEFAULT_TENANT = '<default>'


class ProcessInstanceState(str, Enum):
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    CANCELED = 'CANCELED'


class FlowNodeState(str, Enum):
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    TERMINATED = 'TERMINATED'


class UserTaskState(str, Enum):
    CREATED = 'CREATED'
    COMPLETED = 'COMPLETED'
    CANCELED = 'CANCELED'


class IncidentState(str, Enum):
    ACTIVE = 'ACTIVE'
    RESOLVED = 'RESOLVED'


class JobState(str, Enum):
    CREATED = 'CREATED'
    FAILED = 'FAILED'
    COMPLETED = 'COMPLETED'
    CANCELED = 'CANCELED'


class TargetRecord(BaseModel):
    """Immutable Camunda 8 record.

    ``KEY_FIELD`` names the field holding the record's own key.
    ``KIND`` identifies the record type in the history store.
    """

    KEY_FIELD: ClassVar[str]
    KIND: ClassVar[str]

    class Config:
        """Pydantic configuration."""

        frozen = True
        extra = 'forbid'

    @property
    def key(self) -> Optional[int]:
        return getattr(self, self.KEY_FIELD)


class HistoryRecord(TargetRecord):
    """Record written to the Camunda 8 history store."""

    tenant_id: str = Field(default=DEFAULT_TENANT, description='Tenant id')
    history_cleanup_date: Optional[datetime] = Field(
        default=None, description='When the record may be cleaned up'
    )


class ProcessDefinitionRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'process_definition_key'
    KIND: ClassVar[str] = 'process_definition'

    process_definition_key: int = Field(..., description='Key')
    process_definition_id: str = Field(..., description='BPMN process id')
    name: Optional[str] = Field(default=None, description='Name')
    version: int = Field(default=1, description='Version')
    version_tag: Optional[str] = Field(default=None, description='Version tag')
    resource_name: Optional[str] = Field(default=None, description='Resource name')
    bpmn_xml: Optional[str] = Field(default=None, description='BPMN XML')


class ProcessInstanceRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'process_instance_key'
    KIND: ClassVar[str] = 'process_instance'

    process_instance_key: int = Field(..., description='Key')
    process_definition_key: Optional[int] = Field(default=None, description='Definition')
    process_definition_id: str = Field(..., description='BPMN process id')
    version: Optional[int] = Field(default=None, description='Definition version')
    state: ProcessInstanceState = Field(..., description='State')
    start_date: Optional[datetime] = Field(default=None, description='Started at')
    end_date: Optional[datetime] = Field(default=None, description='Ended at')
    parent_process_instance_key: Optional[int] = Field(default=None, description='Parent')
    root_process_instance_key: Optional[int] = Field(default=None, description='Root')
    business_key: Optional[str] = Field(default=None, description='Business key')


class FlowNodeRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'flow_node_instance_key'
    KIND: ClassVar[str] = 'flow_node'

    flow_node_instance_key: int = Field(..., description='Key')
    flow_node_id: str = Field(..., description='BPMN element id')
    flow_node_name: Optional[str] = Field(default=None, description='Element name')
    type: str = Field(..., description='Camunda 8 flow node type')
    state: FlowNodeState = Field(..., description='State')
    process_instance_key: Optional[int] = Field(default=None, description='Instance')
    process_definition_key: Optional[int] = Field(default=None, description='Definition')
    process_definition_id: Optional[str] = Field(default=None, description='BPMN id')
    start_date: Optional[datetime] = Field(default=None, description='Started at')
    end_date: Optional[datetime] = Field(default=None, description='Ended at')
    tree_path: Optional[str] = Field(default=None, description='Instance/flow node path')


class UserTaskRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'user_task_key'
    KIND: ClassVar[str] = 'user_task'

    user_task_key: int = Field(..., description='Key')
    element_id: Optional[str] = Field(default=None, description='BPMN element id')
    element_instance_key: Optional[int] = Field(default=None, description='Flow node')
    name: Optional[str] = Field(default=None, description='Name')
    assignee: Optional[str] = Field(default=None, description='Assignee')
    priority: int = Field(default=50, description='Priority')
    state: UserTaskState = Field(..., description='State')
    process_instance_key: Optional[int] = Field(default=None, description='Instance')
    process_definition_key: Optional[int] = Field(default=None, description='Definition')
    process_definition_id: Optional[str] = Field(default=None, description='BPMN id')
    creation_date: Optional[datetime] = Field(default=None, description='Created at')
    completion_date: Optional[datetime] = Field(default=None, description='Completed at')
    due_date: Optional[datetime] = Field(default=None, description='Due date')
    follow_up_date: Optional[datetime] = Field(default=None, description='Follow-up')


class VariableRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'variable_key'
    KIND: ClassVar[str] = 'variable'

    variable_key: int = Field(..., description='Key')
    name: str = Field(..., description='Name')
    value: Optional[str] = Field(default=None, description='JSON encoded value')
    scope_key: Optional[int] = Field(default=None, description='Owning scope')
    process_instance_key: Optional[int] = Field(default=None, description='Instance')
    process_definition_id: Optional[str] = Field(default=None, description='BPMN id')


class IncidentRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'incident_key'
    KIND: ClassVar[str] = 'incident'

    incident_key: int = Field(..., description='Key')
    process_instance_key: Optional[int] = Field(default=None, description='Instance')
    process_definition_key: Optional[int] = Field(default=None, description='Definition')
    process_definition_id: Optional[str] = Field(default=None, description='BPMN id')
    flow_node_id: Optional[str] = Field(default=None, description='BPMN element id')
    flow_node_instance_key: Optional[int] = Field(default=None, description='Flow node')
    job_key: Optional[int] = Field(default=None, description='Failed job')
    error_type: str = Field(..., description='Camunda 8 error type')
    error_message: Optional[str] = Field(default=None, description='Message')
    state: IncidentState = Field(..., description='State')
    creation_date: Optional[datetime] = Field(default=None, description='Created at')


class JobRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'job_key'
    KIND: ClassVar[str] = 'job'

    job_key: int = Field(..., description='Key')
    type: Optional[str] = Field(default=None, description='Job type')
    worker: Optional[str] = Field(default=None, description='Worker that handled the job')
    state: JobState = Field(..., description='State')
    retries: Optional[int] = Field(default=None, description='Retries left')
    error_message: Optional[str] = Field(default=None, description='Last error')
    element_id: Optional[str] = Field(default=None, description='BPMN element id')
    element_instance_key: Optional[int] = Field(default=None, description='Flow node')
    process_instance_key: Optional[int] = Field(default=None, description='Instance')
    process_definition_key: Optional[int] = Field(default=None, description='Definition')
    process_definition_id: Optional[str] = Field(default=None, description='BPMN id')
    end_time: Optional[datetime] = Field(default=None, description='Last change')


class AuditLogRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'audit_log_key'
    KIND: ClassVar[str] = 'audit_log'

    audit_log_key: int = Field(..., description='Key')
    operation_type: str = Field(..., description='Operation')
    entity_type: Optional[str] = Field(default=None, description='Affected entity kind')
    category: Optional[str] = Field(default=None, description='Category')
    actor_id: Optional[str] = Field(default=None, description='Actor')
    timestamp: Optional[datetime] = Field(default=None, description='Logged at')
    annotation: Optional[str] = Field(default=None, description='Annotation')
    details: Dict[str, Optional[str]] = Field(
        default_factory=dict, description='property, previous and new value'
    )
    process_instance_key: Optional[int] = Field(default=None, description='Instance')
    user_task_key: Optional[int] = Field(default=None, description='Task')


class DecisionRequirementsRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'decision_requirements_key'
    KIND: ClassVar[str] = 'decision_requirements'

    decision_requirements_key: int = Field(..., description='Key')
    decision_requirements_id: str = Field(..., description='DRD id')
    name: Optional[str] = Field(default=None, description='Name')
    version: int = Field(default=1, description='Version')
    resource_name: Optional[str] = Field(default=None, description='Resource name')
    xml: Optional[str] = Field(default=None, description='DMN XML')


class DecisionDefinitionRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'decision_definition_key'
    KIND: ClassVar[str] = 'decision_definition'

    decision_definition_key: int = Field(..., description='Key')
    decision_definition_id: str = Field(..., description='Decision id')
    name: Optional[str] = Field(default=None, description='Name')
    version: int = Field(default=1, description='Version')
    decision_requirements_key: Optional[int] = Field(default=None, description='DRD')
    decision_requirements_id: Optional[str] = Field(default=None, description='DRD id')


class EvaluatedInput(BaseModel):
    input_id: str
    input_name: Optional[str] = None
    input_value: Optional[str] = None

    class Config:
        frozen = True


class EvaluatedOutput(BaseModel):
    output_id: str
    output_name: Optional[str] = None
    output_value: Optional[str] = None
    rule_id: Optional[str] = None
    rule_index: Optional[int] = None

    class Config:
        frozen = True


class DecisionInstanceRecord(HistoryRecord):
    KEY_FIELD: ClassVar[str] = 'decision_instance_key'
    KIND: ClassVar[str] = 'decision_instance'

    decision_instance_key: int = Field(..., description='Key')
    decision_instance_id: str = Field(..., description='"<key>-<source id>"')
    decision_definition_key: Optional[int] = Field(default=None, description='Decision')
    decision_definition_id: Optional[str] = Field(default=None, description='Decision id')
    decision_requirements_key: Optional[int] = Field(default=None, description='DRD')
    decision_requirements_id: Optional[str] = Field(default=None, description='DRD id')
    root_decision_definition_key: Optional[int] = Field(
        default=None, description='Decision of the root evaluation'
    )
    process_definition_key: Optional[int] = Field(default=None, description='Definition')
    process_definition_id: Optional[str] = Field(default=None, description='BPMN id')
    process_instance_key: Optional[int] = Field(default=None, description='Instance')
    flow_node_instance_key: Optional[int] = Field(default=None, description='Flow node')
    flow_node_id: Optional[str] = Field(default=None, description='BPMN element id')
    evaluation_date: Optional[datetime] = Field(default=None, description='Evaluated at')
    result: Optional[str] = Field(default=None, description='Collect result')
    evaluated_inputs: List[EvaluatedInput] = Field(default_factory=list)
    evaluated_outputs: List[EvaluatedOutput] = Field(default_factory=list)


class ProcessInstanceStart(TargetRecord):
    """Command creating a running process instance on the target cluster."""

    KEY_FIELD: ClassVar[str] = 'process_instance_key'
    KIND: ClassVar[str] = 'runtime_process_instance'

    process_instance_key: Optional[int] = Field(
        default=None, description='Assigned by the target on creation'
    )
    bpmn_process_id: str = Field(..., description='BPMN process id')
    version: Optional[int] = Field(default=None, description='Pinned version, latest if unset')
    tenant_id: str = Field(default=DEFAULT_TENANT, description='Tenant id')
    variables: Dict[str, Any] = Field(default_factory=dict, description='Global variables')


class TenantRecord(TargetRecord):
    KEY_FIELD: ClassVar[str] = 'tenant_key'
    KIND: ClassVar[str] = 'tenant'

    tenant_key: Optional[int] = Field(default=None, description='Key')
    tenant_id: str = Field(..., description='Tenant id')
    name: Optional[str] = Field(default=None, description='Name')


class AuthorizationRecord(TargetRecord):
    KEY_FIELD: ClassVar[str] = 'authorization_key'
    KIND: ClassVar[str] = 'authorization'

    authorization_key: Optional[int] = Field(default=None, description='Key')
    owner_id: str = Field(..., description='User or group id')
    owner_type: str = Field(..., description='USER or GROUP')
    resource_type: str = Field(..., description='Camunda 8 resource type')
    resource_id: str = Field(default='*', description='Resource id or *')
    permission_types: List[str] = Field(..., description='Camunda 8 permissions')


R = TypeVar('R', bound=TargetRecord)


class ModelBuilder(Generic[R]):
    """Mutable field holder that is turned into an immutable record.

    Only fields declared on the record class can be set. ``build``
    validates the collected fields; unset fields keep the record defaults.
    """

    def __init__(self, model_cls: Type[R], **fields: Any):
        object.__setattr__(self, '_model_cls', model_cls)
        object.__setattr__(self, '_fields', {})
        self.update(**fields)

    @property
    def model_cls(self) -> Type[R]:
        return self._model_cls

    def __getattr__(self, name: str) -> Any:
        fields = object.__getattribute__(self, '_fields')
        if name in fields:
            return fields[name]
        model_cls = object.__getattribute__(self, '_model_cls')
        if name in model_cls.__fields__:
            return None
        raise AttributeError(f'{model_cls.__name__} has no field "{name}"')

    def __setattr__(self, name: str, value: Any) -> None:
        if name not in self._model_cls.__fields__:
            raise AttributeError(f'{self._model_cls.__name__} has no field "{name}"')
        self._fields[name] = value

    def update(self, **fields: Any) -> 'ModelBuilder[R]':
        for name, value in fields.items():
            setattr(self, name, value)
        return self

    def is_set(self, name: str) -> bool:
        return name in self._fields

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._fields)

    def build(self) -> R:
        return self._model_cls(**self._fields)
