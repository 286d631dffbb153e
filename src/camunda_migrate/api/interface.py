"""Boundary interfaces the migrators talk to."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.source import (
    ActivityInstance,
    HistoricExternalTaskLog,
    HistoricProcessInstance,
    SourceEntity,
    TypedValue,
)
from ..persistence.models import EntityType


class SourceQuery(BaseModel):
    """Filter applied to a source scan.

    Results are always ordered by (create time, id) ascending.
    """

    created_from: Optional[datetime] = Field(
        default=None, description='Inclusive lower bound on the create time'
    )
    after_time: Optional[datetime] = Field(
        default=None, description='Keyset position: create time of the last entity seen'
    )
    after_id: Optional[str] = Field(
        default=None, description='Keyset position: id of the last entity seen'
    )
    unfinished_only: bool = Field(default=False, description='Only running instances')
    root_only: bool = Field(default=False, description='Only root process instances')
    tenant_ids: Optional[List[str]] = Field(
        default=None, description='Restrict to these tenants'
    )

    def matches(self, entity: SourceEntity) -> bool:
        """Whether an entity passes the filter. Used by in-memory readers."""
        created = entity.created_at
        if self.created_from is not None and (created is None or created < self.created_from):
            return False
        if self.after_time is not None:
            key = (created, entity.source_id)
            if created is None or key <= (self.after_time, self.after_id or ''):
                return False
        if self.unfinished_only and getattr(entity, 'end_time', None) is not None:
            return False
        if self.root_only and getattr(entity, 'super_process_instance_id', None):
            return False
        if self.tenant_ids is not None and entity.tenant_id not in self.tenant_ids:
            return False
        return True


class SourceReader(ABC):
    """Read access to the Camunda 7 engine."""

    @abstractmethod
    def count(self, entity_type: EntityType, query: Optional[SourceQuery] = None) -> int:
        """Number of entities of a type matching ``query``."""
        pass

    @abstractmethod
    def fetch_page(
        self,
        entity_type: EntityType,
        offset: int,
        limit: int,
        query: Optional[SourceQuery] = None,
    ) -> List[SourceEntity]:
        """One page of entities ordered by (create time, id)."""
        pass

    @abstractmethod
    def get_single(self, entity_type: EntityType, source_id: str) -> Optional[SourceEntity]:
        """One entity by id, or None if it no longer exists."""
        pass

    @abstractmethod
    def get_resource_xml(self, deployment_id: str, resource_name: str) -> Optional[str]:
        """Content of a deployed BPMN or DMN resource."""
        pass

    @abstractmethod
    def get_process_definition_xml(self, process_definition_id: str) -> Optional[str]:
        """BPMN XML of a process definition."""
        pass

    @abstractmethod
    def get_activity_instance_tree(self, process_instance_id: str) -> Optional[ActivityInstance]:
        """Runtime activity instance tree, or None if the instance has ended."""
        pass

    @abstractmethod
    def get_variables(self, process_instance_id: str) -> Dict[str, TypedValue]:
        """Process-level variables of a running instance."""
        pass

    @abstractmethod
    def get_local_variables(self, activity_instance_id: str) -> Dict[str, TypedValue]:
        """Variables local to an activity instance."""
        pass

    @abstractmethod
    def fetch_process_instance_tree(self, root_process_instance_id: str) -> List[HistoricProcessInstance]:
        """Root instance followed by all of its running descendants."""
        pass

    @abstractmethod
    def get_failure_external_task_log(
        self, external_task_id: str
    ) -> Optional[HistoricExternalTaskLog]:
        """Latest failure log entry of an external task, or None if it never failed."""
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        pass


class ProcessDefinitionInfo(BaseModel):
    """Deployed Camunda 8 process definition."""

    process_definition_key: int = Field(..., description='Key')
    process_definition_id: str = Field(..., description='BPMN process id')
    version: int = Field(default=1, description='Version')
    tenant_id: Optional[str] = Field(default=None, description='Tenant id')


class ActivatedJob(BaseModel):
    """Job handed out by the target engine."""

    key: int = Field(..., description='Job key')
    type: str = Field(..., description='Job type')
    process_instance_key: int = Field(..., description='Owning instance')
    element_instance_key: int = Field(..., description='Element instance the job belongs to')
    element_id: Optional[str] = Field(default=None, description='Element id')
    variables: Dict[str, Any] = Field(default_factory=dict, description='Job variables')


class FlowNodeActivation(BaseModel):
    """Element to activate when modifying a process instance."""

    element_id: str = Field(..., description='Element id')
    variables: Dict[str, Any] = Field(default_factory=dict, description='Local variables')


class TargetClient(ABC):
    """Write access to the Camunda 8 cluster."""

    @abstractmethod
    def create_process_instance(
        self, bpmn_process_id: str, tenant_id: str, variables: Dict[str, Any]
    ) -> int:
        """Start the latest version of a process and return the instance key."""
        pass

    @abstractmethod
    def cancel_process_instance(self, process_instance_key: int) -> None:
        pass

    @abstractmethod
    def search_process_definitions(
        self, bpmn_process_id: str, tenant_id: Optional[str] = None
    ) -> List[ProcessDefinitionInfo]:
        """Definitions of a process id, latest version first."""
        pass

    @abstractmethod
    def get_process_definition_xml(self, process_definition_key: int) -> str:
        pass

    @abstractmethod
    def deploy(self, resources: Dict[str, str], tenant_id: Optional[str] = None) -> int:
        """Deploy resources given as name to content and return the deployment key."""
        pass

    @abstractmethod
    def activate_jobs(self, job_type: str, max_jobs: int = 100) -> List[ActivatedJob]:
        pass

    @abstractmethod
    def modify_process_instance(
        self,
        process_instance_key: int,
        terminate_element_instance_key: int,
        activations: List[FlowNodeActivation],
    ) -> None:
        """Terminate one element instance and activate the given elements."""
        pass

    @abstractmethod
    def create_tenant(self, tenant_id: str, name: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def delete_tenant(self, tenant_id: str) -> None:
        pass

    @abstractmethod
    def create_authorization(
        self,
        owner_id: str,
        owner_type: str,
        resource_type: str,
        resource_id: str,
        permission_types: List[str],
    ) -> int:
        """Create an authorization and return its key."""
        pass

    @abstractmethod
    def delete_authorization(self, authorization_key: int) -> None:
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        pass


class HistoryWriter(ABC):
    """Write access to the Camunda 8 history store."""

    @abstractmethod
    def next_key(self) -> int:
        pass

    @abstractmethod
    def insert(self, record) -> int:
        """Persist a history record and return its key."""
        pass

    @abstractmethod
    def find(self, kind: str, key: int):
        pass

    @abstractmethod
    def search(self, kind: str, **filters: Any) -> list:
        pass

    @abstractmethod
    def delete(self, kind: str, key: int) -> bool:
        pass
