"""Shared fixtures: in-memory engines and SQLite-backed stores."""

from datetime import datetime, timedelta
from itertools import count
from typing import Any, Dict, List, Optional

import pytest

from camunda_migrate.api.exceptions import EngineConflictError
from camunda_migrate.api.interface import (
    ActivatedJob,
    ProcessDefinitionInfo,
    SourceQuery,
    SourceReader,
    TargetClient,
)
from camunda_migrate.conversion.registry import EntityConversionService
from camunda_migrate.conversion.transformers import create_registry
from camunda_migrate.migration.strategy import MigrationContext
from camunda_migrate.migration.variables import VariableInterceptor, VariableService
from camunda_migrate.models.source import ActivityInstance, SourceEntity, TypedValue
from camunda_migrate.persistence.database import dispose_engine, get_engine
from camunda_migrate.persistence.history_store import TargetHistoryStore
from camunda_migrate.persistence.mapping_store import MappingStore
from camunda_migrate.persistence.models import EntityType

IN_MEMORY_URL = 'sqlite://'
BASE_TIME = datetime(2024, 1, 31, 10, 0, 0)


def at(seconds: int) -> datetime:
    """Naive UTC timestamp ``seconds`` after a fixed base time."""
    return BASE_TIME + timedelta(seconds=seconds)


def bpmn(process_id: str = 'order', body: str = '', start_listener: Optional[str] = 'migrator') -> str:
    """Process with a none start event, an ``approve`` user task and ``body``."""
    listener = ''
    if start_listener:
        listener = (
            '<bpmn:extensionElements><zeebe:executionListeners>'
            f'<zeebe:executionListener eventType="end" type="{start_listener}"/>'
            '</zeebe:executionListeners></bpmn:extensionElements>'
        )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<bpmn:definitions xmlns:bpmn="http://www.omg.org/spec/BPMN/20100524/MODEL"
    xmlns:zeebe="http://camunda.org/schema/zeebe/1.0" id="definitions">
  <bpmn:process id="{process_id}" isExecutable="true">
    <bpmn:startEvent id="start">{listener}</bpmn:startEvent>
    <bpmn:userTask id="approve"/>
    {body}
  </bpmn:process>
</bpmn:definitions>"""


def activity_tree(process_instance_id: str, *leaves) -> ActivityInstance:
    """Tree whose root holds one child per ``(activity_instance_id, activity_id[, type])``."""
    children = []
    for leaf in leaves:
        activity_type = leaf[2] if len(leaf) > 2 else 'userTask'
        children.append(ActivityInstance(id=leaf[0], activity_id=leaf[1], activity_type=activity_type))
    return ActivityInstance(
        id=process_instance_id,
        activity_id='process',
        activity_type='processDefinition',
        process_instance_id=process_instance_id,
        child_activity_instances=children,
    )


class UpperCaseInterceptor(VariableInterceptor):
    """Upper-cases string values."""

    value_types = frozenset({'string'})

    def execute(self, context):
        if context.value is not None:
            context.set_value(context.value.upper())


class FakeSource(SourceReader):
    """In-memory Camunda 7 engine."""

    def __init__(self):
        self.entities: Dict[EntityType, List[SourceEntity]] = {}
        self.resources: Dict[tuple, str] = {}
        self.definition_xml: Dict[str, str] = {}
        self.trees: Dict[str, ActivityInstance] = {}
        self.variables: Dict[str, Dict[str, TypedValue]] = {}
        self.local_variables: Dict[str, Dict[str, TypedValue]] = {}
        self.reachable = True

    def add(self, *entities: SourceEntity) -> None:
        for entity in entities:
            self.entities.setdefault(entity.TAG, []).append(entity)

    def remove(self, entity_type: EntityType, source_id: str) -> None:
        self.entities[entity_type] = [
            e for e in self.entities.get(entity_type, []) if e.source_id != source_id
        ]

    def _matching(self, entity_type: EntityType, query: Optional[SourceQuery]) -> List[SourceEntity]:
        query = query or SourceQuery()
        found = [e for e in self.entities.get(entity_type, []) if query.matches(e)]
        return sorted(
            found,
            key=lambda e: (e.created_at is None, e.created_at or BASE_TIME, e.source_id),
        )

    def count(self, entity_type, query=None):
        return len(self._matching(entity_type, query))

    def fetch_page(self, entity_type, offset, limit, query=None):
        return self._matching(entity_type, query)[offset:offset + limit]

    def get_single(self, entity_type, source_id):
        for entity in self._matching(entity_type, None):
            if entity.source_id == source_id:
                return entity
        return None

    def get_resource_xml(self, deployment_id, resource_name):
        return self.resources.get((deployment_id, resource_name))

    def get_process_definition_xml(self, process_definition_id):
        return self.definition_xml.get(process_definition_id)

    def get_activity_instance_tree(self, process_instance_id):
        return self.trees.get(process_instance_id)

    def get_variables(self, process_instance_id):
        return dict(self.variables.get(process_instance_id, {}))

    def get_local_variables(self, activity_instance_id):
        return dict(self.local_variables.get(activity_instance_id, {}))

    def fetch_process_instance_tree(self, root_process_instance_id):
        instances = self.entities.get(EntityType.RUNTIME_PROCESS_INSTANCE, [])
        root = [i for i in instances if i.id == root_process_instance_id]
        children = [
            i
            for i in instances
            if i.root_process_instance_id == root_process_instance_id
            and i.id != root_process_instance_id
            and not i.finished
        ]
        return root + children

    def get_failure_external_task_log(self, external_task_id):
        failures = [
            log
            for log in self._matching(EntityType.HISTORY_EXTERNAL_TASK, None)
            if log.external_task_id == external_task_id and log.failure_log
        ]
        return failures[-1] if failures else None

    def test_connection(self):
        return self.reachable


class FakeTarget(TargetClient):
    """In-memory Camunda 8 cluster.

    With ``park_instances`` every created instance gets a migrator job, as
    the start event execution listener would create it.
    """

    def __init__(self, park_instances: bool = False, job_type: str = 'migrator'):
        self.park_instances = park_instances
        self.job_type = job_type
        self._keys = count(2251799813685249)

        self.definitions: Dict[tuple, List[ProcessDefinitionInfo]] = {}
        self.definition_xml: Dict[int, str] = {}
        self.instances: Dict[int, Dict[str, Any]] = {}
        self.canceled: List[int] = []
        self.jobs: List[ActivatedJob] = []
        self.modifications: List[tuple] = []
        self.tenants: Dict[str, Optional[str]] = {}
        self.authorizations: Dict[int, Dict[str, Any]] = {}
        self.writes: List[str] = []
        self.fail_create: Optional[Exception] = None
        self.reachable = True

    def deploy_process(self, bpmn_process_id: str, xml: str, tenant_id: Optional[str] = None) -> int:
        key = next(self._keys)
        versions = self.definitions.setdefault((bpmn_process_id, tenant_id), [])
        versions.insert(
            0,
            ProcessDefinitionInfo(
                process_definition_key=key,
                process_definition_id=bpmn_process_id,
                version=len(versions) + 1,
                tenant_id=tenant_id,
            ),
        )
        self.definition_xml[key] = xml
        return key

    def create_process_instance(self, bpmn_process_id, tenant_id, variables):
        if self.fail_create is not None:
            raise self.fail_create
        key = next(self._keys)
        self.writes.append(f'create:{key}')
        self.instances[key] = {
            'bpmn_process_id': bpmn_process_id,
            'tenant_id': tenant_id,
            'variables': dict(variables),
        }
        if self.park_instances:
            self.jobs.append(
                ActivatedJob(
                    key=next(self._keys),
                    type=self.job_type,
                    process_instance_key=key,
                    element_instance_key=next(self._keys),
                    element_id='start',
                    variables=dict(variables),
                )
            )
        return key

    def created_legacy_ids(self) -> List[str]:
        return [i['variables'].get('legacyId') for i in self.instances.values()]

    def cancel_process_instance(self, process_instance_key):
        self.writes.append(f'cancel:{process_instance_key}')
        self.canceled.append(process_instance_key)

    def search_process_definitions(self, bpmn_process_id, tenant_id=None):
        return list(self.definitions.get((bpmn_process_id, tenant_id), []))

    def get_process_definition_xml(self, process_definition_key):
        return self.definition_xml[process_definition_key]

    def deploy(self, resources, tenant_id=None):
        key = None
        for name, xml in resources.items():
            key = self.deploy_process(name.rsplit('.', 1)[0], xml, tenant_id)
        return key

    def activate_jobs(self, job_type, max_jobs=100):
        activated = [j for j in self.jobs if j.type == job_type][:max_jobs]
        self.jobs = [j for j in self.jobs if j not in activated]
        return activated

    def modify_process_instance(self, process_instance_key, terminate_element_instance_key, activations):
        self.writes.append(f'modify:{process_instance_key}')
        self.modifications.append(
            (process_instance_key, terminate_element_instance_key, list(activations))
        )

    def create_tenant(self, tenant_id, name=None):
        if tenant_id in self.tenants:
            raise EngineConflictError(f'Tenant {tenant_id} already exists', status_code=409)
        self.writes.append(f'tenant:{tenant_id}')
        self.tenants[tenant_id] = name

    def delete_tenant(self, tenant_id):
        self.tenants.pop(tenant_id, None)

    def create_authorization(self, owner_id, owner_type, resource_type, resource_id, permission_types):
        key = next(self._keys)
        self.writes.append(f'authorization:{key}')
        self.authorizations[key] = {
            'owner_id': owner_id,
            'owner_type': owner_type,
            'resource_type': resource_type,
            'resource_id': resource_id,
            'permission_types': list(permission_types),
        }
        return key

    def delete_authorization(self, authorization_key):
        self.authorizations.pop(authorization_key, None)

    def test_connection(self):
        return self.reachable


@pytest.fixture
def db_engine():
    """Fresh in-memory SQLite database shared by the stores of one test."""
    engine = get_engine(IN_MEMORY_URL)
    yield engine
    dispose_engine(IN_MEMORY_URL)


@pytest.fixture
def mapping_store(db_engine):
    return MappingStore(db_engine, batch_size=100)


@pytest.fixture
def history_store(db_engine):
    return TargetHistoryStore(db_engine)


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def target():
    return FakeTarget()


@pytest.fixture
def make_context(source, target, mapping_store, history_store):
    """Build a migration context around the fakes, overriding settings as needed."""

    def factory(**overrides) -> MigrationContext:
        variable_service = VariableService(overrides.get('source', source))
        settings = {
            'source': source,
            'target': target,
            'history': history_store,
            'mapping_store': mapping_store,
            'conversion': EntityConversionService(
                create_registry(variable_service=variable_service)
            ),
            'variable_service': variable_service,
            'resume_window_seconds': 3600,
        }
        settings.update(overrides)
        return MigrationContext(**settings)

    return factory
