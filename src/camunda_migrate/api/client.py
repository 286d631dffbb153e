"""REST clients for the Camunda 7 engine and the Camunda 8 cluster."""

import re
from typing import Any, Dict, List, NamedTuple, Optional, Type
from urllib.parse import urljoin

import requests
from loguru import logger
from pydantic import BaseModel

from ..config.config import SourceEngineConfig, TargetEngineConfig
from ..models.source import (
    SOURCE_MODELS,
    ActivityInstance,
    HistoricExternalTaskLog,
    HistoricProcessInstance,
    SourceEntity,
    TypedValue,
)
from ..persistence.models import EntityType
from ..utils.dates import format_date, parse_date
from .exceptions import (
    EngineAPIError,
    EngineAuthenticationError,
    EngineConflictError,
    EngineNotFoundError,
    EnginePermissionError,
    EngineRateLimitError,
    EngineValidationError,
)
from .interface import (
    ActivatedJob,
    FlowNodeActivation,
    ProcessDefinitionInfo,
    SourceQuery,
    SourceReader,
    TargetClient,
)
from .rate_limiter import RateLimiter

USER_AGENT = 'camunda-migrate/0.1.0'

DATE_FIELDS = {
    'start_time',
    'end_time',
    'removal_time',
    'create_time',
    'timestamp',
    'evaluation_time',
    'due',
    'follow_up',
    'deployment_time',
}

_CAMEL = re.compile(r'(?<!^)(?=[A-Z])')


def to_snake_case(name: str) -> str:
    return _CAMEL.sub('_', name).lower()


def snake_keys(data: Any) -> Any:
    """Recursively convert camelCase keys and parse known timestamp fields."""
    if isinstance(data, list):
        return [snake_keys(item) for item in data]
    if not isinstance(data, dict):
        return data

    result = {}
    for key, value in data.items():
        name = to_snake_case(key)
        if name in DATE_FIELDS and isinstance(value, str):
            value = parse_date(value)
        result[name] = snake_keys(value)
    return result


class APIResponse(BaseModel):
    """Standard API response wrapper."""

    status_code: int
    data: Any
    headers: Dict[str, str]
    success: bool


class RestClient:
    """JSON over HTTP with rate limiting and error mapping."""

    def __init__(self, base_url: str, timeout: int = 30, rate_limit_per_second: float = 50.0):
        """Initialize REST client.

        Args:
            base_url: Base URL every endpoint is resolved against
            timeout: Request timeout in seconds
            rate_limit_per_second: Maximum requests per second
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.rate_limiter = RateLimiter(rate_limit_per_second)
        self.session = requests.Session()
        self.session.headers.update(
            {'Content-Type': 'application/json', 'User-Agent': USER_AGENT}
        )
        self.logger = logger.bind(component=type(self).__name__)

    def _build_url(self, endpoint: str) -> str:
        return urljoin(self.base_url + '/', endpoint.lstrip('/'))

    def _handle_response(self, response: requests.Response) -> APIResponse:
        """Convert a raw response, raising for error status codes.

        Raises:
            EngineAPIError: For various API errors
        """
        headers = dict(response.headers)

        if response.status_code == 429:
            retry_after = int(headers.get('Retry-After', 60))
            raise EngineRateLimitError(
                f'Rate limit exceeded. Retry after {retry_after} seconds',
                retry_after=retry_after,
                status_code=429,
            )

        if response.status_code == 401:
            raise EngineAuthenticationError('Authentication failed', status_code=401)

        if response.status_code >= 400:
            error_data = None
            try:
                error_data = response.json()
                message = (
                    error_data.get('message')
                    or error_data.get('detail')
                    or error_data.get('title')
                    or f'HTTP {response.status_code}'
                )
            except ValueError:
                message = f'HTTP {response.status_code}: {response.text}'

            error_cls = {
                400: EngineValidationError,
                403: EnginePermissionError,
                404: EngineNotFoundError,
                409: EngineConflictError,
            }.get(response.status_code, EngineAPIError)
            raise error_cls(
                f'API request failed: {message}',
                status_code=response.status_code,
                response_data=error_data if isinstance(error_data, dict) else None,
            )

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = response.text

        return APIResponse(
            status_code=response.status_code,
            data=data,
            headers=headers,
            success=200 <= response.status_code < 300,
        )

    def _request(self, method: str, endpoint: str, **kwargs) -> APIResponse:
        url = self._build_url(endpoint)
        self.rate_limiter.acquire()
        kwargs.setdefault('timeout', self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            self.logger.error(f'Network error during {method} {url}: {e}')
            raise EngineAPIError(f'Network error: {e}') from e
        return self._handle_response(response)

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> APIResponse:
        return self._request('GET', endpoint, params=params, **kwargs)

    def post(self, endpoint: str, data: Any = None, **kwargs) -> APIResponse:
        return self._request('POST', endpoint, json=data, **kwargs)

    def put(self, endpoint: str, data: Any = None, **kwargs) -> APIResponse:
        return self._request('PUT', endpoint, json=data, **kwargs)

    def delete(self, endpoint: str, **kwargs) -> APIResponse:
        return self._request('DELETE', endpoint, **kwargs)

    def close(self):
        """Close the client session."""
        self.session.close()
        self.logger.debug('Client session closed')

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class _Endpoint(NamedTuple):
    """How one entity type is listed on the Camunda 7 REST API."""

    path: str
    time_sort: Optional[str]
    id_sort: str
    time_filter: Optional[str]
    id_filter: str
    post: bool = False
    params: Dict[str, Any] = {}
    renames: Dict[str, str] = {}


SOURCE_ENDPOINTS: Dict[EntityType, _Endpoint] = {
    EntityType.HISTORY_PROCESS_DEFINITION: _Endpoint(
        'process-definition', None, 'id', None, 'processDefinitionId'
    ),
    EntityType.HISTORY_DECISION_REQUIREMENT: _Endpoint(
        'decision-requirements-definition', None, 'id', None, 'decisionRequirementsDefinitionId'
    ),
    EntityType.HISTORY_DECISION_DEFINITION: _Endpoint(
        'decision-definition', None, 'id', None, 'decisionDefinitionId'
    ),
    EntityType.HISTORY_PROCESS_INSTANCE: _Endpoint(
        'history/process-instance', 'startTime', 'instanceId', 'startedAfter',
        'processInstanceId', post=True,
    ),
    EntityType.RUNTIME_PROCESS_INSTANCE: _Endpoint(
        'history/process-instance', 'startTime', 'instanceId', 'startedAfter',
        'processInstanceId', post=True,
    ),
    EntityType.HISTORY_FLOW_NODE: _Endpoint(
        'history/activity-instance', 'startTime', 'activityInstanceId', 'startedAfter',
        'activityInstanceId', post=True,
    ),
    EntityType.HISTORY_USER_TASK: _Endpoint(
        'history/task', 'startTime', 'taskId', 'startedAfter', 'taskId', post=True,
    ),
    EntityType.HISTORY_VARIABLE: _Endpoint(
        'history/variable-instance', None, 'instanceId', None, 'variableInstanceId',
        post=True, params={'deserializeValues': 'false'},
    ),
    EntityType.HISTORY_EXTERNAL_TASK: _Endpoint(
        'history/external-task-log', 'timestamp', 'externalTaskId', None, 'logId', post=True,
    ),
    EntityType.HISTORY_INCIDENT: _Endpoint(
        'history/incident', 'createTime', 'incidentId', 'createTimeAfter', 'incidentId'
    ),
    EntityType.HISTORY_JOB: _Endpoint(
        'history/job-log', 'timestamp', 'jobId', None, 'jobId', post=True,
    ),
    EntityType.HISTORY_AUDIT_LOG: _Endpoint(
        'history/user-operation', 'timestamp', 'timestamp', 'afterTimestamp', 'operationId',
        renames={'property': 'property_name'},
    ),
    EntityType.HISTORY_DECISION_INSTANCE: _Endpoint(
        'history/decision-instance', 'evaluationTime', 'evaluationTime', 'evaluatedAfter',
        'decisionInstanceId',
        params={'includeInputs': 'true', 'includeOutputs': 'true', 'disableBinaryFetching': 'true'},
    ),
    EntityType.TENANT: _Endpoint('tenant', None, 'id', None, 'id'),
    EntityType.AUTHORIZATION: _Endpoint('authorization', None, 'resourceType', None, 'id'),
}


class SourceEngineClient(RestClient, SourceReader):
    """Camunda 7 engine REST API reader."""

    def __init__(self, config: SourceEngineConfig):
        """Initialize source client.

        Args:
            config: Camunda 7 engine configuration
        """
        super().__init__(config.url, config.timeout, config.rate_limit_per_second)
        self.config = config
        if config.username:
            self.session.auth = (config.username, config.password)
        self.logger.info(f'Initialized Camunda 7 client for {config.url}')

    def _endpoint(self, entity_type: EntityType) -> _Endpoint:
        try:
            return SOURCE_ENDPOINTS[entity_type]
        except KeyError:
            raise EngineAPIError(f'Reading {entity_type.value} is not supported')

    def _filters(self, entity_type: EntityType, query: Optional[SourceQuery]) -> Dict[str, Any]:
        endpoint = self._endpoint(entity_type)
        filters = dict(endpoint.params)
        if query is None:
            return filters

        # keyset positions are widened to an inclusive time bound; the
        # mapping store drops the entities seen before
        since = query.created_from or query.after_time
        if since is not None and endpoint.time_filter:
            filters[endpoint.time_filter] = format_date(since)
        if query.unfinished_only:
            filters['unfinished'] = 'true'
        if query.root_only:
            filters['rootProcessInstances'] = 'true'
        if query.tenant_ids is not None:
            filters['tenantIdIn'] = ','.join(query.tenant_ids)
        return filters

    def _sorting(self, endpoint: _Endpoint) -> List[Dict[str, str]]:
        keys = [endpoint.time_sort, endpoint.id_sort] if endpoint.time_sort else [endpoint.id_sort]
        return [
            {'sortBy': key, 'sortOrder': 'asc'}
            for key in dict.fromkeys(keys)
        ]

    def count(self, entity_type: EntityType, query: Optional[SourceQuery] = None) -> int:
        endpoint = self._endpoint(entity_type)
        filters = self._filters(entity_type, query)
        if endpoint.post:
            response = self.post(f'{endpoint.path}/count', data=filters)
        else:
            response = self.get(f'{endpoint.path}/count', params=filters)
        return int(response.data.get('count', 0))

    def fetch_page(
        self,
        entity_type: EntityType,
        offset: int,
        limit: int,
        query: Optional[SourceQuery] = None,
    ) -> List[SourceEntity]:
        endpoint = self._endpoint(entity_type)
        filters = self._filters(entity_type, query)
        paging = {'firstResult': offset, 'maxResults': limit}
        sorting = self._sorting(endpoint)

        if endpoint.post:
            body = dict(filters, sorting=sorting)
            response = self.post(endpoint.path, data=body, params=paging)
        else:
            params = dict(filters, **paging, **sorting[0])
            response = self.get(endpoint.path, params=params)

        return [self._to_entity(entity_type, item) for item in response.data or []]

    def get_single(self, entity_type: EntityType, source_id: str) -> Optional[SourceEntity]:
        endpoint = self._endpoint(entity_type)
        params = dict(endpoint.params, **{endpoint.id_filter: source_id})
        params.update(self._sorting(endpoint)[0])
        try:
            response = self.get(endpoint.path, params=params)
        except EngineNotFoundError:
            return None
        for item in response.data or []:
            entity = self._to_entity(entity_type, item)
            if entity.source_id == source_id:
                return entity
        return None

    def _to_entity(self, entity_type: EntityType, item: Dict[str, Any]) -> SourceEntity:
        data = snake_keys(item)
        for old, new in self._endpoint(entity_type).renames.items():
            if old in data:
                data[new] = data.pop(old)
        model: Type[SourceEntity] = SOURCE_MODELS[entity_type]
        return model(**data)

    def get_resource_xml(self, deployment_id: str, resource_name: str) -> Optional[str]:
        resources = self.get(f'deployment/{deployment_id}/resources').data or []
        for resource in resources:
            if resource.get('name') == resource_name:
                url = self._build_url(
                    f'deployment/{deployment_id}/resources/{resource["id"]}/data'
                )
                self.rate_limiter.acquire()
                try:
                    response = self.session.get(url, timeout=self.timeout)
                except requests.RequestException as e:
                    raise EngineAPIError(f'Network error: {e}') from e
                if response.status_code >= 400:
                    self._handle_response(response)
                return response.text
        return None

    def get_process_definition_xml(self, process_definition_id: str) -> Optional[str]:
        try:
            response = self.get(f'process-definition/{process_definition_id}/xml')
        except EngineNotFoundError:
            return None
        return response.data.get('bpmn20Xml')

    def get_activity_instance_tree(self, process_instance_id: str) -> Optional[ActivityInstance]:
        try:
            response = self.get(f'process-instance/{process_instance_id}/activity-instances')
        except EngineNotFoundError:
            return None
        return ActivityInstance(**snake_keys(response.data))

    def get_variables(self, process_instance_id: str) -> Dict[str, TypedValue]:
        response = self.get(
            f'process-instance/{process_instance_id}/variables',
            params={'deserializeValues': 'false'},
        )
        return {
            name: TypedValue(
                type=value.get('type') or 'Null',
                value=value.get('value'),
                value_info=value.get('valueInfo') or {},
            )
            for name, value in (response.data or {}).items()
        }

    def get_local_variables(self, activity_instance_id: str) -> Dict[str, TypedValue]:
        response = self.get(
            'variable-instance',
            params={'activityInstanceIdIn': activity_instance_id, 'deserializeValues': 'false'},
        )
        return {
            item['name']: TypedValue(
                type=item.get('type') or 'Null',
                value=item.get('value'),
                value_info=item.get('valueInfo') or {},
            )
            for item in response.data or []
        }

    def fetch_process_instance_tree(
        self, root_process_instance_id: str
    ) -> List[HistoricProcessInstance]:
        response = self.post(
            'history/process-instance',
            data={
                'rootProcessInstanceId': root_process_instance_id,
                'unfinished': True,
                'sorting': [{'sortBy': 'startTime', 'sortOrder': 'asc'}],
            },
        )
        return [HistoricProcessInstance(**snake_keys(item)) for item in response.data or []]

    def get_failure_external_task_log(
        self, external_task_id: str
    ) -> Optional[HistoricExternalTaskLog]:
        response = self.get(
            'history/external-task-log',
            params={
                'externalTaskId': external_task_id,
                'failureLog': 'true',
                'sortBy': 'timestamp',
                'sortOrder': 'desc',
                'maxResults': 1,
            },
        )
        items = response.data or []
        return HistoricExternalTaskLog(**snake_keys(items[0])) if items else None

    def test_connection(self) -> bool:
        try:
            return self.get('engine').success
        except EngineAPIError as e:
            self.logger.error(f'Connection test failed: {e}')
            return False


class TargetEngineClient(RestClient, TargetClient):
    """Camunda 8 REST API (v2) client."""

    def __init__(self, config: TargetEngineConfig):
        """Initialize target client.

        Args:
            config: Camunda 8 cluster configuration

        Raises:
            EngineAuthenticationError: If the token request fails
        """
        super().__init__(config.url, config.timeout, config.rate_limit_per_second)
        self.config = config

        token = config.token
        if token is None and config.client_id:
            token = self._request_token()
        if token:
            self.session.headers.update({'Authorization': f'Bearer {token}'})

        self.logger.info(f'Initialized Camunda 8 client for {config.url}')

    def _request_token(self) -> str:
        """Obtain an access token with the client credentials grant."""
        data = {
            'grant_type': 'client_credentials',
            'client_id': self.config.client_id,
            'client_secret': self.config.client_secret,
        }
        if self.config.audience:
            data['audience'] = self.config.audience

        try:
            response = requests.post(self.config.oauth_url, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            raise EngineAuthenticationError(f'Token request failed: {e}') from e
        if response.status_code != 200:
            raise EngineAuthenticationError(
                f'Token request failed with HTTP {response.status_code}',
                status_code=response.status_code,
            )
        return response.json()['access_token']

    def create_process_instance(
        self, bpmn_process_id: str, tenant_id: str, variables: Dict[str, Any]
    ) -> int:
        response = self.post(
            'v2/process-instances',
            data={
                'processDefinitionId': bpmn_process_id,
                'tenantId': tenant_id,
                'variables': variables,
            },
        )
        return int(response.data['processInstanceKey'])

    def cancel_process_instance(self, process_instance_key: int) -> None:
        self.post(f'v2/process-instances/{process_instance_key}/cancellation', data={})

    def search_process_definitions(
        self, bpmn_process_id: str, tenant_id: Optional[str] = None
    ) -> List[ProcessDefinitionInfo]:
        search_filter = {'processDefinitionId': bpmn_process_id}
        if tenant_id:
            search_filter['tenantId'] = tenant_id
        response = self.post(
            'v2/process-definitions/search',
            data={'filter': search_filter, 'sort': [{'field': 'version', 'order': 'DESC'}]},
        )
        return [
            ProcessDefinitionInfo(
                process_definition_key=int(item['processDefinitionKey']),
                process_definition_id=item['processDefinitionId'],
                version=item.get('version', 1),
                tenant_id=item.get('tenantId'),
            )
            for item in (response.data or {}).get('items', [])
        ]

    def get_process_definition_xml(self, process_definition_key: int) -> str:
        response = self.get(
            f'v2/process-definitions/{process_definition_key}/xml',
            headers={'Accept': 'text/xml'},
        )
        return response.data

    def deploy(self, resources: Dict[str, str], tenant_id: Optional[str] = None) -> int:
        files = [
            ('resources', (name, content.encode('utf-8'), 'application/xml'))
            for name, content in resources.items()
        ]
        data = {'tenantId': tenant_id} if tenant_id else None
        # multipart bodies need requests to set the content type
        response = self._request(
            'POST', 'v2/deployments', files=files, data=data, headers={'Content-Type': None}
        )
        return int(response.data['deploymentKey'])

    def activate_jobs(self, job_type: str, max_jobs: int = 100) -> List[ActivatedJob]:
        response = self.post(
            'v2/jobs/activation',
            data={
                'type': job_type,
                'maxJobsToActivate': max_jobs,
                'timeout': 60000,
                'worker': 'camunda-migrate',
            },
        )
        return [
            ActivatedJob(
                key=int(job['jobKey']),
                type=job['type'],
                process_instance_key=int(job['processInstanceKey']),
                element_instance_key=int(job['elementInstanceKey']),
                element_id=job.get('elementId'),
                variables=job.get('variables') or {},
            )
            for job in (response.data or {}).get('jobs', [])
        ]

    def modify_process_instance(
        self,
        process_instance_key: int,
        terminate_element_instance_key: int,
        activations: List[FlowNodeActivation],
    ) -> None:
        self.post(
            f'v2/process-instances/{process_instance_key}/modification',
            data={
                'activateInstructions': [
                    {
                        'elementId': a.element_id,
                        'variableInstructions': [{'variables': a.variables}]
                        if a.variables
                        else [],
                    }
                    for a in activations
                ],
                'terminateInstructions': [
                    {'elementInstanceKey': str(terminate_element_instance_key)}
                ],
            },
        )

    def create_tenant(self, tenant_id: str, name: Optional[str] = None) -> None:
        self.post('v2/tenants', data={'tenantId': tenant_id, 'name': name or tenant_id})

    def delete_tenant(self, tenant_id: str) -> None:
        self.delete(f'v2/tenants/{tenant_id}')

    def create_authorization(
        self,
        owner_id: str,
        owner_type: str,
        resource_type: str,
        resource_id: str,
        permission_types: List[str],
    ) -> int:
        response = self.post(
            'v2/authorizations',
            data={
                'ownerId': owner_id,
                'ownerType': owner_type,
                'resourceType': resource_type,
                'resourceId': resource_id,
                'permissionTypes': permission_types,
            },
        )
        return int(response.data['authorizationKey'])

    def delete_authorization(self, authorization_key: int) -> None:
        self.delete(f'v2/authorizations/{authorization_key}')

    def test_connection(self) -> bool:
        try:
            return self.get('v2/topology').success
        except EngineAPIError as e:
            self.logger.error(f'Connection test failed: {e}')
            return False


class EngineClientFactory:
    """Factory for creating engine clients."""

    @staticmethod
    def create_source_client(config: SourceEngineConfig) -> SourceEngineClient:
        return SourceEngineClient(config)

    @staticmethod
    def create_target_client(config: TargetEngineConfig) -> TargetEngineClient:
        """Create the Camunda 8 client.

        Raises:
            EngineAuthenticationError: If client credentials are incomplete
        """
        if config.client_id and not (config.client_secret and config.oauth_url):
            raise EngineAuthenticationError(
                'client_id requires client_secret and oauth_url'
            )
        return TargetEngineClient(config)
