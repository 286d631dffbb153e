"""Structural checks that gate the migration of a running process instance."""

from typing import Dict, Iterable, List, Optional

from loguru import logger

from ..api.interface import ProcessDefinitionInfo, SourceReader, TargetClient
from .bpmn import MULTI_INSTANCE_BODY_SUFFIX, BpmnModel
from .exceptions import ValidationError
from .variables import LEGACY_ID_VAR_NAME

MULTI_INSTANCE_LOOP_CHARACTERISTICS_ERROR = (
    'Found multi-instance loop characteristics for flow node with id [{}] '
    'in C7 process instance.'
)
NO_NONE_START_EVENT_ERROR = (
    'C8 process definition [id: {}, version: {}] should have a None Start Event.'
)
NO_EXECUTION_LISTENER_OF_TYPE_ERROR = (
    "No execution listener of type '{}' found on start event [{}] for C8 process "
    "definition [id: {}, version: {}]. At least one '{}' listener is required."
)
FLOW_NODE_NOT_EXISTS_ERROR = (
    "Flow node with id [{}] doesn't exist in the equivalent deployed C8 model."
)
NO_C8_DEPLOYMENT_ERROR = (
    'No C8 deployment found for process ID [{}] required for instance with C7 ID [{}].'
)
NO_C8_TENANT_DEPLOYMENT_ERROR = (
    'No C8 deployment found for process ID [{}] and tenant [{}] required for '
    'instance with C7 ID [{}].'
)
NO_C7_MODEL_ERROR = 'No C7 process definition found for id [{}].'
CALL_ACTIVITY_LEGACY_ID_ERROR = (
    'Found call activity with propagateAllParentVariables=false for flow node with '
    'id [{}] in C8 process. This is not supported by the migrator unless there is an '
    "explicit mapping for the 'legacyId' variable, as it would lead to orphaned "
    'sub-process instances.'
)
TENANT_ID_ERROR = (
    'Found a process instance with tenant id [{}] that is not configured for migration.'
)
ACTIVE_JOINING_PARALLEL_GATEWAY_ERROR = (
    'Found active joining parallel gateway with id [{}] for process instance [{}]. '
    'This is currently not supported by the migrator.'
)


class RuntimeValidator:
    """Fail-fast validation of a source process instance tree.

    Every instance of the tree is checked against its deployed target
    definition; the first failed check raises ``ValidationError`` with a
    message that becomes the skip reason. Nothing is written.
    """

    def __init__(
        self,
        source: SourceReader,
        target: TargetClient,
        tenant_ids: Iterable[str] = (),
        validation_job_type: Optional[str] = 'migrator',
    ):
        """Initialize validator.

        Args:
            source: Source engine reader
            target: Target engine client
            tenant_ids: Tenants configured for migration
            validation_job_type: Execution listener type every process start
                event must declare, None to skip the check
        """
        self.source = source
        self.target = target
        self.tenant_ids = set(tenant_ids)
        self.validation_job_type = validation_job_type
        self.logger = logger.bind(component='RuntimeValidator')

        self._source_models: Dict[str, BpmnModel] = {}
        self._target_models: Dict[int, BpmnModel] = {}

    def validate_process_instance_state(self, root_process_instance_id: str) -> None:
        """Validate a root instance and all of its running descendants.

        Raises:
            ValidationError: On the first check that fails
        """
        self.logger.debug(f'Validating source process instance {root_process_instance_id}')

        for instance in self.source.fetch_process_instance_tree(root_process_instance_id):
            tenant_id = instance.tenant_id
            self.validate_multi_tenancy(tenant_id)

            definitions = self.target.search_process_definitions(
                instance.process_definition_key, tenant_id
            )
            self.validate_target_definition_exists(
                definitions, instance.process_definition_key, tenant_id, instance.id
            )
            definition = definitions[0]
            target_model = self._target_model(definition)
            self.validate_target_process(target_model, definition)

            tree = self.source.get_activity_instance_tree(instance.id)
            if tree is None:
                continue

            active = tree.active_flow_nodes()
            self.logger.debug(
                f'Found {len(active)} active flow nodes to validate in {instance.id}'
            )
            for activity_id in active.values():
                self.validate_source_flow_node(
                    instance.process_definition_id, root_process_instance_id, activity_id
                )
                self.validate_target_flow_node(target_model, activity_id)

    def validate_multi_tenancy(self, tenant_id: Optional[str]) -> None:
        if tenant_id and tenant_id not in self.tenant_ids:
            raise ValidationError(TENANT_ID_ERROR.format(tenant_id))

    def validate_target_definition_exists(
        self,
        definitions: List[ProcessDefinitionInfo],
        bpmn_process_id: str,
        tenant_id: Optional[str],
        source_instance_id: str,
    ) -> None:
        if definitions:
            return
        if tenant_id:
            raise ValidationError(
                NO_C8_TENANT_DEPLOYMENT_ERROR.format(bpmn_process_id, tenant_id, source_instance_id)
            )
        raise ValidationError(NO_C8_DEPLOYMENT_ERROR.format(bpmn_process_id, source_instance_id))

    def validate_target_process(
        self, model: BpmnModel, definition: ProcessDefinitionInfo
    ) -> None:
        """Check the start events of a deployed target definition."""
        if not model.has_none_start_event():
            raise ValidationError(
                NO_NONE_START_EVENT_ERROR.format(
                    definition.process_definition_id, definition.version
                )
            )

        job_type = self.validation_job_type
        if job_type is None:
            self.logger.debug('Execution listener validation is disabled')
            return

        for event in model.process_start_events():
            if job_type not in model.execution_listener_types(event):
                raise ValidationError(
                    NO_EXECUTION_LISTENER_OF_TYPE_ERROR.format(
                        job_type,
                        event.get('id'),
                        definition.process_definition_id,
                        definition.version,
                        job_type,
                    )
                )

    def validate_source_flow_node(
        self, process_definition_id: str, process_instance_id: str, activity_id: str
    ) -> None:
        """Reject active source elements without target semantics."""
        model = self._source_model(process_definition_id)

        if model.is_multi_instance(activity_id):
            raise ValidationError(
                MULTI_INSTANCE_LOOP_CHARACTERISTICS_ERROR.format(
                    activity_id.replace(MULTI_INSTANCE_BODY_SUFFIX, '')
                )
            )

        if model.is_parallel_gateway(activity_id):
            raise ValidationError(
                ACTIVE_JOINING_PARALLEL_GATEWAY_ERROR.format(activity_id, process_instance_id)
            )

    def validate_target_flow_node(self, model: BpmnModel, activity_id: str) -> None:
        if not model.has_element(activity_id):
            raise ValidationError(FLOW_NODE_NOT_EXISTS_ERROR.format(activity_id))

        if model.call_activity_drops_legacy_id(activity_id, LEGACY_ID_VAR_NAME):
            raise ValidationError(CALL_ACTIVITY_LEGACY_ID_ERROR.format(activity_id))

    def clear_cache(self) -> None:
        self._source_models.clear()
        self._target_models.clear()

    def _source_model(self, process_definition_id: str) -> BpmnModel:
        model = self._source_models.get(process_definition_id)
        if model is None:
            xml = self.source.get_process_definition_xml(process_definition_id)
            if xml is None:
                raise ValidationError(NO_C7_MODEL_ERROR.format(process_definition_id))
            model = BpmnModel(xml)
            self._source_models[process_definition_id] = model
        return model

    def _target_model(self, definition: ProcessDefinitionInfo) -> BpmnModel:
        key = definition.process_definition_key
        model = self._target_models.get(key)
        if model is None:
            model = BpmnModel(self.target.get_process_definition_xml(key))
            self._target_models[key] = model
        return model
