"""Migration of running process instances."""

from typing import List, Optional

from ..api.interface import ActivatedJob, FlowNodeActivation, SourceQuery
from ..conversion.context import ConversionContext
from ..models.source import HistoricActivityInstance, HistoricProcessInstance
from ..models.target import ModelBuilder, ProcessInstanceStart
from ..persistence.models import EntityType
from .exceptions import (
    SKIP_REASON_PROCESS_INSTANCE_NOT_RUNNING,
    CompensationRecord,
    EntitySkippedError,
)
from .strategy import BaseMigrator, MigratorMode, MigratorReport
from .variables import LEGACY_ID_VAR_NAME

CALL_ACTIVITY = 'callActivity'


class RuntimeMigrator(BaseMigrator):
    """Restarts unfinished root process instances on the target cluster.

    Each instance is started at its none start event, where the migrator
    job parks it. ``activate_migrator_jobs`` then moves every parked
    instance to the elements that are active on the source.
    """

    ENTITY_TYPES = [EntityType.RUNTIME_PROCESS_INSTANCE]

    def base_query(self, entity_type: EntityType) -> SourceQuery:
        return SourceQuery(unfinished_only=True, root_only=True)

    def migrate_entity(self, instance: HistoricProcessInstance) -> Optional[int]:
        process_instance_id = instance.source_id

        current = self.source.get_single(EntityType.RUNTIME_PROCESS_INSTANCE, process_instance_id)
        if current is None or current.finished:
            if self.mode == MigratorMode.RETRY_SKIPPED:
                raise EntitySkippedError(
                    process_instance_id, SKIP_REASON_PROCESS_INSTANCE_NOT_RUNNING
                )
            self.logger.info(
                f'Process instance {process_instance_id} no longer runs on the source, '
                f'nothing to migrate'
            )
            return None

        if self.context.validator is not None:
            self.context.validator.validate_process_instance_state(process_instance_id)

        self.logger.info(f'Starting new target instance for {process_instance_id}')
        variables = self.context.variable_service.get_global_variables(process_instance_id)
        context = ConversionContext(
            current, ModelBuilder(ProcessInstanceStart), {'variables': variables}
        )
        command: ProcessInstanceStart = self.context.conversion.convert(context)

        process_instance_key = self.target.create_process_instance(
            command.bpmn_process_id, command.tenant_id, command.variables
        )
        self.logger.info(
            f'Started target instance {process_instance_key} for {process_instance_id}'
        )
        return process_instance_key

    def compensate_entity(self, record: CompensationRecord) -> None:
        self.target.cancel_process_instance(record.target_key)

    def after_migrate(self, report: MigratorReport) -> None:
        self.activate_migrator_jobs()
        if self.context.validator is not None:
            # parsed models are valid for one run only
            self.context.validator.clear_cache()

    def activate_migrator_jobs(self) -> int:
        """Move parked target instances to their active source elements.

        Returns:
            Number of jobs handled
        """
        job_type = self.context.job_type
        self.logger.info(f'Activating migrator jobs of type {job_type}')

        handled = 0
        while True:
            jobs = self.target.activate_jobs(job_type)
            self.logger.debug(f'Found {len(jobs)} migrator jobs')
            if not jobs:
                break
            for job in jobs:
                self.handle_migrator_job(job)
                handled += 1
        return handled

    def handle_migrator_job(self, job: ActivatedJob) -> None:
        legacy_id = job.variables.get(LEGACY_ID_VAR_NAME)
        if legacy_id is None:
            self.logger.info(
                f'Process instance {job.process_instance_key} was started externally, '
                f'leaving job {job.key} alone'
            )
            return

        tree = self.source.get_activity_instance_tree(legacy_id)
        if tree is None:
            self.logger.warning(
                f'Source instance {legacy_id} of target instance '
                f'{job.process_instance_key} has no activity tree, job {job.key} left as is'
            )
            return

        active = tree.active_flow_nodes()
        self.logger.debug(f'Found {len(active)} active elements in {legacy_id}')
        call_activities = {
            node.id for node in tree.walk() if node.activity_type == CALL_ACTIVITY
        }

        activations: List[FlowNodeActivation] = []
        for activity_instance_id, element_id in active.items():
            sub_process_instance_id = None
            if activity_instance_id in call_activities:
                sub_process_instance_id = self._called_instance(activity_instance_id)
            variables = self.context.variable_service.get_local_variables(
                activity_instance_id, sub_process_instance_id
            )
            activations.append(FlowNodeActivation(element_id=element_id, variables=variables))

        self.target.modify_process_instance(
            job.process_instance_key, job.element_instance_key, activations
        )
        self.logger.debug(
            f'Moved target instance {job.process_instance_key} to '
            f'{", ".join(a.element_id for a in activations)}'
        )

    def _called_instance(self, activity_instance_id: str) -> Optional[str]:
        node: Optional[HistoricActivityInstance] = self.source.get_single(
            EntityType.HISTORY_FLOW_NODE, activity_instance_id
        )
        return node.called_process_instance_id if node else None
