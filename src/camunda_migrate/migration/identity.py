"""Migration of tenants and authorizations."""

from typing import Optional, Type

from ..api.exceptions import EngineConflictError, EngineValidationError
from ..conversion.context import ConversionContext
from ..models.source import Authorization, SourceEntity, Tenant
from ..models.target import AuthorizationRecord, ModelBuilder, TargetRecord, TenantRecord
from ..persistence.models import EntityType
from .exceptions import CompensationRecord, EntitySkippedError
from .strategy import BaseMigrator

# Tenants have no key on the target, every migrated tenant records this one
DEFAULT_TENANT_KEY = 1


class IdentityMigrator(BaseMigrator):
    """Creates tenants, then authorizations, on the target cluster.

    Neither carries a create time, so each run scans all of them and passes
    over what the mapping store already recorded.
    """

    ENTITY_TYPES = EntityType.identity_types()

    def migrate_entity(self, entity: SourceEntity) -> Optional[int]:
        if isinstance(entity, Tenant):
            return self.migrate_tenant(entity)
        return self.migrate_authorization(entity)

    def migrate_tenant(self, tenant: Tenant) -> int:
        record = self._convert(tenant, TenantRecord)
        try:
            self.target.create_tenant(record.tenant_id, record.name)
        except (EngineConflictError, EngineValidationError) as e:
            raise EntitySkippedError(tenant.id, str(e)) from e
        self.logger.info(f'Created tenant {record.tenant_id}')
        return DEFAULT_TENANT_KEY

    def migrate_authorization(self, authorization: Authorization) -> int:
        record = self._convert(authorization, AuthorizationRecord)
        try:
            key = self.target.create_authorization(
                record.owner_id,
                record.owner_type,
                record.resource_type,
                record.resource_id,
                record.permission_types,
            )
        except (EngineConflictError, EngineValidationError) as e:
            raise EntitySkippedError(authorization.id, str(e)) from e
        self.logger.debug(
            f'Created {record.resource_type} authorization {key} for '
            f'{record.owner_type} {record.owner_id}'
        )
        return key

    def compensate_entity(self, record: CompensationRecord) -> None:
        if record.entity_type == EntityType.TENANT:
            self.target.delete_tenant(record.source_id)
        else:
            self.target.delete_authorization(record.target_key)

    def _convert(self, entity: SourceEntity, record_cls: Type[TargetRecord]) -> TargetRecord:
        context = ConversionContext(entity, ModelBuilder(record_cls))
        return self.context.conversion.convert(context)
