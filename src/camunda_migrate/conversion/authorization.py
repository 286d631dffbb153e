"""Translation of Camunda 7 authorizations into Camunda 8 permission sets."""

from typing import Dict, FrozenSet, List, NamedTuple

from ..migration.exceptions import EntitySkippedError
from ..models.source import Authorization
from ..models.target import AuthorizationRecord

WILDCARD = '*'
AUTH_TYPE_GRANT = 1

FAILURE_GLOBAL_AND_REVOKE_UNSUPPORTED = 'GLOBAL and REVOKE authorization types are not supported'
FAILURE_UNSUPPORTED_RESOURCE_TYPE = 'Resource type [{}] is not supported'
FAILURE_UNSUPPORTED_PERMISSION_TYPE = (
    'Permission type [{}] is not supported for resource type [{}]'
)
FAILURE_UNSUPPORTED_SPECIFIC_RESOURCE_ID = (
    'Specific resource ID [{}] is not supported for resource type [{}], '
    'only wildcard is allowed'
)
FAILURE_UNSUPPORTED_RESOURCE_ID = 'Resource ID [{}] is not supported for resource type [{}]'
FAILURE_NO_OWNER = 'Authorization has neither a user nor a group'

# Camunda 7 resource type ids
RESOURCE_NAMES: Dict[int, str] = {
    0: 'Application',
    1: 'User',
    2: 'Group',
    3: 'Group membership',
    4: 'Authorization',
    5: 'Filter',
    6: 'Process Definition',
    7: 'Task',
    8: 'Process Instance',
    9: 'Deployment',
    10: 'Decision Definition',
    11: 'Tenant',
    12: 'Tenant membership',
    13: 'Batch',
    14: 'Decision Requirements Definition',
    17: 'Historic Task',
    18: 'Historic Process Instance',
    20: 'Operation Log Category',
    21: 'System',
}

CRUD = frozenset({'CREATE', 'READ', 'UPDATE', 'DELETE'})

# Permissions each Camunda 8 resource type accepts
SUPPORTED_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    'COMPONENT': frozenset({'ACCESS'}),
    'USER': CRUD,
    'GROUP': CRUD,
    'AUTHORIZATION': CRUD,
    'TENANT': CRUD,
    'BATCH': frozenset({'CREATE', 'READ', 'UPDATE'}),
    'SYSTEM': frozenset({'READ', 'READ_USAGE_METRIC', 'UPDATE'}),
}


class AuthorizationMapping(NamedTuple):
    """How one Camunda 7 resource type maps to Camunda 8."""

    resource_type: str
    needs_id_mapping: bool
    supports_explicit_id: bool
    permissions: Dict[str, FrozenSet[str]]


def _crud_mapping(resource_type: str, supports_explicit_id: bool) -> AuthorizationMapping:
    permissions = {p: frozenset({p}) for p in CRUD & SUPPORTED_PERMISSIONS[resource_type]}
    permissions['ALL'] = SUPPORTED_PERMISSIONS[resource_type]
    return AuthorizationMapping(resource_type, False, supports_explicit_id, permissions)


AUTHORIZATION_REGISTRY: Dict[int, AuthorizationMapping] = {
    0: AuthorizationMapping(
        'COMPONENT',
        True,
        True,
        {'ALL': SUPPORTED_PERMISSIONS['COMPONENT'], 'ACCESS': frozenset({'ACCESS'})},
    ),
    1: _crud_mapping('USER', True),
    2: _crud_mapping('GROUP', True),
    3: AuthorizationMapping('GROUP', False, True, {'ALL': frozenset({'UPDATE'})}),
    4: _crud_mapping('AUTHORIZATION', False),
    11: _crud_mapping('TENANT', True),
    12: AuthorizationMapping('TENANT', False, True, {'ALL': frozenset({'UPDATE'})}),
    13: _crud_mapping('BATCH', False),
    21: AuthorizationMapping(
        'SYSTEM',
        False,
        False,
        {
            'ALL': SUPPORTED_PERMISSIONS['SYSTEM'],
            'READ': frozenset({'READ', 'READ_USAGE_METRIC'}),
        },
    ),
}

APPLICATION_COMPONENTS = {
    WILDCARD: WILDCARD,
    'cockpit': 'operate',
    'tasklist': 'tasklist',
    'admin': 'identity',
}


def resource_name(resource_type: int) -> str:
    return RESOURCE_NAMES.get(resource_type, str(resource_type))


def decode_permissions(permissions: List[str]) -> List[str]:
    """ALL alone when granted, otherwise every permission except NONE."""
    if 'ALL' in permissions:
        return ['ALL']
    return [p for p in permissions if p != 'NONE']


def map_authorization(authorization: Authorization) -> AuthorizationRecord:
    """Translate a Camunda 7 authorization into its Camunda 8 counterpart.

    Raises:
        EntitySkippedError: If the authorization has no Camunda 8 equivalent
    """

    def fail(reason: str) -> EntitySkippedError:
        return EntitySkippedError(authorization.id, reason)

    if authorization.type != AUTH_TYPE_GRANT:
        raise fail(FAILURE_GLOBAL_AND_REVOKE_UNSUPPORTED)

    name = resource_name(authorization.resource_type)
    mapping = AUTHORIZATION_REGISTRY.get(authorization.resource_type)
    if mapping is None:
        raise fail(FAILURE_UNSUPPORTED_RESOURCE_TYPE.format(name))

    permissions = set()
    for permission in decode_permissions(authorization.permissions):
        if permission not in mapping.permissions:
            raise fail(FAILURE_UNSUPPORTED_PERMISSION_TYPE.format(permission, name))
        permissions |= mapping.permissions[permission]

    resource_id = authorization.resource_id
    if resource_id != WILDCARD and not mapping.supports_explicit_id:
        raise fail(FAILURE_UNSUPPORTED_SPECIFIC_RESOURCE_ID.format(resource_id, name))

    if mapping.needs_id_mapping:
        mapped_id = APPLICATION_COMPONENTS.get(resource_id)
        if mapped_id is None:
            raise fail(FAILURE_UNSUPPORTED_RESOURCE_ID.format(resource_id, name))
        resource_id = mapped_id

    if authorization.user_id:
        owner_type, owner_id = 'USER', authorization.user_id
    elif authorization.group_id:
        owner_type, owner_id = 'GROUP', authorization.group_id
    else:
        raise fail(FAILURE_NO_OWNER)

    return AuthorizationRecord(
        owner_id=owner_id,
        owner_type=owner_type,
        resource_type=mapping.resource_type,
        resource_id=resource_id,
        permission_types=sorted(permissions),
    )
