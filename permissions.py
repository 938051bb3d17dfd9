import logging
from enum import IntFlag

from errors import PermissionDenied

logger = logging.getLogger(__name__)


class Permission(IntFlag):
    LIST = 1
    CREATE = 2
    UPDATE = 4
    DELETE = 8
    ALL = LIST | CREATE | UPDATE | DELETE


CAPABILITIES = (Permission.LIST, Permission.CREATE, Permission.UPDATE, Permission.DELETE)


def has_permission(roles: int, required: int) -> bool:
    return (int(roles) & int(required)) != 0


def check_permission(roles: int, required: int) -> None:
    """Raise PermissionDenied unless the role bitmask carries the required bit."""
    if not has_permission(roles, required):
        logger.warning("Permission denied: roles=%s required=%s", int(roles), int(required))
        raise PermissionDenied(int(required), int(roles))


def describe_roles(roles: int) -> list:
    return [p.name.lower() for p in CAPABILITIES if has_permission(roles, p)]
