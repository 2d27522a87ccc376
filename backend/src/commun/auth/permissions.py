"""Permission evaluation for entity actions, properties and joins.

A permission rule is one of ``anyone``, ``user``, ``own``, ``system`` or an
ordered list of them. Rules are checked in a fixed order and the first
match wins:

1. ``anyone`` allows every caller
2. anonymous callers are denied
3. ``user`` allows any authenticated caller
4. ``own`` allows the caller whose identity is stored in the record's
   ownership field
5. any rule that is not system-only allows admins
6. everything else is denied
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping

from commun.auth.types import ANONYMOUS, AuthPermissions
from commun.entity.schema import USERS_ENTITY
from commun.metadata.types import PermissionRule

if TYPE_CHECKING:
    from commun.registry import Registry


def rule_includes(rule: PermissionRule, value: str) -> bool:
    """Check whether a rule (single value or list) contains a value."""
    if isinstance(rule, (list, tuple)):
        return value in rule
    return rule == value


def is_system_only(rule: PermissionRule) -> bool:
    if isinstance(rule, (list, tuple)):
        return all(entry == "system" for entry in rule)
    return rule == "system"


def has_valid_permission(
    auth: AuthPermissions,
    record: Mapping[str, Any] | None,
    action: str,
    permissions: Mapping[str, PermissionRule] | None,
    owner_field: str | None = None,
) -> bool:
    """Decide whether the caller may perform an action.

    Args:
        auth: Caller identity
        record: Target record, or None when there is none yet (create, list)
        action: "get", "create", "update" or "delete"
        permissions: Action -> rule map; a missing rule denies
        owner_field: Record field holding the owner identity, if any

    Returns:
        True if access is granted
    """
    rule = permissions.get(action) if permissions else None
    if not rule:
        return False

    if rule_includes(rule, "anyone"):
        return True
    if not auth.user_id:
        return False
    if rule_includes(rule, "user"):
        return True

    if rule_includes(rule, "own") and record is not None and owner_field:
        owner = record.get(owner_field)
        if isinstance(owner, dict):
            owner = owner.get("id")
        if owner is not None and str(owner) == auth.user_id:
            return True

    if not is_system_only(rule):
        return auth.is_admin

    return False


async def get_auth_permissions(
    registry: "Registry",
    auth: Mapping[str, Any] | None,
) -> AuthPermissions:
    """Resolve the caller identity for a request.

    The privileged flag comes from the ``admin`` field of the caller's own
    record in the users entity. A token whose user no longer exists is
    treated as anonymous. Without a registered users entity every
    authenticated caller is unprivileged.
    """
    user_id = auth.get("id") if auth else None
    if not user_id:
        return ANONYMOUS

    if not registry.has(USERS_ENTITY):
        return AuthPermissions(user_id=str(user_id), is_admin=False)

    user = await registry.get_dao(USERS_ENTITY).find_one_by_id(str(user_id))
    if not user or not user.get("id"):
        return ANONYMOUS
    return AuthPermissions(user_id=str(user["id"]), is_admin=bool(user.get("admin")))
