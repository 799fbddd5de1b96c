"""
Permission context builder: the single read path from storage into the
authorization core.

``build_permission_context`` loads the one membership row for
(user, portfolio) and freezes it into a ``PermissionContext``. Contexts are
built fresh for every decision and never cached: a role or override change
must be visible to the very next request.

A missing membership is returned as ``NotMember`` (a value, not an
exception). Callers translate it to "no access".
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from portfolio_rbac.services.property_access import PropertyAccessResolver
from portfolio_rbac.services.role_hierarchy import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionContext:
    user_id: str
    portfolio_id: str
    role: Role
    property_access: Mapping[str, tuple[str, ...]] | None = None

    @property
    def resolver(self) -> PropertyAccessResolver:
        return PropertyAccessResolver(self.role, self.property_access)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "portfolio_id": self.portfolio_id,
            "role": self.role.value,
            "property_access": freeze_property_access_as_dict(self.property_access),
        }


@dataclass(frozen=True)
class NotMember:
    """No membership row exists for (user_id, portfolio_id)."""

    user_id: str
    portfolio_id: str
    reason: str = "not a member of this portfolio"


def freeze_property_access(value) -> Mapping[str, tuple[str, ...]] | None:
    """Read-only copy of a stored property-access map (None stays None)."""
    if value is None:
        return None
    return MappingProxyType({str(k): tuple(v or ()) for k, v in value.items()})


def freeze_property_access_as_dict(value) -> dict[str, list[str]] | None:
    if value is None:
        return None
    return {k: list(v) for k, v in value.items()}


def context_from_membership(membership) -> PermissionContext:
    """Build a context from an already-loaded membership row."""
    return PermissionContext(
        user_id=str(membership.user_id),
        portfolio_id=membership.portfolio_id,
        role=Role(membership.role),
        property_access=freeze_property_access(membership.property_access),
    )


def build_permission_context(store, user_id: str, portfolio_id: str) -> PermissionContext | NotMember:
    """
    Load the membership for (user_id, portfolio_id) and freeze it.

    Args:
        store: PermissionStore (or any object exposing ``get_membership``).
        user_id: Acting user.
        portfolio_id: Portfolio being accessed.

    Returns:
        PermissionContext, or NotMember when no membership exists.
    """
    membership = store.get_membership(str(user_id), portfolio_id)
    if membership is None:
        logger.debug("No membership for user=%s portfolio=%s", user_id, portfolio_id)
        return NotMember(user_id=str(user_id), portfolio_id=portfolio_id)
    return context_from_membership(membership)
