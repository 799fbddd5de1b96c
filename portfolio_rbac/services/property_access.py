"""
Property-level access resolution.

A membership either carries no override (``property_access is None``), in
which case every property in the portfolio is accessible with the role's
default action set, or an explicit map ``{property_id: [action, ...]}`` that
restricts access to exactly the listed properties and listed actions.

Rules:
  - ``None``  → full access, role defaults.
  - ``{}``    → no accessible properties at all (NOT the same as None).
  - listed    → the stored action set as-is, not intersected with role
                defaults (a viewer can be granted edit on one property).
  - stale key → a listed property that no longer belongs to the portfolio is
                simply ignored.
"""

from enum import Enum

from portfolio_rbac.core.exceptions import ValidationError
from portfolio_rbac.services.role_hierarchy import Role


class PropertyAction(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    MANAGE = "manage"
    DELETE = "delete"


# Increasing privilege.
PROPERTY_ACTIONS: tuple[PropertyAction, ...] = (
    PropertyAction.VIEW,
    PropertyAction.EDIT,
    PropertyAction.MANAGE,
    PropertyAction.DELETE,
)

PROPERTY_ACTION_LABELS: dict[PropertyAction, str] = {
    PropertyAction.VIEW: "View",
    PropertyAction.EDIT: "Edit",
    PropertyAction.MANAGE: "Manage",
    PropertyAction.DELETE: "Delete",
}

PROPERTY_ACTION_DESCRIPTIONS: dict[PropertyAction, str] = {
    PropertyAction.VIEW: "View property details, financials, and transactions",
    PropertyAction.EDIT: "Modify property data, add transactions, update financials",
    PropertyAction.MANAGE: "Update property settings, manage loans, and configure notifications",
    PropertyAction.DELETE: "Remove the property from the portfolio",
}

ROLE_DEFAULT_ACTIONS: dict[Role, frozenset[PropertyAction]] = {
    Role.OWNER: frozenset(PROPERTY_ACTIONS),
    Role.ADMIN: frozenset(PROPERTY_ACTIONS),
    Role.MEMBER: frozenset({PropertyAction.VIEW, PropertyAction.EDIT}),
    Role.VIEWER: frozenset({PropertyAction.VIEW}),
}


class PropertyAccessResolver:
    """Resolve accessible properties and per-property actions for one membership."""

    def __init__(self, role: Role, property_access: dict | None):
        self.role = Role(role)
        self.property_access = property_access

    @property
    def has_full_access(self) -> bool:
        return self.property_access is None

    def is_listed(self, property_id: str) -> bool:
        if self.property_access is None:
            return True
        return str(property_id) in self.property_access

    def accessible_properties(self, portfolio_property_ids) -> frozenset[str]:
        """
        Property ids this membership can see.

        Args:
            portfolio_property_ids: Every property id currently in the portfolio.
        """
        all_ids = frozenset(str(pid) for pid in portfolio_property_ids)
        if self.property_access is None:
            return all_ids
        return frozenset(self.property_access.keys()) & all_ids

    def allowed_actions(self, property_id: str) -> frozenset[PropertyAction]:
        if self.property_access is None:
            return ROLE_DEFAULT_ACTIONS[self.role]
        granted = self.property_access.get(str(property_id))
        if not granted:
            return frozenset()
        return frozenset(PropertyAction(a) for a in granted if is_valid_property_action(a))

    def __repr__(self):
        mode = "full" if self.property_access is None else f"{len(self.property_access)} listed"
        return f"<PropertyAccessResolver {self.role.value} {mode}>"


# ── Validation ───────────────────────────────────────────────────────────────

def is_valid_property_action(value) -> bool:
    if isinstance(value, PropertyAction):
        return True
    return isinstance(value, str) and value in {a.value for a in PROPERTY_ACTIONS}


def is_valid_property_access(value) -> bool:
    """True when *value* is None or a ``{str: [action, ...]}`` map."""
    if value is None:
        return True
    if not isinstance(value, dict):
        return False
    for property_id, actions in value.items():
        if not isinstance(property_id, str) or not property_id:
            return False
        if not isinstance(actions, (list, tuple, set, frozenset)):
            return False
        if not all(is_valid_property_action(a) for a in actions):
            return False
    return True


def normalize_property_access(value) -> dict[str, list[str]] | None:
    """
    Validate a property-access map and return its canonical storage form.

    Actions are de-duplicated and ordered view → delete. ``None`` and ``{}``
    are preserved as-is because they mean different things.

    Raises:
        ValidationError: if the map is malformed.
    """
    if value is None:
        return None
    if not is_valid_property_access(value):
        raise ValidationError(
            "property_access must be null or a map of property id to a list of "
            f"actions ({', '.join(a.value for a in PROPERTY_ACTIONS)})",
            details={"property_access": value if isinstance(value, dict) else repr(value)},
        )
    order = {a.value: i for i, a in enumerate(PROPERTY_ACTIONS)}
    return {
        property_id: sorted({PropertyAction(a).value for a in actions}, key=order.__getitem__)
        for property_id, actions in value.items()
    }


def actions_to_list(actions) -> list[str]:
    """Stable, privilege-ordered list of action values for API payloads."""
    return [a.value for a in PROPERTY_ACTIONS if a in actions]
