"""
Exception hierarchy for the authorization core.

Expected outcomes (access denied, not a member, property not visible) are
returned as values by the services and never raised. The types below are
reserved for conditions a caller cannot treat as a normal "no":

  - NotFoundError / ValidationError / ConflictError: request-shaped problems
    raised by the membership service (unknown member id, malformed
    property-access map, duplicate invitation).
  - InvariantViolation: a write that would break an ownership or role
    invariant reached the write path. Always a bug upstream.
  - StorageFailure: the storage collaborator failed. Propagated unchanged.

Usage:
    from portfolio_rbac.core.exceptions import InvariantViolation

    raise InvariantViolation("second_owner", "portfolio already has an owner",
                             portfolio_id=pid)
"""


class NotFoundError(Exception):
    """Raised when a referenced record does not exist in the given portfolio.

    Args:
        resource: Human-readable entity name (e.g. "Membership", "Invitation").
        resource_id: The id that was looked up. Included in logs only.
        portfolio_id: Optional scope that was enforced.
    """

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        portfolio_id: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.portfolio_id = portfolio_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if portfolio_id is not None:
            msg += f" (portfolio={portfolio_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique record.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class InvariantViolation(Exception):
    """Raised before any write that would break a membership invariant.

    Examples: a second owner row, removing the only owner, an actor assigning
    a role equal to or above their own. The authorizer denies these cases on
    the normal path, so reaching this exception means a caller skipped it.

    Args:
        rule: Short machine-readable rule name (e.g. "second_owner").
        message: Human-readable explanation.
        portfolio_id: Portfolio the write targeted.
    """

    def __init__(self, rule: str, message: str, portfolio_id: str | None = None) -> None:
        self.rule = rule
        self.portfolio_id = portfolio_id
        super().__init__(f"[{rule}] {message}")


class StorageFailure(Exception):
    """Raised by the storage collaborator when the database call fails.

    The original driver/ORM exception is kept as ``__cause__``.
    """

    def __init__(self, operation: str, message: str | None = None) -> None:
        self.operation = operation
        super().__init__(f"storage operation '{operation}' failed" + (f": {message}" if message else ""))
