"""
Portfolio RBAC service
Blueprint helpers shared by the API blueprints.
"""

import logging

from flask import g, request

from portfolio_rbac.core.exceptions import (
    ConflictError,
    InvariantViolation,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from portfolio_rbac.models import db
from portfolio_rbac.services.permission_store import PermissionStore
from portfolio_rbac.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def get_store() -> PermissionStore:
    """One store per request, bound to the Flask-SQLAlchemy session."""
    if "permission_store" not in g:
        g.permission_store = PermissionStore(db.session)
    return g.permission_store


def current_user_id() -> str | None:
    return getattr(g, "jwt_user_id", None)


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def deny_response(decision):
    """403 for a Deny decision, carrying its machine-readable code."""
    return api_error(E.FORBIDDEN, decision.reason, details=decision.to_dict())


def not_member_response(not_member):
    return api_error(E.FORBIDDEN, not_member.reason, details={"code": "not_member"})


def not_visible_response(not_visible):
    return api_error(E.NOT_FOUND, not_visible.reason, details={"property_id": not_visible.property_id})


def register_error_handlers(bp):
    """Map service-layer exceptions to standard API errors on *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(InvariantViolation)
    def _handle_invariant(error: InvariantViolation):
        return api_error(E.INVARIANT, str(error), details={"rule": error.rule})

    @bp.errorhandler(StorageFailure)
    def _handle_storage(error: StorageFailure):
        logger.exception("Storage failure in endpoint=%s", request.endpoint)
        return api_error(E.DATABASE, "Database error")

    return bp


