"""
Portfolio RBAC service
Portfolio, membership and invitation blueprint.

Endpoints:
    POST   /api/v1/portfolios                                     — create (caller becomes owner)
    GET    /api/v1/portfolios/<pid>                               — view
    PUT    /api/v1/portfolios/<pid>                               — edit settings
    GET    /api/v1/portfolios/<pid>/properties                    — visible properties
    POST   /api/v1/portfolios/<pid>/properties                    — add property
    GET    /api/v1/portfolios/<pid>/members                       — list members
    PUT    /api/v1/portfolios/<pid>/members/<mid>                 — change role / property access
    DELETE /api/v1/portfolios/<pid>/members/<mid>                 — remove member
    POST   /api/v1/portfolios/<pid>/leave                         — leave (non-owners)
    POST   /api/v1/portfolios/<pid>/transfer-ownership            — hand over owner role
    POST   /api/v1/portfolios/<pid>/invitations                   — invite by email
    GET    /api/v1/portfolios/<pid>/invitations                   — pending invitations
    DELETE /api/v1/portfolios/<pid>/invitations/<iid>             — revoke pending invitation
    POST   /api/v1/invitations/accept                             — accept with token
    GET    /api/v1/invitations/validate?token=                    — preview a token (no auth)
    GET    /api/v1/portfolios/<pid>/audit                         — permission audit log

The acting user is always ``g.jwt_user_id``. Service layer owns all
authorization and commits; views only translate results to responses.
"""

import logging

from flask import Blueprint, jsonify, request

from portfolio_rbac.blueprints import (
    current_user_id,
    deny_response,
    get_store,
    json_body,
    register_error_handlers,
)
from portfolio_rbac.core.exceptions import ValidationError
from portfolio_rbac.middleware.jwt_auth import require_jwt
from portfolio_rbac.models.audit import AUDIT_ACTIONS
from portfolio_rbac.services import audit_service, membership_service, portfolio_service
from portfolio_rbac.services.authorizer import PortfolioActionAuthorizer
from portfolio_rbac.services.permission_evaluator import PortfolioAction
from portfolio_rbac.utils.errors import E, api_error

logger = logging.getLogger(__name__)

portfolios_bp = Blueprint("portfolios", __name__, url_prefix="/api/v1")
register_error_handlers(portfolios_bp)


# ═════════════════════════════════════════════════════════════════════════
# Portfolios & properties
# ═════════════════════════════════════════════════════════════════════════

@portfolios_bp.route("/portfolios", methods=["POST"])
@require_jwt
def create_portfolio():
    """Body: {name, description?}. Returns the portfolio and owner membership (201)."""
    data = json_body()
    result = membership_service.create_portfolio(
        get_store(), current_user_id(), data.get("name"), data.get("description"),
    )
    return jsonify({
        "portfolio": result.portfolio.to_dict(),
        "membership": result.membership.to_dict(),
    }), 201


@portfolios_bp.route("/portfolios/<portfolio_id>", methods=["GET"])
@require_jwt
def get_portfolio(portfolio_id):
    decision, portfolio = portfolio_service.get_portfolio(get_store(), current_user_id(), portfolio_id)
    if not decision:
        return deny_response(decision)
    return jsonify(portfolio.to_dict())


@portfolios_bp.route("/portfolios/<portfolio_id>", methods=["PUT"])
@require_jwt
def update_portfolio(portfolio_id):
    decision, portfolio = portfolio_service.update_portfolio(
        get_store(), current_user_id(), portfolio_id, json_body(),
    )
    if not decision:
        return deny_response(decision)
    return jsonify(portfolio.to_dict())


@portfolios_bp.route("/portfolios/<portfolio_id>/properties", methods=["GET"])
@require_jwt
def list_properties(portfolio_id):
    decision, properties = portfolio_service.list_properties(get_store(), current_user_id(), portfolio_id)
    if not decision:
        return deny_response(decision)
    return jsonify({"properties": [p.to_dict() for p in properties], "total": len(properties)})


@portfolios_bp.route("/portfolios/<portfolio_id>/properties", methods=["POST"])
@require_jwt
def add_property(portfolio_id):
    decision, prop = portfolio_service.add_property(
        get_store(), current_user_id(), portfolio_id, json_body().get("name"),
    )
    if not decision:
        return deny_response(decision)
    return jsonify(prop.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# Members
# ═════════════════════════════════════════════════════════════════════════

@portfolios_bp.route("/portfolios/<portfolio_id>/members", methods=["GET"])
@require_jwt
def list_members(portfolio_id):
    decision, members = membership_service.list_members(get_store(), current_user_id(), portfolio_id)
    if not decision:
        return deny_response(decision)
    return jsonify({"members": [m.to_dict() for m in members], "total": len(members)})


@portfolios_bp.route("/portfolios/<portfolio_id>/members/<member_id>", methods=["PUT"])
@require_jwt
def update_member(portfolio_id, member_id):
    """
    Body: {role?, property_access?}

    ``property_access`` omitted keeps the stored override; ``null`` grants
    full access; ``{}`` removes all property access.
    """
    data = json_body()
    result = membership_service.change_member_role(
        get_store(),
        current_user_id(),
        portfolio_id,
        member_id,
        new_role=data.get("role"),
        property_access=data["property_access"] if "property_access" in data else membership_service.UNSET,
    )
    if not result:
        return deny_response(result.decision)
    return jsonify(result.membership.to_dict())


@portfolios_bp.route("/portfolios/<portfolio_id>/members/<member_id>", methods=["DELETE"])
@require_jwt
def remove_member(portfolio_id, member_id):
    result = membership_service.remove_member(get_store(), current_user_id(), portfolio_id, member_id)
    if not result:
        return deny_response(result.decision)
    return jsonify({"message": "Member removed"})


@portfolios_bp.route("/portfolios/<portfolio_id>/leave", methods=["POST"])
@require_jwt
def leave_portfolio(portfolio_id):
    result = membership_service.leave_portfolio(get_store(), current_user_id(), portfolio_id)
    if not result:
        return deny_response(result.decision)
    return jsonify({"message": "You have left the portfolio"})


@portfolios_bp.route("/portfolios/<portfolio_id>/transfer-ownership", methods=["POST"])
@require_jwt
def transfer_ownership(portfolio_id):
    """Body: {new_owner_user_id}."""
    new_owner = json_body().get("new_owner_user_id")
    if not new_owner:
        return api_error(E.VALIDATION_REQUIRED, "new_owner_user_id is required")
    result = membership_service.transfer_ownership(get_store(), current_user_id(), portfolio_id, new_owner)
    if not result:
        return deny_response(result.decision)
    return jsonify({"message": "Ownership transferred", "membership": result.membership.to_dict()})


# ═════════════════════════════════════════════════════════════════════════
# Invitations
# ═════════════════════════════════════════════════════════════════════════

@portfolios_bp.route("/portfolios/<portfolio_id>/invitations", methods=["POST"])
@require_jwt
def send_invitation(portfolio_id):
    """Body: {email, role, property_access?}. The token is returned to the inviter."""
    data = json_body()
    if not data.get("email"):
        return api_error(E.VALIDATION_REQUIRED, "email is required")
    if not data.get("role"):
        return api_error(E.VALIDATION_REQUIRED, "role is required")
    result = membership_service.send_invitation(
        get_store(),
        current_user_id(),
        portfolio_id,
        data["email"],
        data["role"],
        property_access=data.get("property_access"),
    )
    if not result:
        return deny_response(result.decision)
    return jsonify(result.invitation.to_dict(include_token=True)), 201


@portfolios_bp.route("/portfolios/<portfolio_id>/invitations", methods=["GET"])
@require_jwt
def list_invitations(portfolio_id):
    decision, invitations = membership_service.list_invitations(get_store(), current_user_id(), portfolio_id)
    if not decision:
        return deny_response(decision)
    return jsonify({"invitations": [i.to_dict() for i in invitations], "total": len(invitations)})


@portfolios_bp.route("/portfolios/<portfolio_id>/invitations/<invitation_id>", methods=["DELETE"])
@require_jwt
def revoke_invitation(portfolio_id, invitation_id):
    result = membership_service.revoke_invitation(get_store(), current_user_id(), portfolio_id, invitation_id)
    if not result:
        return deny_response(result.decision)
    return jsonify(result.invitation.to_dict())


@portfolios_bp.route("/invitations/accept", methods=["POST"])
@require_jwt
def accept_invitation():
    """Body: {token}."""
    token = json_body().get("token")
    if not token:
        return api_error(E.VALIDATION_REQUIRED, "token is required")
    result = membership_service.accept_invitation(get_store(), current_user_id(), token)
    return jsonify(result.membership.to_dict()), 201


@portfolios_bp.route("/invitations/validate", methods=["GET"])
def validate_invitation():
    """Query: token. Previews an invitation without accepting it; no auth required."""
    token = request.args.get("token")
    if not token:
        return api_error(E.VALIDATION_REQUIRED, "token is required")
    return jsonify(membership_service.preview_invitation(get_store(), token).to_dict())


# ═════════════════════════════════════════════════════════════════════════
# Audit
# ═════════════════════════════════════════════════════════════════════════

@portfolios_bp.route("/portfolios/<portfolio_id>/audit", methods=["GET"])
@require_jwt
def list_audit_logs(portfolio_id):
    """
    Paginated permission audit log, newest first.

    Query params:
        user_id   — filter by affected user
        action    — invitation_sent | invitation_accepted | role_change | access_revoked
        page      — page number (default 1)
        per_page  — items per page (default 50, max 200)
    """
    store = get_store()
    decision = PortfolioActionAuthorizer(store).authorize(
        current_user_id(), portfolio_id, PortfolioAction.VIEW_AUDIT_LOG,
    )
    if not decision:
        return deny_response(decision)

    action = request.args.get("action")
    if action and action not in AUDIT_ACTIONS:
        raise ValidationError(f"Unknown audit action: {action}", {"action": sorted(AUDIT_ACTIONS)})

    return jsonify(audit_service.list_audit_entries(
        store,
        portfolio_id,
        user_id=request.args.get("user_id"),
        action=action or None,
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 50, type=int),
    ))
