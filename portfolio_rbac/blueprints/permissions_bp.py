"""
Permission views for the current user.

Endpoints:
    GET /api/v1/permissions/<portfolio_id>
        — role, allowed portfolio actions and UI summary
    GET /api/v1/permissions/<portfolio_id>/property/<property_id>
        — capability flags for one property (404 when not visible)
"""

from flask import Blueprint, jsonify

from portfolio_rbac.blueprints import (
    current_user_id,
    get_store,
    not_member_response,
    not_visible_response,
    register_error_handlers,
)
from portfolio_rbac.middleware.jwt_auth import require_jwt
from portfolio_rbac.services.authorizer import NotVisible, PortfolioActionAuthorizer
from portfolio_rbac.services.permission_context import NotMember

permissions_bp = Blueprint("permissions", __name__, url_prefix="/api/v1/permissions")
register_error_handlers(permissions_bp)


@permissions_bp.route("/<portfolio_id>", methods=["GET"])
@require_jwt
def get_portfolio_permissions(portfolio_id):
    store = get_store()
    result = PortfolioActionAuthorizer(store).compute_portfolio_permissions(current_user_id(), portfolio_id)
    if isinstance(result, NotMember):
        return not_member_response(result)

    body = result.to_dict()
    # Drop stale override keys from the summary
    if body["permissions"]["accessible_property_ids"] is not None:
        live = set(store.get_portfolio_property_ids(portfolio_id))
        body["permissions"]["accessible_property_ids"] = [
            pid for pid in body["permissions"]["accessible_property_ids"] if pid in live
        ]
    return jsonify(body)


@permissions_bp.route("/<portfolio_id>/property/<property_id>", methods=["GET"])
@require_jwt
def get_property_permissions(portfolio_id, property_id):
    result = PortfolioActionAuthorizer(get_store()).compute_property_permissions(
        current_user_id(), portfolio_id, property_id,
    )
    if isinstance(result, NotMember):
        return not_member_response(result)
    if isinstance(result, NotVisible):
        return not_visible_response(result)
    return jsonify(result.to_dict())
