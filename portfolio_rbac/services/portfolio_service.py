"""
Portfolio Service: portfolio settings and property registration.

Each call authorizes through ``PortfolioActionAuthorizer`` and returns a
``(decision, value)`` pair; value is None (or empty) when denied.
"""

import logging

from portfolio_rbac.core.exceptions import NotFoundError, ValidationError
from portfolio_rbac.services.authorizer import PortfolioActionAuthorizer
from portfolio_rbac.services.permission_evaluator import PortfolioAction

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("name", "description")


def _clean_name(value, field="name"):
    name = (value or "").strip()
    if not name:
        raise ValidationError(f"{field} is required", {field: "required"})
    if len(name) > 200:
        raise ValidationError(f"{field} is too long", {field: "max 200 characters"})
    return name


def get_portfolio(store, actor_id: str, portfolio_id: str):
    decision = PortfolioActionAuthorizer(store).authorize(actor_id, portfolio_id, PortfolioAction.VIEW_PORTFOLIO)
    if not decision:
        return decision, None
    portfolio = store.get_portfolio(portfolio_id)
    if portfolio is None:
        raise NotFoundError("Portfolio", portfolio_id)
    return decision, portfolio


def update_portfolio(store, actor_id: str, portfolio_id: str, data: dict):
    """Update name/description. Unknown keys are ignored."""
    fields = {k: data[k] for k in _EDITABLE_FIELDS if k in data}
    if not fields:
        raise ValidationError("Nothing to update", {"fields": list(_EDITABLE_FIELDS)})
    if "name" in fields:
        fields["name"] = _clean_name(fields["name"])

    decision = PortfolioActionAuthorizer(store).authorize(actor_id, portfolio_id, PortfolioAction.EDIT_PORTFOLIO)
    if not decision:
        return decision, None

    with store.transaction():
        portfolio = store.update_portfolio(portfolio_id, **fields)
        if portfolio is None:
            raise NotFoundError("Portfolio", portfolio_id)
    logger.info("Portfolio %s updated by %s", portfolio_id, actor_id, extra={"portfolio_id": portfolio_id})
    return decision, portfolio


def add_property(store, actor_id: str, portfolio_id: str, name: str):
    name = _clean_name(name)
    decision = PortfolioActionAuthorizer(store).authorize(actor_id, portfolio_id, PortfolioAction.ADD_PROPERTIES)
    if not decision:
        return decision, None
    with store.transaction():
        prop = store.insert_property(portfolio_id=portfolio_id, name=name)
    logger.info(
        "Property %s added to %s by %s", prop.id, portfolio_id, actor_id,
        extra={"portfolio_id": portfolio_id, "user_id": str(actor_id)},
    )
    return decision, prop


def list_properties(store, actor_id: str, portfolio_id: str):
    """Properties of the portfolio that the actor's override lets them see."""
    decision = PortfolioActionAuthorizer(store).authorize(actor_id, portfolio_id, PortfolioAction.VIEW_PORTFOLIO)
    if not decision:
        return decision, []
    properties = store.get_portfolio_properties(portfolio_id)
    visible = decision.context.resolver.accessible_properties([p.id for p in properties])
    return decision, [p for p in properties if p.id in visible]
