"""Log formatters carry the authorization scope fields."""

import json
import logging

from portfolio_rbac.middleware.logging_config import JSONFormatter, ReadableFormatter


def _record(msg="denied", **extra):
    return logging.getLogger("portfolio_rbac.services.authorizer").makeRecord(
        "portfolio_rbac.services.authorizer", logging.INFO, __file__, 1, msg, (), None, extra=extra,
    )


class TestJSONFormatter:
    def test_scope_fields_at_top_level(self):
        line = JSONFormatter().format(_record(portfolio_id="p1", user_id="u2", action="remove_members"))
        entry = json.loads(line)
        assert entry["message"] == "denied"
        assert entry["level"] == "INFO"
        assert entry["portfolio_id"] == "p1"
        assert entry["user_id"] == "u2"
        assert entry["action"] == "remove_members"

    def test_missing_fields_omitted(self):
        entry = json.loads(JSONFormatter().format(_record(portfolio_id="p1", user_id=None)))
        assert "user_id" not in entry
        assert "status" not in entry
        assert entry["portfolio_id"] == "p1"


class TestReadableFormatter:
    def test_scope_in_brackets(self):
        line = ReadableFormatter().format(_record(portfolio_id="p1", user_id="u2", action="remove_members"))
        assert "[portfolio=p1 user=u2 action=remove_members] denied" in line
        assert "portfolio_rbac.services.authorizer" in line

    def test_no_scope_no_brackets(self):
        line = ReadableFormatter().format(_record("started"))
        assert "[" not in line
        assert line.endswith("started")
