"""
Tests for the Supabase data store wrapper.

The supabase-py client is mocked: every builder method returns the same
query mock and execute() returns queued SimpleNamespace(data=...) results.
"""

from datetime import date
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from lexia.billing.usage import PeriodUsage, UserPlan
from lexia.exceptions import DependencyError
from lexia.integrations.supabase_client import CASE_SNAPSHOT_SELECT, LexiaDB


def _client(*datas):
    client = MagicMock()
    query = MagicMock()
    for method in ("select", "eq", "limit", "insert"):
        getattr(query, method).return_value = query
    query.execute.side_effect = [SimpleNamespace(data=d) for d in datas]
    client.table.return_value = query
    client.rpc.return_value = query
    return client, query


class TestInit:

    def test_requires_env(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(EnvironmentError):
                LexiaDB()

    def test_creates_client_from_env(self):
        env = {"SUPABASE_URL": "https://x.supabase.co", "SUPABASE_SERVICE_KEY": "svc"}
        with patch.dict("os.environ", env, clear=True), \
                patch("lexia.integrations.supabase_client.create_client") as mock_create:
            db = LexiaDB()
        mock_create.assert_called_once_with("https://x.supabase.co", "svc")
        assert db.client is mock_create.return_value


class TestFetchCaseSnapshot:

    def test_composite_query_and_ordering(self):
        row = {
            "id": "c-1",
            "status": "active",
            "description": "Accidente",
            "companies": {"company_name": "Transportes SA"},
            "deadlines": [
                {"title": "B", "due_date": "2024-04-01", "status": "pending"},
                {"title": "A", "due_date": "2024-03-01", "status": "pending"},
            ],
            "tasks": [{"title": "T", "status": "pending", "priority": "high"}],
            "case_notes": [
                {"content": "vieja", "created_at": "2024-01-01T00:00:00Z"},
                {"content": "nueva", "created_at": "2024-03-01T00:00:00Z"},
            ],
        }
        client, query = _client([row])

        snapshot = LexiaDB(client).fetch_case_snapshot("c-1")

        client.table.assert_called_once_with("cases")
        query.select.assert_called_once_with(CASE_SNAPSHOT_SELECT)
        query.eq.assert_called_once_with("id", "c-1")
        assert snapshot["company_name"] == "Transportes SA"
        assert [d["title"] for d in snapshot["deadlines"]] == ["A", "B"]
        assert [n["content"] for n in snapshot["notes"]] == ["nueva", "vieja"]
        assert snapshot["tasks"] == row["tasks"]

    def test_not_found(self):
        client, _ = _client([])
        assert LexiaDB(client).fetch_case_snapshot("missing") is None

    def test_no_company(self):
        client, _ = _client([{"status": "active", "companies": None}])
        snapshot = LexiaDB(client).fetch_case_snapshot("c-1")
        assert snapshot["company_name"] is None
        assert snapshot["deadlines"] == []

    def test_failure_wrapped(self):
        client, query = _client()
        query.execute.side_effect = RuntimeError("timeout")
        with pytest.raises(DependencyError) as exc_info:
            LexiaDB(client).fetch_case_snapshot("c-1")
        assert exc_info.value.service == "supabase"
        assert exc_info.value.operation == "fetch_case_snapshot"


class TestPlansAndUsage:

    def test_user_plan(self):
        client, _ = _client([{"lexia_plan_id": "p-1"}], [{"slug": "estudio", "credits_per_month": 1000}])
        assert LexiaDB(client).get_user_plan("u-1") == UserPlan("estudio", 1000)

    def test_user_plan_limit_from_table(self):
        client, _ = _client([{"lexia_plan_id": "p-1"}], [{"slug": "professional", "credits_per_month": None}])
        plan = LexiaDB(client, plan_credits={"professional": 750}).get_user_plan("u-1")
        assert plan.credits_per_month == 750

    def test_unassigned_user(self):
        client, _ = _client([{"lexia_plan_id": None}])
        assert LexiaDB(client).get_user_plan("u-1") is None
        assert client.table.call_count == 1

    def test_period_usage(self):
        client, query = _client([{"credits_used": "12.5", "tokens_used": 3000}])
        usage = LexiaDB(client).get_period_usage("u-1", date(2024, 3, 1))
        assert usage == PeriodUsage(12.5, 3000)
        query.eq.assert_any_call("period_start", "2024-03-01")

    def test_no_period_row(self):
        client, _ = _client([])
        assert LexiaDB(client).get_period_usage("u-1", date(2024, 3, 1)) is None

    @pytest.mark.parametrize("data,expected", [(True, True), (False, False)])
    def test_record_usage(self, data, expected):
        client, _ = _client(data)
        recorded = LexiaDB(client).record_usage(
            "u-1", "lexia-1-abc", "legal_analysis", 3, 1820, date(2024, 3, 1),
        )
        assert recorded is expected
        client.rpc.assert_called_once_with("record_lexia_usage", {
            "p_user_id": "u-1",
            "p_trace_id": "lexia-1-abc",
            "p_intent": "legal_analysis",
            "p_credits_charged": 3,
            "p_tokens_used": 1820,
            "p_period_start": "2024-03-01",
        })


class TestAudit:

    def test_insert_audit_entry(self):
        client, query = _client([{"id": "log-1"}])
        entry = {
            "trace_id": "lexia-1-abc",
            "user_id": "u-1",
            "intent": "case_query",
            "case_id": "c-1",
        }

        row = LexiaDB(client).insert_audit_entry(entry)

        assert row == {"id": "log-1"}
        client.table.assert_called_once_with("activity_log")
        data = query.insert.call_args.args[0]
        assert data["action_type"] == "lexia_request"
        assert data["entity_id"] == "c-1"
        assert data["description"] == "Consulta a Lexia (case_query)"
        assert data["new_values"] == entry

    def test_entity_defaults_to_user(self):
        client, query = _client([])
        LexiaDB(client).insert_audit_entry({"user_id": "u-1", "intent": "general_chat", "case_id": None})
        assert query.insert.call_args.args[0]["entity_id"] == "u-1"
