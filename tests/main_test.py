"""Tests for the sidecar entry point (dispatch and message loop)."""

from __future__ import annotations

import json
from io import StringIO
from unittest.mock import patch

import pytest

from cryptodash.db.storage import memory_storage
from cryptodash.errors import ValidationError
from cryptodash.main import dispatch, main, serve


def _run(storage, *requests) -> list[dict]:
    stdin = StringIO("".join(json.dumps(r) + "\n" for r in requests))
    stdout = StringIO()
    with patch("sys.stdin", stdin), patch("sys.stdout", stdout):
        serve(storage)
    return [json.loads(line) for line in stdout.getvalue().splitlines() if line]


class TestDispatch:
    """Tests for the dispatch function."""

    def test_unknown_method_raises(self, storage):
        with pytest.raises(ValueError, match="Unknown method"):
            dispatch(storage, "nonexistent.method", {})

    def test_unknown_method_is_validation_error(self, storage):
        with pytest.raises(ValidationError, match=r"foo\.bar"):
            dispatch(storage, "foo.bar", {})

    def test_records_become_dicts(self, storage):
        result = dispatch(
            storage, "users.create", {"username": "alice", "email": "a@x.com"}
        )
        assert result["username"] == "alice"
        assert result["plan"] == "starter"
        assert isinstance(result["created_at"], str)

    def test_lists_and_none(self, storage, alice):
        assert dispatch(storage, "users.list", {})[0]["id"] == alice.id
        assert dispatch(storage, "users.get", {"user_id": 99}) is None

    def test_unexpected_param_is_validation_error(self, storage):
        with pytest.raises(ValidationError, match=r"users\.list"):
            dispatch(storage, "users.list", {"colour": "blue"})

    def test_missing_param_is_validation_error(self, storage):
        with pytest.raises(ValidationError, match=r"users\.get"):
            dispatch(storage, "users.get", {})

    def test_export_handlers_bind_storage(self, storage, alice):
        csv_text = dispatch(storage, "export.users_csv", {})
        assert "alice" in csv_text


class TestServe:
    """Tests for the stdin/stdout message loop."""

    def test_valid_request_returns_response(self, storage):
        (response,) = _run(
            storage,
            {"id": "1", "method": "users.create",
             "params": {"username": "alice", "email": "a@x.com"}},
        )
        assert response["id"] == "1"
        assert response["result"]["id"] == 1

    def test_invalid_json_returns_error(self, storage):
        stdin = StringIO("not valid json\n")
        stdout = StringIO()
        with patch("sys.stdin", stdin), patch("sys.stdout", stdout):
            serve(storage)

        response = json.loads(stdout.getvalue().strip())
        assert response["id"] == "unknown"
        assert response["error"]["status"] == 400

    def test_missing_method_returns_error(self, storage):
        (response,) = _run(storage, {"id": "2"})
        assert response["id"] == "2"
        assert response["error"]["status"] == 400

    def test_empty_lines_are_skipped(self, storage):
        request = json.dumps({"id": "3", "method": "users.list", "params": {}})
        stdin = StringIO("\n\n" + request + "\n\n")
        stdout = StringIO()
        with patch("sys.stdin", stdin), patch("sys.stdout", stdout):
            serve(storage)

        lines = [line for line in stdout.getvalue().strip().split("\n") if line]
        assert len(lines) == 1

    def test_typed_errors_map_to_status(self, storage):
        responses = _run(
            storage,
            {"id": "a", "method": "users.create",
             "params": {"username": "alice", "email": "a@x.com"}},
            {"id": "b", "method": "users.create",
             "params": {"username": "alice", "email": "a@x.com"}},
            {"id": "c", "method": "users.set_plan", "params": {"user_id": 9, "plan": "pro"}},
            {"id": "d", "method": "chatbots.messages.append",
             "params": {"session_id": 1, "role": "moderator", "content": "x"}},
            {"id": "e", "method": "no.such.method", "params": {}},
        )
        statuses = [r.get("error", {}).get("status") for r in responses]
        assert statuses == [None, 409, 404, 400, 400]

    def test_unexpected_error_includes_traceback(self, storage):
        with patch("cryptodash.main.dispatch", side_effect=RuntimeError("kaboom")):
            (response,) = _run(storage, {"id": "4", "method": "users.list"})
        assert response["error"]["status"] == 500
        assert "traceback" in response["error"]

    @pytest.mark.parametrize("exc", [KeyError("row"), TypeError("bad operand")])
    def test_internal_lookup_and_type_errors_are_500(self, storage, exc):
        with patch("cryptodash.main._to_json", side_effect=exc):
            (response,) = _run(storage, {"id": "5", "method": "users.list"})
        assert response["error"]["status"] == 500
        assert "traceback" in response["error"]

    def test_malformed_envelopes_are_400(self, storage):
        responses = _run(
            storage,
            ["users.list"],
            {"id": "a", "method": 7},
            {"id": "b", "method": "users.list", "params": [1]},
            {"id": "c", "method": "users.list", "params": {"colour": "blue"}},
        )
        assert [r.get("id") for r in responses] == ["unknown", "a", "b", "c"]
        assert [r["error"]["status"] for r in responses] == [400, 400, 400, 400]

    def test_null_params_mean_no_params(self, storage):
        (response,) = _run(storage, {"id": "6", "method": "users.list", "params": None})
        assert response["result"] == []

    def test_iso_data_freshness_over_the_wire(self, storage):
        good, bad = _run(
            storage,
            {"id": "1", "method": "market.append",
             "params": {"data_freshness": "2025-01-01T00:00:00+00:00"}},
            {"id": "2", "method": "market.append",
             "params": {"data_freshness": "yesterday"}},
        )
        assert good["result"]["data_freshness"] == "2025-01-01T00:00:00+00:00"
        assert bad["error"]["status"] == 400

    def test_wrongly_typed_values_are_400_on_every_engine(self, storage):
        responses = _run(
            storage,
            {"id": "1", "method": "users.create",
             "params": {"username": "alice", "email": "a@x.com"}},
            {"id": "2", "method": "portfolios.create",
             "params": {"user_id": 1, "wallet_address": "0xABC"}},
            {"id": "3", "method": "portfolios.update",
             "params": {"portfolio_id": 1, "assets_count": "lots"}},
            {"id": "4", "method": "portfolios.assets.replace",
             "params": {"portfolio_id": 1, "assets": [
                 {"symbol": "ETH", "name": "Ether", "amount": "1", "value": "1",
                  "percentage": "100", "change": "0", "is_native": "false"}]}},
            {"id": "5", "method": "portfolios.get", "params": {"portfolio_id": 1}},
        )
        statuses = [r.get("error", {}).get("status") for r in responses]
        assert statuses == [None, None, 400, 400, None]
        assert responses[-1]["result"]["assets_count"] == 0

    def test_cascade_over_the_wire(self, storage):
        responses = _run(
            storage,
            {"id": "1", "method": "users.create",
             "params": {"username": "alice", "email": "a@x.com"}},
            {"id": "2", "method": "portfolios.create",
             "params": {"user_id": 1, "wallet_address": "0xABC"}},
            {"id": "3", "method": "portfolios.analysis.append",
             "params": {"portfolio_id": 1, "overall_score": 70}},
            {"id": "4", "method": "portfolios.delete", "params": {"portfolio_id": 1}},
            {"id": "5", "method": "portfolios.analysis.latest", "params": {"portfolio_id": 1}},
        )
        assert all("error" not in r for r in responses)
        assert responses[-1]["result"] is None


class TestMain:
    """Tests for argument parsing and startup."""

    def test_runs_against_memory_backend(self):
        request = json.dumps({"id": "1", "method": "users.list", "params": {}})
        stdout = StringIO()
        with patch("sys.stdin", StringIO(request + "\n")), patch("sys.stdout", stdout):
            main(["--backend", "memory"])
        assert json.loads(stdout.getvalue())["result"] == []

    def test_opens_configured_storage(self):
        with (
            patch("cryptodash.main.open_storage", return_value=memory_storage()) as opened,
            patch("sys.stdin", StringIO("")),
        ):
            main(["--backend", "duckdb", "--db-path", "/tmp/x.duckdb", "--verbose"])
        opened.assert_called_once_with("duckdb", "/tmp/x.duckdb")

    def test_rejects_unknown_backend(self):
        with pytest.raises(SystemExit):
            main(["--backend", "postgres"])
