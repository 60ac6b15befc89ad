"""CryptoDash Python sidecar entry point.

Serves the storage layer to the web front end over stdin/stdout
using newline-delimited JSON messages.

Protocol:
    Request:  {"id": "uuid", "method": "string", "params": {}}
    Response: {"id": "uuid", "result": {}}
    Error:    {"id": "uuid", "error": {"message": "string", "status": 404}}

Status codes follow the HTTP meaning of the error: 404 for a missing
record, 409 for a uniqueness conflict, 400 for invalid input or an
unknown method, 500 for anything else.
"""

from __future__ import annotations

import argparse
import inspect
import json
import logging
import sys
import traceback
from collections.abc import Callable
from functools import partial
from typing import Any

from cryptodash import log_config
from cryptodash.db.storage import BACKENDS, Storage, open_storage
from cryptodash.errors import StoreError, ValidationError
from cryptodash.export.csv_export import (
    export_analysis_history_csv,
    export_assets_csv,
    export_users_csv,
)
from cryptodash.export.json_export import RecordEncoder, export_portfolio_json

logger = logging.getLogger(__name__)


def _handlers(storage: Storage) -> dict[str, Callable[..., Any]]:
    users = storage.users
    portfolios = storage.portfolios
    chatbots = storage.chatbots
    market = storage.market
    return {
        # Identity
        "users.create": users.create_user,
        "users.get": users.get_user,
        "users.get_by_username": users.get_user_by_username,
        "users.get_by_email": users.get_user_by_email,
        "users.get_by_external_auth_id": users.get_user_by_external_auth_id,
        "users.list": users.list_users,
        "users.set_billing_info": users.set_billing_info,
        "users.set_plan": users.set_plan,
        # Portfolios
        "portfolios.find": portfolios.find_portfolio,
        "portfolios.get": portfolios.get_portfolio,
        "portfolios.list": portfolios.list_portfolios,
        "portfolios.create": portfolios.create_portfolio,
        "portfolios.update": portfolios.update_portfolio,
        "portfolios.delete": portfolios.delete_portfolio,
        "portfolios.assets.list": portfolios.list_assets,
        "portfolios.assets.add": portfolios.add_assets,
        "portfolios.assets.delete": portfolios.delete_assets,
        "portfolios.assets.replace": portfolios.replace_assets,
        "portfolios.analysis.latest": portfolios.latest_analysis,
        "portfolios.analysis.append": portfolios.append_analysis,
        "portfolios.analysis.history": portfolios.analysis_history,
        # Chatbots
        "chatbots.list": chatbots.list_chatbots,
        "chatbots.get": chatbots.get_chatbot,
        "chatbots.create": chatbots.create_chatbot,
        "chatbots.update": chatbots.update_chatbot,
        "chatbots.delete": chatbots.delete_chatbot,
        "chatbots.files.list": chatbots.list_files,
        "chatbots.files.append": chatbots.append_files,
        "chatbots.sessions.create": chatbots.create_session,
        "chatbots.sessions.get": chatbots.get_session,
        "chatbots.sessions.get_by_token": chatbots.get_session_by_token,
        "chatbots.sessions.update": chatbots.update_session,
        "chatbots.sessions.list": chatbots.sessions_for_chatbot,
        "chatbots.sessions.delete": chatbots.delete_session,
        "chatbots.messages.append": chatbots.append_message,
        "chatbots.messages.list": chatbots.messages_for_session,
        # Market summaries
        "market.append": market.append_summary,
        "market.latest": market.latest_summary,
        "market.history": market.summary_history,
        # Export
        "export.users_csv": partial(export_users_csv, storage),
        "export.assets_csv": partial(export_assets_csv, storage),
        "export.analysis_history_csv": partial(export_analysis_history_csv, storage),
        "export.portfolio_json": partial(export_portfolio_json, storage),
    }


def _to_json(value: Any) -> Any:
    """Convert store records (or lists of them) to plain dicts."""
    if isinstance(value, list):
        return [_to_json(item) for item in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def dispatch(storage: Storage, method: str, params: dict[str, Any]) -> Any:
    """Route a method call to the appropriate store operation.

    Args:
        storage: The store the call runs against.
        method: The method name (e.g., "users.create").
        params: Keyword arguments for the operation.

    Returns:
        The JSON-ready result of the call.

    Raises:
        ValidationError: If the method is not recognized or the params do
            not fit its signature.

    """
    handlers = _handlers(storage)
    if method not in handlers:
        msg = f"Unknown method: {method}"
        raise ValidationError(msg)
    handler = handlers[method]
    # Bind first so a TypeError from inside the handler stays a 500
    try:
        inspect.signature(handler).bind(**params)
    except TypeError as exc:
        msg = f"Invalid params for {method}: {exc}"
        raise ValidationError(msg) from exc
    logger.debug("Dispatching %s", method)
    return _to_json(handler(**params))


def _parse_request(line: str) -> dict[str, Any]:
    """Decode one request line into a JSON object.

    Raises:
        ValidationError: If the line is not JSON or not an object.

    """
    try:
        request = json.loads(line)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON: {exc}"
        raise ValidationError(msg) from exc
    if not isinstance(request, dict):
        msg = f"Request must be a JSON object, got {type(request).__name__}"
        raise ValidationError(msg)
    return request


def _request_call(request: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """Return the method name and params of a decoded request.

    Raises:
        ValidationError: If method is not a string or params is not an object.

    """
    method = request.get("method")
    if not isinstance(method, str):
        msg = "Request is missing a string 'method'"
        raise ValidationError(msg)
    params = request.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, dict):
        msg = "Request 'params' must be a JSON object"
        raise ValidationError(msg)
    return method, params


def _error_body(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, StoreError):
        return {"message": str(exc), "status": exc.status}
    return {
        "message": str(exc),
        "status": 500,
        "traceback": traceback.format_exc(),
    }


def serve(storage: Storage) -> None:
    """Run the sidecar message loop.

    Reads newline-delimited JSON from stdin, dispatches to the store,
    and writes JSON responses to stdout. Runs until stdin is closed.
    """
    for raw_line in sys.stdin:
        stripped = raw_line.strip()
        if not stripped:
            continue

        request: dict[str, Any] = {}
        try:
            request = _parse_request(stripped)
            method, params = _request_call(request)
            result = dispatch(storage, method, params)
            response: dict[str, Any] = {
                "id": request.get("id", "unknown"),
                "result": result,
            }
        # Every failure, bad JSON included, is answered rather than raised
        except Exception as exc:  # noqa: BLE001
            request_id = request.get("id", "unknown")
            response = {"id": request_id, "error": _error_body(exc)}
            logger.warning("Request %s failed: %s", request_id, exc)
        sys.stdout.write(json.dumps(response, cls=RecordEncoder) + "\n")
        sys.stdout.flush()


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, open storage, and serve requests until EOF."""
    parser = argparse.ArgumentParser(description="CryptoDash storage sidecar")
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default=None,
        help="Storage engine (default: $CRYPTODASH_STORAGE or memory)",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="DuckDB file (default: $CRYPTODASH_DB_PATH or ~/.cryptodash/data)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    args = parser.parse_args(argv)

    log_config.setup(verbose=args.verbose)
    with open_storage(args.backend, args.db_path) as storage:
        serve(storage)


if __name__ == "__main__":
    main()
