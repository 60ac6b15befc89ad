"""CSV export for users, portfolio holdings, and analysis history.

Generates CSV files with metadata headers including export date and
the scope of the export.

"""

from __future__ import annotations

import csv
import io
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cryptodash.errors import NotFoundError

if TYPE_CHECKING:
    from cryptodash.db.storage import Storage

USER_FIELDS = [
    "id", "username", "email", "plan", "external_auth_id",
    "billing_customer_id", "billing_subscription_id", "created_at",
]
ASSET_FIELDS = [
    "symbol", "name", "amount", "value", "percentage",
    "change", "contract_address", "is_native",
]
ANALYSIS_FIELDS = [
    "id", "portfolio_id", "created_at", "overall_score", "risk_level",
    "diversification", "recommendation", "portfolio_health",
    "key_insights", "data_source", "has_error",
]


def export_users_csv(storage: Storage, output_path: str | None = None) -> str:
    """Export every user account to CSV format.

    Args:
        storage: Store to read from.
        output_path: File path to write. If None, returns CSV string.

    Returns:
        The CSV content as a string, or file path if output_path given.

    """
    users = [user.to_dict() for user in storage.users.list_users()]
    return _write_csv(
        users,
        USER_FIELDS,
        "User Data Export",
        extra=f"Users: {len(users)}",
        output_path=output_path,
    )


def export_assets_csv(
    storage: Storage,
    portfolio_id: int,
    output_path: str | None = None,
) -> str:
    """Export a portfolio's current holdings to CSV format.

    Args:
        storage: Store to read from.
        portfolio_id: Portfolio whose holdings are exported.
        output_path: File path to write. If None, returns CSV string.

    Returns:
        The CSV content as a string, or file path if output_path given.

    Raises:
        NotFoundError: If the portfolio does not exist.

    """
    portfolio = storage.portfolios.get_portfolio(portfolio_id)
    if portfolio is None:
        raise NotFoundError("Portfolio", portfolio_id)

    assets = [asset.to_dict() for asset in storage.portfolios.list_assets(portfolio_id)]
    return _write_csv(
        assets,
        ASSET_FIELDS,
        "Portfolio Holdings Export",
        extra=f"Wallet: {portfolio.wallet_address}",
        output_path=output_path,
    )


def export_analysis_history_csv(
    storage: Storage,
    user_id: int,
    limit: int = 10,
    output_path: str | None = None,
) -> str:
    """Export a user's most recent AI analyses, newest first.

    List-valued columns such as key_insights are written as JSON arrays.

    Args:
        storage: Store to read from.
        user_id: Owner whose analyses are exported.
        limit: Maximum number of analyses.
        output_path: File path to write. If None, returns CSV string.

    Returns:
        The CSV content as a string, or file path if output_path given.

    """
    analyses = [
        a.to_dict() for a in storage.portfolios.analysis_history(user_id, limit=limit)
    ]
    for analysis in analyses:
        analysis["key_insights"] = json.dumps(analysis["key_insights"])
    return _write_csv(
        analyses,
        ANALYSIS_FIELDS,
        "AI Analysis History Export",
        extra=f"User: {user_id}",
        output_path=output_path,
    )


def _write_csv(
    rows: list[dict[str, Any]],
    fieldnames: list[str],
    title: str,
    extra: str = "",
    output_path: str | None = None,
) -> str:
    output = io.StringIO()
    _write_metadata_header(output, title, extra)

    writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: "" if row.get(k) is None else row[k] for k in fieldnames})

    content = output.getvalue()
    if output_path:
        Path(output_path).write_text(content, encoding="utf-8")
        return output_path
    return content


def _write_metadata_header(
    output: io.StringIO,
    title: str,
    extra: str = "",
) -> None:
    """Write metadata comment lines at the top of a CSV export.

    Args:
        output: StringIO buffer to write to.
        title: Export title.
        extra: Optional additional metadata line.

    """
    now = datetime.now(tz=UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
    output.write(f"# {title}\n")
    output.write(f"# Generated: {now}\n")
    if extra:
        output.write(f"# {extra}\n")
