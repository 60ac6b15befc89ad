"""JSON export for portfolio reports.

Produces a single JSON document with a portfolio, its holdings, and its
latest AI analysis, plus export metadata.

"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cryptodash.errors import NotFoundError

if TYPE_CHECKING:
    from cryptodash.db.storage import Storage


class RecordEncoder(json.JSONEncoder):
    """JSON encoder that handles datetimes and enums."""

    def default(self, o: Any) -> Any:
        """Convert non-serializable types to JSON-safe values."""
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return super().default(o)


def export_portfolio_json(
    storage: Storage,
    portfolio_id: int,
    output_path: str | None = None,
) -> str:
    """Export a portfolio report to JSON format.

    Args:
        storage: Store to read from.
        portfolio_id: Portfolio to export.
        output_path: File path to write. If None, returns JSON string.

    Returns:
        JSON string, or file path if output_path given.

    Raises:
        NotFoundError: If the portfolio does not exist.

    """
    portfolio = storage.portfolios.get_portfolio(portfolio_id)
    if portfolio is None:
        raise NotFoundError("Portfolio", portfolio_id)

    assets = storage.portfolios.list_assets(portfolio_id)
    analysis = storage.portfolios.latest_analysis(portfolio_id)

    export_data: dict[str, Any] = {
        "metadata": {
            "export_date": datetime.now(tz=UTC).isoformat(),
            "format_version": "1.0",
            "source": "CryptoDash",
            "assets_count": len(assets),
        },
        "portfolio": portfolio.to_dict(),
        "assets": [asset.to_dict() for asset in assets],
        "latest_analysis": analysis.to_dict() if analysis else None,
    }

    content = json.dumps(export_data, cls=RecordEncoder, indent=2)

    if output_path:
        Path(output_path).write_text(content, encoding="utf-8")
        return output_path
    return content
