"""Market summary store: append-only log of generated market overviews.

Summaries are not owned by any user. Nothing here updates or deletes
an entry once written; "latest" is the entry with the greatest
created_at.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from cryptodash.db.base import BaseStore, latest
from cryptodash.db.schema import MARKET_SUMMARIES
from cryptodash.errors import ValidationError
from cryptodash.models import MarketSummary

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10


class MarketSummaryStore(BaseStore):
    """Generated market summaries."""

    def append_summary(  # noqa: PLR0913
        self,
        *,
        ai_summary: str | None = None,
        key_insights: list[str] | None = None,
        sentiment: str | None = None,
        confidence_score: int | None = None,
        market_snapshot: dict[str, Any] | None = None,
        top_gainers: list[Any] | None = None,
        top_losers: list[Any] | None = None,
        news_digest: dict[str, Any] | None = None,
        trading_signals: list[Any] | None = None,
        generated_by: str | None = None,
        data_freshness: datetime | str | None = None,
        processing_time: int | None = None,
    ) -> MarketSummary:
        """Record a generated summary and stamp its creation time.

        Args:
            ai_summary: Narrative summary text.
            key_insights: Bullet-point insights.
            sentiment: Overall market mood label.
            confidence_score: Model confidence, 0-100.
            market_snapshot: Global market figures the summary was built from.
            top_gainers: Best-performing coins.
            top_losers: Worst-performing coins.
            news_digest: Condensed news the summary cites.
            trading_signals: Derived buy/sell signals.
            generated_by: Model or job that produced the summary.
            data_freshness: When the input data was fetched, as a datetime
                or ISO-8601 string.
            processing_time: Milliseconds spent generating.

        Returns:
            The stored summary.

        Raises:
            ValidationError: If data_freshness does not parse.

        """
        row = self._table(MARKET_SUMMARIES).insert(
            {
                "ai_summary": ai_summary,
                "key_insights": list(key_insights or []),
                "sentiment": sentiment,
                "confidence_score": confidence_score,
                "market_snapshot": market_snapshot,
                "top_gainers": list(top_gainers or []),
                "top_losers": list(top_losers or []),
                "news_digest": news_digest,
                "trading_signals": list(trading_signals or []),
                "generated_by": generated_by,
                "data_freshness": self._parse_timestamp(data_freshness, "data_freshness"),
                "processing_time": processing_time,
                "created_at": self._now(),
            }
        )
        logger.info("Recorded market summary %d (sentiment=%s)", row["id"], sentiment)
        return MarketSummary.from_row(row)

    def latest_summary(self) -> MarketSummary | None:
        """Return the most recently created summary, or None if there are none."""
        row = latest(self._table(MARKET_SUMMARIES).find(), "created_at")
        return MarketSummary.from_row(row) if row else None

    def summary_history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> list[MarketSummary]:
        """Return up to ``limit`` summaries, newest first.

        Raises:
            ValidationError: If limit is negative.

        """
        if limit < 0:
            msg = f"limit must be >= 0, got {limit}"
            raise ValidationError(msg)
        rows = self._table(MARKET_SUMMARIES).find()
        rows.sort(key=lambda row: (row["created_at"], row["id"]), reverse=True)
        return [MarketSummary.from_row(row) for row in rows[:limit]]
