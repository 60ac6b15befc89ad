"""Portfolio store: wallet snapshots, their holdings, and AI analyses.

Handles portfolio-level data operations: one snapshot per user and
wallet, full replace-on-refresh of holdings, and an append-only
history of AI valuations. Deleting a portfolio removes its holdings
and analyses in the same unit of work.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from cryptodash.db.base import BaseStore, latest
from cryptodash.db.schema import AI_ANALYSES, PORTFOLIO_ASSETS, PORTFOLIOS, USERS
from cryptodash.errors import ConflictError, NotFoundError, ValidationError
from cryptodash.models import (
    DEFAULT_CHAIN_ID,
    DEFAULT_DATA_SOURCE,
    AiAnalysis,
    Portfolio,
    PortfolioAsset,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10

_UPDATABLE_FIELDS = frozenset(
    {"chain_id", "total_value", "total_change", "assets_count", "eth_balance"}
)

_SNAPSHOT_TEXT_FIELDS = frozenset({"total_value", "total_change", "eth_balance"})

_ASSET_REQUIRED = ("symbol", "name", "amount", "value", "percentage", "change")
_ASSET_FIELDS = frozenset(
    {*_ASSET_REQUIRED, "portfolio_id", "contract_address", "is_native"}
)


class PortfolioStore(BaseStore):
    """Portfolios, portfolio assets, and AI analyses."""

    # ── portfolios ──

    def find_portfolio(self, user_id: int, wallet_address: str) -> Portfolio | None:
        """Return the user's portfolio for a wallet, matching case-insensitively."""
        wanted = wallet_address.lower()
        for row in self._table(PORTFOLIOS).find(user_id=user_id):
            if row["wallet_address"].lower() == wanted:
                return Portfolio.from_row(row)
        return None

    def get_portfolio(self, portfolio_id: int) -> Portfolio | None:
        row = self._table(PORTFOLIOS).get(portfolio_id)
        return Portfolio.from_row(row) if row else None

    def list_portfolios(self, user_id: int) -> list[Portfolio]:
        """Return every portfolio owned by ``user_id`` in id order."""
        return [
            Portfolio.from_row(row)
            for row in self._table(PORTFOLIOS).find(user_id=user_id)
        ]

    def create_portfolio(  # noqa: PLR0913
        self,
        *,
        user_id: int,
        wallet_address: str,
        chain_id: str = DEFAULT_CHAIN_ID,
        total_value: str | None = None,
        total_change: str | None = None,
        assets_count: int = 0,
        eth_balance: str | None = None,
    ) -> Portfolio:
        """Start tracking a wallet for a user.

        Args:
            user_id: Owning user.
            wallet_address: Wallet address; stored as given.
            chain_id: Chain the wallet is read from (default: Sepolia).
            total_value: Snapshot total as a decimal string.
            total_change: Snapshot change as a decimal string.
            assets_count: Number of holdings in the snapshot.
            eth_balance: Native balance as a decimal string.

        Returns:
            The stored portfolio.

        Raises:
            NotFoundError: If the user does not exist.
            ConflictError: If the user already tracks this wallet.
            ValidationError: If a snapshot value has the wrong type.

        """
        wallet_address = self._require_text(wallet_address, "wallet_address")
        self._require_count(assets_count, "assets_count")
        for key, text in (
            ("total_value", total_value),
            ("total_change", total_change),
            ("eth_balance", eth_balance),
        ):
            self._optional_text(text, key)

        with self._engine.transaction():
            self._require(USERS, "User", user_id)
            if self.find_portfolio(user_id, wallet_address) is not None:
                msg = f"User {user_id} already tracks wallet {wallet_address}"
                raise ConflictError(msg)

            now = self._now()
            row = self._table(PORTFOLIOS).insert(
                {
                    "user_id": user_id,
                    "wallet_address": wallet_address,
                    "chain_id": chain_id or DEFAULT_CHAIN_ID,
                    "total_value": total_value,
                    "total_change": total_change,
                    "assets_count": assets_count,
                    "eth_balance": eth_balance,
                    "last_updated": now,
                    "created_at": now,
                }
            )

        logger.info("Created portfolio %d for user %d", row["id"], user_id)
        return Portfolio.from_row(row)

    def update_portfolio(self, portfolio_id: int, **changes: Any) -> Portfolio:
        """Merge snapshot fields into a portfolio and refresh last_updated.

        Raises:
            NotFoundError: If the portfolio does not exist.
            ValidationError: If a field other than the snapshot fields is given,
                or a value has the wrong type.

        """
        self._check_fields("portfolio", changes, _UPDATABLE_FIELDS)
        if "chain_id" in changes:
            changes["chain_id"] = self._require_text(changes["chain_id"], "chain_id")
        if "assets_count" in changes:
            self._require_count(changes["assets_count"], "assets_count")
        for key in _SNAPSHOT_TEXT_FIELDS & changes.keys():
            self._optional_text(changes[key], key)

        row = self._table(PORTFOLIOS).update(
            portfolio_id, {**changes, "last_updated": self._now()}
        )
        if row is None:
            raise NotFoundError("Portfolio", portfolio_id)
        return Portfolio.from_row(row)

    def delete_portfolio(self, portfolio_id: int) -> None:
        """Delete a portfolio with its assets and analyses.

        Deleting an unknown id is a no-op.
        """
        with self._engine.transaction():
            n_assets = self._table(PORTFOLIO_ASSETS).delete_where(
                portfolio_id=portfolio_id
            )
            n_analyses = self._table(AI_ANALYSES).delete_where(
                portfolio_id=portfolio_id
            )
            existed = self._table(PORTFOLIOS).delete(portfolio_id)

        if existed:
            logger.info(
                "Deleted portfolio %d (%d assets, %d analyses)",
                portfolio_id,
                n_assets,
                n_analyses,
            )

    # ── assets ──

    def list_assets(self, portfolio_id: int) -> list[PortfolioAsset]:
        return [
            PortfolioAsset.from_row(row)
            for row in self._table(PORTFOLIO_ASSETS).find(portfolio_id=portfolio_id)
        ]

    def add_assets(
        self,
        portfolio_id: int,
        assets: Iterable[Mapping[str, Any]],
    ) -> list[PortfolioAsset]:
        """Insert holdings for a portfolio. All rows are stored or none are.

        Args:
            portfolio_id: Parent portfolio.
            assets: Mappings with keys symbol, name, amount, value,
                percentage, change, and optionally contract_address,
                is_native.

        Raises:
            NotFoundError: If the portfolio does not exist.
            ValidationError: If an asset is malformed or names another portfolio.

        """
        values = [self._asset_values(portfolio_id, asset) for asset in assets]
        table = self._table(PORTFOLIO_ASSETS)
        with self._engine.transaction():
            self._require(PORTFOLIOS, "Portfolio", portfolio_id)
            rows = [table.insert(v) for v in values]
        return [PortfolioAsset.from_row(row) for row in rows]

    def delete_assets(self, portfolio_id: int) -> int:
        """Remove every holding of a portfolio. Returns the number removed."""
        return self._table(PORTFOLIO_ASSETS).delete_where(portfolio_id=portfolio_id)

    def replace_assets(
        self,
        portfolio_id: int,
        assets: Iterable[Mapping[str, Any]],
    ) -> list[PortfolioAsset]:
        """Swap a portfolio's holdings for a complete new snapshot.

        Existing holdings are deleted before the new ones are inserted;
        no diffing is done, so ``assets`` must be the full set.
        """
        snapshot = list(assets)
        with self._engine.transaction():
            self._require(PORTFOLIOS, "Portfolio", portfolio_id)
            removed = self.delete_assets(portfolio_id)
            created = self.add_assets(portfolio_id, snapshot)

        logger.info(
            "Refreshed portfolio %d holdings: %d removed, %d added",
            portfolio_id,
            removed,
            len(created),
        )
        return created

    def _asset_values(self, portfolio_id: int, asset: Mapping[str, Any]) -> dict[str, Any]:
        unknown = sorted(set(asset) - _ASSET_FIELDS)
        if unknown:
            msg = f"Unknown asset field(s): {unknown}"
            raise ValidationError(msg)
        if asset.get("portfolio_id", portfolio_id) != portfolio_id:
            msg = (
                f"Asset belongs to portfolio {asset['portfolio_id']}, "
                f"not {portfolio_id}"
            )
            raise ValidationError(msg)
        missing = [key for key in _ASSET_REQUIRED if asset.get(key) is None]
        if missing:
            msg = f"Asset is missing required field(s): {missing}"
            raise ValidationError(msg)

        is_native = asset.get("is_native")
        return {
            "portfolio_id": portfolio_id,
            **{key: str(asset[key]) for key in _ASSET_REQUIRED},
            "contract_address": self._optional_text(
                asset.get("contract_address"), "contract_address"
            ),
            "is_native": False
            if is_native is None
            else self._require_bool(is_native, "is_native"),
        }

    # ── AI analyses ──

    def latest_analysis(self, portfolio_id: int) -> AiAnalysis | None:
        """Return the most recently created analysis for a portfolio."""
        rows = self._table(AI_ANALYSES).find(portfolio_id=portfolio_id)
        row = latest(rows, "created_at")
        return AiAnalysis.from_row(row) if row else None

    def append_analysis(  # noqa: PLR0913
        self,
        *,
        portfolio_id: int,
        overall_score: int | None = None,
        risk_level: str | None = None,
        diversification: str | None = None,
        recommendation: str | None = None,
        portfolio_health: str | None = None,
        key_insights: list[str] | None = None,
        rebalance_actions: list[str] | None = None,
        risk_factors: list[str] | None = None,
        opportunities: list[str] | None = None,
        data_source: str | None = None,
        has_error: bool = False,
        error_message: str | None = None,
    ) -> AiAnalysis:
        """Record a new AI analysis. Earlier analyses are never touched.

        Raises:
            NotFoundError: If the portfolio does not exist.
            ValidationError: If has_error is not a boolean.

        """
        has_error = self._require_bool(has_error, "has_error")
        table = self._table(AI_ANALYSES)
        with self._engine.transaction():
            self._require(PORTFOLIOS, "Portfolio", portfolio_id)
            row = table.insert(
                {
                    "portfolio_id": portfolio_id,
                    "overall_score": overall_score,
                    "risk_level": risk_level,
                    "diversification": diversification,
                    "recommendation": recommendation,
                    "portfolio_health": portfolio_health,
                    "key_insights": list(key_insights or []),
                    "rebalance_actions": list(rebalance_actions or []),
                    "risk_factors": list(risk_factors or []),
                    "opportunities": list(opportunities or []),
                    "data_source": data_source or DEFAULT_DATA_SOURCE,
                    "has_error": has_error,
                    "error_message": error_message,
                    "created_at": self._now(),
                }
            )

        logger.info(
            "Recorded analysis %d for portfolio %d (score=%s)",
            row["id"],
            portfolio_id,
            overall_score,
        )
        return AiAnalysis.from_row(row)

    def analysis_history(
        self,
        user_id: int,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[AiAnalysis]:
        """Return a user's analyses across all portfolios, newest first.

        Raises:
            ValidationError: If limit is negative.

        """
        if limit < 0:
            msg = f"limit must be >= 0, got {limit}"
            raise ValidationError(msg)

        with self._engine.transaction():
            portfolio_ids = [
                row["id"] for row in self._table(PORTFOLIOS).find(user_id=user_id)
            ]
            rows = self._table(AI_ANALYSES).find(portfolio_id=portfolio_ids)

        rows.sort(key=lambda row: (row["created_at"], row["id"]), reverse=True)
        return [AiAnalysis.from_row(row) for row in rows[:limit]]
