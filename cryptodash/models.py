"""Entity records and closed value sets for the CryptoDash store.

Records are plain dataclasses built fresh from engine rows on every read,
so a caller mutating a returned record never touches stored state.
Enum-typed fields hold members; engine rows hold their string values.

"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, TypeVar

from cryptodash.errors import ValidationError

# Sepolia testnet, the chain new portfolios are tracked on by default
DEFAULT_CHAIN_ID = "0xaa36a7"

DEFAULT_DATA_SOURCE = "Gemini AI"


class Plan(Enum):
    """Subscription plans."""

    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class ChatbotStatus(Enum):
    """Chatbot lifecycle states, asserted by the caller."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PROCESSING = "processing"


class Platform(Enum):
    """Where a chatbot is deployed."""

    WEB = "web"
    TELEGRAM = "telegram"
    DISCORD = "discord"


class FileStatus(Enum):
    """Knowledge-file extraction status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageRole(Enum):
    """Author of a chat turn."""

    USER = "user"
    BOT = "bot"


E = TypeVar("E", bound=Enum)
R = TypeVar("R", bound="_Record")


def parse_enum(enum_cls: type[E], value: Any, field_name: str) -> E:
    """Resolve ``value`` to a member of ``enum_cls`` without coercion.

    Accepts a member or its exact string value. Case and whitespace
    are significant: ``"User"`` is not a ``MessageRole``.

    Raises:
        ValidationError: If ``value`` names no member.

    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if member.value == value:
                return member
    allowed = sorted(m.value for m in enum_cls)
    msg = f"{field_name} must be one of {allowed}, got {value!r}"
    raise ValidationError(msg)


class _Record:
    """Row conversion shared by all entity dataclasses."""

    _enums: ClassVar[dict[str, type[Enum]]] = {}

    @classmethod
    def from_row(cls: type[R], row: dict[str, Any]) -> R:
        """Build a record from an engine row, deep-copying mutable values."""
        names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        values = {k: copy.deepcopy(v) for k, v in row.items() if k in names}
        for name, enum_cls in cls._enums.items():
            if values.get(name) is not None:
                values[name] = enum_cls(values[name])
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of this record."""
        out: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            else:
                value = copy.deepcopy(value)
            out[f.name] = value
        return out


@dataclass
class User(_Record):
    """A dashboard account.

    Credentials live with the external auth provider; ``external_auth_id``
    links the two.

    """

    _enums: ClassVar[dict[str, type[Enum]]] = {"plan": Plan}

    id: int
    username: str
    email: str
    created_at: datetime
    external_auth_id: str | None = None
    plan: Plan = Plan.STARTER
    billing_customer_id: str | None = None
    billing_subscription_id: str | None = None


@dataclass
class Portfolio(_Record):
    """Snapshot of one wallet owned by one user.

    Monetary fields are decimal strings to preserve precision.

    """

    id: int
    user_id: int
    wallet_address: str
    last_updated: datetime
    created_at: datetime
    chain_id: str = DEFAULT_CHAIN_ID
    total_value: str | None = None
    total_change: str | None = None
    assets_count: int = 0
    eth_balance: str | None = None


@dataclass
class PortfolioAsset(_Record):
    """One holding inside a portfolio snapshot."""

    id: int
    portfolio_id: int
    symbol: str
    name: str
    amount: str
    value: str
    percentage: str
    change: str
    contract_address: str | None = None
    is_native: bool = False


@dataclass
class AiAnalysis(_Record):
    """An AI valuation of a portfolio. Never updated once written."""

    id: int
    portfolio_id: int
    created_at: datetime
    overall_score: int | None = None
    risk_level: str | None = None
    diversification: str | None = None
    recommendation: str | None = None
    portfolio_health: str | None = None
    key_insights: list[str] = field(default_factory=list)
    rebalance_actions: list[str] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)
    opportunities: list[str] = field(default_factory=list)
    data_source: str = DEFAULT_DATA_SOURCE
    has_error: bool = False
    error_message: str | None = None


@dataclass
class Chatbot(_Record):
    """A user's chatbot project."""

    _enums: ClassVar[dict[str, type[Enum]]] = {
        "platform": Platform,
        "status": ChatbotStatus,
    }

    id: int
    user_id: int
    name: str
    last_updated: datetime
    created_at: datetime
    description: str | None = None
    platform: Platform = Platform.WEB
    status: ChatbotStatus = ChatbotStatus.ACTIVE
    knowledge_text: str | None = None
    deployment_url: str | None = None
    user_count: int = 0
    message_count: int = 0


@dataclass
class ChatbotFile(_Record):
    """Metadata for an uploaded knowledge source."""

    _enums: ClassVar[dict[str, type[Enum]]] = {"processing_status": FileStatus}

    id: int
    chatbot_id: int
    file_name: str
    file_type: str
    file_size: int
    upload_date: datetime
    extracted_content: str | None = None
    processing_status: FileStatus = FileStatus.PENDING
    error_message: str | None = None


@dataclass
class ChatSession(_Record):
    """One conversation thread between a user and a chatbot."""

    id: int
    chatbot_id: int
    user_id: int
    session_id: str
    started_at: datetime
    last_activity: datetime
    message_count: int = 0
    is_active: bool = True


@dataclass
class ChatMessage(_Record):
    """A single turn within a chat session."""

    _enums: ClassVar[dict[str, type[Enum]]] = {"role": MessageRole}

    id: int
    session_id: int
    role: MessageRole
    content: str
    timestamp: datetime
    tokens_used: int | None = None
    processing_time: int | None = None
    has_error: bool = False
    error_message: str | None = None


@dataclass
class MarketSummary(_Record):
    """A generated market overview. Snapshot fields are opaque JSON."""

    id: int
    created_at: datetime
    ai_summary: str | None = None
    key_insights: list[str] = field(default_factory=list)
    sentiment: str | None = None
    confidence_score: int | None = None
    market_snapshot: dict[str, Any] | None = None
    top_gainers: list[Any] = field(default_factory=list)
    top_losers: list[Any] = field(default_factory=list)
    news_digest: dict[str, Any] | None = None
    trading_signals: list[Any] = field(default_factory=list)
    generated_by: str | None = None
    data_freshness: datetime | None = None
    processing_time: int | None = None
