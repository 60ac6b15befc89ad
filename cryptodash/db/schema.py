"""Table definitions for the CryptoDash store.

Table names are shared by every engine. The DDL below is used by the
DuckDB engine only; the memory engine keeps one mapping per table.

- users: dashboard accounts
- portfolios: one wallet snapshot per (user, wallet)
- portfolio_assets: holdings of a portfolio snapshot
- ai_analyses: append-only AI valuations per portfolio
- chatbots: user chatbot projects
- chatbot_files: knowledge-source metadata per chatbot
- chat_sessions: conversation threads per chatbot and user
- chat_messages: ordered turns of a session
- market_summaries: append-only generated market overviews

Foreign keys are not declared: cascades run as explicit units of work
in the stores so both engines share one deletion order.

"""

from __future__ import annotations

USERS = "users"
PORTFOLIOS = "portfolios"
PORTFOLIO_ASSETS = "portfolio_assets"
AI_ANALYSES = "ai_analyses"
CHATBOTS = "chatbots"
CHATBOT_FILES = "chatbot_files"
CHAT_SESSIONS = "chat_sessions"
CHAT_MESSAGES = "chat_messages"
MARKET_SUMMARIES = "market_summaries"

# ── Users ──

CREATE_USERS = """
CREATE TABLE IF NOT EXISTS users (
    id                       BIGINT PRIMARY KEY,
    username                 VARCHAR NOT NULL,
    email                    VARCHAR NOT NULL,
    external_auth_id         VARCHAR,
    plan                     VARCHAR NOT NULL DEFAULT 'starter',
    billing_customer_id      VARCHAR,
    billing_subscription_id  VARCHAR,
    created_at               TIMESTAMP NOT NULL
);
"""

# ── Portfolios ──

CREATE_PORTFOLIOS = """
CREATE TABLE IF NOT EXISTS portfolios (
    id              BIGINT PRIMARY KEY,
    user_id         BIGINT NOT NULL,
    wallet_address  VARCHAR NOT NULL,
    chain_id        VARCHAR NOT NULL DEFAULT '0xaa36a7',
    total_value     VARCHAR,
    total_change    VARCHAR,
    assets_count    INTEGER DEFAULT 0,
    eth_balance     VARCHAR,
    last_updated    TIMESTAMP NOT NULL,
    created_at      TIMESTAMP NOT NULL
);
"""

CREATE_PORTFOLIO_ASSETS = """
CREATE TABLE IF NOT EXISTS portfolio_assets (
    id                BIGINT PRIMARY KEY,
    portfolio_id      BIGINT NOT NULL,
    symbol            VARCHAR NOT NULL,
    name              VARCHAR NOT NULL,
    amount            VARCHAR NOT NULL,
    "value"           VARCHAR NOT NULL,
    percentage        VARCHAR NOT NULL,
    "change"          VARCHAR NOT NULL,
    contract_address  VARCHAR,
    is_native         BOOLEAN DEFAULT false
);
"""

CREATE_AI_ANALYSES = """
CREATE TABLE IF NOT EXISTS ai_analyses (
    id                 BIGINT PRIMARY KEY,
    portfolio_id       BIGINT NOT NULL,
    overall_score      INTEGER,
    risk_level         VARCHAR,
    diversification    VARCHAR,
    recommendation     VARCHAR,
    portfolio_health   VARCHAR,
    key_insights       VARCHAR,
    rebalance_actions  VARCHAR,
    risk_factors       VARCHAR,
    opportunities      VARCHAR,
    data_source        VARCHAR DEFAULT 'Gemini AI',
    has_error          BOOLEAN DEFAULT false,
    error_message      VARCHAR,
    created_at         TIMESTAMP NOT NULL
);
"""

# ── Chatbots ──

CREATE_CHATBOTS = """
CREATE TABLE IF NOT EXISTS chatbots (
    id              BIGINT PRIMARY KEY,
    user_id         BIGINT NOT NULL,
    name            VARCHAR NOT NULL,
    description     VARCHAR,
    platform        VARCHAR NOT NULL DEFAULT 'web',
    status          VARCHAR NOT NULL DEFAULT 'active',
    knowledge_text  VARCHAR,
    deployment_url  VARCHAR,
    user_count      INTEGER DEFAULT 0,
    message_count   INTEGER DEFAULT 0,
    last_updated    TIMESTAMP NOT NULL,
    created_at      TIMESTAMP NOT NULL
);
"""

CREATE_CHATBOT_FILES = """
CREATE TABLE IF NOT EXISTS chatbot_files (
    id                 BIGINT PRIMARY KEY,
    chatbot_id         BIGINT NOT NULL,
    file_name          VARCHAR NOT NULL,
    file_type          VARCHAR NOT NULL,
    file_size          BIGINT NOT NULL,
    extracted_content  VARCHAR,
    processing_status  VARCHAR NOT NULL DEFAULT 'pending',
    error_message      VARCHAR,
    upload_date        TIMESTAMP NOT NULL
);
"""

CREATE_CHAT_SESSIONS = """
CREATE TABLE IF NOT EXISTS chat_sessions (
    id             BIGINT PRIMARY KEY,
    chatbot_id     BIGINT NOT NULL,
    user_id        BIGINT NOT NULL,
    session_id     VARCHAR NOT NULL,
    started_at     TIMESTAMP NOT NULL,
    last_activity  TIMESTAMP NOT NULL,
    message_count  INTEGER DEFAULT 0,
    is_active      BOOLEAN DEFAULT true
);
"""

CREATE_CHAT_MESSAGES = """
CREATE TABLE IF NOT EXISTS chat_messages (
    id               BIGINT PRIMARY KEY,
    session_id       BIGINT NOT NULL,
    role             VARCHAR NOT NULL,
    content          VARCHAR NOT NULL,
    "timestamp"      TIMESTAMP NOT NULL,
    tokens_used      INTEGER,
    processing_time  INTEGER,
    has_error        BOOLEAN DEFAULT false,
    error_message    VARCHAR
);
"""

# ── Market Summaries ──

CREATE_MARKET_SUMMARIES = """
CREATE TABLE IF NOT EXISTS market_summaries (
    id                BIGINT PRIMARY KEY,
    ai_summary        VARCHAR,
    key_insights      VARCHAR,
    sentiment         VARCHAR,
    confidence_score  INTEGER,
    market_snapshot   VARCHAR,
    top_gainers       VARCHAR,
    top_losers        VARCHAR,
    news_digest       VARCHAR,
    trading_signals   VARCHAR,
    generated_by      VARCHAR,
    data_freshness    TIMESTAMP,
    processing_time   INTEGER,
    created_at        TIMESTAMP NOT NULL
);
"""

# All table names in creation order
TABLE_NAMES: tuple[str, ...] = (
    USERS,
    PORTFOLIOS,
    PORTFOLIO_ASSETS,
    AI_ANALYSES,
    CHATBOTS,
    CHATBOT_FILES,
    CHAT_SESSIONS,
    CHAT_MESSAGES,
    MARKET_SUMMARIES,
)

# One id sequence per table so counters are scoped per entity type
ALL_SEQUENCES: list[str] = [
    f"CREATE SEQUENCE IF NOT EXISTS {name}_id_seq START 1;" for name in TABLE_NAMES
]

# All DDL statements in creation order
ALL_TABLES: list[str] = [
    CREATE_USERS,
    CREATE_PORTFOLIOS,
    CREATE_PORTFOLIO_ASSETS,
    CREATE_AI_ANALYSES,
    CREATE_CHATBOTS,
    CREATE_CHATBOT_FILES,
    CREATE_CHAT_SESSIONS,
    CREATE_CHAT_MESSAGES,
    CREATE_MARKET_SUMMARIES,
]

# Columns holding JSON-encoded lists or objects (stored as VARCHAR)
JSON_COLUMNS: dict[str, frozenset[str]] = {
    AI_ANALYSES: frozenset(
        {"key_insights", "rebalance_actions", "risk_factors", "opportunities"}
    ),
    MARKET_SUMMARIES: frozenset(
        {
            "key_insights",
            "market_snapshot",
            "top_gainers",
            "top_losers",
            "news_digest",
            "trading_signals",
        }
    ),
}
