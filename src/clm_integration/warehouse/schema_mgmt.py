"""
Schema management for the PostgreSQL repository.

Holds the DDL for every table the pipeline writes and the operations to
apply or reset it.
"""

from .connection import DatabaseConnectionPool

TABLES = (
    "dead_letter_message",
    "processed_message",
    "staged_record",
    "ingestion_session",
    "contract",
    "customer",
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ingestion_session (
    session_id      VARCHAR(64) PRIMARY KEY,
    source_system   VARCHAR(255) NOT NULL,
    entity_kind     VARCHAR(20) NOT NULL,
    status          VARCHAR(20) NOT NULL,
    counts          JSONB NOT NULL DEFAULT '{}'::jsonb,
    outcomes        JSONB NOT NULL DEFAULT '[]'::jsonb,
    error_message   TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    completed_at    TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS staged_record (
    staged_id       BIGSERIAL PRIMARY KEY,
    session_id      VARCHAR(64) NOT NULL REFERENCES ingestion_session (session_id),
    sequence        INTEGER NOT NULL CHECK (sequence > 0),
    entity_kind     VARCHAR(20) NOT NULL,
    natural_key     JSONB NOT NULL,
    fields          JSONB NOT NULL,
    status          VARCHAR(20) NOT NULL,
    error           JSONB,
    staged_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    processed_at    TIMESTAMPTZ,
    UNIQUE (session_id, sequence)
);

CREATE INDEX IF NOT EXISTS idx_staged_record_status ON staged_record (session_id, status);

CREATE TABLE IF NOT EXISTS customer (
    id              BIGSERIAL PRIMARY KEY,
    tenant_id       VARCHAR(50) NOT NULL,
    customer_code   VARCHAR(50) NOT NULL,
    customer_type   VARCHAR(20) NOT NULL,
    name            VARCHAR(255) NOT NULL,
    trade_name      VARCHAR(255),
    tax_id          VARCHAR(20),
    email           VARCHAR(255),
    phone           VARCHAR(50),
    address_street  VARCHAR(255),
    address_city    VARCHAR(100),
    address_state   VARCHAR(50),
    address_zip     VARCHAR(20),
    address_country VARCHAR(50),
    active          BOOLEAN NOT NULL DEFAULT TRUE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (tenant_id, customer_code)
);

CREATE TABLE IF NOT EXISTS contract (
    id              BIGSERIAL PRIMARY KEY,
    tenant_id       VARCHAR(50) NOT NULL,
    contract_number VARCHAR(50) NOT NULL,
    customer_id     BIGINT NOT NULL,
    status          VARCHAR(20) NOT NULL,
    contract_type   VARCHAR(50),
    start_date      DATE,
    end_date        DATE,
    duration_months INTEGER,
    auto_renew      BOOLEAN NOT NULL DEFAULT FALSE,
    total_value     NUMERIC(18, 2),
    payment_terms   VARCHAR(255),
    billing_cycle   VARCHAR(50),
    notes           TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (tenant_id, contract_number)
);

CREATE TABLE IF NOT EXISTS processed_message (
    fingerprint     VARCHAR(512) PRIMARY KEY,
    outcome         VARCHAR(20) NOT NULL,
    first_seen_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    attempts        INTEGER NOT NULL DEFAULT 1,
    stale_releases  INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS dead_letter_message (
    id              BIGSERIAL PRIMARY KEY,
    fingerprint     VARCHAR(512) NOT NULL,
    event_type      VARCHAR(100) NOT NULL,
    tenant_id       VARCHAR(50) NOT NULL,
    correlation_id  VARCHAR(255) NOT NULL,
    source_system   VARCHAR(255),
    payload         JSONB NOT NULL,
    reason          TEXT NOT NULL,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


class SchemaManager:
    """Applies and resets the pipeline schema."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def create_schema(self) -> None:
        """Create all tables and indexes. Safe to run repeatedly."""
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()

    def truncate_all(self) -> None:
        """Remove all rows from every pipeline table (test support)."""
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"TRUNCATE TABLE {', '.join(TABLES)} RESTART IDENTITY CASCADE")
            conn.commit()

    def table_exists(self, table_name: str) -> bool:
        result = self.pool.execute_query(
            "SELECT to_regclass(%s) IS NOT NULL AS present",
            (table_name,),
        )
        return bool(result[0]["present"])


def create_schema(pool: DatabaseConnectionPool) -> None:
    SchemaManager(pool).create_schema()
