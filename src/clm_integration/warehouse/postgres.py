"""
PostgreSQL repository.

Writes use INSERT ... ON CONFLICT for idempotency and conditional UPDATEs
for optimistic concurrency. Any psycopg failure surfaces as PersistenceError.
"""

import json
from contextlib import contextmanager
from datetime import datetime
from functools import partial
from typing import Any

import psycopg
from psycopg import errors as pg_errors
from psycopg.types.json import Jsonb

from clm_integration.core.errors import ConflictError, PersistenceError
from clm_integration.core.models import (
    CheckResult,
    ContractDraft,
    CustomerDraft,
    IdempotencyRecord,
    IngestionSession,
    IntegrationMessage,
    LedgerOutcome,
    SessionStatus,
    StagedRecord,
)
from clm_integration.core.state_machine import ContractStatus
from clm_integration.observability.logger import get_logger
from clm_integration.observability.metrics import record_persistence_error

from .connection import DatabaseConnectionPool
from .repository import CUSTOMER_COLUMNS, Repository, contract_to_row, customer_to_row

logger = get_logger(__name__)

# Raw payloads may carry dates or decimals
json_dumps = partial(json.dumps, default=str)

CONTRACT_COLUMNS = (
    "id, tenant_id, contract_number, customer_id, status, contract_type, start_date, end_date, "
    "duration_months, auto_renew, total_value, payment_terms, billing_cycle, notes"
)

LEDGER_CLAIM_SQL = """
    INSERT INTO processed_message (fingerprint, outcome, first_seen_at, updated_at, attempts, stale_releases)
    VALUES (%(fingerprint)s, 'IN_PROGRESS', NOW(), NOW(), 1, 0)
    ON CONFLICT (fingerprint) DO UPDATE SET
        outcome = 'IN_PROGRESS',
        updated_at = NOW(),
        first_seen_at = CASE WHEN processed_message.outcome = 'PROCESSED'
            THEN NOW() ELSE processed_message.first_seen_at END,
        attempts = CASE WHEN processed_message.outcome = 'PROCESSED'
            THEN 1 ELSE processed_message.attempts + 1 END,
        stale_releases = CASE
            WHEN processed_message.outcome = 'PROCESSED' THEN 0
            WHEN processed_message.outcome = 'IN_PROGRESS' THEN processed_message.stale_releases + 1
            ELSE processed_message.stale_releases END
    WHERE processed_message.outcome = 'FAILED'
       OR (
            processed_message.outcome = 'PROCESSED'
            AND %(dedup_window)s::double precision IS NOT NULL
            AND processed_message.updated_at
                < NOW() - make_interval(secs => %(dedup_window)s::double precision)
       )
       OR (
            processed_message.outcome = 'IN_PROGRESS'
            AND %(stale_after)s::double precision IS NOT NULL
            AND processed_message.stale_releases = 0
            AND processed_message.updated_at
                < NOW() - make_interval(secs => %(stale_after)s::double precision)
       )
    RETURNING fingerprint
"""


class PostgresRepository(Repository):
    """
    Repository backed by PostgreSQL through a DatabaseConnectionPool.

    The pool is opened by the caller; close() closes it.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    @contextmanager
    def _operation(self, name: str):
        """Yield a connection, committing on success and mapping driver errors."""
        try:
            with self.pool.get_connection() as conn:
                yield conn
                conn.commit()
        except psycopg.Error as e:
            record_persistence_error(name)
            logger.error(
                f"Persistence operation failed: {name}",
                extra={"operation": name, "error_type": type(e).__name__, "error_message": str(e)},
            )
            raise PersistenceError(name, str(e)) from e

    # ---- ingestion sessions ----

    def create_session(self, session: IngestionSession) -> None:
        with self._operation("create_session") as conn:
            conn.execute(
                """
                INSERT INTO ingestion_session
                    (session_id, source_system, entity_kind, status, counts, outcomes,
                     error_message, created_at, updated_at, completed_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                self._session_params(session),
            )

    def save_session(self, session: IngestionSession) -> None:
        with self._operation("save_session") as conn:
            conn.execute(
                """
                UPDATE ingestion_session
                SET status = %s, counts = %s, outcomes = %s, error_message = %s,
                    updated_at = %s, completed_at = %s
                WHERE session_id = %s
                """,
                (
                    session.status.value,
                    Jsonb(session.counts.model_dump()),
                    Jsonb([o.model_dump(mode="json") for o in session.outcomes]),
                    session.error_message,
                    session.updated_at,
                    session.completed_at,
                    session.session_id,
                ),
            )

    def get_session(self, session_id: str) -> IngestionSession | None:
        with self._operation("get_session") as conn:
            row = conn.execute(
                "SELECT * FROM ingestion_session WHERE session_id = %s", (session_id,)
            ).fetchone()
        if row is None:
            return None
        return IngestionSession.model_validate(row)

    def purge_sessions(self, completed_before: datetime) -> int:
        terminal = (SessionStatus.COMPLETED.value, SessionStatus.FAILED.value)
        with self._operation("purge_sessions") as conn:
            conn.execute(
                """
                DELETE FROM staged_record
                WHERE session_id IN (
                    SELECT session_id FROM ingestion_session
                    WHERE status = ANY(%s) AND completed_at < %s
                )
                """,
                (list(terminal), completed_before),
            )
            cursor = conn.execute(
                "DELETE FROM ingestion_session WHERE status = ANY(%s) AND completed_at < %s",
                (list(terminal), completed_before),
            )
            deleted = cursor.rowcount
        return deleted

    def _session_params(self, session: IngestionSession) -> tuple:
        return (
            session.session_id,
            session.source_system,
            session.entity_kind.value,
            session.status.value,
            Jsonb(session.counts.model_dump()),
            Jsonb([o.model_dump(mode="json") for o in session.outcomes]),
            session.error_message,
            session.created_at,
            session.updated_at,
            session.completed_at,
        )

    # ---- staging ----

    def insert_staged(self, session_id: str, record: StagedRecord) -> int:
        with self._operation("insert_staged") as conn:
            row = conn.execute(
                """
                INSERT INTO staged_record
                    (session_id, sequence, entity_kind, natural_key, fields, status)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING staged_id
                """,
                (
                    session_id,
                    record.sequence,
                    record.entity_kind.value,
                    Jsonb(record.natural_key, dumps=json_dumps),
                    Jsonb(record.fields, dumps=json_dumps),
                    record.status.value,
                ),
            ).fetchone()
        return row["staged_id"]

    def update_staged(self, record: StagedRecord) -> None:
        error = record.error.model_dump() if record.error else None
        with self._operation("update_staged") as conn:
            conn.execute(
                """
                UPDATE staged_record
                SET status = %s, error = %s, processed_at = %s
                WHERE session_id = %s AND sequence = %s
                """,
                (
                    record.status.value,
                    Jsonb(error) if error else None,
                    record.processed_at,
                    record.session_id,
                    record.sequence,
                ),
            )

    def list_staged(self, session_id: str) -> list[StagedRecord]:
        with self._operation("list_staged") as conn:
            rows = conn.execute(
                """
                SELECT staged_id, session_id, sequence, entity_kind, natural_key, fields,
                       status, error, processed_at
                FROM staged_record
                WHERE session_id = %s
                ORDER BY sequence
                """,
                (session_id,),
            ).fetchall()
        return [StagedRecord.model_validate(row) for row in rows]

    # ---- contracts ----

    def commit_contract(self, draft: ContractDraft) -> int:
        row_values = contract_to_row(draft)
        columns = ", ".join(row_values)
        placeholders = ", ".join(f"%({name})s" for name in row_values)
        with self._operation("commit_contract") as conn:
            try:
                row = conn.execute(
                    f"INSERT INTO contract ({columns}) VALUES ({placeholders}) RETURNING id",
                    row_values,
                ).fetchone()
            except pg_errors.UniqueViolation:
                conn.rollback()
                raise ConflictError(
                    f"Contract {draft.contract_number} already exists for tenant {draft.tenant_id}"
                ) from None
        return row["id"]

    def update_contract(
        self,
        contract_id: int,
        draft: ContractDraft,
        expected_current_status: ContractStatus,
    ) -> None:
        row_values = contract_to_row(draft)
        assignments = ", ".join(f"{name} = %({name})s" for name in row_values if name != "tenant_id")
        params: dict[str, Any] = {
            **row_values,
            "id": contract_id,
            "expected_status": expected_current_status.value,
        }
        with self._operation("update_contract") as conn:
            updated = conn.execute(
                f"""
                UPDATE contract
                SET {assignments}, updated_at = NOW()
                WHERE id = %(id)s AND tenant_id = %(tenant_id)s AND status = %(expected_status)s
                RETURNING id
                """,
                params,
            ).fetchone()
            if updated is None:
                current = conn.execute(
                    "SELECT status FROM contract WHERE id = %s AND tenant_id = %s",
                    (contract_id, draft.tenant_id),
                ).fetchone()
                conn.rollback()
                if current is None:
                    raise ConflictError(
                        f"Contract {contract_id} not found", expected=expected_current_status.value
                    )
                raise ConflictError(
                    f"Contract {contract_id} status changed concurrently",
                    expected=expected_current_status.value,
                    actual=current["status"],
                )

    def get_contract_status(self, tenant_id: str, contract_id: int) -> ContractStatus | None:
        with self._operation("get_contract_status") as conn:
            row = conn.execute(
                "SELECT status FROM contract WHERE id = %s AND tenant_id = %s",
                (contract_id, tenant_id),
            ).fetchone()
        return ContractStatus(row["status"]) if row else None

    def get_contract(self, tenant_id: str, contract_id: int) -> ContractDraft | None:
        with self._operation("get_contract") as conn:
            row = conn.execute(
                f"SELECT {CONTRACT_COLUMNS} FROM contract WHERE id = %s AND tenant_id = %s",
                (contract_id, tenant_id),
            ).fetchone()
        return ContractDraft.model_validate(row) if row else None

    # ---- customers ----

    def upsert_customer(self, draft: CustomerDraft) -> int:
        row_values = customer_to_row(draft)
        placeholders = ", ".join(f"%({name})s" for name in CUSTOMER_COLUMNS)
        updates = ", ".join(
            f"{name} = EXCLUDED.{name}"
            for name in CUSTOMER_COLUMNS
            if name not in ("tenant_id", "customer_code")
        )
        with self._operation("upsert_customer") as conn:
            row = conn.execute(
                f"""
                INSERT INTO customer ({", ".join(CUSTOMER_COLUMNS)})
                VALUES ({placeholders})
                ON CONFLICT (tenant_id, customer_code) DO UPDATE SET
                    {updates}, updated_at = NOW()
                RETURNING id
                """,
                row_values,
            ).fetchone()
        return row["id"]

    def get_customer(self, tenant_id: str, customer_id: int) -> CustomerDraft | None:
        with self._operation("get_customer") as conn:
            row = conn.execute(
                f"SELECT id, {', '.join(CUSTOMER_COLUMNS)} FROM customer WHERE id = %s AND tenant_id = %s",
                (customer_id, tenant_id),
            ).fetchone()
        return CustomerDraft.model_validate(row) if row else None

    # ---- idempotency ledger ----

    def ledger_check_and_mark(
        self,
        fingerprint: str,
        stale_after_seconds: float | None,
        dedup_window_seconds: float | None = None,
    ) -> CheckResult:
        with self._operation("ledger_check_and_mark") as conn:
            claimed = conn.execute(
                LEDGER_CLAIM_SQL,
                {
                    "fingerprint": fingerprint,
                    "stale_after": stale_after_seconds,
                    "dedup_window": dedup_window_seconds,
                },
            ).fetchone()
            if claimed is not None:
                return CheckResult.FIRST_SEEN
            row = conn.execute(
                "SELECT outcome FROM processed_message WHERE fingerprint = %s", (fingerprint,)
            ).fetchone()
        outcome = row["outcome"] if row is not None else None
        if outcome == LedgerOutcome.PROCESSED.value:
            return CheckResult.ALREADY_PROCESSED
        if outcome == LedgerOutcome.DEAD_LETTER.value:
            return CheckResult.DEAD_LETTERED
        return CheckResult.IN_PROGRESS_CONFLICT

    def ledger_mark_outcome(self, fingerprint: str, outcome: LedgerOutcome) -> None:
        with self._operation("ledger_mark_outcome") as conn:
            conn.execute(
                """
                INSERT INTO processed_message (fingerprint, outcome)
                VALUES (%s, %s)
                ON CONFLICT (fingerprint) DO UPDATE SET
                    outcome = EXCLUDED.outcome,
                    updated_at = NOW()
                """,
                (fingerprint, outcome.value),
            )

    def ledger_get(self, fingerprint: str) -> IdempotencyRecord | None:
        with self._operation("ledger_get") as conn:
            row = conn.execute(
                "SELECT * FROM processed_message WHERE fingerprint = %s", (fingerprint,)
            ).fetchone()
        return IdempotencyRecord.model_validate(row) if row else None

    # ---- dead letters ----

    def store_dead_letter(self, message: IntegrationMessage, reason: str) -> int:
        with self._operation("store_dead_letter") as conn:
            row = conn.execute(
                """
                INSERT INTO dead_letter_message
                    (fingerprint, event_type, tenant_id, correlation_id, source_system, payload, reason)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    message.fingerprint(),
                    message.event_type,
                    message.tenant_id,
                    message.correlation_id,
                    message.source_system,
                    Jsonb(message.payload, dumps=json_dumps),
                    reason,
                ),
            ).fetchone()
        return row["id"]

    def close(self) -> None:
        self.pool.close()
