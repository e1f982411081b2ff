"""
Ingress facade wiring the ETL pipeline and the integration router.

    with ClmIntegrationService.from_settings(load_settings()) as service:
        session_id = service.open_session("crm", "contract", records)
        print(service.get_session_status(session_id).summary())
"""

from typing import Any

from pydantic import ValidationError

from clm_integration.config.settings import Settings
from clm_integration.core.errors import InfrastructureError
from clm_integration.core.models import (
    EntityKind,
    EventType,
    IngestionSession,
    IntegrationMessage,
    RoutingOutcome,
)
from clm_integration.etl.promotion import PromotionStage
from clm_integration.etl.session_manager import SessionManager
from clm_integration.etl.staging import StagingStore
from clm_integration.integration.aggregator import CorrelationBuffer
from clm_integration.integration.handlers import default_handlers
from clm_integration.integration.ledger import IdempotencyLedger
from clm_integration.integration.router import IntegrationRouter
from clm_integration.observability.logger import get_logger
from clm_integration.utils.validation import InputValidationError, validate_records
from clm_integration.warehouse.connection import DatabaseConnectionPool
from clm_integration.warehouse.postgres import PostgresRepository
from clm_integration.warehouse.repository import Repository
from clm_integration.warehouse.schema_mgmt import create_schema as apply_schema

logger = get_logger(__name__)


class ClmIntegrationService:
    """
    Entry point for batch ingestion and integration messages.

    Args:
        repository: Persistence collaborator shared by every component
        settings: Pipeline settings; defaults apply when omitted
    """

    def __init__(self, repository: Repository, settings: Settings | None = None):
        self.repository = repository
        self.settings = settings or Settings()

        self.staging = StagingStore(repository, default_tenant=self.settings.etl.default_tenant)
        self.promotion = PromotionStage(repository)
        self.sessions = SessionManager(
            repository,
            self.staging,
            self.promotion,
            settings=self.settings,
            on_complete=self._notify_complete,
        )

        integration = self.settings.integration
        self.ledger = IdempotencyLedger(
            repository,
            stale_after_seconds=integration.in_progress_stale_seconds,
            max_retries=integration.max_retries,
            dedup_window_seconds=integration.dedup_window_hours * 3600,
        )
        self.buffer = CorrelationBuffer(integration.aggregation_timeout_seconds)
        self.router = IntegrationRouter(
            self.ledger,
            self.buffer,
            default_handlers(repository, self),
            repository,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, create_schema: bool = False) -> "ClmIntegrationService":
        """
        Build a PostgreSQL-backed service. The pool is opened here and
        released by close().

        Raises:
            PersistenceError: If the database cannot be reached
        """
        settings = settings or Settings()
        pool = DatabaseConnectionPool.from_settings(settings.database)
        pool.open()
        try:
            if create_schema:
                apply_schema(pool)
            repository = PostgresRepository(pool)
        except Exception:
            pool.close()
            raise
        return cls(repository, settings)

    def open_session(
        self,
        source_system: str,
        entity_kind: "str | EntityKind",
        records: list[dict[str, Any]],
    ) -> str:
        """
        Open a session, stage the records and run it to a terminal state.

        An infrastructure failure leaves the session FAILED; its id is still
        returned so the caller can inspect it.

        Raises:
            InputValidationError: If the arguments are invalid; no session is opened
            PersistenceError: If the session itself cannot be created
        """
        records = validate_records(records, max_records=self.settings.etl.batch_size)
        session_id = self.sessions.open(source_system, entity_kind)
        try:
            self.sessions.stage(session_id, records)
            self.sessions.advance(session_id)
        except InfrastructureError as e:
            logger.error(
                "Ingestion session ended on infrastructure failure",
                extra={"session_id": session_id, "error_type": type(e).__name__, "error_message": str(e)},
            )
        return session_id

    def get_session_status(self, session_id: str) -> IngestionSession:
        return self.sessions.status(session_id)

    def fail_session(self, session_id: str, reason: str) -> IngestionSession:
        return self.sessions.fail(session_id, reason)

    def cleanup_sessions(self, retention_days: int | None = None) -> int:
        """Purge finished sessions older than the staging retention period."""
        return self.sessions.purge_expired(retention_days)

    def submit_integration_message(self, message: "IntegrationMessage | dict[str, Any]") -> RoutingOutcome:
        """
        Route one integration message.

        Accepts an IntegrationMessage or its camelCase wire dict.

        Raises:
            InputValidationError: If a wire dict is malformed
            UnroutableMessageError: If the event type is unknown
            MessageHandlingError: If the handler failed
        """
        if isinstance(message, dict):
            try:
                message = IntegrationMessage.from_wire(message)
            except (KeyError, ValidationError) as e:
                raise InputValidationError(f"Malformed integration message: {e}") from e
        return self.router.route(message)

    def _notify_complete(self, session: IngestionSession) -> None:
        message = IntegrationMessage(
            event_type=EventType.ETL_COMPLETE.value,
            tenant_id=self.settings.etl.default_tenant,
            correlation_id=session.session_id,
            message_id=f"etl-complete-{session.session_id}",
            source_system=session.source_system,
            payload={
                "sessionId": session.session_id,
                "status": session.status.value,
                "entityType": session.entity_kind.value,
                "promoted": session.counts.promoted,
                "failed": session.counts.failed,
            },
        )
        self.router.route(message)

    def close(self) -> None:
        self.repository.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
