"""
Idempotency ledger: remembers which message fingerprints were processed.

The check and the claim happen in one atomic repository operation, so of N
concurrent deliveries of the same message exactly one is told FIRST_SEEN.
A fingerprint that keeps failing is moved to DEAD_LETTER once it has used
max_retries attempts, and is never claimed again.
"""

from clm_integration.core.models import CheckResult, IdempotencyRecord, LedgerOutcome
from clm_integration.observability.logger import get_logger
from clm_integration.observability.metrics import record_ledger_check
from clm_integration.warehouse.repository import Repository

logger = get_logger(__name__)


class IdempotencyLedger:
    """
    Idempotent-consumer bookkeeping on top of a Repository.

    Args:
        repository: Store holding the ledger entries
        stale_after_seconds: Age after which an unresolved IN_PROGRESS claim
            is released for one more attempt; None never releases
        max_retries: Attempts allowed before a failing fingerprint is
            dead-lettered; None retries forever
        dedup_window_seconds: Age after which a PROCESSED fingerprint is
            forgotten; None remembers it forever
    """

    def __init__(
        self,
        repository: Repository,
        stale_after_seconds: float | None = None,
        max_retries: int | None = None,
        dedup_window_seconds: float | None = None,
    ):
        self.repository = repository
        self.stale_after_seconds = stale_after_seconds
        self.max_retries = max_retries
        self.dedup_window_seconds = dedup_window_seconds

    def check_and_mark(self, fingerprint: str) -> CheckResult:
        result = self.repository.ledger_check_and_mark(
            fingerprint, self.stale_after_seconds, self.dedup_window_seconds
        )
        record_ledger_check(result.value.lower())
        if result is not CheckResult.FIRST_SEEN:
            logger.info(
                "Ledger refused claim",
                extra={"fingerprint": fingerprint, "result": result.value},
            )
        return result

    def mark_outcome(self, fingerprint: str, outcome: LedgerOutcome) -> None:
        if outcome is LedgerOutcome.IN_PROGRESS:
            raise ValueError("Outcome must be PROCESSED, FAILED or DEAD_LETTER")
        self.repository.ledger_mark_outcome(fingerprint, outcome)

    def mark_processed(self, fingerprint: str) -> None:
        self.mark_outcome(fingerprint, LedgerOutcome.PROCESSED)

    def mark_failed(self, fingerprint: str) -> LedgerOutcome:
        """
        Record a failed attempt.

        Returns:
            DEAD_LETTER when the attempt used up max_retries, else FAILED
        """
        self.mark_outcome(fingerprint, LedgerOutcome.FAILED)
        if self.max_retries is None:
            return LedgerOutcome.FAILED

        record = self.repository.ledger_get(fingerprint)
        if record is None or record.attempts < self.max_retries:
            return LedgerOutcome.FAILED

        self.mark_outcome(fingerprint, LedgerOutcome.DEAD_LETTER)
        logger.warning(
            "Retries exhausted, fingerprint dead-lettered",
            extra={"fingerprint": fingerprint, "attempts": record.attempts, "max_retries": self.max_retries},
        )
        return LedgerOutcome.DEAD_LETTER

    def get(self, fingerprint: str) -> IdempotencyRecord | None:
        return self.repository.ledger_get(fingerprint)
