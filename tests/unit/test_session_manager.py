"""
Unit tests for the session manager.
"""

from datetime import timedelta

import pytest

from clm_integration.config.settings import EtlSettings, Settings
from clm_integration.core.errors import (
    ClmError,
    IllegalSessionTransitionError,
    PersistenceError,
    SessionNotFoundError,
)
from clm_integration.core.models import ErrorCode, SessionStatus, StagingStatus
from clm_integration.core.models.staged_record import utcnow
from clm_integration.etl.promotion import PromotionStage
from clm_integration.etl.session_manager import SessionManager
from clm_integration.etl.staging import StagingStore
from clm_integration.utils.validation import InputValidationError
from clm_integration.warehouse.memory import InMemoryRepository

CONTRACTS = [
    {"contractNumber": "CNT-001", "customerId": 100, "targetStatus": "PENDING"},
    {"contractNumber": "CNT-002", "customerId": 100, "startDate": "2024-06-01", "endDate": "2024-01-01"},
    {"contractNumber": "CNT-003", "customerId": "abc"},
    {"contractNumber": "CNT-004", "customerId": 100, "targetStatus": "ACTIVE"},
    {"contractNumber": "CNT-001", "customerId": 200},
]


class FailingCommitRepository(InMemoryRepository):
    """Repository whose contract commits fail as if the database went away"""

    def commit_contract(self, draft):
        raise PersistenceError("commit_contract", "connection refused")


def make_manager(repository, settings=None, on_complete=None) -> SessionManager:
    return SessionManager(
        repository,
        StagingStore(repository),
        PromotionStage(repository),
        settings=settings or Settings(),
        on_complete=on_complete,
    )


@pytest.mark.unit
class TestSessionLifecycle:
    """Tests for running sessions to completion"""

    def test_counts_add_up(self, repository, settings):
        manager = make_manager(repository, settings)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS)

        session = manager.advance(session_id)

        assert session.status is SessionStatus.COMPLETED
        assert session.counts.received == 5
        assert session.counts.staged == 5
        assert session.counts.promoted == 1
        assert session.counts.failed == 4
        assert session.counts.promoted + session.counts.failed == session.counts.received

    def test_outcomes_in_sequence_order(self, repository, settings):
        manager = make_manager(repository, settings)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS)

        session = manager.advance(session_id)

        codes = {o.sequence: o.result.error_code for o in session.outcomes}
        assert [o.sequence for o in session.outcomes] == [1, 2, 3, 4, 5]
        assert codes[1] is None
        assert codes[2] == ErrorCode.INVALID_DATE_RANGE.value
        assert codes[3] == ErrorCode.FIELD_INVALID.value
        assert codes[4] == ErrorCode.ILLEGAL_TRANSITION.value
        assert codes[5] == ErrorCode.DUPLICATE_IN_SESSION.value

    def test_staged_records_carry_final_status(self, repository, settings):
        manager = make_manager(repository, settings)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS[:2])

        manager.advance(session_id)

        statuses = [r.status for r in repository.list_staged(session_id)]
        assert statuses == [StagingStatus.PROMOTED, StagingStatus.REJECTED]
        assert repository.list_staged(session_id)[1].error.field_name == "endDate"

    def test_empty_session_completes(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "customer")
        manager.stage(session_id, [])

        session = manager.advance(session_id)

        assert session.status is SessionStatus.COMPLETED
        assert session.counts.received == 0

    def test_terminal_session_cannot_advance(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS[:1])
        manager.advance(session_id)

        with pytest.raises(IllegalSessionTransitionError):
            manager.advance(session_id)

    def test_stage_twice_rejected(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS[:1])

        with pytest.raises(IllegalSessionTransitionError):
            manager.stage(session_id, CONTRACTS[:1])

    def test_invalid_inputs(self, repository):
        manager = make_manager(repository)

        with pytest.raises(InputValidationError):
            manager.open("bad source!", "contract")
        with pytest.raises(InputValidationError):
            manager.open("crm", "invoice")

        session_id = manager.open("crm", "contract")
        with pytest.raises(InputValidationError):
            manager.stage(session_id, ["not a mapping"])

    def test_batch_larger_than_batch_size_rejected(self, repository):
        manager = make_manager(repository, Settings(etl=EtlSettings(batch_size=2)))
        session_id = manager.open("crm", "contract")

        with pytest.raises(InputValidationError, match="maximum batch size of 2"):
            manager.stage(session_id, CONTRACTS[:3])

        assert manager.status(session_id).status is SessionStatus.OPEN
        assert repository.list_staged(session_id) == []
        manager.stage(session_id, CONTRACTS[:2])
        assert manager.status(session_id).counts.staged == 2

    def test_completion_callback_receives_snapshot(self, repository):
        finished = []
        manager = make_manager(repository, on_complete=finished.append)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS[:1])

        manager.advance(session_id)

        assert len(finished) == 1
        assert finished[0].session_id == session_id
        assert finished[0].status is SessionStatus.COMPLETED

    def test_callback_errors_do_not_fail_session(self, repository):
        def broken(session):
            raise ClmError("notification channel down")

        manager = make_manager(repository, on_complete=broken)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS[:1])

        assert manager.advance(session_id).status is SessionStatus.COMPLETED


@pytest.mark.unit
class TestSessionFailures:
    """Tests for infrastructure faults and cancellation"""

    def test_infrastructure_failure_fails_session(self):
        repository = FailingCommitRepository()
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS[:1])

        with pytest.raises(PersistenceError):
            manager.advance(session_id)

        session = manager.status(session_id)
        assert session.status is SessionStatus.FAILED
        assert "connection refused" in session.error_message
        assert repository.get_session(session_id).status is SessionStatus.FAILED

    def test_rejections_never_fail_session(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, [{"customerId": 1}, {"contractNumber": "??"}])

        session = manager.advance(session_id)

        assert session.status is SessionStatus.COMPLETED
        assert session.counts.failed == 2

    def test_cancel_before_advance(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS)

        cancelled = manager.fail(session_id, "operator stop")

        with pytest.raises(IllegalSessionTransitionError):
            manager.advance(session_id)

        session = manager.status(session_id)
        assert cancelled.status is SessionStatus.FAILED
        assert session.status is SessionStatus.FAILED
        assert session.error_message == "operator stop"
        assert session.counts.promoted == 0

    def test_cancel_stops_scheduling(self, repository, monkeypatch):
        manager = make_manager(repository, Settings(etl=EtlSettings(parallel_consumers=1)))
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, [
            {"contractNumber": f"CNT-10{i}", "customerId": 1} for i in range(5)
        ])
        commit = repository.commit_contract

        def commit_then_cancel(draft):
            contract_id = commit(draft)
            if manager.status(session_id).status is not SessionStatus.FAILED:
                manager.fail(session_id, "operator stop")
            return contract_id

        monkeypatch.setattr(repository, "commit_contract", commit_then_cancel)

        session = manager.advance(session_id)

        assert session.status is SessionStatus.FAILED
        assert session.counts.promoted == 1

    def test_fail_terminal_session(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.fail(session_id, "first")

        with pytest.raises(IllegalSessionTransitionError):
            manager.fail(session_id, "second")


@pytest.mark.unit
class TestSessionStatus:
    """Tests for status lookups"""

    def test_status_is_a_copy(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")

        snapshot = manager.status(session_id)
        snapshot.counts.received = 99

        assert manager.status(session_id).counts.received == 0

    def test_status_falls_back_to_repository(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS[:1])
        manager.advance(session_id)

        restarted = make_manager(repository)

        assert restarted.status(session_id).status is SessionStatus.COMPLETED

    def test_unknown_session(self, repository):
        manager = make_manager(repository)

        with pytest.raises(SessionNotFoundError):
            manager.status("0" * 32)
        with pytest.raises(SessionNotFoundError):
            manager.advance("0" * 32)


@pytest.mark.unit
class TestSessionEviction:
    """Tests for dropping finished sessions from memory"""

    @staticmethod
    def assert_nothing_held(manager):
        assert manager._sessions == {}
        assert manager._locks == {}
        assert manager._started == {}
        assert manager._finished == set()
        assert manager._running == {}

    def test_completed_sessions_evicted(self, repository, settings):
        manager = make_manager(repository, settings)
        session_ids = []
        for i in range(20):
            session_id = manager.open("crm", "contract")
            manager.stage(session_id, [{"contractNumber": f"CNT-{i:03d}", "customerId": 1}])
            manager.advance(session_id)
            session_ids.append(session_id)

        self.assert_nothing_held(manager)
        assert all(manager.status(s).status is SessionStatus.COMPLETED for s in session_ids)
        assert manager.status(session_ids[0]).counts.promoted == 1

    def test_failed_session_evicted(self):
        repository = FailingCommitRepository()
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS[:1])

        with pytest.raises(PersistenceError):
            manager.advance(session_id)

        self.assert_nothing_held(manager)
        assert manager.status(session_id).status is SessionStatus.FAILED

    def test_cancelled_session_evicted(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")

        manager.fail(session_id, "operator stop")

        self.assert_nothing_held(manager)
        with pytest.raises(IllegalSessionTransitionError):
            manager.fail(session_id, "again")

    def test_cancel_during_advance_keeps_counts(self, repository, monkeypatch):
        manager = make_manager(repository, Settings(etl=EtlSettings(parallel_consumers=1)))
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, [
            {"contractNumber": f"CNT-20{i}", "customerId": 1} for i in range(3)
        ])
        commit = repository.commit_contract

        def commit_then_cancel(draft):
            contract_id = commit(draft)
            if manager.status(session_id).status is not SessionStatus.FAILED:
                manager.fail(session_id, "operator stop")
            return contract_id

        monkeypatch.setattr(repository, "commit_contract", commit_then_cancel)

        session = manager.advance(session_id)

        self.assert_nothing_held(manager)
        assert session.status is SessionStatus.FAILED
        assert session.counts.promoted == 1
        assert repository.get_session(session_id).counts.promoted == 1

    def test_open_sessions_stay_in_memory(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS[:1])

        assert session_id in manager._sessions
        assert session_id in manager._locks


@pytest.mark.unit
class TestSessionRetention:
    """Tests for purging expired sessions"""

    def test_recent_sessions_kept(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.stage(session_id, CONTRACTS[:1])
        manager.advance(session_id)

        assert manager.purge_expired() == 0
        assert manager.purge_expired(retention_days=1) == 0
        assert manager.status(session_id).status is SessionStatus.COMPLETED

    @pytest.mark.parametrize("retention_days", [0, -1, "7", True, 1.5])
    def test_invalid_retention_rejected(self, repository, retention_days):
        manager = make_manager(repository)

        with pytest.raises(InputValidationError, match="retention_days"):
            manager.purge_expired(retention_days=retention_days)

    def test_default_comes_from_settings(self, repository, monkeypatch):
        manager = make_manager(repository, Settings(etl=EtlSettings(staging_retention_days=3)))
        cutoffs = []
        monkeypatch.setattr(repository, "purge_sessions", lambda before: cutoffs.append(before) or 0)

        manager.purge_expired()

        age = utcnow() - cutoffs[0]
        assert timedelta(days=3) <= age < timedelta(days=3, minutes=1)

    def test_only_finished_sessions_purged(self, repository):
        manager = make_manager(repository)
        finished = manager.open("crm", "contract")
        manager.stage(finished, CONTRACTS[:2])
        manager.advance(finished)
        cancelled = manager.open("crm", "contract")
        manager.fail(cancelled, "operator stop")
        still_open = manager.open("crm", "contract")
        manager.stage(still_open, CONTRACTS[:1])

        deleted = repository.purge_sessions(utcnow() + timedelta(seconds=1))

        assert deleted == 2
        assert repository.get_session(finished) is None
        assert repository.get_session(cancelled) is None
        assert repository.list_staged(finished) == []
        assert repository.get_session(still_open).status is SessionStatus.STAGING
        assert len(repository.list_staged(still_open)) == 1

    def test_purged_session_not_found(self, repository):
        manager = make_manager(repository)
        session_id = manager.open("crm", "contract")
        manager.fail(session_id, "operator stop")
        repository.purge_sessions(utcnow() + timedelta(seconds=1))

        with pytest.raises(SessionNotFoundError):
            manager.status(session_id)
