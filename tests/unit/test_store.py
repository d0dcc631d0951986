"""Unit tests for record stores and reload behaviour."""

import pytest

from engagement.clock import ManualClock
from engagement.models.appointment import AppointmentStatus
from engagement.models.case import Case, CaseCreate, CaseStatus
from engagement.models.payment import Payment, PaymentStatus
from engagement.orchestrator import LifecycleOrchestrator
from engagement.store.sql import SQLRecordStore

START_MS = 1_700_000_000_000


def _case(case_id: str = "case-1") -> Case:
    return Case(
        id=case_id,
        client_id="client-1",
        lawyer_id="lawyer-1",
        title="Estate planning",
        case_type="Wills",
        created_at=START_MS,
    )


@pytest.fixture(params=["memory", "sql"])
def any_store(request, store, sql_store):
    """Each record store backend."""
    return store if request.param == "memory" else sql_store


class TestTransactions:
    """Tests shared by every backend."""

    def test_commit_on_clean_exit(self, any_store):
        with any_store.transaction() as tx:
            tx.put(_case())

        assert any_store.get(Case, "case-1") == _case()

    def test_rollback_discards_all_writes(self, any_store):
        """Test a failing transaction leaves no partial writes."""
        with pytest.raises(RuntimeError):
            with any_store.transaction() as tx:
                tx.put(_case("case-1"))
                tx.put(_case("case-2"))
                raise RuntimeError("boom")

        assert any_store.list(Case) == []

    def test_reads_see_staged_writes(self, any_store):
        with any_store.transaction() as tx:
            tx.put(_case())
            staged = tx.require(Case, "case-1")
            staged.progress = 30
            tx.put(staged)

            assert tx.require(Case, "case-1").progress == 30
            assert [c.id for c in tx.list(Case)] == ["case-1"]

    def test_snapshots_are_copies(self, any_store):
        """Test mutating a returned snapshot does not touch the store."""
        with any_store.transaction() as tx:
            tx.put(_case())

        snapshot = any_store.get(Case, "case-1")
        snapshot.status = CaseStatus.CLOSED

        assert any_store.get(Case, "case-1").status == CaseStatus.ACTIVE

    def test_get_missing(self, any_store):
        assert any_store.get(Case, "nope") is None


class TestMemoryStore:
    """Tests for the in-process backend."""

    def test_count_tracks_committed_records(self, store):
        with store.transaction() as tx:
            tx.put(_case("case-1"))
            tx.put(_case("case-2"))
            assert store.count("case") == 0

        assert store.count("case") == 2
        assert store.count("payment") == 0

    def test_rolled_back_records_not_counted(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                tx.put(_case())
                raise RuntimeError("boom")

        assert store.count("case") == 0


class TestSQLStore:
    """Tests specific to the SQLAlchemy backend."""

    def test_requires_url_or_engine(self):
        with pytest.raises(ValueError):
            SQLRecordStore()

    def test_survives_new_store_instance(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'reopen.db'}"
        first = SQLRecordStore(url)
        with first.transaction() as tx:
            tx.put(_case())
        first.dispose()

        second = SQLRecordStore(url)
        try:
            assert second.get(Case, "case-1") == _case()
        finally:
            second.dispose()


class TestReload:
    """A reloaded engine reaches the same state as one that kept ticking."""

    def test_reload_matches_live_ticking(self, tmp_path, store, booking_request):
        url = f"sqlite:///{tmp_path / 'reload.db'}"

        live_clock = ManualClock(START_MS)
        live = LifecycleOrchestrator(store, clock=live_clock)
        persisted = LifecycleOrchestrator(SQLRecordStore(url), clock=ManualClock(START_MS))

        ids = {}
        for name, engine in (("live", live), ("persisted", persisted)):
            apt = engine.book_appointment(booking_request).entity
            engine.approve_appointment(apt.id)
            ids[name] = apt.id
        persisted.store.dispose()

        for _ in range(60):
            live_clock.advance(minutes=1)
            live.tick()

        reloaded_store = SQLRecordStore(url)
        reloaded = LifecycleOrchestrator(
            reloaded_store, clock=ManualClock(START_MS + 60 * 60 * 1000)
        )
        reloaded.tick()

        live_apt = live.get_appointment(ids["live"])
        reloaded_apt = reloaded.get_appointment(ids["persisted"])
        assert reloaded_apt.status == live_apt.status == AppointmentStatus.PAYMENT_EXPIRED
        assert reloaded_apt.expired_at == live_apt.expired_at
        assert (
            reloaded.get_payment(reloaded_apt.payment_id).status
            == live.get_payment(live_apt.payment_id).status
            == PaymentStatus.EXPIRED
        )
        reloaded_store.dispose()

    def test_case_reload_goes_overdue(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'case.db'}"
        clock = ManualClock(START_MS)
        engine = LifecycleOrchestrator(SQLRecordStore(url), clock=clock)
        case = engine.open_case(
            CaseCreate(
                client_id="client-1",
                lawyer_id="lawyer-1",
                title="Tenancy dispute",
                case_type="Housing",
            )
        ).entity
        engine.request_case_payment(case.id, 10_000)
        engine.store.dispose()

        reloaded_store = SQLRecordStore(url)
        later = ManualClock(START_MS + 8 * 24 * 60 * 60 * 1000)
        reloaded = LifecycleOrchestrator(reloaded_store, clock=later)
        reloaded.tick()

        assert reloaded.get_case(case.id).status == CaseStatus.OVERDUE
        assert reloaded_store.get(Payment, reloaded.get_case(case.id).pending_payment_id)
        reloaded_store.dispose()
