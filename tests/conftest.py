"""Pytest fixtures for testing."""

import os
from pathlib import Path
from typing import Any

import pytest

from engagement.clock import ManualClock
from engagement.config.schemas import EngineConfig
from engagement.models.case import CaseCreate
from engagement.notifications import InMemoryNotificationSink
from engagement.orchestrator import LifecycleOrchestrator
from engagement.store.memory import MemoryRecordStore
from engagement.store.sql import SQLRecordStore

# Set test environment
os.environ.setdefault("ENGAGEMENT_ENVIRONMENT", "test")
os.environ.setdefault("ENGAGEMENT_STORAGE_BACKEND", "memory")

START_MS = 1_700_000_000_000


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_dir(project_root: Path) -> Path:
    """Get the config directory."""
    return project_root / "config"


@pytest.fixture
def clock() -> ManualClock:
    """Virtual clock starting at a fixed instant."""
    return ManualClock(START_MS)


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def sql_store(tmp_path: Path):
    """SQLite-backed record store in a temp directory."""
    store = SQLRecordStore(f"sqlite:///{tmp_path / 'engagement.db'}")
    try:
        yield store
    finally:
        store.dispose()


@pytest.fixture
def sink() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture
def engine_config() -> EngineConfig:
    """Default windows: 24h approval, 10m payment, 7d case payment."""
    return EngineConfig()


@pytest.fixture
def engine(store, clock, sink, engine_config) -> LifecycleOrchestrator:
    """Orchestrator over the in-memory store and virtual clock."""
    return LifecycleOrchestrator(store, clock=clock, sink=sink, config=engine_config)


@pytest.fixture
def booking_request() -> dict[str, Any]:
    """Valid booking request using the camelCase keys clients send."""
    return {
        "clientId": "client-1",
        "lawyerId": "lawyer-1",
        "clientName": "Jordan Lee",
        "lawyerName": "Sam Rivera",
        "consultationType": "video",
        "caseType": "Contract Dispute",
        "description": "Supplier breached a delivery contract last month.",
        "urgency": "high",
        "selectedDate": "2024-03-01",
        "selectedTime": "10:00",
        "consultationFee": 5000,
    }


@pytest.fixture
def case_request() -> CaseCreate:
    return CaseCreate(title="Contract dispute with supplier", estimated_fees=150_000)


@pytest.fixture
def confirmed_appointment(engine, clock, booking_request):
    """Appointment that has been approved and paid."""
    apt = engine.book_appointment(booking_request).entity
    clock.advance(hours=1)
    approved = engine.approve_appointment(apt.id)
    clock.advance(minutes=2)
    engine.confirm_payment(approved.entity.payment_id)
    return engine.get_appointment(apt.id)


@pytest.fixture
def active_case(engine, clock, confirmed_appointment, case_request):
    """Case started from a completed consultation."""
    engine.complete_appointment(confirmed_appointment.id)
    clock.advance(hours=1)
    return engine.start_case(confirmed_appointment.id, case_request).entity
