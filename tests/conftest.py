"""
Shared fixtures for the Daybook test suite.

Nothing here talks to the network: the blob store is in memory and the
clock is fixed.
"""

from datetime import datetime

import pytest

from daybook.audit import AuditLogger
from daybook.config import LedgerSettings
from daybook.ledger.files import DailyFileManager
from daybook.ledger.history import HistoryReconstructor
from daybook.models.ledger import Account
from daybook.orchestrator import LedgerService
from daybook.services.accounts import StaticAccountDirectory
from daybook.services.storage import InMemoryBlobStore

from tests.factories import FOLDER, USER, FixedClock


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 1, 9, 30))


@pytest.fixture
def store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(user_name=USER, guest_mode=False)


@pytest.fixture
def audit_logger() -> AuditLogger:
    return AuditLogger(keep_events=True)


@pytest.fixture
def accounts() -> StaticAccountDirectory:
    return StaticAccountDirectory([
        Account(id="cash", name="Cash", type="cash", currency="TWD"),
        Account(id="bank", name="Bank", type="bank", currency="TWD"),
        Account(id="usd", name="USD Savings", type="bank", currency="USD"),
        Account(id="old", name="Closed", type="bank", currency="TWD", deleted=True),
    ])


@pytest.fixture
def files(store, ledger_settings, audit_logger) -> DailyFileManager:
    return DailyFileManager(store, FOLDER, settings=ledger_settings, audit_logger=audit_logger)


@pytest.fixture
def history(files, audit_logger) -> HistoryReconstructor:
    return HistoryReconstructor(files, audit_logger=audit_logger)


@pytest.fixture
def service(store, accounts, ledger_settings, audit_logger, clock) -> LedgerService:
    return LedgerService(
        store=store,
        accounts=accounts,
        settings=ledger_settings,
        folder_name=FOLDER,
        audit_logger=audit_logger,
        clock=clock,
    )


@pytest.fixture
def guest_service(accounts, ledger_settings, audit_logger, clock) -> LedgerService:
    return LedgerService(
        accounts=accounts,
        settings=ledger_settings,
        guest=True,
        audit_logger=audit_logger,
        clock=clock,
    )
