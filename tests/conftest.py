"""
Pytest fixtures for the production stock ledger test suite.

Provides:
- A fresh in-memory SQLite database per test (BEGIN IMMEDIATE engine)
- Kernel services and selectors bound to one session
- A ProductionLedgerService facade bound to its own session factory
- Deterministic clock, actor id and structured log capture
- Factories for materials, recipes and jobs

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL.  Only tests marked ``postgres``
  use it; they are skipped when it is not set.

Kernel fixtures (``session`` and everything built on it) and the
``facade`` fixture share one in-memory connection.  A test uses one or the
other, never both: SQLite allows a single open write transaction.
"""

import json
import logging
import os
from collections.abc import Generator
from datetime import UTC, datetime
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from stock_config import LedgerConfig, SubPhaseConfig
from stock_kernel.db.engine import build_engine, create_tables, drop_tables
from stock_kernel.db.immutability import register_immutability_listeners
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_kernel.models.job import Job
from stock_kernel.selectors.bom_selector import BomSelector
from stock_kernel.selectors.inventory_selector import InventorySelector
from stock_kernel.selectors.stage_selector import StageSelector
from stock_kernel.services.catalog_service import MaterialCatalogService
from stock_kernel.services.deduction_service import DeductionService
from stock_kernel.services.ledger_service import StockLedgerService
from stock_kernel.services.stage_tracker import StageHistoryTracker
from stock_services.production_ledger import ProductionLedgerService

TEST_ACTOR_ID = uuid4()

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture
def captured_logs():
    """
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.apply(...)
            logs = captured_logs()
            assert any(r["message"] == "ledger_apply_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database with all tables."""
    eng = build_engine("sqlite://")
    create_tables(eng)
    yield eng
    drop_tables(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


# =============================================================================
# Kernel services
# =============================================================================


@pytest.fixture
def ledger(session, deterministic_clock) -> StockLedgerService:
    return StockLedgerService(session, deterministic_clock)


@pytest.fixture
def deductions(session, deterministic_clock, ledger) -> DeductionService:
    return DeductionService(session, deterministic_clock, ledger=ledger)


@pytest.fixture
def tracker(session, deterministic_clock) -> StageHistoryTracker:
    return StageHistoryTracker(session, deterministic_clock)


@pytest.fixture
def catalog(session, deterministic_clock, ledger) -> MaterialCatalogService:
    return MaterialCatalogService(session, deterministic_clock, ledger=ledger)


@pytest.fixture
def inventory(session) -> InventorySelector:
    return InventorySelector(session)


@pytest.fixture
def bom_selector(session) -> BomSelector:
    return BomSelector(session)


@pytest.fixture
def stage_selector(session) -> StageSelector:
    return StageSelector(session)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def create_material(catalog):
    """Create a material with an opening balance booked through the ledger."""
    counter = {"n": 0}

    def _create(
        name: str | None = None,
        qty: Decimal | int | str = 0,
        minimum_level: Decimal | int | str = 0,
        restock_threshold: Decimal | int | str = 0,
        unit: str = "meters",
    ):
        counter["n"] += 1
        return catalog.create_material(
            name or f"Material {counter['n']}",
            unit,
            minimum_level=minimum_level,
            restock_threshold=restock_threshold,
            opening_qty=qty,
        )

    return _create


@pytest.fixture
def set_bom(catalog):
    def _set(product_type: str, size: str | None, material_id: UUID, qty_per_unit):
        return catalog.set_bom_entry(product_type, size, material_id, qty_per_unit)

    return _set


@pytest.fixture
def create_job(catalog):
    def _create(product_list=None, name: str = "Test Job") -> Job:
        return catalog.create_job(name, product_list or [])

    return _create


# =============================================================================
# Facade
# =============================================================================


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig(
        database_url="sqlite://",
        sub_phases=(
            SubPhaseConfig("design_to_print", "__first__", "printing"),
            SubPhaseConfig("print_to_delivered", "printing", "delivered_collected"),
        ),
    )


@pytest.fixture
def facade(session_factory, ledger_config, deterministic_clock) -> ProductionLedgerService:
    return ProductionLedgerService(
        session_factory, config=ledger_config, clock=deterministic_clock
    )


# =============================================================================
# PostgreSQL
# =============================================================================


@pytest.fixture
def postgres_url() -> str:
    url = os.environ.get("DATABASE_URL", "")
    if not url.startswith("postgresql"):
        pytest.skip("DATABASE_URL does not point at PostgreSQL")
    return url
