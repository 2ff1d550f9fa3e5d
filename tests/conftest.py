"""
Shared pytest fixtures for the contract registry test suite.

Database selection:
    DATABASE_URL set   -> that database (PostgreSQL for the locking tests)
    DATABASE_URL unset -> a temporary SQLite file for the whole session

Two isolation styles are provided:
    session          -- one connection, outer transaction rolled back at
                        teardown; service code may flush and "commit"
                        (savepoint release) freely.
    session_factory  -- real commits for the registry facade and the
                        concurrency tests; all rows are deleted at teardown.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from io import StringIO
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from contract_kernel.db.base import Base
from contract_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from contract_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from contract_kernel.domain.clock import DeterministicClock
from contract_kernel.domain.identifiers import NumberingPolicy
from contract_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from contract_kernel.services.contract_lifecycle import ContractLifecycleService
from contract_kernel.services.contract_registry import ContractRegistry

TEST_ACTOR_ID = "clerk-01"

WARD_LK = "Phường Long Khánh"
WARD_BV = "Phường Bảo Vinh"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
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
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture contract_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, registry):
            registry.create_contract(...)
            logs = captured_logs()
            assert any(r["message"] == "contract_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("contract_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url(tmp_dir: Path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_dir / 'contracts_test.db'}"


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session.

    Pool is large enough for the concurrency tests.
    """
    with tempfile.TemporaryDirectory(prefix="land_contracts_") as tmp:
        eng = init_engine_from_url(
            get_database_url(Path(tmp)),
            echo=False,
            pool_size=30,
            max_overflow=20,
            pool_timeout=10,
        )
        yield eng
        reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _delete_all_rows(engine):
    """Remove all data, bypassing the ORM immutability listeners.

    Used by tests that need real commits and therefore cannot rely on the
    rollback isolation pattern.
    """
    tables = list(reversed(Base.metadata.sorted_tables))
    with engine.connect() as conn:
        if engine.dialect.name == "postgresql":
            conn.execute(text(
                "TRUNCATE " + ", ".join(t.name for t in tables) + " CASCADE"
            ))
        else:
            for table in tables:
                conn.execute(table.delete())
        conn.commit()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session that is rolled back after the test.

    The session joins an outer transaction on a dedicated connection; any
    ``session.commit()`` inside the test only releases a savepoint.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def session_factory(db_engine, db_tables):
    """Provide a tracked session factory whose sessions really commit.

    On teardown:
    1. Blocks new session creation (late threads get RuntimeError)
    2. Closes any session still open
    3. Deletes all rows
    """
    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()
    closed = False

    def tracked_factory():
        nonlocal closed
        with lock:
            if closed:
                raise RuntimeError("session_factory closed (fixture teardown)")
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True

    for s in created_sessions:
        if s.in_transaction():
            s.rollback()
        s.close()

    _delete_all_rows(db_engine)


@pytest.fixture
def is_postgres(db_engine) -> bool:
    return db_engine.dialect.name == "postgresql"


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> str:
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Clock fixed at 2025-01-15 09:00 UTC."""
    return DeterministicClock(datetime(2025, 1, 15, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def numbering_policy():
    return NumberingPolicy()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def lifecycle(session, deterministic_clock, numbering_policy):
    """ContractLifecycleService on the rollback-isolated session."""
    return ContractLifecycleService(
        session, clock=deterministic_clock, policy=numbering_policy
    )


@pytest.fixture
def registry(session_factory, deterministic_clock, numbering_policy):
    """ContractRegistry whose operations really commit."""
    return ContractRegistry(
        session_factory, clock=deterministic_clock, policy=numbering_policy
    )


@pytest.fixture
def make_contract(lifecycle, test_actor_id):
    """Create a contract through the lifecycle service with sensible defaults."""

    def _make(
        ward: str = WARD_LK,
        owner_name: str = "Nguyễn Văn An",
        sheet_number: str = "12",
        plot_number: str = "345",
        is_branch: bool = False,
        notes: str | None = None,
        **kwargs,
    ):
        kwargs.setdefault("actor_id", test_actor_id)
        return lifecycle.create(
            ward, owner_name, sheet_number, plot_number, is_branch, notes, **kwargs
        )

    return _make
