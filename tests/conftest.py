"""
Pytest fixtures for the approval engine test suite.

Provides:
- A session-scoped engine with tables created once per run
- Per-test sessions that roll back at teardown
- Deterministic clock, compiled configuration, org hierarchy and owner
  factories
- Captured structured logs

Environment Variables:
- DATABASE_URL: database to test against.  Defaults to a SQLite file in a
  temporary directory; set a PostgreSQL URL to exercise READ COMMITTED
  compare-and-swap behaviour.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from decimal import Decimal
from io import StringIO
from pathlib import Path
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from approval_config import get_active_config
from approval_kernel.db.engine import build_engine, create_tables, drop_tables
from approval_kernel.domain.approval import ApprovalType, OwnerRef, OwnerStatus
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.models.owners import OWNER_MODELS
from approval_kernel.services.authority import (
    RoleBasedAuthority,
    SqlAlchemyDelegationLookup,
    StaticOrgHierarchy,
)
from approval_kernel.services.decision_log import DecisionLog
from approval_kernel.services.record_store import SqlAlchemyRecordStore
from approval_services.decision_processor import DecisionProcessor
from approval_services.submission_service import SubmissionService


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
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, processor):
            processor.approve(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_decision_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Session-scoped DB infrastructure
# =============================================================================


def get_database_url(tmp_dir: Path) -> str:
    return os.environ.get("DATABASE_URL", f"sqlite:///{tmp_dir / 'approvals_test.db'}")


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session, tables created once."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        eng = build_engine(get_database_url(Path(tmp_dir)))
        drop_tables(eng)
        create_tables(eng)
        yield eng
        drop_tables(eng)
        eng.dispose()


@pytest.fixture(scope="function")
def session(db_engine) -> Generator[Session, None, None]:
    """Provide a database session that is rolled back after the test.

    The session joins an outer transaction on a dedicated connection;
    ``begin_nested()`` and ``commit()`` inside the test only touch
    savepoints, and teardown rolls everything back.
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


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture(scope="session")
def approval_config():
    return get_active_config()


@dataclass(frozen=True)
class Staff:
    """Fixed cast of users for decision tests."""

    requester: UUID
    dept_manager: UUID
    plant_manager: UUID
    finance_director: UUID
    vp_operations: UUID
    ceo: UUID
    outsider: UUID
    proxy: UUID


@pytest.fixture
def staff() -> Staff:
    return Staff(
        requester=uuid4(),
        dept_manager=uuid4(),
        plant_manager=uuid4(),
        finance_director=uuid4(),
        vp_operations=uuid4(),
        ceo=uuid4(),
        outsider=uuid4(),
        proxy=uuid4(),
    )


@pytest.fixture
def org(staff) -> StaticOrgHierarchy:
    """Role holders plus a simple reporting line up to the CEO."""
    return StaticOrgHierarchy(
        roles={
            staff.requester: ("requester",),
            staff.dept_manager: ("department_manager",),
            staff.plant_manager: ("plant_manager",),
            staff.finance_director: ("finance_director",),
            staff.vp_operations: ("vp_operations",),
            staff.ceo: ("ceo",),
            staff.proxy: ("buyer",),
        },
        managers={
            staff.requester: staff.dept_manager,
            staff.dept_manager: staff.plant_manager,
            staff.plant_manager: staff.finance_director,
            staff.finance_director: staff.vp_operations,
            staff.vp_operations: staff.ceo,
        },
        names={
            staff.requester: "Riley Requester",
            staff.dept_manager: "Dana Dept",
            staff.plant_manager: "Pat Plant",
            staff.finance_director: "Frankie Finance",
            staff.vp_operations: "Val Ops",
            staff.ceo: "Casey Chief",
            staff.proxy: "Parker Proxy",
        },
    )


@pytest.fixture
def authority(org, session, deterministic_clock, approval_config) -> RoleBasedAuthority:
    return RoleBasedAuthority(
        org,
        SqlAlchemyDelegationLookup(session, deterministic_clock),
        limits=approval_config.limits_by_tier(),
    )


@pytest.fixture
def record_store(session) -> SqlAlchemyRecordStore:
    return SqlAlchemyRecordStore(session)


@pytest.fixture
def decision_log(session) -> DecisionLog:
    return DecisionLog(session)


@pytest.fixture
def processor(
    session, authority, deterministic_clock, approval_config, org, decision_log,
) -> DecisionProcessor:
    return DecisionProcessor(
        session,
        authority,
        clock=deterministic_clock,
        config=approval_config,
        org=org,
        sinks=[decision_log],
    )


@pytest.fixture
def submission(
    session, deterministic_clock, approval_config, decision_log,
) -> SubmissionService:
    return SubmissionService(
        session,
        clock=deterministic_clock,
        config=approval_config,
        sinks=[decision_log],
    )


@pytest.fixture
def create_owner(session, staff, deterministic_clock):
    """Factory: insert a draft owner row and return its OwnerRef."""
    counter = {"n": 0}

    def _create(
        approval_type: ApprovalType = ApprovalType.REQUISITION,
        total: Decimal | str | None = Decimal("1000.00"),
        status: OwnerStatus = OwnerStatus.DRAFT,
        requester_id: UUID | None = None,
        title: str | None = None,
        created_at=None,
    ) -> OwnerRef:
        counter["n"] += 1
        n = counter["n"]
        model = OWNER_MODELS[approval_type]
        fields = {
            "requester_id": requester_id or staff.requester,
            "requester_name": "Riley Requester",
            "title": title or f"{approval_type.value} #{n}",
            "total": Decimal(total) if total is not None else None,
            "status": status.value,
            "created_at": created_at or deterministic_clock.now(),
        }
        if approval_type == ApprovalType.REQUISITION:
            fields["requisition_number"] = f"REQ-{n:05d}"
        elif approval_type == ApprovalType.PURCHASE_ORDER:
            fields["po_number"] = f"PO-{n:05d}"
        elif approval_type == ApprovalType.PURCHASE_REQUEST:
            fields["request_number"] = f"PR-{n:05d}"
        else:
            fields["workflow_name"] = "hot_work_permit"
        row = model(**fields)
        session.add(row)
        session.flush()
        return OwnerRef(approval_type, row.id)

    return _create


@pytest.fixture
def submitted_owner(create_owner, submission, staff):
    """Factory: create a draft owner and submit it."""

    def _submit(
        total: Decimal | str | None,
        approval_type: ApprovalType = ApprovalType.REQUISITION,
        **kwargs,
    ) -> OwnerRef:
        ref = create_owner(approval_type=approval_type, total=total, **kwargs)
        submission.submit(ref, staff.requester, "Riley Requester")
        return ref

    return _submit
