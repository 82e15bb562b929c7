"""
Shared pytest fixtures for the Shopfloor Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - company / other_company: Pre-created tenants
    - make_user, admin, supervisor, employee: users inside ``company``
    - ctx_for: TenantContext for a user (service-level tests)
    - auth_headers: Bearer header for a user (API tests)
    - make_stage, link, make_work_order, make_task: ORM factories
"""

import itertools
from datetime import timedelta

import pytest

from shopfloor import create_app
from shopfloor.core.context import TenantContext
from shopfloor.models import db as _db
from shopfloor.models.auth import Company, User
from shopfloor.models.base import utcnow
from shopfloor.models.production import (
    ProductionStage,
    StageDependency,
    WorkOrder,
    WorkOrderStage,
)
from shopfloor.models.task import Task
from shopfloor.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Tenants & users ──────────────────────────────────────────────────────


def _company(name, slug, status="active"):
    company = Company(name=name, slug=slug, status=status)
    _db.session.add(company)
    _db.session.commit()
    return company


@pytest.fixture()
def company():
    return _company("Acme Works", "acme-works")


@pytest.fixture()
def other_company():
    return _company("Globex Fabrication", "globex")


@pytest.fixture()
def make_user(company):
    """Factory: make_user(role="employee", tenant=None, **fields) → User."""
    counter = itertools.count(1)

    def _make(role="employee", tenant=None, **fields):
        n = next(counter)
        user = User(
            tenant_id=(tenant or company).id,
            email=fields.pop("email", f"{role}{n}@example.com"),
            first_name=fields.pop("first_name", role.title()),
            last_name=fields.pop("last_name", f"No{n}"),
            role=role,
            **fields,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user("admin")


@pytest.fixture()
def supervisor(make_user):
    return make_user("supervisor")


@pytest.fixture()
def employee(make_user):
    return make_user("employee")


@pytest.fixture()
def ctx_for():
    """TenantContext for a user, as the tenant-context middleware builds it."""
    return TenantContext.for_user


@pytest.fixture()
def auth_headers():
    """Return a function building the Authorization header for a user."""
    def _headers(user, expires_in=None):
        token = generate_access_token(user.id, user.tenant_id, user.role, expires_in)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ── Production factories ─────────────────────────────────────────────────


@pytest.fixture()
def make_stage(company):
    """Factory: make_stage(name=None, tenant=None, target_quantity=10, **fields)."""
    counter = itertools.count(1)

    def _make(name=None, tenant=None, target_quantity=10, **fields):
        n = next(counter)
        stage = ProductionStage(
            tenant_id=(tenant or company).id,
            name=name or f"Stage {n}",
            order=fields.pop("order", n),
            estimated_duration_min=fields.pop("estimated_duration_min", 60),
            target_quantity=target_quantity,
            completed_quantity=fields.pop("completed_quantity", 0),
            wip_quantity=target_quantity,
            **fields,
        )
        _db.session.add(stage)
        _db.session.commit()
        return stage

    return _make


@pytest.fixture()
def link():
    """Persist a predecessor → successor edge between two stages."""
    def _link(predecessor, successor):
        edge = StageDependency(
            tenant_id=predecessor.tenant_id,
            predecessor_id=predecessor.id,
            successor_id=successor.id,
        )
        _db.session.add(edge)
        _db.session.commit()
        return edge
    return _link


@pytest.fixture()
def make_work_order(company):
    """Factory: make_work_order(stages, target_quantity=10, tenant=None, **fields)."""
    counter = itertools.count(1)

    def _make(stages, target_quantity=10, tenant=None, **fields):
        n = next(counter)
        now = utcnow()
        work_order = WorkOrder(
            tenant_id=(tenant or company).id,
            order_number=f"WO-TEST-{n:04d}",
            product_name=fields.pop("product_name", "Steel bracket"),
            target_quantity=target_quantity,
            completed_quantity=0,
            start_date=now,
            due_date=now + timedelta(days=7),
            **fields,
        )
        for position, stage in enumerate(stages, start=1):
            work_order.stage_entries.append(
                WorkOrderStage(stage_id=stage.id, order=position, status="pending"),
            )
        _db.session.add(work_order)
        _db.session.commit()
        return work_order

    return _make


@pytest.fixture()
def make_task(company):
    """Factory: make_task(work_order, stage, assignee, target_quantity=5, **fields)."""
    counter = itertools.count(1)

    def _make(work_order, stage, assignee, target_quantity=5, **fields):
        n = next(counter)
        task = Task(
            tenant_id=work_order.tenant_id,
            task_number=f"TASK-TEST-{n:04d}",
            name=fields.pop("name", f"Task {n}"),
            work_order_id=work_order.id,
            stage_id=stage.id,
            assigned_to_id=assignee.id,
            target_quantity=target_quantity,
            completed_quantity=0,
            due_date=fields.pop("due_date", utcnow() + timedelta(days=2)),
            estimated_duration_min=fields.pop("estimated_duration_min", 30),
            **fields,
        )
        _db.session.add(task)
        _db.session.commit()
        return task

    return _make
