"""
Shared test fixtures for FieldHub.

Every test gets its own file-backed SQLite database (file-backed so that
worker threads can open their own connections), seeded companies with a
manager, an operative and a project, and an HTTP client wired to that database.
"""
import os

os.environ.setdefault("RATE_LIMIT", "100000/minute")
os.environ.setdefault("AUTO_CREATE_DB", "false")

from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from fieldhub.auth.security import create_manager_token
from fieldhub.auth.session_store import InMemorySessionStore
from fieldhub.db import Base, build_engine, get_db
from fieldhub.models.models import Company, Manager, Project, User
from fieldhub.services.worklog_lifecycle import submit_work_log


@dataclass
class Tenant:
    company_id: int
    project_id: int
    manager_id: int
    operative_id: int


def make_tenant(db, name: str, operative_name: str, manager_email: str) -> Tenant:
    company = Company(name=name)
    db.add(company)
    db.flush()
    project = Project(company_id=company.id, name=f"{name} Tower")
    db.add(project)
    db.flush()
    manager = Manager(company_id=company.id, name="Dana", surname="Price", email=manager_email, active=True)
    operative = User(company_id=company.id, name=operative_name, email=None, project_id=project.id, active=True)
    db.add_all([manager, operative])
    db.commit()
    return Tenant(
        company_id=company.id,
        project_id=project.id,
        manager_id=manager.id,
        operative_id=operative.id,
    )


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'fieldhub.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def tenant(db) -> Tenant:
    return make_tenant(db, "Acme Build", "Ion Popescu", "dana@acme.test")


@pytest.fixture
def other_tenant(db) -> Tenant:
    return make_tenant(db, "Other Build", "Sam Carter", "dana@other.test")


@pytest.fixture
def submit(db, tenant):
    """Submit a work log for the tenant's operative; keyword args override the defaults."""

    def _submit(target: Tenant = None, **fields):
        target = target or tenant
        data = {"work_type": "Drylining", "block": "A", "floor": "2"}
        data.update(fields)
        return submit_work_log(db, target.company_id, target.operative_id, data)

    return _submit


@pytest.fixture
def client(session_factory):
    from fieldhub.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.state.session_store = InMemorySessionStore(ttl_seconds=3600)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def manager_headers(tenant):
    return {"Authorization": f"Bearer {create_manager_token(tenant.manager_id, tenant.company_id)}"}


@pytest.fixture
def operative_headers(client, tenant):
    token = client.app.state.session_store.create(tenant.operative_id, tenant.company_id)
    return {"X-Operative-Token": token}
