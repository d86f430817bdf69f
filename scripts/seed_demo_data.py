"""
Seed the local database with a demo company, manager, operatives, a project
and a handful of work logs, then print a manager access token.

Usage:
  python scripts/seed_demo_data.py

Idempotent for the company/people (matched by name/email); work logs are only
created when the company has none yet.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

try:
    from dotenv import load_dotenv
    load_dotenv()
except Exception:
    pass

from fieldhub.db import SessionLocal, Base, engine
from fieldhub.models.models import Company, Manager, Project, User, WorkLog
from fieldhub.auth.security import create_manager_token
from fieldhub.services.worklog_lifecycle import approve_work_log, edit_work_log, submit_work_log


DEMO_WORK = [
    {"work_type": "Drylining", "block": "A", "floor": "2", "apartment": "2.04", "quantity": "12", "unit_price": "18.50"},
    {"work_type": "Second fix carpentry", "block": "A", "floor": "3", "apartment": "3.01", "quantity": "4", "unit_price": "65"},
    {"work_type": "Tiling", "block": "B", "floor": "1", "zone": "Lobby", "quantity": "30", "unit_price": "22"},
]


def ensure_company(session, name: str) -> Company:
    company = session.query(Company).filter(Company.name == name).first()
    if company:
        return company
    company = Company(name=name)
    session.add(company)
    session.flush()
    return company


def ensure_manager(session, company: Company, email: str, name: str, surname: str) -> Manager:
    manager = session.query(Manager).filter(Manager.email == email).first()
    if manager:
        return manager
    manager = Manager(company_id=company.id, email=email, name=name, surname=surname, active=True)
    session.add(manager)
    session.flush()
    return manager


def ensure_operative(session, company: Company, project: Project, email: str, name: str) -> User:
    user = session.query(User).filter(User.email == email, User.company_id == company.id).first()
    if user:
        return user
    user = User(company_id=company.id, project_id=project.id, email=email, name=name, active=True)
    session.add(user)
    session.flush()
    return user


def main() -> None:
    if os.getenv("DATABASE_URL", "sqlite:///./var/dev.db").startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        company = ensure_company(session, "Demo Construction Ltd")
        project = session.query(Project).filter(Project.company_id == company.id).first()
        if not project:
            project = Project(company_id=company.id, name="Riverside Apartments")
            session.add(project)
            session.flush()
        manager = ensure_manager(session, company, "manager@demo.local", "Dana", "Price")
        operatives = [
            ensure_operative(session, company, project, "ion@demo.local", "Ion Popescu"),
            ensure_operative(session, company, project, "sam@demo.local", "Sam Carter"),
        ]
        session.commit()

        has_logs = session.query(WorkLog).filter(WorkLog.company_id == company.id).first() is not None
        if not has_logs:
            for i, work in enumerate(DEMO_WORK):
                operative = operatives[i % len(operatives)]
                work_log = submit_work_log(session, company.id, operative.id, work)
                print(f"[OK] {work_log.job_display_id} {work_log.work_type} by {work_log.worker_name}")
            first = session.query(WorkLog).filter(WorkLog.company_id == company.id).order_by(WorkLog.id).first()
            edit_work_log(session, company.id, first.id, manager.display_name, {"unit_price": "19.00"})
            last = session.query(WorkLog).filter(WorkLog.company_id == company.id).order_by(WorkLog.id.desc()).first()
            approve_work_log(session, company.id, last.id)

        print()
        print("Manager token:")
        print(create_manager_token(manager.id, company.id))
    finally:
        session.close()


if __name__ == "__main__":
    main()
