"""Tests for the work log state machine and its edit history."""
from decimal import Decimal

import pytest

from fieldhub.config import settings
from fieldhub.models.models import ProjectAssignment, User, WorkLog
from fieldhub.services import worklog_lifecycle
from fieldhub.services.errors import (
    InvalidTransition,
    NoProjectAssigned,
    NotFound,
    ValidationFailed,
    WorkerConfirmationPending,
)
from fieldhub.services.worklog_history import list_edit_records
from fieldhub.services.worklog_lifecycle import (
    approve_work_log,
    archive_work_log,
    archive_work_logs,
    complete_work_log,
    confirm_work_log_edit,
    contest_work_log_edit,
    edit_work_log,
    get_work_log,
    reject_work_log,
    submit_work_log,
)


class TestSubmit:
    def test_computes_total_when_missing(self, submit):
        work_log = submit(quantity=10, unit_price=2.5)
        assert work_log.total == Decimal("25.00")
        assert work_log.status == "pending"
        assert work_log.work_was_edited is False
        assert work_log.archived is False

    def test_explicit_total_is_kept(self, submit):
        work_log = submit(quantity="10", unit_price="2.5", total="20")
        assert work_log.total == Decimal("20.00")

    def test_total_left_empty_without_both_factors(self, submit):
        assert submit(quantity="3").total is None

    def test_snapshots_worker_and_project(self, submit, tenant):
        work_log = submit(description="  Boarding corridor  ", photo_urls=["/uploads/a.jpg", ""])
        assert work_log.worker_name == "Ion Popescu"
        assert work_log.project == "Acme Build Tower"
        assert work_log.project_id == tenant.project_id
        assert work_log.submitted_by_user_id == tenant.operative_id
        assert work_log.description == "Boarding corridor"
        assert work_log.photo_urls == ["/uploads/a.jpg"]

    def test_work_type_required(self, submit):
        with pytest.raises(ValidationFailed, match="Work type is required"):
            submit(work_type="   ")

    def test_non_numeric_quantity_rejected(self, submit):
        with pytest.raises(ValidationFailed):
            submit(quantity="lots")

    @pytest.mark.parametrize("fields", [
        {"quantity": "1e30"},
        {"unit_price": "1e40"},
        {"total": "1E+50"},
        {"quantity": "123456789012"},
        {"unit_price": "10000000000"},
    ])
    def test_numbers_wider_than_the_column_rejected(self, db, tenant, submit, fields):
        with pytest.raises(ValidationFailed, match="too large"):
            submit(**fields)
        assert db.query(WorkLog).filter(WorkLog.company_id == tenant.company_id).count() == 0

    def test_derived_total_wider_than_the_column_rejected(self, submit):
        with pytest.raises(ValidationFailed, match="total is too large"):
            submit(quantity="123456789", unit_price="99999999")

    def test_largest_values_that_fit(self, submit):
        work_log = submit(quantity="999999999.999", unit_price="9999999999.99", total="999999999999.99")
        assert work_log.total == Decimal("999999999999.99")

    def test_rounding_carry_past_the_column_rejected(self, submit):
        with pytest.raises(ValidationFailed, match="too large"):
            submit(quantity="999999999.9995")

    def test_derived_total_rounds_half_up(self, submit):
        assert submit(quantity="0.125", unit_price="1").total == Decimal("0.13")
        assert submit(total="0.125").total == Decimal("0.13")

    def test_no_project_assigned(self, db, tenant):
        user = User(company_id=tenant.company_id, name="New Starter", active=True)
        db.add(user)
        db.commit()
        with pytest.raises(NoProjectAssigned):
            submit_work_log(db, tenant.company_id, user.id, {"work_type": "Drylining"})

    def test_project_from_latest_assignment(self, db, tenant):
        user = User(company_id=tenant.company_id, name="Floater", active=True)
        db.add(user)
        db.flush()
        db.add(ProjectAssignment(user_id=user.id, project_id=tenant.project_id))
        db.commit()
        work_log = submit_work_log(db, tenant.company_id, user.id, {"work_type": "Tiling"})
        assert work_log.project_id == tenant.project_id

    def test_submitter_from_other_company(self, db, tenant, other_tenant):
        with pytest.raises(NotFound):
            submit_work_log(db, tenant.company_id, other_tenant.operative_id, {"work_type": "Tiling"})


class TestEdit:
    def test_same_values_is_a_no_op(self, db, tenant, submit):
        work_log = submit(quantity=10, unit_price=2.5)
        before = work_log.updated_at
        result = edit_work_log(
            db, tenant.company_id, work_log.id, "Dana Price",
            {"quantity": "10.000", "unit_price": "2.50", "total": 25},
        )
        assert result.status == "pending"
        assert result.work_was_edited is False
        assert result.updated_at == before
        assert list_edit_records(db, work_log.id) == []

    def test_one_record_per_changed_field(self, db, tenant, submit):
        work_log = submit(quantity=10, unit_price=2.5)
        result = edit_work_log(
            db, tenant.company_id, work_log.id, "Dana Price",
            {"quantity": 12, "unit_price": "2.5", "total": "30"},
        )
        assert result.status == "waiting_worker"
        assert result.work_was_edited is True
        assert result.quantity == Decimal("12")
        assert result.total == Decimal("30.00")

        records = list_edit_records(db, work_log.id)
        assert [r.field for r in records] == ["quantity", "total"]
        assert Decimal(records[0].old_value) == Decimal("10")
        assert Decimal(records[0].new_value) == Decimal("12")
        assert records[1].old_value == "25.00"
        assert records[1].new_value == "30.00"
        assert all(r.editor_name == "Dana Price" for r in records)
        assert [r.seq for r in records] == [1, 2]

    def test_history_is_appended_across_edits(self, db, tenant, submit):
        work_log = submit(quantity=10, unit_price=2.5)
        edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"total": "30"})
        edit_work_log(db, tenant.company_id, work_log.id, "Alex Reed", {"total": "28"})
        records = list_edit_records(db, work_log.id)
        assert [(r.seq, r.old_value, r.new_value, r.editor_name) for r in records] == [
            (1, "25.00", "30.00", "Dana Price"),
            (2, "30.00", "28.00", "Alex Reed"),
        ]

    def test_setting_a_previously_empty_field(self, db, tenant, submit):
        work_log = submit(quantity="3")
        edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"unit_price": "4"})
        records = list_edit_records(db, work_log.id)
        assert len(records) == 1
        assert records[0].old_value is None
        assert records[0].new_value == "4.00"

    def test_other_company_gets_not_found(self, db, submit, other_tenant):
        work_log = submit(quantity=10, unit_price=2.5)
        with pytest.raises(NotFound):
            edit_work_log(db, other_tenant.company_id, work_log.id, "Intruder", {"total": "1"})
        with pytest.raises(NotFound):
            get_work_log(db, other_tenant.company_id, work_log.id)
        assert list_edit_records(db, work_log.id) == []

    def test_archived_entry_cannot_be_edited(self, db, tenant, submit):
        work_log = submit(quantity=10, unit_price=2.5)
        archive_work_log(db, tenant.company_id, work_log.id)
        with pytest.raises(InvalidTransition):
            edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"total": "1"})

    def test_invalid_number_rejected_before_any_change(self, db, tenant, submit):
        work_log = submit(quantity=10, unit_price=2.5)
        with pytest.raises(ValidationFailed):
            edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"quantity": "12", "total": "abc"})
        assert get_work_log(db, tenant.company_id, work_log.id).quantity == Decimal("10")

    def test_oversized_number_rejected_before_any_change(self, db, tenant, submit):
        work_log = submit(quantity=10, unit_price=2.5)
        for updates in ({"total": "1e40"}, {"quantity": "1e30"}, {"unit_price": "123456789012.5"}):
            with pytest.raises(ValidationFailed, match="too large"):
                edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", updates)
        unchanged = get_work_log(db, tenant.company_id, work_log.id)
        assert unchanged.total == Decimal("25.00")
        assert unchanged.status == "pending"
        assert list_edit_records(db, work_log.id) == []

    def test_retries_after_concurrent_edit(self, db, session_factory, tenant, submit, monkeypatch):
        work_log = submit(quantity=10, unit_price=2.5)
        real_append = worklog_lifecycle.append_edit_records
        calls = {"n": 0}

        def racing_append(session, entry, diff, editor_name, timestamp):
            calls["n"] += 1
            if calls["n"] == 1:
                other = session_factory()
                try:
                    edit_work_log(other, tenant.company_id, work_log.id, "Alex Reed", {"unit_price": "3"})
                finally:
                    other.close()
            return real_append(session, entry, diff, editor_name, timestamp)

        monkeypatch.setattr(worklog_lifecycle, "append_edit_records", racing_append)
        result = edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"quantity": "12"})

        assert result.quantity == Decimal("12")
        assert result.unit_price == Decimal("3.00")
        records = list_edit_records(db, work_log.id)
        assert [(r.field, r.editor_name) for r in records] == [
            ("unit_price", "Alex Reed"),
            ("quantity", "Dana Price"),
        ]

    def test_stale_writer_is_detected(self, db, session_factory, tenant, submit):
        from sqlalchemy.orm.exc import StaleDataError

        work_log = submit(quantity=10, unit_price=2.5)
        other = session_factory()
        try:
            stale = other.query(WorkLog).filter(WorkLog.id == work_log.id).first()
            edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"total": "30"})
            stale.total = Decimal("99")
            with pytest.raises(StaleDataError):
                other.commit()
            other.rollback()
        finally:
            other.close()


class TestDecisions:
    def test_approve_and_reject_overwrite_status(self, db, tenant, submit):
        work_log = submit()
        assert approve_work_log(db, tenant.company_id, work_log.id).status == "approved"
        assert reject_work_log(db, tenant.company_id, work_log.id).status == "rejected"
        assert approve_work_log(db, tenant.company_id, work_log.id).status == "approved"
        assert list_edit_records(db, work_log.id) == []

    def test_approval_waits_for_worker_confirmation(self, db, tenant, submit):
        work_log = submit(quantity=10, unit_price=2.5)
        edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"total": "30"})
        with pytest.raises(WorkerConfirmationPending):
            approve_work_log(db, tenant.company_id, work_log.id)
        # Rejecting is always possible
        assert reject_work_log(db, tenant.company_id, work_log.id).status == "rejected"

    def test_approval_while_waiting_can_be_allowed(self, db, tenant, submit, monkeypatch):
        monkeypatch.setattr(settings, "allow_approve_while_waiting_worker", True)
        work_log = submit(quantity=10, unit_price=2.5)
        edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"total": "30"})
        assert approve_work_log(db, tenant.company_id, work_log.id).status == "approved"

    def test_worker_confirms_then_manager_approves(self, db, tenant, submit):
        work_log = submit(quantity=10, unit_price=2.5)
        edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"total": "30"})
        confirmed = confirm_work_log_edit(db, tenant.company_id, tenant.operative_id, work_log.id)
        assert confirmed.status == "edited"
        assert confirmed.work_was_edited is True
        assert approve_work_log(db, tenant.company_id, work_log.id).status == "approved"

    def test_worker_contests_edit(self, db, tenant, submit):
        work_log = submit(quantity=10, unit_price=2.5)
        edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"total": "30"})
        contested = contest_work_log_edit(db, tenant.company_id, tenant.operative_id, work_log.id)
        assert contested.status == "pending"
        assert contested.work_was_edited is True
        assert len(list_edit_records(db, work_log.id)) == 1

    def test_confirm_requires_pending_edit(self, db, tenant, submit):
        work_log = submit()
        with pytest.raises(InvalidTransition):
            confirm_work_log_edit(db, tenant.company_id, tenant.operative_id, work_log.id)

    def test_only_the_submitter_can_confirm(self, db, tenant, submit):
        work_log = submit(quantity=1, unit_price=1)
        edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"total": "2"})
        colleague = User(company_id=tenant.company_id, name="Colleague", project_id=tenant.project_id, active=True)
        db.add(colleague)
        db.commit()
        with pytest.raises(NotFound):
            confirm_work_log_edit(db, tenant.company_id, colleague.id, work_log.id)

    def test_complete_only_from_approved(self, db, tenant, submit):
        work_log = submit()
        with pytest.raises(InvalidTransition):
            complete_work_log(db, tenant.company_id, work_log.id)
        approve_work_log(db, tenant.company_id, work_log.id)
        completed = complete_work_log(db, tenant.company_id, work_log.id)
        assert completed.status == "completed"
        with pytest.raises(InvalidTransition):
            edit_work_log(db, tenant.company_id, work_log.id, "Dana Price", {"total": "1"})

    def test_transitions_scoped_to_company(self, db, submit, other_tenant):
        work_log = submit()
        for transition in (approve_work_log, reject_work_log, complete_work_log, archive_work_log):
            with pytest.raises(NotFound):
                transition(db, other_tenant.company_id, work_log.id)

    def test_missing_entry(self, db, tenant):
        with pytest.raises(NotFound, match="Job not found"):
            approve_work_log(db, tenant.company_id, 9999)


class TestArchive:
    def test_archive_is_idempotent(self, db, tenant, submit):
        work_log = submit()
        first = archive_work_log(db, tenant.company_id, work_log.id)
        assert first.archived is True
        stamp, status = first.updated_at, first.status
        second = archive_work_log(db, tenant.company_id, work_log.id)
        assert second.archived is True
        assert second.updated_at == stamp
        assert second.status == status

    def test_bulk_skips_unknown_and_foreign_ids(self, db, tenant, other_tenant, submit):
        mine = submit()
        approve_work_log(db, tenant.company_id, mine.id)
        theirs = submit(other_tenant)
        assert archive_work_logs(db, tenant.company_id, [mine.id, 987654, theirs.id]) == 1
        assert get_work_log(db, tenant.company_id, mine.id).archived is True
        assert get_work_log(db, tenant.company_id, mine.id).status == "approved"
        assert get_work_log(db, other_tenant.company_id, theirs.id).archived is False

    def test_bulk_counts_already_archived(self, db, tenant, submit):
        a, b = submit(), submit()
        archive_work_log(db, tenant.company_id, a.id)
        assert archive_work_logs(db, tenant.company_id, [a.id, b.id, str(b.id), "x", -3]) == 2

    def test_bulk_requires_valid_ids(self, db, tenant):
        with pytest.raises(ValidationFailed):
            archive_work_logs(db, tenant.company_id, ["x", 0, None])
