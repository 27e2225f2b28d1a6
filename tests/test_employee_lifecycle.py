from __future__ import annotations

from datetime import date, datetime, timezone
import unittest

from sqlalchemy import select

from hrms.errors import ApiError
from hrms.models import ApprovalStatus, AuditLog, EmployeeStatus, EmployeeType, Leave, LeaveType
from hrms.schemas import EmployeeCreate
from hrms.services.employee_lifecycle import (
    casual_days_taken_in_year,
    create_employee,
    get_employee_or_404,
    grant_emergency_leave,
    reconcile_employee,
    reconcile_working_employees,
    resign_employee,
)
from support_db import add_employee, make_engine, make_session_factory

CURRENT_MARKERS = {
    "leave_reset_marker": date(2026, 3, 1),
    "medical_reset_marker": date(2026, 1, 1),
    "restricted_reset_marker": date(2026, 1, 1),
    "compensatory_reset_marker": date(2026, 3, 1),
}


class EmployeeLifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.SessionLocal = make_session_factory(self.engine)
        self.db = self.SessionLocal()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _actions(self) -> list[str]:
        return list(self.db.scalars(select(AuditLog.action).order_by(AuditLog.id)).all())

    def test_create_initializes_balances_and_audits(self) -> None:
        payload = EmployeeCreate(
            employee_code="E-501",
            full_name="Ravi Kumar",
            external_user_id=" 501 ",
            date_of_joining=date(2026, 3, 10),
        )

        employee = create_employee(self.db, payload, as_of=date(2026, 3, 10))

        self.assertEqual(employee.external_user_id, "501")
        self.assertEqual(employee.employee_type, EmployeeType.PROBATION)
        self.assertEqual(employee.paid_leave_balance, 1)
        self.assertEqual(employee.medical_leave_balance, 0)
        self.assertEqual(employee.restricted_holiday_balance, 1)
        self.assertEqual(self._actions(), ["initialize_leave_balances"])

    def test_create_rejects_mapped_time_clock_id(self) -> None:
        add_employee(self.db, "501")
        payload = EmployeeCreate(
            employee_code="E-502",
            full_name="Second Person",
            external_user_id="501",
            date_of_joining=date(2026, 3, 10),
        )

        with self.assertRaises(ApiError) as ctx:
            create_employee(self.db, payload, as_of=date(2026, 3, 10))

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, "EXTERNAL_ID_TAKEN")

    def test_missing_employee_is_404(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            get_employee_or_404(self.db, 999)

        self.assertEqual(ctx.exception.status_code, 404)

    def test_resignation_settles_excess_casual_leave(self) -> None:
        employee = add_employee(self.db, "101", paid_leave_balance=4.0, **CURRENT_MARKERS)
        self.db.add(
            Leave(
                employee_id=employee.id,
                leave_type=LeaveType.CASUAL,
                start_date=date(2026, 2, 2),
                end_date=date(2026, 2, 6),
                stage_a=ApprovalStatus.APPROVED,
                stage_b=ApprovalStatus.APPROVED,
                stage_c=ApprovalStatus.ACKNOWLEDGED,
            )
        )
        self.db.commit()
        self.assertEqual(casual_days_taken_in_year(self.db, employee.id, 2026), 5)

        result = resign_employee(
            self.db,
            employee.id,
            resignation_date=date(2026, 3, 20),
            as_of=date(2026, 3, 20),
        )

        self.assertEqual(result.events, ["resignation_over_and_above_settled"])
        self.db.refresh(employee)
        self.assertEqual(employee.status, EmployeeStatus.RESIGNED)
        self.assertEqual(employee.date_of_resigning, date(2026, 3, 20))
        self.assertEqual(employee.paid_leave_balance, 2)
        self.assertEqual(employee.unpaid_leave_taken, 2)
        self.assertIn("resignation_over_and_above_settled", self._actions())

        with self.assertRaises(ApiError) as again:
            resign_employee(self.db, employee.id, resignation_date=date(2026, 3, 21), as_of=date(2026, 3, 21))
        self.assertEqual(again.exception.code, "ALREADY_RESIGNED")

    def test_resignation_before_joining_is_rejected(self) -> None:
        employee = add_employee(self.db, "101", date_of_joining=date(2026, 3, 1), **CURRENT_MARKERS)

        with self.assertRaises(ApiError) as ctx:
            resign_employee(self.db, employee.id, resignation_date=date(2026, 2, 1), as_of=date(2026, 3, 5))

        self.assertEqual(ctx.exception.status_code, 422)
        self.db.refresh(employee)
        self.assertEqual(employee.status, EmployeeStatus.WORKING)

    def test_emergency_leave_lasts_one_day(self) -> None:
        employee = add_employee(self.db, "101", **CURRENT_MARKERS)

        granted = grant_emergency_leave(self.db, employee.id, as_of=date(2026, 3, 5), granted_by=42)
        self.assertTrue(granted.emergency_leave_granted)
        self.assertEqual(granted.emergency_leave_granted_on, date(2026, 3, 5))

        result = reconcile_employee(self.db, employee.id, as_of=date(2026, 3, 6))

        self.assertEqual(result.events, ["emergency_leave_revoked"])
        self.db.refresh(employee)
        self.assertFalse(employee.emergency_leave_granted)
        self.assertEqual(self._actions(), ["grant_emergency_leave", "emergency_leave_revoked"])

    def test_sweep_reconciles_working_employees_only(self) -> None:
        markers = dict(CURRENT_MARKERS, leave_reset_marker=date(2026, 1, 1))
        working = add_employee(self.db, "101", **markers)
        resigned = add_employee(self.db, "102", status=EmployeeStatus.RESIGNED, **markers)

        summary = reconcile_working_employees(datetime(2026, 3, 5, 6, 0, tzinfo=timezone.utc), db=self.db)

        self.assertEqual((summary.reconciled, summary.changed, summary.failed), (1, 1, 0))
        self.db.refresh(working)
        self.db.refresh(resigned)
        self.assertEqual(working.paid_leave_balance, 7)
        self.assertEqual(resigned.paid_leave_balance, 5)


if __name__ == "__main__":
    unittest.main()
