from __future__ import annotations

from datetime import date, datetime, timezone
import os
import tempfile
import unittest

from sqlalchemy import select

from hrms.errors import ApiError, ApprovalError, BalanceError
from hrms.models import (
    ApprovalStatus,
    AttendanceRecord,
    AttendanceStatus,
    AuditLog,
    CompensatoryStatus,
    Employee,
    EmployeeType,
    Leave,
    LeaveType,
    OvertimeClaimType,
    PunchDirection,
    Role,
)
from hrms.schemas import BusinessTripCreate, LeaveCreate, MissedPunchCreate, OvertimeClaimCreate
from hrms.security import Actor
from hrms.services.attendance_calc import derive_day
from hrms.services.attendance_deriver import upsert_attendance
from hrms.services.approvals import (
    RequestKind,
    StageSnapshot,
    decide_request,
    initial_stages,
    plan_decision,
    submit_request,
)
from support_db import RecordingSink, add_department, add_employee, make_engine, make_session_factory

P = ApprovalStatus.PENDING
A = ApprovalStatus.APPROVED
NOW_UTC = datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc)
CURRENT_MARKERS = {
    "leave_reset_marker": date(2026, 3, 1),
    "medical_reset_marker": date(2026, 1, 1),
    "restricted_reset_marker": date(2026, 1, 1),
    "compensatory_reset_marker": date(2026, 3, 1),
}


class PlanDecisionTests(unittest.TestCase):
    def _code(self, snapshot: StageSnapshot, role: Role, decision: ApprovalStatus, remarks: str | None = None) -> str:
        with self.assertRaises(ApprovalError) as ctx:
            plan_decision(snapshot, role=role, decision=decision, remarks=remarks)
        return ctx.exception.code

    def test_stages_advance_in_order(self) -> None:
        self.assertEqual(
            plan_decision(StageSnapshot(P, P, P), role=Role.HOD, decision=A),
            {"stage_a": A, "stage_b": P},
        )
        self.assertEqual(
            plan_decision(StageSnapshot(A, P, P), role=Role.CEO, decision=A),
            {"stage_b": A, "stage_c": P},
        )
        self.assertEqual(
            plan_decision(StageSnapshot(ApprovalStatus.SUBMITTED, P, P), role=Role.CEO, decision=A),
            {"stage_b": A, "stage_c": P},
        )
        self.assertEqual(
            plan_decision(StageSnapshot(A, A, P), role=Role.ADMIN, decision=ApprovalStatus.ACKNOWLEDGED),
            {"stage_c": ApprovalStatus.ACKNOWLEDGED},
        )

    def test_out_of_order_decisions(self) -> None:
        self.assertEqual(self._code(StageSnapshot(P, P, P), Role.CEO, A), ApprovalError.STAGE_OUT_OF_ORDER)
        self.assertEqual(
            self._code(StageSnapshot(A, P, P), Role.ADMIN, ApprovalStatus.ACKNOWLEDGED),
            ApprovalError.STAGE_OUT_OF_ORDER,
        )

    def test_invalid_decisions(self) -> None:
        self.assertEqual(self._code(StageSnapshot(P, P, P), Role.EMPLOYEE, A), ApprovalError.ROLE_NOT_ALLOWED)
        self.assertEqual(self._code(StageSnapshot(A, A, P), Role.ADMIN, A), ApprovalError.INVALID_DECISION)
        self.assertEqual(
            self._code(StageSnapshot(P, P, P), Role.HOD, ApprovalStatus.REJECTED, remarks="  "),
            ApprovalError.REMARKS_REQUIRED,
        )
        self.assertEqual(self._code(StageSnapshot(A, P, P), Role.HOD, A), ApprovalError.STAGE_NOT_PENDING)
        self.assertEqual(
            self._code(StageSnapshot(ApprovalStatus.REJECTED, P, P), Role.CEO, A),
            ApprovalError.REQUEST_TERMINAL,
        )

    def test_error_statuses(self) -> None:
        self.assertEqual(ApprovalError(ApprovalError.STAGE_NOT_PENDING, "x").status_code, 409)
        self.assertEqual(ApprovalError(ApprovalError.ROLE_NOT_ALLOWED, "x").status_code, 403)
        self.assertEqual(ApprovalError(ApprovalError.REMARKS_REQUIRED, "x").status_code, 422)

    def test_initial_stages_follow_requester_role(self) -> None:
        self.assertEqual(initial_stages(Role.EMPLOYEE, RequestKind.LEAVE), StageSnapshot(P, P, P))
        self.assertEqual(
            initial_stages(Role.HOD, RequestKind.LEAVE),
            StageSnapshot(ApprovalStatus.SUBMITTED, P, P),
        )
        self.assertEqual(initial_stages(Role.HOD, RequestKind.BUSINESS_TRIP), StageSnapshot(A, P, P))
        self.assertEqual(initial_stages(Role.CEO, RequestKind.OVERTIME_CLAIM), StageSnapshot(A, A, P))
        self.assertEqual(initial_stages(Role.ADMIN, RequestKind.MISSED_PUNCH), StageSnapshot(A, P, P))


class ApprovalFlowTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.engine = make_engine(f"sqlite:///{os.path.join(self.tmpdir.name, 'hrms.db')}")
        self.SessionLocal = make_session_factory(self.engine)
        self.db = self.SessionLocal()
        self.sink = RecordingSink()

        self.department = add_department(self.db, "Stores")
        self.other_department = add_department(self.db, "Accounts")
        self.employee = add_employee(self.db, "101", department_id=self.department.id, **CURRENT_MARKERS)
        self.hod = add_employee(self.db, "700", role=Role.HOD, department_id=self.department.id, **CURRENT_MARKERS)
        self.other_hod = add_employee(
            self.db, "701", role=Role.HOD, department_id=self.other_department.id, **CURRENT_MARKERS
        )
        self.ceo = add_employee(self.db, "800", role=Role.CEO, **CURRENT_MARKERS)
        self.admin = add_employee(self.db, "900", role=Role.ADMIN, **CURRENT_MARKERS)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        self.tmpdir.cleanup()

    def _actor(self, employee: Employee) -> Actor:
        return Actor(employee_id=employee.id, role=employee.role)

    def _submit(self, kind: RequestKind, payload, *, by: Employee | None = None, now_utc: datetime = NOW_UTC):
        return submit_request(
            self.db,
            kind=kind,
            actor=self._actor(by or self.employee),
            payload=payload,
            sink=self.sink,
            now_utc=now_utc,
        )

    def _decide(self, kind: RequestKind, request_id: int, by: Employee, decision: ApprovalStatus = A, **kwargs):
        kwargs.setdefault("now_utc", NOW_UTC)
        return decide_request(
            self.db,
            kind=kind,
            request_id=request_id,
            actor=self._actor(by),
            decision=decision,
            sink=self.sink,
            **kwargs,
        )

    def _approve_through_ceo(self, kind: RequestKind, request_id: int, **kwargs) -> None:
        self._decide(kind, request_id, self.hod, **kwargs)
        self._decide(kind, request_id, self.ceo, **kwargs)

    def _casual_leave(self) -> LeaveCreate:
        return LeaveCreate(leave_type=LeaveType.CASUAL, start_date=date(2026, 3, 16), end_date=date(2026, 3, 17))

    def _actions(self) -> list[str]:
        return list(self.db.scalars(select(AuditLog.action).order_by(AuditLog.id)).all())

    def test_casual_leave_full_chain_deducts_paid_leave(self) -> None:
        leave = self._submit(RequestKind.LEAVE, self._casual_leave())
        self.assertEqual(self.sink.recipients(), {self.hod.id})

        self.sink.sent.clear()
        self._decide(RequestKind.LEAVE, leave.id, self.hod)
        self.assertEqual(self.sink.recipients(), {self.employee.id, self.ceo.id})

        self.sink.sent.clear()
        self._decide(RequestKind.LEAVE, leave.id, self.ceo)
        self.assertEqual(self.sink.recipients(), {self.employee.id, self.admin.id})

        decided = self._decide(RequestKind.LEAVE, leave.id, self.admin, ApprovalStatus.ACKNOWLEDGED)

        self.assertEqual((decided.stage_a, decided.stage_b, decided.stage_c), (A, A, ApprovalStatus.ACKNOWLEDGED))
        self.db.refresh(self.employee)
        self.assertEqual(self.employee.paid_leave_balance, 3)
        self.assertEqual(
            self._actions(),
            ["leave_submitted", "leave_approved", "leave_approved", "leave_acknowledged"],
        )

    def test_rejection_needs_remarks_and_notifies_charge_holder(self) -> None:
        payload = self._casual_leave().model_copy(update={"charge_given_to_id": self.admin.id})
        leave = self._submit(RequestKind.LEAVE, payload)
        self.sink.sent.clear()

        rejected = self._decide(RequestKind.LEAVE, leave.id, self.hod, ApprovalStatus.REJECTED, remarks="Audit week")

        self.assertEqual(rejected.stage_a, ApprovalStatus.REJECTED)
        self.assertEqual(rejected.remarks, "Audit week")
        self.assertEqual(self.sink.recipients(), {self.employee.id, self.admin.id})
        with self.assertRaises(ApprovalError) as ctx:
            self._decide(RequestKind.LEAVE, leave.id, self.ceo)
        self.assertEqual(ctx.exception.code, ApprovalError.REQUEST_TERMINAL)

    def test_hod_submission_skips_own_stage(self) -> None:
        leave = self._submit(RequestKind.LEAVE, self._casual_leave(), by=self.hod)

        self.assertEqual(leave.stage_a, ApprovalStatus.SUBMITTED)
        self.assertEqual(self.sink.recipients(), {self.ceo.id})
        self._decide(RequestKind.LEAVE, leave.id, self.ceo)

    def test_hod_cannot_decide_other_departments(self) -> None:
        leave = self._submit(RequestKind.LEAVE, self._casual_leave())

        with self.assertRaises(ApprovalError) as ctx:
            self._decide(RequestKind.LEAVE, leave.id, self.other_hod)

        self.assertEqual(ctx.exception.status_code, 403)
        self.db.refresh(leave)
        self.assertEqual(leave.stage_a, P)

    def test_second_decision_on_same_stage_conflicts(self) -> None:
        leave = self._submit(RequestKind.LEAVE, self._casual_leave())
        self._decide(RequestKind.LEAVE, leave.id, self.hod)

        with self.assertRaises(ApprovalError) as ctx:
            self._decide(RequestKind.LEAVE, leave.id, self.hod)

        self.assertEqual(ctx.exception.code, ApprovalError.STAGE_NOT_PENDING)
        self.assertEqual(ctx.exception.status_code, 409)

    def test_concurrent_acknowledgments_apply_once(self) -> None:
        leave = self._submit(RequestKind.LEAVE, self._casual_leave())
        self._approve_through_ceo(RequestKind.LEAVE, leave.id)
        stale = self.SessionLocal()
        self.addCleanup(stale.close)
        held = stale.get(Leave, leave.id)
        self.assertEqual(held.stage_c, P)

        self._decide(RequestKind.LEAVE, leave.id, self.admin, ApprovalStatus.ACKNOWLEDGED)
        with self.assertRaises(ApprovalError) as ctx:
            decide_request(
                stale,
                kind=RequestKind.LEAVE,
                request_id=leave.id,
                actor=self._actor(self.admin),
                decision=ApprovalStatus.ACKNOWLEDGED,
                sink=self.sink,
                now_utc=NOW_UTC,
            )

        self.assertEqual(ctx.exception.code, ApprovalError.STAGE_NOT_PENDING)
        self.db.refresh(self.employee)
        self.assertEqual(self.employee.paid_leave_balance, 3)
        stale.refresh(held)
        self.assertEqual(held.stage_c, ApprovalStatus.ACKNOWLEDGED)
        self.assertEqual(self._actions().count("leave_acknowledged"), 1)

    def test_failed_balance_effect_keeps_admin_stage_pending(self) -> None:
        probation = add_employee(
            self.db,
            "102",
            department_id=self.department.id,
            employee_type=EmployeeType.PROBATION,
            **CURRENT_MARKERS,
        )
        leave = Leave(
            employee_id=probation.id,
            leave_type=LeaveType.MEDICAL,
            start_date=date(2026, 3, 16),
            end_date=date(2026, 3, 16),
            stage_a=A,
            stage_b=A,
            stage_c=P,
        )
        self.db.add(leave)
        self.db.commit()

        with self.assertRaises(BalanceError):
            self._decide(RequestKind.LEAVE, leave.id, self.admin, ApprovalStatus.ACKNOWLEDGED)

        self.db.refresh(leave)
        self.assertEqual(leave.stage_c, P)
        self.assertNotIn("leave_acknowledged", self._actions())

    def test_probation_cannot_submit_medical_leave(self) -> None:
        probation = add_employee(self.db, "102", employee_type=EmployeeType.PROBATION, **CURRENT_MARKERS)

        with self.assertRaises(BalanceError) as ctx:
            self._submit(
                RequestKind.LEAVE,
                LeaveCreate(leave_type=LeaveType.MEDICAL, start_date=date(2026, 3, 16)),
                by=probation,
            )

        self.assertEqual(ctx.exception.code, "MEDICAL_LEAVE_NOT_ALLOWED")

    def test_missed_punch_acknowledgment_fills_the_record(self) -> None:
        self.db.add(
            AttendanceRecord(
                employee_id=self.employee.id,
                log_date=date(2026, 3, 9),
                status=AttendanceStatus.ABSENT,
                overtime_minutes=0,
                late_penalty=False,
            )
        )
        self.db.commit()
        correction = self._submit(
            RequestKind.MISSED_PUNCH,
            MissedPunchCreate(punch_date=date(2026, 3, 9), punch_type=PunchDirection.IN, requested_time="09:00:00"),
        )
        self._approve_through_ceo(RequestKind.MISSED_PUNCH, correction.id)

        decided = self._decide(
            RequestKind.MISSED_PUNCH,
            correction.id,
            self.admin,
            ApprovalStatus.ACKNOWLEDGED,
            corrected_time="09:05:00",
        )

        self.assertEqual(decided.corrected_time, "09:05:00")
        record = self.db.scalar(select(AttendanceRecord).where(AttendanceRecord.employee_id == self.employee.id))
        self.assertEqual(record.status, AttendanceStatus.PRESENT)
        self.assertEqual(record.time_in, "09:05:00")

    def test_missed_punch_for_future_day_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self._submit(
                RequestKind.MISSED_PUNCH,
                MissedPunchCreate(punch_date=date(2026, 3, 11), punch_type=PunchDirection.OUT, requested_time="18:00:00"),
            )

        self.assertEqual(ctx.exception.code, "FUTURE_DATE")

    def test_weekly_off_overtime_claim_grants_compensatory_leave(self) -> None:
        sunday = date(2026, 3, 8)
        claim_time = datetime(2026, 3, 9, 6, 0, tzinfo=timezone.utc)
        self.db.add(
            AttendanceRecord(
                employee_id=self.employee.id,
                log_date=sunday,
                status=AttendanceStatus.PRESENT,
                time_in="09:00:00",
                time_out="15:00:00",
                overtime_minutes=360,
                late_penalty=False,
            )
        )
        self.db.commit()

        claim = self._submit(RequestKind.OVERTIME_CLAIM, OvertimeClaimCreate(claim_date=sunday), now_utc=claim_time)
        self.assertEqual(claim.claim_type, OvertimeClaimType.COMPENSATORY)
        self.assertEqual(claim.compensatory_hours, 4)

        self._approve_through_ceo(RequestKind.OVERTIME_CLAIM, claim.id, now_utc=claim_time)
        self._decide(RequestKind.OVERTIME_CLAIM, claim.id, self.admin, ApprovalStatus.ACKNOWLEDGED, now_utc=claim_time)

        self.db.refresh(self.employee)
        self.assertEqual(
            [(grant.amount_hours, grant.status) for grant in self.employee.compensatory_grants],
            [(4, CompensatoryStatus.AVAILABLE)],
        )
        record = self.db.scalar(select(AttendanceRecord).where(AttendanceRecord.log_date == sunday))
        self.assertEqual(record.overtime_minutes, 0)

    def test_working_day_overtime_is_not_claimable_for_ineligible_staff(self) -> None:
        monday = date(2026, 3, 9)
        self.db.add(
            AttendanceRecord(
                employee_id=self.employee.id,
                log_date=monday,
                status=AttendanceStatus.PRESENT,
                time_in="09:00:00",
                time_out="19:00:00",
                overtime_minutes=90,
                late_penalty=False,
            )
        )
        self.db.commit()

        with self.assertRaises(ApiError) as ctx:
            self._submit(RequestKind.OVERTIME_CLAIM, OvertimeClaimCreate(claim_date=monday))

        self.assertEqual(ctx.exception.code, "OVERTIME_NOT_CLAIMABLE")

    def test_business_trip_needs_no_balance(self) -> None:
        trip = self._submit(
            RequestKind.BUSINESS_TRIP,
            BusinessTripCreate(date_out=date(2026, 3, 12), date_in=date(2026, 3, 13), purpose="Vendor audit"),
        )
        self._approve_through_ceo(RequestKind.BUSINESS_TRIP, trip.id)

        decided = self._decide(RequestKind.BUSINESS_TRIP, trip.id, self.admin, ApprovalStatus.ACKNOWLEDGED)

        self.assertEqual(decided.stage_c, ApprovalStatus.ACKNOWLEDGED)
        self.db.refresh(self.employee)
        self.assertEqual(self.employee.paid_leave_balance, 5)

    def test_forgotten_punch_out_recomputes_the_day(self) -> None:
        monday = date(2026, 3, 9)
        upsert_attendance(
            self.db,
            employee_id=self.employee.id,
            day=monday,
            derivation=derive_day(["09:00:00"], day=monday, elapsed=True),
        )
        self.db.commit()
        correction = self._submit(
            RequestKind.MISSED_PUNCH,
            MissedPunchCreate(punch_date=monday, punch_type=PunchDirection.OUT, requested_time="18:30:00"),
        )
        self._approve_through_ceo(RequestKind.MISSED_PUNCH, correction.id)

        self._decide(RequestKind.MISSED_PUNCH, correction.id, self.admin, ApprovalStatus.ACKNOWLEDGED)

        record = self.db.scalar(select(AttendanceRecord).where(AttendanceRecord.log_date == monday))
        self.assertEqual(
            (record.status, record.half_day, record.time_in, record.time_out, record.overtime_minutes),
            (AttendanceStatus.PRESENT, None, "09:00:00", "18:30:00", 60),
        )

    def test_short_corrected_day_stays_half_day(self) -> None:
        monday = date(2026, 3, 9)
        upsert_attendance(
            self.db,
            employee_id=self.employee.id,
            day=monday,
            derivation=derive_day(["09:00:00"], day=monday, elapsed=True),
        )
        self.db.commit()
        correction = self._submit(
            RequestKind.MISSED_PUNCH,
            MissedPunchCreate(punch_date=monday, punch_type=PunchDirection.OUT, requested_time="11:00:00"),
        )
        self._approve_through_ceo(RequestKind.MISSED_PUNCH, correction.id)

        self._decide(RequestKind.MISSED_PUNCH, correction.id, self.admin, ApprovalStatus.ACKNOWLEDGED)

        record = self.db.scalar(select(AttendanceRecord).where(AttendanceRecord.log_date == monday))
        self.assertEqual(record.status, AttendanceStatus.HALF_DAY)
        self.assertEqual(record.time_out, "11:00:00")

    def test_overlapping_leave_is_rejected(self) -> None:
        first = self._submit(RequestKind.LEAVE, self._casual_leave())

        with self.assertRaises(ApiError) as ctx:
            self._submit(
                RequestKind.LEAVE,
                LeaveCreate(leave_type=LeaveType.CASUAL, start_date=date(2026, 3, 17), end_date=date(2026, 3, 18)),
            )

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, "OVERLAPPING_REQUEST")
        self._approve_through_ceo(RequestKind.LEAVE, first.id)
        self._decide(RequestKind.LEAVE, first.id, self.admin, ApprovalStatus.ACKNOWLEDGED)
        self.db.refresh(self.employee)
        self.assertEqual(self.employee.paid_leave_balance, 3)
        self.assertEqual(len(self.db.scalars(select(Leave)).all()), 1)

    def test_rejected_leave_frees_its_dates(self) -> None:
        first = self._submit(RequestKind.LEAVE, self._casual_leave())
        self._decide(RequestKind.LEAVE, first.id, self.hod, ApprovalStatus.REJECTED, remarks="Stock count")

        second = self._submit(RequestKind.LEAVE, self._casual_leave())

        self.assertEqual(second.stage_a, P)

    def test_overtime_claim_on_business_trip_day_is_rejected(self) -> None:
        sunday = date(2026, 3, 8)
        claim_time = datetime(2026, 3, 9, 6, 0, tzinfo=timezone.utc)
        self.db.add(
            AttendanceRecord(
                employee_id=self.employee.id,
                log_date=sunday,
                status=AttendanceStatus.PRESENT,
                time_in="09:00:00",
                time_out="15:00:00",
                overtime_minutes=360,
                late_penalty=False,
            )
        )
        self.db.commit()
        self._submit(
            RequestKind.BUSINESS_TRIP,
            BusinessTripCreate(date_out=sunday, date_in=sunday, purpose="Plant shutdown"),
        )

        with self.assertRaises(ApiError) as ctx:
            self._submit(RequestKind.OVERTIME_CLAIM, OvertimeClaimCreate(claim_date=sunday), now_utc=claim_time)

        self.assertEqual(ctx.exception.code, "OVERLAPPING_REQUEST")

    def test_parental_leave_is_limited_to_two_claims(self) -> None:
        parent = add_employee(self.db, "103", department_id=self.department.id, maternity_claims_used=2, **CURRENT_MARKERS)

        with self.assertRaises(BalanceError) as ctx:
            self._submit(
                RequestKind.LEAVE,
                LeaveCreate(leave_type=LeaveType.MATERNITY, start_date=date(2026, 4, 1), end_date=date(2026, 6, 29)),
                by=parent,
            )

        self.assertEqual(ctx.exception.code, "MATERNITY_LEAVE_EXHAUSTED")

    def test_casual_leave_longer_than_three_days_is_rejected(self) -> None:
        with self.assertRaises(BalanceError) as ctx:
            self._submit(
                RequestKind.LEAVE,
                LeaveCreate(leave_type=LeaveType.CASUAL, start_date=date(2026, 3, 16), end_date=date(2026, 3, 25)),
            )

        self.assertEqual(ctx.exception.code, "CONSECUTIVE_PAID_LEAVE_EXCEEDED")
        self.assertEqual(self.db.scalars(select(Leave)).all(), [])


if __name__ == "__main__":
    unittest.main()
