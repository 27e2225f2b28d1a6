from __future__ import annotations

import unittest
from collections.abc import Generator
from datetime import date, datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from hrms.db import get_db
from hrms.main import app
from hrms.models import AttendanceRecord, AttendanceStatus, Notification, Role
from hrms.security import Actor, require_actor
from hrms.services.attendance_deriver import local_today
from hrms.services.attendance_export import XLSX_MEDIA_TYPE
from hrms.services.notifications import get_notification_sink
from hrms.services.timeclock import get_timeclock_gateway
from support_db import RecordingSink, add_department, add_employee, make_engine, make_session_factory


def _current_markers() -> dict[str, date]:
    today = local_today(datetime.now(timezone.utc))
    return {
        "leave_reset_marker": today.replace(day=1),
        "medical_reset_marker": date(today.year, 1, 1),
        "restricted_reset_marker": date(today.year, 1, 1),
        "compensatory_reset_marker": today.replace(day=1),
    }


class ApiEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.SessionLocal = make_session_factory(self.engine)
        self.db = self.SessionLocal()
        self.sink = RecordingSink()

        markers = _current_markers()
        self.department = add_department(self.db, "Stores")
        self.employee = add_employee(self.db, "101", department_id=self.department.id, **markers)
        self.colleague = add_employee(self.db, "102", department_id=self.department.id, **markers)
        self.hod = add_employee(self.db, "700", role=Role.HOD, department_id=self.department.id, **markers)
        self.ceo = add_employee(self.db, "800", role=Role.CEO, **markers)
        self.admin = add_employee(self.db, "900", role=Role.ADMIN, **markers)
        self.actor = Actor(employee_id=self.employee.id, role=Role.EMPLOYEE)

        def _override_get_db() -> Generator[Session, None, None]:
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _override_get_db
        app.dependency_overrides[require_actor] = lambda: self.actor
        app.dependency_overrides[get_notification_sink] = lambda: self.sink
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()
        self.engine.dispose()

    def _as(self, employee, role: Role) -> None:
        self.actor = Actor(employee_id=employee.id, role=role)

    def _submit_leave(self) -> dict:
        response = self.client.post(
            "/api/requests/leaves",
            json={"leave_type": "Casual", "start_date": "2026-11-16", "end_date": "2026-11-17"},
        )
        self.assertEqual(response.status_code, 201)
        return response.json()

    def _decide(self, request_id: int, decision: str, **extra):
        return self.client.put(
            f"/api/requests/leave/{request_id}/decision",
            json={"decision": decision, **extra},
            headers={"X-Request-Id": "req-test-1"},
        )

    def test_leave_request_moves_through_all_stages(self) -> None:
        created = self._submit_leave()
        self.assertEqual(created["stage_a"], "PENDING")
        self.assertEqual(created["details"]["leave_type"], "Casual")
        self.assertEqual(self.sink.recipients(), {self.hod.id})

        self._as(self.hod, Role.HOD)
        self.assertEqual(self._decide(created["id"], "APPROVED").status_code, 200)
        conflict = self._decide(created["id"], "APPROVED")
        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.json()["error"]["code"], "STAGE_NOT_PENDING")
        self.assertEqual(conflict.json()["error"]["request_id"], "req-test-1")

        self._as(self.ceo, Role.CEO)
        self.assertEqual(self._decide(created["id"], "APPROVED").status_code, 200)
        self._as(self.admin, Role.ADMIN)
        acknowledged = self._decide(created["id"], "ACKNOWLEDGED")
        self.assertEqual(acknowledged.status_code, 200)
        self.assertEqual(acknowledged.json()["stage_c"], "ACKNOWLEDGED")

        self._as(self.employee, Role.EMPLOYEE)
        balances = self.client.get(f"/api/employees/{self.employee.id}/balances")
        self.assertEqual(balances.status_code, 200)
        self.assertEqual(balances.json()["paid_leave_balance"], 3)

    def test_rejection_without_remarks_is_unprocessable(self) -> None:
        created = self._submit_leave()
        self._as(self.hod, Role.HOD)

        response = self._decide(created["id"], "REJECTED")

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "REMARKS_REQUIRED")

    def test_hod_reads_attendance_of_own_department_only(self) -> None:
        accounts = add_department(self.db, "Accounts")
        outsider = add_employee(self.db, "103", department_id=accounts.id)
        params = {"year": 2026, "month": 3}

        self._as(self.hod, Role.HOD)
        own = self.client.get("/api/attendance", params={**params, "employee_id": self.employee.id})
        other = self.client.get("/api/attendance", params={**params, "employee_id": outsider.id})

        self.assertEqual(own.status_code, 200)
        self.assertEqual(other.status_code, 403)
        self.assertEqual(other.json()["error"]["code"], "FORBIDDEN")

    def test_employee_cannot_read_other_employees_data(self) -> None:
        created = self._submit_leave()
        self._as(self.colleague, Role.EMPLOYEE)

        request_view = self.client.get(f"/api/requests/leave/{created['id']}")
        balances = self.client.get(f"/api/employees/{self.employee.id}/balances")
        attendance = self.client.get(
            "/api/attendance",
            params={"year": 2026, "month": 3, "employee_id": self.employee.id},
        )

        self.assertEqual(request_view.status_code, 403)
        self.assertEqual(request_view.json()["error"]["code"], "FORBIDDEN")
        self.assertEqual(balances.status_code, 403)
        self.assertEqual(attendance.status_code, 403)

    def test_invalid_payload_uses_error_envelope(self) -> None:
        response = self.client.post(
            "/api/requests/leaves",
            json={"leave_type": "Casual", "start_date": "2026-11-17", "end_date": "2026-11-16"},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_unknown_request_kind_is_rejected(self) -> None:
        response = self.client.get("/api/requests/holiday/1")

        self.assertEqual(response.status_code, 422)

    def test_missing_request_is_404(self) -> None:
        response = self.client.get("/api/requests/leave/999")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "REQUEST_NOT_FOUND")

    def test_attendance_listing_for_own_month(self) -> None:
        self.db.add_all(
            [
                AttendanceRecord(
                    employee_id=self.employee.id,
                    log_date=date(2026, 3, 2),
                    status=AttendanceStatus.PRESENT,
                    time_in="09:00:00",
                    time_out="18:40:00",
                    overtime_minutes=70,
                    late_penalty=False,
                ),
                AttendanceRecord(
                    employee_id=self.employee.id,
                    log_date=date(2026, 4, 1),
                    status=AttendanceStatus.ABSENT,
                    overtime_minutes=0,
                    late_penalty=False,
                ),
            ]
        )
        self.db.commit()

        response = self.client.get("/api/attendance", params={"year": 2026, "month": 3})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["log_date"] for row in response.json()], ["2026-03-02"])
        self.assertEqual(response.json()[0]["overtime_minutes"], 70)

    def test_notifications_can_be_marked_read_by_recipient_only(self) -> None:
        mine = Notification(recipient_employee_id=self.employee.id, message="Leave approved", read=False)
        theirs = Notification(recipient_employee_id=self.colleague.id, message="Other", read=False)
        self.db.add_all([mine, theirs])
        self.db.commit()

        listed = self.client.get("/api/notifications", params={"unread_only": True})
        marked = self.client.patch(f"/api/notifications/{mine.id}/read")
        foreign = self.client.patch(f"/api/notifications/{theirs.id}/read")
        remaining = self.client.get("/api/notifications", params={"unread_only": True})

        self.assertEqual([item["message"] for item in listed.json()], ["Leave approved"])
        self.assertTrue(marked.json()["read"])
        self.assertEqual(foreign.status_code, 404)
        self.assertEqual(remaining.json(), [])

    def test_admin_jobs_require_admin_role(self) -> None:
        response = self.client.post("/api/admin/jobs/derive")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")

    def test_punch_sync_without_time_clock_is_unavailable(self) -> None:
        self._as(self.admin, Role.ADMIN)
        app.dependency_overrides[get_timeclock_gateway] = lambda: None

        response = self.client.post("/api/admin/jobs/punch-sync")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"]["code"], "TIMECLOCK_UNAVAILABLE")

    def test_absence_monitor_job_reports_counts(self) -> None:
        self._as(self.admin, Role.ADMIN)

        response = self.client.post("/api/admin/jobs/absence-monitor", json={"day": "2026-03-02"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["job"], "absence-monitor")
        self.assertEqual(body["counts"]["backfilled"], 5)

    def test_admin_creates_employee_once_per_time_clock_id(self) -> None:
        self._as(self.admin, Role.ADMIN)
        payload = {
            "employee_code": "E-501",
            "full_name": "Ravi Kumar",
            "external_user_id": "501",
            "date_of_joining": local_today(datetime.now(timezone.utc)).isoformat(),
        }

        created = self.client.post("/api/admin/employees", json=payload)
        duplicate = self.client.post("/api/admin/employees", json={**payload, "employee_code": "E-502"})

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["employee_type"], "Probation")
        self.assertEqual(created.json()["restricted_holiday_balance"], 1)
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["error"]["code"], "EXTERNAL_ID_TAKEN")

    def test_resign_endpoint_marks_employee_resigned(self) -> None:
        self._as(self.admin, Role.ADMIN)
        resigned_on = local_today(datetime.now(timezone.utc)) - timedelta(days=1)

        response = self.client.post(
            f"/api/admin/employees/{self.colleague.id}/resign",
            json={"date_of_resigning": resigned_on.isoformat()},
        )
        again = self.client.post(
            f"/api/admin/employees/{self.colleague.id}/resign",
            json={"date_of_resigning": resigned_on.isoformat()},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["employee"]["status"], "Resigned")
        self.assertEqual(again.status_code, 409)

    def test_emergency_leave_grant_is_admin_or_ceo(self) -> None:
        self._as(self.hod, Role.HOD)
        denied = self.client.post(f"/api/admin/employees/{self.employee.id}/emergency-leave")
        self._as(self.ceo, Role.CEO)
        granted = self.client.post(f"/api/admin/employees/{self.employee.id}/emergency-leave")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(granted.status_code, 200)
        self.assertTrue(granted.json()["emergency_leave_granted"])

    def test_attendance_export_download(self) -> None:
        self.db.add(
            AttendanceRecord(
                employee_id=self.employee.id,
                log_date=date(2026, 3, 2),
                status=AttendanceStatus.PRESENT,
                time_in="09:00:00",
                time_out="18:40:00",
                overtime_minutes=70,
                late_penalty=False,
            )
        )
        self.db.commit()
        self._as(self.admin, Role.ADMIN)

        response = self.client.get(
            "/api/admin/exports/attendance.xlsx",
            params={"from_date": "2026-03-01", "to_date": "2026-03-31", "status": "Present"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], XLSX_MEDIA_TYPE)
        self.assertIn('filename="attendance_Present_2026-03-01.xlsx"', response.headers["content-disposition"])
        self.assertTrue(response.content.startswith(b"PK"))

    def test_attendance_export_rejects_long_ranges(self) -> None:
        self._as(self.admin, Role.ADMIN)

        response = self.client.get(
            "/api/admin/exports/attendance.xlsx",
            params={"from_date": "2026-01-01", "to_date": "2026-06-30"},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "INVALID_DATE_RANGE")

    def test_export_for_hod_without_department_is_forbidden(self) -> None:
        orphan_hod = add_employee(self.db, "702", role=Role.HOD)
        self._as(orphan_hod, Role.HOD)

        response = self.client.get(
            "/api/admin/exports/attendance.xlsx",
            params={"from_date": "2026-03-01", "to_date": "2026-03-31"},
        )

        self.assertEqual(response.status_code, 403)

    def test_health_reports_worker_state(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertFalse(response.json()["reconciliation_worker"]["running"])


if __name__ == "__main__":
    unittest.main()
