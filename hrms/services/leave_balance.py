from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date

from hrms.errors import BalanceError
from hrms.models import (
    CompensatoryGrant,
    CompensatoryStatus,
    Employee,
    EmployeeType,
    LeaveDuration,
)

PAID_LEAVE_CAP = 12
CONFIRMED_MEDICAL_ALLOWANCE = 7
RESTRICTED_HOLIDAY_ALLOWANCE = 1
PROBATION_PAID_ALLOWANCE = 1
MID_MONTH_CUTOFF_DAY = 15
COMPENSATORY_EXPIRY_MONTHS = 6
COMPENSATORY_GRANT_HOURS = (4, 8)
MAX_CONSECUTIVE_PAID_LEAVE_DAYS = 3
PARENTAL_LEAVE_CLAIM_LIMIT = 2


@dataclass
class LifecycleResult:
    employee: Employee
    events: list[str] = field(default_factory=list)


def _first_of_month(day: date) -> date:
    return day.replace(day=1)


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    return date(day.year + month_index // 12, month_index % 12 + 1, 1)


def _num(value: float | int | None) -> float:
    return float(value or 0)


def leave_days(
    start_date: date,
    end_date: date | None,
    *,
    start_duration: LeaveDuration = LeaveDuration.FULL,
    end_duration: LeaveDuration = LeaveDuration.FULL,
) -> float:
    """Chargeable days for a leave range; half-day ends count 0.5."""
    if end_date is None or end_date == start_date:
        return 0.5 if start_duration == LeaveDuration.HALF else 1.0
    if end_date < start_date:
        raise ValueError("end_date must not be before start_date")
    total = float((end_date - start_date).days + 1)
    if start_duration == LeaveDuration.HALF:
        total -= 0.5
    if end_duration == LeaveDuration.HALF:
        total -= 0.5
    return total


def _remaining_year_months(joined: date, year: int) -> int:
    if joined.year < year:
        return PAID_LEAVE_CAP
    if joined.month == 12:
        return 0
    late_join = 1 if joined.day > MID_MONTH_CUTOFF_DAY else 0
    return PAID_LEAVE_CAP - (joined.month - 1 + late_join)


def _revoke_expired_emergency(employee: Employee, as_of: date, events: list[str]) -> None:
    if not employee.emergency_leave_granted:
        return
    granted_on = employee.emergency_leave_granted_on
    if granted_on is None or as_of > granted_on:
        employee.emergency_leave_granted = False
        employee.emergency_leave_granted_on = None
        events.append("emergency_leave_revoked")


def _confirm_if_due(employee: Employee, as_of: date, events: list[str]) -> None:
    if employee.employee_type != EmployeeType.PROBATION:
        return
    if employee.confirmation_date is None or as_of < employee.confirmation_date:
        return

    employee.employee_type = EmployeeType.CONFIRMED
    top_up = _remaining_year_months(employee.date_of_joining, as_of.year)
    employee.paid_leave_balance = min(_num(employee.paid_leave_balance) + top_up, PAID_LEAVE_CAP)
    employee.leave_reset_marker = _first_of_month(as_of)
    employee.medical_leave_balance = math.floor((12 - (as_of.month - 1)) / 12 * CONFIRMED_MEDICAL_ALLOWANCE)
    employee.medical_reset_marker = date(as_of.year, 1, 1)
    employee.maternity_claims_used = 0
    employee.paternity_claims_used = 0
    events.append("auto_confirm_employee")


def _initialize_new(employee: Employee, events: list[str]) -> None:
    joined = employee.date_of_joining
    join_marker = _first_of_month(joined)
    employee.paid_leave_balance = 0 if joined.day > MID_MONTH_CUTOFF_DAY else 1
    employee.medical_leave_balance = (
        CONFIRMED_MEDICAL_ALLOWANCE if employee.employee_type == EmployeeType.CONFIRMED else 0
    )
    employee.restricted_holiday_balance = RESTRICTED_HOLIDAY_ALLOWANCE
    employee.unpaid_leave_taken = 0
    employee.maternity_claims_used = 0
    employee.paternity_claims_used = 0
    employee.leave_reset_marker = join_marker
    employee.medical_reset_marker = join_marker
    employee.restricted_reset_marker = join_marker
    employee.compensatory_reset_marker = join_marker
    events.append("initialize_leave_balances")


def _expire_compensatory(employee: Employee, as_of: date, events: list[str]) -> None:
    marker = employee.compensatory_reset_marker or _first_of_month(employee.date_of_joining)
    boundary = _add_months(marker, COMPENSATORY_EXPIRY_MONTHS)
    if as_of < boundary:
        return
    for grant in employee.compensatory_grants:
        if grant.status == CompensatoryStatus.AVAILABLE and grant.grant_date < boundary:
            grant.status = CompensatoryStatus.EXPIRED
    employee.compensatory_reset_marker = _first_of_month(as_of)
    events.append("compensatory_leave_expired")


def _accrue_paid_leave(employee: Employee, as_of: date, events: list[str]) -> None:
    marker = employee.leave_reset_marker or _first_of_month(employee.date_of_joining)
    if marker.year < as_of.year:
        employee.paid_leave_balance = (
            PAID_LEAVE_CAP if employee.employee_type == EmployeeType.CONFIRMED else PROBATION_PAID_ALLOWANCE
        )
        marker = date(as_of.year, 1, 1)
        employee.leave_reset_marker = marker
        events.append("paid_leave_year_reset")

    elapsed_months = as_of.month - marker.month if marker.year == as_of.year else 0
    if elapsed_months > 0:
        employee.paid_leave_balance = min(_num(employee.paid_leave_balance) + elapsed_months, PAID_LEAVE_CAP)
        employee.leave_reset_marker = _first_of_month(as_of)
        events.append("paid_leave_monthly_accrual")


def _reset_annual_allowances(employee: Employee, as_of: date, events: list[str]) -> None:
    year_start = date(as_of.year, 1, 1)
    if employee.employee_type == EmployeeType.CONFIRMED:
        medical_marker = employee.medical_reset_marker or _first_of_month(employee.date_of_joining)
        if medical_marker.year < as_of.year:
            employee.medical_leave_balance = CONFIRMED_MEDICAL_ALLOWANCE
            employee.medical_reset_marker = year_start
            events.append("medical_leave_year_reset")

    restricted_marker = employee.restricted_reset_marker or _first_of_month(employee.date_of_joining)
    if restricted_marker.year < as_of.year:
        employee.restricted_holiday_balance = RESTRICTED_HOLIDAY_ALLOWANCE
        employee.restricted_reset_marker = year_start
        events.append("restricted_holiday_year_reset")


def entitled_leave_at_resignation(joined: date, resigned: date) -> int:
    """Paid leave earned in the resignation year, one per month worked."""
    if joined.year == resigned.year:
        first_month = joined.month + (1 if joined.day > MID_MONTH_CUTOFF_DAY else 0)
    else:
        first_month = 1
    last_month = resigned.month - (1 if resigned.day < MID_MONTH_CUTOFF_DAY else 0)
    return max(0, last_month - first_month + 1)


def _settle_resignation(employee: Employee, casual_days_taken: float, events: list[str]) -> None:
    resigned = employee.date_of_resigning
    if resigned is None:
        return
    entitled = entitled_leave_at_resignation(employee.date_of_joining, resigned)
    over_and_above = casual_days_taken - entitled
    if over_and_above <= 0:
        return
    employee.paid_leave_balance = max(0.0, _num(employee.paid_leave_balance) - over_and_above)
    employee.unpaid_leave_taken = _num(employee.unpaid_leave_taken) + over_and_above
    events.append("resignation_over_and_above_settled")


def reconcile_employee_lifecycle(
    employee: Employee,
    as_of: date,
    *,
    is_new: bool = False,
    resigned_now: bool = False,
    casual_days_taken: float = 0.0,
) -> LifecycleResult:
    """Bring an employee's balances up to date as of ``as_of``.

    Steps run in a fixed order and each one is guarded by its own reset
    marker, so calling this repeatedly on the same day changes nothing after
    the first call.
    """
    result = LifecycleResult(employee=employee)
    _revoke_expired_emergency(employee, as_of, result.events)
    if is_new:
        _initialize_new(employee, result.events)
    else:
        _confirm_if_due(employee, as_of, result.events)
    _expire_compensatory(employee, as_of, result.events)
    _accrue_paid_leave(employee, as_of, result.events)
    _reset_annual_allowances(employee, as_of, result.events)
    if resigned_now:
        _settle_resignation(employee, casual_days_taken, result.events)
    return result


def deduct_paid_leave(employee: Employee, days: float) -> None:
    employee.paid_leave_balance = max(0.0, _num(employee.paid_leave_balance) - days)


def deduct_medical_leave(employee: Employee, days: float) -> None:
    if employee.employee_type != EmployeeType.CONFIRMED:
        raise BalanceError("MEDICAL_LEAVE_NOT_ALLOWED", "Medical leave is available to confirmed employees only.")
    employee.medical_leave_balance = max(0.0, _num(employee.medical_leave_balance) - days)


def deduct_restricted_holiday(employee: Employee) -> None:
    employee.restricted_holiday_balance = max(0, int(employee.restricted_holiday_balance or 0) - 1)


def increment_unpaid_leave(employee: Employee, days: float) -> None:
    employee.unpaid_leave_taken = _num(employee.unpaid_leave_taken) + max(0.0, days)


def check_consecutive_paid_leave(days: float) -> None:
    if days > MAX_CONSECUTIVE_PAID_LEAVE_DAYS:
        raise BalanceError(
            "CONSECUTIVE_PAID_LEAVE_EXCEEDED",
            f"Paid leave cannot run longer than {MAX_CONSECUTIVE_PAID_LEAVE_DAYS} consecutive days.",
        )


def check_parental_claims(claims_used: int | None, label: str) -> None:
    if int(claims_used or 0) >= PARENTAL_LEAVE_CLAIM_LIMIT:
        raise BalanceError(
            f"{label.upper()}_LEAVE_EXHAUSTED",
            f"{label.capitalize()} leave can be taken {PARENTAL_LEAVE_CLAIM_LIMIT} times during service.",
        )


def record_maternity_claim(employee: Employee) -> None:
    if employee.employee_type != EmployeeType.CONFIRMED:
        raise BalanceError("MATERNITY_LEAVE_NOT_ALLOWED", "Maternity leave is available to confirmed employees only.")
    check_parental_claims(employee.maternity_claims_used, "maternity")
    employee.maternity_claims_used = int(employee.maternity_claims_used or 0) + 1


def record_paternity_claim(employee: Employee) -> None:
    if employee.employee_type != EmployeeType.CONFIRMED:
        raise BalanceError("PATERNITY_LEAVE_NOT_ALLOWED", "Paternity leave is available to confirmed employees only.")
    check_parental_claims(employee.paternity_claims_used, "paternity")
    employee.paternity_claims_used = int(employee.paternity_claims_used or 0) + 1


def grant_compensatory_leave(employee: Employee, grant_date: date, hours: int) -> CompensatoryGrant:
    if hours not in COMPENSATORY_GRANT_HOURS:
        raise BalanceError("INVALID_COMPENSATORY_HOURS", "Compensatory grants must be 4 or 8 hours.")
    grant = CompensatoryGrant(
        grant_date=grant_date,
        amount_hours=hours,
        status=CompensatoryStatus.AVAILABLE,
    )
    employee.compensatory_grants.append(grant)
    return grant


def claim_compensatory_leave(employee: Employee, grant: CompensatoryGrant | None) -> None:
    if grant is None or grant not in employee.compensatory_grants:
        raise BalanceError("COMPENSATORY_GRANT_NOT_FOUND", "Compensatory grant does not belong to employee.")
    if grant.status != CompensatoryStatus.AVAILABLE:
        raise BalanceError("COMPENSATORY_GRANT_UNAVAILABLE", "Compensatory grant is not available.")
    grant.status = CompensatoryStatus.CLAIMED


def available_compensatory_hours(employee: Employee) -> int:
    return sum(
        grant.amount_hours
        for grant in employee.compensatory_grants
        if grant.status == CompensatoryStatus.AVAILABLE
    )
