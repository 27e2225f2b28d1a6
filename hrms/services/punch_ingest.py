from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from hrms.models import PunchDirection, RawPunch, SyncMetadata
from hrms.services.timeclock import TimeClockGateway, TimeClockRow
from hrms.settings import get_attendance_timezone

logger = logging.getLogger("hrms.ingest")

WATERMARK_NAME = "attendanceSync"
EPOCH_START = date(1970, 1, 1)
_CLOCK_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_SECONDS_PER_DAY = 24 * 60 * 60

PunchKey = tuple[str, date, str]


@dataclass(frozen=True)
class NormalizedPunch:
    external_user_id: str
    log_date: date
    log_time: str
    direction: PunchDirection | None

    @property
    def key(self) -> PunchKey:
        return (self.external_user_id, self.log_date, self.log_time)


@dataclass
class IngestResult:
    from_date: date
    fetched: int = 0
    dropped: int = 0
    duplicates: int = 0
    inserted: int = 0


def _normalize_ts(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_clock(value: Any) -> str | None:
    """Return ``HH:MM:SS`` for device clock values, or None when unparsable."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, datetime):
        return value.strftime("%H:%M:%S")
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, (int, float, Decimal)):
        seconds = int(value)
        if seconds < 0 or seconds >= _SECONDS_PER_DAY:
            return None
        hours, remainder = divmod(seconds, 3600)
        minutes, secs = divmod(remainder, 60)
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    if isinstance(value, str):
        match = _CLOCK_PATTERN.match(value.strip())
        if match is None:
            return None
        hours, minutes, secs = int(match.group(1)), int(match.group(2)), int(match.group(3) or 0)
        if hours > 23 or minutes > 59 or secs > 59:
            return None
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return None


def normalize_log_date(value: Any, tz: ZoneInfo) -> date | None:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(tz).date()
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def normalize_direction(value: Any) -> PunchDirection | None:
    if value is None:
        return None
    raw = str(value).strip().lower()
    if raw == "in":
        return PunchDirection.IN
    if raw == "out":
        return PunchDirection.OUT
    return None


def normalize_rows(rows: Iterable[TimeClockRow], tz: ZoneInfo) -> tuple[list[NormalizedPunch], int]:
    """Normalize and de-duplicate one fetched batch.

    Returns the canonical punches and the number of rows dropped as malformed.
    Punches without a usable direction alternate in/out within their
    employee-day in clock order.
    """
    dropped = 0
    unique: dict[PunchKey, NormalizedPunch] = {}
    for row in rows:
        external_user_id = str(row.external_user_id or "").strip()
        log_date = normalize_log_date(row.log_date, tz)
        log_time = normalize_clock(row.log_time)
        if not external_user_id or log_date is None or log_time is None:
            dropped += 1
            logger.warning(
                "punch_dropped_malformed",
                extra={
                    "external_user_id": external_user_id or None,
                    "log_date": str(row.log_date),
                    "log_time": str(row.log_time),
                },
            )
            continue
        punch = NormalizedPunch(
            external_user_id=external_user_id,
            log_date=log_date,
            log_time=log_time,
            direction=normalize_direction(row.direction),
        )
        unique.setdefault(punch.key, punch)

    ordered = sorted(unique.values(), key=lambda item: item.key)
    resolved: list[NormalizedPunch] = []
    position = 0
    previous_day: tuple[str, date] | None = None
    for punch in ordered:
        employee_day = (punch.external_user_id, punch.log_date)
        position = position + 1 if employee_day == previous_day else 0
        previous_day = employee_day
        if punch.direction is None:
            fallback = PunchDirection.IN if position % 2 == 0 else PunchDirection.OUT
            punch = NormalizedPunch(punch.external_user_id, punch.log_date, punch.log_time, fallback)
        resolved.append(punch)
    return resolved, dropped


def get_watermark(db: Session) -> SyncMetadata | None:
    return db.scalar(select(SyncMetadata).where(SyncMetadata.name == WATERMARK_NAME))


def window_start(db: Session, tz: ZoneInfo) -> date:
    watermark = get_watermark(db)
    if watermark is None:
        return EPOCH_START
    return _normalize_ts(watermark.last_synced_at).astimezone(tz).date()


def _existing_keys(db: Session, from_date: date) -> set[PunchKey]:
    rows = db.execute(
        select(RawPunch.external_user_id, RawPunch.log_date, RawPunch.log_time).where(
            RawPunch.log_date >= from_date
        )
    ).all()
    return {(row[0], row[1], row[2]) for row in rows}


def _advance_watermark(db: Session, now_utc: datetime) -> None:
    watermark = get_watermark(db)
    if watermark is None:
        db.add(SyncMetadata(name=WATERMARK_NAME, last_synced_at=now_utc))
    else:
        watermark.last_synced_at = now_utc
    db.commit()


def sync_punches(
    db: Session,
    gateway: TimeClockGateway,
    *,
    now_utc: datetime,
    tz: ZoneInfo | None = None,
    from_date: date | None = None,
) -> IngestResult:
    """Copy new device punches into ``raw_punches`` and advance the watermark.

    Gateway failures propagate as ``TimeClockUnavailableError`` before anything
    is written, leaving the watermark where it was.
    """
    zone = tz or get_attendance_timezone()
    start = from_date or window_start(db, zone)
    result = IngestResult(from_date=start)

    fetched = gateway.fetch_punches(start)
    result.fetched = len(fetched)
    punches, result.dropped = normalize_rows(fetched, zone)

    existing = _existing_keys(db, start - timedelta(days=1))
    for punch in punches:
        if punch.key in existing:
            result.duplicates += 1
            continue
        db.add(
            RawPunch(
                external_user_id=punch.external_user_id,
                log_date=punch.log_date,
                log_time=punch.log_time,
                direction=punch.direction,
                processed=False,
            )
        )
        existing.add(punch.key)
        result.inserted += 1
    db.commit()

    _advance_watermark(db, _normalize_ts(now_utc))
    logger.info(
        "punch_sync_complete",
        extra={
            "from_date": start.isoformat(),
            "fetched": result.fetched,
            "dropped": result.dropped,
            "duplicates": result.duplicates,
            "inserted": result.inserted,
        },
    )
    return result


def purge_processed_punches(db: Session, *, before_day: date) -> int:
    """Delete processed punches older than the next fetch window; they can never be re-fetched."""
    result = db.execute(
        delete(RawPunch).where(RawPunch.processed.is_(True), RawPunch.log_date < before_day)
    )
    db.commit()
    purged = int(result.rowcount or 0)
    if purged:
        logger.info("processed_punches_purged", extra={"before_day": before_day.isoformat(), "purged": purged})
    return purged
