from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from hrms.errors import TimeClockUnavailableError
from hrms.settings import get_settings

logger = logging.getLogger("hrms.ingest")

_PUNCHLOG_QUERY = text(
    "SELECT UserID, LogDate, LogTime, Direction FROM Punchlogs WHERE LogDate >= :from_date"
)


@dataclass(frozen=True)
class TimeClockRow:
    external_user_id: Any
    log_date: Any
    log_time: Any
    direction: Any


class TimeClockGateway:
    """Read-only access to the biometric device database."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def fetch_punches(self, from_date: date) -> list[TimeClockRow]:
        try:
            with self.engine.connect() as connection:
                result = connection.execute(_PUNCHLOG_QUERY, {"from_date": from_date})
                rows = [
                    TimeClockRow(
                        external_user_id=row[0],
                        log_date=row[1],
                        log_time=row[2],
                        direction=row[3],
                    )
                    for row in result
                ]
        except SQLAlchemyError as exc:
            logger.error(
                "timeclock_fetch_failed",
                extra={"from_date": from_date.isoformat(), "error": str(exc)},
            )
            raise TimeClockUnavailableError() from exc

        logger.info("timeclock_fetch_ok", extra={"from_date": from_date.isoformat(), "rows": len(rows)})
        return rows


@lru_cache
def _timeclock_engine(url: str) -> Engine:
    return create_engine(url, pool_pre_ping=True)


def get_timeclock_gateway() -> TimeClockGateway | None:
    url = get_settings().timeclock_database_url
    if not url:
        return None
    return TimeClockGateway(_timeclock_engine(url))
