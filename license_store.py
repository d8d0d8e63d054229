"""
License record store.

Persists the locally cached license fields in the `license_settings` table and
provides the date arithmetic used for license expiry. A license is valid through
23:59:59 local time of its end date.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, date, time, timedelta
from typing import Optional, Callable

from sqlalchemy.exc import SQLAlchemyError

from license_errors import StorageError
from models import LicenseSetting, create_session_factory, DEFAULT_DB_URL

logger = logging.getLogger("LicenseRecordStore")

DATE_FORMAT = "%Y-%m-%d"

# Persisted keys
IS_LICENSED = "is_licensed"
LICENSE_START_DATE = "license_start_date"
LICENSE_END_DATE = "license_end_date"
LICENSE_KEY = "license_key"
LICENSE_EDITION = "license_edition"
CAPABILITIES = "capabilities"
LICENSED_TO = "licensed_to"
USER_EMAIL = "user_email"

ALL_KEYS = (IS_LICENSED, LICENSE_START_DATE, LICENSE_END_DATE, LICENSE_KEY,
            LICENSE_EDITION, CAPABILITIES, LICENSED_TO, USER_EMAIL)


@dataclass
class LicenseRecord:
    is_licensed: bool = False
    start_date: str = ""
    end_date: str = ""
    license_key: str = ""
    edition: str = ""
    capabilities: str = ""
    licensed_to: str = ""
    user_email: str = ""


def parse_date(date_str: str) -> date:
    """Parse a YYYY-MM-DD string. Raises ValueError on malformed input."""
    return datetime.strptime(date_str.strip(), DATE_FORMAT).date()


def calculate_end_date(start_date: str, validity_days: int) -> str:
    """
    Compute the end date of a license.

    Args:
        start_date: Activation date as YYYY-MM-DD
        validity_days: Number of days the license is valid

    Returns:
        End date as YYYY-MM-DD (start_date + validity_days)
    """
    end = parse_date(start_date) + timedelta(days=int(validity_days))
    return end.strftime(DATE_FORMAT)


def parse_end_of_day(date_str: str) -> datetime:
    """Return 23:59:59 local time on the given date."""
    return datetime.combine(parse_date(date_str), time(23, 59, 59))


def is_date_valid(end_date: str, now: Optional[datetime] = None) -> bool:
    """True while `now` is before the end of `end_date`. Malformed dates are never valid."""
    if not end_date:
        return False
    try:
        end_of_day = parse_end_of_day(end_date)
    except ValueError:
        logger.warning(f"Could not parse license end date: {end_date!r}")
        return False
    now = now or datetime.now()
    return end_of_day > now


def format_date(date_str: Optional[str]) -> str:
    """Normalize a date string to YYYY-MM-DD, or '' if it can't be parsed."""
    if not date_str:
        return ""
    try:
        return parse_date(date_str).strftime(DATE_FORMAT)
    except ValueError:
        return ""


class LicenseRecordStore:
    """Key/value persistence of the cached license record."""

    def __init__(self, db_url: str = DEFAULT_DB_URL, session_factory=None,
                 clock: Callable[[], datetime] = datetime.now):
        self.Session = session_factory or create_session_factory(db_url)
        self._clock = clock
        self._lock = threading.Lock()

    def _read_all(self) -> dict:
        session = self.Session()
        try:
            rows = session.query(LicenseSetting).filter(LicenseSetting.key.in_(ALL_KEYS)).all()
            return {row.key: row.value for row in rows}
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read license record: {e}") from e
        finally:
            session.close()

    def _write(self, values: dict) -> None:
        with self._lock:
            session = self.Session()
            try:
                for key, value in values.items():
                    setting = session.get(LicenseSetting, key)
                    if setting is None:
                        session.add(LicenseSetting(key=key, value=value))
                    else:
                        setting.value = value
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Failed to write license record: {e}") from e
            finally:
                session.close()

    def _get(self, key: str, default: str = "") -> str:
        value = self._read_all().get(key)
        return default if value is None else value

    def load(self) -> LicenseRecord:
        values = self._read_all()
        return LicenseRecord(
            is_licensed=values.get(IS_LICENSED) == "true",
            start_date=values.get(LICENSE_START_DATE) or "",
            end_date=values.get(LICENSE_END_DATE) or "",
            license_key=values.get(LICENSE_KEY) or "",
            edition=values.get(LICENSE_EDITION) or "",
            capabilities=values.get(CAPABILITIES) or "",
            licensed_to=values.get(LICENSED_TO) or "",
            user_email=values.get(USER_EMAIL) or "",
        )

    def save(self, record: LicenseRecord) -> None:
        self._write({
            IS_LICENSED: "true" if record.is_licensed else "false",
            LICENSE_START_DATE: record.start_date,
            LICENSE_END_DATE: record.end_date,
            LICENSE_KEY: record.license_key,
            LICENSE_EDITION: record.edition,
            CAPABILITIES: record.capabilities,
            LICENSED_TO: record.licensed_to,
            USER_EMAIL: record.user_email,
        })
        logger.debug(f"Saved license record: is_licensed={record.is_licensed}, "
                     f"start={record.start_date}, end={record.end_date}, edition={record.edition}")

    def save_license_info(self, is_licensed: bool, start_date: str, end_date: str, license_key: str,
                          edition: str = "", capabilities: str = "", licensed_to: str = "",
                          email: str = "") -> LicenseRecord:
        record = LicenseRecord(
            is_licensed=is_licensed,
            start_date=start_date,
            end_date=end_date,
            license_key=license_key,
            edition=edition,
            capabilities=capabilities,
            licensed_to=licensed_to,
            user_email=email,
        )
        self.save(record)
        return record

    def set_licensed(self, is_licensed: bool) -> None:
        self._write({IS_LICENSED: "true" if is_licensed else "false"})
        logger.debug(f"Setting is_licensed: {is_licensed}")

    def save_start_date(self, start_date: str) -> None:
        self._write({LICENSE_START_DATE: start_date})

    def save_end_date(self, end_date: str) -> None:
        self._write({LICENSE_END_DATE: end_date})

    def get_license_key(self) -> str:
        return self._get(LICENSE_KEY)

    def get_end_date(self) -> str:
        return self._get(LICENSE_END_DATE)

    def is_licensed(self, now: Optional[datetime] = None) -> bool:
        """Stored flag AND the end date has not passed (end-of-day semantics)."""
        record = self.load()
        if not record.is_licensed:
            return False
        valid = is_date_valid(record.end_date, now or self._clock())
        logger.debug(f"is_licensed: end_date={record.end_date}, valid={valid}")
        return valid

    def clear(self) -> None:
        with self._lock:
            session = self.Session()
            try:
                session.query(LicenseSetting).filter(LicenseSetting.key.in_(ALL_KEYS)).delete(
                    synchronize_session=False)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Failed to clear license record: {e}") from e
            finally:
                session.close()
        logger.info("License record cleared")
