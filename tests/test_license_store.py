from datetime import datetime
from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError

from license_errors import StorageError
from license_store import (
    LicenseRecord, calculate_end_date, format_date, is_date_valid, parse_end_of_day,
)


class TestDateArithmetic:
    def test_end_date_adds_validity_days(self):
        assert calculate_end_date("2025-01-01", 30) == "2025-01-31"

    def test_one_year_from_new_year(self):
        assert calculate_end_date("2025-01-01", 365) == "2026-01-01"

    def test_leap_year(self):
        assert calculate_end_date("2024-02-28", 1) == "2024-02-29"

    def test_malformed_start_date_raises(self):
        with pytest.raises(ValueError):
            calculate_end_date("01/01/2025", 30)

    def test_valid_through_end_of_day(self):
        assert is_date_valid("2025-01-31", datetime(2025, 1, 31, 23, 59, 0))

    def test_invalid_after_end_of_day(self):
        assert not is_date_valid("2025-01-31", datetime(2025, 2, 1, 0, 0, 1))

    def test_end_of_day_is_last_second(self):
        assert parse_end_of_day("2025-01-31") == datetime(2025, 1, 31, 23, 59, 59)

    @pytest.mark.parametrize("end_date", ["", "not-a-date", "2025-13-01"])
    def test_malformed_end_date_is_never_valid(self, end_date):
        assert not is_date_valid(end_date, datetime(2000, 1, 1))

    def test_format_date(self):
        assert format_date(" 2025-03-04 ") == "2025-03-04"
        assert format_date("garbage") == ""
        assert format_date(None) == ""


class TestLicenseRecordStore:
    def test_empty_store_loads_defaults(self, license_store):
        assert license_store.load() == LicenseRecord()
        assert license_store.get_license_key() == ""
        assert not license_store.is_licensed()

    def test_save_and_load(self, license_store):
        license_store.save_license_info(
            is_licensed=True,
            start_date="2025-01-01",
            end_date="2025-01-31",
            license_key="ABCD-1234",
            edition="Pro",
            capabilities="Full Features",
            licensed_to="Jane Doe",
            email="jane@example.com",
        )

        record = license_store.load()
        assert record.is_licensed
        assert record.end_date == "2025-01-31"
        assert record.license_key == "ABCD-1234"
        assert record.licensed_to == "Jane Doe"
        assert record.user_email == "jane@example.com"

    def test_overwrite_keeps_single_row_per_key(self, license_store):
        license_store.save_license_info(True, "2025-01-01", "2025-01-31", "FIRST")
        license_store.save_license_info(True, "2025-01-01", "2025-01-31", "SECOND")
        assert license_store.get_license_key() == "SECOND"

    def test_is_licensed_respects_end_date(self, license_store):
        license_store.save_license_info(True, "2025-01-01", "2025-01-31", "ABCD-1234")
        assert license_store.is_licensed(now=datetime(2025, 1, 31, 12, 0))
        assert not license_store.is_licensed(now=datetime(2025, 2, 1, 0, 0, 1))

    def test_is_licensed_requires_flag(self, license_store):
        license_store.save_license_info(True, "2025-01-01", "2099-01-31", "ABCD-1234")
        license_store.set_licensed(False)
        assert not license_store.is_licensed()

    def test_partial_updates(self, license_store):
        license_store.save_start_date("2025-05-01")
        license_store.save_end_date("2025-06-01")
        record = license_store.load()
        assert record.start_date == "2025-05-01"
        assert license_store.get_end_date() == "2025-06-01"

    def test_clear(self, license_store):
        license_store.save_license_info(True, "2025-01-01", "2025-01-31", "ABCD-1234")
        license_store.clear()
        assert license_store.load() == LicenseRecord()

    def test_database_failure_raises_storage_error(self, license_store):
        session = mock.Mock()
        session.query.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
        license_store.Session = lambda: session

        with pytest.raises(StorageError):
            license_store.load()
        session.close.assert_called_once()
