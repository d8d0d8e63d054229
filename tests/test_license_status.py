from license_status import (
    EligibilitySource, EligibilityStatus, LicenseInfo, LicenseStatus, calculate_eligibility,
)

LICENSED = dict(activation_date="2025-01-01", validity_days=30, edition="Pro",
                capabilities="Full Features", licensed_to="Jane Doe")


def test_initial_state_is_eligible_trial():
    eligibility = calculate_eligibility(LicenseInfo())
    assert eligibility.status == EligibilityStatus.ELIGIBLE
    assert eligibility.source == EligibilitySource.TRIAL
    assert eligibility.is_trial_active
    assert eligibility.trial_days_remaining == 10


def test_valid_license():
    eligibility = calculate_eligibility(LicenseInfo(status=LicenseStatus.VALID, **LICENSED))
    assert eligibility.status == EligibilityStatus.ELIGIBLE
    assert eligibility.source == EligibilitySource.LICENSE
    assert eligibility.is_licensed
    assert not eligibility.is_trial_active
    assert eligibility.license_end_date == "2025-01-31"
    assert "2025-01-31" in eligibility.display_message


def test_trial():
    eligibility = calculate_eligibility(LicenseInfo(status=LicenseStatus.TRIAL), trial_days_remaining=4)
    assert eligibility.status == EligibilityStatus.ELIGIBLE
    assert eligibility.source == EligibilitySource.TRIAL
    assert eligibility.trial_days_remaining == 4
    assert not eligibility.is_licensed


def test_verifying_with_license_fields():
    eligibility = calculate_eligibility(LicenseInfo(status=LicenseStatus.VERIFYING, **LICENSED))
    assert eligibility.status == EligibilityStatus.CHECKING
    assert eligibility.source == EligibilitySource.LICENSE


def test_verifying_without_license_fields():
    eligibility = calculate_eligibility(LicenseInfo(status=LicenseStatus.VERIFYING))
    assert eligibility.status == EligibilityStatus.CHECKING
    assert eligibility.source == EligibilitySource.TRIAL


def test_timeout_stays_eligible():
    eligibility = calculate_eligibility(LicenseInfo(status=LicenseStatus.TIMEOUT, message="timed out"))
    assert eligibility.status == EligibilityStatus.ELIGIBLE
    assert eligibility.is_trial_active


def test_invalid_is_ineligible():
    eligibility = calculate_eligibility(LicenseInfo(status=LicenseStatus.INVALID, message="Both expired"))
    assert eligibility.status == EligibilityStatus.INELIGIBLE
    assert eligibility.source == EligibilitySource.UNKNOWN
    assert not eligibility.is_trial_active
    assert eligibility.trial_days_remaining == 0
    assert eligibility.display_message == "Both expired"


def test_only_invalid_is_ineligible():
    for status in LicenseStatus:
        eligibility = calculate_eligibility(LicenseInfo(status=status, **LICENSED))
        assert (eligibility.status == EligibilityStatus.INELIGIBLE) == (status == LicenseStatus.INVALID)
