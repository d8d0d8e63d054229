"""
Status records shared by the managers and their consumers.

LicenseInfo is the state machine snapshot owned by the EligibilityManager.
EligibilityInfo is never built by hand: calculate_eligibility() derives it from
a LicenseInfo plus the latest trial-days snapshot.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from license_errors import LicensingError
from license_store import calculate_end_date

DEFAULT_TRIAL_DAYS = 10


class LicenseStatus(Enum):
    UNVERIFIED = "unverified"
    VERIFYING = "verifying"
    VALID = "valid"
    INVALID = "invalid"
    TIMEOUT = "timeout"
    TRIAL = "trial"


class EligibilityStatus(Enum):
    ELIGIBLE = "eligible"
    INELIGIBLE = "ineligible"
    CHECKING = "checking"
    UNKNOWN = "unknown"


class EligibilitySource(Enum):
    LICENSE = "license"
    TRIAL = "trial"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class LicenseInfo:
    status: LicenseStatus = LicenseStatus.UNVERIFIED
    activation_date: str = ""
    validity_days: int = 0
    edition: str = ""
    capabilities: str = ""
    licensed_to: str = ""
    last_verified_time: int = 0  # epoch ms, 0 = never
    message: str = "Default trial, verifying in background"

    @property
    def has_license_fields(self) -> bool:
        return bool(self.activation_date) and self.validity_days > 0


@dataclass(frozen=True)
class EligibilityInfo:
    status: EligibilityStatus = EligibilityStatus.ELIGIBLE
    is_licensed: bool = False
    is_trial_active: bool = True
    trial_days_remaining: int = DEFAULT_TRIAL_DAYS
    license_end_date: str = ""
    display_message: str = "Default trial active, verifying in background"
    source: EligibilitySource = EligibilitySource.TRIAL


@dataclass
class ValidationResult:
    """Outcome of validate/activate. `error` is set only when inconclusive."""
    success: bool
    message: str
    error: Optional[LicensingError] = None

    @property
    def is_definitive(self) -> bool:
        return self.error is None


@dataclass
class LicenseDetails:
    activation_date: str
    validity_days: int
    edition: str = "Pro"
    capabilities: str = "Full Features"
    licensed_to: str = "Licensed User"
    email: str = ""
    success: bool = field(default=True, init=False)


@dataclass
class LicenseDetailsError:
    message: str
    error: Optional[LicensingError] = None
    success: bool = field(default=False, init=False)

    @property
    def is_definitive(self) -> bool:
        return self.error is None


def _end_date_for(license_info: LicenseInfo) -> str:
    if not license_info.has_license_fields:
        return ""
    try:
        return calculate_end_date(license_info.activation_date, license_info.validity_days)
    except ValueError:
        return ""


def calculate_eligibility(license_info: LicenseInfo,
                          trial_days_remaining: int = DEFAULT_TRIAL_DAYS) -> EligibilityInfo:
    """
    Derive the published eligibility from a license snapshot.

    Args:
        license_info: Current LicenseInfo
        trial_days_remaining: Latest trial-days snapshot, used for the TRIAL source

    Returns:
        EligibilityInfo for that snapshot
    """
    status = license_info.status

    if status == LicenseStatus.VALID:
        end_date = _end_date_for(license_info)
        return EligibilityInfo(
            status=EligibilityStatus.ELIGIBLE,
            is_licensed=True,
            is_trial_active=False,
            trial_days_remaining=0,
            license_end_date=end_date,
            display_message=f"License valid (expires: {end_date})" if end_date else "License valid",
            source=EligibilitySource.LICENSE,
        )

    if status == LicenseStatus.TRIAL:
        return EligibilityInfo(
            status=EligibilityStatus.ELIGIBLE,
            is_licensed=False,
            is_trial_active=True,
            trial_days_remaining=trial_days_remaining,
            display_message=f"Trial active ({trial_days_remaining} days remaining)",
            source=EligibilitySource.TRIAL,
        )

    if status == LicenseStatus.VERIFYING:
        if license_info.has_license_fields:
            return EligibilityInfo(
                status=EligibilityStatus.CHECKING,
                is_licensed=True,
                is_trial_active=False,
                trial_days_remaining=0,
                license_end_date=_end_date_for(license_info),
                display_message="Verifying entitlement in background, features remain available",
                source=EligibilitySource.LICENSE,
            )
        return EligibilityInfo(
            status=EligibilityStatus.CHECKING,
            trial_days_remaining=trial_days_remaining,
            display_message="Verifying entitlement in background, features remain available",
            source=EligibilitySource.TRIAL,
        )

    if status == LicenseStatus.INVALID:
        return EligibilityInfo(
            status=EligibilityStatus.INELIGIBLE,
            is_licensed=False,
            is_trial_active=False,
            trial_days_remaining=0,
            display_message=license_info.message or "License and trial have both expired, please activate a license",
            source=EligibilitySource.UNKNOWN,
        )

    if status == LicenseStatus.TIMEOUT:
        return EligibilityInfo(
            status=EligibilityStatus.ELIGIBLE,
            trial_days_remaining=trial_days_remaining,
            display_message=f"Could not verify entitlement, continuing ({license_info.message})",
            source=EligibilitySource.TRIAL,
        )

    # UNVERIFIED
    return EligibilityInfo(trial_days_remaining=trial_days_remaining)
