"""
Deprecated static-style entry points kept for older callers.

Every call forwards to an EligibilityManager and emits a DeprecationWarning.
New code should use the EligibilityManager directly.
"""
import warnings
from concurrent.futures import Future
from typing import Callable, Optional

from license_manager import EligibilityManager
from license_status import EligibilityInfo, LicenseInfo


def _deprecated(name: str, replacement: str) -> None:
    warnings.warn(
        f"LicenseVerificationManager.{name} is deprecated, use EligibilityManager.{replacement}",
        DeprecationWarning,
        stacklevel=3,
    )


class LicenseVerificationManager:
    """Forwarding adapter; it holds no state besides the manager it wraps."""

    def __init__(self, manager: EligibilityManager):
        self.manager = manager

    def verify_license_on_start(self, on_invalid: Optional[Callable[[], None]] = None,
                                on_success: Optional[Callable[[], None]] = None) -> "Future[bool]":
        _deprecated("verify_license_on_start", "verify_license")

        def _complete(eligible: bool) -> None:
            callback = on_success if eligible else on_invalid
            if callback is not None:
                callback()

        return self.manager.verify_license(on_complete=_complete)

    def force_server_validation(self, on_invalid: Optional[Callable[[], None]] = None,
                                on_success: Optional[Callable[[], None]] = None) -> bool:
        """Blocks until the cold resync finishes."""
        _deprecated("force_server_validation", "force_revalidate_and_sync")
        eligible = self.manager.force_revalidate_and_sync()
        callback = on_success if eligible else on_invalid
        if callback is not None:
            callback()
        return eligible

    def is_license_valid(self) -> bool:
        _deprecated("is_license_valid", "is_license_valid")
        return self.manager.is_license_valid

    def get_license_info(self) -> LicenseInfo:
        _deprecated("get_license_info", "license_info")
        return self.manager.license_info

    def has_eligibility(self) -> bool:
        _deprecated("has_eligibility", "has_eligibility")
        return self.manager.has_eligibility

    def get_eligibility_info(self) -> EligibilityInfo:
        _deprecated("get_eligibility_info", "eligibility_info")
        return self.manager.eligibility_info
