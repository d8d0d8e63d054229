"""
Eligibility manager for the entitlement gate.

Owns the published LicenseInfo/EligibilityInfo pair and runs the verification
pipeline: license first, trial as the fallback, fail-open whenever an outcome is
inconclusive. Only a definitive negative on both paths makes the installation
ineligible.
"""
import math
import time
import logging
import threading
from datetime import datetime
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from license_client import LicenseServiceClient
from license_errors import ExpiredError, NetworkError, NotConfiguredError, ParseError, StorageError
from license_status import (
    EligibilityInfo, EligibilityStatus, LicenseDetails, LicenseInfo,
    LicenseStatus, ValidationResult, calculate_eligibility,
)
from license_store import LicenseRecordStore, calculate_end_date, is_date_valid
from timeout_utils import call_with_timeout
from trial_license_manager import TrialLicenseManager, TrialServiceClient
from trial_store import TrialAnchorStore, get_machine_id

logger = logging.getLogger("EligibilityManager")

INELIGIBLE_MESSAGE = "License and trial have both expired, please activate a license"

StatusListener = Callable[[LicenseInfo, EligibilityInfo], None]


class PathOutcome(Enum):
    VALID = "valid"
    NEGATIVE = "negative"
    INCONCLUSIVE = "inconclusive"


class EligibilityManager:
    """
    Single owner of the entitlement status.

    Consumers read `license_info`/`eligibility_info` (or subscribe) and never
    write them. Verification runs on a small background pool; a new verification
    does not cancel one in flight and the last publish wins.
    """

    def __init__(
        self,
        license_store: LicenseRecordStore,
        license_client: LicenseServiceClient,
        trial_manager: TrialLicenseManager,
        device_id: str,
        app_id: str,
        license_timeout: float = 5.0,
        trial_timeout: float = 3.0,
        block_while_checking: bool = False,
        clock: Callable[[], float] = time.time,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """
        Args:
            license_store: Local license record store
            license_client: Remote license service client
            trial_manager: Trial lifecycle manager
            device_id: Identifier of this installation
            app_id: Application identifier sent to the trial service
            license_timeout: Deadline for each license call in seconds
            trial_timeout: Deadline for each trial check in seconds
            block_while_checking: Treat CHECKING as not eligible
            clock: Returns the current time as a Unix timestamp
            executor: Pool used for background verification
        """
        self.license_store = license_store
        self.license_client = license_client
        self.trial_manager = trial_manager
        self.device_id = device_id
        self.app_id = app_id
        self.license_timeout = license_timeout
        self.trial_timeout = trial_timeout
        self.block_while_checking = block_while_checking
        self.clock = clock
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="eligibility")

        self._state_lock = threading.Lock()
        self._license_info = LicenseInfo()
        self._trial_days_remaining = trial_manager.default_trial_days
        self._eligibility_info = calculate_eligibility(self._license_info, self._trial_days_remaining)
        self._listeners: List[StatusListener] = []

    # Published state

    @property
    def license_info(self) -> LicenseInfo:
        with self._state_lock:
            return self._license_info

    @property
    def eligibility_info(self) -> EligibilityInfo:
        with self._state_lock:
            return self._eligibility_info

    def snapshot(self) -> Tuple[LicenseInfo, EligibilityInfo]:
        """Both records from the same update."""
        with self._state_lock:
            return self._license_info, self._eligibility_info

    @property
    def is_license_valid(self) -> bool:
        return self.license_info.status in (LicenseStatus.VALID, LicenseStatus.TRIAL)

    @property
    def has_eligibility(self) -> bool:
        status = self.eligibility_info.status
        if status == EligibilityStatus.CHECKING and self.block_while_checking:
            return False
        return status != EligibilityStatus.INELIGIBLE

    def subscribe(self, listener: StatusListener) -> None:
        with self._state_lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: StatusListener) -> None:
        with self._state_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _publish(self, status: LicenseStatus, message: str = "",
                 details: Optional[LicenseDetails] = None,
                 trial_days: Optional[int] = None,
                 clear_license_fields: bool = False) -> None:
        with self._state_lock:
            previous = self._license_info
            if details is not None:
                fields = dict(activation_date=details.activation_date, validity_days=details.validity_days,
                              edition=details.edition, capabilities=details.capabilities,
                              licensed_to=details.licensed_to)
            elif clear_license_fields:
                fields = {}
            else:
                fields = dict(activation_date=previous.activation_date, validity_days=previous.validity_days,
                              edition=previous.edition, capabilities=previous.capabilities,
                              licensed_to=previous.licensed_to)

            license_info = LicenseInfo(status=status, last_verified_time=self._now_ms(), message=message, **fields)
            if trial_days is not None:
                self._trial_days_remaining = trial_days
            eligibility_info = calculate_eligibility(license_info, self._trial_days_remaining)

            self._license_info = license_info
            self._eligibility_info = eligibility_info
            listeners = list(self._listeners)

        logger.debug(f"Published {status.name}: {message}")
        self._notify(listeners, license_info, eligibility_info)

    def _notify(self, listeners: List[StatusListener], license_info: LicenseInfo,
                eligibility_info: EligibilityInfo) -> None:
        for listener in listeners:
            try:
                listener(license_info, eligibility_info)
            except Exception:
                logger.exception("Status listener failed")

    # Verification pipeline

    def _check_license_path(self, device_id: str) -> Tuple[PathOutcome, str, Optional[LicenseDetails]]:
        try:
            license_key = self.license_store.get_license_key()
        except StorageError as e:
            logger.error(f"License record unavailable: {e}")
            return PathOutcome.INCONCLUSIVE, str(e), None

        if not license_key:
            reason = NotConfiguredError("No license key stored")
            logger.debug(str(reason))
            return PathOutcome.NEGATIVE, str(reason), None

        validation = call_with_timeout(
            lambda: self.license_client.validate(license_key, device_id),
            self.license_timeout,
            name="license validate",
        )
        if validation is None:
            return PathOutcome.INCONCLUSIVE, "License validation timed out", None
        if not validation.success:
            logger.warning(f"License validation failed: {validation.message}")
            outcome = PathOutcome.NEGATIVE if validation.is_definitive else PathOutcome.INCONCLUSIVE
            return outcome, f"License validation failed: {validation.message}", None

        details = call_with_timeout(
            lambda: self.license_client.get_details(license_key),
            self.license_timeout,
            name="license details",
        )
        if details is None:
            return PathOutcome.INCONCLUSIVE, "License details request timed out", None
        if not details.success:
            logger.warning(f"Failed to get license details: {details.message}")
            outcome = PathOutcome.NEGATIVE if details.is_definitive else PathOutcome.INCONCLUSIVE
            return outcome, f"Failed to get license details: {details.message}", None

        try:
            end_date = calculate_end_date(details.activation_date, details.validity_days)
        except ValueError:
            reason = ParseError(f"Unparseable activation date: {details.activation_date!r}")
            logger.warning(str(reason))
            return PathOutcome.INCONCLUSIVE, str(reason), None

        still_valid = is_date_valid(end_date, datetime.fromtimestamp(self.clock()))

        try:
            self.license_store.save_license_info(
                is_licensed=still_valid,
                start_date=details.activation_date,
                end_date=end_date,
                license_key=license_key,
                edition=details.edition,
                capabilities=details.capabilities,
                licensed_to=details.licensed_to,
                email=details.email,
            )
        except StorageError as e:
            logger.error(f"Failed to persist license record: {e}")

        if not still_valid:
            reason = ExpiredError(f"License expired on {end_date}")
            logger.warning(str(reason))
            return PathOutcome.NEGATIVE, str(reason), None

        return PathOutcome.VALID, f"License valid until {end_date}", details

    def _check_trial_path(self, device_id: str, app_id: str) -> Tuple[PathOutcome, int]:
        trial_valid = call_with_timeout(
            lambda: self.trial_manager.is_trial_valid(device_id, app_id),
            self.trial_timeout,
            name="trial check",
        )
        if trial_valid is None:
            return PathOutcome.INCONCLUSIVE, self._trial_days_remaining
        if not trial_valid:
            return PathOutcome.NEGATIVE, 0

        days = call_with_timeout(
            lambda: self.trial_manager.get_remaining_days(device_id, app_id),
            self.trial_timeout,
            fallback=self.trial_manager.default_trial_days,
            name="trial remaining days",
        )
        # The cached validity can outlive the trial itself
        if days <= 0:
            return PathOutcome.NEGATIVE, 0
        return PathOutcome.VALID, days

    def _run_verification(self, device_id: Optional[str] = None, app_id: Optional[str] = None,
                          force: bool = False, cold: bool = False) -> bool:
        device_id = device_id or self.device_id
        app_id = app_id or self.app_id
        try:
            self._publish(LicenseStatus.VERIFYING, message="Verifying in background, features remain available")

            if force or cold:
                self.trial_manager.invalidate_cache(refresh_token=cold)
            if cold:
                self.trial_manager.verify_trial_with_server(device_id, app_id)

            license_outcome, license_message, details = self._check_license_path(device_id)
            if license_outcome == PathOutcome.VALID:
                self._publish(LicenseStatus.VALID, message="License valid", details=details)
                return True

            trial_outcome, trial_days = self._check_trial_path(device_id, app_id)
            if trial_outcome == PathOutcome.VALID:
                self._publish(LicenseStatus.TRIAL, message="Trial active", trial_days=trial_days,
                              clear_license_fields=True)
                return True

            if license_outcome == PathOutcome.NEGATIVE and trial_outcome == PathOutcome.NEGATIVE:
                logger.info(f"No entitlement: {license_message}; trial expired")
                self._publish(LicenseStatus.INVALID, message=INELIGIBLE_MESSAGE, trial_days=0,
                              clear_license_fields=True)
                return False

            reason = license_message if license_outcome == PathOutcome.INCONCLUSIVE else "trial check inconclusive"
            logger.warning(f"Verification inconclusive ({reason}), allowing continued use")
            self._publish(LicenseStatus.TIMEOUT, message=reason)
            return True
        except Exception as e:
            logger.exception("Verification failed unexpectedly, allowing continued use")
            self._publish(LicenseStatus.TIMEOUT, message=f"Verification error: {e}")
            return True

    def verify_license(self, force: bool = False,
                       on_complete: Optional[Callable[[bool], None]] = None,
                       device_id: Optional[str] = None,
                       app_id: Optional[str] = None) -> "Future[bool]":
        """
        Schedule a verification in the background.

        Args:
            force: Re-evaluate the trial instead of using the cached result
            on_complete: Called with the eligibility outcome once verification finishes
            device_id: Overrides the configured device id
            app_id: Overrides the configured app id

        Returns:
            Future resolving to True unless the installation was found ineligible
        """
        future = self._executor.submit(self._run_verification, device_id, app_id, force)
        if on_complete is not None:
            def _done(f: "Future[bool]") -> None:
                try:
                    on_complete(f.result())
                except Exception:
                    logger.exception("Verification callback failed")
            future.add_done_callback(_done)
        return future

    def force_revalidate_and_sync(self, device_id: Optional[str] = None, app_id: Optional[str] = None) -> bool:
        """Cold resync from scratch, including the explicit trial server re-check. Blocks the caller."""
        return self._run_verification(device_id, app_id, force=True, cold=True)

    def get_time_since_last_verification(self) -> float:
        """Minutes since the last publish, math.inf if never verified."""
        last_verified = self.license_info.last_verified_time
        if not last_verified:
            return math.inf
        return (self._now_ms() - last_verified) / (60 * 1000)

    def should_revalidate(self, threshold_minutes: float = 24 * 60) -> bool:
        if self.license_info.status in (LicenseStatus.UNVERIFIED, LicenseStatus.INVALID):
            return True
        return self.get_time_since_last_verification() >= threshold_minutes

    def reset_license_status(self) -> None:
        with self._state_lock:
            self._license_info = LicenseInfo()
            self._trial_days_remaining = self.trial_manager.default_trial_days
            self._eligibility_info = calculate_eligibility(self._license_info, self._trial_days_remaining)
            listeners = list(self._listeners)
            license_info, eligibility_info = self._license_info, self._eligibility_info
        self._notify(listeners, license_info, eligibility_info)

    # License administration

    def activate_license(self, license_key: str, device_id: Optional[str] = None) -> ValidationResult:
        """
        Activate a license key with the service, store it and resync.

        Returns:
            ValidationResult; `success` is False when activation or verification was refused
        """
        device_id = device_id or self.device_id
        license_key = license_key.strip()
        if not license_key:
            error = NotConfiguredError("No license key given")
            return ValidationResult(False, str(error), error=error)

        result = call_with_timeout(
            lambda: self.license_client.activate(license_key, device_id),
            self.license_timeout,
            name="license activate",
        )
        if result is None:
            error = NetworkError("License activation timed out")
            return ValidationResult(False, str(error), error=error)
        if not result.success:
            logger.warning(f"License activation refused: {result.message}")
            return result

        try:
            self.license_store.save_license_info(is_licensed=False, start_date="", end_date="",
                                                 license_key=license_key)
        except StorageError as e:
            logger.error(f"Failed to store license key: {e}")
            return ValidationResult(False, str(e), error=e)

        self.force_revalidate_and_sync(device_id=device_id)
        license_info = self.license_info
        if license_info.status == LicenseStatus.VALID:
            return ValidationResult(True, "License activated")
        if license_info.status == LicenseStatus.TIMEOUT:
            return ValidationResult(True, f"License activated, verification pending: {license_info.message}")
        return ValidationResult(False, f"License activated but not valid: {result.message}")

    def clear_license(self) -> bool:
        try:
            self.license_store.clear()
        except StorageError as e:
            logger.error(f"Failed to clear license: {e}")
            return False
        return True

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


def build_eligibility_manager(settings: Dict[str, Any]) -> EligibilityManager:
    """
    Wire up the stores, clients and managers from the settings produced by config_editor.get_settings().
    """
    trial_client = TrialServiceClient(
        settings["trial_start_url"],
        settings["trial_verify_url"],
        timeout=settings["trial_timeout"],
    )
    trial_manager = TrialLicenseManager(
        store=TrialAnchorStore(settings["trial_file"]),
        client=trial_client,
        default_trial_days=settings["default_trial_days"],
        max_attempts=settings["max_attempts"],
        retry_delay=settings["retry_delay"],
        attempt_timeout=settings["trial_timeout"],
    )
    license_client = LicenseServiceClient(
        settings["license_url"],
        settings["license_api_key"],
        timeout=settings["license_http_timeout"],
    )
    return EligibilityManager(
        license_store=LicenseRecordStore(settings["license_db"]),
        license_client=license_client,
        trial_manager=trial_manager,
        device_id=settings["device_id"] or get_machine_id(),
        app_id=settings["app_id"],
        license_timeout=settings["license_timeout"],
        trial_timeout=settings["trial_timeout"],
        block_while_checking=settings["block_while_checking"],
    )
