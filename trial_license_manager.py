"""
Trial License Manager - trial lifecycle on top of the trial anchor store and the remote trial service.

Features:
- Single-flight trial token acquisition (one network round trip for any number of callers)
- Fail-open default trial when the trial service is unreachable
- Server-reported first launch time takes precedence over the local anchor
- Clock-skew tolerant remaining-days computation
- Explicit server re-check that can force-expire the local trial

Usage:
    from trial_license_manager import TrialLicenseManager, TrialServiceClient
    from trial_store import TrialAnchorStore

    trial_manager = TrialLicenseManager(
        store=TrialAnchorStore(),
        client=TrialServiceClient(start_url, verify_url),
    )

    if trial_manager.is_trial_valid(device_id, app_id):
        remaining_days = trial_manager.get_remaining_days(device_id, app_id)
        print(f"You have {remaining_days} days remaining in your trial.")
"""
import math
import time
import logging
import datetime
import threading
from typing import Any, Callable, Dict, Optional

import requests

from license_errors import StorageError
from license_status import DEFAULT_TRIAL_DAYS
from timeout_utils import call_with_timeout, is_network_available
from trial_store import TrialAnchorStore

logger = logging.getLogger("TrialLicenseManager")

DAY_MS = 24 * 60 * 60 * 1000


class TrialServiceClient:
    """
    Stateless caller for the trial service `start` and `verify` operations.
    """

    def __init__(self, start_url: str, verify_url: str, timeout: float = 3.0,
                 session: Optional[requests.Session] = None):
        self.start_url = start_url
        self.verify_url = verify_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def start(self, device_id: str, app_id: str) -> Optional[Dict[str, Any]]:
        """
        Request a trial token.

        Returns:
            The decoded response, or None if the request failed
        """
        try:
            response = self.session.post(
                self.start_url,
                json={"device_id": device_id, "app_id": app_id},
                timeout=self.timeout,
            )
            if not response.ok:
                logger.warning(f"Trial start request failed with status: {response.status_code}")
                return None
            data = response.json()
            logger.debug(f"Trial start response: {data}")
            return data if isinstance(data, dict) else None
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Trial fetch error: {e}")
            return None

    def verify(self, device_id: str, app_id: str, token: str, signature: str,
               full_check: bool = False) -> Optional[bool]:
        """
        Ask the trial service whether a token is still valid.

        Returns:
            True/False when the server answered, None when the outcome is inconclusive
        """
        payload = {
            "device_id": device_id,
            "app_id": app_id,
            "trial_token": token,
            "signature": signature,
        }
        if full_check:
            payload["verify_type"] = "full_check"
        try:
            response = self.session.post(self.verify_url, json=payload, timeout=self.timeout)
            if not response.ok:
                logger.warning(f"Trial verify request failed with status: {response.status_code}")
                return None
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Trial verify failed: {e}")
            return None

        if not isinstance(data, dict) or "valid" not in data:
            logger.warning(f"Trial verify response missing 'valid': {data}")
            return None
        logger.debug(f"Trial verify result: {data.get('valid')}, message: {data.get('message', '')}")
        return bool(data["valid"])


class TrialLicenseManager:
    """
    Decides trial validity and remaining days, and issues/refreshes trial tokens.
    """

    def __init__(
        self,
        store: TrialAnchorStore,
        client: TrialServiceClient,
        network_check: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.time,
        default_trial_days: int = DEFAULT_TRIAL_DAYS,
        max_attempts: int = 2,
        retry_delay: float = 1.0,
        attempt_timeout: float = 3.0,
        verify_timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the Trial License Manager.

        Args:
            store: Encrypted trial anchor store
            client: Remote trial service client
            network_check: Reachability check; defaults to a TCP connect to the start URL
            clock: Returns the current time as a Unix timestamp
            default_trial_days: Trial length committed when the service can't be reached
            max_attempts: Number of `start` attempts before falling back to the default trial
            retry_delay: Seconds to wait between attempts
            attempt_timeout: Deadline for each remote attempt in seconds
            verify_timeout: Deadline for the explicit server re-check in seconds; defaults to attempt_timeout
            sleep: Sleep function used for the backoff
        """
        self.store = store
        self.client = client
        self.network_check = network_check or (lambda: is_network_available(client.start_url))
        self.clock = clock
        self.default_trial_days = default_trial_days
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.attempt_timeout = attempt_timeout
        self.verify_timeout = attempt_timeout if verify_timeout is None else verify_timeout
        self.sleep = sleep

        self._lock = threading.Lock()
        self._cache_lock = threading.Lock()
        self._initialized = False
        self._cached_trial_valid: Optional[bool] = None
        self._cache_generation = 0

        self.store.add_listener(self.invalidate_cache)

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def invalidate_cache(self, refresh_token: bool = False) -> None:
        """
        Drop the cached validity.

        Args:
            refresh_token: Also allow the next call to contact the trial service again
        """
        with self._cache_lock:
            self._cache_generation += 1
            self._cached_trial_valid = None
        if refresh_token:
            self._initialized = False

    def _commit_default_trial(self) -> None:
        if self.store.get_trial_duration() is None:
            self.store.set_trial_duration(self.default_trial_days)
            logger.warning(f"Setting default trial period of {self.default_trial_days} days")
        else:
            logger.warning("Keeping previously committed trial period")

    def _fetch_trial_with_retry(self, device_id: str, app_id: str) -> Optional[Dict[str, Any]]:
        for attempt in range(1, self.max_attempts + 1):
            logger.debug(f"Attempting trial fetch, attempt {attempt}/{self.max_attempts}")
            response = call_with_timeout(
                lambda: self.client.start(device_id, app_id),
                self.attempt_timeout,
                name="trial start",
            )
            if response is not None:
                return response
            if attempt < self.max_attempts:
                self.sleep(self.retry_delay)
        return None

    def _store_trial_response(self, response: Dict[str, Any]) -> None:
        token = str(response["trial_token"])
        signature = str(response["signature"])
        days = int(response["expires_in_days"])
        server_first_launch = int(response.get("first_launch_time") or 0)

        self.store.save_trial(token, signature, days)
        if server_first_launch:
            if not self.store.set_server_first_launch_time(server_first_launch):
                logger.debug("Server first launch time already committed, ignoring new value")
        logger.info(f"Trial token issued, trial period {days} days")

    def request_trial_if_needed(self, device_id: str, app_id: str) -> bool:
        """
        Acquire or refresh the trial token. Concurrent callers share a single round trip.

        Returns:
            True once the trial state is usable, False if local storage failed
        """
        with self._lock:
            if self._initialized:
                return True

            try:
                anchor = self.store.load()
                if anchor.has_token:
                    still_valid = call_with_timeout(
                        lambda: self.client.verify(device_id, app_id, anchor.trial_token, anchor.trial_signature),
                        self.attempt_timeout,
                        name="trial verify",
                    )
                    if still_valid is False:
                        logger.warning("Server verification of cached trial token failed, proceeding with local check")

                self.store.get_or_init_first_launch_time(self._now_ms())

                if not self.network_check():
                    logger.warning("Network unavailable, using default trial period")
                    self._commit_default_trial()
                    self._initialized = True
                    return True

                response = self._fetch_trial_with_retry(device_id, app_id)
                if response is None:
                    logger.warning(f"Trial service failed after {self.max_attempts} attempts")
                    self._commit_default_trial()
                    self._initialized = True
                    return True

                try:
                    self._store_trial_response(response)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Malformed trial response ({e}), using default trial period")
                    self._commit_default_trial()

                self._initialized = True
                return True
            except StorageError as e:
                logger.error(f"Trial storage failed: {e}")
                return False

    def is_trial_valid(self, device_id: str, app_id: str) -> bool:
        """
        Check if the trial is still running.

        Raises:
            StorageError: If the trial state can't be read
        """
        with self._cache_lock:
            cached = self._cached_trial_valid
            generation = self._cache_generation
        if cached is not None:
            return cached

        if not self._initialized:
            self.request_trial_if_needed(device_id, app_id)
            with self._cache_lock:
                generation = self._cache_generation

        valid = self.get_remaining_days(device_id, app_id) > 0
        # A store write during the computation makes this result stale
        with self._cache_lock:
            if generation == self._cache_generation:
                self._cached_trial_valid = valid
        return valid

    def get_remaining_days(self, device_id: str, app_id: str) -> int:
        """
        Get the number of whole days remaining in the trial, rounded up and never negative.

        Raises:
            StorageError: If the trial state can't be read
        """
        anchor = self.store.load()
        if anchor.trial_duration_days is None:
            logger.debug("No trial data found, initializing trial")
            self.request_trial_if_needed(device_id, app_id)
            anchor = self.store.load()

        if anchor.expired:
            return 0

        trial_days = anchor.trial_duration_days
        if trial_days is None:
            trial_days = self.default_trial_days

        now_ms = self._now_ms()
        first_launch_time = anchor.effective_first_launch_time or self.store.get_or_init_first_launch_time(now_ms)

        if now_ms < first_launch_time:
            logger.warning("Device time is earlier than first launch time, assuming trial is valid")
            return trial_days

        remaining_ms = first_launch_time + trial_days * DAY_MS - now_ms
        remaining_days = math.ceil(remaining_ms / DAY_MS) if remaining_ms > 0 else 0
        logger.debug(f"Remaining days: {remaining_days} (first_launch_time={first_launch_time}, "
                     f"trial_days={trial_days}, now={now_ms})")
        return remaining_days

    def verify_trial_with_server(self, device_id: str, app_id: str) -> bool:
        """
        Full server re-check of the cached token. A definitive "invalid" expires the local trial.

        Returns:
            True only if the server confirmed the trial
        """
        try:
            anchor = self.store.load()
        except StorageError as e:
            logger.error(f"Trial storage failed: {e}")
            return False

        if not anchor.has_token:
            logger.debug("No trial token stored locally")
            return False

        result = call_with_timeout(
            lambda: self.client.verify(device_id, app_id, anchor.trial_token, anchor.trial_signature,
                                       full_check=True),
            self.verify_timeout,
            name="trial full check",
        )
        if result is None:
            logger.warning("Trial server re-check was inconclusive, keeping local trial state")
            return False
        if not result:
            logger.info("Server reports the trial as expired, expiring local trial")
            self.force_expire_trial()
            return False
        return True

    def get_trial_end_date(self) -> Optional[datetime.datetime]:
        """Get the expiration date of the trial, or None if no trial length is committed."""
        anchor = self.store.load()
        if anchor.trial_duration_days is None or not anchor.effective_first_launch_time:
            return None
        end_ms = anchor.effective_first_launch_time + anchor.trial_duration_days * DAY_MS
        return datetime.datetime.fromtimestamp(end_ms / 1000)

    def is_trial_expired(self) -> bool:
        anchor = self.store.load()
        if anchor.expired:
            return True
        return anchor.trial_duration_days is not None and anchor.trial_duration_days <= 0

    def force_expire_trial(self) -> bool:
        """Expire the trial regardless of elapsed time."""
        try:
            self.store.mark_expired()
        except StorageError as e:
            logger.error(f"Failed to expire trial: {e}")
            return False
        with self._cache_lock:
            self._cached_trial_valid = False
        logger.info("Trial has been force-expired")
        return True

    def clear_trial_data(self) -> bool:
        """Remove all trial data (for support and testing purposes)."""
        try:
            self.store.clear()
        except StorageError as e:
            logger.error(f"Failed to clear trial data: {e}")
            return False
        self.invalidate_cache(refresh_token=True)
        logger.info("Trial data cleared")
        return True
