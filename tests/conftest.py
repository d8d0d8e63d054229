import threading
import time

import pytest
from cryptography.fernet import Fernet

from license_status import LicenseDetails, ValidationResult
from license_store import LicenseRecordStore
from trial_license_manager import TrialLicenseManager
from trial_store import TrialAnchorStore

DAY = 24 * 60 * 60
T0 = 1_700_000_000.0


class FakeClock:
    """Settable clock returning Unix seconds."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeTrialClient:
    start_url = "https://trial.test/start"
    verify_url = "https://trial.test/verify"

    def __init__(self, start_response=None, verify_result=True, delay=0.0):
        self.start_response = start_response
        self.verify_result = verify_result
        self.delay = delay
        self.start_calls = 0
        self.verify_calls = []
        self._lock = threading.Lock()

    def start(self, device_id, app_id):
        with self._lock:
            self.start_calls += 1
        if self.delay:
            time.sleep(self.delay)
        return self.start_response

    def verify(self, device_id, app_id, token, signature, full_check=False):
        self.verify_calls.append(full_check)
        return self.verify_result


class FakeLicenseClient:
    def __init__(self, validation=None, details=None, activation=None, delay=0.0):
        self.validation = validation or ValidationResult(True, "License is valid")
        self.details = details or LicenseDetails(activation_date=time.strftime("%Y-%m-%d"), validity_days=365)
        self.activation = activation or ValidationResult(True, "License activated")
        self.delay = delay
        self.calls = []

    def _wait(self):
        if self.delay:
            time.sleep(self.delay)

    def validate(self, license_key, device_id):
        self.calls.append(("validate", license_key))
        self._wait()
        return self.validation

    def get_details(self, license_key):
        self.calls.append(("details", license_key))
        self._wait()
        return self.details

    def activate(self, license_key, device_id):
        self.calls.append(("activate", license_key))
        self._wait()
        return self.activation


def trial_response(token="tok-1", signature="sig-1", days=10, first_launch_time=None):
    response = {"trial_token": token, "signature": signature, "expires_in_days": days}
    if first_launch_time is not None:
        response["first_launch_time"] = first_launch_time
    return response


@pytest.fixture
def fernet_key():
    return Fernet.generate_key()


@pytest.fixture
def trial_store(tmp_path, fernet_key):
    return TrialAnchorStore(str(tmp_path / "trial.dat"), key=fernet_key)


@pytest.fixture
def license_store(tmp_path):
    return LicenseRecordStore(f"sqlite:///{tmp_path / 'license.db'}")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def offline_trial_manager(trial_store, clock):
    """Trial manager that never reaches the trial service."""
    return TrialLicenseManager(
        store=trial_store,
        client=FakeTrialClient(),
        network_check=lambda: False,
        clock=clock,
        sleep=lambda seconds: None,
    )
