"""
Remote license client.

Stateless request/response mapping for the license service `validate`,
`activate` and `details` operations. Every call is a form-encoded POST with a
connect/read timeout. Failures come back inside the result objects; nothing is
raised to the caller.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

import requests

from license_errors import (
    LicensingError, NetworkError, ServerError, EndpointMisconfiguredError, ParseError,
)
from license_status import ValidationResult, LicenseDetails, LicenseDetailsError

logger = logging.getLogger("LicenseServiceClient")

DEFAULT_VALIDITY_DAYS = 365
PERPETUAL_VALIDITY_DAYS = 3650
ACTIVE_STATUSES = ("sold", "active")


def _mask(license_key: str) -> str:
    return f"{license_key[:4]}..." if license_key else "<empty>"


def looks_like_html(body: str) -> bool:
    head = body.lstrip()[:100].lower()
    return head.startswith("<!doctype html") or head.startswith("<html")


class LicenseServiceClient:
    """Client for the remote license service."""

    def __init__(self, api_url: str, api_key: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        """
        Args:
            api_url: License service endpoint
            api_key: API key sent with every request
            timeout: Connect/read timeout in seconds
            session: Optional requests session
        """
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "EntitlementGate/1.0")

    def _post(self, action: str, params: Dict[str, str]) -> Dict[str, Any]:
        """
        POST one action and decode the JSON body.

        Raises:
            NetworkError, ServerError, EndpointMisconfiguredError, ParseError
        """
        data = {"fslm_v2_api_request": action, "fslm_api_key": self.api_key}
        data.update(params)
        try:
            response = self.session.post(self.api_url, data=data, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise NetworkError(f"Network error: {e}") from e
        except requests.RequestException as e:
            raise NetworkError(f"Request failed: {e}") from e

        body = response.text or ""
        logger.debug(f"{action} response ({response.status_code}): {body[:500]}")

        if looks_like_html(body):
            raise EndpointMisconfiguredError(
                "License service returned an HTML page instead of JSON; check the service URL",
                status_code=response.status_code,
            )
        if not response.ok:
            raise ServerError(f"HTTP error {response.status_code}: {body[:200]}",
                              status_code=response.status_code)
        if not body.strip():
            raise ServerError("Empty response from server", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise ParseError("Invalid response: not a valid JSON") from e
        if not isinstance(payload, dict):
            raise ParseError("Invalid response: expected a JSON object")
        return payload

    def _result_call(self, action: str, params: Dict[str, str]) -> ValidationResult:
        try:
            payload = self._post(action, params)
        except LicensingError as e:
            logger.error(f"{action} failed: {e}")
            return ValidationResult(False, str(e), error=e)

        if "success" in payload:
            success = payload["success"] is True or str(payload["success"]).lower() == "true"
        elif "result" in payload:
            success = str(payload["result"]).lower() == "success"
        else:
            error = ParseError("Invalid response: missing 'result' field")
            logger.error(f"{action} failed: {error}")
            return ValidationResult(False, str(error), error=error)

        message = str(payload.get("message") or "No message provided")
        logger.debug(f"{action} result: success={success}, message={message}")
        return ValidationResult(success, message)

    def validate(self, license_key: str, device_id: str) -> ValidationResult:
        logger.debug(f"Sending validate request: license_key={_mask(license_key)}, device_id={device_id}")
        return self._result_call("verify", {"license_key": license_key, "device_id": device_id})

    def activate(self, license_key: str, device_id: str) -> ValidationResult:
        logger.debug(f"Sending activate request: license_key={_mask(license_key)}, device_id={device_id}")
        return self._result_call("activate", {"license_key": license_key, "device_id": device_id})

    def get_details(self, license_key: str) -> Union[LicenseDetails, LicenseDetailsError]:
        logger.debug(f"Sending details request: license_key={_mask(license_key)}")
        try:
            payload = self._post("details", {"license_key": license_key})
        except LicensingError as e:
            logger.error(f"details failed: {e}")
            return LicenseDetailsError(str(e), error=e)

        if "license_status" not in payload:
            error = ParseError("Invalid response: missing 'license_status' field")
            return LicenseDetailsError(str(error), error=error)

        status = payload["license_status"]
        if not (status is True or str(status).lower() in ACTIVE_STATUSES + ("true",)):
            message = f"License status: {status} (expected: sold or active)"
            logger.warning(message)
            return LicenseDetailsError(message)

        activation_date = str(payload.get("activation_date") or payload.get("creation_date") or "")
        if not activation_date:
            error = ParseError("Invalid response: missing 'activation_date' field")
            return LicenseDetailsError(str(error), error=error)

        licensed_to, email = parse_owner(payload)
        details = LicenseDetails(
            activation_date=activation_date,
            validity_days=parse_validity(payload),
            edition=str(payload.get("edition") or "Pro"),
            capabilities=str(payload.get("capabilities") or "Full Features"),
            licensed_to=licensed_to,
            email=email,
        )
        logger.debug(f"Parsed license details: licensed_to={details.licensed_to}, "
                     f"validity={details.validity_days} days")
        return details


def parse_validity(payload: Dict[str, Any]) -> int:
    """
    Work out the validity period in days.

    Order: explicit `validity`/`valid` field, perpetual license (no expiration
    date or 0000-00-00), expiration minus creation date, one year.
    """
    for field_name in ("validity", "valid"):
        value = payload.get(field_name)
        try:
            days = int(value)
        except (TypeError, ValueError):
            continue
        if days > 0:
            return days

    expiration_date = str(payload.get("expiration_date") or "")
    creation_date = str(payload.get("creation_date") or "")
    if not expiration_date or expiration_date == "0000-00-00":
        return PERPETUAL_VALIDITY_DAYS

    if creation_date:
        try:
            delta = (datetime.strptime(expiration_date, "%Y-%m-%d")
                     - datetime.strptime(creation_date, "%Y-%m-%d")).days
        except ValueError as e:
            logger.warning(f"Failed to calculate validity period: {e}")
            return DEFAULT_VALIDITY_DAYS
        if delta > 0:
            return delta

    return DEFAULT_VALIDITY_DAYS


def parse_owner(payload: Dict[str, Any]) -> Tuple[str, str]:
    """Return (licensed_to, email) from the details payload."""
    licensed_to = str(payload.get("licensed_to") or "").strip()
    if not licensed_to:
        first_name = str(payload.get("owner_first_name") or "").strip()
        last_name = str(payload.get("owner_last_name") or "").strip()
        licensed_to = " ".join(part for part in (first_name, last_name) if part) or "Licensed User"
    email = str(payload.get("owner_email_address") or payload.get("email") or "")
    return licensed_to, email
