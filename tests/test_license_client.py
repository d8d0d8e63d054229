import json
from unittest import mock

import pytest
import requests

from license_client import (
    DEFAULT_VALIDITY_DAYS, PERPETUAL_VALIDITY_DAYS, LicenseServiceClient, looks_like_html,
    parse_owner, parse_validity,
)
from license_errors import EndpointMisconfiguredError, NetworkError, ParseError, ServerError

API_URL = "https://license.test/api"


def make_response(body, status_code=200):
    if not isinstance(body, (str, bytes)):
        body = json.dumps(body)
    if isinstance(body, str):
        body = body.encode()
    response = requests.Response()
    response.status_code = status_code
    response._content = body
    response.encoding = "utf-8"
    return response


@pytest.fixture
def session():
    session = mock.Mock()
    session.headers = {}
    return session


@pytest.fixture
def client(session):
    return LicenseServiceClient(API_URL, "secret-key", timeout=5.0, session=session)


class TestValidate:
    def test_success(self, client, session):
        session.post.return_value = make_response({"result": "success", "message": "License is valid"})

        result = client.validate("ABCD-1234", "device-1")

        assert result.success
        assert result.message == "License is valid"
        assert result.is_definitive
        session.post.assert_called_once_with(API_URL, data={
            "fslm_v2_api_request": "verify",
            "fslm_api_key": "secret-key",
            "license_key": "ABCD-1234",
            "device_id": "device-1",
        }, timeout=5.0)

    def test_boolean_success_field(self, client, session):
        session.post.return_value = make_response({"success": True})
        assert client.validate("ABCD-1234", "device-1").success

    def test_rejection_is_definitive(self, client, session):
        session.post.return_value = make_response({"result": "error", "message": "Invalid license key"})

        result = client.validate("ABCD-1234", "device-1")

        assert not result.success
        assert result.is_definitive
        assert result.message == "Invalid license key"

    def test_timeout_is_network_error(self, client, session):
        session.post.side_effect = requests.Timeout("read timed out")

        result = client.validate("ABCD-1234", "device-1")

        assert not result.success
        assert isinstance(result.error, NetworkError)
        assert not result.is_definitive

    def test_html_page_is_misconfigured_endpoint(self, client, session):
        session.post.return_value = make_response("<!DOCTYPE html><html><body>Not found</body></html>", 404)

        result = client.validate("ABCD-1234", "device-1")

        assert isinstance(result.error, EndpointMisconfiguredError)
        assert result.error.status_code == 404

    def test_server_error(self, client, session):
        session.post.return_value = make_response("Internal Server Error", 500)

        result = client.validate("ABCD-1234", "device-1")

        assert isinstance(result.error, ServerError)
        assert result.error.status_code == 500

    def test_empty_body(self, client, session):
        session.post.return_value = make_response("   ")
        assert isinstance(client.validate("ABCD-1234", "device-1").error, ServerError)

    @pytest.mark.parametrize("body", ["{not json", "[1, 2]", json.dumps({"message": "no result"})])
    def test_malformed_payload(self, client, session, body):
        session.post.return_value = make_response(body)
        assert isinstance(client.validate("ABCD-1234", "device-1").error, ParseError)


def test_activate_uses_activate_action(client, session):
    session.post.return_value = make_response({"result": "success", "message": "Activated"})

    result = client.activate("ABCD-1234", "device-1")

    assert result.success
    assert session.post.call_args.kwargs["data"]["fslm_v2_api_request"] == "activate"


class TestDetails:
    def test_parses_details(self, client, session):
        session.post.return_value = make_response({
            "license_status": "active",
            "activation_date": "2025-01-01",
            "valid": "30",
            "owner_first_name": "Jane",
            "owner_last_name": "Doe",
            "owner_email_address": "jane@example.com",
            "edition": "Enterprise",
        })

        details = client.get_details("ABCD-1234")

        assert details.success
        assert details.activation_date == "2025-01-01"
        assert details.validity_days == 30
        assert details.edition == "Enterprise"
        assert details.capabilities == "Full Features"
        assert details.licensed_to == "Jane Doe"
        assert details.email == "jane@example.com"
        assert session.post.call_args.kwargs["data"]["fslm_v2_api_request"] == "details"

    def test_creation_date_used_when_activation_missing(self, client, session):
        session.post.return_value = make_response({
            "license_status": "sold",
            "creation_date": "2025-02-01",
            "expiration_date": "2025-03-01",
        })

        details = client.get_details("ABCD-1234")

        assert details.activation_date == "2025-02-01"
        assert details.validity_days == 28

    def test_inactive_license_is_definitive_rejection(self, client, session):
        session.post.return_value = make_response({"license_status": "expired", "activation_date": "2025-01-01"})

        details = client.get_details("ABCD-1234")

        assert not details.success
        assert details.is_definitive
        assert "expired" in details.message

    def test_missing_status_is_parse_error(self, client, session):
        session.post.return_value = make_response({"activation_date": "2025-01-01"})

        details = client.get_details("ABCD-1234")

        assert not details.success
        assert isinstance(details.error, ParseError)

    def test_network_failure(self, client, session):
        session.post.side_effect = requests.ConnectionError("refused")

        details = client.get_details("ABCD-1234")

        assert isinstance(details.error, NetworkError)
        assert not details.is_definitive


class TestParsing:
    def test_explicit_validity(self):
        assert parse_validity({"validity": 90}) == 90

    def test_perpetual_license(self):
        assert parse_validity({"creation_date": "2025-01-01", "expiration_date": "0000-00-00"}) == PERPETUAL_VALIDITY_DAYS
        assert parse_validity({}) == PERPETUAL_VALIDITY_DAYS

    def test_unparseable_dates_default_to_one_year(self):
        assert parse_validity({"creation_date": "soon", "expiration_date": "later"}) == DEFAULT_VALIDITY_DAYS

    def test_expiration_without_creation_defaults_to_one_year(self):
        assert parse_validity({"expiration_date": "2026-01-01"}) == DEFAULT_VALIDITY_DAYS

    def test_owner_fallbacks(self):
        assert parse_owner({"licensed_to": "ACME Corp"}) == ("ACME Corp", "")
        assert parse_owner({"owner_first_name": "Jane"}) == ("Jane", "")
        assert parse_owner({"email": "x@example.com"}) == ("Licensed User", "x@example.com")

    def test_looks_like_html(self):
        assert looks_like_html("  <html><head></head></html>")
        assert not looks_like_html('{"result": "success"}')
