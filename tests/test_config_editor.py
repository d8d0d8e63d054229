import os
from unittest import mock

import pytest

import config_editor
from config_editor import edit_option, get_settings, load_config, save_config


def test_defaults_without_file(tmp_path):
    settings = get_settings(load_config(str(tmp_path / "missing.ini")))

    assert settings["default_trial_days"] == 10
    assert settings["max_attempts"] == 2
    assert settings["trial_timeout"] == 3.0
    assert settings["license_timeout"] == 5.0
    assert settings["revalidate_minutes"] == 1440.0
    assert settings["block_while_checking"] is False
    assert settings["log_level"] == "INFO"


def test_file_overrides_defaults(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text(
        "[LicenseService]\n"
        "url = https://licenses.example.org/api\n"
        "api_key = abc123\n"
        "[TrialService]\n"
        "default_trial_days = 14\n"
        "[Storage]\n"
        "trial_file = ~/custom_trial\n"
        "[Eligibility]\n"
        "block_while_checking = yes\n"
        "[Logging]\n"
        "level = debug\n"
    )

    settings = get_settings(load_config(str(path)))

    assert settings["license_url"] == "https://licenses.example.org/api"
    assert settings["license_api_key"] == "abc123"
    assert settings["default_trial_days"] == 14
    assert settings["trial_file"] == os.path.expanduser("~/custom_trial")
    assert settings["block_while_checking"] is True
    assert settings["log_level"] == "DEBUG"


def test_invalid_number_raises(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("[TrialService]\ntimeout = soon\n")

    with pytest.raises(ValueError):
        get_settings(load_config(str(path)))


def test_save_round_trip(tmp_path):
    path = str(tmp_path / "config.ini")
    config = load_config(path)
    config["Eligibility"]["app_id"] = "my-app"

    save_config(config, path)

    assert load_config(path)["Eligibility"]["app_id"] == "my-app"


def test_edit_option_retries_until_valid(tmp_path):
    path = str(tmp_path / "config.ini")
    config = load_config(path)

    with mock.patch.object(config_editor.Prompt, "ask", side_effect=["-3", "abc", "21"]):
        edit_option(config, "TrialService", "default_trial_days", "Default trial days", int, path)

    assert load_config(path)["TrialService"]["default_trial_days"] == "21"


def test_edit_option_rejects_insecure_url_when_declined(tmp_path):
    path = str(tmp_path / "config.ini")
    config = load_config(path)

    with mock.patch.object(config_editor.Prompt, "ask", return_value="http://insecure.test"), \
            mock.patch.object(config_editor.Confirm, "ask", return_value=False):
        edit_option(config, "LicenseService", "url", "License service URL", str, path)

    assert not os.path.exists(path)
