"""
Configuration for the entitlement gate: config.ini loading, defaults and an interactive editor.
"""
import os
import configparser
from console_utils import (
    console, print_header, print_info, print_success,
    print_warning, print_error, clear_screen
)
from rich.prompt import Prompt, Confirm

CONFIG_FILE = 'config.ini'

DEFAULTS = {
    'LicenseService': {
        'url': 'https://license.example.com/api',
        'api_key': '',
        'timeout': '10',
    },
    'TrialService': {
        'start_url': 'https://trial.example.com/api/trial/start',
        'verify_url': 'https://trial.example.com/api/trial/verify',
        'timeout': '3',
        'max_retries': '2',
        'retry_delay': '1',
        'default_trial_days': '10',
    },
    'Storage': {
        'license_db': 'sqlite:///license_records.db',
        'trial_file': os.path.join(os.path.expanduser('~'), '.entitlement_trial'),
    },
    'Eligibility': {
        'app_id': 'entitlement-gate',
        'device_id': '',
        'license_timeout': '5',
        'revalidate_minutes': '1440',
        'block_while_checking': 'false',
    },
    'Logging': {
        'level': 'INFO',
    },
}

# (section, option, label, kind) shown by the editor
EDITABLE_OPTIONS = [
    ('LicenseService', 'url', 'License service URL', str),
    ('LicenseService', 'api_key', 'License API key', str),
    ('TrialService', 'start_url', 'Trial start URL', str),
    ('TrialService', 'verify_url', 'Trial verify URL', str),
    ('TrialService', 'default_trial_days', 'Default trial days', int),
    ('Eligibility', 'app_id', 'Application id', str),
    ('Eligibility', 'revalidate_minutes', 'Revalidate after (minutes)', float),
    ('Eligibility', 'block_while_checking', 'Block while checking (true/false)', bool),
    ('Logging', 'level', 'Log level', str),
]


def load_config(path=CONFIG_FILE):
    """Load the configuration from the config file, on top of the built-in defaults."""
    config = configparser.ConfigParser()
    config.read_dict(DEFAULTS)
    config.read(path)
    return config


def save_config(config, path=CONFIG_FILE):
    """Save the configuration to the config file."""
    with open(path, 'w') as f:
        config.write(f)
    print_success(f"Configuration saved to {path}")


def get_settings(config=None):
    """
    Flatten the configuration into the typed settings used to build the managers.

    Raises:
        ValueError: If a numeric or boolean option can't be parsed
    """
    config = config or load_config()
    license_service = config['LicenseService']
    trial_service = config['TrialService']
    storage = config['Storage']
    eligibility = config['Eligibility']

    return {
        'license_url': license_service.get('url'),
        'license_api_key': license_service.get('api_key'),
        'license_http_timeout': license_service.getfloat('timeout'),
        'trial_start_url': trial_service.get('start_url'),
        'trial_verify_url': trial_service.get('verify_url'),
        'trial_timeout': trial_service.getfloat('timeout'),
        'max_attempts': trial_service.getint('max_retries'),
        'retry_delay': trial_service.getfloat('retry_delay'),
        'default_trial_days': trial_service.getint('default_trial_days'),
        'license_db': storage.get('license_db'),
        'trial_file': os.path.expanduser(storage.get('trial_file')),
        'app_id': eligibility.get('app_id'),
        'device_id': eligibility.get('device_id'),
        'license_timeout': eligibility.getfloat('license_timeout'),
        'revalidate_minutes': eligibility.getfloat('revalidate_minutes'),
        'block_while_checking': eligibility.getboolean('block_while_checking'),
        'log_level': config['Logging'].get('level', 'INFO').upper(),
    }


def _validate(value, kind):
    if kind is int:
        if int(value) <= 0:
            raise ValueError("must be greater than 0")
    elif kind is float:
        if float(value) <= 0:
            raise ValueError("must be greater than 0")
    elif kind is bool:
        if value.lower() not in configparser.ConfigParser.BOOLEAN_STATES:
            raise ValueError("must be true or false")
    return value


def edit_option(config, section, option, label, kind, path=CONFIG_FILE):
    """Prompt for a new value of one option and save it."""
    current = config[section][option]
    print_info(f"Current {label.lower()}: {current}")

    while True:
        new_value = Prompt.ask(f"Enter new {label.lower()}", default=current)
        try:
            _validate(new_value, kind)
            break
        except ValueError as e:
            print_error(f"Invalid value: {e}")

    if section == 'LicenseService' and option == 'url' and not new_value.startswith('https://'):
        if not Confirm.ask("The URL does not use https. Keep it anyway?"):
            print_warning("URL not changed")
            return

    config[section][option] = new_value
    save_config(config, path)


def edit_config(path=CONFIG_FILE):
    """Main function to edit the configuration."""
    config = load_config(path)

    while True:
        clear_screen()
        print_header("Configuration Editor", "Entitlement Gate")

        console.print("[bold]Current Configuration:[/bold]")
        for number, (section, option, label, _) in enumerate(EDITABLE_OPTIONS, start=1):
            value = config[section][option]
            if option == 'api_key' and value:
                value = f"{value[:4]}..."
            console.print(f"{number}. {label}: {value}")
        console.print()

        choices = [str(n) for n in range(1, len(EDITABLE_OPTIONS) + 1)] + ["q", "Q"]
        choice = Prompt.ask("Select option to edit (or 'q' to quit)", choices=choices, default="q")

        if choice.lower() == 'q':
            break

        section, option, label, kind = EDITABLE_OPTIONS[int(choice) - 1]
        edit_option(config, section, option, label, kind, path)

        # Reload config after changes
        config = load_config(path)

        console.print()
        Prompt.ask("Press Enter to continue")


if __name__ == "__main__":
    edit_config()
