import sys
import logging
import argparse
import configparser
from concurrent.futures import TimeoutError as FutureTimeoutError

from rich.prompt import Prompt, Confirm

from console_utils import (
    print_header, print_menu, print_info, print_success,
    print_warning, print_error, print_status, clear_screen,
    console, StatusDisplay
)
from config_editor import load_config, get_settings, edit_config, CONFIG_FILE
from license_errors import StorageError
from license_manager import build_eligibility_manager


def setup_logging(level_name):
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def show_status(manager, revalidate_minutes=24 * 60):
    """Print the current snapshot, verifying first if it is stale."""
    if manager.should_revalidate(revalidate_minutes):
        verify(manager)
    else:
        print_status(*manager.snapshot())


def verify(manager, force=False):
    display = StatusDisplay(manager)
    try:
        eligible = display.run_verification(force=force)
    except FutureTimeoutError:
        print_warning("Verification is still running, showing the last known status")
        eligible = manager.has_eligibility
    print_status(*manager.snapshot())
    if eligible:
        print_success("This installation is eligible to use the application")
    else:
        print_error("This installation is not eligible, please activate a license")
    return eligible


def activate(manager, license_key):
    print_info("Activating license...")
    result = manager.activate_license(license_key)
    if result.success:
        print_success(result.message)
    else:
        print_error(result.message)
    print_status(*manager.snapshot())
    return result.success


def show_trial(manager):
    trial_manager = manager.trial_manager
    try:
        valid = trial_manager.is_trial_valid(manager.device_id, manager.app_id)
        remaining_days = trial_manager.get_remaining_days(manager.device_id, manager.app_id)
        end_date = trial_manager.get_trial_end_date()
    except StorageError as e:
        print_error(f"Trial data could not be read: {e}")
        return False

    if valid:
        print_success(f"Trial active, {remaining_days} days remaining")
    else:
        print_warning("Trial expired")
    if end_date:
        print_info(f"Trial ends on {end_date:%Y-%m-%d %H:%M}")
    return valid


def reset_trial(manager):
    if manager.trial_manager.clear_trial_data():
        manager.reset_license_status()
        print_success("Trial data cleared")
        return True
    print_error("Failed to clear trial data")
    return False


def clear_license(manager):
    if manager.clear_license():
        manager.reset_license_status()
        print_success("License removed from this installation")
        return True
    print_error("Failed to clear the license record")
    return False


def interactive_menu(manager, revalidate_minutes=24 * 60):
    """Main application entry point with menu system."""
    options = [
        ("1", "Show Status"),
        ("2", "Verify Now"),
        ("3", "Activate License"),
        ("4", "Trial Information"),
        ("5", "Change Configuration"),
        ("6", "Reset Trial Data"),
        ("7", "Remove License"),
        ("q", "Exit")
    ]

    while True:
        clear_screen()
        print_header("Entitlement Gate", manager.eligibility_info.display_message)
        print_menu("Select an Option", options)

        choice = Prompt.ask(
            "Select an option",
            choices=[key for key, _ in options] + ["Q"],
            default="q"
        )

        if choice.lower() == 'q':
            print_info("Exiting...")
            break

        if choice == '1':
            show_status(manager, revalidate_minutes)
        elif choice == '2':
            verify(manager, force=True)
        elif choice == '3':
            license_key = Prompt.ask("Enter your license key")
            activate(manager, license_key)
        elif choice == '4':
            show_trial(manager)
        elif choice == '5':
            edit_config()
            print_warning("Restart to apply configuration changes")
        elif choice == '6':
            if Confirm.ask("Remove all trial data from this machine?"):
                reset_trial(manager)
        elif choice == '7':
            if Confirm.ask("Remove the stored license?"):
                clear_license(manager)

        console.print()
        Prompt.ask("Press Enter to continue")


def build_parser():
    parser = argparse.ArgumentParser(description="Check and manage the entitlement of this installation")
    parser.add_argument("--config", default=CONFIG_FILE, help="Path to config.ini")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", help="Show the current entitlement status")
    verify_parser = subparsers.add_parser("verify", help="Verify license and trial now")
    verify_parser.add_argument("--force", action="store_true", help="Cold resync, ignoring cached trial state")
    activate_parser = subparsers.add_parser("activate", help="Activate a license key")
    activate_parser.add_argument("key", help="License key")
    subparsers.add_parser("trial", help="Show trial information")
    subparsers.add_parser("reset-trial", help="Remove all trial data")
    subparsers.add_parser("clear-license", help="Remove the stored license")
    subparsers.add_parser("config", help="Edit the configuration")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.command == "config":
        edit_config(args.config)
        return 0

    try:
        settings = get_settings(load_config(args.config))
    except (configparser.Error, ValueError) as e:
        print_error(f"Invalid configuration in {args.config}: {e}")
        return 2

    setup_logging(settings['log_level'])
    manager = build_eligibility_manager(settings)

    try:
        if args.command is None:
            interactive_menu(manager, settings['revalidate_minutes'])
            return 0
        if args.command == "status":
            show_status(manager, settings['revalidate_minutes'])
            return 0 if manager.has_eligibility else 1
        if args.command == "verify":
            if args.force:
                eligible = manager.force_revalidate_and_sync()
                print_status(*manager.snapshot())
                return 0 if eligible else 1
            return 0 if verify(manager) else 1
        if args.command == "activate":
            return 0 if activate(manager, args.key) else 1
        if args.command == "trial":
            return 0 if show_trial(manager) else 1
        if args.command == "reset-trial":
            return 0 if reset_trial(manager) else 1
        if args.command == "clear-license":
            return 0 if clear_license(manager) else 1
    except KeyboardInterrupt:
        print_info("Interrupted")
        return 130
    finally:
        manager.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
