"""
Console utilities for rendering entitlement status in the terminal.
"""
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.live import Live
from rich.align import Align
from rich import box
from datetime import datetime
import os
import threading

from license_status import EligibilityStatus, LicenseStatus

# Initialize Rich console
console = Console()

# Color constants
COLOR_PRIMARY = "cyan"
COLOR_SECONDARY = "green"
COLOR_ACCENT = "yellow"
COLOR_WARNING = "red"
COLOR_INFO = "blue"

ELIGIBILITY_COLORS = {
    EligibilityStatus.ELIGIBLE: COLOR_SECONDARY,
    EligibilityStatus.CHECKING: COLOR_INFO,
    EligibilityStatus.UNKNOWN: COLOR_ACCENT,
    EligibilityStatus.INELIGIBLE: COLOR_WARNING,
}


def clear_screen():
    """Clear the console screen."""
    os.system('cls' if os.name == 'nt' else 'clear')


def print_header(title, subtitle=None):
    """Print a styled header with optional subtitle."""
    clear_screen()
    console.print()
    text = Text(title, style=f"bold {COLOR_PRIMARY}")
    if subtitle:
        text.append(f"\n{subtitle}", style=COLOR_SECONDARY)
    console.print(Align.center(Panel(text, box=box.DOUBLE, expand=False, padding=(1, 10))))
    console.print()


def print_menu(title, options, footer=None):
    """
    Print a styled menu with options.

    Args:
        title (str): The menu title
        options (list): List of (key, description) tuples
        footer (str, optional): Optional footer text
    """
    print_header(title)

    table = Table(show_header=False, box=box.SIMPLE, expand=False)
    table.add_column("Key", style=f"bold {COLOR_ACCENT}")
    table.add_column("Description")

    for key, description in options:
        table.add_row(f"[{key}]", description)

    console.print(Align.center(table))
    console.print()

    if footer:
        console.print(Align.center(Text(footer, style="italic")))
        console.print()


def print_info(message):
    """Print an info message."""
    console.print(f"[{COLOR_INFO}]ℹ {message}[/{COLOR_INFO}]")


def print_success(message):
    """Print a success message."""
    console.print(f"[{COLOR_SECONDARY}]✓ {message}[/{COLOR_SECONDARY}]")


def print_warning(message):
    """Print a warning message."""
    console.print(f"[{COLOR_WARNING}]⚠ {message}[/{COLOR_WARNING}]")


def print_error(message):
    """Print an error message."""
    console.print(f"[bold {COLOR_WARNING}]✗ {message}[/bold {COLOR_WARNING}]")


def format_timestamp(epoch_ms):
    """Format an epoch-ms timestamp, or 'Never' for 0."""
    if not epoch_ms:
        return "Never"
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def build_status_panel(license_info, eligibility_info):
    """Build a panel summarizing one published status snapshot."""
    color = ELIGIBILITY_COLORS.get(eligibility_info.status, COLOR_PRIMARY)

    table = Table(show_header=False, box=box.SIMPLE, expand=False)
    table.add_column("Field", style=f"bold {COLOR_PRIMARY}")
    table.add_column("Value")

    table.add_row("Eligibility", f"[{color}]{eligibility_info.status.name}[/{color}]")
    table.add_row("Source", eligibility_info.source.name)
    table.add_row("License status", license_info.status.name)
    if eligibility_info.is_licensed:
        table.add_row("Licensed to", license_info.licensed_to or "-")
        table.add_row("Edition", license_info.edition or "-")
        table.add_row("Capabilities", license_info.capabilities or "-")
        table.add_row("Expires", eligibility_info.license_end_date or "-")
    if license_info.status != LicenseStatus.VALID:
        table.add_row("Trial days remaining", str(eligibility_info.trial_days_remaining))
    table.add_row("Last verified", format_timestamp(license_info.last_verified_time))

    return Panel(
        table,
        title="Entitlement Status",
        subtitle=eligibility_info.display_message,
        border_style=color,
    )


def print_status(license_info, eligibility_info):
    console.print(Align.center(build_status_panel(license_info, eligibility_info)))


class StatusDisplay:
    """Live panel that redraws whenever the manager publishes a new status."""

    def __init__(self, manager):
        """
        Args:
            manager: EligibilityManager whose status is shown
        """
        self.manager = manager
        self.live = None
        self.settled = threading.Event()

    def _on_status(self, license_info, eligibility_info):
        if self.live:
            self.live.update(build_status_panel(license_info, eligibility_info))
        if eligibility_info.status != EligibilityStatus.CHECKING:
            self.settled.set()

    def run_verification(self, force=False, timeout=30):
        """Start a verification and show its progress until a status other than CHECKING is published."""
        license_info, eligibility_info = self.manager.snapshot()
        self.settled.clear()
        with Live(build_status_panel(license_info, eligibility_info), console=console,
                  refresh_per_second=4) as live:
            self.live = live
            self.manager.subscribe(self._on_status)
            try:
                future = self.manager.verify_license(force=force)
                future.result(timeout=timeout)
                self.settled.wait(timeout)
            finally:
                self.manager.unsubscribe(self._on_status)
                self.live = None
        return self.manager.has_eligibility
