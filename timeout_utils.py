"""
Helpers for bounding remote calls.

call_with_timeout races a function against a deadline and yields a fallback
value instead of raising. The losing call keeps running on its daemon thread
and its result is discarded; there is no cancellation.
"""
import socket
import logging
import threading
from typing import Any, Callable, Optional, TypeVar
from urllib.parse import urlparse

logger = logging.getLogger("TimeoutUtils")

T = TypeVar("T")

_MISSING = object()


def call_with_timeout(func: Callable[[], T], timeout: float, fallback: Any = None,
                      name: Optional[str] = None) -> T:
    """
    Run `func` on a daemon thread and wait at most `timeout` seconds.

    Args:
        func: Zero-argument callable
        timeout: Deadline in seconds
        fallback: Value returned on timeout or when `func` raises
        name: Label used in log messages

    Returns:
        The result of `func`, or `fallback`
    """
    label = name or getattr(func, "__name__", "call")
    done = threading.Event()
    outcome = {"result": _MISSING, "error": None}

    def _runner():
        try:
            outcome["result"] = func()
        except Exception as e:
            outcome["error"] = e
        finally:
            done.set()

    threading.Thread(target=_runner, name=f"timeout-{label}", daemon=True).start()

    if not done.wait(timeout):
        logger.warning(f"{label} timed out after {timeout}s, using fallback")
        return fallback
    if outcome["error"] is not None:
        logger.warning(f"{label} failed: {outcome['error']}, using fallback")
        return fallback
    return outcome["result"]


def is_network_available(url: str, timeout: float = 1.5) -> bool:
    """Check TCP reachability of the host serving `url`."""
    parsed = urlparse(url)
    host = parsed.hostname
    if not host:
        return False
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        logger.debug(f"Network check of {host}:{port} failed: {e}")
        return False
