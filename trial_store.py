"""
Trial anchor store.

Keeps the trial's first-launch anchor, the issued token/signature, the trial
length and the expired flag in a single JSON document, encrypted at rest with a
key derived from the machine id. This is a pure storage contract: no network,
no defaults. Any I/O or decryption failure raises StorageError.
"""
import os
import json
import uuid
import base64
import hashlib
import logging
import platform
import tempfile
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from license_errors import StorageError

logger = logging.getLogger("TrialAnchorStore")

DEFAULT_TRIAL_FILE = os.path.join(os.path.expanduser("~"), ".entitlement_trial")

# Persisted keys
KEY_FIRST_LAUNCH = "first_launch_time"
KEY_SERVER_FIRST_LAUNCH = "server_first_launch_time"
KEY_TOKEN = "trial_token"
KEY_SIGNATURE = "signature"
KEY_EXPIRES = "expires_in_days"
KEY_EXPIRED = "trial_expired"


def get_machine_id() -> str:
    """
    Get a stable identifier for this machine.

    Returns:
        A hash string uniquely identifying the machine
    """
    machine_id = platform.node() + platform.machine() + platform.processor()

    # MAC address of the first adapter; uuid falls back to a random value
    # (multicast bit set) when no hardware address is available.
    node = uuid.getnode()
    if not (node >> 40) & 0x01:
        machine_id += f"{node:012x}"

    return hashlib.sha256(machine_id.encode()).hexdigest()


def get_encryption_key(salt: bytes = b"EntitlementTrialSalt", machine_id: Optional[str] = None) -> bytes:
    """Derive the Fernet key from the machine id."""
    machine_id = machine_id or get_machine_id()
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(machine_id.encode()))


@dataclass(frozen=True)
class TrialAnchor:
    first_launch_time: int = 0
    server_first_launch_time: Optional[int] = None
    trial_token: Optional[str] = None
    trial_signature: Optional[str] = None
    trial_duration_days: Optional[int] = None
    expired: bool = False

    @property
    def effective_first_launch_time(self) -> int:
        """The server-reported anchor wins over the local one."""
        return self.server_first_launch_time or self.first_launch_time

    @property
    def has_token(self) -> bool:
        return bool(self.trial_token) and bool(self.trial_signature)


class TrialAnchorStore:
    """Encrypted, file-backed key/value store for the trial state."""

    def __init__(self, path: str = DEFAULT_TRIAL_FILE, key: Optional[bytes] = None):
        """
        Args:
            path: Location of the encrypted trial file
            key: Fernet key; derived from the machine id when omitted
        """
        self.path = path
        self._fernet = Fernet(key or get_encryption_key())
        self._lock = threading.RLock()
        self._listeners: List[Callable[[], None]] = []

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback invoked after every write."""
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback()

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "rb") as f:
                encrypted_data = f.read()
        except OSError as e:
            raise StorageError(f"Failed to read trial data from {self.path}: {e}") from e

        if not encrypted_data:
            return {}
        try:
            return json.loads(self._fernet.decrypt(encrypted_data))
        except InvalidToken as e:
            raise StorageError(f"Trial data at {self.path} could not be decrypted") from e
        except ValueError as e:
            raise StorageError(f"Trial data at {self.path} is corrupted: {e}") from e

    def _write(self, data: Dict[str, Any]) -> None:
        encrypted_data = self._fernet.encrypt(json.dumps(data).encode())
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".trial-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(encrypted_data)
                os.replace(tmp_path, self.path)
            except OSError:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write trial data to {self.path}: {e}") from e
        logger.debug(f"Trial data saved to file: {self.path}")

    def _update(self, **values: Any) -> None:
        with self._lock:
            data = self._read()
            data.update(values)
            self._write(data)
        self._notify()

    def load(self) -> TrialAnchor:
        with self._lock:
            data = self._read()
        return TrialAnchor(
            first_launch_time=int(data.get(KEY_FIRST_LAUNCH) or 0),
            server_first_launch_time=data.get(KEY_SERVER_FIRST_LAUNCH) or None,
            trial_token=data.get(KEY_TOKEN),
            trial_signature=data.get(KEY_SIGNATURE),
            trial_duration_days=data.get(KEY_EXPIRES),
            expired=bool(data.get(KEY_EXPIRED, False)),
        )

    def get_first_launch_time(self) -> int:
        """Effective anchor in epoch ms, 0 if none was committed yet."""
        return self.load().effective_first_launch_time

    def get_or_init_first_launch_time(self, now_ms: int) -> int:
        """Return the effective anchor, committing `now_ms` as the local anchor if there is none."""
        with self._lock:
            anchor = self.load()
            if anchor.effective_first_launch_time:
                return anchor.effective_first_launch_time
            self._update(**{KEY_FIRST_LAUNCH: int(now_ms)})
        logger.debug(f"Initialized first launch time: {now_ms}")
        return int(now_ms)

    def set_server_first_launch_time(self, first_launch_ms: int) -> bool:
        """
        Commit the server-reported anchor.

        Returns:
            True if it was stored, False if a server anchor was already committed
        """
        with self._lock:
            if self.load().server_first_launch_time:
                return False
            self._update(**{KEY_SERVER_FIRST_LAUNCH: int(first_launch_ms)})
        return True

    def save_trial(self, token: str, signature: str, days: int) -> None:
        self._update(**{KEY_TOKEN: token, KEY_SIGNATURE: signature, KEY_EXPIRES: int(days)})

    def set_trial_duration(self, days: int) -> None:
        self._update(**{KEY_EXPIRES: int(days)})

    def get_trial_duration(self) -> Optional[int]:
        return self.load().trial_duration_days

    def get_token(self) -> Optional[str]:
        return self.load().trial_token

    def get_signature(self) -> Optional[str]:
        return self.load().trial_signature

    def mark_expired(self) -> None:
        self._update(**{KEY_EXPIRED: True})

    def is_expired(self) -> bool:
        return self.load().expired

    def clear(self) -> None:
        with self._lock:
            try:
                if os.path.exists(self.path):
                    os.remove(self.path)
            except OSError as e:
                raise StorageError(f"Failed to remove trial data at {self.path}: {e}") from e
        self._notify()
        logger.debug("Cleared trial data")
