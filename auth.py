"""
auth.py – PIN authentication and setup status.

This module contains AuthManager, which owns every authentication rule in
the application:

  - Setup status: whether a PIN has been configured (the startup routing
    in bootstrap.py asks this through is_configured()).
  - First run: validate and store a new PIN.
  - Subsequent runs: verify a PIN, count failed attempts and lock the
    login for a while once too many wrong PINs were entered.
  - PIN change: verify the current PIN, then store a new one.
  - Session: remember a successful login and lock it again after
    auto_lock_minutes without user activity.

AuthManager depends on CryptoManager (salt / key-check files) and AppConfig
(lockout settings and persisted attempt counters) but never touches Tkinter.
The PIN screens live in ui.py and only call the public methods below; the
idle timer is driven from there too, via touch() and check_auto_lock().
"""

import enum
import logging
import os
import time
from typing import Callable, Optional

from config import APP_NAME, DEFAULT_CONFIG, PIN_MAX_LENGTH, PIN_MIN_LENGTH

logger = logging.getLogger(APP_NAME)


class AuthError(Exception):
    """Base class for authentication failures."""


class PinValidationError(AuthError, ValueError):
    """
    Raised by AuthManager.setup_pin() when a PIN is rejected.

    Attributes
    ----------
    field : str or None
        The name of the offending input ('pin', 'confirm' or 'current').
        Used by the PIN screens to focus the correct Entry widget.
    """

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field: Optional[str] = field


class CredentialStoreError(AuthError):
    """Raised when the stored credentials are unreadable or incomplete."""


class AuthResult(enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    LOCKED_OUT = "locked_out"
    NOT_CONFIGURED = "not_configured"


class AuthManager:
    """
    Manages PIN setup, PIN login and the failed-attempt lockout.

    Parameters
    ----------
    config : AppConfig
        File paths, lockout policy and the persisted attempt counter.
    crypto : CryptoManager
        Stores and verifies the PIN through the salt and key-check files.
    clock : callable, optional
        Returns the current time in seconds (defaults to time.time).
    """

    def __init__(self, config, crypto, clock: Callable[[], float] = time.time) -> None:
        self.config = config
        self.crypto = crypto
        self.clock  = clock

        # In-memory session; never persisted, so every launch starts locked.
        self._authenticated: bool = False
        self._last_activity: float = 0.0

    # ------------------------------------------------------------------
    # Setup status
    # ------------------------------------------------------------------

    async def is_configured(self) -> bool:
        """
        Return True when a PIN has been set up.

        Both credential files must be present; if only one of them exists
        the store is inconsistent and CredentialStoreError is raised so the
        user is told instead of being sent to a flow that cannot work.
        """
        cfg = self.config
        has_salt     = os.path.exists(cfg.salt_path)
        has_keycheck = os.path.exists(cfg.keycheck_path)

        if has_salt and has_keycheck:
            try:
                if os.path.getsize(cfg.salt_path) == 0:
                    raise CredentialStoreError("Stored PIN salt is empty.")
            except OSError as exc:
                raise CredentialStoreError(f"Cannot read stored PIN: {exc}") from exc
            return True
        if has_salt or has_keycheck:
            missing = "key-check file" if has_salt else "salt file"
            raise CredentialStoreError(f"Stored PIN is incomplete: {missing} is missing.")
        return False

    # ------------------------------------------------------------------
    # PIN setup
    # ------------------------------------------------------------------

    @staticmethod
    def validate_pin(pin: str, confirm: Optional[str] = None) -> None:
        """
        Check *pin* (and *confirm*, when given) against the PIN rules.

        Raises PinValidationError naming the offending field.
        """
        if not pin:
            raise PinValidationError("PIN cannot be empty.", field="pin")
        if not pin.isdigit():
            raise PinValidationError("PIN must contain digits only.", field="pin")
        if not PIN_MIN_LENGTH <= len(pin) <= PIN_MAX_LENGTH:
            raise PinValidationError(
                f"PIN must be between {PIN_MIN_LENGTH}-{PIN_MAX_LENGTH} digits.", field="pin"
            )
        if confirm is not None and confirm != pin:
            raise PinValidationError("PINs did not match. Please try again.", field="confirm")

    def setup_pin(self, pin: str, confirm: Optional[str] = None) -> None:
        """
        Validate and store a new PIN, replacing any existing one.

        The failed-attempt counter and any lockout are cleared.
        """
        self.validate_pin(pin, confirm)
        self.crypto.store_secret(pin)
        self._reset_failed_attempts()
        logger.info("PIN configured")

    def change_pin(self, current: str, new: str, confirm: Optional[str] = None) -> None:
        """
        Replace the stored PIN after checking *current*.

        Raises CredentialStoreError when no PIN is set up, and
        PinValidationError (field 'current') when *current* is wrong or
        (fields 'pin' / 'confirm') when the new PIN is rejected.  A wrong
        current PIN does not count towards the login lockout.
        """
        if self.crypto.load_salt() is None:
            raise CredentialStoreError("No PIN is set up yet.")
        if not current or not self.crypto.verify_secret(current):
            logger.warning("PIN change rejected: current PIN incorrect")
            raise PinValidationError("Current PIN is incorrect.", field="current")
        self.setup_pin(new, confirm)
        logger.info("PIN changed")

    # ------------------------------------------------------------------
    # PIN login
    # ------------------------------------------------------------------

    def authenticate_with_pin(self, pin: str) -> AuthResult:
        """
        Verify *pin* against the stored credentials.

        Every wrong PIN increments the persisted counter; reaching
        max_pin_attempts starts a lockout of lockout_minutes, during which
        LOCKED_OUT is returned without checking the PIN.
        """
        if self.crypto.load_salt() is None:
            return AuthResult.NOT_CONFIGURED

        if self.lockout_remaining() > 0:
            logger.warning("PIN attempt rejected: login locked")
            return AuthResult.LOCKED_OUT

        if pin and self.crypto.verify_secret(pin):
            self._reset_failed_attempts()
            self._authenticated = True
            self._last_activity = self.clock()
            logger.info("PIN verified")
            return AuthResult.SUCCESS

        attempts = int(self.config.get("failed_pin_attempts", 0) or 0) + 1
        if attempts >= self.max_attempts:
            lockout_until = self.clock() + self.lockout_seconds
            self.config.set("lockout_until", lockout_until)
            self.config.set("failed_pin_attempts", 0)
            logger.warning("Too many failed PIN attempts; locked for %d minutes",
                           self.lockout_seconds // 60)
        else:
            self.config.set("failed_pin_attempts", attempts)
            logger.warning("Invalid PIN (attempt %d of %d)", attempts, self.max_attempts)
        self.config.save()
        return AuthResult.FAILED

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    @property
    def max_attempts(self) -> int:
        return int(self.config.get("max_pin_attempts", DEFAULT_CONFIG["max_pin_attempts"]))

    @property
    def lockout_seconds(self) -> int:
        return int(self.config.get("lockout_minutes", DEFAULT_CONFIG["lockout_minutes"])) * 60

    def lockout_remaining(self) -> float:
        """Seconds left in the current lockout, or 0 when not locked."""
        until = float(self.config.get("lockout_until", 0.0) or 0.0)
        return max(0.0, until - self.clock())

    def remaining_attempts(self) -> int:
        """Wrong PINs still accepted before the next lockout."""
        if self.lockout_remaining() > 0:
            return 0
        return max(0, self.max_attempts - int(self.config.get("failed_pin_attempts", 0) or 0))

    # ------------------------------------------------------------------
    # Session and auto-lock
    # ------------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    @property
    def auto_lock_seconds(self) -> float:
        """Idle time before the session locks; 0 disables auto-lock."""
        minutes = self.config.get("auto_lock_minutes", DEFAULT_CONFIG["auto_lock_minutes"])
        return float(minutes or 0) * 60

    def lock(self) -> None:
        if self._authenticated:
            logger.info("Session locked")
        self._authenticated = False

    def touch(self) -> None:
        """Record user activity, pushing the auto-lock deadline back."""
        if self._authenticated:
            self._last_activity = self.clock()

    def idle_remaining(self) -> Optional[float]:
        """
        Seconds until the session auto-locks.

        None when nobody is logged in or auto-lock is disabled.
        """
        if not self._authenticated or self.auto_lock_seconds <= 0:
            return None
        return max(0.0, self._last_activity + self.auto_lock_seconds - self.clock())

    def check_auto_lock(self) -> bool:
        """Lock the session if it has been idle too long; True if it locked."""
        remaining = self.idle_remaining()
        if remaining is not None and remaining <= 0:
            logger.info("Auto-lock after %g minutes idle", self.auto_lock_seconds / 60)
            self.lock()
            return True
        return False

    def _reset_failed_attempts(self) -> None:
        self.config.set("failed_pin_attempts", 0)
        self.config.set("lockout_until", 0.0)
        self.config.save()
