"""
config.py – Application configuration and constants.

This module defines AppConfig, a central container for:
  - All application-wide constants (app name, version, PIN rules, …).
  - The user configuration (splash duration, setup-check timeout, lockout
    policy, …) stored as a JSON file on disk and exposed through a simple
    dict-like interface.
  - OS-appropriate data-directory resolution and logger setup.

No other application module is imported here, so config.py sits at the bottom
of the dependency graph and can be safely imported by any other module.
"""

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

import appdirs

# ---------------------------------------------------------------------------
# Application-level constants – these never change at runtime.
# ---------------------------------------------------------------------------

APP_NAME = "NebulaExpense"

# Human-readable name and version shown on the splash screen.
APP_TITLE = "Nebula Expense"
APP_VERSION = "1.0.0"
APP_DESCRIPTION = "Offline expense tracker"

# Allowed PIN length (inclusive bounds).
PIN_MIN_LENGTH = 4
PIN_MAX_LENGTH = 8

# ---------------------------------------------------------------------------
# Default values written to config.json on first run.
# ---------------------------------------------------------------------------
DEFAULT_CONFIG: dict = {
    # Minimum time the splash screen stays up, in seconds.
    "min_splash_seconds": 2.0,
    # Seconds allowed for the setup-status check (None or 0 = wait forever).
    "setup_check_timeout": None,
    # Wrong PINs accepted before the login is locked.
    "max_pin_attempts": 5,
    # Length of a lockout, in minutes.
    "lockout_minutes": 30,
    # Idle minutes before an unlocked session locks again (0 = never).
    "auto_lock_minutes": 5,
    # PBKDF2 iterations used to derive the PIN key.
    "kdf_iterations": 390_000,
    # Persisted login state.
    "failed_pin_attempts": 0,
    "lockout_until": 0.0,
}


class AppConfig:
    """
    Manages application configuration, file paths and logging.

    On instantiation the class:
      1. Resolves the OS-appropriate user-data directory (or uses
         *data_dir* when given).
      2. Derives all relevant file paths from that directory.
      3. Sets up a rotating log handler.
      4. Loads (or creates) the JSON configuration file.

    Attributes
    ----------
    user_data_dir : str
        Absolute path of the directory that stores all persistent data.
    salt_path : str
        16-byte random salt used for PBKDF2 key derivation.
    keycheck_path : str
        Small Fernet token used to verify the PIN at login.
    config_path : str
        JSON configuration file.
    log_path : str
        Rotating application log.
    data : dict
        The currently loaded configuration values (mutable at runtime).
    logger : logging.Logger
        Shared Python logger for the whole application.
    """

    def __init__(self, data_dir: Optional[str] = None) -> None:
        # --- Resolve (and create) the persistent data directory ---
        self.user_data_dir: str = self._get_user_data_dir(data_dir)

        # --- Derive all file paths from the data directory ---
        self.salt_path:     str = os.path.join(self.user_data_dir, "salt.bin")
        self.keycheck_path: str = os.path.join(self.user_data_dir, "keycheck.bin")
        self.config_path:   str = os.path.join(self.user_data_dir, "config.json")
        self.log_path:      str = os.path.join(self.user_data_dir, "app.log")

        # --- Configure the rotating log handler ---
        self.logger: logging.Logger = self._setup_logger()

        # --- Load or create the JSON configuration ---
        self.data: dict = self._load()

        self.logger.info("AppConfig initialised; data dir: %s", self.user_data_dir)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _get_user_data_dir(data_dir: Optional[str] = None) -> str:
        """
        Return (and create if necessary) the user-data directory.

        An explicit *data_dir* wins; otherwise appdirs picks the
        OS-standard location (e.g. ~/.local/share/NebulaExpense).
        """
        path = data_dir or appdirs.user_data_dir(APP_NAME)
        os.makedirs(path, exist_ok=True)
        return path

    def _setup_logger(self) -> logging.Logger:
        """
        Create and configure a rotating file logger for the whole application.

        The log rotates at 2 MB and keeps up to 3 backup files.
        Duplicate handlers are avoided if the logger already exists
        (e.g. when several AppConfig objects live in one process).
        """
        logger = logging.getLogger(APP_NAME)
        logger.setLevel(logging.DEBUG)

        if not logger.handlers:
            handler = RotatingFileHandler(
                self.log_path,
                maxBytes=2_000_000,
                backupCount=3,
                encoding="utf-8",
            )
            handler.setFormatter(
                logging.Formatter("%(asctime)s %(levelname)s: %(message)s")
            )
            logger.addHandler(handler)

        return logger

    def _load(self) -> dict:
        """
        Read config.json from disk.

        Missing keys are back-filled from DEFAULT_CONFIG so that new
        settings introduced in later versions are always present.

        Returns the loaded (or default) configuration dictionary.
        """
        try:
            if os.path.exists(self.config_path):
                with open(self.config_path, "r", encoding="utf-8") as fh:
                    cfg: dict = json.load(fh)
                for key, value in DEFAULT_CONFIG.items():
                    cfg.setdefault(key, value)
                return cfg
        except (OSError, ValueError):
            self.logger.exception("Failed to load config; using defaults")

        return dict(DEFAULT_CONFIG)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Persist the current configuration dictionary to disk as JSON."""
        try:
            with open(self.config_path, "w", encoding="utf-8") as fh:
                json.dump(self.data, fh, indent=2)
            self.logger.debug("Config saved")
        except OSError:
            self.logger.exception("Failed to save config")

    def get(self, key: str, default=None):
        """Return a configuration value by key, or *default* if not found."""
        return self.data.get(key, default)

    def set(self, key: str, value) -> None:
        """
        Update a configuration value in memory.

        Call save() afterwards to persist the change to disk.
        """
        self.data[key] = value

    @property
    def min_splash_seconds(self) -> float:
        return float(self.get("min_splash_seconds", DEFAULT_CONFIG["min_splash_seconds"]))

    @property
    def setup_check_timeout(self) -> Optional[float]:
        value = self.get("setup_check_timeout")
        return float(value) if value else None
