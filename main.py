"""
main.py – Application entry point.

This file is intentionally minimal.  All logic lives in specialised modules:

  config.py    – AppConfig            : constants, file paths, config I/O, logging
  crypto.py    – CryptoManager        : key derivation, salt and key-check files
  auth.py      – AuthManager          : setup status, PIN setup/login/change, lockout, auto-lock
  bootstrap.py – BootstrapCoordinator : startup routing state machine
  ui.py        – AppWindow            : Tkinter shell, splash / setup / login screens

To run the application:
    python main.py
"""

from ui import AppWindow


def main() -> None:
    """Create the application window and start the event loop."""
    app = AppWindow()
    app.run()


if __name__ == "__main__":
    main()
