"""
ui.py – Main application window.

This module contains AppWindow, which is the top-level class that owns
the Tkinter root window and wires all subsystems together.

Responsibilities:
  - Create AppConfig, CryptoManager and AuthManager in the correct
    dependency order.
  - Create the Tk root window and apply visual styling.
  - Host the BootstrapCoordinator behind the splash screen and pump its
    asyncio event loop from the Tk event loop (both run on one thread).
  - Show the screen for whichever flow the coordinator routes to: PIN
    setup on first run, PIN login afterwards.

Screens
-------
root (Tk)
 └─ _screen (Frame)          ← replaced on every navigation
     ├─ splash   : title · description · status line · version
     ├─ setup    : PIN + confirm entries · [Save PIN]
     ├─ login    : PIN entry · attempts hint · [Unlock]
     └─ unlocked : welcome text · [Change PIN | Lock]  (auto-locks when idle)
"""

import asyncio
import logging
from tkinter import Entry, Frame, StringVar, Tk, Toplevel, messagebox, ttk
from typing import Callable, Optional

from auth import AuthManager, AuthResult, CredentialStoreError, PinValidationError
from bootstrap import BootstrapCoordinator, BootstrapState, Destination, Phase
from config import APP_DESCRIPTION, APP_NAME, APP_TITLE, APP_VERSION, PIN_MAX_LENGTH, AppConfig
from crypto import CryptoManager

logger = logging.getLogger(APP_NAME)

# ---------------------------------------------------------------------------
# Visual constants (fonts, colours, spacing)
# ---------------------------------------------------------------------------
APP_FONT    = ("Segoe UI", 10)
TITLE_FONT  = ("Segoe UI", 20, "bold")
HEADER_FONT = ("Segoe UI", 13, "bold")
SMALL_FONT  = ("Segoe UI", 9)

BG     = "#0f1424"   # window background
FG     = "#e6ebf5"   # primary text
MUTED  = "#8a93a8"   # secondary text
ACCENT = "#4ecdc4"   # status line / security note

# How often (ms) the asyncio loop gets a turn inside the Tk event loop.
PUMP_INTERVAL_MS = 20

# How often (ms) an unlocked session checks whether it has been idle too long.
AUTO_LOCK_CHECK_MS = 1000

STATUS_TEXT = {
    Phase.IDLE:           "",
    Phase.DELAYING:       "Initializing secure vault...",
    Phase.CHECKING_SETUP: "Checking security setup...",
    Phase.READY:          "Ready",
    Phase.FAILED:         "Initialization failed",
}


class AppWindow:
    """
    The main application window and entry point for all UI logic.

    Instantiation:
      1. Creates all subsystem objects (AppConfig → CryptoManager →
         AuthManager).
      2. Creates the Tk root window, applies styling and a private asyncio
         event loop.
      3. Shows the splash screen and starts the bootstrap sequence.

    Call run() to enter the Tkinter event loop.
    """

    def __init__(self) -> None:
        # ----------------------------------------------------------------
        # 1. Create subsystems in dependency order.
        # ----------------------------------------------------------------
        self.config = AppConfig()
        self.crypto = CryptoManager(self.config)
        self.auth   = AuthManager(self.config, self.crypto)

        # ----------------------------------------------------------------
        # 2. Create the Tk root window and the asyncio loop it pumps.
        # ----------------------------------------------------------------
        self.root = Tk()
        self.root.title(APP_TITLE)
        self.root.geometry("420x560")
        self.root.rowconfigure(0, weight=1)
        self.root.columnconfigure(0, weight=1)
        self._setup_styles()

        self.loop: asyncio.AbstractEventLoop = asyncio.new_event_loop()
        self._pump_id: Optional[str] = None

        self._screen: Optional[Frame] = None
        self._status_var = StringVar(value="")
        self.coordinator: Optional[BootstrapCoordinator] = None
        self._auto_lock_id: Optional[str] = None

        # Any key press, click or pointer movement counts as activity.
        for sequence in ("<Any-KeyPress>", "<Any-ButtonPress>", "<Motion>"):
            self.root.bind_all(sequence, self._on_activity, add="+")

        # ----------------------------------------------------------------
        # 3. Splash screen + bootstrap.
        # ----------------------------------------------------------------
        self._show_splash()

        self.root.protocol("WM_DELETE_WINDOW", self._on_closing)
        self._pump_id = self.root.after(PUMP_INTERVAL_MS, self._pump_event_loop)

    # ------------------------------------------------------------------
    # Visual theme and ttk styles
    # ------------------------------------------------------------------

    def _setup_styles(self) -> None:
        style = ttk.Style()
        try:
            style.theme_use("clam")
        except Exception:
            logger.debug("'clam' theme unavailable; using default theme")

        style.configure("TFrame", background=BG)
        style.configure("App.TLabel",    font=APP_FONT,    background=BG, foreground=FG)
        style.configure("Title.TLabel",  font=TITLE_FONT,  background=BG, foreground=FG)
        style.configure("Header.TLabel", font=HEADER_FONT, background=BG, foreground=FG)
        style.configure("Muted.TLabel",  font=SMALL_FONT,  background=BG, foreground=MUTED)
        style.configure("Accent.TLabel", font=SMALL_FONT,  background=BG, foreground=ACCENT)
        style.configure("App.TButton",   font=APP_FONT,    padding=(10, 6))

        self.root.configure(bg=BG)
        self.root.minsize(360, 480)

    # ------------------------------------------------------------------
    # asyncio ↔ Tk integration
    # ------------------------------------------------------------------

    def _pump_event_loop(self) -> None:
        """
        Give the asyncio loop one iteration, then reschedule.

        Coordinator sinks never open dialogs directly: they defer UI work
        with root.after() so no nested Tk loop runs inside this call.
        """
        self.loop.call_soon(self.loop.stop)
        self.loop.run_forever()
        self._pump_id = self.root.after(PUMP_INTERVAL_MS, self._pump_event_loop)

    # ------------------------------------------------------------------
    # Screen management
    # ------------------------------------------------------------------

    def _set_screen(self, build: Callable[[Frame], None]) -> None:
        """Replace the current screen with a fresh frame filled by *build*."""
        if self._screen is not None:
            self._screen.destroy()
        frame = ttk.Frame(self.root, padding=24)
        frame.grid(row=0, column=0, sticky="nsew")
        frame.columnconfigure(0, weight=1)
        build(frame)
        self._screen = frame

    def _show_splash(self) -> None:
        def build(frame: Frame) -> None:
            frame.rowconfigure(0, weight=1)
            frame.rowconfigure(6, weight=1)
            ttk.Label(frame, text=APP_TITLE, style="Title.TLabel").grid(
                row=1, column=0, pady=(0, 8))
            ttk.Label(frame, text=APP_DESCRIPTION, style="Muted.TLabel").grid(
                row=2, column=0, pady=(0, 40))
            progress = ttk.Progressbar(frame, mode="indeterminate", length=120)
            progress.grid(row=3, column=0, pady=(0, 16))
            progress.start(15)
            ttk.Label(frame, textvariable=self._status_var, style="Muted.TLabel").grid(
                row=4, column=0)
            ttk.Label(frame, text=f"Version {APP_VERSION}", style="Muted.TLabel").grid(
                row=7, column=0, pady=(0, 4))
            ttk.Label(frame, text="100% Offline", style="Accent.TLabel").grid(
                row=8, column=0)

        self._set_screen(build)

        self.coordinator = BootstrapCoordinator(
            self.auth,
            navigate=lambda dest: self.root.after(0, self._enter_flow, dest),
            show_error=lambda msg, retry: self.root.after(0, self._show_error_dialog, msg, retry),
            min_duration=self.config.min_splash_seconds,
            timeout=self.config.setup_check_timeout,
            loop=self.loop,
        )
        self.coordinator.subscribe(self._render_bootstrap_state)
        self.coordinator.start()

    def _render_bootstrap_state(self, state: BootstrapState) -> None:
        self._status_var.set(STATUS_TEXT.get(state.phase, ""))

    def _enter_flow(self, destination: Destination) -> None:
        """Leave the splash screen for the flow chosen by the coordinator."""
        if self.coordinator is not None:
            self.coordinator.dispose()
            self.coordinator = None
        if destination is Destination.LOGIN_FLOW:
            self._show_login()
        else:
            self._show_setup()

    def _show_error_dialog(self, message: str, retry: Callable[[], None]) -> None:
        """
        Modal error dialog whose only action is Retry.

        Closing the window counts as Retry, so the splash screen can never
        be left without a way forward.
        """
        if self.coordinator is None or not self.coordinator.active:
            return

        dlg = Toplevel(self.root)
        dlg.title("Initialization Error")
        dlg.resizable(False, False)
        dlg.transient(self.root)
        dlg.grab_set()

        ttk.Label(dlg, text=f"Failed to initialize the app:\n\n{message}",
                  wraplength=320, justify="left").grid(row=0, column=0, padx=16, pady=16)

        def do_retry() -> None:
            dlg.destroy()
            retry()

        ttk.Button(dlg, text="Retry", command=do_retry).grid(
            row=1, column=0, padx=16, pady=(0, 16), sticky="e")
        dlg.protocol("WM_DELETE_WINDOW", do_retry)

    # ------------------------------------------------------------------
    # Setup flow
    # ------------------------------------------------------------------

    def _show_setup(self) -> None:
        pin_var     = StringVar()
        confirm_var = StringVar()
        entries: dict = {}

        def save() -> None:
            try:
                self.auth.setup_pin(pin_var.get(), confirm_var.get())
            except PinValidationError as exc:
                messagebox.showwarning("Invalid PIN", str(exc))
                target = entries.get(exc.field or "pin")
                if target is not None:
                    target.focus_set()
                return
            except OSError:
                logger.exception("Failed to store PIN")
                messagebox.showerror("Error", "Failed to store the PIN. See the log for details.")
                return
            messagebox.showinfo("PIN created", "Your PIN has been set up.")
            self._show_login()

        def build(frame: Frame) -> None:
            ttk.Label(frame, text="Create your PIN", style="Header.TLabel").grid(
                row=0, column=0, pady=(40, 16))
            ttk.Label(frame, text="PIN", style="App.TLabel").grid(row=1, column=0, sticky="w")
            entries["pin"] = Entry(frame, textvariable=pin_var, show="*", width=PIN_MAX_LENGTH * 3)
            entries["pin"].grid(row=2, column=0, sticky="we", pady=(0, 12))
            ttk.Label(frame, text="Confirm PIN", style="App.TLabel").grid(
                row=3, column=0, sticky="w")
            entries["confirm"] = Entry(frame, textvariable=confirm_var, show="*",
                                       width=PIN_MAX_LENGTH * 3)
            entries["confirm"].grid(row=4, column=0, sticky="we", pady=(0, 16))
            ttk.Button(frame, text="Save PIN", style="App.TButton", command=save).grid(
                row=5, column=0, sticky="we")
            entries["confirm"].bind("<Return>", lambda _: save())
            entries["pin"].focus_set()

        self._set_screen(build)

    # ------------------------------------------------------------------
    # Login flow
    # ------------------------------------------------------------------

    def _show_login(self) -> None:
        pin_var  = StringVar()
        hint_var = StringVar(value=self._attempts_hint())

        def unlock() -> None:
            result = self.auth.authenticate_with_pin(pin_var.get())
            pin_var.set("")
            hint_var.set(self._attempts_hint())

            if result is AuthResult.SUCCESS:
                self._show_unlocked()
            elif result is AuthResult.NOT_CONFIGURED:
                messagebox.showinfo("No PIN", "No PIN is set up yet. Please create one.")
                self._show_setup()
            elif result is AuthResult.LOCKED_OUT:
                messagebox.showwarning("Locked", self._lockout_text())
            elif self.auth.lockout_remaining() > 0:
                messagebox.showwarning("Locked", self._lockout_text())
            else:
                messagebox.showwarning("Invalid", "The PIN is incorrect. Please try again.")

        def build(frame: Frame) -> None:
            ttk.Label(frame, text="Enter your PIN", style="Header.TLabel").grid(
                row=0, column=0, pady=(40, 16))
            pin_entry = Entry(frame, textvariable=pin_var, show="*", width=PIN_MAX_LENGTH * 3)
            pin_entry.grid(row=1, column=0, sticky="we", pady=(0, 8))
            ttk.Label(frame, textvariable=hint_var, style="Muted.TLabel").grid(
                row=2, column=0, pady=(0, 16))
            ttk.Button(frame, text="Unlock", style="App.TButton", command=unlock).grid(
                row=3, column=0, sticky="we")
            pin_entry.bind("<Return>",   lambda _: unlock())
            pin_entry.bind("<KP_Enter>", lambda _: unlock())
            pin_entry.focus_set()

        self._set_screen(build)

    def _attempts_hint(self) -> str:
        if self.auth.lockout_remaining() > 0:
            return self._lockout_text()
        return f"{self.auth.remaining_attempts()} attempts remaining"

    def _lockout_text(self) -> str:
        minutes = max(1, int(round(self.auth.lockout_remaining() / 60)))
        return f"Too many failed attempts. Try again in {minutes} min."

    def _show_unlocked(self) -> None:
        def build(frame: Frame) -> None:
            ttk.Label(frame, text="Vault unlocked", style="Header.TLabel").grid(
                row=0, column=0, pady=(40, 8))
            ttk.Label(frame, text=APP_DESCRIPTION, style="Muted.TLabel").grid(
                row=1, column=0, pady=(0, 24))
            ttk.Button(frame, text="Change PIN", style="App.TButton",
                       command=self._show_change_pin_dialog).grid(
                row=2, column=0, sticky="we", pady=(0, 8))
            ttk.Button(frame, text="Lock", style="App.TButton", command=self._lock_session).grid(
                row=3, column=0, sticky="we")

        self._set_screen(build)
        self._schedule_auto_lock_check()

    # ------------------------------------------------------------------
    # Session and auto-lock
    # ------------------------------------------------------------------

    def _on_activity(self, _event=None) -> None:
        self.auth.touch()

    def _schedule_auto_lock_check(self) -> None:
        if self._auto_lock_id is not None:
            self.root.after_cancel(self._auto_lock_id)
        self._auto_lock_id = self.root.after(AUTO_LOCK_CHECK_MS, self._check_auto_lock)

    def _check_auto_lock(self) -> None:
        self._auto_lock_id = None
        if not self.auth.is_authenticated:
            return
        if self.auth.check_auto_lock():
            self._lock_session()
        else:
            self._schedule_auto_lock_check()

    def _lock_session(self) -> None:
        """Drop the session and any open dialogs, then return to the login screen."""
        if self._auto_lock_id is not None:
            self.root.after_cancel(self._auto_lock_id)
            self._auto_lock_id = None
        self.auth.lock()
        for child in self.root.winfo_children():
            if isinstance(child, Toplevel):
                child.destroy()
        self._show_login()

    def _show_change_pin_dialog(self) -> None:
        """
        Modal dialog asking for the current PIN and a new PIN (twice).

        Stays open on a validation error so the user can correct the
        offending field.
        """
        dlg = Toplevel(self.root)
        dlg.title("Change PIN")
        dlg.resizable(False, False)
        dlg.transient(self.root)
        dlg.grab_set()

        variables = {name: StringVar() for name in ("current", "pin", "confirm")}
        entries: dict = {}
        labels = (("current", "Current PIN"), ("pin", "New PIN"), ("confirm", "Confirm new PIN"))
        for row, (name, text) in enumerate(labels):
            ttk.Label(dlg, text=text).grid(row=row * 2, column=0, padx=16, pady=(12, 2), sticky="w")
            entries[name] = Entry(dlg, textvariable=variables[name], show="*",
                                  width=PIN_MAX_LENGTH * 3)
            entries[name].grid(row=row * 2 + 1, column=0, padx=16, sticky="we")

        def save() -> None:
            try:
                self.auth.change_pin(
                    variables["current"].get(), variables["pin"].get(), variables["confirm"].get()
                )
            except PinValidationError as exc:
                messagebox.showwarning("Invalid PIN", str(exc), parent=dlg)
                target = entries.get(exc.field or "pin")
                if target is not None:
                    target.focus_set()
                return
            except (CredentialStoreError, OSError):
                logger.exception("Failed to change PIN")
                messagebox.showerror("Error", "Failed to change the PIN. See the log for details.",
                                     parent=dlg)
                return
            dlg.destroy()
            messagebox.showinfo("Done", "PIN changed successfully.")

        ttk.Button(dlg, text="Save", command=save).grid(
            row=6, column=0, padx=16, pady=16, sticky="e")
        entries["confirm"].bind("<Return>", lambda _: save())
        entries["current"].focus_set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _on_closing(self) -> None:
        """Tear down the bootstrap sequence and the asyncio loop, then exit."""
        if self.coordinator is not None:
            self.coordinator.dispose()
            self.coordinator = None
        if self._pump_id is not None:
            self.root.after_cancel(self._pump_id)
            self._pump_id = None
        if self._auto_lock_id is not None:
            self.root.after_cancel(self._auto_lock_id)
            self._auto_lock_id = None
        self.auth.lock()

        # One last turn lets cancelled tasks unwind before the loop closes.
        self.loop.call_soon(self.loop.stop)
        self.loop.run_forever()
        self.loop.close()

        logger.info("Application closed")
        self.root.destroy()

    def run(self) -> None:
        """Enter the Tkinter main event loop (blocks until the window closes)."""
        logger.info("Application started")
        self.root.mainloop()
