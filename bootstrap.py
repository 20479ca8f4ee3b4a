"""
bootstrap.py – Startup routing state machine.

This module contains BootstrapCoordinator, which decides once per launch
which top-level flow the application enters:

  - Waits a minimum branding duration (the splash screen stays up at least
    this long, however fast the check below completes).
  - Asks a SetupStatusProvider whether a PIN has been configured.
  - Routes to the login flow (configured) or the setup flow (first run).
  - On failure, reports the error message together with a retry callback.

The coordinator owns no widgets and no timers.  The hosting screen passes in
a navigation sink and an error sink, and may subscribe to state changes to
render progress.  When the host is torn down it calls dispose(); pending
transitions are then dropped and no sink fires.

State machine::

    Idle --start()--> Delaying --(min duration)--> CheckingSetup
    CheckingSetup --(True)-->  Ready(LOGIN_FLOW)      [terminal]
    CheckingSetup --(False)--> Ready(SETUP_FLOW)      [terminal]
    CheckingSetup --(error)--> Failed(message)
    Failed --retry()--> Delaying
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Protocol

from config import APP_NAME, DEFAULT_CONFIG

logger = logging.getLogger(APP_NAME)


class Destination(enum.Enum):
    """Top-level flow entered after a successful setup check."""

    LOGIN_FLOW = "login"
    SETUP_FLOW = "setup"


class Phase(enum.Enum):
    IDLE = "idle"
    DELAYING = "delaying"
    CHECKING_SETUP = "checking_setup"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class BootstrapState:
    """
    Snapshot of the coordinator.

    *destination* is set only in the READY phase and *error_message* only
    in the FAILED phase.  Use the class-level constructors rather than
    building instances by hand.
    """

    phase: Phase
    destination: Optional[Destination] = None
    error_message: Optional[str] = None

    @classmethod
    def idle(cls) -> "BootstrapState":
        return cls(Phase.IDLE)

    @classmethod
    def delaying(cls) -> "BootstrapState":
        return cls(Phase.DELAYING)

    @classmethod
    def checking_setup(cls) -> "BootstrapState":
        return cls(Phase.CHECKING_SETUP)

    @classmethod
    def ready(cls, destination: Destination) -> "BootstrapState":
        return cls(Phase.READY, destination=destination)

    @classmethod
    def failed(cls, message: str) -> "BootstrapState":
        return cls(Phase.FAILED, error_message=message)

    @property
    def in_progress(self) -> bool:
        return self.phase in (Phase.DELAYING, Phase.CHECKING_SETUP)

    @property
    def is_terminal(self) -> bool:
        return self.phase is Phase.READY


class InitializationError(Exception):
    """
    Raised (and caught) inside the coordinator when the setup check fails.

    Wraps whatever the provider raised; the original exception is kept as
    __cause__.  *message* is what the user sees.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message


class SetupStatusProvider(Protocol):
    """Anything with an awaitable is_configured() -> bool."""

    def is_configured(self) -> Awaitable[bool]:
        ...


NavigateSink = Callable[[Destination], None]
ErrorSink = Callable[[str, Callable[[], None]], None]
StateListener = Callable[[BootstrapState], None]


class BootstrapCoordinator:
    """
    Drives the startup sequence on an asyncio event loop.

    Parameters
    ----------
    provider : SetupStatusProvider
        Answers "has a PIN been configured?".  Called exactly once per
        start()/retry().
    navigate : callable
        Called once with the chosen Destination when the check succeeds.
    show_error : callable
        Called with (message, retry) when the check fails.
    min_duration : float
        Seconds to wait before the check result may be acted on.
    timeout : float or None
        Seconds allowed for the provider call; None waits indefinitely.
    loop : asyncio.AbstractEventLoop, optional
        Loop to schedule the sequence on.  Defaults to the running loop,
        which is what async callers and tests want; the Tkinter shell
        passes the loop it pumps.
    sleep : coroutine function, optional
        Replacement for asyncio.sleep (used to observe the branding delay).
    """

    def __init__(
        self,
        provider: SetupStatusProvider,
        navigate: NavigateSink,
        show_error: ErrorSink,
        *,
        min_duration: float = DEFAULT_CONFIG["min_splash_seconds"],
        timeout: Optional[float] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.navigate = navigate
        self.show_error = show_error
        self.min_duration = min_duration
        self.timeout = timeout
        self._loop = loop
        self._sleep = sleep

        self._state: BootstrapState = BootstrapState.idle()
        self._listeners: List[StateListener] = []
        self._task: Optional[asyncio.Task] = None
        # Cleared by dispose() when the hosting screen goes away.
        self._active: bool = True

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def current_state(self) -> BootstrapState:
        return self._state

    @property
    def active(self) -> bool:
        return self._active

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register *listener* to be called with every new state.

        Returns a callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self) -> Optional[asyncio.Task]:
        """
        Begin the startup sequence.

        A no-op while a sequence is already in flight, after the coordinator
        reached a Ready state, or after dispose().  Returns the task running
        the sequence (the existing one when the call was a no-op).
        """
        if not self._active:
            logger.debug("Bootstrap start ignored: coordinator disposed")
            return None
        if self._state.in_progress:
            logger.debug("Bootstrap start ignored: sequence already running")
            return self._task
        if self._state.is_terminal:
            logger.debug("Bootstrap start ignored: already routed to %s",
                         self._state.destination)
            return self._task

        loop = self._loop or asyncio.get_running_loop()
        self._set_state(BootstrapState.delaying())
        self._task = loop.create_task(self._run())
        return self._task

    def retry(self) -> Optional[asyncio.Task]:
        """
        Restart the sequence from the beginning, including the branding
        delay.  Shares start()'s single-in-flight guard.
        """
        logger.info("Bootstrap retry requested (state: %s)", self._state.phase.value)
        return self.start()

    async def wait(self) -> BootstrapState:
        """Wait for the in-flight sequence (if any) and return the state."""
        task = self._task
        if task is not None and not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self._state

    def dispose(self) -> None:
        """
        Detach from the hosting screen.

        The in-flight sequence is cancelled and any transition that would
        still have happened is discarded.
        """
        if not self._active:
            return
        self._active = False
        self._listeners.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("Bootstrap coordinator disposed in state %s", self._state.phase.value)

    # ------------------------------------------------------------------
    # Sequence
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        await self._sleep(self.min_duration)
        if not self._active:
            return

        self._set_state(BootstrapState.checking_setup())
        try:
            configured = await self._check_setup()
        except InitializationError as exc:
            logger.error("Initialization failed: %s", exc.message)
            if self._set_state(BootstrapState.failed(exc.message)):
                self.show_error(exc.message, self.retry)
            return

        destination = Destination.LOGIN_FLOW if configured else Destination.SETUP_FLOW
        logger.info("Setup check complete; routing to %s", destination.value)
        if self._set_state(BootstrapState.ready(destination)):
            self.navigate(destination)

    async def _check_setup(self) -> bool:
        """
        Call the provider once, converting every failure into an
        InitializationError.  Cancellation is passed through untouched.
        """
        if self.timeout is None:
            return await self._ask_provider()
        try:
            return await asyncio.wait_for(self._ask_provider(), self.timeout)
        except asyncio.TimeoutError as exc:
            # Only wait_for's own timeout gets here; the provider's errors,
            # TimeoutError included, are already InitializationError.
            raise InitializationError(
                f"Setup check timed out after {self.timeout:g} seconds"
            ) from exc

    async def _ask_provider(self) -> bool:
        try:
            result = await self.provider.is_configured()
        except Exception as exc:
            logger.exception("Setup status provider failed")
            raise InitializationError(str(exc) or type(exc).__name__) from exc
        return bool(result)

    def _set_state(self, state: BootstrapState) -> bool:
        """
        Apply *state* and notify listeners.

        Returns False (and changes nothing) once the coordinator has been
        disposed, so callers know to skip their side effect.
        """
        if not self._active:
            logger.debug("Dropping transition to %s after dispose", state.phase.value)
            return False

        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Bootstrap state listener failed")
        return True
