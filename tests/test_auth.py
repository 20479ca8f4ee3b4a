"""Tests for PIN setup, PIN login, lockout and setup status (auth.py)."""

import os

import pytest

from auth import AuthManager, AuthResult, CredentialStoreError, PinValidationError
from bootstrap import BootstrapCoordinator, BootstrapState, Destination
from config import AppConfig
from crypto import CryptoManager


# =============================================================================
# Setup status
# =============================================================================


class TestIsConfigured:
    @pytest.mark.asyncio
    async def test_fresh_install_is_not_configured(self, auth):
        assert await auth.is_configured() is False

    @pytest.mark.asyncio
    async def test_configured_after_setup(self, auth):
        auth.setup_pin("1234")
        assert await auth.is_configured() is True

    @pytest.mark.asyncio
    async def test_missing_keycheck_is_an_error(self, auth, crypto):
        crypto.create_and_store_salt()
        with pytest.raises(CredentialStoreError, match="key-check file is missing"):
            await auth.is_configured()

    @pytest.mark.asyncio
    async def test_missing_salt_is_an_error(self, auth, config):
        auth.setup_pin("1234")
        os.remove(config.salt_path)
        with pytest.raises(CredentialStoreError, match="salt file is missing"):
            await auth.is_configured()

    @pytest.mark.asyncio
    async def test_empty_salt_is_an_error(self, auth, config):
        auth.setup_pin("1234")
        open(config.salt_path, "wb").close()
        with pytest.raises(CredentialStoreError, match="empty"):
            await auth.is_configured()


class TestStartupRouting:
    """AuthManager plugged into the coordinator as the setup status provider."""

    @staticmethod
    async def route(auth):
        navigations, errors = [], []
        coordinator = BootstrapCoordinator(
            auth,
            navigations.append,
            lambda message, retry: errors.append(message),
            min_duration=0,
        )
        coordinator.start()
        state = await coordinator.wait()
        return state, navigations, errors

    @pytest.mark.asyncio
    async def test_first_run_routes_to_setup(self, auth):
        state, navigations, _ = await self.route(auth)
        assert state == BootstrapState.ready(Destination.SETUP_FLOW)
        assert navigations == [Destination.SETUP_FLOW]

    @pytest.mark.asyncio
    async def test_configured_routes_to_login(self, auth):
        auth.setup_pin("246810")
        state, navigations, _ = await self.route(auth)
        assert state == BootstrapState.ready(Destination.LOGIN_FLOW)

    @pytest.mark.asyncio
    async def test_broken_store_fails_with_store_message(self, auth, crypto):
        crypto.create_and_store_salt()
        state, navigations, errors = await self.route(auth)
        assert state == BootstrapState.failed("Stored PIN is incomplete: key-check file is missing.")
        assert navigations == []
        assert errors == [state.error_message]


# =============================================================================
# PIN setup
# =============================================================================


class TestSetupPin:
    @pytest.mark.parametrize(
        "pin, message",
        [
            ("", "cannot be empty"),
            ("12a4", "digits only"),
            ("123", "between 4-8"),
            ("123456789", "between 4-8"),
        ],
    )
    def test_invalid_pins_are_rejected(self, auth, pin, message):
        with pytest.raises(PinValidationError, match=message) as info:
            auth.setup_pin(pin)
        assert info.value.field == "pin"

    def test_confirmation_mismatch_names_confirm_field(self, auth):
        with pytest.raises(PinValidationError) as info:
            auth.setup_pin("1234", "4321")
        assert info.value.field == "confirm"

    def test_rejected_pin_writes_nothing(self, auth, config):
        with pytest.raises(PinValidationError):
            auth.setup_pin("12")
        assert not os.path.exists(config.salt_path)
        assert not os.path.exists(config.keycheck_path)

    def test_setup_replaces_previous_pin(self, auth):
        auth.setup_pin("1111")
        auth.setup_pin("2222")
        assert auth.authenticate_with_pin("1111") is AuthResult.FAILED
        assert auth.authenticate_with_pin("2222") is AuthResult.SUCCESS


# =============================================================================
# PIN login and lockout
# =============================================================================


class TestAuthenticate:
    def test_not_configured(self, auth):
        assert auth.authenticate_with_pin("1234") is AuthResult.NOT_CONFIGURED

    def test_correct_pin(self, auth):
        auth.setup_pin("1234")
        assert auth.authenticate_with_pin("1234") is AuthResult.SUCCESS

    def test_wrong_pin_counts_attempt(self, auth):
        auth.setup_pin("1234")
        assert auth.authenticate_with_pin("9999") is AuthResult.FAILED
        assert auth.authenticate_with_pin("") is AuthResult.FAILED
        assert auth.remaining_attempts() == 3

    def test_success_resets_counter(self, auth):
        auth.setup_pin("1234")
        auth.authenticate_with_pin("0000")
        auth.authenticate_with_pin("1234")
        assert auth.remaining_attempts() == 5

    def test_counter_survives_restart(self, auth, config, clock):
        auth.setup_pin("1234")
        auth.authenticate_with_pin("0000")
        auth.authenticate_with_pin("0000")

        reloaded = AppConfig(data_dir=config.user_data_dir)
        fresh = AuthManager(reloaded, CryptoManager(reloaded), clock=clock)
        assert fresh.remaining_attempts() == 3

    def test_lockout_after_max_attempts(self, auth, clock):
        auth.setup_pin("1234")
        for _ in range(5):
            assert auth.authenticate_with_pin("0000") is AuthResult.FAILED

        assert auth.lockout_remaining() == pytest.approx(30 * 60)
        assert auth.remaining_attempts() == 0
        # Even the right PIN is refused while locked.
        assert auth.authenticate_with_pin("1234") is AuthResult.LOCKED_OUT

        clock.advance(29 * 60)
        assert auth.authenticate_with_pin("1234") is AuthResult.LOCKED_OUT

        clock.advance(61)
        assert auth.lockout_remaining() == 0
        assert auth.authenticate_with_pin("1234") is AuthResult.SUCCESS

    def test_lockout_policy_comes_from_config(self, auth, config, clock):
        config.set("max_pin_attempts", 2)
        config.set("lockout_minutes", 1)
        auth.setup_pin("1234")

        auth.authenticate_with_pin("0000")
        auth.authenticate_with_pin("0000")
        assert auth.lockout_remaining() == pytest.approx(60)

        clock.advance(60)
        assert auth.remaining_attempts() == 2

    def test_new_pin_clears_lockout(self, auth):
        auth.setup_pin("1234")
        for _ in range(5):
            auth.authenticate_with_pin("0000")
        assert auth.lockout_remaining() > 0

        auth.setup_pin("5678")
        assert auth.lockout_remaining() == 0
        assert auth.authenticate_with_pin("5678") is AuthResult.SUCCESS

    def test_null_counter_in_config_is_treated_as_zero(self, auth, config):
        auth.setup_pin("1234")
        config.set("failed_pin_attempts", None)
        assert auth.remaining_attempts() == 5

        assert auth.authenticate_with_pin("0000") is AuthResult.FAILED
        assert auth.remaining_attempts() == 4


# =============================================================================
# PIN change
# =============================================================================


class TestChangePin:
    def test_change_replaces_pin(self, auth):
        auth.setup_pin("1234")
        auth.change_pin("1234", "5678", "5678")

        assert auth.authenticate_with_pin("1234") is AuthResult.FAILED
        assert auth.authenticate_with_pin("5678") is AuthResult.SUCCESS

    @pytest.mark.parametrize("current", ["", "0000"])
    def test_wrong_current_pin_keeps_old_pin(self, auth, current):
        auth.setup_pin("1234")
        with pytest.raises(PinValidationError) as excinfo:
            auth.change_pin(current, "5678", "5678")

        assert excinfo.value.field == "current"
        assert auth.authenticate_with_pin("1234") is AuthResult.SUCCESS

    def test_wrong_current_pin_does_not_count_towards_lockout(self, auth):
        auth.setup_pin("1234")
        with pytest.raises(PinValidationError):
            auth.change_pin("0000", "5678")
        assert auth.remaining_attempts() == 5

    @pytest.mark.parametrize(
        "new, confirm, field",
        [
            ("12", "12", "pin"),
            ("abcd", "abcd", "pin"),
            ("5678", "8765", "confirm"),
        ],
    )
    def test_new_pin_follows_setup_rules(self, auth, new, confirm, field):
        auth.setup_pin("1234")
        with pytest.raises(PinValidationError) as excinfo:
            auth.change_pin("1234", new, confirm)

        assert excinfo.value.field == field
        assert auth.authenticate_with_pin("1234") is AuthResult.SUCCESS

    def test_change_without_pin_is_an_error(self, auth):
        with pytest.raises(CredentialStoreError):
            auth.change_pin("1234", "5678", "5678")


# =============================================================================
# Session and auto-lock
# =============================================================================


class TestAutoLock:
    def test_session_starts_locked(self, auth):
        auth.setup_pin("1234")
        assert auth.is_authenticated is False
        assert auth.idle_remaining() is None
        assert auth.check_auto_lock() is False

    def test_failed_login_does_not_unlock(self, auth):
        auth.setup_pin("1234")
        auth.authenticate_with_pin("0000")
        assert auth.is_authenticated is False

    def test_locks_after_idle_timeout(self, auth, clock):
        auth.setup_pin("1234")
        auth.authenticate_with_pin("1234")
        assert auth.is_authenticated is True

        clock.advance(5 * 60 - 1)
        assert auth.check_auto_lock() is False
        assert auth.idle_remaining() == pytest.approx(1)

        clock.advance(1)
        assert auth.check_auto_lock() is True
        assert auth.is_authenticated is False

    def test_activity_resets_deadline(self, auth, clock):
        auth.setup_pin("1234")
        auth.authenticate_with_pin("1234")

        clock.advance(4 * 60)
        auth.touch()
        clock.advance(4 * 60)
        assert auth.check_auto_lock() is False
        assert auth.is_authenticated is True

        clock.advance(60)
        assert auth.check_auto_lock() is True

    def test_timeout_comes_from_config(self, auth, config, clock):
        config.set("auto_lock_minutes", 1)
        auth.setup_pin("1234")
        auth.authenticate_with_pin("1234")

        clock.advance(60)
        assert auth.check_auto_lock() is True

    @pytest.mark.parametrize("minutes", [0, None])
    def test_zero_minutes_disables_auto_lock(self, auth, config, clock, minutes):
        config.set("auto_lock_minutes", minutes)
        auth.setup_pin("1234")
        auth.authenticate_with_pin("1234")

        clock.advance(24 * 60 * 60)
        assert auth.idle_remaining() is None
        assert auth.check_auto_lock() is False
        assert auth.is_authenticated is True

    def test_manual_lock(self, auth):
        auth.setup_pin("1234")
        auth.authenticate_with_pin("1234")
        auth.lock()
        assert auth.is_authenticated is False
        assert auth.idle_remaining() is None

    def test_touch_while_locked_does_nothing(self, auth, clock):
        auth.setup_pin("1234")
        auth.touch()
        assert auth.is_authenticated is False

        clock.advance(10 * 60)
        auth.authenticate_with_pin("1234")
        assert auth.idle_remaining() == pytest.approx(5 * 60)
