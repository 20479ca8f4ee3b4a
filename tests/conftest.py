"""Shared fixtures: an isolated data directory and fast key derivation."""

import pytest

from auth import AuthManager
from config import AppConfig
from crypto import CryptoManager


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config(tmp_path) -> AppConfig:
    cfg = AppConfig(data_dir=str(tmp_path))
    # Full-strength PBKDF2 makes every test take seconds.
    cfg.set("kdf_iterations", 1_000)
    return cfg


@pytest.fixture
def crypto(config) -> CryptoManager:
    return CryptoManager(config)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def auth(config, crypto, clock) -> AuthManager:
    return AuthManager(config, crypto, clock=clock)
