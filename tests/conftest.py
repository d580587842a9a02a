from __future__ import annotations

from pathlib import Path

import pytest

from statusdeck.crypto import CredentialCipher
from statusdeck.store import SQLiteStore


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store(tmp_path: Path) -> SQLiteStore:
    return SQLiteStore(str(tmp_path / "statusdeck.db"))


@pytest.fixture(scope="session")
def cipher() -> CredentialCipher:
    return CredentialCipher("test-secret")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep():
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
