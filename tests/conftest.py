"""
Pytest configuration and fixtures for Klio tests.

The onboarding core is exercised against in-memory fakes: a clock that
records sleeps instead of waiting, and a gateway that records calls and can
be told to fail or to hold a call open.
"""

import asyncio
import dataclasses
import os

import pytest

# Set test environment before importing klio modules
os.environ["KLIO_ENV"] = "development"
os.environ.setdefault("SUPABASE_URL", "http://supabase.test")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-test-key")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "service-test-key")

from onboarding.notifications import RecordingNotifier
from onboarding.selection import Category
from onboarding.state import OnboardingStep, OnboardingUser
from onboarding.sync import NetworkMonitor, SyncEngine, SyncPolicy


class FakeClock:
    """Records requested sleeps and yields once instead of waiting."""

    def __init__(self):
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)


class FakeGateway:
    """
    In-memory stand-in for SelectionGateway.

    - `server` holds what the backend has stored per category
    - `replace_calls` lists every POST attempt (successful or not)
    - `failures` are raised by successive replace calls, in order
    - `hold` (an asyncio.Event) keeps replace calls open until set
    """

    def __init__(self, user: OnboardingUser | None = None):
        self.server: dict[Category, list[str]] = {c: [] for c in Category}
        self.replace_calls: list[tuple[Category, list[str]]] = []
        self.fetch_calls: list[Category] = []
        self.failures: list[Exception] = []
        self.fetch_failure: Exception | None = None
        self.hold: asyncio.Event | None = None
        self.user = user or OnboardingUser(id="user-1", email="test@example.com")
        self.profile_updates: list[dict] = []
        self.profile_failure: Exception | None = None

    async def fetch_selections(self, category: Category) -> list[str]:
        self.fetch_calls.append(category)
        if self.fetch_failure is not None:
            raise self.fetch_failure
        return list(self.server[category])

    async def replace_selections(self, category: Category, ids: list[str]) -> list[str]:
        self.replace_calls.append((category, list(ids)))
        if self.hold is not None:
            await self.hold.wait()
        if self.failures:
            raise self.failures.pop(0)
        self.server[category] = list(ids)
        return list(ids)

    async def fetch_profile(self) -> OnboardingUser:
        return self.user

    async def update_profile(
        self, step: OnboardingStep | None = None, complete: bool | None = None
    ) -> OnboardingUser:
        self.profile_updates.append({"step": step, "complete": complete})
        if self.profile_failure is not None:
            raise self.profile_failure
        if complete:
            self.user = dataclasses.replace(
                self.user, onboarding_step=OnboardingStep.COMPLETE, onboarding_complete=True
            )
        elif step is not None:
            self.user = dataclasses.replace(self.user, onboarding_step=step)
        return self.user


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def monitor():
    return NetworkMonitor(online=True)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(gateway, monitor, clock):
    return SyncEngine(gateway, monitor=monitor, clock=clock, policy=SyncPolicy())
