# /tests/conftest.py
"""Shared fixtures and fakes for the impostor monitoring tests."""

from datetime import datetime, timedelta, timezone

import pytest

from services.dns_probe import Resolution
from services.document_store import MemoryDocumentStore
from services.renderer import NavigationBlockedError, RenderError


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeProbe:
    """Returns canned resolutions; anything not listed is dead."""

    def __init__(self, live=None, failing=None):
        self.live = dict(live or {})
        self.failing = set(failing or [])
        self.calls = []

    def probe(self, domain):
        self.calls.append(domain)
        if domain in self.failing:
            raise RuntimeError(f"probe exploded for {domain}")
        return self.live.get(domain, Resolution())


class FakeLookup:
    def __init__(self, registered="2024-02-29T10:00:00Z"):
        self.registered = registered
        self.calls = []

    def lookup(self, domain):
        self.calls.append(domain)
        return self.registered


class FakeRenderer:
    """Scripted renderer: each call pops the next outcome (bytes or exception)."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def render(self, url, safety_enabled=True):
        self.calls.append((url, safety_enabled))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def blocked_then_ok_renderer():
    return FakeRenderer([NavigationBlockedError("blocked"), PNG_BYTES])


@pytest.fixture
def failing_renderer():
    return FakeRenderer([RenderError("net::ERR_NAME_NOT_RESOLVED")])
