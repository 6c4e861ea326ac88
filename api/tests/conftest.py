"""Shared fixtures: a controllable clock, an in-memory store and profile cards."""

from __future__ import annotations

from typing import Any

import pytest

from bump_exchange.store.memory_store import InMemoryExchangeStore


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_profile(user_id: str, name: str | None = None, **extra: Any) -> dict[str, Any]:
    profile = {
        "user_id": user_id,
        "short_code": f"{user_id}-code",
        "profile_image": f"https://img.example/{user_id}.png",
        "background_image": "",
        "background_colors": ["#000000", "#ffffff"],
        "last_updated": 1_700_000_000_000,
        "contact_entries": [
            {"field_type": "name", "value": name or user_id.title(), "section": "universal", "is_visible": True},
            {"field_type": "bio", "value": f"{user_id} bio", "section": "universal", "is_visible": True},
            {"field_type": "phone", "value": "+1 555 0100", "section": "personal", "is_visible": True},
            {"field_type": "instagram", "value": f"@{user_id}", "section": "personal", "is_visible": True},
            {"field_type": "email", "value": f"{user_id}@work.example", "section": "work", "is_visible": True},
            {"field_type": "linkedin", "value": f"in/{user_id}", "section": "work", "is_visible": False},
        ],
    }
    profile.update(extra)
    return profile


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryExchangeStore:
    return InMemoryExchangeStore(clock=clock)


@pytest.fixture
def profiles() -> dict[str, dict[str, Any]]:
    return {uid: make_profile(uid) for uid in ("u1", "u2", "u3", "u4")}

