"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable

import pytest

from suggestion_engine.core.schemas_observations import Observation
from suggestion_engine.core.schemas_suggestions import Suggestion


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUGGESTION_ENGINE_ENV"] = "test"
    os.environ["STORE_BACKEND"] = "local"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["PIPELINE_AUTOSTART"] = "false"


# =============================================================================
# In-memory collaborators
# =============================================================================


class FakeObservationStore:
    def __init__(self, observations: list[Observation] | None = None):
        self.observations = list(observations or [])

    def get_all_observations(self) -> list[Observation]:
        return sorted(self.observations, key=lambda o: o.timestamp, reverse=True)

    def get_recent_observations(self, limit: int) -> list[Observation]:
        return self.get_all_observations()[:limit]


class FakeSuggestionStore:
    def __init__(self, suggestions: list[Suggestion] | None = None, preferences: list[str] | None = None):
        self.suggestions = list(suggestions or [])
        self.preferences = list(preferences or [])

    def get_active_suggestions(self) -> list[Suggestion]:
        return [s for s in self.suggestions if s.status == "active"]

    def add_suggestion(self, suggestion: Suggestion) -> None:
        self.suggestions.append(suggestion)

    def get_user_preferences(self) -> list[str]:
        return list(self.preferences)


class FakeCheckpointStore:
    def __init__(self, value: float = 0.0):
        self.value = value
        self.saves: list[float] = []

    def load(self) -> float:
        return self.value

    def save(self, timestamp: float) -> None:
        self.saves.append(timestamp)
        self.value = max(self.value, timestamp)


class FakeTextGenerator:
    """Returns scripted responses in order; an Exception entry is raised instead."""

    def __init__(self, responses: list | Callable[[str, str], str] | None = None):
        self.responses = responses if responses is not None else []
        self.calls: list[dict] = []

    async def complete(self, system_prompt, user_prompt, *, temperature=0.3, max_tokens=1024):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if callable(self.responses):
            return self.responses(system_prompt, user_prompt)
        if not self.responses:
            raise AssertionError("FakeTextGenerator ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_observation(
    obs_id: str,
    text: str,
    timestamp: float,
    **kwargs,
) -> Observation:
    return Observation(id=obs_id, text=text, timestamp=timestamp, **kwargs)


@pytest.fixture
def observations() -> list[Observation]:
    return [
        make_observation("obs_1", "Debugging the python test suite in the editor", 1000.0),
        make_observation("obs_2", "Reading python documentation about pytest fixtures", 1010.0),
        make_observation("obs_3", "Writing unit tests for the python parser", 1020.0),
    ]


@pytest.fixture
def fake_generator_factory():
    return FakeTextGenerator


@pytest.fixture
def observation_store_factory():
    return FakeObservationStore


@pytest.fixture
def observation_store(observations) -> FakeObservationStore:
    return FakeObservationStore(observations)


@pytest.fixture
def suggestion_store() -> FakeSuggestionStore:
    return FakeSuggestionStore(preferences=["Prefers short, concrete suggestions"])


@pytest.fixture
def checkpoint_store() -> FakeCheckpointStore:
    return FakeCheckpointStore()
