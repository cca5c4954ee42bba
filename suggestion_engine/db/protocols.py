"""Interfaces of the pipeline's external collaborators."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from suggestion_engine.core.schemas_observations import Observation
from suggestion_engine.core.schemas_suggestions import Suggestion


@runtime_checkable
class ObservationStore(Protocol):
    """Source of captured observations, newest first."""

    def get_recent_observations(self, limit: int) -> list[Observation]: ...

    def get_all_observations(self) -> list[Observation]: ...


@runtime_checkable
class SuggestionStore(Protocol):
    """Destination of accepted suggestions. Append-only from the pipeline."""

    def get_active_suggestions(self) -> list[Suggestion]: ...

    def add_suggestion(self, suggestion: Suggestion) -> None: ...

    def get_user_preferences(self) -> list[str]: ...


@runtime_checkable
class CheckpointStore(Protocol):
    """Monotonic watermark of the last processed observation timestamp."""

    def load(self) -> float: ...

    def save(self, timestamp: float) -> None: ...


@runtime_checkable
class TextGenerator(Protocol):
    """Opaque text completion capability."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = ...,
        max_tokens: int = ...,
    ) -> str: ...
