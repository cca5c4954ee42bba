"""Supabase-backed stores.

Tables:
    observations          (id, text, timestamp, tags, applications, activities, keywords)
    suggestions           (suggestion_id, ..., status, utilities jsonb)
    user_preferences      (text)
    pipeline_checkpoints  (name, last_processed_timestamp)
"""

from typing import Any

from suggestion_engine.core.logging import get_logger
from suggestion_engine.core.schemas_observations import Observation
from suggestion_engine.core.schemas_suggestions import Suggestion
from suggestion_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

CHECKPOINT_NAME = "suggestion_generation"


class SupabaseObservationStore:
    def __init__(self, client: Any | None = None):
        self.client = client

    def _db(self):
        return self.client or get_supabase()

    def get_recent_observations(self, limit: int) -> list[Observation]:
        try:
            response = (
                self._db().table("observations").select("*").order("timestamp", desc=True).limit(limit).execute()
            )
            return [Observation.model_validate(row) for row in response.data or []]
        except Exception as e:
            logger.error(f"Failed to fetch recent observations: {e}")
            raise

    def get_all_observations(self) -> list[Observation]:
        try:
            response = self._db().table("observations").select("*").order("timestamp", desc=True).execute()
            return [Observation.model_validate(row) for row in response.data or []]
        except Exception as e:
            logger.error(f"Failed to fetch observations: {e}")
            raise


class SupabaseSuggestionStore:
    def __init__(self, client: Any | None = None):
        self.client = client

    def _db(self):
        return self.client or get_supabase()

    def get_active_suggestions(self) -> list[Suggestion]:
        try:
            response = self._db().table("suggestions").select("*").eq("status", "active").execute()
            return [Suggestion.model_validate(row) for row in response.data or []]
        except Exception as e:
            logger.error(f"Failed to fetch active suggestions: {e}")
            raise

    def add_suggestion(self, suggestion: Suggestion) -> None:
        try:
            self._db().table("suggestions").insert(suggestion.model_dump(mode="json")).execute()
            logger.info(f"Stored suggestion {suggestion.suggestion_id}: {suggestion.title}")
        except Exception as e:
            logger.error(f"Failed to store suggestion {suggestion.suggestion_id}: {e}")
            raise

    def get_user_preferences(self) -> list[str]:
        try:
            response = self._db().table("user_preferences").select("text").execute()
            return [row["text"] for row in response.data or [] if row.get("text")]
        except Exception as e:
            logger.error(f"Failed to fetch user preferences: {e}")
            raise


class SupabaseCheckpointStore:
    def __init__(self, client: Any | None = None, name: str = CHECKPOINT_NAME):
        self.client = client
        self.name = name

    def _db(self):
        return self.client or get_supabase()

    def load(self) -> float:
        response = (
            self._db()
            .table("pipeline_checkpoints")
            .select("last_processed_timestamp")
            .eq("name", self.name)
            .execute()
        )
        if not response.data:
            return 0.0
        return float(response.data[0]["last_processed_timestamp"] or 0.0)

    def save(self, timestamp: float) -> None:
        current = self.load()
        if timestamp < current:
            logger.warning(f"Ignoring checkpoint rollback from {current} to {timestamp}")
            return
        self._db().table("pipeline_checkpoints").upsert(
            {"name": self.name, "last_processed_timestamp": timestamp}
        ).execute()
