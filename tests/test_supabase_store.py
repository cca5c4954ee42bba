"""Tests for the Supabase-backed stores (mocked client)."""

from unittest.mock import MagicMock

import pytest

from suggestion_engine.core.schemas_suggestions import Suggestion
from suggestion_engine.db.supabase_store import (
    SupabaseCheckpointStore,
    SupabaseObservationStore,
    SupabaseSuggestionStore,
)


def _client_returning(data):
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.order.return_value.limit.return_value.execute.return_value.data = data
    table.select.return_value.order.return_value.execute.return_value.data = data
    table.select.return_value.eq.return_value.execute.return_value.data = data
    table.select.return_value.execute.return_value.data = data
    return client


def test_recent_observations():
    client = _client_returning([{"id": "o1", "text": "editing", "timestamp": 10.0, "applications": ["vscode"]}])

    observations = SupabaseObservationStore(client).get_recent_observations(5)

    assert [o.id for o in observations] == ["o1"]
    client.table.assert_called_with("observations")
    client.table.return_value.select.return_value.order.assert_called_with("timestamp", desc=True)
    client.table.return_value.select.return_value.order.return_value.limit.assert_called_with(5)


def test_observation_errors_propagate():
    client = MagicMock()
    client.table.side_effect = ConnectionError("network down")

    with pytest.raises(ConnectionError):
        SupabaseObservationStore(client).get_all_observations()


def test_active_suggestions_filter_on_status():
    client = _client_returning([{"suggestion_id": "s1", "title": "Keep"}])

    suggestions = SupabaseSuggestionStore(client).get_active_suggestions()

    assert [s.suggestion_id for s in suggestions] == ["s1"]
    client.table.return_value.select.return_value.eq.assert_called_with("status", "active")


def test_add_suggestion_inserts_json_row():
    client = MagicMock()

    SupabaseSuggestionStore(client).add_suggestion(Suggestion(suggestion_id="s1", title="Keep"))

    row = client.table.return_value.insert.call_args.args[0]
    assert row["suggestion_id"] == "s1"
    assert row["status"] == "active"


def test_user_preferences_skip_empty_rows():
    client = _client_returning([{"text": "Prefers terse suggestions"}, {"text": None}])
    assert SupabaseSuggestionStore(client).get_user_preferences() == ["Prefers terse suggestions"]


class TestSupabaseCheckpointStore:
    def test_defaults_to_zero(self):
        assert SupabaseCheckpointStore(_client_returning([])).load() == 0.0

    def test_save_upserts_newer_value(self):
        client = _client_returning([{"last_processed_timestamp": 100.0}])

        SupabaseCheckpointStore(client).save(150.0)

        client.table.return_value.upsert.assert_called_once_with(
            {"name": "suggestion_generation", "last_processed_timestamp": 150.0}
        )

    def test_ignores_rollback(self):
        client = _client_returning([{"last_processed_timestamp": 100.0}])

        SupabaseCheckpointStore(client).save(50.0)

        client.table.return_value.upsert.assert_not_called()
