"""Tests for the Postgres adapter's pure row and query helpers."""
import json
from datetime import datetime, timezone

from meownocode.storage import Memo, SupabaseConfig, SupabaseStorageAdapter
from meownocode.storage.adapters.postgres import (
    _from_jsonb,
    _to_datetime,
    build_memo_query,
    memo_to_row_values,
    row_to_memo,
)


class TestBuildMemoQuery:
    def test_user_scope_only(self):
        query, params = build_memo_query("alice")
        assert query == "SELECT * FROM memos WHERE user_id = $1 ORDER BY created_at DESC"
        assert params == ["alice"]

    def test_filters_and_paging_are_numbered_in_order(self):
        query, params = build_memo_query("alice", pinned=True, archived=False, limit=10, offset=20)
        assert "pinned = $2" in query
        assert "archived = $3" in query
        assert query.endswith("LIMIT $4 OFFSET $5")
        assert params == ["alice", True, False, 10, 20]

    def test_offset_without_limit(self):
        query, params = build_memo_query("alice", archived=True, offset=5)
        assert query.endswith("OFFSET $3")
        assert "LIMIT" not in query
        assert params == ["alice", True, 5]


class TestRowConversion:
    def test_memo_to_row_values(self):
        memo = Memo(
            id="m1",
            content="hi",
            tags=["a"],
            created_at="2024-01-01T00:00:00.000Z",
            updated_at="2024-01-02T00:00:00.000Z",
            extras={"mood": "calm"},
        )
        values = memo_to_row_values(memo, "alice")
        assert values[:3] == ("m1", "alice", "hi")
        assert json.loads(values[3]) == ["a"]
        assert values[8] == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert json.loads(values[10]) == {"mood": "calm"}

    def test_row_to_memo_accepts_text_jsonb(self):
        row = {
            "memo_id": "m1",
            "content": "hi",
            "tags": '["a", "b"]',
            "backlinks": None,
            "attachments": "[]",
            "pinned": True,
            "archived": False,
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "updated_at": datetime(2024, 1, 2, 12, 30, tzinfo=timezone.utc),
            "extras": {"mood": "calm"},
        }
        memo = row_to_memo(row)
        assert memo.tags == ["a", "b"]
        assert memo.backlinks == []
        assert memo.pinned is True
        assert memo.created_at == "2024-01-01T00:00:00.000Z"
        assert memo.updated_at == "2024-01-02T12:30:00.000Z"
        assert memo.extras == {"mood": "calm"}


def test_timestamp_and_jsonb_coercion():
    assert _to_datetime("not a date") is None
    assert _to_datetime(None) is None
    assert _from_jsonb("plain text") == "plain text"
    assert _from_jsonb([1]) == [1]


def test_attachment_url_scheme():
    adapter = SupabaseStorageAdapter(SupabaseConfig(connection_string="postgresql://localhost/db"))
    assert adapter.get_attachment_url("a1") == "supabase://attachment/a1"
    assert adapter.user_id == "default"
