"""Tests for natural-language queries."""
import pytest
import requests

from minihog.ai.nl_query import (
    ChatCompletionSqlGenerator,
    NaturalLanguageQueryService,
    extract_sql,
    suggest_chart_type,
    validate_sql,
)
from minihog.errors import InvalidInput, TextGenerationFailed, UnsafeQuery

from conftest import NOW


class TestExtractSql:
    def test_strips_fences_and_semicolons(self):
        assert extract_sql("```sql\nSELECT 1;\n```") == "SELECT 1"
        assert extract_sql("  SELECT event FROM events;;  ") == "SELECT event FROM events"


class TestValidateSql:
    """Only single read-only statements pass."""

    @pytest.mark.parametrize("sql", [
        "SELECT * FROM events LIMIT 10",
        "with t as (select 1 as n) select n from t",
        "SELECT created_at, updated_by FROM events",
    ])
    def test_accepts(self, sql):
        validate_sql(sql)

    @pytest.mark.parametrize("sql", [
        "DELETE FROM events",
        "SELECT 1; DROP TABLE events",
        "WITH gone AS (DELETE FROM events RETURNING *) SELECT * FROM gone",
        "PRAGMA table_info(events)",
        "ATTACH DATABASE 'x.db' AS x",
        "SELECT 1 FROM events; SELECT 2 FROM events",
        "",
    ])
    def test_rejects(self, sql):
        with pytest.raises(UnsafeQuery):
            validate_sql(sql)

    def test_length_limit(self):
        with pytest.raises(UnsafeQuery):
            validate_sql("SELECT " + "1," * 100 + "1", max_length=50)


class TestChartSuggestion:
    @pytest.mark.parametrize("rows,expected", [
        ([], "none"),
        ([{"date": "2025-01-01", "count": 1}, {"date": "2025-01-02", "count": 2}], "line"),
        ([{"user_count": 5}], "number"),
        ([{"event": "a", "count": 1}], "bar"),
        ([{"event": "a", "users": 1}], "pie"),
        ([{"a": 1, "b": 2, "c": 3}], "table"),
    ])
    def test_suggestions(self, rows, expected):
        assert suggest_chart_type(rows) == expected


class TestNaturalLanguageQueryService:
    def test_execute(self, event_store, add_events):
        add_events(("a", "pageview", NOW), ("b", "pageview", NOW), ("a", "signup", NOW))
        generator = lambda q: "```sql\nSELECT event, COUNT(*) AS count FROM events GROUP BY event ORDER BY count DESC;\n```"
        service = NaturalLanguageQueryService(event_store, generator)
        result = service.execute("What are the top events?")
        assert result["sql"] == "SELECT event, COUNT(*) AS count FROM events GROUP BY event ORDER BY count DESC"
        assert result["results"] == [{"event": "pageview", "count": 2}, {"event": "signup", "count": 1}]
        assert result["chart_suggestion"] == "bar"
        assert result["execution_time_ms"] >= 0

    def test_unsafe_sql_is_not_executed(self, event_store, add_events):
        add_events(("a", "pageview", NOW))
        service = NaturalLanguageQueryService(event_store, lambda q: "DELETE FROM events")
        with pytest.raises(UnsafeQuery):
            service.execute("delete everything")
        assert event_store.count_events() == 1

    def test_question_validation(self, event_store):
        service = NaturalLanguageQueryService(event_store, lambda q: "SELECT 1", max_question_length=10)
        with pytest.raises(InvalidInput):
            service.execute("   ")
        with pytest.raises(InvalidInput):
            service.execute("x" * 11)


class TestInsights:
    """Plain-language summary attached to every answered question."""

    def test_empty_results(self, event_store):
        calls = []
        service = NaturalLanguageQueryService(event_store, lambda q: "SELECT event FROM events", summarizer=lambda q, s: calls.append(s) or "x")
        result = service.execute("Any events?")
        assert result["results"] == []
        assert result["insights"] == "No data found for the given query."
        assert calls == []

    def test_summarizer_sees_shape_and_sample(self, event_store, add_events):
        add_events(*[(f"u{i}", "pageview", NOW) for i in range(5)])
        seen = {}

        def summarizer(question, summary):
            seen.update(question=question, summary=summary)
            return "  Five users viewed a page.  "

        service = NaturalLanguageQueryService(event_store, lambda q: "SELECT distinct_id FROM events ORDER BY distinct_id", summarizer=summarizer)
        result = service.execute("Who viewed pages?")
        assert result["insights"] == "Five users viewed a page."
        assert seen["question"] == "Who viewed pages?"
        assert seen["summary"] == {
            "rowCount": 5,
            "columns": ["distinct_id"],
            "sampleRows": [{"distinct_id": "u0"}, {"distinct_id": "u1"}, {"distinct_id": "u2"}],
        }

    def test_summary_failure_falls_back_to_row_count(self, event_store, add_events):
        add_events(("a", "pageview", NOW), ("b", "pageview", NOW))

        def summarizer(question, summary):
            raise TextGenerationFailed("Failed to summarize query results")

        service = NaturalLanguageQueryService(event_store, lambda q: "SELECT event FROM events", summarizer=summarizer)
        result = service.execute("Which events?")
        assert len(result["results"]) == 2
        assert result["insights"] == "Query returned 2 results."

    def test_without_summarizer(self, event_store, add_events):
        add_events(("a", "pageview", NOW))
        service = NaturalLanguageQueryService(event_store, lambda q: "SELECT event FROM events")
        assert service.execute("Which events?")["insights"] == "Query returned 1 results."


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")

    def json(self):
        return self.payload


class TestChatCompletionSqlGenerator:
    def test_returns_message_content(self, monkeypatch):
        captured = {}

        def fake_post(url, json, headers, timeout):
            captured.update(url=url, json=json, headers=headers)
            return FakeResponse({"choices": [{"message": {"content": "SELECT 1"}}]})

        monkeypatch.setattr(requests, "post", fake_post)
        generator = ChatCompletionSqlGenerator("http://llm.local/v1/chat/completions", "key", "model-x")
        assert generator("how many?") == "SELECT 1"
        assert captured["headers"] == {"Authorization": "Bearer key"}
        assert captured["json"]["model"] == "model-x"

    def test_http_error(self, monkeypatch):
        monkeypatch.setattr(requests, "post", lambda *a, **k: FakeResponse({}, status=500))
        generator = ChatCompletionSqlGenerator("http://llm.local", "key", "m")
        with pytest.raises(TextGenerationFailed):
            generator("q")

    def test_missing_key(self):
        with pytest.raises(TextGenerationFailed):
            ChatCompletionSqlGenerator("http://llm.local", None, "m")("q")

    def test_summarize_sends_result_summary(self, monkeypatch):
        captured = {}

        def fake_post(url, json, headers, timeout):
            captured.update(json=json)
            return FakeResponse({"choices": [{"message": {"content": "Mostly pageviews."}}]})

        monkeypatch.setattr(requests, "post", fake_post)
        generator = ChatCompletionSqlGenerator("http://llm.local", "key", "m")
        summary = {"rowCount": 1, "columns": ["event"], "sampleRows": [{"event": "pageview"}]}
        assert generator.summarize("top events?", summary) == "Mostly pageviews."
        assert captured["json"]["max_tokens"] == 150
        assert '"rowCount": 1' in captured["json"]["messages"][1]["content"]

    def test_summarize_without_key(self):
        with pytest.raises(TextGenerationFailed):
            ChatCompletionSqlGenerator("http://llm.local", "", "m").summarize("q", {"rowCount": 1})
