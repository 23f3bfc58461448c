"""Natural-language questions answered by generated, validated, read-only SQL."""
from __future__ import annotations
import json
import logging
import re
import time
from typing import Any, Callable
import requests
from minihog.errors import InvalidInput, TextGenerationFailed, UnsafeQuery
from minihog.infrastructure.event_store import EventStore
from minihog.infrastructure.metrics import NL_QUERIES

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER",
    "TRUNCATE", "EXECUTE", "EXEC", "ATTACH", "PRAGMA",
)
_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:sql)?\s*", re.IGNORECASE)
_TIME_HINTS = ("date", "time", "day", "month")
_VALUE_HINTS = ("count", "total", "sum")

SYSTEM_PROMPT = """You are an expert SQL query generator for SQLite. Convert natural language questions into valid SQLite SQL queries.

DATABASE SCHEMA:
Table: events
Columns:
  - event (TEXT) - The event name (e.g., 'pageview', 'button_clicked', 'signup')
  - distinct_id (TEXT) - User identifier
  - timestamp (DATETIME) - When the event occurred (UTC)
  - properties (JSON) - Event properties as JSON object
  - context (JSON) - Client context (user agent, sdk)
  - session_id (TEXT) - Session identifier
  - anonymous_id (TEXT) - Anonymous user identifier
  - received_at (DATETIME) - When the event was received by the server

RULES:
1. Only generate SELECT queries
2. Use json_extract(properties, '$.key') to access JSON properties
3. Use strftime('%Y-%m-%d', timestamp) for day grouping (and the matching format for hour/week/month)
4. Always include a LIMIT clause (default 100)
5. Use COUNT(DISTINCT distinct_id) for unique users
6. Always alias aggregates (COUNT(*) AS count, SUM(...) AS total)

Return ONLY the SQL query, no explanations, no markdown."""


def extract_sql(content: str) -> str:
    sql = _FENCE_RE.sub("", content.strip())
    sql = sql.replace("```", "")
    return sql.strip().rstrip(";").strip()


def validate_sql(sql: str, max_length: int = 5000) -> None:
    if not sql:
        raise UnsafeQuery("Generated query is empty")
    if len(sql) > max_length:
        raise UnsafeQuery("Query too long")
    match = _FORBIDDEN_RE.search(sql)
    if match:
        raise UnsafeQuery(f"Forbidden SQL keyword detected: {match.group(1).upper()}")
    upper = sql.strip().upper()
    if not (upper.startswith("SELECT") or upper.startswith("WITH")):
        raise UnsafeQuery("Query must be a SELECT statement")
    if ";" in sql:
        raise UnsafeQuery("Multiple statements are not allowed")


def suggest_chart_type(results: list[dict[str, Any]]) -> str:
    if not results:
        return "none"
    columns = [c.lower() for c in results[0].keys()]
    if any(h in c for c in columns for h in _TIME_HINTS) and len(results) > 1:
        return "line"
    if len(columns) == 1 and len(results) == 1:
        return "number"
    if len(columns) == 2 and len(results) <= 20 and any(h in c for c in columns for h in _VALUE_HINTS):
        return "bar"
    if len(columns) == 2 and len(results) <= 10:
        return "pie"
    return "table"


INSIGHTS_PROMPT = "You are a data analyst. Provide a brief, insightful summary of query results in 2-3 sentences."
NO_DATA_INSIGHT = "No data found for the given query."


class ChatCompletionSqlGenerator:
    """OpenAI-compatible chat completions client that turns a question into SQL text.

    The same client writes the short result summaries through :meth:`summarize`.
    """

    def __init__(self, api_url: str, api_key: str | None, model: str, timeout: float = 30.0):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def _complete(self, messages: list[dict[str, str]], temperature: float, max_tokens: int, failure: str) -> str:
        if not self.api_key:
            raise TextGenerationFailed("NL query API key is not configured")
        payload = {"model": self.model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            resp = requests.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
            return data["choices"][0]["message"]["content"] or ""
        except (requests.RequestException, ValueError, KeyError, IndexError) as e:
            logger.error(f"Chat completion request failed: {e}")
            raise TextGenerationFailed(failure) from e

    def __call__(self, question: str) -> str:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f'Generate a SQLite SQL query to answer this question: "{question}"\n\nRemember: output ONLY the SQL query.'},
        ]
        return self._complete(messages, temperature=0.1, max_tokens=500, failure="Failed to generate SQL from question")

    def summarize(self, question: str, summary: dict[str, Any]) -> str:
        messages = [
            {"role": "system", "content": INSIGHTS_PROMPT},
            {"role": "user", "content": f'Question: "{question}"\n\nQuery results summary:\n{json.dumps(summary, indent=2, default=str)}\n\nProvide a brief insight about these results.'},
        ]
        return self._complete(messages, temperature=0.7, max_tokens=150, failure="Failed to summarize query results")


class NaturalLanguageQueryService:
    def __init__(
        self,
        store: EventStore,
        generator: Callable[[str], str],
        max_sql_length: int = 5000,
        max_question_length: int = 500,
        summarizer: Callable[[str, dict[str, Any]], str] | None = None,
    ):
        self.store = store
        self.generator = generator
        self.summarizer = summarizer
        self.max_sql_length = max_sql_length
        self.max_question_length = max_question_length

    def generate_sql(self, question: str) -> str:
        started = time.perf_counter()
        sql = extract_sql(self.generator(question))
        logger.debug(f"SQL generated in {(time.perf_counter() - started) * 1000:.0f}ms: {sql}")
        return sql

    def generate_insights(self, question: str, results: list[dict[str, Any]]) -> str:
        """Two or three sentence summary of ``results``; a row count when no summary can be written."""
        if not results:
            return NO_DATA_INSIGHT
        fallback = f"Query returned {len(results)} results."
        if self.summarizer is None:
            return fallback
        summary = {"rowCount": len(results), "columns": list(results[0].keys()), "sampleRows": results[:3]}
        try:
            text = self.summarizer(question, summary).strip()
        except TextGenerationFailed as e:
            logger.warning(f"Result summary unavailable for question {question!r}: {e}")
            return fallback
        return text or fallback

    def execute(self, question: str) -> dict[str, Any]:
        question = (question or "").strip()
        if not question:
            raise InvalidInput("question is required")
        if len(question) > self.max_question_length:
            raise InvalidInput(f"question exceeds {self.max_question_length} characters")
        started = time.perf_counter()
        try:
            sql = self.generate_sql(question)
            validate_sql(sql, self.max_sql_length)
        except UnsafeQuery as e:
            NL_QUERIES.labels("rejected").inc()
            logger.warning(f"Rejected generated SQL for question {question!r}: {e}")
            raise
        except TextGenerationFailed:
            NL_QUERIES.labels("generation_failed").inc()
            raise
        results = self.store.execute_readonly(sql)
        NL_QUERIES.labels("ok").inc()
        insights = self.generate_insights(question, results)
        elapsed = int((time.perf_counter() - started) * 1000)
        logger.info(f"NL query returned {len(results)} rows in {elapsed}ms")
        return {
            "question": question,
            "sql": sql,
            "results": results,
            "insights": insights,
            "chart_suggestion": suggest_chart_type(results),
            "execution_time_ms": elapsed,
        }
