"""Shared fixtures: scripted LLM spy, spying runner, seeded in-memory DuckDB store."""

import json
from datetime import date, datetime, timedelta

import pytest

from teamlens.config import Settings
from teamlens.errors import ExecutionError
from teamlens.executors.duckdb_exec import DuckRunner
from teamlens.executors.schema import ensure_schema

PIONEER_COMMITS = {"Alice": 40, "Ben": 30, "Cal": 20, "Dee": 10, "Eve": 5}
LEGACY_COMMITS = {"Liam": 12, "Mia": 7}
PIONEER_TICKETS = {"Alice": 6, "Ben": 2, "Cal": 1}


class FakeLLM:
    """Returns scripted replies in order and records every call."""

    model = "fake-model"

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    def complete(self, prompt, system=None, temperature=None, max_tokens=None):
        self.calls.append({"prompt": prompt, "system": system, "temperature": temperature, "max_tokens": max_tokens})
        if not self.replies:
            raise AssertionError(f"unexpected LLM call #{len(self.calls)}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class SpyRunner:
    """Wraps a runner and records every statement sent to it."""

    def __init__(self, runner):
        self.runner = runner
        self.placeholder = runner.placeholder
        self.queries = []
        self.executes = []

    def query(self, sql, params=None, max_rows=None):
        self.queries.append(sql)
        return self.runner.query(sql, params, max_rows=max_rows)

    def execute(self, sql, params=None):
        self.executes.append(sql)
        return self.runner.execute(sql, params)

    def ping(self):
        return self.runner.ping()


class BrokenRunner:
    placeholder = "?"

    def query(self, sql, params=None, max_rows=None):
        raise ExecutionError("connection refused")

    def execute(self, sql, params=None):
        raise ExecutionError("connection refused")

    def ping(self):
        return False


def sql_reply(sql, description="Query Results", chart_type="table"):
    return json.dumps({"sql": sql, "description": description, "chart_type": chart_type})


def _insert(runner, table, rows):
    cols = list(rows[0])
    sql = f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join(['?'] * len(cols))})"
    runner.execute_many(sql, [[row[c] for c in cols] for row in rows])


def _seed(runner):
    now = datetime.now()
    devs, commits, tickets = [], [], []
    dev_id, commit_id, ticket_id = 1, 1, 1
    for app_type, counts in (("pioneer", PIONEER_COMMITS), ("legacy", LEGACY_COMMITS)):
        for name, n in counts.items():
            devs.append({"id": dev_id, "name": name, "github_username": name.lower(), "app_type": app_type})
            for i in range(n):
                commits.append({
                    "id": commit_id,
                    "sha": f"sha{commit_id}",
                    "message": "work",
                    "developer_id": dev_id,
                    "repository_id": 1 if app_type == "pioneer" else 2,
                    "committed_at": now - timedelta(days=1 + i % 20),
                    "additions": 10,
                    "deletions": 2,
                    "app_type": app_type,
                })
                commit_id += 1
            for i in range(PIONEER_TICKETS.get(name, 0) if app_type == "pioneer" else 0):
                tickets.append({
                    "id": ticket_id,
                    "key": f"PIO-{ticket_id}",
                    "title": f"Ticket {ticket_id}",
                    "status": "Done" if i % 2 else "In Progress",
                    "developer_id": dev_id,
                    "created_at_jira": now - timedelta(days=2),
                    "app_type": app_type,
                })
                ticket_id += 1
            dev_id += 1

    _insert(runner, "developers", devs)
    _insert(runner, "repositories", [
        {"id": 1, "name": "pioneer-web", "full_name": "acme/pioneer-web", "owner": "acme", "app_type": "pioneer"},
        {"id": 2, "name": "legacy-core", "full_name": "acme/legacy-core", "owner": "acme", "app_type": "legacy"},
    ])
    _insert(runner, "commits", commits)
    _insert(runner, "tickets", tickets)
    runner.execute(
        "INSERT INTO meeting_transcripts (source, meeting_date, text) VALUES (?, ?, ?)",
        ("github_jira", date.today() - timedelta(days=3), "Alice walked through the release checklist and code review backlog."),
    )
    runner.execute(
        "INSERT INTO meeting_transcripts (source, meeting_date, text) VALUES (?, ?, ?)",
        ("github_jira", date.today() - timedelta(days=90), "Old planning notes about the release train."),
    )


@pytest.fixture
def empty_store():
    runner = DuckRunner(":memory:", statement_timeout_ms=10000)
    ensure_schema(runner)
    yield runner
    runner.close()


@pytest.fixture
def store(empty_store):
    _seed(empty_store)
    return empty_store


@pytest.fixture
def spy(store):
    return SpyRunner(store)


@pytest.fixture
def settings():
    return Settings(statement_timeout_ms=10000, history_limit=5)
