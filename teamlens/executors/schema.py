# teamlens/executors/schema.py

"""DDL for the read model the query pipeline runs against (DuckDB and PostgreSQL)."""

STORE_TABLES = ("developers", "repositories", "commits", "pull_requests", "tickets")

# Column listing the SQL prompt embeds; keep in sync with the DDL below.
PROMPT_SCHEMA = {
    "developers": ["id", "name", "github_username", "jira_username", "email", "app_type"],
    "repositories": ["id", "name", "full_name", "owner", "language", "app_type"],
    "commits": [
        "id", "sha", "message", "developer_id", "repository_id", "committed_at",
        "additions", "deletions", "app_type",
    ],
    "pull_requests": [
        "id", "number", "title", "state", "developer_id", "repository_id",
        "opened_at", "closed_at", "merged_at", "app_type",
    ],
    "tickets": [
        "id", "key", "title", "status", "priority", "developer_id",
        "created_at_jira", "updated_at_jira", "app_type",
    ],
}

DDL = [
    """
    CREATE TABLE IF NOT EXISTS developers (
        id BIGINT PRIMARY KEY,
        name VARCHAR NOT NULL,
        github_username VARCHAR,
        jira_username VARCHAR,
        email VARCHAR,
        avatar_url VARCHAR,
        app_type VARCHAR NOT NULL DEFAULT 'legacy'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS repositories (
        id BIGINT PRIMARY KEY,
        name VARCHAR NOT NULL,
        full_name VARCHAR NOT NULL,
        owner VARCHAR NOT NULL,
        description TEXT,
        language VARCHAR,
        github_id VARCHAR,
        private BOOLEAN DEFAULT FALSE,
        app_type VARCHAR NOT NULL DEFAULT 'legacy'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS commits (
        id BIGINT PRIMARY KEY,
        sha VARCHAR NOT NULL,
        message TEXT,
        developer_id BIGINT NOT NULL,
        repository_id BIGINT NOT NULL,
        committed_at TIMESTAMP,
        additions INTEGER DEFAULT 0,
        deletions INTEGER DEFAULT 0,
        app_type VARCHAR NOT NULL DEFAULT 'legacy'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pull_requests (
        id BIGINT PRIMARY KEY,
        number INTEGER NOT NULL,
        title VARCHAR NOT NULL,
        body TEXT,
        state VARCHAR NOT NULL,
        developer_id BIGINT NOT NULL,
        repository_id BIGINT NOT NULL,
        github_id VARCHAR,
        opened_at TIMESTAMP,
        closed_at TIMESTAMP,
        merged_at TIMESTAMP,
        app_type VARCHAR NOT NULL DEFAULT 'legacy'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id BIGINT PRIMARY KEY,
        key VARCHAR NOT NULL,
        title VARCHAR NOT NULL,
        description TEXT,
        status VARCHAR NOT NULL,
        priority VARCHAR,
        ticket_type VARCHAR,
        developer_id BIGINT,
        project_key VARCHAR,
        jira_id VARCHAR,
        created_at_jira TIMESTAMP,
        updated_at_jira TIMESTAMP,
        app_type VARCHAR NOT NULL DEFAULT 'legacy'
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS prompt_histories_id_seq",
    """
    CREATE TABLE IF NOT EXISTS prompt_histories (
        id BIGINT DEFAULT nextval('prompt_histories_id_seq'),
        app_type VARCHAR NOT NULL DEFAULT 'legacy',
        ip_address VARCHAR NOT NULL,
        prompt TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL,
        UNIQUE (ip_address, prompt)
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS meeting_transcripts_id_seq",
    """
    CREATE TABLE IF NOT EXISTS meeting_transcripts (
        id BIGINT DEFAULT nextval('meeting_transcripts_id_seq'),
        source VARCHAR NOT NULL DEFAULT 'github_jira',
        meeting_date DATE,
        text TEXT NOT NULL
    )
    """,
]


def ensure_schema(runner) -> None:
    """Create every table the pipeline touches; safe to call on each start-up."""
    for statement in DDL:
        runner.execute(statement)


def prompt_schema_lines():
    return [f"- {table} ({', '.join(cols)})" for table, cols in PROMPT_SCHEMA.items()]
