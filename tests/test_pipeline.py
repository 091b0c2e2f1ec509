import json

from conftest import FakeLLM, sql_reply
from teamlens.errors import GENERIC_FAILURE, UpstreamError
from teamlens.llm.llm_sql_agent import clean_reply, run_query
from teamlens.utils.conversation import ConversationState

TOP_COMMITTERS = """SELECT d.name, COUNT(c.id) AS commits
FROM developers d
JOIN commits c ON c.developer_id = d.id AND c.app_type = '{app}'
WHERE d.app_type = '{app}' AND c.committed_at >= CURRENT_DATE - INTERVAL '30 days'
GROUP BY d.name
ORDER BY commits DESC
LIMIT 5"""

TOP_TICKETS = """SELECT d.name, COUNT(t.id) AS tickets
FROM developers d
JOIN tickets t ON t.developer_id = d.id AND t.app_type = 'pioneer'
WHERE d.app_type = 'pioneer'
GROUP BY d.name
ORDER BY tickets DESC
LIMIT 1"""

ALICE_PROFILE = """SELECT d.name AS developer,
  COUNT(DISTINCT c.id) AS total_commits,
  COUNT(DISTINCT p.id) AS total_prs,
  COUNT(DISTINCT t.id) AS total_tickets
FROM developers d
LEFT JOIN commits c ON c.developer_id = d.id AND c.app_type = 'pioneer'
LEFT JOIN pull_requests p ON p.developer_id = d.id AND p.app_type = 'pioneer'
LEFT JOIN tickets t ON t.developer_id = d.id AND t.app_type = 'pioneer'
WHERE d.app_type = 'pioneer' AND d.name ILIKE '%Alice%'
GROUP BY d.name"""

NOBODY = "SELECT d.name, COUNT(*) AS total FROM developers d WHERE d.app_type = 'pioneer' AND d.name = 'Nobody' GROUP BY d.name"


def test_top_committers_bar_chart(spy, settings):
    llm = FakeLLM([
        sql_reply(TOP_COMMITTERS.format(app="pioneer"), "Top 5 developers by commits", "bar"),
        json.dumps({"summary": "Alice leads the team."}),
    ])
    payload, status = run_query("top 5 developers by commits", "pioneer", ConversationState(), spy, llm, settings)

    assert status == 200
    assert payload["chart_type"] == "bar"
    assert payload["data"]["labels"] == ["Alice", "Ben", "Cal", "Dee", "Eve"]
    assert payload["data"]["datasets"][0]["data"] == [40, 30, 20, 10, 5]
    assert payload["summary"] == "Alice leads the team."
    assert payload["processing_info"]["model_used"] == "fake-model"
    assert payload["processing_info"]["refinement_used"] is False
    assert len(llm.calls) == 2


def test_tenancy_scopes_never_overlap(store, settings):
    results = {}
    for app in ("pioneer", "legacy"):
        llm = FakeLLM([sql_reply(TOP_COMMITTERS.format(app=app), "Top developers", "table"), json.dumps({"summary": "ok"})])
        payload, status = run_query("top developers by commits", app, ConversationState(), store, llm, settings)
        assert status == 200
        results[app] = {row["name"] for row in payload["raw_results"]}
        assert f"app_type = '{app}'" in llm.calls[0]["system"]

    assert results["pioneer"] and results["legacy"]
    assert not results["pioneer"] & results["legacy"]


def test_drop_table_is_rejected_before_execution(spy, settings):
    llm = FakeLLM([sql_reply("DROP TABLE commits", "Drop", "table")])
    conversation = ConversationState()
    payload, status = run_query("DROP TABLE commits", "legacy", conversation, spy, llm, settings)

    assert status == 400
    assert payload == {"error": GENERIC_FAILURE}
    assert not any("drop" in sql.lower() for sql in spy.queries + spy.executes)
    assert spy.query("SELECT COUNT(*) FROM commits")[1][0][0] > 0
    assert not conversation.has_context


def test_pronoun_followup_prompt_names_previous_result(store, settings):
    conversation = ConversationState()
    llm = FakeLLM([
        sql_reply(TOP_TICKETS, "Top developer by tickets", "table"),
        json.dumps({"summary": "Alice closed the most tickets."}),
        "Alice could pair on code reviews to spread knowledge.",
    ])

    first, status = run_query("top developer by tickets", "pioneer", conversation, store, llm, settings)
    assert status == 200
    assert first["raw_results"] == [{"name": "Alice", "tickets": 6}]

    second, status = run_query("what should they improve on", "pioneer", conversation, store, llm, settings)
    assert status == 200
    assert second["chart_type"] == "text"
    assert second["processing_info"]["query_type"] == "conversational"
    assert "Alice" in llm.calls[-1]["prompt"]
    assert second["response"] == "Alice could pair on code reviews to spread knowledge."
    assert len(conversation.history) == 2


def test_empty_result_is_refined_exactly_once(spy, settings):
    llm = FakeLLM([
        sql_reply(NOBODY, "Nobody", "table"),
        sql_reply(NOBODY, "Still nobody", "table"),
    ])
    conversation = ConversationState()
    payload, status = run_query("show commits for Nobody", "pioneer", conversation, spy, llm, settings)

    assert status == 200
    assert payload == {"error": "No results found"}
    assert len(llm.calls) == 2
    assert "returned no results" in llm.calls[1]["prompt"]
    assert sum(1 for sql in spy.queries if "Nobody" in sql) == 2
    assert not conversation.has_context


def test_refined_result_adopted_when_non_empty(store, settings):
    llm = FakeLLM([
        sql_reply(NOBODY, "Nobody", "table"),
        sql_reply(TOP_COMMITTERS.format(app="pioneer"), "Relaxed to all developers", "bar"),
        json.dumps({"summary": "Five developers committed recently."}),
    ])
    payload, status = run_query("show commits for Nobody", "pioneer", ConversationState(), store, llm, settings)

    assert status == 200
    assert payload["description"] == "Relaxed to all developers"
    assert payload["processing_info"]["refinement_used"] is True
    assert len(payload["raw_results"]) == 5


def test_developer_profile_analysis_answers_followup_from_cache(store, settings):
    conversation = ConversationState()
    analysis = {
        "performance_summary": "Alice shipped steadily this month.",
        "strengths": "Alice is thorough in reviews.",
        "improvements": "Alice could delegate more.",
    }
    llm = FakeLLM([sql_reply(ALICE_PROFILE, "Alice profile", "table"), json.dumps(analysis)])

    payload, status = run_query("show Alice's activity profile", "pioneer", conversation, store, llm, settings)
    assert status == 200
    assert payload["summary"] == "Alice shipped steadily this month."
    assert payload["has_detailed_analysis"] is True
    assert conversation.has_analysis_for("Alice")

    calls_before = len(llm.calls)
    followup, status = run_query("what are her strengths", "pioneer", conversation, store, llm, settings)
    assert status == 200
    assert len(llm.calls) == calls_before
    assert followup["response"] == "Alice is thorough in reviews."
    assert followup["processing_info"]["model_used"] == "stored_analysis"


def test_unparseable_analysis_falls_back_to_metrics(store, settings):
    conversation = ConversationState()
    llm = FakeLLM([sql_reply(ALICE_PROFILE, "Alice profile", "table"), "not json at all"])

    payload, status = run_query("show Alice's activity profile", "pioneer", conversation, store, llm, settings)
    assert status == 200
    assert "40 commits" in payload["summary"]
    assert conversation.get_developer_analysis("alice").improvements.startswith("Alice could")


def test_blank_query_is_input_error(store, settings):
    payload, status = run_query("   ", "pioneer", ConversationState(), store, FakeLLM(), settings)
    assert status == 400
    assert payload == {"error": "Query cannot be blank."}


def test_unknown_app_type_is_input_error(store, settings):
    payload, status = run_query("top developers", "other", ConversationState(), store, FakeLLM(), settings)
    assert status == 400
    assert "legacy" in payload["error"]


def test_model_refusal_is_unanswerable(store, settings):
    llm = FakeLLM([json.dumps({"error": "Please rephrase your query"})])
    payload, status = run_query("delete all tickets", "pioneer", ConversationState(), store, llm, settings)
    assert status == 400
    assert payload == {"error": "Could not generate a valid query from your request."}


def test_garbage_model_output_is_parse_error(store, settings):
    llm = FakeLLM(["I cannot help with that."])
    payload, status = run_query("count tickets", "pioneer", ConversationState(), store, llm, settings)
    assert status == 500
    assert payload == {"error": "Invalid response from AI service."}


def test_upstream_failure_is_generic_500(store, settings):
    llm = FakeLLM([UpstreamError("Groq API error 503", status_code=503, body="overloaded")])
    conversation = ConversationState()
    payload, status = run_query("count tickets", "pioneer", conversation, store, llm, settings)
    assert status == 500
    assert payload == {"error": GENERIC_FAILURE}
    assert "overloaded" not in json.dumps(payload)


def test_summary_failure_keeps_data(store, settings):
    llm = FakeLLM([
        sql_reply(TOP_COMMITTERS.format(app="pioneer"), "Top developers by commits", "bar"),
        UpstreamError("timeout"),
    ])
    payload, status = run_query("top 5 developers by commits", "pioneer", ConversationState(), store, llm, settings)
    assert status == 200
    assert payload["summary"] == "Found 5 developers. Top developers by commits"


def test_llm_budget_caps_calls(store):
    from teamlens.config import Settings

    tight = Settings(max_llm_calls=1)
    llm = FakeLLM([
        sql_reply(TOP_COMMITTERS.format(app="pioneer"), "Top developers by commits", "bar"),
        json.dumps({"summary": "never used"}),
    ])
    payload, status = run_query("top 5 developers by commits", "pioneer", ConversationState(), store, llm, tight)
    assert status == 200
    assert len(llm.calls) == 1
    assert payload["summary"].startswith("Found 5 developers")


def test_clean_reply_flattens_lists_and_notes():
    assert clean_reply('"Keep PRs small."') == "Keep PRs small."
    assert clean_reply("Review daily.\n\nNote: this is generic.") == "Review daily."
    assert clean_reply("1. Review code\n2. Write tests") == "Review code Write tests"
