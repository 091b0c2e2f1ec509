import json
from datetime import date, datetime
from decimal import Decimal

from teamlens.agents.viz_agent import BAR_RGB, PIE_RGB, VisualizationAgent, humanize, titleize
from teamlens.llm.response_parser import GeneratedQuery

viz = VisualizationAgent()


def _query(chart_type, description="Results"):
    return GeneratedQuery(sql="SELECT 1", description=description, chart_type=chart_type)


def test_empty_rows_report_no_results():
    assert viz.format([], _query("bar"), "q") == {"error": "No results found"}


def test_bar_prefers_named_value_column():
    rows = [
        {"name": "Alice", "id": 7, "commits": 40},
        {"name": "Ben", "id": 3, "commits": 30},
    ]
    payload = viz.format(rows, _query("bar", "Top devs"), "top devs")
    assert payload["success"] is True
    assert payload["chart_type"] == "bar"
    assert payload["description"] == "Top devs"
    assert payload["data"]["labels"] == ["Alice", "Ben"]
    dataset = payload["data"]["datasets"][0]
    assert dataset["label"] == "Commits"
    assert dataset["data"] == [40, 30]
    assert dataset["backgroundColor"][0] == "rgba(52, 152, 219, 0.6)"
    assert dataset["borderColor"][0] == "rgba(52, 152, 219, 1)"


def test_bar_falls_back_to_second_numeric_column():
    rows = [{"repository_name": "web", "merged_count": Decimal("12.0")}, {"repository_name": "api", "merged_count": 4.25}]
    data = viz.format(rows, _query("bar"), "q")["data"]
    assert data["labels"] == ["web", "api"]
    assert data["datasets"][0]["data"] == [12, 4.25]


def test_single_column_bar_falls_back_to_table():
    payload = viz.format([{"name": "Alice"}, {"name": "Ben"}], _query("bar"), "q")
    assert payload["chart_type"] == "table"
    assert payload["data"]["headers"] == ["Name"]
    assert payload["data"]["rows"] == [["Alice"], ["Ben"]]


def test_bar_without_numeric_column_falls_back_to_table():
    payload = viz.format([{"key": "PIO-1", "status": "Done"}], _query("bar"), "q")
    assert payload["chart_type"] == "table"


def test_pie_palette_cycles_past_its_size():
    rows = [{"status": f"S{i}", "count": i + 1} for i in range(len(PIE_RGB) + 2)]
    data = viz.format(rows, _query("pie"), "q")["data"]
    colors = data["datasets"][0]["backgroundColor"]
    assert len(colors) == len(rows)
    assert colors[len(PIE_RGB)] == colors[0]
    assert colors[0].endswith("0.7)")
    assert data["datasets"][0]["data"] == list(range(1, len(rows) + 1))


def test_bar_palette_has_six_colours():
    rows = [{"name": f"d{i}", "total": i} for i in range(7)]
    colors = viz.format(rows, _query("bar"), "q")["data"]["datasets"][0]["backgroundColor"]
    assert len(BAR_RGB) == 6
    assert colors[6] == colors[0]


def test_table_formats_dates_floats_and_nulls():
    rows = [{
        "ticket_key": "PIO-1",
        "created_at_jira": datetime(2025, 10, 16, 19, 35),
        "due": date(2025, 11, 2),
        "score": 3.14159,
        "assignee_id": None,
    }]
    payload = viz.format(rows, _query("table"), "q")
    data = payload["data"]
    assert data["headers"] == ["Ticket Key", "Created At Jira", "Due", "Score", "Assignee"]
    assert data["raw_headers"] == list(rows[0].keys())
    assert data["rows"] == [["PIO-1", "Oct 16, 2025", "Nov 02, 2025", 3.14, "-"]]
    assert payload["raw_results"][0]["created_at_jira"] == "2025-10-16T19:35:00"


def test_format_is_deterministic():
    rows = [{"name": n, "total": t} for n, t in (("b", 2), ("a", 5), ("c", 1))]
    first = json.dumps(viz.format(rows, _query("bar"), "q"), sort_keys=False)
    second = json.dumps(viz.format(rows, _query("bar"), "q"), sort_keys=False)
    assert first == second
    assert json.loads(first)["data"]["labels"] == ["b", "a", "c"]


def test_column_names_are_humanized():
    assert humanize("total_commits") == "Total commits"
    assert humanize("developer_id") == "Developer"
    assert titleize("pull_requests") == "Pull Requests"
