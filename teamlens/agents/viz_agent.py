# teamlens/agents/viz_agent.py

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from teamlens.llm.response_parser import GeneratedQuery

logger = logging.getLogger(__name__)

VALUE_PRIORITY = ("total", "total_activity", "count", "commits", "pull_requests", "tickets")
LABEL_PRIORITY = ("name", "developer_name", "developer", "title", "repository_name", "status")

BAR_RGB = (
    (52, 152, 219),   # blue
    (46, 204, 113),   # green
    (241, 196, 15),   # yellow
    (231, 76, 60),    # red
    (155, 89, 182),   # purple
    (230, 126, 34),   # orange
)
PIE_RGB = BAR_RGB + (
    (26, 188, 156),   # turquoise
    (243, 156, 18),   # dark orange
)


def safe_json(obj):
    """Make DB values JSON friendly (Decimal, dates, intervals)."""
    if isinstance(obj, list):
        return [safe_json(x) for x in obj]
    if isinstance(obj, tuple):
        return [safe_json(x) for x in obj]
    if isinstance(obj, dict):
        return {k: safe_json(v) for k, v in obj.items()}
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return str(obj)
    return obj


def humanize(column: str) -> str:
    text = str(column).replace("_", " ").strip()
    if text.lower().endswith(" id"):
        text = text[:-3]
    return text[:1].upper() + text[1:]


def titleize(column: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in humanize(column).split())


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _number(value: Any):
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float, Decimal)):
        f = float(value)
        return int(f) if f.is_integer() else round(f, 2)
    try:
        f = float(str(value))
    except ValueError:
        return 0
    return int(f) if f.is_integer() else round(f, 2)


def _colors(palette, count: int, alpha: str) -> List[str]:
    return [f"rgba({r}, {g}, {b}, {alpha})" for r, g, b in (palette[i % len(palette)] for i in range(count))]


def _label(value: Any) -> str:
    return "-" if value is None else str(value)


def format_table_value(value: Any):
    if value is None:
        return "-"
    if isinstance(value, (datetime, date)):
        return value.strftime("%b %d, %Y")
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (float, Decimal)):
        return round(float(value), 2)
    if isinstance(value, int):
        return value
    return str(value)


class VisualizationAgent:
    """
    Shapes raw result rows into Chart.js payloads (bar / pie / table).
    Column names are chosen freely by the model, so label and value columns
    are detected rather than assumed.
    """

    def detect_value_column(self, columns: List[str], first_row: Dict[str, Any]) -> Optional[str]:
        for col in VALUE_PRIORITY:
            if col in columns:
                return col
        if len(columns) >= 2 and is_number(first_row.get(columns[1])):
            return columns[1]
        numeric = [c for c in columns if is_number(first_row.get(c))]
        return numeric[0] if numeric else None

    def detect_label_column(self, columns: List[str], value_column: str) -> Optional[str]:
        for col in LABEL_PRIORITY:
            if col in columns and col != value_column:
                return col
        others = [c for c in columns if c != value_column]
        return others[0] if others else None

    def format_bar(self, rows: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        columns = list(rows[0].keys())
        if len(columns) < 2:
            return None
        value_column = self.detect_value_column(columns, rows[0])
        label_column = self.detect_label_column(columns, value_column) if value_column else None
        if not (value_column and label_column):
            return None
        logger.debug("Bar chart: label=%s value=%s", label_column, value_column)
        values = [_number(r.get(value_column)) for r in rows]
        return {
            "labels": [_label(r.get(label_column)) for r in rows],
            "datasets": [{
                "label": humanize(value_column),
                "data": values,
                "backgroundColor": _colors(BAR_RGB, len(values), "0.6"),
                "borderColor": _colors(BAR_RGB, len(values), "1"),
                "borderWidth": 1,
            }],
        }

    def format_pie(self, rows: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        columns = list(rows[0].keys())
        if len(columns) < 2:
            return None
        values = [_number(r.get(columns[1])) for r in rows]
        return {
            "labels": [_label(r.get(columns[0])) for r in rows],
            "datasets": [{
                "data": values,
                "backgroundColor": _colors(PIE_RGB, len(values), "0.7"),
                "borderColor": _colors(PIE_RGB, len(values), "1"),
                "borderWidth": 1,
            }],
        }

    def format_table(self, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        headers = list(rows[0].keys()) if rows else []
        return {
            "headers": [titleize(h) for h in headers],
            "rows": [[format_table_value(r.get(h)) for h in headers] for r in rows],
            "raw_headers": headers,
        }

    def format(self, rows: List[Dict[str, Any]], query: GeneratedQuery, user_query: str) -> Dict[str, Any]:
        if not rows:
            return {"error": "No results found"}

        chart_type = query.chart_type
        data = None
        if chart_type == "bar":
            data = self.format_bar(rows)
        elif chart_type == "pie":
            data = self.format_pie(rows)
        if data is None:
            chart_type = "table"
            data = self.format_table(rows)

        return {
            "success": True,
            "user_query": user_query,
            "description": query.description,
            "chart_type": chart_type,
            "data": data,
            "raw_results": safe_json(rows),
        }
