# scripts/ingest.py
import argparse
import logging
from pathlib import Path
from typing import Dict, Union

import pandas as pd

from teamlens.config import Settings
from teamlens.executors.schema import STORE_TABLES, ensure_schema
from teamlens.llm.llm_sql_agent import build_runner
from teamlens.tenancy import AppScope

logger = logging.getLogger(__name__)

LOADABLE_TABLES = STORE_TABLES + ("meeting_transcripts",)
TIMESTAMP_COLUMNS = (
    "committed_at", "opened_at", "closed_at", "merged_at",
    "created_at_jira", "updated_at_jira", "meeting_date",
)


def _table_columns(runner, table: str):
    cols, _ = runner.query(f"SELECT * FROM {table} LIMIT 0")
    return cols


def prepare_frame(df: pd.DataFrame, table: str, app_type: str, columns) -> pd.DataFrame:
    """Tag rows with app_type, parse timestamps, and keep only columns the table has."""
    df = df.copy()
    df.columns = [str(c).strip().lower().replace(" ", "_") for c in df.columns]
    if "app_type" in columns:
        df["app_type"] = app_type
    for col in TIMESTAMP_COLUMNS:
        if col in df.columns:
            df[col] = pd.to_datetime(df[col], errors="coerce")
    if "meeting_date" in df.columns:
        df["meeting_date"] = df["meeting_date"].dt.date
    dropped = [c for c in df.columns if c not in columns]
    if dropped:
        logger.warning("Ignoring columns not in %s: %s", table, ", ".join(dropped))
    return df[[c for c in df.columns if c in columns]]


def ingest_file(runner, file_path: Union[str, Path], table: str, app_type: str) -> int:
    """
    Load one CSV/Excel export into a store table, tagged with app_type.
    Returns the number of rows written.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    if table not in LOADABLE_TABLES:
        raise ValueError(f"Unknown table: {table}")
    scope = AppScope.parse(app_type)

    suf = file_path.suffix.lower()
    if suf == ".csv":
        df = pd.read_csv(file_path)
    elif suf in (".xls", ".xlsx"):
        df = pd.read_excel(file_path)
    else:
        raise ValueError(f"Unsupported file type: {suf}")

    df = prepare_frame(df, table, scope.value, _table_columns(runner, table))
    if df.empty:
        return 0

    p = runner.placeholder
    cols = list(df.columns)
    sql = f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join([p] * len(cols))})"
    records = df.astype(object).where(pd.notna(df), None)
    written = runner.execute_many(sql, records.itertuples(index=False, name=None))

    logger.info("Ingested %d rows from %s into %s (%s)", written, file_path.name, table, scope.value)
    return written


def ingest_directory(runner, directory: Union[str, Path], app_type: str) -> Dict[str, int]:
    """Load every <table>.csv found in a directory, in dependency order."""
    directory = Path(directory)
    counts = {}
    for table in LOADABLE_TABLES:
        path = directory / f"{table}.csv"
        if path.exists():
            counts[table] = ingest_file(runner, path, table, app_type)
    return counts


def main(argv=None):
    parser = argparse.ArgumentParser(description="Load GitHub/Jira CSV exports into the TeamLens store.")
    parser.add_argument("path", help="CSV/Excel file, or a directory of <table>.csv files")
    parser.add_argument("--app-type", required=True, choices=[s.value for s in AppScope])
    parser.add_argument("--table", choices=LOADABLE_TABLES, help="target table when loading a single file")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    runner = build_runner(settings)
    ensure_schema(runner)
    try:
        path = Path(args.path)
        if path.is_dir():
            counts = ingest_directory(runner, path, args.app_type)
        else:
            if not args.table:
                parser.error("--table is required when loading a single file")
            counts = {args.table: ingest_file(runner, path, args.table, args.app_type)}
    finally:
        runner.close()
    for table, n in counts.items():
        logger.info("%s: %d rows", table, n)


if __name__ == "__main__":
    main()
