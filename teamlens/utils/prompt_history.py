# teamlens/utils/prompt_history.py

import logging
from datetime import datetime

from teamlens.errors import ExecutionError

logger = logging.getLogger(__name__)


def record_prompt(runner, ip_address: str, prompt: str, app_type: str) -> bool:
    """
    Append the prompt to prompt_histories, once per (requester, exact prompt text).
    The log is never read back by the pipeline, so a failed write is only logged.
    """
    p = runner.placeholder
    now = datetime.now()
    sql = (
        "INSERT INTO prompt_histories (app_type, ip_address, prompt, created_at, updated_at) "
        f"VALUES ({p}, {p}, {p}, {p}, {p}) "
        "ON CONFLICT (ip_address, prompt) DO NOTHING"
    )
    try:
        runner.execute(sql, (app_type, ip_address or "unknown", prompt, now, now))
        return True
    except ExecutionError as e:
        logger.warning("Could not record prompt history: %s", e.detail)
        return False


def list_prompts(runner, app_type: str, limit: int = 50):
    p = runner.placeholder
    cols, rows = runner.query(
        "SELECT ip_address, prompt, created_at FROM prompt_histories "
        f"WHERE app_type = {p} ORDER BY created_at DESC LIMIT {int(limit)}",
        (app_type,),
    )
    return [dict(zip(cols, r)) for r in rows]
