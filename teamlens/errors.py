# teamlens/errors.py

from typing import Any, Dict, Optional


GENERIC_FAILURE = "Sorry, I couldn't process your query. Please try rephrasing it."


class QueryPipelineError(Exception):
    """
    Base class for every failure the query pipeline converts into an
    ``{"error": ...}`` payload.

    ``user_message`` is what the client sees. ``detail`` is for server logs
    only and never leaves the process.
    """

    status_code: int = 500
    user_message: str = GENERIC_FAILURE

    def __init__(self, detail: str = "", user_message: Optional[str] = None):
        super().__init__(detail or self.user_message)
        self.detail = detail
        if user_message:
            self.user_message = user_message

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.user_message}


class InputError(QueryPipelineError):
    status_code = 400
    user_message = "Query cannot be blank."


class UnanswerableQueryError(QueryPipelineError):
    status_code = 400
    user_message = "Could not generate a valid query from your request."


class RejectedQueryError(QueryPipelineError):
    status_code = 400


class ParseError(QueryPipelineError):
    user_message = "Invalid response from AI service."

    def __init__(self, detail: str = "", raw_text: str = ""):
        super().__init__(detail)
        self.raw_text = raw_text


class ExecutionError(QueryPipelineError):
    pass


class UpstreamError(QueryPipelineError):
    def __init__(self, detail: str = "", status_code: Optional[int] = None, body: str = ""):
        super().__init__(detail)
        self.upstream_status = status_code
        self.body = body


class BudgetExceededError(QueryPipelineError):
    pass
