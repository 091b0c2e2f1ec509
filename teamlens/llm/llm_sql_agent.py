# teamlens/llm/llm_sql_agent.py

import logging
import re
from typing import Any, Dict, Optional, Tuple

from langgraph.graph import StateGraph, END

from teamlens.agents.analyst_agent import AnalystAgent, profile_developer
from teamlens.agents.context_provider import ContextProvider
from teamlens.agents.explainer_agent import ExplainerAgent
from teamlens.agents.planner_agent import CONVERSATIONAL, PlannerAgent
from teamlens.agents.sql_agent import SQLAgent
from teamlens.agents.viz_agent import VisualizationAgent
from teamlens.config import Settings
from teamlens.errors import (
    GENERIC_FAILURE,
    InputError,
    ParseError,
    QueryPipelineError,
    UnanswerableQueryError,
)
from teamlens.executors.duckdb_exec import DuckRunner
from teamlens.executors.postgres_exec import PostgresRunner
from teamlens.executors.sandbox import QuerySandbox
from teamlens.llm.groq_client import GroqClient
from teamlens.llm.ollama_client import OllamaClient
from teamlens.llm.response_parser import parse_response
from teamlens.rag.transcripts import TranscriptSearch
from teamlens.tenancy import AppScope, profile_for
from teamlens.utils.budget import BudgetedLLM, CallBudget
from teamlens.utils.conversation import ConversationState

logger = logging.getLogger(__name__)

CONVERSATION_SYSTEM = (
    "You are a performance analyst. Write in natural paragraph form. NEVER use lists or bullets."
)
CONVERSATION_TEMPERATURE = 0.3
CONVERSATION_MAX_TOKENS = 1000

_NOTE_RE = re.compile(r"\n\n?Note:", re.IGNORECASE)
_NUMBERED_RE = re.compile(r"^\d+\.\s+", re.MULTILINE)


# -------------------
# Factories
# -------------------

def build_llm(settings: Settings):
    if settings.llm_provider == "ollama":
        return OllamaClient.from_settings(settings)
    return GroqClient.from_settings(settings)


def build_runner(settings: Settings):
    if settings.database_backend == "postgres":
        return PostgresRunner.from_settings(settings)
    return DuckRunner.from_settings(settings)


# -------------------
# Helpers
# -------------------

def clean_reply(text: Optional[str]) -> str:
    """Strip wrapping quotes and trailing notes; flatten numbered lists into one paragraph."""
    reply = (text or "").strip()
    reply = re.sub(r'^["\']|["\']$', "", reply)
    reply = _NOTE_RE.split(reply)[0].strip()
    if _NUMBERED_RE.match(reply):
        logger.warning("Model returned a numbered list, converting to paragraph")
        reply = re.sub(r"\n+", " ", _NUMBERED_RE.sub("", reply))
    return reply.strip()


def _transcript_lines(chunks, limit: int = 5, width: int = 400):
    lines = ["=== RELEVANT MEETING TRANSCRIPTS ==="]
    for chunk in chunks[:limit]:
        when = f" ({chunk['meeting_date']})" if chunk.get("meeting_date") else ""
        lines.append(f"-{when}: {str(chunk.get('text', ''))[:width]}")
    return lines + [""]


def _text_payload(user_query: str, description: str, response: str, processing_info: Dict[str, Any]):
    return {
        "success": True,
        "user_query": user_query,
        "description": description,
        "chart_type": "text",
        "data": {"response": response},
        "response": response,
        "raw_results": [],
        "processing_info": processing_info,
    }


# -------------------
# Graph
# -------------------

def build_agent_graph(runner, llm, settings: Settings):
    """
    Orchestrates one request:
        planner -> followup -> END
        planner -> conversational -> END
        planner -> generate_sql -> execute -> (refine)? -> format -> (summarize -> update_state)? -> END
    ``llm`` is expected to be budget-wrapped by the caller.
    """

    planner = PlannerAgent()
    context_provider = ContextProvider(runner)
    sql_agent = SQLAgent(llm, variant=settings.sql_variant)
    sandbox = QuerySandbox(runner, max_rows=settings.max_result_rows)
    viz_agent = VisualizationAgent()
    explainer_agent = ExplainerAgent(llm)
    analyst_agent = AnalystAgent(llm)
    transcripts = TranscriptSearch(runner)

    def planner_node(state: Dict[str, Any]) -> Dict[str, Any]:
        """Routes to followup (cached analysis), conversational, or the SQL branch."""
        query = state["query"]
        conversation: ConversationState = state["conversation"]

        answer = analyst_agent.answer_followup(query, conversation)
        if answer:
            state["followup"] = answer
            state["route"] = "followup"
            return state

        state["transcripts"] = transcripts.search_recent(query)
        state["route"] = "conversational" if planner.classify(query) == CONVERSATIONAL else "generate_sql"
        logger.info("Routing %r to %s", query, state["route"])
        return state

    def followup_node(state: Dict[str, Any]) -> Dict[str, Any]:
        developer, kind, text = state["followup"]
        state["conversation"].add_conversational_exchange(state["query"], text)
        state["payload"] = _text_payload(
            state["query"],
            "Developer Analysis (Retrieved from Storage)",
            text,
            {
                "model_used": "stored_analysis",
                "query_type": "followup",
                "analysis_type": kind,
                "developer": developer,
                "context_used": True,
                "refinement_used": False,
                "transcripts_used": False,
            },
        )
        return state

    def conversational_node(state: Dict[str, Any]) -> Dict[str, Any]:
        query = state["query"]
        scope: AppScope = state["app_scope"]
        conversation: ConversationState = state["conversation"]
        chunks = state.get("transcripts") or []

        context = conversation.build_context(scope.value, query)
        parts = []
        if context:
            parts += [context, ""]
        if chunks:
            parts += _transcript_lines(chunks)
        parts += [
            f"You are an AI assistant for a GitHub/Jira analytics dashboard ({profile_for(scope).display_name} team).",
            "Provide helpful advice based on software development best practices.",
            "Keep responses concise and actionable (3-4 sentences).",
            "",
            f"User question: {query}",
        ]
        reply = clean_reply(
            llm.complete(
                "\n".join(parts),
                system=CONVERSATION_SYSTEM,
                temperature=CONVERSATION_TEMPERATURE,
                max_tokens=CONVERSATION_MAX_TOKENS,
            )
        )
        conversation.add_conversational_exchange(query, reply)
        state["payload"] = _text_payload(
            query,
            "AI Assistant Response",
            reply,
            {
                "model_used": llm.model,
                "query_type": "conversational",
                "context_used": bool(context),
                "refinement_used": False,
                "transcripts_used": bool(chunks),
            },
        )
        return state

    def generate_sql_node(state: Dict[str, Any]) -> Dict[str, Any]:
        query = state["query"]
        scope: AppScope = state["app_scope"]
        state["schema_context"] = context_provider.build_context(scope)
        state["conversation_context"] = state["conversation"].build_context(scope.value, query)

        raw = sql_agent.generate(query, scope, state["schema_context"], state["conversation_context"])
        outcome = parse_response(raw)
        if not outcome.ok:
            raise ParseError("SQL generation reply was not parseable", raw_text=raw)
        generated = outcome.query
        if generated.error or not generated.sql:
            raise UnanswerableQueryError(f"model returned no SQL: {generated.error or 'empty sql'}")
        logger.info("Generated SQL (%s): %s", outcome.status.value, generated.sql)
        state["generated"] = generated
        return state

    def execute_node(state: Dict[str, Any]) -> Dict[str, Any]:
        state["budget"].spend_db("primary query")
        state["result"] = sandbox.execute(state["generated"].sql)
        state["refinement_used"] = False
        return state

    def refine_node(state: Dict[str, Any]) -> Dict[str, Any]:
        """Single relaxation attempt; the refined result is adopted only when it has rows."""
        state["refinement_used"] = True
        logger.info("Query returned no rows, attempting one refinement")
        refined = sql_agent.refine(
            state["query"], state["generated"].sql, state["app_scope"], state.get("schema_context", "")
        )
        if refined is None:
            return state
        try:
            state["budget"].spend_db("refinement query")
            result = sandbox.execute(refined.sql)
        except QueryPipelineError as e:
            logger.warning("Refined query discarded: %s", e.detail)
            return state
        if result.empty:
            logger.info("Refined query also returned no rows")
            return state
        state["generated"] = refined
        state["result"] = result
        return state

    def format_node(state: Dict[str, Any]) -> Dict[str, Any]:
        state["payload"] = viz_agent.format(state["result"].rows, state["generated"], state["query"])
        return state

    def summarize_node(state: Dict[str, Any]) -> Dict[str, Any]:
        rows = state["result"].rows
        generated = state["generated"]
        payload = state["payload"]
        chunks = state.get("transcripts") or []
        if not chunks and generated.transcript_search_terms:
            chunks = transcripts.search_recent(state["query"], generated.transcript_search_terms)
            state["transcripts"] = chunks

        developer = profile_developer(rows)
        if developer:
            analysis = analyst_agent.analyze(developer, rows, chunks)
            state["conversation"].store_developer_analysis(analysis)
            payload["summary"] = analysis.summary
            payload["has_detailed_analysis"] = True
        else:
            payload["summary"] = explainer_agent.summarize(
                state["query"], rows, generated.description, state["app_scope"], chunks
            )
        return state

    def update_state_node(state: Dict[str, Any]) -> Dict[str, Any]:
        payload = state["payload"]
        state["conversation"].add_exchange(
            state["query"],
            payload.get("summary") or state["generated"].description,
            state["result"].rows,
        )
        payload["processing_info"] = {
            "model_used": llm.model,
            "query_type": "data_query",
            "context_used": bool(state.get("conversation_context")),
            "refinement_used": state.get("refinement_used", False),
            "transcripts_used": bool(state.get("transcripts")),
        }
        return state

    # Build LangGraph
    workflow = StateGraph(dict)

    workflow.add_node("planner", planner_node)
    workflow.add_node("followup", followup_node)
    workflow.add_node("conversational", conversational_node)
    workflow.add_node("generate_sql", generate_sql_node)
    workflow.add_node("execute", execute_node)
    workflow.add_node("refine", refine_node)
    workflow.add_node("format", format_node)
    workflow.add_node("summarize", summarize_node)
    workflow.add_node("update_state", update_state_node)

    workflow.set_entry_point("planner")

    workflow.add_conditional_edges(
        "planner",
        lambda s: s["route"],
        {
            "followup": "followup",
            "conversational": "conversational",
            "generate_sql": "generate_sql",
        },
    )
    workflow.add_edge("followup", END)
    workflow.add_edge("conversational", END)
    workflow.add_edge("generate_sql", "execute")
    workflow.add_conditional_edges(
        "execute",
        lambda s: "refine" if s["result"].empty else "format",
        {"refine": "refine", "format": "format"},
    )
    workflow.add_edge("refine", "format")
    # "No results found" ends the request without touching conversation state
    workflow.add_conditional_edges(
        "format",
        lambda s: "done" if "error" in s["payload"] else "summarize",
        {"done": END, "summarize": "summarize"},
    )
    workflow.add_edge("summarize", "update_state")
    workflow.add_edge("update_state", END)

    return workflow.compile()


# -------------------
# Runner
# -------------------

def run_query(
    query: str,
    app_type: Optional[str],
    conversation: ConversationState,
    runner,
    llm,
    settings: Optional[Settings] = None,
) -> Tuple[Dict[str, Any], int]:
    """
    Run one question through the pipeline. Returns (payload, http_status).
    Every failure becomes an ``{"error": ...}`` payload; ``conversation`` is
    mutated in place only on success.
    """
    settings = settings or Settings()
    budget = CallBudget(max_llm_calls=settings.max_llm_calls)
    try:
        if not (query or "").strip():
            raise InputError("blank query")
        scope = AppScope.parse(app_type, default=settings.default_app_type)
        logger.info("AI query: %r (app_type=%s)", query, scope.value)

        graph = build_agent_graph(runner, BudgetedLLM(llm, budget), settings)
        final = graph.invoke({
            "query": query.strip(),
            "app_scope": scope,
            "conversation": conversation,
            "budget": budget,
        })
        logger.info("Request finished with budget %s", budget.to_dict())
        return final["payload"], 200
    except ParseError as e:
        logger.error("Unparseable model output: %s | raw=%r", e.detail, e.raw_text)
        return e.to_payload(), e.status_code
    except QueryPipelineError as e:
        logger.error("%s: %s", type(e).__name__, e.detail)
        return e.to_payload(), e.status_code
    except Exception:
        logger.exception("Unexpected error while processing AI query")
        return {"error": GENERIC_FAILURE}, 500
