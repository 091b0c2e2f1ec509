import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from teamlens.agents.viz_agent import safe_json
from teamlens.config import Settings
from teamlens.errors import GENERIC_FAILURE, InputError, QueryPipelineError
from teamlens.executors.schema import ensure_schema
from teamlens.llm.llm_sql_agent import build_llm, build_runner, run_query
from teamlens.tenancy import AppScope
from teamlens.utils.conversation import ConversationStore
from teamlens.utils.prompt_history import list_prompts, record_prompt

logger = logging.getLogger(__name__)

SESSION_COOKIE = "teamlens_session"


class QueryReq(BaseModel):
    query: str = ""
    app_type: Optional[str] = None


class Services:
    """Runner and LLM are built on first use so importing the app never opens connections."""

    def __init__(self, settings: Settings, runner=None, llm=None):
        self.settings = settings
        self._runner = runner
        self._llm = llm
        self._schema_ready = False
        self._guard = threading.Lock()
        self.store = ConversationStore(history_limit=settings.history_limit)

    @property
    def runner(self):
        with self._guard:
            if self._runner is None:
                self._runner = build_runner(self.settings)
            if not self._schema_ready:
                ensure_schema(self._runner)
                self._schema_ready = True
        return self._runner

    @property
    def llm(self):
        with self._guard:
            if self._llm is None:
                self._llm = build_llm(self.settings)
        return self._llm


def _session_id(request: Request) -> str:
    return request.cookies.get(SESSION_COOKIE) or uuid.uuid4().hex


def _respond(payload, status_code: int, session_id: str) -> JSONResponse:
    response = JSONResponse(content=payload, status_code=status_code)
    response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
    return response


def create_app(settings: Optional[Settings] = None, runner=None, llm=None) -> FastAPI:
    settings = settings or Settings.from_env()
    services = Services(settings, runner=runner, llm=llm)

    app = FastAPI(title="TeamLens AI Query API")
    app.state.services = services

    # Allow the dashboard front-end to call the API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def ai_query(req: QueryReq, request: Request):
        session_id = _session_id(request)
        query = (req.query or "").strip()
        try:
            if not query:
                raise InputError("blank query")
            scope = AppScope.parse(req.app_type, default=settings.default_app_type)
        except InputError as e:
            return _respond(e.to_payload(), e.status_code, session_id)

        store = services.store
        with store.lock(session_id):
            try:
                runner = services.runner
                llm = services.llm
            except QueryPipelineError as e:
                logger.error("Pipeline dependencies unavailable: %s", e.detail)
                return _respond(e.to_payload(), e.status_code, session_id)
            except Exception:
                logger.exception("Could not open the store or the model client")
                return _respond({"error": GENERIC_FAILURE}, 500, session_id)
            record_prompt(
                runner,
                request.client.host if request.client else "unknown",
                query,
                scope.value,
            )
            conversation = store.get(session_id)
            payload, status_code = run_query(query, scope.value, conversation, runner, llm, settings)
            store.put(session_id, conversation)
        return _respond(payload, status_code, session_id)

    def reset_conversation(request: Request):
        session_id = _session_id(request)
        with services.store.lock(session_id):
            services.store.reset(session_id)
        return _respond({"success": True, "message": "Conversation reset"}, 200, session_id)

    def conversation_status(request: Request):
        session_id = _session_id(request)
        conversation = services.store.get(session_id)
        return _respond(
            {
                "has_context": conversation.has_context,
                "exchange_count": len(conversation.history),
                "focus_entities": conversation.focus_entities,
            },
            200,
            session_id,
        )

    for path in ("/api/query", "/api/ai-query"):
        app.add_api_route(path, ai_query, methods=["POST"])
    for path in ("/api/conversation/reset", "/api/reset-chat"):
        app.add_api_route(path, reset_conversation, methods=["POST"])
    for path in ("/api/conversation/status", "/api/chat-status"):
        app.add_api_route(path, conversation_status, methods=["GET"])

    @app.get("/api/health")
    def health():
        try:
            connected = services.runner.ping()
        except Exception as e:
            logger.error("Health check could not reach the database: %s", e)
            connected = False
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "database": "connected" if connected else "disconnected",
        }

    @app.get("/api/prompt-history")
    def prompt_history(app_type: Optional[str] = None, limit: int = 50):
        try:
            scope = AppScope.parse(app_type, default=settings.default_app_type)
        except InputError as e:
            return JSONResponse(content=e.to_payload(), status_code=e.status_code)
        try:
            prompts = list_prompts(services.runner, scope.value, limit=max(1, min(limit, 500)))
        except QueryPipelineError as e:
            logger.error("Could not read prompt history: %s", e.detail)
            return JSONResponse(content=e.to_payload(), status_code=e.status_code)
        except Exception:
            logger.exception("Could not open the store for prompt history")
            return JSONResponse(content={"error": GENERIC_FAILURE}, status_code=500)
        return {"app_type": scope.value, "prompts": safe_json(prompts)}

    return app


_settings = Settings.from_env()
logging.basicConfig(
    level=getattr(logging, _settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app(_settings)
