import logging
from typing import Any, Literal, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from goalcoach.backend import Backend
from goalcoach.errors import InputError
from goalcoach.history_cache import SessionCache
from goalcoach.session import GoalSession
from goalcoach.workflow import GoalWorkflow

logger = logging.getLogger("goalcoach")

app = FastAPI(title="goalcoach")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_backend: Backend | None = None
_sessions = SessionCache()


def get_backend() -> Backend:
    global _backend
    if _backend is None:
        _backend = Backend()
    return _backend


def get_sessions() -> SessionCache:
    return _sessions


class SessionEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["goal_input", "answer", "feedback", "reset", "stop", "resume", "cancel"]
    text: Optional[str] = None
    question_id: Optional[str] = Field(default=None, alias="questionId")
    answer: Optional[str] = None
    user_profile: Optional[dict[str, Any]] = Field(default=None, alias="userProfile")
    selected_option: Optional[str] = Field(default=None, alias="selectedOption")


# -----------------------
# Error mapping
# -----------------------

@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    return JSONResponse(status_code=400, content={"error": exc.message, "field": exc.field})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    err = errors[0] if errors else {}
    loc = [str(p) for p in err.get("loc", ()) if p != "body"]
    field = ".".join(loc) or "body"
    return JSONResponse(status_code=400, content={"error": f"{field}: {err.get('msg', 'invalid request')}", "field": field})


# -----------------------
# Stateless operations
# -----------------------

@app.post("/api/ai/analyze-goal")
def analyze_goal(payload: Any = Body(...), backend: Backend = Depends(get_backend)):
    return backend.analyze(payload).to_wire()


@app.post("/api/ai/generate-question")
def generate_question(payload: Any = Body(...), backend: Backend = Depends(get_backend)):
    return backend.next_question(payload).to_wire()


@app.post("/api/ai/generate-plan")
def generate_plan(payload: Any = Body(...), backend: Backend = Depends(get_backend)):
    return backend.generate_plan(payload).to_wire()


@app.post("/api/ai/process-feedback")
def process_feedback(payload: Any = Body(...), backend: Backend = Depends(get_backend)):
    return backend.process_feedback(payload).to_wire()


@app.post("/api/suggestions")
def suggestions(payload: Any = Body(...), backend: Backend = Depends(get_backend)):
    if isinstance(payload, dict) and "userContextHistory" in payload and "contextHistory" not in payload:
        payload = {**payload, "contextHistory": payload["userContextHistory"]}
        payload.pop("userContextHistory")
    return backend.suggest_options(payload).to_wire()


@app.post("/api/plan")
def detailed_plan(payload: Any = Body(...), backend: Backend = Depends(get_backend)):
    """Detailed plan (title, description, 4-6 subtasks) for one task and a chosen suggestion."""
    if not isinstance(payload, dict):
        raise InputError("body", "request body must be a JSON object")
    task_title = payload.get("taskTitle") or payload.get("goalTitle")
    selected = payload.get("selectedSuggestion") or payload.get("selectedOption")
    if not task_title:
        raise InputError("taskTitle")
    if not selected:
        raise InputError("selectedSuggestion")
    request = {
        "goalTitle": task_title,
        "selectedOption": selected,
        "userProfile": payload.get("userProfile") or {},
        "relevantContext": payload.get("recentFeedback") or payload.get("relevantContext") or "",
        "shape": "plan-with-subtasks",
    }
    return backend.generate_plan(request).to_wire()


@app.post("/api/ai")
def process_request(request_data: Any = Body(...), backend: Backend = Depends(get_backend)):
    """Generic envelope: {"type": "analyze" | "next_question" | ..., "payload": {...}}."""
    if not isinstance(request_data, dict):
        raise InputError("body", "request body must be a JSON object")
    response_data = backend._process_request_data(request_data)
    if response_data["status"] == "error":
        return JSONResponse(
            status_code=400,
            content={"error": response_data["message"], "field": response_data.get("field", "type")},
        )
    return response_data


# -----------------------
# Sessions (workflow)
# -----------------------

def _session_view(session: GoalSession, notes: list[str] | None = None) -> dict:
    state = session.state
    question = session.machine.current_question()
    return {
        "sessionId": session.session_id,
        "stage": state.current_stage,
        "currentQuestion": question.to_wire() if question else None,
        "isComplete": session.machine.is_complete(),
        "stopped": session.stopped,
        "notes": list(notes or []),
        "state": state.to_wire(),
    }


@app.post("/sessions/{session_id}/events")
async def session_event(
    session_id: str,
    event: SessionEvent,
    backend: Backend = Depends(get_backend),
    sessions: SessionCache = Depends(get_sessions),
):
    removed = sessions.sweep_expired()
    if removed:
        logger.info(f"swept {removed} expired session(s)")

    session = sessions.get_or_create(session_id)
    workflow = GoalWorkflow(
        backend,
        session,
        user_profile=event.user_profile,
        selected_option=event.selected_option or "",
    )

    if event.type == "goal_input":
        await workflow.handle_goal_input(event.text or "")
    elif event.type == "answer":
        if not event.question_id:
            raise InputError("questionId")
        await workflow.handle_question_answer(event.question_id, event.answer or "")
    elif event.type == "feedback":
        await workflow.handle_plan_feedback(event.text or "")
    elif event.type == "reset":
        await workflow.reset()
    elif event.type == "stop":
        workflow.stop()
    elif event.type == "resume":
        await workflow.resume()
    elif event.type == "cancel":
        cancelled = session.cancel_all()
        workflow.notes.append(f"cancelled {cancelled} pending request(s)")

    return _session_view(session, workflow.notes)


@app.get("/sessions/{session_id}")
async def get_session(session_id: str, sessions: SessionCache = Depends(get_sessions)):
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return _session_view(session)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
