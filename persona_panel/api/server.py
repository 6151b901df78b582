"""FastAPI server exposing persona panel jobs as SSE endpoints."""
import asyncio
import json
import logging
import os
from typing import AsyncGenerator

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError
from sse_starlette.sse import EventSourceResponse

from persona_panel.analyzers.aggregator import aggregate
from persona_panel.config import PanelConfig
from persona_panel.errors import is_credential_error
from persona_panel.formatter import export_markdown
from persona_panel.models import AnalysisContext, JobProgress, Persona
from persona_panel.orchestrator import AnalysisOrchestrator, ResumePolicy
from persona_panel.progress_store import make_progress_store
from persona_panel.questions import questions_for_set, set_names

_log = logging.getLogger(__name__)

app = FastAPI(title="persona-panel API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


def get_config() -> PanelConfig:
    return PanelConfig.from_env()


def _store_key(user_id: str, session_id: str) -> str:
    return f"{user_id}:{session_id}"


def _store_for(user_id: str, session_id: str):
    config = get_config()
    return make_progress_store(
        _store_key(user_id, session_id),
        db_path=config.db_path,
        ttl_seconds=config.progress_ttl_seconds,
        backend=config.progress_backend,
    )


def _log_task_failure(task: asyncio.Task) -> None:
    """Log a failed job task; runs whether or not the client is still connected."""
    if not task.cancelled() and task.exception() is not None:
        _log.warning("Analysis job failed: %s", task.exception())


def _progress_payload(p: JobProgress) -> dict:
    return {
        "personas_done": p.personas_done_count,
        "personas_total": p.personas_total,
        "batch_index": p.batch_index,
        "batches_total": p.batches_total,
        "answers": len(p.completed_answers),
    }


# ── Endpoints ────────────────────────────────────────────────────────────────

class AnalysisRequest(BaseModel):
    personas: list[Persona]
    question_set: str = "complete"
    target_url: str | None = None
    image_base64: str | None = None
    session_id: str = "default"
    demo_mode: bool = False
    resume: bool = True              # resume matching saved progress without asking
    fallback_to_demo: bool = False   # switch to demo data on a credential failure
    delay_seconds: float | None = Field(default=None, ge=0)


@app.get("/api/health")
def health():
    """Check that required env vars are set."""
    if not os.getenv("OPENAI_API_KEY"):
        raise HTTPException(status_code=503, detail="OPENAI_API_KEY not set (demo mode only)")
    return {"status": "ok"}


@app.get("/api/question-sets")
def list_question_sets():
    return set_names()


@app.get("/api/question-sets/{name}")
def get_question_set(name: str):
    """Questions of a set; unknown names return the default set."""
    return [q.model_dump(mode="json") for q in questions_for_set(name)]


@app.delete("/api/users/{user_id}/progress")
async def clear_progress(user_id: str, session_id: str = "default"):
    """Explicitly discard a saved, unfinished job."""
    await _store_for(user_id, session_id).clear()
    return {"cleared": _store_key(user_id, session_id)}


@app.get("/api/users/{user_id}/progress")
async def get_progress(user_id: str, session_id: str = "default"):
    progress = await _store_for(user_id, session_id).load()
    if progress is None:
        raise HTTPException(status_code=404, detail="No saved progress")
    return _progress_payload(progress)


@app.post("/api/users/{user_id}/analyses")
async def run_analysis(user_id: str, req: AnalysisRequest):
    """Stream SSE events: progress per persona, then the final result."""
    try:
        context = AnalysisContext(target_url=req.target_url, image_base64=req.image_base64)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc.errors()[0]["msg"]))

    config = get_config()
    if req.delay_seconds is not None:
        config.inter_persona_delay = req.delay_seconds

    queue: asyncio.Queue = asyncio.Queue()
    orchestrator = AnalysisOrchestrator(
        config,
        store=_store_for(user_id, req.session_id),
        on_progress=lambda p: queue.put_nowait({"event": "progress", "data": json.dumps(_progress_payload(p))}),
        on_error=lambda msg: queue.put_nowait({"event": "persona_error", "data": json.dumps({"error": msg})}),
        confirm_demo=lambda _msg: req.fallback_to_demo,
        resume_policy=ResumePolicy.ALWAYS if req.resume else ResumePolicy.NEVER,
    )

    async def _generate() -> AsyncGenerator[dict, None]:
        task = asyncio.create_task(
            orchestrator.run(req.personas, req.question_set, context, demo_mode=req.demo_mode)
        )
        task.add_done_callback(_log_task_failure)
        task.add_done_callback(lambda _t: queue.put_nowait(None))
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield item

            outcome = task.result()
            report = aggregate(outcome.answers)
            yield {
                "event": "result",
                "data": json.dumps({
                    "state": outcome.state.value,
                    "demo_mode": outcome.demo_mode,
                    "errors": outcome.errors,
                    "report": report.model_dump(mode="json"),
                    "answers": [a.model_dump(mode="json") for a in outcome.answers],
                    "markdown": export_markdown(report),
                }, ensure_ascii=False),
            }

        except Exception as exc:
            msg = str(exc)
            fix = ""
            if is_credential_error(exc):
                fix = "Set OPENAI_API_KEY in your .env file, or retry with demo_mode=true"
            yield {
                "event": "error",
                "data": json.dumps({"error": msg, "fix": fix}),
            }
        finally:
            if not task.done():
                # Client went away: stop before the next persona, progress stays resumable.
                orchestrator.stop()

    return EventSourceResponse(_generate())
