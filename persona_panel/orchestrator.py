"""Analysis orchestrator: drives a persona batch job end to end.

States:
  idle -> running -> completed | paused | cancelled

Personas are processed strictly one after another, so at most one model
request is outstanding at any time. Progress is reported and persisted only
at persona boundaries; a persona's answers are never exposed half-done.
"""
import asyncio
import hashlib
import inspect
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

from persona_panel.analyzers.mock_analyzer import MockAnalyzer
from persona_panel.analyzers.persona_analyzer import ModelClient, OpenAIModelClient, analyze_persona
from persona_panel.config import PanelConfig
from persona_panel.errors import JobValidationError, PanelError, is_credential_error
from persona_panel.models import AnalysisContext, JobProgress, Persona, Question, StructuredAnswer
from persona_panel.progress_store import MemoryProgressStore, ProgressStore
from persona_panel.questions import questions_for_set

_log = logging.getLogger(__name__)

ProgressCallback = Callable[[JobProgress], Any]
ErrorCallback = Callable[[str], Any]
ResumeDecision = Callable[[JobProgress], "bool | Awaitable[bool]"]
DemoDecision = Callable[[str], "bool | Awaitable[bool]"]


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class ResumePolicy(str, Enum):
    ASK = "ask"        # consult confirm_resume
    ALWAYS = "always"
    NEVER = "never"


@dataclass
class JobOutcome:
    state: JobState
    answers: list[StructuredAnswer]
    errors: list[str]
    demo_mode: bool
    progress: JobProgress


def job_fingerprint(personas: Sequence[Persona], questions: Sequence[Question]) -> str:
    """Identity of a job for resume matching: persona id set plus question ids."""
    payload = "|".join(sorted(p.id for p in personas)) + "#" + "|".join(q.id for q in questions)
    return hashlib.sha256(payload.encode()).hexdigest()


def fallback_answers(persona_id: str, questions: Sequence[Question], reason: str) -> list[StructuredAnswer]:
    return [
        StructuredAnswer(
            persona_id=persona_id,
            question_id=q.id,
            raw_response_text=f"Fallback: model error - {reason}",
            is_fallback=True,
        )
        for q in questions
    ]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class AnalysisOrchestrator:
    """Runs one job at a time; create one orchestrator per progress key."""

    def __init__(
        self,
        config: PanelConfig | None = None,
        *,
        client: ModelClient | None = None,
        store: ProgressStore | None = None,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
        confirm_resume: ResumeDecision | None = None,
        confirm_demo: DemoDecision | None = None,
        resume_policy: ResumePolicy = ResumePolicy.ASK,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or PanelConfig()
        self._client = client
        self._store = store or MemoryProgressStore(ttl_seconds=self.config.progress_ttl_seconds)
        self._on_progress = on_progress
        self._on_error = on_error
        self._confirm_resume = confirm_resume
        self._confirm_demo = confirm_demo
        self._resume_policy = resume_policy
        self._sleep = sleep

        self.state = JobState.IDLE
        self.demo_mode = False
        self.progress: JobProgress | None = None
        self._stop_requested = False
        self._mock = MockAnalyzer()

    # ── public API ──────────────────────────────────────────────────────────

    def stop(self) -> None:
        """Halt before the next persona; an in-flight model call is not aborted."""
        self._stop_requested = True

    async def run(
        self,
        personas: Sequence[Persona],
        questions: str | Sequence[Question],
        context: AnalysisContext,
        *,
        demo_mode: bool = False,
    ) -> JobOutcome:
        if self.state == JobState.RUNNING:
            raise PanelError("This orchestrator is already running a job")

        question_list = questions_for_set(questions) if isinstance(questions, str) else list(questions)
        self._validate(personas, question_list, context)

        self.state = JobState.RUNNING
        self.demo_mode = demo_mode
        self._stop_requested = False
        self._mock = MockAnalyzer()
        try:
            return await self._run_job(personas, question_list, context)
        finally:
            if self.state == JobState.RUNNING:
                # Store or callback failure: leave whatever was saved resumable.
                self.state = JobState.PAUSED

    async def _run_job(
        self, personas: Sequence[Persona], question_list: list[Question], context: AnalysisContext
    ) -> JobOutcome:
        demo_mode = self.demo_mode
        progress = JobProgress(
            personas_total=len(personas),
            batches_total=math.ceil(len(personas) / self.config.batch_size),
            fingerprint=job_fingerprint(personas, question_list),
        )
        if not demo_mode:
            progress = await self._maybe_resume(progress)
        self.progress = progress

        _log.info(
            "Starting job: %d personas x %d questions (from persona %d, demo=%s)",
            len(personas), len(question_list), progress.personas_done_count, demo_mode,
        )

        for index in range(progress.personas_done_count, len(personas)):
            if self._stop_requested:
                await self._persist(progress)
                _log.info("Job stopped after %d personas", progress.personas_done_count)
                return self._finish(JobState.CANCELLED)

            answers, failed = await self._analyze_one(personas[index], question_list, context, progress)
            if answers is None:
                return self._finish(JobState.PAUSED)

            progress.completed_answers.extend(answers)
            progress.personas_done_count = index + 1
            progress.batch_index = math.ceil(progress.personas_done_count / self.config.batch_size)
            if failed or progress.personas_done_count % self.config.batch_size == 0:
                await self._persist(progress)
            await _resolve(self._notify_progress(progress))

            if index < len(personas) - 1 and not self.demo_mode and self.config.inter_persona_delay > 0:
                await self._sleep(self.config.inter_persona_delay)

        if not self.demo_mode:
            await self._store.clear()
        _log.info(
            "Job completed: %d answers, %d errors", len(progress.completed_answers), len(progress.errors)
        )
        return self._finish(JobState.COMPLETED)

    # ── internals ───────────────────────────────────────────────────────────

    @staticmethod
    def _validate(personas: Sequence[Persona], questions: Sequence[Question], context: AnalysisContext) -> None:
        if not personas:
            raise JobValidationError("No personas provided")
        if not questions:
            raise JobValidationError("No questions provided")
        if context is None:
            raise JobValidationError("No target context provided")
        ids = [p.id for p in personas]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise JobValidationError(f"Duplicate persona ids: {', '.join(duplicates)}")

    def _model_client(self) -> ModelClient:
        if self._client is None:
            self._client = OpenAIModelClient(self.config)
        return self._client

    async def _analyze_one(
        self,
        persona: Persona,
        questions: Sequence[Question],
        context: AnalysisContext,
        progress: JobProgress,
    ) -> tuple[list[StructuredAnswer] | None, bool]:
        """(answers, failed) for one persona; answers is None when the job must pause."""
        if self.demo_mode:
            return await self._mock(persona, questions, context), False
        try:
            return await analyze_persona(persona, questions, context, self._model_client()), False
        except Exception as exc:
            message = f"{persona.name} ({persona.id}): {exc}"

            if is_credential_error(exc):
                _log.error("Credential failure: %s", exc)
                if await self._decide(self._confirm_demo, str(exc), default=False):
                    _log.warning("Continuing remaining %d personas in demo mode",
                                 progress.personas_total - progress.personas_done_count)
                    self.demo_mode = True
                    return await self._mock(persona, questions, context), False
                progress.errors.append(message)
                await self._persist(progress)
                await _resolve(self._notify_error(message))
                return None, True

            _log.warning("Persona %s failed, recording fallback answers: %s", persona.id, exc)
            progress.errors.append(message)
            await _resolve(self._notify_error(message))
            return fallback_answers(persona.id, questions, str(exc)), True

    async def _maybe_resume(self, fresh: JobProgress) -> JobProgress:
        saved = await self._store.load()
        if saved is None or saved.is_finished:
            return fresh
        if saved.personas_total != fresh.personas_total or (
            saved.fingerprint and saved.fingerprint != fresh.fingerprint
        ):
            _log.info("Saved progress belongs to a different job, starting fresh")
            return fresh

        if self._resume_policy == ResumePolicy.ALWAYS:
            resume = True
        elif self._resume_policy == ResumePolicy.NEVER:
            resume = False
        else:
            # Without a callback, keep the saved work rather than discard it silently.
            resume = await self._decide(self._confirm_resume, saved, default=True)

        if not resume:
            _log.info("Discarding saved progress (%d/%d personas)", saved.personas_done_count, saved.personas_total)
            await self._store.clear()
            return fresh

        _log.info("Resuming from persona %d of %d", saved.personas_done_count, saved.personas_total)
        saved.batches_total = fresh.batches_total
        saved.fingerprint = fresh.fingerprint
        await _resolve(self._notify_progress(saved))
        return saved

    @staticmethod
    async def _decide(callback: Callable[[Any], Any] | None, arg: Any, *, default: bool) -> bool:
        if callback is None:
            return default
        return bool(await _resolve(callback(arg)))

    async def _persist(self, progress: JobProgress) -> None:
        if self.demo_mode:
            return
        await self._store.save(progress)

    def _notify_progress(self, progress: JobProgress) -> Any:
        if self._on_progress is not None:
            return self._on_progress(progress.model_copy(deep=True))

    def _notify_error(self, message: str) -> Any:
        if self._on_error is not None:
            return self._on_error(message)

    def _finish(self, state: JobState) -> JobOutcome:
        self.state = state
        progress = self.progress or JobProgress(personas_total=0)
        return JobOutcome(
            state=state,
            answers=list(progress.completed_answers),
            errors=list(progress.errors),
            demo_mode=self.demo_mode,
            progress=progress,
        )
