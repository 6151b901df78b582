"""Batch prompt builder: one model call per persona covering the whole questionnaire."""
import logging
from typing import Any, Protocol, Sequence, runtime_checkable

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI, AuthenticationError

from persona_panel.analyzers.response_parser import parse_batch_response
from persona_panel.config import PanelConfig
from persona_panel.errors import CredentialError, ModelCallError
from persona_panel.models import AnalysisContext, Persona, Question, QuestionKind, StructuredAnswer
from persona_panel.utils import llm_call_with_retry

_log = logging.getLogger(__name__)

SYSTEM_PROMPT = """You take part in a focus group as the persona described by the user.
Answer strictly from that persona's viewpoint: their age, job, background and habits.
Be authentic; if something does not appeal to you, say so honestly.
Keep answers short and direct. All output must be in English only.
Start every answer line with the question id exactly as given, e.g. "A3: ..."."""

_PERSONA_FIELDS = (
    ("age", "Age"),
    ("occupation", "Occupation"),
    ("location", "Location"),
    ("interests", "Interests"),
    ("motivation", "Motivation"),
    ("channels", "Mainly uses"),
)


def _answer_format(question: Question) -> str:
    if question.is_scored:
        return f"{question.id}: Score 5 - short reason"
    if question.kind == QuestionKind.WORD_LIST:
        n = question.expected_word_count or 3
        return f"{question.id}: " + ", ".join(f"Word{i + 1}" for i in range(n))
    return f"{question.id}: your answer in one or two sentences"


def build_prompt(persona: Persona, questions: Sequence[Question], context: AnalysisContext) -> str:
    """Compose the user prompt for one persona and the full question set."""
    lines = [f"You are {persona.name}."]
    for attr, label in _PERSONA_FIELDS:
        value = getattr(persona, attr)
        if value not in (None, ""):
            lines.append(f"{label}: {value}")
    for key, value in persona.extra_attributes().items():
        if value not in (None, ""):
            lines.append(f"{key}: {value}")

    lines += [
        "",
        f"Look at {context.target_label}",
        "",
        f"Answer these {len(questions)} questions. Use exactly one line per question, "
        "starting with the question id:",
        "",
    ]
    for q in questions:
        lines.append(f"{q.id}: {q.text}")
        lines.append(f"   format -> {_answer_format(q)}")
    lines += ["", "Give your answers now, one line per question id:"]
    return "\n".join(lines)


def build_messages(prompt: str, context: AnalysisContext) -> list[dict[str, Any]]:
    """Chat messages; a screenshot is attached as a second content part."""
    if context.image_base64:
        user_content: Any = [
            {"type": "text", "text": prompt},
            {
                "type": "image_url",
                "image_url": {"url": f"data:{context.image_media_type};base64,{context.image_base64}"},
            },
        ]
    else:
        user_content = prompt
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]


@runtime_checkable
class ModelClient(Protocol):
    """Single request/response call returning the model's text."""

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        ...


class OpenAIModelClient:
    """Chat-completions client; transport failures surface as ModelCallError."""

    def __init__(self, config: PanelConfig, client: AsyncOpenAI | None = None) -> None:
        if client is None:
            if not config.api_key:
                raise CredentialError("OPENAI_API_KEY is not configured")
            client = AsyncOpenAI(api_key=config.api_key, base_url=config.base_url)
        self._client = client
        self._model = config.model
        self._max_tokens = config.max_tokens

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        try:
            response = await llm_call_with_retry(
                self._client.chat.completions.create,
                model=self._model,
                max_tokens=self._max_tokens,
                messages=messages,
            )
        except AuthenticationError as exc:
            raise CredentialError(f"Model rejected the API key: {exc}") from exc
        except (APIStatusError, APIConnectionError, APITimeoutError) as exc:
            raise ModelCallError(f"Model call failed: {exc}") from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise ModelCallError("Model returned a malformed payload") from exc
        return content or ""


async def analyze_persona(
    persona: Persona,
    questions: Sequence[Question],
    context: AnalysisContext,
    client: ModelClient,
) -> list[StructuredAnswer]:
    """Ask one persona the whole questionnaire in a single model call.

    Returns one answer per question in the order supplied. Transport errors
    propagate; the caller turns them into fallback records.
    """
    prompt = build_prompt(persona, questions, context)
    _log.debug("Prompt for %s (%d chars, image=%s)", persona.id, len(prompt), bool(context.image_base64))
    text = await client.complete(build_messages(prompt, context))
    _log.debug("Response for %s: %r", persona.id, text[:500])
    return parse_batch_response(persona.id, questions, text)
