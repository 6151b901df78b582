"""Recover per-question structured answers from a free-text model reply.

The model is asked to start every answer line with the question id, but does
not reliably do so. Each location strategy below is tried in order and the
first one that isolates a usable answer body wins:

    anchored_match    "A3: Score 5 - clear"  (id at line start)
    embedded_match    "For A3 I'd say 5"     (id anywhere in a line)
    positional_match  Nth non-empty line for the Nth question

A body is then typed by the question kind (score, word list or free text).
Nothing here raises: a question that cannot be located yields a fallback
record carrying a truncated copy of the reply.
"""
import logging
import re
from typing import Callable, Sequence, TypeVar

from persona_panel.models import Question, QuestionKind, StructuredAnswer

_log = logging.getLogger(__name__)

T = TypeVar("T")
Strategy = Callable[[str, Question, int], "str | None"]

_SNIPPET_CHARS = 100
_DEFAULT_WORD_COUNT = 3

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_LEADING_PUNCT = re.compile(r"^[\s:.\-–—)*_|\]>]+")
_TRAILING_PUNCT = re.compile(r"[\s|\-–—:,;]+$")

# "Score: 5", "score of 5", "Score 5/7", "Score = 5 out of 7".
# Decimals are captured whole so "Score: 5.5" is rejected rather than read as 5.
_LABELED_SCORE = re.compile(
    r"\bscore\b\s*(?:of\s+)?[:=]?\s*(\d+(?:[.,]\d+)?)(?:\s*(?:/|out of)\s*(\d+))?", re.IGNORECASE
)
# "5/7", "5 out of 7"
_OUT_OF_SCORE = re.compile(r"(?<![\w.,/])(\d+)\s*(?:/|out of)\s*(\d+)\b", re.IGNORECASE)
# A standalone integer, not part of a decimal, percentage or identifier.
_BARE_INT = re.compile(r"(?<![\w.,/])(\d+)(?![\w/]|[.,]\d|\s*%)")

_EXPLANATION_LABEL = re.compile(r"^(?:reason|explanation|because|why|answer)\s*[:\-–]\s*", re.IGNORECASE)
_WORD_LABEL = re.compile(r"^(?:first impressions?|impressions?|words?|answer)\s*:\s*", re.IGNORECASE)
_TEXT_LABEL = re.compile(r"^(?:answer|response)\s*:\s*", re.IGNORECASE)
_QUOTES = re.compile(r"[\[\]\"'“”‘’(){}]")
_WORD_SPLIT = re.compile(r"[,;\s]+")
_HAS_LETTER = re.compile(r"[^\W\d_]")
# "A3:", "**B2**:" at the start of a line
_ID_LABEL = re.compile(r"^[ \t*_#>-]*([A-Za-z]{1,3}\d{1,3})[*_]*:")


# ── Location strategies ──────────────────────────────────────────────────────

def anchored_match(response: str, question: Question, position: int = 0) -> str | None:
    """Question id at the start of a line, followed by a colon or whitespace."""
    pattern = re.compile(
        rf"^[ \t*_#>-]*{re.escape(question.id)}[*_]*(?::|[ \t])[ \t*_]*(.*)$",
        re.IGNORECASE | re.MULTILINE,
    )
    for m in pattern.finditer(response):
        body = m.group(1).strip()
        if body:
            return body
    return None


def embedded_match(response: str, question: Question, position: int = 0) -> str | None:
    """Question id anywhere in a line; the text after it is the answer."""
    pattern = re.compile(rf"(?<![A-Za-z0-9]){re.escape(question.id)}(?![A-Za-z0-9])")
    for line in response.splitlines():
        m = pattern.search(line)
        if not m:
            continue
        body = _LEADING_PUNCT.sub("", line[m.end():]).strip()
        if body:
            return body
    return None


def positional_match(response: str, question: Question, position: int = 0) -> str | None:
    """Nth non-empty line for the Nth question of a batched call.

    A single-line reply too short for the position is split into sentences
    as a last resort. A line labelled with another question id is never taken.
    """
    segments = [line.strip() for line in response.splitlines() if line.strip()]
    if position >= len(segments) and "\n" not in response.strip():
        segments = [s.strip() for s in _SENTENCE_END.split(response.strip()) if s.strip()]
    if position >= len(segments) or len(segments[position]) <= 2:
        return None
    segment = segments[position]
    label = _ID_LABEL.match(segment)
    if label and label.group(1).lower() != question.id.lower():
        return None
    return segment


STRATEGIES: tuple[Strategy, ...] = (anchored_match, embedded_match, positional_match)


def first_match(
    strategies: Sequence[Strategy],
    response: str,
    question: Question,
    position: int,
    build: Callable[[str], T | None],
) -> T | None:
    """Run strategies in order; return the first body that ``build`` accepts."""
    for strategy in strategies:
        body = strategy(response, question, position)
        if body is None:
            continue
        result = build(body)
        if result is not None:
            _log.debug("%s located via %s: %r", question.id, strategy.__name__, body)
            return result
    return None


# ── Typing ───────────────────────────────────────────────────────────────────

def _clean_explanation(text: str) -> str | None:
    text = _LEADING_PUNCT.sub("", text.strip())
    text = _EXPLANATION_LABEL.sub("", text)
    text = _TRAILING_PUNCT.sub("", _LEADING_PUNCT.sub("", text)).strip()
    return text if len(text) > 3 else None


def extract_score(body: str, max_score: int = 7) -> tuple[int | None, str | None]:
    """Return (score, explanation) from an answer body.

    A labelled score ("Score: 5", "5/7") is preferred over a bare integer.
    Values outside 1..max_score are rejected, never clamped; a rejected
    labelled score does not fall through to other digits in the text.
    """
    score: int | None = None
    span: tuple[int, int] | None = None

    labeled = _LABELED_SCORE.search(body)
    out_of = _OUT_OF_SCORE.search(body)
    if labeled:
        raw, scale = labeled.group(1), labeled.group(2)
        span = labeled.span()
        if raw.isdigit() and 1 <= int(raw) <= max_score and (scale is None or int(scale) == max_score):
            score = int(raw)
    elif out_of:
        value, scale = int(out_of.group(1)), int(out_of.group(2))
        span = out_of.span()
        if 1 <= value <= max_score and scale == max_score:
            score = value
    else:
        for m in _BARE_INT.finditer(body):
            value = int(m.group(1))
            if 1 <= value <= max_score:
                score, span = value, m.span()
                break

    remainder = body if span is None else body[:span[0]] + " " + body[span[1]:]
    return score, _clean_explanation(remainder)


def extract_words(body: str, limit: int | None = None) -> list[str]:
    cleaned = _QUOTES.sub("", _WORD_LABEL.sub("", body.strip()))
    words = []
    for token in _WORD_SPLIT.split(cleaned):
        token = token.strip().strip("-*•").rstrip(".!?:")
        if len(token) > 1 and _HAS_LETTER.search(token):
            words.append(token)
    return words[: limit or _DEFAULT_WORD_COUNT]


def extract_free_text(body: str) -> str | None:
    text = _TEXT_LABEL.sub("", body.strip()).strip()
    return text if len(text) > 2 else None


def _typed_answer(persona_id: str, question: Question, body: str) -> StructuredAnswer | None:
    answer = StructuredAnswer(persona_id=persona_id, question_id=question.id, raw_response_text=body)
    if question.is_scored:
        answer.score, answer.explanation = extract_score(body, question.max_score)
    elif question.kind == QuestionKind.WORD_LIST:
        answer.words = extract_words(body, question.expected_word_count) or None
    else:
        answer.explanation = extract_free_text(body)
    return answer if answer.has_content else None


def _fallback(persona_id: str, question: Question, response: str, reason: str) -> StructuredAnswer:
    snippet = response.strip()
    if len(snippet) > _SNIPPET_CHARS:
        snippet = snippet[:_SNIPPET_CHARS] + "..."
    return StructuredAnswer(
        persona_id=persona_id,
        question_id=question.id,
        raw_response_text=f"Parser found no answer for {question.id} ({reason}): {snippet}",
        is_fallback=True,
    )


# ── Entry points ─────────────────────────────────────────────────────────────

def parse_answer(persona_id: str, question: Question, response: str, position: int = 0) -> StructuredAnswer:
    """Parse one question's answer out of a model reply.

    ``position`` is the question's index in the batched prompt and is only
    used by the positional fallback.
    """
    if not response or not response.strip():
        return _fallback(persona_id, question, response or "", "empty response")

    answer = first_match(
        STRATEGIES, response, question, position,
        lambda body: _typed_answer(persona_id, question, body),
    )
    if answer is None:
        _log.info("No answer found for %s (persona %s)", question.id, persona_id)
        return _fallback(persona_id, question, response, "no matching line")
    return answer


def parse_batch_response(persona_id: str, questions: Sequence[Question], response: str) -> list[StructuredAnswer]:
    """One answer per question, in submission order."""
    answers = [parse_answer(persona_id, q, response, position=i) for i, q in enumerate(questions)]
    parsed = sum(not a.is_fallback for a in answers)
    _log.debug("Parsed %d/%d answers for persona %s", parsed, len(answers), persona_id)
    return answers
