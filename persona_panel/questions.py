"""Fixed focus-group questionnaire, grouped into named question sets."""
import logging

from persona_panel.models import Question, QuestionKind

_log = logging.getLogger(__name__)

_SCORE = QuestionKind.SCORE
_TEXT = QuestionKind.FREE_TEXT

AD_QUESTIONS: tuple[Question, ...] = (
    Question(id="A1", text="First impression (3 words)", kind=QuestionKind.WORD_LIST, expected_word_count=3),
    Question(id="A2", text="What is this and who is it for? (in your own words)", kind=_TEXT),
    Question(id="A3", text="Relevance to you (1-7). Why? Which audience does this mostly reach?", kind=_SCORE),
    Question(id="A4", text="What is promised? Credibility (1-7). What proof is missing?", kind=_SCORE),
    Question(id="A5", text="Emotion & curiosity: what do you feel when you see this?", kind=_TEXT),
    Question(id="A6", text="Click intent (1-7). What would add +2 points?", kind=_SCORE),
    Question(
        id="A7",
        text="CTA expectation: what do you think happens after the click? CTA specificity (1-7)",
        kind=QuestionKind.MIXED,
    ),
)

LANDING_PAGE_QUESTIONS: tuple[Question, ...] = (
    Question(id="B1", text="5-second test: What is this? Who is it for? What can I do here?", kind=_TEXT),
    Question(id="B2", text='Match with the ad ("scent") (1-7). What matches, what does not?', kind=_SCORE),
    Question(id="B3", text="Value proposition (main message). Clarity (1-7)", kind=_SCORE),
    Question(id="B4", text="What is missing for you to decide? (impact, cost, time, privacy, proof)", kind=_TEXT),
    Question(id="B5", text='Trust: what builds trust, what feels "too much marketing"? Trust (1-7)', kind=_SCORE),
    Question(
        id="B6",
        text="Form & friction: annoying fields or doubts. Effort (1-7). What could be removed or shortened?",
        kind=_SCORE,
    ),
    Question(
        id="B7",
        text="CTA on the page: do you understand what happens? Is it visible? CTA strength (1-7)",
        kind=_SCORE,
    ),
    Question(id="B8", text="Mobile: readability & tappability - what gets in your way?", kind=_TEXT),
)

COMBINED_QUESTIONS: tuple[Question, ...] = (
    Question(id="C1", text="Does the page deliver on the promise? (1-7). Biggest gap?", kind=_SCORE),
    Question(id="C2", text="Expectation: what would you have wanted to see or do here?", kind=_TEXT),
    Question(id="C3", text="The one change with the biggest positive effect on conversion", kind=_TEXT),
)

DEFAULT_SET = "ad"

_SETS: dict[str, tuple[Question, ...]] = {
    "ad": AD_QUESTIONS,
    "landing_page": LANDING_PAGE_QUESTIONS,
    "combined": COMBINED_QUESTIONS,
}


def _complete() -> list[Question]:
    seen: set[str] = set()
    ordered: list[Question] = []
    for questions in _SETS.values():
        for q in questions:
            if q.id not in seen:
                seen.add(q.id)
                ordered.append(q)
    return ordered


def set_names() -> list[str]:
    return [*_SETS, "complete"]


def questions_for_set(set_name: str) -> list[Question]:
    """Return the ordered questions of a named set.

    Unknown names fall back to the default set so a typo never halts a batch job.
    """
    key = (set_name or "").strip().lower()
    if key == "complete":
        return _complete()
    if key not in _SETS:
        _log.warning("Unknown question set %r, using %r", set_name, DEFAULT_SET)
        key = DEFAULT_SET
    return list(_SETS[key])


def all_questions() -> list[Question]:
    return _complete()


def count_for(set_name: str = "complete") -> int:
    return len(questions_for_set(set_name))


def get_question(question_id: str) -> Question | None:
    for q in _complete():
        if q.id == question_id:
            return q
    return None
