"""Demo mode: canned, deterministic answers with the persona-analyzer interface."""
from typing import Sequence

from persona_panel.models import AnalysisContext, Persona, Question, QuestionKind, StructuredAnswer

MOCK_SCORES = (6, 7, 5, 4, 6, 7, 5, 3, 6, 5)
MOCK_WORDS = (
    ("Professional", "Clear", "Trustworthy"),
    ("Modern", "Inviting", "Relevant"),
    ("Inspiring", "Authentic", "Valuable"),
    ("Crisp", "Motivating", "Accessible"),
    ("Reliable", "Personal", "Effective"),
)
MOCK_EXPLANATIONS = (
    "The personal stories speak to me",
    "The information is clear and well structured",
    "I miss some concrete examples",
    "The visual presentation works well for someone like me",
    "It connects well with my own experience",
)


class MockAnalyzer:
    """Rotates through fixed pools; the rotation state lives on the instance.

    One instance per job keeps a run reproducible for the same persona order.
    """

    def __init__(self) -> None:
        self._score_i = 0
        self._word_i = 0
        self._text_i = 0

    def _next_score(self, question: Question) -> int:
        score = MOCK_SCORES[self._score_i % len(MOCK_SCORES)]
        self._score_i += 1
        return min(score, question.max_score)

    def _next_explanation(self) -> str:
        text = MOCK_EXPLANATIONS[self._text_i % len(MOCK_EXPLANATIONS)]
        self._text_i += 1
        return text

    def _next_words(self, question: Question) -> list[str]:
        words = MOCK_WORDS[self._word_i % len(MOCK_WORDS)]
        self._word_i += 1
        return list(words[: question.expected_word_count or 3])

    def answer(self, persona_id: str, question: Question) -> StructuredAnswer:
        answer = StructuredAnswer(persona_id=persona_id, question_id=question.id, is_mock=True)
        if question.is_scored:
            answer.score = self._next_score(question)
            answer.explanation = self._next_explanation()
            answer.raw_response_text = f"Score: {answer.score} | Explanation: {answer.explanation}"
        elif question.kind == QuestionKind.WORD_LIST:
            answer.words = self._next_words(question)
            answer.raw_response_text = ", ".join(answer.words)
        else:
            answer.explanation = self._next_explanation()
            answer.raw_response_text = answer.explanation
        return answer

    async def __call__(
        self,
        persona: Persona,
        questions: Sequence[Question],
        context: AnalysisContext,
    ) -> list[StructuredAnswer]:
        return [self.answer(persona.id, q) for q in questions]
