import pytest

from persona_panel.analyzers.mock_analyzer import MOCK_SCORES, MockAnalyzer
from persona_panel.models import AnalysisContext, Persona
from persona_panel.questions import all_questions, questions_for_set

CONTEXT = AnalysisContext(target_url="https://example.com")
PERSONAS = [Persona(id=f"p{i}", name=f"Persona {i}") for i in range(4)]


async def _run(analyzer: MockAnalyzer, questions):
    answers = []
    for persona in PERSONAS:
        answers += await analyzer(persona, questions, CONTEXT)
    return answers


@pytest.mark.asyncio
async def test_mock_answers_are_deterministic_per_instance():
    questions = all_questions()
    first = await _run(MockAnalyzer(), questions)
    second = await _run(MockAnalyzer(), questions)
    assert first == second


@pytest.mark.asyncio
async def test_mock_answers_cover_every_question_and_are_flagged():
    questions = questions_for_set("ad")
    answers = await MockAnalyzer()(PERSONAS[0], questions, CONTEXT)
    assert [a.question_id for a in answers] == [q.id for q in questions]
    assert all(a.is_mock and not a.is_fallback for a in answers)
    assert all(a.persona_id == "p0" for a in answers)


@pytest.mark.asyncio
async def test_mock_scores_stay_in_range():
    questions = all_questions()
    for answer in await _run(MockAnalyzer(), questions):
        if answer.score is not None:
            assert 1 <= answer.score <= 7


def test_mock_answer_shapes_follow_question_kind():
    analyzer = MockAnalyzer()
    by_id = {q.id: q for q in all_questions()}

    words = analyzer.answer("p1", by_id["A1"])
    assert len(words.words) == 3
    assert words.score is None

    scored = analyzer.answer("p1", by_id["A3"])
    assert scored.score == MOCK_SCORES[0]
    assert scored.raw_response_text.startswith(f"Score: {scored.score} | Explanation: ")

    text = analyzer.answer("p1", by_id["A2"])
    assert text.explanation
    assert text.score is None
