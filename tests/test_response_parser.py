from persona_panel.analyzers.response_parser import (
    anchored_match,
    embedded_match,
    extract_score,
    extract_words,
    parse_answer,
    parse_batch_response,
    positional_match,
)
from persona_panel.models import Question, QuestionKind
from persona_panel.questions import questions_for_set

Q_SCORE = Question(id="Q1", text="How clear is it? (1-7)", kind=QuestionKind.SCORE, max_score=7)
Q_WORDS = Question(id="Q2", text="First impression (3 words)", kind=QuestionKind.WORD_LIST, expected_word_count=3)
Q_TEXT = Question(id="Q3", text="What is this?", kind=QuestionKind.FREE_TEXT)

BATCH_RESPONSE = """\
A1: Modern, Clear, Fast
A2: A budgeting app for students
A3: Score 6 - fits my needs
A4: Score: 3 - no reviews or numbers shown
A5: Curious, a little skeptical
A6: Score 5 - I might click
A7: I expect a signup form. Specificity 4/7
"""


# ── Typed extraction ─────────────────────────────────────────────────────────

def test_score_with_explanation():
    answer = parse_answer("p1", Q_SCORE, "Score: 5 - clear but slow")
    assert answer.score == 5
    assert answer.explanation == "clear but slow"
    assert answer.is_fallback is False


def test_word_list_with_id_prefix():
    answer = parse_answer("p1", Q_WORDS, "Q2: Modern, Clear, Fast")
    assert answer.words == ["Modern", "Clear", "Fast"]
    assert answer.is_fallback is False


def test_text_without_score_keeps_explanation():
    answer = parse_answer("p1", Q_SCORE, "I really don't know what to say")
    assert answer.score is None
    assert answer.explanation == "I really don't know what to say"
    assert answer.is_fallback is False


def test_out_of_range_labeled_score_is_rejected_not_clamped():
    answer = parse_answer("p1", Q_SCORE, "Score: 9 - loved it")
    assert answer.score is None
    assert answer.explanation == "loved it"


def test_out_of_range_bare_integer_is_skipped():
    score, _ = extract_score("I'd give it 10, maybe 6", max_score=7)
    assert score == 6


def test_score_on_other_scale_is_rejected():
    score, _ = extract_score("5/10 overall", max_score=7)
    assert score is None


def test_score_never_outside_range():
    texts = ["Score: 0", "Score 8 - wow", "12 out of 7", "-3", "Rated 7/7", "100% sure, 2", "3.5 stars"]
    for text in texts:
        answer = parse_answer("p1", Q_SCORE, text)
        assert answer.score is None or 1 <= answer.score <= 7


def test_decimal_is_not_read_as_score():
    score, _ = extract_score("about 3.5 really", max_score=7)
    assert score is None


def test_words_strip_brackets_and_cap():
    assert extract_words('["Modern", "Clear", "Fast", "Bold"]', limit=3) == ["Modern", "Clear", "Fast"]


def test_words_drop_numbering():
    assert extract_words("1. Fresh 2. Calm") == ["Fresh", "Calm"]


def test_free_text_strips_answer_label():
    answer = parse_answer("p1", Q_TEXT, "Answer: A tool for booking yoga classes")
    assert answer.explanation == "A tool for booking yoga classes"


# ── Location strategies ──────────────────────────────────────────────────────

def test_anchored_match_requires_separator():
    q = Question(id="A1", text="x", kind=QuestionKind.SCORE)
    assert anchored_match("A10: nope\nA1: Score 4 - fine", q) == "Score 4 - fine"


def test_anchored_match_accepts_markdown_bold():
    q = Question(id="A3", text="x", kind=QuestionKind.SCORE)
    assert anchored_match("**A3:** Score: 2 - too vague", q) == "Score: 2 - too vague"


def test_embedded_match_finds_id_mid_line():
    q = Question(id="A3", text="x", kind=QuestionKind.SCORE)
    body = embedded_match("For question A3 I would say 5 because it is relevant", q)
    assert body == "I would say 5 because it is relevant"
    assert parse_answer("p1", q, "For question A3 I would say 5 because it is relevant").score == 5


def test_positional_match_uses_nth_line():
    assert positional_match("first line\n\nsecond line", Q_TEXT, 1) == "second line"


def test_positional_match_splits_sentences_on_single_line():
    assert positional_match("It is a savings app. I feel curious about it.", Q_TEXT, 1) == "I feel curious about it."


def test_duplicate_ids_first_match_wins():
    q = Question(id="A3", text="x", kind=QuestionKind.SCORE)
    answer = parse_answer("p1", q, "A3: Score 3 - meh\nA3: Score 6 - great")
    assert answer.score == 3


# ── Batch parsing ────────────────────────────────────────────────────────────

def test_batch_response_one_answer_per_question_in_order():
    questions = questions_for_set("ad")
    answers = parse_batch_response("p1", questions, BATCH_RESPONSE)
    assert [a.question_id for a in answers] == [q.id for q in questions]
    assert all(not a.is_fallback for a in answers)
    by_id = {a.question_id: a for a in answers}
    assert by_id["A1"].words == ["Modern", "Clear", "Fast"]
    assert by_id["A2"].explanation == "A budgeting app for students"
    assert by_id["A3"].score == 6
    assert by_id["A3"].explanation == "fits my needs"
    assert by_id["A4"].score == 3
    assert by_id["A7"].score == 4
    assert by_id["A7"].explanation.startswith("I expect a signup form")


def test_batch_positional_fallback_without_ids():
    questions = [
        Question(id="A1", text="x", kind=QuestionKind.WORD_LIST),
        Question(id="A2", text="y", kind=QuestionKind.FREE_TEXT),
    ]
    answers = parse_batch_response("p1", questions, "Friendly, Simple, Cheap\nIt is an app for saving money")
    assert answers[0].words == ["Friendly", "Simple", "Cheap"]
    assert answers[1].explanation == "It is an app for saving money"


def test_empty_response_is_fallback_for_every_question():
    questions = questions_for_set("ad")
    answers = parse_batch_response("p1", questions, "   ")
    assert len(answers) == len(questions)
    assert all(a.is_fallback for a in answers)
    assert "empty response" in answers[0].raw_response_text


def test_unlocatable_answer_is_fallback_with_truncated_raw_text():
    long_text = "line one here\nline two here " + "z" * 300
    answer = parse_answer("p1", Q_SCORE, long_text, position=5)
    assert answer.is_fallback is True
    assert answer.score is None
    assert answer.raw_response_text.endswith("...")
    assert "Q1" in answer.raw_response_text
    assert len(answer.raw_response_text) < 200


def test_parsing_is_deterministic():
    questions = questions_for_set("ad")
    first = parse_batch_response("p1", questions, BATCH_RESPONSE)
    second = parse_batch_response("p1", questions, BATCH_RESPONSE)
    assert first == second


def test_bare_number_after_id_is_kept_despite_preamble():
    response = (
        "Sure, here are my answers:\n"
        "A1: Modern, Clear, Fast\n"
        "A2: A budgeting app\n"
        "A3: 6\n"
        "A4: Score 3 - no proof\n"
        "A5: Curious\n"
        "A6: 5\n"
        "A7: Score 4 - a signup form\n"
    )
    by_id = {a.question_id: a for a in parse_batch_response("p1", questions_for_set("ad"), response)}
    assert by_id["A3"].score == 6
    assert by_id["A3"].explanation is None
    assert by_id["A6"].score == 5
    assert not by_id["A3"].is_fallback


def test_positional_never_takes_another_questions_line():
    q = Question(id="A3", text="x", kind=QuestionKind.SCORE)
    response = "Sure, here are my answers:\nA2: A budgeting app\nA3: 0\nA4: Score 3 - no proof"
    assert positional_match(response, q, 1) is None
    answer = parse_answer("p1", q, response, position=1)
    assert answer.is_fallback is True


def test_decimal_labeled_score_is_rejected():
    answer = parse_answer("p1", Q_SCORE, "Q1: Score: 5.5 - okay but vague")
    assert answer.score is None
    assert answer.explanation == "okay but vague"
    assert extract_score("Score: 4,5 overall fine", max_score=7)[0] is None
