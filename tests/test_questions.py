from persona_panel.models import QuestionKind
from persona_panel.questions import (
    DEFAULT_SET,
    all_questions,
    count_for,
    get_question,
    questions_for_set,
    set_names,
)


def test_ad_set_ids_in_order():
    assert [q.id for q in questions_for_set("ad")] == ["A1", "A2", "A3", "A4", "A5", "A6", "A7"]


def test_set_sizes():
    assert count_for("ad") == 7
    assert count_for("landing_page") == 8
    assert count_for("combined") == 3
    assert count_for("complete") == 18


def test_complete_is_ordered_union_without_duplicates():
    ids = [q.id for q in all_questions()]
    assert len(ids) == len(set(ids))
    assert ids[0] == "A1"
    assert ids[-1] == "C3"
    assert ids == [q.id for q in questions_for_set("complete")]


def test_unknown_set_falls_back_to_default():
    assert questions_for_set("landingpage-typo") == questions_for_set(DEFAULT_SET)
    assert count_for("nonsense") == 7


def test_set_name_is_case_insensitive():
    assert questions_for_set("Landing_Page") == questions_for_set("landing_page")


def test_get_question():
    assert get_question("B3").kind == QuestionKind.SCORE
    assert get_question("A1").expected_word_count == 3
    assert get_question("A7").kind == QuestionKind.MIXED
    assert get_question("Z9") is None


def test_set_names_include_complete():
    assert "complete" in set_names()
    assert DEFAULT_SET in set_names()


def test_scored_questions_use_seven_point_scale():
    for q in all_questions():
        if q.is_scored:
            assert q.max_score == 7
