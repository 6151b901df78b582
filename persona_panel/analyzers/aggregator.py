"""Dashboard statistics from the flat list of structured answers.

Pure functions only: the same answers always produce the same report,
including the word colours, which are derived from spelling.
"""
from collections import Counter
from typing import Iterable, Sequence

from persona_panel.models import (
    AggregatedReport,
    Improvement,
    Question,
    QuestionScore,
    ReportSummary,
    Severity,
    StructuredAnswer,
    WordFrequency,
)
from persona_panel.questions import all_questions

TOP_WORDS = 6
TOP_IMPROVEMENTS = 3
IMPROVEMENT_THRESHOLD = 6.0

ISSUE_KEYWORDS = ("slow", "unclear", "confusing", "difficult", "small", "bad")

IMPROVEMENT_TITLES = {
    "A3": "Sharpen relevance for the target audience",
    "A4": "Back the promise with proof",
    "A6": "Raise click intent",
    "A7": "Make the call-to-action more specific",
    "B2": "Align the page with the ad",
    "B3": "Clarify the value proposition",
    "B5": "Build more trust",
    "B6": "Reduce form friction",
    "B7": "Strengthen the on-page call-to-action",
    "C1": "Deliver on the ad's promise",
}


def latest_answers(answers: Iterable[StructuredAnswer]) -> list[StructuredAnswer]:
    """Keep the most recent record per (persona, question), in first-seen order."""
    latest: dict[tuple[str, str], StructuredAnswer] = {}
    for answer in answers:
        latest[(answer.persona_id, answer.question_id)] = answer
    return list(latest.values())


def word_color(word: str) -> str:
    hue = sum(ord(c) for c in word.lower()) % 360
    return f"hsl({hue}, 70%, 50%)"


def _normalize_word(word: str) -> str:
    return word.strip().lower().rstrip(".,;:!?")


def _scored_question_ids(answers: Sequence[StructuredAnswer], catalog: dict[str, Question]) -> list[str]:
    seen = {a.question_id for a in answers}
    ordered = [qid for qid, q in catalog.items() if q.is_scored and qid in seen]
    for a in answers:
        if a.question_id not in catalog and a.score is not None and a.question_id not in ordered:
            ordered.append(a.question_id)
    return ordered


def valid_scores(answers: Sequence[StructuredAnswer], catalog: dict[str, Question]) -> dict[str, list[int]]:
    """In-range, non-fallback scores per scored question id."""
    result = {}
    for qid in _scored_question_ids(answers, catalog):
        question = catalog.get(qid)
        max_score = question.max_score if question else 7
        result[qid] = [
            a.score for a in answers
            if a.question_id == qid and not a.is_fallback and a.score is not None and 1 <= a.score <= max_score
        ]
    return result


def score_per_question(
    answers: Sequence[StructuredAnswer], catalog: dict[str, Question]
) -> list[QuestionScore]:
    results = []
    for qid, scores in valid_scores(answers, catalog).items():
        question = catalog.get(qid)
        mean = round(sum(scores) / len(scores), 1) if scores else 0.0
        results.append(QuestionScore(
            question_id=qid,
            question_text=question.text if question else "",
            mean_score=mean,
            valid_count=len(scores),
            has_data=bool(scores),
        ))
    return results


def word_frequencies(answers: Sequence[StructuredAnswer], limit: int = TOP_WORDS) -> list[WordFrequency]:
    counts: Counter = Counter()
    for a in answers:
        for word in a.words or []:
            clean = _normalize_word(word)
            if clean:
                counts[clean] += 1
    # Counter.most_common keeps insertion order for equal counts.
    return [
        WordFrequency(word=w[:1].upper() + w[1:], count=c, color=word_color(w))
        for w, c in counts.most_common(limit)
    ]


def extract_common_issue(explanations: Sequence[str]) -> str:
    """Summarise the most mentioned complaint keyword, if any keyword recurs."""
    mentions = {}
    for keyword in ISSUE_KEYWORDS:
        count = sum(keyword in e.lower() for e in explanations)
        if count > 1:
            mentions[keyword] = count
    if not mentions:
        return ""
    keyword, count = max(mentions.items(), key=lambda kv: kv[1])
    return f"{round(count / len(explanations) * 100)}% of personas mentioned problems with: {keyword}"


def _severity(score: float) -> Severity:
    if score < 3:
        return Severity.HIGH
    if score < 5:
        return Severity.MEDIUM
    return Severity.LOW


def improvements(
    answers: Sequence[StructuredAnswer], scores: Sequence[QuestionScore], limit: int = TOP_IMPROVEMENTS
) -> list[Improvement]:
    low = sorted(
        (s for s in scores if s.has_data and 0 < s.mean_score < IMPROVEMENT_THRESHOLD),
        key=lambda s: s.mean_score,
    )[:limit]
    result = []
    for rank, s in enumerate(low, start=1):
        explanations = [
            a.explanation for a in answers
            if a.question_id == s.question_id and a.explanation and not a.is_fallback
        ]
        description = extract_common_issue(explanations) or f"{s.mean_score}/7 suggests improvement needed"
        result.append(Improvement(
            question_id=s.question_id,
            title=IMPROVEMENT_TITLES.get(s.question_id, f"Improve responses to {s.question_id}"),
            description=description,
            severity=_severity(s.mean_score),
            rank=rank,
        ))
    return result


def summarize(
    answers: Sequence[StructuredAnswer],
    words: Sequence[WordFrequency],
    catalog: dict[str, Question],
) -> ReportSummary:
    total = len(answers)
    # Unrounded per-question means; only the overall value is rounded.
    with_data = [sum(s) / len(s) for s in valid_scores(answers, catalog).values() if s]
    partial = sum(
        1 for a in answers
        if not a.is_fallback and a.score is None and a.question_id in catalog and catalog[a.question_id].is_scored
    )
    return ReportSummary(
        total_responses=total,
        valid_responses=sum(1 for a in answers if not a.is_fallback and a.has_content),
        fallback_responses=sum(1 for a in answers if a.is_fallback),
        mock_responses=sum(1 for a in answers if a.is_mock),
        partial_responses=partial,
        mean_overall_score=round(sum(with_data) / len(with_data), 2) if with_data else 0.0,
        completion_rate_percent=round(sum(1 for a in answers if a.has_content) / total * 100, 1) if total else 0.0,
        top_words=[w.word for w in words[:3]],
    )


def aggregate(
    answers: Iterable[StructuredAnswer], questions: Sequence[Question] | None = None
) -> AggregatedReport:
    """Compute the dashboard report. ``questions`` defaults to the full questionnaire."""
    deduped = latest_answers(answers)
    catalog = {q.id: q for q in (questions if questions is not None else all_questions())}
    scores = score_per_question(deduped, catalog)
    words = word_frequencies(deduped)
    return AggregatedReport(
        score_per_question=scores,
        word_frequencies=words,
        improvements=improvements(deduped, scores),
        summary=summarize(deduped, words, catalog),
    )
