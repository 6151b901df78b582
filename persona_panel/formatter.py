import json
from datetime import date
from typing import Iterable

from persona_panel.models import AggregatedReport, StructuredAnswer


def export_json(answers: Iterable[StructuredAnswer]) -> str:
    """Raw answers as an indented JSON list."""
    return json.dumps([a.model_dump(mode="json") for a in answers], indent=2, ensure_ascii=False)


def export_report_json(report: AggregatedReport) -> str:
    return report.model_dump_json(indent=2)


def export_markdown(report: AggregatedReport, today: date | None = None) -> str:
    """Format an aggregated report into a Markdown summary document."""
    summary = report.summary
    sections = [
        "# Persona Panel Results\n",
        f"**Date:** {today or date.today()}",
        f"**Total responses:** {summary.total_responses}",
        f"**Mean score:** {summary.mean_overall_score:.1f}/7",
    ]
    if summary.fallback_responses:
        sections.append(f"**Unparsed (fallback) responses:** {summary.fallback_responses}")
    if summary.mock_responses:
        sections.append(f"**Demo-mode responses:** {summary.mock_responses}")
    sections.append("")

    sections.append("## Scores per Question\n")
    for s in report.score_per_question:
        label = f"{s.question_id}: {s.question_text[:40]}" if s.question_text else s.question_id
        if s.has_data:
            sections.append(f"- **{label}**: {s.mean_score}/7 ({s.valid_count} valid)")
        else:
            sections.append(f"- **{label}**: no valid scores")
    sections.append("")

    sections.append("## First Impressions\n")
    for w in report.word_frequencies:
        sections.append(f"- **{w.word}**: mentioned {w.count} times")
    sections.append("")

    sections.append("## Top Improvements\n")
    for imp in report.improvements:
        sections.append(f"{imp.rank}. **{imp.title}** ({imp.severity.value} impact)")
        sections.append(f"   {imp.description}\n")

    return "\n".join(sections)
