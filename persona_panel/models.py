from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class QuestionKind(str, Enum):
    SCORE = "score"
    FREE_TEXT = "free_text"
    WORD_LIST = "word_list"
    MIXED = "mixed"


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    kind: QuestionKind
    max_score: int = 7
    expected_word_count: int | None = None

    @property
    def is_scored(self) -> bool:
        return self.kind in (QuestionKind.SCORE, QuestionKind.MIXED)

    def accepts_score(self, value: int) -> bool:
        return 1 <= value <= self.max_score


_CORE_PERSONA_FIELDS = (
    "id", "name", "age", "occupation", "location", "interests", "motivation", "channels",
)


class Persona(BaseModel):
    """A synthetic respondent. Unknown spreadsheet columns are kept as extra attributes."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    age: int | None = None
    occupation: str = ""
    location: str = ""
    interests: str = ""
    motivation: str = ""
    channels: str = ""

    def extra_attributes(self) -> dict[str, Any]:
        return {k: v for k, v in (self.model_extra or {}).items() if k not in _CORE_PERSONA_FIELDS}


class AnalysisContext(BaseModel):
    target_url: str | None = None
    image_base64: str | None = None
    image_media_type: str = "image/png"

    @model_validator(mode="after")
    def _require_target(self) -> "AnalysisContext":
        if not self.target_url and not self.image_base64:
            raise ValueError("AnalysisContext needs a target_url or image_base64")
        return self

    @property
    def target_label(self) -> str:
        if self.image_base64:
            return "the attached screenshot"
        kind = "website" if self.target_url and "http" in self.target_url else "advertisement"
        return f"this {kind}: {self.target_url}"


class StructuredAnswer(BaseModel):
    persona_id: str
    question_id: str
    score: int | None = None
    explanation: str | None = None
    words: list[str] | None = None
    raw_response_text: str = ""
    is_fallback: bool = False
    is_mock: bool = False

    @property
    def has_content(self) -> bool:
        return self.score is not None or bool(self.explanation) or bool(self.words)


class JobProgress(BaseModel):
    personas_total: int
    personas_done_count: int = 0
    batch_index: int = 0
    batches_total: int = 0
    completed_answers: list[StructuredAnswer] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    saved_at_epoch_millis: int = 0
    fingerprint: str = ""   # hash of persona ids + question ids, used to match resumable jobs

    @property
    def is_finished(self) -> bool:
        return self.personas_done_count >= self.personas_total


class QuestionScore(BaseModel):
    question_id: str
    question_text: str = ""
    mean_score: float = 0.0
    valid_count: int = 0
    has_data: bool = False


class WordFrequency(BaseModel):
    word: str
    count: int
    color: str


class Severity(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Improvement(BaseModel):
    question_id: str
    title: str
    description: str
    severity: Severity
    rank: int


class ReportSummary(BaseModel):
    total_responses: int = 0
    valid_responses: int = 0
    fallback_responses: int = 0
    mock_responses: int = 0
    partial_responses: int = 0   # scored question answered in text only
    mean_overall_score: float = 0.0
    completion_rate_percent: float = 0.0
    top_words: list[str] = Field(default_factory=list)


class AggregatedReport(BaseModel):
    score_per_question: list[QuestionScore] = Field(default_factory=list)
    word_frequencies: list[WordFrequency] = Field(default_factory=list)
    improvements: list[Improvement] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)
