from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import settings


# --- Enums ---
class BookKey(str, Enum):
    ETYMOLOGY = "etymology"
    BASIC = "basic"
    ADVANCED = "advanced"


class Direction(str, Enum):
    E2K = "E2K"  # prompt: word, answer: meaning
    K2E = "K2E"  # prompt: meaning, answer: word


class ExamType(str, Enum):
    E2K = "E2K"
    K2E = "K2E"
    MIXED = "MIXED"


class ExamState(str, Enum):
    SETUP = "setup"
    RUNNING = "running"
    CONFIRM_SUBMIT = "confirm_submit"
    RESULT = "result"


# --- Vocabulary ---
class Derivative(BaseModel):
    word: str
    meaning: str = ""


class WordEntry(BaseModel):
    book_key: str
    chapter: str = ""
    toc: str = ""
    word: str
    meaning: str = ""
    derivatives: List[Derivative] = Field(default_factory=list)
    is_derivative: bool = False
    card_id: str


class Dataset(BaseModel):
    book_key: str
    rows: List[WordEntry]
    words_by_toc: Dict[str, List[WordEntry]]
    tocs: List[str]


# --- Questions ---
class Choice(BaseModel):
    id: str
    text: str
    is_correct: bool
    index: int


class Question(BaseModel):
    question_id: str
    card_id: str
    book_key: str
    chapter: str
    toc: str
    word: str
    meaning: str
    direction: Direction
    prompt: str
    correct_answer: str
    choices: List[Choice]


# --- Session ---
class SessionConfig(BaseModel):
    book_key: str
    chapter_id: str = ""
    selected_tocs: List[str] = Field(default_factory=list)
    include_derivatives: bool = False
    exam_type: ExamType = ExamType.E2K
    question_count: Optional[int] = None  # None: whole scope pool
    time_limit_minutes: float = settings.DEFAULT_TIME_LIMIT_MINUTES
    shuffle_questions: bool = True


class Session(BaseModel):
    questions: List[Question]
    answers: List[str]
    index: int = 0
    started_at_ms: int
    timer_end_at_ms: int
    is_submitting: bool = False
    auto_submitted: bool = False
    config: SessionConfig


class ReviewItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    card_id: str
    direction: Direction
    prompt: str
    correct_answer: str
    chosen_answer: str
    is_correct: bool


class ScoreSummary(BaseModel):
    correct: int
    total: int
    accuracy: float
    time_spent_ms: int
    auto_submitted: bool


class Result(BaseModel):
    model_config = ConfigDict(frozen=True)

    started_at: str
    finished_at: str
    correct: int
    total: int
    accuracy: float
    time_spent_ms: int
    auto_submitted: bool
    wrong_card_ids: List[str]
    review_items: List[ReviewItem]
    verification_code: str
    summary_text: str
    config: SessionConfig

    def summary(self) -> ScoreSummary:
        return ScoreSummary(
            correct=self.correct,
            total=self.total,
            accuracy=self.accuracy,
            time_spent_ms=self.time_spent_ms,
            auto_submitted=self.auto_submitted,
        )


class HistoryEntry(BaseModel):
    started_at: str
    finished_at: str
    config: SessionConfig
    summary: ScoreSummary
    wrong_card_ids: List[str] = Field(default_factory=list)
    verification_code: str


# --- Read-only views for the presentation layer ---
class ChoiceView(BaseModel):
    index: int
    text: str


class QuestionView(BaseModel):
    question_id: str
    direction: Direction
    prompt: str
    choices: List[ChoiceView]


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: ExamState
    index: int
    total: int
    question: Optional[QuestionView]
    selected_answer: str
    remaining_ms: int
    unanswered_count: int
    is_last: bool
    is_submitting: bool
