"""Exam session engine.

State machine::

    SETUP --start--> RUNNING --next (last)--> CONFIRM_SUBMIT --submit--> RESULT
                     RUNNING <--cancel / jump-- CONFIRM_SUBMIT
    RUNNING/CONFIRM_SUBMIT --timeout--> RESULT (auto_submitted)
    RESULT --retry--> RUNNING

The engine owns the session, the countdown and the history list. The
presentation layer only ever receives snapshots and frozen results.
"""

import logging
import math
import random
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Union

from pydantic import ValidationError

from .config import settings
from .errors import (
    EmptyScopeError,
    InvalidChoiceError,
    InvalidConfigError,
    InvalidStateError,
    NoQuestionsBuiltError,
    NothingToRetryError,
    UnsupportedBookError,
)
from .history import HistoryStore, InMemoryHistoryStore, push_history_entry
from .models import (
    BookKey,
    ChoiceView,
    ExamState,
    HistoryEntry,
    Question,
    QuestionView,
    Result,
    ReviewItem,
    Session,
    SessionConfig,
    SessionSnapshot,
    WordEntry,
)
from .questions import build_question_set
from .repository import VocabularyRepository, normalize_book_key
from .text import normalize_text, sort_labels
from .timer import Countdown, now_ms
from .verification import build_verification_payload, compute_verification_code, sha256_hex

logger = logging.getLogger(__name__)


class CopySink(ABC):
    """Clipboard or export target for the code and summary text."""

    @abstractmethod
    def copy_text(self, text: str) -> bool:
        pass


def to_iso(ms: int) -> str:
    moment = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_duration(ms: int) -> str:
    total_sec = max(0, int(ms // 1000))
    return f"{total_sec // 60:02d}:{total_sec % 60:02d}"


def score_answers(questions: Sequence[Question], answers: Sequence[str]) -> List[ReviewItem]:
    """A question is correct iff the normalized answer is non-empty and matches."""
    items = []
    for index, question in enumerate(questions):
        chosen = normalize_text(answers[index] if index < len(answers) else "")
        correct_answer = normalize_text(question.correct_answer)
        items.append(
            ReviewItem(
                card_id=question.card_id,
                direction=question.direction,
                prompt=question.prompt,
                correct_answer=correct_answer,
                chosen_answer=chosen,
                is_correct=bool(chosen) and chosen == correct_answer,
            )
        )
    return items


def accuracy_of(correct: int, total: int) -> float:
    return (correct / total) * 100 if total > 0 else 0.0


def build_summary_text(result_fields: dict, config: SessionConfig) -> str:
    lines = [
        f"finishedAt: {result_fields['finished_at']}",
        f"bookKey: {config.book_key}",
        f"chapterId: {config.chapter_id or '-'}",
        f"selectedTocs: {len(config.selected_tocs)}",
        f"includeDerivatives: {'on' if config.include_derivatives else 'off'}",
        f"examType: {config.exam_type.value}",
        f"questionCount: {result_fields['total']}",
        f"timeLimitMinutes: {config.time_limit_minutes:g}",
        f"score: {result_fields['correct']}/{result_fields['total']} ({result_fields['accuracy']:.1f}%)",
        f"timeSpent: {format_duration(result_fields['time_spent_ms'])}",
        f"autoSubmitted: {'yes' if result_fields['auto_submitted'] else 'no'}",
        f"verificationCode: {result_fields['verification_code']}",
    ]
    return "\n".join(lines)


class ExamEngine:
    """Runs one exam session at a time over a shared repository."""

    def __init__(
        self,
        repository: VocabularyRepository,
        history_store: Optional[HistoryStore] = None,
        clock: Callable[[], int] = now_ms,
        rng: Optional[random.Random] = None,
        timer_interval: float = settings.TIMER_INTERVAL_SECONDS,
        digest: Callable[[str], str] = sha256_hex,
        history_limit: int = settings.HISTORY_LIMIT,
    ):
        self.repository = repository
        self.history_store = history_store or InMemoryHistoryStore()
        self.clock = clock
        self.rng = rng or random.Random()
        self.timer_interval = timer_interval
        self.digest = digest
        self.history_limit = history_limit

        self.state = ExamState.SETUP
        self.session: Optional[Session] = None
        self.result: Optional[Result] = None
        self.config: Optional[SessionConfig] = None
        self.scope_pool: List[WordEntry] = []
        self.book_pool: List[WordEntry] = []
        self.requested_count = 0
        self.history: List[HistoryEntry] = self.history_store.read_history()[: self.history_limit]
        self._countdown: Optional[Countdown] = None

    # --- Setup ---
    def validate_config(self, config: Union[SessionConfig, dict]) -> SessionConfig:
        if not isinstance(config, SessionConfig):
            try:
                config = SessionConfig.model_validate(config)
            except ValidationError as e:
                raise InvalidConfigError(str(e)) from e

        book_key = normalize_book_key(config.book_key)
        if not book_key:
            raise UnsupportedBookError(config.book_key)
        if config.question_count is not None and config.question_count <= 0:
            raise InvalidConfigError("Question count must be positive")
        if not math.isfinite(config.time_limit_minutes) or config.time_limit_minutes <= 0:
            raise InvalidConfigError("Time limit must be positive")

        is_etymology = book_key == BookKey.ETYMOLOGY.value
        topics = {normalize_text(toc) for toc in config.selected_tocs}
        topics.discard("")
        return config.model_copy(
            update={
                "book_key": book_key,
                "chapter_id": normalize_text(config.chapter_id) if is_etymology else "",
                "selected_tocs": sort_labels(topics),
                "include_derivatives": config.include_derivatives
                and self.repository.supports_derivatives(book_key),
            }
        )

    def start(self, config: Union[SessionConfig, dict]) -> SessionSnapshot:
        self._require("start", ExamState.SETUP)
        config = self.validate_config(config)

        scope_pool = self.repository.get_scope_pool(
            config.book_key, config.chapter_id, config.selected_tocs, config.include_derivatives
        )
        if not scope_pool:
            raise EmptyScopeError("The selected scope has no words to test")
        book_pool = self.repository.get_all_pool(config.book_key, config.include_derivatives)

        requested = min(len(scope_pool), config.question_count or len(scope_pool))
        self._begin(scope_pool, book_pool, requested, config)
        self.scope_pool = scope_pool
        self.book_pool = book_pool
        self.requested_count = requested
        return self.snapshot()

    def _begin(
        self,
        pool: List[WordEntry],
        book_pool: List[WordEntry],
        count: int,
        config: SessionConfig,
    ) -> None:
        questions = build_question_set(
            pool, book_pool, config.exam_type, count, config.shuffle_questions, self.rng
        )
        if not questions:
            raise NoQuestionsBuiltError()

        self._stop_timer()
        started_at = self.clock()
        self.config = config
        self.session = Session(
            questions=questions,
            answers=[""] * len(questions),
            index=0,
            started_at_ms=started_at,
            timer_end_at_ms=started_at + int(config.time_limit_minutes * 60 * 1000),
            config=config.model_copy(update={"question_count": len(questions)}),
        )
        self.result = None
        self.state = ExamState.RUNNING
        self._start_timer()
        logger.info(
            f"Session started: {len(questions)} questions from {len(pool)} entries "
            f"[{config.book_key}, {config.exam_type.value}, {config.time_limit_minutes:g} min]"
        )

    # --- Timer ---
    def _start_timer(self) -> None:
        self._countdown = Countdown(
            self.session.timer_end_at_ms,
            self.check_timeout,
            interval=self.timer_interval,
            clock=self.clock,
        )
        self._countdown.start()

    def _stop_timer(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    def remaining_ms(self) -> int:
        if self.session is None:
            return 0
        return max(0, self.session.timer_end_at_ms - self.clock())

    async def check_timeout(self) -> Optional[Result]:
        """Submit automatically once the time limit has passed."""
        session = self.session
        if session is None or session.is_submitting:
            return None
        if self.state not in (ExamState.RUNNING, ExamState.CONFIRM_SUBMIT):
            return None
        if self.remaining_ms() > 0:
            return None
        logger.info("Time limit reached; submitting automatically")
        return await self.submit(auto_submitted=True)

    # --- Running ---
    def _require(self, action: str, *states: ExamState) -> None:
        if self.state not in states:
            raise InvalidStateError(action, self.state.value)

    def _require_answerable(self, action: str) -> Session:
        self._require(action, ExamState.RUNNING)
        if self.session.is_submitting:
            raise InvalidStateError(action, "submitting")
        return self.session

    def current_question(self) -> Optional[Question]:
        if self.session is None:
            return None
        return self.session.questions[self.session.index]

    def select_choice(self, choice_index: int) -> SessionSnapshot:
        session = self._require_answerable("select a choice")
        choices = session.questions[session.index].choices
        if not 0 <= choice_index < len(choices):
            raise InvalidChoiceError(choice_index)
        return self.select_answer(choices[choice_index].text)

    def select_answer(self, text: str) -> SessionSnapshot:
        session = self._require_answerable("answer")
        session.answers[session.index] = normalize_text(text)
        return self.snapshot()

    def next(self) -> SessionSnapshot:
        session = self._require_answerable("advance")
        if session.index >= len(session.questions) - 1:
            self.state = ExamState.CONFIRM_SUBMIT
        else:
            session.index += 1
        return self.snapshot()

    def previous(self) -> SessionSnapshot:
        session = self._require_answerable("go back")
        session.index = max(0, session.index - 1)
        return self.snapshot()

    def unanswered_count(self) -> int:
        if self.session is None:
            return 0
        return sum(1 for answer in self.session.answers if not normalize_text(answer))

    # --- Confirm ---
    def cancel_confirm(self) -> SessionSnapshot:
        self._require("cancel submission", ExamState.CONFIRM_SUBMIT)
        self.state = ExamState.RUNNING
        return self.snapshot()

    def jump_to_first_unanswered(self) -> SessionSnapshot:
        self._require("jump to unanswered", ExamState.CONFIRM_SUBMIT)
        answers = self.session.answers
        self.session.index = next(
            (i for i, answer in enumerate(answers) if not normalize_text(answer)), 0
        )
        self.state = ExamState.RUNNING
        return self.snapshot()

    async def submit(self, auto_submitted: bool = False) -> Optional[Result]:
        """Score the session and move to RESULT.

        Returns None when there is nothing to submit or a submission is
        already under way. The guard is set before the first await, so
        a timeout and a manual submit can never both finalize a session.
        """
        session = self.session
        if session is None or session.is_submitting:
            return None
        if auto_submitted:
            self._require("submit", ExamState.RUNNING, ExamState.CONFIRM_SUBMIT)
        else:
            self._require("submit", ExamState.CONFIRM_SUBMIT)

        session.is_submitting = True
        session.auto_submitted = auto_submitted
        self._stop_timer()

        try:
            return await self._finalize(session, auto_submitted)
        except Exception:
            session.is_submitting = False
            session.auto_submitted = False
            logger.error("Submission failed; the session stays open", exc_info=True)
            if self.remaining_ms() > 0:
                self._start_timer()
            raise

    async def _finalize(self, session: Session, auto_submitted: bool) -> Result:
        finished_at_ms = self.clock()
        answers = list(session.answers)
        review_items = score_answers(session.questions, answers)
        total = len(session.questions)
        correct = sum(1 for item in review_items if item.is_correct)
        accuracy = accuracy_of(correct, total)
        time_spent_ms = max(0, finished_at_ms - session.started_at_ms)
        wrong_card_ids = list(dict.fromkeys(item.card_id for item in review_items if not item.is_correct))
        finished_at = to_iso(finished_at_ms)

        payload = build_verification_payload(
            finished_at,
            session.config,
            session.questions,
            answers,
            correct,
            total,
            accuracy,
            time_spent_ms,
        )
        code = await compute_verification_code(payload, self.digest)

        fields = {
            "started_at": to_iso(session.started_at_ms),
            "finished_at": finished_at,
            "correct": correct,
            "total": total,
            "accuracy": accuracy,
            "time_spent_ms": time_spent_ms,
            "auto_submitted": auto_submitted,
            "wrong_card_ids": wrong_card_ids,
            "review_items": review_items,
            "verification_code": code,
        }
        result = Result(
            **fields,
            summary_text=build_summary_text(fields, session.config),
            config=session.config,
        )

        self.history = push_history_entry(
            self.history_store,
            HistoryEntry(
                started_at=result.started_at,
                finished_at=result.finished_at,
                config=result.config,
                summary=result.summary(),
                wrong_card_ids=result.wrong_card_ids,
                verification_code=result.verification_code,
            ),
            self.history_limit,
        )
        self.result = result
        self.state = ExamState.RESULT
        logger.info(
            f"Session submitted: {correct}/{total} ({accuracy:.1f}%), "
            f"auto={auto_submitted}, code={code}"
        )
        return result

    # --- Result ---
    def retry_same_scope(self) -> SessionSnapshot:
        self._require("retry", ExamState.RESULT)
        if not self.scope_pool:
            raise EmptyScopeError("The current scope has no words to test")
        self._begin(self.scope_pool, self.book_pool, self.requested_count, self.config)
        logger.info("Retrying the same scope")
        return self.snapshot()

    def retry_wrong_only(self) -> SessionSnapshot:
        self._require("retry", ExamState.RESULT)
        wrong = set(self.result.wrong_card_ids)
        pool = [entry for entry in self.scope_pool if entry.card_id in wrong]
        if not pool:
            raise NothingToRetryError()
        self._begin(pool, self.book_pool, min(self.requested_count, len(pool)), self.config)
        logger.info(f"Retrying {len(pool)} missed words")
        return self.snapshot()

    def close(self) -> None:
        """Stop the countdown; the session itself is left as it is."""
        self._stop_timer()

    def return_to_setup(self) -> None:
        if self.session is not None and self.session.is_submitting and self.state != ExamState.RESULT:
            # Still hashing
            raise InvalidStateError("return to setup", "submitting")
        self._stop_timer()
        self.session = None
        self.result = None
        self.state = ExamState.SETUP

    def review_items(self, kind: str = "wrong") -> List[ReviewItem]:
        self._require("review", ExamState.RESULT)
        if kind == "all":
            return list(self.result.review_items)
        return [item for item in self.result.review_items if not item.is_correct]

    def copy_verification_code(self, sink: CopySink) -> bool:
        if self.result is None or not self.result.verification_code:
            return False
        return sink.copy_text(self.result.verification_code)

    def copy_summary(self, sink: CopySink) -> bool:
        if self.result is None or not self.result.summary_text:
            return False
        return sink.copy_text(self.result.summary_text)

    # --- Views ---
    def snapshot(self) -> SessionSnapshot:
        session = self.session
        if session is None:
            return SessionSnapshot(
                state=self.state,
                index=0,
                total=0,
                question=None,
                selected_answer="",
                remaining_ms=0,
                unanswered_count=0,
                is_last=False,
                is_submitting=False,
            )

        question = session.questions[session.index]
        return SessionSnapshot(
            state=self.state,
            index=session.index,
            total=len(session.questions),
            question=QuestionView(
                question_id=question.question_id,
                direction=question.direction,
                prompt=question.prompt,
                choices=[ChoiceView(index=c.index, text=c.text) for c in question.choices],
            ),
            selected_answer=session.answers[session.index],
            remaining_ms=0 if self.state == ExamState.RESULT else self.remaining_ms(),
            unanswered_count=self.unanswered_count(),
            is_last=session.index == len(session.questions) - 1,
            is_submitting=session.is_submitting,
        )
