import logging
import random
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .config import settings
from .distractors import build_choices, shuffled
from .models import Direction, ExamType, Question, WordEntry
from .repository import dedupe_by_card_id
from .text import normalize_text

logger = logging.getLogger(__name__)


def can_build(entry: WordEntry, direction: Direction) -> bool:
    return bool(build_prompt(entry, direction) and build_correct_answer(entry, direction))


def build_prompt(entry: WordEntry, direction: Direction) -> str:
    if direction == Direction.K2E:
        return normalize_text(entry.meaning)
    return normalize_text(entry.word)


def build_correct_answer(entry: WordEntry, direction: Direction) -> str:
    if direction == Direction.K2E:
        return normalize_text(entry.word)
    return normalize_text(entry.meaning)


# --- Strategy Pattern: Direction Resolvers ---
class DirectionResolver(ABC):
    """Picks the direction a given entry is asked in, or None to skip it."""

    @abstractmethod
    def resolve(self, entry: WordEntry, rng: random.Random) -> Optional[Direction]:
        pass


class FixedDirectionResolver(DirectionResolver):
    def __init__(self, direction: Direction):
        self.direction = direction

    def resolve(self, entry: WordEntry, rng: random.Random) -> Optional[Direction]:
        return self.direction if can_build(entry, self.direction) else None


class MixedDirectionResolver(DirectionResolver):
    """Either direction with equal probability when both are viable."""

    def resolve(self, entry: WordEntry, rng: random.Random) -> Optional[Direction]:
        available = [d for d in (Direction.E2K, Direction.K2E) if can_build(entry, d)]
        if not available:
            return None
        if len(available) == 1:
            return available[0]
        return Direction.E2K if rng.random() < 0.5 else Direction.K2E


class DirectionFactory:
    @staticmethod
    def create(exam_type) -> DirectionResolver:
        try:
            exam_type = ExamType(exam_type)
        except ValueError:
            exam_type = ExamType.E2K
        if exam_type == ExamType.MIXED:
            return MixedDirectionResolver()
        return FixedDirectionResolver(Direction(exam_type.value))


def target_question_count(requested: Optional[int], pool_size: int) -> int:
    """``min(MAX_QUESTION_COUNT, max(1, requested or pool_size))``."""
    try:
        requested = int(requested or 0)
    except (TypeError, ValueError):
        requested = 0
    return min(settings.MAX_QUESTION_COUNT, max(1, requested or pool_size))


def build_question_set(
    scope_pool: Sequence[WordEntry],
    book_pool: Sequence[WordEntry],
    exam_type=ExamType.E2K,
    question_count: Optional[int] = None,
    shuffle_questions: bool = False,
    rng: Optional[random.Random] = None,
) -> List[Question]:
    """Turn a scope pool into an ordered list of multiple-choice questions.

    Under-sampling (fewer questions than eligible entries) always draws a
    random subset, even when ``shuffle_questions`` is off. Entries that
    cannot be asked are skipped and do not count toward the target.
    """
    rng = rng or random.Random()
    resolver = DirectionFactory.create(exam_type)
    scope_pool = list(scope_pool or [])
    book_pool = list(book_pool or [])

    candidates = dedupe_by_card_id(scope_pool)
    target = target_question_count(question_count, len(candidates))
    if shuffle_questions or target < len(candidates):
        candidates = shuffled(candidates, rng)

    questions: List[Question] = []
    skipped = 0
    for entry in candidates:
        if len(questions) >= target:
            break

        direction = resolver.resolve(entry, rng)
        if direction is None:
            skipped += 1
            continue

        prompt = build_prompt(entry, direction)
        correct_answer = build_correct_answer(entry, direction)
        if not prompt or not correct_answer:
            skipped += 1
            continue

        choices = [
            choice
            for choice in build_choices(
                entry, direction, scope_pool, book_pool, settings.CHOICE_COUNT, rng
            )
            if normalize_text(choice.text)
        ]
        if not choices:
            skipped += 1
            continue

        questions.append(
            Question(
                question_id=f"q-{len(questions) + 1}-{entry.card_id}",
                card_id=entry.card_id,
                book_key=entry.book_key,
                chapter=entry.chapter,
                toc=entry.toc,
                word=normalize_text(entry.word),
                meaning=normalize_text(entry.meaning),
                direction=direction,
                prompt=prompt,
                correct_answer=correct_answer,
                choices=choices,
            )
        )

    if skipped:
        logger.debug(f"Skipped {skipped} entries that could not be asked")
    return questions
