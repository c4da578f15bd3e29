import random
from typing import List, Optional, Sequence

from .config import settings
from .models import Choice, Direction, WordEntry
from .text import normalize_text


def displayed_text(entry: WordEntry, direction: Direction) -> str:
    """Text shown as an answer option: the word for K2E, the meaning otherwise."""
    if direction == Direction.K2E:
        return normalize_text(entry.word)
    return normalize_text(entry.meaning)


def shuffled(items: Sequence, rng: random.Random) -> list:
    result = list(items)
    rng.shuffle(result)
    return result


def build_choices(
    question_entry: WordEntry,
    direction: Direction,
    scope_pool: Sequence[WordEntry],
    book_pool: Sequence[WordEntry],
    choice_count: int = settings.CHOICE_COUNT,
    rng: Optional[random.Random] = None,
) -> List[Choice]:
    """Build the shuffled options for one question.

    Distractors are drawn from the scope pool first and topped up from the
    whole-book pool. Returns fewer than ``choice_count`` options when the
    pools cannot supply enough unique alternatives.
    """
    rng = rng or random.Random()
    quota = max(1, int(choice_count or settings.CHOICE_COUNT)) - 1
    correct_text = displayed_text(question_entry, direction)

    seen = {correct_text}
    distractors: List[str] = []

    def collect(pool: Sequence[WordEntry]) -> None:
        for candidate in shuffled(pool, rng):
            if len(distractors) >= quota:
                return
            if candidate is None or candidate.card_id == question_entry.card_id:
                continue
            text = displayed_text(candidate, direction)
            if not text or text in seen:
                continue
            seen.add(text)
            distractors.append(text)

    collect(scope_pool)
    if len(distractors) < quota:
        collect(book_pool)

    options = [(f"opt-{question_entry.card_id}-correct", correct_text, True)]
    options.extend(
        (f"opt-{question_entry.card_id}-d-{n}", text, False) for n, text in enumerate(distractors)
    )
    rng.shuffle(options)
    return [
        Choice(id=option_id, text=text, is_correct=is_correct, index=index)
        for index, (option_id, text, is_correct) in enumerate(options)
    ]
