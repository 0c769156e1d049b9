"""Progress over SME questions. Recomputed on demand, never stored."""

from typing import Any, Iterable

from ..constants import QUESTION_CATEGORIES
from .models import CategoryProgress, ProgressSummary


def _percentage(answered: int, total: int) -> float:
    # Nothing to answer counts as done
    if total == 0:
        return 100.0
    return round(answered * 100.0 / total, 1)


def _is_answered(question: Any) -> bool:
    if isinstance(question, dict):
        return bool(question.get("is_answered"))
    return bool(getattr(question, "is_answered", False))


def _category(question: Any) -> str:
    if isinstance(question, dict):
        return question.get("category")
    return getattr(question, "category", None)


def summarize_progress(questions: Iterable[Any]) -> ProgressSummary:
    """Overall and per-category answered/total for a set of questions.

    Accepts ORM rows or dicts with ``category`` and ``is_answered``.
    """
    counts = {cat: [0, 0] for cat in QUESTION_CATEGORIES}
    for q in questions:
        bucket = counts.setdefault(_category(q), [0, 0])
        bucket[0] += 1
        if _is_answered(q):
            bucket[1] += 1

    total = sum(t for t, _ in counts.values())
    answered = sum(a for _, a in counts.values())
    return ProgressSummary(
        total_questions=total,
        answered_questions=answered,
        percentage=_percentage(answered, total),
        by_category={
            cat: CategoryProgress(total=t, answered=a, percentage=_percentage(a, t))
            for cat, (t, a) in counts.items()
        },
    )
