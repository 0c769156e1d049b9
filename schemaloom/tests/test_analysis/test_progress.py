"""Unit tests for SME progress summaries."""

from schemaloom.core.analysis.progress import summarize_progress


def _questions(entries):
    """entries: list of (category, answered) tuples."""
    return [{"category": c, "is_answered": a} for c, a in entries]


class TestSummarizeProgress:

    def test_overall_and_per_category(self):
        questions = _questions(
            [("relationship", True)] * 2
            + [("relationship", False)]
            + [("column", True)] * 2
            + [("column", False)] * 3
            + [("table", False)] * 2
        )
        summary = summarize_progress(questions)

        assert summary.total_questions == 10
        assert summary.answered_questions == 4
        assert summary.percentage == 40.0
        assert summary.by_category["relationship"].total == 3
        assert summary.by_category["relationship"].answered == 2
        assert summary.by_category["relationship"].percentage == 66.7

    def test_no_questions_is_complete(self):
        summary = summarize_progress([])

        assert summary.percentage == 100.0
        assert set(summary.by_category) == {"table", "column", "relationship", "ambiguity"}
        assert all(c.percentage == 100.0 for c in summary.by_category.values())

    def test_accepts_row_objects(self):
        class Row:
            def __init__(self, category, is_answered):
                self.category = category
                self.is_answered = is_answered

        summary = summarize_progress([Row("ambiguity", True), Row("ambiguity", False)])

        assert summary.to_dict()["by_category"]["ambiguity"] == {
            "total": 2, "answered": 1, "percentage": 50.0,
        }
