"""Coarse engagement metrics for the active editor buffer.

Churn is a line-count delta, not an edit distance: rewriting a line in place
counts zero and reformatting can count a lot. It is only meant as a rough
signal attached to submissions.
"""


def line_count(text: str) -> int:
    return len(text.split("\n"))


class ChurnTracker:
    def __init__(self, baseline: str = ""):
        self._baseline = baseline
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    @property
    def baseline(self) -> str:
        return self._baseline

    def reset(self, baseline: str) -> None:
        """Move the baseline (e.g. on file switch) without touching the counter."""
        self._baseline = baseline

    def reset_all(self, baseline: str) -> None:
        """Start a new lesson-load cycle."""
        self._baseline = baseline
        self._count = 0

    def observe(self, content: str) -> int:
        delta = abs(line_count(content) - line_count(self._baseline))
        self._count += delta
        self._baseline = content
        return delta


class PasteTracker:
    """Share of typed characters that arrived through paste events."""

    def __init__(self):
        self.pasted_chars = 0
        self.typed_chars = 0

    def reset(self) -> None:
        self.pasted_chars = 0
        self.typed_chars = 0

    def record_paste(self, text: str) -> None:
        self.pasted_chars += len(text)
        self.typed_chars += len(text)

    def record_typed(self, delta_chars: int) -> None:
        # Deletions do not reduce the typed total.
        if delta_chars > 0:
            self.typed_chars += delta_chars

    @property
    def activity(self) -> int:
        if self.typed_chars <= 0:
            return 0
        return min(100, round(self.pasted_chars / self.typed_chars * 100))
