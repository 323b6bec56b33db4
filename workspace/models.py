"""Wire models for the course platform API.

Field names follow Python conventions; aliases carry the platform's camelCase
names so bodies round-trip unchanged.
"""

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

FEEDBACK_CONCEPTUAL_HINT = "conceptual_hint"


class _WireModel(BaseModel):
    # Backend ids are integers in some tables and UUIDs in others.
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)


class WorkspaceFile(_WireModel):
    id: str
    filename: str
    content: str = ""


class Lesson(_WireModel):
    id: str
    title: str
    description: str | None = ""
    course_id: str | None = None
    teacher_id: str | None = None
    created_at: str | None = None


class Submission(_WireModel):
    """A previously graded submission; displayed, never mutated."""

    id: str | None = None
    grade: str | None = None
    feedback: str | None = None
    submitted_at: str
    code_churn: int | None = None
    copy_paste_activity: int | None = None
    time_taken: int | None = None
    mastery_level: int | None = None


class SubmissionHistoryEntry(_WireModel):
    id: str
    submitted_at: str
    is_correct: bool = False
    code_churn: int | None = None
    copy_paste_activity: int | None = None
    time_to_solve_seconds: int | None = None


class TestCase(_WireModel):
    __test__ = False  # not a pytest class

    description: str = ""
    input: str = ""
    expected_output: str = Field(default="", alias="expectedOutput")


class OfficialSolution(_WireModel):
    code: list[WorkspaceFile] = Field(default_factory=list)
    explanation: str = ""


class IdeState(_WireModel):
    """Everything the workspace needs for one lesson view."""

    lesson: Lesson
    files: list[WorkspaceFile] = Field(default_factory=list)
    test_cases: list[TestCase] = Field(default_factory=list, alias="testCases")
    submission_history: list[SubmissionHistoryEntry] = Field(
        default_factory=list, alias="submissionHistory"
    )
    graded_submission: Submission | None = Field(default=None, alias="gradedSubmission")
    official_solution: OfficialSolution | None = Field(default=None, alias="officialSolution")
    course_id: str | None = Field(default=None, alias="courseId")
    previous_lesson_id: str | None = Field(default=None, alias="previousLessonId")
    next_lesson_id: str | None = Field(default=None, alias="nextLessonId")


class TestResult(_WireModel):
    __test__ = False

    passed: int
    failed: int
    total: int
    raw_output: str = Field(
        default="",
        validation_alias=AliasChoices("results", "rawOutput", "raw_output"),
        serialization_alias="results",
    )

    @classmethod
    def from_failure(cls, message: str) -> "TestResult":
        """Placeholder result so the result panel always has something to render."""
        return cls(passed=0, failed=1, total=1, raw_output=message)


class ConceptualHint(BaseModel):
    kind: Literal["conceptual_hint"] = "conceptual_hint"
    message: str


class Accepted(BaseModel):
    kind: Literal["accepted"] = "accepted"
    message: str = ""


SubmitOutcome = ConceptualHint | Accepted


def parse_feedback(body: dict) -> SubmitOutcome:
    """Decide the submit/feedback outcome from the ``feedback_type`` tag.

    Only ``conceptual_hint`` carrying a message is treated as a hint; any
    other successful body means the solution was accepted.
    """
    if not isinstance(body, dict):
        return Accepted()
    message = body.get("message")
    if body.get("feedback_type") == FEEDBACK_CONCEPTUAL_HINT and message:
        return ConceptualHint(message=str(message))
    return Accepted(message=str(message or ""))


class Course(_WireModel):
    id: str
    title: str
    description: str | None = ""
    is_published: bool = False
    student_count: int = 0
    lesson_count: int = 0
