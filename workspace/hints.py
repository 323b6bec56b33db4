"""Tutoring styles and the prompt modifiers sent with hint requests."""

from enum import Enum


class TutorStyle(str, Enum):
    SOCRATIC = "socratic"
    HINT_BASED = "hint_based"
    DIRECT = "direct"


SOCRATIC_MODIFIER = (
    "The student is asking for a Socratic hint. "
    "Guide them to the answer without giving it away directly."
)
HINT_BASED_MODIFIER = "The student seems to be struggling. Provide a more direct hint."
DIRECT_MODIFIER = (
    "The student needs a direct explanation. "
    "Explain the concept and provide a corrected code snippet."
)

_MODIFIERS = {
    TutorStyle.SOCRATIC: SOCRATIC_MODIFIER,
    TutorStyle.HINT_BASED: HINT_BASED_MODIFIER,
    TutorStyle.DIRECT: DIRECT_MODIFIER,
}

EMPTY_SELECTION_MESSAGE = "Please select a piece of code to get a hint for."


def prompt_modifier_for(style: TutorStyle | str | None) -> str:
    """Unknown or missing styles fall back to the Socratic modifier."""
    try:
        return _MODIFIERS[TutorStyle(style)]
    except ValueError:
        return SOCRATIC_MODIFIER
