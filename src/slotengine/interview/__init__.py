"""Progressive disclosure and answer validation."""

from slotengine.interview.engine import CaseProgress, InterviewEngine, is_visible, should_skip
from slotengine.interview.validation import coerce_answer, validate_answer

__all__ = [
    "CaseProgress",
    "InterviewEngine",
    "coerce_answer",
    "is_visible",
    "should_skip",
    "validate_answer",
]
