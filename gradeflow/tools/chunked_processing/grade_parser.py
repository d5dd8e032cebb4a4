"""Parse `label: earned/possible` grades out of LLM feedback.

Grammar::

    grade   := label ws? ":" ws? number ws? "/" ws? number
    label   := letter (letter | digit | " ")*
    number  := digit+ ("." digit+)?
"""

import re
from typing import List, Optional

from .models import ExtractedGrade

_GRADE = re.compile(
    r'(?<![\w])(?P<label>[A-Za-z][A-Za-z0-9 ]{0,40}?)[ \t]*:[ \t]*'
    r'(?P<earned>\d+(?:\.\d+)?)[ \t]*/[ \t]*(?P<possible>\d+(?:\.\d+)?)'
)


def parse_all_grades(text: str) -> List[ExtractedGrade]:
    """Return every grade found in text, in order of appearance."""
    if not text:
        return []
    grades = []
    for match in _GRADE.finditer(text):
        possible = float(match.group('possible'))
        if possible == 0:
            continue
        grades.append(ExtractedGrade(
            label=match.group('label').strip(),
            earned=float(match.group('earned')),
            possible=possible,
        ))
    return grades


def parse_grade(text: str, label: Optional[str] = None) -> Optional[ExtractedGrade]:
    """
    Return the first grade in text, or None.

    Args:
        text: Free text to search
        label: If given, only accept grades whose label ends with this word
            sequence (case-insensitive), so "Overall GRADE" matches "grade"
    """
    for grade in parse_all_grades(text):
        if label is None or _label_matches(grade.label, label):
            return grade
    return None


def _label_matches(found: str, wanted: str) -> bool:
    found_words = found.upper().split()
    wanted_words = wanted.upper().split()
    return bool(wanted_words) and found_words[-len(wanted_words):] == wanted_words
