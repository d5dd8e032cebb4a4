"""Tests for grade extraction from free text."""

import pytest

from gradeflow.tools.chunked_processing.grade_parser import parse_all_grades, parse_grade
from gradeflow.tools.chunked_processing.models import ExtractedGrade


class TestParseGrade:
    """Test the label: earned/possible grammar."""

    def test_simple_grade(self):
        grade = parse_grade("GRADE: 42/50\nWell argued.")
        assert grade.label == "GRADE"
        assert grade.earned == 42
        assert grade.possible == 50

    def test_decimals_and_spacing(self):
        grade = parse_grade("Score : 8.5 / 10")
        assert (grade.label, grade.earned, grade.possible) == ("Score", 8.5, 10.0)

    def test_label_filter(self):
        """Test that a label matches on trailing words, case-insensitively."""
        text = "Thesis: 8/10\nEvidence: 6/10\nOverall grade: 14/20"
        grade = parse_grade(text, "GRADE")
        assert grade.label == "Overall grade"
        assert grade.earned == 14

    def test_label_not_found(self):
        assert parse_grade("Thesis: 8/10", "GRADE") is None

    def test_no_grade(self):
        assert parse_grade("No numbers here.") is None
        assert parse_grade("") is None

    def test_zero_possible_skipped(self):
        assert parse_grade("Broken: 5/0 then GRADE: 3/4").earned == 3

    def test_dates_are_not_grades(self):
        assert parse_grade("Submitted 10/12/2024 at 9:30") is None

    def test_parse_all_in_order(self):
        grades = parse_all_grades("SECTION SCORE: 7/10 ... SECTION SCORE: 9/10")
        assert [g.earned for g in grades] == [7, 9]


class TestExtractedGrade:
    """Test the grade model."""

    def test_percentage(self):
        assert ExtractedGrade(label="GRADE", earned=42, possible=50).percentage == pytest.approx(84.0)

    def test_str_drops_trailing_zeroes(self):
        assert str(ExtractedGrade(label="GRADE", earned=30.0, possible=50.0)) == "GRADE: 30/50"
        assert str(ExtractedGrade(label="GRADE", earned=30.5, possible=50)) == "GRADE: 30.5/50"
