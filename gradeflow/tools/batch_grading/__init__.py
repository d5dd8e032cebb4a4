"""Batch grading of a directory of submissions."""

from .batch_grader import BatchGrader, BatchGradingResult

__all__ = [
    'BatchGrader',
    'BatchGradingResult'
]
