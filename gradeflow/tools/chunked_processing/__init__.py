"""Chunking-and-reassembly pipeline for grading and rewriting oversized documents."""

from .size_estimator import SizeEstimator, needs_chunking, estimate_tokens
from .chunk_processor import ChunkProcessor
from .accumulator import ResultAccumulator
from .fallback import ProviderFallbackCoordinator
from .pipeline import ChunkingPipeline, plan_part_words, process_with_chunking
from .grade_parser import parse_grade, parse_all_grades
from .models import Job, JobMode, GradingDepth, ChunkResult, ExtractedGrade, FinalResult

__all__ = [
    'SizeEstimator',
    'needs_chunking',
    'estimate_tokens',
    'ChunkProcessor',
    'ResultAccumulator',
    'ProviderFallbackCoordinator',
    'ChunkingPipeline',
    'process_with_chunking',
    'plan_part_words',
    'parse_grade',
    'parse_all_grades',
    'Job',
    'JobMode',
    'GradingDepth',
    'ChunkResult',
    'ExtractedGrade',
    'FinalResult',
]
