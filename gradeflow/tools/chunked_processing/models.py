"""Pydantic models for chunked grading and rewriting jobs."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobMode(str, Enum):
    """What the job asks the provider to produce."""
    GRADE = "grade"
    REWRITE = "rewrite"
    EXEMPLAR = "exemplar"


class GradingDepth(str, Enum):
    """Requested length of grading feedback."""
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class Job(BaseModel):
    """A single grading, rewrite or exemplar request."""
    model_config = ConfigDict(frozen=True)

    assignment_text: str = Field(default="", description="Assignment prompt, or style sample for rewrites")
    instructions_text: str = Field(default="", description="Grading or rewrite instructions")
    target_text: str = Field(description="Student submission, text to rewrite, or exemplar reference material")
    provider: str = Field(description="Requested LLM provider name")
    model: Optional[str] = Field(default=None, description="Model name (provider default if omitted)")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    mode: JobMode = Field(default=JobMode.GRADE, description="Kind of output requested")
    depth: Optional[GradingDepth] = Field(default=None, description="Feedback length for grading")
    required_words: Optional[int] = Field(default=None, ge=1, description="Minimum length of an exemplar response")


class ChunkResult(BaseModel):
    """Output of processing one chunk."""
    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(description="Index of the chunk this result belongs to")
    raw_output: str = Field(default="", description="Provider text for the chunk")
    succeeded: bool = Field(description="Whether the provider call succeeded")
    provider_used: str = Field(description="Provider that handled (or failed) the chunk")
    error_message: Optional[str] = Field(default=None, description="Error text when the call failed")


class ExtractedGrade(BaseModel):
    """A `label: earned/possible` score found in free text."""
    label: str = Field(description="Label preceding the score, e.g. 'GRADE'")
    earned: float = Field(description="Points earned")
    possible: float = Field(description="Points possible")

    @property
    def percentage(self) -> float:
        return self.earned / self.possible * 100

    def __str__(self) -> str:
        return f"{self.label}: {_format_number(self.earned)}/{_format_number(self.possible)}"


class FinalResult(BaseModel):
    """Combined output of a job."""
    combined_text: str = Field(description="Final plain-prose output")
    per_chunk_scores: Optional[List[Optional[ExtractedGrade]]] = Field(
        default=None,
        description="Provisional score per chunk (grading mode only)"
    )
    overall_grade: Optional[ExtractedGrade] = Field(
        default=None,
        description="Overall grade parsed or computed for grading mode"
    )
    provider_chain: List[str] = Field(
        default_factory=list,
        description="Providers that produced each successful call, in order"
    )
    chunked: bool = Field(default=False, description="Whether the chunked path was used")
    chunk_count: int = Field(default=1, description="Number of chunks processed")
    failed_chunks: List[int] = Field(
        default_factory=list,
        description="Chunk indices that failed with every provider"
    )


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"
