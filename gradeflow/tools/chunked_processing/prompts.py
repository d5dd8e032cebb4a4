"""Prompt framing for direct, per-chunk and synthesis calls."""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import GradingDepth, Job, JobMode

PLAIN_TEXT_RULE = "Write plain text only: no markdown, no headings, no bullet lists, no JSON."

DEPTH_GUIDANCE = {
    GradingDepth.SHORT: "Keep the feedback brief: one or two short paragraphs.",
    GradingDepth.MEDIUM: "Give feedback of moderate length: three or four paragraphs.",
    GradingDepth.LONG: "Give thorough, detailed feedback covering every significant strength and weakness.",
}

SECTION_SCORE_LABEL = "SECTION SCORE"


@dataclass(frozen=True)
class ChunkPosition:
    """Where a chunk sits in its document."""
    index: int
    total: int
    target_words: Optional[int] = None

    @property
    def number(self) -> int:
        return self.index + 1

    @property
    def is_first(self) -> bool:
        return self.index == 0

    @property
    def is_last(self) -> bool:
        return self.index == self.total - 1

    def describe(self) -> str:
        return f"part {self.number} of {self.total}"


def _depth_line(job: Job) -> str:
    return DEPTH_GUIDANCE.get(job.depth, "") if job.depth else ""


def _length_line(job: Job) -> str:
    if not job.required_words:
        return ""
    return f"The response must be at least {job.required_words} words long."


def direct_prompt(job: Job) -> List[str]:
    """Prompt parts for processing a whole job in one call."""
    if job.mode == JobMode.REWRITE:
        return [
            "Rewrite the following text.",
            _labeled("STYLE SAMPLE", job.assignment_text),
            _labeled("INSTRUCTIONS", job.instructions_text),
            PLAIN_TEXT_RULE + " Return only the rewritten text.",
            _labeled("TEXT TO REWRITE", job.target_text),
        ]
    if job.mode == JobMode.EXEMPLAR:
        return [
            "Write an exemplary student response to this assignment that would earn full marks.",
            _labeled("ASSIGNMENT PROMPT", job.assignment_text),
            _labeled("REFERENCE MATERIALS", job.target_text),
            _labeled("SPECIFIC INSTRUCTIONS", job.instructions_text),
            _length_line(job),
            PLAIN_TEXT_RULE + " Write in natural, fluent academic prose as a top student would.",
        ]
    return [
        "Grade this student submission.",
        _labeled("ASSIGNMENT PROMPT", job.assignment_text),
        _labeled("GRADING INSTRUCTIONS", job.instructions_text),
        "Start with a numerical grade on its own line (for example GRADE: 42/50), "
        "then give direct, specific feedback on the submission's strengths and weaknesses.",
        _depth_line(job),
        PLAIN_TEXT_RULE,
        _labeled("STUDENT SUBMISSION", job.target_text),
    ]


def grade_chunk_prompt(job: Job, content: str, position: ChunkPosition) -> List[str]:
    """Prompt parts for analysing one portion of a submission."""
    return [
        _labeled("ASSIGNMENT PROMPT", job.assignment_text),
        _labeled("GRADING INSTRUCTIONS", job.instructions_text),
        f"This is CHUNK {position.number} OF {position.total} of a student submission. "
        "Analyse only this portion. DO NOT produce a final grade for the whole submission; "
        "the other portions are evaluated separately.",
        "Describe the main arguments or claims, the quality of evidence and reasoning, "
        "writing clarity, and notable strengths or weaknesses. Be direct and concise.",
        f"End with one line giving a provisional score for this portion on the assignment's "
        f"scale, in the form {SECTION_SCORE_LABEL}: <points>/<maximum>.",
        PLAIN_TEXT_RULE,
        _labeled(f"SUBMISSION {position.describe().upper()}", content),
    ]


def rewrite_chunk_prompt(job: Job, content: str, position: ChunkPosition,
                         previous_output: Optional[str]) -> List[str]:
    """Prompt parts for rewriting one portion while keeping style continuous."""
    continuation = (
        "The previous part of the rewrite ended with the excerpt below. Continue seamlessly "
        "from it in the same voice. Do not repeat the excerpt and do not add a transition "
        "announcing that you are continuing."
        if previous_output and not position.is_first else
        "This is the beginning of the document."
    )
    return [
        f"Rewrite {position.describe()} of a longer text. Each part is rewritten separately "
        "and the parts are joined in order, so keep the style consistent across parts.",
        _labeled("STYLE SAMPLE", job.assignment_text),
        _labeled("INSTRUCTIONS", job.instructions_text),
        continuation,
        _labeled("PREVIOUS EXCERPT", previous_output if not position.is_first else ""),
        PLAIN_TEXT_RULE + " Return only the rewritten text for this part.",
        _labeled("TEXT TO REWRITE", content),
    ]


def exemplar_chunk_prompt(job: Job, content: str, position: ChunkPosition,
                          previous_output: Optional[str]) -> List[str]:
    """Prompt parts for writing one part of an exemplary response."""
    length = f" (approximately {position.target_words} words)" if position.target_words else ""
    if position.is_first:
        role = f"the FIRST part{length}, covering the introduction and initial main points"
        pacing = "This is only the beginning: do not conclude or summarize yet."
    elif position.is_last:
        role = f"the FINAL part{length}, the conclusion, tying together the arguments made so far"
        pacing = "Continue seamlessly from the previous part without repeating it."
        if job.required_words:
            pacing += f" The whole response must reach at least {job.required_words} words."
    else:
        role = f"MIDDLE part {position.number}{length}, developing the next main points"
        pacing = ("Continue seamlessly from the previous part without repeating it. "
                  "Do not conclude yet: this is a middle section.")
    reference_line = "Draw on the reference material below for this part." if content.strip() else ""
    return [
        f"Write {role} of a PERFECT, EXEMPLARY student response that would earn full marks. "
        f"This is {position.describe()}.",
        _labeled("ASSIGNMENT PROMPT", job.assignment_text),
        _labeled("SPECIFIC INSTRUCTIONS", job.instructions_text),
        _labeled("PREVIOUS PART ENDED WITH", previous_output if not position.is_first else ""),
        pacing,
        reference_line,
        PLAIN_TEXT_RULE,
        _labeled("REFERENCE MATERIAL FOR THIS PART", content),
    ]


def synthesis_prompt(job: Job, partial_outputs: Sequence[str]) -> List[str]:
    """Prompt parts for the final grading pass over every portion's analysis."""
    summaries = "\n\n---\n\n".join(
        f"Analysis of part {i + 1} of {len(partial_outputs)}:\n{text}"
        for i, text in enumerate(partial_outputs)
    )
    return [
        "Grade this student paper. Below is an analysis of each section of the paper.",
        _labeled("ASSIGNMENT PROMPT", job.assignment_text),
        _labeled("GRADING INSTRUCTIONS", job.instructions_text),
        _labeled("SECTION ANALYSES", summaries),
        "Start with a numerical grade on its own line (for example GRADE: 42/50). Then give "
        "direct, honest feedback about the whole paper, referring to specific content.",
        _depth_line(job),
        PLAIN_TEXT_RULE,
    ]


def continuation_excerpt(text: Optional[str], max_chars: int) -> Optional[str]:
    """Tail of text, at most max_chars long, starting on a word boundary."""
    if not text:
        return None
    text = text.strip()
    if len(text) <= max_chars:
        return text
    tail = text[-max_chars:]
    space = tail.find(' ')
    return tail[space + 1:] if 0 <= space < len(tail) - 1 else tail


def _labeled(label: str, text: Optional[str]) -> str:
    if not text or not text.strip():
        return ""
    return f"=== {label} ===\n{text.strip()}"
