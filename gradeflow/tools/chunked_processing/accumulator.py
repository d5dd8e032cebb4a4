"""Merge per-chunk outputs into one final result."""

import logging
import re
from typing import List, Optional, Sequence

from gradeflow.libs.errors import AllProvidersFailedError, ChunkBoundaryError
from gradeflow.libs.markup_cleaner import clean_llm_response
from gradeflow.libs.text_chunker import Chunk
from .grade_parser import parse_grade
from .models import ChunkResult, ExtractedGrade, FinalResult, JobMode
from .prompts import SECTION_SCORE_LABEL

LOG = logging.getLogger(__name__)

DEFAULT_DECLARED_MAX = 100.0

# Exemplar parts have no source text to fall back on, so only the marker is kept
FAILED_CHUNK_MARKERS = {
    JobMode.REWRITE: "[Section {number} could not be rewritten; original text kept]",
    JobMode.EXEMPLAR: "[Part {number} could not be generated]",
}

_PREAMBLE = re.compile(
    r"^\s*(?:(?:sure|certainly|of course|absolutely)\b[^\n]*?[,.!:]\s*)?"
    r"here(?:'s| is| are)\b[^\n:]{0,60}?\b(?:rewrit\w*|revis\w*|continu\w*|next part|version|exemplar\w*)\b"
    r"[^\n:]{0,40}:[ \t]*\n?\s*",
    re.IGNORECASE,
)
_CONNECTIVE = re.compile(
    r"^\s*(?:"
    r"continuing(?: on)?(?: from (?:where (?:we|i) left off|the previous (?:part|section)))?"
    r"|picking up where the previous (?:part|section) (?:ended|left off)"
    r"|as (?:mentioned|noted|discussed) (?:above|earlier|previously)"
    r"|in continuation"
    r")\s*[,:.\u2014-]+\s*",
    re.IGNORECASE,
)
_TRAILING_MARKER = re.compile(
    r"\s*(?:\(continued\)|\[continued\]|to be continued\.*|\.\.\.\s*continued)\s*$",
    re.IGNORECASE,
)
_FIRST_SENTENCE = re.compile(r"^\s*(.+?[.!?])(?:\s+|$)", re.DOTALL)
_LAST_SENTENCE = re.compile(r"(?:^|(?<=[.!?])\s+)([^.!?]+[.!?])\s*$")


class ResultAccumulator:
    """Combine ordered ChunkResults for grading, rewrite or exemplar jobs."""

    def __init__(self, declared_max: Optional[float] = None):
        """
        Args:
            declared_max: Maximum grade for the assignment (inferred from chunk
                scores when omitted)
        """
        self.declared_max = declared_max

    def accumulate(self, chunk_results: Sequence[ChunkResult], mode: JobMode,
                   chunks: Optional[Sequence[Chunk]] = None,
                   declared_max: Optional[float] = None) -> FinalResult:
        """
        Merge chunk results deterministically.

        Args:
            chunk_results: One result per chunk, in any completion order
            mode: Job mode
            chunks: Source chunks (used for seams and failed-chunk fallback text)
            declared_max: Overrides the accumulator's declared maximum grade

        Returns:
            FinalResult with normalized plain text

        Raises:
            ChunkBoundaryError: If chunk indices are duplicated or missing
            AllProvidersFailedError: If a grading chunk did not succeed
        """
        ordered = self.order_results(chunk_results)
        if mode == JobMode.GRADE:
            failed = [r for r in ordered if not r.succeeded]
            if failed:
                raise AllProvidersFailedError(
                    [(r.provider_used, r.error_message or "failed") for r in failed]
                )
            return self._accumulate_grades(ordered, declared_max or self.declared_max)
        return self._accumulate_text(ordered, chunks, mode)

    def from_synthesis(self, synthesis_text: str, synthesis_provider: str,
                       chunk_results: Sequence[ChunkResult]) -> FinalResult:
        """Build the grading result from a final synthesis pass over all chunks."""
        ordered = self.order_results(chunk_results)
        combined = self.normalize(synthesis_text)
        return FinalResult(
            combined_text=combined,
            per_chunk_scores=[self._section_score(r.raw_output) for r in ordered],
            overall_grade=parse_grade(combined, "GRADE") or parse_grade(combined),
            provider_chain=[r.provider_used for r in ordered] + [synthesis_provider],
            chunked=True,
            chunk_count=len(ordered),
        )

    @staticmethod
    def order_results(chunk_results: Sequence[ChunkResult]) -> List[ChunkResult]:
        """Sort results by chunk index, requiring exactly one result per index."""
        ordered = sorted(chunk_results, key=lambda r: r.chunk_index)
        indices = [r.chunk_index for r in ordered]
        if indices != list(range(len(ordered))):
            raise ChunkBoundaryError(f"Chunk results have invalid indices: {indices}")
        return ordered

    @staticmethod
    def normalize(text: str) -> str:
        """Strip residual markup; applied once to combined output."""
        return clean_llm_response(text)

    def _accumulate_grades(self, ordered: List[ChunkResult],
                           declared_max: Optional[float]) -> FinalResult:
        scores = [self._section_score(r.raw_output) for r in ordered]
        found = [s for s in scores if s is not None]

        overall = None
        if found:
            scale = declared_max or max(s.possible for s in found) or DEFAULT_DECLARED_MAX
            earned = sum(s.earned for s in found) / sum(s.possible for s in found) * scale
            overall = ExtractedGrade(label="GRADE", earned=round(earned, 1), possible=scale)

        total = len(ordered)
        sections = [
            f"Part {r.chunk_index + 1} of {total}:\n{r.raw_output.strip()}"
            for r in ordered
        ]
        body = "\n\n".join(sections)
        combined = f"{overall}\n\n{body}" if overall else body

        return FinalResult(
            combined_text=self.normalize(combined),
            per_chunk_scores=scores,
            overall_grade=overall,
            provider_chain=[r.provider_used for r in ordered],
            chunked=total > 1,
            chunk_count=total,
        )

    def _accumulate_text(self, ordered: List[ChunkResult], chunks: Optional[Sequence[Chunk]],
                         mode: JobMode = JobMode.REWRITE) -> FinalResult:
        pieces: List[str] = []
        failed_chunks: List[int] = []
        for result in ordered:
            if result.succeeded:
                text = _strip_preamble(result.raw_output)
                if pieces:
                    text = _strip_connective(text)
                    text = _drop_repeated_sentence(pieces[-1], text)
                text = _TRAILING_MARKER.sub("", text).strip()
            else:
                failed_chunks.append(result.chunk_index)
                keep_source = mode == JobMode.REWRITE and chunks
                original = chunks[result.chunk_index].content.strip() if keep_source else ""
                marker = FAILED_CHUNK_MARKERS[mode].format(number=result.chunk_index + 1)
                text = f"{marker} {original}".strip()
                LOG.warning("Chunk %d failed with every provider, marking it in the output: %s",
                            result.chunk_index + 1, result.error_message)
            pieces.append(text)

        combined = ""
        for i, piece in enumerate(pieces):
            if not piece:
                continue
            if combined:
                combined += _seam(chunks, i - 1) + piece
            else:
                combined = piece

        return FinalResult(
            combined_text=self.normalize(combined),
            provider_chain=[r.provider_used for r in ordered if r.succeeded],
            chunked=len(ordered) > 1,
            chunk_count=len(ordered),
            failed_chunks=failed_chunks,
        )

    @staticmethod
    def _section_score(text: str) -> Optional[ExtractedGrade]:
        return parse_grade(text, SECTION_SCORE_LABEL)


def _strip_preamble(text: str) -> str:
    return _PREAMBLE.sub("", text, count=1).strip()


def _strip_connective(text: str) -> str:
    stripped = _CONNECTIVE.sub("", text, count=1)
    if stripped != text and stripped:
        stripped = stripped[0].upper() + stripped[1:]
    return stripped


def _drop_repeated_sentence(previous: str, text: str) -> str:
    """Drop text's first sentence if it repeats previous's last sentence."""
    last = _LAST_SENTENCE.search(previous.strip())
    first = _FIRST_SENTENCE.match(text)
    if not last or not first:
        return text
    if _squash(last.group(1)) == _squash(first.group(1)):
        return text[first.end():].lstrip()
    return text


def _squash(sentence: str) -> str:
    return " ".join(sentence.lower().split())


def _seam(chunks: Optional[Sequence[Chunk]], index: int) -> str:
    """Separator after chunk index: a paragraph break if the source had one there."""
    if chunks is None or index >= len(chunks):
        return "\n\n"
    trailing = chunks[index].content[len(chunks[index].content.rstrip()):]
    return "\n\n" if trailing.count("\n") >= 2 or not trailing else " "
