"""Send one chunk to a provider with the job's shared framing."""

import logging
from typing import List, Optional

from gradeflow.libs.errors import ProviderCallError
from gradeflow.libs.llm import LLMProvider
from gradeflow.libs.text_chunker import Chunk
from . import prompts
from .models import ChunkResult, Job, JobMode
from .prompts import ChunkPosition

LOG = logging.getLogger(__name__)

DEFAULT_CONTINUATION_CHARS = 600


class ChunkProcessor:
    """Build per-chunk prompts and turn provider outcomes into ChunkResults."""

    def __init__(self, continuation_chars: int = DEFAULT_CONTINUATION_CHARS):
        """
        Args:
            continuation_chars: How much of the previous chunk's output is shown
                to the provider in rewrite and exemplar modes
        """
        self.continuation_chars = continuation_chars

    def build_prompt(self, chunk: Chunk, job: Job, position: ChunkPosition,
                     previous_output: Optional[str] = None) -> List[str]:
        """Prompt parts for chunk, given its position and the previous chunk's output."""
        if job.mode == JobMode.GRADE:
            return prompts.grade_chunk_prompt(job, chunk.content, position)
        excerpt = prompts.continuation_excerpt(previous_output, self.continuation_chars)
        if job.mode == JobMode.REWRITE:
            return prompts.rewrite_chunk_prompt(job, chunk.content, position, excerpt)
        return prompts.exemplar_chunk_prompt(job, chunk.content, position, excerpt)

    async def process_chunk(self, chunk: Chunk, job: Job, position: ChunkPosition,
                            provider: LLMProvider,
                            previous_output: Optional[str] = None) -> ChunkResult:
        """
        Process chunk with provider.

        Provider failures are reported as an unsuccessful ChunkResult rather than
        raised, so sibling chunks are unaffected.

        Args:
            chunk: The chunk to process
            job: Job supplying the shared context
            position: Chunk's place in the document
            provider: Provider to call
            previous_output: Output for the preceding chunk (continuation modes)

        Returns:
            ChunkResult for the chunk
        """
        prompt_parts = self.build_prompt(chunk, job, position, previous_output)
        LOG.debug("Processing chunk %d/%d (%d chars) with %s",
                  position.number, position.total, len(chunk.content), provider.name)
        try:
            output = await provider.generate_response(prompt_parts, job.temperature)
        except ProviderCallError as e:
            LOG.warning("Chunk %d/%d failed with %s: %s",
                        position.number, position.total, provider.name, e.message)
            return ChunkResult(
                chunk_index=chunk.index,
                succeeded=False,
                provider_used=provider.name,
                error_message=e.message,
            )
        return ChunkResult(
            chunk_index=chunk.index,
            raw_output=output,
            succeeded=True,
            provider_used=provider.name,
        )
