"""Entry points for grading, rewriting and exemplar jobs with chunking and fallback."""

import asyncio
import logging
import math
from typing import List, Optional, Sequence

from gradeflow.libs.config_loader import ConfigType, get_config, load_default_configs
from gradeflow.libs.errors import AllProvidersFailedError
from gradeflow.libs.llm import ProviderFactory, provider_factory_from_config
from gradeflow.libs.text_chunker import Chunk, chunk_text, verify_chunks
from . import prompts
from .accumulator import ResultAccumulator
from .chunk_processor import DEFAULT_CONTINUATION_CHARS, ChunkProcessor
from .fallback import ProviderFallbackCoordinator
from .grade_parser import parse_grade
from .models import ChunkResult, FinalResult, GradingDepth, Job, JobMode
from .prompts import ChunkPosition
from .size_estimator import SizeEstimator, estimate_tokens

LOG = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE_TOKENS = 8000
DEFAULT_MIN_CHUNK_TOKENS = 500
DEFAULT_EXEMPLAR_WORDS_PER_PART = 800
DEFAULT_EXEMPLAR_CHUNKING_WORDS = 1000


class ChunkingPipeline:
    """Run jobs on the direct or chunked path, with provider fallback."""

    def __init__(self, configs: ConfigType, provider_factory: Optional[ProviderFactory] = None):
        """
        Initialize the pipeline.

        Args:
            configs: Configuration dictionary (required)
            provider_factory: Builds providers from (name, model); defaults to
                pydantic-ai agents configured from configs
        """
        self.configs = configs
        self.provider_factory = provider_factory or provider_factory_from_config(configs)
        self.estimator = SizeEstimator.create_from_config(configs)
        self.processor = ChunkProcessor(
            continuation_chars=get_config(
                "chunking.continuation_context_chars", configs, default=DEFAULT_CONTINUATION_CHARS
            )
        )
        self.accumulator = ResultAccumulator(
            declared_max=get_config("grading.declared_max", configs, default=None)
        )
        self.chunk_size_tokens = get_config(
            "chunking.chunk_size_tokens", configs, default=DEFAULT_CHUNK_SIZE_TOKENS
        )
        self.min_chunk_tokens = get_config(
            "chunking.min_chunk_tokens", configs, default=DEFAULT_MIN_CHUNK_TOKENS
        )
        self.max_concurrency = max(1, int(get_config("chunking.max_concurrency", configs, default=1)))
        self.use_synthesis_pass = bool(get_config("chunking.use_synthesis_pass", configs, default=True))
        self.exemplar_words_per_part = get_config(
            "exemplar.words_per_part", configs, default=DEFAULT_EXEMPLAR_WORDS_PER_PART
        )
        self.exemplar_chunking_words = get_config(
            "exemplar.chunking_words", configs, default=DEFAULT_EXEMPLAR_CHUNKING_WORDS
        )

    async def run(self, job: Job) -> FinalResult:
        """Run job, trying the requested provider first and then the fallback priority."""
        coordinator = ProviderFallbackCoordinator.create_from_config(
            self.configs, self.provider_factory, pipeline=self
        )
        return await coordinator.run_with_fallback(job, coordinator.provider_order(job.provider))

    def run_sync(self, job: Job) -> FinalResult:
        """Synchronous wrapper for run."""
        return asyncio.run(self.run(job))

    def chunk_size_for(self, job: Job, order: Sequence[str]) -> int:
        """
        Token budget per chunk.

        Sized for the smallest threshold among the providers that may handle the
        job, minus the framing every chunk carries.
        """
        threshold = min(self.estimator.threshold_for(name) for name in order)
        framing = estimate_tokens(job.assignment_text) + estimate_tokens(job.instructions_text)
        return max(self.min_chunk_tokens, min(self.chunk_size_tokens, threshold - framing))

    def part_word_budgets(self, job: Job) -> List[int]:
        """Word target per part for a long exemplar; empty when one call is enough."""
        if (job.mode != JobMode.EXEMPLAR or not job.required_words
                or job.required_words <= self.exemplar_chunking_words):
            return []
        return plan_part_words(job.required_words, self.exemplar_words_per_part)

    async def execute(self, job: Job, order: List[str],
                      coordinator: ProviderFallbackCoordinator) -> FinalResult:
        """Pick the direct or chunked path for job and run it through coordinator."""
        oversized = self.estimator.needs_chunking(job.provider, job.assignment_text,
                                                  job.instructions_text, job.target_text)
        budgets = self.part_word_budgets(job)
        if budgets:
            return await self._run_exemplar_parts(job, budgets, oversized, order, coordinator)
        if oversized:
            return await self._run_chunked(job, order, coordinator)
        LOG.info("Submission size is within limits for %s; processing directly", job.provider)
        return await self._run_direct(job, order, coordinator)

    async def _run_direct(self, job: Job, order: List[str],
                          coordinator: ProviderFallbackCoordinator) -> FinalResult:
        prompt_parts = prompts.direct_prompt(job)
        output, provider_name = await coordinator.call_with_fallback(
            lambda provider: provider.generate_response(prompt_parts, job.temperature),
            order,
            job.model,
        )
        combined = self.accumulator.normalize(output)
        return FinalResult(
            combined_text=combined,
            overall_grade=parse_grade(combined, "GRADE") if job.mode == JobMode.GRADE else None,
            provider_chain=[provider_name],
            chunked=False,
            chunk_count=1,
        )

    def _split_target(self, job: Job, order: List[str]) -> List[Chunk]:
        max_tokens = self.chunk_size_for(job, order)
        chunks = verify_chunks(job.target_text, chunk_text(job.target_text, max_tokens, estimate_tokens))
        LOG.info("Chunking enabled: %d chunks of at most ~%d tokens (%s mode)",
                 len(chunks), max_tokens, job.mode.value)
        return chunks

    async def _run_chunked(self, job: Job, order: List[str],
                           coordinator: ProviderFallbackCoordinator) -> FinalResult:
        if not job.target_text.strip():
            # Only the framing is large; there is nothing to split
            LOG.info("No %s text to split for %s; processing directly", job.mode.value, job.provider)
            return await self._run_direct(job, order, coordinator)

        chunks = self._split_target(job, order)

        if job.mode == JobMode.GRADE:
            return await self._grade_chunks(job, chunks, order, coordinator)
        return await self._continue_chunks(job, chunks, order, coordinator)

    async def _grade_chunks(self, job: Job, chunks: List[Chunk], order: List[str],
                            coordinator: ProviderFallbackCoordinator) -> FinalResult:
        total = len(chunks)

        if self.max_concurrency == 1:
            results: List[ChunkResult] = []
            for chunk in chunks:
                result = await coordinator.run_chunk_with_fallback(
                    self.processor, chunk, job, ChunkPosition(chunk.index, total), order
                )
                if not result.succeeded:
                    raise AllProvidersFailedError([(result.provider_used, result.error_message)])
                results.append(result)
        else:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def grade_with_semaphore(chunk: Chunk) -> ChunkResult:
                async with semaphore:
                    return await coordinator.run_chunk_with_fallback(
                        self.processor, chunk, job, ChunkPosition(chunk.index, total), order
                    )

            results = list(await asyncio.gather(*(grade_with_semaphore(c) for c in chunks)))
            failed = [r for r in results if not r.succeeded]
            if failed:
                raise AllProvidersFailedError([(r.provider_used, r.error_message) for r in failed])

        if self.use_synthesis_pass:
            ordered = self.accumulator.order_results(results)
            synthesis_parts = prompts.synthesis_prompt(job, [r.raw_output for r in ordered])
            try:
                text, provider_name = await coordinator.call_with_fallback(
                    lambda provider: provider.generate_response(synthesis_parts, job.temperature),
                    order,
                    job.model,
                )
                return self.accumulator.from_synthesis(text, provider_name, ordered)
            except AllProvidersFailedError as e:
                LOG.warning("Synthesis pass failed (%s); combining chunk feedback directly", e)

        return self.accumulator.accumulate(results, JobMode.GRADE, chunks)

    async def _run_exemplar_parts(self, job: Job, budgets: List[int], oversized: bool,
                                  order: List[str],
                                  coordinator: ProviderFallbackCoordinator) -> FinalResult:
        """
        Write a long exemplar in parts sized by the requested word count.

        Reference material that fits is shown to every part. Oversized material
        is split, one piece per part, with more parts added if needed.
        """
        references = self._split_target(job, order) if oversized and job.target_text.strip() else []
        if len(references) > len(budgets):
            budgets = plan_part_words(job.required_words, self.exemplar_words_per_part, len(references))
        LOG.info("Writing a %d-word exemplar in %d parts", job.required_words, len(budgets))

        parts = []
        for index in range(len(budgets)):
            if references:
                content = references[index].content if index < len(references) else ""
            else:
                content = job.target_text
            parts.append(Chunk(index=index, content=content, start_offset=0, end_offset=len(content)))
        return await self._continue_chunks(job, parts, order, coordinator, budgets=budgets)

    async def _continue_chunks(self, job: Job, chunks: List[Chunk], order: List[str],
                               coordinator: ProviderFallbackCoordinator,
                               budgets: Optional[List[int]] = None) -> FinalResult:
        total = len(chunks)
        results: List[ChunkResult] = []
        previous_output = None
        for chunk in chunks:
            position = ChunkPosition(chunk.index, total, budgets[chunk.index] if budgets else None)
            result = await coordinator.run_chunk_with_fallback(
                self.processor, chunk, job, position, order, previous_output=previous_output,
            )
            results.append(result)
            if result.succeeded:
                previous_output = result.raw_output
            elif job.mode == JobMode.REWRITE:
                previous_output = chunk.content

        if not any(r.succeeded for r in results):
            raise AllProvidersFailedError([(r.provider_used, r.error_message) for r in results])
        # Planned parts are joined as paragraphs rather than at source seams
        return self.accumulator.accumulate(results, job.mode, None if budgets else chunks)


def plan_part_words(required_words: int, words_per_part: int, parts: Optional[int] = None) -> List[int]:
    """
    Split required_words into approximate word counts per part.

    Every part but the last gets words_per_part and the last gets what remains.
    When more parts are requested than that needs, the words are shared evenly.
    """
    planned = math.ceil(required_words / words_per_part)
    if parts is None or parts <= planned:
        return [words_per_part] * (planned - 1) + [required_words - words_per_part * (planned - 1)]
    return [math.ceil(required_words / parts)] * parts


async def process_with_chunking(provider: str, model: Optional[str], temperature: float,
                                assignment_text: str, instructions_text: str, target_text: str,
                                depth: Optional[str] = None, mode: str = "grade",
                                configs: Optional[ConfigType] = None,
                                provider_factory: Optional[ProviderFactory] = None,
                                required_words: Optional[int] = None) -> str:
    """
    Process a grading, rewrite or exemplar request and return the final text.

    Args:
        provider: Requested provider name
        model: Model name, or None for the provider default
        temperature: Sampling temperature
        assignment_text: Assignment prompt (style sample for rewrites)
        instructions_text: Grading or rewrite instructions
        target_text: Submission, text to rewrite, or exemplar reference material
        depth: Optional grading depth ("short", "medium", "long")
        mode: "grade", "rewrite" or "exemplar"
        configs: Configuration (loaded from config/ when omitted)
        provider_factory: Optional provider factory override
        required_words: Minimum exemplar length; long exemplars are written in parts

    Returns:
        Combined plain-text result

    Raises:
        AllProvidersFailedError: If every provider failed
    """
    if configs is None:
        configs = load_default_configs()
    job = Job(
        provider=provider,
        model=model,
        temperature=temperature,
        assignment_text=assignment_text,
        instructions_text=instructions_text,
        target_text=target_text,
        depth=GradingDepth(depth) if depth else None,
        mode=JobMode(mode),
        required_words=required_words,
    )
    result = await ChunkingPipeline(configs, provider_factory).run(job)
    return result.combined_text
