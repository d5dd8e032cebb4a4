"""Retry provider calls and chunks on alternate providers."""

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from gradeflow.libs.config_loader import ConfigType, get_config
from gradeflow.libs.errors import AllProvidersFailedError, ProviderCallError
from gradeflow.libs.llm import PROVIDER_NAMES, LLMProvider, ProviderFactory
from gradeflow.libs.text_chunker import Chunk
from .chunk_processor import ChunkProcessor
from .models import ChunkResult, FinalResult, Job
from .prompts import ChunkPosition

if TYPE_CHECKING:
    from .pipeline import ChunkingPipeline

LOG = logging.getLogger(__name__)

DEFAULT_PRIORITY = ("openai", "anthropic", "deepseek", "perplexity")

T = TypeVar("T")


class ProviderFallbackCoordinator:
    """
    Walk an ordered provider list until a call succeeds.

    Each call or chunk moves through Attempting(provider_i) states: success ends
    the walk, any ProviderCallError advances to provider_{i+1}, and running out
    of providers fails. Every provider is attempted at most once per call.

    A coordinator caches the providers it creates, so use one per job.
    """

    @classmethod
    def create_from_config(cls, configs: ConfigType, provider_factory: ProviderFactory,
                           pipeline: Optional["ChunkingPipeline"] = None) -> "ProviderFallbackCoordinator":
        priority = get_config("fallback.priority", configs, default=list(DEFAULT_PRIORITY))
        return cls(provider_factory, priority=priority, pipeline=pipeline)

    def __init__(self, provider_factory: ProviderFactory,
                 priority: Sequence[str] = DEFAULT_PRIORITY,
                 pipeline: Optional["ChunkingPipeline"] = None):
        """
        Args:
            provider_factory: Builds a provider from (name, model)
            priority: Fixed order in which fallback providers are tried
            pipeline: Pipeline run by run_with_fallback
        """
        unknown = [name for name in priority if name not in PROVIDER_NAMES]
        if unknown:
            LOG.warning("Unknown providers in fallback priority: %s", unknown)
        self.provider_factory = provider_factory
        self.priority = list(priority)
        self.pipeline = pipeline
        self._providers: Dict[Tuple[str, Optional[str]], LLMProvider] = {}

    def provider_order(self, requested: str) -> List[str]:
        """Requested provider first, then the priority list without duplicates."""
        order = [requested]
        for name in self.priority:
            if name not in order:
                order.append(name)
        return order

    def get_provider(self, name: str, model: Optional[str] = None) -> LLMProvider:
        """Create (or reuse) the provider for name; creation errors are ProviderCallErrors."""
        key = (name, model)
        if key not in self._providers:
            try:
                self._providers[key] = self.provider_factory(name, model)
            except ProviderCallError:
                raise
            except Exception as e:  # pylint: disable=broad-except
                raise ProviderCallError(name, f"could not create provider: {e}") from e
        return self._providers[key]

    async def call_with_fallback(self, call: Callable[[LLMProvider], Awaitable[T]],
                                 order: Sequence[str],
                                 model: Optional[str] = None) -> Tuple[T, str]:
        """
        Run call against each provider in order until one succeeds.

        Args:
            call: Coroutine function taking a provider
            order: Providers to try; the first is the requested one
            model: Model for the requested provider (fallbacks use their defaults)

        Returns:
            Tuple of (call result, provider name that produced it)

        Raises:
            AllProvidersFailedError: If every provider failed
        """
        attempts: List[Tuple[str, str]] = []
        for position, name in enumerate(order):
            try:
                provider = self.get_provider(name, model if position == 0 else None)
                return await call(provider), name
            except ProviderCallError as e:
                attempts.append((name, e.message))
                remaining = len(order) - position - 1
                LOG.warning("Provider %s failed (%s); %d provider(s) left", name, e.message, remaining)
        raise AllProvidersFailedError(attempts)

    async def run_chunk_with_fallback(self, processor: ChunkProcessor, chunk: Chunk, job: Job,
                                      position: ChunkPosition, order: Sequence[str],
                                      previous_output: Optional[str] = None) -> ChunkResult:
        """
        Process one chunk, retrying only this chunk on later providers.

        Returns:
            The first successful ChunkResult, or a failed one summarising every
            attempt once the providers are exhausted
        """
        attempts: List[Tuple[str, str]] = []
        for i, name in enumerate(order):
            try:
                provider = self.get_provider(name, job.model if i == 0 else None)
            except ProviderCallError as e:
                attempts.append((name, e.message))
                continue
            result = await processor.process_chunk(chunk, job, position, provider, previous_output)
            if result.succeeded:
                if attempts:
                    LOG.info("Chunk %d/%d recovered with fallback provider %s",
                             position.number, position.total, name)
                return result
            attempts.append((name, result.error_message or "failed"))

        LOG.error("Chunk %d/%d failed with every provider", position.number, position.total)
        return ChunkResult(
            chunk_index=chunk.index,
            succeeded=False,
            provider_used=attempts[-1][0] if attempts else job.provider,
            error_message="; ".join(f"{name}: {error}" for name, error in attempts),
        )

    async def run_with_fallback(self, job: Job, providers: Sequence[str]) -> FinalResult:
        """
        Run job through the pipeline, substituting providers on failure.

        Args:
            job: Job to run
            providers: Ordered providers; the requested one should come first

        Raises:
            AllProvidersFailedError: Only once every provider has failed
        """
        if not providers:
            raise ValueError("At least one provider is required")
        if self.pipeline is None:
            raise ValueError("No pipeline configured for this coordinator")
        return await self.pipeline.execute(job, list(providers), self)
