"""Decide whether a job's combined text is too large for a provider in one call."""

import logging
import math
from typing import Any, Dict, Optional

from gradeflow.libs.config_loader import ConfigType, get_config
from gradeflow.libs.errors import SizeEstimationError

LOG = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
WORDS_PER_TOKEN = 0.75

# Safe token budgets, set well below each provider's context window to leave
# room for the framing prompt and the response.
DEFAULT_PROVIDER_THRESHOLDS: Dict[str, int] = {
    'openai': 8000,
    'anthropic': 20000,
    'perplexity': 40000,
    'deepseek': 16000,
}

DEFAULT_FORCE_CHUNKING_WORDS = 50000


def estimate_tokens(text: Any) -> int:
    """
    Estimate the token count of text.

    Uses the larger of a character-based and a word-based estimate so that
    unusual text (long technical words, dense punctuation) is not undercounted.

    Raises:
        SizeEstimationError: If text is not a string
    """
    if not isinstance(text, str):
        raise SizeEstimationError(f"Cannot estimate size of {type(text).__name__}")
    if not text.strip():
        return 0
    char_estimate = math.ceil(len(text) / CHARS_PER_TOKEN)
    word_estimate = math.ceil(len(text.split()) / WORDS_PER_TOKEN)
    return max(char_estimate, word_estimate)


class SizeEstimator:
    """Compare estimated token counts against per-provider thresholds."""

    @classmethod
    def create_from_config(cls, configs: ConfigType) -> "SizeEstimator":
        """Build an estimator from the `chunking` config section."""
        overrides = get_config("chunking.provider_thresholds", configs, default={}) or {}
        return cls(
            thresholds={**DEFAULT_PROVIDER_THRESHOLDS, **overrides},
            force_chunking_words=get_config(
                "chunking.force_chunking_words", configs, default=DEFAULT_FORCE_CHUNKING_WORDS
            ),
        )

    def __init__(self, thresholds: Optional[Dict[str, int]] = None,
                 force_chunking_words: int = DEFAULT_FORCE_CHUNKING_WORDS):
        self.thresholds = dict(thresholds or DEFAULT_PROVIDER_THRESHOLDS)
        if not self.thresholds:
            raise ValueError("At least one provider threshold is required")
        self.force_chunking_words = force_chunking_words

    def threshold_for(self, provider: str) -> int:
        """Token threshold for provider; unknown providers get the smallest one."""
        if provider in self.thresholds:
            return self.thresholds[provider]
        fallback = min(self.thresholds.values())
        LOG.debug("No threshold for provider %r, using most conservative (%d)", provider, fallback)
        return fallback

    def needs_chunking(self, provider: str, *texts: str) -> bool:
        """Return True if the combined texts exceed the provider's safe size."""
        try:
            total_tokens = sum(estimate_tokens(t) for t in texts)
            total_words = sum(len(t.split()) for t in texts)
        except SizeEstimationError as e:
            LOG.warning("Size estimation failed (%s); assuming chunking is needed", e)
            return True

        if total_tokens == 0:
            return False

        threshold = self.threshold_for(provider)
        LOG.debug("Document statistics: %d words, ~%d tokens, threshold for %s: %d",
                  total_words, total_tokens, provider, threshold)

        if total_words > self.force_chunking_words:
            LOG.info("Document is extremely large (%d words); forcing chunking", total_words)
            return True

        return total_tokens > threshold


def needs_chunking(provider: str, *texts: str, thresholds: Optional[Dict[str, int]] = None) -> bool:
    """
    Check whether combined texts should be processed in chunks for provider.

    Args:
        provider: Provider name (e.g. "openai")
        *texts: Assignment, instructions and submission text blocks
        thresholds: Optional token thresholds per provider (defaults built in)

    Returns:
        True if the estimated token count exceeds the provider threshold
    """
    return SizeEstimator(thresholds=thresholds).needs_chunking(provider, *texts)
