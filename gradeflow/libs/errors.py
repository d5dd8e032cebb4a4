"""Exception types shared by the chunking pipeline and the provider layer."""

from typing import List, Tuple


class GradeflowError(Exception):
    """Base class for gradeflow errors."""


class SizeEstimationError(GradeflowError):
    """Raised when a size estimate cannot be made for the given input."""


class ChunkBoundaryError(GradeflowError):
    """Raised when chunks do not reconstruct their source text in order."""


class ProviderCallError(GradeflowError):
    """A single LLM provider call failed (timeout, rate limit, bad response, auth)."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class ProviderConfigError(ProviderCallError):
    """A provider is unknown or missing credentials."""


class AllProvidersFailedError(GradeflowError):
    """Every provider in the fallback chain was tried and failed."""

    USER_MESSAGE = "could not process submission; try a shorter document or try again later"

    def __init__(self, attempts: List[Tuple[str, str]]):
        self.attempts = list(attempts)
        details = "; ".join(f"{provider}: {error}" for provider, error in self.attempts)
        super().__init__(f"{self.USER_MESSAGE} ({details})" if details else self.USER_MESSAGE)
