"""LLM utilities for creating provider agents and a uniform text-in/text-out call."""

import asyncio
import logging
import os
from typing import Any, Callable, Dict, Optional, Sequence, Set

from pydantic_ai import Agent
from pydantic_ai.models import Model
from pydantic_ai.models.anthropic import AnthropicModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.anthropic import AnthropicProvider
from pydantic_ai.providers.deepseek import DeepSeekProvider
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from .config_loader import ConfigType, get_config
from .errors import ProviderCallError, ProviderConfigError


# Fix up logging level for httpx to WARNING to reduce noise
logging.getLogger("httpx").setLevel(logging.WARNING)

LOG = logging.getLogger(__name__)

PROVIDER_NAMES = ("openai", "anthropic", "perplexity", "deepseek")

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-7-sonnet-20250219",
    "perplexity": "sonar",
    "deepseek": "deepseek-chat",
}

API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}

PERPLEXITY_BASE_URL = "https://api.perplexity.ai"

DEFAULT_TIMEOUT_SECONDS = 120.0

SYSTEM_PROMPT = (
    "You are an experienced academic assistant who grades student work, rewrites "
    "text and writes exemplary responses for instructors. Write plain prose only: "
    "no markdown, no headings, no JSON and no code blocks."
)


def get_api_key(configs: ConfigType, provider: str) -> Optional[str]:
    """Return the API key for provider from config, falling back to its environment variable."""
    key = get_config(f"providers.{provider}.api_key", configs, default=None)
    return key or os.environ.get(API_KEY_ENV_VARS.get(provider, ""), None) or None


def available_providers(configs: ConfigType) -> Dict[str, bool]:
    """Map each known provider to whether credentials are configured for it."""
    return {name: bool(get_api_key(configs, name)) for name in PROVIDER_NAMES}


def create_model(configs: ConfigType, provider: str, model: Optional[str] = None) -> Model:
    """
    Create a typed pydantic-ai model for provider.

    Args:
        configs: Configuration dictionary
        provider: One of PROVIDER_NAMES
        model: Model name (overrides providers.<name>.default_model)

    Raises:
        ProviderConfigError: If the provider is unknown or has no API key
    """
    if provider not in PROVIDER_NAMES:
        raise ProviderConfigError(provider, f"unknown provider (expected one of {', '.join(PROVIDER_NAMES)})")

    api_key = get_api_key(configs, provider)
    if not api_key:
        raise ProviderConfigError(
            provider, f"no API key (set providers.{provider}.api_key or {API_KEY_ENV_VARS[provider]})"
        )

    model_name = model or get_config(
        f"providers.{provider}.default_model", configs, default=DEFAULT_MODELS[provider]
    )
    base_url = get_config(f"providers.{provider}.base_url", configs, default=None)

    if provider == "anthropic":
        return AnthropicModel(model_name, provider=AnthropicProvider(api_key=api_key))
    if provider == "deepseek":
        return OpenAIChatModel(model_name, provider=DeepSeekProvider(api_key=api_key))
    if provider == "perplexity":
        return OpenAIChatModel(
            model_name,
            provider=OpenAIProvider(base_url=base_url or PERPLEXITY_BASE_URL, api_key=api_key),
        )
    return OpenAIChatModel(model_name, provider=OpenAIProvider(base_url=base_url, api_key=api_key))


def create_agent(configs: ConfigType,
                 provider: str = "openai",
                 model: Optional[str] = None,
                 settings_dict: Optional[Dict[str, Any]] = None,
                 system_prompt: Optional[str] = None) -> Agent:
    """
    Create a pydantic-ai Agent for the given provider.

    Args:
        configs: Configuration dictionary (required)
        provider: Provider name
        model: Model to use (overrides config value)
        settings_dict: Pydantic AI settings dict (overrides providers.<name>.settings)
        system_prompt: System prompt for the agent (optional)

    Returns:
        Configured Agent

    Raises:
        ProviderConfigError: If the provider is unknown or has no API key
    """
    llm_model = create_model(configs, provider, model)
    base_settings = get_config(f"providers.{provider}.settings", configs, default={}) or {}
    settings_dict = base_settings | (settings_dict or {})
    model_settings = ModelSettings(**settings_dict) if settings_dict else None

    if system_prompt:
        return Agent(
            model=llm_model,
            model_settings=model_settings,
            system_prompt=system_prompt,
            retries=0,
        )
    return Agent(
        model=llm_model,
        model_settings=model_settings,
        retries=0,
    )


class LLMProvider:
    """Uniform text-in/text-out wrapper around a provider's agent."""

    def __init__(self, name: str, agent: Agent, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.name = name
        self.agent = agent
        self.timeout = timeout
        self._in_flight: Set[asyncio.Future] = set()

    def __repr__(self) -> str:
        return f"LLMProvider({self.name!r})"

    def _call_finished(self, call: asyncio.Future):
        self._in_flight.discard(call)
        if not call.cancelled() and call.exception() is not None:
            LOG.debug("%s call ended with %s", self.name, type(call.exception()).__name__)

    async def generate_response(self, prompt_parts: Sequence[str], temperature: float) -> str:
        """
        Send prompt parts to the provider and return its text.

        Args:
            prompt_parts: Prompt sections, joined with blank lines
            temperature: Sampling temperature

        Returns:
            Non-empty response text

        Raises:
            ProviderCallError: On timeout, API error, or empty/non-text output
        """
        prompt = "\n\n".join(part for part in prompt_parts if part)
        call = asyncio.ensure_future(asyncio.wait_for(
            self.agent.run(prompt, model_settings=ModelSettings(temperature=temperature)),
            timeout=self.timeout,
        ))
        self._in_flight.add(call)
        call.add_done_callback(self._call_finished)
        try:
            # Cancelling the caller leaves the call running; its result is discarded
            result = await asyncio.shield(call)
        except asyncio.TimeoutError as e:
            raise ProviderCallError(self.name, f"timed out after {self.timeout:g}s") from e
        except ProviderCallError:
            raise
        except Exception as e:  # pylint: disable=broad-except
            raise ProviderCallError(self.name, f"{type(e).__name__}: {e}") from e

        output = result.output
        if not isinstance(output, str) or not output.strip():
            raise ProviderCallError(self.name, "empty or non-text response")
        return output


ProviderFactory = Callable[[str, Optional[str]], LLMProvider]


def create_provider(configs: ConfigType, name: str, model: Optional[str] = None) -> LLMProvider:
    """Create the LLMProvider for name using config credentials, model and timeout."""
    agent = create_agent(configs, provider=name, model=model, system_prompt=SYSTEM_PROMPT)
    timeout = get_config(f"providers.{name}.timeout_seconds", configs, default=DEFAULT_TIMEOUT_SECONDS)
    LOG.debug("Created %s provider (model=%s, timeout=%ss)", name, model or "default", timeout)
    return LLMProvider(name, agent, timeout=float(timeout))


def provider_factory_from_config(configs: ConfigType) -> ProviderFactory:
    """Return a factory that builds providers from configs."""
    def factory(name: str, model: Optional[str] = None) -> LLMProvider:
        return create_provider(configs, name, model)
    return factory

