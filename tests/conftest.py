"""Shared fixtures: in-memory providers and small configs."""

import asyncio

import pytest

from gradeflow.libs.errors import ProviderCallError


class FakeProvider:
    """Provider double that records prompts and answers from a callable.

    respond(prompt) returns the text, or raises ProviderCallError to simulate a
    failed call. delay(prompt) optionally returns seconds to sleep first.
    """

    def __init__(self, name, respond=None, fail=False, delay=None):
        self.name = name
        self.respond = respond or (lambda prompt: f"Output from {name}.")
        self.fail = fail
        self.delay = delay
        self.prompts = []

    async def generate_response(self, prompt_parts, temperature):
        prompt = "\n\n".join(part for part in prompt_parts if part)
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay(prompt))
        if self.fail:
            raise ProviderCallError(self.name, "simulated outage")
        return self.respond(prompt)


def factory_for(*providers):
    """Provider factory serving the given fakes by name."""
    by_name = {p.name: p for p in providers}

    def factory(name, model=None):
        if name not in by_name:
            raise ProviderCallError(name, "not available in this test")
        return by_name[name]
    return factory


def paragraph(word, words=30):
    """A paragraph of `words` words built from one repeated word."""
    return " ".join([word] * (words - 1)) + " end."


@pytest.fixture
def config():
    """Config with default thresholds and two fallback providers."""
    return {
        'providers': {
            'openai': {'api_key': 'test-key'},
            'anthropic': {'api_key': 'test-key'},
        },
        'fallback': {'priority': ['openai', 'anthropic']},
    }


@pytest.fixture
def small_chunk_config(config):
    """Config whose thresholds turn three 30-word paragraphs into three chunks."""
    config['chunking'] = {
        'chunk_size_tokens': 50,
        'min_chunk_tokens': 10,
        'provider_thresholds': {'openai': 60, 'anthropic': 60},
    }
    return config


@pytest.fixture
def three_paragraphs():
    """Three distinct paragraphs separated by blank lines."""
    return "\n\n".join(paragraph(word) for word in ("alpha", "beta", "gamma"))


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def make_factory():
    return factory_for
